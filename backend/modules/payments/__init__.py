"""
Payments module.

Applies payment confirmations from the payment processor to the ledger
exactly once per external payment id, whichever path delivers them.

Public API:
- IPaymentApplier: Interface for idempotent payment application
- PaymentApplier: In-memory implementation
- SupabasePaymentApplier: Postgres implementation
- Stripe adapters: construct_webhook_event, checkout_session_to_event, retrieve_paid_session
- Models: PaymentEvent, PaymentApplication, ProcessedPayment, PaymentSource
- Exceptions: PaymentError, WebhookVerificationError, etc.
"""

from .interfaces import IPaymentApplier
from .models import (
    PaymentApplication,
    PaymentEvent,
    PaymentSource,
    ProcessedPayment,
    VerifyPaymentResponse,
    WebhookResponse,
)
from .exceptions import (
    PaymentError,
    WebhookVerificationError,
    InvalidPaymentEventError,
    PaymentNotCompletedError,
    PaymentAccountMismatchError,
)
from .service import PaymentApplier
from .repository import SupabasePaymentApplier
from .stripe_events import (
    checkout_session_to_event,
    construct_webhook_event,
    retrieve_paid_session,
)

__all__ = [
    "IPaymentApplier",
    "PaymentApplication",
    "PaymentEvent",
    "PaymentSource",
    "ProcessedPayment",
    "VerifyPaymentResponse",
    "WebhookResponse",
    "PaymentError",
    "WebhookVerificationError",
    "InvalidPaymentEventError",
    "PaymentNotCompletedError",
    "PaymentAccountMismatchError",
    "PaymentApplier",
    "SupabasePaymentApplier",
    "checkout_session_to_event",
    "construct_webhook_event",
    "retrieve_paid_session",
]
