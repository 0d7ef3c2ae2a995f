"""
Stripe adapters.

Turns verified webhook events and retrieved checkout sessions into
PaymentEvents. Checkout sessions carry the account and credit count in
their metadata; the payment intent id is the idempotency key.
"""

import logging
from typing import Any, Mapping, Optional

import stripe

from shared.exceptions import ExternalServiceError

from .models import PaymentEvent, PaymentSource
from .exceptions import (
    InvalidPaymentEventError,
    PaymentNotCompletedError,
    WebhookVerificationError,
)

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"


def construct_webhook_event(
    payload: bytes,
    signature: Optional[str],
    secret: Optional[str],
    tolerance: int = 300,
) -> stripe.Event:
    """
    Verify a webhook signature and parse the event.

    Raises:
        WebhookVerificationError: Missing header or secret, bad signature,
            stale timestamp or malformed payload
    """
    if not signature:
        raise WebhookVerificationError("Missing stripe-signature header")
    if not secret:
        logger.error("Stripe webhook secret not configured")
        raise WebhookVerificationError("Webhook secret not configured")

    try:
        return stripe.Webhook.construct_event(payload, signature, secret, tolerance=tolerance)
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Invalid Stripe webhook signature: {e}")
        raise WebhookVerificationError("Invalid signature") from e
    except ValueError as e:
        logger.warning(f"Invalid Stripe webhook payload: {e}")
        raise WebhookVerificationError("Invalid payload") from e


def checkout_session_to_event(
    session: Mapping[str, Any],
    source: PaymentSource,
) -> PaymentEvent:
    """
    Build a PaymentEvent from a completed checkout session.

    Raises:
        InvalidPaymentEventError: If the payment id, account or credits are missing
    """
    metadata = session.get("metadata") or {}
    payment_intent = session.get("payment_intent")
    if isinstance(payment_intent, Mapping):
        payment_intent = payment_intent.get("id")
    if not payment_intent:
        raise InvalidPaymentEventError("checkout session has no payment_intent")

    account_id = metadata.get("account_id")
    if not account_id:
        raise InvalidPaymentEventError("metadata.account_id missing", payment_intent)

    try:
        credits = int(metadata.get("credits", 0))
    except (TypeError, ValueError):
        raise InvalidPaymentEventError("metadata.credits is not a number", payment_intent)
    if credits <= 0:
        raise InvalidPaymentEventError("metadata.credits must be positive", payment_intent)

    return PaymentEvent(
        external_payment_id=payment_intent,
        account_id=account_id,
        credits_to_add=credits,
        amount_paid=session.get("amount_total") or 0,
        currency=session.get("currency") or "usd",
        source=source,
        metadata={"checkout_session_id": session.get("id")},
    )


def retrieve_paid_session(session_id: str, api_key: Optional[str]) -> dict[str, Any]:
    """
    Fetch a checkout session and require it to be paid.

    Raises:
        PaymentNotCompletedError: If payment_status is not "paid"
        ExternalServiceError: If Stripe cannot be reached or rejects the request
    """
    if not api_key:
        raise ExternalServiceError("Stripe is not configured", service="stripe")
    try:
        session = stripe.checkout.Session.retrieve(session_id, api_key=api_key)
    except stripe.StripeError as e:
        logger.warning(f"Stripe session lookup failed for {session_id}: {e}")
        raise ExternalServiceError(
            f"Could not retrieve checkout session {session_id}",
            service="stripe",
        ) from e

    data = session.to_dict()
    status = data.get("payment_status")
    if status != "paid":
        raise PaymentNotCompletedError(session_id, status)
    return data
