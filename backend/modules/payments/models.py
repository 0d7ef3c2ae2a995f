"""
Payments module data models.

A PaymentEvent is what every confirmation path (webhook push, client
poll, manual entry) is reduced to before it reaches the PaymentApplier.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from modules.ledger.models import Transaction


class PaymentSource(str, Enum):
    """Which path delivered the payment confirmation."""

    WEBHOOK = "webhook"
    RECONCILIATION = "reconciliation"
    MANUAL = "manual"


class PaymentEvent(BaseModel):
    """A confirmed payment to be credited."""

    external_payment_id: str = Field(..., min_length=1, description="Processor payment ID")
    account_id: str = Field(..., min_length=1, description="Account to credit")
    credits_to_add: int = Field(..., gt=0, description="Credits purchased")
    amount_paid: int = Field(..., ge=0, description="Amount paid in minor units (cents)")
    currency: str = Field(default="usd", description="ISO currency code")
    source: PaymentSource = Field(default=PaymentSource.WEBHOOK, description="Delivery path")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Processor metadata")

    model_config = {"frozen": True}


class ProcessedPayment(BaseModel):
    """Marker recording that a payment has been credited."""

    external_payment_id: str = Field(..., description="Processor payment ID")
    account_id: str = Field(..., description="Credited account")
    transaction_id: str = Field(..., description="PURCHASE transaction produced")
    credits: int = Field(..., description="Credits added")
    amount_paid: int = Field(..., description="Amount paid in minor units")
    currency: str = Field(default="usd", description="ISO currency code")
    source: PaymentSource = Field(..., description="Path that applied it first")
    processed_at: datetime = Field(..., description="When it was applied")

    model_config = {"frozen": True}


class PaymentApplication(BaseModel):
    """
    Outcome of PaymentApplier.apply.

    ``already_applied`` is the idempotent no-op signal: the transaction is
    the one produced by the first application.
    """

    transaction: Transaction = Field(..., description="The payment's PURCHASE transaction")
    already_applied: bool = Field(default=False, description="Payment was credited earlier")
    processed: ProcessedPayment = Field(..., description="Processed-payment marker")


class WebhookResponse(BaseModel):
    """Acknowledgement returned to the payment processor."""

    received: bool = Field(default=True)
    event_type: str = Field(..., description="Processor event type")
    ignored: bool = Field(default=False, description="Event type not handled")
    already_applied: bool = Field(default=False)
    transaction_id: Optional[str] = Field(None)


class VerifyPaymentResponse(BaseModel):
    """Result of a client-triggered payment check."""

    payment_id: str = Field(..., description="Processor payment ID")
    credits_added: int = Field(..., description="Credits in the payment")
    already_applied: bool = Field(..., description="Payment had been credited earlier")
    transaction_id: str = Field(..., description="PURCHASE transaction")
    balance: int = Field(..., description="Balance after crediting")
