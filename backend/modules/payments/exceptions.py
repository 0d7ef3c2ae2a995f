"""
Payments module exceptions.

A duplicate delivery is not an exception: PaymentApplier.apply reports
it through PaymentApplication.already_applied.
"""

from typing import Optional

from shared.exceptions import AuthorizationError, CreditMeterError, ValidationError


class PaymentError(CreditMeterError):
    """Base exception for payment errors."""

    pass


class WebhookVerificationError(PaymentError):
    """Raised when a webhook signature or payload cannot be verified."""

    def __init__(self, reason: str):
        super().__init__(
            f"Webhook verification failed: {reason}",
            code="WEBHOOK_VERIFICATION_FAILED",
            details={"reason": reason},
        )


class InvalidPaymentEventError(ValidationError):
    """Raised when a payment confirmation lacks the fields needed to credit it."""

    def __init__(self, reason: str, payment_id: Optional[str] = None):
        super().__init__(
            f"Invalid payment event: {reason}",
            code="INVALID_PAYMENT_EVENT",
            details={"reason": reason, "payment_id": payment_id},
        )


class PaymentNotCompletedError(PaymentError):
    """Raised when a checkout session has not been paid yet."""

    def __init__(self, session_id: str, payment_status: Optional[str]):
        super().__init__(
            f"Payment not completed for session {session_id}",
            code="PAYMENT_NOT_COMPLETED",
            details={"session_id": session_id, "payment_status": payment_status},
        )


class PaymentAccountMismatchError(AuthorizationError):
    """Raised when a caller verifies a payment made for another account."""

    def __init__(self, session_id: str):
        super().__init__(
            f"Checkout session {session_id} does not belong to this account",
            code="PAYMENT_ACCOUNT_MISMATCH",
            details={"session_id": session_id},
        )
