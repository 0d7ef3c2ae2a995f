"""
Payments module interface.

The webhook handler and the client verification poll both call the same
IPaymentApplier.apply; neither credits the ledger directly.
"""

from typing import Optional, Protocol, runtime_checkable

from .models import PaymentApplication, PaymentEvent, ProcessedPayment


@runtime_checkable
class IPaymentApplier(Protocol):
    """Applies external payment confirmations exactly once."""

    async def apply(self, event: PaymentEvent) -> PaymentApplication:
        """
        Credit a payment unless it was credited before.

        Safe to call any number of times, concurrently, from independent
        paths. Provisions the account if this is its first payment.

        Args:
            event: The confirmed payment

        Returns:
            PaymentApplication; ``already_applied`` is True for repeats

        Raises:
            LedgerUnavailableError: If the credit cannot be confirmed
                (nothing was recorded; safe to retry)
        """
        ...

    async def get_processed(self, external_payment_id: str) -> Optional[ProcessedPayment]:
        """The processed-payment marker, if the payment has been applied."""
        ...
