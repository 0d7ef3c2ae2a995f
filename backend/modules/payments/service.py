"""
In-memory payment applier.

For testing and single-process deployments, paired with the in-memory
AccountLedger. Use SupabasePaymentApplier for production.
"""

import logging
from typing import Optional

from shared.clock import Clock, utc_now
from shared.locks import KeyedLock
from modules.ledger.exceptions import LedgerUnavailableError, LockTimeoutError
from modules.ledger.interfaces import IAccountLedger
from modules.ledger.models import TransactionKind

from .models import PaymentApplication, PaymentEvent, ProcessedPayment

logger = logging.getLogger(__name__)


class PaymentApplier:
    """
    Applies each external payment id at most once.

    The check of the processed set, the credit and the marker insert all
    happen while holding the lock for the payment id, and the marker is
    written in the same step that the credit returns. A second caller for
    the same id waits for the first and then sees the marker.
    """

    def __init__(
        self,
        ledger: IAccountLedger,
        lock_timeout: float = 5.0,
        clock: Clock = utc_now,
    ):
        self._ledger = ledger
        self._clock = clock
        self._processed: dict[str, ProcessedPayment] = {}
        self._locks = KeyedLock(
            timeout=lock_timeout,
            on_timeout=lambda key: LockTimeoutError(f"payment {key}"),
        )

    async def apply(self, event: PaymentEvent) -> PaymentApplication:
        async with self._locks.hold(event.external_payment_id):
            processed = self._processed.get(event.external_payment_id)
            if processed is not None:
                return await self._already_applied(event, processed)

            await self._ledger.ensure_account(event.account_id)
            transaction = await self._ledger.credit(
                event.account_id,
                event.credits_to_add,
                kind=TransactionKind.PURCHASE,
                external_ref=event.external_payment_id,
                description=f"Purchased {event.credits_to_add} credits",
            )
            processed = ProcessedPayment(
                external_payment_id=event.external_payment_id,
                account_id=event.account_id,
                transaction_id=transaction.transaction_id,
                credits=event.credits_to_add,
                amount_paid=event.amount_paid,
                currency=event.currency,
                source=event.source,
                processed_at=transaction.created_at,
            )
            self._processed[event.external_payment_id] = processed

        logger.info(
            f"Applied payment {event.external_payment_id} via {event.source.value}: "
            f"+{event.credits_to_add} credits to {event.account_id}"
        )
        return PaymentApplication(transaction=transaction, processed=processed)

    async def get_processed(self, external_payment_id: str) -> Optional[ProcessedPayment]:
        return self._processed.get(external_payment_id)

    async def _already_applied(
        self,
        event: PaymentEvent,
        processed: ProcessedPayment,
    ) -> PaymentApplication:
        transaction = await self._ledger.transaction_log.get(processed.transaction_id)
        if transaction is None:
            raise LedgerUnavailableError(
                reason=f"transaction {processed.transaction_id} for payment "
                f"{processed.external_payment_id} is missing"
            )
        if processed.account_id != event.account_id:
            logger.warning(
                f"Payment {event.external_payment_id} redelivered for {event.account_id} "
                f"but was credited to {processed.account_id}"
            )
        logger.info(
            f"Payment {event.external_payment_id} already applied "
            f"(redelivered via {event.source.value})"
        )
        return PaymentApplication(
            transaction=transaction,
            already_applied=True,
            processed=processed,
        )
