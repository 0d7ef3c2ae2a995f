"""
Supabase-backed payment applier.

The ``apply_payment`` plpgsql function claims the processed_payments row
with INSERT ... ON CONFLICT DO NOTHING, provisions the account, credits it
and links the marker to the new transaction inside one database
transaction. A concurrent call for the same payment id blocks on the
unique key until the first commits, then reads the existing marker.
"""

import logging
from typing import Any, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from shared.repository import BaseRepository
from modules.ledger.exceptions import LedgerUnavailableError, LockTimeoutError
from modules.ledger.repository import LOCK_NOT_AVAILABLE, SupabaseTransactionLog, first_row

from .models import PaymentApplication, PaymentEvent, PaymentSource, ProcessedPayment

logger = logging.getLogger(__name__)


class SupabasePaymentApplier(BaseRepository[ProcessedPayment]):
    """Payment applier backed by the processed_payments table."""

    table = "processed_payments"

    def __init__(self, db: Client, lock_timeout: float = 5.0):
        super().__init__(db)
        self._transactions = SupabaseTransactionLog(db)
        self._lock_timeout_ms = int(lock_timeout * 1000)

    async def apply(self, event: PaymentEvent) -> PaymentApplication:
        params = {
            "p_external_payment_id": event.external_payment_id,
            "p_account_id": event.account_id,
            "p_credits": event.credits_to_add,
            "p_amount_paid": event.amount_paid,
            "p_currency": event.currency,
            "p_source": event.source.value,
            "p_description": f"Purchased {event.credits_to_add} credits",
            "p_lock_timeout_ms": self._lock_timeout_ms,
        }
        try:
            result = self._db.rpc("apply_payment", params).execute()
        except APIError as e:
            if e.code == LOCK_NOT_AVAILABLE:
                raise LockTimeoutError(f"payment {event.external_payment_id}") from e
            logger.error(f"apply_payment failed for {event.external_payment_id}: {e.code} {e.message}")
            raise LedgerUnavailableError(reason=e.message) from e
        except httpx.HTTPError as e:
            logger.error(f"apply_payment unreachable for {event.external_payment_id}: {e}")
            raise LedgerUnavailableError(reason=str(e)) from e

        payload = first_row(result.data)
        if payload is None:
            raise LedgerUnavailableError(reason="apply_payment returned no result")

        application = PaymentApplication(
            transaction=self._transactions._map_to_transaction(payload["transaction"]),
            already_applied=bool(payload.get("already_applied")),
            processed=self._map_to_processed(payload["processed"]),
        )
        if application.already_applied:
            logger.info(
                f"Payment {event.external_payment_id} already applied "
                f"(redelivered via {event.source.value})"
            )
        else:
            logger.info(
                f"Applied payment {event.external_payment_id} via {event.source.value}: "
                f"+{event.credits_to_add} credits to {event.account_id}"
            )
        return application

    async def get_processed(self, external_payment_id: str) -> Optional[ProcessedPayment]:
        try:
            result = (
                self._db.table(self.table)
                .select("*")
                .eq("external_payment_id", external_payment_id)
                .execute()
            )
        except (APIError, httpx.HTTPError) as e:
            raise LedgerUnavailableError(reason=str(e)) from e
        row = first_row(result.data)
        return self._map_to_processed(row) if row else None

    def _map_to_processed(self, row: dict[str, Any]) -> ProcessedPayment:
        """Map a processed_payments row to a ProcessedPayment model."""
        return ProcessedPayment(
            external_payment_id=row["external_payment_id"],
            account_id=row["account_id"],
            transaction_id=row["transaction_id"],
            credits=row["credits"],
            amount_paid=row["amount_paid"],
            currency=row.get("currency") or "usd",
            source=PaymentSource(row["source"]),
            processed_at=self._parse_timestamp(row["processed_at"]),
        )
