"""
Supabase-backed ledger storage.

Balance mutations go through the ``ledger_apply`` plpgsql function (see
migrations/001_credit_ledger.sql), which locks the account row with
SELECT ... FOR UPDATE, checks the balance, updates the totals and inserts
the transaction in one database transaction. Reads use PostgREST directly.

Tables:
- accounts
- credit_transactions
"""

import logging
from datetime import datetime
from typing import Any, Iterable, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from shared.clock import Clock, utc_now
from shared.repository import BaseRepository

from .models import Account, Transaction, TransactionKind
from .exceptions import (
    AccountInactiveError,
    AccountNotFoundError,
    AlreadyReversedError,
    InsufficientBalanceError,
    InvalidAmountError,
    LedgerUnavailableError,
    LockTimeoutError,
)
from .service import BaseAccountLedger

logger = logging.getLogger(__name__)

# Postgres SQLSTATEs surfaced through PostgREST
LOCK_NOT_AVAILABLE = "55P03"
UNIQUE_VIOLATION = "23505"


def first_row(data: Any) -> Optional[dict[str, Any]]:
    """RPCs returning a composite come back as a dict, table reads as a list."""
    if isinstance(data, list):
        return data[0] if data else None
    return data or None


class SupabaseTransactionLog(BaseRepository[Transaction]):
    """Transaction log stored in the credit_transactions table."""

    table = "credit_transactions"

    async def append(self, transaction: Transaction) -> Transaction:
        data = transaction.model_dump(mode="json", exclude={"sequence", "transaction_id"})
        data["id"] = transaction.transaction_id
        data["kind"] = transaction.kind.value
        result = self._execute(lambda: self._db.table(self.table).insert(data).execute())
        return self._map_to_transaction(first_row(result.data))

    async def get(self, transaction_id: str) -> Optional[Transaction]:
        result = self._execute(
            lambda: self._db.table(self.table).select("*").eq("id", transaction_id).execute()
        )
        row = first_row(result.data)
        return self._map_to_transaction(row) if row else None

    async def list_by_account(
        self,
        account_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
        newest_first: bool = False,
    ) -> list[Transaction]:
        def query():
            return (
                self._db.table(self.table)
                .select("*")
                .eq("account_id", account_id)
                .order("sequence", desc=newest_first)
            )

        if limit is None:
            rows = self._execute(lambda: self._fetch_all(query, start=offset))
        else:
            rows = self._execute(query().range(offset, offset + limit - 1).execute).data
        return [self._map_to_transaction(row) for row in rows]

    async def count_by_account(self, account_id: str) -> int:
        result = self._execute(
            lambda: self._db.table(self.table)
            .select("id", count="exact")
            .eq("account_id", account_id)
            .limit(1)
            .execute()
        )
        return result.count or 0

    async def sum_since(
        self,
        account_id: str,
        since: datetime,
        kinds: Optional[Iterable[TransactionKind]] = None,
    ) -> int:
        kind_values = [kind.value for kind in kinds] if kinds is not None else None

        def query():
            builder = (
                self._db.table(self.table)
                .select("amount")
                .eq("account_id", account_id)
                .gte("created_at", since.isoformat())
            )
            if kind_values is not None:
                builder = builder.in_("kind", kind_values)
            return builder.order("sequence")

        rows = self._execute(lambda: self._fetch_all(query))
        return sum(row["amount"] for row in rows)

    async def find_reversal(self, transaction_id: str) -> Optional[Transaction]:
        result = self._execute(
            lambda: self._db.table(self.table)
            .select("*")
            .eq("reverses_transaction_id", transaction_id)
            .execute()
        )
        row = first_row(result.data)
        return self._map_to_transaction(row) if row else None

    @staticmethod
    def _execute(call):
        try:
            return call()
        except (APIError, httpx.HTTPError) as e:
            logger.error(f"Transaction log query failed: {e}")
            raise LedgerUnavailableError(reason=str(e)) from e

    def _map_to_transaction(self, row: dict[str, Any]) -> Transaction:
        """Map a credit_transactions row to a Transaction model."""
        return Transaction(
            transaction_id=row["id"],
            account_id=row["account_id"],
            kind=TransactionKind(row["kind"]),
            amount=row["amount"],
            balance_before=row["balance_before"],
            balance_after=row["balance_after"],
            external_ref=row.get("external_ref"),
            description=row.get("description"),
            reverses_transaction_id=row.get("reverses_transaction_id"),
            sequence=row.get("sequence"),
            created_at=self._parse_timestamp(row["created_at"]),
        )


class SupabaseAccountLedger(BaseAccountLedger):
    """
    Account ledger stored in Supabase.

    Concurrency control lives in the database: the row lock taken by
    ``ledger_apply`` serializes debits on one account across every API
    process.
    """

    def __init__(
        self,
        db: Client,
        log: Optional[SupabaseTransactionLog] = None,
        lock_timeout: float = 5.0,
        low_balance_threshold: int = 10,
        clock: Clock = utc_now,
    ):
        super().__init__(
            log or SupabaseTransactionLog(db),
            low_balance_threshold=low_balance_threshold,
            clock=clock,
        )
        self._db = db
        self._lock_timeout_ms = int(lock_timeout * 1000)

    async def get_account(self, account_id: str) -> Account:
        try:
            result = self._db.table("accounts").select("*").eq("account_id", account_id).execute()
        except (APIError, httpx.HTTPError) as e:
            raise LedgerUnavailableError(reason=str(e)) from e
        row = first_row(result.data)
        if row is None:
            raise AccountNotFoundError(account_id)
        return self._map_to_account(row)

    async def ensure_account(self, account_id: str) -> Account:
        row = self._call_rpc(
            "ledger_provision_account",
            {"p_account_id": account_id},
            account_id=account_id,
        )
        return self._map_to_account(row)

    async def deactivate(self, account_id: str) -> Account:
        try:
            result = (
                self._db.table("accounts")
                .update({"is_active": False, "updated_at": self._clock().isoformat()})
                .eq("account_id", account_id)
                .execute()
            )
        except (APIError, httpx.HTTPError) as e:
            raise LedgerUnavailableError(reason=str(e)) from e
        row = first_row(result.data)
        if row is None:
            raise AccountNotFoundError(account_id)
        return self._map_to_account(row)

    async def list_account_ids(self) -> list[str]:
        try:
            rows = self._log._fetch_all(
                lambda: self._db.table("accounts").select("account_id").order("account_id")
            )
        except (APIError, httpx.HTTPError) as e:
            raise LedgerUnavailableError(reason=str(e)) from e
        return [row["account_id"] for row in rows]

    async def credit(
        self,
        account_id: str,
        amount: int,
        kind: TransactionKind = TransactionKind.PURCHASE,
        external_ref: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Transaction:
        self._check_credit_args(amount, kind)
        return await self._apply(account_id, amount, kind, external_ref, description)

    async def debit(
        self,
        account_id: str,
        amount: int,
        kind: TransactionKind = TransactionKind.USAGE,
        external_ref: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Transaction:
        self._check_debit_args(amount, kind)
        return await self._apply(account_id, -amount, kind, external_ref, description)

    async def reverse(
        self,
        transaction_id: str,
        description: Optional[str] = None,
    ) -> Transaction:
        original, kind, amount = await self._plan_reversal(transaction_id)
        try:
            return await self._apply(
                original.account_id,
                amount,
                kind,
                original.external_ref,
                description or f"Reversal of {original.kind.value} {transaction_id}",
                reverses_transaction_id=transaction_id,
            )
        except LedgerUnavailableError as e:
            # Unique index on reverses_transaction_id lost a race
            if e.details.get("sqlstate") == UNIQUE_VIOLATION:
                raise AlreadyReversedError(transaction_id) from e
            raise

    async def _apply(
        self,
        account_id: str,
        amount: int,
        kind: TransactionKind,
        external_ref: Optional[str],
        description: Optional[str],
        reverses_transaction_id: Optional[str] = None,
    ) -> Transaction:
        row = self._call_rpc(
            "ledger_apply",
            {
                "p_account_id": account_id,
                "p_amount": amount,
                "p_kind": kind.value,
                "p_external_ref": external_ref,
                "p_description": description,
                "p_reverses_transaction_id": reverses_transaction_id,
                "p_lock_timeout_ms": self._lock_timeout_ms,
            },
            account_id=account_id,
            amount=amount,
        )
        transaction = self._log._map_to_transaction(row)
        logger.info(
            f"Ledger {kind.value} on {account_id}: {amount:+d} "
            f"({transaction.balance_before} -> {transaction.balance_after})"
        )
        return transaction

    def _call_rpc(
        self,
        name: str,
        params: dict[str, Any],
        account_id: str,
        amount: int = 0,
    ) -> dict[str, Any]:
        """
        Call a ledger function and translate its failures.

        Raises:
            InsufficientBalanceError, AccountNotFoundError, AccountInactiveError,
            InvalidAmountError: Business-rule failures raised by the function
            LockTimeoutError: If the row lock was not acquired in time
            LedgerUnavailableError: Anything else; the commit is unconfirmed
        """
        try:
            result = self._db.rpc(name, params).execute()
        except APIError as e:
            message = (e.message or "").strip()
            if message.startswith("INSUFFICIENT_BALANCE"):
                available = _parse_available(message)
                raise InsufficientBalanceError(account_id, -amount, available) from e
            if message.startswith("ACCOUNT_NOT_FOUND"):
                raise AccountNotFoundError(account_id) from e
            if message.startswith("ACCOUNT_INACTIVE"):
                raise AccountInactiveError(account_id) from e
            if message.startswith("REFUND_EXCEEDS_USAGE"):
                raise InvalidAmountError(amount, "Refund exceeds credits used") from e
            if e.code == LOCK_NOT_AVAILABLE:
                raise LockTimeoutError(account_id) from e
            logger.error(f"Ledger function {name} failed for {account_id}: {e.code} {message}")
            error = LedgerUnavailableError(reason=message)
            error.details["sqlstate"] = e.code
            raise error from e
        except httpx.HTTPError as e:
            logger.error(f"Ledger function {name} unreachable for {account_id}: {e}")
            raise LedgerUnavailableError(reason=str(e)) from e

        row = first_row(result.data)
        if row is None:
            raise LedgerUnavailableError(reason=f"{name} returned no row")
        return row

    def _map_to_account(self, row: dict[str, Any]) -> Account:
        """Map an accounts row to an Account model."""
        return Account(
            account_id=row["account_id"],
            balance=row["balance"],
            total_purchased=row["total_purchased"],
            total_used=row["total_used"],
            is_active=row.get("is_active", True),
            last_purchase_at=self._log._parse_optional_timestamp(row.get("last_purchase_at")),
            created_at=self._log._parse_timestamp(row["created_at"]),
            updated_at=self._log._parse_timestamp(row["updated_at"]),
        )


def _parse_available(message: str) -> int:
    """Read the balance from 'INSUFFICIENT_BALANCE:<available>'."""
    _, _, available = message.partition(":")
    try:
        return int(available)
    except ValueError:
        return 0
