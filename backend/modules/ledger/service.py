"""
Ledger service implementation.

Provides the in-memory TransactionLog and AccountLedger (for tests and
single-process deployments) plus the shared validation and summary logic
reused by the Supabase-backed ledger in repository.py.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Iterable, Optional

from dateutil.relativedelta import relativedelta

from shared.clock import Clock, start_of_month, utc_now
from shared.locks import KeyedLock

from .interfaces import ITransactionLog
from .models import (
    Account,
    CREDIT_KINDS,
    CreditSummary,
    DEBIT_KINDS,
    Transaction,
    TransactionKind,
)
from .exceptions import (
    AccountInactiveError,
    AccountNotFoundError,
    AlreadyReversedError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidTransactionKindError,
    LockTimeoutError,
    TransactionNotFoundError,
    TransactionNotReversibleError,
)

logger = logging.getLogger(__name__)


def apply_to_totals(
    account: Account,
    amount: int,
    kind: TransactionKind,
) -> tuple[int, int]:
    """
    New (total_purchased, total_used) after applying ``amount``.

    Positive amounts add to total_purchased, except REFUND which gives
    back usage. Negative amounts add to total_used. Either way
    ``balance == total_purchased - total_used`` is preserved.
    """
    purchased, used = account.total_purchased, account.total_used
    if amount > 0:
        if kind == TransactionKind.REFUND:
            used -= amount
        else:
            purchased += amount
    elif amount < 0:
        used += -amount
    return purchased, used


class InMemoryTransactionLog:
    """
    Transaction log held in process memory.

    For testing and development. Use SupabaseTransactionLog for production.
    """

    def __init__(self) -> None:
        self._by_account: dict[str, list[Transaction]] = {}
        self._by_id: dict[str, Transaction] = {}
        self._reversals: dict[str, Transaction] = {}
        self._next_sequence = 1
        self._lock = asyncio.Lock()

    async def append(self, transaction: Transaction) -> Transaction:
        """Append a transaction and assign its sequence number."""
        async with self._lock:
            stored = transaction.model_copy(update={"sequence": self._next_sequence})
            self._next_sequence += 1
            self._by_account.setdefault(stored.account_id, []).append(stored)
            self._by_id[stored.transaction_id] = stored
            if stored.reverses_transaction_id:
                self._reversals[stored.reverses_transaction_id] = stored
            return stored

    async def get(self, transaction_id: str) -> Optional[Transaction]:
        return self._by_id.get(transaction_id)

    async def list_by_account(
        self,
        account_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
        newest_first: bool = False,
    ) -> list[Transaction]:
        transactions = self._by_account.get(account_id, [])
        if newest_first:
            transactions = transactions[::-1]
        end = None if limit is None else offset + limit
        return list(transactions[offset:end])

    async def count_by_account(self, account_id: str) -> int:
        return len(self._by_account.get(account_id, []))

    async def sum_since(
        self,
        account_id: str,
        since: datetime,
        kinds: Optional[Iterable[TransactionKind]] = None,
    ) -> int:
        wanted = set(kinds) if kinds is not None else None
        return sum(
            tx.amount
            for tx in self._by_account.get(account_id, [])
            if tx.created_at >= since and (wanted is None or tx.kind in wanted)
        )

    async def find_reversal(self, transaction_id: str) -> Optional[Transaction]:
        return self._reversals.get(transaction_id)


class BaseAccountLedger:
    """
    Validation, reversal planning and read-side helpers shared by the
    in-memory and Supabase ledgers.

    Subclasses implement get_account, ensure_account, deactivate,
    list_account_ids, credit, debit and reverse.
    """

    def __init__(
        self,
        log: ITransactionLog,
        low_balance_threshold: int = 10,
        clock: Clock = utc_now,
    ) -> None:
        self._log = log
        self._low_balance_threshold = low_balance_threshold
        self._clock = clock

    @property
    def transaction_log(self) -> ITransactionLog:
        return self._log

    async def get_account(self, account_id: str) -> Account:
        raise NotImplementedError

    async def get_balance(self, account_id: str) -> int:
        """Read the current balance."""
        account = await self.get_account(account_id)
        return account.balance

    async def list_transactions(
        self,
        account_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        """An account's transactions, most recent first."""
        return await self._log.list_by_account(
            account_id, limit=limit, offset=offset, newest_first=True
        )

    def get_current_period(self) -> tuple[datetime, datetime]:
        """
        Get the current reporting period (calendar month).

        Returns:
            Tuple of (period_start, period_end) datetimes
        """
        period_start = start_of_month(self._clock())
        return period_start, period_start + relativedelta(months=1)

    async def get_summary(self, account_id: str) -> CreditSummary:
        """Credit overview for dashboards."""
        account = await self.get_account(account_id)
        period_start, period_end = self.get_current_period()
        used = await self._log.sum_since(
            account_id, period_start, kinds=[TransactionKind.USAGE]
        )
        recent = await self.list_transactions(account_id, limit=10)

        return CreditSummary(
            account_id=account_id,
            balance=account.balance,
            total_purchased=account.total_purchased,
            total_used=account.total_used,
            last_purchase_at=account.last_purchase_at,
            needs_low_balance_alert=0 < account.balance < self._low_balance_threshold,
            used_this_period=-used,
            period_start=period_start,
            period_end=period_end,
            recent_transactions=recent,
        )

    @staticmethod
    def _check_credit_args(amount: int, kind: TransactionKind) -> None:
        if kind not in CREDIT_KINDS:
            raise InvalidTransactionKindError(kind.value, "credit")
        if amount <= 0:
            raise InvalidAmountError(amount, "Credit amount must be positive")

    @staticmethod
    def _check_debit_args(amount: int, kind: TransactionKind) -> None:
        if kind not in DEBIT_KINDS:
            raise InvalidTransactionKindError(kind.value, "debit")
        if amount < 0:
            raise InvalidAmountError(amount, "Debit amount cannot be negative")
        if kind == TransactionKind.FREE_USAGE and amount != 0:
            raise InvalidAmountError(amount, "FREE_USAGE debits must be zero")
        if kind != TransactionKind.FREE_USAGE and amount == 0:
            raise InvalidAmountError(amount, f"{kind.value} debits must be positive")

    async def _plan_reversal(
        self,
        transaction_id: str,
    ) -> tuple[Transaction, TransactionKind, int]:
        """
        Work out how to reverse a transaction.

        Returns:
            (original, reversal kind, signed reversal amount)
        """
        original = await self._log.get(transaction_id)
        if original is None:
            raise TransactionNotFoundError(transaction_id)
        if original.amount == 0:
            raise TransactionNotReversibleError(transaction_id, "zero-amount transaction")
        if original.is_reversal:
            raise TransactionNotReversibleError(transaction_id, "transaction is itself a reversal")

        existing = await self._log.find_reversal(transaction_id)
        if existing is not None:
            raise AlreadyReversedError(transaction_id, existing.transaction_id)

        if original.amount < 0:
            # Debits are returned as a REFUND, except manual adjustments
            kind = (
                TransactionKind.ADJUSTMENT
                if original.kind == TransactionKind.ADJUSTMENT
                else TransactionKind.REFUND
            )
        else:
            kind = TransactionKind.ADJUSTMENT
        return original, kind, -original.amount


class AccountLedger(BaseAccountLedger):
    """
    Account ledger with in-memory storage.

    Every mutation holds the account's lock from the balance read to the
    log append, so concurrent debits on one account cannot overdraw it.
    Different accounts never contend.

    For testing and development. Use SupabaseAccountLedger for production.
    """

    def __init__(
        self,
        log: Optional[ITransactionLog] = None,
        lock_timeout: float = 5.0,
        low_balance_threshold: int = 10,
        clock: Clock = utc_now,
    ):
        super().__init__(
            log or InMemoryTransactionLog(),
            low_balance_threshold=low_balance_threshold,
            clock=clock,
        )
        self._accounts: dict[str, Account] = {}
        self._locks = KeyedLock(
            timeout=lock_timeout,
            on_timeout=lambda key: LockTimeoutError(str(key)),
        )

    async def get_account(self, account_id: str) -> Account:
        """Get an account."""
        account = self._accounts.get(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    async def ensure_account(self, account_id: str) -> Account:
        """Create a zero-balance account if missing."""
        account = self._accounts.get(account_id)
        if account is None:
            now = self._clock()
            account = Account(account_id=account_id, created_at=now, updated_at=now)
            self._accounts[account_id] = account
            logger.info(f"Provisioned credit account {account_id}")
        return account

    async def deactivate(self, account_id: str) -> Account:
        """Soft-deactivate an account."""
        async with self._locks.hold(account_id):
            account = await self.get_account(account_id)
            account = account.model_copy(
                update={"is_active": False, "updated_at": self._clock()}
            )
            self._accounts[account_id] = account
            return account

    async def list_account_ids(self) -> list[str]:
        return list(self._accounts)

    async def credit(
        self,
        account_id: str,
        amount: int,
        kind: TransactionKind = TransactionKind.PURCHASE,
        external_ref: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Transaction:
        """Atomically increase a balance and log it."""
        self._check_credit_args(amount, kind)
        async with self._locks.hold(account_id):
            account = await self.get_account(account_id)
            if kind == TransactionKind.REFUND and amount > account.total_used:
                raise InvalidAmountError(amount, "Refund exceeds credits used")
            return await self._commit(account, amount, kind, external_ref, description)

    async def debit(
        self,
        account_id: str,
        amount: int,
        kind: TransactionKind = TransactionKind.USAGE,
        external_ref: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Transaction:
        """Atomically decrease a balance and log it."""
        self._check_debit_args(amount, kind)
        async with self._locks.hold(account_id):
            account = await self.get_account(account_id)
            if amount > 0:
                if not account.is_active:
                    raise AccountInactiveError(account_id)
                if amount > account.balance:
                    raise InsufficientBalanceError(account_id, amount, account.balance)
            return await self._commit(account, -amount, kind, external_ref, description)

    async def reverse(
        self,
        transaction_id: str,
        description: Optional[str] = None,
    ) -> Transaction:
        """Append the inverse of a transaction."""
        original = await self._log.get(transaction_id)
        if original is None:
            raise TransactionNotFoundError(transaction_id)

        async with self._locks.hold(original.account_id):
            # Re-plan under the lock so two reversals cannot both pass the check
            original, kind, amount = await self._plan_reversal(transaction_id)
            account = await self.get_account(original.account_id)
            if amount < 0 and -amount > account.balance:
                raise InsufficientBalanceError(account.account_id, -amount, account.balance)
            return await self._commit(
                account,
                amount,
                kind,
                external_ref=original.external_ref,
                description=description or f"Reversal of {original.kind.value} {transaction_id}",
                reverses_transaction_id=transaction_id,
            )

    async def _commit(
        self,
        account: Account,
        amount: int,
        kind: TransactionKind,
        external_ref: Optional[str],
        description: Optional[str],
        reverses_transaction_id: Optional[str] = None,
    ) -> Transaction:
        """
        Append the transaction, then swap in the updated account.

        Must be called with the account lock held. The only suspension
        point is the append; the account swap after it is synchronous, so
        a cancelled caller leaves either both changes or neither.
        """
        now = self._clock()
        purchased, used = apply_to_totals(account, amount, kind)
        transaction = Transaction(
            transaction_id=str(uuid.uuid4()),
            account_id=account.account_id,
            kind=kind,
            amount=amount,
            balance_before=account.balance,
            balance_after=account.balance + amount,
            external_ref=external_ref,
            description=description,
            reverses_transaction_id=reverses_transaction_id,
            created_at=now,
        )
        updated = account.model_copy(update={
            "balance": transaction.balance_after,
            "total_purchased": purchased,
            "total_used": used,
            "updated_at": now,
            "last_purchase_at": now if kind == TransactionKind.PURCHASE else account.last_purchase_at,
        })

        stored = await self._log.append(transaction)
        self._accounts[account.account_id] = updated

        logger.info(
            f"Ledger {kind.value} on {account.account_id}: {amount:+d} "
            f"({transaction.balance_before} -> {transaction.balance_after})"
        )
        return stored

