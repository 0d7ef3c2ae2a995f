"""
Ledger module interfaces.

Other modules depend on IAccountLedger and ITransactionLog, not on the
in-memory or Supabase implementations. The metering and payments modules
only ever change balances through IAccountLedger.
"""

from datetime import datetime
from typing import Iterable, Optional, Protocol, runtime_checkable

from .models import Account, CreditSummary, Transaction, TransactionKind


@runtime_checkable
class ITransactionLog(Protocol):
    """
    Append-only store of balance-affecting events.

    Each ``append`` call produces exactly one row; callers must not append
    the same logical event twice.
    """

    async def append(self, transaction: Transaction) -> Transaction:
        """
        Append a transaction.

        Returns:
            The stored transaction with its ``sequence`` assigned
        """
        ...

    async def get(self, transaction_id: str) -> Optional[Transaction]:
        """Get a transaction by ID, or None."""
        ...

    async def list_by_account(
        self,
        account_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
        newest_first: bool = False,
    ) -> list[Transaction]:
        """
        List an account's transactions.

        Args:
            account_id: Account ID
            limit: Maximum to return (None for all)
            offset: Number to skip
            newest_first: Reverse chronological order (for display)

        Returns:
            Transactions in append order unless ``newest_first``
        """
        ...

    async def count_by_account(self, account_id: str) -> int:
        """Number of transactions recorded for an account."""
        ...

    async def sum_since(
        self,
        account_id: str,
        since: datetime,
        kinds: Optional[Iterable[TransactionKind]] = None,
    ) -> int:
        """
        Sum of transaction amounts created at or after ``since``.

        Args:
            account_id: Account ID
            since: Inclusive lower bound on created_at
            kinds: Only include these kinds (all kinds if None)
        """
        ...

    async def find_reversal(self, transaction_id: str) -> Optional[Transaction]:
        """The transaction that reverses ``transaction_id``, if any."""
        ...


@runtime_checkable
class IAccountLedger(Protocol):
    """
    Current balance per account, kept consistent with the transaction log.

    ``credit``, ``debit`` and ``reverse`` are each one atomic unit
    covering the balance update and the log append, serialized per account.
    """

    @property
    def transaction_log(self) -> ITransactionLog:
        """The log this ledger appends to."""
        ...

    async def get_account(self, account_id: str) -> Account:
        """
        Get an account.

        Raises:
            AccountNotFoundError: If the account doesn't exist
        """
        ...

    async def get_balance(self, account_id: str) -> int:
        """
        Read the current balance.

        Raises:
            AccountNotFoundError: If the account doesn't exist
        """
        ...

    async def ensure_account(self, account_id: str) -> Account:
        """Create a zero-balance account if missing; return the account."""
        ...

    async def deactivate(self, account_id: str) -> Account:
        """Soft-deactivate an account (it is never deleted)."""
        ...

    async def list_account_ids(self) -> list[str]:
        """IDs of every account (for reconciliation)."""
        ...

    async def credit(
        self,
        account_id: str,
        amount: int,
        kind: TransactionKind = TransactionKind.PURCHASE,
        external_ref: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Transaction:
        """
        Atomically increase a balance and log it.

        Raises:
            InvalidAmountError: If amount <= 0
            InvalidTransactionKindError: If kind is not a credit kind
            AccountNotFoundError: If the account doesn't exist
            LedgerUnavailableError: If the commit cannot be confirmed
        """
        ...

    async def debit(
        self,
        account_id: str,
        amount: int,
        kind: TransactionKind = TransactionKind.USAGE,
        external_ref: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Transaction:
        """
        Atomically decrease a balance and log it.

        ``amount == 0`` (FREE_USAGE) only records the event and never
        fails for lack of balance.

        Raises:
            InsufficientBalanceError: If amount > balance at the moment of the debit
            InvalidAmountError: If amount < 0 or inconsistent with kind
            AccountNotFoundError: If the account doesn't exist
            LedgerUnavailableError: If the commit cannot be confirmed
        """
        ...

    async def reverse(
        self,
        transaction_id: str,
        description: Optional[str] = None,
    ) -> Transaction:
        """
        Append the inverse of a transaction.

        USAGE and positive ADJUSTMENT/REFUND/PURCHASE are reversed with a
        REFUND (credit back) or ADJUSTMENT (debit) respectively; the
        original row is never modified.

        Raises:
            TransactionNotFoundError: If the transaction doesn't exist
            TransactionNotReversibleError: For zero amounts or reversals
            AlreadyReversedError: If a reversal already exists
            InsufficientBalanceError: If reversing a credit would overdraw
        """
        ...

    async def list_transactions(
        self,
        account_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        """An account's transactions for display, newest first."""
        ...

    async def get_summary(self, account_id: str) -> CreditSummary:
        """Balance, lifetime totals, period usage and recent transactions."""
        ...
