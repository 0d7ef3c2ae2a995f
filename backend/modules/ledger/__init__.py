"""
Ledger module.

Account balances and the append-only transaction log they are derived
from. Every balance change, including zero-amount free usage, goes
through IAccountLedger.credit / debit / reverse.

Public API:
- IAccountLedger, ITransactionLog: Interfaces for ledger storage
- AccountLedger, InMemoryTransactionLog: In-memory implementations
- SupabaseAccountLedger, SupabaseTransactionLog: Postgres implementations
- LedgerReconciler: Invariant checks over accounts and their logs
- Models: Account, Transaction, TransactionKind, CreditSummary
- Exceptions: LedgerError, InsufficientBalanceError, LedgerUnavailableError, etc.
"""

from .interfaces import IAccountLedger, ITransactionLog
from .models import (
    Account,
    AdjustmentRequest,
    CreditSummary,
    ReconciliationReport,
    Transaction,
    TransactionKind,
    TransactionListResponse,
)
from .exceptions import (
    LedgerError,
    AccountNotFoundError,
    AccountInactiveError,
    TransactionNotFoundError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidTransactionKindError,
    TransactionNotReversibleError,
    AlreadyReversedError,
    LedgerUnavailableError,
    LockTimeoutError,
    ConsistencyViolationError,
)
from .service import AccountLedger, InMemoryTransactionLog
from .repository import SupabaseAccountLedger, SupabaseTransactionLog
from .reconciliation import LedgerReconciler

__all__ = [
    # Interfaces
    "IAccountLedger",
    "ITransactionLog",
    # Models
    "Account",
    "AdjustmentRequest",
    "CreditSummary",
    "ReconciliationReport",
    "Transaction",
    "TransactionKind",
    "TransactionListResponse",
    # Exceptions
    "LedgerError",
    "AccountNotFoundError",
    "AccountInactiveError",
    "TransactionNotFoundError",
    "InsufficientBalanceError",
    "InvalidAmountError",
    "InvalidTransactionKindError",
    "TransactionNotReversibleError",
    "AlreadyReversedError",
    "LedgerUnavailableError",
    "LockTimeoutError",
    "ConsistencyViolationError",
    # Implementations
    "AccountLedger",
    "InMemoryTransactionLog",
    "SupabaseAccountLedger",
    "SupabaseTransactionLog",
    "LedgerReconciler",
]
