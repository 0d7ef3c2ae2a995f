"""
Ledger module exceptions.

Business-rule failures (insufficient balance, invalid amounts) are kept
distinct from infrastructure failures (LedgerUnavailableError and its
lock-timeout subclass), which are retryable and must never be read as
"the charge went through".
"""

from typing import Optional

from shared.exceptions import CreditMeterError, NotFoundError, ValidationError


class LedgerError(CreditMeterError):
    """Base exception for ledger errors."""

    pass


class AccountNotFoundError(NotFoundError):
    """Raised when an account does not exist."""

    def __init__(self, account_id: str):
        super().__init__(
            f"Account not found: {account_id}",
            code="ACCOUNT_NOT_FOUND",
            details={"account_id": account_id},
        )


class AccountInactiveError(LedgerError):
    """Raised when debiting a soft-deactivated account."""

    def __init__(self, account_id: str):
        super().__init__(
            f"Account is deactivated: {account_id}",
            code="ACCOUNT_INACTIVE",
            details={"account_id": account_id},
        )


class TransactionNotFoundError(NotFoundError):
    """Raised when a transaction does not exist."""

    def __init__(self, transaction_id: str):
        super().__init__(
            f"Transaction not found: {transaction_id}",
            code="TRANSACTION_NOT_FOUND",
            details={"transaction_id": transaction_id},
        )


class InsufficientBalanceError(LedgerError):
    """
    Raised when a debit would take the balance below zero.

    The check and the debit happen under the same per-account lock, so
    this is authoritative for the moment of the debit.
    """

    def __init__(self, account_id: str, required: int, available: int):
        super().__init__(
            f"Insufficient balance. Required: {required}, available: {available}",
            code="INSUFFICIENT_BALANCE",
            details={
                "account_id": account_id,
                "required": required,
                "available": available,
                "shortfall": required - available,
            },
        )
        self.account_id = account_id
        self.required = required
        self.available = available


class InvalidAmountError(ValidationError):
    """Raised when a credit amount is invalid."""

    def __init__(self, amount: int, reason: str):
        super().__init__(
            f"Invalid amount: {amount}. {reason}",
            code="INVALID_AMOUNT",
            details={"amount": amount, "reason": reason},
        )


class InvalidTransactionKindError(ValidationError):
    """Raised when a kind is used with the wrong ledger operation."""

    def __init__(self, kind: str, operation: str):
        super().__init__(
            f"Transaction kind {kind} is not valid for {operation}",
            code="INVALID_TRANSACTION_KIND",
            details={"kind": kind, "operation": operation},
        )


class TransactionNotReversibleError(LedgerError):
    """Raised when reversing a zero-amount transaction or a reversal."""

    def __init__(self, transaction_id: str, reason: str):
        super().__init__(
            f"Transaction {transaction_id} cannot be reversed: {reason}",
            code="TRANSACTION_NOT_REVERSIBLE",
            details={"transaction_id": transaction_id, "reason": reason},
        )


class AlreadyReversedError(LedgerError):
    """Raised when a transaction has already been reversed."""

    def __init__(self, transaction_id: str, reversal_id: Optional[str] = None):
        details = {"transaction_id": transaction_id}
        if reversal_id:
            details["reversal_id"] = reversal_id
        super().__init__(
            f"Transaction already reversed: {transaction_id}",
            code="ALREADY_REVERSED",
            details=details,
        )


class LedgerUnavailableError(LedgerError):
    """
    Raised when the ledger store cannot confirm a read or commit.

    Fatal for the current request; safe to retry.
    """

    retryable = True

    def __init__(self, message: str = "Ledger storage unavailable", reason: Optional[str] = None):
        super().__init__(
            message,
            code="LEDGER_UNAVAILABLE",
            details={"reason": reason} if reason else {},
        )


class LockTimeoutError(LedgerUnavailableError):
    """Raised when the per-account lock could not be acquired in time."""

    def __init__(self, key: str):
        super().__init__(f"Timed out waiting for ledger lock on {key}")
        self.code = "LEDGER_LOCK_TIMEOUT"
        self.details["key"] = key


class ConsistencyViolationError(LedgerError):
    """
    Raised when reconciliation finds a broken ledger invariant.

    Never auto-corrected: an operator has to inspect the account.
    """

    def __init__(self, account_id: str, violations: list[str]):
        super().__init__(
            f"Ledger consistency violation for account {account_id}: {'; '.join(violations)}",
            code="CONSISTENCY_VIOLATION",
            details={"account_id": account_id, "violations": violations},
        )
        self.account_id = account_id
        self.violations = violations
