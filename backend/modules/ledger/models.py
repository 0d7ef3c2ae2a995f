"""
Ledger module data models.

Credits are whole units (one billable operation costs one credit by
default). Every balance change, including free usage, is recorded as an
immutable Transaction.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, computed_field, model_validator


class TransactionKind(str, Enum):
    """Types of credit transactions."""

    PURCHASE = "PURCHASE"        # Credits bought through the payment processor
    USAGE = "USAGE"              # Billable operation
    FREE_USAGE = "FREE_USAGE"    # Free or duplicate operation, amount 0
    REFUND = "REFUND"            # Credits returned for a reversed usage
    ADJUSTMENT = "ADJUSTMENT"    # Manual correction or reversed purchase


CREDIT_KINDS = frozenset({
    TransactionKind.PURCHASE,
    TransactionKind.ADJUSTMENT,
    TransactionKind.REFUND,
})
DEBIT_KINDS = frozenset({
    TransactionKind.USAGE,
    TransactionKind.FREE_USAGE,
    TransactionKind.ADJUSTMENT,
})


class Account(BaseModel):
    """
    A billing entity's credit balance.

    ``balance == total_purchased - total_used`` holds after every
    committed transaction. It is enforced by the ledger when mutating and
    checked by the reconciler, not here, so a drifted row can still be
    loaded and reported.
    """

    account_id: str = Field(..., description="Account ID")
    balance: int = Field(default=0, ge=0, description="Current credit balance")
    total_purchased: int = Field(default=0, ge=0, description="Lifetime credits added")
    total_used: int = Field(default=0, ge=0, description="Lifetime credits consumed")
    is_active: bool = Field(default=True, description="False once soft-deactivated")
    last_purchase_at: Optional[datetime] = Field(None, description="Most recent purchase")
    created_at: datetime = Field(..., description="Account creation time")
    updated_at: datetime = Field(..., description="Last balance change")

    model_config = {"frozen": True}

    @property
    def recomputed_balance(self) -> int:
        return self.total_purchased - self.total_used


class Transaction(BaseModel):
    """
    A credit transaction record.

    Transactions are append-only. The ``kind`` determines which amounts
    and optional fields are valid:

    - PURCHASE: amount > 0, external_ref (payment id) required
    - USAGE: amount < 0
    - FREE_USAGE: amount == 0
    - REFUND: amount > 0
    - ADJUSTMENT: amount != 0
    - ``reverses_transaction_id`` only on REFUND / ADJUSTMENT
    """

    transaction_id: str = Field(..., description="Transaction ID (UUID)")
    account_id: str = Field(..., description="Account ID")
    kind: TransactionKind = Field(..., description="Transaction kind")
    amount: int = Field(
        ...,
        description="Signed credit change (positive credit, negative debit, zero for free usage)",
    )
    balance_before: int = Field(..., ge=0, description="Balance before transaction")
    balance_after: int = Field(..., ge=0, description="Balance after transaction")
    external_ref: Optional[str] = Field(
        None,
        description="Payment id or operation fingerprint",
    )
    description: Optional[str] = Field(None, description="Human-readable reason")
    reverses_transaction_id: Optional[str] = Field(
        None,
        description="Transaction this one reverses",
    )
    sequence: Optional[int] = Field(
        None,
        description="Position in the log (assigned on append)",
    )
    created_at: datetime = Field(..., description="Transaction timestamp")

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_kind_rules(self) -> "Transaction":
        if self.balance_after != self.balance_before + self.amount:
            raise ValueError("balance_after must equal balance_before + amount")

        kind = self.kind
        if kind == TransactionKind.PURCHASE:
            if self.amount <= 0:
                raise ValueError("PURCHASE amount must be positive")
            if not self.external_ref:
                raise ValueError("PURCHASE requires an external payment reference")
        elif kind == TransactionKind.USAGE and self.amount >= 0:
            raise ValueError("USAGE amount must be negative")
        elif kind == TransactionKind.FREE_USAGE and self.amount != 0:
            raise ValueError("FREE_USAGE amount must be zero")
        elif kind == TransactionKind.REFUND and self.amount <= 0:
            raise ValueError("REFUND amount must be positive")
        elif kind == TransactionKind.ADJUSTMENT and self.amount == 0:
            raise ValueError("ADJUSTMENT amount must be non-zero")

        if self.reverses_transaction_id and kind not in (
            TransactionKind.REFUND,
            TransactionKind.ADJUSTMENT,
        ):
            raise ValueError(f"{kind.value} transactions cannot reverse another transaction")
        return self

    @property
    def is_reversal(self) -> bool:
        return self.reverses_transaction_id is not None


class CreditSummary(BaseModel):
    """Credit overview for dashboards."""

    account_id: str = Field(..., description="Account ID")
    balance: int = Field(..., description="Current balance")
    total_purchased: int = Field(..., description="Lifetime credits added")
    total_used: int = Field(..., description="Lifetime credits consumed")
    last_purchase_at: Optional[datetime] = Field(None, description="Most recent purchase")
    needs_low_balance_alert: bool = Field(
        default=False,
        description="Balance is positive but below the alert threshold",
    )
    used_this_period: int = Field(default=0, description="Credits used this calendar month")
    period_start: datetime = Field(..., description="Start of the current period")
    period_end: datetime = Field(..., description="End of the current period")
    recent_transactions: list[Transaction] = Field(
        default_factory=list,
        description="Most recent transactions, newest first",
    )


class TransactionListResponse(BaseModel):
    """API response for transaction history."""

    transactions: list[Transaction] = Field(..., description="Transaction list, newest first")
    total: int = Field(..., description="Total transaction count")
    limit: int = Field(..., description="Page size")
    offset: int = Field(..., description="Items skipped")
    has_more: bool = Field(..., description="Whether more transactions exist")


class AdjustmentRequest(BaseModel):
    """Admin request to adjust an account balance."""

    account_id: str = Field(..., min_length=1, description="Account to adjust")
    amount: int = Field(..., description="Signed, non-zero credit change")
    description: str = Field(..., min_length=1, description="Reason for the adjustment")


class ReconciliationReport(BaseModel):
    """Result of checking one account's ledger invariants."""

    account_id: str = Field(..., description="Account ID")
    balance: int = Field(..., description="Stored balance")
    recomputed_balance: int = Field(..., description="total_purchased - total_used")
    transaction_count: int = Field(..., description="Transactions inspected")
    violations: list[str] = Field(default_factory=list, description="Broken invariants")
    checked_at: datetime = Field(..., description="When the check ran")

    @computed_field
    @property
    def consistent(self) -> bool:
        return not self.violations
