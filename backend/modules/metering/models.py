"""
Metering module data models.

An OperationRequest goes in, the executor produces an OperationOutcome,
and the caller gets a MeterResult describing what was returned and what
was charged.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from modules.ledger.models import Transaction


class MeterState(str, Enum):
    """Per-request states of the usage meter."""

    CHECKING_CACHE = "checking_cache"
    CHECKING_BALANCE = "checking_balance"
    EXECUTING = "executing"
    CLASSIFYING = "classifying"
    CHARGING = "charging"
    DONE = "done"
    ABORTED = "aborted"


class OperationRequest(BaseModel):
    """A request to run a billable operation."""

    operation_kind: str = Field(..., min_length=1, description="Operation kind (e.g. smart, exact)")
    query: str = Field(..., min_length=1, max_length=500, description="Identifying query text")
    params: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional identifying fields, included in the fingerprint",
    )

    model_config = {"frozen": True}

    def fingerprint_fields(self) -> dict[str, Any]:
        return {"query": self.query, **self.params}


class OperationOutcome(BaseModel):
    """What the operation executor returned."""

    result: Any = Field(None, description="Opaque result payload")
    result_count: int = Field(default=0, ge=0, description="Number of matches")
    deterministic: bool = Field(
        default=False,
        description="Single-match lookup (as opposed to a multi-candidate search)",
    )


class MeterResult(BaseModel):
    """Outcome of UsageMeter.perform."""

    account_id: str = Field(..., description="Account charged")
    fingerprint: str = Field(..., description="Operation fingerprint")
    result: Any = Field(None, description="Result payload")
    result_count: int = Field(default=0, description="Number of matches")
    billed: bool = Field(..., description="A USAGE debit was recorded")
    from_cache: bool = Field(default=False, description="Served from the no-recharge cache")
    transaction: Transaction = Field(..., description="Transaction recorded for this request")
    balance: int = Field(..., description="Balance after the request")
    cooldown_remaining: int = Field(
        default=0,
        description="Seconds before this request can be repeated without throttling",
    )
    state: MeterState = Field(default=MeterState.DONE)
