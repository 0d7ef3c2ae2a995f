"""
Metering module.

Runs billable operations against an account's credit balance: checks the
dedup caches, checks the balance, calls the operation executor, decides
billability and records exactly one ledger transaction per request.

Public API:
- IUsageMeter, IOperationExecutor, IBillingPolicy: Interfaces
- UsageMeter: The meter
- DefaultBillingPolicy, NoChargePolicy: Billing policies
- Models: OperationRequest, OperationOutcome, MeterResult, MeterState
- Exceptions: InsufficientCreditsError, ExternalOperationError, OperationThrottledError
"""

from .interfaces import IBillingPolicy, IOperationExecutor, IUsageMeter
from .models import MeterResult, MeterState, OperationOutcome, OperationRequest
from .exceptions import (
    MeteringError,
    InsufficientCreditsError,
    ExternalOperationError,
    OperationThrottledError,
    ExecutorNotConfiguredError,
)
from .policy import DefaultBillingPolicy, NoChargePolicy
from .service import UsageMeter

__all__ = [
    "IBillingPolicy",
    "IOperationExecutor",
    "IUsageMeter",
    "MeterResult",
    "MeterState",
    "OperationOutcome",
    "OperationRequest",
    "MeteringError",
    "InsufficientCreditsError",
    "ExternalOperationError",
    "OperationThrottledError",
    "ExecutorNotConfiguredError",
    "DefaultBillingPolicy",
    "NoChargePolicy",
    "UsageMeter",
]
