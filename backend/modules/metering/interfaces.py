"""
Metering module interfaces.

IOperationExecutor and IBillingPolicy are supplied by the host
application; IUsageMeter is what routes and other callers depend on.
"""

from typing import Protocol, runtime_checkable

from .models import MeterResult, OperationOutcome, OperationRequest


@runtime_checkable
class IOperationExecutor(Protocol):
    """The external, pay-per-result operation being metered."""

    async def execute(self, request: OperationRequest) -> OperationOutcome:
        """
        Run the operation.

        Any exception is treated as a collaborator failure and is never billed.
        """
        ...


@runtime_checkable
class IBillingPolicy(Protocol):
    """Decides whether an outcome is chargeable. Pure functions of their inputs."""

    def may_be_free(self, request: OperationRequest) -> bool:
        """Whether this kind of request can come out free (skip the balance pre-check)."""
        ...

    def is_billable(self, request: OperationRequest, outcome: OperationOutcome) -> bool:
        """Whether this outcome is charged."""
        ...


@runtime_checkable
class IUsageMeter(Protocol):
    """Meters operations against an account's credit balance."""

    async def perform(self, account_id: str, request: OperationRequest) -> MeterResult:
        """
        Run an operation and record exactly one transaction for it.

        Args:
            account_id: Account to charge
            request: The operation

        Returns:
            MeterResult with the result and the recorded transaction

        Raises:
            InsufficientCreditsError: Balance too low (before or, after a lost race, at the charge)
            ExternalOperationError: The executor failed; nothing was charged
            OperationThrottledError: Repeated inside the throttle window (when enforced)
            LedgerUnavailableError: The ledger could not confirm the transaction
        """
        ...
