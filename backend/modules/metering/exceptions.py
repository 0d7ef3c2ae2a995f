"""
Metering module exceptions.
"""

from typing import Any, Optional

from shared.exceptions import CreditMeterError, ExternalServiceError


class MeteringError(CreditMeterError):
    """Base exception for metering errors."""

    pass


class InsufficientCreditsError(MeteringError):
    """
    Raised when a billable operation cannot be paid for.

    Retryable after a top-up. Never recorded as a transaction. When the
    charge lost a race after the operation already ran, the result may be
    handed back unbilled in ``unbilled_result``.
    """

    def __init__(
        self,
        account_id: str,
        required: int,
        available: int,
        unbilled_result: Optional[Any] = None,
    ):
        details: dict[str, Any] = {
            "account_id": account_id,
            "required": required,
            "available": available,
        }
        if unbilled_result is not None:
            details["unbilled_result"] = unbilled_result
        super().__init__(
            f"Insufficient credits. Required: {required}, available: {available}",
            code="INSUFFICIENT_CREDITS",
            details=details,
        )
        self.account_id = account_id
        self.required = required
        self.available = available
        self.unbilled_result = unbilled_result


class ExternalOperationError(ExternalServiceError):
    """Raised when the operation executor fails. Never billed."""

    retryable = True

    def __init__(self, operation_kind: str, reason: str):
        super().__init__(
            f"Operation {operation_kind} failed: {reason}",
            service="operation_executor",
            code="EXTERNAL_OPERATION_FAILED",
            details={"operation_kind": operation_kind, "reason": reason},
        )
        self.operation_kind = operation_kind


class OperationThrottledError(MeteringError):
    """Raised when the same operation is repeated inside the throttle window."""

    retryable = True

    def __init__(self, retry_after: int):
        super().__init__(
            f"Operation repeated too quickly; retry in {retry_after}s",
            code="OPERATION_THROTTLED",
            details={"retry_after": retry_after},
        )
        self.retry_after = retry_after


class ExecutorNotConfiguredError(MeteringError):
    """Raised when no operation executor has been registered."""

    retryable = True

    def __init__(self):
        super().__init__(
            "No operation executor is configured",
            code="EXECUTOR_NOT_CONFIGURED",
        )
