"""
Billing policies.
"""

from typing import Iterable

from modules.dedup.fingerprint import normalize_term

from .models import OperationOutcome, OperationRequest


class DefaultBillingPolicy:
    """
    Multi-candidate searches are always billable. A deterministic lookup
    that finds nothing is free.

    Example:
        policy = DefaultBillingPolicy(deterministic_kinds=["exact"])
        policy.is_billable(OperationRequest(operation_kind="exact", query="x"),
                           OperationOutcome(result_count=0))  # False
    """

    def __init__(self, deterministic_kinds: Iterable[str] = ("exact",)):
        self._deterministic_kinds = frozenset(normalize_term(k) for k in deterministic_kinds)

    def may_be_free(self, request: OperationRequest) -> bool:
        return normalize_term(request.operation_kind) in self._deterministic_kinds

    def is_billable(self, request: OperationRequest, outcome: OperationOutcome) -> bool:
        deterministic = outcome.deterministic or self.may_be_free(request)
        return not (deterministic and outcome.result_count == 0)


class NoChargePolicy:
    """Everything is free. Used when billing is disabled."""

    def may_be_free(self, request: OperationRequest) -> bool:
        return True

    def is_billable(self, request: OperationRequest, outcome: OperationOutcome) -> bool:
        return False
