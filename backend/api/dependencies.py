"""
Dependency injection setup for FastAPI.

This module provides the "container" that wires together all module
implementations. Each module exposes its service through an interface,
and this file creates the concrete implementations for the configured
storage backend (in-memory or Supabase).
"""

from typing import TYPE_CHECKING, Optional

from shared.config import Settings, get_settings

# Type checking imports for interfaces (avoids circular imports)
if TYPE_CHECKING:
    from modules.dedup.interfaces import IDedupCache
    from modules.ledger.interfaces import IAccountLedger
    from modules.ledger.reconciliation import LedgerReconciler
    from modules.metering.interfaces import IBillingPolicy, IOperationExecutor, IUsageMeter
    from modules.payments.interfaces import IPaymentApplier


class ServiceContainer:
    """
    Container for all service instances.

    Services are created lazily on first access and cached as singletons
    within the container. Use reset() to clear all cached services for
    testing.

    The operation executor is supplied by the host application through
    configure_executor(); until then the usage meter is unavailable.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings
        self._ledger: "IAccountLedger | None" = None
        self._no_recharge_cache: "IDedupCache | None" = None
        self._throttle_cache: "IDedupCache | None" = None
        self._payments: "IPaymentApplier | None" = None
        self._reconciler: "LedgerReconciler | None" = None
        self._meter: "IUsageMeter | None" = None
        self._executor: "IOperationExecutor | None" = None

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    @property
    def uses_supabase(self) -> bool:
        return self.settings.storage_backend == "supabase"

    @property
    def has_executor(self) -> bool:
        return self._executor is not None

    @property
    def ledger(self) -> "IAccountLedger":
        """Get the account ledger instance."""
        if self._ledger is None:
            settings = self.settings
            if self.uses_supabase:
                from modules.ledger.repository import SupabaseAccountLedger
                from shared.database import get_supabase_client
                self._ledger = SupabaseAccountLedger(
                    get_supabase_client(),
                    lock_timeout=settings.ledger_lock_timeout_seconds,
                    low_balance_threshold=settings.low_balance_threshold,
                )
            else:
                from modules.ledger.service import AccountLedger
                self._ledger = AccountLedger(
                    lock_timeout=settings.ledger_lock_timeout_seconds,
                    low_balance_threshold=settings.low_balance_threshold,
                )
        return self._ledger

    @property
    def no_recharge_cache(self) -> "IDedupCache":
        """Get the no-recharge cache (decides billing of repeats)."""
        if self._no_recharge_cache is None:
            from modules.dedup.models import CacheNamespace
            self._no_recharge_cache = self._create_cache(CacheNamespace.NO_RECHARGE)
        return self._no_recharge_cache

    @property
    def throttle_cache(self) -> "IDedupCache":
        """Get the throttle cache (advisory cooldown)."""
        if self._throttle_cache is None:
            from modules.dedup.models import CacheNamespace
            self._throttle_cache = self._create_cache(CacheNamespace.THROTTLE)
        return self._throttle_cache

    @property
    def caches(self) -> "list[IDedupCache]":
        """Both dedup namespaces, no-recharge first."""
        return [self.no_recharge_cache, self.throttle_cache]

    @property
    def payments(self) -> "IPaymentApplier":
        """Get the payment applier instance."""
        if self._payments is None:
            lock_timeout = self.settings.ledger_lock_timeout_seconds
            if self.uses_supabase:
                from modules.payments.repository import SupabasePaymentApplier
                from shared.database import get_supabase_client
                self._payments = SupabasePaymentApplier(
                    get_supabase_client(), lock_timeout=lock_timeout
                )
            else:
                from modules.payments.service import PaymentApplier
                self._payments = PaymentApplier(self.ledger, lock_timeout=lock_timeout)
        return self._payments

    @property
    def reconciler(self) -> "LedgerReconciler":
        """Get the ledger reconciler instance."""
        if self._reconciler is None:
            from modules.ledger.reconciliation import LedgerReconciler
            self._reconciler = LedgerReconciler(self.ledger)
        return self._reconciler

    @property
    def billing_policy(self) -> "IBillingPolicy":
        from modules.metering.policy import DefaultBillingPolicy, NoChargePolicy
        if not self.settings.enable_billing:
            return NoChargePolicy()
        return DefaultBillingPolicy(self.settings.deterministic_operation_kinds)

    @property
    def meter(self) -> "IUsageMeter":
        """
        Get the usage meter instance.

        Raises:
            ExecutorNotConfiguredError: If no operation executor was configured
        """
        if self._meter is None:
            from modules.metering.exceptions import ExecutorNotConfiguredError
            from modules.metering.service import UsageMeter
            if self._executor is None:
                raise ExecutorNotConfiguredError()
            settings = self.settings
            self._meter = UsageMeter(
                ledger=self.ledger,
                no_recharge_cache=self.no_recharge_cache,
                throttle_cache=self.throttle_cache,
                executor=self._executor,
                policy=self.billing_policy,
                cost=settings.usage_cost_credits,
                no_recharge_ttl_seconds=settings.no_recharge_ttl_seconds,
                throttle_ttl_seconds=settings.throttle_ttl_seconds,
                throttle_enforced=settings.throttle_enforced,
                return_unbilled_results=settings.return_unbilled_results,
            )
        return self._meter

    def configure_executor(self, executor: "IOperationExecutor") -> None:
        """Register the operation executor the usage meter calls."""
        self._executor = executor
        self._meter = None

    def _create_cache(self, namespace) -> "IDedupCache":
        if self.uses_supabase:
            from modules.dedup.repository import SupabaseDedupCache
            from shared.database import get_supabase_client
            return SupabaseDedupCache(get_supabase_client(), namespace)
        from modules.dedup.service import DedupCache
        return DedupCache(namespace)

    def reset(self) -> None:
        """
        Reset all cached services.

        This is primarily for testing - allows tests to get fresh
        service instances with different mock dependencies.
        """
        self._ledger = None
        self._no_recharge_cache = None
        self._throttle_cache = None
        self._payments = None
        self._reconciler = None
        self._meter = None
        self._executor = None


# Module-level container singleton
_container: ServiceContainer | None = None


def get_container() -> ServiceContainer:
    """Get the singleton service container."""
    global _container
    if _container is None:
        _container = ServiceContainer()
    return _container


def reset_container() -> None:
    """
    Reset the service container.

    This clears the cached container, so the next call to get_container()
    will create a fresh container with new service instances.

    Primarily used for testing.
    """
    global _container
    _container = None


# FastAPI dependency functions
# These are the functions that should be used in route Depends() calls


def get_account_ledger() -> "IAccountLedger":
    """FastAPI dependency for the account ledger."""
    return get_container().ledger


def get_payment_applier() -> "IPaymentApplier":
    """FastAPI dependency for the payment applier."""
    return get_container().payments


def get_usage_meter() -> "IUsageMeter":
    """FastAPI dependency for the usage meter."""
    return get_container().meter


def get_dedup_caches() -> "list[IDedupCache]":
    """FastAPI dependency for the dedup caches of both namespaces."""
    return get_container().caches


def get_ledger_reconciler() -> "LedgerReconciler":
    """FastAPI dependency for the ledger reconciler."""
    return get_container().reconciler
