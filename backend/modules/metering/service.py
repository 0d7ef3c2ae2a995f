"""
Usage meter.

Orchestrates one metered request:

    CHECKING_CACHE -> CHECKING_BALANCE -> EXECUTING -> CLASSIFYING -> CHARGING -> DONE

with ABORTED reachable from CHECKING_BALANCE (insufficient credits) and
EXECUTING (executor failure). Every request that reaches DONE records
exactly one transaction: USAGE when billed, FREE_USAGE (amount 0) for
free outcomes and cache hits.
"""

import asyncio
import logging
from typing import Optional

from modules.dedup.exceptions import DedupCacheError
from modules.dedup.fingerprint import compute_fingerprint
from modules.dedup.interfaces import IDedupCache
from modules.dedup.models import CacheEntry
from modules.ledger.exceptions import AccountInactiveError, InsufficientBalanceError
from modules.ledger.interfaces import IAccountLedger
from modules.ledger.models import TransactionKind

from .interfaces import IBillingPolicy, IOperationExecutor
from .models import MeterResult, MeterState, OperationOutcome, OperationRequest
from .exceptions import (
    ExternalOperationError,
    InsufficientCreditsError,
    OperationThrottledError,
)
from .policy import DefaultBillingPolicy

logger = logging.getLogger(__name__)


class UsageMeter:
    """
    Meters operations against the ledger.

    The no-recharge cache decides whether a repeat is billed; the throttle
    cache only reports a cooldown unless ``throttle_enforced`` is set.
    Cache failures are logged and never block or alter a charge.
    """

    def __init__(
        self,
        ledger: IAccountLedger,
        no_recharge_cache: IDedupCache,
        throttle_cache: IDedupCache,
        executor: IOperationExecutor,
        policy: Optional[IBillingPolicy] = None,
        cost: int = 1,
        no_recharge_ttl_seconds: int = 14 * 24 * 3600,
        throttle_ttl_seconds: int = 30,
        throttle_enforced: bool = False,
        return_unbilled_results: bool = True,
    ):
        self._ledger = ledger
        self._no_recharge = no_recharge_cache
        self._throttle = throttle_cache
        self._executor = executor
        self._policy = policy or DefaultBillingPolicy()
        self._cost = cost
        self._no_recharge_ttl = no_recharge_ttl_seconds
        self._throttle_ttl = throttle_ttl_seconds
        self._throttle_enforced = throttle_enforced
        self._return_unbilled = return_unbilled_results
        self._settling: set[asyncio.Task] = set()

    async def perform(self, account_id: str, request: OperationRequest) -> MeterResult:
        fingerprint = compute_fingerprint(
            account_id, request.operation_kind, request.fingerprint_fields()
        )

        self._transition(fingerprint, MeterState.CHECKING_CACHE)
        cooldown = await self._cooldown_remaining(account_id, fingerprint)
        if cooldown:
            if self._throttle_enforced:
                self._transition(fingerprint, MeterState.ABORTED)
                raise OperationThrottledError(cooldown)
            logger.debug(f"Meter {fingerprint[:12]} repeated with {cooldown}s cooldown left")

        cached = await self._cached(account_id, fingerprint)
        if cached is not None:
            return await self._serve_cached(account_id, request, fingerprint, cached)

        self._transition(fingerprint, MeterState.CHECKING_BALANCE)
        account = await self._ledger.get_account(account_id)
        may_be_free = self._policy.may_be_free(request)
        if not may_be_free:
            if not account.is_active:
                self._transition(fingerprint, MeterState.ABORTED)
                raise AccountInactiveError(account_id)
            if account.balance < self._cost:
                self._transition(fingerprint, MeterState.ABORTED)
                logger.info(
                    f"Rejected {request.operation_kind} for {account_id}: "
                    f"balance {account.balance} < {self._cost}"
                )
                raise InsufficientCreditsError(account_id, self._cost, account.balance)
        # Only a may-be-free request gets here short; billing it then is not a lost race
        known_short = account.balance < self._cost

        self._transition(fingerprint, MeterState.EXECUTING)
        try:
            outcome = await self._executor.execute(request)
        except Exception as e:
            self._transition(fingerprint, MeterState.ABORTED)
            logger.warning(f"Operation {request.operation_kind} failed for {account_id}: {e}")
            raise ExternalOperationError(request.operation_kind, str(e)) from e

        # The outcome is known: charging runs to completion even if the caller goes away
        task = asyncio.ensure_future(
            self._settle(account_id, request, fingerprint, outcome, known_short)
        )
        self._settling.add(task)
        task.add_done_callback(self._settled)
        return await asyncio.shield(task)

    async def wait_settled(self) -> None:
        """Wait for charges still running for cancelled requests."""
        if self._settling:
            await asyncio.gather(*self._settling, return_exceptions=True)

    def _settled(self, task: asyncio.Task) -> None:
        self._settling.discard(task)
        if task.cancelled():
            return
        # Marks the exception retrieved when the caller was cancelled
        error = task.exception()
        if error is not None:
            logger.debug(f"Settlement ended with {type(error).__name__}: {error}")

    async def _settle(
        self,
        account_id: str,
        request: OperationRequest,
        fingerprint: str,
        outcome: OperationOutcome,
        known_short: bool,
    ) -> MeterResult:
        self._transition(fingerprint, MeterState.CLASSIFYING)
        billable = self._policy.is_billable(request, outcome)

        self._transition(fingerprint, MeterState.CHARGING)
        if billable:
            try:
                transaction = await self._ledger.debit(
                    account_id,
                    self._cost,
                    kind=TransactionKind.USAGE,
                    external_ref=fingerprint,
                    description=f"{request.operation_kind} operation",
                )
            except InsufficientBalanceError as e:
                self._transition(fingerprint, MeterState.ABORTED)
                unbilled = None
                if self._return_unbilled and not known_short:
                    unbilled = outcome.result
                logger.warning(
                    f"Charge declined after {request.operation_kind} ran for {account_id} "
                    f"(balance {e.available}); result {'returned unbilled' if unbilled is not None else 'withheld'}"
                )
                raise InsufficientCreditsError(
                    account_id, self._cost, e.available, unbilled_result=unbilled
                ) from e
        else:
            transaction = await self._ledger.debit(
                account_id,
                0,
                kind=TransactionKind.FREE_USAGE,
                external_ref=fingerprint,
                description=f"{request.operation_kind} operation (free)",
            )

        await self._remember(account_id, fingerprint, outcome)
        self._transition(fingerprint, MeterState.DONE)
        return MeterResult(
            account_id=account_id,
            fingerprint=fingerprint,
            result=outcome.result,
            result_count=outcome.result_count,
            billed=billable,
            transaction=transaction,
            balance=transaction.balance_after,
            cooldown_remaining=self._throttle_ttl,
        )

    async def _serve_cached(
        self,
        account_id: str,
        request: OperationRequest,
        fingerprint: str,
        cached: CacheEntry,
    ) -> MeterResult:
        self._transition(fingerprint, MeterState.CHARGING)
        transaction = await self._ledger.debit(
            account_id,
            0,
            kind=TransactionKind.FREE_USAGE,
            external_ref=fingerprint,
            description=f"{request.operation_kind} operation (cached)",
        )
        await self._start_cooldown(account_id, fingerprint)
        self._transition(fingerprint, MeterState.DONE)
        return MeterResult(
            account_id=account_id,
            fingerprint=fingerprint,
            result=cached.result,
            result_count=cached.result_count,
            billed=False,
            from_cache=True,
            transaction=transaction,
            balance=transaction.balance_after,
            cooldown_remaining=self._throttle_ttl,
        )

    async def _cooldown_remaining(self, account_id: str, fingerprint: str) -> int:
        try:
            entry = await self._throttle.lookup(account_id, fingerprint)
        except DedupCacheError as e:
            logger.warning(f"Throttle cache unavailable: {e}")
            return 0
        if entry is None:
            return 0
        return entry.seconds_remaining(entry.last_accessed_at or entry.created_at)

    async def _cached(self, account_id: str, fingerprint: str) -> Optional[CacheEntry]:
        try:
            return await self._no_recharge.lookup(account_id, fingerprint)
        except DedupCacheError as e:
            logger.warning(f"No-recharge cache unavailable, treating as miss: {e}")
            return None

    async def _remember(
        self,
        account_id: str,
        fingerprint: str,
        outcome: OperationOutcome,
    ) -> None:
        try:
            await self._no_recharge.store(
                account_id,
                fingerprint,
                outcome.result,
                ttl_seconds=self._no_recharge_ttl,
                result_count=outcome.result_count,
            )
        except DedupCacheError as e:
            # The transaction is committed; only the suppression of repeats is lost
            logger.warning(f"Could not cache result for {account_id}/{fingerprint[:12]}: {e}")
        await self._start_cooldown(account_id, fingerprint)

    async def _start_cooldown(self, account_id: str, fingerprint: str) -> None:
        try:
            await self._throttle.store(
                account_id, fingerprint, None, ttl_seconds=self._throttle_ttl
            )
        except DedupCacheError as e:
            logger.warning(f"Could not start cooldown for {account_id}/{fingerprint[:12]}: {e}")

    @staticmethod
    def _transition(fingerprint: str, state: MeterState) -> None:
        logger.debug(f"Meter {fingerprint[:12]} -> {state.value}")
