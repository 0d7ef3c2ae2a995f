"""Tests for the usage meter."""

import asyncio
import gc
import logging
from datetime import datetime, timezone
from typing import Optional

import pytest
from unittest.mock import AsyncMock, MagicMock

from modules.dedup.exceptions import DedupCacheError
from modules.dedup.models import CacheNamespace
from modules.dedup.repository import SupabaseDedupCache
from modules.dedup.service import DedupCache
from modules.ledger.exceptions import AccountInactiveError
from modules.ledger.models import TransactionKind
from modules.metering.exceptions import (
    ExternalOperationError,
    InsufficientCreditsError,
    OperationThrottledError,
)
from modules.metering.interfaces import IUsageMeter
from modules.metering.models import OperationOutcome, OperationRequest
from modules.metering.policy import NoChargePolicy
from modules.metering.service import UsageMeter

NO_RECHARGE_TTL = 3600
THROTTLE_TTL = 30


class FakeExecutor:
    """Records calls; optionally waits on a gate or fails."""

    def __init__(
        self,
        outcome: Optional[OperationOutcome] = None,
        error: Optional[Exception] = None,
        gate: Optional[asyncio.Event] = None,
    ):
        self.outcome = outcome
        self.error = error
        self.gate = gate
        self.calls: list[OperationRequest] = []

    async def execute(self, request: OperationRequest) -> OperationOutcome:
        self.calls.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.outcome or OperationOutcome(
            result={"matches": [request.query]}, result_count=1
        )


def smart(query: str = "Acme Corp", **params) -> OperationRequest:
    return OperationRequest(operation_kind="smart", query=query, params=params)


def exact(query: str = "Acme Corp") -> OperationRequest:
    return OperationRequest(operation_kind="exact", query=query)


@pytest.fixture
def executor():
    return FakeExecutor()


def build_meter(ledger, clock, executor, **kwargs) -> UsageMeter:
    return UsageMeter(
        ledger=ledger,
        no_recharge_cache=kwargs.pop("no_recharge_cache", DedupCache(CacheNamespace.NO_RECHARGE, clock)),
        throttle_cache=kwargs.pop("throttle_cache", DedupCache(CacheNamespace.THROTTLE, clock)),
        executor=executor,
        no_recharge_ttl_seconds=NO_RECHARGE_TTL,
        throttle_ttl_seconds=THROTTLE_TTL,
        **kwargs,
    )


@pytest.fixture
def meter(ledger, clock, executor):
    return build_meter(ledger, clock, executor)


async def fund(ledger, account_id: str = "acct-1", credits: int = 5) -> None:
    await ledger.ensure_account(account_id)
    if credits:
        await ledger.credit(account_id, credits, external_ref=f"pi_{account_id}")


async def kinds(ledger, account_id: str = "acct-1") -> list[TransactionKind]:
    return [tx.kind for tx in await ledger.transaction_log.list_by_account(account_id)]


class TestBilling:
    def test_implements_interface(self, meter):
        assert isinstance(meter, IUsageMeter)

    @pytest.mark.asyncio
    async def test_billable_operation_charges_once(self, meter, ledger, executor):
        await fund(ledger)

        result = await meter.perform("acct-1", smart())

        assert result.billed is True
        assert result.from_cache is False
        assert result.result == {"matches": ["Acme Corp"]}
        assert result.balance == 4
        assert result.transaction.kind == TransactionKind.USAGE
        assert result.transaction.amount == -1
        assert result.transaction.external_ref == result.fingerprint
        assert result.cooldown_remaining == THROTTLE_TTL
        assert await ledger.get_balance("acct-1") == 4
        assert len(executor.calls) == 1

    @pytest.mark.asyncio
    async def test_repeat_within_ttl_is_free(self, meter, ledger, executor):
        await fund(ledger)
        first = await meter.perform("acct-1", smart())

        second = await meter.perform("acct-1", smart())

        assert second.from_cache is True
        assert second.billed is False
        assert second.result == first.result
        assert second.transaction.kind == TransactionKind.FREE_USAGE
        assert second.transaction.amount == 0
        assert await ledger.get_balance("acct-1") == 4
        assert len(executor.calls) == 1
        assert await kinds(ledger) == [
            TransactionKind.PURCHASE,
            TransactionKind.USAGE,
            TransactionKind.FREE_USAGE,
        ]

    @pytest.mark.asyncio
    async def test_equivalent_queries_share_a_fingerprint(self, meter, ledger, executor):
        await fund(ledger)
        await meter.perform("acct-1", smart("Acme Corp"))

        repeat = await meter.perform("acct-1", smart("  acme   CORP "))

        assert repeat.from_cache is True
        assert await ledger.get_balance("acct-1") == 4

    @pytest.mark.asyncio
    async def test_params_are_part_of_the_fingerprint(self, meter, ledger):
        await fund(ledger)
        await meter.perform("acct-1", smart(country="US"))

        other = await meter.perform("acct-1", smart(country="DE"))

        assert other.billed is True
        assert await ledger.get_balance("acct-1") == 3

    @pytest.mark.asyncio
    async def test_cache_is_per_account(self, meter, ledger):
        await fund(ledger, "acct-1")
        await fund(ledger, "acct-2")
        await meter.perform("acct-1", smart())

        result = await meter.perform("acct-2", smart())

        assert result.billed is True
        assert await ledger.get_balance("acct-2") == 4

    @pytest.mark.asyncio
    async def test_expiry_bills_again(self, meter, ledger, clock, executor):
        await fund(ledger)
        await meter.perform("acct-1", smart())
        clock.advance(seconds=NO_RECHARGE_TTL + 1)

        again = await meter.perform("acct-1", smart())

        assert again.billed is True
        assert again.from_cache is False
        assert await ledger.get_balance("acct-1") == 3
        assert len(executor.calls) == 2


class TestFreeOutcomes:
    @pytest.mark.asyncio
    async def test_exact_miss_is_free_at_zero_balance(self, ledger, clock):
        executor = FakeExecutor(outcome=OperationOutcome(result=None, result_count=0))
        meter = build_meter(ledger, clock, executor)
        await fund(ledger, credits=0)

        result = await meter.perform("acct-1", exact())

        assert result.billed is False
        assert result.transaction.kind == TransactionKind.FREE_USAGE
        assert result.balance == 0
        assert await kinds(ledger) == [TransactionKind.FREE_USAGE]

    @pytest.mark.asyncio
    async def test_deterministic_outcome_flag(self, ledger, clock):
        executor = FakeExecutor(outcome=OperationOutcome(result_count=0, deterministic=True))
        meter = build_meter(ledger, clock, executor)
        await fund(ledger)

        result = await meter.perform("acct-1", smart())

        assert result.billed is False
        assert await ledger.get_balance("acct-1") == 5

    @pytest.mark.asyncio
    async def test_exact_hit_without_credit_withholds_result(self, ledger, clock):
        executor = FakeExecutor(outcome=OperationOutcome(result={"id": 1}, result_count=1))
        meter = build_meter(ledger, clock, executor)
        await fund(ledger, credits=0)

        with pytest.raises(InsufficientCreditsError) as exc_info:
            await meter.perform("acct-1", exact())

        assert exc_info.value.unbilled_result is None
        assert await kinds(ledger) == []

    @pytest.mark.asyncio
    async def test_no_charge_policy(self, ledger, clock, executor):
        meter = build_meter(ledger, clock, executor, policy=NoChargePolicy())
        await fund(ledger, credits=0)

        result = await meter.perform("acct-1", smart())

        assert result.billed is False
        assert result.result is not None
        assert await ledger.get_balance("acct-1") == 0


class TestRejections:
    @pytest.mark.asyncio
    async def test_insufficient_credits_before_execution(self, meter, ledger, executor):
        await fund(ledger, credits=0)

        with pytest.raises(InsufficientCreditsError) as exc_info:
            await meter.perform("acct-1", smart())

        assert exc_info.value.required == 1
        assert exc_info.value.available == 0
        assert exc_info.value.retryable is False
        assert executor.calls == []
        assert await kinds(ledger) == []

    @pytest.mark.asyncio
    async def test_inactive_account(self, meter, ledger, executor):
        await fund(ledger)
        await ledger.deactivate("acct-1")

        with pytest.raises(AccountInactiveError):
            await meter.perform("acct-1", smart())
        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_executor_failure_is_not_billed(self, ledger, clock):
        executor = FakeExecutor(error=RuntimeError("upstream timeout"))
        meter = build_meter(ledger, clock, executor)
        await fund(ledger)

        with pytest.raises(ExternalOperationError) as exc_info:
            await meter.perform("acct-1", smart())

        assert exc_info.value.retryable is True
        assert "upstream timeout" in exc_info.value.message
        assert await ledger.get_balance("acct-1") == 5
        assert await kinds(ledger) == [TransactionKind.PURCHASE]

        # Nothing was cached, so a retry executes again
        executor.error = None
        result = await meter.perform("acct-1", smart())
        assert result.billed is True
        assert len(executor.calls) == 2


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_last_credit_goes_to_one_request(self, ledger, clock):
        gate = asyncio.Event()
        executor = FakeExecutor(gate=gate)
        meter = build_meter(ledger, clock, executor)
        await fund(ledger, credits=1)

        tasks = [
            asyncio.ensure_future(meter.perform("acct-1", smart("first"))),
            asyncio.ensure_future(meter.perform("acct-1", smart("second"))),
        ]
        while len(executor.calls) < 2:
            await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        errors = [r for r in results if isinstance(r, Exception)]
        successes = [r for r in results if not isinstance(r, Exception)]
        assert len(successes) == 1 and len(errors) == 1
        assert isinstance(errors[0], InsufficientCreditsError)
        # The loser already ran, so it gets the result without being charged
        assert errors[0].unbilled_result["matches"][0] in ("first", "second")
        assert await ledger.get_balance("acct-1") == 0
        assert (await kinds(ledger)).count(TransactionKind.USAGE) == 1

    @pytest.mark.asyncio
    async def test_lost_race_can_withhold_result(self, ledger, clock):
        gate = asyncio.Event()
        executor = FakeExecutor(gate=gate)
        meter = build_meter(ledger, clock, executor, return_unbilled_results=False)
        await fund(ledger, credits=1)

        tasks = [
            asyncio.ensure_future(meter.perform("acct-1", smart("first"))),
            asyncio.ensure_future(meter.perform("acct-1", smart("second"))),
        ]
        while len(executor.calls) < 2:
            await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        error = next(r for r in results if isinstance(r, InsufficientCreditsError))
        assert error.unbilled_result is None
        assert "unbilled_result" not in error.details

    @pytest.mark.asyncio
    async def test_lost_race_result_is_not_cached(self, ledger, clock):
        gate = asyncio.Event()
        executor = FakeExecutor(gate=gate)
        meter = build_meter(ledger, clock, executor)
        await fund(ledger, credits=1)

        tasks = [
            asyncio.ensure_future(meter.perform("acct-1", smart("first"))),
            asyncio.ensure_future(meter.perform("acct-1", smart("second"))),
        ]
        while len(executor.calls) < 2:
            await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        loser_query = "second" if isinstance(results[1], Exception) else "first"

        await ledger.credit("acct-1", 1, external_ref="pi_topup")
        retry = await meter.perform("acct-1", smart(loser_query))

        assert retry.from_cache is False
        assert retry.billed is True

    @pytest.mark.asyncio
    async def test_cancelled_request_is_still_charged(self, meter, ledger, executor):
        await fund(ledger)

        async with ledger._locks.hold("acct-1"):
            task = asyncio.ensure_future(meter.perform("acct-1", smart()))
            while not executor.calls:
                await asyncio.sleep(0)
            for _ in range(5):
                await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        await meter.wait_settled()

        assert await ledger.get_balance("acct-1") == 4
        assert (await kinds(ledger)).count(TransactionKind.USAGE) == 1

    @pytest.mark.asyncio
    async def test_declined_charge_after_cancellation_is_not_reported_unretrieved(self, ledger, clock):
        loop = asyncio.get_running_loop()
        reported = []
        loop.set_exception_handler(lambda _loop, context: reported.append(context))
        try:
            gate = asyncio.Event()
            executor = FakeExecutor(gate=gate)
            meter = build_meter(ledger, clock, executor)
            await fund(ledger, credits=1)

            task = asyncio.ensure_future(meter.perform("acct-1", smart()))
            while not executor.calls:
                await asyncio.sleep(0)
            await ledger.debit("acct-1", 1, external_ref="elsewhere")

            async with ledger._locks.hold("acct-1"):
                gate.set()
                for _ in range(5):
                    await asyncio.sleep(0)
                task.cancel()
                with pytest.raises(asyncio.CancelledError):
                    await task

            while meter._settling:
                await asyncio.sleep(0)
            del task
            gc.collect()

            assert reported == []
            assert (await kinds(ledger)).count(TransactionKind.USAGE) == 1
        finally:
            loop.set_exception_handler(None)

    @pytest.mark.asyncio
    async def test_wait_settled_with_nothing_pending(self, meter):
        await meter.wait_settled()


class TestThrottle:
    @pytest.mark.asyncio
    async def test_advisory_by_default(self, meter, ledger, caplog):
        await fund(ledger)
        await meter.perform("acct-1", smart())
        caplog.set_level(logging.DEBUG, logger="modules.metering.service")

        repeat = await meter.perform("acct-1", smart())

        assert repeat.from_cache is True
        assert "cooldown left" in caplog.text

    @pytest.mark.asyncio
    async def test_enforced_throttle(self, ledger, clock, executor):
        meter = build_meter(ledger, clock, executor, throttle_enforced=True)
        await fund(ledger)
        await meter.perform("acct-1", smart())
        clock.advance(seconds=10)

        with pytest.raises(OperationThrottledError) as exc_info:
            await meter.perform("acct-1", smart())
        assert exc_info.value.retry_after == THROTTLE_TTL - 10

        clock.advance(seconds=THROTTLE_TTL)
        repeat = await meter.perform("acct-1", smart())
        assert repeat.from_cache is True
        assert await ledger.get_balance("acct-1") == 4


class TestCacheFailures:
    @pytest.mark.asyncio
    async def test_cache_errors_never_block_billing(self, ledger, clock, executor, caplog):
        broken = MagicMock()
        broken.lookup = AsyncMock(side_effect=DedupCacheError("lookup", "redis down"))
        broken.store = AsyncMock(side_effect=DedupCacheError("store", "redis down"))
        meter = build_meter(
            ledger, clock, executor, no_recharge_cache=broken, throttle_cache=broken
        )
        await fund(ledger)
        caplog.set_level(logging.WARNING, logger="modules.metering.service")

        first = await meter.perform("acct-1", smart())
        second = await meter.perform("acct-1", smart())

        assert first.billed is True
        # Without the cache the repeat is billed again: a bounded extra charge
        assert second.billed is True
        assert await ledger.get_balance("acct-1") == 3
        assert "treating as miss" in caplog.text

    @pytest.mark.asyncio
    async def test_datetime_result_is_cached_as_json(self, ledger, clock):
        db = MagicMock()
        lookup = db.table.return_value.select.return_value.eq.return_value.eq.return_value.eq.return_value.gte.return_value
        lookup.execute.return_value = MagicMock(data=[])
        db.table.return_value.upsert.return_value.execute.return_value = MagicMock(data=[])
        found_at = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)
        executor = FakeExecutor(OperationOutcome(result={"found_at": found_at}, result_count=1))
        meter = build_meter(
            ledger, clock, executor,
            no_recharge_cache=SupabaseDedupCache(db, CacheNamespace.NO_RECHARGE, clock=clock),
        )
        await fund(ledger)

        result = await meter.perform("acct-1", smart())

        assert result.billed is True
        assert result.result == {"found_at": found_at}
        stored = db.table.return_value.upsert.call_args.args[0]
        assert stored["result"] == {"found_at": "2026-03-15T12:00:00+00:00"}

    @pytest.mark.asyncio
    async def test_unencodable_result_still_returned_after_charge(self, ledger, clock, caplog):
        db = MagicMock()
        lookup = db.table.return_value.select.return_value.eq.return_value.eq.return_value.eq.return_value.gte.return_value
        lookup.execute.return_value = MagicMock(data=[])
        opaque = object()
        executor = FakeExecutor(OperationOutcome(result=opaque, result_count=1))
        meter = build_meter(
            ledger, clock, executor,
            no_recharge_cache=SupabaseDedupCache(db, CacheNamespace.NO_RECHARGE, clock=clock),
        )
        await fund(ledger)
        caplog.set_level(logging.WARNING, logger="modules.metering.service")

        result = await meter.perform("acct-1", smart())

        assert result.billed is True
        assert result.result is opaque
        assert await ledger.get_balance("acct-1") == 4
        assert "Could not cache result" in caplog.text
        db.table.return_value.upsert.assert_not_called()
