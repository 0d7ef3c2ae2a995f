"""Tests for the in-memory ledger."""

import asyncio
import pytest

from modules.ledger.interfaces import IAccountLedger, ITransactionLog
from modules.ledger.models import TransactionKind
from modules.ledger.service import (
    AccountLedger,
    InMemoryTransactionLog,
)
from modules.ledger.exceptions import (
    AccountInactiveError,
    AccountNotFoundError,
    AlreadyReversedError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidTransactionKindError,
    LockTimeoutError,
    TransactionNotFoundError,
    TransactionNotReversibleError,
)


async def funded(ledger: AccountLedger, account_id: str = "acct-1", credits: int = 5) -> None:
    await ledger.ensure_account(account_id)
    await ledger.credit(account_id, credits, external_ref=f"pi_{account_id}_{credits}")


def assert_consistent(account, transactions):
    """balance == purchased - used, and the log forms an unbroken chain."""
    assert account.balance == account.total_purchased - account.total_used
    expected = 0
    for tx in transactions:
        assert tx.balance_before == expected
        assert tx.balance_after == tx.balance_before + tx.amount
        expected = tx.balance_after
    assert expected == account.balance


class TestInterfaces:
    def test_implements_protocols(self, ledger):
        assert isinstance(ledger, IAccountLedger)
        assert isinstance(ledger.transaction_log, ITransactionLog)


class TestAccounts:
    @pytest.mark.asyncio
    async def test_unknown_account(self, ledger):
        with pytest.raises(AccountNotFoundError):
            await ledger.get_balance("nobody")

    @pytest.mark.asyncio
    async def test_ensure_account_is_idempotent(self, ledger):
        first = await ledger.ensure_account("acct-1")
        await ledger.credit("acct-1", 3, external_ref="pi_1")
        second = await ledger.ensure_account("acct-1")

        assert first.balance == 0
        assert second.balance == 3

    @pytest.mark.asyncio
    async def test_deactivate_blocks_debits_only(self, ledger):
        await funded(ledger)
        account = await ledger.deactivate("acct-1")
        assert not account.is_active

        with pytest.raises(AccountInactiveError):
            await ledger.debit("acct-1", 1)

        # Free usage and credits are still recorded
        await ledger.debit("acct-1", 0, kind=TransactionKind.FREE_USAGE)
        await ledger.credit("acct-1", 2, external_ref="pi_2")
        assert await ledger.get_balance("acct-1") == 7

    @pytest.mark.asyncio
    async def test_list_account_ids(self, ledger):
        await ledger.ensure_account("a")
        await ledger.ensure_account("b")
        assert sorted(await ledger.list_account_ids()) == ["a", "b"]


class TestCredit:
    @pytest.mark.asyncio
    async def test_purchase(self, ledger, clock):
        await ledger.ensure_account("acct-1")
        tx = await ledger.credit("acct-1", 10, external_ref="pay_1", description="10 credits")

        assert tx.kind == TransactionKind.PURCHASE
        assert (tx.amount, tx.balance_before, tx.balance_after) == (10, 0, 10)
        assert tx.sequence == 1

        account = await ledger.get_account("acct-1")
        assert account.total_purchased == 10
        assert account.total_used == 0
        assert account.last_purchase_at == clock.now

    @pytest.mark.asyncio
    async def test_rejects_non_positive_amounts(self, ledger):
        await ledger.ensure_account("acct-1")
        with pytest.raises(InvalidAmountError):
            await ledger.credit("acct-1", 0, external_ref="pi_1")
        with pytest.raises(InvalidAmountError):
            await ledger.credit("acct-1", -5, external_ref="pi_1")

    @pytest.mark.asyncio
    async def test_rejects_debit_kinds(self, ledger):
        await ledger.ensure_account("acct-1")
        with pytest.raises(InvalidTransactionKindError):
            await ledger.credit("acct-1", 1, kind=TransactionKind.USAGE)

    @pytest.mark.asyncio
    async def test_unknown_account(self, ledger):
        with pytest.raises(AccountNotFoundError):
            await ledger.credit("nobody", 1, external_ref="pi_1")

    @pytest.mark.asyncio
    async def test_positive_adjustment_counts_as_purchased(self, ledger):
        await ledger.ensure_account("acct-1")
        await ledger.credit("acct-1", 4, kind=TransactionKind.ADJUSTMENT, description="goodwill")
        account = await ledger.get_account("acct-1")
        assert account.total_purchased == 4
        assert account.last_purchase_at is None

    @pytest.mark.asyncio
    async def test_refund_gives_back_usage(self, ledger):
        await funded(ledger)
        await ledger.debit("acct-1", 2)
        await ledger.credit("acct-1", 1, kind=TransactionKind.REFUND)

        account = await ledger.get_account("acct-1")
        assert (account.balance, account.total_purchased, account.total_used) == (4, 5, 1)

    @pytest.mark.asyncio
    async def test_refund_cannot_exceed_usage(self, ledger):
        await funded(ledger)
        with pytest.raises(InvalidAmountError):
            await ledger.credit("acct-1", 1, kind=TransactionKind.REFUND)


class TestDebit:
    @pytest.mark.asyncio
    async def test_usage(self, ledger):
        await funded(ledger)
        tx = await ledger.debit("acct-1", 1, external_ref="fp")

        assert tx.kind == TransactionKind.USAGE
        assert (tx.amount, tx.balance_before, tx.balance_after) == (-1, 5, 4)
        account = await ledger.get_account("acct-1")
        assert account.total_used == 1

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, ledger):
        await funded(ledger, credits=2)
        with pytest.raises(InsufficientBalanceError) as exc_info:
            await ledger.debit("acct-1", 3)

        assert exc_info.value.required == 3
        assert exc_info.value.available == 2
        assert exc_info.value.details["shortfall"] == 1
        assert await ledger.get_balance("acct-1") == 2
        assert await ledger.transaction_log.count_by_account("acct-1") == 1

    @pytest.mark.asyncio
    async def test_zero_debit_always_succeeds(self, ledger):
        await ledger.ensure_account("acct-1")
        tx = await ledger.debit("acct-1", 0, kind=TransactionKind.FREE_USAGE, external_ref="fp")

        assert tx.amount == 0
        assert tx.balance_before == tx.balance_after == 0
        account = await ledger.get_account("acct-1")
        assert account.total_used == 0

    @pytest.mark.asyncio
    async def test_amount_must_match_kind(self, ledger):
        await funded(ledger)
        with pytest.raises(InvalidAmountError):
            await ledger.debit("acct-1", 0, kind=TransactionKind.USAGE)
        with pytest.raises(InvalidAmountError):
            await ledger.debit("acct-1", 1, kind=TransactionKind.FREE_USAGE)
        with pytest.raises(InvalidAmountError):
            await ledger.debit("acct-1", -1)
        with pytest.raises(InvalidTransactionKindError):
            await ledger.debit("acct-1", 1, kind=TransactionKind.PURCHASE)

    @pytest.mark.asyncio
    async def test_concurrent_debits_never_overdraw(self, ledger):
        await funded(ledger, credits=3)

        results = await asyncio.gather(
            *(ledger.debit("acct-1", 1, external_ref=f"fp-{i}") for i in range(10)),
            return_exceptions=True,
        )

        succeeded = [r for r in results if not isinstance(r, Exception)]
        failed = [r for r in results if isinstance(r, InsufficientBalanceError)]
        assert len(succeeded) == 3
        assert len(failed) == 7
        assert await ledger.get_balance("acct-1") == 0

        account = await ledger.get_account("acct-1")
        assert_consistent(account, await ledger.transaction_log.list_by_account("acct-1"))

    @pytest.mark.asyncio
    async def test_accounts_do_not_block_each_other(self, clock):
        ledger = AccountLedger(lock_timeout=0.05, clock=clock)
        await funded(ledger, "a")
        await funded(ledger, "b")

        async with ledger._locks.hold("a"):
            tx = await ledger.debit("b", 1)
            assert tx.account_id == "b"
            with pytest.raises(LockTimeoutError) as exc_info:
                await ledger.debit("a", 1)

        assert exc_info.value.retryable
        assert await ledger.get_balance("a") == 5


class TestReverse:
    @pytest.mark.asyncio
    async def test_reverse_usage_refunds(self, ledger):
        await funded(ledger)
        usage = await ledger.debit("acct-1", 1)

        reversal = await ledger.reverse(usage.transaction_id)

        assert reversal.kind == TransactionKind.REFUND
        assert reversal.amount == 1
        assert reversal.reverses_transaction_id == usage.transaction_id
        assert await ledger.get_balance("acct-1") == 5
        # Original untouched
        original = await ledger.transaction_log.get(usage.transaction_id)
        assert original == usage

    @pytest.mark.asyncio
    async def test_reverse_purchase_debits_adjustment(self, ledger):
        await ledger.ensure_account("acct-1")
        purchase = await ledger.credit("acct-1", 5, external_ref="pi_1")

        reversal = await ledger.reverse(purchase.transaction_id)

        assert reversal.kind == TransactionKind.ADJUSTMENT
        assert reversal.amount == -5
        account = await ledger.get_account("acct-1")
        assert (account.balance, account.total_purchased, account.total_used) == (0, 5, 5)

    @pytest.mark.asyncio
    async def test_reverse_purchase_after_spending_would_overdraw(self, ledger):
        await ledger.ensure_account("acct-1")
        purchase = await ledger.credit("acct-1", 5, external_ref="pi_1")
        await ledger.debit("acct-1", 3)

        with pytest.raises(InsufficientBalanceError):
            await ledger.reverse(purchase.transaction_id)

    @pytest.mark.asyncio
    async def test_reverse_twice(self, ledger):
        await funded(ledger)
        usage = await ledger.debit("acct-1", 1)
        await ledger.reverse(usage.transaction_id)

        with pytest.raises(AlreadyReversedError):
            await ledger.reverse(usage.transaction_id)

    @pytest.mark.asyncio
    async def test_concurrent_reversals_apply_once(self, ledger):
        await funded(ledger)
        usage = await ledger.debit("acct-1", 1)

        results = await asyncio.gather(
            ledger.reverse(usage.transaction_id),
            ledger.reverse(usage.transaction_id),
            return_exceptions=True,
        )

        assert sum(isinstance(r, AlreadyReversedError) for r in results) == 1
        assert await ledger.get_balance("acct-1") == 5

    @pytest.mark.asyncio
    async def test_not_reversible(self, ledger):
        await funded(ledger)
        free = await ledger.debit("acct-1", 0, kind=TransactionKind.FREE_USAGE)
        usage = await ledger.debit("acct-1", 1)
        refund = await ledger.reverse(usage.transaction_id)

        with pytest.raises(TransactionNotReversibleError):
            await ledger.reverse(free.transaction_id)
        with pytest.raises(TransactionNotReversibleError):
            await ledger.reverse(refund.transaction_id)
        with pytest.raises(TransactionNotFoundError):
            await ledger.reverse("missing")


class TestHistoryAndSummary:
    @pytest.mark.asyncio
    async def test_log_is_chronological_and_list_is_newest_first(self, ledger):
        await funded(ledger)
        for i in range(3):
            await ledger.debit("acct-1", 1, external_ref=f"fp-{i}")

        log = await ledger.transaction_log.list_by_account("acct-1")
        assert [tx.sequence for tx in log] == [1, 2, 3, 4]

        page = await ledger.list_transactions("acct-1", limit=2, offset=1)
        assert [tx.external_ref for tx in page] == ["fp-1", "fp-0"]

    @pytest.mark.asyncio
    async def test_sum_since(self, ledger, clock):
        await funded(ledger, credits=10)
        await ledger.debit("acct-1", 2)
        since = clock.now
        clock.advance(minutes=1)
        await ledger.debit("acct-1", 3)

        log = ledger.transaction_log
        assert await log.sum_since("acct-1", since) == 5
        assert await log.sum_since("acct-1", since, kinds=[TransactionKind.USAGE]) == -5
        clock.advance(minutes=1)
        assert await log.sum_since("acct-1", clock.now) == 0
        assert await log.sum_since("acct-1", since, kinds=[TransactionKind.PURCHASE]) == 10

    @pytest.mark.asyncio
    async def test_summary(self, ledger, clock):
        await funded(ledger, credits=12)
        for _ in range(4):
            await ledger.debit("acct-1", 1)

        summary = await ledger.get_summary("acct-1")

        assert summary.balance == 8
        assert summary.total_purchased == 12
        assert summary.total_used == 4
        assert summary.used_this_period == 4
        assert summary.needs_low_balance_alert
        assert summary.period_start.day == 1
        assert summary.period_end.month == clock.now.month + 1
        assert len(summary.recent_transactions) == 5
        assert summary.recent_transactions[0].balance_after == 8

    @pytest.mark.asyncio
    async def test_no_low_balance_alert_at_zero(self, ledger):
        await ledger.ensure_account("acct-1")
        summary = await ledger.get_summary("acct-1")
        assert not summary.needs_low_balance_alert


class TestTransactionLog:
    @pytest.mark.asyncio
    async def test_find_reversal(self, ledger):
        await funded(ledger)
        usage = await ledger.debit("acct-1", 1)
        assert await ledger.transaction_log.find_reversal(usage.transaction_id) is None
        refund = await ledger.reverse(usage.transaction_id)
        found = await ledger.transaction_log.find_reversal(usage.transaction_id)
        assert found.transaction_id == refund.transaction_id

    @pytest.mark.asyncio
    async def test_unknown_account_is_empty(self):
        log = InMemoryTransactionLog()
        assert await log.list_by_account("nobody") == []
        assert await log.count_by_account("nobody") == 0
