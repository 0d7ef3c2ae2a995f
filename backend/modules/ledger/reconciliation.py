"""
Ledger reconciliation.

Replays each account's transaction log and compares it with the stored
account row. Drift is reported and logged, never corrected: an operator
decides what the right fix is.

Usage:
    reconciler = LedgerReconciler(ledger)
    reports = await reconciler.check_all()
    await reconciler.assert_consistent("acct-1")
"""

import logging
from collections import Counter
from typing import Optional

from shared.clock import Clock, utc_now

from .interfaces import IAccountLedger, ITransactionLog
from .models import ReconciliationReport, Transaction, TransactionKind
from .exceptions import ConsistencyViolationError

logger = logging.getLogger(__name__)


class LedgerReconciler:
    """Checks the balance, chain and payment-uniqueness invariants."""

    def __init__(
        self,
        ledger: IAccountLedger,
        log: Optional[ITransactionLog] = None,
        clock: Clock = utc_now,
    ):
        self._ledger = ledger
        self._log = log or ledger.transaction_log
        self._clock = clock

    async def check_account(self, account_id: str) -> ReconciliationReport:
        """
        Check one account.

        Returns:
            ReconciliationReport listing every violation found (empty if consistent)

        Raises:
            AccountNotFoundError: If the account doesn't exist
        """
        account = await self._ledger.get_account(account_id)
        transactions = await self._log.list_by_account(account_id)

        violations: list[str] = []
        if account.balance != account.recomputed_balance:
            violations.append(
                f"balance {account.balance} != total_purchased - total_used "
                f"({account.recomputed_balance})"
            )
        violations.extend(self._check_chain(account.balance, transactions))
        for ref, count in self._duplicate_purchases(transactions).items():
            violations.append(f"payment {ref} credited {count} times")

        report = ReconciliationReport(
            account_id=account_id,
            balance=account.balance,
            recomputed_balance=account.recomputed_balance,
            transaction_count=len(transactions),
            violations=violations,
            checked_at=self._clock(),
        )
        if violations:
            logger.error(f"Ledger drift on {account_id}: {'; '.join(violations)}")
        else:
            logger.debug(f"Ledger consistent for {account_id} ({len(transactions)} transactions)")
        return report

    async def check_all(self) -> list[ReconciliationReport]:
        """Check every account, including payment ids shared across accounts."""
        reports = []
        purchase_owners: dict[str, set[str]] = {}
        for account_id in await self._ledger.list_account_ids():
            reports.append(await self.check_account(account_id))
            for tx in await self._log.list_by_account(account_id):
                if tx.kind == TransactionKind.PURCHASE and tx.external_ref:
                    purchase_owners.setdefault(tx.external_ref, set()).add(account_id)

        for ref, owners in purchase_owners.items():
            if len(owners) > 1:
                message = f"payment {ref} credited to several accounts: {sorted(owners)}"
                logger.error(message)
                for report in reports:
                    if report.account_id in owners:
                        report.violations.append(message)

        drifted = sum(1 for report in reports if not report.consistent)
        logger.info(f"Reconciled {len(reports)} accounts, {drifted} with violations")
        return reports

    async def assert_consistent(self, account_id: str) -> None:
        """
        Raises:
            ConsistencyViolationError: If the account has any violation
        """
        report = await self.check_account(account_id)
        if not report.consistent:
            raise ConsistencyViolationError(account_id, report.violations)

    @staticmethod
    def _check_chain(balance: int, transactions: list[Transaction]) -> list[str]:
        if not transactions:
            return [] if balance == 0 else [f"balance {balance} with no transactions"]

        violations = []
        if transactions[0].balance_before != 0:
            violations.append(
                f"first transaction {transactions[0].transaction_id} starts at "
                f"{transactions[0].balance_before}, not 0"
            )
        for previous, current in zip(transactions, transactions[1:]):
            if current.balance_before != previous.balance_after:
                violations.append(
                    f"chain break at {current.transaction_id}: balance_before "
                    f"{current.balance_before} != previous balance_after {previous.balance_after}"
                )
        if transactions[-1].balance_after != balance:
            violations.append(
                f"last balance_after {transactions[-1].balance_after} != balance {balance}"
            )
        return violations

    @staticmethod
    def _duplicate_purchases(transactions: list[Transaction]) -> dict[str, int]:
        counts = Counter(
            tx.external_ref
            for tx in transactions
            if tx.kind == TransactionKind.PURCHASE and tx.external_ref
        )
        return {ref: count for ref, count in counts.items() if count > 1}
