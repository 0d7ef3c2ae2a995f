#!/usr/bin/env python3
"""
Check ledger consistency for every account.

Meant to run periodically (cron). Prints a report and exits 1 when any
account has drifted; drift is never corrected automatically.
--purge-cache deletes expired dedup entries instead of checking balances.

Usage:
    python run_reconciliation.py
    python run_reconciliation.py --account acct-123
    python run_reconciliation.py --purge-cache
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from rich.console import Console
from rich.table import Table

from api.dependencies import get_container
from modules.dedup.reaper import purge_caches
from shared.config import get_settings

console = Console()


async def reconcile(account_id: Optional[str]) -> int:
    reconciler = get_container().reconciler
    if account_id:
        reports = [await reconciler.check_account(account_id)]
    else:
        reports = await reconciler.check_all()

    table = Table(title="Ledger Reconciliation")
    table.add_column("Account", style="cyan")
    table.add_column("Balance", justify="right")
    table.add_column("Recomputed", justify="right")
    table.add_column("Transactions", justify="right")
    table.add_column("Violations")
    for report in reports:
        table.add_row(
            report.account_id,
            str(report.balance),
            str(report.recomputed_balance),
            str(report.transaction_count),
            "[green]none[/green]" if report.consistent else "[red]" + "\n".join(report.violations) + "[/red]",
        )
    console.print(table)

    drifted = [report for report in reports if not report.consistent]
    if drifted:
        console.print(f"[red]{len(drifted)} account(s) need manual review[/red]")
        return 1
    console.print(f"[green]{len(reports)} account(s) consistent[/green]")
    return 0


async def purge_cache() -> int:
    caches = get_container().caches
    purged = await purge_caches(caches)

    table = Table(title="Dedup Cache Purge")
    table.add_column("Namespace", style="cyan")
    table.add_column("Removed", justify="right")
    for cache in caches:
        namespace = cache.namespace.value
        table.add_row(namespace, str(purged[namespace]) if namespace in purged else "[red]failed[/red]")
    console.print(table)
    return 0 if len(purged) == len(caches) else 1


def main():
    parser = argparse.ArgumentParser(description="Check credit ledger invariants")
    parser.add_argument("--account", help="Check a single account")
    parser.add_argument("--purge-cache", action="store_true", help="Delete expired dedup cache entries")
    args = parser.parse_args()

    logging.basicConfig(level=get_settings().log_level.upper())
    if args.purge_cache:
        sys.exit(asyncio.run(purge_cache()))
    sys.exit(asyncio.run(reconcile(args.account)))


if __name__ == "__main__":
    main()
