"""
Credit ledger API endpoints.

Balance and history for the caller's account, plus admin adjustments,
reversals and reconciliation. Domain exceptions are mapped to HTTP
responses by the application's CreditMeterError handler.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.middleware.auth import get_current_user, require_admin
from api.dependencies import get_account_ledger, get_ledger_reconciler
from shared.models import AuthenticatedUser

from .interfaces import IAccountLedger
from .models import (
    AdjustmentRequest,
    CreditSummary,
    ReconciliationReport,
    Transaction,
    TransactionKind,
    TransactionListResponse,
)
from .exceptions import InvalidAmountError
from .reconciliation import LedgerReconciler

router = APIRouter()


@router.get("/balance", response_model=CreditSummary)
async def get_balance(
    user: AuthenticatedUser = Depends(get_current_user),
    ledger: IAccountLedger = Depends(get_account_ledger),
) -> CreditSummary:
    """
    Get the caller's credit summary.

    The account is provisioned with a zero balance on first access.
    """
    await ledger.ensure_account(user.account_id)
    return await ledger.get_summary(user.account_id)


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    limit: int = Query(default=50, ge=1, le=100, description="Page size"),
    offset: int = Query(default=0, ge=0, description="Items to skip"),
    user: AuthenticatedUser = Depends(get_current_user),
    ledger: IAccountLedger = Depends(get_account_ledger),
) -> TransactionListResponse:
    """List the caller's transactions, most recent first."""
    transactions = await ledger.list_transactions(user.account_id, limit=limit, offset=offset)
    total = await ledger.transaction_log.count_by_account(user.account_id)
    return TransactionListResponse(
        transactions=transactions,
        total=total,
        limit=limit,
        offset=offset,
        has_more=(offset + limit) < total,
    )


@router.post("/adjustments", response_model=Transaction, status_code=201)
async def create_adjustment(
    request: AdjustmentRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    ledger: IAccountLedger = Depends(get_account_ledger),
) -> Transaction:
    """Manually credit (positive amount) or debit (negative amount) an account."""
    if request.amount == 0:
        raise InvalidAmountError(0, "Adjustment amount must be non-zero")

    description = f"{request.description} (by {admin.id})"
    if request.amount > 0:
        await ledger.ensure_account(request.account_id)
        return await ledger.credit(
            request.account_id,
            request.amount,
            kind=TransactionKind.ADJUSTMENT,
            description=description,
        )
    return await ledger.debit(
        request.account_id,
        -request.amount,
        kind=TransactionKind.ADJUSTMENT,
        description=description,
    )


@router.post("/transactions/{transaction_id}/reverse", response_model=Transaction, status_code=201)
async def reverse_transaction(
    transaction_id: str,
    admin: AuthenticatedUser = Depends(require_admin),
    ledger: IAccountLedger = Depends(get_account_ledger),
) -> Transaction:
    """Append the inverse of a transaction."""
    return await ledger.reverse(transaction_id, description=f"Reversed by {admin.id}")


@router.get("/reconciliation", response_model=list[ReconciliationReport])
async def reconcile(
    account_id: Optional[str] = Query(default=None, description="Check one account only"),
    admin: AuthenticatedUser = Depends(require_admin),
    reconciler: LedgerReconciler = Depends(get_ledger_reconciler),
) -> list[ReconciliationReport]:
    """
    Check ledger invariants.

    Reports drift without correcting it.
    """
    if account_id:
        return [await reconciler.check_account(account_id)]
    return await reconciler.check_all()
