"""
Metered operation endpoint.
"""

from fastapi import APIRouter, Depends

from api.middleware.auth import get_current_user
from api.dependencies import get_account_ledger, get_usage_meter
from api.models.errors import ErrorResponse
from shared.models import AuthenticatedUser
from modules.ledger.interfaces import IAccountLedger

from .interfaces import IUsageMeter
from .models import MeterResult, OperationRequest

router = APIRouter()


@router.post(
    "",
    response_model=MeterResult,
    responses={
        402: {"model": ErrorResponse, "description": "Not enough credits"},
        429: {"model": ErrorResponse, "description": "Repeated too quickly"},
        502: {"model": ErrorResponse, "description": "Operation failed (not billed)"},
        503: {"model": ErrorResponse, "description": "Ledger or executor unavailable"},
    },
)
async def perform_operation(
    request: OperationRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    ledger: IAccountLedger = Depends(get_account_ledger),
    meter: IUsageMeter = Depends(get_usage_meter),
) -> MeterResult:
    """
    Run a metered operation for the caller's account.

    Repeats within the no-recharge window return the cached result free
    of charge. Responds 402 when the account cannot pay.
    """
    await ledger.ensure_account(user.account_id)
    return await meter.perform(user.account_id, request)
