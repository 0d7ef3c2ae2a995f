"""
Caller profile endpoint.

Shows which credit account the token resolves to, so clients can tell a
personal balance from a shared organization balance.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr

from shared.models import AuthenticatedUser
from modules.ledger.interfaces import IAccountLedger
from ..dependencies import get_account_ledger
from ..middleware.auth import get_current_user

router = APIRouter()


class UserProfileResponse(BaseModel):
    id: str
    email: EmailStr
    email_verified: bool
    role: str
    account_id: str
    shared_account: bool
    balance: int
    account_active: bool


@router.get("/me", response_model=UserProfileResponse)
async def get_current_user_profile(
    user: AuthenticatedUser = Depends(get_current_user),
    ledger: IAccountLedger = Depends(get_account_ledger),
) -> UserProfileResponse:
    """Profile of the caller and the balance of the account they spend from."""
    account = await ledger.ensure_account(user.account_id)
    return UserProfileResponse(
        id=user.id,
        email=user.email,
        email_verified=user.email_verified,
        role=user.role,
        account_id=account.account_id,
        shared_account=account.account_id != user.id,
        balance=account.balance,
        account_active=account.is_active,
    )
