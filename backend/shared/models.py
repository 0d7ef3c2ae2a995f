"""
Models passed between the api layer and the domain modules.

Ledger, dedup, payment and metering models live in their own modules;
only the request identity is shared.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, EmailStr, Field


class AuthenticatedUser(BaseModel):
    """
    The caller of a request, built from verified JWT claims.

    ``account_id`` is the credit account the user spends from. Several
    users may share one account (an organization); with no account claim
    in the token the user is their own account.
    """

    id: str = Field(..., description="Supabase user id")
    email: EmailStr = Field(..., description="Email from the token")
    email_verified: bool = Field(default=False, description="Email confirmed in Supabase")
    account_id: str = Field(..., description="Credit account charged for this user's operations")

    created_at: Optional[datetime] = Field(None, description="When the user signed up")
    last_sign_in: Optional[datetime] = Field(None, description="Token issue time")

    role: str = Field(default="user", description="'user', or 'admin' for ledger administration")

    model_config = {"frozen": True, "extra": "ignore"}

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
