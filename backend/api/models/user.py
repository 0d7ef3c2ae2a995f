"""Claims of a Supabase access token, before they become an AuthenticatedUser."""

from typing import Optional

from pydantic import BaseModel, ConfigDict


class TokenPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sub: str
    email: str
    email_confirmed_at: Optional[str] = None
    aud: str
    exp: int
    iat: int

    # Custom claims; account_id falls back to sub
    account_id: Optional[str] = None
    role: str = "user"
