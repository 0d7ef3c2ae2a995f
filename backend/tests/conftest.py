"""
Shared test fixtures and utilities.

This module provides common test infrastructure used across all test modules.
"""

import hashlib
import hmac
import time

import pytest
from datetime import datetime, timezone, timedelta
from typing import Optional
from unittest.mock import patch

from jose import jwt

import api  # noqa: F401  (load the app package before any route module)
from api.dependencies import reset_container
from shared.config import Settings
from modules.ledger.service import AccountLedger, InMemoryTransactionLog


# Test JWT secret (only for testing)
TEST_JWT_SECRET = "test-secret-key-for-testing-only"


def create_test_token(
    user_id: str = "test-user-123",
    email: str = "test@example.com",
    expired: bool = False,
    email_verified: bool = True,
    account_id: Optional[str] = None,
    role: Optional[str] = None,
) -> str:
    """
    Create a test JWT token for authentication.

    Args:
        user_id: User ID to include in the token
        email: Email to include in the token
        expired: If True, creates an expired token
        email_verified: Whether the email should be marked as verified
        account_id: Optional billing account claim
        role: Optional role claim ("admin" for admin routes)

    Returns:
        JWT token string
    """
    now = datetime.now(timezone.utc)
    exp = now - timedelta(hours=1) if expired else now + timedelta(hours=1)

    payload = {
        "sub": user_id,
        "email": email,
        "email_confirmed_at": now.isoformat() if email_verified else None,
        "aud": "authenticated",
        "exp": int(exp.timestamp()),
        "iat": int(now.timestamp()),
    }
    if account_id is not None:
        payload["account_id"] = account_id
    if role is not None:
        payload["role"] = role
    return jwt.encode(payload, TEST_JWT_SECRET, algorithm="HS256")


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


TEST_WEBHOOK_SECRET = "whsec_test_secret"


def sign_webhook(payload: str, secret: str = TEST_WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a stripe-signature header the way Stripe signs webhook deliveries."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signature = hmac.new(
        secret.encode("utf-8"),
        f"{timestamp}.{payload}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def reset_service_container():
    """Reset the service container before and after each test."""
    reset_container()
    yield
    reset_container()


@pytest.fixture
def test_settings() -> Settings:
    """Settings with a known JWT secret, independent of the environment."""
    return Settings(
        _env_file=None,
        supabase_jwt_secret=TEST_JWT_SECRET,
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=TEST_WEBHOOK_SECRET,
    )


@pytest.fixture
def auth_settings(test_settings: Settings):
    """Make the auth middleware validate tokens with TEST_JWT_SECRET."""
    with patch("api.middleware.auth.get_settings", return_value=test_settings):
        yield test_settings


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger(clock: FakeClock) -> AccountLedger:
    """A fresh in-memory ledger on the fake clock."""
    return AccountLedger(InMemoryTransactionLog(), lock_timeout=1.0, clock=clock)


@pytest.fixture
def test_user_id() -> str:
    """Provide a consistent test user ID."""
    return "test-user-123"


@pytest.fixture
def auth_headers(test_user_id: str) -> dict[str, str]:
    """Authorization headers for a regular user."""
    return bearer(create_test_token(user_id=test_user_id))


@pytest.fixture
def admin_headers() -> dict[str, str]:
    """Authorization headers for an admin."""
    return bearer(create_test_token(user_id="admin-1", email="admin@example.com", role="admin"))
