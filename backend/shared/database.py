"""
Supabase client factory.

The Supabase-backed ledger, cache and payment repositories share one
service-role client. Service role bypasses RLS, so every locking and
uniqueness guarantee lives in the plpgsql functions under migrations/.
"""

import logging
from typing import Optional

from supabase import Client, create_client
from supabase.client import ClientOptions

from .config import Settings, get_settings

logger = logging.getLogger(__name__)

_service_client: Optional[Client] = None


def _client_options(settings: Settings) -> ClientOptions:
    # The PostgREST timeout bounds how long a ledger RPC holds the account lock.
    return ClientOptions(
        schema=settings.supabase_schema,
        postgrest_client_timeout=settings.supabase_timeout_seconds,
        auto_refresh_token=False,
        persist_session=False,
    )


def get_supabase_client() -> Client:
    """
    Return the shared service-role client, creating it on first use.

    Raises:
        RuntimeError: If SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY is unset
    """
    global _service_client

    if _service_client is not None:
        return _service_client

    settings = get_settings()
    missing = [
        name
        for name, value in (
            ("SUPABASE_URL", settings.supabase_url),
            ("SUPABASE_SERVICE_ROLE_KEY", settings.supabase_service_role_key),
        )
        if not value
    ]
    if missing:
        raise RuntimeError(f"Supabase configuration missing: set {', '.join(missing)}")

    _service_client = create_client(
        settings.supabase_url,
        settings.supabase_service_role_key,
        options=_client_options(settings),
    )
    logger.info(
        f"Supabase client ready (schema={settings.supabase_schema}, "
        f"timeout={settings.supabase_timeout_seconds}s)"
    )
    return _service_client


def reset_client_cache() -> None:
    """Drop the cached client (tests, or after settings change)."""
    global _service_client
    _service_client = None
