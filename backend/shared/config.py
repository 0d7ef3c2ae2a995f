"""
Credit meter settings.

Read from the environment (and .env) once per process. Names are prefixed
by the concern they configure: SUPABASE_*, LEDGER_*, STRIPE_*, and the
metering knobs (USAGE_COST_CREDITS, *_TTL_SECONDS, THROTTLE_ENFORCED).
"""

from functools import lru_cache
from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide settings; see the module docstring for naming."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Credit Meter API"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = False

    # CORS settings
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    # Storage
    storage_backend: Literal["memory", "supabase"] = "memory"

    # Supabase
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_service_role_key: str = ""
    supabase_jwt_secret: str = ""
    supabase_db_url: str = ""  # direct Postgres URI, migrations + reconciliation only
    supabase_timeout_seconds: int = 10
    supabase_schema: str = "public"

    # Ledger
    ledger_lock_timeout_seconds: float = 5.0

    # Metering
    usage_cost_credits: int = 1
    throttle_ttl_seconds: int = 30
    no_recharge_ttl_seconds: int = 14 * 24 * 3600
    throttle_enforced: bool = False
    return_unbilled_results: bool = True
    deterministic_operation_kinds: list[str] = ["exact"]
    low_balance_threshold: int = 10
    cache_purge_interval_seconds: int = 3600  # 0 disables the in-process reaper

    # Stripe (loaded by payments module)
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_webhook_tolerance_seconds: int = 300

    # Feature Flags
    enable_billing: bool = True


@lru_cache
def get_settings() -> Settings:
    """Settings singleton. Tests call get_settings.cache_clear() after patching the env."""
    return Settings()
