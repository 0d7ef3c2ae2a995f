"""
Credit meter API package.

Provides the FastAPI application for the credit ledger and usage metering service.
"""

from .app import app, create_app

__all__ = ["app", "create_app"]
