"""
Exception hierarchy shared by the ledger, dedup, payments and metering modules.

Module exceptions subclass one of the categories below; api.app maps the
category to an HTTP status and renders ``to_dict()`` as the response body.
"""

from typing import Any, Optional


class CreditMeterError(Exception):
    """
    Root of every domain error.

    ``code`` is the machine-readable identifier returned to clients and
    defaults to the class name. ``retryable`` marks infrastructure
    failures where the same request may succeed later unchanged.
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or type(self).__name__
        self.details = dict(details) if details else {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class NotFoundError(CreditMeterError):
    """An account, transaction or payment does not exist."""


class ValidationError(CreditMeterError):
    """A request broke a business rule (bad amount, wrong kind, malformed event)."""


class AuthenticationError(CreditMeterError):
    """Credentials missing or invalid."""


class AuthorizationError(CreditMeterError):
    """Caller is authenticated but may not act on this resource."""


class ExternalServiceError(CreditMeterError):
    """A third-party call (payment processor, operation backend) failed."""

    def __init__(
        self,
        message: str,
        service: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, code, details)
        self.service = service
        self.details["service"] = service
