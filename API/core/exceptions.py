"""
Billing engine exceptions.

Every error carries a machine-readable code, the HTTP status the API
answers with and a context dict. The app-level handler renders them as
{"success": false, "error_code", "message", "context"}.
"""

from typing import Any, Dict, Optional


class BillingError(Exception):
    """Base error for subscription, usage and payment operations."""

    error_code = "BILLING_ERROR"
    status_code = 400

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        if status_code is not None:
            self.status_code = status_code
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "success": False,
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
        }


class NotFoundError(BillingError):
    error_code = "NOT_FOUND"
    status_code = 404


class ForbiddenError(BillingError):
    error_code = "FORBIDDEN"
    status_code = 403


class BadRequestError(BillingError):
    error_code = "BAD_REQUEST"
    status_code = 400


class PreconditionFailedError(BillingError):
    error_code = "PRECONDITION_FAILED"
    status_code = 412


class ConflictError(BillingError):
    error_code = "CONFLICT"
    status_code = 409


class UsageLimitExceededError(BillingError):
    """Raised when an increment would push a counter past its limit."""

    error_code = "USAGE_LIMIT_EXCEEDED"
    status_code = 429

    def __init__(
        self,
        feature_key: str,
        current: int,
        limit: int,
        requested: int = 1,
    ):
        super().__init__(
            f"Usage limit exceeded for {feature_key}: {current}/{limit}",
            context={
                "feature_key": feature_key,
                "current": current,
                "limit": limit,
                "requested": requested,
            },
        )
        self.feature_key = feature_key
        self.current = current
        self.limit = limit


class InternalError(BillingError):
    error_code = "INTERNAL_ERROR"
    status_code = 500
