"""
Unified exception definitions for Codewarden.

All custom exceptions inherit from CodewardenError for easy catching.
A free-tier limit denial is NOT an exception: it is returned as a normal
result (see codewarden.domain.usage).
"""

from typing import Any, Optional


class CodewardenError(Exception):
    """Base exception for all Codewarden errors."""

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "CODEWARDEN_ERROR"
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for logging/serialization."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(CodewardenError):
    """Configuration-related errors."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code="CONFIG_ERROR", **kwargs)


class StoreUnavailableError(CodewardenError):
    """
    Quota store is unreachable, misconfigured, or timed out.

    Always retryable. Callers must never read this as "limit reached".
    """

    user_message = "Usage service is temporarily unavailable. Please try again."

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        cause: Optional[Exception] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["operation"] = operation
        details["retryable"] = True
        if cause:
            details["cause"] = str(cause)
        super().__init__(message, code="STORE_UNAVAILABLE", details=details, **kwargs)
        self.operation = operation
        self.cause = cause
        self.retryable = True


class InvalidFeatureError(CodewardenError):
    """Feature name outside the known metered set (caller contract breach)."""

    def __init__(self, feature: Any, **kwargs):
        details = kwargs.pop("details", {})
        details["feature"] = str(feature)
        super().__init__(
            f"Unknown metered feature: {feature!r}",
            code="INVALID_FEATURE",
            details=details,
            **kwargs,
        )
        self.feature = feature
