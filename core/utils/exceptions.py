# Structured exception hierarchy for the Kite CLI core

from typing import Dict, Any, Optional
from datetime import datetime, timezone


class KiteCliError(Exception):
    """Base exception for all Kite CLI specific errors"""

    kind = "error"
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.status_code = status_code
        self.timestamp = datetime.now(timezone.utc)

    def __str__(self) -> str:
        return self.message


class TransientError(KiteCliError):
    """Base class for errors the caller may retry after a delay or backoff"""

    retryable = True


class PermanentError(KiteCliError):
    """Base class for errors that will not succeed on retry"""

    retryable = False


# Transport
class NetworkError(TransientError):
    """Connection, DNS or timeout failure before a response was received"""

    kind = "network"

    def __init__(self, message: str, cancelled: bool = False, **kwargs):
        super().__init__(message, **kwargs)
        self.cancelled = cancelled


# Rate limiting
class RateLimitExceeded(TransientError):
    """Local limiter could not hand out a slot before the caller's deadline"""

    kind = "rate_limit_exceeded"

    def __init__(self, message: str, waited_seconds: float = 0.0, **kwargs):
        super().__init__(message, **kwargs)
        self.waited_seconds = waited_seconds


class RateLimitError(TransientError):
    """Upstream rejected the request with HTTP 429"""

    kind = "rate_limit"


# Upstream API
class ServerError(TransientError):
    """Upstream 5xx"""

    kind = "server"


class AuthError(PermanentError):
    """Missing or expired session, rejected token exchange, upstream 401/403"""

    kind = "auth"


class ValidationError(PermanentError):
    """Request rejected as malformed, locally or upstream (HTTP 400 and other 4xx)"""

    kind = "validation"

    def __init__(self, message: str, error_type: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.error_type = error_type


class ParseError(PermanentError):
    """Malformed response body or cache row"""

    kind = "parse"

    def __init__(self, message: str, row: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.row = row


# Local state
class CacheError(PermanentError):
    """Instrument cache entry missing or unreadable"""

    kind = "cache"


class ConfigurationError(PermanentError):
    """Missing credentials or unusable configuration"""

    kind = "configuration"

    def __init__(self, message: str, config_field: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.config_field = config_field


def is_retryable_error(error: Exception) -> bool:
    """
    Determine if an error should be retried

    Returns:
        True if error is transient and retryable, False otherwise
    """
    if isinstance(error, KiteCliError):
        return error.retryable
    return False


def create_error_context(error: Exception, operation: str,
                         additional_context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Create structured error context for logging

    Args:
        error: The exception that occurred
        operation: The operation that failed
        additional_context: Additional context information

    Returns:
        Structured error context dictionary
    """
    context = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "operation": operation,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "retryable": is_retryable_error(error)
    }

    if isinstance(error, KiteCliError):
        context["error_kind"] = error.kind
        if error.status_code is not None:
            context["status_code"] = error.status_code
        if error.details:
            context["error_details"] = error.details

        if isinstance(error, ParseError) and error.row is not None:
            context["row"] = error.row

    if additional_context:
        context.update(additional_context)

    return context
