"""HTTP access to the Kite Connect REST API."""

from .http_executor import HttpExecutor, encode_form
from .models import RequestDescriptor
from .rate_limiter import RateLimiter

__all__ = [
    "HttpExecutor",
    "RateLimiter",
    "RequestDescriptor",
    "encode_form",
]
