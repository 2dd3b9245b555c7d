"""
HTTP exchange for the Kite Connect API.

Every send goes through the shared RateLimiter first, including retry
attempts, and every response is unwrapped from the ``{status, data, message}``
envelope or turned into a typed exception.
"""

import asyncio
import json
import time
from typing import Any, Dict, Mapping, Optional, Tuple

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from core.config.settings import KiteSettings
from core.logging import get_logger
from core.utils.exceptions import (
    AuthError,
    NetworkError,
    ParseError,
    RateLimitError,
    ServerError,
    ValidationError,
)
from .models import RequestDescriptor
from .rate_limiter import RateLimiter

logger = get_logger(__name__, component="http_executor")

PHASE_CONNECT = "connect"
PHASE_TIMEOUT = "timeout"
PHASE_TRANSPORT = "transport"


def encode_form(body: Mapping[str, Any]) -> Dict[str, str]:
    """Flatten a request body into form fields the API accepts.

    ``None`` values are dropped, booleans become ``true``/``false`` and nested
    structures (GTT conditions and legs) are sent as JSON text.
    """
    form: Dict[str, str] = {}
    for key, value in body.items():
        if value is None:
            continue
        if isinstance(value, bool):
            form[key] = "true" if value else "false"
        elif isinstance(value, (dict, list, tuple)):
            form[key] = json.dumps(value, separators=(",", ":"))
        else:
            form[key] = str(value)
    return form


class HttpExecutor:
    """Sends one authenticated, throttled HTTP exchange at a time."""

    def __init__(
        self,
        settings: KiteSettings,
        rate_limiter: RateLimiter,
        acquire_timeout: Optional[float] = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.rate_limiter = rate_limiter
        self.acquire_timeout = acquire_timeout
        self._client = httpx.AsyncClient(
            base_url=settings.base_url,
            timeout=settings.request_timeout_seconds,
            transport=transport,
            headers={
                "X-Kite-Version": settings.api_version,
                "User-Agent": settings.user_agent,
            },
        )

    async def __aenter__(self) -> "HttpExecutor":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    async def request(
        self,
        descriptor: RequestDescriptor,
        auth_header: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Execute ``descriptor`` and return the envelope's ``data`` (or raw text).

        Args:
            descriptor: What to send.
            auth_header: ``Authorization`` value; omitted when ``None``.
            timeout: Overall deadline in seconds covering the limiter wait, the
                send and any retries.

        Raises:
            RateLimitExceeded: no request slot before the deadline.
            NetworkError: transport failure, or the deadline expired mid-send
                (``cancelled`` is set).
            AuthError, RateLimitError, ServerError, ValidationError, ParseError:
                the upstream response, mapped by status code and envelope.
        """
        deadline = time.monotonic() + timeout if timeout is not None else None

        backoff = self._backoff()
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.max_retries),
            wait=backoff,
            retry=self._retry_policy(descriptor, deadline, backoff),
            before_sleep=self._log_retry(descriptor),
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                response = await self._send_once(descriptor, auth_header, deadline)

        return self._handle_response(descriptor, response)

    def _remaining(self, deadline: Optional[float]) -> Optional[float]:
        if deadline is None:
            return None
        return max(0.0, deadline - time.monotonic())

    def _backoff(self):
        return wait_exponential(
            multiplier=self.settings.retry_backoff_min_seconds,
            min=self.settings.retry_backoff_min_seconds,
            max=self.settings.retry_backoff_max_seconds,
        )

    def _retry_policy(self, descriptor: RequestDescriptor, deadline: Optional[float], backoff):
        """Retry predicate; a retry whose backoff would reach the deadline is not attempted."""
        def should_retry(retry_state) -> bool:
            exc = retry_state.outcome.exception()
            if exc is None or not self._should_retry(descriptor, exc, deadline):
                return False
            remaining = self._remaining(deadline)
            return remaining is None or backoff(retry_state) < remaining
        return should_retry

    async def _send_once(
        self,
        descriptor: RequestDescriptor,
        auth_header: Optional[str],
        deadline: Optional[float],
    ) -> httpx.Response:
        remaining = self._remaining(deadline)
        acquire_timeout = self.acquire_timeout
        if remaining is not None:
            acquire_timeout = remaining if acquire_timeout is None else min(acquire_timeout, remaining)
        await self.rate_limiter.acquire(acquire_timeout)

        headers = {}
        if auth_header is not None:
            headers["Authorization"] = auth_header

        request = self._client.build_request(
            descriptor.method,
            descriptor.path,
            params=dict(descriptor.query) if descriptor.query else None,
            data=encode_form(descriptor.body) if descriptor.body else None,
            headers=headers,
        )

        started = time.monotonic()
        try:
            remaining = self._remaining(deadline)
            if remaining is not None:
                response = await asyncio.wait_for(self._client.send(request), remaining)
            else:
                response = await self._client.send(request)
        except asyncio.TimeoutError as exc:
            raise NetworkError(
                f"cancelled: deadline exceeded for {descriptor.method} {descriptor.path}",
                cancelled=True,
            ) from exc
        except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
            raise NetworkError(
                f"Connection failed for {descriptor.method} {descriptor.path}: {exc}",
                details={"phase": PHASE_CONNECT},
            ) from exc
        except httpx.TimeoutException as exc:
            raise NetworkError(
                f"Request timed out for {descriptor.method} {descriptor.path}",
                details={"phase": PHASE_TIMEOUT},
            ) from exc
        except httpx.TransportError as exc:
            raise NetworkError(
                f"Transport error for {descriptor.method} {descriptor.path}: {exc}",
                details={"phase": PHASE_TRANSPORT},
            ) from exc

        logger.debug(
            "API response received",
            method=descriptor.method,
            path=descriptor.path,
            status_code=response.status_code,
            elapsed_ms=round((time.monotonic() - started) * 1000, 2),
        )
        return response

    def _should_retry(self, descriptor: RequestDescriptor, exc: BaseException,
                      deadline: Optional[float]) -> bool:
        """Only transport failures are retried; POST/PUT only if nothing was sent."""
        if not isinstance(exc, NetworkError) or exc.cancelled:
            return False
        if deadline is not None and time.monotonic() >= deadline:
            return False
        if descriptor.idempotent:
            return True
        return exc.details.get("phase") == PHASE_CONNECT

    def _log_retry(self, descriptor: RequestDescriptor):
        def before_sleep(retry_state) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "Retrying API request after transport failure",
                method=descriptor.method,
                path=descriptor.path,
                attempt=retry_state.attempt_number,
                error=str(exc),
            )
        return before_sleep

    def _handle_response(self, descriptor: RequestDescriptor, response: httpx.Response) -> Any:
        status_code = response.status_code

        if 200 <= status_code < 300:
            if descriptor.raw:
                return response.text
            payload = self._decode_envelope(response)
            if payload.get("status") == "success":
                return payload.get("data")
            message, error_type = self._error_details(payload, response)
            raise ValidationError(message, error_type=error_type, status_code=status_code)

        try:
            payload = self._decode_envelope(response)
        except ParseError:
            payload = {}
        message, error_type = self._error_details(payload, response)

        logger.info(
            "API request failed",
            method=descriptor.method,
            path=descriptor.path,
            status_code=status_code,
            error_type=error_type,
        )

        if status_code in (401, 403):
            raise AuthError(message, status_code=status_code, details={"error_type": error_type})
        if status_code == 429:
            raise RateLimitError(message, status_code=status_code)
        if status_code >= 500:
            raise ServerError(message, status_code=status_code)
        raise ValidationError(message, error_type=error_type, status_code=status_code)

    def _decode_envelope(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise ParseError(
                f"Response body is not valid JSON (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from exc
        if not isinstance(payload, dict):
            raise ParseError(
                "Response envelope is not a JSON object",
                status_code=response.status_code,
            )
        return payload

    def _error_details(self, payload: Mapping[str, Any], response: httpx.Response) -> Tuple[str, Optional[str]]:
        message = payload.get("message")
        if not message:
            message = f"HTTP {response.status_code} {response.reason_phrase}".strip()
        return str(message), payload.get("error_type")
