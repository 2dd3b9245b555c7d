"""Manages broker authentication and session state."""

import asyncio
import hashlib
import threading
from datetime import datetime, time, timedelta, timezone
from typing import Callable, Optional
from urllib.parse import urlencode

import pytz
from pydantic import ValidationError as PydanticValidationError

from core.config.settings import SessionSettings, Settings
from core.logging import get_logger
from core.utils.exceptions import AuthError, ConfigurationError, KiteCliError, ParseError, ValidationError
from services.api.http_executor import HttpExecutor
from services.api.models import RequestDescriptor, SessionResponse
from .interfaces import BrowserOpener, TokenPrompt
from .models import AuthState, AuthStatus, Credentials, SessionData, evaluate_session
from .session_manager import SessionManager

logger = get_logger(__name__, component="auth")

SESSION_TOKEN_PATH = "/session/token"


def generate_checksum(api_key: str, request_token: str, api_secret: str) -> str:
    """SHA-256 hex digest of ``api_key + request_token + api_secret``."""
    return hashlib.sha256(f"{api_key}{request_token}{api_secret}".encode("utf-8")).hexdigest()


def compute_expiry(now: datetime, settings: SessionSettings) -> datetime:
    """Expiry for a session created at ``now`` under the configured policy."""
    if settings.expiry_mode == "daily_reset":
        tz = pytz.timezone(settings.reset_timezone)
        local = now.astimezone(tz)
        reset = tz.localize(datetime.combine(local.date(), time(hour=settings.reset_hour)))
        if reset <= now:
            reset = tz.localize(datetime.combine(local.date() + timedelta(days=1),
                                                 time(hour=settings.reset_hour)))
        return reset.astimezone(timezone.utc)
    return now + timedelta(hours=settings.ttl_hours)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _read_token_in_background(prompt: TokenPrompt, login_url: str) -> asyncio.Future:
    """
    Run the blocking prompt on a daemon thread and resolve a future with its result.

    The thread is a daemon, so a prompt abandoned after a timeout does not hold
    up event-loop or interpreter shutdown.
    """
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def settle(result, error):
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    def worker():
        try:
            result, error = prompt.read_token(login_url), None
        except Exception as exc:
            result, error = None, exc
        if not loop.is_closed():
            loop.call_soon_threadsafe(settle, result, error)

    threading.Thread(target=worker, name="kite-token-prompt", daemon=True).start()
    return future


class AuthManager:
    """Runs the request-token exchange and hands out the auth header."""

    def __init__(
        self,
        settings: Settings,
        executor: HttpExecutor,
        session_manager: SessionManager,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.settings = settings
        self.executor = executor
        self.session_manager = session_manager
        self._clock = clock
        self._login_initiated = False

    @property
    def credentials(self) -> Credentials:
        return self.session_manager.credentials

    @property
    def state(self) -> AuthStatus:
        """Lifecycle state, including the transient LOGIN_INITIATED step."""
        status = self.status().status
        if self._login_initiated and status is not AuthStatus.AUTHENTICATED:
            return AuthStatus.LOGIN_INITIATED
        return status

    def _require_api_key(self) -> str:
        if not self.credentials.has_key:
            raise ConfigurationError("Kite API key is not configured (set KITE__API_KEY)",
                                     config_field="kite.api_key")
        return self.credentials.api_key

    def _require_api_secret(self) -> str:
        if not self.credentials.has_secret:
            raise ConfigurationError("Kite API secret is not configured (set KITE__API_SECRET)",
                                     config_field="kite.api_secret")
        return self.credentials.api_secret

    def login_url(self) -> str:
        """Browser login URL. Carries the API key only."""
        api_key = self._require_api_key()
        query = urlencode({"v": self.settings.kite.api_version, "api_key": api_key})
        self._login_initiated = True
        return f"{self.settings.kite.login_url}?{query}"

    def checksum(self, request_token: str) -> str:
        return generate_checksum(self._require_api_key(), request_token, self._require_api_secret())

    async def login(self, request_token: str) -> SessionData:
        """Exchange a request token for an access token and persist the session.

        Raises:
            AuthError: blank token, or the exchange was rejected upstream.
            ConfigurationError: API key or secret missing.
        """
        request_token = (request_token or "").strip()
        if not request_token:
            raise AuthError("Request token cannot be empty")

        api_key = self._require_api_key()
        descriptor = RequestDescriptor(
            "POST",
            SESSION_TOKEN_PATH,
            body={
                "api_key": api_key,
                "request_token": request_token,
                "checksum": self.checksum(request_token),
            },
            requires_auth=False,
        )

        logger.info("Generating session with request token")
        try:
            data = await self.executor.request(descriptor)
        except ValidationError as exc:
            raise AuthError(f"Token exchange rejected: {exc.message}",
                            status_code=exc.status_code,
                            details={"error_type": exc.error_type}) from exc

        try:
            response = SessionResponse.model_validate(data)
        except PydanticValidationError as exc:
            raise ParseError(f"Unexpected token exchange response: {exc.error_count()} invalid field(s)") from exc

        now = self._clock()
        session = SessionData(
            access_token=response.access_token,
            expires_at=compute_expiry(now, self.settings.session).isoformat(),
            user_id=response.user_id,
            login_timestamp=now.isoformat(),
        )
        await self.session_manager.save_session(session)
        self._login_initiated = False
        logger.info("Login successful", user_id=session.user_id, expires_at=session.expires_at)
        return session

    async def interactive_login(self, browser: BrowserOpener, prompt: TokenPrompt) -> SessionData:
        """Open the login page, wait for the pasted request token, then log in."""
        url = self.login_url()
        try:
            opened = browser.open(url)
        except Exception as exc:
            logger.warning("Failed to open browser", error=str(exc))
            opened = False
        if not opened:
            logger.info("Browser not opened; user must visit the login URL manually")

        timeout = self.settings.session.prompt_timeout_seconds
        try:
            request_token = await asyncio.wait_for(_read_token_in_background(prompt, url), timeout)
        except asyncio.TimeoutError as exc:
            raise AuthError(f"No request token received within {timeout:.0f} seconds") from exc

        return await self.login(request_token)

    def status(self, now: Optional[datetime] = None) -> AuthState:
        """Classify the stored session; never touches the network."""
        return evaluate_session(self.session_manager.current, now or self._clock())

    async def logout(self) -> bool:
        """Invalidate the session remotely (best effort) and always locally.

        Returns:
            True if the upstream DELETE succeeded.
        """
        session = await self.session_manager.get_session()
        remote_ok = False

        if session.has_token and self.credentials.has_key:
            api_key = self.credentials.api_key
            descriptor = RequestDescriptor(
                "DELETE",
                SESSION_TOKEN_PATH,
                query={"api_key": api_key, "access_token": session.access_token},
                requires_auth=False,
            )
            try:
                await self.executor.request(
                    descriptor, auth_header=f"token {api_key}:{session.access_token}"
                )
                remote_ok = True
            except KiteCliError as exc:
                logger.warning("Remote session invalidation failed", error=str(exc), kind=exc.kind)

        await self.session_manager.invalidate_session(reason="logout")
        self._login_initiated = False
        return remote_ok

    async def current_auth_header(self) -> str:
        """``token {api_key}:{access_token}`` for an authenticated session."""
        session = await self.session_manager.get_session()
        state = evaluate_session(session, self._clock())
        if not state.is_authenticated:
            raise AuthError("not authenticated", details={"status": state.status.value})
        return f"token {self.credentials.api_key}:{session.access_token}"
