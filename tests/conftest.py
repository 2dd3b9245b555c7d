"""
Pytest configuration and shared fixtures for the Kite CLI tests.
"""
from datetime import timedelta

import httpx
import pytest

from core.config.settings import (
    CacheSettings,
    KiteSettings,
    RateLimitSettings,
    SessionSettings,
    Settings,
)
from services.api.client import KiteApiClient
from services.api.http_executor import HttpExecutor
from services.auth.auth_manager import AuthManager
from services.auth.config_store import InMemoryConfigStore
from services.auth.models import Credentials, SessionData
from services.auth.session_manager import SessionManager
from tests.mocks.mock_kite_api import API_KEY, API_SECRET, NOW, CountingLimiter, Recorder


@pytest.fixture
def test_settings(tmp_path):
    """Settings isolated to a temp directory, with instant retry backoff."""
    return Settings(
        kite=KiteSettings(
            api_key=API_KEY,
            api_secret=API_SECRET,
            max_retries=3,
            retry_backoff_min_seconds=0.0,
            retry_backoff_max_seconds=0.0,
        ),
        rate_limit=RateLimitSettings(acquire_timeout_seconds=5.0),
        cache=CacheSettings(instruments_dir=tmp_path / "instruments"),
        session=SessionSettings(session_file=tmp_path / "session.json"),
    )


@pytest.fixture
def credentials():
    return Credentials(api_key=API_KEY, api_secret=API_SECRET)


@pytest.fixture
def valid_session():
    return SessionData(
        access_token="tok",
        expires_at=(NOW + timedelta(hours=12)).isoformat(),
        user_id="AB1234",
    )


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def limiter():
    return CountingLimiter()


@pytest.fixture
def executor(test_settings, limiter, recorder):
    return HttpExecutor(test_settings.kite, limiter, acquire_timeout=5.0,
                        transport=httpx.MockTransport(recorder))


@pytest.fixture
def make_auth(test_settings, executor, credentials):
    """Build an AuthManager over an in-memory store, pinned to ``NOW``."""

    def factory(session: SessionData = None, clock=lambda: NOW, store=None):
        store = store or InMemoryConfigStore(credentials, session)
        return AuthManager(test_settings, executor, SessionManager(store), clock=clock)

    return factory


@pytest.fixture
def make_client(executor, make_auth):
    """KiteApiClient sharing the mocked executor."""

    def factory(session: SessionData = None, **kwargs):
        return KiteApiClient(executor, make_auth(session, **kwargs))

    return factory
