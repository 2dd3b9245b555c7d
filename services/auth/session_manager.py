"""Holds the current session and persists it through a ConfigStore."""

from typing import Optional

from core.logging import get_logger
from core.utils.locks import AsyncReadWriteLock
from .interfaces import ConfigStore
from .models import Credentials, SessionData

logger = get_logger(__name__, component="auth")


class SessionManager:
    """Session owner for one process.

    Reads (building auth headers) share the lock; login and logout replace
    the session under the write side. ``SessionData`` is immutable, so
    ``current`` can be read without the lock and is never seen half-written.
    """

    def __init__(self, store: ConfigStore):
        self.store = store
        stored = store.load()
        self.credentials: Credentials = stored.credentials
        self._session: SessionData = stored.session
        self._lock = AsyncReadWriteLock()
        logger.debug("Session loaded", has_token=self._session.has_token,
                     user_id=self._session.user_id)

    @property
    def current(self) -> SessionData:
        return self._session

    async def get_session(self) -> SessionData:
        async with self._lock.read():
            return self._session

    async def save_session(self, session: SessionData) -> None:
        """Replace the session and persist it.

        The in-memory session is replaced even if persisting fails; the
        store's error then propagates to the caller.
        """
        async with self._lock.write():
            self._session = session
            self.store.save(session)
        logger.info("Session saved", user_id=session.user_id, expires_at=session.expires_at)

    async def invalidate_session(self, reason: Optional[str] = None) -> None:
        async with self._lock.write():
            self._session = SessionData()
            self.store.save(self._session)
        logger.info("Session invalidated", reason=reason)
