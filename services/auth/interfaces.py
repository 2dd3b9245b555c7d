from __future__ import annotations

from typing import Protocol, runtime_checkable

from .models import SessionData, StoredConfig


@runtime_checkable
class ConfigStore(Protocol):
    """Source of credentials and home of the persisted session.

    ``load`` is called once at start-up; ``save`` after every login and logout.
    """

    def load(self) -> StoredConfig:
        ...

    def save(self, session: SessionData) -> None:
        ...


@runtime_checkable
class BrowserOpener(Protocol):
    """Opens the login page for the user. Returns False if nothing was opened."""

    def open(self, url: str) -> bool:
        ...


@runtime_checkable
class TokenPrompt(Protocol):
    """Blocking read of the ``request_token`` the user copies from the redirect."""

    def read_token(self, login_url: str) -> str:
        ...
