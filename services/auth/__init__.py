"""Authentication for the Kite Connect request-token flow."""

from .auth_manager import AuthManager, compute_expiry, generate_checksum
from .config_store import InMemoryConfigStore, JsonFileConfigStore
from .interfaces import BrowserOpener, ConfigStore, TokenPrompt
from .models import (
    AuthState,
    AuthStatus,
    Credentials,
    SessionData,
    StoredConfig,
    evaluate_session,
)
from .session_manager import SessionManager

__all__ = [
    "AuthManager",
    "SessionManager",
    "compute_expiry",
    "generate_checksum",
    "ConfigStore",
    "JsonFileConfigStore",
    "InMemoryConfigStore",
    "BrowserOpener",
    "TokenPrompt",
    "AuthState",
    "AuthStatus",
    "Credentials",
    "SessionData",
    "StoredConfig",
    "evaluate_session",
]
