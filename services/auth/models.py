"""Authentication models for the Kite Connect request-token flow."""

import json
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class AuthStatus(Enum):
    """Authentication status enumeration."""
    NOT_AUTHENTICATED = "not_authenticated"
    LOGIN_INITIATED = "login_initiated"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"


@dataclass(frozen=True)
class Credentials:
    """Application credentials issued by the Kite developer console."""
    api_key: str
    api_secret: str = field(repr=False)

    @property
    def has_key(self) -> bool:
        return bool(self.api_key)

    @property
    def has_secret(self) -> bool:
        return bool(self.api_secret)


def parse_expiry(value: Any) -> Optional[datetime]:
    """Parse a persisted ISO-8601 expiry.

    Naive timestamps are taken as UTC. Anything unparseable yields ``None``,
    which callers treat as an expired session.
    """
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class SessionData:
    """Persisted session. An empty instance means "logged out"."""
    access_token: Optional[str] = field(default=None, repr=False)
    expires_at: Optional[str] = None
    user_id: Optional[str] = None
    login_timestamp: Optional[str] = None

    @property
    def has_token(self) -> bool:
        return bool(self.access_token)

    def expiry(self) -> Optional[datetime]:
        return parse_expiry(self.expires_at)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionData":
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in data.items():
            if key in known and value is not None:
                values[key] = str(value)
        return cls(**values)

    @classmethod
    def from_json(cls, json_str: str) -> "SessionData":
        data = json.loads(json_str)
        if not isinstance(data, dict):
            raise ValueError("session document must be a JSON object")
        return cls.from_dict(data)


@dataclass(frozen=True)
class AuthState:
    """Result of evaluating a session against the clock."""
    status: AuthStatus
    expiry: Optional[datetime] = None
    user_id: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.status is AuthStatus.AUTHENTICATED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "expires_at": self.expiry.isoformat() if self.expiry else None,
            "user_id": self.user_id,
        }


def evaluate_session(session: SessionData, now: datetime) -> AuthState:
    """Classify ``session`` at instant ``now``; performs no I/O."""
    if not session.has_token:
        return AuthState(AuthStatus.NOT_AUTHENTICATED)
    expiry = session.expiry()
    if expiry is None or expiry <= now:
        return AuthState(AuthStatus.EXPIRED, expiry=expiry, user_id=session.user_id)
    return AuthState(AuthStatus.AUTHENTICATED, expiry=expiry, user_id=session.user_id)


@dataclass(frozen=True)
class StoredConfig:
    """What a ConfigStore hands back on load."""
    credentials: Credentials
    session: SessionData = field(default_factory=SessionData)
