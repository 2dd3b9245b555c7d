"""ConfigStore implementations: a JSON session file and an in-memory store."""

import json
import os
import tempfile
from pathlib import Path
from typing import List, Optional

from core.config.settings import Settings
from core.logging import get_logger
from core.utils.exceptions import ConfigurationError
from .models import Credentials, SessionData, StoredConfig

logger = get_logger(__name__, component="auth")

SESSION_FILE_MODE = 0o600


class JsonFileConfigStore:
    """Credentials come from Settings; the session lives in a private JSON file."""

    def __init__(self, settings: Settings, session_file: Optional[Path] = None):
        self.settings = settings
        self.session_file = Path(session_file or settings.session.session_file)

    def load(self) -> StoredConfig:
        credentials = Credentials(
            api_key=self.settings.kite.api_key,
            api_secret=self.settings.kite.api_secret,
        )
        return StoredConfig(credentials=credentials, session=self._read_session())

    def _read_session(self) -> SessionData:
        try:
            text = self.session_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return SessionData()
        except OSError as exc:
            raise ConfigurationError(
                f"Cannot read session file {self.session_file}: {exc}",
                config_field="session.session_file",
            ) from exc

        try:
            return SessionData.from_json(text)
        except ValueError as exc:
            # A corrupt file must not block a fresh login
            logger.warning("Ignoring unreadable session file",
                           path=str(self.session_file), error=str(exc))
            return SessionData()

    def save(self, session: SessionData) -> None:
        directory = self.session_file.parent
        directory.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(prefix=".session.", suffix=".tmp", dir=str(directory))
        try:
            os.chmod(tmp_name, SESSION_FILE_MODE)
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                json.dump(session.to_dict(), tmp, indent=2)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self.session_file)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
        logger.debug("Session persisted", path=str(self.session_file), empty=not session.has_token)


class InMemoryConfigStore:
    """Keeps everything in process; every saved session is recorded in ``saved``."""

    def __init__(self, credentials: Credentials, session: Optional[SessionData] = None):
        self.credentials = credentials
        self.session = session or SessionData()
        self.saved: List[SessionData] = []

    def load(self) -> StoredConfig:
        return StoredConfig(credentials=self.credentials, session=self.session)

    def save(self, session: SessionData) -> None:
        self.session = session
        self.saved.append(session)
