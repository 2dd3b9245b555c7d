# Structured logging for the Kite CLI core
import sys
import logging
import structlog
from typing import Any, Dict, Iterable, Optional

from core.config.settings import Settings

# Global flag to prevent duplicate logging configuration
_logging_configured = False

DEFAULT_REDACT_KEYS = (
    "authorization", "access_token", "request_token", "api_secret",
    "checksum", "password", "secret", "token",
)

REDACTED = "[REDACTED]"


def make_redactor(keys: Iterable[str]):
    """Build a structlog processor that masks sensitive keys recursively."""
    keys_to_redact = {k.lower() for k in keys}

    def _redact(obj: Any) -> Any:
        if isinstance(obj, dict):
            out = {}
            for k, v in obj.items():
                if isinstance(k, str) and k.lower() in keys_to_redact:
                    out[k] = REDACTED
                else:
                    out[k] = _redact(v)
            return out
        if isinstance(obj, (list, tuple)):
            return [_redact(v) for v in obj]
        return obj

    def redact_sensitive(logger, name, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        """Redact sensitive fields from event dict recursively."""
        return _redact(event_dict)

    return redact_sensitive


def configure_logging(settings: Settings, force: bool = False) -> None:
    """Configure stdlib logging and structlog for CLI use.

    Log output goes to stderr so command output on stdout stays machine readable.
    """
    global _logging_configured

    # Prevent duplicate configuration
    if _logging_configured and not force:
        return

    level = getattr(logging, settings.logging.level.upper(), logging.WARNING)
    redactor = make_redactor(settings.logging.redact_keys or DEFAULT_REDACT_KEYS)

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.logging.json_format
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    foreign_chain = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=foreign_chain,
        )
    )

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # httpx logs every request line at INFO; keep it behind our own events
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            redactor,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    _logging_configured = True


def get_logger(name: str, component: Optional[str] = None) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    # Initial values keep the proxy lazy so configure_logging still applies
    if component:
        return structlog.get_logger(name, component=component)
    return structlog.get_logger(name)


__all__ = [
    "configure_logging",
    "get_logger",
    "make_redactor",
    "DEFAULT_REDACT_KEYS",
    "REDACTED",
]
