"""Logging setup for parley: rotating log file, optional console, secret redaction."""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
from pathlib import Path

__all__ = ["setup_logging", "log_directory", "SecretRedactingFilter", "redact_text"]

_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_MAX_LOG_BYTES = 1_000_000
_LOG_BACKUPS = 3
# Third-party loggers held at WARNING unless the root level is stricter.
_QUIET_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "mcp", "openai")
_BEARER_RE = re.compile(r"(Bearer\s+)[A-Za-z0-9._\-]+", re.IGNORECASE)
_KEY_RE = re.compile(r"\b(sk-[A-Za-z0-9]{2})[A-Za-z0-9_\-]{8,}")


def redact_text(text: str) -> str:
    """Mask bearer tokens and ``sk-`` style API keys inside ``text``."""

    text = _BEARER_RE.sub(r"\1***", text)
    return _KEY_RE.sub(r"\1***", text)


class SecretRedactingFilter(logging.Filter):
    """Rewrites log records so credentials never reach a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        redacted = redact_text(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def log_directory() -> Path:
    """``PARLEY_LOG_DIR`` when set, else ``~/.parley/logs``."""

    override = os.environ.get("PARLEY_LOG_DIR")
    return Path(override).expanduser() if override else Path.home() / ".parley" / "logs"


def setup_logging(level: int = logging.INFO, *, console: bool = False) -> Path:
    """Route the root logger to ``parley.log`` and, optionally, stderr.

    Calling again replaces the previous handlers. Returns the log file path.
    """

    directory = log_directory()
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / "parley.log"

    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path, maxBytes=_MAX_LOG_BYTES, backupCount=_LOG_BACKUPS, encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())
    formatter = logging.Formatter(_LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    redactor = SecretRedactingFilter()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(redactor)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    return log_path
