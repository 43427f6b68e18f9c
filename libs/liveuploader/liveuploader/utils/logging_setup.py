"""Logging initialization helpers."""

from __future__ import annotations

import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from liveuploader.config import LoggingSettings, Settings

ROOT_LOGGER = "liveuploader"

_USERINFO_RE = re.compile(r"(?P<scheme>[a-z][a-z0-9+.-]*://)(?P<user>[^:/@\s]*):[^@/\s]+@", re.IGNORECASE)


def mask_credentials(text: str) -> str:
    """Replace the password of every ``scheme://user:pass@`` in `text`."""
    return _USERINFO_RE.sub(r"\g<scheme>\g<user>:xxxxx@", text)


class CredentialMaskingFilter(logging.Filter):
    """Masks URI passwords in the formatted message, e.g. from storage client errors."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = mask_credentials(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def _file_handler(cfg: LoggingSettings, log_dir: str) -> RotatingFileHandler:
    path = Path(str(cfg.file))
    if not path.is_absolute():
        path = Path(log_dir) / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        path,
        maxBytes=int(cfg.max_bytes),
        backupCount=int(cfg.backup_count),
        encoding="utf-8",
    )


def setup_logging(settings: Settings, *, level_override: str | None = None) -> None:
    """Configure the `liveuploader` logger tree once per process.

    Console output goes to stderr; stdout carries only the JSON result.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    if getattr(logger, "_liveuploader_configured", False):
        return

    cfg = settings.logging
    level = getattr(logging, str(level_override or cfg.level or "INFO").upper(), logging.INFO)
    formatter = logging.Formatter(fmt=str(cfg.format), datefmt=str(cfg.datefmt))

    handlers: list[logging.Handler] = []
    if cfg.console:
        handlers.append(logging.StreamHandler(sys.stderr))
    if cfg.file:
        handlers.append(_file_handler(cfg, settings.log_dir))

    masking = CredentialMaskingFilter()
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(masking)

    logger.setLevel(level)
    logger.handlers = handlers
    logger.propagate = False
    setattr(logger, "_liveuploader_configured", True)
