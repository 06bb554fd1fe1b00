"""Helpers for parsing the simple logging settings file and applying it."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path

from dotenv import load_dotenv

_LEVEL_MAP: dict[str, int | None] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "off": None,
}

_DEFAULT_LEVEL = logging.INFO
_SILENT = logging.CRITICAL + 1

TRANSPORT_LOGGER = "report_chat.chat.transport"
SESSION_LOGGER = "report_chat.chat.session"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class LoggingSettings:
    terminal_level: int | None = _DEFAULT_LEVEL
    transport_level: int | None = _DEFAULT_LEVEL
    session_level: int | None = _DEFAULT_LEVEL


# Settings file key -> LoggingSettings field
_FIELDS = {
    "terminal": "terminal_level",
    "transport": "transport_level",
    "session": "session_level",
}


def _resolve_level(value: str) -> int | None:
    return _LEVEL_MAP.get(value.strip().lower(), _DEFAULT_LEVEL)


def parse_logging_settings(path: Path) -> LoggingSettings:
    """Read ``component = level`` lines; missing keys and files mean ``info``.

    Blank lines, ``#`` comments and trailing ``# ...`` remarks are ignored, as
    are keys other than ``terminal``, ``transport`` and ``session``.
    """

    if not path.exists():
        return LoggingSettings()

    overrides: dict[str, int | None] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        key, sep, value = raw_line.split("#", 1)[0].partition("=")
        field_name = _FIELDS.get(key.strip().lower())
        if sep and field_name is not None:
            overrides[field_name] = _resolve_level(value)
    return replace(LoggingSettings(), **overrides)


def configure_logging(settings: LoggingSettings) -> None:
    """Install console (and optional file) handlers for the chat client.

    ``LOG_LEVEL`` overrides the terminal level and ``LOG_FILE`` adds a file
    handler that records everything the component loggers emit.
    """

    # Load .env file first to ensure LOG_LEVEL/LOG_FILE are available
    load_dotenv()

    terminal_level = settings.terminal_level
    override = os.getenv("LOG_LEVEL")
    if override:
        terminal_level = _resolve_level(override)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    handlers: list[logging.Handler] = []

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(terminal_level if terminal_level is not None else _SILENT)
    handlers.append(console_handler)

    log_file = os.getenv("LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    logging.basicConfig(level=logging.DEBUG, handlers=handlers, force=True)

    for name, level in (
        (TRANSPORT_LOGGER, settings.transport_level),
        (SESSION_LOGGER, settings.session_level),
    ):
        logging.getLogger(name).setLevel(level if level is not None else _SILENT)

    # Reduce noise from HTTP client libraries unless debugging
    if terminal_level is None or terminal_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


__all__ = [
    "LoggingSettings",
    "SESSION_LOGGER",
    "TRANSPORT_LOGGER",
    "configure_logging",
    "parse_logging_settings",
]
