"""
Switchboard Logging — colorized text for dev, JSON lines for production.

- Color formatter auto-enabled on a TTY
- JSON structured formatter (SWITCHBOARD_LOG_FORMAT=json)
- Quiets chatty HTTP / SDK loggers (httpx, httpcore, openai, mcp)

Structured log extra fields (pass via logger.info(..., extra={...})):
    task_id, provider, model, agent, code, state, duration_ms, status
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone

COLORS = {
    "DEBUG": "\033[36m",  # Cyan
    "INFO": "\033[32m",  # Green
    "WARNING": "\033[33m",  # Yellow
    "ERROR": "\033[31m",  # Red
    "CRITICAL": "\033[1;31m",  # Bold red
    "RESET": "\033[0m",
    "DIM": "\033[2m",
}

_NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "openai",
    "openai._base_client",
    "mcp",
    "mcp.client",
)

_STRUCTURED_FIELDS = (
    "task_id",
    "provider",
    "model",
    "agent",
    "code",
    "state",
    "duration_ms",
    "status",
)


class ColorFormatter(logging.Formatter):
    """Terminal formatter. Colors the level and dims the logger name."""

    def __init__(self, use_color: bool = True):
        super().__init__(
            fmt="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
            datefmt="%H:%M:%S",
        )
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_color:
            return super().format(record)

        levelname, name = record.levelname, record.name
        record.levelname = f"{COLORS.get(levelname, '')}{levelname}{COLORS['RESET']}"
        record.name = f"{COLORS['DIM']}{name}{COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname, record.name = levelname, name


class StructuredFormatter(logging.Formatter):
    """One JSON object per line.

    Extra fields passed as ``logger.info("msg", extra={"task_id": 1})`` land
    at the top level so log aggregators can filter on them.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in _STRUCTURED_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _should_use_color() -> bool:
    env_val = os.getenv("SWITCHBOARD_LOG_COLOR", "auto").lower()
    if env_val in ("true", "false"):
        return env_val == "true"
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def setup_logging() -> None:
    """Configure the root logger. Call once at startup.

    Env vars:
        SWITCHBOARD_LOG_LEVEL  — DEBUG / INFO / WARNING / ERROR (default: INFO)
        SWITCHBOARD_LOG_COLOR  — true / false / auto (default: auto)
        SWITCHBOARD_LOG_FORMAT — text / json (default: text)
    """
    level_name = os.getenv("SWITCHBOARD_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    log_format = os.getenv("SWITCHBOARD_LOG_FORMAT", "text").lower()

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    if log_format == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = ColorFormatter(use_color=_should_use_color())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    root.addHandler(handler)

    for noisy_logger in _NOISY_LOGGERS:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    logging.getLogger("switchboard").debug(
        "Logging configured (level=%s, format=%s)", level_name, log_format
    )
