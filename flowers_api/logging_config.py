"""JSON logging configuration for the flowers API.

Telegram puts the bot token in the request path (``/bot<token>/getUpdates``),
so httpx error messages and tracebacks carry it verbatim. The formatter
redacts those paths before anything reaches stdout.
"""

import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any

BOT_TOKEN_PATH_RE = re.compile(r"/bot(\d+):[A-Za-z0-9_-]+")


def redact_bot_tokens(text: str) -> str:
    """Replace the secret half of any ``/bot<id>:<secret>`` path segment."""
    return BOT_TOKEN_PATH_RE.sub(r"/bot\1:***", text)


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with bot tokens redacted."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact_bot_tokens(record.getMessage()),
        }

        context = getattr(record, "context", None)
        if context:
            log_data["context"] = {
                key: redact_bot_tokens(value) if isinstance(value, str) else value for key, value in context.items()
            }

        if record.exc_info:
            log_data["exception"] = redact_bot_tokens(self.formatException(record.exc_info))

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    # Long-polling issues one request per bot every few seconds, each URL carrying its token
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"flowers.{name}")


class LoggerAdapter(logging.LoggerAdapter):
    """Merges a session's fixed context (tenant, masked token) into every record.

    Per-call ``context=`` keys win over the fixed ones.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = kwargs.pop("context", None)
        if context or self.extra:
            kwargs["extra"] = {"context": {**self.extra, **(context or {})}}
        return msg, kwargs
