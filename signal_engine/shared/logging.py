"""
Logging configuration for the signal engine.

One stdout handler with a pipe-separated format. Broker and chat-bot
credentials travel inside URLs and headers, so every record passes a
redaction filter before it is written: Telegram bot tokens (``bot<id>:<secret>``)
and bearer tokens are masked whatever logger emitted them.
"""

import logging
import re
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

REDACTED = "***"

_SECRET_PATTERNS = (
    re.compile(r"(bot\d+:)[A-Za-z0-9_-]+"),
    re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+", re.IGNORECASE),
)


def redact(message: str) -> str:
    """Mask bot and bearer tokens in a rendered log message."""
    for pattern in _SECRET_PATTERNS:
        message = pattern.sub(rf"\g<1>{REDACTED}", message)
    return message


class SecretRedactingFilter(logging.Filter):
    """Rewrites each record's message with credentials masked."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = redact(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def configure_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: The log level string (DEBUG, INFO, WARNING, ERROR).
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        stream=sys.stdout,
        force=True,
    )
    for handler in logging.getLogger().handlers:
        handler.addFilter(SecretRedactingFilter())

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
