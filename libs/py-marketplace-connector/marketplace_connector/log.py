"""Logging setup with secret masking."""

import logging
from collections.abc import Mapping
from typing import Any

LOGGER_NAME = "marketplace_connector"
REDACTED = "[REDACTED]"

SENSITIVE_KEYS = (
    "api_key",
    "apikey",
    "api_hash",
    "apihash",
    "token",
    "authorization",
    "password",
    "secret",
)


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in SENSITIVE_KEYS)


def redact(data: Mapping[str, Any]) -> dict[str, Any]:
    """
    Return a copy of a mapping with sensitive values replaced.

    Nested mappings are redacted recursively.
    """
    masked: dict[str, Any] = {}
    for key, value in data.items():
        if _is_sensitive(str(key)):
            masked[key] = REDACTED
        elif isinstance(value, Mapping):
            masked[key] = redact(value)
        else:
            masked[key] = value
    return masked


class SecretMaskingFilter(logging.Filter):
    """Redacts sensitive keys in mapping arguments and `extra` context."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.args, Mapping):
            record.args = redact(record.args)
        elif isinstance(record.args, tuple):
            record.args = tuple(
                redact(arg) if isinstance(arg, Mapping) else arg for arg in record.args
            )

        context = getattr(record, "context", None)
        if isinstance(context, Mapping):
            record.context = redact(context)
        return True


def configure_logging(level: str = "INFO", mask_secrets: bool = True) -> logging.Logger:
    """
    Configure the library logger.

    Safe to call more than once; the handler is only installed the first time.

    Args:
        level: Log level name
        mask_secrets: Install the secret masking filter

    Returns:
        The configured library logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level.upper())

    if not any(getattr(h, "_marketplace_handler", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("[marketplace] %(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        handler._marketplace_handler = True
        logger.addHandler(handler)

    for handler in logger.handlers:
        for existing in [f for f in handler.filters if isinstance(f, SecretMaskingFilter)]:
            handler.removeFilter(existing)
        if mask_secrets:
            handler.addFilter(SecretMaskingFilter())

    return logger
