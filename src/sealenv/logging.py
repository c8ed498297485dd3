# src/sealenv/logging.py
"""Structured logging with redaction of key material."""

import logging
import re
import sys
from logging.config import dictConfig
from typing import Any, Dict

from .config import SealEnvConfig

# A set of keys that should be redacted from logs.
REDACTED_KEYS = {"passphrase", "secret", "secret_material", "value", "payload"}

_IDENTITY_RE = re.compile(r"AGE-SECRET-KEY-1[0-9A-Z]+")


def redact_text(text: str) -> str:
    """Mask any age identity that slipped into a message."""
    return _IDENTITY_RE.sub("AGE-SECRET-KEY-[REDACTED]", text)


class RedactingFilter(logging.Filter):
    """A logging filter that redacts sensitive information."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.args, dict):
            record.args = self._redact_dict(record.args)
        elif isinstance(record.args, tuple):
            record.args = tuple(
                redact_text(arg) if isinstance(arg, str) else arg for arg in record.args
            )
        if isinstance(record.msg, str):
            record.msg = redact_text(record.msg)
        return True

    def _redact_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively redact sensitive keys in a dictionary."""
        redacted_data = {}
        for key, value in data.items():
            if key in REDACTED_KEYS:
                redacted_data[key] = "[REDACTED]"
            elif isinstance(value, dict):
                redacted_data[key] = self._redact_dict(value)
            else:
                redacted_data[key] = value
        return redacted_data


def setup_logging(config: SealEnvConfig):
    """Configure the root logger for the application."""
    log_level = config.logging.level.upper()

    if config.logging.json_format:
        dictConfig({
            'version': 1,
            'disable_existing_loggers': False,
            'filters': {
                'redacting': {
                    '()': RedactingFilter,
                },
            },
            'formatters': {
                'json': {
                    '()': 'pythonjsonlogger.jsonlogger.JsonFormatter',
                    'format': '%(asctime)s %(name)s %(levelname)s %(message)s',
                },
            },
            'handlers': {
                'json': {
                    'class': 'logging.StreamHandler',
                    'stream': 'ext://sys.stderr',
                    'formatter': 'json',
                    'filters': ['redacting'],
                },
            },
            'loggers': {
                'sealenv': {
                    'handlers': ['json'],
                    'level': log_level,
                    'propagate': False,
                },
                '': {  # Root logger
                    'handlers': ['json'],
                    'level': log_level,
                },
            }
        })
    else:
        logging.basicConfig(
            level=log_level,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            stream=sys.stderr,
        )
        for handler in logging.root.handlers:
            handler.addFilter(RedactingFilter())
