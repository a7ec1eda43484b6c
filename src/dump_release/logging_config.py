"""Structured logging for the release cycle.

Stage events (``lookup_complete``, ``release_published``, ``release_deleted``
...) are key-value records. They are rendered as JSON when DUMP_RELEASE_LOG_FORMAT
is "json" (or ENVIRONMENT is "production"), and as console lines otherwise.

Logs always go to stderr: stdout belongs to the producer, which inherits it,
and to the JSON report printed by ``dump-release run``.

Every event passes through ``redact_secrets`` before rendering, so a GitHub
token that ends up in an event (an Authorization header, an error message
echoing a URL) is masked.

Usage:
    from dump_release.logging_config import setup_logging, get_logger

    setup_logging(log_format="json")
    logger = get_logger(__name__)
    logger.info("release_published", tag="release-abc1234-42")
"""

from __future__ import annotations

import logging
import os
import re
import sys
from typing import IO, Any

import structlog

REDACTED = "***"

SECRET_KEYS = frozenset({"token", "authorization", "github_token", "password", "secret"})

# Classic, fine-grained and installation tokens.
TOKEN_PATTERN = re.compile(r"\b(?:gh[pousr]_[A-Za-z0-9]{10,}|github_pat_[A-Za-z0-9_]{10,})")


def _redact_value(value: Any) -> Any:
    if isinstance(value, str):
        return TOKEN_PATTERN.sub(REDACTED, value)
    if isinstance(value, dict):
        return {
            k: REDACTED if str(k).lower() in SECRET_KEYS else _redact_value(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_redact_value(v) for v in value)
    return value


def redact_secrets(logger: Any, method_name: str, event_dict: dict) -> dict:
    """structlog processor masking token-like keys and values."""
    for key, value in list(event_dict.items()):
        if key.lower() in SECRET_KEYS:
            event_dict[key] = REDACTED
        else:
            event_dict[key] = _redact_value(value)
    return event_dict


def _resolve_format(log_format: str | None) -> str:
    if log_format:
        return log_format
    if os.environ.get("DUMP_RELEASE_LOG_FORMAT"):
        return os.environ["DUMP_RELEASE_LOG_FORMAT"]
    return "json" if os.environ.get("ENVIRONMENT") == "production" else "console"


def build_processors(log_format: str) -> list:
    """Processor chain ending in the renderer for ``log_format``."""
    if log_format not in ("json", "console"):
        raise ValueError(f"Unknown log format {log_format!r}; use 'json' or 'console'")
    renderer = (
        structlog.processors.JSONRenderer()
        if log_format == "json"
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        redact_secrets,
        renderer,
    ]


def setup_logging(
    log_format: str | None = None,
    log_level: str | None = None,
    stream: IO[str] | None = None,
) -> None:
    """Configure structlog and the standard library root logger.

    Args:
        log_format: "json" or "console". Falls back to DUMP_RELEASE_LOG_FORMAT,
                    then to ENVIRONMENT=production meaning json.
        log_level: DEBUG, INFO, WARNING or ERROR. Reads LOG_LEVEL if not
                   provided.
        stream: Where to write; stderr unless given.
    """
    fmt = _resolve_format(log_format)
    level = getattr(logging, (log_level or os.environ.get("LOG_LEVEL", "INFO")).upper())
    out = stream or sys.stderr

    structlog.configure(
        processors=build_processors(fmt),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=out),
        cache_logger_on_first_use=stream is None,
    )

    # httpx logs every request at INFO; keep it to warnings.
    logging.basicConfig(format="%(message)s", stream=out, level=level, force=True)
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


def get_logger(name: str) -> Any:
    """Get a structured logger bound to the module ``name``."""
    return structlog.get_logger(name)
