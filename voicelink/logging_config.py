"""
Structured logging for voicelink.

structlog renders through the stdlib ``logging`` module so third-party
libraries (websockets, asyncio) share one handler and format. Every event
carries ``service``/``component`` fields and, while a session is live, the
``session_id`` bound through ``structlog.contextvars``. Credentials are
redacted before rendering.
"""

import logging
import os
import sys
import uuid
from typing import Any, List

import structlog

SERVICE_NAME = "voicelink"

REDACTED = "***REDACTED***"

# Matched against normalized key names, exactly or as a suffix
SENSITIVE_KEYS = frozenset({
    "apikey", "apikeys",
    "token", "accesstoken", "authtoken", "bearer",
    "password", "passwd", "pass", "secret", "secrets",
    "authorization", "credential", "credentials",
})

_QUIET_LOGGERS = ("websockets", "websockets.client", "asyncio")


def new_session_id() -> str:
    """Short random id correlating one session's log lines."""
    return uuid.uuid4().hex[:12]


def bind_session_id(session_id: str) -> None:
    structlog.contextvars.bind_contextvars(session_id=session_id)


def clear_session_id() -> None:
    structlog.contextvars.unbind_contextvars("session_id")


def add_service_context(logger, method_name, event_dict):
    event_dict["service"] = SERVICE_NAME
    event_dict["component"] = event_dict.get("logger") or getattr(logger, "name", None) or "unknown"
    return event_dict


def _normalize(key: Any) -> str:
    return str(key).lower().replace("_", "").replace("-", "")


def _is_sensitive(key: Any) -> bool:
    normalized = _normalize(key)
    return any(normalized.endswith(pattern) for pattern in SENSITIVE_KEYS)


def _redact(value: Any) -> Any:
    if value is None or isinstance(value, bool) or value == "":
        return value
    if isinstance(value, (list, tuple)):
        return [_redact(item) for item in value]
    if isinstance(value, str) and len(value) > 4:
        # Keep a two-character prefix so the key family stays recognisable
        return value[:2] + REDACTED
    return REDACTED


def _sanitize(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _redact(v) if _is_sensitive(k) else _sanitize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return value


def sanitize_secrets(logger, method_name, event_dict):
    """
    Redact credential values anywhere in the event.

    Keys are compared case-insensitively with ``_`` and ``-`` removed, so
    ``GEMINI_API_KEY`` and ``access-token`` are caught while ``api_key_source``
    (which only contains a sensitive word) is left alone. Nested mappings and
    lists are walked.
    """
    return _sanitize(event_dict)


def _shared_processors() -> List[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]


def configure_logging(log_level: str = "INFO", log_format: str = "json", log_color=None) -> None:
    """
    Install the structlog pipeline and a stdout handler on the root logger.

    ``LOG_LEVEL``, ``LOG_FORMAT`` (json|console) and ``LOG_COLOR`` (0|1) in the
    environment take precedence over the arguments.
    """
    level_name = (os.getenv("LOG_LEVEL") or log_level or "INFO").strip().upper()
    fmt = (os.getenv("LOG_FORMAT") or log_format or "json").strip().lower()
    if log_color is None:
        log_color = os.getenv("LOG_COLOR", "1").strip().lower() not in ("0", "false")

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_shared_processors(),
            add_service_context,
            sanitize_secrets,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if fmt == "console":
        renderer = structlog.dev.ConsoleRenderer(colors=log_color)
    else:
        renderer = structlog.processors.JSONRenderer()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=_shared_processors(),
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level_name, logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str):
    return structlog.get_logger(name)


def configure_from_settings(settings) -> None:
    """Configure from a loaded ``LoggingConfig``."""
    configure_logging(settings.level, settings.format)
