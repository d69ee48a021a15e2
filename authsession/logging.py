"""structlog setup shared by every authsession module.

Importing this module configures structlog once from ``AUTHSESSION_LOG_*``
environment variables. Two processors run ahead of rendering: one stamps the
current auth flow id onto each event, the other masks bearer material so a
token or grant value never reaches a log sink intact.
"""

from __future__ import annotations

import logging
import os
import re
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

_TRUTHY = {"1", "true", "yes", "on"}

# Events whose key contains one of these fragments are masked
_SECRET_KEY_FRAGMENTS = ("token", "secret", "api_key", "authorization", "email")
# OAuth grant values, masked only under their exact callback names
_GRANT_KEYS = frozenset({"state", "code", "nonce"})

_BEARER_PATTERN = re.compile(r"(?i)bearer\s+[A-Za-z0-9\-_.=]+")

# One id per login, callback or refresh, mirrored into X-Correlation-ID
flow_id_var: ContextVar[Optional[str]] = ContextVar("authsession_flow_id", default=None)


def get_correlation_id() -> Optional[str]:
    return flow_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind ``correlation_id`` (or a fresh uuid4) to the current auth flow."""
    flow_id = correlation_id or str(uuid.uuid4())
    flow_id_var.set(flow_id)
    return flow_id


def mask_value(value: str) -> str:
    if len(value) <= 4:
        return value
    return f"{value[:2]}***{value[-2:]}"


def _is_secret_key(key: str) -> bool:
    lowered = key.lower()
    return lowered in _GRANT_KEYS or any(fragment in lowered for fragment in _SECRET_KEY_FRAGMENTS)


def _stamp_flow_id(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    flow_id = flow_id_var.get()
    if flow_id:
        event_dict.setdefault("correlation_id", flow_id)
    return event_dict


def _mask_credentials(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in list(event_dict.items()):
        if key != "event" and isinstance(value, str) and _is_secret_key(key):
            event_dict[key] = mask_value(value)
    return event_dict


def configure_logging(level: str = "INFO", *, json_output: bool = True, dev_mode: bool = False) -> None:
    """(Re)configure structlog for the process.

    JSON lines are the default so session events can be shipped as-is; the
    colored console renderer is used when ``dev_mode`` is set or JSON is off.
    """
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _stamp_flow_id,
        _mask_credentials,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if dev_mode or not json_output:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(
    os.getenv("AUTHSESSION_LOG_LEVEL", "INFO"),
    json_output=os.getenv("AUTHSESSION_LOG_JSON", "true").lower() in _TRUTHY,
    dev_mode=os.getenv("AUTHSESSION_LOG_DEV_MODE", "false").lower() in _TRUTHY,
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def sanitize_error_message(error: str, *, max_length: int = 300) -> str:
    """Make a backend or transport error safe to put in ``AuthState.error``.

    Echoed bearer credentials are replaced and the text is capped at
    ``max_length`` characters.
    """
    if not error or not isinstance(error, str):
        return "An error occurred"
    cleaned = _BEARER_PATTERN.sub("Bearer [redacted]", error)
    if len(cleaned) > max_length:
        cleaned = cleaned[: max_length - 3] + "..."
    return cleaned


__all__ = [
    "configure_logging",
    "flow_id_var",
    "get_correlation_id",
    "get_logger",
    "mask_value",
    "sanitize_error_message",
    "set_correlation_id",
]
