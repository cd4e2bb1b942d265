from __future__ import annotations

import logging
import os
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

# Correlation id for the request currently being served
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

_SECRET_KEY_MARKERS = ("password", "secret", "token", "authorization", "credential")
_CREDENTIAL_SCHEMES = ("bearer ", "basic ")
# Nested structures (audit records) are walked at most this deep
_MAX_REDACT_DEPTH = 4


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind ``correlation_id`` (or a fresh UUID) to the current request context."""
    cid = correlation_id or str(uuid.uuid4())
    correlation_id_var.set(cid)
    return cid


def _add_correlation_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    cid = get_correlation_id()
    if cid:
        event_dict.setdefault("correlation_id", cid)
    return event_dict


def _mask(value: str) -> str:
    if len(value) <= 4:
        return "***"
    return value[:2] + "***" + value[-2:]


def _mask_credential_header(value: str) -> str:
    """``Bearer abc.def.ghi`` -> ``Bearer ab***hi``; other strings unchanged."""
    lowered = value.lower()
    for scheme in _CREDENTIAL_SCHEMES:
        if lowered.startswith(scheme):
            return value[: len(scheme)] + _mask(value[len(scheme):])
    return value


def _redact(key: str, value: Any, depth: int) -> Any:
    if isinstance(value, dict):
        if depth >= _MAX_REDACT_DEPTH:
            return value
        return {k: _redact(str(k), v, depth + 1) for k, v in value.items()}
    if not isinstance(value, str):
        return value
    if any(marker in key.lower() for marker in _SECRET_KEY_MARKERS):
        return _mask(value)
    return _mask_credential_header(value)


def _redact_secrets(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Mask credentials wherever they appear in an event.

    Values under secret-bearing keys are masked, as is any string carrying an
    HTTP ``Bearer``/``Basic`` credential; nested dicts such as the ``audit``
    record are walked too.
    """
    for key in list(event_dict.keys()):
        if key == "event":
            continue
        event_dict[key] = _redact(key, event_dict[key], 0)
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
    development_mode: bool = False,
) -> None:
    """Configure structlog for the whole process.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: If True, output JSON; if False, output human-readable
        development_mode: If True, use pretty console output
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_correlation_id,
        _redact_secrets,
        structlog.processors.StackInfoRenderer(),
    ]
    if development_mode or not json_output:
        processors.append(structlog.dev.ConsoleRenderer(colors=development_mode))
    else:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


configure_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    json_output=_env_flag("LOG_JSON", "true"),
    development_mode=_env_flag("LOG_DEV_MODE", "false"),
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
