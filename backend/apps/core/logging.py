"""
Structured logging configuration using structlog.

Every module logs snake_case events with key/value context:

    from apps.core.logging import get_logger

    logger = get_logger(__name__)
    logger.info("passkey_registered", user_id=42, credential_id="q83v...")

Request-scoped fields (trace_id, user_id) are bound through contextvars by
RequestContextMiddleware and merged into every event emitted while the
request is being handled.

Key material never reaches the log stream: values of the fields listed in
REDACTED_FIELDS are replaced before rendering, including when nested one
level deep inside a dict (e.g. a raw credential response).
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

REDACTED = "[redacted]"

REDACTED_FIELDS = frozenset(
    {
        "public_key",
        "signature",
        "attestation_object",
        "attestationObject",
        "authenticator_data",
        "authenticatorData",
        "client_data_json",
        "clientDataJSON",
        "token",
        "session_token",
        "device_token",
    }
)


def _redact_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: (REDACTED if k in REDACTED_FIELDS else _redact_value(v)) for k, v in value.items()}
    return value


def _redact_key_material(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Replace credential key material and bearer secrets with a placeholder."""
    for key in list(event_dict):
        if key in REDACTED_FIELDS:
            event_dict[key] = REDACTED
        elif isinstance(event_dict[key], dict):
            event_dict[key] = _redact_value(event_dict[key])
    return event_dict


def _add_trace_fields(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Rename request_id to trace_id so upstream proxies and our logs agree.

    Also ensures the trace_id field is a string.
    """
    if "request_id" in event_dict:
        event_dict["trace_id"] = str(event_dict.pop("request_id"))
    elif "trace_id" in event_dict:
        event_dict["trace_id"] = str(event_dict["trace_id"])
    return event_dict


def configure_logging(json_format: bool = True, log_level: str = "INFO") -> None:
    """
    Configure structlog for the application.

    Uses stdlib integration so Django and third-party library logs pass
    through the same processors (including redaction).

    Args:
        json_format: If True, output JSON (production). If False, pretty console output (development).
        log_level: Minimum log level to output.
    """
    log_level_int = getattr(logging, log_level.upper(), logging.INFO)

    # Processors that run before passing to stdlib
    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        _add_trace_fields,
        _redact_key_material,
    ]

    if json_format:
        renderer: Processor = structlog.processors.JSONRenderer()
        pre_chain.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level_int)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name, typically __name__ of the calling module.

    Returns:
        A bound structlog logger with context support.
    """
    return structlog.get_logger(name)


def bind_contextvars(**kwargs: Any) -> None:
    """
    Bind key-value pairs to the current context.

    These values will be included in all subsequent log messages
    within the current request context.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_contextvars() -> None:
    """
    Clear all bound context variables.

    Call this at the end of request processing to prevent
    context leakage between requests.
    """
    structlog.contextvars.clear_contextvars()
