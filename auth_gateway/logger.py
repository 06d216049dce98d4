"""Structured logging for the gateway, using structlog.

Lines are rendered in the same shape as Uvicorn's own output so gateway events
and server messages interleave cleanly, e.g.::

    WARNING:  [web-1:4242] auth_failed provider=ldap reason=invalid_credentials request_id=9f2c...
"""

import logging
import os
import socket

import structlog

from auth_gateway.config import settings

_HOSTNAME = socket.gethostname()
_PID = os.getpid()

# Keys whose values never reach a log line, whatever a caller passes.
REDACTED_KEYS = frozenset(
    {
        "password",
        "bind_password",
        "client_secret",
        "access_token",
        "refresh_token",
        "id_token",
        "cookie",
        "authorization",
    }
)
_REDACTED = "***"

CALLSITE_PARAMETERS = (
    structlog.processors.CallsiteParameter.MODULE,
    structlog.processors.CallsiteParameter.FUNC_NAME,
    structlog.processors.CallsiteParameter.LINENO,
)


def _redact_secrets(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    for key in REDACTED_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = _REDACTED
    return event_dict


def _render_uvicorn_style(logger: logging.Logger, method_name: str, event_dict: dict) -> str:
    level = event_dict.pop("level", method_name).upper()
    event = event_dict.pop("event", "")

    line = f"{level + ':':<9} [{_HOSTNAME}:{_PID}] {event}"
    context = " ".join(f"{key}={value}" for key, value in event_dict.items())
    return f"{line} {context}" if context else line


def setup_logging(debug: bool | None = None) -> None:
    """
    Configure structlog for the gateway.

    Request-scoped values bound with ``bind_request_context`` are merged into
    every event. When ``debug`` (default: ``settings.debug``) is true, debug
    events are emitted and each line carries its module, function and line
    number.
    """
    if debug is None:
        debug = settings.debug

    # AccessLogMiddleware writes the access lines; Uvicorn's would duplicate them
    # and include query strings (authorization codes).
    uvicorn_access = logging.getLogger("uvicorn.access")
    uvicorn_access.handlers = []
    uvicorn_access.propagate = False
    uvicorn_access.disabled = True

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
    ]
    if debug:
        # Walks the stack on every event.
        processors.append(
            structlog.processors.CallsiteParameterAdder(CALLSITE_PARAMETERS)
        )
    processors += [_redact_secrets, _render_uvicorn_style]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if debug else logging.INFO
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,  # create_app() may reconfigure
    )


def bind_request_context(**values: object) -> None:
    """Replace the per-request logging context (request id, path, ...)."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**values)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Return a logger, typically ``get_logger(__name__)``."""
    return structlog.get_logger(name)
