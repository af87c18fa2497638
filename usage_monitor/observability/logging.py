"""
Structured logging.

structlog renders JSON in production and a console format in development.
Request-scoped identifiers (request_id, account_id, trace_id) live in
contextvars so every log call made while serving a request carries them,
including calls from the ledger store and the accountant.

Credentials never reach the output: admin passwords, bcrypt hashes and
Basic authorization headers are replaced before rendering.
"""

import logging
import sys
import uuid
from contextvars import ContextVar

import structlog
from structlog.types import EventDict, Processor

from usage_monitor.config import get_settings

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
account_id_var: ContextVar[int | None] = ContextVar("account_id", default=None)
trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)

_CONTEXT_FIELDS: tuple[tuple[str, ContextVar], ...] = (
    ("request_id", request_id_var),
    ("account_id", account_id_var),
    ("trace_id", trace_id_var),
)

REDACTED = "***REDACTED***"

SENSITIVE_FIELDS = {
    "password",
    "password_hash",
    "authorization",
    "secret",
    "token",
}


# ============================================================================
# PROCESSORS
# ============================================================================


def add_request_context(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Copy set request identifiers into the event without overriding explicit fields."""
    for name, var in _CONTEXT_FIELDS:
        value = var.get()
        if value is not None:
            event_dict.setdefault(name, value)
    return event_dict


def add_service_metadata(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Tag events with service name, version and environment from LoggingConfig."""
    config = get_settings().logging
    event_dict["service"] = config.service_name
    event_dict["version"] = config.service_version
    event_dict["environment"] = config.environment
    return event_dict


def redact_sensitive_fields(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Replace credential fields and mask email local parts.

    ops@acme.example -> ***@acme.example
    """
    for key, value in event_dict.items():
        lowered = key.lower()
        if lowered in SENSITIVE_FIELDS:
            event_dict[key] = REDACTED
        elif lowered == "email" and isinstance(value, str) and "@" in value:
            event_dict[key] = "***@" + value.rsplit("@", 1)[1]
    return event_dict


def add_exception_info(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Flatten exc_info tuples into exception_type / exception_message fields."""
    exc_info = event_dict.get("exc_info")
    if isinstance(exc_info, tuple) and len(exc_info) == 3 and exc_info[0] is not None:
        event_dict["exception_type"] = exc_info[0].__name__
        event_dict["exception_message"] = str(exc_info[1])
    return event_dict


# ============================================================================
# CONFIGURATION
# ============================================================================


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
    colorized: bool = False,
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: JSON lines (production) instead of console output
        colorized: Colorize console output

    A charged request renders as:
        {"event": "Request completed", "level": "info", "status_code": 200,
         "metering": "charged", "remaining_requests": "11",
         "request_id": "req_3f2a...", "account_id": 1,
         "service": "usage-monitor", "timestamp": "2026-03-15T18:00:00.000000Z"}
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_request_context,
        add_service_metadata,
        redact_sensitive_fields,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        add_exception_info,
        structlog.processors.format_exc_info,
    ]
    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=colorized))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


# ============================================================================
# REQUEST CONTEXT
# ============================================================================


class RequestContext:
    """
    Scope request identifiers to a block.

    Usage:
        with RequestContext(request_id=incoming_id):
            ...  # set_account_id() once the account is resolved

    Every identifier, account_id included, is set on entry and restored on
    exit, so an account resolved in one request never leaks into the next.
    """

    def __init__(
        self,
        account_id: int | None = None,
        trace_id: str | None = None,
        request_id: str | None = None,
    ):
        self.request_id = request_id or f"req_{uuid.uuid4().hex[:16]}"
        self.account_id = account_id
        self.trace_id = trace_id or f"trace_{uuid.uuid4().hex[:16]}"
        self._tokens: list = []

    def __enter__(self):
        self._tokens = [
            (request_id_var, request_id_var.set(self.request_id)),
            (account_id_var, account_id_var.set(self.account_id)),
            (trace_id_var, trace_id_var.set(self.trace_id)),
        ]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens = []


def set_account_id(account_id: int | None) -> None:
    account_id_var.set(account_id)


def get_request_id() -> str | None:
    return request_id_var.get()


def get_account_id() -> int | None:
    return account_id_var.get()


def get_trace_id() -> str | None:
    return trace_id_var.get()
