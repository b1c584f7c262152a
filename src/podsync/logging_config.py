"""Logging configuration and custom formatters for podsync.

This module provides the record factory, context filter, and formatters used
by the application. Logs are emitted either as human-readable lines with
appended ``key:value`` extras or as JSON documents, and every record produced
while a user sync is running carries that run's context id.
"""

from collections.abc import Mapping
from contextvars import ContextVar
import json
import logging
from logging.config import dictConfig
import sys
from typing import Any, Literal

_original_log_record_factory = logging.getLogRecordFactory()

_STANDARD_RECORD_ATTRS = frozenset(
    {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "thread",
        "threadName",
        "taskName",
        "context_id",
        "exc_custom_attrs",
        "semantic_trace",
    }
)


def custom_record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    """Create a log record enriched with exception context.

    Walks the exception's cause chain, collecting public attributes (such as
    ``user_id`` or ``episode_id``) and the message of every link, so the
    formatters can show where a failure came from without a full traceback.

    Args:
        *args: Arguments passed to the original log record factory.
        **kwargs: Keyword arguments passed to the original log record factory.

    Returns:
        LogRecord with ``exc_custom_attrs`` and ``semantic_trace`` set when
        exception information is attached.
    """
    record = _original_log_record_factory(*args, **kwargs)
    if not record.exc_info or not record.exc_info[1]:
        return record

    collected_attrs: dict[str, Any] = {}
    chain_messages: list[str] = []

    current_exc: BaseException | None = record.exc_info[1]
    while current_exc:
        for name, val in vars(current_exc).items():
            if not name.startswith("_") and val is not None:
                collected_attrs.setdefault(name, val)
        chain_messages.append(f"{type(current_exc).__name__}: {current_exc}")
        current_exc = current_exc.__cause__ or current_exc.__context__

    if collected_attrs:
        record.exc_custom_attrs = collected_attrs
    record.semantic_trace = chain_messages
    return record


_context_id_var: ContextVar[str | None] = ContextVar("context_id", default=None)


def set_context_id(context_id: str | None) -> None:
    """Set the log correlation id for the current async context.

    Tasks spawned after this call inherit the value, so one call at the start
    of a user's sync tags every record that sync produces.

    Args:
        context_id: Identifier to attach (e.g., ``"user-42-1700000000"``), or
            None to clear it.
    """
    _context_id_var.set(context_id)


def get_context_id() -> str | None:
    """Return the log correlation id of the current async context."""
    return _context_id_var.get()


class ContextIdFilter(logging.Filter):
    """Inject the current context id into every record that passes through."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Attach ``context_id`` when one is set.

        Args:
            record: The log record to modify.

        Returns:
            Always True.
        """
        context_id = _context_id_var.get()
        if context_id is not None:
            record.context_id = context_id
        return True


_should_include_stacktrace: bool = False


def _format_extra_value(value: Any) -> str:
    if isinstance(value, dict | list | tuple):
        try:
            return json.dumps(value, sort_keys=True, separators=(", ", ":"), default=str)
        except TypeError:
            return f"[Unserializable Value: {type(value).__name__}]"  # type: ignore
    return str(value)


class HumanReadableExtrasFormatter(logging.Formatter):
    """Formatter producing one readable line per record plus its extras.

    The line is ``<time> <level> [<logger>] CtxID:<id> k:v k:v - <message>``.
    When stack traces are disabled, exceptions are rendered as a short
    ``Error: ... / Caused by: ...`` chain instead.
    """

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        style: Literal["%", "{", "$"] = "%",
        validate: bool = True,
        *,
        defaults: Mapping[str, Any] | None = None,
    ):
        super().__init__(fmt, datefmt, style, validate, defaults=defaults)

    def _collect_extras(self, record: logging.LogRecord) -> dict[str, Any]:
        extras: dict[str, Any] = {}
        exc_attrs = getattr(record, "exc_custom_attrs", None)
        if isinstance(exc_attrs, dict):
            extras.update(exc_attrs)  # type: ignore
        for key, value in record.__dict__.items():
            if key not in _STANDARD_RECORD_ATTRS and not key.startswith("_"):
                extras[key] = value
        return extras

    def format(self, record: logging.LogRecord) -> str:
        """Format a record as a single human-readable line.

        Args:
            record: The log record to format.

        Returns:
            The formatted log line, followed by exception details if present.
        """
        parts = [
            self.formatTime(record, self.datefmt),
            record.levelname,
            f"[{record.name}]",
        ]
        ctx_id = getattr(record, "context_id", None)
        if ctx_id is not None:
            parts.append(f"CtxID:{ctx_id}")

        extras = self._collect_extras(record)
        if extras:
            parts.append(
                " ".join(f"{k}:{_format_extra_value(v)}" for k, v in extras.items())
            )

        message = record.getMessage()
        parts.append(f"- {message}" if message else "-")
        line = " ".join(parts)

        if record.exc_info:
            if _should_include_stacktrace:
                if not record.exc_text:
                    record.exc_text = self.formatException(record.exc_info)
                if record.exc_text:
                    line += "\n" + record.exc_text
            else:
                trace: list[str] | None = getattr(record, "semantic_trace", None)
                if trace:
                    line += "\nError: " + trace[0]
                    for cause in trace[1:]:
                        line += f"\n  Caused by: {cause}"

        if record.stack_info:
            line += "\n" + self.formatStack(record.stack_info)

        return line


LOGGING_CONFIG: dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "context_id_filter": {
            "()": ContextIdFilter,
        },
    },
    "formatters": {
        "human_readable_formatter": {
            "()": HumanReadableExtrasFormatter,
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
        "json_formatter": {
            "()": "pythonjsonlogger.json.JsonFormatter",
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
        },
    },
    "handlers": {
        "console_handler": {
            "class": "logging.StreamHandler",
            "formatter": "human_readable_formatter",
            "stream": "ext://sys.stdout",
            "filters": ["context_id_filter"],
        },
    },
    "loggers": {
        "podsync": {
            "handlers": ["console_handler"],
            "level": "INFO",
            "propagate": False,
        },
        "apscheduler": {
            "handlers": ["console_handler"],
            "level": "WARNING",
            "propagate": False,
        },
    },
    "root": {
        "handlers": ["console_handler"],
        "level": "WARNING",
    },
}


def setup_logging(
    log_format_type: Literal["human", "json"],
    app_log_level_name: str,
    include_stacktrace: bool,
) -> None:
    """Configure logging for the application.

    Args:
        log_format_type: Format for logs ('human' or 'json').
        app_log_level_name: Logging level name for podsync loggers (e.g., 'INFO').
        include_stacktrace: Whether to include full stack traces in error logs.
    """
    global _should_include_stacktrace
    _should_include_stacktrace = include_stacktrace

    logging.setLogRecordFactory(custom_record_factory)

    level_name = app_log_level_name.upper()
    if not isinstance(getattr(logging, level_name, None), int):
        print(
            f"Warning: Invalid LOG_LEVEL '{app_log_level_name}'. Defaulting to INFO.",
            file=sys.stderr,
        )
        level_name = "INFO"
    LOGGING_CONFIG["loggers"]["podsync"]["level"] = level_name

    match log_format_type.lower():
        case "json":
            formatter = "json_formatter"
        case _:
            formatter = "human_readable_formatter"
    LOGGING_CONFIG["handlers"]["console_handler"]["formatter"] = formatter

    dictConfig(LOGGING_CONFIG)
