"""
Structured Logging Utilities
=============================

Structured logging for the bridge: JSON output for log aggregation,
a column-aligned human format for development, and a trace id that ties
together every log line produced while handling one camera event.

Direct logger.info(msg, extra={...}) calls are preferred over helper wrappers.
"""

import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from pythonjsonlogger.json import JsonFormatter

# ============================================================================
# Trace Context
# ============================================================================

trace_id_var: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)


def get_trace_id() -> Optional[str]:
    """Return the trace id of the current context, or None."""
    return trace_id_var.get()


def generate_trace_id(prefix: str = "trace") -> str:
    """
    Generate a new short trace id.

    Args:
        prefix: Prefix for the id (e.g. "evt", "reload")

    Returns:
        Trace id formatted as {prefix}-{short_uuid}
    """
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


@contextmanager
def trace_context(trace_id: Optional[str] = None):
    """
    Propagate a trace id through everything executed inside the block.

    Args:
        trace_id: Trace id to propagate. Generated if None.

    Usage:
        with trace_context(generate_trace_id("evt")):
            group.on_raw_event(...)
    """
    if trace_id is None:
        trace_id = generate_trace_id()

    token = trace_id_var.set(trace_id)
    try:
        yield trace_id
    finally:
        trace_id_var.reset(token)


# ============================================================================
# Formatters
# ============================================================================


class BridgeJsonFormatter(JsonFormatter):
    """JSON formatter with renamed level/logger fields and the context trace id."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        if "levelname" in log_record:
            log_record["level"] = log_record.pop("levelname")

        if "name" in log_record:
            log_record["logger"] = log_record.pop("name")

        current_trace_id = get_trace_id()
        if current_trace_id and "trace_id" not in log_record:
            log_record["trace_id"] = current_trace_id


class HumanReadableFormatter(logging.Formatter):
    """Column-aligned formatter for development consoles."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(component)-18s | %(event)-24s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "component"):
            record.component = record.name.split(".")[-1]
        if not hasattr(record, "event"):
            record.event = "-"
        return super().format(record)


class AutoFlushStreamHandler(logging.StreamHandler):
    """StreamHandler that flushes after every emit."""

    def emit(self, record):
        super().emit(record)
        self.flush()


# ============================================================================
# Logger Setup
# ============================================================================


def setup_structured_logging(
    level: str = "INFO",
    json_format: bool = True,
    indent: Optional[int] = None,
    output_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
        json_format: JSON lines if True, human-readable columns otherwise
        indent: JSON indent (None = compact)
        output_file: Log file path with rotation (None = stdout)
        max_bytes: Size of one log file before rotating
        backup_count: Number of rotated files to keep

    Usage:
        # Development
        setup_structured_logging(level="DEBUG", json_format=False)

        # Production
        setup_structured_logging(level="INFO", output_file="logs/onvif2mqtt.log")
    """
    if json_format:
        formatter = BridgeJsonFormatter(
            "%(timestamp)s %(level)s %(logger)s %(message)s",
            timestamp=True,
            json_indent=indent,
        )
    else:
        formatter = HumanReadableFormatter()

    if output_file:
        log_path = Path(output_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        handler = RotatingFileHandler(
            filename=str(log_path),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
    else:
        handler = AutoFlushStreamHandler(sys.stdout)

    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))


# ============================================================================
# ComponentLogger
# ============================================================================


class ComponentLogger(logging.LoggerAdapter):
    """
    Logger adapter that adds 'component' and 'trace_id' to every record.

    Usage:
        >>> logger = ComponentLogger(logging.getLogger(__name__), {"component": "pipeline"})
        >>> logger.info("Published", extra={"event": "state_published", "device_id": "cam1"})

    User-provided extra fields override the adapter defaults.
    """

    def process(self, msg, kwargs):
        extra = dict(self.extra)

        trace_id = get_trace_id()
        if trace_id:
            extra["trace_id"] = trace_id

        if "extra" in kwargs:
            extra.update(kwargs["extra"])

        kwargs["extra"] = extra
        return msg, kwargs


def get_component_logger(name: str, component: str) -> ComponentLogger:
    """
    Get a logger that tags every record with `component`.

    Args:
        name: Logger name (usually __name__)
        component: Component name (e.g. "subscription_group", "publisher")
    """
    return ComponentLogger(logging.getLogger(name), {"component": component})


__all__ = [
    "setup_structured_logging",
    "trace_context",
    "get_trace_id",
    "generate_trace_id",
    "ComponentLogger",
    "get_component_logger",
    "BridgeJsonFormatter",
    "HumanReadableFormatter",
]
