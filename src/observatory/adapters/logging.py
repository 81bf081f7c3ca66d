"""JSON formatting for the structured log channels.

The log writers emit ``logger.info(EVENT, extra={"context": data})`` on a
named channel. This module renders such records as one JSON object per line
and wires a channel to a stream.
"""

import json
import logging
import sys
import traceback
from datetime import UTC, datetime
from typing import IO, Any

from observatory.core.context import LogContextFilter, get_log_context

# Standard LogRecord attributes that should not be treated as extra fields
_STANDARD_LOGRECORD_ATTRS = frozenset(
    {
        "args",
        "asctime",
        "context",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    }
)


class ObservatoryJsonFormatter(logging.Formatter):
    """Formatter writing each record as a single-line JSON object.

    Output keys: ``timestamp``, ``level``, ``channel``, ``message``,
    ``context`` (the writer's record), the current log context (such as
    ``request_id``), scalar extras, and ``exception`` when ``exc_info`` is set.

    Example:
        ```python
        handler = logging.StreamHandler()
        handler.setFormatter(ObservatoryJsonFormatter())
        logging.getLogger("observatory").addHandler(handler)
        ```
    """

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname.lower(),
            "channel": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            data["context"] = context

        for key, value in get_log_context().items():
            if isinstance(value, (str, int, float, bool)):
                data.setdefault(key, value)

        for key, value in record.__dict__.items():
            if key not in _STANDARD_LOGRECORD_ATTRS and isinstance(
                value, (str, int, float, bool)
            ):
                data.setdefault(key, value)

        if record.exc_info:
            exc_type, exc_value, exc_tb = record.exc_info
            data["exception"] = {
                "class": exc_type.__name__ if exc_type is not None else None,
                "message": str(exc_value) if exc_value is not None else "",
                "traceback": "".join(
                    traceback.format_exception(exc_type, exc_value, exc_tb)
                ),
            }

        return json.dumps(data, default=str, ensure_ascii=False)


def configure_channel(
    name: str, stream: IO[str] | None = None, level: int = logging.INFO
) -> logging.Logger:
    """Attach a JSON stream handler to the channel ``name`` once.

    Calling it again for the same channel does not add a second handler.

    Args:
        name: Logger (channel) name.
        stream: Output stream (default: ``sys.stderr``).
        level: Channel level.

    Returns:
        The configured logger.
    """
    channel = logging.getLogger(name)
    channel.setLevel(level)
    for handler in channel.handlers:
        if isinstance(handler.formatter, ObservatoryJsonFormatter):
            return channel
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(ObservatoryJsonFormatter())
    handler.addFilter(LogContextFilter())
    channel.addHandler(handler)
    return channel
