"""Per-request log context carried through ``contextvars``.

Values stored here (the request id, the current request) are visible to every
log line written by the same request or task, including lines written from
threads started with ``contextvars.copy_context()``.
"""

import logging
from contextvars import ContextVar
from typing import Any

_log_context: ContextVar[dict[str, Any] | None] = ContextVar(
    "observatory_log_context", default=None
)


def get_log_context() -> dict[str, Any]:
    """Return a copy of the current log context."""
    return dict(_log_context.get() or {})


def set_log_context(**values: Any) -> None:
    """Replace the current log context."""
    _log_context.set(dict(values))


def update_log_context(**values: Any) -> None:
    """Add or overwrite keys in the current log context."""
    _log_context.set({**(_log_context.get() or {}), **values})


def clear_log_context() -> None:
    _log_context.set(None)


class LogContextFilter(logging.Filter):
    """Copy scalar log-context values onto each record as attributes.

    Example:
        ```python
        handler.addFilter(LogContextFilter())
        set_log_context(request_id="abc")
        logging.getLogger("observatory").info("HTTP_REQUEST")  # record.request_id == "abc"
        ```
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in get_log_context().items():
            if isinstance(value, (str, int, float, bool)) and not hasattr(record, key):
                setattr(record, key, value)
        return True
