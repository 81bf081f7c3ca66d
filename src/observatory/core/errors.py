"""Error types, telemetry failure isolation and exception formatting."""

import fnmatch
import logging
import os
import traceback
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Any

logger = logging.getLogger(__name__)

MAX_ARGUMENT_LENGTH = 100


class StorageUnavailableError(RuntimeError):
    """Raised by a metrics storage adapter when its backend cannot be reached."""


@contextmanager
def telemetry_guard(operation: str) -> Iterator[None]:
    """Log and swallow any failure raised while recording telemetry.

    Observed requests, jobs and outbound calls must never fail because a
    metric or log line could not be written.

    Args:
        operation: Short description used in the diagnostic log line.
    """
    try:
        yield
    except Exception:
        logger.exception("Telemetry failure while %s", operation)


def qualified_name(cls: type) -> str:
    """Dotted name of a class; builtins are returned without module."""
    if cls.__module__ == "builtins":
        return cls.__qualname__
    return f"{cls.__module__}.{cls.__qualname__}"


def matches_exception(
    error: BaseException, specs: Iterable[type[BaseException] | str]
) -> bool:
    """Return True if ``error`` is an instance of any class in ``specs``.

    Specs are exception classes or dotted/short class names; names are matched
    against every class in the error's MRO.
    """
    names: set[str] | None = None
    for spec in specs:
        if isinstance(spec, type):
            if isinstance(error, spec):
                return True
            continue
        if names is None:
            names = set()
            for cls in type(error).__mro__:
                names.add(cls.__qualname__)
                names.add(qualified_name(cls))
        if spec in names:
            return True
    return False


def is_ignored_exception(
    error: BaseException,
    ignore: Iterable[type[BaseException] | str],
    patterns: Iterable[str] = (),
) -> bool:
    """Return True if ``error`` matches an ignore class or class-name glob."""
    if matches_exception(error, ignore):
        return True
    name = qualified_name(type(error))
    return any(fnmatch.fnmatchcase(name, pattern) for pattern in patterns)


def severity_of(
    error: BaseException,
    critical: Iterable[type[BaseException] | str],
    warning: Iterable[type[BaseException] | str],
) -> str:
    """Classify an exception as ``critical``, ``warning`` or ``error``.

    Critical classes are checked before warning classes.
    """
    if matches_exception(error, critical):
        return "critical"
    if matches_exception(error, warning):
        return "warning"
    return "error"


def exception_location(error: BaseException) -> tuple[str, int]:
    """File and line where ``error`` was raised (innermost traceback frame)."""
    tb = error.__traceback__
    if tb is None:
        return "unknown", 0
    while tb.tb_next is not None:
        tb = tb.tb_next
    return tb.tb_frame.f_code.co_filename, tb.tb_lineno


def exception_file_basename(error: BaseException) -> str:
    filename, _ = exception_location(error)
    return os.path.basename(filename) or "unknown"


def exception_code(error: BaseException) -> int | str:
    """The ``errno`` or ``code`` attribute of an exception, else 0."""
    for attr in ("errno", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, (int, str)):
            return value
    return 0


def _format_argument(value: str) -> str:
    if len(value) > MAX_ARGUMENT_LENGTH:
        return value[:MAX_ARGUMENT_LENGTH] + "..."
    return value


def format_stack_trace(
    error: BaseException, max_frames: int, with_arguments: bool = False
) -> list[dict[str, Any]]:
    """Return up to ``max_frames`` frames of ``error``, innermost first.

    Args:
        error: Exception whose traceback is formatted.
        max_frames: Maximum number of frames returned.
        with_arguments: Include frame locals as bounded ``repr`` strings.
    """
    if error.__traceback__ is None or max_frames <= 0:
        return []
    summary = traceback.StackSummary.extract(
        traceback.walk_tb(error.__traceback__), capture_locals=with_arguments
    )
    frames: list[dict[str, Any]] = []
    for frame in reversed(summary):
        entry: dict[str, Any] = {
            "file": frame.filename or "unknown",
            "line": frame.lineno or 0,
            "function": frame.name or "unknown",
        }
        if with_arguments and frame.locals:
            entry["args"] = {
                name: _format_argument(value) for name, value in frame.locals.items()
            }
        frames.append(entry)
        if len(frames) >= max_frames:
            break
    return frames


def previous_exception(error: BaseException) -> BaseException | None:
    """The exception ``error`` was raised from, or was raised while handling."""
    if error.__cause__ is not None:
        return error.__cause__
    if error.__suppress_context__:
        return None
    return error.__context__


def format_exception_chain(error: BaseException, remaining: int) -> dict[str, Any]:
    """Describe ``error`` and at most ``remaining - 1`` of its predecessors.

    Args:
        error: Exception to describe.
        remaining: Number of chain links still allowed, including this one.
    """
    file, line = exception_location(error)
    data: dict[str, Any] = {
        "class": qualified_name(type(error)),
        "message": str(error),
        "code": exception_code(error),
        "file": file,
        "line": line,
    }
    previous = previous_exception(error)
    if previous is not None and remaining > 1:
        data["previous"] = format_exception_chain(previous, remaining - 1)
    return data
