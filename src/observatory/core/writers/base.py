"""Shared helpers for the structured log writers."""

import fnmatch
import json
import logging
import re
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from observatory.core.config import ObservatoryConfig
from observatory.core.masking import SensitiveDataMasker
from observatory.core.tracking import BYTES_PER_MB

_LOG_LABEL_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


def to_ms(seconds: float) -> float:
    return round(seconds * 1000, 2)


def to_mb(size: int) -> float:
    return round(size / BYTES_PER_MB, 2)


def log_label(value: str) -> str:
    """Restrict a log-aggregator label value to ``[a-zA-Z0-9_-]``."""
    return _LOG_LABEL_CHARS.sub("_", value)


def matches_any(value: str, patterns: Iterable[str], ignore_case: bool = False) -> bool:
    """Exact or glob match of ``value`` against any of ``patterns``."""
    if ignore_case:
        value = value.lower()
    for pattern in patterns:
        if ignore_case:
            pattern = pattern.lower()
        if value == pattern or fnmatch.fnmatchcase(value, pattern):
            return True
    return False


def capture_body(
    masker: SensitiveDataMasker,
    body: bytes | str | None,
    max_size: int,
    content_type: str | None = None,
) -> Any:
    """Prepare a request or response body for a log record.

    JSON bodies are decoded and masked, and form bodies are masked by
    parameter. A decoded body whose masked encoding exceeds ``max_size``
    bytes is logged as truncated JSON text instead; any other text is
    truncated to ``max_size`` bytes. Empty bodies yield ``None``.
    """
    if not body:
        return None
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    try:
        decoded = json.loads(text)
    except ValueError:
        if masker.is_form_body(text, content_type):
            text = masker.mask_query_string(text.strip())
        return masker.truncate(text, max_size)
    if isinstance(decoded, Mapping):
        masked: Any = masker.mask(decoded)
    elif isinstance(decoded, list):
        masked = [masker.mask(item) if isinstance(item, Mapping) else item for item in decoded]
    else:
        return masker.truncate(text, max_size)
    encoded = json.dumps(masked, ensure_ascii=False, default=str)
    if len(encoded.encode("utf-8")) > max_size:
        return masker.truncate(encoded, max_size)
    return masked


class LogWriter:
    """Base for writers emitting one structured event per observation.

    Subclasses set :attr:`event` and pass their configuration section, which
    must carry ``enabled`` and ``channel``.
    """

    event = ""

    def __init__(
        self, config: ObservatoryConfig, section: Any, masker: SensitiveDataMasker
    ) -> None:
        self._config = config
        self._section = section
        self.masker = masker

    @property
    def channel(self) -> str:
        return self._section.channel or self._config.log_channel

    @property
    def logger(self) -> logging.Logger:
        return logging.getLogger(self.channel)

    def is_enabled(self) -> bool:
        return self._config.enabled and self._section.enabled

    @property
    def environment(self) -> str | None:
        return self._config.labels.get("environment")

    def write(self, level: int, data: dict[str, Any]) -> None:
        self.logger.log(level, self.event, extra={"context": data})
