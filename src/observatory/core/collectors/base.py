"""Helpers shared by the collectors."""

import logging
from collections.abc import Mapping
from typing import Any

from observatory.core.config import ObservatoryConfig
from observatory.core.errors import is_ignored_exception, telemetry_guard
from observatory.core.masking import SensitiveDataMasker
from observatory.core.ports import ExporterPort

logger = logging.getLogger(__name__)


def masked_text(
    masker: SensitiveDataMasker,
    content: bytes | str | None,
    max_size: int,
    content_type: str | None = None,
) -> str:
    """Masked ``content`` as text, bounded to its first ``max_size`` bytes."""
    if not content:
        return ""
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    masked = masker.mask_text(content, content_type).encode("utf-8")
    return masked[:max_size].decode("utf-8", errors="ignore")


def report_exception(
    config: ObservatoryConfig,
    exporter: ExporterPort,
    error: BaseException,
    context: Mapping[str, Any] | None = None,
    masker: SensitiveDataMasker | None = None,
) -> bool:
    """Record the exception metric unless exceptions are disabled or ignored.

    ``context`` is masked with ``masker`` before it reaches the exporter.

    Returns:
        True if the exception was handed to the exporter.
    """
    if not (config.enabled and config.exceptions.enabled):
        return False
    if is_ignored_exception(error, config.exceptions.ignore):
        return False
    with telemetry_guard("recording exception metric"):
        if context and masker is not None:
            context = masker.mask(context)
        exporter.record_exception(error, context)
    return True
