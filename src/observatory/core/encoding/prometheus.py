"""Prometheus text exposition encoder for metric families."""

import math
from collections.abc import Iterable

from observatory.core.models import MetricFamily


def _escape_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def _format_labels(labels: dict[str, str]) -> str:
    if not labels:
        return ""
    pairs = ",".join(f'{k}="{_escape_label_value(v)}"' for k, v in labels.items())
    return "{" + pairs + "}"


def _format_value(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def render(families: Iterable[MetricFamily]) -> str:
    """Encode metric families in the Prometheus text exposition format.

    Every family is emitted with its ``# HELP`` and ``# TYPE`` lines, even when
    it has no samples yet. Families are ordered by name.

    Args:
        families: Metric families to encode.

    Returns:
        Exposition text terminated by a newline, or an empty string when there
        are no families.
    """
    lines: list[str] = []
    for family in sorted(families, key=lambda f: f.name):
        lines.append(f"# HELP {family.name} {_escape_help(family.help)}")
        lines.append(f"# TYPE {family.name} {family.kind}")
        for sample in family.samples:
            lines.append(
                f"{sample.name}{_format_labels(sample.labels)} "
                f"{_format_value(sample.value)}"
            )

    if not lines:
        return ""

    return "\n".join(lines) + "\n"
