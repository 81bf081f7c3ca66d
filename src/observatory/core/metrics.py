"""Metric identity helpers and name/label sanitisation."""

import re
from collections.abc import Mapping

from observatory.core.models import MetricIdentity, format_bound

MAX_LABEL_LENGTH = 128

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_]")

# Key of one stored value: (sample suffix, label values, "le" bound or None).
SeriesKey = tuple[str, tuple[str, ...], str | None]


def sanitize_name(name: str) -> str:
    """Make ``name`` a valid metric name.

    Characters outside ``[a-zA-Z0-9_]`` become ``_`` and a leading digit is
    prefixed with ``_``. The result always matches
    ``^[a-zA-Z_][a-zA-Z0-9_]*$``.

    Args:
        name: Raw metric or label name.

    Returns:
        Sanitised name.
    """
    sanitized = _INVALID_NAME_CHARS.sub("_", name)
    if not sanitized:
        return "_"
    if sanitized[0].isdigit():
        return f"_{sanitized}"
    return sanitized


def sanitize_namespace(namespace: str) -> str:
    """Sanitise a namespace; an empty namespace stays empty."""
    if not namespace:
        return ""
    return sanitize_name(namespace)


def sanitize_label(value: object) -> str:
    """Convert a label value to a string bounded to MAX_LABEL_LENGTH chars."""
    return str(value)[:MAX_LABEL_LENGTH]


def counter(
    namespace: str, name: str, label_names: tuple[str, ...], help: str
) -> MetricIdentity:
    """Create a counter identity."""
    return MetricIdentity(namespace, name, label_names, "counter", help)


def gauge(
    namespace: str, name: str, label_names: tuple[str, ...], help: str
) -> MetricIdentity:
    """Create a gauge identity."""
    return MetricIdentity(namespace, name, label_names, "gauge", help)


def histogram(
    namespace: str,
    name: str,
    label_names: tuple[str, ...],
    help: str,
    buckets: tuple[float, ...],
) -> MetricIdentity:
    """Create a histogram identity with sorted, de-duplicated buckets."""
    bounds = tuple(sorted({float(b) for b in buckets}))
    return MetricIdentity(namespace, name, label_names, "histogram", help, bounds)


def default_metrics(namespace: str, buckets: tuple[float, ...]) -> list[MetricIdentity]:
    """Return the metric set every registry exporter registers on start-up.

    Args:
        namespace: Sanitised namespace (usually the application name).
        buckets: Duration histogram bucket bounds, in seconds.
    """
    http = ("method", "route", "status_code")
    outbound = ("method", "host", "status_code")
    jobs = ("job_name", "queue", "status")
    return [
        counter(namespace, "http_requests_total", http, "Total number of HTTP requests"),
        histogram(
            namespace,
            "http_request_duration_seconds",
            http,
            "HTTP request duration in seconds",
            buckets,
        ),
        counter(
            namespace,
            "http_outbound_requests_total",
            outbound,
            "Total number of outbound HTTP requests",
        ),
        histogram(
            namespace,
            "http_outbound_duration_seconds",
            outbound,
            "Outbound HTTP request duration in seconds",
            buckets,
        ),
        counter(namespace, "jobs_processed_total", jobs, "Total number of jobs processed"),
        histogram(
            namespace,
            "jobs_duration_seconds",
            jobs,
            "Job execution duration in seconds",
            buckets,
        ),
        counter(
            namespace,
            "exceptions_total",
            ("exception_class", "file"),
            "Total number of exceptions",
        ),
    ]


def label_values_for(
    identity: MetricIdentity, labels: Mapping[str, object]
) -> tuple[str, ...]:
    """Order sanitised label values positionally by the identity's label names."""
    by_name = {sanitize_name(str(k)): v for k, v in labels.items()}
    return tuple(sanitize_label(by_name.get(name, "")) for name in identity.label_names)


def histogram_updates(
    identity: MetricIdentity, label_values: tuple[str, ...], value: float
) -> list[tuple[SeriesKey, float]]:
    """Return the cumulative series increments for one histogram observation."""
    updates: list[tuple[SeriesKey, float]] = [
        (("_bucket", label_values, format_bound(bound)), 1.0)
        for bound in identity.buckets
        if value <= bound
    ]
    updates.append((("_bucket", label_values, "+Inf"), 1.0))
    updates.append((("_sum", label_values, None), value))
    updates.append((("_count", label_values, None), 1.0))
    return updates
