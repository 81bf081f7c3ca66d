"""Helpers shared by the metrics storage adapters."""

import json
from collections.abc import Mapping

from observatory.core.metrics import SeriesKey
from observatory.core.models import MetricFamily, MetricIdentity, Sample, format_bound


def encode_series(key: SeriesKey) -> str:
    """Serialise a series key for backends that store string fields."""
    suffix, label_values, bound = key
    return json.dumps([suffix, list(label_values), bound], separators=(",", ":"))


def decode_series(data: str) -> SeriesKey:
    suffix, label_values, bound = json.loads(data)
    return suffix, tuple(label_values), bound


def build_family(
    identity: MetricIdentity, series: Mapping[SeriesKey, float]
) -> MetricFamily:
    """Turn the stored series of one metric into an exposition family.

    Histogram buckets that were never hit are filled in with zero so every
    label set exposes the complete, cumulative bucket list.

    Args:
        identity: Registered metric.
        series: Stored values keyed by (suffix, label values, bound).

    Returns:
        MetricFamily with samples ordered by label values.
    """
    family = MetricFamily(name=identity.full_name, kind=identity.kind, help=identity.help)
    label_sets = sorted({labels for _, labels, _ in series})

    for label_values in label_sets:
        labels = dict(zip(identity.label_names, label_values, strict=False))
        if identity.kind != "histogram":
            value = series.get(("", label_values, None), 0.0)
            family.samples.append(Sample(identity.full_name, labels, value))
            continue

        for bound in [*(format_bound(b) for b in identity.buckets), "+Inf"]:
            family.samples.append(
                Sample(
                    f"{identity.full_name}_bucket",
                    {**labels, "le": bound},
                    series.get(("_bucket", label_values, bound), 0.0),
                )
            )
        family.samples.append(
            Sample(
                f"{identity.full_name}_sum",
                labels,
                series.get(("_sum", label_values, None), 0.0),
            )
        )
        family.samples.append(
            Sample(
                f"{identity.full_name}_count",
                labels,
                series.get(("_count", label_values, None), 0.0),
            )
        )

    return family
