"""Core domain models for observed events and metric state."""

import math
from dataclasses import dataclass, field
from typing import Any


@dataclass
class RequestInfo:
    """An inbound HTTP request as seen by the collectors.

    Attributes:
        method: HTTP method, upper case.
        path: Request path (leading slash optional).
        url: Full request URL including query string.
        route: Route name or pattern, if the framework resolved one.
        headers: Request headers.
        query: Parsed query parameters.
        body: Raw request body, possibly partial.
        content_type: Value of the Content-Type header.
        ip: Client address.
        user_agent: Value of the User-Agent header.
        user_id: Identifier of the authenticated user, if any.
        request_id: Correlation id; also used as the tracking key.
    """

    method: str
    path: str
    url: str = ""
    route: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    query: dict[str, Any] = field(default_factory=dict)
    body: bytes = b""
    content_type: str | None = None
    ip: str | None = None
    user_agent: str | None = None
    user_id: str | int | None = None
    request_id: str | None = None

    @property
    def relative_path(self) -> str:
        """Path without its leading slash (``/`` becomes ``/``)."""
        stripped = self.path.lstrip("/")
        return stripped or "/"

    @property
    def tracking_key(self) -> str:
        """Key correlating the start and end of this request."""
        return self.request_id or f"request:{id(self)}"


@dataclass
class ResponseInfo:
    """The response produced for a RequestInfo."""

    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""


@dataclass
class JobInfo:
    """A background job execution.

    Start and end events for the same job are correlated through
    :attr:`identity`.
    """

    job_id: str
    name: str
    queue: str = "default"
    connection: str = "default"
    attempts: int = 1
    payload: dict[str, Any] = field(default_factory=dict)
    max_tries: int | None = None

    @property
    def identity(self) -> str:
        return f"{self.connection}:{self.queue}:{self.job_id}"


@dataclass(frozen=True)
class MetricIdentity:
    """Uniquely identifies one counter, gauge or histogram series family.

    Attributes:
        namespace: Sanitised metric namespace (may be empty).
        name: Sanitised metric name.
        label_names: Ordered label names.
        kind: ``counter``, ``gauge`` or ``histogram``.
        help: Help text rendered with the family.
        buckets: Histogram bucket upper bounds (histograms only).
    """

    namespace: str
    name: str
    label_names: tuple[str, ...]
    kind: str
    help: str = ""
    buckets: tuple[float, ...] = ()

    @property
    def full_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}_{self.name}"
        return self.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "namespace": self.namespace,
            "name": self.name,
            "label_names": list(self.label_names),
            "kind": self.kind,
            "help": self.help,
            "buckets": list(self.buckets),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MetricIdentity":
        return cls(
            namespace=data["namespace"],
            name=data["name"],
            label_names=tuple(data["label_names"]),
            kind=data["kind"],
            help=data.get("help", ""),
            buckets=tuple(data.get("buckets", ())),
        )


@dataclass(frozen=True)
class Sample:
    """One exposition line: ``name{labels} value``."""

    name: str
    labels: dict[str, str]
    value: float


@dataclass
class MetricFamily:
    """All samples of one registered metric, ready for rendering."""

    name: str
    kind: str
    help: str
    samples: list[Sample] = field(default_factory=list)


@dataclass(frozen=True)
class BufferEntry:
    """One unit of push-exporter payload awaiting batched delivery."""

    kind: str
    payload: dict[str, Any]
    app_name: str
    labels: dict[str, str]
    enqueued_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind,
            "data": self.payload,
            "app_name": self.app_name,
            "labels": self.labels,
            "enqueued_at": self.enqueued_at,
        }


def format_bound(bound: float) -> str:
    """Render a histogram bucket bound the way the exposition format expects."""
    if math.isinf(bound):
        return "+Inf"
    if float(bound).is_integer():
        return f"{float(bound):.1f}"
    return repr(float(bound))
