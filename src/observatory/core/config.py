"""Typed configuration for collectors, log writers and exporters.

Configuration is assembled once at startup (from code, a nested mapping or the
process environment) and handed to each component constructor. Components
never look configuration up on their own.
"""

import dataclasses
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

DEFAULT_BUCKETS: tuple[float, ...] = (0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10)

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


class ConfigError(ValueError):
    """Raised when configuration values are unknown or invalid."""


@dataclass
class InboundConfig:
    """Metrics collection for inbound HTTP requests."""

    enabled: bool = True
    methods: tuple[str, ...] = ("GET", "POST", "PUT", "PATCH", "DELETE")
    exclude_paths: tuple[str, ...] = (
        "telescope*",
        "horizon*",
        "_debugbar*",
        "health",
        "metrics",
        "favicon.ico",
    )
    record_body: bool = False
    max_body_size: int = 64000


@dataclass
class InboundLoggerConfig:
    """Structured logging of inbound HTTP requests."""

    enabled: bool = True
    channel: str | None = None
    exclude_paths: tuple[str, ...] = ("telescope*", "horizon*", "health", "metrics")
    slow_threshold_ms: float = 0
    only_status_codes: tuple[int, ...] = ()
    log_body: bool = False
    log_headers: bool = False
    max_body_size: int = 64000
    exclude_headers: tuple[str, ...] = (
        "authorization",
        "cookie",
        "set-cookie",
        "x-api-key",
        "x-csrf-token",
    )
    mask_fields: tuple[str, ...] = (
        "password",
        "password_confirmation",
        "token",
        "secret",
        "api_key",
        "credit_card",
        "cvv",
    )
    mask_replacement: str = "********"
    custom_headers: dict[str, str] = field(default_factory=dict)
    max_query_items: int = 50
    max_query_depth: int = 3


@dataclass
class OutboundConfig:
    """Metrics collection for outbound HTTP calls."""

    enabled: bool = True
    exclude_hosts: tuple[str, ...] = ("localhost", "127.0.0.1")
    record_body: bool = False
    max_body_size: int = 64000


@dataclass
class OutboundLoggerConfig:
    """Structured logging of outbound HTTP calls."""

    enabled: bool = True
    channel: str | None = None
    exclude_hosts: tuple[str, ...] = ("localhost", "127.0.0.1")
    slow_threshold_ms: float = 0
    only_status_codes: tuple[int, ...] = ()
    log_body: bool = False
    max_body_size: int = 64000
    services: dict[str, str] = field(
        default_factory=lambda: {
            "*.stripe.com": "stripe",
            "*.amazonaws.com": "aws",
            "*.sendgrid.com": "sendgrid",
            "*.twilio.com": "twilio",
            "*.slack.com": "slack",
            "*.sentry.io": "sentry",
        }
    )


@dataclass
class JobsConfig:
    """Metrics collection for background jobs."""

    enabled: bool = True
    exclude_jobs: tuple[str, ...] = ()
    record_payload: bool = False
    max_payload_size: int = 64000


@dataclass
class JobLoggerConfig:
    """Structured logging of background jobs."""

    enabled: bool = False
    channel: str | None = None
    exclude_jobs: tuple[str, ...] = ()
    only_statuses: tuple[str, ...] = ()
    slow_threshold_ms: float = 0
    log_payload: bool = False
    max_payload_size: int = 64000
    log_memory: bool = True
    log_stack_trace: bool = False
    max_stack_frames: int = 10
    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class ExceptionsConfig:
    """Exception metrics.

    ``ignore`` accepts exception classes or their dotted names.
    """

    enabled: bool = True
    ignore: tuple[type[BaseException] | str, ...] = ()


@dataclass
class ExceptionLoggerConfig:
    """Structured logging of unhandled exceptions."""

    enabled: bool = False
    channel: str | None = None
    ignore: tuple[type[BaseException] | str, ...] = ()
    ignore_patterns: tuple[str, ...] = ()
    log_stack_trace: bool = True
    max_stack_frames: int = 20
    log_arguments: bool = False
    log_previous: bool = True
    max_previous_depth: int = 3
    log_request_context: bool = True
    log_request_headers: bool = False
    log_request_body: bool = False
    log_user: bool = True
    log_memory: bool = True
    critical_exceptions: tuple[type[BaseException] | str, ...] = (
        SystemError,
        MemoryError,
        TypeError,
    )
    warning_exceptions: tuple[type[BaseException] | str, ...] = (
        ValueError,
        PermissionError,
    )
    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class RequestIdConfig:
    enabled: bool = True
    header: str = "X-Request-Id"
    generate_if_missing: bool = True
    include_in_log_context: bool = True
    include_in_response: bool = True


@dataclass
class RedisConfig:
    host: str = "127.0.0.1"
    port: int = 6379
    password: str | None = None
    database: int = 1
    prefix: str = "observatory:"
    socket_timeout: float = 2.0


@dataclass
class BasicAuthConfig:
    enabled: bool = False
    username: str = "prometheus"
    password: str = ""


@dataclass
class RegistryConfig:
    """Pull-based exporter backed by a metrics storage.

    ``storage`` is one of ``memory``, ``sqlite`` or ``redis``.
    """

    enabled: bool = False
    endpoint: str = "/metrics"
    storage: str = "memory"
    sqlite_path: str = "observatory-metrics.db"
    redis: RedisConfig = field(default_factory=RedisConfig)
    buckets: tuple[float, ...] = DEFAULT_BUCKETS
    auth: BasicAuthConfig = field(default_factory=BasicAuthConfig)


@dataclass
class PushConfig:
    """Push-based exporter delivering batches to a remote ingest API."""

    endpoint: str = "https://api.sidmonitor.com"
    api_key: str = ""
    project_id: str = ""
    batch_size: int = 100
    batch_interval: float = 10.0
    timeout: float = 5.0


@dataclass
class ObservatoryConfig:
    """Root configuration object.

    Attributes:
        enabled: Master switch for every collector and log writer.
        app_name: Application name, used as the metric namespace.
        exporter: ``registry`` (pull) or ``push``.
        log_channel: Default logger name for the log writers.
        labels: Global labels attached to every record.
        tracking_ttl: Seconds after which an unmatched start entry is dropped.
    """

    enabled: bool = True
    app_name: str = "app"
    exporter: str = "registry"
    log_channel: str = "observatory"
    labels: dict[str, str] = field(default_factory=dict)
    tracking_ttl: float = 3600.0
    inbound: InboundConfig = field(default_factory=InboundConfig)
    inbound_logger: InboundLoggerConfig = field(default_factory=InboundLoggerConfig)
    outbound: OutboundConfig = field(default_factory=OutboundConfig)
    outbound_logger: OutboundLoggerConfig = field(default_factory=OutboundLoggerConfig)
    jobs: JobsConfig = field(default_factory=JobsConfig)
    job_logger: JobLoggerConfig = field(default_factory=JobLoggerConfig)
    exceptions: ExceptionsConfig = field(default_factory=ExceptionsConfig)
    exception_logger: ExceptionLoggerConfig = field(
        default_factory=ExceptionLoggerConfig
    )
    request_id: RequestIdConfig = field(default_factory=RequestIdConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    push: PushConfig = field(default_factory=PushConfig)

    def __post_init__(self) -> None:
        if self.exporter not in ("registry", "push"):
            raise ConfigError(f"unknown exporter {self.exporter!r}")
        if self.registry.storage not in ("memory", "sqlite", "redis"):
            raise ConfigError(f"unknown registry storage {self.registry.storage!r}")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ObservatoryConfig":
        """Build a configuration from a nested mapping.

        Nested sections are given as nested mappings, e.g.
        ``{"registry": {"enabled": True, "redis": {"host": "cache"}}}``.

        Raises:
            ConfigError: If a key does not name a configuration field.
        """
        return _build(cls, data)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ObservatoryConfig":
        """Build a configuration from ``OBSERVATORY_*`` environment variables.

        Args:
            environ: Environment mapping (default: ``os.environ``).

        Returns:
            Configuration with environment overrides applied to the defaults.
        """
        env = os.environ if environ is None else environ
        data: dict[str, Any] = {"inbound_logger": {}, "outbound_logger": {}}
        registry: dict[str, Any] = {"redis": {}, "auth": {}}
        push: dict[str, Any] = {}

        _set_bool(data, "enabled", env, "OBSERVATORY_ENABLED")
        _set_str(data, "app_name", env, "APP_NAME")
        _set_str(data, "exporter", env, "OBSERVATORY_EXPORTER")
        _set_str(data, "log_channel", env, "OBSERVATORY_LOG_CHANNEL")
        if "APP_ENV" in env:
            data["labels"] = {"environment": env["APP_ENV"]}

        _set_bool(data["inbound_logger"], "log_body", env, "OBSERVATORY_LOG_BODY")
        _set_float(
            data["inbound_logger"],
            "slow_threshold_ms",
            env,
            "OBSERVATORY_SLOW_THRESHOLD_MS",
        )
        _set_bool(
            data["outbound_logger"], "log_body", env, "OBSERVATORY_OUTBOUND_LOG_BODY"
        )

        _set_bool(registry, "enabled", env, "OBSERVATORY_PROMETHEUS_ENABLED")
        _set_str(registry, "storage", env, "OBSERVATORY_PROMETHEUS_STORAGE")
        _set_str(registry["redis"], "host", env, "REDIS_HOST")
        _set_int(registry["redis"], "port", env, "REDIS_PORT")
        _set_str(registry["redis"], "password", env, "REDIS_PASSWORD")
        _set_int(registry["redis"], "database", env, "OBSERVATORY_REDIS_DB")
        _set_bool(registry["auth"], "enabled", env, "OBSERVATORY_METRICS_AUTH")
        _set_str(registry["auth"], "username", env, "OBSERVATORY_METRICS_USER")
        _set_str(registry["auth"], "password", env, "OBSERVATORY_METRICS_PASS")
        data["registry"] = registry

        _set_str(push, "endpoint", env, "OBSERVATORY_PUSH_ENDPOINT")
        _set_str(push, "api_key", env, "OBSERVATORY_PUSH_API_KEY")
        _set_str(push, "project_id", env, "OBSERVATORY_PUSH_PROJECT_ID")
        data["push"] = push

        return _build(cls, data)


def _build(cls: type, data: Mapping[str, Any]) -> Any:
    """Instantiate dataclass ``cls`` from ``data``, recursing into sections."""
    fields = {f.name: f for f in dataclasses.fields(cls)}
    unknown = set(data) - set(fields)
    if unknown:
        raise ConfigError(
            f"unknown {cls.__name__} option(s): {', '.join(sorted(unknown))}"
        )
    kwargs: dict[str, Any] = {}
    for name, value in data.items():
        section = _section_type(fields[name])
        if section is not None and isinstance(value, Mapping):
            kwargs[name] = _build(section, value)
        elif isinstance(value, list):
            kwargs[name] = tuple(value)
        else:
            kwargs[name] = value
    return cls(**kwargs)


def _section_type(f: dataclasses.Field) -> type | None:
    factory = f.default_factory
    if factory is not dataclasses.MISSING and dataclasses.is_dataclass(factory):
        return factory  # type: ignore[return-value]
    return None


def _set_str(target: dict[str, Any], key: str, env: Mapping[str, str], var: str) -> None:
    if var in env:
        target[key] = env[var]


def _set_bool(target: dict[str, Any], key: str, env: Mapping[str, str], var: str) -> None:
    if var in env:
        target[key] = env[var].strip().lower() in _TRUE_VALUES


def _set_int(target: dict[str, Any], key: str, env: Mapping[str, str], var: str) -> None:
    if var in env:
        try:
            target[key] = int(env[var])
        except ValueError as e:
            raise ConfigError(f"{var} must be an integer, got {env[var]!r}") from e


def _set_float(
    target: dict[str, Any], key: str, env: Mapping[str, str], var: str
) -> None:
    if var in env:
        try:
            target[key] = float(env[var])
        except ValueError as e:
            raise ConfigError(f"{var} must be a number, got {env[var]!r}") from e
