"""Collector for background job executions."""

import json
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from observatory.core.collectors.base import masked_text, report_exception
from observatory.core.config import ObservatoryConfig
from observatory.core.errors import exception_location, qualified_name, telemetry_guard
from observatory.core.models import JobInfo
from observatory.core.ports import ExporterPort
from observatory.core.tracking import StartTracker
from observatory.core.writers.base import matches_any, now_iso
from observatory.core.writers.jobs import JobLogger

PROCESSED = "processed"
FAILED = "failed"


class JobCollector:
    """Times job executions delivered as separate start and end events.

    Start snapshots are keyed by :attr:`JobInfo.identity`
    (``connection:queue:job_id``). An end event without a matching start is
    measured from the moment it arrives. A failed job produces a job record
    with status ``failed`` and, unless the error is ignored, an exception
    metric.

    Example:
        ```python
        with collector.track(JobInfo(job_id="42", name="SendInvoice")):
            send_invoice()
        ```
    """

    def __init__(
        self,
        config: ObservatoryConfig,
        exporter: ExporterPort,
        writer: JobLogger,
        tracker: StartTracker | None = None,
    ) -> None:
        self._config = config
        self._exporter = exporter
        self.writer = writer
        self._tracker = tracker or StartTracker(ttl=config.tracking_ttl)

    @property
    def tracker(self) -> StartTracker:
        return self._tracker

    def is_enabled(self) -> bool:
        return self._config.enabled and self._config.jobs.enabled

    def should_monitor(self, job: JobInfo) -> bool:
        return not matches_any(job.name, self._config.jobs.exclude_jobs)

    def start(self, job: JobInfo) -> None:
        if self.is_enabled() and self.should_monitor(job):
            self._tracker.start(job.identity)
        with telemetry_guard("starting job log"):
            self.writer.start(job)

    def end(
        self, job: JobInfo, status: str, error: BaseException | None = None
    ) -> dict[str, Any] | None:
        """Finish the observation of ``job``.

        Returns:
            The record handed to the exporter, or None if the job is not
            monitored.
        """
        record = None
        if self.is_enabled() and self.should_monitor(job):
            with telemetry_guard("recording job"):
                record = self.build_record(job, status, error)
                self._exporter.record_job(record)
        with telemetry_guard("writing job log"):
            self.writer.log(job, status, error)
        if error is not None:
            report_exception(
                self._config,
                self._exporter,
                error,
                {"job_name": job.name, "queue": job.queue},
            )
        return record

    def build_record(
        self, job: JobInfo, status: str, error: BaseException | None = None
    ) -> dict[str, Any]:
        snap = self._tracker.finish(job.identity)
        record: dict[str, Any] = {
            "job_id": job.job_id,
            "job_name": job.name,
            "queue": job.queue,
            "connection": job.connection,
            "status": status,
            "duration": self._tracker.elapsed(snap),
            "attempts": job.attempts,
            "timestamp": now_iso(),
        }
        jobs = self._config.jobs
        if jobs.record_payload:
            record["payload"] = masked_text(
                self.writer.masker,
                json.dumps(job.payload, default=str),
                jobs.max_payload_size,
            )
        if error is not None:
            file, line = exception_location(error)
            record["exception"] = {
                "class": qualified_name(type(error)),
                "message": str(error),
                "file": file,
                "line": line,
            }
        record["labels"] = dict(self._config.labels)
        return record

    @contextmanager
    def track(self, job: JobInfo) -> Iterator[JobInfo]:
        """Observe the body of the ``with`` block as one execution of ``job``.

        Exceptions raised by the block are recorded and re-raised unchanged.
        """
        self.start(job)
        try:
            yield job
        except Exception as exc:
            self.end(job, FAILED, exc)
            raise
        self.end(job, PROCESSED)
