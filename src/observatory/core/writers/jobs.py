"""Structured log records for background jobs."""

import json
import logging
from typing import Any

from observatory.core.config import ObservatoryConfig
from observatory.core.errors import exception_location, format_stack_trace, qualified_name
from observatory.core.masking import SensitiveDataMasker
from observatory.core.models import JobInfo
from observatory.core.tracking import StartTracker
from observatory.core.writers.base import (
    LogWriter,
    log_label,
    matches_any,
    now_iso,
    to_mb,
    to_ms,
)


class JobLogger(LogWriter):
    """Writes a ``JOB_PROCESSED`` record when a job finishes.

    Keeps its own start snapshots, keyed by :attr:`JobInfo.identity`. Failed
    jobs are written at ERROR level.
    """

    event = "JOB_PROCESSED"

    def __init__(
        self,
        config: ObservatoryConfig,
        masker: SensitiveDataMasker,
        tracker: StartTracker | None = None,
    ) -> None:
        super().__init__(config, config.job_logger, masker)
        self._tracker = tracker or StartTracker(ttl=config.tracking_ttl)

    def start(self, job: JobInfo) -> None:
        if self.is_enabled():
            self._tracker.start(job.identity)

    def log(self, job: JobInfo, status: str, error: BaseException | None = None) -> None:
        if not self.is_enabled():
            return
        snap = self._tracker.finish(job.identity)
        duration_ms = to_ms(self._tracker.elapsed(snap))
        if not self.should_log(job, status, duration_ms):
            return

        end = self._tracker.snapshot()
        memory = {
            "used_mb": to_mb(end.memory - snap.memory),
            "peak_mb": to_mb(max(end.memory, snap.memory)),
        }
        data = self.build_log_data(job, status, duration_ms, memory, error)
        failed = status == "failed" or error is not None
        self.write(logging.ERROR if failed else logging.INFO, data)

    def should_log(self, job: JobInfo, status: str, duration_ms: float) -> bool:
        section = self._config.job_logger
        if matches_any(job.name, section.exclude_jobs):
            return False
        if section.only_statuses and status not in section.only_statuses:
            return False
        if section.slow_threshold_ms > 0 and duration_ms < section.slow_threshold_ms:
            return False
        return True

    def build_log_data(
        self,
        job: JobInfo,
        status: str,
        duration_ms: float,
        memory: dict[str, float],
        error: BaseException | None = None,
    ) -> dict[str, Any]:
        section = self._config.job_logger
        data: dict[str, Any] = {
            "job_id": job.job_id,
            "job_name": job.name,
            "queue": job.queue,
            "connection": job.connection,
            "status": status,
            "duration_ms": duration_ms,
            "attempts": job.attempts,
            "max_tries": job.max_tries,
            "timestamp": now_iso(),
        }

        if section.log_memory:
            data["memory"] = memory

        if section.log_payload:
            data["payload"] = self._payload(job)

        if error is not None:
            file, line = exception_location(error)
            data["exception"] = {
                "class": qualified_name(type(error)),
                "message": str(error),
                "file": file,
                "line": line,
            }
            if section.log_stack_trace:
                data["exception"]["trace"] = format_stack_trace(
                    error, section.max_stack_frames
                )

        data["labels"] = {
            **section.labels,
            "job_name": log_label(job.name),
            "queue": job.queue,
            "status": status,
        }
        return data

    def _payload(self, job: JobInfo) -> dict[str, Any]:
        masked = self.masker.mask(job.payload)
        size = len(json.dumps(masked, default=str).encode("utf-8"))
        if size > self._config.job_logger.max_payload_size:
            return {"_truncated": True, "_size": size}
        return masked
