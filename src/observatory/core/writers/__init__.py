"""Structured log writers, one per observed event type."""

from observatory.core.writers.exceptions import ExceptionLogger
from observatory.core.writers.inbound import InboundRequestLogger
from observatory.core.writers.jobs import JobLogger
from observatory.core.writers.outbound import OutboundRequestLogger

__all__ = [
    "ExceptionLogger",
    "InboundRequestLogger",
    "JobLogger",
    "OutboundRequestLogger",
]
