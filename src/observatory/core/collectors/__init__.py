"""Collectors timing inbound requests, outbound calls and jobs."""

from observatory.core.collectors.inbound import InboundCollector
from observatory.core.collectors.jobs import FAILED, PROCESSED, JobCollector
from observatory.core.collectors.outbound import OutboundCollector

__all__ = [
    "FAILED",
    "PROCESSED",
    "InboundCollector",
    "JobCollector",
    "OutboundCollector",
]
