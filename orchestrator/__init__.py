"""Enrichment job store, lease queue, worker and trigger service."""

from .store import EnrichmentJobStore
from .queue import LEASE_MINUTES, JobLeaseQueue, new_worker_id
from .service import EnrichmentOrchestrator, next_monthly_run, next_weekly_run
from .worker import QueueWorker

__all__ = [
    "EnrichmentJobStore",
    "LEASE_MINUTES",
    "JobLeaseQueue",
    "new_worker_id",
    "EnrichmentOrchestrator",
    "next_monthly_run",
    "next_weekly_run",
    "QueueWorker",
]
