"""Lease-based claiming of queued enrichment jobs."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from uuid import uuid4

from core import EnrichmentJob, JobStatus
from storage import DataStore, Tables, any_of, asc, desc, eq, in_, is_null, lt


logger = logging.getLogger(__name__)

# Fixed lease; never renewed while a job runs. A job that outlives it can be
# claimed again by another worker while still in flight.
LEASE_MINUTES = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_worker_id(now: Optional[datetime] = None) -> str:
    current = now or _utcnow()
    return f"cron-{int(current.timestamp() * 1000)}-{uuid4().hex[:6]}"


class JobLeaseQueue:
    """Claims queued jobs by stamping a time-bounded lease."""

    def __init__(self, store: DataStore, lease_minutes: int = LEASE_MINUTES) -> None:
        self.store = store
        self.lease_minutes = lease_minutes

    def claim(self, worker_id: str, limit: int = 2, now: Optional[datetime] = None) -> List[EnrichmentJob]:
        """Claim up to ``limit`` queued jobs whose lease is free or expired.

        The stamping update repeats the lease predicate, so a job stamped by another
        worker between the read and the write is skipped rather than stolen.
        """
        current = now or _utcnow()
        lease_free = any_of(is_null("locked_until"), lt("locked_until", current))
        candidates = self.store.select(
            Tables.JOBS,
            [eq("status", JobStatus.QUEUED.value), lease_free],
            order_by=[desc("priority_score"), asc("created_at")],
            limit=limit,
        )
        if not candidates:
            return []

        ids = [str(row["id"]) for row in candidates]
        lease_until = current + timedelta(minutes=self.lease_minutes)
        stamped = self.store.update(
            Tables.JOBS,
            {"locked_until": lease_until, "locked_by": worker_id, "updated_at": current},
            [in_("id", ids), eq("status", JobStatus.QUEUED.value), lease_free],
        )
        mine = {str(row["id"]): row for row in stamped if row.get("locked_by") == worker_id}
        claimed = [EnrichmentJob(**mine[job_id]) for job_id in ids if job_id in mine]

        lost = len(ids) - len(claimed)
        if lost:
            logger.info("[Queue] %s lost %d job(s) to a concurrent claimer", worker_id, lost)
        if claimed:
            logger.info(
                "[Queue] %s claimed %d job(s) until %s",
                worker_id,
                len(claimed),
                lease_until.isoformat(timespec="seconds"),
            )
        return claimed

    def lease_expired(self, job: EnrichmentJob, now: Optional[datetime] = None) -> bool:
        if job.locked_until is None:
            return True
        return job.locked_until <= (now or _utcnow())

    def release(self, job_id: str, worker_id: str, now: Optional[datetime] = None) -> bool:
        """Drop a lease this worker holds on a job it never started."""
        rows = self.store.update(
            Tables.JOBS,
            {"locked_until": None, "locked_by": None, "updated_at": now or _utcnow()},
            [eq("id", job_id), eq("locked_by", worker_id), eq("status", JobStatus.QUEUED.value)],
        )
        return bool(rows)
