"""Store-backed repository for enrichment jobs."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set

from core import ACTIVE_JOB_STATUSES, EnrichmentJob, EnrichmentType, JobStatus
from storage import DataStore, Tables, asc, desc, eq, gte, in_, not_null
from utils.exceptions import ActiveJobError


logger = logging.getLogger(__name__)

ERROR_MESSAGE_MAX_LENGTH = 500


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _active_statuses() -> List[str]:
    return [status.value for status in ACTIVE_JOB_STATUSES]


class EnrichmentJobStore:
    """Job lifecycle writes. At most one queued/processing job per chef."""

    def __init__(self, store: DataStore, error_max_length: int = ERROR_MESSAGE_MAX_LENGTH) -> None:
        self.store = store
        self.error_max_length = error_max_length

    def get_job(self, job_id: str) -> Optional[EnrichmentJob]:
        row = self.store.select_one(Tables.JOBS, [eq("id", job_id)])
        return EnrichmentJob(**row) if row else None

    def find_active_job(self, chef_id: str) -> Optional[EnrichmentJob]:
        row = self.store.select_one(
            Tables.JOBS,
            [eq("chef_id", chef_id), in_("status", _active_statuses())],
            order_by=[asc("created_at")],
        )
        return EnrichmentJob(**row) if row else None

    def active_chef_ids(self, chef_ids: Iterable[str]) -> Set[str]:
        ids = [str(item) for item in chef_ids]
        if not ids:
            return set()
        rows = self.store.select(Tables.JOBS, [in_("chef_id", ids), in_("status", _active_statuses())])
        return {str(row["chef_id"]) for row in rows}

    def create_job(
        self,
        chef_id: str,
        enrichment_type: EnrichmentType,
        *,
        priority_score: float = 0.0,
        triggered_by: Optional[str] = None,
        queue_item_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> EnrichmentJob:
        """Insert a queued job, refusing when the chef already has an active one.

        The existence check and the insert are separate statements; two concurrent
        creators can both pass the check.
        """
        active = self.find_active_job(chef_id)
        if active is not None:
            raise ActiveJobError(chef_id, job_id=active.id, status=active.status.value)

        current = now or _utcnow()
        row = {
            "chef_id": chef_id,
            "status": JobStatus.QUEUED.value,
            "enrichment_type": EnrichmentType(enrichment_type).value,
            "priority_score": float(priority_score),
            "triggered_by": triggered_by,
            "queue_item_id": queue_item_id,
            "metadata": dict(metadata or {}),
            "tokens_used": 0,
            "cost_usd": 0.0,
            "locked_until": None,
            "locked_by": None,
            "created_at": current,
            "updated_at": current,
        }
        created = self.store.insert(Tables.JOBS, row)[0]
        job = EnrichmentJob(**created)
        logger.info(
            "[Jobs] Queued %s job %s for chef %s (priority %.1f)",
            job.enrichment_type.value,
            job.id,
            chef_id,
            job.priority_score,
        )
        return job

    def count_by_status(self, status: JobStatus) -> int:
        return self.store.count(Tables.JOBS, [eq("status", JobStatus(status).value)])

    def count_finished_since(self, status: JobStatus, since: datetime) -> int:
        return self.store.count(
            Tables.JOBS,
            [eq("status", JobStatus(status).value), gte("completed_at", since)],
        )

    def list_jobs(self, status: Optional[JobStatus] = None, limit: int = 50) -> List[EnrichmentJob]:
        filters = [eq("status", JobStatus(status).value)] if status else []
        rows = self.store.select(Tables.JOBS, filters, order_by=[desc("created_at")], limit=limit)
        return [EnrichmentJob(**row) for row in rows]

    def recent_completed(self, limit: int = 100) -> List[EnrichmentJob]:
        rows = self.store.select(
            Tables.JOBS,
            [eq("status", JobStatus.COMPLETED.value), not_null("completed_at")],
            order_by=[desc("completed_at")],
            limit=limit,
        )
        return [EnrichmentJob(**row) for row in rows]

    def last_created(self, enrichment_type: EnrichmentType) -> Optional[EnrichmentJob]:
        row = self.store.select_one(
            Tables.JOBS,
            [eq("enrichment_type", EnrichmentType(enrichment_type).value)],
            order_by=[desc("created_at")],
        )
        return EnrichmentJob(**row) if row else None

    def mark_processing(self, job_id: str, now: Optional[datetime] = None) -> Optional[EnrichmentJob]:
        current = now or _utcnow()
        rows = self.store.update(
            Tables.JOBS,
            {"status": JobStatus.PROCESSING.value, "started_at": current, "updated_at": current},
            [eq("id", job_id)],
        )
        return EnrichmentJob(**rows[0]) if rows else None

    def mark_completed(
        self,
        job_id: str,
        *,
        tokens_used: int = 0,
        cost_usd: float = 0.0,
        now: Optional[datetime] = None,
    ) -> Optional[EnrichmentJob]:
        current = now or _utcnow()
        rows = self.store.update(
            Tables.JOBS,
            {
                "status": JobStatus.COMPLETED.value,
                "completed_at": current,
                "updated_at": current,
                "tokens_used": int(tokens_used),
                "cost_usd": float(cost_usd),
                "error_message": None,
            },
            [eq("id", job_id)],
        )
        return EnrichmentJob(**rows[0]) if rows else None

    def mark_failed(self, job_id: str, error: str, now: Optional[datetime] = None) -> Optional[EnrichmentJob]:
        """Terminal failure. There is no automatic requeue."""
        current = now or _utcnow()
        message = str(error or "Unknown error")[: self.error_max_length]
        rows = self.store.update(
            Tables.JOBS,
            {
                "status": JobStatus.FAILED.value,
                "error_message": message,
                "completed_at": current,
                "updated_at": current,
            },
            [eq("id", job_id)],
        )
        return EnrichmentJob(**rows[0]) if rows else None
