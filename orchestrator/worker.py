"""Queue worker: claims leased jobs and runs them one at a time."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from budget import BudgetLedger
from core import EnrichmentJob
from utils.exceptions import EnrichmentError, ExtractionError

from .queue import JobLeaseQueue, new_worker_id
from .store import EnrichmentJobStore


logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 2
DEFAULT_MAX_RUNTIME_SECONDS = 540


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QueueWorker:
    """
    One bounded invocation of the job queue.

    Every job is checkpointed on its own: it reaches completed or failed before the
    next one starts, so running out of wall-clock time loses at most the job in flight.
    Jobs claimed but not started before the deadline have their lease released.
    """

    def __init__(
        self,
        queue: JobLeaseQueue,
        jobs: EnrichmentJobStore,
        ledger: BudgetLedger,
        workflow: Any,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_runtime_seconds: float = DEFAULT_MAX_RUNTIME_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.queue = queue
        self.jobs = jobs
        self.ledger = ledger
        self.workflow = workflow
        self.batch_size = batch_size
        self.max_runtime_seconds = max_runtime_seconds
        self.clock = clock

    async def run_once(self, now: Optional[datetime] = None, worker_id: Optional[str] = None) -> Dict[str, Any]:
        started = self.clock()
        worker_id = worker_id or new_worker_id(now)
        summary: Dict[str, Any] = {
            "worker_id": worker_id,
            "claimed": 0,
            "completed": 0,
            "failed": 0,
            "skipped": 0,
            "cost_usd": 0.0,
            "errors": [],
        }

        claimed = self.queue.claim(worker_id, self.batch_size, now)
        summary["claimed"] = len(claimed)
        if not claimed:
            logger.info("[Worker] %s found no claimable jobs", worker_id)
            return summary

        for job in claimed:
            if self.clock() - started >= self.max_runtime_seconds:
                self.queue.release(job.id, worker_id, now)
                summary["skipped"] += 1
                continue
            await self._process(job, summary, now)

        summary["cost_usd"] = round(summary["cost_usd"], 6)
        logger.info(
            "[Worker] %s done: %d completed, %d failed, %d skipped, $%.4f",
            worker_id,
            summary["completed"],
            summary["failed"],
            summary["skipped"],
            summary["cost_usd"],
        )
        return summary

    async def _process(self, job: EnrichmentJob, summary: Dict[str, Any], now: Optional[datetime]) -> None:
        # Status moves to processing by id only; the lease is not re-checked or renewed.
        self.jobs.mark_processing(job.id, now or _utcnow())
        logger.info("[Worker] Processing %s job %s for chef %s", job.enrichment_type.value, job.id, job.chef_id)

        cost = 0.0
        try:
            result = await self.workflow.run(job, now)
        except ExtractionError as exc:
            cost = exc.cost_usd
            self._fail(job, exc.message, cost, summary, now)
            return
        except EnrichmentError as exc:
            self._fail(job, exc.message, cost, summary, now)
            return
        except Exception as exc:
            logger.exception("[Worker] Unexpected error in job %s", job.id)
            self._fail(job, f"{type(exc).__name__}: {exc}", cost, summary, now)
            return

        cost = result.cost_usd
        self.jobs.mark_completed(job.id, tokens_used=result.tokens.total, cost_usd=cost, now=now or _utcnow())
        self.ledger.increment_budget_spend(cost, is_manual=False, month=now)
        self.ledger.record_job_outcome(True, month=now)
        summary["completed"] += 1
        summary["cost_usd"] += cost

    def _fail(
        self,
        job: EnrichmentJob,
        message: str,
        cost: float,
        summary: Dict[str, Any],
        now: Optional[datetime],
    ) -> None:
        logger.error("[Worker] Job %s failed: %s", job.id, message)
        self.jobs.mark_failed(job.id, message, now or _utcnow())
        if cost > 0:
            self.ledger.increment_budget_spend(cost, is_manual=False, month=now)
        self.ledger.record_job_outcome(False, month=now)
        summary["failed"] += 1
        summary["cost_usd"] += cost
        summary["errors"].append(f"{job.id} ({job.chef_id}): {message[:200]}")
