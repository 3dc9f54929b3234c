"""Orchestrator service layer for manual triggers and queue introspection."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from budget import BudgetLedger, estimate_cost
from core import EnrichmentType, JobStatus, MANUAL_ENRICHMENT_TYPE, TriggerKind
from resolver import EntityResolver
from utils.exceptions import ActiveJobError, BudgetExceededError, EnrichmentError, NotFoundError, ValidationError

from .store import EnrichmentJobStore


logger = logging.getLogger(__name__)

MANUAL_PRIORITY = 75.0
MAX_BULK_CHEFS = 25
BULK_KINDS = (TriggerKind.FULL, TriggerKind.RESTAURANTS_ONLY)

# Cron schedule: monthly refresh on the 1st at 02:00 UTC, weekly status check Sundays at 03:00 UTC.
MONTHLY_RUN_HOUR = 2
WEEKLY_RUN_HOUR = 3
WEEKLY_RUN_WEEKDAY = 6


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_monthly_run(now: datetime) -> datetime:
    year, month = (now.year + 1, 1) if now.month == 12 else (now.year, now.month + 1)
    return datetime(year, month, 1, MONTHLY_RUN_HOUR, tzinfo=timezone.utc)


def next_weekly_run(now: datetime) -> datetime:
    days_ahead = (WEEKLY_RUN_WEEKDAY - now.weekday()) % 7 or 7
    day = (now + timedelta(days=days_ahead)).date()
    return datetime(day.year, day.month, day.day, WEEKLY_RUN_HOUR, tzinfo=timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class EnrichmentOrchestrator:
    """Admission-checked job creation for admin triggers, plus queue stats."""

    def __init__(
        self,
        ledger: BudgetLedger,
        jobs: EnrichmentJobStore,
        resolver: EntityResolver,
        costs: Any = None,
    ) -> None:
        self.ledger = ledger
        self.jobs = jobs
        self.resolver = resolver
        self.costs = costs

    def trigger_chef(
        self,
        chef_id: str,
        kind: TriggerKind = TriggerKind.FULL,
        *,
        priority: Optional[float] = None,
        triggered_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Queue one manual job. Raises NotFoundError, BudgetExceededError or ActiveJobError."""
        kind = TriggerKind(kind)
        if priority is not None and not 0 <= priority <= 100:
            raise ValidationError("priority must be between 0 and 100", {"priority": priority})

        chef = self.resolver.get_chef(chef_id)
        if chef is None:
            raise NotFoundError("Chef", chef_id)

        cost = estimate_cost(kind, self.costs)
        check = self.ledger.check_budget_available(cost, now)
        if not check.allowed:
            raise BudgetExceededError(check.reason or "Monthly budget exceeded", check=check)

        job = self.jobs.create_job(
            chef.id,
            MANUAL_ENRICHMENT_TYPE[kind],
            priority_score=MANUAL_PRIORITY if priority is None else float(priority),
            triggered_by=triggered_by or "admin",
            now=now,
        )
        queue_position = self.jobs.count_by_status(JobStatus.QUEUED)
        return {
            "job_id": job.id,
            "chef_name": chef.name,
            "estimated_cost": cost,
            "queue_position": queue_position,
        }

    def trigger_bulk(
        self,
        chef_ids: Sequence[str],
        kind: TriggerKind = TriggerKind.FULL,
        *,
        triggered_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Queue jobs for up to 25 chefs after a single aggregate budget check."""
        kind = TriggerKind(kind)
        if kind not in BULK_KINDS:
            raise ValidationError(f"Bulk refresh does not support {kind.value}")
        requested = list(dict.fromkeys(str(item) for item in chef_ids))
        if not 1 <= len(requested) <= MAX_BULK_CHEFS:
            raise ValidationError(f"Between 1 and {MAX_BULK_CHEFS} chefs are required", {"count": len(requested)})

        chefs = self.resolver.get_chefs(requested)
        if not chefs:
            raise ValidationError("No valid chefs found", {"chef_ids": requested})
        missing = [item for item in requested if item not in chefs]
        if missing:
            logger.warning("[Orchestrator] Some chef ids not found: %s", ", ".join(missing))

        found = [item for item in requested if item in chefs]
        cost_each = estimate_cost(kind, self.costs)
        total_cost = round(cost_each * len(found), 4)
        check = self.ledger.check_budget_available(total_cost, now)
        if not check.allowed:
            raise BudgetExceededError(
                "Bulk refresh would exceed monthly budget",
                check=check,
                estimated_cost=total_cost,
            )

        active = self.jobs.active_chef_ids(found)
        to_enrich = [item for item in found if item not in active]
        if not to_enrich:
            raise ValidationError(
                "All selected chefs already have pending enrichment jobs",
                {"existing_job_count": len(active)},
            )

        created: List[str] = []
        errors: List[str] = []
        for chef_id in to_enrich:
            try:
                job = self.jobs.create_job(
                    chef_id,
                    MANUAL_ENRICHMENT_TYPE[kind],
                    priority_score=MANUAL_PRIORITY,
                    triggered_by=triggered_by or "admin",
                    now=now,
                )
            except ActiveJobError:
                logger.info("[Orchestrator] Chef %s picked up a job concurrently, skipping", chef_id)
                continue
            except EnrichmentError as exc:
                logger.error("[Orchestrator] Failed to queue chef %s: %s", chef_id, exc)
                errors.append(f"{chef_id}: {exc.message}")
                continue
            created.append(job.id)

        return {
            "jobs_created": len(created),
            "job_ids": created,
            "chefs_skipped": len(found) - len(created) - len(errors),
            "total_chefs": len(found),
            "estimated_cost": total_cost,
            "errors": errors,
            "budget_status": {
                "budget_usd": check.budget_usd,
                "spent_usd": check.spent_usd,
                "remaining_after": round(check.remaining_usd - total_cost, 4),
            },
        }

    def trigger_restaurant_status(
        self,
        restaurant_id: str,
        *,
        triggered_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        restaurant = self.resolver.get_restaurant(restaurant_id)
        if restaurant is None:
            raise NotFoundError("Restaurant", restaurant_id)
        if not restaurant.chef_id:
            raise ValidationError("Restaurant has no chef to attach the job to", {"restaurant_id": restaurant_id})

        cost = estimate_cost(TriggerKind.STATUS_CHECK, self.costs)
        check = self.ledger.check_budget_available(cost, now)
        if not check.allowed:
            raise BudgetExceededError(check.reason or "Monthly budget exceeded", check=check)

        job = self.jobs.create_job(
            restaurant.chef_id,
            EnrichmentType.MANUAL_STATUS,
            priority_score=MANUAL_PRIORITY,
            triggered_by=triggered_by or "admin",
            metadata={"restaurant_ids": [restaurant.id]},
            now=now,
        )
        return {
            "job_id": job.id,
            "restaurant_name": restaurant.name,
            "estimated_cost": cost,
            "queue_position": self.jobs.count_by_status(JobStatus.QUEUED),
        }

    def stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        current = now or _utcnow()
        since = current - timedelta(hours=24)
        budget = self.ledger.get_budget(current)

        durations = [
            (job.completed_at - job.created_at).total_seconds()
            for job in self.jobs.recent_completed(limit=100)
            if job.completed_at and job.created_at and job.completed_at >= since
        ]
        average = round(sum(durations) / len(durations), 1) if durations else 0.0

        last_monthly = self.jobs.last_created(EnrichmentType.MONTHLY_REFRESH)
        last_weekly = self.jobs.last_created(EnrichmentType.WEEKLY_STATUS)

        return {
            "current_month": {
                "month": budget.month,
                "budget_usd": budget.budget_usd,
                "spent_usd": budget.spent_usd,
                "manual_spent_usd": budget.manual_spent_usd,
                "jobs_completed": budget.jobs_completed,
                "jobs_failed": budget.jobs_failed,
                "percent_used": round(budget.percent_used, 2),
            },
            "last_runs": {
                "monthly_refresh": _iso(last_monthly.created_at if last_monthly else None),
                "weekly_status": _iso(last_weekly.created_at if last_weekly else None),
            },
            "next_scheduled": {
                "monthly_refresh": next_monthly_run(current).isoformat(),
                "weekly_status": next_weekly_run(current).isoformat(),
            },
            "queue_status": {
                "queued": self.jobs.count_by_status(JobStatus.QUEUED),
                "processing": self.jobs.count_by_status(JobStatus.PROCESSING),
                "completed_24h": self.jobs.count_finished_since(JobStatus.COMPLETED, since),
                "failed_24h": self.jobs.count_finished_since(JobStatus.FAILED, since),
                "avg_processing_time": average,
            },
        }
