"""Periodic monthly refresh and weekly status-check job creation."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from budget import BudgetLedger, estimate_cost
from core import EnrichmentType, MonthlyBudget, RestaurantStatus, TriggerKind
from orchestrator.store import EnrichmentJobStore
from resolver import EntityResolver
from utils.exceptions import ActiveJobError, EnrichmentError

from .priority import plan_monthly_refresh, plan_weekly_status


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _budget_status(budget: MonthlyBudget) -> Dict[str, Any]:
    return {
        "month": budget.month,
        "budget_usd": budget.budget_usd,
        "spent_usd": budget.spent_usd,
        "remaining_usd": round(budget.remaining_usd, 4),
        "percent_used": round(budget.percent_used, 2),
    }


@dataclass
class _PlannedJob:
    chef_id: str
    priority: float
    metadata: Dict[str, Any]


class RefreshScheduler:
    """Creates bounded, budget-checked batches of jobs on a schedule."""

    def __init__(
        self,
        ledger: BudgetLedger,
        jobs: EnrichmentJobStore,
        resolver: EntityResolver,
        settings: Any,
        costs: Any = None,
    ) -> None:
        self.ledger = ledger
        self.jobs = jobs
        self.resolver = resolver
        self.settings = settings
        self.costs = costs

    def _create_jobs(
        self,
        planned: List[_PlannedJob],
        enrichment_type: EnrichmentType,
        cost: float,
        now: datetime,
        label: str,
    ) -> Dict[str, Any]:
        created: List[str] = []
        skipped: List[str] = []
        errors: List[str] = []
        stopped_reason: Optional[str] = None

        for item in planned:
            check = self.ledger.check_budget_available(cost, now)
            if not check.allowed:
                stopped_reason = check.reason
                logger.info("[%s] Budget check failed, stopping early: %s", label, check.reason)
                break
            try:
                job = self.jobs.create_job(
                    item.chef_id,
                    enrichment_type,
                    priority_score=item.priority,
                    triggered_by=f"cron:{enrichment_type.value}",
                    metadata=item.metadata,
                    now=now,
                )
            except ActiveJobError:
                skipped.append(item.chef_id)
                continue
            except EnrichmentError as exc:
                logger.error("[%s] Failed to queue chef %s: %s", label, item.chef_id, exc)
                errors.append(f"{item.chef_id}: {exc.message}")
                continue
            created.append(job.id)

        return {
            "job_ids": created,
            "jobs_created": len(created),
            "skipped": skipped,
            "errors": errors,
            "stopped_reason": stopped_reason,
        }

    def _exhausted(self, budget: MonthlyBudget, label: str) -> Optional[Dict[str, Any]]:
        if budget.percent_used < 100:
            return None
        logger.warning("[%s] Budget exhausted (%.1f%% used), no jobs created", label, budget.percent_used)
        return {
            "success": True,
            "message": "Budget exhausted",
            "jobs_created": 0,
            "candidates": 0,
            "job_ids": [],
            "skipped": [],
            "errors": [],
            "budget_status": _budget_status(budget),
        }

    def run_monthly_refresh(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        label = "MonthlyRefresh"
        current = now or _utcnow()
        budget = self.ledger.ensure_budget_exists(current)
        exhausted = self._exhausted(budget, label)
        if exhausted:
            return exhausted

        cost = estimate_cost(TriggerKind.FULL, self.costs)
        open_counts = Counter(
            item.chef_id for item in self.resolver.list_restaurants(RestaurantStatus.OPEN) if item.chef_id
        )
        plan = plan_monthly_refresh(
            self.resolver.list_chefs(),
            dict(open_counts),
            remaining_usd=budget.remaining_usd,
            percent_used=budget.percent_used,
            cost_per_job=cost,
            top_n=self.settings.monthly_top_chefs,
            max_batch=self.settings.monthly_max_batch,
            warning_threshold=self.ledger.warning_threshold,
            now=current,
        )
        logger.info("[%s] %d chef(s) selected (%.1f%% of budget used)", label, len(plan), budget.percent_used)

        planned = [
            _PlannedJob(
                chef_id=item.chef.id,
                priority=item.priority,
                metadata={"restaurant_count": item.restaurant_count, "days_since_enriched": item.days_since_enriched},
            )
            for item in plan
        ]
        outcome = self._create_jobs(planned, EnrichmentType.MONTHLY_REFRESH, cost, current, label)
        final_budget = self.ledger.get_budget(current)
        return {
            "success": True,
            "message": f"Created {outcome['jobs_created']} monthly refresh job(s)",
            "candidates": len(plan),
            **outcome,
            "budget_status": _budget_status(final_budget),
        }

    def run_weekly_status(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        label = "WeeklyStatus"
        current = now or _utcnow()
        budget = self.ledger.ensure_budget_exists(current)
        exhausted = self._exhausted(budget, label)
        if exhausted:
            return exhausted

        cost = estimate_cost(TriggerKind.STATUS_CHECK, self.costs)
        targets = plan_weekly_status(
            self.resolver.list_restaurants(RestaurantStatus.OPEN),
            remaining_usd=budget.remaining_usd,
            percent_used=budget.percent_used,
            cost_per_job=cost,
            top_n=self.settings.weekly_top_restaurants,
            max_batch=self.settings.weekly_max_batch,
            stale_days=self.settings.stale_verification_days,
            min_priority=self.settings.min_verification_priority,
            warning_threshold=self.ledger.warning_threshold,
            now=current,
        )
        logger.info("[%s] %d chef(s) with stale restaurants selected", label, len(targets))

        planned = [
            _PlannedJob(chef_id=target.chef_id, priority=target.priority, metadata={"restaurant_ids": target.restaurant_ids})
            for target in targets
        ]
        outcome = self._create_jobs(planned, EnrichmentType.WEEKLY_STATUS, cost, current, label)
        final_budget = self.ledger.get_budget(current)
        return {
            "success": True,
            "message": f"Created {outcome['jobs_created']} status check job(s)",
            "candidates": len(targets),
            **outcome,
            "budget_status": _budget_status(final_budget),
        }
