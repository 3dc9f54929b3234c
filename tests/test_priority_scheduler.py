from __future__ import annotations

from datetime import datetime, timedelta, timezone

from budget import BudgetLedger
from config.settings import SchedulerSettings
from core import EnrichmentType, JobStatus, RestaurantRecord
from orchestrator.store import EnrichmentJobStore
from resolver import EntityResolver
from scheduling import (
    RefreshScheduler,
    calculate_priority,
    clip_batch_size,
    days_since,
    group_by_chef,
    jobs_affordable,
)
from storage import InMemoryDataStore, Tables
from utils.exceptions import StorageError


NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def _scheduler_settings(**overrides) -> SchedulerSettings:
    values = {
        "monthly_top_chefs": 50,
        "monthly_max_batch": 5,
        "weekly_top_restaurants": 100,
        "weekly_max_batch": 20,
        "stale_verification_days": 30,
        "min_verification_priority": 30,
    }
    values.update(overrides)
    return SchedulerSettings(**values)


def _build(budget_usd: float = 20.0, **overrides):
    store = InMemoryDataStore()
    ledger = BudgetLedger(store, default_budget_usd=budget_usd)
    jobs = EnrichmentJobStore(store)
    resolver = EntityResolver(store)
    scheduler = RefreshScheduler(ledger, jobs, resolver, _scheduler_settings(**overrides))
    return store, ledger, jobs, scheduler


def _chef(store: InMemoryDataStore, name: str, slug: str, **fields) -> str:
    return store.insert(Tables.CHEFS, {"name": name, "slug": slug, **fields})[0]["id"]


def _restaurant(store: InMemoryDataStore, name: str, chef_id: str, **fields) -> str:
    row = {"name": name, "slug": name.lower().replace(" ", "-"), "chef_id": chef_id, "status": "open", **fields}
    return store.insert(Tables.RESTAURANTS, row)[0]["id"]


def test_priority_formula_matches_worked_example() -> None:
    assert calculate_priority(5, 60, True, None) == 180


def test_priority_is_capped_and_monotonic() -> None:
    assert calculate_priority(20, 400, True, 100) == 200
    assert calculate_priority(3, 10) < calculate_priority(4, 10)
    assert calculate_priority(3, 10) < calculate_priority(3, 20)
    assert calculate_priority(3, 300) == calculate_priority(3, 1000)


def test_never_enriched_counts_as_a_year() -> None:
    assert days_since(None, NOW) == 365
    assert days_since(NOW - timedelta(days=12, hours=3), NOW) == 12


def test_batch_is_clipped_by_budget_and_halved_past_warning() -> None:
    assert jobs_affordable(0.3, 0.15) == 2
    assert clip_batch_size(10, 5, 100.0, 0.15, percent_used=10.0) == 5
    assert clip_batch_size(10, 5, 100.0, 0.15, percent_used=85.0) == 2
    assert clip_batch_size(10, 1, 100.0, 0.15, percent_used=95.0) == 1
    assert clip_batch_size(10, 5, 0.3, 0.15, percent_used=10.0) == 2
    assert clip_batch_size(3, 5, 100.0, 0.15, percent_used=10.0) == 3


def test_group_by_chef_skips_invalid_ids_and_keeps_max_priority() -> None:
    chef_id = "0b7c6f5e-2d7a-4a0e-9a51-8f6c1f0f4d11"
    restaurants = [
        RestaurantRecord(id="r1", name="A", slug="a", chef_id=chef_id, verification_priority=40),
        RestaurantRecord(id="r2", name="B", slug="b", chef_id=chef_id, verification_priority=70),
        RestaurantRecord(id="r3", name="C", slug="c", chef_id="not-a-uuid", verification_priority=90),
    ]

    targets = group_by_chef(restaurants)

    assert len(targets) == 1
    assert targets[0].chef_id == chef_id
    assert targets[0].priority == 70
    assert targets[0].restaurant_ids == ["r1", "r2"]


def test_monthly_refresh_ranks_chefs_and_skips_active_jobs() -> None:
    store, ledger, jobs, scheduler = _build()
    busy = _chef(store, "Busy Chef", "busy-chef", last_enriched_at=NOW - timedelta(days=5))
    popular = _chef(store, "Popular Chef", "popular-chef", last_enriched_at=NOW - timedelta(days=5))
    quiet = _chef(store, "Quiet Chef", "quiet-chef", last_enriched_at=NOW - timedelta(days=5))
    _restaurant(store, "Spot One", popular)
    _restaurant(store, "Spot Two", popular)
    jobs.create_job(busy, EnrichmentType.MANUAL_FULL, priority_score=75, now=NOW)

    summary = scheduler.run_monthly_refresh(NOW)

    assert summary["success"] is True
    assert summary["candidates"] == 3
    assert summary["jobs_created"] == 2
    assert summary["skipped"] == [busy]
    created = [jobs.get_job(job_id) for job_id in summary["job_ids"]]
    assert created[0].chef_id == popular
    assert created[1].chef_id == quiet
    assert all(job.enrichment_type == EnrichmentType.MONTHLY_REFRESH for job in created)
    assert created[0].priority_score > created[1].priority_score


def test_monthly_refresh_does_nothing_when_budget_exhausted() -> None:
    store, ledger, jobs, scheduler = _build(budget_usd=1.0)
    _chef(store, "Any Chef", "any-chef")
    ledger.increment_budget_spend(1.0, month=NOW)

    summary = scheduler.run_monthly_refresh(NOW)

    assert summary["message"] == "Budget exhausted"
    assert summary["jobs_created"] == 0
    assert jobs.count_by_status(JobStatus.QUEUED) == 0


def test_monthly_refresh_batch_is_limited_by_remaining_budget() -> None:
    store, ledger, jobs, scheduler = _build(budget_usd=1.0)
    for index in range(4):
        _chef(store, f"Chef {index}", f"chef-{index}")
    ledger.increment_budget_spend(0.5, month=NOW)

    summary = scheduler.run_monthly_refresh(NOW)

    assert summary["jobs_created"] == 3
    assert summary["budget_status"]["spent_usd"] == 0.5


def test_weekly_status_groups_stale_open_restaurants_by_chef() -> None:
    store, ledger, jobs, scheduler = _build()
    chef_a = _chef(store, "Chef A", "chef-a")
    chef_b = _chef(store, "Chef B", "chef-b")
    stale_a1 = _restaurant(store, "Stale A1", chef_a, verification_priority=60)
    stale_a2 = _restaurant(store, "Stale A2", chef_a, last_verified_at=NOW - timedelta(days=45))
    _restaurant(store, "Fresh A", chef_a, last_verified_at=NOW - timedelta(days=3))
    _restaurant(store, "Closed B", chef_b, status="closed")
    _restaurant(store, "Ignored B", chef_b, verification_priority=10)

    summary = scheduler.run_weekly_status(NOW)

    assert summary["jobs_created"] == 1
    job = jobs.get_job(summary["job_ids"][0])
    assert job.chef_id == chef_a
    assert job.enrichment_type == EnrichmentType.WEEKLY_STATUS
    assert job.priority_score == 60
    assert sorted(job.metadata["restaurant_ids"]) == sorted([stale_a1, stale_a2])


class FailingJobStore(EnrichmentJobStore):
    def __init__(self, store, broken_chef_id: str) -> None:
        super().__init__(store)
        self.broken_chef_id = broken_chef_id

    def create_job(self, chef_id, enrichment_type, **kwargs):
        if chef_id == self.broken_chef_id:
            raise StorageError("connection reset")
        return super().create_job(chef_id, enrichment_type, **kwargs)


def test_monthly_refresh_reports_queue_failures_as_strings() -> None:
    store = InMemoryDataStore()
    broken = _chef(store, "Broken Chef", "broken-chef")
    fine = _chef(store, "Fine Chef", "fine-chef")
    jobs = FailingJobStore(store, broken)
    scheduler = RefreshScheduler(BudgetLedger(store, default_budget_usd=20.0), jobs, EntityResolver(store), _scheduler_settings())

    summary = scheduler.run_monthly_refresh(NOW)

    assert summary["errors"] == [f"{broken}: connection reset"]
    assert [jobs.get_job(job_id).chef_id for job_id in summary["job_ids"]] == [fine]
