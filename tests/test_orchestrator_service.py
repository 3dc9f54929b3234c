from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from budget import BudgetLedger
from core import EnrichmentType, JobStatus, TriggerKind
from orchestrator import EnrichmentJobStore, EnrichmentOrchestrator, next_monthly_run, next_weekly_run
from resolver import EntityResolver
from storage import InMemoryDataStore
from utils.exceptions import ActiveJobError, BudgetExceededError, NotFoundError, StorageError, ValidationError


NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def _build(budget_usd: float = 20.0):
    store = InMemoryDataStore()
    resolver = EntityResolver(store)
    jobs = EnrichmentJobStore(store)
    ledger = BudgetLedger(store, default_budget_usd=budget_usd)
    return resolver, jobs, ledger, EnrichmentOrchestrator(ledger, jobs, resolver)


def test_trigger_chef_queues_manual_job() -> None:
    resolver, jobs, ledger, orchestrator = _build()
    chef, _ = resolver.get_or_create_chef("Stephanie Izard")

    result = orchestrator.trigger_chef(chef.id, TriggerKind.RESTAURANTS_ONLY, now=NOW)

    assert result["chef_name"] == "Stephanie Izard"
    assert result["estimated_cost"] == pytest.approx(0.08)
    assert result["queue_position"] == 1
    job = jobs.get_job(result["job_id"])
    assert job.enrichment_type == EnrichmentType.MANUAL_RESTAURANTS
    assert job.priority_score == 75.0
    assert job.triggered_by == "admin"


def test_trigger_chef_rejections() -> None:
    resolver, jobs, ledger, orchestrator = _build()
    chef, _ = resolver.get_or_create_chef("Stephanie Izard")

    with pytest.raises(NotFoundError):
        orchestrator.trigger_chef("missing", now=NOW)
    with pytest.raises(ValidationError):
        orchestrator.trigger_chef(chef.id, priority=101, now=NOW)

    orchestrator.trigger_chef(chef.id, priority=90, now=NOW)
    with pytest.raises(ActiveJobError):
        orchestrator.trigger_chef(chef.id, now=NOW)
    assert jobs.count_by_status(JobStatus.QUEUED) == 1


def test_trigger_chef_is_denied_when_budget_is_short() -> None:
    resolver, jobs, ledger, orchestrator = _build(budget_usd=0.1)
    chef, _ = resolver.get_or_create_chef("Stephanie Izard")

    with pytest.raises(BudgetExceededError) as excinfo:
        orchestrator.trigger_chef(chef.id, TriggerKind.FULL, now=NOW)

    assert excinfo.value.details["budget"]["allowed"] is False
    assert jobs.find_active_job(chef.id) is None

    assert orchestrator.trigger_chef(chef.id, TriggerKind.STATUS_CHECK, now=NOW)["estimated_cost"] == pytest.approx(0.02)


def test_trigger_bulk_skips_missing_and_busy_chefs() -> None:
    resolver, jobs, ledger, orchestrator = _build()
    first, _ = resolver.get_or_create_chef("Stephanie Izard")
    second, _ = resolver.get_or_create_chef("Brooke Williamson")
    busy, _ = resolver.get_or_create_chef("Kristen Kish")
    jobs.create_job(busy.id, EnrichmentType.MONTHLY_REFRESH, priority_score=10, now=NOW)

    result = orchestrator.trigger_bulk([first.id, second.id, busy.id, "missing"], TriggerKind.FULL, now=NOW)

    assert result["jobs_created"] == 2
    assert result["chefs_skipped"] == 1
    assert result["total_chefs"] == 3
    assert result["estimated_cost"] == pytest.approx(0.45)
    assert result["budget_status"]["remaining_after"] == pytest.approx(19.55)
    for job_id in result["job_ids"]:
        assert jobs.get_job(job_id).priority_score == 75.0


def test_trigger_bulk_validation() -> None:
    resolver, jobs, ledger, orchestrator = _build()
    chef, _ = resolver.get_or_create_chef("Stephanie Izard")

    with pytest.raises(ValidationError):
        orchestrator.trigger_bulk([chef.id], TriggerKind.STATUS_CHECK, now=NOW)
    with pytest.raises(ValidationError):
        orchestrator.trigger_bulk([], now=NOW)
    with pytest.raises(ValidationError):
        orchestrator.trigger_bulk([f"chef-{index}" for index in range(26)], now=NOW)
    with pytest.raises(ValidationError, match="No valid chefs found"):
        orchestrator.trigger_bulk(["missing"], now=NOW)

    orchestrator.trigger_bulk([chef.id], now=NOW)
    with pytest.raises(ValidationError, match="already have pending enrichment jobs"):
        orchestrator.trigger_bulk([chef.id], now=NOW)


class FlakyJobStore(EnrichmentJobStore):
    """Fails job creation for the chef ids in ``broken``."""

    def __init__(self, store, broken) -> None:
        super().__init__(store)
        self.broken = set(broken)

    def create_job(self, chef_id, enrichment_type, **kwargs):
        if chef_id in self.broken:
            raise StorageError("insert timed out")
        return super().create_job(chef_id, enrichment_type, **kwargs)


def test_trigger_bulk_isolates_a_failing_chef() -> None:
    store = InMemoryDataStore()
    resolver = EntityResolver(store)
    first, _ = resolver.get_or_create_chef("Stephanie Izard")
    broken, _ = resolver.get_or_create_chef("Brooke Williamson")
    last, _ = resolver.get_or_create_chef("Kristen Kish")
    jobs = FlakyJobStore(store, [broken.id])
    orchestrator = EnrichmentOrchestrator(BudgetLedger(store, default_budget_usd=20.0), jobs, resolver)

    result = orchestrator.trigger_bulk([first.id, broken.id, last.id], TriggerKind.FULL, now=NOW)

    assert result["jobs_created"] == 2
    assert result["errors"] == [f"{broken.id}: insert timed out"]
    assert result["chefs_skipped"] == 0
    assert {jobs.get_job(job_id).chef_id for job_id in result["job_ids"]} == {first.id, last.id}


def test_trigger_bulk_checks_the_aggregate_cost() -> None:
    resolver, jobs, ledger, orchestrator = _build(budget_usd=0.2)
    ids = [resolver.get_or_create_chef(name)[0].id for name in ("Chef One", "Chef Two")]

    with pytest.raises(BudgetExceededError, match="Bulk refresh would exceed monthly budget"):
        orchestrator.trigger_bulk(ids, TriggerKind.FULL, now=NOW)
    assert jobs.count_by_status(JobStatus.QUEUED) == 0


def test_trigger_restaurant_status_targets_one_restaurant() -> None:
    resolver, jobs, ledger, orchestrator = _build()
    chef, _ = resolver.get_or_create_chef("Stephanie Izard")
    restaurant, _ = resolver.get_or_create_restaurant("Girl & the Goat", "Chicago", chef.id)
    orphan, _ = resolver.get_or_create_restaurant("Orphan Diner", "Chicago", None)

    result = orchestrator.trigger_restaurant_status(restaurant.id, now=NOW)

    job = jobs.get_job(result["job_id"])
    assert job.enrichment_type == EnrichmentType.MANUAL_STATUS
    assert job.metadata == {"restaurant_ids": [restaurant.id]}
    assert result["restaurant_name"] == "Girl & the Goat"
    with pytest.raises(NotFoundError):
        orchestrator.trigger_restaurant_status("missing", now=NOW)
    with pytest.raises(ValidationError):
        orchestrator.trigger_restaurant_status(orphan.id, now=NOW)


def test_next_scheduled_runs() -> None:
    assert next_monthly_run(NOW) == datetime(2025, 4, 1, 2, tzinfo=timezone.utc)
    assert next_monthly_run(datetime(2025, 12, 20, tzinfo=timezone.utc)) == datetime(2026, 1, 1, 2, tzinfo=timezone.utc)
    assert next_weekly_run(NOW) == datetime(2025, 3, 16, 3, tzinfo=timezone.utc)
    sunday = datetime(2025, 3, 16, 12, tzinfo=timezone.utc)
    assert next_weekly_run(sunday) == datetime(2025, 3, 23, 3, tzinfo=timezone.utc)


def test_stats_reports_budget_queue_and_schedule() -> None:
    resolver, jobs, ledger, orchestrator = _build()
    chef, _ = resolver.get_or_create_chef("Stephanie Izard")
    other, _ = resolver.get_or_create_chef("Brooke Williamson")
    done = jobs.create_job(chef.id, EnrichmentType.MONTHLY_REFRESH, priority_score=50, now=NOW - timedelta(minutes=5))
    jobs.mark_completed(done.id, tokens_used=100, cost_usd=0.1, now=NOW)
    jobs.create_job(other.id, EnrichmentType.MANUAL_FULL, priority_score=75, now=NOW)
    ledger.increment_budget_spend(0.1, month=NOW)

    stats = orchestrator.stats(NOW)

    assert stats["current_month"]["month"] == "2025-03-01"
    assert stats["current_month"]["spent_usd"] == pytest.approx(0.1)
    assert stats["queue_status"]["queued"] == 1
    assert stats["queue_status"]["completed_24h"] == 1
    assert stats["queue_status"]["avg_processing_time"] == 300.0
    assert stats["last_runs"]["monthly_refresh"] == (NOW - timedelta(minutes=5)).isoformat()
    assert stats["last_runs"]["weekly_status"] is None
    assert stats["next_scheduled"]["monthly_refresh"] == "2025-04-01T02:00:00+00:00"
