from __future__ import annotations

from datetime import datetime, timezone

import pytest

from budget import BudgetLedger
from core import EnrichmentType, JobStatus, TokenUsage
from extraction import WorkflowResult
from orchestrator import EnrichmentJobStore, JobLeaseQueue, QueueWorker
from storage import InMemoryDataStore
from utils.exceptions import ExtractionError


NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


class ScriptedWorkflow:
    """Returns or raises per chef id."""

    def __init__(self, outcomes) -> None:
        self.outcomes = outcomes
        self.ran = []

    async def run(self, job, now=None):
        self.ran.append(job.chef_id)
        outcome = self.outcomes[job.chef_id]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _build(outcomes, clock=None, batch_size: int = 2):
    store = InMemoryDataStore()
    jobs = EnrichmentJobStore(store)
    queue = JobLeaseQueue(store)
    ledger = BudgetLedger(store)
    workflow = ScriptedWorkflow(outcomes)
    kwargs = {"batch_size": batch_size}
    if clock is not None:
        kwargs["clock"] = clock
    worker = QueueWorker(queue, jobs, ledger, workflow, **kwargs)
    return jobs, ledger, workflow, worker


@pytest.mark.asyncio
async def test_successful_job_completes_and_charges_budget() -> None:
    result = WorkflowResult(cost_usd=0.12, tokens=TokenUsage(prompt=1000, completion=200))
    jobs, ledger, workflow, worker = _build({"chef-a": result})
    job = jobs.create_job("chef-a", EnrichmentType.MANUAL_FULL, priority_score=50, now=NOW)

    summary = await worker.run_once(NOW, worker_id="worker-1")

    assert summary["claimed"] == 1
    assert summary["completed"] == 1
    assert summary["cost_usd"] == pytest.approx(0.12)
    done = jobs.get_job(job.id)
    assert done.status == JobStatus.COMPLETED
    assert done.tokens_used == 1200
    assert done.cost_usd == pytest.approx(0.12)
    budget = ledger.get_budget(NOW)
    assert budget.spent_usd == pytest.approx(0.12)
    assert budget.manual_spent_usd == 0.0
    assert budget.jobs_completed == 1


@pytest.mark.asyncio
async def test_extraction_failure_is_terminal_and_still_charged() -> None:
    failure = ExtractionError("search provider unavailable", step="restaurants", cost_usd=0.03, tokens_used=400)
    jobs, ledger, workflow, worker = _build({"chef-a": failure})
    job = jobs.create_job("chef-a", EnrichmentType.MONTHLY_REFRESH, priority_score=50, now=NOW)

    summary = await worker.run_once(NOW, worker_id="worker-1")

    assert summary["failed"] == 1
    assert summary["errors"] == [f"{job.id} (chef-a): search provider unavailable"]
    failed = jobs.get_job(job.id)
    assert failed.status == JobStatus.FAILED
    assert failed.error_message == "search provider unavailable"
    budget = ledger.get_budget(NOW)
    assert budget.spent_usd == pytest.approx(0.03)
    assert budget.jobs_failed == 1

    again = await worker.run_once(NOW, worker_id="worker-2")
    assert again["claimed"] == 0
    assert workflow.ran == ["chef-a"]


@pytest.mark.asyncio
async def test_unexpected_error_fails_the_job_without_stopping_the_batch() -> None:
    ok = WorkflowResult(cost_usd=0.01)
    jobs, ledger, workflow, worker = _build({"chef-a": RuntimeError("boom"), "chef-b": ok})
    first = jobs.create_job("chef-a", EnrichmentType.MANUAL_FULL, priority_score=90, now=NOW)
    second = jobs.create_job("chef-b", EnrichmentType.MANUAL_FULL, priority_score=10, now=NOW)

    summary = await worker.run_once(NOW, worker_id="worker-1")

    assert workflow.ran == ["chef-a", "chef-b"]
    assert summary["failed"] == 1
    assert summary["completed"] == 1
    assert jobs.get_job(first.id).error_message == "RuntimeError: boom"
    assert jobs.get_job(second.id).status == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_jobs_not_started_before_deadline_are_released() -> None:
    ticks = iter([0.0, 0.0, 1000.0])
    ok = WorkflowResult(cost_usd=0.01)
    jobs, ledger, workflow, worker = _build({"chef-a": ok, "chef-b": ok}, clock=lambda: next(ticks))
    jobs.create_job("chef-a", EnrichmentType.MANUAL_FULL, priority_score=90, now=NOW)
    late = jobs.create_job("chef-b", EnrichmentType.MANUAL_FULL, priority_score=10, now=NOW)

    summary = await worker.run_once(NOW, worker_id="worker-1")

    assert summary["completed"] == 1
    assert summary["skipped"] == 1
    released = jobs.get_job(late.id)
    assert released.status == JobStatus.QUEUED
    assert released.locked_by is None
    assert released.locked_until is None


@pytest.mark.asyncio
async def test_empty_queue_is_a_no_op() -> None:
    jobs, ledger, workflow, worker = _build({})

    summary = await worker.run_once(NOW, worker_id="worker-1")

    assert summary["claimed"] == 0
    assert workflow.ran == []
