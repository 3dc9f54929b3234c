from __future__ import annotations

import importlib
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from budget import month_key
from config.settings import CronSettings, Settings
from core import NewChefPayload, ReviewItemType
from extraction import SearchProvider, SynthesisProvider
from storage import InMemoryDataStore
from webapp.runtime import build_runtime


webapp_module = importlib.import_module("webapp.app")


class UnusedSearch(SearchProvider):
    async def search(self, query, max_results=5):
        raise AssertionError("search should not run")


class UnusedSynthesis(SynthesisProvider):
    model = "gpt-5-mini"

    async def synthesize(self, system, prompt, schema, *, model=None, temperature=None):
        raise AssertionError("synthesis should not run")


@pytest.fixture
def runtime(monkeypatch):
    settings = Settings(cron=CronSettings(secret="s3cret"))
    built = build_runtime(settings, InMemoryDataStore(), search=UnusedSearch(), synthesis=UnusedSynthesis())
    monkeypatch.setattr(webapp_module, "get_runtime", lambda: built)
    return built


@pytest.fixture
def client(runtime) -> TestClient:
    return TestClient(webapp_module.app)


def test_health(client) -> None:
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["ok"] is True


def test_trigger_chef_returns_camel_case(runtime, client) -> None:
    chef, _ = runtime.resolver.get_or_create_chef("Stephanie Izard")

    response = client.post(
        "/api/admin/enrichment/trigger-chef",
        json={"chefId": chef.id, "enrichmentType": "restaurants_only"},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["chefName"] == "Stephanie Izard"
    assert payload["queuePosition"] == 1
    assert runtime.jobs.get_job(payload["jobId"]).triggered_by == "admin"

    again = client.post("/api/admin/enrichment/trigger-chef", json={"chefId": chef.id})
    assert again.status_code == 409


def test_trigger_chef_error_mapping(runtime, client) -> None:
    missing = client.post("/api/admin/enrichment/trigger-chef", json={"chefId": str(uuid4())})
    assert missing.status_code == 404
    assert missing.json()["error"].startswith("Chef not found")

    malformed = client.post("/api/admin/enrichment/trigger-chef", json={"chefId": "not-a-uuid"})
    assert malformed.status_code == 400
    assert malformed.json()["error"] == "Invalid request body"

    chef, _ = runtime.resolver.get_or_create_chef("Stephanie Izard")
    budget = client.patch(
        "/api/admin/enrichment/budget",
        json={"month": month_key(), "budgetUsd": 0},
    )
    assert budget.status_code == 200
    assert budget.json()["budget"]["budgetUsd"] == 0

    denied = client.post("/api/admin/enrichment/trigger-chef", json={"chefId": chef.id})
    assert denied.status_code == 400
    assert denied.json()["details"]["budget"]["allowed"] is False


def test_bulk_refresh_rejects_status_check(client) -> None:
    response = client.post(
        "/api/admin/enrichment/bulk-refresh",
        json={"chefIds": [str(uuid4())], "enrichmentType": "status_check"},
    )
    assert response.status_code == 400


def test_budget_month_must_be_first_of_month(client) -> None:
    response = client.patch("/api/admin/enrichment/budget", json={"month": "2025-03-15", "budgetUsd": 10})
    assert response.status_code == 400


def test_review_approve_and_reject(runtime, client) -> None:
    first = runtime.reviews.add(ReviewItemType.NEW_CHEF, NewChefPayload(name="Jane Doe"), source="test")
    second = runtime.reviews.add(ReviewItemType.NEW_CHEF, NewChefPayload(name="John Roe"), source="test")

    listing = client.get("/api/admin/review", params={"type": "new_chef"})
    assert listing.status_code == 200
    assert listing.json()["count"] == 2

    approved = client.post(f"/api/admin/review/{first.id}/approve", json={"reviewedBy": "admin@example.com"})
    assert approved.status_code == 200
    assert approved.json()["item"]["status"] == "approved"
    assert approved.json()["item"]["reviewedBy"] == "admin@example.com"

    rejected = client.post(f"/api/admin/review/{second.id}/reject")
    assert rejected.status_code == 200
    assert rejected.json()["item"]["status"] == "rejected"

    assert client.post(f"/api/admin/review/{first.id}/reject").status_code == 409
    assert client.post("/api/admin/review/missing/approve").status_code == 404


def test_cron_endpoints_require_bearer_secret(client) -> None:
    assert client.get("/api/cron/process-queue").status_code == 401
    wrong = client.get("/api/cron/process-queue", headers={"Authorization": "Bearer nope"})
    assert wrong.status_code == 401
    assert wrong.json() == {"error": "Unauthorized"}

    response = client.get("/api/cron/process-queue", headers={"Authorization": "Bearer s3cret"})
    assert response.status_code == 200
    assert response.json()["claimed"] == 0


def test_cron_process_approved_queue(runtime, client) -> None:
    item = runtime.reviews.add(ReviewItemType.NEW_CHEF, NewChefPayload(name="Jane Doe"), source="test")
    runtime.reviews.approve(item.id)

    response = client.get("/api/cron/process-approved-queue", headers={"Authorization": "Bearer s3cret"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["processed"] == 1
    assert payload["chefsCreated"] == 1
    assert payload["jobsQueued"] == 1


def test_cron_without_configured_secret_is_a_server_error(monkeypatch) -> None:
    built = build_runtime(Settings(cron=CronSettings(secret=None)), InMemoryDataStore(), search=UnusedSearch(), synthesis=UnusedSynthesis())
    monkeypatch.setattr(webapp_module, "get_runtime", lambda: built)
    client = TestClient(webapp_module.app)

    response = client.get("/api/cron/monthly-refresh", headers={"Authorization": "Bearer anything"})

    assert response.status_code == 500
    assert response.json()["error"] == "Server configuration error"


def test_stats_include_review_queue(runtime, client) -> None:
    runtime.reviews.add(ReviewItemType.NEW_CHEF, NewChefPayload(name="Jane Doe"), source="test")

    response = client.get("/api/admin/enrichment/stats")

    assert response.status_code == 200
    payload = response.json()
    assert payload["reviewQueue"]["pendingByType"]["newChef"] == 1
    assert "monthlyRefresh" in payload["nextScheduled"]
