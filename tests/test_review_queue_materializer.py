from __future__ import annotations

from datetime import datetime, timezone

import pytest

from budget import BudgetLedger
from core import (
    EnrichmentType,
    NewChefPayload,
    NewRestaurantPayload,
    ReviewItemType,
    ReviewStatus,
    StatusChangePayload,
    UpdatePayload,
)
from orchestrator.store import EnrichmentJobStore
from resolver import EntityResolver, ShowResolver
from review import ApprovedItemMaterializer, ReviewQueue
from storage import InMemoryDataStore, Tables
from utils.exceptions import NotFoundError, ReviewStateError, ValidationError


NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def _build(budget_usd: float = 20.0):
    store = InMemoryDataStore()
    reviews = ReviewQueue(store)
    resolver = EntityResolver(store)
    jobs = EnrichmentJobStore(store)
    ledger = BudgetLedger(store, default_budget_usd=budget_usd)
    materializer = ApprovedItemMaterializer(reviews, resolver, ShowResolver(store), jobs, ledger)
    return store, reviews, resolver, jobs, ledger, materializer


def test_add_validates_payload_and_confidence() -> None:
    _, reviews, *_ = _build()

    item = reviews.add(ReviewItemType.NEW_CHEF, NewChefPayload(name="Jane Doe"), source="test", confidence=0.8)
    assert item.status == ReviewStatus.PENDING
    assert item.data.name == "Jane Doe"

    with pytest.raises(ValidationError):
        reviews.add(ReviewItemType.NEW_CHEF, {"name": ""}, source="test")
    with pytest.raises(ValidationError):
        reviews.add(ReviewItemType.NEW_CHEF, NewChefPayload(name="Jane Doe"), source="test", confidence=1.2)
    with pytest.raises(ValidationError):
        reviews.add(ReviewItemType.STATUS_CHANGE, NewChefPayload(name="Jane Doe"), source="test")
    with pytest.raises(ValidationError):
        reviews.add("not_a_type", {"name": "Jane Doe"}, source="test")


def test_add_batch_is_bounded() -> None:
    _, reviews, *_ = _build()
    entries = [{"type": "new_chef", "data": {"name": f"Chef {index}"}, "source": "test"} for index in range(3)]

    assert len(reviews.add_batch(entries)) == 3
    with pytest.raises(ValidationError):
        reviews.add_batch(entries * 200)


def test_has_pending_uses_entity_identity() -> None:
    _, reviews, *_ = _build()
    reviews.add(ReviewItemType.NEW_CHEF, NewChefPayload(name="José Andrés"), source="test")
    reviews.add(
        ReviewItemType.UPDATE,
        UpdatePayload(entity_type="chef", entity_id="chef-1", changes={"mini_bio": "Bio"}),
        source="test",
    )

    assert reviews.has_pending(ReviewItemType.NEW_CHEF, "jose-andres") is True
    assert reviews.has_pending(ReviewItemType.UPDATE, "chef:chef-1") is True
    assert reviews.has_pending(ReviewItemType.UPDATE, "restaurant:chef-1") is False


def test_decisions_happen_exactly_once() -> None:
    _, reviews, *_ = _build()
    item = reviews.add(ReviewItemType.NEW_CHEF, NewChefPayload(name="Jane Doe"), source="test")

    approved = reviews.approve(item.id, reviewed_by="admin@example.com", now=NOW)
    assert approved.status == ReviewStatus.APPROVED
    assert approved.reviewed_by == "admin@example.com"

    with pytest.raises(ReviewStateError):
        reviews.reject(item.id, reviewed_by="other")
    with pytest.raises(ReviewStateError):
        reviews.approve(item.id)
    with pytest.raises(NotFoundError):
        reviews.approve("missing-id")
    assert reviews.pending() == []


def test_mark_processed_is_idempotent() -> None:
    _, reviews, *_ = _build()
    item = reviews.add(ReviewItemType.NEW_CHEF, NewChefPayload(name="Jane Doe"), source="test")
    reviews.approve(item.id)

    assert reviews.mark_processed(item.id, NOW) is True
    assert reviews.mark_processed(item.id) is False
    assert reviews.get(item.id).processed_at == NOW
    assert reviews.approved_unprocessed() == []


def test_materializer_creates_chef_links_show_and_queues_initial_job() -> None:
    store, reviews, resolver, jobs, ledger, materializer = _build()
    item = reviews.add(
        ReviewItemType.NEW_CHEF,
        NewChefPayload(name="Brooke Williamson", show_name="Top Chef", season="10", result="finalist"),
        source="show_discovery:top-chef",
        confidence=0.9,
    )
    reviews.approve(item.id)

    summary = materializer.process(now=NOW)

    assert summary["processed"] == 1
    assert summary["chefs_created"] == 1
    assert summary["jobs_queued"] == 1
    chef = resolver.find_chef("Brooke Williamson")
    job = jobs.find_active_job(chef.id)
    assert job.enrichment_type == EnrichmentType.INITIAL
    assert job.queue_item_id == item.id
    assert store.count(Tables.CHEF_SHOWS) == 1
    assert reviews.get(item.id).processed_at is not None

    again = materializer.process(now=NOW)
    assert again["processed"] == 0
    assert store.count(Tables.CHEFS) == 1


def test_materializer_skips_initial_job_without_budget() -> None:
    _, reviews, resolver, jobs, ledger, materializer = _build(budget_usd=0.1)
    item = reviews.add(ReviewItemType.NEW_CHEF, NewChefPayload(name="Jane Doe"), source="test")
    reviews.approve(item.id)

    summary = materializer.process(now=NOW)

    assert summary["processed"] == 1
    assert summary["jobs_queued"] == 0
    assert jobs.find_active_job(resolver.find_chef("Jane Doe").id) is None


def test_materializer_applies_restaurants_updates_and_status_changes() -> None:
    store, reviews, resolver, jobs, ledger, materializer = _build()
    chef, _ = resolver.get_or_create_chef("Stephanie Izard")
    existing, _ = resolver.get_or_create_restaurant("Girl & the Goat", "Chicago", chef.id, status="open")

    staged = [
        reviews.add(
            ReviewItemType.NEW_RESTAURANT,
            NewRestaurantPayload(name="Duck Duck Goat", city="Chicago", chef_name="Stephanie Izard", cuisine=["Chinese"]),
            source="test",
        ),
        reviews.add(
            ReviewItemType.UPDATE,
            UpdatePayload(entity_type="chef", entity_id=chef.id, changes={"mini_bio": "Top Chef winner.", "slug": "hacked"}),
            source="test",
        ),
        reviews.add(
            ReviewItemType.STATUS_CHANGE,
            StatusChangePayload(restaurant_id=existing.id, proposed_status="closed", current_status="open"),
            source="test",
        ),
    ]
    for item in staged:
        reviews.approve(item.id)

    summary = materializer.process(now=NOW)

    assert summary["processed"] == 3
    assert summary["restaurants_created"] == 1
    assert summary["updated"] == 2
    created = resolver.find_restaurant("Duck Duck Goat", "Chicago")
    assert created.chef_id == chef.id
    updated_chef = resolver.get_chef(chef.id)
    assert updated_chef.mini_bio == "Top Chef winner."
    assert updated_chef.slug == "stephanie-izard"
    closed = resolver.get_restaurant(existing.id)
    assert closed.status.value == "closed"
    assert closed.last_verified_at == NOW
    assert closed.verification_source == "review"


def test_materializer_isolates_failures() -> None:
    _, reviews, resolver, jobs, ledger, materializer = _build()
    broken = reviews.add(
        ReviewItemType.STATUS_CHANGE,
        StatusChangePayload(restaurant_id="missing", proposed_status="closed"),
        source="test",
    )
    fine = reviews.add(ReviewItemType.NEW_CHEF, NewChefPayload(name="Jane Doe"), source="test")
    reviews.approve(broken.id)
    reviews.approve(fine.id)

    summary = materializer.process(now=NOW)

    assert summary["processed"] == 1
    assert summary["errors"][0].startswith(f"{broken.id} (status_change): ")
    assert reviews.get(broken.id).processed_at is None
    assert reviews.get(fine.id).processed_at is not None


def test_show_appearance_updates_have_their_own_identity() -> None:
    _, reviews, *_ = _build()
    reviews.add(
        ReviewItemType.UPDATE,
        UpdatePayload(entity_type="chef", entity_id="chef-1", changes={"show_appearances": [{"show_name": "Chopped"}]}),
        source="test",
    )

    assert reviews.has_pending(ReviewItemType.UPDATE, "chef:chef-1:shows") is True
    assert reviews.has_pending(ReviewItemType.UPDATE, "chef:chef-1") is False


def test_materializer_links_approved_show_appearances() -> None:
    store, reviews, resolver, jobs, ledger, materializer = _build()
    chef, _ = resolver.get_or_create_chef("Stephanie Izard")
    item = reviews.add(
        ReviewItemType.UPDATE,
        UpdatePayload(
            entity_type="chef",
            entity_id=chef.id,
            changes={
                "show_appearances": [
                    {"show_name": "Top Chef", "season": "4", "result": "winner"},
                    {"season": "9"},
                ]
            },
        ),
        source="test",
    )
    reviews.approve(item.id)

    summary = materializer.process(now=NOW)

    assert summary["processed"] == 1
    assert summary["updated"] == 1
    links = store.select(Tables.CHEF_SHOWS)
    assert len(links) == 1
    assert links[0]["chef_id"] == chef.id
    assert links[0]["season"] == "4"
    assert links[0]["result"] == "winner"
    assert resolver.get_chef(chef.id).mini_bio is None


def test_materializer_reports_show_appearances_for_missing_chef() -> None:
    store, reviews, resolver, jobs, ledger, materializer = _build()
    item = reviews.add(
        ReviewItemType.UPDATE,
        UpdatePayload(entity_type="chef", entity_id="missing", changes={"show_appearances": [{"show_name": "Chopped"}]}),
        source="test",
    )
    reviews.approve(item.id)

    summary = materializer.process(now=NOW)

    assert summary["processed"] == 0
    assert summary["errors"][0].startswith(f"{item.id} (update): ")
    assert store.count(Tables.CHEF_SHOWS) == 0
