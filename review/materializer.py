"""Turns approved review items into canonical rows."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from budget import BudgetLedger, estimate_cost
from core import (
    EnrichmentType,
    NewChefPayload,
    NewRestaurantPayload,
    ReviewQueueItem,
    SHOW_APPEARANCES_FIELD,
    StatusChangePayload,
    TriggerKind,
    UpdatePayload,
)
from orchestrator.store import EnrichmentJobStore
from resolver import EntityResolver, ShowResolver
from scheduling.priority import calculate_priority, days_since
from utils.exceptions import ActiveJobError, EnrichmentError, NotFoundError

from .queue import ReviewQueue


logger = logging.getLogger(__name__)

REVIEW_VERIFICATION_SOURCE = "review"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApprovedItemMaterializer:
    """Applies approved, unprocessed review items; each item is stamped processed once it succeeds."""

    def __init__(
        self,
        reviews: ReviewQueue,
        resolver: EntityResolver,
        shows: ShowResolver,
        jobs: EnrichmentJobStore,
        ledger: BudgetLedger,
        costs: Any = None,
    ) -> None:
        self.reviews = reviews
        self.resolver = resolver
        self.shows = shows
        self.jobs = jobs
        self.ledger = ledger
        self.costs = costs

    def process(self, limit: int = 20, now: Optional[datetime] = None) -> Dict[str, Any]:
        current = now or _utcnow()
        items = self.reviews.approved_unprocessed(limit=limit)
        summary: Dict[str, Any] = {
            "processed": 0,
            "chefs_created": 0,
            "restaurants_created": 0,
            "updated": 0,
            "jobs_queued": 0,
            "errors": [],
        }
        for item in items:
            try:
                self._materialize(item, summary, current)
            except EnrichmentError as exc:
                logger.error("[Materializer] Item %s (%s) failed: %s", item.id, item.type.value, exc)
                summary["errors"].append(f"{item.id} ({item.type.value}): {exc.message}")
                continue
            if self.reviews.mark_processed(item.id, current):
                summary["processed"] += 1
            else:
                logger.info("[Materializer] Item %s was already processed", item.id)

        logger.info(
            "[Materializer] %d/%d approved item(s) processed, %d error(s)",
            summary["processed"],
            len(items),
            len(summary["errors"]),
        )
        return summary

    def _materialize(self, item: ReviewQueueItem, summary: Dict[str, Any], now: datetime) -> None:
        data = item.data
        if isinstance(data, NewChefPayload):
            self._new_chef(item, data, summary, now)
        elif isinstance(data, NewRestaurantPayload):
            self._new_restaurant(data, summary)
        elif isinstance(data, UpdatePayload):
            self._update(data, summary)
        elif isinstance(data, StatusChangePayload):
            self._status_change(data, summary, now)

    def _new_chef(self, item: ReviewQueueItem, data: NewChefPayload, summary: Dict[str, Any], now: datetime) -> None:
        chef, created = self.resolver.get_or_create_chef(data.name)
        if created:
            summary["chefs_created"] += 1
        if data.show_name:
            self.shows.link_chef(chef.id, data.show_name, season=data.season, result=data.result)

        if chef.last_enriched_at is not None:
            return
        cost = estimate_cost(TriggerKind.FULL, self.costs)
        check = self.ledger.check_budget_available(cost, now)
        if not check.allowed:
            logger.info("[Materializer] Initial enrichment for %s not queued: %s", chef.slug, check.reason)
            return
        try:
            self.jobs.create_job(
                chef.id,
                EnrichmentType.INITIAL,
                priority_score=calculate_priority(0, days_since(chef.last_enriched_at, now), chef.manual_priority, chef.enrichment_priority),
                triggered_by="review:approved",
                queue_item_id=item.id,
                now=now,
            )
        except ActiveJobError:
            return
        summary["jobs_queued"] += 1

    def _new_restaurant(self, data: NewRestaurantPayload, summary: Dict[str, Any]) -> None:
        chef_id = data.chef_id
        if not chef_id and data.chef_name:
            chef = self.resolver.find_chef(data.chef_name)
            chef_id = chef.id if chef else None
        _, created = self.resolver.get_or_create_restaurant(
            data.name,
            data.city,
            chef_id,
            state=data.state,
            country=data.country,
            address=data.address,
            status=data.status.value,
            cuisine=list(data.cuisine),
            website=data.website,
            role=data.role,
        )
        if created:
            summary["restaurants_created"] += 1

    def _link_shows(self, chef_id: str, appearances: Any) -> None:
        if self.resolver.get_chef(chef_id) is None:
            raise NotFoundError("Chef", chef_id)
        for entry in appearances or []:
            if not isinstance(entry, dict) or not str(entry.get("show_name") or "").strip():
                logger.warning("[Materializer] Skipping malformed show appearance for chef %s: %r", chef_id, entry)
                continue
            self.shows.link_chef(chef_id, entry["show_name"], season=entry.get("season"), result=entry.get("result"))

    def _update(self, data: UpdatePayload, summary: Dict[str, Any]) -> None:
        changes = dict(data.changes)
        if data.entity_type == "chef" and SHOW_APPEARANCES_FIELD in changes:
            self._link_shows(data.entity_id, changes.pop(SHOW_APPEARANCES_FIELD))
            if not changes:
                summary["updated"] += 1
                return

        if data.entity_type == "chef":
            updated = self.resolver.update_chef(data.entity_id, changes)
            entity = "Chef"
        else:
            updated = self.resolver.update_restaurant(data.entity_id, changes)
            entity = "Restaurant"
        if updated is None:
            raise NotFoundError(entity, data.entity_id)
        summary["updated"] += 1

    def _status_change(self, data: StatusChangePayload, summary: Dict[str, Any], now: datetime) -> None:
        updated = self.resolver.update_restaurant(
            data.restaurant_id,
            {
                "status": data.proposed_status,
                "last_verified_at": now,
                "verification_source": REVIEW_VERIFICATION_SOURCE,
            },
        )
        if updated is None:
            raise NotFoundError("Restaurant", data.restaurant_id)
        summary["updated"] += 1
