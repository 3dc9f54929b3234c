"""
Enrichment workflow for one job.

Dispatches on the job kind (full: bio, restaurants and show appearances; restaurants
only; status check), runs the extractions and routes every proposed fact through the
confidence gate: auto-applied facts write the narrow canonical fields, everything else
lands in the review queue. Newly discovered restaurants are always staged for review;
a look-alike of an existing restaurant is merged only on a confident duplicate verdict.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from budget.pricing import TokenTracker
from core import (
    ChefRecord,
    EnrichmentJob,
    GateDecision,
    GateMode,
    NewRestaurantPayload,
    RestaurantRecord,
    RestaurantStatus,
    ReviewItemType,
    SHOW_APPEARANCES_FIELD,
    StatusChangePayload,
    TokenUsage,
    TriggerKind,
    UpdatePayload,
)
from resolver import EntityResolver, ShowResolver, restaurant_slug
from review.queue import ReviewQueue
from utils.exceptions import ExtractionError, NotFoundError, ValidationError

from .extractor import EntityExtractor
from .gate import ConfidenceGate
from .schemas import ChefBioExtraction, RestaurantExtraction, ShowAppearanceExtraction


logger = logging.getLogger(__name__)

VERIFICATION_SOURCE = "llm_status_check"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class WorkflowResult:
    cost_usd: float = 0.0
    tokens: TokenUsage = field(default_factory=TokenUsage)
    applied: List[str] = field(default_factory=list)
    staged: List[str] = field(default_factory=list)
    discarded: List[str] = field(default_factory=list)
    matched: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cost_usd": round(self.cost_usd, 6),
            "tokens": self.tokens.total,
            "applied": list(self.applied),
            "staged": list(self.staged),
            "discarded": list(self.discarded),
            "matched": list(self.matched),
            "errors": list(self.errors),
        }


class EnrichmentWorkflow:
    """Runs extraction for one job and writes gated results."""

    def __init__(
        self,
        resolver: EntityResolver,
        reviews: ReviewQueue,
        extractor: EntityExtractor,
        gate: Optional[ConfidenceGate] = None,
        shows: Optional[ShowResolver] = None,
    ) -> None:
        self.resolver = resolver
        self.reviews = reviews
        self.extractor = extractor
        self.gate = gate or ConfidenceGate()
        self.shows = shows

    @property
    def dry_run(self) -> bool:
        return self.gate.mode == GateMode.DRY_RUN

    async def run(self, job: EnrichmentJob, now: Optional[datetime] = None) -> WorkflowResult:
        """Raises ``ExtractionError`` when a required extraction fails, carrying the spend so far."""
        current = now or _utcnow()
        chef = self.resolver.get_chef(job.chef_id)
        if chef is None:
            raise NotFoundError("Chef", job.chef_id)

        tracker = TokenTracker()
        result = WorkflowResult()
        source = f"enrichment:{job.enrichment_type.value}:{job.id}"
        kind = job.kind

        try:
            if kind == TriggerKind.FULL:
                await self._enrich_bio(chef, tracker, result, source)
                await self._discover_restaurants(chef, tracker, result, source, current)
                if self.shows is not None:
                    await self._discover_shows(chef, tracker, result, source)
            elif kind == TriggerKind.RESTAURANTS_ONLY:
                await self._discover_restaurants(chef, tracker, result, source, current)
            else:
                await self._check_statuses(chef, job, tracker, result, source, current)
        except ExtractionError as exc:
            exc.cost_usd = tracker.cost_usd
            exc.tokens_used = tracker.usage.total
            exc.details.update({"cost_usd": exc.cost_usd, "tokens_used": exc.tokens_used})
            raise

        if kind in (TriggerKind.FULL, TriggerKind.RESTAURANTS_ONLY) and not self.dry_run:
            self.resolver.update_chef(chef.id, {"last_enriched_at": current})

        result.cost_usd = tracker.cost_usd
        result.tokens = tracker.usage
        logger.info(
            "[Workflow] %s job %s: %d applied, %d staged, %d discarded, %d error(s), $%.4f",
            job.enrichment_type.value,
            job.id,
            len(result.applied),
            len(result.staged),
            len(result.discarded),
            len(result.errors),
            result.cost_usd,
        )
        return result

    # chef bio

    @staticmethod
    def _bio_changes(value: ChefBioExtraction) -> Dict[str, Any]:
        changes: Dict[str, Any] = {}
        if value.mini_bio:
            changes["mini_bio"] = value.mini_bio
        if value.james_beard_status:
            changes["james_beard_status"] = value.james_beard_status
        if value.notable_awards:
            changes["notable_awards"] = list(value.notable_awards)
        return changes

    async def _enrich_bio(self, chef: ChefRecord, tracker: TokenTracker, result: WorkflowResult, source: str) -> None:
        outcome = await self.extractor.extract_chef_bio(chef, tracker)
        if not outcome.success:
            raise ExtractionError(f"Bio extraction failed for {chef.name}: {outcome.error}", step="bio")

        changes = self._bio_changes(outcome.value)
        label = f"chef:{chef.id}:bio"
        if not changes:
            result.discarded.append(label)
            return

        decision = self.gate.decide(outcome.confidence)
        if decision == GateDecision.AUTO_APPLY:
            self.resolver.update_chef(chef.id, changes)
            result.applied.append(label)
        elif decision == GateDecision.STAGE_FOR_REVIEW:
            if self.reviews.has_pending(ReviewItemType.UPDATE, f"chef:{chef.id}"):
                result.discarded.append(label)
                return
            self.reviews.add(
                ReviewItemType.UPDATE,
                UpdatePayload(
                    entity_type="chef",
                    entity_id=chef.id,
                    entity_name=chef.name,
                    changes=changes,
                    reason="Bio extraction below confidence threshold",
                ),
                source=source,
                confidence=outcome.confidence,
            )
            result.staged.append(label)
        else:
            result.discarded.append(label)

    # show appearances

    async def _discover_shows(self, chef: ChefRecord, tracker: TokenTracker, result: WorkflowResult, source: str) -> None:
        """Link confident appearances; the rest go to review as one chef update. Failures are not fatal."""
        outcome = await self.extractor.discover_shows(chef, tracker)
        if not outcome.success:
            result.errors.append(f"shows: {outcome.error}")
            return

        pending: List[ShowAppearanceExtraction] = []
        for item in outcome.value.shows:
            label = f"show:{item.show_name}:{item.season or '-'}"
            decision = self.gate.decide(item.confidence)
            if decision == GateDecision.AUTO_APPLY:
                try:
                    linked = self.shows.link_chef(chef.id, item.show_name, season=item.season, result=item.result)
                except ValidationError as exc:
                    result.errors.append(f"{label}: {exc.message}")
                    continue
                if linked:
                    result.applied.append(label)
                else:
                    result.discarded.append(label)
            elif decision == GateDecision.STAGE_FOR_REVIEW:
                pending.append(item)
            else:
                result.discarded.append(label)

        if not pending:
            return
        label = f"chef:{chef.id}:shows"
        if self.reviews.has_pending(ReviewItemType.UPDATE, label):
            result.discarded.append(label)
            return
        self.reviews.add(
            ReviewItemType.UPDATE,
            UpdatePayload(
                entity_type="chef",
                entity_id=chef.id,
                entity_name=chef.name,
                changes={SHOW_APPEARANCES_FIELD: [item.model_dump(exclude={"confidence"}) for item in pending]},
                reason="Show appearances below confidence threshold",
            ),
            source=source,
            confidence=min(item.confidence for item in pending),
        )
        result.staged.append(label)

    # restaurants

    async def _discover_restaurants(
        self,
        chef: ChefRecord,
        tracker: TokenTracker,
        result: WorkflowResult,
        source: str,
        now: Optional[datetime] = None,
    ) -> None:
        known = self.resolver.restaurants_for_chef(chef.id)
        outcome = await self.extractor.discover_restaurants(chef, tracker, known)
        if not outcome.success:
            raise ExtractionError(f"Restaurant discovery failed for {chef.name}: {outcome.error}", step="restaurants")

        for item in outcome.value.restaurants:
            existing = self.resolver.find_restaurant(item.name, item.city)
            notes = None
            if existing is None:
                existing, notes = await self._resolve_duplicate(chef, item, tracker, result)
            if existing is not None:
                result.matched.append(existing.id)
                proposed = RestaurantStatus(item.status)
                if proposed != RestaurantStatus.UNKNOWN and proposed != existing.status:
                    self._route_status(existing, proposed, item.confidence, "Reported by restaurant discovery", result, source, now)
                continue
            self._stage_new_restaurant(chef, item, result, source, notes)

    async def _resolve_duplicate(
        self,
        chef: ChefRecord,
        item: RestaurantExtraction,
        tracker: TokenTracker,
        result: WorkflowResult,
    ) -> Tuple[Optional[RestaurantRecord], Optional[str]]:
        """Return ``(match, notes)``.

        A look-alike in the same city is merged only when the model confidently calls it
        the same place; otherwise the new restaurant is staged with a note naming it.
        """
        candidates = self.resolver.duplicate_candidates(item.name, item.city)
        if not candidates:
            return None, None
        score, candidate = candidates[0]
        note = f"Possible duplicate of {candidate.name} ({candidate.id}), name similarity {score:.2f}"

        outcome = await self.extractor.judge_duplicate(item, candidate, tracker, chef_name=chef.name)
        if not outcome.success:
            result.errors.append(f"{item.name}: duplicate check failed: {outcome.error}")
            return None, note

        verdict = outcome.value
        confident = self.gate.decide(outcome.confidence) == GateDecision.AUTO_APPLY
        if verdict.is_duplicate and confident:
            logger.info("[Workflow] %r is %r (%.2f): %s", item.name, candidate.name, outcome.confidence, verdict.reason)
            return candidate, None
        if not verdict.is_duplicate and confident:
            return None, None
        return None, f"{note}: {verdict.reason}" if verdict.reason else note

    def _stage_new_restaurant(
        self,
        chef: ChefRecord,
        item: RestaurantExtraction,
        result: WorkflowResult,
        source: str,
        notes: Optional[str] = None,
    ) -> None:
        slug = restaurant_slug(item.name, item.city)
        label = f"restaurant:{slug}"
        if self.gate.decide(item.confidence) == GateDecision.DISCARD:
            result.discarded.append(label)
            return
        if self.reviews.has_pending(ReviewItemType.NEW_RESTAURANT, slug):
            result.discarded.append(label)
            return
        self.reviews.add(
            ReviewItemType.NEW_RESTAURANT,
            NewRestaurantPayload(
                name=item.name,
                slug=slug,
                city=item.city,
                state=item.state,
                country=item.country,
                address=item.address,
                chef_id=chef.id,
                chef_name=chef.name,
                status=RestaurantStatus.OPEN if item.status == "unknown" else item.status,
                cuisine=item.cuisine,
                website=item.website,
                role=item.role,
            ),
            source=source,
            confidence=item.confidence,
            notes=notes,
        )
        result.staged.append(label)

    # status

    def _route_status(
        self,
        restaurant: RestaurantRecord,
        proposed: RestaurantStatus,
        confidence: float,
        reason: Optional[str],
        result: WorkflowResult,
        source: str,
        now: Optional[datetime] = None,
    ) -> None:
        label = f"restaurant:{restaurant.id}:status"
        decision = self.gate.decide(confidence)
        if decision == GateDecision.AUTO_APPLY and restaurant.protected:
            decision = GateDecision.STAGE_FOR_REVIEW

        if decision == GateDecision.DISCARD:
            result.discarded.append(label)
            return

        known = proposed != RestaurantStatus.UNKNOWN
        if decision == GateDecision.AUTO_APPLY and known:
            values: Dict[str, Any] = {
                "last_verified_at": now or _utcnow(),
                "verification_source": VERIFICATION_SOURCE,
            }
            if proposed != restaurant.status:
                values["status"] = proposed.value
            self.resolver.update_restaurant(restaurant.id, values)
            result.applied.append(label)
            return

        # Unverified confirmations leave the restaurant due for the next sweep.
        if not known or proposed == restaurant.status:
            result.discarded.append(label)
            return

        if self.reviews.has_pending(ReviewItemType.STATUS_CHANGE, restaurant.id):
            result.discarded.append(label)
            return
        self.reviews.add(
            ReviewItemType.STATUS_CHANGE,
            StatusChangePayload(
                restaurant_id=restaurant.id,
                restaurant_name=restaurant.name,
                current_status=restaurant.status,
                proposed_status=proposed,
                reason=reason,
            ),
            source=source,
            confidence=confidence,
        )
        result.staged.append(label)

    def _status_targets(self, chef: ChefRecord, job: EnrichmentJob) -> List[RestaurantRecord]:
        ids = [str(item) for item in job.metadata.get("restaurant_ids") or []]
        if not ids:
            return self.resolver.restaurants_for_chef(chef.id, RestaurantStatus.OPEN)
        targets = []
        for restaurant_id in ids:
            restaurant = self.resolver.get_restaurant(restaurant_id)
            if restaurant is None:
                logger.warning("[Workflow] Restaurant %s no longer exists, skipping", restaurant_id)
                continue
            targets.append(restaurant)
        return targets

    async def _check_statuses(
        self,
        chef: ChefRecord,
        job: EnrichmentJob,
        tracker: TokenTracker,
        result: WorkflowResult,
        source: str,
        now: datetime,
    ) -> None:
        targets = self._status_targets(chef, job)
        for restaurant in targets:
            outcome = await self.extractor.verify_restaurant_status(restaurant, tracker, chef_name=chef.name)
            if not outcome.success:
                result.errors.append(f"{restaurant.name}: {outcome.error}")
                continue
            self._route_status(
                restaurant,
                RestaurantStatus(outcome.value.status),
                outcome.confidence,
                outcome.value.reason,
                result,
                source,
                now,
            )

        if targets and len(result.errors) == len(targets):
            raise ExtractionError(
                f"Status check failed for all {len(targets)} restaurant(s) of {chef.name}",
                step="status",
            )
