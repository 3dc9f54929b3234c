"""Human review queue for facts the confidence gate would not auto-apply."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, ValidationError as PydanticValidationError

from core import (
    NewChefPayload,
    NewRestaurantPayload,
    ReviewItemType,
    ReviewQueueItem,
    ReviewStatus,
    SHOW_APPEARANCES_FIELD,
    StatusChangePayload,
    UpdatePayload,
)
from resolver.slug import chef_slug, restaurant_slug
from storage import DataStore, Tables, asc, desc, eq, is_null
from utils.exceptions import NotFoundError, ReviewStateError, ValidationError


logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 500
MAX_PAGE_SIZE = 500


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def dedup_key(payload: BaseModel) -> Optional[str]:
    """Identity of the entity a payload proposes to create or change."""
    if isinstance(payload, NewChefPayload):
        return payload.slug or chef_slug(payload.name)
    if isinstance(payload, NewRestaurantPayload):
        return payload.slug or restaurant_slug(payload.name, payload.city)
    if isinstance(payload, UpdatePayload):
        if SHOW_APPEARANCES_FIELD in payload.changes:
            return f"{payload.entity_type}:{payload.entity_id}:shows"
        return f"{payload.entity_type}:{payload.entity_id}"
    if isinstance(payload, StatusChangePayload):
        return payload.restaurant_id
    return None


class ReviewQueue:
    """Staging table operations. Each item is decided exactly once and processed at most once."""

    def __init__(self, store: DataStore) -> None:
        self.store = store

    @staticmethod
    def _build(
        item_type: Union[ReviewItemType, str],
        payload: Union[BaseModel, Dict[str, Any]],
        source: str,
        confidence: Optional[float] = None,
        notes: Optional[str] = None,
    ) -> ReviewQueueItem:
        try:
            kind = ReviewItemType(item_type)
        except ValueError as exc:
            raise ValidationError(f"Unknown review item type: {item_type}") from exc
        data = payload.model_dump(mode="json") if isinstance(payload, BaseModel) else dict(payload or {})
        data.setdefault("type", kind.value)
        try:
            return ReviewQueueItem(
                type=kind,
                data=data,
                source=source,
                confidence=confidence,
                notes=notes,
            )
        except PydanticValidationError as exc:
            raise ValidationError("Invalid review item", {"errors": exc.errors(include_url=False)}) from exc

    @staticmethod
    def _row(item: ReviewQueueItem) -> Dict[str, Any]:
        return {
            "type": item.type.value,
            "data": item.data.model_dump(mode="json"),
            "dedup_key": dedup_key(item.data),
            "source": item.source,
            "confidence": item.confidence,
            "status": ReviewStatus.PENDING.value,
            "notes": item.notes,
        }

    def add(
        self,
        item_type: Union[ReviewItemType, str],
        payload: Union[BaseModel, Dict[str, Any]],
        source: str,
        confidence: Optional[float] = None,
        notes: Optional[str] = None,
    ) -> ReviewQueueItem:
        item = self._build(item_type, payload, source, confidence, notes)
        row = self.store.insert(Tables.REVIEW_QUEUE, self._row(item))[0]
        logger.info("[ReviewQueue] Staged %s item %s from %s", item.type.value, row["id"], item.source)
        return ReviewQueueItem(**row)

    def add_batch(self, items: Iterable[Dict[str, Any]]) -> List[ReviewQueueItem]:
        """Insert up to 500 items; each dict carries ``type``, ``data``, ``source`` and optional ``confidence``/``notes``."""
        entries = list(items)
        if len(entries) > MAX_BATCH_SIZE:
            raise ValidationError(f"Batch too large: {len(entries)} > {MAX_BATCH_SIZE}")
        if not entries:
            return []
        built = [
            self._build(
                entry.get("type"),
                entry.get("data") or {},
                entry.get("source"),
                entry.get("confidence"),
                entry.get("notes"),
            )
            for entry in entries
        ]
        rows = self.store.insert(Tables.REVIEW_QUEUE, [self._row(item) for item in built])
        logger.info("[ReviewQueue] Staged %d item(s)", len(rows))
        return [ReviewQueueItem(**row) for row in rows]

    def get(self, item_id: str) -> Optional[ReviewQueueItem]:
        row = self.store.select_one(Tables.REVIEW_QUEUE, [eq("id", item_id)])
        return ReviewQueueItem(**row) if row else None

    def pending(self, item_type: Optional[ReviewItemType] = None, limit: int = 100) -> List[ReviewQueueItem]:
        filters = [eq("status", ReviewStatus.PENDING.value)]
        if item_type is not None:
            filters.append(eq("type", ReviewItemType(item_type).value))
        rows = self.store.select(
            Tables.REVIEW_QUEUE,
            filters,
            order_by=[desc("created_at")],
            limit=max(1, min(int(limit), MAX_PAGE_SIZE)),
        )
        return [ReviewQueueItem(**row) for row in rows]

    def has_pending(self, item_type: ReviewItemType, key: str) -> bool:
        """True when a pending item of ``item_type`` already targets ``key``."""
        return (
            self.store.count(
                Tables.REVIEW_QUEUE,
                [
                    eq("type", ReviewItemType(item_type).value),
                    eq("status", ReviewStatus.PENDING.value),
                    eq("dedup_key", key),
                ],
            )
            > 0
        )

    def _decide(
        self,
        item_id: str,
        status: ReviewStatus,
        reviewed_by: Optional[str],
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ReviewQueueItem:
        values: Dict[str, Any] = {
            "status": status.value,
            "reviewed_at": now or _utcnow(),
            "reviewed_by": reviewed_by,
        }
        if notes is not None:
            values["notes"] = notes
        rows = self.store.update(
            Tables.REVIEW_QUEUE,
            values,
            [eq("id", item_id), eq("status", ReviewStatus.PENDING.value)],
        )
        if rows:
            logger.info("[ReviewQueue] Item %s %s by %s", item_id, status.value, reviewed_by or "unknown")
            return ReviewQueueItem(**rows[0])

        existing = self.get(item_id)
        if existing is None:
            raise NotFoundError("Review item", item_id)
        raise ReviewStateError(
            f"Review item already {existing.status.value}",
            {"id": item_id, "status": existing.status.value},
        )

    def approve(self, item_id: str, reviewed_by: Optional[str] = None, now: Optional[datetime] = None) -> ReviewQueueItem:
        return self._decide(item_id, ReviewStatus.APPROVED, reviewed_by, now=now)

    def reject(
        self,
        item_id: str,
        reviewed_by: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ReviewQueueItem:
        return self._decide(item_id, ReviewStatus.REJECTED, reviewed_by, notes=notes, now=now)

    def approved_unprocessed(self, item_type: Optional[ReviewItemType] = None, limit: int = 20) -> List[ReviewQueueItem]:
        filters = [eq("status", ReviewStatus.APPROVED.value), is_null("processed_at")]
        if item_type is not None:
            filters.append(eq("type", ReviewItemType(item_type).value))
        rows = self.store.select(
            Tables.REVIEW_QUEUE,
            filters,
            order_by=[asc("reviewed_at"), asc("created_at")],
            limit=max(1, min(int(limit), MAX_PAGE_SIZE)),
        )
        return [ReviewQueueItem(**row) for row in rows]

    def mark_processed(self, item_id: str, now: Optional[datetime] = None) -> bool:
        """Stamp ``processed_at`` once; returns False when it was already set."""
        rows = self.store.update(
            Tables.REVIEW_QUEUE,
            {"processed_at": now or _utcnow()},
            [eq("id", item_id), is_null("processed_at")],
        )
        return bool(rows)

    def stats(self) -> Dict[str, Any]:
        by_status = {
            status.value: self.store.count(Tables.REVIEW_QUEUE, [eq("status", status.value)])
            for status in ReviewStatus
        }
        pending_by_type = {
            item_type.value: self.store.count(
                Tables.REVIEW_QUEUE,
                [eq("status", ReviewStatus.PENDING.value), eq("type", item_type.value)],
            )
            for item_type in ReviewItemType
        }
        awaiting = self.store.count(
            Tables.REVIEW_QUEUE,
            [eq("status", ReviewStatus.APPROVED.value), is_null("processed_at")],
        )
        return {"by_status": by_status, "pending_by_type": pending_by_type, "approved_unprocessed": awaiting}
