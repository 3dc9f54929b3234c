"""Chef and restaurant resolution against canonical rows."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from core import ChefRecord, RestaurantRecord, RestaurantStatus
from storage import DataStore, Tables, eq, escape_like, ilike, in_, is_null
from utils.exceptions import DuplicateError, StorageError, ValidationError
from utils.text import name_similarity, strip_citations

from .slug import chef_slug, restaurant_slug


logger = logging.getLogger(__name__)

DUPLICATE_THRESHOLD = 0.85
CITY_SCAN_LIMIT = 50

CHEF_COLUMNS = ("mini_bio", "james_beard_status", "notable_awards", "last_enriched_at", "enrichment_priority", "manual_priority")
RESTAURANT_COLUMNS = (
    "name",
    "address",
    "city",
    "state",
    "country",
    "status",
    "cuisine",
    "website",
    "role",
    "last_verified_at",
    "verification_priority",
    "verification_source",
)


def sanitize_restaurant_name(name: Optional[str]) -> str:
    return strip_citations(name)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EntityResolver:
    """Find-or-create for chefs and restaurants.

    Existence checks and inserts are separate statements; a unique-key conflict on insert
    is treated as "someone else created it" and resolved by refetching the row by slug.
    """

    def __init__(self, store: DataStore, duplicate_threshold: float = DUPLICATE_THRESHOLD) -> None:
        self.store = store
        self.duplicate_threshold = duplicate_threshold

    # chefs

    def get_chef(self, chef_id: str) -> Optional[ChefRecord]:
        row = self.store.select_one(Tables.CHEFS, [eq("id", chef_id)])
        return ChefRecord(**row) if row else None

    def get_chefs(self, chef_ids: Iterable[str]) -> Dict[str, ChefRecord]:
        ids = [str(item) for item in chef_ids]
        if not ids:
            return {}
        rows = self.store.select(Tables.CHEFS, [in_("id", ids)])
        return {str(row["id"]): ChefRecord(**row) for row in rows}

    def list_chefs(self) -> List[ChefRecord]:
        return [ChefRecord(**row) for row in self.store.select(Tables.CHEFS)]

    def find_chef(self, name: str) -> Optional[ChefRecord]:
        slug = chef_slug(name)
        row = self.store.select_one(Tables.CHEFS, [eq("slug", slug)])
        if row is None:
            row = self.store.select_one(Tables.CHEFS, [ilike("name", escape_like(str(name).strip()))])
        return ChefRecord(**row) if row else None

    def get_or_create_chef(self, name: str, **fields: Any) -> Tuple[ChefRecord, bool]:
        """Return ``(chef, created)``."""
        clean = str(name or "").strip()
        if not clean:
            raise ValidationError("Chef name is required")
        existing = self.find_chef(clean)
        if existing is not None:
            return existing, False

        slug = chef_slug(clean)
        row = {"name": clean, "slug": slug, **{k: v for k, v in fields.items() if k in CHEF_COLUMNS}}
        try:
            created = self.store.insert(Tables.CHEFS, row)[0]
        except DuplicateError:
            logger.info("[Resolver] Chef %s created concurrently, reusing", slug)
            refetched = self.store.select_one(Tables.CHEFS, [eq("slug", slug)])
            if refetched is None:
                raise StorageError("Chef vanished after duplicate insert", {"slug": slug})
            return ChefRecord(**refetched), False
        logger.info("[Resolver] Created chef %s", slug)
        return ChefRecord(**created), True

    def update_chef(self, chef_id: str, values: Dict[str, Any]) -> Optional[ChefRecord]:
        allowed = {k: v for k, v in values.items() if k in CHEF_COLUMNS}
        if not allowed:
            raise ValidationError("No updatable chef fields", {"fields": sorted(values)})
        allowed["updated_at"] = _utcnow()
        rows = self.store.update(Tables.CHEFS, allowed, [eq("id", chef_id)])
        return ChefRecord(**rows[0]) if rows else None

    # restaurants

    def get_restaurant(self, restaurant_id: str) -> Optional[RestaurantRecord]:
        row = self.store.select_one(Tables.RESTAURANTS, [eq("id", restaurant_id)])
        return RestaurantRecord(**row) if row else None

    def restaurants_for_chef(
        self,
        chef_id: str,
        status: Optional[RestaurantStatus] = None,
    ) -> List[RestaurantRecord]:
        filters = [eq("chef_id", chef_id)]
        if status is not None:
            filters.append(eq("status", RestaurantStatus(status).value))
        return [RestaurantRecord(**row) for row in self.store.select(Tables.RESTAURANTS, filters)]

    def list_restaurants(self, status: Optional[RestaurantStatus] = None) -> List[RestaurantRecord]:
        filters = [eq("status", RestaurantStatus(status).value)] if status is not None else []
        return [RestaurantRecord(**row) for row in self.store.select(Tables.RESTAURANTS, filters)]

    @staticmethod
    def _city_filter(city: Optional[str]):
        return ilike("city", escape_like(city.strip())) if city and city.strip() else is_null("city")

    def find_restaurant(self, name: str, city: Optional[str] = None) -> Optional[RestaurantRecord]:
        """Slug match, then case-insensitive name in the same city."""
        clean = sanitize_restaurant_name(name)
        if not clean:
            return None

        row = self.store.select_one(Tables.RESTAURANTS, [eq("slug", restaurant_slug(clean, city))])
        if row:
            return RestaurantRecord(**row)

        row = self.store.select_one(Tables.RESTAURANTS, [ilike("name", escape_like(clean)), self._city_filter(city)])
        return RestaurantRecord(**row) if row else None

    def duplicate_candidates(
        self,
        name: str,
        city: Optional[str] = None,
        limit: int = 3,
    ) -> List[Tuple[float, RestaurantRecord]]:
        """Restaurants in the same city whose names look alike, best first.

        These are possible duplicates only; callers decide whether to merge.
        """
        clean = sanitize_restaurant_name(name)
        if not clean:
            return []
        scored = []
        for candidate in self.store.select(Tables.RESTAURANTS, [self._city_filter(city)], limit=CITY_SCAN_LIMIT):
            score = name_similarity(clean, candidate.get("name"))
            if score >= self.duplicate_threshold:
                scored.append((score, RestaurantRecord(**candidate)))
        scored.sort(key=lambda item: item[0], reverse=True)
        if scored:
            logger.info(
                "[Resolver] %r has %d possible duplicate(s), best %r (%.2f)",
                clean,
                len(scored),
                scored[0][1].name,
                scored[0][0],
            )
        return scored[: max(0, int(limit))]

    def get_or_create_restaurant(
        self,
        name: str,
        city: Optional[str],
        chef_id: Optional[str],
        **fields: Any,
    ) -> Tuple[RestaurantRecord, bool]:
        """Return ``(restaurant, created)``; reuses a row with the same slug or the same name in the same city."""
        clean = sanitize_restaurant_name(name)
        if not clean:
            raise ValidationError("Restaurant name is required")
        existing = self.find_restaurant(clean, city)
        if existing is not None:
            if chef_id and existing.chef_id and existing.chef_id != chef_id:
                logger.warning("[Resolver] Restaurant %s already linked to a different chef", existing.slug)
            return existing, False

        slug = restaurant_slug(clean, city)
        row: Dict[str, Any] = {k: v for k, v in fields.items() if k in RESTAURANT_COLUMNS}
        row.update({"name": clean, "slug": slug, "city": city, "chef_id": chef_id})
        row.setdefault("status", RestaurantStatus.UNKNOWN.value)
        try:
            created = self.store.insert(Tables.RESTAURANTS, row)[0]
        except DuplicateError:
            logger.info("[Resolver] Restaurant %s created concurrently, reusing", slug)
            refetched = self.store.select_one(Tables.RESTAURANTS, [eq("slug", slug)])
            if refetched is None:
                raise StorageError("Restaurant vanished after duplicate insert", {"slug": slug})
            return RestaurantRecord(**refetched), False
        logger.info("[Resolver] Created restaurant %s", slug)
        return RestaurantRecord(**created), True

    def update_restaurant(self, restaurant_id: str, values: Dict[str, Any]) -> Optional[RestaurantRecord]:
        allowed = {k: v for k, v in values.items() if k in RESTAURANT_COLUMNS}
        if not allowed:
            raise ValidationError("No updatable restaurant fields", {"fields": sorted(values)})
        if isinstance(allowed.get("status"), RestaurantStatus):
            allowed["status"] = allowed["status"].value
        allowed["updated_at"] = _utcnow()
        rows = self.store.update(Tables.RESTAURANTS, allowed, [eq("id", restaurant_id)])
        return RestaurantRecord(**rows[0]) if rows else None
