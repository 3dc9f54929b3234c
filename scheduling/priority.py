"""Priority scoring and budget-aware batch planning."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from core import ChefRecord, RestaurantRecord, RestaurantStatus


MAX_PRIORITY = 200.0
NEVER_ENRICHED_DAYS = 365
DEFAULT_STORED_PRIORITY = 50.0
DEFAULT_RESTAURANT_PRIORITY = 50.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def days_since(value: Optional[datetime], now: Optional[datetime] = None) -> int:
    """Whole days elapsed since ``value``; ``NEVER_ENRICHED_DAYS`` when it is unset."""
    if value is None:
        return NEVER_ENRICHED_DAYS
    current = now or _utcnow()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return max(0, (current - value).days)


def calculate_priority(
    restaurant_count: int,
    days_since_enriched: float,
    manual_priority: bool = False,
    stored_priority: Optional[float] = None,
) -> float:
    """restaurants x 10 + min(days x 0.5, 100) + 50 if manual + stored (default 50), capped at 200."""
    score = max(0, int(restaurant_count)) * 10.0
    score += min(max(0.0, float(days_since_enriched)) * 0.5, 100.0)
    if manual_priority:
        score += 50.0
    score += DEFAULT_STORED_PRIORITY if stored_priority is None else float(stored_priority)
    return min(score, MAX_PRIORITY)


def jobs_affordable(remaining_usd: float, cost_per_job: float) -> int:
    if cost_per_job <= 0:
        return 0
    remaining = Decimal(str(max(0.0, remaining_usd)))
    return int(remaining / Decimal(str(cost_per_job)))


def clip_batch_size(
    candidates: int,
    max_batch: int,
    remaining_usd: float,
    cost_per_job: float,
    percent_used: float,
    warning_threshold: float = 0.8,
) -> int:
    """min(candidates, batch, floor(remaining / cost)); batch halves (min 1) past the warning threshold."""
    batch = max(0, int(max_batch))
    if percent_used > warning_threshold * 100 and batch > 0:
        batch = max(1, int(math.floor(batch / 2)))
    return max(0, min(int(candidates), batch, jobs_affordable(remaining_usd, cost_per_job)))


@dataclass
class RankedChef:
    chef: ChefRecord
    priority: float
    restaurant_count: int
    days_since_enriched: int


@dataclass
class StatusTarget:
    """One weekly status job: a chef and the stale restaurants to verify."""

    chef_id: str
    priority: float
    restaurant_ids: List[str] = field(default_factory=list)


def rank_chefs(
    chefs: Iterable[ChefRecord],
    open_restaurant_counts: Dict[str, int],
    now: Optional[datetime] = None,
) -> List[RankedChef]:
    ranked: List[RankedChef] = []
    for chef in chefs:
        count = int(open_restaurant_counts.get(chef.id, 0))
        days = days_since(chef.last_enriched_at, now)
        ranked.append(
            RankedChef(
                chef=chef,
                priority=calculate_priority(count, days, chef.manual_priority, chef.enrichment_priority),
                restaurant_count=count,
                days_since_enriched=days,
            )
        )
    ranked.sort(key=lambda item: item.priority, reverse=True)
    return ranked


def plan_monthly_refresh(
    chefs: Iterable[ChefRecord],
    open_restaurant_counts: Dict[str, int],
    *,
    remaining_usd: float,
    percent_used: float,
    cost_per_job: float,
    top_n: int = 50,
    max_batch: int = 5,
    warning_threshold: float = 0.8,
    now: Optional[datetime] = None,
) -> List[RankedChef]:
    top = rank_chefs(chefs, open_restaurant_counts, now)[: max(0, int(top_n))]
    size = clip_batch_size(len(top), max_batch, remaining_usd, cost_per_job, percent_used, warning_threshold)
    return top[:size]


def _is_uuid(value: Optional[str]) -> bool:
    try:
        UUID(str(value))
    except (TypeError, ValueError):
        return False
    return True


def select_stale_restaurants(
    restaurants: Iterable[RestaurantRecord],
    *,
    stale_days: int = 30,
    min_priority: float = 30,
    limit: int = 100,
    now: Optional[datetime] = None,
) -> List[RestaurantRecord]:
    """Open restaurants never verified or verified before the cutoff, highest priority first."""
    cutoff = (now or _utcnow()) - timedelta(days=stale_days)
    selected = [
        item
        for item in restaurants
        if item.status == RestaurantStatus.OPEN
        and (item.verification_priority if item.verification_priority is not None else DEFAULT_RESTAURANT_PRIORITY) >= min_priority
        and (item.last_verified_at is None or item.last_verified_at < cutoff)
    ]
    selected.sort(
        key=lambda item: item.verification_priority if item.verification_priority is not None else DEFAULT_RESTAURANT_PRIORITY,
        reverse=True,
    )
    return selected[: max(0, int(limit))]


def group_by_chef(restaurants: Sequence[RestaurantRecord]) -> List[StatusTarget]:
    """One target per chef (valid ids only), carrying the max restaurant priority, highest first."""
    targets: Dict[str, StatusTarget] = {}
    for item in restaurants:
        if not _is_uuid(item.chef_id):
            continue
        priority = item.verification_priority if item.verification_priority is not None else DEFAULT_RESTAURANT_PRIORITY
        target = targets.get(item.chef_id)
        if target is None:
            target = StatusTarget(chef_id=str(item.chef_id), priority=priority)
            targets[item.chef_id] = target
        target.priority = max(target.priority, priority)
        target.restaurant_ids.append(item.id)
    ordered = list(targets.values())
    ordered.sort(key=lambda target: target.priority, reverse=True)
    return ordered


def plan_weekly_status(
    restaurants: Iterable[RestaurantRecord],
    *,
    remaining_usd: float,
    percent_used: float,
    cost_per_job: float,
    top_n: int = 100,
    max_batch: int = 20,
    stale_days: int = 30,
    min_priority: float = 30,
    warning_threshold: float = 0.8,
    now: Optional[datetime] = None,
) -> List[StatusTarget]:
    stale = select_stale_restaurants(
        restaurants,
        stale_days=stale_days,
        min_priority=min_priority,
        limit=top_n,
        now=now,
    )
    targets = group_by_chef(stale)
    size = clip_batch_size(len(targets), max_batch, remaining_usd, cost_per_job, percent_used, warning_threshold)
    return targets[:size]
