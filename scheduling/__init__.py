"""Priority scoring and periodic job scheduling."""

from .priority import (
    MAX_PRIORITY,
    NEVER_ENRICHED_DAYS,
    RankedChef,
    StatusTarget,
    calculate_priority,
    clip_batch_size,
    days_since,
    group_by_chef,
    jobs_affordable,
    plan_monthly_refresh,
    plan_weekly_status,
    rank_chefs,
    select_stale_restaurants,
)
from .refresh import RefreshScheduler

__all__ = [
    "MAX_PRIORITY",
    "NEVER_ENRICHED_DAYS",
    "RankedChef",
    "StatusTarget",
    "calculate_priority",
    "clip_batch_size",
    "days_since",
    "group_by_chef",
    "jobs_affordable",
    "plan_monthly_refresh",
    "plan_weekly_status",
    "rank_chefs",
    "select_stale_restaurants",
    "RefreshScheduler",
]
