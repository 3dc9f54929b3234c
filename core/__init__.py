"""Core contracts and shared types for the enrichment pipeline."""

from .contracts import (
    ACTIVE_JOB_STATUSES,
    ENRICHMENT_KIND,
    MANUAL_ENRICHMENT_TYPE,
    BudgetCheckResult,
    ChefCandidate,
    ChefRecord,
    EnrichmentJob,
    EnrichmentType,
    GateDecision,
    GateMode,
    JobStatus,
    MonthlyBudget,
    NewChefPayload,
    NewRestaurantPayload,
    RestaurantRecord,
    RestaurantStatus,
    ReviewItemType,
    ReviewPayload,
    ReviewQueueItem,
    ReviewStatus,
    SHOW_APPEARANCES_FIELD,
    ShowRecord,
    StatusChangePayload,
    TokenUsage,
    TriggerKind,
    UpdatePayload,
)

__all__ = [
    "ACTIVE_JOB_STATUSES",
    "ENRICHMENT_KIND",
    "MANUAL_ENRICHMENT_TYPE",
    "BudgetCheckResult",
    "ChefCandidate",
    "ChefRecord",
    "EnrichmentJob",
    "EnrichmentType",
    "GateDecision",
    "GateMode",
    "JobStatus",
    "MonthlyBudget",
    "NewChefPayload",
    "NewRestaurantPayload",
    "RestaurantRecord",
    "RestaurantStatus",
    "ReviewItemType",
    "ReviewPayload",
    "ReviewQueueItem",
    "ReviewStatus",
    "SHOW_APPEARANCES_FIELD",
    "ShowRecord",
    "StatusChangePayload",
    "TokenUsage",
    "TriggerKind",
    "UpdatePayload",
]
