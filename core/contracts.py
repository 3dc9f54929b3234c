"""Canonical data contracts for the chef enrichment pipeline."""

from __future__ import annotations

import math
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator


class JobStatus(str, Enum):
    """Lifecycle of an enrichment job. Completed and failed are terminal."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_JOB_STATUSES = (JobStatus.QUEUED, JobStatus.PROCESSING)


class EnrichmentType(str, Enum):
    """Why a job was created; selects the workflow and the admission estimate."""

    INITIAL = "initial"
    MANUAL_FULL = "manual_full"
    MANUAL_RESTAURANTS = "manual_restaurants"
    MANUAL_STATUS = "manual_status"
    MONTHLY_REFRESH = "monthly_refresh"
    WEEKLY_STATUS = "weekly_status"


class TriggerKind(str, Enum):
    """Work shape requested by a trigger."""

    FULL = "full"
    RESTAURANTS_ONLY = "restaurants_only"
    STATUS_CHECK = "status_check"


ENRICHMENT_KIND: Dict[EnrichmentType, TriggerKind] = {
    EnrichmentType.INITIAL: TriggerKind.FULL,
    EnrichmentType.MANUAL_FULL: TriggerKind.FULL,
    EnrichmentType.MONTHLY_REFRESH: TriggerKind.FULL,
    EnrichmentType.MANUAL_RESTAURANTS: TriggerKind.RESTAURANTS_ONLY,
    EnrichmentType.MANUAL_STATUS: TriggerKind.STATUS_CHECK,
    EnrichmentType.WEEKLY_STATUS: TriggerKind.STATUS_CHECK,
}

MANUAL_ENRICHMENT_TYPE: Dict[TriggerKind, EnrichmentType] = {
    TriggerKind.FULL: EnrichmentType.MANUAL_FULL,
    TriggerKind.RESTAURANTS_ONLY: EnrichmentType.MANUAL_RESTAURANTS,
    TriggerKind.STATUS_CHECK: EnrichmentType.MANUAL_STATUS,
}


class ReviewItemType(str, Enum):
    NEW_CHEF = "new_chef"
    NEW_RESTAURANT = "new_restaurant"
    UPDATE = "update"
    STATUS_CHANGE = "status_change"


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RestaurantStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    UNKNOWN = "unknown"


class GateDecision(str, Enum):
    """Outcome of routing an extracted fact through the confidence gate."""

    AUTO_APPLY = "auto_apply"
    STAGE_FOR_REVIEW = "stage_for_review"
    DISCARD = "discard"


class GateMode(str, Enum):
    AUTO = "auto"
    REVIEW_ONLY = "review_only"
    DRY_RUN = "dry_run"


def _zero_if_none(value: Any) -> Any:
    return 0 if value is None else value


class TokenUsage(BaseModel):
    """Token accounting for one or more LLM calls."""

    prompt: int = 0
    completion: int = 0
    cached: int = 0

    @property
    def total(self) -> int:
        return self.prompt + self.completion

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt=self.prompt + other.prompt,
            completion=self.completion + other.completion,
            cached=self.cached + other.cached,
        )


class MonthlyBudget(BaseModel):
    """One ledger row per calendar month, keyed by its first day."""

    id: Optional[str] = None
    month: str
    budget_usd: float
    spent_usd: float = 0.0
    manual_spent_usd: float = 0.0
    jobs_completed: int = 0
    jobs_failed: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("spent_usd", "manual_spent_usd", "jobs_completed", "jobs_failed", mode="before")
    @classmethod
    def _counters_default_zero(cls, value: Any) -> Any:
        return _zero_if_none(value)

    @property
    def remaining_usd(self) -> float:
        return max(0.0, self.budget_usd - self.spent_usd)

    @property
    def percent_used(self) -> float:
        if self.budget_usd <= 0:
            return 100.0
        return self.spent_usd / self.budget_usd * 100.0


class BudgetCheckResult(BaseModel):
    """Admission decision for a prospective spend."""

    allowed: bool
    month: Optional[str] = None
    budget_usd: float = 0.0
    spent_usd: float = 0.0
    remaining_usd: float = 0.0
    percent_used: float = 0.0
    estimated_cost: float = 0.0
    reason: Optional[str] = None


class EnrichmentJob(BaseModel):
    """Durable unit of enrichment work for one chef."""

    id: str
    chef_id: str
    status: JobStatus = JobStatus.QUEUED
    enrichment_type: EnrichmentType
    priority_score: float = 0.0
    triggered_by: Optional[str] = None
    locked_until: Optional[datetime] = None
    locked_by: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    error_message: Optional[str] = None
    queue_item_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    tokens_used: int = 0
    cost_usd: float = 0.0

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_dict(cls, value: Any) -> Dict[str, Any]:
        return dict(value or {})

    @field_validator("tokens_used", "cost_usd", "priority_score", mode="before")
    @classmethod
    def _numbers_default_zero(cls, value: Any) -> Any:
        return _zero_if_none(value)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_JOB_STATUSES

    @property
    def kind(self) -> TriggerKind:
        return ENRICHMENT_KIND[self.enrichment_type]


class ChefCandidate(BaseModel):
    """A person scraped from a show page who may or may not be a chef."""

    name: str
    show_name: Optional[str] = None
    season: Optional[str] = None
    result: Optional[str] = None
    source_url: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _non_empty_name(cls, value: Any) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("name is required")
        return text


class ChefRecord(BaseModel):
    """The chef fields the pipeline reads and writes."""

    id: str
    name: str
    slug: str
    mini_bio: Optional[str] = None
    james_beard_status: Optional[str] = None
    notable_awards: List[str] = Field(default_factory=list)
    last_enriched_at: Optional[datetime] = None
    enrichment_priority: Optional[float] = None
    manual_priority: bool = False
    created_at: Optional[datetime] = None

    @field_validator("notable_awards", mode="before")
    @classmethod
    def _awards_list(cls, value: Any) -> List[str]:
        return list(value or [])

    @field_validator("manual_priority", mode="before")
    @classmethod
    def _manual_flag(cls, value: Any) -> bool:
        return bool(value)


class RestaurantRecord(BaseModel):
    """The restaurant fields the pipeline reads and writes."""

    id: str
    name: str
    slug: str
    chef_id: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    address: Optional[str] = None
    status: RestaurantStatus = RestaurantStatus.OPEN
    cuisine: List[str] = Field(default_factory=list)
    website: Optional[str] = None
    role: Optional[str] = None
    last_verified_at: Optional[datetime] = None
    verification_priority: Optional[float] = None
    verification_source: Optional[str] = None
    protected: bool = False

    @field_validator("cuisine", mode="before")
    @classmethod
    def _cuisine_list(cls, value: Any) -> List[str]:
        return list(value or [])

    @field_validator("status", mode="before")
    @classmethod
    def _status_default(cls, value: Any) -> Any:
        return value or RestaurantStatus.OPEN

    @field_validator("protected", mode="before")
    @classmethod
    def _protected_flag(cls, value: Any) -> bool:
        return bool(value)


class ShowRecord(BaseModel):
    id: str
    name: str
    slug: str
    network: Optional[str] = None
    is_public: bool = False


class NewChefPayload(BaseModel):
    type: Literal["new_chef"] = "new_chef"
    name: str
    slug: Optional[str] = None
    show_name: Optional[str] = None
    show_slug: Optional[str] = None
    season: Optional[str] = None
    result: Optional[str] = None
    source_url: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _non_empty_name(cls, value: Any) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("name is required")
        return text


class NewRestaurantPayload(BaseModel):
    type: Literal["new_restaurant"] = "new_restaurant"
    name: str
    slug: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    address: Optional[str] = None
    chef_id: Optional[str] = None
    chef_name: Optional[str] = None
    status: RestaurantStatus = RestaurantStatus.OPEN
    cuisine: List[str] = Field(default_factory=list)
    website: Optional[str] = None
    role: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _non_empty_name(cls, value: Any) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("name is required")
        return text

    @field_validator("cuisine", mode="before")
    @classmethod
    def _cuisine_list(cls, value: Any) -> List[str]:
        return list(value or [])


# Chef update key carrying show appearances to link rather than a column to write.
SHOW_APPEARANCES_FIELD = "show_appearances"


class UpdatePayload(BaseModel):
    type: Literal["update"] = "update"
    entity_type: Literal["chef", "restaurant"]
    entity_id: str
    entity_name: Optional[str] = None
    changes: Dict[str, Any] = Field(default_factory=dict)
    reason: Optional[str] = None

    @field_validator("changes")
    @classmethod
    def _has_changes(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        if not value:
            raise ValueError("at least one field is required")
        return value


class StatusChangePayload(BaseModel):
    type: Literal["status_change"] = "status_change"
    restaurant_id: str
    restaurant_name: Optional[str] = None
    current_status: Optional[RestaurantStatus] = None
    proposed_status: RestaurantStatus
    reason: Optional[str] = None


ReviewPayload = Annotated[
    Union[NewChefPayload, NewRestaurantPayload, UpdatePayload, StatusChangePayload],
    Field(discriminator="type"),
]


class ReviewQueueItem(BaseModel):
    """A proposed change awaiting (or past) human review."""

    id: Optional[str] = None
    type: ReviewItemType
    data: ReviewPayload
    source: str
    confidence: Optional[float] = None
    status: ReviewStatus = ReviewStatus.PENDING
    notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _type_from_payload(cls, values: Any) -> Any:
        if isinstance(values, dict) and not values.get("type"):
            data = values.get("data")
            kind = data.get("type") if isinstance(data, dict) else getattr(data, "type", None)
            if kind:
                values = {**values, "type": kind}
        return values

    @field_validator("source", mode="before")
    @classmethod
    def _non_empty_source(cls, value: Any) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("source is required")
        return text

    @field_validator("confidence")
    @classmethod
    def _confidence_range(cls, value: Optional[float]) -> Optional[float]:
        if value is None:
            return None
        if math.isnan(value) or value < 0.0 or value > 1.0:
            raise ValueError("confidence must be between 0 and 1")
        return value

    @model_validator(mode="after")
    def _type_matches_payload(self) -> "ReviewQueueItem":
        if self.type.value != self.data.type:
            raise ValueError(f"item type {self.type.value} does not match payload type {self.data.type}")
        return self
