"""FastAPI app: admin enrichment triggers, review queue and cron endpoints."""

from __future__ import annotations

import hmac
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from core import ReviewItemType, TriggerKind
from utils.exceptions import (
    ActiveJobError,
    BudgetExceededError,
    ConfigurationError,
    EnrichmentError,
    NotFoundError,
    ReviewStateError,
    ValidationError,
)
from webapp.runtime import get_runtime


logger = logging.getLogger(__name__)


def camelize(value: Any) -> Any:
    """Recursively convert dict keys from snake_case to camelCase."""
    if isinstance(value, dict):
        return {to_camel(str(key)) if isinstance(key, str) else key: camelize(item) for key, item in value.items()}
    if isinstance(value, list):
        return [camelize(item) for item in value]
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TriggerChefPayload(CamelModel):
    chef_id: UUID
    enrichment_type: TriggerKind = TriggerKind.FULL
    priority: Optional[float] = Field(default=None, ge=0, le=100)


class BulkRefreshPayload(CamelModel):
    chef_ids: List[UUID] = Field(min_length=1, max_length=25)
    enrichment_type: TriggerKind = TriggerKind.FULL

    @field_validator("enrichment_type")
    @classmethod
    def _bulk_kinds(cls, value: TriggerKind) -> TriggerKind:
        if value == TriggerKind.STATUS_CHECK:
            raise ValueError("bulk refresh supports full or restaurants_only")
        return value


class TriggerRestaurantStatusPayload(CamelModel):
    restaurant_id: UUID


class BudgetUpdatePayload(CamelModel):
    month: str = Field(pattern=r"^\d{4}-\d{2}-01$")
    budget_usd: float = Field(ge=0, le=1000)


class ReviewDecisionPayload(CamelModel):
    reviewed_by: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("reviewed_by", "notes")
    @classmethod
    def _normalize_optional_text(cls, value: Optional[str]) -> Optional[str]:
        text = str(value or "").strip()
        return text or None


app = FastAPI(title="Chef Enrichment API")


def _error(status_code: int, exc: EnrichmentError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.message, "details": camelize(exc.details)},
    )


@app.exception_handler(ValidationError)
async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return _error(400, exc)


@app.exception_handler(BudgetExceededError)
async def _budget_error(request: Request, exc: BudgetExceededError) -> JSONResponse:
    return _error(400, exc)


@app.exception_handler(NotFoundError)
async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return _error(404, exc)


@app.exception_handler(ActiveJobError)
async def _active_job(request: Request, exc: ActiveJobError) -> JSONResponse:
    return _error(409, exc)


@app.exception_handler(ReviewStateError)
async def _review_state(request: Request, exc: ReviewStateError) -> JSONResponse:
    return _error(409, exc)


@app.exception_handler(ConfigurationError)
async def _configuration_error(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error("[API] Configuration error: %s", exc)
    return JSONResponse(status_code=500, content={"error": "Server configuration error", "details": {}})


@app.exception_handler(EnrichmentError)
async def _enrichment_error(request: Request, exc: EnrichmentError) -> JSONResponse:
    logger.error("[API] %s %s failed: %s", request.method, request.url.path, exc)
    return _error(500, exc)


@app.exception_handler(RequestValidationError)
async def _request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": [str(part) for part in item.get("loc", ())], "msg": item.get("msg")}
        for item in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Invalid request body", "details": errors})


def _require_cron_secret(authorization: Optional[str]) -> Optional[JSONResponse]:
    secret = get_runtime().settings.cron.secret
    if not secret:
        raise ConfigurationError("CRON_SECRET is not configured")
    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(authorization.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("[API] Rejected cron call with missing or invalid bearer token")
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})
    return None


@app.get("/api/health")
def health() -> Dict[str, Any]:
    return {"ok": True, "ts": datetime.now(timezone.utc).isoformat(timespec="seconds")}


# admin: enrichment


@app.post("/api/admin/enrichment/trigger-chef")
def trigger_chef(payload: TriggerChefPayload) -> Dict[str, Any]:
    runtime = get_runtime()
    result = runtime.orchestrator.trigger_chef(
        str(payload.chef_id),
        payload.enrichment_type,
        priority=payload.priority,
        triggered_by="admin",
    )
    return camelize({"success": True, **result})


@app.post("/api/admin/enrichment/bulk-refresh")
def bulk_refresh(payload: BulkRefreshPayload) -> Dict[str, Any]:
    runtime = get_runtime()
    result = runtime.orchestrator.trigger_bulk(
        [str(item) for item in payload.chef_ids],
        payload.enrichment_type,
        triggered_by="admin",
    )
    return camelize({"success": True, "enrichment_type": payload.enrichment_type.value, **result})


@app.post("/api/admin/enrichment/trigger-restaurant-status")
def trigger_restaurant_status(payload: TriggerRestaurantStatusPayload) -> Dict[str, Any]:
    runtime = get_runtime()
    result = runtime.orchestrator.trigger_restaurant_status(str(payload.restaurant_id), triggered_by="admin")
    return camelize({"success": True, **result})


@app.get("/api/admin/enrichment/stats")
def enrichment_stats() -> Dict[str, Any]:
    runtime = get_runtime()
    stats = runtime.orchestrator.stats()
    stats["review_queue"] = runtime.reviews.stats()
    return camelize(stats)


@app.patch("/api/admin/enrichment/budget")
def update_budget(payload: BudgetUpdatePayload) -> Dict[str, Any]:
    runtime = get_runtime()
    budget = runtime.ledger.update_budget_limit(payload.budget_usd, payload.month)
    return camelize({"success": True, "budget": budget.model_dump(mode="json")})


# admin: review queue


@app.get("/api/admin/review")
def list_review_items(type: Optional[ReviewItemType] = None, limit: int = 100) -> Dict[str, Any]:
    runtime = get_runtime()
    items = runtime.reviews.pending(type, limit=limit)
    return camelize({"items": [item.model_dump(mode="json") for item in items], "count": len(items)})


@app.post("/api/admin/review/{item_id}/approve")
def approve_review_item(item_id: str, payload: Optional[ReviewDecisionPayload] = None) -> Dict[str, Any]:
    runtime = get_runtime()
    decision = payload or ReviewDecisionPayload()
    item = runtime.reviews.approve(item_id, reviewed_by=decision.reviewed_by)
    return camelize({"success": True, "item": item.model_dump(mode="json")})


@app.post("/api/admin/review/{item_id}/reject")
def reject_review_item(item_id: str, payload: Optional[ReviewDecisionPayload] = None) -> Dict[str, Any]:
    runtime = get_runtime()
    decision = payload or ReviewDecisionPayload()
    item = runtime.reviews.reject(item_id, reviewed_by=decision.reviewed_by, notes=decision.notes)
    return camelize({"success": True, "item": item.model_dump(mode="json")})


# cron


@app.get("/api/cron/monthly-refresh")
def cron_monthly_refresh(authorization: Optional[str] = Header(default=None)) -> Any:
    denied = _require_cron_secret(authorization)
    if denied:
        return denied
    return camelize(get_runtime().scheduler.run_monthly_refresh())


@app.get("/api/cron/weekly-status-check")
def cron_weekly_status(authorization: Optional[str] = Header(default=None)) -> Any:
    denied = _require_cron_secret(authorization)
    if denied:
        return denied
    return camelize(get_runtime().scheduler.run_weekly_status())


@app.get("/api/cron/process-queue")
async def cron_process_queue(authorization: Optional[str] = Header(default=None)) -> Any:
    denied = _require_cron_secret(authorization)
    if denied:
        return denied
    summary = await get_runtime().worker.run_once()
    return camelize({"success": True, **summary})


@app.get("/api/cron/process-approved-queue")
def cron_process_approved(authorization: Optional[str] = Header(default=None), limit: int = 20) -> Any:
    denied = _require_cron_secret(authorization)
    if denied:
        return denied
    summary = get_runtime().materializer.process(limit=limit)
    return camelize({"success": True, **summary})
