"""Model pricing, admission estimates and token cost accounting."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Dict, Optional

from core import TokenUsage, TriggerKind


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelPrice:
    """USD per 1M tokens."""

    input: float
    cached: float
    output: float


DEFAULT_MODEL = "gpt-5-mini"

MODEL_PRICING: Dict[str, ModelPrice] = {
    "gpt-5.1": ModelPrice(input=1.25, cached=0.125, output=10.00),
    "gpt-5": ModelPrice(input=1.25, cached=0.125, output=10.00),
    "gpt-5-mini": ModelPrice(input=0.25, cached=0.025, output=2.00),
    "gpt-5-nano": ModelPrice(input=0.05, cached=0.005, output=0.40),
    "gpt-4.1": ModelPrice(input=2.00, cached=0.50, output=8.00),
    "gpt-4.1-mini": ModelPrice(input=0.40, cached=0.10, output=1.60),
    "gpt-4.1-nano": ModelPrice(input=0.10, cached=0.025, output=0.40),
    "gpt-4o": ModelPrice(input=2.50, cached=1.25, output=10.00),
    "gpt-4o-mini": ModelPrice(input=0.15, cached=0.075, output=0.60),
    "o1": ModelPrice(input=15.00, cached=7.50, output=60.00),
    "o1-mini": ModelPrice(input=1.10, cached=0.55, output=4.40),
}

DEFAULT_COST_ESTIMATES: Dict[TriggerKind, float] = {
    TriggerKind.FULL: 0.15,
    TriggerKind.RESTAURANTS_ONLY: 0.08,
    TriggerKind.STATUS_CHECK: 0.02,
}


def get_model_pricing(model_name: Optional[str] = None) -> ModelPrice:
    name = model_name or DEFAULT_MODEL
    if name in MODEL_PRICING:
        return MODEL_PRICING[name]
    logger.warning("[Pricing] Unknown model %r, falling back to %s", name, DEFAULT_MODEL)
    return MODEL_PRICING[DEFAULT_MODEL]


def cost_from_tokens(usage: TokenUsage, model_name: Optional[str] = None) -> float:
    """Dollar cost of ``usage``; cached prompt tokens are billed at the cached rate."""
    pricing = get_model_pricing(model_name)
    cached = max(0, min(usage.cached, usage.prompt))
    uncached = usage.prompt - cached
    return (
        uncached / 1_000_000 * pricing.input
        + cached / 1_000_000 * pricing.cached
        + usage.completion / 1_000_000 * pricing.output
    )


def estimate_cost(kind: TriggerKind, costs=None) -> float:
    """Static admission estimate for a job kind. ``costs`` is an optional ``CostSettings``."""
    if costs is None:
        return DEFAULT_COST_ESTIMATES[kind]
    return {
        TriggerKind.FULL: float(costs.full_enrichment),
        TriggerKind.RESTAURANTS_ONLY: float(costs.restaurants_only),
        TriggerKind.STATUS_CHECK: float(costs.status_check),
    }[kind]


class TokenTracker:
    """Accumulates token usage and dollar cost across calls of one job."""

    def __init__(self) -> None:
        self._usage = TokenUsage()
        self._cost = 0.0
        self._calls = 0
        self._lock = Lock()

    def track(self, usage: TokenUsage, model_name: Optional[str] = None) -> float:
        cost = cost_from_tokens(usage, model_name)
        with self._lock:
            self._usage = self._usage + usage
            self._cost += cost
            self._calls += 1
        return cost

    @property
    def usage(self) -> TokenUsage:
        with self._lock:
            return self._usage.model_copy()

    @property
    def cost_usd(self) -> float:
        with self._lock:
            return round(self._cost, 6)

    @property
    def calls(self) -> int:
        with self._lock:
            return self._calls
