"""Budget ledger, admission control and cost accounting."""

from .ledger import BudgetLedger, format_usd, month_key
from .pricing import (
    DEFAULT_MODEL,
    MODEL_PRICING,
    ModelPrice,
    TokenTracker,
    cost_from_tokens,
    estimate_cost,
    get_model_pricing,
)

__all__ = [
    "BudgetLedger",
    "format_usd",
    "month_key",
    "DEFAULT_MODEL",
    "MODEL_PRICING",
    "ModelPrice",
    "TokenTracker",
    "cost_from_tokens",
    "estimate_cost",
    "get_model_pricing",
]
