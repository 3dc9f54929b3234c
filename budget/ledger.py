"""Monthly budget ledger and admission control."""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional, Union

from core import BudgetCheckResult, MonthlyBudget
from storage import DataStore, Tables, eq
from utils.exceptions import StorageError, ValidationError


logger = logging.getLogger(__name__)

MONTH_KEY_PATTERN = re.compile(r"^\d{4}-\d{2}-01$")
MAX_BUDGET_USD = 1000.0

MonthLike = Union[str, date, datetime, None]


def month_key(value: MonthLike = None) -> str:
    """First day of the month (``YYYY-MM-01``) for ``value``; UTC now when omitted."""
    if value is None:
        value = datetime.now(timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if not MONTH_KEY_PATTERN.match(text):
            raise ValidationError("Month must be formatted as YYYY-MM-01", {"month": value})
        return text
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        value = value.date()
    return value.replace(day=1).isoformat()


def _dec(value: Any) -> Decimal:
    return Decimal(str(value if value is not None else 0))


def format_usd(value: Any) -> str:
    """``$19.90``, ``$0.0234``: at least two and at most four decimals."""
    text = f"{_dec(value).quantize(Decimal('0.0001'), rounding=ROUND_HALF_UP):f}"
    whole, _, frac = text.partition(".")
    frac = frac.rstrip("0").ljust(2, "0")
    return f"${whole}.{frac}"


class BudgetLedger:
    """One row per month; spend and job tallies change only through atomic increments."""

    def __init__(
        self,
        store: DataStore,
        default_budget_usd: float = 20.0,
        warning_threshold: float = 0.8,
    ) -> None:
        self.store = store
        self.default_budget_usd = float(default_budget_usd)
        self.warning_threshold = float(warning_threshold)

    @classmethod
    def from_settings(cls, store: DataStore, settings: Any) -> "BudgetLedger":
        return cls(
            store,
            default_budget_usd=settings.monthly_budget_usd,
            warning_threshold=settings.warning_threshold,
        )

    def _read(self, key: str) -> Optional[Dict[str, Any]]:
        return self.store.select_one(Tables.BUDGETS, [eq("month", key)])

    def ensure_budget_exists(self, month: MonthLike = None, budget_usd: Optional[float] = None) -> MonthlyBudget:
        """Create the month's row if missing. Safe to call any number of times."""
        key = month_key(month)
        row = {
            "month": key,
            "budget_usd": self.default_budget_usd if budget_usd is None else float(budget_usd),
            "spent_usd": 0.0,
            "manual_spent_usd": 0.0,
            "jobs_completed": 0,
            "jobs_failed": 0,
        }
        created = self.store.upsert(Tables.BUDGETS, row, on_conflict="month", ignore_duplicates=True)
        if created:
            logger.info("[Budget] Initialized %s with cap %s", key, format_usd(row["budget_usd"]))
        current = self._read(key)
        if current is None:
            raise StorageError("Budget row missing after upsert", {"month": key})
        return MonthlyBudget(**current)

    def get_budget(self, month: MonthLike = None, *, create: bool = True) -> Optional[MonthlyBudget]:
        key = month_key(month)
        if create:
            return self.ensure_budget_exists(key)
        row = self._read(key)
        if row is None or row.get("budget_usd") is None:
            return None
        return MonthlyBudget(**row)

    def check_budget_available(self, estimated_cost: float, month: MonthLike = None) -> BudgetCheckResult:
        """Admission decision: allowed iff ``spent + estimated_cost <= budget``."""
        key = month_key(month)
        self.ensure_budget_exists(key)
        row = self._read(key)
        if row is None or row.get("budget_usd") is None or row.get("spent_usd") is None:
            return BudgetCheckResult(
                allowed=False,
                month=key,
                estimated_cost=float(estimated_cost),
                reason="Budget not initialized for this month",
            )

        budget = _dec(row["budget_usd"])
        spent = _dec(row["spent_usd"])
        cost = _dec(estimated_cost)
        projected = spent + cost
        allowed = projected <= budget
        remaining = budget - spent
        percent = (spent / budget * 100) if budget > 0 else Decimal(100)

        reason = None
        if not allowed:
            reason = (
                f"Would exceed monthly budget: {format_usd(spent)} + {format_usd(cost)}"
                f" = {format_usd(projected)} > {format_usd(budget)}"
            )
            logger.info("[Budget] %s denied: %s", key, reason)

        return BudgetCheckResult(
            allowed=allowed,
            month=key,
            budget_usd=float(budget),
            spent_usd=float(spent),
            remaining_usd=float(max(remaining, Decimal(0))),
            percent_used=float(percent),
            estimated_cost=float(cost),
            reason=reason,
        )

    def increment_budget_spend(
        self,
        amount: float,
        is_manual: bool = False,
        month: MonthLike = None,
    ) -> MonthlyBudget:
        """Atomically add ``amount`` to ``spent_usd`` (or ``manual_spent_usd`` for manual spend)."""
        if amount < 0:
            raise ValidationError("Spend amount cannot be negative", {"amount": amount})
        key = month_key(month)
        current = self.ensure_budget_exists(key)
        if amount == 0:
            return current

        column = "manual_spent_usd" if is_manual else "spent_usd"
        row = self.store.increment(Tables.BUDGETS, {"month": key}, {column: float(amount)})
        if row is None:
            raise StorageError("Budget increment matched no row", {"month": key})
        updated = MonthlyBudget(**row)
        logger.info("[Budget] %s %s += %s (spent %s of %s)", key, column, format_usd(amount),
                    format_usd(updated.spent_usd), format_usd(updated.budget_usd))
        return updated

    def record_job_outcome(self, success: bool, month: MonthLike = None) -> MonthlyBudget:
        key = month_key(month)
        self.ensure_budget_exists(key)
        column = "jobs_completed" if success else "jobs_failed"
        row = self.store.increment(Tables.BUDGETS, {"month": key}, {column: 1})
        if row is None:
            raise StorageError("Budget increment matched no row", {"month": key})
        return MonthlyBudget(**row)

    def update_budget_limit(self, budget_usd: float, month: MonthLike = None) -> MonthlyBudget:
        if budget_usd < 0 or budget_usd > MAX_BUDGET_USD:
            raise ValidationError(
                f"Budget must be between 0 and {MAX_BUDGET_USD:.0f}",
                {"budget_usd": budget_usd},
            )
        key = month_key(month)
        self.ensure_budget_exists(key, budget_usd=budget_usd)
        rows = self.store.update(
            Tables.BUDGETS,
            {"budget_usd": float(budget_usd), "updated_at": datetime.now(timezone.utc)},
            [eq("month", key)],
        )
        if not rows:
            raise StorageError("Budget update matched no row", {"month": key})
        logger.info("[Budget] %s cap set to %s", key, format_usd(budget_usd))
        return MonthlyBudget(**rows[0])

    def is_over_warning(self, budget: Union[MonthlyBudget, BudgetCheckResult]) -> bool:
        return budget.percent_used > self.warning_threshold * 100
