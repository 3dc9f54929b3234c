from __future__ import annotations

from datetime import datetime, timezone

import pytest

from budget import BudgetLedger, format_usd, month_key
from storage import InMemoryDataStore, Tables
from utils.exceptions import ValidationError


MONTH = "2025-03-01"


def _ledger(budget_usd: float = 20.0) -> BudgetLedger:
    return BudgetLedger(InMemoryDataStore(), default_budget_usd=budget_usd)


def test_month_key_normalizes_dates_and_rejects_bad_strings() -> None:
    assert month_key(datetime(2025, 3, 17, 23, 59, tzinfo=timezone.utc)) == MONTH
    assert month_key("2025-03-01") == MONTH
    with pytest.raises(ValidationError):
        month_key("2025-03-17")


def test_ensure_budget_exists_is_idempotent() -> None:
    ledger = _ledger()
    first = ledger.ensure_budget_exists(MONTH)
    ledger.increment_budget_spend(1.25, month=MONTH)
    second = ledger.ensure_budget_exists(MONTH, budget_usd=99.0)

    assert first.budget_usd == 20.0
    assert second.budget_usd == 20.0
    assert second.spent_usd == pytest.approx(1.25)
    assert ledger.store.count(Tables.BUDGETS) == 1


def test_admission_denied_reason_spells_out_the_arithmetic() -> None:
    ledger = _ledger()
    ledger.increment_budget_spend(19.90, month=MONTH)

    check = ledger.check_budget_available(0.15, MONTH)

    assert check.allowed is False
    assert "$19.90" in check.reason
    assert "$0.15" in check.reason
    assert "$20.05" in check.reason
    assert "$20.00" in check.reason


def test_admission_allows_spend_up_to_the_exact_cap() -> None:
    ledger = _ledger()
    ledger.increment_budget_spend(19.85, month=MONTH)

    check = ledger.check_budget_available(0.15, MONTH)

    assert check.allowed is True
    assert check.reason is None
    assert check.remaining_usd == pytest.approx(0.15)


def test_manual_spend_is_tracked_separately() -> None:
    ledger = _ledger()
    ledger.increment_budget_spend(2.0, is_manual=True, month=MONTH)
    budget = ledger.increment_budget_spend(0.5, month=MONTH)

    assert budget.manual_spent_usd == pytest.approx(2.0)
    assert budget.spent_usd == pytest.approx(0.5)


def test_negative_spend_is_rejected() -> None:
    ledger = _ledger()
    with pytest.raises(ValidationError):
        ledger.increment_budget_spend(-0.01, month=MONTH)


def test_job_outcomes_are_counted() -> None:
    ledger = _ledger()
    ledger.record_job_outcome(True, MONTH)
    ledger.record_job_outcome(True, MONTH)
    budget = ledger.record_job_outcome(False, MONTH)

    assert budget.jobs_completed == 2
    assert budget.jobs_failed == 1


def test_update_budget_limit_bounds() -> None:
    ledger = _ledger()
    updated = ledger.update_budget_limit(35.0, MONTH)
    assert updated.budget_usd == 35.0

    with pytest.raises(ValidationError):
        ledger.update_budget_limit(1000.01, MONTH)
    with pytest.raises(ValidationError):
        ledger.update_budget_limit(-1, MONTH)


def test_zero_budget_denies_everything() -> None:
    ledger = _ledger(budget_usd=0.0)
    check = ledger.check_budget_available(0.02, MONTH)
    assert check.allowed is False
    assert check.percent_used == 100.0


def test_format_usd_keeps_small_amounts_readable() -> None:
    assert format_usd(0.0234) == "$0.0234"
    assert format_usd(20) == "$20.00"
    assert format_usd(19.9) == "$19.90"
