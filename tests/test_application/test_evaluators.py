"""
Tests for budget threshold and spending anomaly evaluation.

Covers:
  - Budget: exactly 80% flagged, 79.99% not, zero budgets skipped
  - Budget: only current-month expenses count, income ignored
  - Anomaly: mean + 2σ rule (μ=100, σ=10: 125 flagged, 115 not)
  - Anomaly: empty history and zero spend never flag
  - Anomaly: end-to-end over stored records
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from app.application.anomaly_detector import AnomalyDetector, anomaly_key, baseline, is_anomalous
from app.application.budget_threshold import BudgetThresholdEvaluator, budget_warning_key
from app.infrastructure.db.models import BudgetModel, CategoryModel, ExpenseRecordModel
from app.infrastructure.notifications.repositories import FinanceRepository

_tz = timezone.utc
NOW = datetime(2026, 3, 15, 9, 0, tzinfo=_tz)
USER_ID = 1


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _category(db, name="Food", user_id=USER_ID) -> CategoryModel:
    c = CategoryModel(user_id=user_id, name=name)
    db.add(c)
    db.flush()
    return c


def _budget(db, category_id, amount, user_id=USER_ID) -> BudgetModel:
    b = BudgetModel(user_id=user_id, category_id=category_id, amount=Decimal(str(amount)), period="monthly")
    db.add(b)
    db.flush()
    return b


def _record(db, category_id, amount, when, type_="expense", user_id=USER_ID) -> ExpenseRecordModel:
    r = ExpenseRecordModel(
        user_id=user_id,
        category_id=category_id,
        amount=Decimal(str(amount)),
        type=type_,
        transaction_date=when,
    )
    db.add(r)
    db.flush()
    return r


# ---------------------------------------------------------------------------
# Budget threshold
# ---------------------------------------------------------------------------

def test_budget_exactly_at_threshold_flagged(db_session):
    food = _category(db_session)
    _budget(db_session, food.id, 100)
    _record(db_session, food.id, 80, NOW - timedelta(days=2))

    warnings = BudgetThresholdEvaluator(FinanceRepository(db_session)).evaluate(USER_ID, 80, NOW)
    assert len(warnings) == 1
    assert warnings[0].category_name == "Food"
    assert warnings[0].percentage == Decimal("80")


def test_budget_just_below_threshold_not_flagged(db_session):
    food = _category(db_session)
    _budget(db_session, food.id, 100)
    _record(db_session, food.id, "79.99", NOW - timedelta(days=2))

    assert BudgetThresholdEvaluator(FinanceRepository(db_session)).evaluate(USER_ID, 80, NOW) == []


def test_budget_zero_amount_skipped(db_session):
    food = _category(db_session)
    _budget(db_session, food.id, 0)
    _record(db_session, food.id, 50, NOW - timedelta(days=1))

    assert BudgetThresholdEvaluator(FinanceRepository(db_session)).evaluate(USER_ID, 80, NOW) == []


def test_budget_counts_current_month_expenses_only(db_session):
    food = _category(db_session)
    _budget(db_session, food.id, 100)
    _record(db_session, food.id, 70, datetime(2026, 2, 27, tzinfo=_tz))  # previous month
    _record(db_session, food.id, 500, NOW - timedelta(days=1), type_="income")
    _record(db_session, food.id, 30, NOW - timedelta(days=1))

    assert BudgetThresholdEvaluator(FinanceRepository(db_session)).evaluate(USER_ID, 80, NOW) == []


def test_budget_missing_category_name(db_session):
    _budget(db_session, 999, 10)
    _record(db_session, 999, 10, NOW - timedelta(hours=1))

    warnings = BudgetThresholdEvaluator(FinanceRepository(db_session)).evaluate(USER_ID, 80, NOW)
    assert warnings[0].category_name == "Category"


def test_budget_warning_key():
    assert budget_warning_key(5, 3, NOW) == "budget_warning_5_3_2026-03-15"


# ---------------------------------------------------------------------------
# Anomaly rule
# ---------------------------------------------------------------------------

def test_anomaly_rule_flags_above_two_sigma():
    assert is_anomalous(125, 100, 10) is True


def test_anomaly_rule_within_two_sigma():
    assert is_anomalous(115, 100, 10) is False
    assert is_anomalous(120, 100, 10) is False


def test_anomaly_zero_history_zero_spend():
    mean, std = baseline([])
    assert (mean, std) == (0.0, 0.0)
    assert is_anomalous(0, mean, std) is False


def test_anomaly_baseline_population_std():
    mean, std = baseline([90.0, 110.0])
    assert mean == 100.0
    assert std == 10.0


def test_detector_flags_spike(db_session):
    food = _category(db_session)
    for d in range(1, 11):
        _record(db_session, food.id, 100, NOW - timedelta(days=d))
    _record(db_session, food.id, 300, NOW - timedelta(hours=2))

    anomalies = AnomalyDetector(FinanceRepository(db_session)).evaluate(USER_ID, NOW)
    assert len(anomalies) == 1
    a = anomalies[0]
    assert a.category_id == food.id
    assert a.category_name == "Food"
    assert a.today_spent == 300.0


def test_detector_ignores_quiet_category(db_session):
    food = _category(db_session)
    for d in range(1, 11):
        _record(db_session, food.id, 100, NOW - timedelta(days=d))

    assert AnomalyDetector(FinanceRepository(db_session)).evaluate(USER_ID, NOW) == []


def test_detector_ignores_records_outside_window(db_session):
    food = _category(db_session)
    _record(db_session, food.id, 5, NOW - timedelta(days=45))
    _record(db_session, food.id, 5, NOW - timedelta(days=40))
    _record(db_session, food.id, 50, NOW - timedelta(hours=1))

    # only today's record is in the window: mean == today, never above itself
    assert AnomalyDetector(FinanceRepository(db_session)).evaluate(USER_ID, NOW) == []


def test_anomaly_key():
    assert anomaly_key(5, 3, NOW) == "anomaly_5_3_2026-03-15"
