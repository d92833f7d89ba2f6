"""
Spending anomaly detection.

Baseline per category over the trailing window (default 30 days):
  mean  = average of the individual expense amounts
  sigma = population standard deviation of the same amounts

A category is anomalous today when
  today_total > mean + k * sigma  and  today_total > 0

The baseline is computed over raw record amounts, not daily totals, so
many small purchases and one large purchase weigh differently. The
window includes today's records.
"""
import statistics
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta

from app.infrastructure.notifications.repositories import FinanceRepository
from app.utils.time_windows import as_utc, utc_day_start, utc_today

DEFAULT_WINDOW_DAYS = 30
DEFAULT_SIGMA = 2.0


@dataclass(frozen=True)
class SpendingAnomaly:
    category_id: int
    category_name: str
    today_spent: float
    average: float
    std_dev: float


def anomaly_key(user_id: int, category_id: int, now: datetime) -> str:
    return f"anomaly_{user_id}_{category_id}_{utc_today(now).isoformat()}"


def baseline(amounts: list[float]) -> tuple[float, float]:
    """(mean, population std dev); (0, 0) for an empty list."""
    if not amounts:
        return 0.0, 0.0
    return statistics.fmean(amounts), statistics.pstdev(amounts)


def is_anomalous(today_total: float, mean: float, std_dev: float, sigma: float = DEFAULT_SIGMA) -> bool:
    return today_total > 0 and today_total > mean + sigma * std_dev


class AnomalyDetector:
    def __init__(
        self,
        finance: FinanceRepository,
        window_days: int = DEFAULT_WINDOW_DAYS,
        sigma: float = DEFAULT_SIGMA,
    ):
        self.finance = finance
        self.window_days = window_days
        self.sigma = sigma

    def evaluate(self, user_id: int, now: datetime) -> list[SpendingAnomaly]:
        now = as_utc(now)
        since = now - timedelta(days=self.window_days)
        day_start = utc_day_start(now)

        amounts: dict[int, list[float]] = defaultdict(list)
        today_totals: dict[int, float] = defaultdict(float)
        for rec in self.finance.expense_records(user_id, since):
            if rec.category_id is None:
                continue
            amount = float(rec.amount)
            amounts[rec.category_id].append(amount)
            if as_utc(rec.transaction_date) >= day_start:
                today_totals[rec.category_id] += amount

        anomalies: list[SpendingAnomaly] = []
        for category_id, values in amounts.items():
            mean, std_dev = baseline(values)
            today_total = today_totals.get(category_id, 0.0)
            if not is_anomalous(today_total, mean, std_dev, self.sigma):
                continue
            anomalies.append(SpendingAnomaly(
                category_id=category_id,
                category_name=self.finance.category_name(category_id) or "Category",
                today_spent=today_total,
                average=mean,
                std_dev=std_dev,
            ))
        return anomalies
