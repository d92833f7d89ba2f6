"""
Budget threshold evaluation — percentage of each monthly budget consumed.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from app.infrastructure.notifications.repositories import FinanceRepository
from app.utils.time_windows import utc_month_start, utc_today


@dataclass(frozen=True)
class BudgetWarning:
    category_id: int
    category_name: str
    spent: Decimal
    budget_amount: Decimal
    percentage: Decimal


def budget_warning_key(user_id: int, category_id: int, now: datetime) -> str:
    return f"budget_warning_{user_id}_{category_id}_{utc_today(now).isoformat()}"


class BudgetThresholdEvaluator:
    """
    Flags categories whose current-month expense total reaches
    `threshold` percent of the budget amount.
    """

    def __init__(self, finance: FinanceRepository):
        self.finance = finance

    def evaluate(self, user_id: int, threshold: int | float, now: datetime) -> list[BudgetWarning]:
        month_start = utc_month_start(now)
        limit = Decimal(str(threshold))
        warnings: list[BudgetWarning] = []

        for budget in self.finance.list_budgets(user_id):
            amount = Decimal(str(budget.amount))
            if amount <= 0:
                continue
            spent = self.finance.sum_expenses(user_id, budget.category_id, month_start)
            percentage = spent * 100 / amount
            if percentage < limit:
                continue
            warnings.append(BudgetWarning(
                category_id=budget.category_id,
                category_name=self.finance.category_name(budget.category_id) or "Category",
                spent=spent,
                budget_amount=amount,
                percentage=percentage,
            ))
        return warnings
