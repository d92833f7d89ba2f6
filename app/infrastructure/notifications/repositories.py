"""
Read/write contracts of the notification pipeline over SQLAlchemy.

Each repository wraps one Session. The orchestrator opens a session per
unit of work, so repositories never outlive the worker that created them.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.infrastructure.db.models import (
    NotificationPreferenceModel,
    CategoryModel,
    BudgetModel,
    ExpenseRecordModel,
    NotificationQueueModel,
    JobExecutionLogModel,
    NotificationThrottleModel,
    NotificationAnalyticsModel,
)
from app.utils.time_windows import as_utc, utc_day_start, utc_today

logger = logging.getLogger(__name__)

EXPENSE = "expense"

_FEATURE_FLAGS = {
    "daily_reminder": NotificationPreferenceModel.daily_reminder_enabled,
    "budget_warnings": NotificationPreferenceModel.budget_warnings_enabled,
    "daily_anomaly": NotificationPreferenceModel.daily_anomaly_enabled,
}


class PreferenceRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: int) -> NotificationPreferenceModel | None:
        return self.db.query(NotificationPreferenceModel).filter_by(user_id=user_id).first()

    def get_or_create(self, user_id: int) -> NotificationPreferenceModel:
        """Return the user's preferences, creating the default row on first access."""
        prefs = self.get(user_id)
        if prefs is None:
            prefs = NotificationPreferenceModel(
                user_id=user_id,
                daily_reminder_enabled=True,
                daily_reminder_time="19:00",
                timezone="UTC",
                budget_warnings_enabled=True,
                budget_warning_threshold=80,
                daily_anomaly_enabled=True,
                dnd_enabled=False,
                dnd_start_time="22:00",
                dnd_end_time="08:00",
            )
            self.db.add(prefs)
            self.db.flush()
        return prefs

    def list_enabled(self, feature: str) -> list[NotificationPreferenceModel]:
        """
        Preferences of every user with the feature flag on.

        Args:
            feature: "daily_reminder" | "budget_warnings" | "daily_anomaly"
        """
        flag = _FEATURE_FLAGS.get(feature)
        if flag is None:
            raise ValueError(f"Unknown notification feature: {feature}")
        return (
            self.db.query(NotificationPreferenceModel)
            .filter(flag == True)  # noqa: E712
            .order_by(NotificationPreferenceModel.user_id)
            .all()
        )


class FinanceRepository:
    def __init__(self, db: Session):
        self.db = db

    def list_budgets(self, user_id: int) -> list[BudgetModel]:
        return (
            self.db.query(BudgetModel)
            .filter(BudgetModel.user_id == user_id)
            .order_by(BudgetModel.id)
            .all()
        )

    def expense_records(
        self, user_id: int, since: datetime, category_id: int | None = None,
    ) -> list[ExpenseRecordModel]:
        q = self.db.query(ExpenseRecordModel).filter(
            ExpenseRecordModel.user_id == user_id,
            ExpenseRecordModel.type == EXPENSE,
            ExpenseRecordModel.transaction_date >= since,
        )
        if category_id is not None:
            q = q.filter(ExpenseRecordModel.category_id == category_id)
        return q.order_by(ExpenseRecordModel.transaction_date).all()

    def sum_expenses(self, user_id: int, category_id: int, since: datetime) -> Decimal:
        total = (
            self.db.query(func.coalesce(func.sum(ExpenseRecordModel.amount), 0))
            .filter(
                ExpenseRecordModel.user_id == user_id,
                ExpenseRecordModel.category_id == category_id,
                ExpenseRecordModel.type == EXPENSE,
                ExpenseRecordModel.transaction_date >= since,
            )
            .scalar()
        )
        return Decimal(str(total or 0))

    def category_name(self, category_id: int) -> str | None:
        cat = self.db.query(CategoryModel).filter_by(id=category_id).first()
        return cat.name if cat else None


class NotificationQueueRepository:
    """
    Insert-or-ignore sink keyed by idempotency_key.

    enqueue() commits on its own so one notification never depends on the
    next one succeeding.
    """

    def __init__(self, db: Session):
        self.db = db

    def enqueue(
        self,
        user_id: int,
        notification_type: str,
        title: str,
        body: str,
        data: dict[str, Any],
        idempotency_key: str,
    ) -> bool:
        """
        Queue a notification.

        Returns:
            True if a row was inserted, False if the key already existed

        Raises:
            SQLAlchemyError: genuine store failures (never for duplicates)
        """
        exists = (
            self.db.query(NotificationQueueModel.id)
            .filter(NotificationQueueModel.idempotency_key == idempotency_key)
            .first()
        )
        if exists is not None:
            logger.debug("Queue no-op, key exists: %s", idempotency_key)
            return False

        self.db.add(NotificationQueueModel(
            user_id=user_id,
            notification_type=notification_type,
            title=title,
            body=body,
            data_json=data,
            idempotency_key=idempotency_key,
            status="pending",
        ))
        try:
            self.db.commit()
        except IntegrityError:
            # Concurrent run inserted the same key first
            self.db.rollback()
            logger.debug("Queue no-op after race, key exists: %s", idempotency_key)
            return False
        return True


class JobExecutionLogRepository:
    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        job_name: str,
        executed_at: datetime,
        success: bool,
        duration_ms: int = 0,
        total_users_processed: int = 0,
        notifications_sent: int = 0,
        notifications_failed: int = 0,
        error_message: str | None = None,
    ) -> JobExecutionLogModel:
        row = JobExecutionLogModel(
            job_name=job_name,
            executed_at=executed_at,
            success=success,
            duration_ms=duration_ms,
            total_users_processed=total_users_processed,
            notifications_sent=notifications_sent,
            notifications_failed=notifications_failed,
            error_message=error_message,
        )
        self.db.add(row)
        self.db.commit()
        return row

    def recent(self, limit: int = 20) -> list[JobExecutionLogModel]:
        return (
            self.db.query(JobExecutionLogModel)
            .order_by(JobExecutionLogModel.executed_at.desc(), JobExecutionLogModel.id.desc())
            .limit(limit)
            .all()
        )


class ThrottleRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: int, key: str) -> NotificationThrottleModel | None:
        return (
            self.db.query(NotificationThrottleModel)
            .filter_by(user_id=user_id, notification_type=key)
            .first()
        )

    def record_sent(self, user_id: int, key: str, now: datetime) -> NotificationThrottleModel:
        """Upsert last_sent_at; count_today restarts on a new UTC day."""
        row = self.get(user_id, key)
        if row is None:
            row = NotificationThrottleModel(
                user_id=user_id, notification_type=key, last_sent_at=now, count_today=1,
            )
            self.db.add(row)
        else:
            same_day = utc_today(as_utc(row.last_sent_at)) == utc_today(now)
            row.count_today = (row.count_today or 0) + 1 if same_day else 1
            row.last_sent_at = now
        self.db.flush()
        return row

    def sent_today(self, user_id: int, now: datetime) -> int:
        total = (
            self.db.query(func.coalesce(func.sum(NotificationThrottleModel.count_today), 0))
            .filter(
                NotificationThrottleModel.user_id == user_id,
                NotificationThrottleModel.last_sent_at >= utc_day_start(now),
            )
            .scalar()
        )
        return int(total or 0)


class AnalyticsRepository:
    def __init__(self, db: Session):
        self.db = db

    def log_sent(
        self, user_id: int, notification_type: str, notification_id: str | None, sent_at: datetime,
    ) -> NotificationAnalyticsModel:
        row = NotificationAnalyticsModel(
            user_id=user_id,
            notification_type=notification_type,
            notification_id=notification_id,
            sent=True,
            sent_at=sent_at,
        )
        self.db.add(row)
        self.db.flush()
        return row

    def mark_opened(self, analytics_id: int, opened_at: datetime, user_id: int | None = None) -> bool:
        q = self.db.query(NotificationAnalyticsModel).filter(NotificationAnalyticsModel.id == analytics_id)
        if user_id is not None:
            q = q.filter(NotificationAnalyticsModel.user_id == user_id)
        row = q.first()
        if row is None:
            return False
        if row.opened_at is None:
            row.opened_at = opened_at
        self.db.commit()
        return True

    def open_rate(self, user_id: int, notification_type: str) -> float:
        """Opened / sent * 100 for one type; 0 when nothing was sent."""
        base = self.db.query(NotificationAnalyticsModel).filter(
            NotificationAnalyticsModel.user_id == user_id,
            NotificationAnalyticsModel.notification_type == notification_type,
            NotificationAnalyticsModel.sent == True,  # noqa: E712
        )
        sent = base.count()
        if sent == 0:
            return 0.0
        opened = base.filter(NotificationAnalyticsModel.opened_at.isnot(None)).count()
        return opened / sent * 100
