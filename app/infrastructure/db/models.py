"""
SQLAlchemy ORM models (preferences, finance readmodels, notification pipeline)
"""
from decimal import Decimal
from sqlalchemy import String, DateTime, Integer, Text, TIMESTAMP, func, Boolean, Numeric, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import JSONB

from app.infrastructure.db.session import Base


class NotificationPreferenceModel(Base):
    """
    Per-user notification settings, one row per user.

    Times are wall-clock "HH:MM" strings in the user's timezone.
    """
    __tablename__ = "notification_preferences"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)

    daily_reminder_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    daily_reminder_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)

    budget_warnings_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    budget_warning_threshold: Mapped[int | None] = mapped_column(Integer, nullable=True)

    daily_anomaly_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")

    dnd_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    dnd_start_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    dnd_end_time: Mapped[str | None] = mapped_column(String(5), nullable=True)

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class CategoryModel(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class BudgetModel(Base):
    """Monthly spending ceiling for one category."""
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    category_id: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    period: Mapped[str] = mapped_column(String(16), nullable=False, server_default="monthly")


class ExpenseRecordModel(Base):
    """
    Financial record. Only type == "expense" participates in
    budget and anomaly evaluation.
    """
    __tablename__ = "records"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)  # expense | income | transfer
    transaction_date: Mapped[DateTime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_records_user_type_date", "user_id", "type", "transaction_date"),
    )


class NotificationQueueModel(Base):
    """
    Queued notification awaiting delivery.

    idempotency_key is unique: a second insert with the same key is a no-op.
    """
    __tablename__ = "notification_queue"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    notification_type: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    data_json: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )


class JobExecutionLogModel(Base):
    """Append-only audit row, one per orchestrator run."""
    __tablename__ = "job_execution_logs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    job_name: Mapped[str] = mapped_column(String(64), nullable=False)
    executed_at: Mapped[DateTime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_users_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notifications_sent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notifications_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)


class NotificationThrottleModel(Base):
    """Most recent send per (user, throttle key)."""
    __tablename__ = "notification_throttle"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    # "{type}" or "{type}:{identifier}"
    notification_type: Mapped[str] = mapped_column(String(128), nullable=False)
    last_sent_at: Mapped[DateTime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    count_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("user_id", "notification_type", name="uq_throttle_user_type"),
    )


class NotificationAnalyticsModel(Base):
    __tablename__ = "notification_analytics"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    notification_type: Mapped[str] = mapped_column(String(64), nullable=False)
    notification_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sent_at: Mapped[DateTime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    opened_at: Mapped[DateTime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)


class PushTokenModel(Base):
    """Expo push token of a user device."""
    __tablename__ = "push_tokens"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    token: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    platform: Mapped[str] = mapped_column(String(16), nullable=False)
    is_valid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    invalid_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
