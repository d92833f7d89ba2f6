"""
Notification type registry.

Tiers:
  CRITICAL - real-time, budget ceiling crossed
  HIGH     - real-time alerts (large transaction, unusual spending)
  MEDIUM   - daily batch (reminder, budget warning, anomaly)
  LOW      - weekly batch and milestone notifications

Each type carries a minimum spacing between two sends to the same user;
0 means the type is never throttled.
"""
from datetime import timedelta
from enum import Enum


class NotificationType(str, Enum):
    LARGE_TRANSACTION = "large_transaction"
    BUDGET_EXCEEDED = "budget_exceeded"
    UNUSUAL_SPENDING = "unusual_spending"

    DAILY_REMINDER = "daily_reminder"
    BUDGET_WARNING = "budget_warning"
    DAILY_ANOMALY = "daily_anomaly"

    WEEKLY_SUMMARY = "weekly_summary"
    BUDGET_COMPLIANCE = "budget_compliance"
    SPENDING_TRENDS = "spending_trends"

    GOAL_PROGRESS = "goal_progress"
    ACHIEVEMENT = "achievement"


class NotificationPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


_HOUR = timedelta(hours=1)
_DAY = timedelta(days=1)
_WEEK = timedelta(days=7)
_NONE = timedelta(0)

PRIORITIES: dict[NotificationType, NotificationPriority] = {
    NotificationType.LARGE_TRANSACTION: NotificationPriority.HIGH,
    NotificationType.BUDGET_EXCEEDED: NotificationPriority.CRITICAL,
    NotificationType.UNUSUAL_SPENDING: NotificationPriority.HIGH,
    NotificationType.DAILY_REMINDER: NotificationPriority.MEDIUM,
    NotificationType.BUDGET_WARNING: NotificationPriority.MEDIUM,
    NotificationType.DAILY_ANOMALY: NotificationPriority.MEDIUM,
    NotificationType.WEEKLY_SUMMARY: NotificationPriority.LOW,
    NotificationType.BUDGET_COMPLIANCE: NotificationPriority.LOW,
    NotificationType.SPENDING_TRENDS: NotificationPriority.LOW,
    NotificationType.GOAL_PROGRESS: NotificationPriority.LOW,
    NotificationType.ACHIEVEMENT: NotificationPriority.LOW,
}

MIN_INTERVALS: dict[NotificationType, timedelta] = {
    NotificationType.LARGE_TRANSACTION: _NONE,
    NotificationType.BUDGET_EXCEEDED: _HOUR,
    NotificationType.UNUSUAL_SPENDING: _HOUR,
    NotificationType.DAILY_REMINDER: _DAY,
    NotificationType.BUDGET_WARNING: _DAY,
    NotificationType.DAILY_ANOMALY: _DAY,
    NotificationType.WEEKLY_SUMMARY: _WEEK,
    NotificationType.BUDGET_COMPLIANCE: _WEEK,
    NotificationType.SPENDING_TRENDS: _WEEK,
    NotificationType.GOAL_PROGRESS: _NONE,
    NotificationType.ACHIEVEMENT: _NONE,
}


def parse_notification_type(value: str) -> NotificationType | None:
    """Return the matching NotificationType, or None for unknown values."""
    try:
        return NotificationType(value)
    except ValueError:
        return None


def min_interval(notification_type: NotificationType) -> timedelta:
    return MIN_INTERVALS.get(notification_type, _NONE)
