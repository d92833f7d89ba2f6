"""
SmartSendGate — synchronous send path for real-time events.

Pipeline per call:
  validate -> quiet hours (budget_exceeded only) -> throttle -> daily cap
  -> deliver -> record throttle + analytics -> commit

The throttle is a best-effort spam guard, not an exact rate limiter: the
check and the write are separate statements, so two concurrent calls for
the same (user, type) may both pass the check before either writes its
record. At the event rates of a personal finance app this is acceptable;
a deployment that needs exactness should move the write to a conditional
update on the (user_id, notification_type) unique index.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.domain.notification_payload import NotificationPayloadError, validate_payload_data
from app.domain.notification_preference import NotificationPrefs
from app.domain.notification_type import PRIORITIES, NotificationType, min_interval, parse_notification_type
from app.application.notification_timing import is_within_do_not_disturb
from app.application.push_service import DeliveryError
from app.infrastructure.notifications.repositories import (
    AnalyticsRepository,
    PreferenceRepository,
    ThrottleRepository,
)
from app.utils.time_windows import as_utc

logger = logging.getLogger(__name__)

INVALID_PAYLOAD = "invalid payload"
THROTTLED = "throttled"
QUIET_HOURS = "quiet_hours"
DAILY_LIMIT = "daily_limit"


class Delivery(Protocol):
    def deliver(self, user_id: int, title: str, body: str, data: dict[str, Any]) -> str | None:
        ...


@dataclass
class SendResult:
    success: bool
    notification_id: str | None = None
    message: str | None = None
    analytics_id: int | None = None

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success}
        if self.notification_id is not None:
            out["notification_id"] = self.notification_id
        if self.message is not None:
            out["message"] = self.message
        if self.analytics_id is not None:
            out["analytics_id"] = self.analytics_id
        return out


def throttle_key(notification_type: NotificationType, identifier: str | None = None) -> str:
    if identifier:
        return f"{notification_type.value}:{identifier}"
    return notification_type.value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SmartSendGate:
    def __init__(
        self,
        db: Session,
        delivery: Delivery,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.delivery = delivery
        self.settings = settings or get_settings()
        self._clock = clock
        self.throttle = ThrottleRepository(db)
        self.analytics = AnalyticsRepository(db)
        self.preferences = PreferenceRepository(db)

    def send(
        self,
        user_id: int,
        notification_type: str,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
        identifier: str | None = None,
    ) -> SendResult:
        ntype = parse_notification_type(notification_type) if notification_type else None
        if ntype is None or not title or not body:
            return SendResult(success=False, message=INVALID_PAYLOAD)
        try:
            payload = validate_payload_data(ntype, data)
        except NotificationPayloadError as exc:
            logger.info("Rejected %s for user_id=%s: %s", ntype.value, user_id, exc)
            return SendResult(success=False, message=INVALID_PAYLOAD)

        now = as_utc(self._clock())

        if ntype is NotificationType.BUDGET_EXCEEDED and self._in_quiet_hours(user_id, now):
            logger.info("Suppressed %s for user_id=%s (quiet hours)", ntype.value, user_id)
            return SendResult(success=False, message=QUIET_HOURS)

        key = throttle_key(ntype, identifier)
        if self._is_throttled(user_id, ntype, key, now):
            logger.info("Throttled %s for user_id=%s (priority=%s)", key, user_id, PRIORITIES[ntype].value)
            return SendResult(success=False, message=THROTTLED)

        limit = self.settings.NOTIFICATION_DAILY_LIMIT
        if limit > 0 and self.throttle.sent_today(user_id, now) >= limit:
            logger.info("Daily limit (%d) reached for user_id=%s", limit, user_id)
            return SendResult(success=False, message=DAILY_LIMIT)

        try:
            notification_id = self.delivery.deliver(user_id, title, body, payload)
        except DeliveryError as exc:
            logger.warning("Delivery of %s to user_id=%s failed: %s", ntype.value, user_id, exc)
            return SendResult(success=False, message=str(exc))

        self.throttle.record_sent(user_id, key, now)
        row = self.analytics.log_sent(user_id, ntype.value, notification_id, now)
        self.db.commit()
        logger.info(
            "Sent %s to user_id=%s (priority=%s)", ntype.value, user_id, PRIORITIES[ntype].value,
        )
        return SendResult(success=True, notification_id=notification_id, analytics_id=row.id)

    def _is_throttled(self, user_id: int, ntype: NotificationType, key: str, now: datetime) -> bool:
        interval = min_interval(ntype)
        if not interval:
            return False
        record = self.throttle.get(user_id, key)
        if record is None:
            return False
        return now - as_utc(record.last_sent_at) < interval

    def _in_quiet_hours(self, user_id: int, now: datetime) -> bool:
        row = self.preferences.get(user_id)
        if row is None:
            return False
        prefs = NotificationPrefs.from_row(
            row,
            reminder_time=self.settings.DEFAULT_REMINDER_TIME,
            threshold=self.settings.DEFAULT_BUDGET_THRESHOLD,
            dnd_start=self.settings.DEFAULT_DND_START,
            dnd_end=self.settings.DEFAULT_DND_END,
        )
        return is_within_do_not_disturb(prefs, now)
