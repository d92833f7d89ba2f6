"""
Tests for the SmartSendGate send path.

Covers:
  - First send delivers, records throttle + analytics
  - Second send inside the type's interval → "throttled", nothing delivered
  - Interval elapsed → delivered again
  - Unthrottled types (interval 0) always deliver
  - identifier narrows the throttle key
  - budget_exceeded suppressed in quiet hours
  - Daily cap, invalid payloads, delivery errors
  - Send and throttle log lines carry the type's priority
"""
import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from app.application.push_service import DeliveryError
from app.application.smart_send import SmartSendGate, throttle_key
from app.config import Settings
from app.domain.notification_type import NotificationType
from app.infrastructure.db.models import (
    NotificationAnalyticsModel,
    NotificationPreferenceModel,
    NotificationThrottleModel,
)
from app.infrastructure.notifications.repositories import AnalyticsRepository

_tz = timezone.utc
USER_ID = 1

BUDGET_DATA = {"screen": "budget", "category_id": 4, "spent": 120, "budget": 100, "percentage": 120}


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kw):
        self.now += timedelta(**kw)


@pytest.fixture
def clock():
    return Clock(datetime(2026, 3, 15, 12, 0, tzinfo=_tz))


@pytest.fixture
def delivery():
    d = MagicMock()
    d.deliver.return_value = "ticket-1"
    return d


@pytest.fixture
def gate(db_session, delivery, settings, clock):
    return SmartSendGate(db_session, delivery, settings=settings, clock=clock)


def _send_budget(gate, **kw):
    return gate.send(USER_ID, "budget_exceeded", "Budget exceeded", "Food is over budget", BUDGET_DATA, **kw)


def test_first_send_delivers_and_records(gate, delivery, db_session):
    result = _send_budget(gate)

    assert result.success is True
    assert result.notification_id == "ticket-1"
    delivery.deliver.assert_called_once()
    throttle = db_session.query(NotificationThrottleModel).one()
    assert throttle.notification_type == "budget_exceeded"
    assert throttle.count_today == 1
    analytics = db_session.query(NotificationAnalyticsModel).one()
    assert analytics.notification_type == "budget_exceeded"
    assert analytics.notification_id == "ticket-1"
    assert result.analytics_id == analytics.id


def test_second_send_within_interval_throttled(gate, delivery, db_session, clock):
    _send_budget(gate)
    clock.advance(minutes=30)

    result = _send_budget(gate)

    assert result.success is False
    assert result.message == "throttled"
    assert delivery.deliver.call_count == 1
    throttle = db_session.query(NotificationThrottleModel).one()
    assert throttle.count_today == 1
    assert db_session.query(NotificationAnalyticsModel).count() == 1


def test_send_after_interval_delivers(gate, delivery, clock):
    _send_budget(gate)
    clock.advance(hours=1, minutes=1)

    assert _send_budget(gate).success is True
    assert delivery.deliver.call_count == 2


def test_unthrottled_type_always_delivers(gate, delivery):
    for _ in range(3):
        result = gate.send(USER_ID, "large_transaction", "Large", "5000 spent", {"screen": "record", "amount": 5000})
        assert result.success is True
    assert delivery.deliver.call_count == 3


def test_identifier_narrows_throttle(gate, delivery):
    assert _send_budget(gate, identifier="4").success is True
    assert _send_budget(gate, identifier="5").success is True
    assert _send_budget(gate, identifier="4").message == "throttled"


def test_throttle_key():
    assert throttle_key(NotificationType.BUDGET_EXCEEDED) == "budget_exceeded"
    assert throttle_key(NotificationType.BUDGET_EXCEEDED, "7") == "budget_exceeded:7"


def test_budget_exceeded_suppressed_in_quiet_hours(db_session, delivery, settings):
    db_session.add(NotificationPreferenceModel(
        user_id=USER_ID, dnd_enabled=True, dnd_start_time="22:00", dnd_end_time="08:00", timezone="UTC",
    ))
    db_session.commit()
    night = SmartSendGate(db_session, delivery, settings=settings,
                          clock=lambda: datetime(2026, 3, 15, 23, 30, tzinfo=_tz))

    result = _send_budget(night)
    assert result.message == "quiet_hours"
    delivery.deliver.assert_not_called()

    # other types are not held back
    assert night.send(USER_ID, "large_transaction", "t", "b", {"screen": "x", "amount": 1}).success is True


@pytest.mark.parametrize("ntype,title,body,data", [
    ("", "t", "b", None),
    ("not_a_type", "t", "b", None),
    ("achievement", "", "b", None),
    ("achievement", "t", "", None),
    ("budget_exceeded", "t", "b", {"screen": "budget"}),
])
def test_invalid_payload(gate, delivery, ntype, title, body, data):
    result = gate.send(USER_ID, ntype, title, body, data)
    assert result.success is False
    assert result.message == "invalid payload"
    delivery.deliver.assert_not_called()


def test_delivery_error_not_recorded(gate, delivery, db_session):
    delivery.deliver.side_effect = DeliveryError("No valid push tokens")

    result = _send_budget(gate)
    assert result.success is False
    assert result.message == "No valid push tokens"
    assert db_session.query(NotificationThrottleModel).count() == 0

    # a failed delivery does not start the throttle window
    delivery.deliver.side_effect = None
    assert _send_budget(gate).success is True


def test_daily_limit(db_session, delivery, clock):
    capped = Settings(DATABASE_URL="sqlite://", NOTIFICATION_DAILY_LIMIT=2, _env_file=None)
    gate = SmartSendGate(db_session, delivery, settings=capped, clock=clock)
    data = {"screen": "x", "amount": 1}

    assert gate.send(USER_ID, "large_transaction", "t", "b", data).success is True
    assert gate.send(USER_ID, "achievement", "t", "b").success is True
    assert gate.send(USER_ID, "large_transaction", "t", "b", data).message == "daily_limit"

    clock.advance(days=1)
    assert gate.send(USER_ID, "large_transaction", "t", "b", data).success is True


def test_sent_row_feeds_open_rate(gate, db_session, clock):
    analytics = AnalyticsRepository(db_session)
    sent = _send_budget(gate)
    assert analytics.open_rate(USER_ID, "budget_exceeded") == 0.0
    assert analytics.mark_opened(sent.analytics_id, clock(), user_id=USER_ID) is True
    assert analytics.open_rate(USER_ID, "budget_exceeded") == 100.0


def test_directory_timezone_does_not_hold_back_budget_alert(db_session, delivery, settings):
    db_session.add(NotificationPreferenceModel(
        user_id=USER_ID, dnd_enabled=True, dnd_start_time="22:00", dnd_end_time="08:00", timezone="America",
    ))
    db_session.commit()
    night = SmartSendGate(db_session, delivery, settings=settings,
                          clock=lambda: datetime(2026, 3, 15, 23, 30, tzinfo=_tz))

    assert _send_budget(night).success is True


def test_send_logs_priority(gate, caplog):
    with caplog.at_level(logging.INFO, logger="app.application.smart_send"):
        _send_budget(gate)
        _send_budget(gate)
    messages = [r.getMessage() for r in caplog.records]
    assert "Sent budget_exceeded to user_id=1 (priority=critical)" in messages
    assert "Throttled budget_exceeded for user_id=1 (priority=critical)" in messages


def test_as_dict_omits_empty_fields(gate):
    assert _send_budget(gate).as_dict() == {"success": True, "notification_id": "ticket-1", "analytics_id": 1}
    assert _send_budget(gate).as_dict() == {"success": False, "message": "throttled"}
