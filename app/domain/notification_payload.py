"""
Per-type validation of the free-form `data` map attached to notifications.

The map is loosely typed (string keys, JSON-serializable values) because its
shape differs per notification type. Required keys are checked here, at the
point of construction, not generically at the queue.
"""
import json
from decimal import Decimal
from typing import Any

from app.domain.notification_type import NotificationType


class NotificationPayloadError(ValueError):
    pass


REQUIRED_KEYS: dict[NotificationType, tuple[str, ...]] = {
    NotificationType.DAILY_REMINDER: ("screen", "action"),
    NotificationType.BUDGET_WARNING: ("screen", "category_id", "spent", "budget", "percentage"),
    NotificationType.BUDGET_EXCEEDED: ("screen", "category_id", "spent", "budget", "percentage"),
    NotificationType.DAILY_ANOMALY: ("screen", "category_id", "spent", "average"),
    NotificationType.UNUSUAL_SPENDING: ("screen", "category_id", "spent", "average"),
    NotificationType.LARGE_TRANSACTION: ("screen", "amount"),
}


def _normalize(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {k: _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    return value


def validate_payload_data(notification_type: NotificationType, data: dict[str, Any] | None) -> dict[str, Any]:
    """
    Check required keys for the type and JSON-serializability.

    Returns a normalized copy (Decimal -> float).

    Raises:
        NotificationPayloadError: missing keys, non-string keys or
            non-serializable values
    """
    data = dict(data or {})
    if any(not isinstance(k, str) for k in data):
        raise NotificationPayloadError("Payload keys must be strings")

    missing = [k for k in REQUIRED_KEYS.get(notification_type, ()) if k not in data]
    if missing:
        raise NotificationPayloadError(
            f"Payload for {notification_type.value} is missing: {', '.join(missing)}"
        )

    normalized = _normalize(data)
    try:
        json.dumps(normalized)
    except (TypeError, ValueError) as exc:
        raise NotificationPayloadError(f"Payload is not JSON-serializable: {exc}") from exc
    return normalized


def build_payload_data(notification_type: NotificationType, **fields: Any) -> dict[str, Any]:
    """Build and validate the data map for a notification of the given type."""
    return validate_payload_data(notification_type, fields)
