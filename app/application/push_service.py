"""
Expo push delivery.

Sends one message per valid push token of a user through the Expo push API
and marks tokens the service reports as no longer registered.
"""
import logging
from typing import Any

import requests
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.infrastructure.db.models import PushTokenModel

logger = logging.getLogger(__name__)

DEVICE_NOT_REGISTERED = "DeviceNotRegistered"


class DeliveryError(Exception):
    pass


class ExpoPushDelivery:
    def __init__(self, db: Session, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()

    def deliver(self, user_id: int, title: str, body: str, data: dict[str, Any]) -> str | None:
        """
        Push to every valid token of the user.

        Returns the first ticket id reported by Expo.

        Raises:
            DeliveryError: no valid tokens, transport failure, or every
                token rejected
        """
        tokens = (
            self.db.query(PushTokenModel)
            .filter(PushTokenModel.user_id == user_id, PushTokenModel.is_valid == True)  # noqa: E712
            .order_by(PushTokenModel.id)
            .all()
        )
        if not tokens:
            raise DeliveryError("No valid push tokens")

        messages = [
            {"to": t.token, "title": title, "body": body, "data": data, "sound": "default"}
            for t in tokens
        ]
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.settings.EXPO_ACCESS_TOKEN:
            headers["Authorization"] = f"Bearer {self.settings.EXPO_ACCESS_TOKEN}"

        try:
            resp = requests.post(
                self.settings.EXPO_PUSH_URL,
                json=messages,
                headers=headers,
                timeout=self.settings.PUSH_TIMEOUT_SECONDS,
            )
            resp.raise_for_status()
            tickets = resp.json().get("data") or []
        except (requests.RequestException, ValueError) as e:
            raise DeliveryError(f"Push request failed: {e}") from e

        ticket_ids: list[str] = []
        invalidated = 0
        for token, ticket in zip(tokens, tickets):
            if ticket.get("status") == "ok":
                ticket_ids.append(ticket.get("id"))
                continue
            error = (ticket.get("details") or {}).get("error")
            if error == DEVICE_NOT_REGISTERED:
                logger.info("Push token no longer registered, invalidating: %s", token.token[:24])
                token.is_valid = False
                token.invalid_reason = DEVICE_NOT_REGISTERED
                invalidated += 1
            else:
                logger.error("Expo push error for user_id=%s: %s", user_id, ticket.get("message"))

        if invalidated:
            self.db.commit()
        if not ticket_ids:
            raise DeliveryError("All push tokens failed")
        return ticket_ids[0]
