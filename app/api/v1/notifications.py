"""
Real-time notification send path and open tracking.
"""
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_delivery, get_session_user_id
from app.application.push_service import ExpoPushDelivery
from app.application.smart_send import SmartSendGate
from app.config import Settings, get_settings
from app.infrastructure.notifications.repositories import AnalyticsRepository

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


class SendRequest(BaseModel):
    type: str
    title: str
    body: str
    data: dict[str, Any] | None = None
    identifier: str | None = None


@router.post("/send")
def send_notification(
    body: SendRequest,
    user_id: int = Depends(get_session_user_id),
    db: Session = Depends(get_db),
    delivery: ExpoPushDelivery = Depends(get_delivery),
    settings: Settings = Depends(get_settings),
):
    gate = SmartSendGate(db, delivery, settings=settings)
    result = gate.send(
        user_id,
        body.type,
        body.title,
        body.body,
        data=body.data,
        identifier=body.identifier,
    )
    return result.as_dict()


@router.post("/analytics/{analytics_id}/opened")
def mark_opened(
    analytics_id: int,
    user_id: int = Depends(get_session_user_id),
    db: Session = Depends(get_db),
):
    opened_at = datetime.now(timezone.utc)
    if not AnalyticsRepository(db).mark_opened(analytics_id, opened_at, user_id=user_id):
        return JSONResponse({"error": "Not found"}, status_code=404)
    return {"success": True}


@router.get("/analytics/open-rate")
def open_rate(
    type: str = Query(...),
    user_id: int = Depends(get_session_user_id),
    db: Session = Depends(get_db),
):
    return {"type": type, "open_rate": AnalyticsRepository(db).open_rate(user_id, type)}
