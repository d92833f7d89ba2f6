"""
FastAPI dependencies (DB session, authentication, collaborators)
"""
import hmac

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.infrastructure.db.session import get_db as _get_db
from app.infrastructure.db.session import get_session_factory as _get_session_factory
from app.application.push_service import ExpoPushDelivery


# Re-export get_db for routers
get_db = _get_db


def get_session_factory():
    """Session factory for work that opens its own sessions (the orchestrator)."""
    return _get_session_factory()


def get_delivery(db: Session = Depends(get_db)) -> ExpoPushDelivery:
    return ExpoPushDelivery(db)


def require_jobs_token(request: Request, settings: Settings = Depends(get_settings)) -> None:
    """
    Guard for the job trigger and monitoring endpoints.

    When JOBS_API_TOKEN is empty the guard is open (local development).

    Raises:
        HTTPException(401): missing or wrong bearer token
    """
    expected = settings.JOBS_API_TOKEN
    if not expected:
        return
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip(), expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )


def get_session_user_id(request: Request) -> int:
    """
    Logged-in user id from the session cookie.

    Raises:
        HTTPException(401): no user in session
    """
    user_id = request.session.get("user_id")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return int(user_id)
