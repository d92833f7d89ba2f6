"""
Daily job trigger and execution monitoring endpoints.
"""
import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_session_factory, require_jobs_token
from app.application.daily_jobs import DailyJobOrchestrator
from app.config import Settings, get_settings
from app.infrastructure.notifications.repositories import JobExecutionLogRepository

logger = logging.getLogger(__name__)

router = APIRouter(tags=["jobs"], dependencies=[Depends(require_jobs_token)])


@router.post("/schedule-daily-jobs")
def schedule_daily_jobs(
    session_factory=Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
):
    """Run reminders, budget warnings and anomaly checks once. No body."""
    try:
        results = DailyJobOrchestrator(session_factory, settings=settings).run_daily_jobs()
    except Exception as exc:
        logger.exception("Daily jobs trigger failed")
        return JSONResponse({"error": str(exc)}, status_code=500)

    return {
        "success": True,
        "results": {name: r.as_dict() for name, r in results.items()},
    }


@router.get("/api/jobs/executions")
def list_executions(
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
):
    rows = JobExecutionLogRepository(db).recent(limit)
    return {
        "executions": [
            {
                "id": r.id,
                "job_name": r.job_name,
                "executed_at": r.executed_at.isoformat() if r.executed_at else None,
                "success": r.success,
                "duration_ms": r.duration_ms,
                "total_users_processed": r.total_users_processed,
                "notifications_sent": r.notifications_sent,
                "notifications_failed": r.notifications_failed,
                "error_message": r.error_message,
            }
            for r in rows
        ]
    }
