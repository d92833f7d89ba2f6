"""
Daily job orchestrator — reminders, budget warnings, spending anomalies.

Architecture:
- Three independent passes: run_daily_reminders / run_budget_warnings /
  run_daily_anomalies. Each loads its own eligible users (feature flag on)
  and returns PassResult(processed, sent, failed).
- Per-user units run on a bounded thread pool, batch by batch. Each unit
  opens its own session; a failing user is logged and counted as failed,
  the rest of the batch continues.
- Transient store errors are retried once before the user counts as failed.
- Every notification is queued with an idempotency key scoped to
  (user, feature, subject, day), so repeated runs never double-send.
  Budget and anomaly keys use the UTC date; reminder keys use the local
  date of the matched occurrence, so a window straddling midnight maps to
  one key.
- run_daily_jobs(): composes the passes and appends one JobExecutionLog row.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, asdict
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.domain.notification_payload import build_payload_data
from app.domain.notification_preference import NotificationPrefs
from app.domain.notification_type import NotificationType
from app.application.anomaly_detector import AnomalyDetector, anomaly_key
from app.application.budget_threshold import BudgetThresholdEvaluator, budget_warning_key
from app.application.notification_timing import is_scheduled_now, is_within_do_not_disturb
from app.infrastructure.notifications.repositories import (
    PreferenceRepository,
    FinanceRepository,
    NotificationQueueRepository,
    JobExecutionLogRepository,
)
from app.utils.time_windows import as_utc, occurrence_date, parse_hhmm

logger = logging.getLogger(__name__)

DAILY_JOB_NAME = "daily_jobs"
TRANSIENT_ERRORS = (OperationalError, TimeoutError)


@dataclass
class PassResult:
    processed: int = 0
    sent: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class UserOutcome:
    sent: int = 0
    failed: int = 0

    def __add__(self, other: "UserOutcome") -> "UserOutcome":
        return UserOutcome(self.sent + other.sent, self.failed + other.failed)


def daily_reminder_key(user_id: int, occurrence: date) -> str:
    """Key per user per reminder occurrence, dated on the user's local calendar."""
    return f"daily_reminder_{user_id}_{occurrence.isoformat()}"


def round_half_up(value) -> int:
    """Whole-number rounding with halves away from zero (80.5 -> 81)."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _chunks(items: list, size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DailyJobOrchestrator:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
        max_workers: int | None = None,
        batch_size: int | None = None,
    ):
        self.settings = settings or get_settings()
        self._session_factory = session_factory
        self._clock = clock
        self.max_workers = max(1, max_workers or self.settings.JOB_MAX_WORKERS)
        self.batch_size = max(1, batch_size or self.settings.JOB_BATCH_SIZE)
        self.store_retries = max(0, self.settings.JOB_STORE_RETRIES)

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    def run_daily_jobs(self, now: datetime | None = None) -> dict[str, PassResult]:
        """
        Run all three passes and append the execution log row.

        A failing pass yields a zero-valued PassResult; only an exception in
        the driver itself is logged with success=False and re-raised.
        """
        now = as_utc(now or self._clock())
        started = time.monotonic()
        logger.info("Daily jobs started at %s", now.isoformat())

        try:
            results = {
                "daily_reminders": self._run_pass("daily_reminders", self.run_daily_reminders, now),
                "budget_warnings": self._run_pass("budget_warnings", self.run_budget_warnings, now),
                "daily_anomalies": self._run_pass("daily_anomalies", self.run_daily_anomalies, now),
            }
            processed = sum(r.processed for r in results.values())
            sent = sum(r.sent for r in results.values())
            failed = sum(r.failed for r in results.values())
            self._write_log(
                now,
                success=failed == 0,
                duration_ms=self._elapsed_ms(started),
                total_users_processed=processed,
                notifications_sent=sent,
                notifications_failed=failed,
            )
        except Exception as exc:
            logger.exception("Daily jobs failed")
            try:
                self._write_log(
                    now, success=False, duration_ms=self._elapsed_ms(started), error_message=str(exc),
                )
            except Exception:
                logger.exception("Could not record failed daily job execution")
            raise

        for name, r in results.items():
            logger.info("  %s: sent=%d failed=%d processed=%d", name, r.sent, r.failed, r.processed)
        return results

    def _run_pass(self, name: str, fn: Callable[[datetime], PassResult], now: datetime) -> PassResult:
        try:
            return fn(now)
        except Exception:
            logger.exception("Daily job pass %s failed", name)
            return PassResult()

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def run_daily_reminders(self, now: datetime) -> PassResult:
        """Queue the expense-logging reminder at each user's reminder time, outside DND."""
        now = as_utc(now)
        users = self._load_enabled("daily_reminder")
        return self._fan_out(users, lambda prefs: self._remind_user(prefs, now), "daily_reminders")

    def run_budget_warnings(self, now: datetime) -> PassResult:
        """One warning per category per day once spend reaches the threshold."""
        now = as_utc(now)
        users = self._load_enabled("budget_warnings")
        return self._fan_out(users, lambda prefs: self._warn_user(prefs, now), "budget_warnings")

    def run_daily_anomalies(self, now: datetime) -> PassResult:
        """One alert per anomalous category per day."""
        now = as_utc(now)
        users = self._load_enabled("daily_anomaly")
        return self._fan_out(users, lambda prefs: self._check_anomalies(prefs, now), "daily_anomalies")

    # ------------------------------------------------------------------
    # Per-user units
    # ------------------------------------------------------------------

    def _remind_user(self, prefs: NotificationPrefs, now: datetime) -> UserOutcome:
        if not is_scheduled_now(
            prefs.timezone, prefs.daily_reminder_time, now, self.settings.SCHEDULE_TOLERANCE_MINUTES,
        ):
            return UserOutcome()
        if is_within_do_not_disturb(prefs, now):
            logger.info("Skipping reminder for user_id=%s (in DND hours)", prefs.user_id)
            return UserOutcome()

        data = build_payload_data(
            NotificationType.DAILY_REMINDER, screen="add-record", action="create_expense",
        )
        with self._session_factory() as db:
            return self._enqueue(
                db,
                prefs.user_id,
                NotificationType.DAILY_REMINDER,
                "📝 Log today's expenses",
                "Ready to track your spending?",
                data,
                daily_reminder_key(
                    prefs.user_id,
                    occurrence_date(now, prefs.timezone, parse_hhmm(prefs.daily_reminder_time)),
                ),
            )

    def _warn_user(self, prefs: NotificationPrefs, now: datetime) -> UserOutcome:
        outcome = UserOutcome()
        with self._session_factory() as db:
            evaluator = BudgetThresholdEvaluator(FinanceRepository(db))
            for w in evaluator.evaluate(prefs.user_id, prefs.budget_warning_threshold, now):
                percentage = round_half_up(w.percentage)
                data = build_payload_data(
                    NotificationType.BUDGET_WARNING,
                    screen="budget",
                    category_id=w.category_id,
                    spent=w.spent,
                    budget=w.budget_amount,
                    percentage=percentage,
                )
                outcome += self._enqueue(
                    db,
                    prefs.user_id,
                    NotificationType.BUDGET_WARNING,
                    f"💰 Budget Alert: {w.category_name}",
                    f"You've spent {percentage}% of your budget",
                    data,
                    budget_warning_key(prefs.user_id, w.category_id, now),
                )
        return outcome

    def _check_anomalies(self, prefs: NotificationPrefs, now: datetime) -> UserOutcome:
        outcome = UserOutcome()
        with self._session_factory() as db:
            detector = AnomalyDetector(
                FinanceRepository(db),
                window_days=self.settings.ANOMALY_WINDOW_DAYS,
                sigma=self.settings.ANOMALY_SIGMA,
            )
            for a in detector.evaluate(prefs.user_id, now):
                data = build_payload_data(
                    NotificationType.DAILY_ANOMALY,
                    screen="analysis",
                    category_id=a.category_id,
                    spent=a.today_spent,
                    average=round_half_up(a.average),
                )
                outcome += self._enqueue(
                    db,
                    prefs.user_id,
                    NotificationType.DAILY_ANOMALY,
                    "🚨 Unusual spending detected",
                    f"You've spent more in {a.category_name} than usual today",
                    data,
                    anomaly_key(prefs.user_id, a.category_id, now),
                )
        return outcome

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _enqueue(
        self,
        db: Session,
        user_id: int,
        notification_type: NotificationType,
        title: str,
        body: str,
        data: dict,
        key: str,
    ) -> UserOutcome:
        """Queue one notification; duplicates count as sent, store errors as failed."""
        queue = NotificationQueueRepository(db)
        try:
            self._with_retry(
                queue.enqueue, user_id, notification_type.value, title, body, data, key, session=db,
            )
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Error queueing %s for user_id=%s: %s", notification_type.value, user_id, exc)
            return UserOutcome(failed=1)
        logger.info("Queued %s for user_id=%s", notification_type.value, user_id)
        return UserOutcome(sent=1)

    def _load_enabled(self, feature: str) -> list[NotificationPrefs]:
        def load() -> list[NotificationPrefs]:
            with self._session_factory() as db:
                rows = PreferenceRepository(db).list_enabled(feature)
                return [
                    NotificationPrefs.from_row(
                        r,
                        reminder_time=self.settings.DEFAULT_REMINDER_TIME,
                        threshold=self.settings.DEFAULT_BUDGET_THRESHOLD,
                        dnd_start=self.settings.DEFAULT_DND_START,
                        dnd_end=self.settings.DEFAULT_DND_END,
                    )
                    for r in rows
                ]
        return self._with_retry(load)

    def _fan_out(
        self,
        users: list[NotificationPrefs],
        unit: Callable[[NotificationPrefs], UserOutcome],
        label: str,
    ) -> PassResult:
        result = PassResult()
        if not users:
            logger.info("%s: no eligible users", label)
            return result

        def isolated(prefs: NotificationPrefs) -> UserOutcome:
            try:
                return self._with_retry(unit, prefs)
            except Exception:
                logger.exception("%s failed for user_id=%s", label, prefs.user_id)
                return UserOutcome(failed=1)

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix=label) as pool:
            for batch in _chunks(users, self.batch_size):
                for outcome in pool.map(isolated, batch):
                    result.processed += 1
                    result.sent += outcome.sent
                    result.failed += outcome.failed
        return result

    def _with_retry(self, fn, *args, session: Session | None = None):
        attempts = 1 + self.store_retries
        for attempt in range(1, attempts + 1):
            try:
                return fn(*args)
            except TRANSIENT_ERRORS as exc:
                if attempt >= attempts:
                    raise
                logger.warning("Transient store error (attempt %d/%d): %s", attempt, attempts, exc)
                if session is not None:
                    session.rollback()

    def _write_log(self, now: datetime, *, success: bool, duration_ms: int, **totals) -> None:
        with self._session_factory() as db:
            JobExecutionLogRepository(db).append(
                job_name=DAILY_JOB_NAME,
                executed_at=now,
                success=success,
                duration_ms=duration_ms,
                **totals,
            )

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
