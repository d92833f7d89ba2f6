"""
Schedule and quiet-hours checks for the daily jobs.

Both checks fail closed on malformed preference data: a bad time string or
an unknown timezone means "not scheduled now" / "not in quiet hours" and is
logged, never raised to the caller.
"""
import logging
from datetime import datetime

from app.domain.notification_preference import NotificationPrefs
from app.utils.time_windows import InvalidTimeError, circular_distance, local_minutes, parse_hhmm

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_MINUTES = 5


def is_scheduled_now(
    timezone: str | None,
    scheduled_time: str,
    now: datetime,
    tolerance_minutes: int = DEFAULT_TOLERANCE_MINUTES,
) -> bool:
    """
    True iff `now`, on the wall clock of `timezone`, is within
    `tolerance_minutes` of `scheduled_time` (day treated as circular).
    """
    try:
        scheduled = parse_hhmm(scheduled_time)
        current = local_minutes(now, timezone)
    except InvalidTimeError as exc:
        logger.warning("Schedule check skipped: %s", exc)
        return False
    return circular_distance(current, scheduled) <= tolerance_minutes


def is_within_do_not_disturb(prefs: NotificationPrefs, now: datetime) -> bool:
    """
    True iff DND is enabled and the user's local time is inside the window.

    start <= end: same-day window, start <= now <= end.
    start > end: overnight window (e.g. 22:00-08:00), now >= start or now <= end.
    """
    if not prefs.dnd_enabled:
        return False
    try:
        start = parse_hhmm(prefs.dnd_start_time)
        end = parse_hhmm(prefs.dnd_end_time)
        current = local_minutes(now, prefs.timezone)
    except InvalidTimeError as exc:
        logger.warning("DND check skipped for user_id=%s: %s", prefs.user_id, exc)
        return False

    if start <= end:
        return start <= current <= end
    # Overnight range
    return current >= start or current <= end
