"""
NotificationPrefs - immutable snapshot of a user's notification settings.

Absent values fall back to documented defaults:
reminder 19:00, budget threshold 80%, DND 22:00-08:00, timezone UTC.
"""
from dataclasses import dataclass

DEFAULT_REMINDER_TIME = "19:00"
DEFAULT_BUDGET_THRESHOLD = 80
DEFAULT_DND_START = "22:00"
DEFAULT_DND_END = "08:00"
DEFAULT_TIMEZONE = "UTC"


@dataclass(frozen=True)
class NotificationPrefs:
    user_id: int
    daily_reminder_enabled: bool = True
    daily_reminder_time: str = DEFAULT_REMINDER_TIME
    timezone: str = DEFAULT_TIMEZONE
    budget_warnings_enabled: bool = True
    budget_warning_threshold: int = DEFAULT_BUDGET_THRESHOLD
    daily_anomaly_enabled: bool = True
    dnd_enabled: bool = False
    dnd_start_time: str = DEFAULT_DND_START
    dnd_end_time: str = DEFAULT_DND_END

    @classmethod
    def from_row(
        cls,
        row,
        *,
        reminder_time: str = DEFAULT_REMINDER_TIME,
        threshold: int = DEFAULT_BUDGET_THRESHOLD,
        dnd_start: str = DEFAULT_DND_START,
        dnd_end: str = DEFAULT_DND_END,
    ) -> "NotificationPrefs":
        """Build from a NotificationPreferenceModel (or any object with the same attributes)."""
        stored_threshold = row.budget_warning_threshold
        return cls(
            user_id=row.user_id,
            daily_reminder_enabled=bool(row.daily_reminder_enabled),
            daily_reminder_time=row.daily_reminder_time or reminder_time,
            timezone=row.timezone or DEFAULT_TIMEZONE,
            budget_warnings_enabled=bool(row.budget_warnings_enabled),
            # only None falls back; 0 means "always warn"
            budget_warning_threshold=threshold if stored_threshold is None else stored_threshold,
            daily_anomaly_enabled=bool(row.daily_anomaly_enabled),
            dnd_enabled=bool(row.dnd_enabled),
            dnd_start_time=row.dnd_start_time or dnd_start,
            dnd_end_time=row.dnd_end_time or dnd_end,
        )
