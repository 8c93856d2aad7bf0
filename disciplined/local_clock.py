"""Wall-clock arithmetic in a user's local timezone.

Everything here works in "minutes since local midnight" (0..1439) so that
recurring time-of-day events can be compared with a plain modulo-1440
distance, independent of the calendar date.
"""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

MINUTES_PER_DAY = 1440


def normalize_minute(value: int) -> int:
    return int(value) % MINUTES_PER_DAY


def minute_of(value: time) -> int:
    return value.hour * 60 + value.minute


def parse_time_of_day(raw: str | None) -> time | None:
    """Parse ``H:MM``, ``HH:MM`` or ``HH:MM:SS``. Returns None when the text is not a valid time."""
    if not raw:
        return None
    parts = raw.strip().split(":")
    if len(parts) not in (2, 3) or not all(part.isdigit() for part in parts):
        return None
    if len(parts[0]) > 2 or any(len(part) != 2 for part in parts[1:]):
        return None
    try:
        return time(*[int(part) for part in parts])
    except ValueError:
        return None


def resolve_timezone(name: str | None, default: str = "UTC") -> ZoneInfo:
    for candidate in (name, default, "UTC"):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            continue
    return ZoneInfo("UTC")


def is_valid_timezone(name: str | None) -> bool:
    if not name:
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def entry_date_for_local_date(local_date: str | date, tz: ZoneInfo) -> date:
    """Map a local calendar date onto the UTC-dated ``daily_entries`` key.

    The local date is anchored at noon before converting, which keeps the
    result stable across DST transitions.
    """
    if isinstance(local_date, str):
        local_date = date.fromisoformat(local_date)
    noon_local = datetime.combine(local_date, time(12, 0), tzinfo=tz)
    return noon_local.astimezone(timezone.utc).date()


class LocalClock:
    """A single instant viewed from one timezone."""

    def __init__(self, instant: datetime, tz: ZoneInfo):
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        self.instant = instant
        self.tz = tz
        self.local_datetime = instant.astimezone(tz)

    @classmethod
    def now(cls, tz: ZoneInfo) -> "LocalClock":
        return cls(utc_now(), tz)

    @property
    def local_date(self) -> str:
        return self.local_datetime.date().isoformat()

    @property
    def local_minute(self) -> int:
        return self.local_datetime.hour * 60 + self.local_datetime.minute

    def minutes_until(self, target_minute: int) -> int:
        return (normalize_minute(target_minute) - self.local_minute) % MINUTES_PER_DAY

    def minutes_since(self, target_minute: int) -> int:
        return (self.local_minute - normalize_minute(target_minute)) % MINUTES_PER_DAY

    def occurrence_date(self, target_minute: int) -> str:
        """Local date of the most recent time the clock read ``target_minute``."""
        occurred = self.local_datetime - timedelta(minutes=self.minutes_since(target_minute))
        return occurred.date().isoformat()

    def within_trailing_window(self, target_minute: int | None, window_minutes: int) -> bool:
        # A periodic runner lands anywhere in [target, target + window).
        if target_minute is None:
            return False
        return self.minutes_since(target_minute) < window_minutes

    def __repr__(self):
        return f"LocalClock({self.local_datetime.isoformat()}, tz={self.tz.key!r})"
