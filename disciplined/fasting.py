from dataclasses import dataclass
from datetime import time

from disciplined.local_clock import LocalClock, normalize_minute, parse_time_of_day

MIN_EATING_HOURS = 1
MAX_EATING_HOURS = 23


class FastingSettingsError(ValueError):
    pass


@dataclass(frozen=True)
class FastingStatus:
    mode: str  # eating/fasting
    minutes_until_switch: int
    next_switch_minute: int
    eating_start_minute: int
    eating_end_minute: int

    def to_dict(self):
        return {
            "mode": self.mode,
            "minutes_until_switch": self.minutes_until_switch,
            "next_switch_minute": self.next_switch_minute,
            "eating_start_minute": self.eating_start_minute,
            "eating_end_minute": self.eating_end_minute,
            "label": format_duration(self.minutes_until_switch),
        }


def validate_fasting_input(eating_start, eating_hours) -> tuple[time, int]:
    parsed_start = parse_time_of_day(str(eating_start or ""))
    if parsed_start is None:
        raise FastingSettingsError("Start must be HH:MM")
    try:
        hours = float(eating_hours)
    except (TypeError, ValueError):
        raise FastingSettingsError("Hours must be 1..23") from None
    if not hours.is_integer() or hours < MIN_EATING_HOURS or hours > MAX_EATING_HOURS:
        raise FastingSettingsError("Hours must be 1..23")
    return parsed_start.replace(second=0, microsecond=0), int(hours)


def eating_end_minute(start_minute: int, eating_hours: int) -> int:
    return normalize_minute(start_minute + eating_hours * 60)


def compute_fasting_status(start_minute: int, eating_hours: int, clock: LocalClock) -> FastingStatus:
    """Where the clock sits relative to a daily eating window, across midnight."""
    start_minute = normalize_minute(start_minute)
    end_minute = eating_end_minute(start_minute, eating_hours)
    window_length = eating_hours * 60

    eating = clock.minutes_since(start_minute) < window_length
    next_switch = end_minute if eating else start_minute
    return FastingStatus(
        mode="eating" if eating else "fasting",
        minutes_until_switch=clock.minutes_until(next_switch),
        next_switch_minute=next_switch,
        eating_start_minute=start_minute,
        eating_end_minute=end_minute,
    )


def format_duration(minutes: int) -> str:
    hours, mins = divmod(max(0, int(minutes)), 60)
    if hours <= 0:
        return f"{mins}m"
    if mins == 0:
        return f"{hours}h"
    return f"{hours}h {mins}m"
