"""Daily time-window filter.

Windows are inclusive on both ends and never wrap past midnight: a window
whose start is later than its end matches nothing.
"""

from __future__ import annotations

from datetime import datetime

from habitflow.data.models import TimeWindow


def clock_to_minutes(clock: str) -> int:
    """Convert "HH:MM" to minutes since midnight.

    Raises ValueError on malformed input.
    """
    if ":" not in clock:
        raise ValueError(f"No colon in clock time: {clock!r}")
    hour_text, minute_text = clock.strip().split(":", 1)
    hour, minute = int(hour_text), int(minute_text)
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Hour/minute out of range: {clock!r}")
    return hour * 60 + minute


def minutes_of_day(instant: datetime) -> int:
    return instant.hour * 60 + instant.minute


def within_window(window: TimeWindow | None, instant: datetime) -> bool:
    """True if ``instant`` falls inside the window. No window means no limit."""
    if window is None:
        return True
    now = minutes_of_day(instant)
    return clock_to_minutes(window.start) <= now <= clock_to_minutes(window.end)


def minutes_until_end(window: TimeWindow, instant: datetime) -> int:
    """Minutes left until the window closes (negative once it has)."""
    return clock_to_minutes(window.end) - minutes_of_day(instant)
