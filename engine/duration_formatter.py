"""Rendering of time spans as short phrases."""
from datetime import timedelta
from typing import Tuple

MINUTES_PER_HOUR = 60
MINUTES_PER_DAY = 24 * MINUTES_PER_HOUR


def split_duration(span: timedelta) -> Tuple[int, int, int]:
    """
    Decompose a non-negative span into whole days, hours and minutes.

    Seconds and smaller units are truncated.

    Args:
        span: Non-negative time span

    Returns:
        Tuple of (days, hours, minutes) with hours in 0-23 and minutes in 0-59
    """
    total_minutes = span // timedelta(minutes=1)
    days = total_minutes // MINUTES_PER_DAY
    hours = (total_minutes // MINUTES_PER_HOUR) % 24
    minutes = total_minutes % MINUTES_PER_HOUR
    return days, hours, minutes


def format_duration(span: timedelta) -> str:
    """
    Format a span using only its non-zero units.

    Unit labels are always plural, e.g. "7 Days and 7 Minutes" or
    "1 Hours". A zero span renders as "0 Minutes".

    Args:
        span: Non-negative time span

    Returns:
        Human-readable duration
    """
    d, h, m = split_duration(span)

    if d == 0 and h == 0:
        return f"{m} Minutes"
    if h == 0 and m == 0:
        return f"{d} Days"
    if d == 0 and m == 0:
        return f"{h} Hours"
    if m == 0:
        return f"{d} Days and {h} Hours"
    if h == 0:
        return f"{d} Days and {m} Minutes"
    if d == 0:
        return f"{h} Hours and {m} Minutes"

    return f"{d} Days {h} Hours and {m} Minutes"
