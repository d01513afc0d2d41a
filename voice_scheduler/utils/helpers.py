"""Speech-friendly formatting helpers."""

from datetime import datetime
from typing import Iterable


def friendly_date(date_str: str) -> str:
    """``2026-03-02`` -> ``Monday, March 2``; unparseable input is returned as is."""
    try:
        date_obj = datetime.strptime(date_str, "%Y-%m-%d")
    except (TypeError, ValueError):
        return date_str
    return f"{date_obj.strftime('%A, %B')} {date_obj.day}"


def friendly_time(time_str: str) -> str:
    """``14:30`` -> ``2:30 PM``; unparseable input is returned as is."""
    try:
        time_obj = datetime.strptime(time_str, "%H:%M")
    except (TypeError, ValueError):
        return time_str
    return time_obj.strftime("%I:%M %p").lstrip("0")


def join_for_speech(items: Iterable[str], conjunction: str = "or") -> str:
    """Join ``["a", "b", "c"]`` as ``a, b or c``."""
    items = list(items)
    if not items:
        return ""
    if len(items) == 1:
        return items[0]
    return ", ".join(items[:-1]) + f" {conjunction} {items[-1]}"
