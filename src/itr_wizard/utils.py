"""Utility functions for the filing wizard."""

from datetime import datetime
from enum import Enum
from typing import Any


def get_enum_value(value: Any) -> str:
    """
    Get string value from an enum or return as-is if already a string.

    Integer-valued enums (gender, marital status, wizard step) are rendered
    by name so that saved data and CLI output stay readable.

    Args:
        value: An enum instance or string

    Returns:
        The string value
    """
    if isinstance(value, Enum):
        if isinstance(value.value, int):
            return value.name
        return value.value
    return str(value) if value is not None else ""


def format_inr(amount: float) -> str:
    """Format a rupee amount with Indian digit grouping, e.g. ₹12,34,567."""
    negative = amount < 0
    whole = str(int(round(abs(amount))))
    if len(whole) > 3:
        head, tail = whole[:-3], whole[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        whole = ",".join(groups) + "," + tail
    return f"{'-' if negative else ''}₹{whole}"


def describe_last_saved(saved_at: datetime | None, now: datetime | None = None) -> str:
    """
    Human-readable "last saved" message.

    Args:
        saved_at: Timestamp of the last successful save
        now: Reference time, defaults to the current time

    Returns:
        A message such as "Saved 5 minutes ago", or "" when nothing is saved
    """
    if saved_at is None:
        return ""
    now = now or datetime.now()
    minutes = int((now - saved_at).total_seconds() // 60)
    hours = minutes // 60
    days = hours // 24

    if minutes < 1:
        return "Saved just now"
    if minutes < 60:
        return f"Saved {minutes} minute{'s' if minutes > 1 else ''} ago"
    if hours < 24:
        return f"Saved {hours} hour{'s' if hours > 1 else ''} ago"
    if days < 7:
        return f"Saved {days} day{'s' if days > 1 else ''} ago"
    return f"Saved on {saved_at.strftime('%d %b %Y')}"
