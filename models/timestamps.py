"""
Timestamp helpers shared by the models and services.

Every timestamp written to the store is an ISO 8601 UTC string with
millisecond precision and a trailing 'Z' (e.g. 2025-03-01T14:05:09.120Z).
Strings in that single format sort lexicographically in time order, which
is what the store's order_by relies on for FIFO selection.

Older documents may carry date-only strings ("2025-03-01") or offsets;
parse_timestamp() accepts all of them.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Format a datetime as the store's canonical UTC string."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_date_string(dt: datetime) -> str:
    """Format the UTC calendar date of a datetime (YYYY-MM-DD)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).date().isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a stored timestamp into an aware UTC datetime.

    Accepts 'Z' suffixes, explicit offsets, naive strings (treated as UTC)
    and date-only strings (midnight UTC).

    Returns:
        The parsed datetime, or None for empty/unparseable input
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_now_iso() -> str:
    """Current time in the store's canonical UTC string format."""
    return to_iso(utc_now())
