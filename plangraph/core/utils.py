"""Shared parsing helpers for dates and WBS codes."""

import logging
from datetime import date, datetime, timezone
from functools import cmp_to_key
from typing import List, Optional

logger = logging.getLogger(__name__)


def parse_date(value: Optional[str]) -> Optional[date]:
    """
    Parse an ISO calendar date, tolerating full timestamps.

    Parameters
    ----------
    value : Optional[str]
        ``YYYY-MM-DD`` or an ISO 8601 timestamp

    Returns
    -------
    Optional[date]
        Parsed date, or None if missing or malformed
    """
    if not value:
        return None
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse timestamp string to timezone-aware datetime."""
    if not value:
        return None

    try:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        if ts.tzinfo is None:
            # Naive timestamps are treated as UTC
            ts = ts.replace(tzinfo=timezone.utc)
        return ts
    except (ValueError, AttributeError):
        return None


def days_since(value: Optional[str], now: datetime) -> Optional[int]:
    """Whole days between a timestamp and ``now`` (None if unparseable)."""
    ts = parse_timestamp(value)
    if ts is None:
        return None
    return int((now - ts).total_seconds() // 86400)


def wbs_parts(code: Optional[str]) -> List[int]:
    """
    Split a dotted WBS code into integers.

    Non-digit characters inside a segment are ignored, so ``"1.2a.3"``
    becomes ``[1, 2, 3]``.
    """
    if not code:
        return []
    parts = []
    for segment in code.split("."):
        digits = "".join(c for c in segment if c.isdigit())
        parts.append(int(digits) if digits else 0)
    return parts


def compare_wbs_codes(a: Optional[str], b: Optional[str]) -> int:
    """
    Compare WBS codes numerically ("1.2.3" < "1.2.10" < "1.3").

    Missing codes sort after present ones.
    """
    if not a and not b:
        return 0
    if not a:
        return 1
    if not b:
        return -1

    parts_a = wbs_parts(a)
    parts_b = wbs_parts(b)
    for num_a, num_b in zip(parts_a, parts_b):
        if num_a != num_b:
            return num_a - num_b
    return len(parts_a) - len(parts_b)


wbs_sort_key = cmp_to_key(compare_wbs_codes)
