"""Timestamp normalization.

Timestamps are stored as naive UTC; caller-supplied values may carry an
offset and are converted before any comparison or arithmetic.
"""

from datetime import datetime, timezone
from typing import Optional


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
