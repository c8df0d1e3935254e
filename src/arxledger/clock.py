"""Wall-clock access for request handlers and workers.

Ledger functions never read the clock themselves; callers pass ``now`` in.
"""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Normalize a datetime read back from the store to aware UTC.

    Some drivers (SQLite) hand back naive values for timezone-aware columns.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
