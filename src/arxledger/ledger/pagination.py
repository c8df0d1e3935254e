"""Keyset cursors for balance scans.

Balance scans run largest total first. A pass that lowers balances moves rows
down the ordering while it reads, so OFFSET would skip unread rows. The cursor
records (total_points, user_id) of the last row as it was read, and the next
page starts strictly after that position.
"""

from __future__ import annotations

import base64
import json

from sqlalchemy import Select, and_, or_

from arxledger.db.models import UserPoints
from arxledger.ledger.errors import ValidationError


def encode_cursor(total_points: int, user_id: str) -> str:
    """Encode a cursor from the last balance row of a page."""
    payload = {"total": int(total_points), "user": user_id}
    return base64.urlsafe_b64encode(json.dumps(payload).encode()).decode()


def decode_cursor(cursor: str) -> tuple[int, str]:
    """Decode a cursor into (total_points, user_id).

    Raises:
        ValidationError: If the cursor is malformed.
    """
    try:
        data = json.loads(base64.urlsafe_b64decode(cursor.encode()))
        return int(data["total"]), str(data["user"])
    except (ValueError, KeyError, TypeError) as e:
        msg = "invalid cursor"
        raise ValidationError(msg) from e


def apply_cursor(query: Select, cursor: str | None) -> Select:  # type: ignore[type-arg]
    """Restrict a balance query to rows after the cursor.

    Assumes the query is ordered by (total_points DESC, user_id ASC).
    """
    if cursor is None:
        return query

    total, user_id = decode_cursor(cursor)
    return query.where(
        or_(
            UserPoints.total_points < total,
            and_(UserPoints.total_points == total, UserPoints.user_id > user_id),
        )
    )
