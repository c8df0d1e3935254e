"""Ledger error taxonomy.

"Already credited" is deliberately absent: it is a successful outcome with a
zero award, reported through the result status.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for ledger failures surfaced to callers."""

    status_code = 500
    public_message = "failed to process"


class ValidationError(LedgerError):
    """Bad input shape or range. Never retried."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.public_message = message


class NotFoundOrForbidden(LedgerError):
    """Entity missing or owned by someone else. Not retried."""

    status_code = 404

    def __init__(self, message: str = "not found or access denied") -> None:
        super().__init__(message)
        self.public_message = message


class TransientStoreError(LedgerError):
    """A store write failed after the CAS; the transaction was rolled back. Safe to retry."""

    status_code = 503


class Inconclusive(LedgerError):
    """Proof could not be established for a user; the caller skips it."""

    status_code = 409

    def __init__(self, user_id: str, reason: str) -> None:
        super().__init__(f"{user_id}: {reason}")
        self.user_id = user_id
        self.reason = reason
        self.public_message = reason


class StakeRejected(ValidationError):
    """Stake request that cannot be placed (closed battle, bad side, low balance)."""


class BattleNotFound(NotFoundOrForbidden):
    def __init__(self, battle_id: str) -> None:
        super().__init__("battle not found")
        self.battle_id = battle_id
