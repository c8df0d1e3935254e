"""Pydantic schemas for the points and admin APIs.

Request bodies accept camelCase or snake_case keys; responses are snake_case.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Balance / crediting
# ---------------------------------------------------------------------------


class BalanceOut(BaseModel):
    """Stored subtotals and total for one user."""

    mining_points: int = 0
    task_points: int = 0
    social_points: int = 0
    referral_points: int = 0
    total_points: int = 0

    @classmethod
    def from_subtotals(cls, values: dict[str, int]) -> BalanceOut:
        return cls(
            mining_points=values.get("mining", 0),
            task_points=values.get("task", 0),
            social_points=values.get("social", 0),
            referral_points=values.get("referral", 0),
            total_points=values.get("total", 0),
        )


class CreditRequest(_Request):
    """Body for POST /points/credit. ``amount`` is validated by the ledger."""

    type: Literal["mining", "task", "social"]
    amount: Any = None
    session_id: str | None = Field(default=None, alias="sessionId")


class CreditResponse(BaseModel):
    success: bool = True
    status: str
    points: int
    session_id: str | None = None
    balance: BalanceOut


class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    started_at: datetime
    ended_at: datetime | None = None
    is_active: bool
    raw_points: int = 0
    credited_at: datetime | None = None


class StartSessionResponse(BaseModel):
    created: bool
    session: SessionOut


class ActiveSessionResponse(BaseModel):
    session: SessionOut | None = None


# ---------------------------------------------------------------------------
# Admin batch operations
# ---------------------------------------------------------------------------


class AdminBatchRequest(_Request):
    """Shared body for admin batch endpoints."""

    batch_size: int | None = Field(default=None, alias="batchSize", ge=1)
    offset: int = Field(default=0, ge=0)
    dry_run: bool = Field(default=False, alias="dryRun")
    threshold: float | None = Field(default=None, gt=0)
    user_id: str | None = Field(default=None, alias="userId")
    cursor: str | None = None


class SweepItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: str
    user_id: str
    status: str
    awarded: int = 0
    boost: int = 0
    error: str | None = None


class SweepResponse(BaseModel):
    processed: int
    credited: int
    total_points_delta: int
    dry_run: bool
    results: list[SweepItemOut] = []


class BackfillItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: str
    user_id: str
    status: str
    awarded: int = 0
    error: str | None = None


class BackfillResponse(BaseModel):
    processed: int
    credited: int
    skipped: int
    failed: int
    total_points_delta: int
    dry_run: bool
    results: list[BackfillItemOut] = []


class ReconcileItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    action: str
    stored: dict[str, int] = {}
    computed: dict[str, int] = {}
    diffs: dict[str, int] = {}
    points_delta: int = 0
    audit_id: int | None = None
    error: str | None = None


class ReconcileSummary(BaseModel):
    restored: int = 0
    flagged: int = 0
    no_change: int = 0
    failed: int = 0
    total_points_restored: int = 0


class ReconcileResponse(BaseModel):
    processed: int
    restored: int
    total_points_delta: int
    dry_run: bool
    total: int = 0
    has_more: bool = False
    summary: ReconcileSummary
    results: list[ReconcileItemOut] = []


class ClampItemOut(BaseModel):
    user_id: str
    status: str
    ratio: float | None = None  # None when proven mining is zero
    before: dict[str, int] = {}
    after: dict[str, int] = {}
    points_delta: int = 0
    audit_id: int | None = None
    notes: str | None = None


class ClampResponse(BaseModel):
    processed: int
    clamped: int
    inconclusive: int
    failed: int
    total_points_delta: int
    dry_run: bool
    threshold: float
    total: int = 0
    has_more: bool = False
    next_cursor: str | None = None
    results: list[ClampItemOut] = []


class AuditEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    audit_type: str
    action_taken: str
    stored_total_points: int
    computed_total_points: int
    mining_diff: int
    task_diff: int
    social_diff: int
    referral_diff: int
    total_diff: int
    points_delta: int
    notes: str | None = None
    created_by: str | None = None
    created_at: datetime


class AuditListResponse(BaseModel):
    entries: list[AuditEntryOut]
