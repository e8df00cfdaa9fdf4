"""Pydantic schemas for the Web API.

Serialization models for sources, banks and sync results.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


# =============================================================================
# HEALTH
# =============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    timestamp: str


# =============================================================================
# SOURCE SCHEMAS
# =============================================================================


class SourceCreate(BaseModel):
    """Request body for subscribing to a URL."""

    url: str = Field(..., min_length=1, max_length=2000)
    name: str | None = Field(default=None, max_length=200)


class SourceUpdate(BaseModel):
    """Request body for changing a subscription."""

    auto_update: bool


class SourceResponse(BaseModel):
    """Response for a source."""

    id: int
    url: str
    name: str
    last_synced_at: str | None
    auto_update: bool
    is_official: bool
    created_at: str

    model_config = {"from_attributes": True}


class SourceListResponse(BaseModel):
    """Response for list of sources."""

    sources: list[SourceResponse]
    count: int


class BankResponse(BaseModel):
    """Response for a question bank."""

    id: int
    name: str
    description: str
    remote_id: str | None
    question_count: int
    created_at: str
    updated_at: str


class SourceDetailResponse(SourceResponse):
    """Source with its banks."""

    banks: list[BankResponse] = Field(default_factory=list)


# =============================================================================
# SYNC SCHEMAS
# =============================================================================


class ReconcileStatsResponse(BaseModel):
    """Counts from one reconciliation."""

    banks: int = 0
    banks_created: int = 0
    banks_deleted: int = 0
    questions_inserted: int = 0
    questions_updated: int = 0
    questions_deleted: int = 0
    questions_unchanged: int = 0
    rows_skipped: int = 0
    deletion_skipped: bool = False


class SourceSyncResponse(BaseModel):
    """Result of syncing (or adding) one source."""

    source: SourceResponse
    stats: ReconcileStatsResponse | None = None


class SyncAllResponse(BaseModel):
    """Result of a sync-all request."""

    scheduled: bool = False
    synced: int = 0
    total: int = 0


class ManifestSyncResponse(BaseModel):
    """Result of a manifest sync."""

    via: str
    entries: int
    added: list[int]
    marked_official: list[int]


class SyncStatusResponse(BaseModel):
    """Current sync state."""

    is_syncing: bool
    last_manifest_sync: float | None
    cooldown_remaining: float
