"""Repository functions for the sources table.

Provides CRUD operations for remote subscriptions.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from studysync.db.database import get_db

logger = structlog.get_logger(__name__)


@dataclass
class SourceRecord:
    """Source record from database."""

    id: int
    url: str
    name: str
    last_synced_at: str | None
    auto_update: bool
    is_official: bool
    created_at: str

    def to_dict(self) -> dict:
        """Convert to dictionary for API/CLI output."""
        return {
            "id": self.id,
            "url": self.url,
            "name": self.name,
            "last_synced_at": self.last_synced_at,
            "auto_update": self.auto_update,
            "is_official": self.is_official,
            "created_at": self.created_at,
        }


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def insert_source(
    url: str,
    name: str,
    auto_update: bool = True,
    is_official: bool = False,
) -> int:
    """Insert a new source record.

    Args:
        url: Origin URL (unique)
        name: Display name
        auto_update: Include in "sync all auto-update" runs
        is_official: True for curated sources from the manifest

    Returns:
        The new source id

    Raises:
        sqlite3.IntegrityError: If the URL is already registered
    """
    with get_db() as conn:
        cursor = conn.execute(
            """
            INSERT INTO sources (url, name, auto_update, is_official)
            VALUES (?, ?, ?, ?)
            """,
            (url, name, int(auto_update), int(is_official)),
        )
        source_id = cursor.lastrowid

    logger.debug("sources.inserted", source_id=source_id, url=url)
    return source_id


def get_source(source_id: int) -> SourceRecord | None:
    """Get source by id.

    Returns:
        SourceRecord if found, None otherwise
    """
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM sources WHERE id = ?", (source_id,)
        ).fetchone()

    return _row_to_record(row) if row else None


def get_source_by_url(url: str) -> SourceRecord | None:
    """Get source by origin URL."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM sources WHERE url = ?", (url,)
        ).fetchone()

    return _row_to_record(row) if row else None


def list_sources() -> list[SourceRecord]:
    """Get all sources, newest first."""
    with get_db() as conn:
        rows = conn.execute("SELECT * FROM sources ORDER BY id DESC").fetchall()

    return [_row_to_record(row) for row in rows]


def list_auto_update_sources() -> list[SourceRecord]:
    """Get sources flagged for automatic sync, oldest first."""
    with get_db() as conn:
        rows = conn.execute(
            "SELECT * FROM sources WHERE auto_update = 1 ORDER BY id"
        ).fetchall()

    return [_row_to_record(row) for row in rows]


def mark_synced(source_id: int, synced_at: str | None = None) -> None:
    """Record a successful sync for a source."""
    with get_db() as conn:
        conn.execute(
            "UPDATE sources SET last_synced_at = ? WHERE id = ?",
            (synced_at or _now(), source_id),
        )

    logger.debug("sources.synced", source_id=source_id)


def set_auto_update(source_id: int, enabled: bool) -> bool:
    """Toggle the auto-update flag.

    Returns:
        True if the source exists, False otherwise
    """
    with get_db() as conn:
        cursor = conn.execute(
            "UPDATE sources SET auto_update = ? WHERE id = ?",
            (int(enabled), source_id),
        )

    return cursor.rowcount > 0


def mark_official(source_id: int) -> None:
    """Flag an existing source as curated."""
    with get_db() as conn:
        conn.execute(
            "UPDATE sources SET is_official = 1 WHERE id = ?", (source_id,)
        )


def delete_source(source_id: int) -> bool:
    """Delete a source together with every bank it owns.

    Returns:
        True if deleted, False if not found
    """
    with get_db() as conn:
        conn.execute("DELETE FROM question_banks WHERE source_id = ?", (source_id,))
        cursor = conn.execute("DELETE FROM sources WHERE id = ?", (source_id,))

    deleted = cursor.rowcount > 0
    if deleted:
        logger.debug("sources.deleted", source_id=source_id)

    return deleted


def _row_to_record(row) -> SourceRecord:
    """Convert database row to SourceRecord."""
    return SourceRecord(
        id=row["id"],
        url=row["url"],
        name=row["name"],
        last_synced_at=row["last_synced_at"],
        auto_update=bool(row["auto_update"]),
        is_official=bool(row["is_official"]),
        created_at=row["created_at"],
    )
