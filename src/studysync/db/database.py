"""SQLite database connection and schema management.

Provides connection management and schema initialization for the local
question store (sources, banks, questions, learning progress).
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import structlog

logger = structlog.get_logger(__name__)

# Default database location
DEFAULT_DB_PATH = Path("db/studysync.db")

# Current database (module-level, set by init_db)
_db_path: Path | None = None


def init_db(db_path: Path | None = None) -> Path:
    """Initialize database with schema.

    Creates the database file and all required tables if they don't exist.

    Args:
        db_path: Path to database file. Defaults to db/studysync.db

    Returns:
        The path of the initialized database
    """
    global _db_path
    _db_path = Path(db_path) if db_path else DEFAULT_DB_PATH

    _db_path.parent.mkdir(parents=True, exist_ok=True)

    with get_db() as conn:
        _create_schema(conn)

    logger.info("database.initialized", path=str(_db_path))
    return _db_path


def get_db_path() -> Path:
    """Return the active database path."""
    return _db_path or DEFAULT_DB_PATH


@contextmanager
def get_db() -> Generator[sqlite3.Connection, None, None]:
    """Get database connection as context manager.

    Everything done inside one `with` block is committed together, or
    rolled back if the block raises.

    Yields:
        SQLite connection with row factory set to sqlite3.Row

    Example:
        with get_db() as conn:
            rows = conn.execute("SELECT * FROM sources").fetchall()
    """
    db_path = get_db_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")

    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _create_schema(conn: sqlite3.Connection) -> None:
    """Create database schema.

    Uses IF NOT EXISTS for idempotency.
    """
    conn.executescript(
        """
        -- Sources: remote subscriptions (user-added or curated)
        CREATE TABLE IF NOT EXISTS sources (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            url TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL,
            last_synced_at TEXT,
            auto_update INTEGER NOT NULL DEFAULT 1,
            is_official INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        -- Banks: source_id NULL means locally authored (never reconciled)
        CREATE TABLE IF NOT EXISTS question_banks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            source_id INTEGER REFERENCES sources (id) ON DELETE CASCADE,
            remote_id TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at TEXT NOT NULL DEFAULT (datetime('now')),
            UNIQUE (source_id, remote_id)
        );

        CREATE TABLE IF NOT EXISTS questions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            bank_id INTEGER NOT NULL REFERENCES question_banks (id) ON DELETE CASCADE,
            type TEXT NOT NULL CHECK (type IN ('single', 'multi', 'true_false', 'fill', 'short')),
            content TEXT NOT NULL,
            options TEXT NOT NULL DEFAULT '{}',
            correct_answer TEXT NOT NULL DEFAULT '',
            explanation TEXT NOT NULL DEFAULT ''
        );

        -- Learning progress, keyed by question id (owned by the mastery layer)
        CREATE TABLE IF NOT EXISTS user_progress (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            question_id INTEGER NOT NULL REFERENCES questions (id) ON DELETE CASCADE,
            is_correct INTEGER NOT NULL,
            user_answer TEXT,
            timestamp TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS sync_state (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_banks_source ON question_banks(source_id);
        CREATE INDEX IF NOT EXISTS idx_questions_bank ON questions(bank_id);
        CREATE INDEX IF NOT EXISTS idx_progress_question ON user_progress(question_id);
        """
    )
