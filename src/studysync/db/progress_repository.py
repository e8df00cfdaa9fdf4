"""Repository functions for user_progress and sync_state tables.

user_progress belongs to the mastery layer; it lives here so its rows
follow question deletes through ON DELETE CASCADE.
"""

from __future__ import annotations

from dataclasses import dataclass

from studysync.db.database import get_db


@dataclass
class ProgressRecord:
    """One recorded answer for a question."""

    id: int
    question_id: int
    is_correct: bool
    user_answer: str | None
    timestamp: str


def record_answer(question_id: int, is_correct: bool, user_answer: str | None = None) -> int:
    """Store an answer for a question and return the progress row id."""
    with get_db() as conn:
        cursor = conn.execute(
            "INSERT INTO user_progress (question_id, is_correct, user_answer) VALUES (?, ?, ?)",
            (question_id, int(is_correct), user_answer),
        )
    return cursor.lastrowid


def get_progress(question_id: int) -> list[ProgressRecord]:
    """List recorded answers for a question, oldest first."""
    with get_db() as conn:
        rows = conn.execute(
            "SELECT * FROM user_progress WHERE question_id = ? ORDER BY id",
            (question_id,),
        ).fetchall()

    return [
        ProgressRecord(
            id=row["id"],
            question_id=row["question_id"],
            is_correct=bool(row["is_correct"]),
            user_answer=row["user_answer"],
            timestamp=row["timestamp"],
        )
        for row in rows
    ]


def get_state(key: str) -> str | None:
    """Read a sync_state value."""
    with get_db() as conn:
        row = conn.execute("SELECT value FROM sync_state WHERE key = ?", (key,)).fetchone()
    return row["value"] if row else None


def set_state(key: str, value: str | None) -> None:
    """Write (or clear, when value is None) a sync_state value."""
    with get_db() as conn:
        if value is None:
            conn.execute("DELETE FROM sync_state WHERE key = ?", (key,))
        else:
            conn.execute(
                "INSERT INTO sync_state (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )
