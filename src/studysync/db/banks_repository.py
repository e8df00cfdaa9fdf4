"""Repository functions for question_banks and questions tables.

Write functions take an open connection so that callers can group the
writes for one bank into a single transaction:

    with get_db() as conn:
        bank_id = insert_bank(conn, ...)
        insert_question(conn, bank_id, ...)
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from typing import Any

import structlog

from studysync.db.database import get_db

logger = structlog.get_logger(__name__)


@dataclass
class BankRecord:
    """Question bank record from database."""

    id: int
    name: str
    description: str
    source_id: int | None
    remote_id: str | None
    created_at: str
    updated_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "source_id": self.source_id,
            "remote_id": self.remote_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class QuestionRecord:
    """Question record from database."""

    id: int
    bank_id: int
    type: str
    content: str
    options: dict[str, str] = field(default_factory=dict)
    correct_answer: str = ""
    explanation: str = ""


# =============================================================================
# BANKS
# =============================================================================


def find_bank(
    conn: sqlite3.Connection, source_id: int, remote_id: str
) -> BankRecord | None:
    """Find a source-owned bank by its remote identifier."""
    row = conn.execute(
        "SELECT * FROM question_banks WHERE source_id = ? AND remote_id = ?",
        (source_id, remote_id),
    ).fetchone()
    return _row_to_bank(row) if row else None


def list_banks_for_source(
    source_id: int, conn: sqlite3.Connection | None = None
) -> list[BankRecord]:
    """List banks owned by a source, in creation order."""
    query = "SELECT * FROM question_banks WHERE source_id = ? ORDER BY id"
    if conn is not None:
        rows = conn.execute(query, (source_id,)).fetchall()
    else:
        with get_db() as own_conn:
            rows = own_conn.execute(query, (source_id,)).fetchall()
    return [_row_to_bank(row) for row in rows]


def insert_bank(
    conn: sqlite3.Connection,
    name: str,
    description: str = "",
    source_id: int | None = None,
    remote_id: str | None = None,
) -> int:
    """Insert a bank and return its id."""
    cursor = conn.execute(
        """
        INSERT INTO question_banks (name, description, source_id, remote_id)
        VALUES (?, ?, ?, ?)
        """,
        (name, description, source_id, remote_id),
    )
    logger.debug("banks.inserted", bank_id=cursor.lastrowid, remote_id=remote_id)
    return cursor.lastrowid


def update_bank_metadata(
    conn: sqlite3.Connection, bank_id: int, name: str, description: str
) -> None:
    """Update name/description without touching updated_at."""
    conn.execute(
        "UPDATE question_banks SET name = ?, description = ? WHERE id = ?",
        (name, description, bank_id),
    )


def touch_bank(conn: sqlite3.Connection, bank_id: int) -> None:
    """Bump the bank's user-visible "last updated" timestamp."""
    conn.execute(
        "UPDATE question_banks SET updated_at = datetime('now') WHERE id = ?",
        (bank_id,),
    )


def delete_banks(conn: sqlite3.Connection, bank_ids: list[int]) -> int:
    """Delete banks (questions cascade). Returns the number deleted."""
    if not bank_ids:
        return 0
    placeholders = ",".join("?" for _ in bank_ids)
    cursor = conn.execute(
        f"DELETE FROM question_banks WHERE id IN ({placeholders})", bank_ids
    )
    return cursor.rowcount


# =============================================================================
# QUESTIONS
# =============================================================================


def list_questions(
    bank_id: int, conn: sqlite3.Connection | None = None
) -> list[QuestionRecord]:
    """List questions of a bank in id order."""
    query = "SELECT * FROM questions WHERE bank_id = ? ORDER BY id"
    if conn is not None:
        rows = conn.execute(query, (bank_id,)).fetchall()
    else:
        with get_db() as own_conn:
            rows = own_conn.execute(query, (bank_id,)).fetchall()
    return [_row_to_question(row) for row in rows]


def count_questions(bank_id: int) -> int:
    """Count questions in a bank."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT COUNT(*) AS n FROM questions WHERE bank_id = ?", (bank_id,)
        ).fetchone()
    return row["n"]


def insert_question(
    conn: sqlite3.Connection,
    bank_id: int,
    type: str,
    content: str,
    options: dict[str, str],
    correct_answer: str,
    explanation: str,
) -> int:
    """Insert a question and return its id."""
    cursor = conn.execute(
        """
        INSERT INTO questions (bank_id, type, content, options, correct_answer, explanation)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (bank_id, type, content, _dump_options(options), correct_answer, explanation),
    )
    return cursor.lastrowid


def update_question(
    conn: sqlite3.Connection,
    question_id: int,
    type: str,
    options: dict[str, str],
    correct_answer: str,
    explanation: str,
) -> None:
    """Update a question in place, keeping its id (and progress link)."""
    conn.execute(
        """
        UPDATE questions SET type = ?, options = ?, correct_answer = ?, explanation = ?
        WHERE id = ?
        """,
        (type, _dump_options(options), correct_answer, explanation, question_id),
    )


def delete_questions(conn: sqlite3.Connection, question_ids: list[int]) -> int:
    """Delete questions by id. Returns the number deleted."""
    if not question_ids:
        return 0
    placeholders = ",".join("?" for _ in question_ids)
    cursor = conn.execute(
        f"DELETE FROM questions WHERE id IN ({placeholders})", question_ids
    )
    return cursor.rowcount


def _dump_options(options: dict[str, str]) -> str:
    return json.dumps(options, ensure_ascii=False, sort_keys=True)


def _row_to_bank(row) -> BankRecord:
    """Convert database row to BankRecord."""
    return BankRecord(
        id=row["id"],
        name=row["name"],
        description=row["description"] or "",
        source_id=row["source_id"],
        remote_id=row["remote_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_question(row) -> QuestionRecord:
    """Convert database row to QuestionRecord."""
    try:
        options = json.loads(row["options"]) if row["options"] else {}
    except json.JSONDecodeError:
        options = {}
    return QuestionRecord(
        id=row["id"],
        bank_id=row["bank_id"],
        type=row["type"],
        content=row["content"],
        options=options if isinstance(options, dict) else {},
        correct_answer=row["correct_answer"] or "",
        explanation=row["explanation"] or "",
    )
