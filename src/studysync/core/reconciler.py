"""Reconciliation engine.

Converges the local banks of one source to a freshly normalized remote
snapshot while keeping question ids stable, so learning progress keyed by
question id survives re-syncs.

Rules:
- Banks are matched by (source, remote key); banks whose key disappeared
  are deleted, unless the snapshot came from a partial retrieval
- Questions are matched by exact content inside their bank. Each local
  question can be consumed once, so duplicates pair up in encounter order
- Matched questions are updated in place; unmatched remote questions are
  inserted; local questions left unmatched are deleted
- A bank's updated_at moves only when its name or its questions change
- Each bank is written in its own transaction
"""

from __future__ import annotations

import sqlite3
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Literal

import structlog

from studysync.core.format_normalizer import NormalizedBank, NormalizedQuestion
from studysync.db.banks_repository import (
    QuestionRecord,
    delete_banks,
    delete_questions,
    find_bank,
    insert_bank,
    insert_question,
    list_banks_for_source,
    list_questions,
    touch_bank,
    update_bank_metadata,
    update_question,
)
from studysync.db.database import get_db

logger = structlog.get_logger(__name__)

BankStatus = Literal["created", "updated", "unchanged"]


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class BankOutcome:
    """What reconciliation did to one bank."""

    remote_key: str
    bank_id: int
    name: str
    status: BankStatus
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    unchanged: int = 0


@dataclass
class ReconcileStats:
    """Aggregated result of reconciling one source."""

    banks: list[BankOutcome] = field(default_factory=list)
    banks_deleted: int = 0
    rows_skipped: int = 0
    deletion_skipped: bool = False

    @property
    def questions_inserted(self) -> int:
        return sum(b.inserted for b in self.banks)

    @property
    def questions_updated(self) -> int:
        return sum(b.updated for b in self.banks)

    @property
    def questions_deleted(self) -> int:
        return sum(b.deleted for b in self.banks)

    @property
    def questions_unchanged(self) -> int:
        return sum(b.unchanged for b in self.banks)

    @property
    def banks_created(self) -> int:
        return sum(1 for b in self.banks if b.status == "created")

    @property
    def writes(self) -> int:
        """Row inserts, updates and deletes performed (metadata excluded)."""
        return (
            self.questions_inserted
            + self.questions_updated
            + self.questions_deleted
            + self.banks_created
            + self.banks_deleted
        )

    def to_dict(self) -> dict:
        return {
            "banks": len(self.banks),
            "banks_created": self.banks_created,
            "banks_deleted": self.banks_deleted,
            "questions_inserted": self.questions_inserted,
            "questions_updated": self.questions_updated,
            "questions_deleted": self.questions_deleted,
            "questions_unchanged": self.questions_unchanged,
            "rows_skipped": self.rows_skipped,
            "deletion_skipped": self.deletion_skipped,
        }


# =============================================================================
# QUESTION LEVEL
# =============================================================================


def _differs(record: QuestionRecord, question: NormalizedQuestion) -> bool:
    return (
        record.type != question.type
        or record.options != question.options
        or record.correct_answer != question.correct_answer
        or record.explanation != question.explanation
    )


def reconcile_questions(
    conn: sqlite3.Connection,
    bank_id: int,
    remote_questions: list[NormalizedQuestion],
    outcome: BankOutcome,
) -> int:
    """Content-addressed diff of one bank's questions.

    Returns:
        Number of remote questions skipped for missing content
    """
    pool: dict[str, deque[QuestionRecord]] = defaultdict(deque)
    for record in list_questions(bank_id, conn):
        pool[record.content].append(record)

    skipped = 0
    for question in remote_questions:
        if not question.content:
            skipped += 1
            logger.info("reconcile.question_skipped", bank_id=bank_id, reason="missing_content")
            continue

        candidates = pool.get(question.content)
        if candidates:
            record = candidates.popleft()
            if _differs(record, question):
                update_question(
                    conn,
                    record.id,
                    type=question.type,
                    options=question.options,
                    correct_answer=question.correct_answer,
                    explanation=question.explanation,
                )
                outcome.updated += 1
            else:
                outcome.unchanged += 1
        else:
            insert_question(
                conn,
                bank_id,
                type=question.type,
                content=question.content,
                options=question.options,
                correct_answer=question.correct_answer,
                explanation=question.explanation,
            )
            outcome.inserted += 1

    stale_ids = [record.id for records in pool.values() for record in records]
    outcome.deleted += delete_questions(conn, stale_ids)
    return skipped


# =============================================================================
# BANK LEVEL
# =============================================================================


def reconcile_bank(
    conn: sqlite3.Connection, source_id: int, bank: NormalizedBank
) -> tuple[BankOutcome, int]:
    """Find-or-create one bank and reconcile its questions.

    Returns:
        (outcome, skipped question count)
    """
    existing = find_bank(conn, source_id, bank.remote_key)

    if existing is None:
        bank_id = insert_bank(
            conn,
            name=bank.name,
            description=bank.description,
            source_id=source_id,
            remote_id=bank.remote_key,
        )
        outcome = BankOutcome(bank.remote_key, bank_id, bank.name, "created")
        skipped = reconcile_questions(conn, bank_id, bank.questions, outcome)
        logger.debug("reconcile.bank_created", bank_id=bank_id, remote_key=bank.remote_key)
        return outcome, skipped

    outcome = BankOutcome(bank.remote_key, existing.id, bank.name, "unchanged")
    renamed = existing.name != bank.name
    if renamed or existing.description != bank.description:
        update_bank_metadata(conn, existing.id, bank.name, bank.description)

    skipped = reconcile_questions(conn, existing.id, bank.questions, outcome)

    if renamed or outcome.inserted or outcome.updated or outcome.deleted:
        touch_bank(conn, existing.id)
        outcome.status = "updated"
        logger.debug(
            "reconcile.bank_updated",
            bank_id=existing.id,
            renamed=renamed,
            inserted=outcome.inserted,
            updated=outcome.updated,
            deleted=outcome.deleted,
        )

    return outcome, skipped


def reconcile_source(
    source_id: int,
    banks: list[NormalizedBank],
    partial: bool = False,
    protect_shrink: bool = False,
) -> ReconcileStats:
    """Converge the local banks of a source to a remote snapshot.

    Args:
        source_id: Owning source
        banks: Normalized remote banks (remote keys unique)
        partial: Snapshot came from a degraded retrieval; never delete banks
        protect_shrink: Also skip bank deletion when the remote bank count
            dropped below the local one

    Returns:
        ReconcileStats with per-bank outcomes
    """
    stats = ReconcileStats()

    if not banks:
        # An empty snapshot would wipe the source; treat it as no information
        logger.warning("reconcile.empty_snapshot", source_id=source_id)
        stats.deletion_skipped = True
        return stats

    with get_db() as conn:
        previous_count = len(list_banks_for_source(source_id, conn))

    for bank in banks:
        with get_db() as conn:
            outcome, skipped = reconcile_bank(conn, source_id, bank)
        stats.banks.append(outcome)
        stats.rows_skipped += skipped

    remote_keys = {bank.remote_key for bank in banks}

    with get_db() as conn:
        local_banks = list_banks_for_source(source_id, conn)
        stale = [b for b in local_banks if b.remote_id not in remote_keys]

        if stale and partial:
            stats.deletion_skipped = True
            logger.info(
                "reconcile.deletion_skipped",
                source_id=source_id,
                reason="partial_retrieval",
                stale=len(stale),
            )
        elif stale and protect_shrink and len(banks) < previous_count:
            stats.deletion_skipped = True
            logger.info(
                "reconcile.deletion_skipped",
                source_id=source_id,
                reason="bank_count_shrank",
                stale=len(stale),
            )
        elif stale:
            stats.banks_deleted = delete_banks(conn, [b.id for b in stale])
            logger.info(
                "reconcile.banks_deleted",
                source_id=source_id,
                remote_keys=[b.remote_id for b in stale],
            )

    logger.info("reconcile.done", source_id=source_id, **stats.to_dict())
    return stats
