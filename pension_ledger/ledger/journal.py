"""
Ledger Journal — Append-only, hash-chained record of committed mutations.

Both pension ledgers write one journal entry per successful mutation, inside
the same transaction as the state change. Rejected operations write nothing.
Each ledger has its own chain, anchored at GENESIS_HASH:

    entry_hash = SHA-256(previous_hash || canonical_json(entry_fields))

so a retroactive edit to a journal row, or a row removed from inside the
chain, is detectable by ``verify_chain()``. Nothing anchors the chain head;
a truncated tail is caught by each ledger's ``verify_state()``, which replays
the journal and compares it with the stored state.
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from pension_ledger.clock import Clock, SystemClock
from pension_ledger.ledger.models import JournalEntryDB
from pension_ledger.schema import JournalEntry

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64  # The "previous hash" for the first entry of each chain


class JournalIntegrityError(Exception):
    """Raised when the journal chain head cannot be extended safely."""
    pass


class JournalService:
    """
    Hash-chained journal for one ledger.

    ``append`` participates in the caller's session so the journal entry and
    the state change commit together. Queries and verification open their own
    session.
    """

    def __init__(self, engine: Engine, ledger: str, clock: Clock | None = None) -> None:
        self.ledger = ledger
        self.clock = clock or SystemClock()
        self.SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)

    def append(
        self,
        session: Session,
        action: str,
        caller: str,
        content: dict[str, Any],
    ) -> JournalEntryDB:
        """
        Append a journal entry within an open transaction.

        Args:
            session: The ledger's active session; the entry commits with it.
            action: Name of the mutating operation.
            caller: Identity that performed it.
            content: Fields written by the operation.

        Raises:
            JournalIntegrityError: If the chain head no longer matches its hash.
        """
        last_entry = session.execute(
            select(JournalEntryDB)
            .where(JournalEntryDB.ledger == self.ledger)
            .order_by(JournalEntryDB.sequence_number.desc())
            .limit(1)
        ).scalar_one_or_none()

        if last_entry is None:
            new_seq = 0
            previous_hash = GENESIS_HASH
        else:
            head_hash = self.compute_hash(
                ledger=last_entry.ledger,
                sequence_number=last_entry.sequence_number,
                previous_hash=last_entry.previous_hash,
                timestamp=last_entry.timestamp,
                action=last_entry.action,
                caller=last_entry.caller,
                content=last_entry.content,
            )
            if last_entry.entry_hash != head_hash:
                raise JournalIntegrityError(
                    f"Cannot append to {self.ledger} journal: head entry at sequence "
                    f"{last_entry.sequence_number} does not match its stored hash"
                )
            new_seq = last_entry.sequence_number + 1
            previous_hash = last_entry.entry_hash

        timestamp = self.clock.now()
        entry_hash = self.compute_hash(
            ledger=self.ledger,
            sequence_number=new_seq,
            previous_hash=previous_hash,
            timestamp=timestamp,
            action=action,
            caller=caller,
            content=content,
        )

        entry = JournalEntryDB(
            id=str(uuid4()),
            ledger=self.ledger,
            sequence_number=new_seq,
            previous_hash=previous_hash,
            entry_hash=entry_hash,
            timestamp=timestamp,
            action=action,
            caller=caller,
            content=content,
        )
        session.add(entry)
        session.flush()

        logger.debug(
            "Journal entry appended: ledger=%s seq=%d action=%s hash=%s",
            self.ledger, new_seq, action, entry_hash[:16],
        )
        return entry

    def verify_chain(self) -> tuple[bool, int, str]:
        """
        Verify the integrity of this ledger's journal.

        Walks every entry from sequence 0 forward, recomputing each hash and
        checking linkage to the prior entry. An empty journal is valid.

        Returns:
            Tuple of (is_valid, entries_verified, message).
        """
        with self.SessionLocal() as session:
            entries = session.execute(
                select(JournalEntryDB)
                .where(JournalEntryDB.ledger == self.ledger)
                .order_by(JournalEntryDB.sequence_number.asc())
            ).scalars().all()

        if not entries:
            return True, 0, f"{self.ledger} journal is empty"

        for i, entry in enumerate(entries):
            if entry.sequence_number != i:
                return (
                    False, i,
                    f"Sequence gap at position {i}: found sequence {entry.sequence_number}"
                )

            expected_previous = GENESIS_HASH if i == 0 else entries[i - 1].entry_hash
            if entry.previous_hash != expected_previous:
                return (
                    False, i,
                    f"Chain break at sequence {entry.sequence_number}: "
                    f"previous_hash does not match prior entry's hash"
                )

            expected_hash = self.compute_hash(
                ledger=entry.ledger,
                sequence_number=entry.sequence_number,
                previous_hash=entry.previous_hash,
                timestamp=entry.timestamp,
                action=entry.action,
                caller=entry.caller,
                content=entry.content,
            )
            if entry.entry_hash != expected_hash:
                return (
                    False, i,
                    f"Hash mismatch at sequence {entry.sequence_number}: "
                    f"stored={entry.entry_hash[:16]}... "
                    f"computed={expected_hash[:16]}..."
                )

        return (
            True, len(entries),
            f"{self.ledger} journal verified: {len(entries)} entries, integrity intact"
        )

    def get_entries(self, limit: int = 100) -> list[JournalEntry]:
        """Retrieve the most recent entries, newest first."""
        with self.SessionLocal() as session:
            rows = session.execute(
                select(JournalEntryDB)
                .where(JournalEntryDB.ledger == self.ledger)
                .order_by(JournalEntryDB.sequence_number.desc())
                .limit(limit)
            ).scalars().all()
            return [_to_journal_entry(row) for row in rows]

    def get_chain(self) -> list[JournalEntry]:
        """Every entry of this ledger, oldest first."""
        with self.SessionLocal() as session:
            rows = session.execute(
                select(JournalEntryDB)
                .where(JournalEntryDB.ledger == self.ledger)
                .order_by(JournalEntryDB.sequence_number.asc())
            ).scalars().all()
            return [_to_journal_entry(row) for row in rows]

    def get_entry_count(self) -> int:
        with self.SessionLocal() as session:
            result = session.execute(
                select(func.count())
                .select_from(JournalEntryDB)
                .where(JournalEntryDB.ledger == self.ledger)
            )
            return result.scalar() or 0

    # ── Internal ────────────────────────────────────────────────

    @staticmethod
    def compute_hash(
        ledger: str,
        sequence_number: int,
        previous_hash: str,
        timestamp: datetime,
        action: str,
        caller: str,
        content: dict[str, Any],
    ) -> str:
        """Hash = SHA-256(previous_hash || canonical_json(entry_fields))."""
        hashable = {
            "ledger": ledger,
            "sequence_number": sequence_number,
            "previous_hash": previous_hash,
            "timestamp": timestamp.isoformat(),
            "action": action,
            "caller": caller,
            "content": content,
        }
        canonical = json.dumps(hashable, sort_keys=True, default=str)
        return hashlib.sha256(
            (previous_hash + canonical).encode("utf-8")
        ).hexdigest()


def _to_journal_entry(row: JournalEntryDB) -> JournalEntry:
    return JournalEntry(
        ledger=row.ledger,
        sequence_number=row.sequence_number,
        previous_hash=row.previous_hash,
        entry_hash=row.entry_hash,
        timestamp=row.timestamp,
        action=row.action,
        caller=row.caller,
        content=dict(row.content),
    )
