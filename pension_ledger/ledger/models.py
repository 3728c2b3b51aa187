"""
Ledger Store — SQLAlchemy models for both pension ledgers and their journal.

Tables:
- asset_classes / allocation_state  — Allocation Ledger
- retiree_benefits / payment_counters / benefit_payments — Benefit Ledger
- journal_entries — per-ledger hash chain of committed mutations

Unsigned 64-bit quantities use ``UInt64``, which stores decimal text so the
whole ``[0, 2**64 - 1]`` range round-trips on every backend (SQLite's
INTEGER is signed 64-bit).
"""

from __future__ import annotations

from datetime import timezone
from uuid import uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator


class UInt64(TypeDecorator):
    """Unsigned 64-bit integer stored as decimal text."""

    impl = String(20)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(int(value))
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return int(value)
        return None


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetime, re-attaching UTC on backends that drop it."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all ledger models."""
    pass


# ════════════════════════════════════════════════════════════════
# Allocation Ledger
# ════════════════════════════════════════════════════════════════


class AllocationStateDB(Base):
    """
    Singleton row holding the asset-class id counter and the fund total.

    ``total_fund_value`` is set independently and never derived from the
    asset-class values.
    """

    __tablename__ = "allocation_state"

    id = Column(Integer, primary_key=True, default=1)
    asset_class_counter = Column(BigInteger, nullable=False, default=0)
    total_fund_value = Column(UInt64(), nullable=False, default=0)


class AssetClassDB(Base):
    """An asset class. Rows are never deleted; ids are never reused."""

    __tablename__ = "asset_classes"

    id = Column(BigInteger, primary_key=True, autoincrement=False)
    name = Column(String(64), nullable=False)
    allocation_percentage = Column(Integer, nullable=False)
    current_value = Column(UInt64(), nullable=False, default=0)

    def __repr__(self) -> str:
        return (
            f"<AssetClass id={self.id} name={self.name!r} "
            f"pct={self.allocation_percentage} value={self.current_value}>"
        )


# ════════════════════════════════════════════════════════════════
# Benefit Ledger
# ════════════════════════════════════════════════════════════════


class RetireeBenefitDB(Base):
    """Entitlement state per retiree. Created once; only is_active changes."""

    __tablename__ = "retiree_benefits"

    identity = Column(String(128), primary_key=True)
    years_of_service = Column(UInt64(), nullable=False)
    final_average_salary = Column(UInt64(), nullable=False)
    benefit_factor = Column(UInt64(), nullable=False, comment="Basis points")
    monthly_benefit = Column(UInt64(), nullable=False)
    retirement_date = Column(UTCDateTime(), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (Index("ix_retiree_active", "is_active"),)

    def __repr__(self) -> str:
        return (
            f"<RetireeBenefit identity={self.identity} "
            f"monthly={self.monthly_benefit} active={self.is_active}>"
        )


class PaymentCounterDB(Base):
    """Next payment sequence number for a retiree."""

    __tablename__ = "payment_counters"

    identity = Column(
        String(128), ForeignKey("retiree_benefits.identity"), primary_key=True,
    )
    next_sequence_number = Column(BigInteger, nullable=False, default=0)


class BenefitPaymentDB(Base):
    """
    A recorded benefit payment — APPEND-ONLY.

    Keyed by (identity, sequence_number); sequence numbers are dense from 0.
    """

    __tablename__ = "benefit_payments"

    identity = Column(
        String(128), ForeignKey("retiree_benefits.identity"), primary_key=True,
    )
    sequence_number = Column(BigInteger, primary_key=True, autoincrement=False)
    amount = Column(UInt64(), nullable=False)
    payment_date = Column(UTCDateTime(), nullable=False)


# ════════════════════════════════════════════════════════════════
# Journal
# ════════════════════════════════════════════════════════════════


class JournalEntryDB(Base):
    """
    One committed ledger mutation — APPEND-ONLY.

    Each entry stores SHA-256(previous_hash || canonical_json(fields)), chained
    per ledger, so any retroactive edit to the journal is detectable.
    """

    __tablename__ = "journal_entries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    ledger = Column(String(32), nullable=False)
    sequence_number = Column(BigInteger, nullable=False)
    previous_hash = Column(String(64), nullable=False)
    entry_hash = Column(String(64), nullable=False, unique=True)
    timestamp = Column(UTCDateTime(), nullable=False)
    action = Column(String(50), nullable=False)
    caller = Column(String(128), nullable=False)
    content = Column(JSON, nullable=False)

    __table_args__ = (
        UniqueConstraint("ledger", "sequence_number", name="uq_journal_ledger_seq"),
        Index("ix_journal_ledger_action", "ledger", "action"),
    )

    def __repr__(self) -> str:
        return (
            f"<JournalEntry ledger={self.ledger} seq={self.sequence_number} "
            f"action={self.action} hash={self.entry_hash[:12]}...>"
        )
