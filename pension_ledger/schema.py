"""
Ledger Schema — Pydantic record types for both pension ledgers.

Records are immutable. Mutations go through field-level update functions
(``with_allocation``, ``with_value``, ``with_status``) that return a copy
with exactly one field replaced, so the "only field X changes" rule of each
update operation is carried by the type rather than by convention.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


# ════════════════════════════════════════════════════════════════
# Allocation Ledger
# ════════════════════════════════════════════════════════════════


class AssetClass(BaseModel):
    """A named bucket of fund capital with a target allocation and observed value."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(ge=0, description="Sequential id, assigned from 0, never reused")
    name: str = Field(description="Display name, at most 64 UTF-8 bytes")
    allocation_percentage: int = Field(ge=0, le=100)
    current_value: int = Field(default=0, ge=0)

    def with_allocation(self, allocation_percentage: int) -> AssetClass:
        return self.model_copy(update={"allocation_percentage": allocation_percentage})

    def with_value(self, current_value: int) -> AssetClass:
        return self.model_copy(update={"current_value": current_value})


# ════════════════════════════════════════════════════════════════
# Benefit Ledger
# ════════════════════════════════════════════════════════════════


class RetireeBenefit(BaseModel):
    """
    Entitlement state of one retiree.

    ``monthly_benefit`` is derived once at registration and frozen; the three
    source fields have no update path. Only ``is_active`` may change.
    """

    model_config = ConfigDict(frozen=True)

    identity: str
    years_of_service: int = Field(gt=0)
    final_average_salary: int = Field(gt=0)
    benefit_factor: int = Field(gt=0, description="Basis points (200 = 2%)")
    monthly_benefit: int = Field(ge=0)
    retirement_date: datetime
    is_active: bool = True

    def with_status(self, is_active: bool) -> RetireeBenefit:
        return self.model_copy(update={"is_active": is_active})


class BenefitPayment(BaseModel):
    """A single recorded payment. Immutable once written."""

    model_config = ConfigDict(frozen=True)

    identity: str
    sequence_number: int = Field(ge=0)
    amount: int = Field(ge=0)
    payment_date: datetime


# ════════════════════════════════════════════════════════════════
# Audit Journal
# ════════════════════════════════════════════════════════════════


class JournalEntry(BaseModel):
    """Read-only view of one hash-chained journal entry."""

    model_config = ConfigDict(frozen=True)

    ledger: str
    sequence_number: int
    previous_hash: str
    entry_hash: str
    timestamp: datetime
    action: str
    caller: str
    content: dict
