"""
Ledger results — errors as values.

Every ledger operation returns either ``Ok(value)`` or ``Err(code)``. Error
codes form a small closed enumeration per ledger; the numeric values match
the codes published by the original fund contracts so that downstream
collaborators can keep branching on them.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


class AllocationError(enum.IntEnum):
    """Error codes returned by the Allocation Ledger."""

    UNAUTHORIZED = 100
    INVALID_PERCENTAGE = 101
    ASSET_CLASS_NOT_FOUND = 102


class BenefitError(enum.IntEnum):
    """Error codes returned by the Benefit Ledger."""

    UNAUTHORIZED = 100
    RETIREE_NOT_FOUND = 101
    ALREADY_REGISTERED = 102
    INVALID_PARAMETERS = 103


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful ledger result carrying the operation's value."""

    value: T

    @property
    def is_ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    """Rejected ledger result. State is unchanged whenever an Err is returned."""

    code: AllocationError | BenefitError

    @property
    def is_ok(self) -> bool:
        return False

    def unwrap(self) -> Any:
        raise ValueError(f"Called unwrap() on a rejected result: {self.code.name}")


LedgerResult = Union[Ok[T], Err]
