"""
Shared validation helpers for both ledgers.

Two kinds of checks live here:

- Domain checks (percentage bound, positive registration inputs, benefit
  formula) whose failures become ledger error codes.
- Typing-contract checks (``require_u64``, ``require_asset_name``) for inputs
  outside the native domain of a field. Those are caller programming errors
  and raise ``ValueError`` before any state is touched.
"""

from __future__ import annotations

U64_MAX = 2**64 - 1
MAX_ALLOCATION_PERCENTAGE = 100
MAX_ASSET_NAME_BYTES = 64
BASIS_POINTS_DIVISOR = 10_000

# Ids and sequence numbers are stored as signed 64-bit integers; nothing above
# this bound can ever have been assigned.
MAX_STORED_KEY = 2**63 - 1


def require_u64(name: str, value: int) -> int:
    """Return ``value`` if it is an unsigned 64-bit integer, else raise ValueError."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0 or value > U64_MAX:
        raise ValueError(f"{name} must be within [0, {U64_MAX}], got {value}")
    return value


def require_asset_name(name: str) -> str:
    if not isinstance(name, str):
        raise ValueError(f"asset class name must be a string, got {type(name).__name__}")
    size = len(name.encode("utf-8"))
    if size > MAX_ASSET_NAME_BYTES:
        raise ValueError(
            f"asset class name is {size} bytes, limit is {MAX_ASSET_NAME_BYTES}"
        )
    return name


def require_identity(identity: str) -> str:
    if not isinstance(identity, str) or not identity:
        raise ValueError("identity must be a non-empty string")
    return identity


def is_valid_percentage(allocation_percentage: int) -> bool:
    return allocation_percentage <= MAX_ALLOCATION_PERCENTAGE


def is_storable_key(value: int) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= MAX_STORED_KEY


def compute_monthly_benefit(
    years_of_service: int,
    final_average_salary: int,
    benefit_factor: int,
) -> int:
    """
    Monthly benefit = floor(years * salary * factor / 10000).

    ``benefit_factor`` is in basis points (200 = 2%). The product is computed
    exactly before the truncating division.
    """
    return (years_of_service * final_average_salary * benefit_factor) // BASIS_POINTS_DIVISOR
