"""
Permission Enforcement — administrator gate for every ledger mutation.

Every mutating ledger call passes through the PermissionEngine before any
state is read for validation. The engine recognises a fixed set of
administrator identities injected at construction; the core runs with
exactly one. There is no rotation mechanism: role changes belong to the
external identity collaborator, which would build a new engine.

Queries are never gated.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class ActionType(str, enum.Enum):
    """Mutating operations subject to the administrator gate."""

    # Allocation Ledger
    ADD_ASSET_CLASS = "add_asset_class"
    UPDATE_ASSET_ALLOCATION = "update_asset_allocation"
    UPDATE_ASSET_VALUE = "update_asset_value"
    UPDATE_TOTAL_FUND_VALUE = "update_total_fund_value"

    # Benefit Ledger
    REGISTER_RETIREE = "register_retiree"
    UPDATE_RETIREE_STATUS = "update_retiree_status"
    RECORD_BENEFIT_PAYMENT = "record_benefit_payment"


class PermissionDecision(str, enum.Enum):
    """Result of a permission check."""

    AUTHORIZED = "authorized"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class PermissionCheckResult:
    """Result of checking a caller against the administrator set."""

    decision: PermissionDecision
    action_type: ActionType
    caller: str
    reason: str

    @property
    def is_allowed(self) -> bool:
        return self.decision == PermissionDecision.AUTHORIZED


class PermissionEngine:
    """
    Administrator gate shared by both ledgers.

    Usage:
        engine = PermissionEngine.single_administrator(settings.administrator_id)
        result = engine.check_permission(caller, ActionType.ADD_ASSET_CLASS)
        if not result.is_allowed:
            ...
    """

    def __init__(self, administrators: frozenset[str] | set[str] | list[str]) -> None:
        admins = frozenset(administrators)
        if not admins:
            raise ValueError("PermissionEngine requires at least one administrator identity")
        if any(not isinstance(a, str) or not a for a in admins):
            raise ValueError("Administrator identities must be non-empty strings")
        self._administrators = admins

    @classmethod
    def single_administrator(cls, administrator_id: str) -> PermissionEngine:
        return cls(frozenset({administrator_id}))

    @property
    def administrators(self) -> frozenset[str]:
        return self._administrators

    def is_administrator(self, caller: str | None) -> bool:
        return caller is not None and caller in self._administrators

    def check_permission(self, caller: str | None, action_type: ActionType) -> PermissionCheckResult:
        """
        Check whether ``caller`` may perform ``action_type``.

        Args:
            caller: Identity of the caller as authenticated by the host.
            action_type: The mutating operation being attempted.

        Returns:
            PermissionCheckResult with decision and reasoning.
        """
        if self.is_administrator(caller):
            return PermissionCheckResult(
                decision=PermissionDecision.AUTHORIZED,
                action_type=action_type,
                caller=caller or "",
                reason=f"{caller} is the fund administrator",
            )

        logger.warning("Permission denied: caller=%s action=%s", caller, action_type.value)
        return PermissionCheckResult(
            decision=PermissionDecision.FORBIDDEN,
            action_type=action_type,
            caller=caller or "",
            reason=(
                f"Action {action_type.value} requires the fund administrator; "
                f"caller {caller!r} is not authorized"
            ),
        )
