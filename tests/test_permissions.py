"""
Tests for the Permission Engine.

Validates:
- Administrator authorization
- Denial for every other identity
- Construction-time injection of the administrator set
"""

from __future__ import annotations

import pytest

from pension_ledger.governance.permissions import (
    ActionType,
    PermissionDecision,
    PermissionEngine,
)


class TestPermissionEngine:
    """Test the administrator gate."""

    def setup_method(self):
        self.engine = PermissionEngine.single_administrator("fund-administrator")

    def test_administrator_authorized_for_every_action(self):
        for action in ActionType:
            result = self.engine.check_permission("fund-administrator", action)
            assert result.decision == PermissionDecision.AUTHORIZED
            assert result.is_allowed

    @pytest.mark.parametrize("caller", ["member-42", "", None, "fund-administrator "])
    def test_others_forbidden(self, caller):
        result = self.engine.check_permission(caller, ActionType.RECORD_BENEFIT_PAYMENT)
        assert result.decision == PermissionDecision.FORBIDDEN
        assert not result.is_allowed
        assert "record_benefit_payment" in result.reason

    def test_administrators_fixed_at_construction(self):
        assert self.engine.administrators == frozenset({"fund-administrator"})
        with pytest.raises(AttributeError):
            self.engine.administrators = frozenset({"someone-else"})

    def test_multiple_administrators(self):
        engine = PermissionEngine({"admin-a", "admin-b"})
        assert engine.is_administrator("admin-a")
        assert engine.is_administrator("admin-b")
        assert not engine.is_administrator("admin-c")

    def test_requires_an_administrator(self):
        with pytest.raises(ValueError):
            PermissionEngine(frozenset())
        with pytest.raises(ValueError):
            PermissionEngine.single_administrator("")
