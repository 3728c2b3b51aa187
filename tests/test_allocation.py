"""
Tests for the Allocation Ledger.

Validates:
- Sequential asset-class ids and count
- Field-isolated updates
- Percentage bound and idempotent rejection
- Administrator gate on every mutation
- Concurrent writers receive distinct sequential ids
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from pension_ledger.clock import DeterministicClock
from pension_ledger.governance.permissions import PermissionEngine
from pension_ledger.ledger.allocation import AllocationLedger
from pension_ledger.ledger.benefits import BenefitLedger
from pension_ledger.ledger.database import create_ledger_engine, initialize_schema
from pension_ledger.results import AllocationError, Err, Ok
from pension_ledger.schema import AssetClass

ADMIN = "fund-administrator"
OUTSIDER = "member-42"


class TestAssetClasses:
    """Asset class creation and queries."""

    def setup_method(self):
        self.engine = create_ledger_engine("sqlite://")
        self.ledger = AllocationLedger(
            self.engine,
            PermissionEngine.single_administrator(ADMIN),
            clock=DeterministicClock(),
        )
        self.ledger.initialize()

    def teardown_method(self):
        self.engine.dispose()

    def test_add_asset_class(self):
        result = self.ledger.add_asset_class(ADMIN, "Stocks", 60)
        assert result == Ok(0)

        asset = self.ledger.get_asset_class(0)
        assert asset == AssetClass(id=0, name="Stocks", allocation_percentage=60, current_value=0)

    def test_ids_are_sequential(self):
        names = ["Stocks", "Bonds", "Real Estate", "Cash", "Commodities"]
        ids = [self.ledger.add_asset_class(ADMIN, name, 10).unwrap() for name in names]
        assert ids == [0, 1, 2, 3, 4]
        assert self.ledger.get_asset_class_count() == len(names)

    def test_count_tracks_successful_additions_only(self):
        assert self.ledger.get_asset_class_count() == 0
        self.ledger.add_asset_class(ADMIN, "Stocks", 60)
        self.ledger.add_asset_class(ADMIN, "Junk", 101)
        self.ledger.add_asset_class(OUTSIDER, "Bonds", 30)
        assert self.ledger.get_asset_class_count() == 1

        result = self.ledger.add_asset_class(ADMIN, "Bonds", 30)
        assert result == Ok(1), "A rejected addition must not consume an id"

    def test_unknown_id_is_not_found_not_error(self):
        assert self.ledger.get_asset_class(0) is None
        assert self.ledger.get_asset_class(2**64 - 1) is None

    def test_boundary_percentages_accepted(self):
        assert self.ledger.add_asset_class(ADMIN, "Nothing", 0) == Ok(0)
        assert self.ledger.add_asset_class(ADMIN, "Everything", 100) == Ok(1)

    def test_reject_percentage_over_100(self):
        result = self.ledger.add_asset_class(ADMIN, "Stocks", 101)
        assert isinstance(result, Err)
        assert result.code is AllocationError.INVALID_PERCENTAGE
        assert self.ledger.get_asset_class_count() == 0

    def test_percentage_sum_not_enforced(self):
        """Totals above 100% are accepted; coherence is the caller's job."""
        self.ledger.add_asset_class(ADMIN, "Stocks", 80)
        self.ledger.add_asset_class(ADMIN, "Bonds", 80)
        assert self.ledger.get_allocation_total() == 160

    def test_list_asset_classes_ordered(self):
        self.ledger.add_asset_class(ADMIN, "Stocks", 60)
        self.ledger.add_asset_class(ADMIN, "Bonds", 30)
        assert [a.name for a in self.ledger.list_asset_classes()] == ["Stocks", "Bonds"]

    def test_name_byte_limit(self):
        assert self.ledger.add_asset_class(ADMIN, "x" * 64, 10) == Ok(0)
        with pytest.raises(ValueError):
            self.ledger.add_asset_class(ADMIN, "x" * 65, 10)
        with pytest.raises(ValueError):
            # 33 two-byte characters = 66 bytes
            self.ledger.add_asset_class(ADMIN, "é" * 33, 10)
        assert self.ledger.get_asset_class_count() == 1

    def test_negative_percentage_is_contract_violation(self):
        with pytest.raises(ValueError):
            self.ledger.add_asset_class(ADMIN, "Stocks", -1)


class TestAssetUpdates:
    """Field-level updates of existing asset classes."""

    def setup_method(self):
        self.engine = create_ledger_engine("sqlite://")
        self.ledger = AllocationLedger(self.engine, PermissionEngine.single_administrator(ADMIN))
        self.ledger.initialize()
        self.ledger.add_asset_class(ADMIN, "Stocks", 60)
        self.ledger.update_asset_value(ADMIN, 0, 1_000_000)

    def teardown_method(self):
        self.engine.dispose()

    def test_update_allocation_changes_only_percentage(self):
        assert self.ledger.update_asset_allocation(ADMIN, 0, 70) == Ok(True)
        asset = self.ledger.get_asset_class(0)
        assert asset.allocation_percentage == 70
        assert asset.name == "Stocks"
        assert asset.current_value == 1_000_000

    def test_update_value_changes_only_value(self):
        assert self.ledger.update_asset_value(ADMIN, 0, 2_500_000) == Ok(True)
        asset = self.ledger.get_asset_class(0)
        assert asset.current_value == 2_500_000
        assert asset.name == "Stocks"
        assert asset.allocation_percentage == 60

    def test_update_value_full_u64_range(self):
        assert self.ledger.update_asset_value(ADMIN, 0, 2**64 - 1) == Ok(True)
        assert self.ledger.get_asset_class(0).current_value == 2**64 - 1

    def test_update_allocation_rejects_over_100(self):
        before = self.ledger.get_asset_class(0)
        result = self.ledger.update_asset_allocation(ADMIN, 0, 150)
        assert result.code is AllocationError.INVALID_PERCENTAGE
        assert self.ledger.get_asset_class(0) == before

    def test_update_allocation_unknown_id(self):
        result = self.ledger.update_asset_allocation(ADMIN, 7, 50)
        assert result.code is AllocationError.ASSET_CLASS_NOT_FOUND

    def test_invalid_percentage_checked_before_existence(self):
        result = self.ledger.update_asset_allocation(ADMIN, 7, 150)
        assert result.code is AllocationError.INVALID_PERCENTAGE

    def test_update_value_unknown_id(self):
        result = self.ledger.update_asset_value(ADMIN, 7, 5)
        assert result.code is AllocationError.ASSET_CLASS_NOT_FOUND
        result = self.ledger.update_asset_value(ADMIN, 2**63, 5)
        assert result.code is AllocationError.ASSET_CLASS_NOT_FOUND

    def test_update_total_fund_value(self):
        assert self.ledger.get_total_fund_value() == 0
        assert self.ledger.update_total_fund_value(ADMIN, 5_000_000) == Ok(True)
        assert self.ledger.get_total_fund_value() == 5_000_000

    def test_total_not_derived_from_asset_values(self):
        self.ledger.update_total_fund_value(ADMIN, 42)
        self.ledger.update_asset_value(ADMIN, 0, 9_999)
        assert self.ledger.get_total_fund_value() == 42


class TestAllocationAuthorization:
    """Unauthorized callers never succeed and never change state."""

    def setup_method(self):
        self.engine = create_ledger_engine("sqlite://")
        self.ledger = AllocationLedger(self.engine, PermissionEngine.single_administrator(ADMIN))
        self.ledger.initialize()
        self.ledger.add_asset_class(ADMIN, "Stocks", 60)

    def teardown_method(self):
        self.engine.dispose()

    def _snapshot(self):
        return (
            self.ledger.list_asset_classes(),
            self.ledger.get_asset_class_count(),
            self.ledger.get_total_fund_value(),
            self.ledger.journal.get_entry_count(),
        )

    @pytest.mark.parametrize("caller", [OUTSIDER, None, "", "FUND-ADMINISTRATOR"])
    def test_every_mutation_rejected(self, caller):
        before = self._snapshot()
        results = [
            self.ledger.add_asset_class(caller, "Bonds", 30),
            self.ledger.update_asset_allocation(caller, 0, 10),
            self.ledger.update_asset_value(caller, 0, 10),
            self.ledger.update_total_fund_value(caller, 10),
        ]
        for result in results:
            assert isinstance(result, Err)
            assert result.code is AllocationError.UNAUTHORIZED
        assert self._snapshot() == before

    def test_unauthorized_checked_before_validation(self):
        result = self.ledger.add_asset_class(OUTSIDER, "Bonds", 500)
        assert result.code is AllocationError.UNAUTHORIZED
        result = self.ledger.update_asset_value(OUTSIDER, 99, 1)
        assert result.code is AllocationError.UNAUTHORIZED

    def test_administrator_injected_per_instance(self):
        other = AllocationLedger(self.engine, PermissionEngine.single_administrator(OUTSIDER))
        assert other.update_total_fund_value(OUTSIDER, 7) == Ok(True)
        assert self.ledger.update_total_fund_value(OUTSIDER, 8).code is AllocationError.UNAUTHORIZED
        assert self.ledger.get_total_fund_value() == 7


class TestConcurrentWriters:
    """Mutations from many threads are serialised per engine."""

    WORKERS = 8

    def test_parallel_additions_get_sequential_ids(self, tmp_path):
        engine = create_ledger_engine(f"sqlite:///{tmp_path / 'fund.db'}")
        initialize_schema(engine)
        ledger = AllocationLedger(engine, PermissionEngine.single_administrator(ADMIN))
        barrier = threading.Barrier(self.WORKERS)

        def add(i):
            barrier.wait()
            return ledger.add_asset_class(ADMIN, f"Class {i}", 1)

        with ThreadPoolExecutor(max_workers=self.WORKERS) as pool:
            results = list(pool.map(add, range(self.WORKERS)))

        assert sorted(result.unwrap() for result in results) == list(range(self.WORKERS))
        assert ledger.get_asset_class_count() == self.WORKERS
        assert ledger.journal.verify_chain()[:2] == (True, self.WORKERS)
        assert ledger.verify_state()[0]
        engine.dispose()

    def test_ledgers_on_one_engine_share_writer_lock(self):
        engine = create_ledger_engine("sqlite://")
        permissions = PermissionEngine.single_administrator(ADMIN)
        allocation = AllocationLedger(engine, permissions)
        benefits = BenefitLedger(engine, permissions)
        assert allocation.writer_lock is benefits.writer_lock

        other = create_ledger_engine("sqlite://")
        assert AllocationLedger(other, permissions).writer_lock is not allocation.writer_lock
        engine.dispose()
        other.dispose()
