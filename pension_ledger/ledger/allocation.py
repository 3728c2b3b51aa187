"""
Allocation Ledger — asset classes and the fund total.

Owns a keyed set of asset classes ``{name, allocation_percentage,
current_value}`` with sequential ids, and an independently settable total
fund value. Each mutation is administrator-gated, validated before any write,
and committed in one transaction together with its journal entry.

Only each field's own bound is enforced. Percentages across classes are not
required to sum to 100, and the fund total is never cross-checked against
asset-class values; collaborators that need those guarantees enforce them
upstream (``get_allocation_total`` is provided for that reporting).
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from pension_ledger.clock import Clock, SystemClock
from pension_ledger.governance.permissions import ActionType, PermissionEngine
from pension_ledger.ledger.database import writer_lock
from pension_ledger.ledger.journal import JournalService
from pension_ledger.ledger.models import AllocationStateDB, AssetClassDB, Base
from pension_ledger.results import AllocationError, Err, LedgerResult, Ok
from pension_ledger.schema import AssetClass
from pension_ledger.validation import (
    is_storable_key,
    is_valid_percentage,
    require_asset_name,
    require_u64,
)

logger = logging.getLogger(__name__)

LEDGER_NAME = "allocation"


class AllocationLedger:
    """
    Asset Allocation Ledger.

    Usage:
        ledger = AllocationLedger(engine, PermissionEngine.single_administrator(admin))
        ledger.initialize()
        result = ledger.add_asset_class(admin, "Stocks", 60)   # Ok(0)
    """

    def __init__(
        self,
        engine: Engine,
        permissions: PermissionEngine,
        clock: Clock | None = None,
    ) -> None:
        self.engine = engine
        self.permissions = permissions
        self.clock = clock or SystemClock()
        self.SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
        self.writer_lock = writer_lock(engine)
        self.journal = JournalService(engine, LEDGER_NAME, self.clock)

    def initialize(self) -> None:
        """Create the ledger tables if they do not exist."""
        Base.metadata.create_all(self.engine)

    # ── Mutations ───────────────────────────────────────────────

    def add_asset_class(
        self, caller: str, name: str, allocation_percentage: int
    ) -> LedgerResult[int]:
        """
        Add an asset class with ``current_value = 0``.

        Returns:
            Ok(id) with the next sequential id, or Err(UNAUTHORIZED |
            INVALID_PERCENTAGE).
        """
        require_asset_name(name)
        require_u64("allocation_percentage", allocation_percentage)

        if not self._authorized(caller, ActionType.ADD_ASSET_CLASS):
            return Err(AllocationError.UNAUTHORIZED)
        if not is_valid_percentage(allocation_percentage):
            return self._reject(ActionType.ADD_ASSET_CLASS, AllocationError.INVALID_PERCENTAGE)

        with self.writer_lock, self.SessionLocal.begin() as session:
            state = self._state_for_update(session)
            new_id = state.asset_class_counter
            record = AssetClass(
                id=new_id,
                name=name,
                allocation_percentage=allocation_percentage,
                current_value=0,
            )
            session.add(AssetClassDB(**record.model_dump()))
            state.asset_class_counter = new_id + 1

            self.journal.append(
                session,
                action=ActionType.ADD_ASSET_CLASS.value,
                caller=caller,
                content=record.model_dump(),
            )

        logger.info(
            "Asset class added: id=%d name=%s pct=%d", new_id, name, allocation_percentage
        )
        return Ok(new_id)

    def update_asset_allocation(
        self, caller: str, asset_class_id: int, allocation_percentage: int
    ) -> LedgerResult[bool]:
        """Replace only the allocation percentage of an existing asset class."""
        require_u64("asset_class_id", asset_class_id)
        require_u64("allocation_percentage", allocation_percentage)

        if not self._authorized(caller, ActionType.UPDATE_ASSET_ALLOCATION):
            return Err(AllocationError.UNAUTHORIZED)
        if not is_valid_percentage(allocation_percentage):
            return self._reject(
                ActionType.UPDATE_ASSET_ALLOCATION, AllocationError.INVALID_PERCENTAGE
            )

        with self.writer_lock, self.SessionLocal.begin() as session:
            row = _lookup(session, asset_class_id)
            if row is None:
                return self._reject(
                    ActionType.UPDATE_ASSET_ALLOCATION, AllocationError.ASSET_CLASS_NOT_FOUND
                )

            updated = _to_asset_class(row).with_allocation(allocation_percentage)
            _apply(row, updated)

            self.journal.append(
                session,
                action=ActionType.UPDATE_ASSET_ALLOCATION.value,
                caller=caller,
                content={"id": asset_class_id, "allocation_percentage": allocation_percentage},
            )

        logger.info(
            "Asset allocation updated: id=%d pct=%d", asset_class_id, allocation_percentage
        )
        return Ok(True)

    def update_asset_value(
        self, caller: str, asset_class_id: int, new_value: int
    ) -> LedgerResult[bool]:
        """Replace only the current value of an existing asset class."""
        require_u64("asset_class_id", asset_class_id)
        require_u64("new_value", new_value)

        if not self._authorized(caller, ActionType.UPDATE_ASSET_VALUE):
            return Err(AllocationError.UNAUTHORIZED)

        with self.writer_lock, self.SessionLocal.begin() as session:
            row = _lookup(session, asset_class_id)
            if row is None:
                return self._reject(
                    ActionType.UPDATE_ASSET_VALUE, AllocationError.ASSET_CLASS_NOT_FOUND
                )

            updated = _to_asset_class(row).with_value(new_value)
            _apply(row, updated)

            self.journal.append(
                session,
                action=ActionType.UPDATE_ASSET_VALUE.value,
                caller=caller,
                content={"id": asset_class_id, "current_value": new_value},
            )

        logger.info("Asset value updated: id=%d value=%d", asset_class_id, new_value)
        return Ok(True)

    def update_total_fund_value(self, caller: str, new_value: int) -> LedgerResult[bool]:
        """Overwrite the fund total. Not derived from or checked against asset values."""
        require_u64("new_value", new_value)

        if not self._authorized(caller, ActionType.UPDATE_TOTAL_FUND_VALUE):
            return Err(AllocationError.UNAUTHORIZED)

        with self.writer_lock, self.SessionLocal.begin() as session:
            state = self._state_for_update(session)
            state.total_fund_value = new_value

            self.journal.append(
                session,
                action=ActionType.UPDATE_TOTAL_FUND_VALUE.value,
                caller=caller,
                content={"total_fund_value": new_value},
            )

        logger.info("Total fund value updated: value=%d", new_value)
        return Ok(True)

    # ── Queries ─────────────────────────────────────────────────

    def get_asset_class(self, asset_class_id: int) -> AssetClass | None:
        """Return the asset class, or None if no class has this id."""
        with self.SessionLocal() as session:
            row = _lookup(session, asset_class_id)
            return _to_asset_class(row) if row is not None else None

    def get_asset_class_count(self) -> int:
        with self.SessionLocal() as session:
            state = session.get(AllocationStateDB, 1)
            return state.asset_class_counter if state is not None else 0

    def get_total_fund_value(self) -> int:
        with self.SessionLocal() as session:
            state = session.get(AllocationStateDB, 1)
            return state.total_fund_value if state is not None else 0

    def list_asset_classes(self) -> list[AssetClass]:
        """All asset classes, ordered by id."""
        with self.SessionLocal() as session:
            rows = session.execute(
                select(AssetClassDB).order_by(AssetClassDB.id.asc())
            ).scalars().all()
            return [_to_asset_class(row) for row in rows]

    def get_allocation_total(self) -> int:
        """Sum of allocation percentages. Reported only; never enforced."""
        return sum(a.allocation_percentage for a in self.list_asset_classes())

    # ── Reconciliation ──────────────────────────────────────────

    def verify_state(self) -> tuple[bool, str]:
        """
        Replay the journal from empty state and compare it with stored state.

        Catches direct edits of the state tables and a truncated journal
        tail, neither of which ``verify_chain`` can see.

        Returns:
            Tuple of (is_consistent, message).
        """
        with self.writer_lock:
            entries = self.journal.get_chain()
            stored_assets = {asset.id: asset for asset in self.list_asset_classes()}
            stored_count = self.get_asset_class_count()
            stored_total = self.get_total_fund_value()

        expected: dict[int, AssetClass] = {}
        expected_total = 0
        for entry in entries:
            content = entry.content
            try:
                if entry.action == ActionType.ADD_ASSET_CLASS.value:
                    asset = AssetClass.model_validate(content)
                    if asset.id != len(expected):
                        return False, (
                            f"Journal sequence {entry.sequence_number} adds asset class "
                            f"{asset.id}, expected {len(expected)}"
                        )
                    expected[asset.id] = asset
                elif entry.action == ActionType.UPDATE_ASSET_ALLOCATION.value:
                    asset_id = content["id"]
                    if asset_id not in expected:
                        return False, _unknown_asset(entry.sequence_number, asset_id)
                    expected[asset_id] = expected[asset_id].with_allocation(
                        content["allocation_percentage"]
                    )
                elif entry.action == ActionType.UPDATE_ASSET_VALUE.value:
                    asset_id = content["id"]
                    if asset_id not in expected:
                        return False, _unknown_asset(entry.sequence_number, asset_id)
                    expected[asset_id] = expected[asset_id].with_value(content["current_value"])
                elif entry.action == ActionType.UPDATE_TOTAL_FUND_VALUE.value:
                    expected_total = require_u64("total_fund_value", content["total_fund_value"])
                else:
                    return False, (
                        f"Unknown action {entry.action!r} at journal sequence "
                        f"{entry.sequence_number}"
                    )
            except (KeyError, TypeError, ValueError) as exc:
                return False, f"Malformed journal content at sequence {entry.sequence_number}: {exc}"

        if stored_count != len(expected):
            return False, (
                f"Asset class counter is {stored_count}, "
                f"journal records {len(expected)} additions"
            )
        if set(stored_assets) != set(expected):
            return False, (
                f"Stored asset class ids {sorted(stored_assets)} differ from "
                f"journal ids {sorted(expected)}"
            )
        for asset_id, asset in expected.items():
            if stored_assets[asset_id] != asset:
                return False, f"Asset class {asset_id} differs from its journal history"
        if stored_total != expected_total:
            return False, (
                f"Total fund value is {stored_total}, journal records {expected_total}"
            )

        return True, f"{LEDGER_NAME} state matches {len(entries)} journal entries"

    # ── Internal ────────────────────────────────────────────────

    def _authorized(self, caller: str, action: ActionType) -> bool:
        return self.permissions.check_permission(caller, action).is_allowed

    @staticmethod
    def _reject(action: ActionType, code: AllocationError) -> Err:
        logger.warning("Allocation ledger rejected %s: %s", action.value, code.name)
        return Err(code)

    @staticmethod
    def _state_for_update(session: Session) -> AllocationStateDB:
        state = session.get(AllocationStateDB, 1)
        if state is None:
            state = AllocationStateDB(id=1, asset_class_counter=0, total_fund_value=0)
            session.add(state)
            session.flush()
        return state


def _lookup(session: Session, asset_class_id: int) -> AssetClassDB | None:
    if not is_storable_key(asset_class_id):
        return None
    return session.get(AssetClassDB, asset_class_id)


def _unknown_asset(sequence_number: int, asset_id: int) -> str:
    return f"Journal sequence {sequence_number} updates unknown asset class {asset_id}"


def _to_asset_class(row: AssetClassDB) -> AssetClass:
    return AssetClass(
        id=row.id,
        name=row.name,
        allocation_percentage=row.allocation_percentage,
        current_value=row.current_value,
    )


def _apply(row: AssetClassDB, record: AssetClass) -> None:
    row.name = record.name
    row.allocation_percentage = record.allocation_percentage
    row.current_value = record.current_value
