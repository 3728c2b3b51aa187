"""
Benefit Ledger — retiree entitlements and the per-retiree payment log.

Per retiree the ledger holds an entitlement record (frozen monthly benefit,
toggleable ``is_active`` flag), a payment counter, and an append-only run of
payments keyed by sequence number. Lifecycle:

    Unregistered → Active ↔ Inactive

There is no closed or deceased state; records persist indefinitely.

Payment amounts are accepted as given. They are not bounded by the retiree's
``monthly_benefit``; that cross-check belongs to the disbursement
collaborator.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from pension_ledger.clock import Clock, SystemClock
from pension_ledger.governance.permissions import ActionType, PermissionEngine
from pension_ledger.ledger.database import writer_lock
from pension_ledger.ledger.journal import JournalService
from pension_ledger.ledger.models import (
    Base,
    BenefitPaymentDB,
    PaymentCounterDB,
    RetireeBenefitDB,
)
from pension_ledger.results import BenefitError, Err, LedgerResult, Ok
from pension_ledger.schema import BenefitPayment, RetireeBenefit
from pension_ledger.validation import (
    U64_MAX,
    compute_monthly_benefit,
    is_storable_key,
    require_identity,
    require_u64,
)

logger = logging.getLogger(__name__)

LEDGER_NAME = "benefits"


class BenefitLedger:
    """
    Benefit & Payment Ledger.

    Usage:
        ledger = BenefitLedger(engine, PermissionEngine.single_administrator(admin))
        ledger.initialize()
        ledger.register_retiree(admin, "retiree-1", 30, 50000, 200)   # Ok(30000)
        ledger.record_benefit_payment(admin, "retiree-1", 30000)      # Ok(0)
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

    def register_retiree(
        self,
        caller: str,
        identity: str,
        years_of_service: int,
        final_average_salary: int,
        benefit_factor: int,
    ) -> LedgerResult[int]:
        """
        Register a retiree and freeze their monthly benefit.

        monthly_benefit = floor(years_of_service * final_average_salary
                                * benefit_factor / 10000)

        Args:
            caller: Authenticated caller identity.
            identity: Retiree identity (external reference).
            years_of_service: Verified years of service, > 0.
            final_average_salary: Verified final average salary, > 0.
            benefit_factor: Accrual factor in basis points, > 0.

        Returns:
            Ok(monthly_benefit), or Err(UNAUTHORIZED | INVALID_PARAMETERS |
            ALREADY_REGISTERED).
        """
        require_identity(identity)
        require_u64("years_of_service", years_of_service)
        require_u64("final_average_salary", final_average_salary)
        require_u64("benefit_factor", benefit_factor)

        if not self._authorized(caller, ActionType.REGISTER_RETIREE):
            return Err(BenefitError.UNAUTHORIZED)
        if years_of_service <= 0 or final_average_salary <= 0 or benefit_factor <= 0:
            return self._reject(ActionType.REGISTER_RETIREE, BenefitError.INVALID_PARAMETERS)

        monthly_benefit = compute_monthly_benefit(
            years_of_service, final_average_salary, benefit_factor
        )
        if monthly_benefit > U64_MAX:
            return self._reject(ActionType.REGISTER_RETIREE, BenefitError.INVALID_PARAMETERS)

        with self.writer_lock, self.SessionLocal.begin() as session:
            if session.get(RetireeBenefitDB, identity) is not None:
                return self._reject(
                    ActionType.REGISTER_RETIREE, BenefitError.ALREADY_REGISTERED
                )

            record = RetireeBenefit(
                identity=identity,
                years_of_service=years_of_service,
                final_average_salary=final_average_salary,
                benefit_factor=benefit_factor,
                monthly_benefit=monthly_benefit,
                retirement_date=self.clock.now(),
                is_active=True,
            )
            session.add(RetireeBenefitDB(**record.model_dump()))
            session.add(PaymentCounterDB(identity=identity, next_sequence_number=0))

            self.journal.append(
                session,
                action=ActionType.REGISTER_RETIREE.value,
                caller=caller,
                content=record.model_dump(mode="json"),
            )

        logger.info(
            "Retiree registered: identity=%s years=%d factor=%d monthly_benefit=%d",
            identity, years_of_service, benefit_factor, monthly_benefit,
        )
        return Ok(monthly_benefit)

    def update_retiree_status(
        self, caller: str, identity: str, is_active: bool
    ) -> LedgerResult[bool]:
        """Overwrite only the ``is_active`` flag of an existing retiree."""
        if not isinstance(is_active, bool):
            raise ValueError(f"is_active must be a bool, got {type(is_active).__name__}")

        if not self._authorized(caller, ActionType.UPDATE_RETIREE_STATUS):
            return Err(BenefitError.UNAUTHORIZED)

        with self.writer_lock, self.SessionLocal.begin() as session:
            row = session.get(RetireeBenefitDB, identity)
            if row is None:
                return self._reject(
                    ActionType.UPDATE_RETIREE_STATUS, BenefitError.RETIREE_NOT_FOUND
                )

            updated = _to_retiree_benefit(row).with_status(is_active)
            row.is_active = updated.is_active

            self.journal.append(
                session,
                action=ActionType.UPDATE_RETIREE_STATUS.value,
                caller=caller,
                content={"identity": identity, "is_active": is_active},
            )

        logger.info("Retiree status updated: identity=%s active=%s", identity, is_active)
        return Ok(True)

    def record_benefit_payment(
        self, caller: str, identity: str, amount: int
    ) -> LedgerResult[int]:
        """
        Append a payment for an active retiree.

        Returns:
            Ok(sequence_number) of the new payment, or Err(UNAUTHORIZED |
            RETIREE_NOT_FOUND | INVALID_PARAMETERS when inactive).
        """
        require_u64("amount", amount)

        if not self._authorized(caller, ActionType.RECORD_BENEFIT_PAYMENT):
            return Err(BenefitError.UNAUTHORIZED)

        with self.writer_lock, self.SessionLocal.begin() as session:
            retiree = session.get(RetireeBenefitDB, identity)
            if retiree is None:
                return self._reject(
                    ActionType.RECORD_BENEFIT_PAYMENT, BenefitError.RETIREE_NOT_FOUND
                )
            if not retiree.is_active:
                return self._reject(
                    ActionType.RECORD_BENEFIT_PAYMENT, BenefitError.INVALID_PARAMETERS
                )

            counter = session.get(PaymentCounterDB, identity)
            if counter is None:
                counter = PaymentCounterDB(identity=identity, next_sequence_number=0)
                session.add(counter)
            sequence_number = counter.next_sequence_number

            payment = BenefitPayment(
                identity=identity,
                sequence_number=sequence_number,
                amount=amount,
                payment_date=self.clock.now(),
            )
            session.add(BenefitPaymentDB(**payment.model_dump()))
            counter.next_sequence_number = sequence_number + 1

            self.journal.append(
                session,
                action=ActionType.RECORD_BENEFIT_PAYMENT.value,
                caller=caller,
                content=payment.model_dump(mode="json"),
            )

        logger.info(
            "Benefit payment recorded: identity=%s seq=%d amount=%d",
            identity, sequence_number, amount,
        )
        return Ok(sequence_number)

    # ── Queries ─────────────────────────────────────────────────

    def get_retiree_benefits(self, identity: str) -> RetireeBenefit | None:
        with self.SessionLocal() as session:
            row = session.get(RetireeBenefitDB, identity)
            return _to_retiree_benefit(row) if row is not None else None

    def get_benefit_payment(self, identity: str, sequence_number: int) -> BenefitPayment | None:
        if not is_storable_key(sequence_number):
            return None
        with self.SessionLocal() as session:
            row = session.get(BenefitPaymentDB, (identity, sequence_number))
            return _to_benefit_payment(row) if row is not None else None

    def get_payment_count(self, identity: str) -> int:
        """Number of payments recorded for ``identity``; 0 for unknown identities."""
        with self.SessionLocal() as session:
            return self._payment_count(session, identity)

    def calculate_total_payments(self, identity: str) -> int:
        """
        Exact sum of every payment amount recorded for ``identity``.

        Sequence numbers are dense from 0, so this is a full scan of
        ``[0, count)``. Returns 0 for unknown identities.
        """
        with self.SessionLocal() as session:
            count = self._payment_count(session, identity)
            total = 0
            for payment in self._payments(session, identity, count):
                total += payment.amount
            return total

    def get_payment_history(self, identity: str) -> list[BenefitPayment]:
        """All payments for ``identity`` in sequence order."""
        with self.SessionLocal() as session:
            count = self._payment_count(session, identity)
            return [_to_benefit_payment(row) for row in self._payments(session, identity, count)]

    def get_retiree_count(self, active_only: bool = False) -> int:
        with self.SessionLocal() as session:
            stmt = select(func.count()).select_from(RetireeBenefitDB)
            if active_only:
                stmt = stmt.where(RetireeBenefitDB.is_active.is_(True))
            return session.execute(stmt).scalar() or 0

    # ── Reconciliation ──────────────────────────────────────────

    def verify_state(self) -> tuple[bool, str]:
        """
        Replay the journal from empty state and compare it with stored state.

        Every retiree record, payment counter and payment row must be exactly
        what the journal's history produces. This catches direct edits of the
        state tables and a truncated journal tail.

        Returns:
            Tuple of (is_consistent, message).
        """
        with self.writer_lock:
            entries = self.journal.get_chain()
            stored_retirees, stored_counters, stored_payments = self._stored_state()

        retirees: dict[str, RetireeBenefit] = {}
        payments: dict[str, list[BenefitPayment]] = {}
        for entry in entries:
            content = entry.content
            try:
                if entry.action == ActionType.REGISTER_RETIREE.value:
                    retiree = RetireeBenefit.model_validate(content)
                    if retiree.identity in retirees:
                        return False, (
                            f"Journal sequence {entry.sequence_number} registers "
                            f"{retiree.identity} twice"
                        )
                    retirees[retiree.identity] = retiree
                    payments[retiree.identity] = []
                elif entry.action == ActionType.UPDATE_RETIREE_STATUS.value:
                    identity = content["identity"]
                    if identity not in retirees:
                        return False, _unknown_retiree(entry.sequence_number, identity)
                    retirees[identity] = retirees[identity].with_status(content["is_active"])
                elif entry.action == ActionType.RECORD_BENEFIT_PAYMENT.value:
                    payment = BenefitPayment.model_validate(content)
                    if payment.identity not in retirees:
                        return False, _unknown_retiree(entry.sequence_number, payment.identity)
                    history = payments[payment.identity]
                    if payment.sequence_number != len(history):
                        return False, (
                            f"Journal sequence {entry.sequence_number} records payment "
                            f"{payment.sequence_number} for {payment.identity}, "
                            f"expected {len(history)}"
                        )
                    history.append(payment)
                else:
                    return False, (
                        f"Unknown action {entry.action!r} at journal sequence "
                        f"{entry.sequence_number}"
                    )
            except (KeyError, TypeError, ValueError) as exc:
                return False, f"Malformed journal content at sequence {entry.sequence_number}: {exc}"

        if set(stored_retirees) != set(retirees):
            return False, (
                f"Stored retirees {sorted(stored_retirees)} differ from "
                f"journal retirees {sorted(retirees)}"
            )
        orphans = (set(stored_counters) | set(stored_payments)) - set(retirees)
        if orphans:
            return False, f"Payment data for unregistered identities: {sorted(orphans)}"

        for identity, retiree in retirees.items():
            if stored_retirees[identity] != retiree:
                return False, f"Retiree {identity} differs from its journal history"
            history = payments[identity]
            if stored_counters.get(identity, 0) != len(history):
                return False, (
                    f"Payment counter of {identity} is {stored_counters.get(identity, 0)}, "
                    f"journal records {len(history)} payments"
                )
            if stored_payments.get(identity, []) != history:
                return False, f"Payments of {identity} differ from their journal history"

        return True, f"{LEDGER_NAME} state matches {len(entries)} journal entries"

    # ── Internal ────────────────────────────────────────────────

    def _authorized(self, caller: str, action: ActionType) -> bool:
        return self.permissions.check_permission(caller, action).is_allowed

    @staticmethod
    def _reject(action: ActionType, code: BenefitError) -> Err:
        logger.warning("Benefit ledger rejected %s: %s", action.value, code.name)
        return Err(code)

    @staticmethod
    def _payment_count(session: Session, identity: str) -> int:
        counter = session.get(PaymentCounterDB, identity)
        return counter.next_sequence_number if counter is not None else 0

    def _stored_state(
        self,
    ) -> tuple[dict[str, RetireeBenefit], dict[str, int], dict[str, list[BenefitPayment]]]:
        with self.SessionLocal() as session:
            retirees = {
                row.identity: _to_retiree_benefit(row)
                for row in session.execute(select(RetireeBenefitDB)).scalars()
            }
            counters = {
                row.identity: row.next_sequence_number
                for row in session.execute(select(PaymentCounterDB)).scalars()
            }
            payments: dict[str, list[BenefitPayment]] = {}
            rows = session.execute(
                select(BenefitPaymentDB).order_by(
                    BenefitPaymentDB.identity.asc(), BenefitPaymentDB.sequence_number.asc()
                )
            ).scalars()
            for row in rows:
                payments.setdefault(row.identity, []).append(_to_benefit_payment(row))
        return retirees, counters, payments

    @staticmethod
    def _payments(session: Session, identity: str, count: int) -> list[BenefitPaymentDB]:
        return list(
            session.execute(
                select(BenefitPaymentDB)
                .where(
                    BenefitPaymentDB.identity == identity,
                    BenefitPaymentDB.sequence_number < count,
                )
                .order_by(BenefitPaymentDB.sequence_number.asc())
            ).scalars().all()
        )


def _unknown_retiree(sequence_number: int, identity: str) -> str:
    return f"Journal sequence {sequence_number} refers to unregistered retiree {identity}"


def _to_retiree_benefit(row: RetireeBenefitDB) -> RetireeBenefit:
    return RetireeBenefit(
        identity=row.identity,
        years_of_service=row.years_of_service,
        final_average_salary=row.final_average_salary,
        benefit_factor=row.benefit_factor,
        monthly_benefit=row.monthly_benefit,
        retirement_date=row.retirement_date,
        is_active=row.is_active,
    )


def _to_benefit_payment(row: BenefitPaymentDB) -> BenefitPayment:
    return BenefitPayment(
        identity=row.identity,
        sequence_number=row.sequence_number,
        amount=row.amount,
        payment_date=row.payment_date,
    )
