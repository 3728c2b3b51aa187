"""
Pension Ledger — HTTP call surface for both ledgers.

FastAPI application exposing every Allocation and Benefit ledger operation.
The caller identity is taken from the ``X-Caller-Identity`` header, as
authenticated by the fronting identity collaborator.

Responses:
- success: ``{"ok": value}`` (``{"ok": null}`` for absent records)
- ledger error: ``{"error": name, "code": int}`` with 403 / 404 / 409 / 422
"""

from __future__ import annotations

import logging
from typing import Any

import structlog
from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from pension_ledger.config import PensionSettings, settings as default_settings
from pension_ledger.governance.permissions import PermissionEngine
from pension_ledger.ledger.allocation import AllocationLedger
from pension_ledger.ledger.benefits import BenefitLedger
from pension_ledger.ledger.database import create_ledger_engine, initialize_schema
from pension_ledger.logging_config import configure_logging
from pension_ledger.results import Err, Ok
from pension_ledger.validation import U64_MAX

logger = logging.getLogger(__name__)

CALLER_HEADER = "X-Caller-Identity"

# Keyed by code name: numeric values overlap between the two ledgers.
_STATUS_BY_ERROR = {
    "UNAUTHORIZED": 403,
    "ASSET_CLASS_NOT_FOUND": 404,
    "RETIREE_NOT_FOUND": 404,
    "ALREADY_REGISTERED": 409,
    "INVALID_PERCENTAGE": 422,
    "INVALID_PARAMETERS": 422,
}


# ── Pydantic request models ────────────────────────────────────


class AssetClassRequest(BaseModel):
    name: str
    allocation_percentage: int = Field(ge=0, le=U64_MAX)


class AllocationRequest(BaseModel):
    allocation_percentage: int = Field(ge=0, le=U64_MAX)


class ValueRequest(BaseModel):
    value: int = Field(ge=0, le=U64_MAX)


class RetireeRequest(BaseModel):
    identity: str
    years_of_service: int = Field(ge=0, le=U64_MAX)
    final_average_salary: int = Field(ge=0, le=U64_MAX)
    benefit_factor: int = Field(ge=0, le=U64_MAX)


class StatusRequest(BaseModel):
    is_active: bool


class PaymentRequest(BaseModel):
    amount: int = Field(ge=0, le=U64_MAX)


def _respond(result: Ok | Err) -> Any:
    if isinstance(result, Ok):
        return {"ok": result.value}
    return JSONResponse(
        status_code=_STATUS_BY_ERROR[result.code.name],
        content={"error": result.code.name, "code": int(result.code)},
    )


def _record(record: BaseModel | None) -> dict[str, Any]:
    return {"ok": record.model_dump(mode="json") if record is not None else None}


def create_app(
    allocation: AllocationLedger | None = None,
    benefits: BenefitLedger | None = None,
    config: PensionSettings | None = None,
) -> FastAPI:
    """
    Build the application.

    Ledgers may be injected (tests, embedding hosts). If only one is given, the
    other is built on the same engine, permissions and clock. If neither is
    given, both are built on the configured database with the configured
    administrator.
    """
    config = config or default_settings
    if allocation is None and benefits is None:
        engine = create_ledger_engine(config.database_url, echo=config.database_echo)
        initialize_schema(engine)
        permissions = PermissionEngine.single_administrator(config.administrator_id)
        allocation = AllocationLedger(engine, permissions)
        benefits = BenefitLedger(engine, permissions)
    elif benefits is None:
        benefits = BenefitLedger(allocation.engine, allocation.permissions, allocation.clock)
        benefits.initialize()
    elif allocation is None:
        allocation = AllocationLedger(benefits.engine, benefits.permissions, benefits.clock)
        allocation.initialize()

    app = FastAPI(
        title=config.api_title,
        description="Asset allocation and benefit payment ledgers of the pension fund",
        version="0.1.0",
    )
    app.state.allocation = allocation
    app.state.benefits = benefits

    structlog.get_logger().info(
        "pension_ledger.api.created",
        administrators=len(allocation.permissions.administrators),
    )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.warning("Rejected malformed request to %s: %s", request.url.path, exc)
        return JSONResponse(status_code=422, content={"error": "MALFORMED_INPUT", "detail": str(exc)})

    # ── Routes: Allocation Ledger ──────────────────────────────

    @app.post("/allocation/asset-classes")
    def add_asset_class(
        body: AssetClassRequest,
        caller: str | None = Header(default=None, alias=CALLER_HEADER),
    ):
        return _respond(allocation.add_asset_class(caller, body.name, body.allocation_percentage))

    @app.put("/allocation/asset-classes/{asset_class_id}/allocation")
    def update_asset_allocation(
        asset_class_id: int,
        body: AllocationRequest,
        caller: str | None = Header(default=None, alias=CALLER_HEADER),
    ):
        return _respond(
            allocation.update_asset_allocation(caller, asset_class_id, body.allocation_percentage)
        )

    @app.put("/allocation/asset-classes/{asset_class_id}/value")
    def update_asset_value(
        asset_class_id: int,
        body: ValueRequest,
        caller: str | None = Header(default=None, alias=CALLER_HEADER),
    ):
        return _respond(allocation.update_asset_value(caller, asset_class_id, body.value))

    @app.put("/allocation/total-fund-value")
    def update_total_fund_value(
        body: ValueRequest,
        caller: str | None = Header(default=None, alias=CALLER_HEADER),
    ):
        return _respond(allocation.update_total_fund_value(caller, body.value))

    @app.get("/allocation/asset-classes")
    def list_asset_classes():
        return {"ok": [a.model_dump(mode="json") for a in allocation.list_asset_classes()]}

    @app.get("/allocation/asset-classes/{asset_class_id}")
    def get_asset_class(asset_class_id: int):
        return _record(allocation.get_asset_class(asset_class_id))

    @app.get("/allocation/asset-class-count")
    def get_asset_class_count():
        return {"ok": allocation.get_asset_class_count()}

    @app.get("/allocation/total-fund-value")
    def get_total_fund_value():
        return {"ok": allocation.get_total_fund_value()}

    # ── Routes: Benefit Ledger ─────────────────────────────────

    @app.post("/benefits/retirees")
    def register_retiree(
        body: RetireeRequest,
        caller: str | None = Header(default=None, alias=CALLER_HEADER),
    ):
        return _respond(
            benefits.register_retiree(
                caller,
                body.identity,
                body.years_of_service,
                body.final_average_salary,
                body.benefit_factor,
            )
        )

    @app.put("/benefits/retirees/{identity}/status")
    def update_retiree_status(
        identity: str,
        body: StatusRequest,
        caller: str | None = Header(default=None, alias=CALLER_HEADER),
    ):
        return _respond(benefits.update_retiree_status(caller, identity, body.is_active))

    @app.post("/benefits/retirees/{identity}/payments")
    def record_benefit_payment(
        identity: str,
        body: PaymentRequest,
        caller: str | None = Header(default=None, alias=CALLER_HEADER),
    ):
        return _respond(benefits.record_benefit_payment(caller, identity, body.amount))

    @app.get("/benefits/retirees/{identity}")
    def get_retiree_benefits(identity: str):
        return _record(benefits.get_retiree_benefits(identity))

    @app.get("/benefits/retirees/{identity}/payments")
    def get_payment_history(identity: str):
        return {"ok": [p.model_dump(mode="json") for p in benefits.get_payment_history(identity)]}

    @app.get("/benefits/retirees/{identity}/payments/{sequence_number}")
    def get_benefit_payment(identity: str, sequence_number: int):
        return _record(benefits.get_benefit_payment(identity, sequence_number))

    @app.get("/benefits/retirees/{identity}/payment-count")
    def get_payment_count(identity: str):
        return {"ok": benefits.get_payment_count(identity)}

    @app.get("/benefits/retirees/{identity}/total-payments")
    def calculate_total_payments(identity: str):
        return {"ok": benefits.calculate_total_payments(identity)}

    # ── Routes: Journal ────────────────────────────────────────

    @app.get("/journal/{ledger}/verify")
    def verify_journal(ledger: str):
        ledgers = {"allocation": allocation, "benefits": benefits}
        target = ledgers.get(ledger)
        if target is None:
            return JSONResponse(status_code=404, content={"error": "UNKNOWN_LEDGER"})
        is_valid, entries_verified, message = target.journal.verify_chain()
        is_consistent, state_message = target.verify_state()
        return {
            "ok": {
                "valid": is_valid,
                "entries_verified": entries_verified,
                "message": message,
                "state_consistent": is_consistent,
                "state_message": state_message,
            }
        }

    return app


def main() -> None:
    import uvicorn

    configure_logging()
    uvicorn.run(create_app(), host=default_settings.api_host, port=default_settings.api_port)


if __name__ == "__main__":
    main()
