"""FastAPI-based web interface for machine load distribution."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi import FastAPI, Form, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from ..allocation import CommandResult
from ..domain import Lot, Machine
from ..errors import AllocationError, InvalidStateTransitionError
from ..logging_config import configure_logging, get_logger
from ..repository import RecordNotFoundError
from ..services import AllocationService, AllocationSession, SaveOutcome, SaveStatus
from ..storage import MillDatabase
from ..validation import ValidationReport

logger = get_logger("web")


def create_app(database_path: str = "mill.sqlite3", *, seed_demo_data: bool = True) -> FastAPI:
    configure_logging()
    database = MillDatabase(database_path)
    service = AllocationService(
        lot_repo=database.lots,
        machine_repo=database.machines,
        roll_assignment_repo=database.roll_assignments,
    )
    if seed_demo_data:
        ensure_demo_data(service)

    app = FastAPI(title="Machine Load Distribution")
    app.state.allocation_service = service
    app.state.database = database
    app.state.sessions = {}

    @app.on_event("shutdown")
    async def shutdown_event() -> None:  # pragma: no cover - framework hook
        database.close()

    @app.exception_handler(RecordNotFoundError)
    async def not_found(request: Request, exc: RecordNotFoundError):
        return JSONResponse({"code": "NOT_FOUND", "message": str(exc)}, status_code=404)

    @app.exception_handler(AllocationError)
    async def allocation_error(request: Request, exc: AllocationError):
        status = 409 if isinstance(exc, InvalidStateTransitionError) else 422
        return JSONResponse(jsonable_encoder(exc.to_dict()), status_code=status)

    @app.get("/lots")
    async def lot_overview(request: Request):
        service: AllocationService = request.app.state.allocation_service
        lots = sorted(service.lots.list(), key=lambda lot: lot.allotment_code)
        return [lot_to_dict(lot) for lot in lots]

    @app.get("/machines")
    async def machine_overview(request: Request):
        service: AllocationService = request.app.state.allocation_service
        return [machine_to_dict(machine) for machine in service.machines.list()]

    @app.get("/lots/{lot_id}/available-machines")
    async def available_machines(lot_id: str, request: Request):
        service: AllocationService = request.app.state.allocation_service
        return [machine_to_dict(machine) for machine in service.available_machines(lot_id)]

    @app.get("/lots/{lot_id}/machines/{machine_id}/counter")
    async def machine_counter(lot_id: str, machine_id: str, request: Request):
        service: AllocationService = request.app.state.allocation_service
        return {"counter": service.knitting_counter(lot_id, machine_id)}

    @app.post("/lots/{lot_id}/sessions", status_code=201)
    async def open_session(lot_id: str, request: Request):
        service: AllocationService = request.app.state.allocation_service
        session = service.open_session(lot_id)
        session_id = str(uuid4())
        request.app.state.sessions[session_id] = session
        return {"session_id": session_id, "snapshot": snapshot_to_dict(session)}

    @app.get("/sessions/{session_id}")
    async def show_session(session_id: str, request: Request):
        session = get_session(request, session_id)
        return snapshot_to_dict(session)

    @app.get("/sessions/{session_id}/available-machines")
    async def session_available_machines(session_id: str, request: Request):
        session = get_session(request, session_id)
        return [machine_to_dict(machine) for machine in session.available_machines()]

    @app.delete("/sessions/{session_id}", status_code=204)
    async def discard_session(session_id: str, request: Request):
        get_session(request, session_id)
        del request.app.state.sessions[session_id]
        logger.debug("Session discarded", extra={"session_id": session_id})

    @app.post("/sessions/{session_id}/machines")
    async def add_machine(
        session_id: str,
        request: Request,
        machine_id: str = Form(...),
        initial_rolls: float = Form(0),
    ):
        session = get_session(request, session_id)
        return command_response(session, session.add_machine(machine_id, initial_rolls))

    @app.post("/sessions/{session_id}/machines/{machine_id}/remove")
    async def remove_machine(session_id: str, machine_id: str, request: Request):
        session = get_session(request, session_id)
        return command_response(session, session.remove_machine(machine_id))

    @app.post("/sessions/{session_id}/machines/{machine_id}/rolls")
    async def set_rolls(
        session_id: str,
        machine_id: str,
        request: Request,
        rolls: Optional[float] = Form(None),
        weight: Optional[float] = Form(None),
        step: Optional[float] = Form(None),
    ):
        session = get_session(request, session_id)
        if rolls is not None:
            result = session.set_roll_count(machine_id, rolls)
        elif weight is not None:
            result = session.set_weight(machine_id, weight)
        elif step is not None and step < 0:
            result = session.decrement_rolls(machine_id, -step)
        else:
            result = session.increment_rolls(machine_id, step or 1)
        return command_response(session, result)

    @app.post("/sessions/{session_id}/refresh-floor")
    async def refresh_floor(session_id: str, request: Request):
        session = get_session(request, session_id)
        session.refresh_floor()
        return snapshot_to_dict(session)

    @app.post("/sessions/{session_id}/validate")
    async def validate(session_id: str, request: Request):
        session = get_session(request, session_id)
        report = session.validate()
        return JSONResponse(
            jsonable_encoder(report_to_dict(report)),
            status_code=200 if report.ok else 422,
        )

    @app.post("/sessions/{session_id}/save")
    async def save(session_id: str, request: Request):
        session = get_session(request, session_id)
        outcome = session.save()
        status_code = {
            SaveStatus.COMMITTED: 200,
            SaveStatus.REJECTED: 422,
            SaveStatus.FAILED: 409,
        }[outcome.status]
        payload = outcome_to_dict(outcome)
        payload["snapshot"] = snapshot_to_dict(session)
        if outcome.ok:
            del request.app.state.sessions[session_id]
        return JSONResponse(jsonable_encoder(payload), status_code=status_code)

    return app


def get_session(request: Request, session_id: str) -> AllocationSession:
    try:
        return request.app.state.sessions[session_id]
    except KeyError as exc:
        raise RecordNotFoundError(f"Session {session_id!r} not found") from exc


def command_response(session: AllocationSession, result: CommandResult) -> JSONResponse:
    if result.error is not None:
        payload = {"error": result.error.to_dict(), "snapshot": snapshot_to_dict(session)}
        return JSONResponse(jsonable_encoder(payload), status_code=422)
    return JSONResponse(jsonable_encoder({"snapshot": snapshot_to_dict(session)}))


def snapshot_to_dict(session: AllocationSession) -> Dict[str, Any]:
    return jsonable_encoder(asdict(session.snapshot()))


def report_to_dict(report: ValidationReport) -> Dict[str, Any]:
    return {"ok": report.ok, "errors": [error.to_dict() for error in report.errors]}


def outcome_to_dict(outcome: SaveOutcome) -> Dict[str, Any]:
    return {
        "status": outcome.status.value,
        "errors": [error.to_dict() for error in outcome.errors],
        "cause": outcome.cause.to_dict() if outcome.cause is not None else None,
    }


def machine_to_dict(machine: Machine) -> Dict[str, Any]:
    return jsonable_encoder(asdict(machine))


def lot_to_dict(lot: Lot) -> Dict[str, Any]:
    payload = {
        "id": lot.id,
        "allotment_code": lot.allotment_code,
        "actual_roll_quantity": lot.actual_roll_quantity,
        "diameter": lot.diameter,
        "gauge": lot.gauge,
        "yarn_count": lot.yarn_count,
        "stitch_length": lot.stitch_length,
        "fabric": lot.fabric,
        "machines": [
            {
                "allocation_id": allocation.id,
                "machine_id": allocation.machine_id,
                "machine_name": allocation.machine_name,
                "rolls": allocation.rolls,
                "weight": allocation.weight,
                "estimated_production_days": allocation.estimated_production_days,
            }
            for allocation in lot.machine_allocations
        ],
    }
    return jsonable_encoder(payload)


def ensure_demo_data(service: AllocationService) -> None:
    if len(service.machines) > 0:
        return

    machines: List[Machine] = [
        service.register_machine(
            "Mayer & Cie Relanit 3.2",
            dia=30,
            gg=24,
            needle=2256,
            feeder=96,
            rpm=28,
            efficiency=85,
            roll_per_kg=25,
        ),
        service.register_machine(
            "Pailung PL-XS3B",
            dia=30,
            gg=24,
            needle=2256,
            feeder=90,
            rpm=25,
            efficiency=80,
            roll_per_kg=25,
            constant=0.0009,
        ),
        service.register_machine(
            "Fukuhara V-LEC",
            dia=34,
            gg=28,
            needle=2988,
            feeder=102,
            rpm=22,
            efficiency=82,
            roll_per_kg=22.5,
        ),
    ]
    lot = service.create_lot(
        "AL-0001",
        actual_roll_quantity=120,
        diameter=30,
        gauge=24,
        yarn_count=30,
        stitch_length=2.8,
        fabric="Single Jersey 30s",
        sales_order_item="SO-1001/1",
    )
    service.plan_lot(lot.id, machines[0].id)
