"""Unit API routes: listing, registration and lifecycle commands."""
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from api.routes import get_fleet_context
from db import get_db
from fleet_core.commands import add_unit, execute_command
from fleet_core.context import FleetContext
from fleet_core.errors import InvalidTransitionError, LotConflictError, StoreUnavailableError
from fleet_core.projector import (
    charging_progress,
    days_since_last_use,
    days_until_deep_charge,
    needs_deep_charge,
    project_unit,
    time_remaining,
)
from fleet_core.transitions import UnitCommand
from fleet_core.unit_state import UnitState, UnitStatus, utcnow
from repositories.alert_repository import list_active_alerts, list_alerts_by_unit
from repositories.history_repository import list_unit_history
from repositories.unit_repository import (
    get_unit as repo_get_unit,
    list_lots as repo_list_lots,
    list_units as repo_list_units,
)
from schemas.alerts import AlertResponse
from schemas.units import (
    CheckOutRequest,
    FleetStats,
    StartChargingRequest,
    UnitCreate,
    UnitHistoryEntry,
    UnitLot,
    UnitResponse,
)

router = APIRouter(tags=["units"])


def _unit_to_response(unit: UnitState, now: datetime) -> UnitResponse:
    """Build UnitResponse from the stored snapshot projected to `now`. Charge progress reads the stored charge."""
    projected = project_unit(unit, now)
    return UnitResponse(
        **projected.to_fields(),
        charging_progress=round(charging_progress(unit, now), 1),
        time_remaining=time_remaining(unit, now),
        days_since_last_use=days_since_last_use(projected, now),
        days_until_deep_charge=days_until_deep_charge(projected, now),
        needs_deep_charge=needs_deep_charge(projected, now),
    )


def _get_unit_or_404(db: Session, unit_id: str):
    unit = repo_get_unit(db, unit_id)
    if unit is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unit not found")
    return unit


@router.get("/units", response_model=list[UnitResponse])
def list_units(db: Session = Depends(get_db)) -> list[UnitResponse]:
    """List all units, projected to now."""
    now = utcnow()
    return [_unit_to_response(UnitState.from_row(u), now) for u in repo_list_units(db)]


@router.post("/units", response_model=UnitResponse, status_code=status.HTTP_201_CREATED)
def create_unit(
    body: UnitCreate,
    db: Session = Depends(get_db),
    ctx: FleetContext = Depends(get_fleet_context),
) -> UnitResponse:
    """Register a new unit (ready at the office, fully charged)."""
    try:
        unit = add_unit(
            db,
            code=body.code,
            model=body.model,
            lot=body.lot,
            notes=body.notes,
            notifier=ctx.notifier,
        )
    except LotConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except StoreUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e
    return _unit_to_response(UnitState.from_row(unit), utcnow())


@router.get("/units/stats", response_model=FleetStats)
def unit_stats(db: Session = Depends(get_db)) -> FleetStats:
    """Counters for the dashboard. Status counts follow the projection at request time."""
    now = utcnow()
    projected = [project_unit(UnitState.from_row(u), now) for u in repo_list_units(db)]
    by_status: dict[UnitStatus, int] = {}
    for unit in projected:
        by_status[unit.status] = by_status.get(unit.status, 0) + 1
    return FleetStats(
        total=len(projected),
        charging=by_status.get(UnitStatus.CHARGING, 0),
        ready=by_status.get(UnitStatus.READY, 0),
        at_clinic=by_status.get(UnitStatus.AT_CLINIC, 0) + by_status.get(UnitStatus.IN_USE, 0),
        active_alerts=len(list_active_alerts(db)),
    )


@router.get("/units/lots", response_model=list[UnitLot])
def list_lots(db: Session = Depends(get_db)) -> list[UnitLot]:
    """Every registered lot with its unit, for uniqueness checks before registering."""
    return [UnitLot(id=uid, code=code, lot=lot) for uid, code, lot in repo_list_lots(db)]


@router.get("/units/deep-charge-due", response_model=list[UnitResponse])
def deep_charge_due(db: Session = Depends(get_db)) -> list[UnitResponse]:
    """Ready or at-clinic units idle long enough to need a deep charge."""
    now = utcnow()
    units = [UnitState.from_row(u) for u in repo_list_units(db)]
    return [_unit_to_response(u, now) for u in units if needs_deep_charge(project_unit(u, now), now)]


@router.get("/units/{unit_id}", response_model=UnitResponse)
def get_unit(unit_id: str, db: Session = Depends(get_db)) -> UnitResponse:
    """Get one unit, projected to now."""
    return _unit_to_response(UnitState.from_row(_get_unit_or_404(db, unit_id)), utcnow())


@router.get("/units/{unit_id}/history", response_model=list[UnitHistoryEntry])
def unit_history(unit_id: str, db: Session = Depends(get_db)) -> list[UnitHistoryEntry]:
    """Recorded actions on a unit, newest first."""
    _get_unit_or_404(db, unit_id)
    return [
        UnitHistoryEntry(
            id=h.id,
            unit_id=h.unit_id,
            action=h.action,
            old_value=h.old_value,
            new_value=h.new_value,
            notes=h.notes,
            created_at=h.created_at,
        )
        for h in list_unit_history(db, unit_id)
    ]


@router.get("/units/{unit_id}/alerts", response_model=list[AlertResponse])
def unit_alerts(unit_id: str, db: Session = Depends(get_db)) -> list[AlertResponse]:
    """All alerts (active and dismissed) raised for a unit."""
    _get_unit_or_404(db, unit_id)
    return [AlertResponse.model_validate(a, from_attributes=True) for a in list_alerts_by_unit(db, unit_id)]


def _run_command(
    db: Session,
    ctx: FleetContext,
    unit_id: str,
    command: UnitCommand,
    **params,
) -> UnitResponse:
    """Execute a lifecycle command and map core errors to HTTP errors."""
    now = utcnow()
    try:
        unit = execute_command(db, unit_id, command, now=now, notifier=ctx.notifier, **params)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.reason) from e
    except StoreUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e
    if unit is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unit not found")
    return _unit_to_response(UnitState.from_row(unit), now)


@router.post("/units/{unit_id}/check-in", response_model=UnitResponse)
def check_in(
    unit_id: str,
    db: Session = Depends(get_db),
    ctx: FleetContext = Depends(get_fleet_context),
) -> UnitResponse:
    """Return a unit from a clinic to the office and start charging it."""
    return _run_command(db, ctx, unit_id, UnitCommand.CHECK_IN)


@router.post("/units/{unit_id}/start-charging", response_model=UnitResponse)
def start_charging(
    unit_id: str,
    body: StartChargingRequest | None = None,
    db: Session = Depends(get_db),
    ctx: FleetContext = Depends(get_fleet_context),
) -> UnitResponse:
    """Start a charge at the office, or connect a unit to a patient at a clinic."""
    is_deep_charge = body.is_deep_charge if body is not None else False
    return _run_command(db, ctx, unit_id, UnitCommand.START_CHARGING, is_deep_charge=is_deep_charge)


@router.post("/units/{unit_id}/check-out", response_model=UnitResponse)
def check_out(
    unit_id: str,
    body: CheckOutRequest,
    db: Session = Depends(get_db),
    ctx: FleetContext = Depends(get_fleet_context),
) -> UnitResponse:
    """Send a ready unit to a clinic."""
    return _run_command(
        db, ctx, unit_id, UnitCommand.CHECK_OUT,
        clinic_name=body.clinic_name,
        clinic_city=body.clinic_city,
    )


@router.post("/units/{unit_id}/stop-charging", response_model=UnitResponse)
def stop_charging(
    unit_id: str,
    db: Session = Depends(get_db),
    ctx: FleetContext = Depends(get_fleet_context),
) -> UnitResponse:
    """Stop a charge, or disconnect a unit from a patient at a clinic."""
    return _run_command(db, ctx, unit_id, UnitCommand.STOP_CHARGING)


@router.post("/units/{unit_id}/start-deep-charge", response_model=UnitResponse)
def start_deep_charge(
    unit_id: str,
    db: Session = Depends(get_db),
    ctx: FleetContext = Depends(get_fleet_context),
) -> UnitResponse:
    """Start a 12h deep charge on a unit left at a clinic."""
    return _run_command(db, ctx, unit_id, UnitCommand.START_DEEP_CHARGE)


@router.post("/units/{unit_id}/manual-disconnect", response_model=UnitResponse)
def manual_disconnect(
    unit_id: str,
    db: Session = Depends(get_db),
    ctx: FleetContext = Depends(get_fleet_context),
) -> UnitResponse:
    """Release a unit whose clinic deep charge has completed."""
    return _run_command(db, ctx, unit_id, UnitCommand.MANUAL_DISCONNECT)


@router.post("/units/{unit_id}/mark-charged", response_model=UnitResponse)
def mark_charged(
    unit_id: str,
    db: Session = Depends(get_db),
    ctx: FleetContext = Depends(get_fleet_context),
) -> UnitResponse:
    """Mark a charging unit as fully charged and ready."""
    return _run_command(db, ctx, unit_id, UnitCommand.MARK_CHARGED)
