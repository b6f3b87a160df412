"""Unit repository: list, get, create, update (plain and conditional)."""
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fleet_core.errors import LotConflictError
from fleet_core.unit_state import utcnow
from models.unit import Unit

# Columns a caller may change through update_unit.
UPDATABLE_FIELDS = frozenset({
    "code",
    "model",
    "lot",
    "status",
    "location",
    "battery_level",
    "charging_start_time",
    "last_charged_date",
    "last_used_date",
    "last_disconnected_at",
    "is_deep_charge",
    "needs_manual_disconnection",
    "clinic_name",
    "clinic_city",
    "notes",
})


def list_units(session: Session) -> list[Unit]:
    """Return all units, newest first."""
    result = session.execute(select(Unit).order_by(Unit.created_at.desc(), Unit.code))
    return list(result.scalars().all())


def get_unit(session: Session, unit_id: str) -> Optional[Unit]:
    """Return a unit by id or None."""
    return session.get(Unit, unit_id)


def get_unit_by_lot(session: Session, lot: str) -> Optional[Unit]:
    """Return the unit holding this lot code, or None."""
    return session.execute(select(Unit).where(Unit.lot == lot)).scalar_one_or_none()


def list_lots(session: Session) -> list[tuple[str, str, str]]:
    """Return (id, code, lot) for every unit."""
    result = session.execute(select(Unit.id, Unit.code, Unit.lot).order_by(Unit.code))
    return [(row.id, row.code, row.lot) for row in result]


def create_unit(
    session: Session,
    *,
    code: str,
    model: str,
    lot: str,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> Unit:
    """
    Create a unit ready at the office with a full battery, and return it.
    Raises LotConflictError (nothing written) if the lot is already registered.
    """
    existing = get_unit_by_lot(session, lot)
    if existing is not None:
        raise LotConflictError(lot, existing.code)
    now = now or utcnow()
    unit = Unit(
        code=code,
        model=model,
        lot=lot,
        status="ready",
        location="office",
        battery_level=100,
        last_charged_date=now,
        last_used_date=now,
        is_deep_charge=False,
        needs_manual_disconnection=False,
        notes=notes or None,
        created_at=now,
        updated_at=now,
    )
    session.add(unit)
    try:
        session.flush()
    except IntegrityError as e:
        session.rollback()
        raise LotConflictError(lot) from e
    if commit:
        session.commit()
        session.refresh(unit)
    return unit


def update_unit(
    session: Session,
    unit_id: str,
    fields: dict[str, Any],
    *,
    commit: bool = True,
) -> Optional[Unit]:
    """Apply a partial update by id. Returns the updated unit or None if not found."""
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown unit fields: {sorted(unknown)}")
    unit = get_unit(session, unit_id)
    if unit is None:
        return None
    for name, value in fields.items():
        setattr(unit, name, value)
    if commit:
        session.commit()
        session.refresh(unit)
    return unit


def update_unit_if_current(
    session: Session,
    unit_id: str,
    expected: dict[str, Any],
    fields: dict[str, Any],
    *,
    commit: bool = True,
) -> bool:
    """
    Apply a partial update only while the stored row still has the `expected` values.
    Returns False (nothing written) if the unit is gone or another writer moved it on.
    """
    unknown = (set(fields) | set(expected)) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown unit fields: {sorted(unknown)}")
    conditions = [Unit.id == unit_id]
    for name, value in expected.items():
        column = getattr(Unit, name)
        conditions.append(column.is_(None) if value is None else column == value)
    # Loaded Unit objects stay stale until the next commit expires them.
    result = session.execute(
        update(Unit).where(*conditions).values(**fields),
        execution_options={"synchronize_session": False},
    )
    matched = result.rowcount == 1
    if commit:
        session.commit()
    return matched


def count_units_by_status(session: Session) -> dict[str, int]:
    """Return {status: count} for statuses with at least one unit."""
    result = session.execute(select(Unit.status, func.count()).group_by(Unit.status))
    return {status: count for status, count in result.all()}
