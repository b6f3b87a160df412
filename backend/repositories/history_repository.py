"""Unit history repository: append and list change records."""
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from fleet_core.unit_state import utcnow
from models.unit_history import UnitHistory


def _jsonable(values: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    """Make a field dict JSON-safe (datetimes as ISO strings, enums as values)."""
    if values is None:
        return None
    out: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, (datetime, date)):
            out[key] = value.isoformat()
        elif isinstance(value, Enum):
            out[key] = value.value
        else:
            out[key] = value
    return out


def log_unit_change(
    session: Session,
    unit_id: str,
    action: str,
    old_value: Optional[dict[str, Any]] = None,
    new_value: Optional[dict[str, Any]] = None,
    notes: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> UnitHistory:
    """Append a history row. With commit=False the row joins the caller's transaction."""
    entry = UnitHistory(
        unit_id=unit_id,
        action=action,
        old_value=_jsonable(old_value),
        new_value=_jsonable(new_value),
        notes=notes,
        created_at=now or utcnow(),
    )
    session.add(entry)
    if commit:
        session.commit()
        session.refresh(entry)
    return entry


def list_unit_history(session: Session, unit_id: str) -> list[UnitHistory]:
    """Return history rows for a unit, newest first."""
    result = session.execute(
        select(UnitHistory)
        .where(UnitHistory.unit_id == unit_id)
        .order_by(UnitHistory.created_at.desc(), UnitHistory.id)
    )
    return list(result.scalars().all())
