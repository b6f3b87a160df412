"""Store-bound command handlers: load, project, transition, write and record history in one commit."""
import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fleet_core.errors import StoreUnavailableError
from fleet_core.notifications import ChangeNotifier, EntityType
from fleet_core.projector import project_unit
from fleet_core.transitions import UnitCommand, apply_command
from fleet_core.unit_state import UnitState, UnitStatus, changed_fields, utcnow
from models.unit import Unit
from repositories.history_repository import log_unit_change
from repositories.unit_repository import create_unit, get_unit, update_unit

LOG = logging.getLogger(__name__)


def _command_base(stored: UnitState, command: UnitCommand, now: datetime) -> UnitState:
    """
    State the command is validated against: the projection at `now`. A charge the
    projection has already completed can still be acknowledged with mark-charged or
    stop-charging, which clears the charge-complete alert.
    """
    projected = project_unit(stored, now)
    if (
        command in (UnitCommand.MARK_CHARGED, UnitCommand.STOP_CHARGING)
        and stored.status == UnitStatus.CHARGING
        and projected.status == UnitStatus.READY
    ):
        return replace(stored, battery_level=projected.battery_level)
    return projected


def execute_command(
    session: Session,
    unit_id: str,
    command: UnitCommand,
    *,
    now: Optional[datetime] = None,
    notes: Optional[str] = None,
    notifier: Optional[ChangeNotifier] = None,
    **params: Any,
) -> Optional[Unit]:
    """
    Run `command` against the unit's current persisted row projected to `now`.

    Returns the updated row, or None if the unit does not exist. Raises
    InvalidTransitionError (nothing written) when the command is not valid from the
    unit's projected state, and StoreUnavailableError when the write fails.
    """
    now = now or utcnow()
    row = get_unit(session, unit_id)
    if row is None:
        LOG.info("%s ignored: unit %s not found", command.value, unit_id)
        return None

    stored = UnitState.from_row(row)
    updated = apply_command(_command_base(stored, command, now), command, now, **params)
    changes = changed_fields(stored, updated)
    before = {name: value for name, value in stored.to_fields().items() if name in changes}
    try:
        update_unit(session, unit_id, changes, commit=False)
        log_unit_change(session, unit_id, command.value, before, changes, notes, now=now, commit=False)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise StoreUnavailableError(f"{command.value} on unit {unit_id} failed: {e}") from e
    session.refresh(row)
    LOG.info("Unit %s: %s -> %s (%s)", row.code, stored.status.value, updated.status.value, command.value)
    if notifier is not None:
        notifier.publish(EntityType.UNIT)
    return row


def add_unit(
    session: Session,
    *,
    code: str,
    model: str,
    lot: str,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
    notifier: Optional[ChangeNotifier] = None,
) -> Unit:
    """
    Register a new unit (ready at the office, full battery). Raises LotConflictError if
    the lot is taken; the unit row and its history entry are committed together.
    """
    now = now or utcnow()
    try:
        row = create_unit(session, code=code, model=model, lot=lot, notes=notes, now=now, commit=False)
        log_unit_change(
            session,
            row.id,
            "created",
            None,
            UnitState.from_row(row).to_fields(),
            notes,
            now=now,
            commit=False,
        )
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise StoreUnavailableError(f"Could not create unit {code}: {e}") from e
    session.refresh(row)
    LOG.info("Unit %s created (lot %s)", row.code, row.lot)
    if notifier is not None:
        notifier.publish(EntityType.UNIT)
    return row
