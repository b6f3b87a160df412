"""Unit lifecycle state machine: which commands are valid from which status, and their effects."""
from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from fleet_core.errors import InvalidTransitionError
from fleet_core.unit_state import (
    DEEP_CHARGE_IDLE_DAYS,
    FULL_BATTERY,
    UnitLocation,
    UnitState,
    UnitStatus,
    whole_days_between,
)


class UnitCommand(str, Enum):
    """Operator commands."""
    CHECK_IN = "check_in"
    START_CHARGING = "start_charging"
    CHECK_OUT = "check_out"
    STOP_CHARGING = "stop_charging"
    START_DEEP_CHARGE = "start_deep_charge"
    MANUAL_DISCONNECT = "manual_disconnect"
    MARK_CHARGED = "mark_charged"


# Valid source states per command. Exhaustive: anything else is rejected.
_VALID_SOURCES: dict[UnitCommand, set[UnitStatus]] = {
    UnitCommand.CHECK_IN: {UnitStatus.AT_CLINIC},
    UnitCommand.START_CHARGING: {UnitStatus.READY, UnitStatus.AT_CLINIC},
    UnitCommand.CHECK_OUT: {UnitStatus.READY},
    UnitCommand.STOP_CHARGING: {UnitStatus.IN_USE, UnitStatus.CHARGING},
    UnitCommand.START_DEEP_CHARGE: {UnitStatus.AT_CLINIC},
    UnitCommand.MANUAL_DISCONNECT: {UnitStatus.CHARGING},
    UnitCommand.MARK_CHARGED: {UnitStatus.CHARGING},
}


def _cleared_charge(unit: UnitState, **changes) -> UnitState:
    """Leave charging: charge start and deep flag are only meaningful while charging."""
    return replace(unit, charging_start_time=None, is_deep_charge=False, **changes)


def _check_in(unit: UnitState, now: datetime) -> UnitState:
    return replace(
        unit,
        status=UnitStatus.CHARGING,
        location=UnitLocation.OFFICE,
        clinic_name=None,
        clinic_city=None,
        charging_start_time=now,
        last_disconnected_at=None,
        is_deep_charge=whole_days_between(unit.last_used_date, now) >= DEEP_CHARGE_IDLE_DAYS,
        needs_manual_disconnection=False,
    )


def _start_charging(unit: UnitState, now: datetime, *, is_deep_charge: bool = False) -> UnitState:
    if unit.status == UnitStatus.AT_CLINIC:
        # At a clinic "start" connects the unit to a patient.
        return replace(
            unit,
            status=UnitStatus.IN_USE,
            last_used_date=now,
            last_disconnected_at=None,
            needs_manual_disconnection=False,
        )
    return replace(
        unit,
        status=UnitStatus.CHARGING,
        charging_start_time=now,
        is_deep_charge=is_deep_charge,
        needs_manual_disconnection=False,
    )


def _check_out(unit: UnitState, now: datetime, *, clinic_name: str, clinic_city: str) -> UnitState:
    return _cleared_charge(
        unit,
        status=UnitStatus.AT_CLINIC,
        location=UnitLocation.CLINIC,
        clinic_name=clinic_name,
        clinic_city=clinic_city,
        last_disconnected_at=now,
    )


def _stop_charging(unit: UnitState, now: datetime) -> UnitState:
    if unit.status == UnitStatus.IN_USE:
        if not unit.at_clinic:
            raise InvalidTransitionError(
                UnitCommand.STOP_CHARGING.value, unit.status.value, "unit in use outside a clinic"
            )
        return replace(unit, status=UnitStatus.AT_CLINIC, last_disconnected_at=now)
    if unit.at_clinic:
        return _cleared_charge(unit, status=UnitStatus.AT_CLINIC)
    return _cleared_charge(unit, status=UnitStatus.READY, clinic_name=None, clinic_city=None)


def _start_deep_charge(unit: UnitState, now: datetime) -> UnitState:
    return replace(
        unit,
        status=UnitStatus.CHARGING,
        location=UnitLocation.CLINIC,
        charging_start_time=now,
        is_deep_charge=True,
        needs_manual_disconnection=False,
    )


def _manual_disconnect(unit: UnitState, now: datetime) -> UnitState:
    return _cleared_charge(
        unit,
        status=UnitStatus.AT_CLINIC,
        battery_level=FULL_BATTERY,
        last_charged_date=now,
        last_disconnected_at=now,
        needs_manual_disconnection=False,
    )


def _mark_charged(unit: UnitState, now: datetime) -> UnitState:
    return _cleared_charge(
        unit,
        status=UnitStatus.READY,
        battery_level=FULL_BATTERY,
        last_charged_date=now,
    )


_HANDLERS: dict[UnitCommand, Callable[..., UnitState]] = {
    UnitCommand.CHECK_IN: _check_in,
    UnitCommand.START_CHARGING: _start_charging,
    UnitCommand.CHECK_OUT: _check_out,
    UnitCommand.STOP_CHARGING: _stop_charging,
    UnitCommand.START_DEEP_CHARGE: _start_deep_charge,
    UnitCommand.MANUAL_DISCONNECT: _manual_disconnect,
    UnitCommand.MARK_CHARGED: _mark_charged,
}


def rejection_reason(unit: UnitState, command: UnitCommand) -> Optional[str]:
    """Why `command` cannot run on `unit`, or None if it can."""
    allowed = _VALID_SOURCES.get(command)
    if allowed is None or unit.status not in allowed:
        return f"{command.value!r} is not allowed from status {unit.status.value!r}"
    if command == UnitCommand.MANUAL_DISCONNECT and not unit.needs_manual_disconnection:
        return "unit is not awaiting a manual disconnect"
    if (
        command in (UnitCommand.STOP_CHARGING, UnitCommand.MARK_CHARGED)
        and unit.status == UnitStatus.CHARGING
        and unit.needs_manual_disconnection
    ):
        return "completed clinic deep charge must be released with a manual disconnect"
    return None


def can_apply(unit: UnitState, command: UnitCommand) -> bool:
    """Check if command is allowed without applying."""
    return rejection_reason(unit, command) is None


def apply_command(unit: UnitState, command: UnitCommand, now: datetime, **params) -> UnitState:
    """
    Return the unit after `command` at `now`. `unit` should already be projected to `now`.
    Raises InvalidTransitionError if the command is not valid from the unit's state.
    """
    reason = rejection_reason(unit, command)
    if reason is not None:
        raise InvalidTransitionError(command.value, unit.status.value, reason)
    return _HANDLERS[command](unit, now, **params)
