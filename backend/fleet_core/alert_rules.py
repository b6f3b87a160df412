"""Alert condition catalog and desired-vs-stored diff.

Alert ids are derived from (unit id, condition key, recurrence timestamp) so that
repeated evaluation of an unchanged fleet yields the same ids, and a new charge
cycle or idle period yields a new id even if an earlier occurrence was dismissed.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from fleet_core.projector import days_since_last_use, idle_anchor, project_unit
from fleet_core.unit_state import (
    BRAND_NEW_TOLERANCE_S,
    CALIBRATION_COMPLETE_WINDOW_S,
    DEEP_CHARGE_HOURS,
    DEEP_CHARGE_IDLE_DAYS,
    FULL_BATTERY,
    MANUAL_DISCONNECT_CRITICAL_HOURS,
    OVERDUE_GRACE_HOURS,
    SECONDS_PER_HOUR,
    AlertSeverity,
    AlertType,
    UnitState,
    UnitStatus,
    elapsed_seconds,
    ensure_utc,
    within_seconds,
)


@dataclass
class DesiredAlert:
    """An alert that should exist right now."""

    id: str
    unit_id: str
    unit_code: str
    type: AlertType
    severity: AlertSeverity
    message: str
    timestamp: datetime

    def to_fields(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "unit_id": self.unit_id,
            "unit_code": self.unit_code,
            "type": self.type.value,
            "severity": self.severity.value,
            "message": self.message,
            "timestamp": self.timestamp,
            "dismissed": False,
        }


@dataclass
class AlertDelta:
    """Writes needed to make the alert store match the desired set."""

    to_create: list[DesiredAlert] = field(default_factory=list)
    to_update: list[DesiredAlert] = field(default_factory=list)
    to_delete: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.to_create or self.to_update or self.to_delete)


def alert_id(unit_id: str, key: str, occurrence: Optional[datetime] = None) -> str:
    """Deterministic alert id: '<unit>-<key>' plus '-<epoch seconds>' of the occurrence timestamp."""
    if occurrence is None:
        return f"{unit_id}-{key}"
    return f"{unit_id}-{key}-{int(ensure_utc(occurrence).timestamp())}"


def is_brand_new(unit: UnitState) -> bool:
    """
    A unit whose charge start (or last charge) and last use were written together has
    never been through a real use/charge cycle.
    """
    if unit.last_used_date is None:
        return True
    reference = unit.charging_start_time or unit.last_charged_date
    return within_seconds(reference, unit.last_used_date, BRAND_NEW_TOLERANCE_S)


def _charging_alerts(unit: UnitState, projected: UnitState, now: datetime) -> list[DesiredAlert]:
    start = unit.charging_start_time
    elapsed_s = elapsed_seconds(start, now)
    target_s = unit.target_charge_seconds
    elapsed_h = elapsed_s // SECONDS_PER_HOUR
    out: list[DesiredAlert] = []

    def make(key: str, type_: AlertType, severity: AlertSeverity, message: str) -> DesiredAlert:
        return DesiredAlert(
            id=alert_id(unit.id, key, start),
            unit_id=unit.id,
            unit_code=unit.code,
            type=type_,
            severity=severity,
            message=message,
            timestamp=now,
        )

    if elapsed_s >= target_s:
        if unit.is_deep_charge:
            out.append(make(
                "deep-charge-complete",
                AlertType.DEEP_CHARGE_COMPLETE,
                AlertSeverity.INFO,
                f"Unit {unit.code} finished its {DEEP_CHARGE_HOURS}h deep charge. Idle-day counter reset.",
            ))
        else:
            out.append(make(
                "charge-complete",
                AlertType.CHARGE_COMPLETE,
                AlertSeverity.INFO,
                f"Unit {unit.code} finished its normal charge ({target_s // SECONDS_PER_HOUR}h).",
            ))

    if unit.is_deep_charge and elapsed_s < DEEP_CHARGE_HOURS * SECONDS_PER_HOUR and not is_brand_new(unit):
        out.append(make(
            "deep-charging",
            AlertType.BATTERY_CALIBRATION,
            AlertSeverity.INFO,
            f"Unit {unit.code} battery calibration in progress ({elapsed_h}h/{DEEP_CHARGE_HOURS}h).",
        ))

    if projected.needs_manual_disconnection:
        completed_at = start + timedelta(seconds=target_s) if start is not None else now
        critical = elapsed_s >= MANUAL_DISCONNECT_CRITICAL_HOURS * SECONDS_PER_HOUR
        prefix = "URGENT: " if critical else ""
        out.append(make(
            "manual-disconnect",
            AlertType.MANUAL_DISCONNECT,
            AlertSeverity.CRITICAL if critical else AlertSeverity.WARNING,
            f"Unit {unit.code} completed its deep charge at {ensure_utc(completed_at):%H:%M} UTC. "
            f"{prefix}Disconnect it manually to free the charger.",
        ))

    if elapsed_s > target_s + OVERDUE_GRACE_HOURS * SECONDS_PER_HOUR:
        out.append(make(
            "overdue",
            AlertType.OVERDUE_CHARGE,
            AlertSeverity.CRITICAL,
            f"Unit {unit.code} has been charging for {elapsed_h} hours. It must be disconnected.",
        ))
    return out


def _idle_alert(unit: UnitState, now: datetime) -> Optional[DesiredAlert]:
    days = days_since_last_use(unit, now)
    if days < DEEP_CHARGE_IDLE_DAYS:
        return None
    if unit.status == UnitStatus.AT_CLINIC:
        key = "clinic-idle"
        message = (
            f"Unit {unit.code} ({unit.model}) - lot {unit.lot} has been disconnected for {days} days "
            f"at {unit.clinic_name or 'the clinic'}. Manual deep charge required."
        )
    else:
        key = "deep-charge"
        message = (
            f"Unit {unit.code} has been idle for {days} days. "
            f"It needs a manual {DEEP_CHARGE_HOURS}h deep charge."
        )
    return DesiredAlert(
        id=alert_id(unit.id, key, idle_anchor(unit)),
        unit_id=unit.id,
        unit_code=unit.code,
        type=AlertType.DEEP_CHARGE_NEEDED,
        severity=AlertSeverity.WARNING,
        message=message,
        timestamp=now,
    )


def _calibration_complete_alert(unit: UnitState, projected: UnitState, now: datetime) -> Optional[DesiredAlert]:
    if unit.last_charged_date is None or unit.last_used_date is None:
        return None
    if elapsed_seconds(unit.last_charged_date, now) >= CALIBRATION_COMPLETE_WINDOW_S:
        return None
    if projected.battery_level != FULL_BATTERY or is_brand_new(unit):
        return None
    return DesiredAlert(
        id=alert_id(unit.id, "calibration-complete", unit.last_charged_date),
        unit_id=unit.id,
        unit_code=unit.code,
        type=AlertType.BATTERY_CALIBRATION,
        severity=AlertSeverity.INFO,
        message=f"Unit {unit.code} completed battery calibration successfully.",
        timestamp=now,
    )


def alerts_for_unit(unit: UnitState, now: datetime) -> list[DesiredAlert]:
    """
    Evaluate every condition for one unit.

    Conditions read the persisted lifecycle status (what operators have acted on);
    time-derived values (battery, manual-disconnect flag) come from the projection at `now`.
    """
    projected = project_unit(unit, now)
    out: list[DesiredAlert] = []
    if unit.status == UnitStatus.CHARGING and unit.charging_start_time is not None:
        out.extend(_charging_alerts(unit, projected, now))
    if unit.status in (UnitStatus.READY, UnitStatus.AT_CLINIC):
        idle = _idle_alert(unit, now)
        if idle is not None:
            out.append(idle)
    if unit.status == UnitStatus.READY:
        calibrated = _calibration_complete_alert(unit, projected, now)
        if calibrated is not None:
            out.append(calibrated)
    return out


def build_desired_alerts(units: Iterable[UnitState], now: datetime) -> list[DesiredAlert]:
    """Every alert that should exist at `now`, ordered by unit then condition."""
    out: list[DesiredAlert] = []
    for unit in units:
        out.extend(alerts_for_unit(unit, now))
    return out


def diff_alerts(desired: Iterable[DesiredAlert], stored: Iterable[Any]) -> AlertDelta:
    """
    Compare desired alerts with stored rows (anything with id, message, severity, dismissed).

    Dismissed rows are historical: never deleted, updated or recreated here. An active row
    whose id is no longer desired is deleted; a desired id with no row is created; a desired
    id whose active row has a different message or severity is updated.
    """
    active: dict[str, Any] = {}
    dismissed: set[str] = set()
    for row in stored:
        if row.dismissed:
            dismissed.add(row.id)
        else:
            active[row.id] = row

    delta = AlertDelta()
    desired_ids: set[str] = set()
    for alert in desired:
        if alert.id in desired_ids:
            continue
        desired_ids.add(alert.id)
        if alert.id in dismissed:
            continue
        row = active.get(alert.id)
        if row is None:
            delta.to_create.append(alert)
        elif row.message != alert.message or row.severity != alert.severity.value:
            delta.to_update.append(alert)
    delta.to_delete = [aid for aid in active if aid not in desired_ids]
    return delta


def visible_alerts(desired: Iterable[DesiredAlert], dismissed_ids: Iterable[str]) -> list[DesiredAlert]:
    """Desired alerts minus those an operator has dismissed (the locally displayed set)."""
    hidden = set(dismissed_ids)
    return [a for a in desired if a.id not in hidden]
