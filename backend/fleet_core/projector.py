"""Status projector: derive a unit's true state at a given instant (pure, no I/O)."""
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Iterable, Optional

from fleet_core.unit_state import (
    DEEP_CHARGE_IDLE_DAYS,
    FULL_BATTERY,
    IN_USE_DRAIN_PCT_PER_HOUR,
    SECONDS_PER_HOUR,
    UnitState,
    UnitStatus,
    elapsed_seconds,
    ensure_utc,
    whole_days_between,
)


def _charge_level(elapsed_s: int, target_s: int) -> int:
    """Battery percentage after elapsed_s of a target_s charge, floored and capped at 100."""
    return min(FULL_BATTERY, (elapsed_s * FULL_BATTERY) // target_s)


def project_unit(unit: UnitState, now: datetime) -> UnitState:
    """
    Return the unit as it should be at `now`.

    Rules, first match wins:
    1. Charging: battery follows elapsed/target. On reaching the target a normal
       charge (or a deep charge at the office) auto-completes to ready; a deep
       charge at a clinic stays charging at 100% and waits for a manual disconnect.
    2. Ready / at-clinic: held at 100%.
    3. In use: drains 3%/h from full since last_used_date.
    4. Anything else is returned unchanged.

    Idempotent at a fixed `now`.
    """
    if unit.status == UnitStatus.CHARGING and unit.charging_start_time is not None:
        elapsed_s = elapsed_seconds(unit.charging_start_time, now)
        target_s = unit.target_charge_seconds
        if elapsed_s >= target_s:
            if unit.is_deep_charge and unit.at_clinic:
                return replace(unit, battery_level=FULL_BATTERY, needs_manual_disconnection=True)
            # Anchored at the completion instant so the idle clock runs from there.
            completed_at = ensure_utc(unit.charging_start_time) + timedelta(seconds=target_s)
            return replace(
                unit,
                status=UnitStatus.READY,
                battery_level=FULL_BATTERY,
                charging_start_time=None,
                last_charged_date=completed_at,
                last_used_date=completed_at,
                is_deep_charge=False,
                needs_manual_disconnection=False,
            )
        return replace(unit, battery_level=_charge_level(elapsed_s, target_s))

    if unit.status in (UnitStatus.READY, UnitStatus.AT_CLINIC):
        return replace(unit, battery_level=FULL_BATTERY)

    if (
        unit.status == UnitStatus.IN_USE
        and unit.last_used_date is not None
        and unit.charging_start_time is None
    ):
        hours_in_use = elapsed_seconds(unit.last_used_date, now) // SECONDS_PER_HOUR
        drained = FULL_BATTERY - hours_in_use * IN_USE_DRAIN_PCT_PER_HOUR
        return replace(unit, battery_level=max(0, drained))

    return unit


def project_units(units: Iterable[UnitState], now: datetime) -> list[UnitState]:
    """Project every unit at the same instant."""
    return [project_unit(u, now) for u in units]


def idle_anchor(unit: UnitState) -> Optional[datetime]:
    """
    Start of the current idle period.
    At a clinic the clock restarts on disconnect; otherwise on the latest full charge or use.
    """
    if unit.status == UnitStatus.AT_CLINIC and unit.last_disconnected_at is not None:
        return unit.last_disconnected_at
    candidates = [d for d in (unit.last_charged_date, unit.last_used_date) if d is not None]
    return max(candidates) if candidates else None


def days_since_last_use(unit: UnitState, now: datetime) -> int:
    """Whole idle days (floor); 0 when the unit has no idle anchor."""
    return whole_days_between(idle_anchor(unit), now)


def days_until_deep_charge(unit: UnitState, now: datetime) -> int:
    return max(0, DEEP_CHARGE_IDLE_DAYS - days_since_last_use(unit, now))


def needs_deep_charge(unit: UnitState, now: datetime) -> bool:
    """Ready or at-clinic units idle for at least the deep-charge threshold."""
    if unit.status not in (UnitStatus.READY, UnitStatus.AT_CLINIC):
        return False
    return days_since_last_use(unit, now) >= DEEP_CHARGE_IDLE_DAYS


def charging_progress(unit: UnitState, now: datetime) -> float:
    """Charge progress 0-100 (unfloored) for display. 0 when not charging."""
    if unit.charging_start_time is None:
        return 0.0
    elapsed_s = elapsed_seconds(unit.charging_start_time, now)
    return min(100.0, elapsed_s / unit.target_charge_seconds * 100.0)


def time_remaining(unit: UnitState, now: datetime) -> Optional[str]:
    """Remaining charge time as 'Xh Ym', 'complete' once the target is reached, None if not charging."""
    if unit.charging_start_time is None:
        return None
    remaining_s = unit.target_charge_seconds - elapsed_seconds(unit.charging_start_time, now)
    if remaining_s <= 0:
        return "complete"
    hours, rest = divmod(remaining_s, SECONDS_PER_HOUR)
    return f"{hours}h {rest // 60}m"
