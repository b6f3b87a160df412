"""Unit state snapshot, lifecycle enums and charge policy constants."""
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

# Charge policy
NORMAL_CHARGE_HOURS = 8
DEEP_CHARGE_HOURS = 12
OVERDUE_GRACE_HOURS = 2
MANUAL_DISCONNECT_CRITICAL_HOURS = 13
DEEP_CHARGE_IDLE_DAYS = 5
IN_USE_DRAIN_PCT_PER_HOUR = 3
FULL_BATTERY = 100

# Timestamps closer than this are treated as written by the same action (unit creation).
BRAND_NEW_TOLERANCE_S = 60
CALIBRATION_COMPLETE_WINDOW_S = 3600

SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400


class UnitStatus(str, Enum):
    """Lifecycle states of a unit."""
    CHARGING = "charging"
    READY = "ready"
    IN_USE = "in-use"
    AT_CLINIC = "at-clinic"
    MAINTENANCE = "maintenance"


class UnitLocation(str, Enum):
    OFFICE = "office"
    CLINIC = "clinic"


class AlertType(str, Enum):
    CHARGE_COMPLETE = "charge-complete"
    DEEP_CHARGE_COMPLETE = "deep-charge-complete"
    DEEP_CHARGE_NEEDED = "deep-charge-needed"
    BATTERY_CALIBRATION = "battery-calibration"
    MANUAL_DISCONNECT = "manual-disconnect"
    OVERDUE_CHARGE = "overdue-charge"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


def utcnow() -> datetime:
    """Current time, timezone-aware UTC."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def elapsed_seconds(start: Optional[datetime], now: datetime) -> int:
    """Whole seconds from start to now, floored and clamped to >= 0. 0 when start is None."""
    if start is None:
        return 0
    return max(0, int((ensure_utc(now) - ensure_utc(start)).total_seconds()))


def whole_days_between(start: Optional[datetime], now: datetime) -> int:
    return elapsed_seconds(start, now) // SECONDS_PER_DAY


def within_seconds(a: Optional[datetime], b: Optional[datetime], tolerance_s: int) -> bool:
    """True if both timestamps are set and less than tolerance_s apart."""
    if a is None or b is None:
        return False
    return abs((ensure_utc(a) - ensure_utc(b)).total_seconds()) < tolerance_s


@dataclass
class UnitState:
    """
    Immutable-by-convention snapshot of one unit as the core reasons about it.
    Projection and transitions return new snapshots via dataclasses.replace.
    """

    id: str
    code: str
    model: str
    lot: str
    status: UnitStatus = UnitStatus.READY
    location: UnitLocation = UnitLocation.OFFICE
    battery_level: int = FULL_BATTERY
    charging_start_time: Optional[datetime] = None
    last_charged_date: Optional[datetime] = None
    last_used_date: Optional[datetime] = None
    last_disconnected_at: Optional[datetime] = None
    is_deep_charge: bool = False
    needs_manual_disconnection: bool = False
    clinic_name: Optional[str] = None
    clinic_city: Optional[str] = None
    notes: Optional[str] = None

    @property
    def target_charge_seconds(self) -> int:
        hours = DEEP_CHARGE_HOURS if self.is_deep_charge else NORMAL_CHARGE_HOURS
        return hours * SECONDS_PER_HOUR

    @property
    def at_clinic(self) -> bool:
        return self.location == UnitLocation.CLINIC

    @classmethod
    def from_row(cls, row: Any) -> "UnitState":
        """Build a snapshot from a unit DB row (or any object with the same attributes)."""
        return cls(
            id=row.id,
            code=row.code,
            model=row.model,
            lot=row.lot,
            status=UnitStatus(row.status),
            location=UnitLocation(row.location),
            battery_level=int(row.battery_level if row.battery_level is not None else FULL_BATTERY),
            charging_start_time=ensure_utc(row.charging_start_time),
            last_charged_date=ensure_utc(row.last_charged_date),
            last_used_date=ensure_utc(row.last_used_date),
            last_disconnected_at=ensure_utc(row.last_disconnected_at),
            is_deep_charge=bool(row.is_deep_charge),
            needs_manual_disconnection=bool(row.needs_manual_disconnection),
            clinic_name=row.clinic_name,
            clinic_city=row.clinic_city,
            notes=row.notes,
        )

    def to_fields(self) -> dict[str, Any]:
        """Column values for persistence (enums as their string values)."""
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            out[f.name] = value.value if isinstance(value, Enum) else value
        return out


def changed_fields(before: UnitState, after: UnitState) -> dict[str, Any]:
    """Persistable fields whose value differs between two snapshots of the same unit."""
    old = before.to_fields()
    new = after.to_fields()
    return {name: value for name, value in new.items() if name != "id" and old.get(name) != value}
