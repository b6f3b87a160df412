"""Pydantic schemas for unit API."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class UnitCreate(BaseModel):
    """Payload for registering a unit."""

    code: str = Field(..., min_length=1)
    model: str = Field(..., min_length=1)
    lot: str = Field(..., min_length=1)
    notes: str | None = None


class StartChargingRequest(BaseModel):
    """Body for POST /units/{id}/start-charging."""

    is_deep_charge: bool = False


class CheckOutRequest(BaseModel):
    """Body for POST /units/{id}/check-out."""

    clinic_name: str = Field(..., min_length=1)
    clinic_city: str = Field(..., min_length=1)


class UnitResponse(BaseModel):
    """Unit as projected at request time, plus display helpers."""

    id: str
    code: str
    model: str
    lot: str
    status: str
    location: str
    battery_level: int
    charging_start_time: datetime | None = None
    last_charged_date: datetime | None = None
    last_used_date: datetime | None = None
    last_disconnected_at: datetime | None = None
    is_deep_charge: bool = False
    needs_manual_disconnection: bool = False
    clinic_name: str | None = None
    clinic_city: str | None = None
    notes: str | None = None
    charging_progress: float = 0.0
    time_remaining: str | None = None
    days_since_last_use: int = 0
    days_until_deep_charge: int = 0
    needs_deep_charge: bool = False


class UnitLot(BaseModel):
    """Lot listing entry."""

    id: str
    code: str
    lot: str


class FleetStats(BaseModel):
    """Dashboard counters."""

    total: int = 0
    charging: int = 0
    ready: int = 0
    at_clinic: int = 0
    active_alerts: int = 0


class UnitHistoryEntry(BaseModel):
    """One recorded action on a unit."""

    id: str
    unit_id: str
    action: str
    old_value: dict[str, Any] | None = None
    new_value: dict[str, Any] | None = None
    notes: str | None = None
    created_at: datetime
