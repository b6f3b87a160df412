# Schemas package
from .alerts import AlertResponse, PurgeResponse, ReconcileSummary
from .health import HealthResponse
from .units import (
    CheckOutRequest,
    FleetStats,
    StartChargingRequest,
    UnitCreate,
    UnitHistoryEntry,
    UnitLot,
    UnitResponse,
)

__all__ = [
    "AlertResponse",
    "CheckOutRequest",
    "FleetStats",
    "HealthResponse",
    "PurgeResponse",
    "ReconcileSummary",
    "StartChargingRequest",
    "UnitCreate",
    "UnitHistoryEntry",
    "UnitLot",
    "UnitResponse",
]
