"""Pydantic schemas for alert API."""
from datetime import datetime

from pydantic import BaseModel


class AlertResponse(BaseModel):
    """Alert in list/detail responses."""

    id: str
    unit_id: str
    unit_code: str
    type: str
    severity: str
    message: str
    timestamp: datetime
    dismissed: bool = False
    dismissed_at: datetime | None = None


class ReconcileSummary(BaseModel):
    """Result of POST /alerts/reconcile."""

    store_available: bool
    persisted_units: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    failed_steps: list[str] = []
    active_alerts: int = 0


class PurgeResponse(BaseModel):
    """Result of DELETE /alerts/dismissed."""

    deleted: int
