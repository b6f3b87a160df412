"""Alert API routes: listing, dismissal, manual reconciliation and purge."""
import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api.routes import get_fleet_context
from db import get_db
from fleet_core.alert_rules import DesiredAlert
from fleet_core.context import FleetContext
from fleet_core.notifications import EntityType
from fleet_core.reconciler import reconcile_once
from fleet_core.unit_state import utcnow
from repositories.alert_repository import (
    dismiss_alert as repo_dismiss_alert,
    list_active_alerts,
    list_alerts as repo_list_alerts,
    purge_dismissed_alerts,
)
from schemas.alerts import AlertResponse, PurgeResponse, ReconcileSummary
from utils.config import DISMISSED_ALERT_RETENTION_MIN

LOG = logging.getLogger(__name__)

router = APIRouter(tags=["alerts"])


def _desired_to_response(alert: DesiredAlert) -> AlertResponse:
    """Build AlertResponse from the local desired view (used when the store is unavailable)."""
    return AlertResponse(
        id=alert.id,
        unit_id=alert.unit_id,
        unit_code=alert.unit_code,
        type=alert.type.value,
        severity=alert.severity.value,
        message=alert.message,
        timestamp=alert.timestamp,
    )


@router.get("/alerts", response_model=list[AlertResponse])
def list_alerts(
    include_dismissed: bool = Query(False),
    db: Session = Depends(get_db),
    ctx: FleetContext = Depends(get_fleet_context),
) -> list[AlertResponse]:
    """Active alerts, newest first. Falls back to the last reconciled view if the store is down."""
    try:
        rows = repo_list_alerts(db) if include_dismissed else list_active_alerts(db)
    except SQLAlchemyError as e:
        db.rollback()
        LOG.warning("Alert store unavailable, serving local alert view: %s", e)
        return [_desired_to_response(a) for a in ctx.alerts]
    return [AlertResponse.model_validate(a, from_attributes=True) for a in rows]


@router.post("/alerts/reconcile", response_model=ReconcileSummary)
def reconcile(
    db: Session = Depends(get_db),
    ctx: FleetContext = Depends(get_fleet_context),
) -> ReconcileSummary:
    """Run one projection and alert reconciliation pass now."""
    result = reconcile_once(db, ctx)
    return ReconcileSummary(
        store_available=result.store_available,
        persisted_units=result.persisted_units,
        created=result.created,
        updated=result.updated,
        deleted=result.deleted,
        failed_steps=result.failed_steps,
        active_alerts=len(result.visible),
    )


@router.delete("/alerts/dismissed", response_model=PurgeResponse)
def purge_dismissed(
    older_than_minutes: int = Query(DISMISSED_ALERT_RETENTION_MIN, ge=0),
    db: Session = Depends(get_db),
    ctx: FleetContext = Depends(get_fleet_context),
) -> PurgeResponse:
    """
    Delete alerts dismissed more than `older_than_minutes` ago. Alerts whose condition
    still holds are kept so the dismissal is not undone by the next pass.
    """
    result = reconcile_once(db, ctx)
    if not result.store_available:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Store unavailable")
    keep = result.desired_ids
    deleted = purge_dismissed_alerts(db, utcnow() - timedelta(minutes=older_than_minutes), keep_ids=keep)
    if deleted:
        LOG.info("Purged %d dismissed alerts", deleted)
        ctx.notifier.publish(EntityType.ALERT)
    return PurgeResponse(deleted=deleted)


@router.post("/alerts/{alert_id}/dismiss", response_model=AlertResponse)
def dismiss_alert(
    alert_id: str,
    db: Session = Depends(get_db),
    ctx: FleetContext = Depends(get_fleet_context),
) -> AlertResponse:
    """Dismiss an alert. It stays dismissed while its condition holds."""
    alert = repo_dismiss_alert(db, alert_id)
    if alert is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Alert not found")
    ctx.forget_alert(alert_id)
    ctx.notifier.publish(EntityType.ALERT)
    return AlertResponse.model_validate(alert, from_attributes=True)
