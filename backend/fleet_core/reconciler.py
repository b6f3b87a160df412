"""One reconciliation pass: project units, persist drift, and converge the alert store.

A pass never raises store errors. Each step that fails is rolled back, logged and
reported in the result; the context keeps the last good projection and the local
desired-alert view stays authoritative for display until the next pass.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db import SessionLocal
from fleet_core.alert_rules import (
    AlertDelta,
    DesiredAlert,
    build_desired_alerts,
    diff_alerts,
    visible_alerts,
)
from fleet_core.context import FleetContext
from fleet_core.projector import project_units
from fleet_core.unit_state import UnitState, utcnow
from repositories.alert_repository import create_alerts, delete_alerts, list_alerts, update_alert
from repositories.unit_repository import list_units, update_unit_if_current

LOG = logging.getLogger(__name__)

# Only time-derived fields are written back by a pass; lifecycle status is changed by commands.
PROJECTED_FIELDS = ("battery_level", "needs_manual_disconnection")


@dataclass
class ReconcileResult:
    """Outcome of one pass."""

    at: datetime
    store_available: bool = True
    persisted_units: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    failed_steps: list[str] = field(default_factory=list)
    visible: list[DesiredAlert] = field(default_factory=list)
    desired_ids: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.store_available and not self.failed_steps


def _persist_projection(session: Session, stored: list[UnitState], projected: list[UnitState]) -> int:
    """
    Write back battery level and manual-disconnect flag where the projection moved them.
    Each write only lands if the row still has the status and charge start that were
    projected, so a command committed since the read is never overwritten.
    """
    written = 0
    for before, after in zip(stored, projected):
        changes = {
            name: getattr(after, name)
            for name in PROJECTED_FIELDS
            if getattr(before, name) != getattr(after, name)
        }
        if not changes:
            continue
        expected = {
            "status": before.status.value,
            "charging_start_time": before.charging_start_time,
        }
        if update_unit_if_current(session, before.id, expected, changes, commit=False):
            written += 1
        else:
            LOG.info("Unit %s changed during the pass; projection not written", before.code)
    if written:
        session.commit()
    return written


def apply_alert_delta(session: Session, delta: AlertDelta, result: Optional[ReconcileResult] = None) -> ReconcileResult:
    """
    Apply delete, create, then update. Each step commits on its own; a failing step is
    rolled back and recorded in result.failed_steps without stopping the others.
    """
    if result is None:
        result = ReconcileResult(at=utcnow())
    if delta.to_delete:
        try:
            result.deleted = delete_alerts(session, delta.to_delete)
        except SQLAlchemyError as e:
            session.rollback()
            result.failed_steps.append("delete")
            LOG.warning("Alert delete failed for %d alerts: %s", len(delta.to_delete), e)
    if delta.to_create:
        try:
            result.created = len(create_alerts(session, [a.to_fields() for a in delta.to_create]))
        except SQLAlchemyError as e:
            session.rollback()
            result.failed_steps.append("create")
            LOG.warning("Alert create failed for %d alerts: %s", len(delta.to_create), e)
    if delta.to_update:
        try:
            for alert in delta.to_update:
                if update_alert(session, alert.id, {"message": alert.message, "severity": alert.severity.value}):
                    result.updated += 1
        except SQLAlchemyError as e:
            session.rollback()
            result.failed_steps.append("update")
            LOG.warning("Alert update failed: %s", e)
    return result


def reconcile_once(session: Session, ctx: FleetContext, now: Optional[datetime] = None) -> ReconcileResult:
    """Run one projection + alert reconciliation pass at `now` and record the outcome on ctx."""
    with ctx.reconcile_lock:
        return _reconcile(session, ctx, now or utcnow())


def run_reconcile_pass(ctx: FleetContext) -> ReconcileResult:
    """Pass for the background loop: own session, synchronous; run via asyncio.to_thread."""
    db = SessionLocal()
    try:
        return reconcile_once(db, ctx)
    finally:
        db.close()


def _reconcile(session: Session, ctx: FleetContext, now: datetime) -> ReconcileResult:
    result = ReconcileResult(at=now)

    try:
        rows = list_units(session)
    except SQLAlchemyError as e:
        session.rollback()
        LOG.warning("Unit store unavailable, keeping last projection from %s: %s", ctx.last_projected_at, e)
        ctx.store_available = False
        result.store_available = False
        result.failed_steps.append("units")
        result.visible = ctx.alerts
        return result
    ctx.store_available = True

    stored = [UnitState.from_row(row) for row in rows]
    projected = project_units(stored, now)
    try:
        result.persisted_units = _persist_projection(session, stored, projected)
    except SQLAlchemyError as e:
        session.rollback()
        result.failed_steps.append("projection")
        LOG.warning("Could not persist projected unit state: %s", e)
    ctx.record_projection(projected, now)

    desired = build_desired_alerts(stored, now)
    result.desired_ids = [a.id for a in desired]
    dismissed = ctx.dismissed_ids
    try:
        stored_alerts = list_alerts(session)
    except SQLAlchemyError as e:
        session.rollback()
        result.failed_steps.append("alerts")
        LOG.warning("Alert store unavailable, showing local alert view: %s", e)
        result.visible = visible_alerts(desired, dismissed)
        ctx.record_alerts(result.visible, now)
        return result

    dismissed = {a.id for a in stored_alerts if a.dismissed}
    delta = diff_alerts(desired, stored_alerts)
    if not delta.is_empty:
        apply_alert_delta(session, delta, result)
        LOG.info(
            "Alerts reconciled: %d created, %d updated, %d deleted",
            result.created, result.updated, result.deleted,
        )
    result.visible = visible_alerts(desired, dismissed)
    ctx.record_alerts(result.visible, now, dismissed_ids=dismissed)
    return result
