"""Alert repository: list, create, update, delete, dismiss, purge."""
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from fleet_core.unit_state import utcnow
from models.alert import Alert

UPDATABLE_FIELDS = frozenset({"unit_code", "type", "severity", "message", "timestamp"})


def list_alerts(session: Session) -> list[Alert]:
    """Return all alerts, active and dismissed, newest first."""
    result = session.execute(select(Alert).order_by(Alert.timestamp.desc(), Alert.id))
    return list(result.scalars().all())


def list_active_alerts(session: Session) -> list[Alert]:
    """Return non-dismissed alerts, newest first."""
    result = session.execute(
        select(Alert).where(Alert.dismissed.is_(False)).order_by(Alert.timestamp.desc(), Alert.id)
    )
    return list(result.scalars().all())


def list_alerts_by_unit(session: Session, unit_id: str) -> list[Alert]:
    """Return all alerts for one unit, newest first."""
    result = session.execute(
        select(Alert).where(Alert.unit_id == unit_id).order_by(Alert.timestamp.desc(), Alert.id)
    )
    return list(result.scalars().all())


def get_alert(session: Session, alert_id: str) -> Optional[Alert]:
    """Return an alert by id or None."""
    return session.get(Alert, alert_id)


def create_alerts(session: Session, alerts: Iterable[dict[str, Any]]) -> list[Alert]:
    """Insert a batch of alerts (dicts of column values, id included) in one commit."""
    rows = [Alert(**fields) for fields in alerts]
    if not rows:
        return []
    session.add_all(rows)
    session.commit()
    for row in rows:
        session.refresh(row)
    return rows


def update_alert(session: Session, alert_id: str, fields: dict[str, Any]) -> Optional[Alert]:
    """Update message/severity/etc. of an alert. Returns the alert or None if not found."""
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown alert fields: {sorted(unknown)}")
    alert = get_alert(session, alert_id)
    if alert is None:
        return None
    for name, value in fields.items():
        setattr(alert, name, value)
    session.commit()
    session.refresh(alert)
    return alert


def delete_alerts(session: Session, alert_ids: Iterable[str]) -> int:
    """Delete alerts by id. Returns the number of rows deleted."""
    ids = list(alert_ids)
    if not ids:
        return 0
    result = session.execute(
        delete(Alert).where(Alert.id.in_(ids)),
        execution_options={"synchronize_session": "fetch"},
    )
    session.commit()
    return result.rowcount or 0


def dismiss_alert(session: Session, alert_id: str, now: Optional[datetime] = None) -> Optional[Alert]:
    """Mark an alert dismissed. Idempotent; returns None if not found."""
    alert = get_alert(session, alert_id)
    if alert is None:
        return None
    if not alert.dismissed:
        alert.dismissed = True
        alert.dismissed_at = now or utcnow()
        session.commit()
        session.refresh(alert)
    return alert


def purge_dismissed_alerts(
    session: Session,
    older_than: datetime,
    *,
    keep_ids: Iterable[str] = (),
) -> int:
    """
    Delete dismissed alerts dismissed before `older_than`, except ids in keep_ids.
    Returns the number of rows deleted.
    """
    stmt = delete(Alert).where(Alert.dismissed.is_(True), Alert.dismissed_at < older_than)
    keep = list(keep_ids)
    if keep:
        stmt = stmt.where(Alert.id.not_in(keep))
    result = session.execute(stmt, execution_options={"synchronize_session": "fetch"})
    session.commit()
    return result.rowcount or 0
