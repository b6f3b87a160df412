"""Unit tests: reconciliation pass degrades on store failures (mocked store)."""
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from fleet_core.alert_rules import AlertDelta, alerts_for_unit
from fleet_core.context import FleetContext
from fleet_core.reconciler import apply_alert_delta, reconcile_once, run_reconcile_pass
from fleet_core.unit_state import UnitLocation, UnitState, UnitStatus

pytestmark = pytest.mark.unit

_DB_DOWN = OperationalError("SELECT 1", {}, Exception("database is locked"))


def _clinic_row(t0):
    """Object shaped like a unit row: at a clinic, idle since t0."""
    return SimpleNamespace(
        id="u-1",
        code="BF-001",
        model="Pump X",
        lot="LOT-1",
        status="at-clinic",
        location="clinic",
        battery_level=100,
        charging_start_time=None,
        last_charged_date=t0 - timedelta(days=9),
        last_used_date=t0 - timedelta(days=9),
        last_disconnected_at=t0,
        is_deep_charge=False,
        needs_manual_disconnection=False,
        clinic_name="Clinic A",
        clinic_city="City B",
        notes=None,
    )


def test_unit_store_down_keeps_last_projection(t0):
    """If units cannot be listed the pass keeps the previous view and reports it."""
    ctx = FleetContext()
    previous = UnitState(id="u-1", code="BF-001", model="Pump X", lot="LOT-1")
    ctx.record_projection([previous], t0)
    alerts = alerts_for_unit(
        UnitState.from_row(_clinic_row(t0)), t0 + timedelta(days=5)
    )
    ctx.record_alerts(alerts, t0)
    session = MagicMock()
    with patch("fleet_core.reconciler.list_units", side_effect=_DB_DOWN):
        result = reconcile_once(session, ctx, now=t0 + timedelta(days=6))
    session.rollback.assert_called_once()
    assert result.store_available is False
    assert result.failed_steps == ["units"]
    assert ctx.store_available is False
    assert ctx.units == [previous]
    assert [a.id for a in result.visible] == [a.id for a in alerts]


def test_alert_store_down_shows_local_desired_view(t0):
    """Units load but alerts do not: the local desired set is displayed, minus known dismissals."""
    ctx = FleetContext()
    now = t0 + timedelta(days=5)
    with patch("fleet_core.reconciler.list_units", return_value=[_clinic_row(t0)]), \
            patch("fleet_core.reconciler.list_alerts", side_effect=_DB_DOWN):
        result = reconcile_once(MagicMock(), ctx, now=now)
    assert result.store_available is True
    assert result.failed_steps == ["alerts"]
    assert len(result.visible) == 1
    assert ctx.alerts == result.visible

    ctx.forget_alert(result.visible[0].id)
    with patch("fleet_core.reconciler.list_units", return_value=[_clinic_row(t0)]), \
            patch("fleet_core.reconciler.list_alerts", side_effect=_DB_DOWN):
        again = reconcile_once(MagicMock(), ctx, now=now)
    assert again.visible == []


def test_partial_write_failure_is_not_fatal(t0):
    """A failing create is rolled back and reported; delete and update still run."""
    unit = UnitState.from_row(_clinic_row(t0))
    desired = alerts_for_unit(unit, t0 + timedelta(days=5))
    delta = AlertDelta(to_create=desired, to_update=desired, to_delete=["u-1-old"])
    session = MagicMock()
    with patch("fleet_core.reconciler.delete_alerts", return_value=1) as mock_delete, \
            patch("fleet_core.reconciler.create_alerts", side_effect=_DB_DOWN), \
            patch("fleet_core.reconciler.update_alert", return_value=MagicMock()) as mock_update:
        result = apply_alert_delta(session, delta)
    mock_delete.assert_called_once_with(session, ["u-1-old"])
    mock_update.assert_called_once()
    session.rollback.assert_called_once()
    assert result.failed_steps == ["create"]
    assert result.deleted == 1
    assert result.created == 0
    assert result.updated == 1


def test_failed_create_is_retried_next_pass(t0):
    """The desired view stays authoritative; the next pass diffs from scratch and creates again."""
    ctx = FleetContext()
    now = t0 + timedelta(days=5)
    with patch("fleet_core.reconciler.list_units", return_value=[_clinic_row(t0)]), \
            patch("fleet_core.reconciler.list_alerts", return_value=[]), \
            patch("fleet_core.reconciler.create_alerts", side_effect=_DB_DOWN):
        first = reconcile_once(MagicMock(), ctx, now=now)
    assert first.failed_steps == ["create"]
    assert len(ctx.alerts) == 1

    with patch("fleet_core.reconciler.list_units", return_value=[_clinic_row(t0)]), \
            patch("fleet_core.reconciler.list_alerts", return_value=[]), \
            patch("fleet_core.reconciler.create_alerts", side_effect=lambda s, rows: list(rows)) as mock_create:
        second = reconcile_once(MagicMock(), ctx, now=now)
    assert second.failed_steps == []
    assert second.created == 1
    assert mock_create.call_args[0][1][0]["id"] == first.visible[0].id


def test_projection_write_failure_still_reconciles_alerts(t0):
    row = _clinic_row(t0)
    row.status = "in-use"
    row.last_used_date = t0
    row.battery_level = 100
    ctx = FleetContext()
    session = MagicMock()
    session.commit.side_effect = _DB_DOWN
    with patch("fleet_core.reconciler.list_units", return_value=[row]), \
            patch("fleet_core.reconciler.update_unit_if_current", return_value=True), \
            patch("fleet_core.reconciler.list_alerts", return_value=[]):
        result = reconcile_once(session, ctx, now=t0 + timedelta(hours=5))
    assert result.failed_steps == ["projection"]
    assert ctx.get_unit("u-1").battery_level == 85
    assert ctx.get_unit("u-1").status == UnitStatus.IN_USE
    assert ctx.get_unit("u-1").location == UnitLocation.CLINIC


def test_run_reconcile_pass_closes_session():
    """The background pass opens its own session and always closes it."""
    mock_db = MagicMock()
    ctx = FleetContext()
    with patch("fleet_core.reconciler.SessionLocal", return_value=mock_db), \
            patch("fleet_core.reconciler.reconcile_once", side_effect=RuntimeError("boom")):
        with pytest.raises(RuntimeError):
            run_reconcile_pass(ctx)
    mock_db.close.assert_called_once()
