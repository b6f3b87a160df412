"""API tests: alert endpoints (list, reconcile, dismiss, purge)."""
import uuid
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from fleet_core.commands import add_unit, execute_command
from fleet_core.transitions import UnitCommand
from fleet_core.unit_state import utcnow

pytestmark = pytest.mark.api


@pytest.fixture
def idle_clinic_unit(db_session):
    """A unit left at a clinic six days ago."""
    now = utcnow()
    unit = add_unit(
        db_session, code="BF-600", model="Pump X", lot=f"LOT-{uuid.uuid4().hex[:8]}",
        now=now - timedelta(days=7),
    )
    execute_command(
        db_session, unit.id, UnitCommand.CHECK_OUT, now=now - timedelta(days=6),
        clinic_name="Clinic A", clinic_city="City B",
    )
    return unit


def test_list_alerts_empty(client):
    r = client.get("/api/alerts")
    assert r.status_code == 200
    assert r.json() == []


def test_reconcile_creates_alert(client, fleet_ctx, idle_clinic_unit):
    """POST /api/alerts/reconcile runs a pass; the clinic-idle alert appears once."""
    r = client.post("/api/alerts/reconcile")
    assert r.status_code == 200
    summary = r.json()
    assert summary["store_available"] is True
    assert summary["created"] == 1
    assert summary["active_alerts"] == 1

    alerts = client.get("/api/alerts").json()
    assert len(alerts) == 1
    assert alerts[0]["type"] == "deep-charge-needed"
    assert alerts[0]["unit_id"] == idle_clinic_unit.id
    assert "Clinic A" in alerts[0]["message"]

    again = client.post("/api/alerts/reconcile").json()
    assert (again["created"], again["updated"], again["deleted"]) == (0, 0, 0)


def test_dismiss_alert(client, fleet_ctx, idle_clinic_unit):
    """A dismissed alert leaves the active list and is not recreated by the next pass."""
    client.post("/api/alerts/reconcile")
    alert_id = client.get("/api/alerts").json()[0]["id"]
    r = client.post(f"/api/alerts/{alert_id}/dismiss")
    assert r.status_code == 200
    assert r.json()["dismissed"] is True
    assert r.json()["dismissed_at"] is not None

    assert client.get("/api/alerts").json() == []
    assert [a["id"] for a in client.get("/api/alerts?include_dismissed=true").json()] == [alert_id]
    summary = client.post("/api/alerts/reconcile").json()
    assert summary["created"] == 0
    assert summary["active_alerts"] == 0
    assert fleet_ctx.alerts == []

    unit_alerts = client.get(f"/api/units/{idle_clinic_unit.id}/alerts").json()
    assert [a["dismissed"] for a in unit_alerts] == [True]


def test_dismiss_unknown_alert_404(client):
    r = client.post("/api/alerts/nonexistent-id/dismiss")
    assert r.status_code == 404


def test_purge_keeps_dismissed_alert_while_condition_holds(client, fleet_ctx, idle_clinic_unit):
    client.post("/api/alerts/reconcile")
    alert_id = client.get("/api/alerts").json()[0]["id"]
    client.post(f"/api/alerts/{alert_id}/dismiss")
    r = client.delete("/api/alerts/dismissed?older_than_minutes=0")
    assert r.status_code == 200
    assert r.json() == {"deleted": 0}
    assert len(client.get("/api/alerts?include_dismissed=true").json()) == 1


def test_purge_removes_dismissed_alert_once_condition_cleared(client, fleet_ctx, idle_clinic_unit):
    client.post("/api/alerts/reconcile")
    alert_id = client.get("/api/alerts").json()[0]["id"]
    client.post(f"/api/alerts/{alert_id}/dismiss")
    assert client.post(f"/api/units/{idle_clinic_unit.id}/check-in").status_code == 200

    assert client.delete("/api/alerts/dismissed?older_than_minutes=60").json() == {"deleted": 0}
    r = client.delete("/api/alerts/dismissed?older_than_minutes=0")
    assert r.json() == {"deleted": 1}
    remaining = client.get("/api/alerts?include_dismissed=true").json()
    assert alert_id not in [a["id"] for a in remaining]
    assert not any(a["dismissed"] for a in remaining)


def test_purge_rejects_negative_age(client):
    assert client.delete("/api/alerts/dismissed?older_than_minutes=-1").status_code == 422


def test_list_alerts_falls_back_to_local_view(client, fleet_ctx, idle_clinic_unit):
    """With the alert store down, GET /api/alerts serves the last reconciled view."""
    client.post("/api/alerts/reconcile")
    expected = [a["id"] for a in client.get("/api/alerts").json()]
    with patch("api.alerts.list_active_alerts", side_effect=OperationalError("SELECT", {}, Exception("down"))):
        r = client.get("/api/alerts")
    assert r.status_code == 200
    assert [a["id"] for a in r.json()] == expected
