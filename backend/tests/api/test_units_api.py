"""API tests: unit endpoints and lifecycle commands."""
import uuid
from datetime import timedelta

import pytest

from fleet_core.commands import add_unit, execute_command
from fleet_core.notifications import EntityType
from fleet_core.transitions import UnitCommand
from fleet_core.unit_state import utcnow

pytestmark = pytest.mark.api


def _lot() -> str:
    return f"LOT-{uuid.uuid4().hex[:8]}"


@pytest.fixture
def unit(db_session):
    """A used unit ready at the office (registered two days ago)."""
    return add_unit(db_session, code="BF-500", model="Pump X", lot=_lot(), now=utcnow() - timedelta(days=2))


def test_create_unit_success(client):
    """POST /api/units returns 201 and the unit ready at the office."""
    body = {"code": "BF-501", "model": "Pump X", "lot": _lot(), "notes": "new stock"}
    r = client.post("/api/units", json=body)
    assert r.status_code == 201
    data = r.json()
    assert data["code"] == "BF-501"
    assert data["status"] == "ready"
    assert data["location"] == "office"
    assert data["battery_level"] == 100
    assert data["notes"] == "new stock"
    assert data["needs_deep_charge"] is False
    assert data["days_until_deep_charge"] == 5


def test_create_unit_duplicate_lot_409(client, unit):
    r = client.post("/api/units", json={"code": "BF-502", "model": "Pump Y", "lot": unit.lot})
    assert r.status_code == 409
    assert "BF-500" in r.json()["detail"]


def test_create_unit_missing_fields_422(client):
    r = client.post("/api/units", json={"code": "BF-503"})
    assert r.status_code == 422


def test_list_and_get_unit(client, unit):
    r = client.get("/api/units")
    assert r.status_code == 200
    assert unit.id in [u["id"] for u in r.json()]
    r = client.get(f"/api/units/{unit.id}")
    assert r.status_code == 200
    assert r.json()["lot"] == unit.lot


def test_get_unit_not_found_404(client):
    r = client.get("/api/units/nonexistent-id")
    assert r.status_code == 404


def test_check_out_success(client, unit):
    """POST check-out moves a ready unit to the clinic."""
    r = client.post(f"/api/units/{unit.id}/check-out", json={"clinic_name": "Clinic A", "clinic_city": "City B"})
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "at-clinic"
    assert data["location"] == "clinic"
    assert data["clinic_name"] == "Clinic A"
    assert data["clinic_city"] == "City B"


def test_check_out_requires_clinic_422(client, unit):
    r = client.post(f"/api/units/{unit.id}/check-out", json={"clinic_name": "Clinic A"})
    assert r.status_code == 422


def test_invalid_transition_400(client, unit):
    r = client.post(f"/api/units/{unit.id}/manual-disconnect")
    assert r.status_code == 400
    assert "ready" in r.json()["detail"]


def test_command_unknown_unit_404(client):
    r = client.post("/api/units/nonexistent-id/mark-charged")
    assert r.status_code == 404


def test_start_charging_deep(client, unit):
    r = client.post(f"/api/units/{unit.id}/start-charging", json={"is_deep_charge": True})
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "charging"
    assert data["is_deep_charge"] is True
    assert data["time_remaining"].startswith("11h") or data["time_remaining"].startswith("12h")
    assert 0.0 <= data["charging_progress"] < 1.0


def test_start_charging_without_body(client, unit):
    r = client.post(f"/api/units/{unit.id}/start-charging")
    assert r.status_code == 200
    assert r.json()["is_deep_charge"] is False


def test_clinic_flow_and_history(client, unit):
    """check-out, start (patient use), stop, start-deep-charge, check-in are all recorded."""
    base = f"/api/units/{unit.id}"
    assert client.post(f"{base}/check-out", json={"clinic_name": "C", "clinic_city": "X"}).status_code == 200
    assert client.post(f"{base}/start-charging").json()["status"] == "in-use"
    assert client.post(f"{base}/stop-charging").json()["status"] == "at-clinic"
    r = client.post(f"{base}/start-deep-charge")
    assert r.json()["status"] == "charging"
    assert r.json()["location"] == "clinic"
    assert client.post(f"{base}/stop-charging").json()["status"] == "at-clinic"
    assert client.post(f"{base}/check-in").json()["status"] == "charging"
    assert client.post(f"{base}/mark-charged").json()["status"] == "ready"

    history = client.get(f"{base}/history").json()
    assert [h["action"] for h in history][:3] == ["mark_charged", "check_in", "stop_charging"]
    assert history[-1]["action"] == "created"


def test_manual_disconnect_via_api(client, db_session, unit):
    """A finished clinic deep charge is released with manual-disconnect only."""
    now = utcnow()
    execute_command(
        db_session, unit.id, UnitCommand.CHECK_OUT, now=now - timedelta(hours=14),
        clinic_name="C", clinic_city="X",
    )
    execute_command(db_session, unit.id, UnitCommand.START_DEEP_CHARGE, now=now - timedelta(hours=13))
    data = client.get(f"/api/units/{unit.id}").json()
    assert data["status"] == "charging"
    assert data["needs_manual_disconnection"] is True
    assert data["time_remaining"] == "complete"
    assert client.post(f"/api/units/{unit.id}/mark-charged").status_code == 400
    r = client.post(f"/api/units/{unit.id}/manual-disconnect")
    assert r.status_code == 200
    assert r.json()["status"] == "at-clinic"
    assert r.json()["needs_manual_disconnection"] is False


def test_command_publishes_unit_change(client, fleet_ctx, unit):
    seen = []
    fleet_ctx.notifier.subscribe(EntityType.UNIT, seen.append)
    client.post(f"/api/units/{unit.id}/start-charging")
    assert seen == [EntityType.UNIT]


def test_history_unknown_unit_404(client):
    assert client.get("/api/units/nonexistent-id/history").status_code == 404


def test_stats_lots_and_deep_charge_due(client, db_session, unit):
    idle = add_unit(db_session, code="BF-510", model="Pump X", lot=_lot(), now=utcnow() - timedelta(days=6))
    charging = add_unit(db_session, code="BF-511", model="Pump X", lot=_lot(), now=utcnow() - timedelta(days=1))
    execute_command(db_session, charging.id, UnitCommand.START_CHARGING, now=utcnow())

    stats = client.get("/api/units/stats").json()
    assert stats["total"] == 3
    assert stats["ready"] == 2
    assert stats["charging"] == 1
    assert stats["at_clinic"] == 0

    lots = client.get("/api/units/lots").json()
    assert {entry["lot"] for entry in lots} == {unit.lot, idle.lot, charging.lot}

    due = client.get("/api/units/deep-charge-due").json()
    assert [u["id"] for u in due] == [idle.id]
    assert due[0]["needs_deep_charge"] is True
    assert due[0]["days_since_last_use"] == 6


def test_unit_alerts_endpoint(client, unit):
    r = client.get(f"/api/units/{unit.id}/alerts")
    assert r.status_code == 200
    assert r.json() == []
    assert client.get("/api/units/nonexistent-id/alerts").status_code == 404
