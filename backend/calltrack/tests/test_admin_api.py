from calltrack.core.security import create_access_token
from calltrack.services.reconciler import TIMEOUT_TEXT

from conftest import fetch


def test_admin_requires_token(client, store):
    store.create("+15551234567", "CA1")
    response = client.post("/api/admin/calls/CA1/transcript", json={"transcript_text": "x"})
    assert response.status_code == 401

    response = client.post(
        "/api/admin/calls/CA1/transcript",
        json={"transcript_text": "x"},
        headers={"Authorization": "Bearer not-a-token"},
    )
    assert response.status_code == 401


def test_admin_requires_admin_role(client):
    token = create_access_token("viewer", role="VIEWER")
    response = client.get("/api/admin/sweep", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403


def test_correction_overrides_failed_transcript(client, store, admin_headers):
    store.create("+15551234567", "CA1")
    store.update("CA1", {"transcript_status": "failed", "transcript_text": TIMEOUT_TEXT})
    response = client.post(
        "/api/admin/calls/CA1/transcript",
        json={"transcript_text": "Typed up from the recording"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["outcome"] == "corrected"
    assert data["call"]["transcript_status"] == "completed"
    assert fetch("CA1").transcript_text == "Typed up from the recording"


def test_correction_for_unknown_call(client, admin_headers):
    response = client.post(
        "/api/admin/calls/CA_missing/transcript",
        json={"transcript_text": "x"},
        headers=admin_headers,
    )
    assert response.status_code == 404


def test_sweep_trigger_and_report(client, admin_headers):
    assert client.get("/api/admin/sweep", headers=admin_headers).json() is None
    response = client.post("/api/admin/sweep", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["started"] is True
