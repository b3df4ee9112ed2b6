def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_ready_reports_checks(client):
    response = client.get("/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    assert data["checks"]["database"] == "ok"
    assert data["checks"]["twilio"] == "not_configured"


def test_public_config(client):
    data = client.get("/api/config").json()
    assert data["available_modes"] == ["browser", "phone"]
    assert data["twilio_configured"] is False
    assert data["browser_calling_configured"] is False
    assert data["sweeper_enabled"] is False
