from fastapi.testclient import TestClient


def test_healthz_reports_ok(client: TestClient) -> None:
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json()["data"] == {"status": "ok"}


def test_readyz_checks_database_and_storage(client: TestClient) -> None:
    response = client.get("/readyz")
    assert response.status_code == 200
    checks = response.json()["data"]["checks"]
    assert checks["database"]["status"] == "ok"
    assert checks["backup_storage"]["status"] == "ok"
    assert checks["backup_storage"]["backend"] == "local"


def test_version_endpoint_returns_expected_payload(client: TestClient) -> None:
    response = client.get("/version")
    assert response.status_code == 200
    payload = response.json()
    assert payload["code"] == "SUCCESS"
    assert set(payload["data"]) == {"version", "environment"}


def test_metrics_disabled_by_default(client: TestClient) -> None:
    response = client.get("/metrics")
    assert response.status_code == 404
