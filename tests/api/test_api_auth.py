from fastapi.testclient import TestClient

from conftest import actor_headers
from ridedispatch.api.app import create_app


def test_valid_api_key(test_client):
    """Accepts valid API key."""
    response = test_client.get("/auth/validate")
    assert response.status_code == 200
    assert response.json() == {"status": "authenticated"}


def test_invalid_api_key(test_client):
    """Rejects invalid API key."""
    response = test_client.get("/auth/validate", headers={"X-API-Key": "wrong-key"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid API key"


def test_missing_api_key(api_service):
    """Rejects missing API key."""
    client = TestClient(create_app(api_service), raise_server_exceptions=False)
    response = client.get("/rides", headers=actor_headers("rider_1", "rider"))
    assert response.status_code == 422


def test_case_sensitive_key(test_client):
    """Key validation is case-sensitive."""
    response = test_client.get("/auth/validate", headers={"X-API-Key": "TEST-API-KEY"})
    assert response.status_code == 401


def test_unconfigured_key(api_service):
    """Refuses every request when no key is configured."""
    client = TestClient(create_app(api_service, api_key=""), raise_server_exceptions=False)
    response = client.get("/auth/validate", headers={"X-API-Key": "anything"})
    assert response.status_code == 500


def test_health_endpoint_no_auth(api_service):
    """Health endpoint does not require auth."""
    client = TestClient(create_app(api_service))
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_metrics_endpoint_no_auth(api_service):
    """Prometheus scrape endpoint does not require auth."""
    client = TestClient(create_app(api_service))
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "ridedispatch_" in response.text


def test_actor_headers_required(test_client):
    """Ride endpoints need the caller's identity."""
    response = test_client.get("/rides")
    assert response.status_code == 422


def test_unknown_actor_role(test_client):
    response = test_client.get("/rides", headers=actor_headers("rider_1", "admin"))
    assert response.status_code == 422


def test_lifespan_runs_sweeper(api_service):
    """The staleness sweeper runs while the app is serving."""
    with TestClient(create_app(api_service)):
        assert api_service.sweeper.running
    assert not api_service.sweeper.running
