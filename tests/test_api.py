"""
Tests for the HTTP endpoints, with the service wired to a scripted transport.
"""
import pytest
from fastapi.testclient import TestClient

from plugin_browser.main import create_app
from plugin_browser.services import PluginService
from fakes import RAW_URL, REGISTRY_URL, STATS_URL, epoch_ms, json_response, status_response, text_response


@pytest.fixture
def service(test_settings, transport, clock, sleeper):
    return PluginService(settings=test_settings, transport=transport, clock=clock, sleep=sleeper)


@pytest.fixture
def client(service):
    return TestClient(create_app(service=service, background_refresh=False))


@pytest.fixture
def populated(transport, registry_payload):
    transport.add(REGISTRY_URL, json_response(registry_payload, etag='"reg"'))
    transport.add(STATS_URL, json_response({"p1": {"updated": epoch_ms(2024, 5, 1), "downloads": 42}}))
    return transport


def test_health_endpoint_returns_ok_status(client):
    """Test that /health returns status: ok"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


class TestPlugins:

    def test_list_returns_valid_entries(self, client, populated):
        response = client.get("/plugins")
        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["plugins"][0]["id"] == "p1"
        assert data["meta"]["cacheSource"] == "upstream"

    def test_search_query(self, client, populated):
        assert client.get("/plugins?q=alice").json()["count"] == 1
        assert client.get("/plugins?q=zzz").json()["count"] == 0

    def test_second_request_served_fresh(self, client, populated):
        client.get("/plugins")
        data = client.get("/plugins").json()
        assert data["meta"]["cacheSource"] == "fresh"
        assert populated.calls_to(REGISTRY_URL) == 1

    def test_updated_after(self, client, populated):
        response = client.get("/plugins/updated-after?date=2024-04-01")
        assert response.status_code == 200
        assert [p["id"] for p in response.json()["plugins"]] == ["p1"]

        response = client.get("/plugins/updated-after?date=2024-06-01")
        assert response.json()["count"] == 0

    def test_updated_after_requires_a_date(self, client, populated):
        assert client.get("/plugins/updated-after?date=yesterday").status_code == 422

    def test_detail_with_compatibility(self, client, populated):
        populated.add(
            f"{RAW_URL}/alice/plugin-one/master/manifest.json",
            json_response({"id": "p1", "name": "Plugin One", "version": "1.0.0", "minAppVersion": "1.4.0"}),
        )
        populated.add(f"{RAW_URL}/alice/plugin-one/master/README.md", text_response("# Readme"))

        data = client.get("/plugins/p1?app_version=1.5.0").json()

        assert data["manifest"]["version"] == "1.0.0"
        assert data["readme"] == "# Readme"
        assert data["compatible"] is True

    def test_unknown_plugin_is_404(self, client, populated):
        assert client.get("/plugins/nope").status_code == 404

    def test_release_from_statistics(self, client, populated):
        data = client.get("/plugins/p1/release").json()
        assert data["found"] is True
        assert data["date"].startswith("2024-05-01")
        assert data["downloads"] == 42


class TestFailures:

    def test_rate_limited_without_data_is_503(self, client, transport):
        transport.add(REGISTRY_URL, status_response(429, {"Retry-After": "120"}))
        response = client.get("/plugins")
        assert response.status_code == 503
        assert int(response.headers["retry-after"]) >= 1

    def test_first_ever_failure_is_502(self, client, transport):
        transport.add(REGISTRY_URL, status_response(500))
        response = client.get("/plugins")
        assert response.status_code == 502
        assert "try again" in response.json()["detail"]

    def test_missing_stats_reported_unavailable(self, client, transport):
        transport.add(STATS_URL, status_response(404))
        assert client.get("/stats").json()["available"] is False


class TestCacheEndpoints:

    def test_stats_endpoint(self, client, populated):
        client.get("/plugins")
        data = client.get("/cache/stats").json()
        assert data["registry"]["cached"] is True
        assert data["freshness_window_seconds"] == 2100

    def test_clear(self, client, populated, service):
        client.get("/plugins")
        assert client.post("/cache/clear").json() == {"status": "cleared"}
        assert service.registry.entry is None

    def test_set_freshness(self, client):
        assert client.put("/cache/freshness", json={"seconds": 60}).json() == {"freshness_window_seconds": 60}
        response = client.put("/cache/freshness", json={"refresh_interval_seconds": 600})
        assert response.json()["freshness_window_seconds"] == 900

    def test_freshness_validation(self, client):
        assert client.put("/cache/freshness", json={}).status_code == 422
        assert client.put("/cache/freshness", json={"seconds": -5}).status_code == 422
