"""
API tests for the FastAPI endpoints.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from visitor_intel.api.endpoints import app, get_engine
from visitor_intel.models.schemas import SourceRecord
from tests.conftest import StaticSource


@pytest.fixture
def engine(make_engine, google_record):
    return make_engine(StaticSource("ip_api", google_record))


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_engine] = lambda: engine
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


class TestInfoEndpoints:
    """Tests for / and /health."""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "running"

    def test_health(self, client):
        response = client.get("/health")

        data = response.json()
        assert response.status_code == 200
        assert data["status"] == "healthy"
        assert data["totalVisits"] == 0
        assert data["uptime_seconds"] >= 0


    def test_unknown_route(self, client):
        response = client.post("/no-such-endpoint")

        data = response.json()
        assert response.status_code == 404
        assert data["error"] == "Endpoint not found"
        assert data["method"] == "POST"
        assert data["path"] == "/no-such-endpoint"
        assert "POST /log-visit" in data["availableEndpoints"]


class TestLogVisit:
    """Tests for POST /log-visit."""

    def test_forwarded_address_is_identified(self, client, engine):
        response = client.post(
            "/log-visit",
            json={"referrer": "https://www.google.com/", "currentUrl": "/pricing", "pageTitle": "Pricing"},
            headers={"X-Forwarded-For": "8.8.8.8, 10.0.0.1"},
        )

        data = response.json()
        assert response.status_code == 200
        assert data["success"] is True
        assert data["visit"]["company"] == "Google"
        assert data["visit"]["leadScore"] == 82
        assert data["visit"]["isHighValue"] is True
        assert data["visit"]["detectionMethod"] == "organization-name"
        assert data["totalVisits"] == 1
        assert engine.stage1.sources[0].calls == ["8.8.8.8"]

    def test_test_client_peer_is_local(self, client, engine):
        response = client.post("/log-visit", json={})

        data = response.json()
        assert data["visit"]["company"] == "Local Network"
        assert data["visit"]["detectionMethod"] == "local"
        assert data["visit"]["leadScore"] == 0
        assert engine.stage1.sources[0].calls == []

    def test_no_body(self, client):
        response = client.post("/log-visit", headers={"X-Forwarded-For": "8.8.8.8"})
        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_internal_failure(self, client, engine):
        with patch.object(engine, "process_visit", side_effect=RuntimeError("store offline")):
            response = client.post("/log-visit", json={}, headers={"X-Forwarded-For": "8.8.8.8"})

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Failed to log visit"}


class TestMappings:
    """Tests for POST /add-mapping and GET /mappings."""

    @pytest.mark.parametrize(
        "body",
        [{}, {"vpnIdentifier": "p81"}, {"realCompany": "Kinto Join"}, {"vpnIdentifier": " ", "realCompany": "X"}],
    )
    def test_missing_fields(self, client, body):
        response = client.post("/add-mapping", json=body)

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_malformed_body(self, client):
        response = client.post(
            "/add-mapping",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400

    def test_mapping_applies_to_next_visit(self, client, engine):
        engine.stage1.sources = [
            StaticSource("ip_api", SourceRecord(source="ip_api", organization="P81 Networks", country_code="IL"))
        ]

        response = client.post("/add-mapping", json={"vpnIdentifier": "P81", "realCompany": "Kinto Join"})
        assert response.status_code == 200
        assert response.json()["mapping"] == {"vpnIdentifier": "p81", "realCompany": "Kinto Join"}
        assert response.json()["totalMappings"] == 1

        visit = client.post("/log-visit", json={}, headers={"X-Forwarded-For": "5.6.7.8"}).json()["visit"]
        assert visit["company"] == "Kinto Join"
        assert visit["detectionMethod"] == "alias-mapping"

        listing = client.get("/mappings").json()
        assert listing["mappings"] == [{"vpnIdentifier": "p81", "realCompany": "Kinto Join"}]


class TestLeadViews:
    """Tests for /api/dashboard, /leads and /dashboard."""

    def _log_visits(self, client, engine):
        client.post("/log-visit", json={"currentUrl": "/a"}, headers={"X-Forwarded-For": "8.8.8.8"})
        engine.stage1.sources = [
            StaticSource("ipinfo", SourceRecord(source="ipinfo", organization="Example Residential Broadband"))
        ]
        client.post("/log-visit", json={"currentUrl": "/b"}, headers={"X-Forwarded-For": "203.0.113.10"})

    def test_dashboard_data(self, client, engine):
        self._log_visits(client, engine)

        data = client.get("/api/dashboard", params={"recent": 1}).json()

        assert data["success"] is True
        assert data["totalVisits"] == 2
        assert data["uniqueCompanies"] == 2
        assert data["uniqueDomains"] == 1
        assert data["domains"][0]["domain"] == "direct"
        assert data["domains"][0]["visits"] == 2
        assert [c["company"] for c in data["companies"]] == ["Google", "Example Residential"]
        assert len(data["recentVisits"]) == 1
        assert data["recentVisits"][0]["currentUrl"] == "/b"

    def test_dashboard_rejects_bad_limit(self, client):
        assert client.get("/api/dashboard", params={"recent": -1}).status_code == 400

    def test_leads(self, client, engine):
        self._log_visits(client, engine)

        data = client.get("/leads").json()

        assert data["count"] == 1
        assert data["leads"][0]["company"] == "Google"
        assert data["leads"][0]["leadScore"] >= data["threshold"]

    def test_stats(self, client, engine):
        self._log_visits(client, engine)
        stats = client.get("/api/stats").json()
        assert stats["total_processed"] == 2

    def test_html_dashboard(self, client):
        response = client.get("/dashboard")

        assert response.status_code == 200
        assert "text/html" in response.headers["content-type"]
        assert "Visitor Dashboard" in response.text
        assert "{{THRESHOLD}}" not in response.text
