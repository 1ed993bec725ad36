"""
Unit tests for the VisitorIntelligenceEngine orchestrator.
"""

import asyncio

import pytest

from visitor_intel.engine import (
    extract_client_address,
    extract_referrer_domain,
    is_private_address,
)
from visitor_intel.models.schemas import DetectionMethod, SourceRecord, VisitPayload
from tests.conftest import StaticSource


class TestAddressHelpers:
    """Tests for the address and referrer helpers."""

    @pytest.mark.parametrize(
        "address",
        ["127.0.0.1", "10.1.2.3", "172.16.0.9", "192.168.1.5", "169.254.1.1", "::1",
         "fe80::1", "::ffff:192.168.1.5", "0.0.0.0", "not-an-ip", "", None],
    )
    def test_private_addresses(self, address):
        assert is_private_address(address)

    @pytest.mark.parametrize("address", ["8.8.8.8", "1.1.1.1", "2001:4860:4860::8888", "::ffff:8.8.8.8"])
    def test_public_addresses(self, address):
        assert not is_private_address(address)

    def test_forwarded_for_first_entry(self):
        assert extract_client_address("8.8.8.8, 10.0.0.1", "127.0.0.1") == "8.8.8.8"

    def test_peer_fallback(self):
        assert extract_client_address(None, "203.0.113.7") == "203.0.113.7"
        assert extract_client_address(" , ", "203.0.113.7") == "203.0.113.7"
        assert extract_client_address(None, None) == ""

    @pytest.mark.parametrize(
        "referrer,expected",
        [
            (None, "direct"),
            ("", "direct"),
            ("https://www.google.com/search?q=x", "www.google.com"),
            ("not a url", "invalid-url"),
            ("http://[::1", "invalid-url"),
        ],
    )
    def test_referrer_domain(self, referrer, expected):
        assert extract_referrer_domain(referrer) == expected


class TestIdentify:
    """Tests for VisitorIntelligenceEngine.identify."""

    @pytest.mark.parametrize("address", ["127.0.0.1", "10.0.0.1", "192.168.1.5", "::1", "not-an-ip"])
    def test_local_addresses_make_no_calls(self, make_engine, google_record, address):
        source = StaticSource("ip_api", google_record)
        engine = make_engine(source)

        identity = asyncio.run(engine.identify(address))

        assert source.calls == []
        assert identity.detection_method == DetectionMethod.LOCAL
        assert identity.company == "Local Network"
        assert identity.lead_score == 0
        assert identity.is_high_value is False

    def test_known_company_by_organization(self, make_engine, google_record):
        engine = make_engine(StaticSource("ip_api", google_record))

        identity = asyncio.run(engine.identify("8.8.8.8"))

        assert identity.company == "Google"
        assert identity.domain == "google.com"
        assert identity.detection_method == DetectionMethod.ORGANIZATION_NAME
        assert identity.confidence == 75
        assert identity.lead_score == 82
        assert identity.is_high_value is True
        assert identity.location == "Mountain View, United States"

    def test_residential_organization_is_moderate(self, make_engine):
        record = SourceRecord(
            source="ip_api",
            organization="Example Residential Broadband",
            country="United States",
            country_code="US",
        )
        engine = make_engine(StaticSource("ip_api", record))

        identity = asyncio.run(engine.identify("203.0.113.10"))

        assert identity.company == "Example Residential"
        assert identity.lead_score == 32
        assert identity.is_high_value is False

    def test_reverse_dns_identification(self, make_engine):
        record = SourceRecord(source="reverse_dns", hostnames=["mail.acme-corp.com"])
        engine = make_engine(StaticSource("reverse_dns", record))

        identity = asyncio.run(engine.identify("198.51.100.4"))

        assert identity.company == "Acme-corp"
        assert identity.domain == "acme-corp.com"
        assert identity.detection_method == DetectionMethod.REVERSE_DNS
        assert identity.lead_score == 25 + 9 + 10

    def test_alias_identification(self, make_engine, alias_table):
        alias_table.add("p81", "Kinto Join")
        record = SourceRecord(source="ip_api", organization="P81 Networks", country_code="IL")
        engine = make_engine(StaticSource("ip_api", record))

        identity = asyncio.run(engine.identify("5.6.7.8"))

        assert identity.company == "Kinto Join"
        assert identity.real_company == "Kinto Join"
        assert identity.is_vpn is True
        assert identity.detection_method == DetectionMethod.ALIAS_MAPPING
        assert identity.lead_score == 35 + 9 + 5

    def test_alias_added_after_start_applies(self, make_engine):
        record = SourceRecord(source="ip_api", organization="Perimeter 81 Secure VPN")
        engine = make_engine(StaticSource("ip_api", record))

        before = asyncio.run(engine.identify("5.6.7.8"))
        engine.add_alias("perimeter 81", "Kinto Join")
        after = asyncio.run(engine.identify("5.6.7.8"))

        assert before.company == "VPN/Proxy User"
        assert before.lead_score == 0
        assert after.company == "Kinto Join"

    def test_all_sources_fail(self, make_engine):
        engine = make_engine(
            StaticSource("ip_api", error=RuntimeError("down")),
            StaticSource("whois", delay=1.0, timeout=0.01),
            StaticSource("reverse_dns"),
        )

        identity = asyncio.run(engine.identify("8.8.4.4"))

        assert identity.company == "Unknown"
        assert identity.detection_method == DetectionMethod.NONE
        assert identity.confidence == 0
        assert identity.lead_score == 5
        assert identity.sources_responded == []

    def test_identity_is_immutable(self, make_engine, google_record):
        engine = make_engine(StaticSource("ip_api", google_record))
        identity = asyncio.run(engine.identify("8.8.8.8"))

        with pytest.raises(Exception):
            identity.company = "Someone else"


class TestProcessVisit:
    """Tests for VisitorIntelligenceEngine.process_visit and views."""

    def test_visit_is_stored(self, make_engine, google_record):
        engine = make_engine(StaticSource("ip_api", google_record))
        payload = VisitPayload(
            referrer="https://news.ycombinator.com/item?id=1",
            userAgent="Mozilla/5.0",
            currentUrl="https://example.com/pricing",
            pageTitle="Pricing",
        )

        visit = asyncio.run(engine.process_visit("8.8.8.8", payload))

        assert engine.visit_store.count() == 1
        assert visit.referrer_domain == "news.ycombinator.com"
        assert visit.user_agent == "Mozilla/5.0"
        summary = visit.to_summary()
        assert summary["company"] == "Google"
        assert summary["currentUrl"] == "https://example.com/pricing"

    def test_defaults_without_payload(self, make_engine):
        engine = make_engine()

        visit = asyncio.run(engine.process_visit("127.0.0.1"))

        assert visit.referrer == "direct"
        assert visit.referrer_domain == "direct"
        assert visit.user_agent == "unknown"

    def test_dashboard_and_leads(self, make_engine, google_record):
        residential = SourceRecord(source="ipinfo", organization="Example Residential Broadband")
        engine = make_engine(StaticSource("ip_api", google_record))
        asyncio.run(engine.process_visit("8.8.8.8", VisitPayload(referrer="https://www.google.com/")))
        asyncio.run(engine.process_visit("8.8.8.8"))

        engine.stage1.sources = [StaticSource("ipinfo", residential)]
        asyncio.run(engine.process_visit("203.0.113.10"))

        data = engine.dashboard(recent=2)

        assert data["totalVisits"] == 3
        assert data["uniqueDomains"] == 2
        assert [(d["domain"], d["visits"]) for d in data["domains"]] == [("direct", 2), ("www.google.com", 1)]
        assert data["uniqueCompanies"] == 2
        assert data["highValueCompanies"] == 1
        assert data["potentialLeads"] == 1
        assert [c["company"] for c in data["companies"]] == ["Google", "Example Residential"]
        assert data["companies"][0]["visits"] == 2
        assert data["recentVisits"][0]["company"] == "Example Residential"
        assert len(data["recentVisits"]) == 2
        assert [c["company"] for c in engine.leads()] == ["Google"]


class TestStats:
    """Tests for engine statistics."""

    def test_counts_by_outcome(self, make_engine, google_record):
        engine = make_engine(
            StaticSource("ip_api", google_record),
            StaticSource("whois", error=RuntimeError("down")),
        )

        asyncio.run(engine.identify("8.8.8.8"))
        asyncio.run(engine.identify("127.0.0.1"))

        stats = engine.get_stats()
        assert stats["total_processed"] == 2
        assert stats["identified"] == 1
        assert stats["local"] == 1
        assert stats["high_value"] == 1
        assert stats["source_success"] == {"ip_api": 1}
        assert stats["source_failure"] == {"whois": 1}
        assert stats["identification_rate"] == 50.0

    def test_reset(self, make_engine):
        engine = make_engine()
        asyncio.run(engine.identify("127.0.0.1"))

        engine.reset_stats()

        assert engine.get_stats()["total_processed"] == 0
        assert "identification_rate" not in engine.get_stats()
