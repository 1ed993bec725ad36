"""
Pytest configuration and shared fixtures for visitor_intel tests.
"""

import asyncio

import pytest

from visitor_intel.engine import VisitorIntelligenceEngine
from visitor_intel.models.schemas import SourceRecord, SourceLookupResult
from visitor_intel.storage.alias_table import AliasTable
from visitor_intel.storage.visit_store import VisitStore


class StaticSource:
    """Fake adapter returning a fixed record after an optional delay."""

    def __init__(self, name, record=None, delay=0.0, error=None, timeout=1.0):
        self.name = name
        self.record = record
        self.delay = delay
        self.error = error
        self.timeout = timeout
        self.calls = []

    async def lookup(self, address):
        self.calls.append(address)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.record


def make_lookup(*records):
    """SourceLookupResult built from records, all counted as responded."""
    return SourceLookupResult(
        records=list(records),
        responded=[r.source for r in records],
    )


@pytest.fixture
def alias_table():
    return AliasTable()


@pytest.fixture
def google_record():
    return SourceRecord(
        source="ip_api",
        organization="Google LLC",
        isp="Google LLC",
        asn="AS15169 Google LLC",
        country="United States",
        country_code="US",
        region="California",
        city="Mountain View",
    )


@pytest.fixture
def make_engine(alias_table):
    """Factory for an engine wired to fake sources."""

    def _make(*sources):
        return VisitorIntelligenceEngine(
            sources=list(sources),
            alias_table=alias_table,
            visit_store=VisitStore(),
        )

    return _make
