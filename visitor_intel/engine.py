"""
Visitor Intelligence Engine - Main Orchestrator
===============================================
Orchestrates the four-stage pipeline:
  Stage 1: Source Lookups → Stage 2: Classification →
  Stage 3: Identity Fusion → Stage 4: Lead Scoring

Key behaviours:
- Private/local addresses short-circuit before any external call
- Source lookups fan out concurrently, each with its own timeout
- Identification failure is a normal outcome (detection method "none")
"""

import ipaddress
import logging
import threading
import time
from typing import Optional, List, Dict, Any
from urllib.parse import urlparse

from .models.schemas import (
    DetectionMethod,
    IdentityRecord,
    Visit,
    VisitPayload,
)
from .config.settings import (
    DEFAULT_ALIAS_MAPPINGS,
    DETECTION_CONFIDENCE,
    LOCAL_IDENTITY,
    POTENTIAL_LEAD_THRESHOLD,
)
from .stages.stage1_sources import SourceLookupStage
from .stages.stage2_classifiers import ClassificationStage
from .stages.stage3_fusion import FusionStage
from .stages.stage4_scoring import LeadScoringStage
from .storage.alias_table import AliasTable
from .storage.visit_store import VisitStore

logger = logging.getLogger(__name__)


def is_private_address(address: Optional[str]) -> bool:
    """
    True for loopback, RFC1918, link-local and other non-routable
    addresses, and for anything that does not parse as an IP address.
    """
    try:
        ip = ipaddress.ip_address((address or "").strip())
    except ValueError:
        return True
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_unspecified
        or ip.is_reserved
        or ip.is_multicast
    )


def extract_client_address(forwarded_for: Optional[str], peer: Optional[str]) -> str:
    """First X-Forwarded-For entry, falling back to the connection peer"""
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return (peer or "").strip()


def extract_referrer_domain(referrer: Optional[str]) -> str:
    if not referrer:
        return "direct"
    try:
        host = urlparse(referrer).hostname
    except ValueError:
        return "invalid-url"
    return host or "invalid-url"


class VisitorIntelligenceEngine:
    """
    Main engine that identifies visiting organizations and scores them.
    """

    def __init__(
        self,
        sources: Optional[List[Any]] = None,
        alias_table: Optional[AliasTable] = None,
        visit_store: Optional[VisitStore] = None,
    ):
        """
        Initialize the engine.

        Args:
            sources: Source adapters in priority order (defaults from settings)
            alias_table: Shared alias table (seeded from ALIAS_MAPPINGS if omitted)
            visit_store: Visit log (a fresh in-memory store if omitted)
        """
        self.alias_table = alias_table if alias_table is not None else AliasTable(DEFAULT_ALIAS_MAPPINGS)
        self.visit_store = visit_store if visit_store is not None else VisitStore()

        # Initialize stages
        self.stage1 = SourceLookupStage(sources)
        self.stage2 = ClassificationStage(self.alias_table)
        self.stage3 = FusionStage(self.alias_table)
        self.stage4 = LeadScoringStage()

        self.started_at = time.time()
        self._stats_lock = threading.Lock()
        self.reset_stats()

    async def identify(self, address: str) -> IdentityRecord:
        """
        Resolve an address to a scored identity.

        Args:
            address: Visitor IP address (any string is accepted)

        Returns:
            IdentityRecord; never raises for lookup failures
        """
        start_time = time.time()

        if is_private_address(address):
            identity = self._local_identity()
            self._record(identity, [], [], start_time)
            return identity

        lookup = await self.stage1.process(address)
        classification = self.stage2.process(lookup)
        fused = self.stage3.process(lookup, classification)
        scored = self.stage4.process(fused)

        fused.pop("processing_time_ms", None)
        scored.pop("processing_time_ms", None)
        identity = IdentityRecord(**fused, **scored)

        logger.info(
            "Identified %s as %s via %s (confidence=%d, score=%d)",
            address, identity.company, identity.detection_method.value,
            identity.confidence, identity.lead_score,
        )
        self._record(identity, lookup.responded, lookup.failed, start_time)
        return identity

    async def process_visit(self, address: str, payload: Optional[VisitPayload] = None) -> Visit:
        """
        Identify the visitor, build the visit and append it to the store.
        """
        payload = payload or VisitPayload()
        identity = await self.identify(address)

        visit = Visit(
            address=address or "unknown",
            identity=identity,
            referrer=payload.referrer or "direct",
            referrer_domain=extract_referrer_domain(payload.referrer),
            user_agent=payload.user_agent or "unknown",
            current_url=payload.current_url,
            page_title=payload.page_title,
        )
        self.visit_store.append(visit)
        return visit

    def add_alias(self, identifier: str, real_company: str):
        """Register a VPN/proxy identifier; visible to the next identification"""
        return self.alias_table.add(identifier, real_company)

    # =========================================================================
    # Views
    # =========================================================================

    def dashboard(self, recent: int = 10) -> Dict[str, Any]:
        companies = self.visit_store.rollup()
        domains = self.visit_store.referrer_rollup()
        return {
            "success": True,
            "totalVisits": self.visit_store.count(),
            "uniqueDomains": len(domains),
            "domains": domains,
            "uniqueCompanies": len(companies),
            "highValueCompanies": sum(1 for c in companies if c["isHighValue"]),
            "potentialLeads": sum(1 for c in companies if c["leadScore"] >= POTENTIAL_LEAD_THRESHOLD),
            "companies": companies,
            "recentVisits": [v.to_summary() for v in self.visit_store.recent(recent)],
        }

    def leads(self, threshold: int = POTENTIAL_LEAD_THRESHOLD) -> List[Dict[str, Any]]:
        return self.visit_store.leads(threshold)

    def uptime_seconds(self) -> float:
        return round(time.time() - self.started_at, 1)

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self) -> Dict[str, Any]:
        """Get engine statistics"""
        with self._stats_lock:
            stats = dict(self.stats)
            stats["source_success"] = dict(self.stats["source_success"])
            stats["source_failure"] = dict(self.stats["source_failure"])
        if stats["total_processed"] > 0:
            stats["identification_rate"] = round(
                stats["identified"] / stats["total_processed"] * 100, 1
            )
            stats["avg_processing_time_ms"] = round(
                stats["total_processing_time_ms"] / stats["total_processed"], 2
            )
        return stats

    def reset_stats(self):
        """Reset engine statistics"""
        with self._stats_lock:
            self.stats = {
                "total_processed": 0,
                "local": 0,
                "identified": 0,
                "unknown": 0,
                "high_value": 0,
                "total_processing_time_ms": 0,
                "source_success": {},
                "source_failure": {},
            }

    # =========================================================================
    # Helper Methods
    # =========================================================================

    def _local_identity(self) -> IdentityRecord:
        return IdentityRecord(
            company=LOCAL_IDENTITY["company"],
            organization=LOCAL_IDENTITY["organization"],
            isp=LOCAL_IDENTITY["isp"],
            country=LOCAL_IDENTITY["country"],
            city=LOCAL_IDENTITY["city"],
            detection_method=DetectionMethod.LOCAL,
            confidence=DETECTION_CONFIDENCE["local"],
            lead_score=0,
            is_high_value=False,
        )

    def _record(
        self,
        identity: IdentityRecord,
        responded: List[str],
        failed: List[str],
        start_time: float,
    ):
        total_time = (time.time() - start_time) * 1000
        with self._stats_lock:
            self.stats["total_processed"] += 1
            self.stats["total_processing_time_ms"] += total_time
            if identity.detection_method == DetectionMethod.LOCAL:
                self.stats["local"] += 1
            elif identity.detection_method == DetectionMethod.NONE:
                self.stats["unknown"] += 1
            else:
                self.stats["identified"] += 1
            if identity.is_high_value:
                self.stats["high_value"] += 1
            for name in responded:
                self.stats["source_success"][name] = self.stats["source_success"].get(name, 0) + 1
            for name in failed:
                self.stats["source_failure"][name] = self.stats["source_failure"].get(name, 0) + 1
