"""
Stage 3: Identity Fusion
========================
Combines source records and classifier verdicts into one identity under a
fixed precedence:

  1. Alias mapping (manual VPN/proxy override) - final when it matches
  2. Reverse-DNS hostname verdict
  3. Organization-name verdict
  4. Unknown

Between tiers 2 and 3 the earlier verdict stands unless the later one is
both above the override threshold and strictly more confident.

Descriptive fields (geo, org, ISP, proxy flags) come from the highest-priority record
that has any, regardless of which tier identified the company.
"""

import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from ..models.schemas import (
    ClassificationVerdict,
    DetectionMethod,
    SourceLookupResult,
    SourceRecord,
)
from ..config.settings import DETECTION_CONFIDENCE, UNKNOWN_COMPANY

logger = logging.getLogger(__name__)


def _clamp(value: int) -> int:
    return max(0, min(100, int(value)))


class FusionStage:
    """
    Stage 3: Select the identity for one address.
    """

    def __init__(self, alias_table, override_threshold: Optional[int] = None):
        """
        Args:
            alias_table: Shared AliasTable consulted before any classifier
            override_threshold: Minimum confidence for a later tier to
                replace an earlier verdict
        """
        self.alias_table = alias_table
        self.override_threshold = (
            DETECTION_CONFIDENCE["override_threshold"]
            if override_threshold is None
            else override_threshold
        )

    def process(
        self,
        lookup: SourceLookupResult,
        classification: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Args:
            lookup: Source records from Stage 1
            classification: Verdicts from Stage 2

        Returns:
            Identity fields (everything but the lead score) plus timing
        """
        start_time = time.time()

        identity = self._descriptive_fields(lookup.records)
        identity["sources_responded"] = list(lookup.responded)
        identity["is_vpn"] = bool(classification.get("vpn_vocabulary"))

        alias = self._match_alias(lookup.organization_strings())
        if alias:
            identifier, company = alias
            identity.update({
                "company": company,
                "real_company": company,
                "domain": None,
                "is_vpn": True,
                "detection_method": DetectionMethod.ALIAS_MAPPING,
                "confidence": DETECTION_CONFIDENCE["alias_mapping"],
            })
            logger.info("Alias %r matched, resolved to %s", identifier, company)
        else:
            method, verdict = self._select_verdict(
                classification.get("hostname"),
                classification.get("organization"),
            )
            if verdict is None:
                identity.update({
                    "company": UNKNOWN_COMPANY,
                    "real_company": None,
                    "domain": None,
                    "detection_method": DetectionMethod.NONE,
                    "confidence": 0,
                })
            else:
                identity.update({
                    "company": verdict.company_name,
                    # Only alias-backed VPN verdicts know who is behind the VPN
                    "real_company": verdict.company_name if verdict.is_vpn and verdict.is_organization else None,
                    "domain": verdict.guessed_domain,
                    "is_vpn": identity["is_vpn"] or verdict.is_vpn,
                    "detection_method": method,
                    "confidence": _clamp(verdict.confidence),
                })

        identity["processing_time_ms"] = round((time.time() - start_time) * 1000, 2)
        return identity

    def _match_alias(self, texts: List[str]) -> Optional[Tuple[str, str]]:
        for text in texts:
            match = self.alias_table.match(text)
            if match:
                return match
        return None

    def _select_verdict(
        self,
        hostname: Optional[ClassificationVerdict],
        organization: Optional[ClassificationVerdict],
    ) -> Tuple[DetectionMethod, Optional[ClassificationVerdict]]:
        tiers = [
            (DetectionMethod.REVERSE_DNS, hostname),
            (DetectionMethod.ORGANIZATION_NAME, organization),
        ]

        chosen_method, chosen = DetectionMethod.NONE, None
        for method, verdict in tiers:
            if verdict is None:
                continue
            if chosen is None:
                chosen_method, chosen = method, verdict
            elif verdict.confidence > self.override_threshold and verdict.confidence > chosen.confidence:
                logger.debug(
                    "%s verdict %s (%d) overrides %s verdict %s (%d)",
                    method.value, verdict.company_name, verdict.confidence,
                    chosen_method.value, chosen.company_name, chosen.confidence,
                )
                chosen_method, chosen = method, verdict
        return chosen_method, chosen

    def _descriptive_fields(self, records: List[SourceRecord]) -> Dict[str, Any]:
        fields = {
            "country": None,
            "country_code": None,
            "region": None,
            "city": None,
            "organization": None,
            "isp": None,
            "asn": None,
            "is_proxy": False,
        }
        for record in records:
            if record.has_network_details():
                fields.update({
                    "country": record.country or record.country_code,
                    "country_code": record.country_code,
                    "region": record.region,
                    "city": record.city,
                    "organization": record.organization,
                    "isp": record.isp,
                    "asn": record.asn,
                    "is_proxy": record.is_proxy or record.is_hosting,
                })
                break
        return fields
