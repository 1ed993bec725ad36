"""
Stage 4: Lead Scoring
=====================
Deterministic lead score for a fused identity.

Components:
- Detection method bonus (alias > reverse DNS > organization name > none)
- Confidence / 10
- Known high-value enterprise bonus
- Resolved domain bonus
- High-value country bonus
- Penalty for anonymized visitors with no company behind them
"""

import time
from typing import Optional, Dict, Any, Iterable

from ..config.settings import (
    LEAD_SCORING,
    KNOWN_COMPANIES,
    HIGH_VALUE_COUNTRIES,
    UNKNOWN_COMPANY,
    VPN_GENERIC_COMPANY,
)


class LeadScoringStage:
    """
    Stage 4: Map an identity to a bounded 0-100 lead score.
    """

    def __init__(
        self,
        scoring: Optional[Dict[str, Any]] = None,
        known_companies: Optional[Iterable[str]] = None,
        high_value_countries: Optional[Iterable[str]] = None,
    ):
        self.scoring = scoring or LEAD_SCORING
        self.known_companies = [c.lower() for c in (known_companies or KNOWN_COMPANIES)]
        self.high_value_countries = {c.lower() for c in (high_value_countries or HIGH_VALUE_COUNTRIES)}

    def process(self, identity: Dict[str, Any]) -> Dict[str, Any]:
        """
        Score a fused identity.

        Args:
            identity: Identity fields from Stage 3

        Returns:
            Dict with lead_score, is_high_value and the per-component breakdown
        """
        start_time = time.time()

        method = identity["detection_method"]
        method = getattr(method, "value", method)

        if method == "local":
            return {
                "lead_score": 0,
                "is_high_value": False,
                "score_breakdown": {},
                "processing_time_ms": round((time.time() - start_time) * 1000, 2),
            }

        breakdown = {
            "method": self.scoring["method_bonus"].get(method, 0),
            "confidence": max(0, min(100, int(identity.get("confidence") or 0))) // 10,
            "known_company": 0,
            "domain": 0,
            "country": 0,
            "vpn_penalty": 0,
        }

        if self.matches_known_company(identity.get("company"), identity.get("real_company")):
            breakdown["known_company"] = self.scoring["known_company_bonus"]
        if identity.get("domain"):
            breakdown["domain"] = self.scoring["domain_bonus"]
        if self.is_high_value_country(identity.get("country_code"), identity.get("country")):
            breakdown["country"] = self.scoring["country_bonus"]
        if identity.get("is_vpn") and not self._has_real_company(identity):
            breakdown["vpn_penalty"] = -self.scoring["vpn_penalty"]

        score = max(0, min(100, sum(breakdown.values())))

        return {
            "lead_score": score,
            "is_high_value": score >= self.scoring["high_value_threshold"],
            "score_breakdown": breakdown,
            "processing_time_ms": round((time.time() - start_time) * 1000, 2),
        }

    def matches_known_company(self, *names: Optional[str]) -> bool:
        for name in names:
            lowered = (name or "").lower()
            if lowered and any(known in lowered for known in self.known_companies):
                return True
        return False

    def is_high_value_country(self, *values: Optional[str]) -> bool:
        return any(v and v.lower() in self.high_value_countries for v in values)

    @staticmethod
    def _has_real_company(identity: Dict[str, Any]) -> bool:
        if identity.get("real_company"):
            return True
        return identity.get("company") not in (None, UNKNOWN_COMPANY, VPN_GENERIC_COMPANY)
