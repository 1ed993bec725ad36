"""
Pydantic schemas for the Visitor Intelligence Engine
"""

from enum import Enum
from typing import List, Dict, Optional, Any
from pydantic import BaseModel, Field
from datetime import datetime, timezone
import uuid


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class DetectionMethod(str, Enum):
    """How the visiting organization was identified"""
    ALIAS_MAPPING = "alias-mapping"
    REVERSE_DNS = "reverse-dns"
    ORGANIZATION_NAME = "organization-name"
    NONE = "none"
    LOCAL = "local"


# =============================================================================
# STAGE RESULT SCHEMAS
# =============================================================================

class SourceRecord(BaseModel):
    """Normalized output of one source adapter"""
    source: str
    organization: Optional[str] = None
    isp: Optional[str] = None
    asn: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    hostnames: List[str] = Field(default_factory=list)
    is_proxy: bool = False
    is_hosting: bool = False

    def organization_strings(self) -> List[str]:
        """Organization-like strings in the order they should be trusted"""
        return [s for s in (self.organization, self.isp, self.asn) if s]

    def has_network_details(self) -> bool:
        return any((self.organization, self.isp, self.country, self.city))


class ClassificationVerdict(BaseModel):
    """A classifier's proposed identity for one raw string"""
    is_organization: bool
    company_name: str
    guessed_domain: Optional[str] = None
    confidence: int = Field(0, ge=0, le=100)
    is_vpn: bool = False
    matched_rule: Optional[str] = None
    source_text: Optional[str] = None


class SourceLookupResult(BaseModel):
    """Result from Stage 1: fan-out over all source adapters"""
    records: List[SourceRecord] = Field(default_factory=list)
    responded: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
    processing_time_ms: float = 0

    def hostnames(self) -> List[str]:
        seen = []
        for record in self.records:
            for host in record.hostnames:
                host = host.strip().rstrip(".").lower()
                if host and host not in seen:
                    seen.append(host)
        return seen

    def organization_strings(self) -> List[str]:
        seen = []
        for record in self.records:
            for text in record.organization_strings():
                if text not in seen:
                    seen.append(text)
        return seen


class IdentityRecord(BaseModel):
    """Fused identity of a visiting network address"""
    company: str
    real_company: Optional[str] = None
    domain: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    organization: Optional[str] = None
    isp: Optional[str] = None
    asn: Optional[str] = None
    is_vpn: bool = False
    is_proxy: bool = False
    detection_method: DetectionMethod
    confidence: int = Field(0, ge=0, le=100)
    lead_score: int = Field(0, ge=0, le=100)
    is_high_value: bool = False
    score_breakdown: Dict[str, int] = Field(default_factory=dict)
    sources_responded: List[str] = Field(default_factory=list)

    class Config:
        frozen = True

    @property
    def location(self) -> str:
        parts = [p for p in (self.city, self.country) if p]
        return ", ".join(parts) if parts else "Unknown"


class Visit(BaseModel):
    """One enriched page visit"""
    visit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    address: str
    identity: IdentityRecord
    referrer: str = "direct"
    referrer_domain: str = "direct"
    user_agent: str = "unknown"
    current_url: Optional[str] = None
    page_title: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)

    class Config:
        frozen = True

    def to_summary(self) -> Dict[str, Any]:
        """Flat view used by the API and dashboard"""
        identity = self.identity
        return {
            "visitId": self.visit_id,
            "address": self.address,
            "company": identity.company,
            "realCompany": identity.real_company,
            "domain": identity.domain,
            "location": identity.location,
            "country": identity.country,
            "city": identity.city,
            "organization": identity.organization,
            "isp": identity.isp,
            "isVPN": identity.is_vpn,
            "isProxy": identity.is_proxy,
            "detectionMethod": identity.detection_method.value,
            "confidence": identity.confidence,
            "leadScore": identity.lead_score,
            "isHighValue": identity.is_high_value,
            "referrer": self.referrer,
            "referrerDomain": self.referrer_domain,
            "userAgent": self.user_agent,
            "currentUrl": self.current_url,
            "pageTitle": self.page_title,
            "timestamp": self.timestamp.isoformat(),
        }


# =============================================================================
# API REQUEST SCHEMAS
# =============================================================================

class VisitPayload(BaseModel):
    """Client-supplied page-visit telemetry"""
    referrer: Optional[str] = None
    user_agent: Optional[str] = Field(None, alias="userAgent")
    current_url: Optional[str] = Field(None, alias="currentUrl")
    page_title: Optional[str] = Field(None, alias="pageTitle")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "referrer": "https://www.google.com/",
                "userAgent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0)",
                "currentUrl": "https://example.com/pricing",
                "pageTitle": "Pricing",
            }
        }


class AliasMappingRequest(BaseModel):
    """Request to map a VPN/proxy identifier to the company behind it"""
    vpn_identifier: Optional[str] = Field(None, alias="vpnIdentifier")
    real_company: Optional[str] = Field(None, alias="realCompany")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {"vpnIdentifier": "p81", "realCompany": "Kinto Join"}
        }
