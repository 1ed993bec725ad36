"""
Stage 2: Classification
=======================
Pattern matching that turns raw reverse-DNS hostnames and organization/ISP
strings into candidate company identities (verdicts) with a confidence.

Classifiers:
- Normalizer: strips legal suffixes, telecom vocabulary and AS numbers
- Hostname classifier: ordered pattern table, registrable-label fallback
- Organization classifier: VPN vocabulary, alias lookup, normalized name
"""

import ipaddress
import re
import time
from typing import List, Dict, Optional, Any, Iterable

import tldextract

from ..models.schemas import ClassificationVerdict, SourceLookupResult
from ..config.settings import (
    LEGAL_SUFFIXES,
    INFRASTRUCTURE_TERMS,
    VPN_TERMS,
    HOSTNAME_PATTERNS,
    GENERIC_TLD_LABELS,
    CONSUMER_NETWORK_DOMAINS,
    CONSUMER_ISP_NAMES,
    DETECTION_CONFIDENCE,
    VPN_GENERIC_COMPANY,
)

# Bundled public-suffix snapshot only; never fetched at runtime
_EXTRACT = tldextract.TLDExtract(suffix_list_urls=())

_ASN_RE = re.compile(r"\bAS\d+\b", re.IGNORECASE)
_TERMS_RE = re.compile(
    r"(?<![\w.&-])(?:"
    + "|".join(re.escape(t) for t in sorted(LEGAL_SUFFIXES + INFRASTRUCTURE_TERMS, key=len, reverse=True))
    + r")\.?(?![\w&.-])",
    re.IGNORECASE,
)
_SPACE_BEFORE_PUNCT_RE = re.compile(r"\s+([,;])")
_REPEATED_PUNCT_RE = re.compile(r"([,;])(?:\s*[,;])+")
_EMPTY_PARENS_RE = re.compile(r"\(\s*\)")
_WHITESPACE_RE = re.compile(r"\s+")
_EDGE_CHARS = " ,;:-&/|"
_SINGLE_WORD_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9-]*")


# =============================================================================
# NORMALIZER
# =============================================================================

def _strip_once(text: str) -> str:
    text = _ASN_RE.sub(" ", text)
    text = _TERMS_RE.sub(" ", text)
    text = _EMPTY_PARENS_RE.sub(" ", text)
    text = _SPACE_BEFORE_PUNCT_RE.sub(r"\1", text)
    text = _REPEATED_PUNCT_RE.sub(r"\1", text)
    text = _WHITESPACE_RE.sub(" ", text)
    return text.strip(_EDGE_CHARS)


def normalize_company_name(raw: Optional[str]) -> str:
    """
    Clean an organization/ISP string into a display name.

    "AS15169 Google LLC" -> "Google", "Example Residential Broadband" ->
    "Example Residential". Returns the original (trimmed) string when
    nothing would be left.
    """
    original = (raw or "").strip()
    text = original
    # Stripping can expose a new edge term ("-LLC Foo"), so run to a fixed point
    while True:
        cleaned = _strip_once(text)
        if cleaned == text:
            break
        text = cleaned
    return text or original


def guess_domain(company: str) -> Optional[str]:
    """Single-word company names map to a plausible .com domain"""
    if company and _SINGLE_WORD_RE.fullmatch(company):
        return f"{company.lower()}.com"
    return None


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def registrable_domain(hostname: str) -> Optional[str]:
    ext = _EXTRACT(hostname)
    if ext.domain and ext.suffix:
        return f"{ext.domain}.{ext.suffix}"
    return None


# =============================================================================
# HOSTNAME CLASSIFIER
# =============================================================================

class HostnameClassifier:
    """
    Decide whether a reverse-DNS hostname names an organization.

    Named patterns are tried in order and the first match wins. Without a
    match, the registrable label ("acme" in "host7.acme.de") is used at a
    lower confidence unless it is a generic TLD token.
    """

    def __init__(
        self,
        patterns: Optional[List[Dict[str, Any]]] = None,
        generic_labels: Optional[Iterable[str]] = None,
        consumer_domains: Optional[Iterable[str]] = None,
    ):
        self.patterns = patterns or HOSTNAME_PATTERNS
        self.generic_labels = set(generic_labels or GENERIC_TLD_LABELS)
        self.consumer_domains = set(consumer_domains or CONSUMER_NETWORK_DOMAINS)
        self.fallback_confidence = DETECTION_CONFIDENCE["hostname_fallback"]
        self._compile_patterns()

    def _compile_patterns(self):
        """Pre-compile regex patterns for performance"""
        self.compiled = []
        for p in self.patterns:
            self.compiled.append({
                "regex": re.compile(p["pattern"], re.IGNORECASE),
                "name": p["name"],
                "confidence": p["confidence"],
            })

    def classify(self, hostname: Optional[str]) -> Optional[ClassificationVerdict]:
        host = (hostname or "").strip().rstrip(".").lower()
        if not host or "." not in host or _is_ip_literal(host):
            return None

        domain = registrable_domain(host)
        if domain and domain in self.consumer_domains:
            return ClassificationVerdict(
                is_organization=False,
                company_name=domain,
                guessed_domain=domain,
                confidence=0,
                matched_rule="consumer-network",
                source_text=host,
            )

        for p in self.compiled:
            match = p["regex"].search(host)
            if not match:
                continue
            org = match.group("org")
            if org in self.generic_labels:
                continue
            groups = match.groupdict()
            if groups.get("tld"):
                guessed = f"{org}.{groups['tld']}"
            else:
                guessed = domain
            return ClassificationVerdict(
                is_organization=True,
                company_name=org.capitalize(),
                guessed_domain=guessed,
                confidence=p["confidence"],
                matched_rule=p["name"],
                source_text=host,
            )

        return self._fallback(host, domain)

    def _fallback(self, host: str, domain: Optional[str]) -> Optional[ClassificationVerdict]:
        ext = _EXTRACT(host)
        if ext.suffix and ext.domain:
            label = ext.domain
        else:
            label = host.split(".")[-2]
        # Numeric labels ("12" in "host.12.lan") never name a company
        if not label or label in self.generic_labels or not any(c.isalpha() for c in label):
            return None
        return ClassificationVerdict(
            is_organization=True,
            company_name=label.capitalize(),
            guessed_domain=domain,
            confidence=self.fallback_confidence,
            matched_rule="registrable-label",
            source_text=host,
        )


# =============================================================================
# ORGANIZATION CLASSIFIER
# =============================================================================

class OrganizationClassifier:
    """
    Decide whether an organization/ISP string names a real organization.
    """

    def __init__(self, alias_table=None, vpn_terms: Optional[Iterable[str]] = None):
        self.alias_table = alias_table
        self.vpn_terms = [t.lower() for t in (vpn_terms or VPN_TERMS)]
        self._consumer_re = re.compile(
            r"\b(?:" + "|".join(re.escape(n) for n in CONSUMER_ISP_NAMES) + r")\b",
            re.IGNORECASE,
        )

    def is_vpn_text(self, text: Optional[str]) -> bool:
        lowered = (text or "").lower()
        return any(term in lowered for term in self.vpn_terms)

    def classify(self, text: Optional[str]) -> Optional[ClassificationVerdict]:
        text = (text or "").strip()
        if not text:
            return None

        if self.is_vpn_text(text):
            alias = self.alias_table.match(text) if self.alias_table is not None else None
            if alias:
                return ClassificationVerdict(
                    is_organization=True,
                    company_name=alias[1],
                    guessed_domain=guess_domain(alias[1]),
                    confidence=DETECTION_CONFIDENCE["alias_classifier"],
                    is_vpn=True,
                    matched_rule=f"alias:{alias[0]}",
                    source_text=text,
                )
            return ClassificationVerdict(
                is_organization=False,
                company_name=VPN_GENERIC_COMPANY,
                confidence=DETECTION_CONFIDENCE["vpn_generic"],
                is_vpn=True,
                matched_rule="vpn-vocabulary",
                source_text=text,
            )

        cleaned = normalize_company_name(text)
        if cleaned != text and len(cleaned) > 2:
            company, confidence, rule = cleaned, DETECTION_CONFIDENCE["organization_normalized"], "normalized"
        else:
            company, confidence, rule = text, DETECTION_CONFIDENCE["organization_raw"], "raw"

        return ClassificationVerdict(
            is_organization=not self._consumer_re.search(text),
            company_name=company,
            guessed_domain=guess_domain(company),
            confidence=confidence,
            matched_rule=rule,
            source_text=text,
        )


# =============================================================================
# STAGE
# =============================================================================

def select_best_verdict(
    verdicts: Iterable[Optional[ClassificationVerdict]],
) -> Optional[ClassificationVerdict]:
    """
    Keep the highest-confidence usable verdict; ties go to the earliest.

    Usable means an organization, or a VPN verdict (which still tells the
    scorer that the visitor hides behind an anonymizer).
    """
    best = None
    for verdict in verdicts:
        if verdict is None or not (verdict.is_organization or verdict.is_vpn):
            continue
        if best is None or verdict.confidence > best.confidence:
            best = verdict
    return best


class ClassificationStage:
    """
    Stage 2: Classify every hostname and organization string from Stage 1.
    """

    def __init__(
        self,
        alias_table=None,
        hostname_classifier: Optional[HostnameClassifier] = None,
        organization_classifier: Optional[OrganizationClassifier] = None,
    ):
        self.hostname_classifier = hostname_classifier or HostnameClassifier()
        self.organization_classifier = organization_classifier or OrganizationClassifier(alias_table)

    def process(self, lookup: SourceLookupResult) -> Dict[str, Any]:
        """
        Args:
            lookup: Source records from Stage 1

        Returns:
            Dict with the best "hostname" and "organization" verdicts (or
            None), whether any string carried VPN vocabulary, and timing
        """
        start_time = time.time()

        hostname_verdict = select_best_verdict(
            self.hostname_classifier.classify(h) for h in lookup.hostnames()
        )
        org_strings = lookup.organization_strings()
        organization_verdict = select_best_verdict(
            self.organization_classifier.classify(s) for s in org_strings
        )
        vpn_vocabulary = any(self.organization_classifier.is_vpn_text(s) for s in org_strings)

        return {
            "hostname": hostname_verdict,
            "organization": organization_verdict,
            "vpn_vocabulary": vpn_vocabulary,
            "processing_time_ms": round((time.time() - start_time) * 1000, 2),
        }
