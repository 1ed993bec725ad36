"""
Configuration settings for the Visitor Intelligence Engine
"""

from typing import Dict, List, Any
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_alias_mappings(raw: str) -> Dict[str, str]:
    """Parse "p81=Kinto Join;nordlayer=Acme" into a mapping"""
    mappings = {}
    for entry in raw.split(";"):
        if "=" not in entry:
            continue
        identifier, company = entry.split("=", 1)
        if identifier.strip() and company.strip():
            mappings[identifier.strip().lower()] = company.strip()
    return mappings


# =============================================================================
# SERVER CONFIGURATION
# =============================================================================

SERVER_CONFIG = {
    "host": os.getenv("HOST", "0.0.0.0"),
    "port": int(os.getenv("PORT", "8000")),
    "log_level": os.getenv("LOG_LEVEL", "INFO"),
    "recent_visits_default": int(os.getenv("RECENT_VISITS_DEFAULT", "10")),
}

# =============================================================================
# SOURCE ADAPTERS (priority order: first listed supplies descriptive fields)
# =============================================================================

SOURCE_CONFIG = {
    "ip_api": {
        "enabled": _env_bool("IP_API_ENABLED", True),
        "url": os.getenv("IP_API_URL", "http://ip-api.com/json/{ip}"),
        "timeout": float(os.getenv("IP_API_TIMEOUT", "4")),
        "fields": "status,message,country,countryCode,regionName,city,isp,org,as,asname,reverse,proxy,hosting",
    },
    "ipinfo": {
        "enabled": _env_bool("IPINFO_ENABLED", True),
        "url": os.getenv("IPINFO_URL", "https://ipinfo.io/{ip}/json"),
        "token": os.getenv("IPINFO_TOKEN", ""),
        "timeout": float(os.getenv("IPINFO_TIMEOUT", "4")),
    },
    "whois": {
        "enabled": _env_bool("WHOIS_ENABLED", True),
        "url": os.getenv("WHOIS_RDAP_URL", "https://rdap.org/ip/{ip}"),
        "timeout": float(os.getenv("WHOIS_TIMEOUT", "5")),
    },
    "reverse_dns": {
        "enabled": _env_bool("REVERSE_DNS_ENABLED", True),
        "timeout": float(os.getenv("REVERSE_DNS_TIMEOUT", "3")),
        # Share of the timeout the system resolver may use before the PTR query
        "system_share": float(os.getenv("REVERSE_DNS_SYSTEM_SHARE", "0.5")),
    },
}

USER_AGENT = os.getenv("LOOKUP_USER_AGENT", "visitor-intel/1.0")

# =============================================================================
# DETECTION CONFIDENCE
# =============================================================================

DETECTION_CONFIDENCE = {
    "alias_mapping": 95,
    "alias_classifier": 90,
    "hostname_fallback": 60,
    "organization_normalized": 75,
    "organization_raw": 50,
    "vpn_generic": 30,
    "local": 100,
    # A later tier may only replace an earlier verdict above this confidence
    "override_threshold": 70,
}

LOCAL_IDENTITY = {
    "company": "Local Network",
    "organization": "Local Network",
    "isp": "Local Network",
    "country": "Local",
    "city": "Local",
}

UNKNOWN_COMPANY = "Unknown"
VPN_GENERIC_COMPANY = "VPN/Proxy User"

# =============================================================================
# ALIAS TABLE SEED
# =============================================================================

DEFAULT_ALIAS_MAPPINGS: Dict[str, str] = _parse_alias_mappings(os.getenv("ALIAS_MAPPINGS", ""))

# =============================================================================
# NORMALIZER VOCABULARY
# =============================================================================

LEGAL_SUFFIXES: List[str] = [
    "llc", "l.l.c", "inc", "incorporated", "corp", "corporation", "ltd", "limited",
    "gmbh", "ag", "sa", "sas", "sarl", "srl", "spa", "bv", "nv", "plc", "llp",
    "co", "company", "pty", "pte", "oy", "ab", "kg", "kk",
]

INFRASTRUCTURE_TERMS: List[str] = [
    "internet", "broadband", "telecom", "telecommunications", "communications",
    "networks", "network", "hosting", "cloud", "vpn", "proxy", "services",
    "isp", "datacenter", "cable", "wireless", "fiber", "fibre", "online",
]

VPN_TERMS: List[str] = ["vpn", "proxy", "tunnel", "anonymous", "privacy"]

# =============================================================================
# HOSTNAME CLASSIFIER
# =============================================================================

# Ordered by decreasing specificity; first match wins.
_TLD = r"(?P<tld>[a-z]{2,}(?:\.[a-z]{2})?)"

HOSTNAME_PATTERNS: List[Dict[str, Any]] = [
    {
        "name": "vpn-gateway",
        "pattern": r"^(?:vpn|remote|gateway|access)\d*\.(?P<org>[a-z0-9-]+)\." + _TLD + r"$",
        "confidence": 95,
    },
    {
        "name": "mail-server",
        "pattern": r"^(?:mail|smtp|mx|exchange|webmail|owa)\d*\.(?P<org>[a-z0-9-]+)\." + _TLD + r"$",
        "confidence": 90,
    },
    {
        "name": "internal-host",
        "pattern": r"(?:^|\.)internal\.(?P<org>[a-z0-9-]+)\." + _TLD + r"$",
        "confidence": 88,
    },
    {
        "name": "corp-subdomain",
        "pattern": r"(?:^|\.)(?P<org>[a-z0-9-]+)\.corp\.",
        "confidence": 87,
    },
    {
        "name": "corp-suffix",
        "pattern": r"(?:^|\.)(?P<org>[a-z0-9]+)-corp\.",
        "confidence": 85,
    },
]

GENERIC_TLD_LABELS: List[str] = ["com", "net", "org", "edu", "gov", "mil", "int"]

# Reverse-DNS zones of residential ISPs and cloud providers; a host under
# one of these says nothing about the visiting organization.
CONSUMER_NETWORK_DOMAINS: List[str] = [
    "comcast.net", "verizon.net", "att.net", "sbcglobal.net", "charter.com",
    "spectrum.com", "rr.com", "cox.net", "centurylink.net", "frontiernet.net",
    "btcentralplus.com", "virginm.net", "t-ipconnect.de", "orange.fr",
    "telstra.net", "shawcable.net", "rogers.com", "bell.ca",
    "amazonaws.com", "googleusercontent.com", "1e100.net", "azure.com",
    "cloudapp.net", "linode.com", "digitalocean.com", "vultr.com",
    "hetzner.com", "your-server.de", "ovh.net", "contabo.net",
]

# =============================================================================
# LEAD SCORING
# =============================================================================

LEAD_SCORING = {
    "method_bonus": {
        "alias-mapping": 35,
        "reverse-dns": 25,
        "organization-name": 20,
        "none": 5,
        "local": 0,
    },
    "known_company_bonus": 40,
    "domain_bonus": 10,
    "country_bonus": 5,
    "vpn_penalty": 25,
    "high_value_threshold": 70,
}

# Display-only threshold for the leads view and dashboard
POTENTIAL_LEAD_THRESHOLD = int(os.getenv("POTENTIAL_LEAD_THRESHOLD", "50"))

KNOWN_COMPANIES: List[str] = [
    "google", "microsoft", "amazon", "apple", "meta", "facebook", "ibm",
    "oracle", "salesforce", "adobe", "cisco", "intel", "nvidia", "netflix",
    "sap", "accenture", "deloitte", "pwc", "kpmg", "mckinsey", "goldman sachs",
    "jpmorgan", "morgan stanley", "bank of america", "citigroup", "visa",
    "mastercard", "paypal", "stripe", "shopify", "atlassian", "hubspot",
    "servicenow", "workday", "snowflake", "databricks", "vmware", "dell",
    "hewlett packard", "siemens", "samsung", "sony", "uber", "airbnb",
]

HIGH_VALUE_COUNTRIES: List[str] = [
    "US", "GB", "DE", "FR", "CA", "AU", "NL", "CH", "SE", "NO", "DK", "IE",
    "JP", "SG", "IL",
    "United States", "United Kingdom", "Germany", "France", "Canada",
    "Australia", "Netherlands", "Switzerland", "Sweden", "Norway", "Denmark",
    "Ireland", "Japan", "Singapore", "Israel",
]

# Residential ISPs and hosting providers; their names identify the network,
# not the visiting organization.
CONSUMER_ISP_NAMES: List[str] = [
    "comcast", "verizon", "at&t", "charter", "spectrum", "cox communications",
    "centurylink", "lumen", "frontier", "t-mobile", "vodafone", "orange",
    "deutsche telekom", "telefonica", "british telecommunications", "virgin media",
    "sky uk", "telstra", "rogers", "shaw", "bell canada", "starlink",
    "digitalocean", "linode", "akamai connected cloud", "ovh", "hetzner",
    "vultr", "choopa", "contabo", "leaseweb", "m247", "datacamp",
]
