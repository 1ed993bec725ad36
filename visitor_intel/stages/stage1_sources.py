"""
Stage 1: Source Lookups
=======================
Independent, timeout-bounded lookups of a public address against external
services. Every adapter returns a SourceRecord or None and never raises.

Adapters (priority order):
- ip-api.com geo/ISP lookup
- ipinfo.io secondary lookup
- RDAP (WHOIS registry) lookup
- Reverse DNS (system resolver, PTR query fallback)

All enabled adapters run concurrently; each branch has its own timeout so
a slow source only costs its own data.
"""

import asyncio
import logging
import re
import socket
import time
from typing import Any, Dict, List, Optional

import dns.asyncresolver
import dns.exception
import dns.reversename
import httpx

from ..models.schemas import SourceRecord, SourceLookupResult
from ..config.settings import SOURCE_CONFIG, USER_AGENT

logger = logging.getLogger(__name__)

_ASN_PREFIX_RE = re.compile(r"^(AS\d+)\s+(.+)$", re.IGNORECASE)


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


# =============================================================================
# HTTP ADAPTERS
# =============================================================================

class HTTPSource:
    """Base class for JSON-over-HTTP lookup services"""

    name = "http"

    def __init__(
        self,
        url: str,
        timeout: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.transport = transport

    def _request_params(self) -> Dict[str, str]:
        return {}

    def _request_headers(self) -> Dict[str, str]:
        return {"User-Agent": USER_AGENT, "Accept": "application/json"}

    async def _fetch_json(self, address: str) -> Optional[Dict[str, Any]]:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            follow_redirects=True,
            headers=self._request_headers(),
            transport=self.transport,
        ) as client:
            response = await client.get(self.url.format(ip=address), params=self._request_params())

        if response.status_code != 200:
            logger.warning("%s returned HTTP %s for %s", self.name, response.status_code, address)
            return None
        data = response.json()
        if not isinstance(data, dict):
            logger.warning("%s returned a non-object body for %s", self.name, address)
            return None
        return data

    async def lookup(self, address: str) -> Optional[SourceRecord]:
        try:
            data = await self._fetch_json(address)
        except httpx.HTTPError as e:
            logger.warning("%s lookup failed for %s: %s", self.name, address, e)
            return None
        except ValueError as e:
            # Unparseable JSON is treated the same as no answer
            logger.warning("%s returned malformed JSON for %s: %s", self.name, address, e)
            return None

        if data is None:
            return None
        try:
            return self._parse(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("%s response could not be parsed for %s: %s", self.name, address, e)
            return None

    def _parse(self, data: Dict[str, Any]) -> Optional[SourceRecord]:
        raise NotImplementedError


class IPApiSource(HTTPSource):
    """Primary geo-IP / ISP lookup (ip-api.com)"""

    name = "ip_api"

    def __init__(self, config: Optional[Dict[str, Any]] = None, transport=None):
        config = config or SOURCE_CONFIG["ip_api"]
        super().__init__(config["url"], config["timeout"], transport)
        self.fields = config.get("fields", "")

    def _request_params(self) -> Dict[str, str]:
        return {"fields": self.fields} if self.fields else {}

    def _parse(self, data: Dict[str, Any]) -> Optional[SourceRecord]:
        if data.get("status") != "success":
            logger.info("ip_api declined lookup: %s", data.get("message", "unknown reason"))
            return None

        hostnames = []
        if _clean(data.get("reverse")):
            hostnames.append(_clean(data.get("reverse")))

        return SourceRecord(
            source=self.name,
            organization=_clean(data.get("org")),
            isp=_clean(data.get("isp")),
            asn=_clean(data.get("as")),
            country=_clean(data.get("country")),
            country_code=_clean(data.get("countryCode")),
            region=_clean(data.get("regionName")),
            city=_clean(data.get("city")),
            hostnames=hostnames,
            is_proxy=bool(data.get("proxy", False)),
            is_hosting=bool(data.get("hosting", False)),
        )


class IPInfoSource(HTTPSource):
    """Secondary IP-info lookup (ipinfo.io)"""

    name = "ipinfo"

    def __init__(self, config: Optional[Dict[str, Any]] = None, transport=None):
        config = config or SOURCE_CONFIG["ipinfo"]
        super().__init__(config["url"], config["timeout"], transport)
        self.token = config.get("token", "")

    def _request_params(self) -> Dict[str, str]:
        return {"token": self.token} if self.token else {}

    def _parse(self, data: Dict[str, Any]) -> Optional[SourceRecord]:
        if data.get("bogon") or data.get("error"):
            return None

        # "org" looks like "AS15169 Google LLC"
        org = _clean(data.get("org"))
        asn = None
        match = _ASN_PREFIX_RE.match(org or "")
        if match:
            asn, org = match.group(1).upper(), match.group(2)

        hostnames = []
        if _clean(data.get("hostname")):
            hostnames.append(_clean(data.get("hostname")))

        privacy = data.get("privacy") or {}
        return SourceRecord(
            source=self.name,
            organization=org,
            asn=asn,
            country_code=_clean(data.get("country")),
            region=_clean(data.get("region")),
            city=_clean(data.get("city")),
            hostnames=hostnames,
            is_proxy=bool(privacy.get("vpn") or privacy.get("proxy") or privacy.get("tor")),
            is_hosting=bool(privacy.get("hosting")),
        )


class WhoisSource(HTTPSource):
    """WHOIS registry lookup over RDAP"""

    name = "whois"

    def __init__(self, config: Optional[Dict[str, Any]] = None, transport=None):
        config = config or SOURCE_CONFIG["whois"]
        super().__init__(config["url"], config["timeout"], transport)

    def _request_headers(self) -> Dict[str, str]:
        headers = super()._request_headers()
        headers["Accept"] = "application/rdap+json, application/json"
        return headers

    def _parse(self, data: Dict[str, Any]) -> Optional[SourceRecord]:
        registrant = self._registrant_name(data.get("entities") or [])
        network_name = _clean(data.get("name"))
        if not registrant and not network_name:
            return None

        return SourceRecord(
            source=self.name,
            organization=registrant or network_name,
            isp=network_name if registrant else None,
            country_code=_clean(data.get("country")),
        )

    def _registrant_name(self, entities: List[Dict[str, Any]]) -> Optional[str]:
        """Formatted name of the registrant entity, searching nested entities"""
        fallback = None
        for entity in entities:
            name = self._vcard_name(entity.get("vcardArray"))
            roles = entity.get("roles") or []
            if name and "registrant" in roles:
                return name
            if name and fallback is None:
                fallback = name
            nested = self._registrant_name(entity.get("entities") or [])
            if nested and fallback is None:
                fallback = nested
        return fallback

    @staticmethod
    def _vcard_name(vcard: Any) -> Optional[str]:
        # ["vcard", [["version", {}, "text", "4.0"], ["fn", {}, "text", "Google LLC"], ...]]
        if not isinstance(vcard, list) or len(vcard) < 2:
            return None
        for prop in vcard[1]:
            if isinstance(prop, list) and len(prop) >= 4 and prop[0] == "fn":
                return _clean(prop[3])
        return None


# =============================================================================
# REVERSE DNS ADAPTER
# =============================================================================

class ReverseDNSSource:
    """Reverse DNS: system resolver first, explicit PTR query as fallback"""

    name = "reverse_dns"

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or SOURCE_CONFIG["reverse_dns"]
        self.timeout = config["timeout"]
        self.system_share = config.get("system_share", 0.5)

    async def lookup(self, address: str) -> Optional[SourceRecord]:
        started = time.monotonic()
        system_timeout = self.timeout * self.system_share
        try:
            hostnames = await asyncio.wait_for(self._system_lookup(address), timeout=system_timeout)
        except asyncio.TimeoutError:
            logger.debug("gethostbyaddr timed out after %.1fs for %s", system_timeout, address)
            hostnames = []

        if not hostnames:
            remaining = max(self.timeout - (time.monotonic() - started), 0.1)
            hostnames = await self._ptr_lookup(address, lifetime=remaining)
        if not hostnames:
            return None
        return SourceRecord(source=self.name, hostnames=hostnames)

    async def _system_lookup(self, address: str) -> List[str]:
        loop = asyncio.get_running_loop()
        try:
            hostname, aliases, _ = await loop.run_in_executor(None, socket.gethostbyaddr, address)
        except (OSError, UnicodeError) as e:
            logger.debug("gethostbyaddr found nothing for %s: %s", address, e)
            return []
        return [h for h in [hostname, *aliases] if h]

    async def _ptr_lookup(self, address: str, lifetime: Optional[float] = None) -> List[str]:
        try:
            resolver = dns.asyncresolver.Resolver()
            answer = await resolver.resolve(
                dns.reversename.from_address(address), "PTR", lifetime=lifetime or self.timeout
            )
        except (dns.exception.DNSException, ValueError) as e:
            logger.debug("PTR lookup found nothing for %s: %s", address, e)
            return []
        return [str(record.target).rstrip(".") for record in answer]


# =============================================================================
# FAN-OUT STAGE
# =============================================================================

def create_default_sources() -> List[Any]:
    """Build every enabled adapter in priority order"""
    sources = []
    if SOURCE_CONFIG["ip_api"]["enabled"]:
        sources.append(IPApiSource())
    if SOURCE_CONFIG["ipinfo"]["enabled"]:
        sources.append(IPInfoSource())
    if SOURCE_CONFIG["whois"]["enabled"]:
        sources.append(WhoisSource())
    if SOURCE_CONFIG["reverse_dns"]["enabled"]:
        sources.append(ReverseDNSSource())
    return sources


class SourceLookupStage:
    """
    Stage 1: Query every source concurrently and collect whatever answers.
    """

    def __init__(self, sources: Optional[List[Any]] = None):
        """
        Args:
            sources: Adapters in priority order (defaults from SOURCE_CONFIG).
                Each needs `name`, `timeout` and `async lookup(address)`.
        """
        self.sources = create_default_sources() if sources is None else list(sources)

    async def process(self, address: str) -> SourceLookupResult:
        """
        Run all adapters and wait until each has answered, failed or timed out.

        Args:
            address: Public IP address

        Returns:
            SourceLookupResult with records in adapter-priority order
        """
        start_time = time.time()

        results = await asyncio.gather(
            *(self._run_source(source, address) for source in self.sources)
        )

        records = []
        responded = []
        failed = []
        for source, record in zip(self.sources, results):
            if record is None:
                failed.append(source.name)
            else:
                records.append(record)
                responded.append(source.name)

        processing_time = (time.time() - start_time) * 1000
        logger.debug(
            "Source lookups for %s finished in %.0fms (ok=%s, failed=%s)",
            address, processing_time, responded, failed,
        )

        return SourceLookupResult(
            records=records,
            responded=responded,
            failed=failed,
            processing_time_ms=round(processing_time, 2),
        )

    async def _run_source(self, source: Any, address: str) -> Optional[SourceRecord]:
        """One branch of the fan-out; never raises"""
        try:
            return await asyncio.wait_for(source.lookup(address), timeout=source.timeout)
        except asyncio.TimeoutError:
            logger.warning("%s timed out after %.1fs for %s", source.name, source.timeout, address)
        except Exception as e:
            logger.warning("%s failed for %s: %s", source.name, address, e)
        return None
