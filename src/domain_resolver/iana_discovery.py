"""
IANA discovery of authoritative TLD endpoints.

Finds the RDAP base URL and WHOIS server for a TLD from three IANA
sources, in order:

1. the RDAP bootstrap registry (``dns.json``)
2. ``whois.iana.org`` (the ``whois:`` field, or ``refer:`` as alternate)
3. the IANA root zone database page for the TLD

A TLD nobody knows is a normal outcome: ``discover`` returns an empty
DiscoveryResult instead of raising. The list fetchers used by bulk
imports do raise, since an unreachable list source is a setup error.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

import httpx
import idna

from domain_resolver.audit_logger import AuditLogger
from domain_resolver.config import IanaConfig
from domain_resolver.enums import ServerSource
from domain_resolver.exceptions import NetworkError, ProtocolError
from domain_resolver.models import DiscoveryResult
from domain_resolver.whois_client import WHOISClient, parse_key_values


COMPONENT = "iana_discovery"

TLD_LIST_VERSION_PATTERN = re.compile(
    r"^#\s*Version\s+(\d+)(?:,\s*Last Updated\s+(.+))?$",
    re.IGNORECASE,
)

ROOT_DB_PATTERNS = {
    "whois_server": re.compile(r"WHOIS Server:\s*([^\s<]+)", re.IGNORECASE),
    "registry_url": re.compile(r"URL for registration services:\s*([^\s<]+)", re.IGNORECASE),
    "record_last_updated": re.compile(r"Record last updated\s+(\d{4}-\d{2}-\d{2})", re.IGNORECASE),
    "registration_date": re.compile(r"Registration date\s+(\d{4}-\d{2}-\d{2})", re.IGNORECASE),
}

_TAG_PATTERN = re.compile(r"<[^>]+>")


@dataclass
class BootstrapData:
    """Parsed RDAP bootstrap registry."""

    publication: Optional[str]
    services: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class TldListData:
    """Parsed IANA TLD list."""

    version: Optional[str]
    last_updated: Optional[str]
    tlds: list[str] = field(default_factory=list)


def parse_bootstrap(data: dict) -> BootstrapData:
    """
    Parse the bootstrap format into a TLD -> base URLs mapping.

    ``{"publication": "...", "services": [[["com", "net"], ["https://..."]], ...]}``
    """
    if not isinstance(data, dict) or not isinstance(data.get("services"), list):
        raise ProtocolError(
            code="bootstrap_format",
            message="RDAP bootstrap document has no services array",
        )

    services: dict[str, list[str]] = {}
    for entry in data["services"]:
        if not isinstance(entry, list) or len(entry) < 2:
            continue
        tlds, urls = entry[0], entry[1]
        if not isinstance(tlds, list) or not isinstance(urls, list):
            continue
        urls = [str(url) for url in urls if url]
        if not urls:
            continue
        for tld in tlds:
            services.setdefault(str(tld).lower().strip("."), urls)

    return BootstrapData(publication=data.get("publication"), services=services)


def parse_tld_list(text: str) -> TldListData:
    """Parse ``tlds-alpha-by-domain.txt``: a version comment then one TLD per line."""
    version = last_updated = None
    tlds = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        if line.startswith("#"):
            match = TLD_LIST_VERSION_PATTERN.match(line)
            if match and version is None:
                version = match.group(1)
                last_updated = match.group(2).strip() if match.group(2) else None
            continue
        tlds.append(line.lower())
    return TldListData(version=version, last_updated=last_updated, tlds=tlds)


def parse_root_db_page(html: str) -> dict[str, str]:
    """Extract WHOIS server and registry metadata from a root DB page."""
    text = _TAG_PATTERN.sub(" ", html)
    found = {}
    for name, pattern in ROOT_DB_PATTERNS.items():
        match = pattern.search(text)
        if match:
            found[name] = match.group(1).strip()
    return found


def _zone_key(value: str) -> str:
    value = value.strip().strip(".").lower()
    try:
        return idna.encode(value, uts46=True).decode("ascii")
    except idna.IDNAError:
        return value


def parse_iana_whois(raw_response: str, tld: Optional[str] = None) -> Optional[str]:
    """
    WHOIS server from a whois.iana.org TLD answer: ``whois:`` first, else ``refer:``.

    whois.iana.org answers a query for ``example.com`` or ``co.uk`` with the
    record of the parent TLD. When ``tld`` is given, the answer only counts
    if its ``domain:`` field names that exact zone.
    """
    fields = parse_key_values(raw_response)
    if tld is not None:
        zones = [_zone_key(value) for value in fields.get("domain", [])]
        if _zone_key(tld) not in zones:
            return None
    for key in ("whois", "refer"):
        for value in fields.get(key, []):
            if value:
                return value.lower()
    return None


class IanaDiscoveryClient:
    """
    Discovers endpoints for TLDs that are not yet in the directory.

    The bootstrap document is fetched at most once per client instance.
    """

    def __init__(
        self,
        config: Optional[IanaConfig] = None,
        whois_client: Optional[WHOISClient] = None,
        http_timeout: float = 15.0,
        user_agent: str = "DomainResolver/1.0",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._config = config or IanaConfig()
        self._whois = whois_client or WHOISClient(logger=logger)
        self._timeout = http_timeout
        self._user_agent = user_agent
        self._transport = transport
        self._logger = logger
        self._client: Optional[httpx.AsyncClient] = None
        self._bootstrap: Optional[BootstrapData] = None

    async def __aenter__(self) -> "IanaDiscoveryClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                verify=True,
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                transport=self._transport,
                headers={"User-Agent": self._user_agent},
            )
        return self._client

    async def _get(self, url: str) -> httpx.Response:
        try:
            response = await self._ensure_client().get(url)
        except httpx.HTTPError as e:
            raise NetworkError(
                code="iana_unreachable",
                message=f"Request to {url} failed: {e}",
                details={"url": url},
            )
        if response.status_code != 200:
            raise NetworkError(
                code="iana_http_status",
                message=f"{url} returned HTTP {response.status_code}",
                details={"url": url, "http_status_code": response.status_code},
            )
        return response

    async def fetch_bootstrap(self, force: bool = False) -> BootstrapData:
        """
        Fetch and parse the RDAP bootstrap registry.

        Raises:
            NetworkError: If the registry cannot be fetched
            ProtocolError: If the document is not valid bootstrap JSON
        """
        if self._bootstrap is not None and not force:
            return self._bootstrap

        url = self._config.rdap_bootstrap_url
        response = await self._get(url)
        try:
            data = response.json()
        except ValueError as e:
            raise ProtocolError(
                code="bootstrap_json",
                message=f"RDAP bootstrap is not valid JSON: {e}",
                details={"url": url},
            )

        self._bootstrap = parse_bootstrap(data)
        if self._logger:
            self._logger.debug(COMPONENT, "RDAP bootstrap loaded", {
                "publication": self._bootstrap.publication,
                "tld_count": len(self._bootstrap.services),
            })
        return self._bootstrap

    async def fetch_tld_list(self) -> TldListData:
        """
        Fetch and parse the IANA TLD list.

        Raises:
            NetworkError: If the list cannot be fetched
            ProtocolError: If the list contains no TLDs
        """
        url = self._config.tld_list_url
        response = await self._get(url)
        data = parse_tld_list(response.text)
        if not data.tlds:
            raise ProtocolError(
                code="tld_list_empty",
                message="IANA TLD list contains no entries",
                details={"url": url},
            )
        return data

    async def lookup_bootstrap(self, tld: str) -> Optional[str]:
        """First RDAP base URL for ``tld`` in the bootstrap, or None."""
        try:
            bootstrap = await self.fetch_bootstrap()
        except (NetworkError, ProtocolError) as e:
            if self._logger:
                self._logger.log_error(
                    COMPONENT, "RDAP bootstrap unavailable",
                    error=e, request_url=self._config.rdap_bootstrap_url,
                )
            return None

        urls = bootstrap.services.get(tld.lower().strip("."))
        return urls[0] if urls else None

    async def lookup_iana_whois(self, tld: str) -> Optional[str]:
        """WHOIS server for ``tld`` according to whois.iana.org, or None."""
        label = tld.lower().strip(".")
        raw = await self._whois.query_raw(self._config.whois_server, label)
        if not raw:
            return None
        server = parse_iana_whois(raw, label)
        if server is None and self._logger:
            self._logger.debug(COMPONENT, "IANA WHOIS answer does not name the queried zone", {
                "tld": "." + label,
            })
        return server

    async def fetch_root_db_page(self, tld: str) -> dict[str, str]:
        """Fields scraped from the root DB page; empty when the page is unavailable."""
        url = self._config.root_db_url_template.format(tld=tld.lower().strip("."))
        try:
            response = await self._get(url)
        except NetworkError as e:
            if self._logger:
                self._logger.debug(COMPONENT, "Root DB page unavailable", {
                    "url": url,
                    "error": e.message,
                })
            return {}
        return parse_root_db_page(response.text)

    async def discover(self, tld: str, include_metadata: bool = False) -> DiscoveryResult:
        """
        Discover the RDAP and WHOIS endpoints for a TLD.

        Args:
            tld: TLD or two-level suffix, with or without leading dot
            include_metadata: Always read the root DB page for registry metadata

        Returns:
            DiscoveryResult; both endpoints may be None
        """
        label = tld.lower().strip(".")
        result = DiscoveryResult(tld="." + label)

        result.rdap_base_url = await self.lookup_bootstrap(label)
        if result.rdap_base_url:
            result.source = ServerSource.IANA_RDAP

        result.whois_server = await self.lookup_iana_whois(label)
        if result.whois_server and result.source is None:
            result.source = ServerSource.IANA_WHOIS

        # Root DB pages exist only for delegated TLDs
        is_tld = "." not in label
        if is_tld and (include_metadata or not (result.rdap_base_url and result.whois_server)):
            page = await self.fetch_root_db_page(label)
            if not result.whois_server and page.get("whois_server"):
                result.whois_server = page["whois_server"].lower()
                if result.source is None:
                    result.source = ServerSource.IANA_HTML
            result.registry_url = page.get("registry_url")
            result.record_last_updated = page.get("record_last_updated")
            result.registration_date = page.get("registration_date")

        if self._logger:
            self._logger.info(
                COMPONENT,
                "TLD endpoints discovered" if result.found_anything else "No endpoints found for TLD",
                {
                    "tld": result.tld,
                    "rdap_base_url": result.rdap_base_url,
                    "whois_server": result.whois_server,
                    "source": result.source.value if result.source else None,
                },
            )
        return result

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
