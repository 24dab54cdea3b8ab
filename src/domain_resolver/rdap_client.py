"""
RDAP Client for registration data lookups.

This module provides an async RDAP client with TLS enforcement that issues
one domain query against a known base URL and normalizes the JSON answer
into a DomainRecord. Failures never raise: they come back as a tagged
RDAPResponse with an RDAPErrorCode.
"""

import time
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from domain_resolver.audit_logger import AuditLogger
from domain_resolver.dates import parse_registry_date
from domain_resolver.enums import RawSource, RDAPErrorCode, RDAPStatus
from domain_resolver.models import DomainRecord
from domain_resolver.status_classifier import has_availability_marker


COMPONENT = "rdap_client"


@dataclass
class RDAPError:
    """Error information from an RDAP query."""

    code: RDAPErrorCode
    message: str
    http_status_code: Optional[int] = None


@dataclass
class RDAPResponse:
    """
    Complete RDAP query response.

    ``record`` is set for FOUND and AVAILABLE, ``error`` for FAILED.
    """

    status: RDAPStatus
    http_status_code: int
    url: str
    record: Optional[DomainRecord]
    raw_response: Optional[Any]
    error: Optional[RDAPError]
    response_time_ms: float = 0.0


def build_domain_url(base_url: str, domain: str) -> str:
    """
    Domain query URL for an RDAP base.

    >>> build_domain_url("https://rdap.example/v1/", "a.test")
    'https://rdap.example/v1/domain/a.test'
    >>> build_domain_url("https://rdap.example/domain", "a.test")
    'https://rdap.example/domain/a.test'
    """
    base = base_url.strip().rstrip("/")
    if base.lower().endswith("/domain"):
        return f"{base}/{domain}"
    return f"{base}/domain/{domain}"


def vcard_property(entity: dict, name: str) -> Optional[str]:
    """
    First non-empty value of a vCard property in an entity's ``vcardArray``.

    jCard layout: ``["vcard", [[name, params, type, value], ...]]``.
    """
    vcard = entity.get("vcardArray")
    if not isinstance(vcard, list) or len(vcard) < 2 or not isinstance(vcard[1], list):
        return None

    for prop in vcard[1]:
        if not isinstance(prop, list) or len(prop) < 4:
            continue
        if str(prop[0]).lower() != name:
            continue
        value = prop[3]
        if isinstance(value, list):
            value = " ".join(str(v) for v in value if v)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def _walk_entities(entities: Any) -> list[dict]:
    """Flatten nested ``entities`` arrays, outer entities first."""
    found = []
    if not isinstance(entities, list):
        return found
    for entity in entities:
        if isinstance(entity, dict):
            found.append(entity)
            found.extend(_walk_entities(entity.get("entities")))
    return found


def _roles(entity: dict) -> list[str]:
    roles = entity.get("roles")
    if not isinstance(roles, list):
        return []
    return [str(role).lower() for role in roles]


def parse_domain_object(json_data: dict, domain: str) -> DomainRecord:
    """
    Normalize an RDAP domain object.

    Registrar name and URL come from the entity with role ``registrar``
    (or, failing that, the first entity carrying a name); the abuse e-mail
    from an ``abuse`` entity at any nesting depth.
    """
    entities = _walk_entities(json_data.get("entities"))

    registrar_entity = next((e for e in entities if "registrar" in _roles(e)), None)
    if registrar_entity is None:
        registrar_entity = next(
            (e for e in entities if vcard_property(e, "fn") or vcard_property(e, "org")),
            None,
        )

    registrar = registrar_url = None
    if registrar_entity is not None:
        registrar = vcard_property(registrar_entity, "fn") or vcard_property(registrar_entity, "org")
        registrar_url = vcard_property(registrar_entity, "url")
        if registrar_url is None and isinstance(registrar_entity.get("url"), str):
            registrar_url = registrar_entity["url"]

    abuse_email = None
    for entity in entities:
        if "abuse" in _roles(entity):
            abuse_email = vcard_property(entity, "email")
            if abuse_email:
                break

    expiration_date = last_changed = rdap_updated = None
    events = json_data.get("events")
    if isinstance(events, list):
        for event in events:
            if not isinstance(event, dict):
                continue
            action = str(event.get("eventAction", "")).lower()
            event_date = parse_registry_date(event.get("eventDate"))
            if event_date is None:
                continue
            if action == "expiration" and expiration_date is None:
                expiration_date = event_date
            elif action == "last changed" and last_changed is None:
                last_changed = event_date
            elif action == "last update of rdap database" and rdap_updated is None:
                rdap_updated = event_date

    status = json_data.get("status", [])
    if not isinstance(status, list):
        status = [status] if status else []

    nameservers = []
    raw_nameservers = json_data.get("nameservers")
    if isinstance(raw_nameservers, list):
        for ns in raw_nameservers:
            if isinstance(ns, dict):
                name = ns.get("ldhName") or ns.get("unicodeName")
                if name:
                    nameservers.append(str(name).lower())

    domain_name = json_data.get("ldhName") or json_data.get("unicodeName") or domain

    return DomainRecord(
        domain_name=str(domain_name).lower(),
        registrar=registrar,
        registrar_url=registrar_url,
        expiration_date=expiration_date,
        updated_date=last_changed or rdap_updated,
        abuse_email=abuse_email,
        status=[str(token) for token in status],
        nameservers=nameservers,
        raw_source=RawSource.RDAP,
    )


class RDAPClient:
    """
    Async RDAP client with TLS enforcement.

    One client may serve many queries; the underlying httpx.AsyncClient is
    created lazily and closed by ``close`` or the async context manager.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        user_agent: str = "DomainResolver/1.0",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        require_tls: bool = True,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the RDAP client.

        Args:
            timeout: Request timeout in seconds
            user_agent: User-Agent header sent with every request
            transport: Optional httpx transport (tests pass a MockTransport)
            require_tls: Reject base URLs that are not https
            logger: Optional audit logger
        """
        self._timeout = timeout
        self._user_agent = user_agent
        self._transport = transport
        self._require_tls = require_tls
        self._logger = logger
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "RDAPClient":
        self._ensure_client()
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

    def _failed(
        self,
        url: str,
        code: RDAPErrorCode,
        message: str,
        start_time: float,
        http_status_code: int = 0,
        raw_response: Optional[Any] = None,
    ) -> RDAPResponse:
        response = RDAPResponse(
            status=RDAPStatus.FAILED,
            http_status_code=http_status_code,
            url=url,
            record=None,
            raw_response=raw_response,
            error=RDAPError(
                code=code,
                message=message,
                http_status_code=http_status_code or None,
            ),
            response_time_ms=self._elapsed_ms(start_time),
        )
        if self._logger:
            self._logger.warn(COMPONENT, "RDAP query failed", {
                "url": url,
                "error_code": code.value,
                "error": message,
                "http_status_code": http_status_code,
            })
        return response

    def _available(
        self,
        url: str,
        domain: str,
        http_status_code: int,
        raw_response: Any,
        start_time: float,
    ) -> RDAPResponse:
        if self._logger:
            self._logger.info(COMPONENT, "RDAP reports domain available", {
                "url": url,
                "http_status_code": http_status_code,
            })
        return RDAPResponse(
            status=RDAPStatus.AVAILABLE,
            http_status_code=http_status_code,
            url=url,
            record=DomainRecord(
                domain_name=domain,
                status=["available"],
                raw_source=RawSource.RDAP,
            ),
            raw_response=raw_response,
            error=None,
            response_time_ms=self._elapsed_ms(start_time),
        )

    async def query(self, domain: str, base_url: str) -> RDAPResponse:
        """
        Query RDAP for a domain.

        Interpretation, first match wins:
        - 200/404 carrying ``errorCode: 404`` -> AVAILABLE
        - a ``status`` token containing free/available -> AVAILABLE
        - 404 with any other JSON object -> AVAILABLE
        - 200 with a JSON object -> FOUND
        - anything else -> FAILED

        Args:
            domain: The domain to query (canonical form)
            base_url: RDAP base URL of the domain's registry

        Returns:
            RDAPResponse with query results
        """
        start_time = time.perf_counter()
        url = build_domain_url(base_url, domain)

        if self._require_tls and urlparse(url).scheme.lower() != "https":
            return self._failed(
                url, RDAPErrorCode.TLS_ERROR,
                f"RDAP endpoint must use HTTPS: {base_url}", start_time,
            )

        client = self._ensure_client()
        try:
            response = await client.get(
                url,
                headers={"Accept": "application/rdap+json, application/json"},
            )
        except httpx.TimeoutException:
            return self._failed(
                url, RDAPErrorCode.TIMEOUT,
                f"RDAP request timed out after {self._timeout}s", start_time,
            )
        except httpx.ConnectError as e:
            error_msg = str(e)
            if "ssl" in error_msg.lower() or "certificate" in error_msg.lower():
                return self._failed(
                    url, RDAPErrorCode.TLS_ERROR,
                    f"TLS connection error: {error_msg}", start_time,
                )
            return self._failed(
                url, RDAPErrorCode.NETWORK_ERROR,
                f"Connection error: {error_msg}", start_time,
            )
        except httpx.HTTPError as e:
            return self._failed(
                url, RDAPErrorCode.NETWORK_ERROR, f"HTTP error: {e}", start_time,
            )

        code = response.status_code
        try:
            json_data = response.json()
        except ValueError:
            json_data = None
        is_object = isinstance(json_data, dict)

        if is_object and code in (200, 404) and str(json_data.get("errorCode")) == "404":
            return self._available(url, domain, code, json_data, start_time)

        if is_object and has_availability_marker(json_data.get("status")):
            return self._available(url, domain, code, json_data, start_time)

        if code == 200:
            if not is_object:
                return self._failed(
                    url, RDAPErrorCode.PARSE_ERROR,
                    "RDAP response is not a JSON object", start_time,
                    http_status_code=200,
                )
            record = parse_domain_object(json_data, domain)
            if self._logger:
                self._logger.info(COMPONENT, "RDAP record found", {
                    "url": url,
                    "registrar": record.registrar,
                    "has_expiration": record.expiration_date is not None,
                })
            return RDAPResponse(
                status=RDAPStatus.FOUND,
                http_status_code=200,
                url=url,
                record=record,
                raw_response=json_data,
                error=None,
                response_time_ms=self._elapsed_ms(start_time),
            )

        if code == 429:
            return self._failed(
                url, RDAPErrorCode.RATE_LIMITED,
                "Rate limited by RDAP server", start_time, http_status_code=429,
            )

        if code == 404:
            if is_object:
                return self._failed(
                    url, RDAPErrorCode.SERVER_ERROR,
                    "RDAP 404 without errorCode 404 or an availability status",
                    start_time, http_status_code=404,
                )
            return self._failed(
                url, RDAPErrorCode.PARSE_ERROR,
                "RDAP 404 without a JSON body", start_time, http_status_code=404,
            )

        return self._failed(
            url, RDAPErrorCode.SERVER_ERROR,
            f"Unexpected HTTP status: {code}", start_time, http_status_code=code,
        )

    def _elapsed_ms(self, start_time: float) -> float:
        return (time.perf_counter() - start_time) * 1000

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
