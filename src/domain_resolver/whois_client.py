"""
WHOIS Client module for registration data lookups.

This module speaks the legacy WHOIS protocol (plain TCP port 43, one query
line, read to EOF) and turns the free-form answer into a DomainRecord.
Availability phrases are checked before any field extraction; fields are
then picked from ``key: value`` lines by alias lists, since every registry
names them differently.
"""

import asyncio
import re
import socket
import time
from dataclasses import dataclass, field
from typing import Optional

from domain_resolver.audit_logger import AuditLogger
from domain_resolver.dates import parse_registry_date
from domain_resolver.enums import RawSource, WHOISErrorCode, WHOISStatus
from domain_resolver.models import DomainRecord


COMPONENT = "whois_client"

WHOIS_PORT = 43

# Lowercased phrases that mean the queried name is not registered
AVAILABILITY_PHRASES = (
    "not found",
    "no match",
    "no entries found",
    "no data found",
    "domain not found",
    "no such domain",
    "available for registration",
    "does not exist",
    "queried object does not exist",
    "is free",
    "not registered",
)

_PHRASE_PATTERN = "|".join(re.escape(p) for p in AVAILABILITY_PHRASES)

# A line that starts with a phrase, or a status line whose value does
AVAILABILITY_PATTERN = re.compile(
    rf"^\s*(?:(?:domain\s+)?status\s*:\s*)?(?:{_PHRASE_PATTERN})\b",
    re.MULTILINE,
)

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "registrar": (
        "registrar",
        "registrar name",
        "sponsoring registrar",
        "registrar organization",
        "registrar-name",
    ),
    "registrar_url": (
        "registrar url",
        "registrar website",
        "referral url",
        "registrar-url",
    ),
    "expiration_date": (
        "registry expiry date",
        "registrar registration expiration date",
        "expiration date",
        "expiry date",
        "expires on",
        "expires",
        "expire date",
        "expiration time",
        "paid-till",
        "renewal date",
    ),
    "updated_date": (
        "updated date",
        "last updated",
        "last modified",
        "last-update",
        "last update",
        "changed",
        "modified",
    ),
    "abuse_email": (
        "registrar abuse contact email",
        "abuse contact email",
        "abuse-mailbox",
        "abuse email",
    ),
    "status": ("domain status", "status", "state"),
    "nameservers": ("name server", "nserver", "nameserver", "nameservers", "name servers"),
}


@dataclass
class WHOISError:
    """Error information from a WHOIS query."""

    code: WHOISErrorCode
    message: str


@dataclass
class WHOISResponse:
    """
    Response from a WHOIS query.

    ``record`` is set for FOUND and AVAILABLE, ``error`` for FAILED.
    """

    status: WHOISStatus
    server: str
    raw_response: Optional[str]
    record: Optional[DomainRecord]
    error: Optional[WHOISError]
    fields: dict[str, list[str]] = field(default_factory=dict)
    response_time_ms: float = 0.0


def is_availability_response(raw_response: str) -> bool:
    """True if any line of the response carries an availability phrase."""
    return AVAILABILITY_PATTERN.search(raw_response.lower()) is not None


def parse_key_values(raw_response: str) -> dict[str, list[str]]:
    """
    Collect ``key: value`` lines into lowercase keys with ordered values.

    Blank lines and ``%``/``#`` comment lines are skipped and lines split on
    the first colon. A key with an empty value followed by indented lines
    without a colon takes those lines as its values (the block layout used
    by e.g. Nominet).
    """
    fields: dict[str, list[str]] = {}
    block_key: Optional[str] = None

    for line in raw_response.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith(("%", "#")):
            block_key = None
            continue

        if ":" not in stripped:
            if block_key and line[:1].isspace():
                fields.setdefault(block_key, []).append(stripped)
            continue

        key, value = stripped.split(":", 1)
        key = key.strip().lower()
        value = value.strip()
        if not key or len(key) > 60:
            continue

        if value:
            fields.setdefault(key, []).append(value)
            block_key = None
        else:
            block_key = key

    return fields


def _first(fields: dict[str, list[str]], aliases: tuple[str, ...]) -> Optional[str]:
    for alias in aliases:
        for value in fields.get(alias, []):
            if value:
                return value
    return None


def _all(fields: dict[str, list[str]], aliases: tuple[str, ...]) -> list[str]:
    for alias in aliases:
        values = [v for v in fields.get(alias, []) if v]
        if values:
            return values
    return []


def _status_token(value: str) -> str:
    # "clientTransferProhibited https://icann.org/epp#clientTransferProhibited"
    return re.split(r"\s+\(?https?://", value, maxsplit=1)[0].strip()


def build_record(domain: str, fields: dict[str, list[str]]) -> DomainRecord:
    """Map parsed WHOIS fields onto a DomainRecord."""
    statuses = list(dict.fromkeys(
        token for token in (_status_token(v) for v in _all(fields, FIELD_ALIASES["status"])) if token
    ))
    nameservers = list(dict.fromkeys(
        v.split()[0].rstrip(".").lower() for v in _all(fields, FIELD_ALIASES["nameservers"])
    ))

    return DomainRecord(
        domain_name=domain,
        registrar=_first(fields, FIELD_ALIASES["registrar"]),
        registrar_url=_first(fields, FIELD_ALIASES["registrar_url"]),
        expiration_date=parse_registry_date(_first(fields, FIELD_ALIASES["expiration_date"])),
        updated_date=parse_registry_date(_first(fields, FIELD_ALIASES["updated_date"])),
        abuse_email=_first(fields, FIELD_ALIASES["abuse_email"]),
        status=statuses,
        nameservers=nameservers,
        raw_source=RawSource.WHOIS,
    )


class WHOISClient:
    """
    WHOIS client for port-43 servers.

    The blocking socket exchange runs in the default executor under
    ``asyncio.wait_for`` so one slow server cannot hold the event loop.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the WHOIS client.

        Args:
            timeout: Socket and overall timeout in seconds
            logger: Optional audit logger
        """
        self._timeout = timeout
        self._logger = logger

    async def query(self, server: str, domain: str) -> WHOISResponse:
        """
        Query a WHOIS server for a domain.

        Returns:
            WHOISResponse with status:
            - AVAILABLE: an availability phrase was found
            - FOUND: the response carried key/value data
            - FAILED: network error, timeout, empty or unusable response
        """
        start_time = time.perf_counter()

        try:
            raw_response = await self._execute_whois_query(domain, server)
        except (asyncio.TimeoutError, socket.timeout):
            return self._failed(
                server, WHOISErrorCode.TIMEOUT,
                f"WHOIS query timed out after {self._timeout}s", start_time,
            )
        except OSError as e:
            return self._failed(
                server, WHOISErrorCode.NETWORK_ERROR, str(e) or repr(e), start_time,
            )

        if not raw_response or not raw_response.strip():
            return self._failed(
                server, WHOISErrorCode.EMPTY_RESPONSE,
                "WHOIS server returned an empty response", start_time,
                raw_response=raw_response,
            )

        if is_availability_response(raw_response):
            if self._logger:
                self._logger.info(COMPONENT, "WHOIS reports domain available", {
                    "server": server,
                    "domain": domain,
                })
            return WHOISResponse(
                status=WHOISStatus.AVAILABLE,
                server=server,
                raw_response=raw_response,
                record=DomainRecord(
                    domain_name=domain,
                    status=["available"],
                    raw_source=RawSource.WHOIS,
                ),
                error=None,
                response_time_ms=self._elapsed_ms(start_time),
            )

        fields = parse_key_values(raw_response)
        if not fields:
            return self._failed(
                server, WHOISErrorCode.PARSE_ERROR,
                "WHOIS response contains no key/value data", start_time,
                raw_response=raw_response,
            )

        record = build_record(domain, fields)
        if self._logger:
            self._logger.info(COMPONENT, "WHOIS record found", {
                "server": server,
                "domain": domain,
                "registrar": record.registrar,
                "has_expiration": record.expiration_date is not None,
            })
        return WHOISResponse(
            status=WHOISStatus.FOUND,
            server=server,
            raw_response=raw_response,
            record=record,
            error=None,
            fields=fields,
            response_time_ms=self._elapsed_ms(start_time),
        )

    async def query_raw(self, server: str, query: str) -> Optional[str]:
        """
        Send ``query`` to ``server`` and return the unparsed answer.

        Used by IANA discovery. Returns None on any network failure.
        """
        try:
            return await self._execute_whois_query(query, server)
        except (asyncio.TimeoutError, OSError) as e:
            if self._logger:
                self._logger.log_error(
                    COMPONENT, "Raw WHOIS query failed",
                    error=e, request_url=f"{server}:{WHOIS_PORT}",
                    additional_data={"query": query},
                )
            return None

    async def _execute_whois_query(self, query: str, server: str) -> str:
        """
        Execute the actual WHOIS exchange via socket.

        Args:
            query: Query line without the CRLF terminator
            server: WHOIS server hostname

        Returns:
            Raw WHOIS response as string
        """
        loop = asyncio.get_running_loop()

        def _sync_query() -> str:
            with socket.create_connection((server, WHOIS_PORT), timeout=self._timeout) as sock:
                sock.sendall(f"{query}\r\n".encode("utf-8"))

                response_parts: list[bytes] = []
                while True:
                    data = sock.recv(4096)
                    if not data:
                        break
                    response_parts.append(data)

                return b"".join(response_parts).decode("utf-8", errors="replace")

        return await asyncio.wait_for(
            loop.run_in_executor(None, _sync_query),
            timeout=self._timeout,
        )

    def _failed(
        self,
        server: str,
        code: WHOISErrorCode,
        message: str,
        start_time: float,
        raw_response: Optional[str] = None,
    ) -> WHOISResponse:
        if self._logger:
            self._logger.warn(COMPONENT, "WHOIS query failed", {
                "server": server,
                "error_code": code.value,
                "error": message,
            })
        return WHOISResponse(
            status=WHOISStatus.FAILED,
            server=server,
            raw_response=raw_response,
            record=None,
            error=WHOISError(code=code, message=message),
            response_time_ms=self._elapsed_ms(start_time),
        )

    def _elapsed_ms(self, start_time: float) -> float:
        return (time.perf_counter() - start_time) * 1000
