"""
Resolution Orchestrator for the domain resolver.

This module drives one domain through the resolution state machine:

    START -> TLD_RESOLVED -> RDAP_ATTEMPTED -> WHOIS_ATTEMPTED -> DONE

The TLD is resolved from the directory (discovering and persisting it on a
miss), RDAP is tried first when a base URL is known, and WHOIS fills in
what RDAP could not answer. Steps run strictly one after another.
"""

import time
from dataclasses import dataclass, field
from typing import Optional, Protocol

from domain_resolver.audit_logger import AuditLogger
from domain_resolver.config import SystemConfig
from domain_resolver.domain_validator import DomainValidator, candidate_suffixes
from domain_resolver.enums import RDAPStatus, ResolutionState, WHOISStatus
from domain_resolver.exceptions import ValidationError
from domain_resolver.iana_discovery import IanaDiscoveryClient
from domain_resolver.models import (
    AttemptRecord,
    DiscoveryResult,
    DomainRecord,
    ResolutionResult,
    TldServerEntry,
)
from domain_resolver.rdap_client import RDAPClient
from domain_resolver.status_classifier import classify
from domain_resolver.tld_directory import TldServerDirectory
from domain_resolver.whois_client import WHOISClient


COMPONENT = "orchestrator"

RESOLUTION_FAILED_MESSAGE = "Unable to retrieve registration data"

# Fields a later attempt may fill when an earlier one left them empty
MERGE_FIELDS = (
    "registrar",
    "registrar_url",
    "expiration_date",
    "updated_date",
    "abuse_email",
    "status",
    "nameservers",
)


class Discovery(Protocol):
    """Anything that can discover endpoints for a TLD."""

    async def discover(self, tld: str, include_metadata: bool = False) -> DiscoveryResult:
        ...


@dataclass
class BulkResolutionResult:
    """Outcome of resolving several domains in one call."""

    results: list[ResolutionResult] = field(default_factory=list)
    refreshed: int = 0
    failed: int = 0


def merge_records(primary: DomainRecord, fallback: DomainRecord) -> DomainRecord:
    """
    Fill fields missing from ``primary`` with values from ``fallback``.

    Populated fields of ``primary`` are never overwritten; ``raw_source``
    stays that of the primary record.
    """
    for name in MERGE_FIELDS:
        if not getattr(primary, name) and getattr(fallback, name):
            value = getattr(fallback, name)
            setattr(primary, name, list(value) if isinstance(value, list) else value)
    return primary


class ResolutionOrchestrator:
    """
    Main entry point for domain registration lookups.

    Collaborators are injected; ``from_config`` wires the default ones.
    """

    def __init__(
        self,
        directory: TldServerDirectory,
        discovery: Discovery,
        rdap_client: Optional[RDAPClient] = None,
        whois_client: Optional[WHOISClient] = None,
        validator: Optional[DomainValidator] = None,
        logger: Optional[AuditLogger] = None,
        iana_whois_server: str = "whois.iana.org",
    ) -> None:
        """
        Initialize the resolution orchestrator.

        Args:
            directory: TLD server directory
            discovery: IANA discovery (or any object with the same ``discover``)
            rdap_client: RDAP client, created with defaults if omitted
            whois_client: WHOIS client, created with defaults if omitted
            validator: Domain validator, created if omitted
            logger: Optional audit logger
            iana_whois_server: Discovery-only WHOIS host, never used for domain queries
        """
        self._directory = directory
        self._discovery = discovery
        self._rdap = rdap_client or RDAPClient(logger=logger)
        self._whois = whois_client or WHOISClient(logger=logger)
        self._validator = validator or DomainValidator()
        self._logger = logger
        self._iana_whois_server = iana_whois_server.lower()

    @classmethod
    def from_config(
        cls,
        config: SystemConfig,
        logger: Optional[AuditLogger] = None,
    ) -> "ResolutionOrchestrator":
        """Build an orchestrator and its collaborators from SystemConfig."""
        whois_client = WHOISClient(
            timeout=config.network.whois_timeout_seconds,
            logger=logger,
        )
        return cls(
            directory=TldServerDirectory(
                config.persistence.directory_file_path,
                config.persistence.hmac_secret,
                logger=logger,
            ),
            discovery=IanaDiscoveryClient(
                config=config.iana,
                whois_client=whois_client,
                http_timeout=config.network.http_timeout_seconds,
                user_agent=config.network.user_agent,
                logger=logger,
            ),
            rdap_client=RDAPClient(
                timeout=config.network.rdap_timeout_seconds,
                user_agent=config.network.user_agent,
                logger=logger,
            ),
            whois_client=whois_client,
            logger=logger,
            iana_whois_server=config.iana.whois_server,
        )

    async def __aenter__(self) -> "ResolutionOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self._rdap.close()
        close = getattr(self._discovery, "close", None)
        if close is not None:
            await close()

    @property
    def directory(self) -> TldServerDirectory:
        return self._directory

    def _log(self, level: str, message: str, data: dict) -> None:
        if self._logger:
            getattr(self._logger, level)(COMPONENT, message, data)

    async def resolve_tld(self, domain: str) -> Optional[TldServerEntry]:
        """
        Directory entry to use for a canonical domain.

        Suffixes are tried two-label first. A suffix missing from the
        directory is discovered; single-label results are persisted even
        when empty, two-label results only when something was found. An
        entry counts only when it is active and has an endpoint.
        """
        for suffix in candidate_suffixes(domain):
            entry = self._directory.get(suffix)

            if entry is None:
                discovered = await self._discovery.discover(suffix)
                is_single_label = suffix.count(".") == 1
                if discovered.found_anything or is_single_label:
                    entry = self._directory.record_discovery(suffix, discovered)
                    self._log("info", "Discovery result stored", {
                        "tld": suffix,
                        "rdap_base_url": entry.rdap_base_url,
                        "whois_server": entry.whois_server,
                    })

            if entry is None:
                continue
            if not entry.is_active:
                self._log("debug", "Skipping inactive directory entry", {"tld": entry.tld})
                continue
            if entry.has_endpoint:
                return entry

        return None

    async def resolve(self, domain: str, threshold_days: int) -> ResolutionResult:
        """
        Resolve registration data for one domain.

        Args:
            domain: Domain as entered by the user
            threshold_days: Days before expiration at which the domain counts as expiring

        Returns:
            ResolutionResult with either a record or an error message

        Raises:
            ValidationError: If ``domain`` is not a valid domain name
        """
        start_time = time.perf_counter()
        canonical = self._validator.require_valid(domain)
        result = ResolutionResult(domain=canonical, record=None, error=None)
        result.states.append(ResolutionState.START.value)

        entry = await self.resolve_tld(canonical)
        result.states.append(ResolutionState.TLD_RESOLVED.value)

        record: Optional[DomainRecord] = None
        done = False

        if entry is not None and entry.rdap_base_url:
            rdap = await self._rdap.query(canonical, entry.rdap_base_url)
            result.states.append(ResolutionState.RDAP_ATTEMPTED.value)
            result.attempts.append(AttemptRecord(
                source="rdap",
                endpoint=rdap.url,
                outcome=rdap.status.value,
                error=rdap.error.message if rdap.error else None,
                http_status_code=rdap.http_status_code or None,
                response_time_ms=rdap.response_time_ms,
            ))

            if rdap.status == RDAPStatus.AVAILABLE:
                record, done = rdap.record, True
            elif rdap.status == RDAPStatus.FOUND:
                record = rdap.record
                done = record is not None and record.expiration_date is not None
                if not done:
                    self._log("info", "RDAP record lacks expiration, trying WHOIS", {
                        "domain": canonical,
                    })
            else:
                self._log("info", "RDAP failed, trying WHOIS", {"domain": canonical})

        if not done and entry is not None and entry.whois_server:
            if entry.whois_server.lower() == self._iana_whois_server:
                self._log("warn", "Refusing domain query against IANA WHOIS", {
                    "domain": canonical,
                    "tld": entry.tld,
                })
            else:
                whois = await self._whois.query(entry.whois_server, canonical)
                result.states.append(ResolutionState.WHOIS_ATTEMPTED.value)
                result.attempts.append(AttemptRecord(
                    source="whois",
                    endpoint=entry.whois_server,
                    outcome=whois.status.value,
                    error=whois.error.message if whois.error else None,
                    response_time_ms=whois.response_time_ms,
                ))

                if whois.status == WHOISStatus.AVAILABLE:
                    if record is None:
                        record = whois.record
                    else:
                        self._log("warn", "WHOIS reports available but RDAP found the domain", {
                            "domain": canonical,
                        })
                elif whois.status == WHOISStatus.FOUND and whois.record is not None:
                    record = merge_records(record, whois.record) if record else whois.record

        result.states.append(ResolutionState.DONE.value)
        result.total_duration_ms = (time.perf_counter() - start_time) * 1000

        if record is None:
            result.error = RESOLUTION_FAILED_MESSAGE
            if self._logger:
                self._logger.log_error(COMPONENT, "Resolution failed", additional_data={
                    "domain": canonical,
                    "tld": entry.tld if entry else None,
                    "attempts": [a.outcome for a in result.attempts],
                })
            return result

        record.domain_name = canonical
        record.matched_tld = entry.tld if entry else None
        record.lifecycle_status = classify(
            record.expiration_date, record.status, threshold_days
        )
        result.record = record

        self._log("info", "Domain resolved", {
            "domain": canonical,
            "raw_source": record.raw_source.value,
            "lifecycle_status": record.lifecycle_status.value,
        })
        return result

    async def resolve_many(
        self,
        domains: list[str],
        threshold_days: int,
    ) -> BulkResolutionResult:
        """
        Resolve several domains one after another.

        Invalid input counts as a failure for that domain and does not stop
        the loop.
        """
        summary = BulkResolutionResult()
        for domain in domains:
            try:
                result = await self.resolve(domain, threshold_days)
            except ValidationError as e:
                result = ResolutionResult(domain=domain, record=None, error=e.message)

            summary.results.append(result)
            if result.success:
                summary.refreshed += 1
            else:
                summary.failed += 1

        self._log("info", "Bulk resolution finished", {
            "total": len(domains),
            "refreshed": summary.refreshed,
            "failed": summary.failed,
        })
        return summary

    async def refresh_tld_servers(self, tld: str) -> TldServerEntry:
        """
        Rediscover the endpoints of a TLD, including root DB metadata.

        Endpoints discovery does not find again keep their stored values.
        """
        discovered = await self._discovery.discover(tld, include_metadata=True)
        entry = self._directory.record_discovery(tld, discovered)
        self._log("info", "TLD servers refreshed", {
            "tld": entry.tld,
            "rdap_base_url": entry.rdap_base_url,
            "whois_server": entry.whois_server,
        })
        return entry

    def get_tld_info(self, domain: str) -> Optional[TldServerEntry]:
        """
        Directory entry serving ``domain`` (longest known suffix), without discovery.

        Raises:
            ValidationError: If ``domain`` is not a valid domain name
        """
        return self._directory.find_for_domain(self._validator.require_valid(domain))
