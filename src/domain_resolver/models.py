"""
Data models for the domain resolver.

This module defines the TLD directory entry, the normalized domain record
returned to callers, the per-attempt diagnostics of a resolution, and the
import log that checkpoints bulk directory imports.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from domain_resolver.enums import (
    ImportStatus,
    ImportType,
    LifecycleStatus,
    RawSource,
    ServerSource,
)


@dataclass
class TldServerEntry:
    """Known endpoints for one TLD."""

    tld: str  # Canonical form: lowercase with leading dot, e.g. '.co.uk'
    rdap_base_url: Optional[str] = None
    whois_server: Optional[str] = None
    is_active: bool = True
    source: ServerSource = ServerSource.MANUAL
    last_updated: str = ""
    registry_url: Optional[str] = None
    record_last_updated: Optional[str] = None
    registration_date: Optional[str] = None

    @property
    def has_endpoint(self) -> bool:
        """True if at least one protocol endpoint is known."""
        return bool(self.rdap_base_url or self.whois_server)


@dataclass
class DiscoveryResult:
    """Endpoints found for a TLD by IANA discovery. Both may be None."""

    tld: str
    rdap_base_url: Optional[str] = None
    whois_server: Optional[str] = None
    source: Optional[ServerSource] = None
    registry_url: Optional[str] = None
    record_last_updated: Optional[str] = None
    registration_date: Optional[str] = None

    @property
    def found_anything(self) -> bool:
        return bool(self.rdap_base_url or self.whois_server)


@dataclass
class DomainRecord:
    """Normalized registration data for one domain."""

    domain_name: str
    registrar: Optional[str] = None
    registrar_url: Optional[str] = None
    expiration_date: Optional[datetime] = None
    updated_date: Optional[datetime] = None
    abuse_email: Optional[str] = None
    status: list[str] = field(default_factory=list)
    nameservers: list[str] = field(default_factory=list)
    raw_source: RawSource = RawSource.NONE
    lifecycle_status: LifecycleStatus = LifecycleStatus.UNKNOWN
    matched_tld: Optional[str] = None

    def to_dict(self) -> dict:
        """Serialize for callers that store the record."""
        return {
            "domain_name": self.domain_name,
            "registrar": self.registrar,
            "registrar_url": self.registrar_url,
            "expiration_date": self.expiration_date.isoformat() if self.expiration_date else None,
            "updated_date": self.updated_date.isoformat() if self.updated_date else None,
            "abuse_email": self.abuse_email,
            "status": list(self.status),
            "nameservers": list(self.nameservers),
            "raw_source": self.raw_source.value,
            "lifecycle_status": self.lifecycle_status.value,
            "matched_tld": self.matched_tld,
        }


@dataclass
class AttemptRecord:
    """Outcome of a single protocol attempt during a resolution."""

    source: str  # 'rdap' or 'whois'
    endpoint: str
    outcome: str  # 'found', 'available', 'failed'
    error: Optional[str] = None
    http_status_code: Optional[int] = None
    response_time_ms: float = 0.0


@dataclass
class ResolutionResult:
    """
    Result of resolving one domain.

    Exactly one of ``record`` and ``error`` is set. A record is never
    returned with raw_source NONE.
    """

    domain: str
    record: Optional[DomainRecord]
    error: Optional[str]
    attempts: list[AttemptRecord] = field(default_factory=list)
    states: list[str] = field(default_factory=list)
    total_duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.record is not None


@dataclass
class ImportLog:
    """Checkpoint of a bulk directory import."""

    id: int
    import_type: ImportType
    status: ImportStatus
    cursor: int = 0
    total: int = 0
    processed: int = 0
    new: int = 0
    updated: int = 0
    failed: int = 0
    error_message: Optional[str] = None
    started_at: str = ""
    updated_at: str = ""
    completed_at: Optional[str] = None
    details: dict = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in (ImportStatus.COMPLETE, ImportStatus.FAILED)


@dataclass
class BatchResult:
    """Answer to one progress poll of an import."""

    log_id: int
    status: ImportStatus
    processed: int
    remaining: int
    message: str = ""


@dataclass
class UpdateCheckResult:
    """Whether IANA has published data newer than what the directory holds."""

    needs_update: bool
    details: dict = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
