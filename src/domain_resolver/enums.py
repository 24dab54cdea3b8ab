"""
Enumeration types for the domain resolver.

These enums provide type-safe constants for status codes, error codes,
and persisted vocabularies throughout the system.
"""

from enum import Enum


class LifecycleStatus(Enum):
    """Derived registration lifecycle status of a domain."""

    AVAILABLE = "available"
    EXPIRED = "expired"
    EXPIRING = "expiring"
    ACTIVE = "active"
    UNKNOWN = "unknown"


class RawSource(Enum):
    """Protocol that produced a domain record."""

    RDAP = "rdap"
    WHOIS = "whois"
    NONE = "none"


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class DomainValidationErrorCode(Enum):
    """Error codes for domain validation failures."""

    FORBIDDEN_CHARS = "forbidden_chars"
    INVALID_TLD = "invalid_tld"
    IDNA_ERROR = "idna_error"
    EMPTY_INPUT = "empty_input"
    EMPTY_LABEL = "empty_label"


class RDAPErrorCode(Enum):
    """Error codes for RDAP client operations."""

    NETWORK_ERROR = "network_error"
    TLS_ERROR = "tls_error"
    TIMEOUT = "timeout"
    PARSE_ERROR = "parse_error"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"


class RDAPStatus(Enum):
    """RDAP query outcome."""

    FOUND = "found"
    AVAILABLE = "available"
    FAILED = "failed"


class WHOISErrorCode(Enum):
    """Error codes for WHOIS client operations."""

    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    PARSE_ERROR = "parse_error"
    EMPTY_RESPONSE = "empty_response"


class WHOISStatus(Enum):
    """WHOIS query outcome."""

    FOUND = "found"
    AVAILABLE = "available"
    FAILED = "failed"


class ServerSource(Enum):
    """Where a TLD directory entry got its endpoints from."""

    MANUAL = "manual"
    IANA_RDAP = "iana_rdap"
    IANA_WHOIS = "iana_whois"
    IANA_HTML = "iana_html"


class ResolutionState(Enum):
    """States of the resolution state machine."""

    START = "start"
    TLD_RESOLVED = "tld_resolved"
    RDAP_ATTEMPTED = "rdap_attempted"
    WHOIS_ATTEMPTED = "whois_attempted"
    DONE = "done"


class ImportType(Enum):
    """Kinds of bulk import runs against the TLD directory."""

    TLD_LIST = "tld_list"
    RDAP = "rdap"
    WHOIS = "whois"
    CHECK_UPDATES = "check_updates"
    COMPLETE_WORKFLOW = "complete_workflow"


class ImportStatus(Enum):
    """Lifecycle of an import log."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"
