"""
Domain Resolver - registration data lookups over RDAP and WHOIS.

This package discovers the authoritative RDAP and WHOIS endpoints of a TLD
from IANA, queries them with RDAP first and WHOIS as fallback, merges the
answers into one normalized record, and keeps a directory of known TLD
endpoints that bulk imports populate in resumable batches.
"""

__version__ = "0.1.0"
__author__ = "Domain Resolver Team"

from domain_resolver.exceptions import (
    DomainResolverError,
    ValidationError,
    NetworkError,
    ProtocolError,
    PersistenceError,
    TamperingError,
    ImportConflictError,
    ImportNotFoundError,
    ImportSetupError,
)
from domain_resolver.enums import (
    LifecycleStatus,
    RawSource,
    LogLevel,
    DomainValidationErrorCode,
    RDAPErrorCode,
    RDAPStatus,
    WHOISErrorCode,
    WHOISStatus,
    ServerSource,
    ResolutionState,
    ImportType,
    ImportStatus,
)
from domain_resolver.domain_validator import (
    DomainValidator,
    DomainValidationResult,
    DomainValidationError,
    candidate_suffixes,
    canonical_tld,
)
from domain_resolver.config import (
    NetworkConfig,
    IanaConfig,
    PersistenceConfig,
    ImportConfig,
    LoggingConfig,
    SystemConfig,
    create_default_config,
    load_config_from_file,
    load_config_from_env,
    save_config_to_file,
)
from domain_resolver.models import (
    TldServerEntry,
    DiscoveryResult,
    DomainRecord,
    AttemptRecord,
    ResolutionResult,
    ImportLog,
    BatchResult,
    UpdateCheckResult,
)
from domain_resolver.audit_logger import (
    AuditLogger,
    LogEntry,
)
from domain_resolver.state_store import (
    StateStore,
)
from domain_resolver.tld_directory import (
    TldServerDirectory,
)
from domain_resolver.import_log import (
    ImportLogStore,
)
from domain_resolver.rdap_client import (
    RDAPClient,
    RDAPResponse,
    RDAPError,
)
from domain_resolver.whois_client import (
    WHOISClient,
    WHOISResponse,
    WHOISError,
)
from domain_resolver.iana_discovery import (
    IanaDiscoveryClient,
    BootstrapData,
    TldListData,
)
from domain_resolver.status_classifier import (
    classify,
    classify_status,
)
from domain_resolver.orchestrator import (
    ResolutionOrchestrator,
    BulkResolutionResult,
)
from domain_resolver.bulk_import import (
    BulkImportService,
)

__all__ = [
    # Exceptions
    "DomainResolverError",
    "ValidationError",
    "NetworkError",
    "ProtocolError",
    "PersistenceError",
    "TamperingError",
    "ImportConflictError",
    "ImportNotFoundError",
    "ImportSetupError",
    # Enums
    "LifecycleStatus",
    "RawSource",
    "LogLevel",
    "DomainValidationErrorCode",
    "RDAPErrorCode",
    "RDAPStatus",
    "WHOISErrorCode",
    "WHOISStatus",
    "ServerSource",
    "ResolutionState",
    "ImportType",
    "ImportStatus",
    # Domain Validator
    "DomainValidator",
    "DomainValidationResult",
    "DomainValidationError",
    "candidate_suffixes",
    "canonical_tld",
    # Configuration
    "NetworkConfig",
    "IanaConfig",
    "PersistenceConfig",
    "ImportConfig",
    "LoggingConfig",
    "SystemConfig",
    "create_default_config",
    "load_config_from_file",
    "load_config_from_env",
    "save_config_to_file",
    # Models
    "TldServerEntry",
    "DiscoveryResult",
    "DomainRecord",
    "AttemptRecord",
    "ResolutionResult",
    "ImportLog",
    "BatchResult",
    "UpdateCheckResult",
    # Audit Logger
    "AuditLogger",
    "LogEntry",
    # Persistence
    "StateStore",
    "TldServerDirectory",
    "ImportLogStore",
    # RDAP Client
    "RDAPClient",
    "RDAPResponse",
    "RDAPError",
    # WHOIS Client
    "WHOISClient",
    "WHOISResponse",
    "WHOISError",
    # IANA Discovery
    "IanaDiscoveryClient",
    "BootstrapData",
    "TldListData",
    # Status Classifier
    "classify",
    "classify_status",
    # Orchestrator
    "ResolutionOrchestrator",
    "BulkResolutionResult",
    # Bulk Import
    "BulkImportService",
]
