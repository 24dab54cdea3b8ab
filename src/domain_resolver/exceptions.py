"""
Exception classes for the domain resolver.

All exceptions inherit from DomainResolverError and provide structured
error information with codes, messages, and optional details.

Network and protocol failures during a resolution are never raised; the
clients turn them into tagged responses. These exceptions cover misuse
and storage problems.
"""

from typing import Optional


class DomainResolverError(Exception):
    """Root of the resolver error hierarchy.

    Attributes:
        code: Stable machine-readable error code
        message: Human-readable description
        details: Extra context (ids, paths, upstream status)
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Serializable form used in import logs and audit entries."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(DomainResolverError):
    """Raised when a domain, TLD or import type is not acceptable input."""

    pass


class NetworkError(DomainResolverError):
    """Raised when a setup-level network fetch fails (IANA list sources)."""

    pass


class ProtocolError(DomainResolverError):
    """Raised when an IANA source returns something that cannot be parsed."""

    pass


class PersistenceError(DomainResolverError):
    """Raised when a state file cannot be read, parsed or written."""

    pass


class TamperingError(PersistenceError):
    """Raised when a state file HMAC does not match its payload."""

    pass


class ImportConflictError(DomainResolverError):
    """Raised when an import of the same type is already running."""

    pass


class ImportNotFoundError(DomainResolverError):
    """Raised when an import log id does not exist."""

    pass


class ImportSetupError(DomainResolverError):
    """Raised inside an import when its input source or the directory is unusable."""

    pass
