"""
Domain validation and normalization module.

Turns user-supplied domain input into the canonical lowercase ASCII form
used for every lookup, and derives the directory suffixes a domain can be
served by.
"""

import re
from dataclasses import dataclass
from typing import Optional

import idna

from domain_resolver.enums import DomainValidationErrorCode
from domain_resolver.exceptions import ValidationError


# Control chars, whitespace and symbols that never appear in a hostname
FORBIDDEN_CHARS_PATTERN = re.compile(
    r'[\x00-\x1f\x7f'
    r'\s'
    r'!@#$%^&*()+=\[\]{}|\\:;"\'<>,?/`~]'
)


@dataclass
class DomainValidationError:
    """Structured error information for domain validation failures."""

    code: DomainValidationErrorCode
    message: str
    details: dict


@dataclass
class DomainValidationResult:
    """Result of domain validation operation."""

    valid: bool
    canonical_domain: Optional[str]
    error: Optional[DomainValidationError]


def canonical_tld(tld: str) -> str:
    """
    Canonical directory key for a TLD or suffix: lowercase, one leading dot.

    >>> canonical_tld("CO.UK")
    '.co.uk'
    """
    return "." + tld.strip().strip(".").lower()


def candidate_suffixes(domain: str) -> list[str]:
    """
    Directory suffixes to try for a canonical domain, most specific first.

    Only the two-label and the single-label suffix are considered, and the
    two-label suffix only when the domain has at least three labels.
    """
    labels = [label for label in domain.strip(".").split(".") if label]
    suffixes = []
    if len(labels) >= 3:
        suffixes.append(canonical_tld(".".join(labels[-2:])))
    if labels:
        suffixes.append(canonical_tld(labels[-1]))
    return suffixes


class DomainValidator:
    """
    Validates and normalizes domain names.

    Handles:
    - Conversion to lowercase canonical form
    - IDNA encoding for international characters
    - Rejection of forbidden characters
    - Rejection of single-label input and empty labels
    """

    def validate(self, raw_domain: str) -> DomainValidationResult:
        """
        Validate and normalize a domain string.

        Args:
            raw_domain: The raw domain string to validate

        Returns:
            DomainValidationResult with validation status and canonical form or error
        """
        if not raw_domain or not raw_domain.strip():
            return self._failure(
                DomainValidationErrorCode.EMPTY_INPUT,
                "Domain input is empty",
                {"raw_input": raw_domain},
            )

        domain = raw_domain.strip()
        # A single trailing dot is the fully-qualified form
        if domain.endswith("."):
            domain = domain[:-1]

        if FORBIDDEN_CHARS_PATTERN.search(domain):
            return self._failure(
                DomainValidationErrorCode.FORBIDDEN_CHARS,
                "Domain contains forbidden characters",
                {
                    "raw_input": raw_domain,
                    "forbidden_chars": FORBIDDEN_CHARS_PATTERN.findall(domain),
                },
            )

        labels = domain.split(".")
        if any(not label for label in labels):
            return self._failure(
                DomainValidationErrorCode.EMPTY_LABEL,
                "Domain contains an empty label",
                {"raw_input": raw_domain},
            )

        if len(labels) < 2:
            return self._failure(
                DomainValidationErrorCode.INVALID_TLD,
                "Domain must have at least two labels",
                {"raw_input": raw_domain},
            )

        try:
            canonical = self.normalize_to_canonical(domain)
        except ValidationError as e:
            return self._failure(
                DomainValidationErrorCode.IDNA_ERROR,
                str(e.message),
                e.details,
            )

        return DomainValidationResult(
            valid=True,
            canonical_domain=canonical,
            error=None,
        )

    def require_valid(self, raw_domain: str) -> str:
        """
        Return the canonical domain or raise.

        Raises:
            ValidationError: If the input is not a usable domain
        """
        result = self.validate(raw_domain)
        if not result.valid or result.canonical_domain is None:
            error = result.error
            raise ValidationError(
                code=error.code.value if error else "invalid_domain",
                message=error.message if error else "Invalid domain",
                details=error.details if error else {"raw_input": raw_domain},
            )
        return result.canonical_domain

    def normalize_to_canonical(self, domain: str) -> str:
        """
        Convert domain to canonical form (lowercase, IDNA-encoded).

        Raises:
            ValidationError: If IDNA encoding fails
        """
        domain_lower = domain.lower()

        if not any(ord(c) > 127 for c in domain_lower):
            return domain_lower

        try:
            return idna.encode(domain_lower, uts46=True).decode("ascii")
        except idna.IDNAError as e:
            raise ValidationError(
                code=DomainValidationErrorCode.IDNA_ERROR.value,
                message=f"IDNA encoding failed: {e}",
                details={"domain": domain, "idna_error": str(e)},
            )

    @staticmethod
    def _failure(
        code: DomainValidationErrorCode,
        message: str,
        details: dict,
    ) -> DomainValidationResult:
        return DomainValidationResult(
            valid=False,
            canonical_domain=None,
            error=DomainValidationError(code=code, message=message, details=details),
        )
