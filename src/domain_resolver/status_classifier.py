"""
Lifecycle status classification.

Maps an expiration date and the registry's raw status tokens onto one of
available / expired / expiring / active / unknown. The expiring threshold
is always supplied by the caller.
"""

import math
from datetime import datetime, timezone
from typing import Iterable, Optional

from domain_resolver.enums import LifecycleStatus


SECONDS_PER_DAY = 86400

# Substrings of a raw status token that mean the name can be registered
AVAILABILITY_MARKERS = ("free", "available")


def has_availability_marker(tokens: Optional[Iterable]) -> bool:
    """True if any status token contains 'free' or 'available' (case-insensitive)."""
    if not tokens or isinstance(tokens, (str, bytes, dict)):
        return False
    return any(
        marker in str(token).lower()
        for token in tokens
        for marker in AVAILABILITY_MARKERS
    )


def days_left(expiration_date: datetime, now: Optional[datetime] = None) -> int:
    """Whole days until expiration, rounded down (negative once expired)."""
    if now is None:
        now = datetime.now(timezone.utc)
    if expiration_date.tzinfo is None:
        expiration_date = expiration_date.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return math.floor((expiration_date - now).total_seconds() / SECONDS_PER_DAY)


def classify(
    expiration_date: Optional[datetime],
    raw_status_tokens: Optional[Iterable[str]],
    threshold_days: int,
    now: Optional[datetime] = None,
) -> LifecycleStatus:
    """
    Classify a domain's lifecycle status.

    Args:
        expiration_date: Registry expiration date, if known
        raw_status_tokens: Status tokens exactly as the registry sent them
        threshold_days: Days before expiration at which a domain counts as expiring
        now: Reference time (defaults to the current UTC time)

    Returns:
        LifecycleStatus
    """
    if has_availability_marker(raw_status_tokens):
        return LifecycleStatus.AVAILABLE

    if expiration_date is None:
        return LifecycleStatus.UNKNOWN

    remaining = days_left(expiration_date, now)
    if remaining < 0:
        return LifecycleStatus.EXPIRED
    if remaining <= threshold_days:
        return LifecycleStatus.EXPIRING
    return LifecycleStatus.ACTIVE


# Name used by callers outside the resolution engine
classify_status = classify
