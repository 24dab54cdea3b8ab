"""Parsing of the date strings registries put in RDAP events and WHOIS text."""

from datetime import datetime, timezone
from typing import Optional


# Tried in order after ISO 8601; first match wins
DATE_FORMATS = (
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
    "%Y.%m.%d %H:%M:%S",
    "%Y.%m.%d",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d",
    "%d-%b-%Y %H:%M:%S",
    "%d-%b-%Y",
    "%d.%m.%Y %H:%M:%S",
    "%d.%m.%Y",
    "%d/%m/%Y",
    "%Y%m%d",
)

_TZ_SUFFIXES = (" utc", " (utc)", " gmt", " z")


def parse_registry_date(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a registry date into an aware UTC datetime.

    Returns None for empty or unrecognized input. Naive values are taken
    as UTC.
    """
    if not value or not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        return _as_utc(parsed)
    except ValueError:
        pass

    lowered = text.lower()
    for suffix in _TZ_SUFFIXES:
        if lowered.endswith(suffix):
            text = text[: -len(suffix)].strip()
            break

    # Fractional seconds and trailing zone markers are dropped
    candidates = [text, text.split(".")[0] if "T" in text else text, text[:19], text.split(" ")[0]]
    for candidate in dict.fromkeys(candidates):
        candidate = candidate.rstrip("Zz").strip()
        for fmt in DATE_FORMATS:
            try:
                return _as_utc(datetime.strptime(candidate, fmt))
            except ValueError:
                continue
    return None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
