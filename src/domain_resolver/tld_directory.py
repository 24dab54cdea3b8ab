"""
TLD server directory.

Persistent map from canonical TLD (``.com``, ``.co.uk``) to the RDAP base
URL and WHOIS server that are authoritative for it. Pure data access: the
directory never touches the network.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from domain_resolver.audit_logger import AuditLogger
from domain_resolver.domain_validator import candidate_suffixes, canonical_tld
from domain_resolver.enums import ServerSource
from domain_resolver.exceptions import PersistenceError
from domain_resolver.models import DiscoveryResult, TldServerEntry
from domain_resolver.state_store import StateStore


COMPONENT = "tld_directory"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _entry_to_dict(entry: TldServerEntry) -> dict:
    return {
        "tld": entry.tld,
        "rdap_base_url": entry.rdap_base_url,
        "whois_server": entry.whois_server,
        "is_active": entry.is_active,
        "source": entry.source.value,
        "last_updated": entry.last_updated,
        "registry_url": entry.registry_url,
        "record_last_updated": entry.record_last_updated,
        "registration_date": entry.registration_date,
    }


def _entry_from_dict(data: dict) -> TldServerEntry:
    try:
        source = ServerSource(data.get("source", ServerSource.MANUAL.value))
    except ValueError:
        source = ServerSource.MANUAL

    return TldServerEntry(
        tld=data["tld"],
        rdap_base_url=data.get("rdap_base_url"),
        whois_server=data.get("whois_server"),
        is_active=bool(data.get("is_active", True)),
        source=source,
        last_updated=data.get("last_updated", ""),
        registry_url=data.get("registry_url"),
        record_last_updated=data.get("record_last_updated"),
        registration_date=data.get("registration_date"),
    )


class TldServerDirectory:
    """
    JSON-file backed TLD directory.

    Keys are always canonical, so ``COM``, ``com`` and ``.com`` address the
    same entry and at most one entry exists per TLD.
    """

    def __init__(
        self,
        file_path: Path,
        hmac_secret: str,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._store = StateStore(file_path, hmac_secret)
        self._logger = logger

    @property
    def file_path(self) -> Path:
        return self._store.file_path

    def _load(self) -> dict:
        payload = self._store.read() or {}
        payload.setdefault("entries", {})
        payload.setdefault("versions", {})
        if not isinstance(payload["entries"], dict) or not isinstance(payload["versions"], dict):
            raise PersistenceError(
                code="schema_error",
                message="TLD directory file has an unexpected layout",
                details={"file_path": str(self.file_path)},
            )
        return payload

    # Lookups

    def get(self, tld: str) -> Optional[TldServerEntry]:
        """Entry for ``tld`` in any spelling, or None."""
        data = self._load()["entries"].get(canonical_tld(tld))
        return _entry_from_dict(data) if data else None

    def find_for_domain(self, domain: str) -> Optional[TldServerEntry]:
        """
        Entry serving ``domain``: the two-label suffix when it is known,
        otherwise the single label.
        """
        entries = self._load()["entries"]
        for suffix in candidate_suffixes(domain):
            if suffix in entries:
                return _entry_from_dict(entries[suffix])
        return None

    def list_entries(
        self,
        search: Optional[str] = None,
        active: Optional[bool] = None,
        has_rdap: Optional[bool] = None,
        has_whois: Optional[bool] = None,
    ) -> list[TldServerEntry]:
        """
        All entries sorted by TLD, optionally filtered.

        Args:
            search: Case-insensitive substring of the TLD, RDAP URL or WHOIS host
            active: Keep only active (True) or inactive (False) entries
            has_rdap: Keep only entries with (True) or without (False) an RDAP URL
            has_whois: Keep only entries with (True) or without (False) a WHOIS server
        """
        needle = search.lower().strip() if search else None
        result = []
        for data in self._load()["entries"].values():
            entry = _entry_from_dict(data)
            if active is not None and entry.is_active != active:
                continue
            if has_rdap is not None and bool(entry.rdap_base_url) != has_rdap:
                continue
            if has_whois is not None and bool(entry.whois_server) != has_whois:
                continue
            if needle:
                haystack = " ".join(
                    filter(None, [entry.tld, entry.rdap_base_url, entry.whois_server])
                ).lower()
                if needle not in haystack:
                    continue
            result.append(entry)

        return sorted(result, key=lambda e: e.tld)

    def get_statistics(self) -> dict:
        """Counts of entries by activity and known endpoints."""
        entries = [_entry_from_dict(d) for d in self._load()["entries"].values()]
        return {
            "total": len(entries),
            "active": sum(1 for e in entries if e.is_active),
            "inactive": sum(1 for e in entries if not e.is_active),
            "with_rdap": sum(1 for e in entries if e.rdap_base_url),
            "with_whois": sum(1 for e in entries if e.whois_server),
            "with_both": sum(1 for e in entries if e.rdap_base_url and e.whois_server),
            "without_endpoint": sum(1 for e in entries if not e.has_endpoint),
        }

    # Writes

    def _log_write(self, entry: TldServerEntry, is_new: bool) -> None:
        if self._logger:
            self._logger.debug(
                COMPONENT,
                "Directory entry created" if is_new else "Directory entry updated",
                {
                    "tld": entry.tld,
                    "rdap_base_url": entry.rdap_base_url,
                    "whois_server": entry.whois_server,
                    "source": entry.source.value,
                },
            )

    def _modify(
        self,
        tld: str,
        change: Callable[[TldServerEntry], None],
    ) -> tuple[TldServerEntry, bool]:
        """Apply ``change`` to the stored (or a fresh) entry under the file lock."""
        key = canonical_tld(tld)
        with self._store.lock:
            payload = self._load()
            data = payload["entries"].get(key)
            entry = _entry_from_dict(data) if data else TldServerEntry(tld=key)
            change(entry)
            entry.tld = key
            entry.last_updated = _now()
            payload["entries"][key] = _entry_to_dict(entry)
            self._store.write(payload)

        self._log_write(entry, data is None)
        return entry, data is None

    def upsert(self, entry: TldServerEntry) -> bool:
        """
        Insert or replace an entry.

        Returns:
            True if the entry was new
        """
        entry.tld = canonical_tld(entry.tld)
        entry.last_updated = _now()

        with self._store.lock:
            payload = self._load()
            is_new = entry.tld not in payload["entries"]
            payload["entries"][entry.tld] = _entry_to_dict(entry)
            self._store.write(payload)

        self._log_write(entry, is_new)
        return is_new

    def ensure(self, tld: str) -> bool:
        """
        Create an empty active entry for ``tld`` if none exists.

        Returns:
            True if an entry was created
        """
        key = canonical_tld(tld)
        with self._store.lock:
            payload = self._load()
            if key in payload["entries"]:
                return False
            payload["entries"][key] = _entry_to_dict(
                TldServerEntry(tld=key, last_updated=_now())
            )
            self._store.write(payload)
        return True

    def record_discovery(self, tld: str, result: DiscoveryResult) -> TldServerEntry:
        """
        Store a discovery result, partial or empty, for ``tld``.

        Endpoints found by discovery replace stored ones; fields discovery did
        not find keep their stored values. The activity flag is preserved.
        """
        def apply(entry: TldServerEntry) -> None:
            if result.rdap_base_url:
                entry.rdap_base_url = result.rdap_base_url
            if result.whois_server:
                entry.whois_server = result.whois_server
            if result.registry_url:
                entry.registry_url = result.registry_url
            if result.record_last_updated:
                entry.record_last_updated = result.record_last_updated
            if result.registration_date:
                entry.registration_date = result.registration_date
            if result.source is not None:
                entry.source = result.source

        entry, _ = self._modify(tld, apply)
        return entry

    def set_rdap_base_url(self, tld: str, url: str, source: ServerSource) -> bool:
        """
        Set the RDAP base URL, creating the entry if needed.

        Returns:
            True if the entry was new
        """
        def apply(entry: TldServerEntry) -> None:
            entry.rdap_base_url = url
            entry.source = source

        _, is_new = self._modify(tld, apply)
        return is_new

    def _write_active(self, tld: str, active: Optional[bool]) -> Optional[bool]:
        # None flips the stored flag; returns the new flag or None if missing
        key = canonical_tld(tld)
        with self._store.lock:
            payload = self._load()
            data = payload["entries"].get(key)
            if data is None:
                return None
            if active is None:
                active = not bool(data.get("is_active", True))
            data["is_active"] = active
            data["last_updated"] = _now()
            self._store.write(payload)

        if self._logger:
            self._logger.info(COMPONENT, "Directory entry activity changed", {
                "tld": key,
                "is_active": active,
            })
        return active

    def set_active(self, tld: str, active: bool) -> bool:
        """
        Enable or disable an entry.

        Returns:
            False if no entry exists for ``tld``
        """
        return self._write_active(tld, active) is not None

    def toggle_active(self, tld: str) -> Optional[bool]:
        """Flip an entry's activity flag and return the new value (None if missing)."""
        return self._write_active(tld, None)

    def delete(self, tld: str) -> bool:
        """Remove an entry. Returns False if it did not exist."""
        return self.bulk_delete([tld]) == 1

    def bulk_delete(self, tlds: list[str]) -> int:
        """Remove several entries and return how many existed."""
        keys = {canonical_tld(tld) for tld in tlds}
        with self._store.lock:
            payload = self._load()
            removed = [key for key in keys if payload["entries"].pop(key, None) is not None]
            if removed:
                self._store.write(payload)

        if removed and self._logger:
            self._logger.info(COMPONENT, "Directory entries deleted", {"tlds": sorted(removed)})
        return len(removed)

    # IANA version markers

    def get_version(self, name: str) -> Optional[str]:
        """Last stored IANA publication marker ('tld_list' or 'rdap')."""
        return self._load()["versions"].get(name)

    def set_version(self, name: str, value: str) -> None:
        with self._store.lock:
            payload = self._load()
            payload["versions"][name] = value
            self._store.write(payload)
