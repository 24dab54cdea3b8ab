"""
Import log store.

Persists the checkpoints of bulk directory imports so that an import can be
driven by many short polls, possibly from different processes.
"""

import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from domain_resolver.audit_logger import AuditLogger
from domain_resolver.enums import ImportStatus, ImportType
from domain_resolver.exceptions import ImportConflictError, ImportNotFoundError
from domain_resolver.models import ImportLog
from domain_resolver.state_store import StateStore


COMPONENT = "import_log"

# Key in ImportLog.details holding the lease of the batch being processed
BATCH_CLAIM = "batch_claim"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _log_to_dict(log: ImportLog) -> dict:
    return {
        "id": log.id,
        "import_type": log.import_type.value,
        "status": log.status.value,
        "cursor": log.cursor,
        "total": log.total,
        "processed": log.processed,
        "new": log.new,
        "updated": log.updated,
        "failed": log.failed,
        "error_message": log.error_message,
        "started_at": log.started_at,
        "updated_at": log.updated_at,
        "completed_at": log.completed_at,
        "details": log.details,
    }


def _log_from_dict(data: dict) -> ImportLog:
    return ImportLog(
        id=int(data["id"]),
        import_type=ImportType(data["import_type"]),
        status=ImportStatus(data["status"]),
        cursor=int(data.get("cursor", 0)),
        total=int(data.get("total", 0)),
        processed=int(data.get("processed", 0)),
        new=int(data.get("new", 0)),
        updated=int(data.get("updated", 0)),
        failed=int(data.get("failed", 0)),
        error_message=data.get("error_message"),
        started_at=data.get("started_at", ""),
        updated_at=data.get("updated_at", ""),
        completed_at=data.get("completed_at"),
        details=data.get("details") or {},
    )


def _parse_timestamp(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ImportLogStore:
    """
    JSON-file backed store of ImportLog records.

    ``create_if_not_running`` is the only way to open a new log; it checks
    for a running import of the same type and creates the new log while
    holding the store's file lock, re-reading the file under that lock.
    Batches are leased with ``claim_batch`` so overlapping polls of one log
    never process the same units.
    """

    def __init__(
        self,
        file_path: Path,
        hmac_secret: str,
        stale_after_seconds: float = 3600.0,
        logger: Optional[AuditLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = StateStore(file_path, hmac_secret)
        self._stale_after = stale_after_seconds
        self._logger = logger
        self._clock = clock or _utcnow

    def _load(self) -> dict:
        payload = self._store.read() or {}
        payload.setdefault("next_id", 1)
        payload.setdefault("logs", {})
        return payload

    def _now_iso(self) -> str:
        return self._clock().isoformat()

    def is_stale(self, log: ImportLog) -> bool:
        """True if a running log has not been polled within the stale timeout."""
        if log.status != ImportStatus.RUNNING:
            return False
        last_seen = _parse_timestamp(log.updated_at or log.started_at)
        if last_seen is None:
            return True
        return (self._clock() - last_seen).total_seconds() > self._stale_after

    def create_if_not_running(self, import_type: ImportType) -> ImportLog:
        """
        Open a new running log for ``import_type``.

        Stale running logs of the same type are marked failed first and do
        not block the new import.

        Raises:
            ImportConflictError: If a live import of this type is running
        """
        with self._store.lock:
            payload = self._load()
            expired = []

            for key, data in payload["logs"].items():
                log = _log_from_dict(data)
                if log.import_type != import_type or log.status != ImportStatus.RUNNING:
                    continue
                if self.is_stale(log):
                    log.status = ImportStatus.FAILED
                    log.error_message = (
                        f"Import abandoned: no progress for more than "
                        f"{int(self._stale_after)} seconds"
                    )
                    log.completed_at = self._now_iso()
                    log.details.pop(BATCH_CLAIM, None)
                    payload["logs"][key] = _log_to_dict(log)
                    expired.append(log.id)
                    continue
                raise ImportConflictError(
                    code="import_running",
                    message=f"An import of type '{import_type.value}' is already running",
                    details={"log_id": log.id, "import_type": import_type.value},
                )

            now = self._now_iso()
            log = ImportLog(
                id=int(payload["next_id"]),
                import_type=import_type,
                status=ImportStatus.RUNNING,
                started_at=now,
                updated_at=now,
            )
            payload["next_id"] = log.id + 1
            payload["logs"][str(log.id)] = _log_to_dict(log)
            self._store.write(payload)

        if self._logger:
            for log_id in expired:
                self._logger.warn(COMPONENT, "Stale import marked failed", {
                    "log_id": log_id,
                    "import_type": import_type.value,
                })
        return log

    def get(self, log_id: int) -> ImportLog:
        """
        Raises:
            ImportNotFoundError: If no log has this id
        """
        data = self._load()["logs"].get(str(log_id))
        if data is None:
            raise ImportNotFoundError(
                code="import_not_found",
                message=f"Import log {log_id} does not exist",
                details={"log_id": log_id},
            )
        return _log_from_dict(data)

    def _claim_expired(self, claim: dict) -> bool:
        claimed_at = _parse_timestamp(claim.get("claimed_at"))
        if claimed_at is None:
            return True
        return (self._clock() - claimed_at).total_seconds() > self._stale_after

    def claim_batch(self, log_id: int) -> tuple[ImportLog, bool]:
        """
        Lease a running log for one batch.

        Returns:
            The stored log and whether this caller now holds the lease. No
            lease is granted for finished logs or while another poll holds
            an unexpired one.

        Raises:
            ImportNotFoundError: If no log has this id
        """
        with self._store.lock:
            payload = self._load()
            data = payload["logs"].get(str(log_id))
            if data is None:
                raise ImportNotFoundError(
                    code="import_not_found",
                    message=f"Import log {log_id} does not exist",
                    details={"log_id": log_id},
                )
            log = _log_from_dict(data)
            if log.is_terminal:
                return log, False

            claim = log.details.get(BATCH_CLAIM)
            if claim and not self._claim_expired(claim):
                return log, False

            now = self._now_iso()
            log.details[BATCH_CLAIM] = {"token": uuid.uuid4().hex, "claimed_at": now}
            log.updated_at = now
            payload["logs"][str(log.id)] = _log_to_dict(log)
            self._store.write(payload)

        if claim and self._logger:
            self._logger.warn(COMPONENT, "Expired batch lease taken over", {"log_id": log.id})
        return log, True

    def save(self, log: ImportLog, release: bool = False) -> ImportLog:
        """
        Persist a mutated log, stamping ``updated_at``.

        Args:
            log: The log to store
            release: Give up the batch lease held by ``log``

        Raises:
            ImportNotFoundError: If no log has this id
            ImportConflictError: If ``release`` is set and the lease was lost
        """
        log.updated_at = self._now_iso()
        if log.is_terminal and not log.completed_at:
            log.completed_at = log.updated_at

        with self._store.lock:
            payload = self._load()
            stored = payload["logs"].get(str(log.id))
            if stored is None:
                raise ImportNotFoundError(
                    code="import_not_found",
                    message=f"Import log {log.id} does not exist",
                    details={"log_id": log.id},
                )
            if release:
                held = log.details.pop(BATCH_CLAIM, None) or {}
                current = (stored.get("details") or {}).get(BATCH_CLAIM) or {}
                if held.get("token") != current.get("token"):
                    raise ImportConflictError(
                        code="batch_lease_lost",
                        message=f"Import log {log.id} was taken over by another poll",
                        details={"log_id": log.id},
                    )
            payload["logs"][str(log.id)] = _log_to_dict(log)
            self._store.write(payload)
        return log

    def find_running(self, import_type: ImportType) -> Optional[ImportLog]:
        for data in self._load()["logs"].values():
            log = _log_from_dict(data)
            if log.import_type == import_type and log.status == ImportStatus.RUNNING:
                return log
        return None

    def list_logs(
        self,
        import_type: Optional[ImportType] = None,
        limit: Optional[int] = None,
    ) -> list[ImportLog]:
        """Logs newest first, optionally restricted to one import type."""
        logs = [_log_from_dict(d) for d in self._load()["logs"].values()]
        if import_type is not None:
            logs = [log for log in logs if log.import_type == import_type]
        logs.sort(key=lambda log: log.id, reverse=True)
        return logs[:limit] if limit is not None else logs

    def get_import_statistics(self) -> dict:
        """Counts of logs per status and per type, plus the most recent log."""
        logs = self.list_logs()
        by_status = {status.value: 0 for status in ImportStatus}
        by_type = {import_type.value: 0 for import_type in ImportType}
        for log in logs:
            by_status[log.status.value] += 1
            by_type[log.import_type.value] += 1

        return {
            "total": len(logs),
            "by_status": by_status,
            "by_type": by_type,
            "last_import_id": logs[0].id if logs else None,
        }
