"""
State Store module for the resolver's JSON files.

Both the TLD directory and the import logs persist as one JSON document
each. The document is wrapped with a version, a timestamp and an
HMAC-SHA256 over its contents so that hand edits or corruption are
detected on the next read.
"""

import hashlib
import hmac
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from filelock import FileLock

from domain_resolver.exceptions import PersistenceError, TamperingError


class StateStore:
    """
    HMAC-protected JSON document on disk.

    The store holds no cached copy: every ``read`` goes to the file, so
    several store objects pointed at the same path see each other's writes.
    Read-modify-write sequences must run inside ``with store.lock:``; the
    lock is a ``.lock`` file next to the document, so it serializes every
    store object and process using that path.
    """

    VERSION = 1

    def __init__(self, file_path: Path, hmac_secret: str) -> None:
        """
        Initialize the state store.

        Args:
            file_path: Path to the JSON file
            hmac_secret: Secret key for HMAC computation

        Raises:
            PersistenceError: If the parent directory cannot be created
        """
        self._file_path = Path(file_path)
        self._hmac_secret = hmac_secret.encode("utf-8")
        try:
            self._file_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to create state directory: {e}",
                details={"file_path": str(self._file_path)},
            )
        self._lock = FileLock(str(self._file_path) + ".lock")

    @property
    def file_path(self) -> Path:
        return self._file_path

    @property
    def lock(self) -> FileLock:
        """Inter-process lock guarding the document (reentrant per thread)."""
        return self._lock

    def read(self) -> Optional[dict]:
        """
        Load the payload and validate its HMAC.

        Returns:
            The stored payload, or None if the file does not exist

        Raises:
            TamperingError: If HMAC validation fails
            PersistenceError: If the file cannot be read or parsed
        """
        if not self._file_path.exists():
            return None

        try:
            with open(self._file_path, "r", encoding="utf-8") as f:
                raw_data = json.load(f)
        except json.JSONDecodeError as e:
            raise PersistenceError(
                code="parse_error",
                message=f"Failed to parse state file: {e}",
                details={"file_path": str(self._file_path)},
            )
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to read state file: {e}",
                details={"file_path": str(self._file_path)},
            )

        if not isinstance(raw_data, dict):
            raise PersistenceError(
                code="parse_error",
                message="State file does not contain a JSON object",
                details={"file_path": str(self._file_path)},
            )

        stored_hmac = raw_data.get("hmac", "")
        data_for_hmac = {
            "version": raw_data.get("version"),
            "payload": raw_data.get("payload", {}),
            "last_updated": raw_data.get("last_updated"),
        }
        computed_hmac = self.compute_hmac(data_for_hmac)

        if not self.validate_hmac(str(stored_hmac), computed_hmac):
            raise TamperingError(
                code="hmac_mismatch",
                message="HMAC validation failed - data may have been tampered with",
                details={
                    "file_path": str(self._file_path),
                    "expected_hmac": computed_hmac,
                    "stored_hmac": stored_hmac,
                },
            )

        payload = raw_data.get("payload", {})
        return payload if isinstance(payload, dict) else {}

    def write(self, payload: dict) -> None:
        """
        Save the payload with HMAC protection.

        The document is written to a sibling temp file and moved into place,
        so readers never see a half-written file.

        Raises:
            PersistenceError: If the file cannot be written
        """
        now = datetime.now(timezone.utc).isoformat()
        data_for_hmac = {
            "version": self.VERSION,
            "payload": payload,
            "last_updated": now,
        }
        computed_hmac = self.compute_hmac(data_for_hmac)
        output_data = dict(data_for_hmac, hmac=computed_hmac)

        tmp_path = self._file_path.with_name(self._file_path.name + ".tmp")
        try:
            self._file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(output_data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self._file_path)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to write state file: {e}",
                details={"file_path": str(self._file_path)},
            )

    def compute_hmac(self, data: dict) -> str:
        """Compute HMAC-SHA256 over the canonical JSON form of ``data``."""
        serialized = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hmac.new(
            self._hmac_secret,
            serialized.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def validate_hmac(self, stored_hmac: str, computed_hmac: str) -> bool:
        """Constant-time comparison of two HMAC strings."""
        return hmac.compare_digest(stored_hmac, computed_hmac)
