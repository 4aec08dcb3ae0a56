"""
Note store -- the persistence collaborator behind the notes API.

One JSON file per sync identifier under ``<data_dir>/notes/``. The file
name is the SHA-256 of the identifier, so arbitrary identifiers never
reach the filesystem as paths.

Every read-compare-write for an identifier runs under that
identifier's lock. Two different codes racing to claim the same new
identifier cannot both win; unrelated identifiers never contend.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import threading
import weakref
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from ..crypto import fingerprints_match
from ..errors import StorageFault, SyncConflict, VaultNotFound
from ..models import VaultRecord, utc_now

logger = logging.getLogger("notevault.server.store")


class NoteStore:
    """File-backed vault records with per-identifier compare-and-swap."""

    def __init__(self, data_dir: Path):
        """Initialize the store.

        Args:
            data_dir: Root directory; records live in ``data_dir/notes``.
        """
        self.data_dir = Path(data_dir).expanduser()
        self.notes_dir = self.data_dir / "notes"
        # entries vanish once no request holds the lock
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._locks_guard = threading.Lock()

    def _record_path(self, sync_id: str) -> Path:
        digest = hashlib.sha256(sync_id.encode("utf-8")).hexdigest()
        return self.notes_dir / f"{digest}.json"

    def _lock_for(self, sync_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(sync_id)
            if lock is None:
                lock = self._locks[sync_id] = threading.Lock()
            return lock

    def _load(self, sync_id: str) -> Optional[VaultRecord]:
        path = self._record_path(sync_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageFault("Database read failed", str(exc)) from exc
        try:
            return VaultRecord.model_validate_json(raw)
        except ValidationError as exc:
            logger.error("Corrupt record for %s at %s", sync_id, path)
            raise StorageFault("Database record corrupted", str(exc)) from exc

    def _store(self, record: VaultRecord) -> None:
        path = self._record_path(record.sync_id)
        try:
            self.notes_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=self.notes_dir)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(record.model_dump_json(by_alias=True, indent=2))
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, path)
            finally:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
        except OSError as exc:
            raise StorageFault("Database write failed", str(exc)) from exc

    def get(self, sync_id: str) -> Optional[VaultRecord]:
        """Return the record for ``sync_id``, or None.

        Raises:
            StorageFault: The record could not be read.
        """
        with self._lock_for(sync_id):
            return self._load(sync_id)

    def check_owner(self, sync_id: str, fingerprint: str) -> VaultRecord:
        """Return the record if ``fingerprint`` owns it.

        Raises:
            VaultNotFound: No record exists.
            SyncConflict: The record belongs to another fingerprint.
            StorageFault: The record could not be read.
        """
        record = self.get(sync_id)
        if record is None:
            raise VaultNotFound("Vault not found")
        if not fingerprints_match(fingerprint or "", record.hash):
            raise SyncConflict("Unauthorized: Invalid security code for this ID")
        return record

    def put(self, sync_id: str, encrypted_content: str, fingerprint: str) -> VaultRecord:
        """Create the record, or overwrite it if ``fingerprint`` matches.

        Raises:
            SyncConflict: The identifier is owned by another fingerprint;
                the stored record is left unchanged.
            StorageFault: The record could not be read or written.
        """
        with self._lock_for(sync_id):
            existing = self._load(sync_id)
            if existing is not None and not fingerprints_match(fingerprint, existing.hash):
                logger.warning("Rejected overwrite of %s: fingerprint mismatch", sync_id)
                raise SyncConflict("Unauthorized: This ID is already claimed")
            record = VaultRecord(
                sync_id=sync_id,
                encrypted_content=encrypted_content,
                hash=fingerprint,
                last_updated=utc_now(),
            )
            self._store(record)
        if existing is None:
            logger.info("Claimed new vault %s", sync_id)
        return record

    def delete(self, sync_id: str, fingerprint: str) -> None:
        """Delete the record if ``fingerprint`` owns it.

        Raises:
            VaultNotFound: No record exists.
            SyncConflict: The record belongs to another fingerprint.
            StorageFault: The record could not be read or removed.
        """
        with self._lock_for(sync_id):
            existing = self._load(sync_id)
            if existing is None:
                raise VaultNotFound("Vault not found")
            if not fingerprints_match(fingerprint or "", existing.hash):
                raise SyncConflict("Unauthorized: Invalid security code for this ID")
            try:
                self._record_path(sync_id).unlink()
            except OSError as exc:
                raise StorageFault("Database delete failed", str(exc)) from exc
        logger.info("Deleted vault %s", sync_id)

    def count(self) -> int:
        """Number of stored records."""
        if not self.notes_dir.exists():
            return 0
        return sum(1 for _ in self.notes_dir.glob("*.json"))
