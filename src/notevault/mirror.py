"""
Local mirror -- the client-side copy of every encrypted vault.

A single JSON object on disk, keyed ``vault_<sync_id>``, holding the
base64 blob. Written on every save before any network attempt and
removed only by an explicit vault deletion.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional

logger = logging.getLogger("notevault.mirror")

KEY_PREFIX = "vault_"


def mirror_key(sync_id: str) -> str:
    """Storage key for a sync identifier."""
    return f"{KEY_PREFIX}{sync_id}"


class LocalMirror:
    """File-backed key/value store for encrypted blobs."""

    def __init__(self, path: Path):
        """Initialize the mirror.

        Args:
            path: JSON file holding all entries. Created on first write.
        """
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Local mirror unreadable, treating as empty: %s", exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Local mirror is not a JSON object, ignoring")
            return {}
        return data

    def _write(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{self.path.name}.", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
            os.chmod(self.path, 0o600)
        finally:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)

    def get(self, sync_id: str) -> Optional[str]:
        """Return the stored blob for ``sync_id``, or None."""
        with self._lock:
            return self._read().get(mirror_key(sync_id))

    def put(self, sync_id: str, blob: str) -> None:
        """Store ``blob`` for ``sync_id``, replacing any previous entry."""
        with self._lock:
            data = self._read()
            data[mirror_key(sync_id)] = blob
            self._write(data)
        logger.debug("Local mirror updated for %s", sync_id)

    def delete(self, sync_id: str) -> bool:
        """Remove the entry for ``sync_id``.

        Returns:
            True if an entry was removed.
        """
        with self._lock:
            data = self._read()
            if data.pop(mirror_key(sync_id), None) is None:
                return False
            self._write(data)
        logger.info("Local mirror entry removed for %s", sync_id)
        return True

    def keys(self) -> list[str]:
        """All stored keys (``vault_<sync_id>``)."""
        with self._lock:
            return sorted(self._read())
