"""
Sync Coordinator -- decides, for every operation, whether to trust the
local mirror, the remote store, or surface a failure.

    unlock  ->  fingerprint -> fetch remote -> fall back to mirror -> decrypt
    save    ->  encrypt -> write mirror -> push remote
    delete  ->  delete remote -> drop mirror -> lock

Lifecycle:

    LOCKED -> UNLOCKING -> UNLOCKED -> (SAVING <-> UNLOCKED) -> LOCKED
                                    -> DELETING -> LOCKED | UNLOCKED

Nothing raises out of this module. Crypto and network failures are
converted into result values carrying an ``ErrorKind``.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from ..crypto import DecryptionError, decrypt, encrypt, ownership_fingerprint
from ..errors import (
    IdentifierTaken,
    NotevaultError,
    StorageFault,
    SyncConflict,
    Unreachable,
    VaultNotFound,
)
from ..mirror import LocalMirror
from ..models import (
    MSG_BAD_ENCODING,
    MSG_DELETE_LOCAL_FAILED,
    MSG_DELETE_LOCKED,
    MSG_DELETE_NOT_FOUND,
    MSG_DELETE_OFFLINE,
    MSG_ID_TAKEN,
    MSG_MISSING_INPUT,
    MSG_NOT_UNLOCKED,
    MSG_SYNC_LOCKED,
    MSG_WRONG_SECRET,
    STATUS_CONNECTED,
    STATUS_DELETED,
    STATUS_LOCKED,
    STATUS_OFFLINE,
    STATUS_SAVED_LOCALLY,
    STATUS_STORAGE_ERROR,
    STATUS_SYNCED,
    Connectivity,
    DeleteResult,
    ErrorKind,
    SaveResult,
    SessionPhase,
    SessionState,
    SyncOutcome,
    UnlockResult,
)
from .debounce import DEFAULT_DELAY, Debouncer
from .remote import RemoteVaultClient

logger = logging.getLogger("notevault.sync.coordinator")


def _short(fp: str) -> str:
    return fp[:8]


def _encodable(text: str) -> bool:
    """False for text holding lone surrogates (undecodable argv/env bytes)."""
    try:
        text.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def _fault_status(exc: StorageFault) -> str:
    detail = exc.short_detail()
    return f"{STATUS_STORAGE_ERROR}: {detail}" if detail else STATUS_STORAGE_ERROR


class SyncCoordinator:
    """Owns one editing session and reconciles local and remote copies.

    The session is created by :meth:`unlock` and wiped by :meth:`lock`;
    there is no ambient session state outside this object.
    """

    def __init__(
        self,
        mirror: LocalMirror,
        remote: RemoteVaultClient,
        debounce_seconds: float = DEFAULT_DELAY,
        on_result: Optional[Callable[[SaveResult], None]] = None,
    ):
        """Initialize the coordinator.

        Args:
            mirror: Local mirror holding encrypted blobs.
            remote: Client for the remote notes API.
            debounce_seconds: Quiet period before an autosave fires.
            on_result: Called with the result of every debounced save.
        """
        self.mirror = mirror
        self.remote = remote
        self.on_result = on_result

        self._state_lock = threading.RLock()
        self._save_lock = threading.Lock()
        self._session: Optional[SessionState] = None
        self._phase = SessionPhase.LOCKED
        self._status = STATUS_LOCKED
        self._connectivity = Connectivity.UNKNOWN
        self._save_seq = 0
        self._saves_waiting = 0
        self._last_scheduled: Optional[str] = None
        self._last_save_status: Optional[str] = None

        self.autosave = Debouncer(self._autosave, delay=debounce_seconds)

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def phase(self) -> SessionPhase:
        with self._state_lock:
            return self._phase

    @property
    def status(self) -> str:
        """Last terminal status string."""
        with self._state_lock:
            return self._status

    @property
    def connectivity(self) -> Connectivity:
        with self._state_lock:
            return self._connectivity

    @property
    def session(self) -> Optional[SessionState]:
        """Copy of the active session, or None while locked."""
        with self._state_lock:
            return self._session.model_copy() if self._session else None

    @property
    def is_unlocked(self) -> bool:
        return self.phase in (
            SessionPhase.UNLOCKED, SessionPhase.SAVING, SessionPhase.DELETING
        )

    def _set_connectivity(self, connectivity: Connectivity) -> None:
        self._connectivity = connectivity
        if self._session is not None:
            self._session.connectivity = connectivity

    # ------------------------------------------------------------------
    # Unlock
    # ------------------------------------------------------------------

    def unlock(self, sync_id: str, security_code: str) -> UnlockResult:
        """Open a vault, preferring the remote copy over the local mirror.

        Args:
            sync_id: Public sync identifier (surrounding whitespace ignored).
            security_code: Secret used for decryption and ownership.

        Returns:
            UnlockResult. On failure the coordinator stays LOCKED.
        """
        sync_id = (sync_id or "").strip()
        if not sync_id or not security_code:
            return UnlockResult(
                ok=False,
                status=STATUS_LOCKED,
                notification=MSG_MISSING_INPUT,
                error=ErrorKind.INVALID_REQUEST,
            )
        if not (_encodable(sync_id) and _encodable(security_code)):
            return UnlockResult(
                ok=False,
                status=STATUS_LOCKED,
                notification=MSG_BAD_ENCODING,
                error=ErrorKind.INVALID_REQUEST,
            )

        with self._state_lock:
            if self._phase != SessionPhase.LOCKED:
                return UnlockResult(
                    ok=False,
                    status=self._status,
                    notification="Lock the current vault first",
                    error=ErrorKind.INVALID_STATE,
                    connectivity=self._connectivity,
                )
            self._phase = SessionPhase.UNLOCKING

        try:
            return self._open(sync_id, security_code)
        finally:
            with self._state_lock:
                if self._phase == SessionPhase.UNLOCKING:
                    self._session = None
                    self._phase = SessionPhase.LOCKED

    def _open(self, sync_id: str, security_code: str) -> UnlockResult:
        # phase is UNLOCKING; unlock() restores LOCKED if this raises
        fp = ownership_fingerprint(sync_id, security_code)
        blob: Optional[str] = None
        source: Optional[str] = None

        try:
            record = self.remote.fetch(sync_id, fp)
        except IdentifierTaken:
            logger.warning("Sync ID %s is owned by another code", sync_id)
            return self._abort_unlock(
                UnlockResult(
                    ok=False,
                    status=STATUS_LOCKED,
                    notification=MSG_ID_TAKEN,
                    error=ErrorKind.IDENTIFIER_TAKEN,
                    connectivity=Connectivity.ONLINE,
                    reset_required=True,
                )
            )
        except Unreachable as exc:
            logger.info("Remote unreachable during unlock: %s", exc)
            connectivity, status = Connectivity.OFFLINE, STATUS_OFFLINE
        except StorageFault as exc:
            logger.warning("Remote storage fault during unlock: %s (%s)", exc, exc.detail)
            connectivity, status = Connectivity.ERROR, _fault_status(exc)
        except NotevaultError as exc:
            logger.warning("Remote fetch failed during unlock: %s", exc)
            connectivity, status = Connectivity.ERROR, STATUS_STORAGE_ERROR
        else:
            connectivity, status = Connectivity.ONLINE, STATUS_CONNECTED
            if record is not None:
                blob, source = record.encrypted_content, "remote"

        if blob is None:
            blob = self.mirror.get(sync_id)
            if blob is not None:
                source = "local"

        content = ""
        if blob is not None:
            try:
                content = decrypt(blob, security_code)
            except DecryptionError:
                logger.info("Wrong security code for %s (%s copy)", sync_id, source)
                return self._abort_unlock(
                    UnlockResult(
                        ok=False,
                        status=STATUS_LOCKED,
                        notification=MSG_WRONG_SECRET,
                        error=ErrorKind.WRONG_SECRET,
                        connectivity=connectivity,
                    )
                )

        with self._state_lock:
            self._session = SessionState(
                sync_id=sync_id,
                security_code=security_code,
                fingerprint=fp,
                last_known_plaintext=content if blob is not None else None,
                connectivity=connectivity,
            )
            self._connectivity = connectivity
            self._status = status
            self._phase = SessionPhase.UNLOCKED
            self._last_scheduled = None
            self._last_save_status = None

        logger.info(
            "Unlocked %s (fp %s, source=%s, %s)",
            sync_id, _short(fp), source or "new", connectivity.value,
        )
        return UnlockResult(
            ok=True,
            status=status,
            connectivity=connectivity,
            content=content,
            source=source,
        )

    def _abort_unlock(self, result: UnlockResult) -> UnlockResult:
        with self._state_lock:
            self._session = None
            self._phase = SessionPhase.LOCKED
            self._status = result.status
            self._connectivity = result.connectivity
        return result

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def save(self, content: str) -> SaveResult:
        """Encrypt, write the local mirror, then try the remote store.

        Saves are serialized; the mirror and the remote always end up
        holding the content of the last save to complete.

        Args:
            content: Full note text.

        Returns:
            SaveResult tagged with a SyncOutcome.
        """
        with self._state_lock:
            if self._session is None or self._phase == SessionPhase.DELETING:
                return SaveResult(
                    ok=False,
                    status=self._status,
                    notification=MSG_NOT_UNLOCKED,
                    error=ErrorKind.INVALID_STATE,
                    connectivity=self._connectivity,
                )
            if content == self._session.last_known_plaintext:
                return SaveResult(
                    ok=True,
                    status=self._status,
                    outcome=SyncOutcome.UNCHANGED,
                    connectivity=self._connectivity,
                    sequence=self._save_seq,
                )
            self._saves_waiting += 1

        with self._save_lock:
            # the waiting count drops before the next queued save takes the lock
            try:
                with self._state_lock:
                    session = self._session
                    if session is None:
                        return SaveResult(
                            ok=False,
                            status=self._status,
                            notification=MSG_NOT_UNLOCKED,
                            error=ErrorKind.INVALID_STATE,
                            connectivity=self._connectivity,
                        )
                    self._save_seq += 1
                    seq = self._save_seq
                    if content == session.last_known_plaintext:
                        if self._saves_waiting == 1 and self._last_save_status:
                            self._status = self._last_save_status
                        return SaveResult(
                            ok=True,
                            status=self._status,
                            outcome=SyncOutcome.UNCHANGED,
                            connectivity=self._connectivity,
                            sequence=seq,
                        )
                    self._phase = SessionPhase.SAVING
                    sync_id = session.sync_id
                    code = session.security_code.get_secret_value()
                    fp = session.fingerprint
                try:
                    return self._save_locked(session, sync_id, code, fp, content, seq)
                finally:
                    with self._state_lock:
                        if self._phase == SessionPhase.SAVING:
                            self._phase = SessionPhase.UNLOCKED
            finally:
                with self._state_lock:
                    self._saves_waiting -= 1

    def _save_locked(
        self,
        session: SessionState,
        sync_id: str,
        code: str,
        fp: str,
        content: str,
        seq: int,
    ) -> SaveResult:
        if not _encodable(content):
            return self._finish_save(
                seq,
                SaveResult(
                    ok=False,
                    status=self._status,
                    notification=MSG_BAD_ENCODING,
                    error=ErrorKind.INVALID_REQUEST,
                    connectivity=self._connectivity,
                ),
            )
        blob = encrypt(content, code)
        try:
            self.mirror.put(sync_id, blob)
        except OSError as exc:
            logger.error("Local mirror write failed for %s: %s", sync_id, exc)
            return self._finish_save(
                seq,
                SaveResult(
                    ok=False,
                    status=f"Local save failed: {exc}",
                    notification="Could not write the local copy",
                    error=ErrorKind.STORAGE_FAULT,
                    connectivity=self._connectivity,
                ),
            )

        connectivity = self._connectivity
        try:
            self.remote.push(sync_id, blob, fp)
        except SyncConflict:
            logger.warning("Push rejected for %s: locked to another code", sync_id)
            result = SaveResult(
                ok=False,
                status=STATUS_SAVED_LOCALLY,
                notification=MSG_SYNC_LOCKED,
                error=ErrorKind.SYNC_CONFLICT,
                outcome=SyncOutcome.CONFLICT,
                connectivity=connectivity,
            )
        except Unreachable as exc:
            logger.info("Push deferred for %s, offline: %s", sync_id, exc)
            result = SaveResult(
                ok=True,
                status=STATUS_SAVED_LOCALLY,
                error=ErrorKind.UNREACHABLE,
                outcome=SyncOutcome.UNREACHABLE,
                connectivity=Connectivity.OFFLINE,
            )
        except NotevaultError as exc:
            logger.warning("Push failed for %s: %s", sync_id, exc)
            result = SaveResult(
                ok=True,
                status=STATUS_SAVED_LOCALLY,
                notification=(
                    _fault_status(exc) if isinstance(exc, StorageFault) else str(exc)
                ),
                error=exc.kind,
                outcome=SyncOutcome.SAVED_LOCALLY,
                connectivity=Connectivity.ERROR,
            )
        else:
            with self._state_lock:
                if self._session is session:
                    session.last_known_plaintext = content
            logger.debug("Synced %s (seq %d)", sync_id, seq)
            result = SaveResult(
                ok=True,
                status=STATUS_SYNCED,
                outcome=SyncOutcome.SYNCED,
                connectivity=Connectivity.ONLINE,
            )
        return self._finish_save(seq, result)

    def _finish_save(self, seq: int, result: SaveResult) -> SaveResult:
        with self._state_lock:
            superseded = self._saves_waiting > 1
            if self._session is not None:
                self._set_connectivity(result.connectivity)
                self._last_save_status = result.status
                if not superseded:
                    self._status = result.status
        return result.model_copy(update={"sequence": seq, "superseded": superseded})

    # ------------------------------------------------------------------
    # Debounced autosave
    # ------------------------------------------------------------------

    def schedule_save(self, content: str) -> None:
        """Queue ``content`` for saving after the debounce quiet period."""
        with self._state_lock:
            if self._session is None:
                return
            self._last_scheduled = content
        self.autosave.trigger(content)

    def flush(self) -> Optional[SaveResult]:
        """Run a pending autosave immediately, if there is one."""
        return self.autosave.flush()

    def sync_now(self, content: Optional[str] = None) -> SaveResult:
        """Manual sync: drop any pending autosave and save right away.

        Args:
            content: Text to save. Defaults to the last scheduled content,
                then to the last saved baseline.
        """
        self.autosave.cancel()
        with self._state_lock:
            if content is None:
                content = self._last_scheduled
            if content is None and self._session is not None:
                content = self._session.last_known_plaintext
        return self.save(content or "")

    def _autosave(self, content: str) -> SaveResult:
        result = self.save(content)
        if self.on_result is not None:
            self.on_result(result)
        return result

    # ------------------------------------------------------------------
    # Lock / delete
    # ------------------------------------------------------------------

    def lock(self) -> None:
        """Wipe the session. Pending autosaves are discarded, not saved."""
        self.autosave.cancel()
        with self._state_lock:
            sync_id = self._session.sync_id if self._session else None
            self._session = None
            self._last_scheduled = None
            self._last_save_status = None
            self._phase = SessionPhase.LOCKED
            self._status = STATUS_LOCKED
            self._connectivity = Connectivity.UNKNOWN
        if sync_id:
            logger.info("Locked %s", sync_id)

    def delete_vault(self) -> DeleteResult:
        """Delete the remote record and the local mirror entry, then lock.

        Only valid while UNLOCKED. On any failure the vault stays
        unlocked and the local mirror is left untouched.
        """
        with self._state_lock:
            if self._phase != SessionPhase.UNLOCKED or self._session is None:
                return DeleteResult(
                    ok=False,
                    status=self._status,
                    notification=MSG_NOT_UNLOCKED,
                    error=ErrorKind.INVALID_STATE,
                    connectivity=self._connectivity,
                )
            self._phase = SessionPhase.DELETING
            sync_id = self._session.sync_id
            fp = self._session.fingerprint

        self.autosave.cancel()
        try:
            self.remote.delete(sync_id, fp)
        except Unreachable as exc:
            logger.info("Delete of %s refused while offline: %s", sync_id, exc)
            return self._abort_delete(
                MSG_DELETE_OFFLINE, ErrorKind.UNREACHABLE, Connectivity.OFFLINE
            )
        except SyncConflict:
            logger.warning("Delete rejected for %s: locked to another code", sync_id)
            return self._abort_delete(
                MSG_DELETE_LOCKED, ErrorKind.SYNC_CONFLICT, self.connectivity
            )
        except VaultNotFound:
            return self._abort_delete(
                MSG_DELETE_NOT_FOUND, ErrorKind.NOT_FOUND, Connectivity.ONLINE
            )
        except NotevaultError as exc:
            logger.warning("Delete failed for %s: %s", sync_id, exc)
            message = (
                _fault_status(exc) if isinstance(exc, StorageFault) else str(exc)
            )
            return self._abort_delete(
                f"Failed to delete: {message}", exc.kind, Connectivity.ERROR
            )

        # the remote record is gone, so the session ends either way
        try:
            self.mirror.delete(sync_id)
        except OSError as exc:
            logger.error("Local mirror entry for %s not removed: %s", sync_id, exc)
            self.lock()
            with self._state_lock:
                self._status = STATUS_DELETED
            return DeleteResult(
                ok=False,
                status=STATUS_DELETED,
                notification=f"{MSG_DELETE_LOCAL_FAILED}: {exc}",
                error=ErrorKind.STORAGE_FAULT,
                connectivity=Connectivity.ONLINE,
            )

        self.lock()
        with self._state_lock:
            self._status = STATUS_DELETED
        logger.info("Deleted vault %s", sync_id)
        return DeleteResult(
            ok=True,
            status=STATUS_DELETED,
            connectivity=Connectivity.ONLINE,
        )

    def _abort_delete(
        self,
        message: str,
        kind: ErrorKind,
        connectivity: Connectivity,
    ) -> DeleteResult:
        with self._state_lock:
            self._phase = SessionPhase.UNLOCKED
            self._set_connectivity(connectivity)
            status = self._status
        return DeleteResult(
            ok=False,
            status=status,
            notification=message,
            error=kind,
            connectivity=connectivity,
        )
