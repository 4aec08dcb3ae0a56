"""
Tests for the sync coordinator -- unlock, save, lock, delete, autosave.

Integration-style: a real notes API on a free port, real local mirror
files, and a dead port for offline behaviour.
"""

from __future__ import annotations

import threading
import time
from unittest.mock import patch

import pytest

from notevault.crypto import decrypt, encrypt, ownership_fingerprint
from notevault.errors import StorageFault
from notevault.models import (
    MSG_BAD_ENCODING,
    MSG_DELETE_LOCAL_FAILED,
    MSG_DELETE_OFFLINE,
    MSG_ID_TAKEN,
    MSG_MISSING_INPUT,
    MSG_SYNC_LOCKED,
    MSG_WRONG_SECRET,
    STATUS_CONNECTED,
    STATUS_DELETED,
    STATUS_LOCKED,
    STATUS_OFFLINE,
    STATUS_SAVED_LOCALLY,
    STATUS_SYNCED,
    Connectivity,
    ErrorKind,
    SessionPhase,
    SyncOutcome,
)
from notevault.server import NoteStore

CODE = "correct-code"


class TestUnlock:
    """Unlock: remote first, local fallback, ownership and secret checks."""

    def test_new_vault_on_empty_backend(self, api_server, make_coordinator):
        """404 path: empty note, status Connected."""
        coordinator = make_coordinator(api_server)
        result = coordinator.unlock("alpha", CODE)

        assert result.ok
        assert result.content == ""
        assert result.source is None
        assert result.status == STATUS_CONNECTED
        assert result.connectivity == Connectivity.ONLINE
        assert coordinator.phase == SessionPhase.UNLOCKED
        session = coordinator.session
        assert session.sync_id == "alpha"
        assert session.fingerprint == ownership_fingerprint("alpha", CODE)

    def test_identifier_is_trimmed(self, api_server, make_coordinator):
        coordinator = make_coordinator(api_server)
        assert coordinator.unlock("  alpha  ", CODE).ok
        assert coordinator.session.sync_id == "alpha"

    def test_missing_input(self, api_server, make_coordinator):
        coordinator = make_coordinator(api_server)

        for sync_id, code in (("", CODE), ("   ", CODE), ("alpha", "")):
            result = coordinator.unlock(sync_id, code)
            assert not result.ok
            assert result.error == ErrorKind.INVALID_REQUEST
            assert result.notification == MSG_MISSING_INPUT
        assert coordinator.phase == SessionPhase.LOCKED

    def test_remote_copy_used_on_second_device(self, api_server, make_coordinator):
        first = make_coordinator(api_server, device="laptop")
        first.unlock("alpha", CODE)
        first.save("from the laptop")

        second = make_coordinator(api_server, device="phone")
        result = second.unlock("alpha", CODE)

        assert result.ok
        assert result.content == "from the laptop"
        assert result.source == "remote"

    def test_remote_preferred_over_local(self, api_server, store: NoteStore, make_coordinator):
        coordinator = make_coordinator(api_server)
        coordinator.mirror.put("alpha", encrypt("stale local", CODE))
        store.put("alpha", encrypt("fresh remote", CODE), ownership_fingerprint("alpha", CODE))

        result = coordinator.unlock("alpha", CODE)
        assert result.content == "fresh remote"

    def test_local_used_when_remote_has_nothing(self, api_server, make_coordinator):
        coordinator = make_coordinator(api_server)
        coordinator.mirror.put("alpha", encrypt("never synced", CODE))

        result = coordinator.unlock("alpha", CODE)
        assert result.ok
        assert result.content == "never synced"
        assert result.source == "local"
        assert result.status == STATUS_CONNECTED

    def test_identifier_taken_forces_reset(self, api_server, make_coordinator):
        """A second code on a claimed ID is a hard failure."""
        owner = make_coordinator(api_server, device="owner")
        owner.unlock("alpha", CODE)
        owner.save("mine")

        intruder = make_coordinator(api_server, device="intruder")
        result = intruder.unlock("alpha", "wrong-code")

        assert not result.ok
        assert result.error == ErrorKind.IDENTIFIER_TAKEN
        assert result.notification == MSG_ID_TAKEN
        assert result.reset_required
        assert intruder.phase == SessionPhase.LOCKED
        assert intruder.session is None

    def test_wrong_secret_against_local_copy(self, dead_url, make_coordinator):
        coordinator = make_coordinator(dead_url)
        coordinator.mirror.put("alpha", encrypt("private", CODE))

        result = coordinator.unlock("alpha", "wrong-code")

        assert not result.ok
        assert result.error == ErrorKind.WRONG_SECRET
        assert result.notification == MSG_WRONG_SECRET
        assert not result.reset_required
        assert coordinator.phase == SessionPhase.LOCKED
        assert coordinator.session is None
        assert coordinator.mirror.get("alpha") is not None

    def test_wrong_secret_can_retry(self, dead_url, make_coordinator):
        coordinator = make_coordinator(dead_url)
        coordinator.mirror.put("alpha", encrypt("private", CODE))

        assert not coordinator.unlock("alpha", "wrong-code").ok
        result = coordinator.unlock("alpha", CODE)
        assert result.ok
        assert result.content == "private"

    def test_offline_falls_back_to_local(self, dead_url, make_coordinator):
        coordinator = make_coordinator(dead_url)
        coordinator.mirror.put("alpha", encrypt("offline note", CODE))

        result = coordinator.unlock("alpha", CODE)

        assert result.ok
        assert result.content == "offline note"
        assert result.status == STATUS_OFFLINE
        assert result.connectivity == Connectivity.OFFLINE

    def test_offline_without_local_is_new_vault(self, dead_url, make_coordinator):
        result = make_coordinator(dead_url).unlock("alpha", CODE)
        assert result.ok
        assert result.content == ""

    def test_storage_fault_falls_back_to_local(self, api_server, store: NoteStore, make_coordinator):
        coordinator = make_coordinator(api_server)
        coordinator.mirror.put("alpha", encrypt("local copy", CODE))

        with patch.object(
            store, "check_owner", side_effect=StorageFault("Database read failed", "x" * 200)
        ):
            result = coordinator.unlock("alpha", CODE)

        assert result.ok
        assert result.content == "local copy"
        assert result.connectivity == Connectivity.ERROR
        assert result.status.startswith("Storage Error: ")
        assert result.status.endswith("...")
        assert len(result.status) < 120

    def test_unlock_while_unlocked_rejected(self, api_server, make_coordinator):
        coordinator = make_coordinator(api_server)
        coordinator.unlock("alpha", CODE)

        result = coordinator.unlock("beta", CODE)
        assert result.error == ErrorKind.INVALID_STATE
        assert coordinator.session.sync_id == "alpha"

    def test_unencodable_code_rejected(self, api_server, make_coordinator):
        """Lone surrogates (undecodable argv bytes) fail cleanly and stay LOCKED."""
        coordinator = make_coordinator(api_server)

        result = coordinator.unlock("alpha", "bad\udcff")

        assert not result.ok
        assert result.error == ErrorKind.INVALID_REQUEST
        assert result.notification == MSG_BAD_ENCODING
        assert coordinator.phase == SessionPhase.LOCKED
        assert coordinator.unlock("alpha", CODE).ok

    def test_unencodable_identifier_rejected(self, api_server, make_coordinator):
        coordinator = make_coordinator(api_server)
        result = coordinator.unlock("al\udcffpha", CODE)
        assert result.error == ErrorKind.INVALID_REQUEST
        assert coordinator.phase == SessionPhase.LOCKED

    def test_unexpected_error_returns_to_locked(self, api_server, make_coordinator):
        coordinator = make_coordinator(api_server)

        with patch.object(coordinator.remote, "fetch", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                coordinator.unlock("alpha", CODE)

        assert coordinator.phase == SessionPhase.LOCKED
        assert coordinator.session is None
        assert coordinator.unlock("alpha", CODE).ok


class TestSave:
    """Save: local first, then remote, tagged outcomes."""

    def test_save_syncs(self, api_server, store: NoteStore, make_coordinator):
        coordinator = make_coordinator(api_server)
        coordinator.unlock("alpha", CODE)

        result = coordinator.save("hello")

        assert result.ok
        assert result.outcome == SyncOutcome.SYNCED
        assert result.status == STATUS_SYNCED
        assert coordinator.status == STATUS_SYNCED
        assert decrypt(coordinator.mirror.get("alpha"), CODE) == "hello"
        record = store.get("alpha")
        assert decrypt(record.encrypted_content, CODE) == "hello"
        assert record.hash == ownership_fingerprint("alpha", CODE)
        assert coordinator.mirror.get("alpha") == record.encrypted_content

    def test_unchanged_content_skips_network(self, api_server, make_coordinator):
        """Second save of the same content performs no write."""
        coordinator = make_coordinator(api_server)
        coordinator.unlock("alpha", CODE)
        coordinator.save("hello")

        with patch.object(coordinator.remote, "push") as push, \
                patch.object(coordinator.mirror, "put") as put:
            result = coordinator.save("hello")

        assert result.ok
        assert result.outcome == SyncOutcome.UNCHANGED
        push.assert_not_called()
        put.assert_not_called()

    def test_offline_save_writes_local(self, dead_url, make_coordinator):
        coordinator = make_coordinator(dead_url)
        coordinator.unlock("alpha", CODE)

        result = coordinator.save("offline edit")

        assert result.ok
        assert result.outcome == SyncOutcome.UNREACHABLE
        assert result.status == STATUS_SAVED_LOCALLY
        assert coordinator.connectivity == Connectivity.OFFLINE
        assert decrypt(coordinator.mirror.get("alpha"), CODE) == "offline edit"

    def test_offline_save_survives_relock(self, dead_url, make_coordinator):
        coordinator = make_coordinator(dead_url)
        coordinator.unlock("alpha", CODE)
        coordinator.save("keep me")
        coordinator.lock()

        result = coordinator.unlock("alpha", CODE)
        assert result.content == "keep me"

    def test_failed_push_is_retried(self, dead_url, api_server, make_coordinator):
        """An unsynced save does not move the baseline, so the next save pushes."""
        coordinator = make_coordinator(dead_url)
        coordinator.unlock("alpha", CODE)
        coordinator.save("draft")

        coordinator.remote.base_url = api_server
        result = coordinator.save("draft")

        assert result.outcome == SyncOutcome.SYNCED
        assert coordinator.connectivity == Connectivity.ONLINE

    def test_conflict_keeps_local_copy(self, api_server, store: NoteStore, make_coordinator):
        coordinator = make_coordinator(api_server)
        coordinator.unlock("alpha", CODE)
        store.put("alpha", "someone else", "f" * 64)

        result = coordinator.save("my edit")

        assert not result.ok
        assert result.outcome == SyncOutcome.CONFLICT
        assert result.error == ErrorKind.SYNC_CONFLICT
        assert result.notification == MSG_SYNC_LOCKED
        assert result.connectivity == Connectivity.ONLINE
        assert decrypt(coordinator.mirror.get("alpha"), CODE) == "my edit"
        assert store.get("alpha").encrypted_content == "someone else"
        assert coordinator.phase == SessionPhase.UNLOCKED

    def test_storage_fault_saves_locally(self, api_server, store: NoteStore, make_coordinator):
        coordinator = make_coordinator(api_server)
        coordinator.unlock("alpha", CODE)

        with patch.object(store, "put", side_effect=StorageFault("Database write failed", "disk full")):
            result = coordinator.save("text")

        assert result.ok
        assert result.outcome == SyncOutcome.SAVED_LOCALLY
        assert result.error == ErrorKind.STORAGE_FAULT
        assert result.connectivity == Connectivity.ERROR
        assert "disk full" in result.notification
        assert decrypt(coordinator.mirror.get("alpha"), CODE) == "text"

    def test_unencodable_content_rejected(self, api_server, make_coordinator):
        coordinator = make_coordinator(api_server)
        coordinator.unlock("alpha", CODE)

        result = coordinator.save("note \udcff")

        assert not result.ok
        assert result.error == ErrorKind.INVALID_REQUEST
        assert result.notification == MSG_BAD_ENCODING
        assert coordinator.phase == SessionPhase.UNLOCKED
        assert coordinator.mirror.get("alpha") is None
        assert coordinator.save("plain note").outcome == SyncOutcome.SYNCED

    def test_queued_unchanged_save_refreshes_status(
        self, api_server, make_coordinator
    ):
        """A queued save made redundant by the one ahead still shows its status."""
        coordinator = make_coordinator(api_server)
        coordinator.unlock("alpha", CODE)
        real_push = coordinator.remote.push
        in_push = threading.Event()
        release = threading.Event()

        def slow_push(*args):
            in_push.set()
            assert release.wait(5)
            return real_push(*args)

        results = {}

        def save(name: str) -> None:
            results[name] = coordinator.save("same text")

        with patch.object(coordinator.remote, "push", side_effect=slow_push):
            first = threading.Thread(target=save, args=("first",))
            first.start()
            assert in_push.wait(5)
            second = threading.Thread(target=save, args=("second",))
            second.start()
            deadline = time.monotonic() + 5
            while coordinator._saves_waiting < 2 and time.monotonic() < deadline:
                time.sleep(0.01)
            release.set()
            first.join()
            second.join()

        assert results["first"].superseded
        assert results["second"].outcome == SyncOutcome.UNCHANGED
        assert coordinator.status == STATUS_SYNCED

    def test_save_when_locked(self, api_server, make_coordinator):
        coordinator = make_coordinator(api_server)
        result = coordinator.save("nope")

        assert not result.ok
        assert result.error == ErrorKind.INVALID_STATE
        assert coordinator.mirror.keys() == []

    def test_concurrent_saves_last_write_wins(self, api_server, store: NoteStore, make_coordinator):
        coordinator = make_coordinator(api_server)
        coordinator.unlock("alpha", CODE)
        results = {}

        def save(text: str) -> None:
            results[text] = coordinator.save(text)

        threads = [threading.Thread(target=save, args=(f"v{i}",)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        last_text, last = max(results.items(), key=lambda item: item[1].sequence)
        assert not last.superseded
        assert coordinator.status == last.status
        assert decrypt(coordinator.mirror.get("alpha"), CODE) == last_text
        assert decrypt(store.get("alpha").encrypted_content, CODE) == last_text
        assert sorted(r.sequence for r in results.values()) == [1, 2, 3, 4]


class TestAutosave:
    """Debounced autosave through the coordinator."""

    def test_typing_burst_saves_once(self, api_server, store: NoteStore, make_coordinator):
        done = threading.Event()
        outcomes = []

        def on_result(result):
            outcomes.append(result)
            done.set()

        coordinator = make_coordinator(api_server, on_result=on_result)
        coordinator.unlock("alpha", CODE)

        with patch.object(coordinator.remote, "push", wraps=coordinator.remote.push) as push:
            for text in ("h", "he", "hel", "hell", "hello"):
                coordinator.schedule_save(text)
            assert done.wait(10)

        assert push.call_count == 1
        assert len(outcomes) == 1
        assert outcomes[0].outcome == SyncOutcome.SYNCED
        assert decrypt(store.get("alpha").encrypted_content, CODE) == "hello"

    def test_flush_saves_pending_now(self, api_server, make_coordinator):
        coordinator = make_coordinator(api_server, debounce_seconds=30)
        coordinator.unlock("alpha", CODE)
        coordinator.schedule_save("pending")

        result = coordinator.flush()

        assert result.outcome == SyncOutcome.SYNCED
        assert not coordinator.autosave.pending

    def test_sync_now_uses_last_scheduled(self, api_server, make_coordinator):
        coordinator = make_coordinator(api_server, debounce_seconds=30)
        coordinator.unlock("alpha", CODE)
        coordinator.schedule_save("typed")

        result = coordinator.sync_now()

        assert result.outcome == SyncOutcome.SYNCED
        assert decrypt(coordinator.mirror.get("alpha"), CODE) == "typed"
        assert not coordinator.autosave.pending

    def test_lock_discards_pending_autosave(self, api_server, make_coordinator):
        coordinator = make_coordinator(api_server, debounce_seconds=30)
        coordinator.unlock("alpha", CODE)
        coordinator.schedule_save("unsaved")

        coordinator.lock()

        assert not coordinator.autosave.pending
        assert coordinator.mirror.get("alpha") is None

    def test_schedule_while_locked_is_ignored(self, api_server, make_coordinator):
        coordinator = make_coordinator(api_server, debounce_seconds=30)
        coordinator.schedule_save("nothing")
        assert not coordinator.autosave.pending


class TestLockAndDelete:
    """Lock wipes the session; delete removes remote and local copies."""

    def test_lock_wipes_session_only(self, api_server, store: NoteStore, make_coordinator):
        coordinator = make_coordinator(api_server)
        coordinator.unlock("alpha", CODE)
        coordinator.save("hello")

        coordinator.lock()

        assert coordinator.session is None
        assert coordinator.phase == SessionPhase.LOCKED
        assert coordinator.status == STATUS_LOCKED
        assert coordinator.mirror.get("alpha") is not None
        assert store.get("alpha") is not None

    def test_session_repr_hides_code(self, api_server, make_coordinator):
        coordinator = make_coordinator(api_server)
        coordinator.unlock("alpha", CODE)
        assert CODE not in repr(coordinator.session)

    def test_delete_vault(self, api_server, store: NoteStore, make_coordinator):
        coordinator = make_coordinator(api_server)
        coordinator.unlock("alpha", CODE)
        coordinator.save("hello")

        result = coordinator.delete_vault()

        assert result.ok
        assert result.status == STATUS_DELETED
        assert store.get("alpha") is None
        assert coordinator.mirror.get("alpha") is None
        assert coordinator.phase == SessionPhase.LOCKED
        assert coordinator.session is None

    def test_delete_offline(self, dead_url, make_coordinator):
        coordinator = make_coordinator(dead_url)
        coordinator.unlock("alpha", CODE)
        coordinator.save("hello")

        result = coordinator.delete_vault()

        assert not result.ok
        assert result.error == ErrorKind.UNREACHABLE
        assert result.notification == MSG_DELETE_OFFLINE
        assert coordinator.phase == SessionPhase.UNLOCKED
        assert coordinator.mirror.get("alpha") is not None

    def test_delete_conflict(self, api_server, store: NoteStore, make_coordinator):
        coordinator = make_coordinator(api_server)
        coordinator.unlock("alpha", CODE)
        coordinator.save("hello")
        fp = ownership_fingerprint("alpha", CODE)
        store.delete("alpha", fp)
        store.put("alpha", "taken over", "f" * 64)

        result = coordinator.delete_vault()

        assert not result.ok
        assert result.error == ErrorKind.SYNC_CONFLICT
        assert coordinator.phase == SessionPhase.UNLOCKED
        assert coordinator.mirror.get("alpha") is not None
        assert store.get("alpha").encrypted_content == "taken over"

    def test_delete_storage_fault(self, api_server, store: NoteStore, make_coordinator):
        coordinator = make_coordinator(api_server)
        coordinator.unlock("alpha", CODE)
        coordinator.save("hello")

        with patch.object(store, "delete", side_effect=StorageFault("Database delete failed")):
            result = coordinator.delete_vault()

        assert not result.ok
        assert result.error == ErrorKind.STORAGE_FAULT
        assert coordinator.connectivity == Connectivity.ERROR
        assert coordinator.phase == SessionPhase.UNLOCKED
        assert coordinator.mirror.get("alpha") is not None

    def test_delete_local_removal_fails(self, api_server, store: NoteStore, make_coordinator):
        """Remote record gone but mirror unwritable: report it and still lock."""
        coordinator = make_coordinator(api_server)
        coordinator.unlock("alpha", CODE)
        coordinator.save("hello")

        with patch.object(
            coordinator.mirror, "_write", side_effect=OSError(28, "No space left on device")
        ):
            result = coordinator.delete_vault()

        assert not result.ok
        assert result.error == ErrorKind.STORAGE_FAULT
        assert result.notification.startswith(MSG_DELETE_LOCAL_FAILED)
        assert result.status == STATUS_DELETED
        assert store.get("alpha") is None
        assert coordinator.phase == SessionPhase.LOCKED
        assert coordinator.session is None

    def test_delete_requires_unlock(self, api_server, make_coordinator):
        result = make_coordinator(api_server).delete_vault()
        assert not result.ok
        assert result.error == ErrorKind.INVALID_STATE
