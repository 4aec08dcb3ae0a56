"""
Pydantic models for vault records, session state, and operation results.

The coordinator never mutates display state directly. Every operation
hands back one of the result models below and the caller decides what
to show.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class SessionPhase(str, Enum):
    """Where the coordinator is in the unlock/save/lock lifecycle."""

    LOCKED = "locked"
    UNLOCKING = "unlocking"
    UNLOCKED = "unlocked"
    SAVING = "saving"
    DELETING = "deleting"


class Connectivity(str, Enum):
    """Last observed reachability of the remote store."""

    UNKNOWN = "unknown"
    ONLINE = "online"
    OFFLINE = "offline"
    ERROR = "error"


class SyncOutcome(str, Enum):
    """Tagged result of a save attempt."""

    UNCHANGED = "unchanged"
    SYNCED = "synced"
    SAVED_LOCALLY = "saved_locally"
    CONFLICT = "conflict"
    UNREACHABLE = "unreachable"


class ErrorKind(str, Enum):
    """Failure categories surfaced to the UI layer."""

    WRONG_SECRET = "wrong_secret"
    IDENTIFIER_TAKEN = "identifier_taken"
    SYNC_CONFLICT = "sync_conflict"
    UNREACHABLE = "unreachable"
    STORAGE_FAULT = "storage_fault"
    NOT_FOUND = "not_found"
    INVALID_REQUEST = "invalid_request"
    INVALID_STATE = "invalid_state"


# User-facing status and notification text.
STATUS_CONNECTED = "Connected"
STATUS_OFFLINE = "Offline Mode"
STATUS_STORAGE_ERROR = "Storage Error"
STATUS_SYNCED = "All changes synced"
STATUS_SAVED_LOCALLY = "Saved locally (Offline)"
STATUS_LOCKED = "Locked"
STATUS_DELETED = "Vault deleted"

MSG_MISSING_INPUT = "Please enter both Sync ID and Security Code"
MSG_WRONG_SECRET = "Wrong Security Code for this Vault"
MSG_ID_TAKEN = "This ID is already taken by someone else."
MSG_SYNC_LOCKED = "Failed to sync: This ID is locked to another code."
MSG_DELETE_OFFLINE = "Cannot delete while offline"
MSG_DELETE_LOCKED = "Failed to delete: This ID is locked to another code."
MSG_DELETE_NOT_FOUND = "Failed to delete: Vault not found on server."
MSG_NOT_UNLOCKED = "Vault is not unlocked"
MSG_BAD_ENCODING = "Input contains characters that cannot be encoded as UTF-8"
MSG_DELETE_LOCAL_FAILED = "Vault deleted on server, but the local copy could not be removed"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class VaultRecord(BaseModel):
    """Remote copy of one vault, as stored by the persistence service.

    Serialized with camelCase aliases to match the HTTP wire format.
    """

    model_config = ConfigDict(populate_by_name=True)

    sync_id: str = Field(alias="syncId")
    encrypted_content: str = Field(alias="encryptedContent")
    hash: str
    last_updated: datetime = Field(default_factory=utc_now, alias="lastUpdated")

    def public_view(self) -> dict:
        """Body returned by ``GET /api/notes/<id>``."""
        return {
            "encryptedContent": self.encrypted_content,
            "hash": self.hash,
            "lastUpdated": self.last_updated.isoformat(),
        }


class SessionState(BaseModel):
    """Secrets and dirty-check baseline held only while unlocked."""

    sync_id: str
    security_code: SecretStr
    fingerprint: str
    last_known_plaintext: Optional[str] = None
    connectivity: Connectivity = Connectivity.UNKNOWN


class OperationResult(BaseModel):
    """Common shape of every coordinator result."""

    ok: bool
    status: str
    notification: Optional[str] = None
    error: Optional[ErrorKind] = None
    connectivity: Connectivity = Connectivity.UNKNOWN


class UnlockResult(OperationResult):
    """Result of :meth:`SyncCoordinator.unlock`."""

    content: str = ""
    source: Optional[str] = None
    reset_required: bool = False


class SaveResult(OperationResult):
    """Result of :meth:`SyncCoordinator.save`."""

    outcome: Optional[SyncOutcome] = None
    sequence: int = 0
    superseded: bool = False


class DeleteResult(OperationResult):
    """Result of :meth:`SyncCoordinator.delete_vault`."""
