"""
Failure taxonomy shared by the remote client, the server store, and
the sync coordinator.
"""

from __future__ import annotations

from typing import Optional

from .models import ErrorKind

DETAIL_DISPLAY_LIMIT = 80


class NotevaultError(Exception):
    """Base class for all notevault failures."""

    kind: ErrorKind = ErrorKind.INVALID_REQUEST


class WrongSecret(NotevaultError):
    """The security code does not decrypt the vault."""

    kind = ErrorKind.WRONG_SECRET


class IdentifierTaken(NotevaultError):
    """The sync identifier is owned by a different security code."""

    kind = ErrorKind.IDENTIFIER_TAKEN


class SyncConflict(NotevaultError):
    """A write or delete presented a fingerprint that does not match."""

    kind = ErrorKind.SYNC_CONFLICT


class Unreachable(NotevaultError):
    """The remote store could not be reached within the timeout."""

    kind = ErrorKind.UNREACHABLE


class VaultNotFound(NotevaultError):
    """No record exists for the sync identifier."""

    kind = ErrorKind.NOT_FOUND


class InvalidRequest(NotevaultError):
    """A request was missing required fields or was malformed."""

    kind = ErrorKind.INVALID_REQUEST


class StorageFault(NotevaultError):
    """The persistence layer failed while serving a request."""

    kind = ErrorKind.STORAGE_FAULT

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.detail = detail

    def short_detail(self, limit: int = DETAIL_DISPLAY_LIMIT) -> Optional[str]:
        """Diagnostic detail truncated for a status line."""
        if not self.detail:
            return None
        if len(self.detail) <= limit:
            return self.detail
        return self.detail[: limit - 3] + "..."
