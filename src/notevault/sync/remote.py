"""
Remote store client -- where the ciphertext travels.

Talks to the notes API over HTTP. Every call carries a bounded
timeout; connection failures and timeouts surface as ``Unreachable``
so the coordinator can fall back to the local mirror.

    GET    /api/notes/<id>   x-vault-hash: <fingerprint>
    POST   /api/notes        {syncId, encryptedContent, hash}
    DELETE /api/notes/<id>   x-vault-hash: <fingerprint>
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote

import requests
from pydantic import ValidationError

from ..errors import (
    IdentifierTaken,
    InvalidRequest,
    StorageFault,
    SyncConflict,
    Unreachable,
    VaultNotFound,
)
from ..models import VaultRecord

logger = logging.getLogger("notevault.sync.remote")

HASH_HEADER = "x-vault-hash"
DEFAULT_TIMEOUT = 5.0


def _error_detail(resp: requests.Response) -> tuple[str, Optional[str]]:
    """Pull ``error`` and ``details`` out of a JSON error body."""
    try:
        body = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}", resp.text or None
    if not isinstance(body, dict):
        return f"HTTP {resp.status_code}", None
    return body.get("error") or f"HTTP {resp.status_code}", body.get("details")


class RemoteVaultClient:
    """HTTP client for the notes API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Server root, e.g. ``http://127.0.0.1:4000``.
            timeout: Seconds before a call is treated as unreachable.
            session: Optional pre-configured requests session.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def _note_url(self, sync_id: str) -> str:
        return f"{self.base_url}/api/notes/{quote(sync_id, safe='')}"

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            return self._session.request(
                method, url, timeout=self.timeout, **kwargs
            )
        except requests.Timeout as exc:
            logger.warning("%s %s timed out after %.1fs", method, url, self.timeout)
            raise Unreachable(f"Request timed out: {exc}") from exc
        except requests.RequestException as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            raise Unreachable(f"Server unreachable: {exc}") from exc

    def _raise_for_fault(self, resp: requests.Response) -> None:
        error, detail = _error_detail(resp)
        raise StorageFault(error, detail)

    def fetch(self, sync_id: str, fingerprint: str) -> Optional[VaultRecord]:
        """Fetch the remote record for ``sync_id``.

        Returns:
            The record, or None if the server has none.

        Raises:
            IdentifierTaken: The record belongs to a different fingerprint.
            StorageFault: The server failed to read its storage.
            Unreachable: Network error or timeout.
        """
        resp = self._request(
            "GET", self._note_url(sync_id), headers={HASH_HEADER: fingerprint}
        )
        if resp.status_code == 200:
            try:
                body = resp.json()
                return VaultRecord(syncId=sync_id, **body)
            except (ValueError, TypeError, ValidationError) as exc:
                raise StorageFault("Malformed response from server", str(exc)) from exc
        if resp.status_code == 404:
            return None
        if resp.status_code == 403:
            raise IdentifierTaken(_error_detail(resp)[0])
        self._raise_for_fault(resp)

    def push(self, sync_id: str, blob: str, fingerprint: str) -> None:
        """Create or overwrite the remote record for ``sync_id``.

        Raises:
            SyncConflict: The identifier is locked to another fingerprint.
            InvalidRequest: The server rejected the payload.
            StorageFault: The server failed to write its storage.
            Unreachable: Network error or timeout.
        """
        resp = self._request(
            "POST",
            f"{self.base_url}/api/notes",
            json={"syncId": sync_id, "encryptedContent": blob, "hash": fingerprint},
        )
        if resp.status_code == 200:
            return
        if resp.status_code == 403:
            raise SyncConflict(_error_detail(resp)[0])
        if resp.status_code == 400:
            raise InvalidRequest(_error_detail(resp)[0])
        self._raise_for_fault(resp)

    def delete(self, sync_id: str, fingerprint: str) -> None:
        """Delete the remote record for ``sync_id``.

        Raises:
            SyncConflict: The identifier is locked to another fingerprint.
            VaultNotFound: The server has no record for ``sync_id``.
            StorageFault: The server failed to update its storage.
            Unreachable: Network error or timeout.
        """
        resp = self._request(
            "DELETE", self._note_url(sync_id), headers={HASH_HEADER: fingerprint}
        )
        if resp.status_code == 200:
            return
        if resp.status_code == 403:
            raise SyncConflict(_error_detail(resp)[0])
        if resp.status_code == 404:
            raise VaultNotFound(_error_detail(resp)[0])
        self._raise_for_fault(resp)

    def close(self) -> None:
        self._session.close()
