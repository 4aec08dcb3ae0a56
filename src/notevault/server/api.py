"""
Notes API -- the thin HTTP layer in front of the note store.

Stdlib only (http.server + json). Each request is independent; all
shared state lives in the NoteStore.

Serves:
    GET    /                -> service banner
    GET    /health          -> {"status": "healthy"}
    GET    /api/notes/<id>  -> {encryptedContent, hash, lastUpdated}
    POST   /api/notes       -> {success: true}
    DELETE /api/notes/<id>  -> {success: true}

Ownership is proven with the ``x-vault-hash`` header (or the ``hash``
body field on POST).
"""

from __future__ import annotations

import json
import logging
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional
from urllib.parse import unquote, urlsplit

from .. import __version__
from ..errors import (
    InvalidRequest,
    NotevaultError,
    StorageFault,
    SyncConflict,
    VaultNotFound,
)
from .store import NoteStore

logger = logging.getLogger("notevault.server.api")

HASH_HEADER = "x-vault-hash"
NOTES_PREFIX = "/api/notes"
MAX_BODY_BYTES = 5 * 1024 * 1024

_STATUS_FOR_ERROR = {
    InvalidRequest: 400,
    SyncConflict: 403,
    VaultNotFound: 404,
    StorageFault: 503,
}


class _PayloadTooLarge(Exception):
    pass


class NotesHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the notes API."""

    store: NoteStore
    server_version = f"notevault/{__version__}"

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def _route_id(self) -> Optional[str]:
        """Sync ID from ``/api/notes/<id>``, or None for other paths."""
        path = urlsplit(self.path).path
        if not path.startswith(NOTES_PREFIX + "/"):
            return None
        sync_id = unquote(path[len(NOTES_PREFIX) + 1:])
        return sync_id or None

    def do_GET(self):
        """Handle GET requests."""
        path = urlsplit(self.path).path
        if path == "/":
            self._send_json(200, {
                "message": "notevault",
                "version": __version__,
                "api": NOTES_PREFIX,
            })
            return
        if path == "/health":
            self._send_json(200, {"status": "healthy"})
            return

        sync_id = self._route_id()
        if sync_id is None:
            self._send_json(404, {"error": "Not found"})
            return
        self._dispatch(self._get_note, sync_id)

    def do_POST(self):
        """Handle POST requests."""
        if urlsplit(self.path).path.rstrip("/") != NOTES_PREFIX:
            self._send_json(404, {"error": "Not found"})
            return
        self._dispatch(self._post_note)

    def do_DELETE(self):
        """Handle DELETE requests."""
        sync_id = self._route_id()
        if sync_id is None:
            self._send_json(404, {"error": "Not found"})
            return
        self._dispatch(self._delete_note, sync_id)

    def do_OPTIONS(self):
        """CORS preflight."""
        self.send_response(204)
        self._send_cors_headers()
        self.send_header("Access-Control-Allow-Methods", "GET, POST, DELETE, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", f"Content-Type, {HASH_HEADER}")
        self.send_header("Content-Length", "0")
        self.end_headers()

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    def _get_note(self, sync_id: str) -> dict:
        record = self.store.check_owner(sync_id, self.headers.get(HASH_HEADER, ""))
        return record.public_view()

    def _post_note(self) -> dict:
        body = self._read_json()
        sync_id = body.get("syncId")
        content = body.get("encryptedContent")
        fingerprint = body.get("hash")
        if not all(isinstance(v, str) and v for v in (sync_id, content, fingerprint)):
            raise InvalidRequest("Missing data")
        self.store.put(sync_id, content, fingerprint)
        return {"success": True}

    def _delete_note(self, sync_id: str) -> dict:
        self.store.delete(sync_id, self.headers.get(HASH_HEADER, ""))
        return {"success": True}

    def _dispatch(self, endpoint, *args) -> None:
        try:
            payload = endpoint(*args)
        except _PayloadTooLarge:
            self._send_json(413, {"error": "Payload too large"})
        except NotevaultError as exc:
            status = next(
                (code for cls, code in _STATUS_FOR_ERROR.items() if isinstance(exc, cls)),
                500,
            )
            body = {"error": str(exc)}
            if isinstance(exc, StorageFault):
                logger.error("Storage fault on %s %s: %s", self.command, self.path, exc.detail)
                if exc.detail:
                    body["details"] = exc.detail
            self._send_json(status, body)
        except Exception:
            logger.exception("Unhandled error on %s %s", self.command, self.path)
            self._send_json(500, {"error": "Internal server error"})
        else:
            self._send_json(200, payload)

    # ------------------------------------------------------------------
    # I/O helpers
    # ------------------------------------------------------------------

    def _read_json(self) -> dict:
        try:
            length = int(self.headers.get("Content-Length", 0))
        except ValueError:
            raise InvalidRequest("Invalid Content-Length")
        if length < 0:
            raise InvalidRequest("Invalid Content-Length")
        if length > MAX_BODY_BYTES:
            raise _PayloadTooLarge()
        raw = self.rfile.read(length) if length else b""
        try:
            data = json.loads(raw or b"{}")
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise InvalidRequest("Invalid JSON body")
        if not isinstance(data, dict):
            raise InvalidRequest("Invalid JSON body")
        return data

    def _send_cors_headers(self) -> None:
        self.send_header("Access-Control-Allow-Origin", "*")

    def _send_json(self, status: int, data: dict) -> None:
        body = json.dumps(data, default=str).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self._send_cors_headers()
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        """Route access logs through the module logger."""
        logger.debug("API: %s", format % args)


def start_server(
    store: NoteStore,
    host: str = "127.0.0.1",
    port: int = 4000,
) -> ThreadingHTTPServer:
    """Create the notes API server.

    Args:
        store: Persistence collaborator for vault records.
        host: Interface to bind.
        port: Port to listen on (0 picks a free port).

    Returns:
        ThreadingHTTPServer: The bound server (call serve_forever() or
            run it in a thread).
    """
    handler = type("BoundNotesHandler", (NotesHandler,), {"store": store})
    server = ThreadingHTTPServer((host, port), handler)
    server.daemon_threads = True
    bound_host, bound_port = server.server_address[:2]
    logger.info("Notes API running at http://%s:%d", bound_host, bound_port)
    return server
