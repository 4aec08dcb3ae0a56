"""
Remote persistence service -- the other half of the ownership protocol.

The server stores opaque ciphertext and compares fingerprints. It never
sees plaintext or security codes.
"""

from __future__ import annotations

import logging

from .api import NotesHandler, start_server
from .store import NoteStore

__all__ = ["NoteStore", "NotesHandler", "start_server", "serve"]

logger = logging.getLogger("notevault.server")


def serve(config) -> None:
    """Run the notes API from a ``NotevaultConfig`` until interrupted."""
    store = NoteStore(config.data_dir)
    server = start_server(store, host=config.host, port=config.port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down notes API")
    finally:
        server.server_close()
