"""
notevault -- encrypted notepad with offline-first cloud mirroring.

Notes are encrypted on the client, written to a local mirror first,
and then pushed to a remote store keyed by a public sync identifier.
The store locks each identifier to the fingerprint of whoever claimed
it first, without ever learning the security code.
"""

import os

__version__ = "0.1.0"

NOTEVAULT_HOME = os.environ.get("NOTEVAULT_HOME", "~/.notevault")
