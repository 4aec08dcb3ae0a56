"""
Offline-first sync -- the coordinator, its debounce timer, and the
client for the remote notes API.

Local mirror first, remote second. The remote copy wins on unlock when
it is reachable; the local copy keeps the session alive when it is not.
"""

from .coordinator import SyncCoordinator
from .debounce import Debouncer
from .remote import RemoteVaultClient

__all__ = ["SyncCoordinator", "Debouncer", "RemoteVaultClient", "build_coordinator"]


def build_coordinator(config, on_result=None) -> SyncCoordinator:
    """Wire a coordinator from a loaded ``NotevaultConfig``."""
    from ..mirror import LocalMirror

    return SyncCoordinator(
        mirror=LocalMirror(config.mirror_file),
        remote=RemoteVaultClient(config.server_url, timeout=config.request_timeout),
        debounce_seconds=config.debounce_seconds,
        on_result=on_result,
    )
