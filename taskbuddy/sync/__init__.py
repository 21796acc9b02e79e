"""Sync infrastructure for the offline task cache.

Replays mutations queued while offline against the REST API, then replaces
the cached tasks and progress with the server's state.
"""

from .api_client import RemoteApi
from .connectivity import ConnectivityMonitor
from .engine import CacheSnapshot, ReplaySummary, SyncEngine, SyncReport, SyncStatus

__all__ = [
    "CacheSnapshot",
    "ConnectivityMonitor",
    "RemoteApi",
    "ReplaySummary",
    "SyncEngine",
    "SyncReport",
    "SyncStatus",
]
