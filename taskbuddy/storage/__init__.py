"""Offline cache for taskbuddy.

Provides per-user local storage for:
- Cached tasks and progress (replaced wholesale on reconnect)
- The queue of mutations waiting for the server
- The local-to-server task id map
"""

from .backends import KeyValueBackend, MemoryBackend, SQLiteBackend, StorageBackendError
from .id_map import IdentifierRemapper
from .local_store import ANONYMOUS_USER, LocalStore, StoreErrorKind, StoreResult
from .queue import OperationQueue

__all__ = [
    "ANONYMOUS_USER",
    "IdentifierRemapper",
    "KeyValueBackend",
    "LocalStore",
    "MemoryBackend",
    "OperationQueue",
    "SQLiteBackend",
    "StorageBackendError",
    "StoreErrorKind",
    "StoreResult",
]
