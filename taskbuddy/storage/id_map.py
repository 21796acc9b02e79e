"""Mapping from device-local task ids to server-issued ids."""

import logging

from ..models import LocalId, RemoteId, TaskId
from .local_store import LocalStore

logger = logging.getLogger(__name__)


class IdentifierRemapper:
    """Resolves local task ids once the server has acknowledged the create.

    Queued operations keep the id they were enqueued with; resolution
    happens when each operation is replayed, because the server id only
    becomes known after the create itself is replayed.
    """

    def __init__(self, store: LocalStore):
        self._store = store

    def set_mapping(self, local_id: LocalId, server_id: RemoteId) -> bool:
        """Record that `local_id` is known to the server as `server_id`.

        Returns:
            False if the local id was already mapped (the existing mapping
            is kept) or the map could not be read or written.
        """
        loaded = self._store.load_id_map()
        if not loaded.ok:
            logger.error(f"Not mapping {local_id} -> {server_id}: id map unreadable")
            return False

        id_map = loaded.value
        existing = id_map.get(local_id.value)
        if existing is not None:
            if existing != server_id.value:
                logger.warning(
                    f"Ignoring remap of {local_id} to {server_id}, "
                    f"already mapped to {existing}"
                )
            return False

        id_map[local_id.value] = server_id.value
        if not self._store.set_id_map(id_map).ok:
            return False
        logger.debug(f"Mapped {local_id} -> {server_id}")
        return True

    def resolve(self, task_id: TaskId) -> TaskId:
        """Return the server id for a mapped local id, else the input."""
        if isinstance(task_id, LocalId):
            server_value = self._store.get_id_map().get(task_id.value)
            if server_value is not None:
                return RemoteId(server_value)
        return task_id

    def remap_cached_task(self, local_id: LocalId, server_id: RemoteId) -> bool:
        """Rewrite the cached task's id from the local to the server id."""
        return self._store.replace_task_id(local_id, server_id)

    def clear(self) -> None:
        self._store.clear_id_map()

    def mappings(self) -> dict[str, str]:
        return self._store.get_id_map()
