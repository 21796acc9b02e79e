"""Durable FIFO of mutations waiting for the server."""

import logging
from typing import Any

from ..models import LocalId, OperationKind, SyncOperation, TaskId
from .local_store import LocalStore

logger = logging.getLogger(__name__)


class OperationQueue:
    """Append-only log of unconfirmed mutations, persisted in the LocalStore."""

    def __init__(self, store: LocalStore):
        self._store = store

    def enqueue(
        self,
        kind: OperationKind,
        payload: dict[str, Any],
        target: TaskId | None = None,
        local_task_id: LocalId | None = None,
    ) -> SyncOperation:
        """Append a new operation with a generated id and timestamp.

        Args:
            kind: Operation kind.
            payload: Request body data for the operation.
            target: Task the operation acts on, if any.
            local_task_id: For CREATE_TASK, the local id of the cached task.

        Returns:
            The queued operation.
        """
        operation = SyncOperation.new(
            kind, payload, target=target, local_task_id=local_task_id
        )
        result = self._store.append_operation(operation)
        if result.ok:
            logger.debug(f"Queued {kind.value} as {operation.id}")
        return operation

    def dequeue(self, operation_id: str) -> bool:
        """Remove an operation by id. Returns False if it was not queued."""
        return self._store.remove_operation(operation_id)

    def peek_all(self) -> list[SyncOperation]:
        """Snapshot of the queue in FIFO order."""
        return list(self._store.get_queue())

    def is_empty(self) -> bool:
        return len(self) == 0

    def clear(self) -> None:
        self._store.clear_queue()

    def pending_create_for(self, local_id: LocalId) -> SyncOperation | None:
        """The queued CREATE_TASK bound to `local_id`, if any."""
        for operation in self._store.get_queue():
            if (
                operation.kind == OperationKind.CREATE_TASK
                and operation.local_task_id == local_id
            ):
                return operation
        return None

    def __len__(self) -> int:
        return len(self._store.get_queue())
