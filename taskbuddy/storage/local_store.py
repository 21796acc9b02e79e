"""Per-user offline cache on top of an injected key-value backend."""

import dataclasses
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from ..models import SyncOperation, Task, TaskId, UserProgress
from .backends import KeyValueBackend, StorageBackendError

logger = logging.getLogger(__name__)

ANONYMOUS_USER = "anonymous"


class StoreKey(Enum):
    """Base names of the per-user keys."""

    TASKS = "tasks"
    PROGRESS = "progress"
    SYNC_QUEUE = "sync_queue"
    LAST_SYNC = "last_sync"
    ID_MAP = "id_map"


class StoreErrorKind(Enum):
    BACKEND = "backend"  # the medium failed (quota, I/O, locked db)
    MALFORMED = "malformed"  # the stored value could not be decoded


@dataclass
class StoreResult:
    """Outcome of a LocalStore read or write."""

    value: Any = None
    error: StoreErrorKind | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: Any) -> Any:
        """Return the value, or `default` when the operation failed."""
        return self.value if self.ok else default

    @classmethod
    def success(cls, value: Any = None) -> "StoreResult":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: StoreErrorKind, message: str) -> "StoreResult":
        return cls(error=kind, message=message)


class LocalStore:
    """Offline cache of tasks, progress, the sync queue and the id map.

    All keys are namespaced by the active user. Reads return StoreResult so
    callers can tell "nothing stored" from "storage failed"; the get_*
    helpers apply the usual defaults. Writes never raise.
    """

    def __init__(self, backend: KeyValueBackend, prefix: str = "taskbuddy"):
        """Initialize the local store.

        Args:
            backend: Key-value medium to persist into.
            prefix: Prefix for every key written by this store.
        """
        self.backend = backend
        self.prefix = prefix

    # ==================== Keys ====================

    @property
    def _current_user_key(self) -> str:
        return f"{self.prefix}_current_user"

    def _key(self, base: StoreKey) -> str:
        return f"{self.prefix}_{base.value}_{self.namespace}"

    @property
    def namespace(self) -> str:
        """User id the per-user keys are scoped to."""
        return self.get_current_user() or ANONYMOUS_USER

    # ==================== Raw access ====================

    def _read_json(
        self,
        key: str,
        decode: Callable[[Any], Any],
        default: Any,
    ) -> StoreResult:
        try:
            raw = self.backend.get(key)
        except StorageBackendError as e:
            logger.error(f"Failed to read {key}: {e}")
            return StoreResult.failure(StoreErrorKind.BACKEND, str(e))

        if raw is None:
            return StoreResult.success(default)

        try:
            return StoreResult.success(decode(json.loads(raw)))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Malformed data under {key}: {e}")
            return StoreResult.failure(StoreErrorKind.MALFORMED, str(e))

    def _write(self, key: str, value: str) -> StoreResult:
        try:
            self.backend.set(key, value)
        except StorageBackendError as e:
            logger.error(f"Failed to save {key}: {e}")
            return StoreResult.failure(StoreErrorKind.BACKEND, str(e))
        return StoreResult.success()

    def _write_json(self, key: str, value: Any) -> StoreResult:
        return self._write(key, json.dumps(value))

    def _delete(self, key: str) -> StoreResult:
        try:
            self.backend.delete(key)
        except StorageBackendError as e:
            logger.error(f"Failed to remove {key}: {e}")
            return StoreResult.failure(StoreErrorKind.BACKEND, str(e))
        return StoreResult.success()

    # ==================== Active user ====================

    def get_current_user(self) -> str | None:
        try:
            return self.backend.get(self._current_user_key)
        except StorageBackendError as e:
            logger.error(f"Failed to read current user: {e}")
            return None

    def set_current_user(self, user_id: str) -> StoreResult:
        return self._write(self._current_user_key, user_id)

    def clear_current_user(self) -> StoreResult:
        return self._delete(self._current_user_key)

    # ==================== Tasks ====================

    def load_tasks(self) -> StoreResult:
        return self._read_json(
            self._key(StoreKey.TASKS),
            lambda data: [Task.from_dict(t) for t in data],
            [],
        )

    def get_tasks(self) -> list[Task]:
        return self.load_tasks().unwrap_or([])

    def set_tasks(self, tasks: list[Task]) -> StoreResult:
        return self._write_json(
            self._key(StoreKey.TASKS), [t.to_dict() for t in tasks]
        )

    def find_task(self, task_id: TaskId) -> Task | None:
        for task in self.get_tasks():
            if task.id == task_id:
                return task
        return None

    def add_task(self, task: Task) -> StoreResult:
        """Cache a task, replacing one with the same id in place."""
        loaded = self.load_tasks()
        if not loaded.ok:
            logger.error(f"Not caching task {task.id}: tasks unreadable")
            return loaded

        tasks = loaded.value
        for index, existing in enumerate(tasks):
            if existing.id == task.id:
                tasks[index] = task
                break
        else:
            tasks.append(task)
        return self.set_tasks(tasks)

    def update_task(self, task_id: TaskId, **changes: Any) -> Task | None:
        """Apply field changes to a cached task.

        Returns:
            The updated task, or None if no task has that id or the cache
            could not be read or written.
        """
        loaded = self.load_tasks()
        if not loaded.ok:
            logger.error(f"Not updating task {task_id}: tasks unreadable")
            return None

        tasks = loaded.value
        for index, task in enumerate(tasks):
            if task.id == task_id:
                tasks[index] = dataclasses.replace(task, **changes)
                if not self.set_tasks(tasks).ok:
                    return None
                return tasks[index]
        return None

    def delete_task(self, task_id: TaskId) -> bool:
        loaded = self.load_tasks()
        if not loaded.ok:
            logger.error(f"Not deleting task {task_id}: tasks unreadable")
            return False

        tasks = loaded.value
        remaining = [t for t in tasks if t.id != task_id]
        if len(remaining) == len(tasks):
            return False
        return self.set_tasks(remaining).ok

    def replace_task_id(self, old_id: TaskId, new_id: TaskId) -> bool:
        return self.update_task(old_id, id=new_id) is not None

    # ==================== Progress ====================

    def load_progress(self) -> StoreResult:
        return self._read_json(
            self._key(StoreKey.PROGRESS), UserProgress.from_dict, UserProgress()
        )

    def get_progress(self) -> UserProgress:
        return self.load_progress().unwrap_or(UserProgress())

    def set_progress(self, progress: UserProgress) -> StoreResult:
        return self._write_json(self._key(StoreKey.PROGRESS), progress.to_dict())

    # ==================== Sync queue ====================

    def load_queue(self) -> StoreResult:
        return self._read_json(
            self._key(StoreKey.SYNC_QUEUE),
            lambda data: [SyncOperation.from_dict(op) for op in data],
            [],
        )

    def get_queue(self) -> list[SyncOperation]:
        return self.load_queue().unwrap_or([])

    def _set_queue(self, operations: list[SyncOperation]) -> StoreResult:
        return self._write_json(
            self._key(StoreKey.SYNC_QUEUE), [op.to_dict() for op in operations]
        )

    def append_operation(self, operation: SyncOperation) -> StoreResult:
        """Append to the stored queue. An unreadable queue is left as is."""
        loaded = self.load_queue()
        if not loaded.ok:
            logger.error(f"Not queueing {operation.id}: sync queue unreadable")
            return loaded

        queue = loaded.value
        queue.append(operation)
        return self._set_queue(queue)

    def remove_operation(self, operation_id: str) -> bool:
        loaded = self.load_queue()
        if not loaded.ok:
            logger.error(f"Not removing {operation_id}: sync queue unreadable")
            return False

        queue = loaded.value
        remaining = [op for op in queue if op.id != operation_id]
        if len(remaining) == len(queue):
            return False
        return self._set_queue(remaining).ok

    def clear_queue(self) -> StoreResult:
        return self._set_queue([])

    # ==================== Identifier map ====================

    def load_id_map(self) -> StoreResult:
        return self._read_json(self._key(StoreKey.ID_MAP), dict, {})

    def get_id_map(self) -> dict[str, str]:
        return self.load_id_map().unwrap_or({})

    def set_id_map(self, id_map: dict[str, str]) -> StoreResult:
        return self._write_json(self._key(StoreKey.ID_MAP), id_map)

    def clear_id_map(self) -> StoreResult:
        return self._delete(self._key(StoreKey.ID_MAP))

    # ==================== Last sync ====================

    def get_last_sync(self) -> datetime | None:
        result = self._read_json(
            self._key(StoreKey.LAST_SYNC), datetime.fromisoformat, None
        )
        return result.unwrap_or(None)

    def set_last_sync(self, when: datetime | None = None) -> StoreResult:
        return self._write_json(
            self._key(StoreKey.LAST_SYNC), (when or datetime.now()).isoformat()
        )
