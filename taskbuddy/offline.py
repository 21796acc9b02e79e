"""Offline-aware task operations exposed to the UI layer.

Each mutation is applied to the local cache right away. When the device is
offline, or the server can't be reached, the mutation is also queued and
replayed by the sync engine later.
"""

import logging
from typing import Any

import httpx

from .config import Config
from .errors import SyncError, TransientApiError
from .models import (
    LocalId,
    OperationKind,
    Recurrence,
    RemoteId,
    Task,
    TaskDraft,
    TaskId,
    UserProgress,
    generate_local_id,
    utc_now_iso,
)
from .storage import (
    IdentifierRemapper,
    KeyValueBackend,
    LocalStore,
    MemoryBackend,
    OperationQueue,
    SQLiteBackend,
)
from .sync import CacheSnapshot, ConnectivityMonitor, RemoteApi, ReplaySummary, SyncEngine, SyncReport

logger = logging.getLogger(__name__)

# Task field name -> API field name for PATCH bodies
_UPDATE_FIELDS = {
    "title": "title",
    "description": "description",
    "scheduled_time": "scheduledTime",
    "duration_minutes": "durationMinutes",
    "sticker_id": "stickerId",
    "recurring": "recurring",
}


class OfflineTaskClient:
    """Task, timer and sync operations that keep working without a network."""

    def __init__(
        self,
        store: LocalStore,
        api: RemoteApi,
        engine: SyncEngine | None = None,
        monitor: ConnectivityMonitor | None = None,
    ):
        self.store = store
        self.api = api
        self.queue = engine.queue if engine else OperationQueue(store)
        self.remapper = engine.remapper if engine else IdentifierRemapper(store)
        self.engine = engine or SyncEngine(store, api, self.queue, self.remapper)
        self.monitor = monitor or ConnectivityMonitor(self.queue, self.engine)

    @property
    def is_online(self) -> bool:
        return self.monitor.is_online

    def _remote_id(self, task_id: TaskId) -> RemoteId | None:
        """Server id for a task when the server can be called, else None."""
        if not self.is_online:
            return None
        resolved = self.remapper.resolve(task_id)
        return resolved if isinstance(resolved, RemoteId) else None

    # ==================== Mutations ====================

    async def create_task_offline_aware(self, draft: TaskDraft) -> Task:
        """Create a task on the server, or locally with a queued create."""
        if self.is_online:
            try:
                task = await self.api.create_task(draft.to_payload())
            except TransientApiError as e:
                logger.warning(f"Create failed, queueing for later: {e}")
            else:
                self.store.add_task(task)
                return task

        local_id = generate_local_id()
        task = draft.to_local_task(local_id)
        self.store.add_task(task)
        self.queue.enqueue(
            OperationKind.CREATE_TASK, draft.to_payload(), local_task_id=local_id
        )
        return task

    async def update_task_offline_aware(self, task_id: TaskId, **changes: Any) -> Task | None:
        """Change task fields (title, scheduled_time, ...) locally and remotely."""
        unknown = set(changes) - set(_UPDATE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update task fields: {', '.join(sorted(unknown))}")
        if "recurring" in changes:
            changes["recurring"] = Recurrence(changes["recurring"])

        payload = {
            _UPDATE_FIELDS[name]: value.value if isinstance(value, Recurrence) else value
            for name, value in changes.items()
        }

        remote_id = self._remote_id(task_id)
        if remote_id is not None:
            try:
                task = await self.api.update_task(remote_id.value, payload)
            except TransientApiError as e:
                logger.warning(f"Update failed, queueing for later: {e}")
            else:
                self.store.add_task(task)
                return task

        updated = self.store.update_task(task_id, **changes)
        self.queue.enqueue(OperationKind.UPDATE_TASK, payload, target=task_id)
        return updated

    async def complete_task_offline_aware(self, task_id: TaskId) -> Task | None:
        """Complete a task on the server, or in the cache with a queued complete.

        Server rejections (401, 4xx) propagate and leave the cache unchanged.
        """
        remote_id = self._remote_id(task_id)
        if remote_id is not None:
            try:
                task = await self.api.complete_task(remote_id.value)
            except TransientApiError as e:
                logger.warning(f"Complete failed, queueing for later: {e}")
            else:
                self.store.add_task(task)
                return task

        updated = self.store.update_task(
            task_id, completed=True, completed_at=utc_now_iso()
        )
        self.queue.enqueue(
            OperationKind.COMPLETE_TASK, {"id": task_id.value}, target=task_id
        )
        return updated

    async def delete_task_offline_aware(self, task_id: TaskId) -> bool:
        """Delete a task on the server, or from the cache with a queued delete.

        Returns:
            True if the task was in the cache.
        """
        remote_id = self._remote_id(task_id)
        if remote_id is not None:
            try:
                await self.api.delete_task(remote_id.value)
            except TransientApiError as e:
                logger.warning(f"Delete failed, queueing for later: {e}")
            else:
                return self.store.delete_task(task_id)

        existed = self.store.delete_task(task_id)
        self.queue.enqueue(
            OperationKind.DELETE_TASK, {"id": task_id.value}, target=task_id
        )
        return existed

    async def complete_timer_offline_aware(
        self,
        duration_minutes: int,
        task_id: TaskId | None = None,
    ) -> UserProgress:
        """Record a finished focus-timer session.

        Returns:
            Progress after the session: the server's when online, otherwise
            the cached progress with the session counted.
        """
        if duration_minutes < 1:
            raise ValueError("Timer duration must be at least one minute")

        if self.is_online:
            remote_id = self.remapper.resolve(task_id) if task_id else None
            task_ref = remote_id.value if isinstance(remote_id, RemoteId) else None
            try:
                _, progress = await self.api.complete_timer(duration_minutes, task_ref)
            except TransientApiError as e:
                logger.warning(f"Timer completion failed, queueing for later: {e}")
            else:
                self.store.set_progress(progress)
                return progress

        progress = self.store.get_progress()
        progress.timer_sessions_completed += 1
        self.store.set_progress(progress)
        self.queue.enqueue(
            OperationKind.TIMER_COMPLETE,
            {"durationMinutes": duration_minutes},
            target=task_id,
        )
        return progress

    # ==================== Sync ====================

    async def sync_pending_operations(self) -> ReplaySummary:
        return await self.engine.replay_queue()

    async def fetch_and_cache_server_data(self) -> CacheSnapshot:
        return await self.engine.fetch_and_replace_cache()

    async def full_sync(self) -> SyncReport | None:
        return await self.engine.full_sync()

    async def refresh(self) -> CacheSnapshot:
        """Fetch fresh data when online, falling back to the cache."""
        if self.is_online:
            try:
                return await self.engine.fetch_and_replace_cache()
            except SyncError as e:
                logger.warning(f"Serving cached data: {e}")
        return CacheSnapshot(tasks=self.get_tasks(), progress=self.get_progress())

    # ==================== Reads ====================

    def get_tasks(self) -> list[Task]:
        return self.store.get_tasks()

    def get_progress(self) -> UserProgress:
        return self.store.get_progress()

    def pending_count(self) -> int:
        return len(self.queue)

    def has_pending(self) -> bool:
        return not self.queue.is_empty()

    def find_task_id(self, value: str) -> TaskId | None:
        """Look up the tagged id of a cached task by its text form."""
        for task in self.get_tasks():
            if task.id.value == value:
                return task.id
        mapped = self.remapper.resolve(LocalId(value))
        if isinstance(mapped, RemoteId):
            return mapped
        return None

    # ==================== Session ====================

    def login(self, user_id: str) -> None:
        self.store.set_current_user(user_id)
        logger.info(f"Active user set to {user_id}")

    def logout(self) -> None:
        self.remapper.clear()
        self.store.clear_current_user()
        logger.info("Logged out, identifier map cleared")


def create_backend(config: Config) -> KeyValueBackend:
    if config.storage.backend == "memory":
        return MemoryBackend()
    backend = SQLiteBackend(config.storage.db_path)
    backend.connect()
    return backend


def create_client(
    config: Config,
    backend: KeyValueBackend | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    online: bool = True,
) -> OfflineTaskClient:
    """Wire up store, API client, sync engine and monitor from config."""
    store = LocalStore(backend or create_backend(config))
    if config.user.default_user and not store.get_current_user():
        store.set_current_user(config.user.default_user)

    api = RemoteApi.from_config(config.api, transport=transport)
    queue = OperationQueue(store)
    engine = SyncEngine(store, api, queue, IdentifierRemapper(store))
    monitor = ConnectivityMonitor(
        queue,
        engine if config.sync.enabled else None,
        initially_online=online,
        auto_sync=config.sync.auto_sync_on_reconnect,
    )
    return OfflineTaskClient(store, api, engine=engine, monitor=monitor)
