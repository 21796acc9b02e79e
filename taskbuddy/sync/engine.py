"""Replays queued offline mutations and reconciles the cache with the server.

Server state wins once the server is reachable: queued intents are replayed
first so they are not lost, then the cached tasks and progress are replaced
wholesale by what the server returns.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from ..errors import ApiError, SyncError, UnauthorizedError, UnresolvedReferenceError
from ..models import LocalId, OperationKind, RemoteId, SyncOperation, Task, TaskId, UserProgress
from ..storage import IdentifierRemapper, LocalStore, OperationQueue
from .api_client import RemoteApi

logger = logging.getLogger(__name__)

# Operations that make no sense against a task the server never created
_TARGETED_KINDS = (
    OperationKind.UPDATE_TASK,
    OperationKind.DELETE_TASK,
    OperationKind.COMPLETE_TASK,
)


class SyncStatus(Enum):
    """Status of a full sync."""

    SUCCESS = "success"
    PARTIAL = "partial"  # Cache refreshed, some operations still queued
    FAILED = "failed"  # Server state could not be fetched


@dataclass
class ReplaySummary:
    """Result of one pass over the operation queue."""

    success: bool = True
    synced: int = 0
    failed: int = 0
    discarded: int = 0
    unauthorized: bool = False


@dataclass
class CacheSnapshot:
    tasks: list[Task]
    progress: UserProgress


@dataclass
class SyncReport:
    """Result of a full sync, also handed to sync listeners."""

    status: SyncStatus
    replay: ReplaySummary = field(default_factory=ReplaySummary)
    tasks_cached: int = 0
    error: str | None = None
    timestamp: datetime | None = None


SyncListener = Callable[[SyncReport], None]


class _PendingCreate(UnresolvedReferenceError):
    """The target's CREATE_TASK is still queued and may yet succeed."""


class SyncEngine:
    """Drains the operation queue against the remote API.

    Only one full sync runs at a time; a second call while one is in flight
    returns None without touching the queue.
    """

    def __init__(
        self,
        store: LocalStore,
        api: RemoteApi,
        queue: OperationQueue | None = None,
        remapper: IdentifierRemapper | None = None,
    ):
        """Initialize the sync engine.

        Args:
            store: Offline cache to replay from and reconcile into.
            api: Remote API client.
            queue: Operation queue (defaults to one over `store`).
            remapper: Identifier remapper (defaults to one over `store`).
        """
        self.store = store
        self.api = api
        self.queue = queue or OperationQueue(store)
        self.remapper = remapper or IdentifierRemapper(store)
        self._syncing = False
        self._consecutive_failures = 0
        self._listeners: list[SyncListener] = []

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    def add_listener(self, listener: SyncListener) -> None:
        """Register a callback invoked after every completed full sync."""
        self._listeners.append(listener)

    def remove_listener(self, listener: SyncListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, report: SyncReport) -> None:
        for listener in list(self._listeners):
            try:
                listener(report)
            except Exception as e:
                logger.error(f"Sync listener failed: {e}", exc_info=True)

    # ==================== Replay ====================

    def _remote_target(self, operation: SyncOperation) -> RemoteId:
        """Resolve an operation's target to a server id or raise."""
        target = self.remapper.resolve(operation.target)
        if isinstance(target, RemoteId):
            return target

        if self.queue.pending_create_for(target) is not None:
            raise _PendingCreate(target.value)
        raise UnresolvedReferenceError(target.value)

    async def _replay_operation(self, operation: SyncOperation) -> None:
        """Send one queued operation to the server."""
        kind = operation.kind

        if kind == OperationKind.CREATE_TASK:
            task = await self.api.create_task(operation.payload)
            if operation.local_task_id is not None:
                self.remapper.set_mapping(operation.local_task_id, task.id)
                self.remapper.remap_cached_task(operation.local_task_id, task.id)

        elif kind == OperationKind.UPDATE_TASK:
            target = self._remote_target(operation)
            await self.api.update_task(target.value, operation.payload)

        elif kind == OperationKind.DELETE_TASK:
            target = self._remote_target(operation)
            await self.api.delete_task(target.value)

        elif kind == OperationKind.COMPLETE_TASK:
            target = self._remote_target(operation)
            await self.api.complete_task(target.value)

        elif kind == OperationKind.TIMER_COMPLETE:
            task_ref = None
            if operation.target is not None:
                resolved = self.remapper.resolve(operation.target)
                if isinstance(resolved, RemoteId):
                    task_ref = resolved.value
            await self.api.complete_timer(
                int(operation.payload["durationMinutes"]), task_ref
            )

    def _purge_local_task(self, operation: SyncOperation, task_id: TaskId) -> None:
        """Drop an operation that can never succeed, and its cached task."""
        self.queue.dequeue(operation.id)
        self.store.delete_task(task_id)
        logger.info(f"Discarded {operation.kind.value} for local-only task {task_id}")

    async def replay_queue(self) -> ReplaySummary:
        """Replay queued operations in FIFO order.

        Iterates a snapshot taken at the start, so operations queued while
        the pass runs wait for the next one. Never raises.

        Returns:
            ReplaySummary with synced/failed counts.
        """
        summary = ReplaySummary()
        purged: set[LocalId] = set()
        snapshot = self.queue.peek_all()

        if snapshot:
            logger.info(f"Replaying {len(snapshot)} queued operations")

        for operation in snapshot:
            if operation.kind in _TARGETED_KINDS and operation.target is None:
                logger.warning(f"Dropping {operation.kind.value} {operation.id}: no target task")
                self.queue.dequeue(operation.id)
                summary.discarded += 1
                continue

            if operation.target in purged and operation.kind in _TARGETED_KINDS:
                self.queue.dequeue(operation.id)
                summary.discarded += 1
                continue

            try:
                await self._replay_operation(operation)

            except UnauthorizedError:
                summary.failed += 1
                summary.unauthorized = True
                logger.warning("Replay stopped: not authenticated")
                break

            except _PendingCreate as e:
                summary.failed += 1
                logger.debug(f"Deferring {operation.kind.value}: create for {e.local_id} still queued")

            except UnresolvedReferenceError:
                summary.failed += 1
                self._purge_local_task(operation, operation.target)
                purged.add(operation.target)

            except ApiError as e:
                if e.status == 404 and operation.kind in (
                    OperationKind.DELETE_TASK,
                    OperationKind.COMPLETE_TASK,
                ):
                    # Already gone or already completed on the server
                    self.queue.dequeue(operation.id)
                    summary.synced += 1
                elif e.status == 404 and operation.kind == OperationKind.UPDATE_TASK:
                    self.queue.dequeue(operation.id)
                    summary.discarded += 1
                    logger.info(f"Dropped update for missing task {operation.target}")
                elif e.is_client_error and operation.kind == OperationKind.CREATE_TASK:
                    summary.failed += 1
                    logger.warning(f"Server rejected queued create {operation.id}: {e}")
                    if operation.local_task_id is not None:
                        self._purge_local_task(operation, operation.local_task_id)
                        purged.add(operation.local_task_id)
                    else:
                        self.queue.dequeue(operation.id)
                else:
                    summary.failed += 1
                    logger.warning(f"Sync operation {operation.id} failed: {e}")

            except Exception as e:
                summary.failed += 1
                logger.error(
                    f"Sync operation {operation.id} failed unexpectedly: {e}",
                    exc_info=True,
                )

            else:
                self.queue.dequeue(operation.id)
                summary.synced += 1

        summary.success = summary.failed == 0
        if summary.synced > 0:
            self.store.set_last_sync()

        logger.info(
            f"Replay: synced={summary.synced}, failed={summary.failed}, "
            f"discarded={summary.discarded}"
        )
        return summary

    # ==================== Reconcile ====================

    async def fetch_and_replace_cache(self) -> CacheSnapshot:
        """Fetch tasks and progress and overwrite the cache with them.

        Both requests run concurrently. If either fails the cache is left
        untouched.

        Raises:
            UnauthorizedError: The server answered 401.
            SyncError: Any other failure.
        """
        try:
            tasks, progress = await asyncio.gather(
                self.api.list_tasks(),
                self.api.get_progress(),
            )
        except UnauthorizedError:
            raise
        except (ApiError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Failed to fetch server data: {e}")
            raise SyncError(f"Failed to fetch server data: {e}") from e

        self.store.set_tasks(tasks)
        self.store.set_progress(progress)
        self.store.set_last_sync()

        logger.debug(f"Cache replaced with {len(tasks)} server tasks")
        return CacheSnapshot(tasks=tasks, progress=progress)

    async def full_sync(self) -> SyncReport | None:
        """Replay the queue, then reconcile with server state.

        Returns:
            SyncReport, or None if another sync was already running.

        Raises:
            UnauthorizedError: The server answered 401.
        """
        if self._syncing:
            logger.info("Sync already in progress, skipping")
            return None

        self._syncing = True
        try:
            replay = await self.replay_queue()
            if replay.unauthorized:
                raise UnauthorizedError()

            try:
                snapshot = await self.fetch_and_replace_cache()
            except SyncError as e:
                self._consecutive_failures += 1
                report = SyncReport(
                    status=SyncStatus.FAILED,
                    replay=replay,
                    error=str(e),
                    timestamp=datetime.now(),
                )
            else:
                if replay.success:
                    self._consecutive_failures = 0
                else:
                    self._consecutive_failures += 1
                report = SyncReport(
                    status=SyncStatus.SUCCESS if replay.success else SyncStatus.PARTIAL,
                    replay=replay,
                    tasks_cached=len(snapshot.tasks),
                    timestamp=datetime.now(),
                )
        finally:
            self._syncing = False

        logger.info(
            f"Sync: {report.status.value}, synced={replay.synced}, "
            f"failed={replay.failed}, tasks={report.tasks_cached}"
        )
        self._notify(report)
        return report

    @property
    def last_sync(self) -> datetime | None:
        """Timestamp of the last successful sync."""
        return self.store.get_last_sync()

    def get_sync_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary with sync statistics.
        """
        last_sync = self.last_sync
        return {
            "user": self.store.namespace,
            "last_sync": last_sync.isoformat() if last_sync else None,
            "syncing": self._syncing,
            "consecutive_failures": self._consecutive_failures,
            "pending_operations": len(self.queue),
        }
