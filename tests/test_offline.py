"""Tests for the offline-aware client."""

import pytest

from taskbuddy import create_client
from taskbuddy.config import Config
from taskbuddy.errors import ApiError
from taskbuddy.models import LocalId, OperationKind, Recurrence, RemoteId, Task, TaskDraft, UserProgress
from taskbuddy.storage import MemoryBackend


async def go_online(client):
    await client.monitor.set_online(True)


def cache_server_task(client, server, title="Read", task_id="hw_1"):
    data = server.add_task(title, id=task_id)
    client.store.add_task(Task.from_api(data))
    return RemoteId(task_id)


class TestCreate:
    """Tests for create_task_offline_aware."""

    @pytest.mark.asyncio
    async def test_offline_create_is_local_and_queued(self, client, server):
        """Test an offline create makes a local task and queues a create."""
        task = await client.create_task_offline_aware(TaskDraft(title="Read", scheduled_time="16:00"))

        assert isinstance(task.id, LocalId)
        assert task.id.value.startswith("local_")
        assert client.get_tasks() == [task]

        [operation] = client.queue.peek_all()
        assert operation.kind == OperationKind.CREATE_TASK
        assert operation.local_task_id == task.id
        assert operation.payload == {"title": "Read", "recurring": "none", "scheduledTime": "16:00"}
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_online_create_goes_to_server(self, client, server):
        """Test an online create returns the server's task."""
        await go_online(client)
        server.next_ids = ["srv_9"]

        task = await client.create_task_offline_aware(TaskDraft(title="Read"))

        assert task.id == RemoteId("srv_9")
        assert client.get_tasks() == [task]
        assert client.has_pending() is False

    @pytest.mark.asyncio
    async def test_online_create_falls_back_to_queue(self, client, server):
        """Test a create that can't reach the server is queued."""
        await go_online(client)
        server.offline = True

        task = await client.create_task_offline_aware(TaskDraft(title="Read"))

        assert isinstance(task.id, LocalId)
        assert client.pending_count() == 1

    @pytest.mark.asyncio
    async def test_rejected_create_raises(self, client, server):
        """Test a server rejection is not hidden by queueing."""
        await go_online(client)
        server.status_overrides[("POST", "/tasks")] = 400

        with pytest.raises(ApiError) as exc_info:
            await client.create_task_offline_aware(TaskDraft(title="Read"))

        assert exc_info.value.status == 400
        assert client.has_pending() is False

    def test_blank_title_rejected(self):
        """Test a draft needs a title."""
        with pytest.raises(ValueError):
            TaskDraft(title="  ")


class TestComplete:
    """Tests for complete_task_offline_aware."""

    @pytest.mark.asyncio
    async def test_offline_complete_updates_cache_and_queues(self, client, server):
        """Test completing offline makes no call and queues one operation."""
        task_id = cache_server_task(client, server)

        task = await client.complete_task_offline_aware(task_id)

        assert task.completed is True
        assert task.completed_at is not None
        assert client.store.find_task(task_id).completed is True
        assert server.requests == []

        [operation] = client.queue.peek_all()
        assert operation.kind == OperationKind.COMPLETE_TASK
        assert operation.target == task_id

    @pytest.mark.asyncio
    async def test_online_complete(self, client, server):
        """Test completing online uses the server's result."""
        task_id = cache_server_task(client, server)
        await go_online(client)

        task = await client.complete_task_offline_aware(task_id)

        assert task.completed is True
        assert server.requests == [("POST", "/tasks/hw_1/complete")]
        assert client.has_pending() is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 400])
    async def test_rejected_complete_leaves_cache(self, client, server, status):
        """Test a server rejection leaves the cached task uncompleted."""
        task_id = cache_server_task(client, server)
        await go_online(client)
        server.status_overrides[("POST", "/tasks/hw_1/complete")] = status

        with pytest.raises(ApiError):
            await client.complete_task_offline_aware(task_id)

        assert client.store.find_task(task_id).completed is False
        assert client.has_pending() is False
        assert server.tasks["hw_1"]["completed"] is False

    @pytest.mark.asyncio
    async def test_online_complete_of_local_task_is_queued(self, client, server):
        """Test a task not yet on the server can't be completed remotely."""
        task = await client.create_task_offline_aware(TaskDraft(title="Read"))
        client.monitor.auto_sync = False
        await go_online(client)

        await client.complete_task_offline_aware(task.id)

        assert [op.kind for op in client.queue.peek_all()] == [
            OperationKind.CREATE_TASK,
            OperationKind.COMPLETE_TASK,
        ]


class TestUpdateAndDelete:
    """Tests for update and delete."""

    @pytest.mark.asyncio
    async def test_offline_update(self, client, server):
        """Test an offline update changes the cache and queues a patch."""
        task_id = cache_server_task(client, server)

        task = await client.update_task_offline_aware(
            task_id, title="Read more", recurring="daily"
        )

        assert task.title == "Read more"
        assert task.recurring == Recurrence.DAILY
        [operation] = client.queue.peek_all()
        assert operation.kind == OperationKind.UPDATE_TASK
        assert operation.payload == {"title": "Read more", "recurring": "daily"}

    @pytest.mark.asyncio
    async def test_online_update(self, client, server):
        """Test an online update patches the server."""
        task_id = cache_server_task(client, server)
        await go_online(client)

        await client.update_task_offline_aware(task_id, scheduled_time="17:30")

        assert server.tasks["hw_1"]["scheduledTime"] == "17:30"
        assert client.store.find_task(task_id).scheduled_time == "17:30"

    @pytest.mark.asyncio
    async def test_unknown_update_field(self, client, server):
        """Test updating a field that can't be patched."""
        task_id = cache_server_task(client, server)

        with pytest.raises(ValueError):
            await client.update_task_offline_aware(task_id, completed=True)

    @pytest.mark.asyncio
    async def test_offline_delete(self, client, server):
        """Test an offline delete removes from cache and queues."""
        task_id = cache_server_task(client, server)

        assert await client.delete_task_offline_aware(task_id) is True

        assert client.get_tasks() == []
        assert client.queue.peek_all()[0].kind == OperationKind.DELETE_TASK
        assert "hw_1" in server.tasks

    @pytest.mark.asyncio
    async def test_online_delete(self, client, server):
        """Test an online delete reaches the server."""
        task_id = cache_server_task(client, server)
        await go_online(client)

        await client.delete_task_offline_aware(task_id)

        assert "hw_1" not in server.tasks
        assert client.get_tasks() == []
        assert client.has_pending() is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 400])
    async def test_rejected_delete_keeps_task(self, client, server, status):
        """Test a server rejection leaves the task cached."""
        task_id = cache_server_task(client, server)
        await go_online(client)
        server.status_overrides[("DELETE", "/tasks/hw_1")] = status

        with pytest.raises(ApiError):
            await client.delete_task_offline_aware(task_id)

        assert [t.id for t in client.get_tasks()] == [task_id]
        assert client.has_pending() is False
        assert "hw_1" in server.tasks

    @pytest.mark.asyncio
    async def test_rejected_update_keeps_task(self, client, server):
        """Test a rejected update leaves the cached title alone."""
        task_id = cache_server_task(client, server)
        await go_online(client)
        server.status_overrides[("PATCH", "/tasks/hw_1")] = 400

        with pytest.raises(ApiError):
            await client.update_task_offline_aware(task_id, title="Read more")

        assert client.store.find_task(task_id).title == "Read"
        assert client.has_pending() is False

    @pytest.mark.asyncio
    async def test_delete_falls_back_to_queue(self, client, server):
        """Test a delete that can't reach the server is applied locally and queued."""
        task_id = cache_server_task(client, server)
        await go_online(client)
        server.offline = True

        assert await client.delete_task_offline_aware(task_id) is True

        assert client.get_tasks() == []
        assert client.queue.peek_all()[0].kind == OperationKind.DELETE_TASK


class TestTimer:
    """Tests for complete_timer_offline_aware."""

    @pytest.mark.asyncio
    async def test_offline_timer(self, client, server):
        """Test an offline session is counted and queued."""
        task_id = cache_server_task(client, server)

        progress = await client.complete_timer_offline_aware(25, task_id)

        assert progress.timer_sessions_completed == 1
        assert client.get_progress().timer_sessions_completed == 1
        [operation] = client.queue.peek_all()
        assert operation.payload == {"durationMinutes": 25}
        assert operation.target == task_id

    @pytest.mark.asyncio
    async def test_online_timer(self, client, server):
        """Test an online session stores the server's progress."""
        await go_online(client)

        progress = await client.complete_timer_offline_aware(15)

        assert progress.total_points == 15
        assert client.get_progress() == progress
        assert server.bodies[-1] == {"durationMinutes": 15}

    @pytest.mark.asyncio
    async def test_invalid_duration(self, client):
        """Test a session must last at least a minute."""
        with pytest.raises(ValueError):
            await client.complete_timer_offline_aware(0)


class TestSyncAndRefresh:
    """Tests for the sync entry points."""

    @pytest.mark.asyncio
    async def test_reconnect_flushes_offline_work(self, client, server):
        """Test work done offline reaches the server on reconnect."""
        task = await client.create_task_offline_aware(TaskDraft(title="Read"))
        await client.complete_task_offline_aware(task.id)
        await client.complete_timer_offline_aware(10, task.id)
        server.next_ids = ["srv_9"]

        report = await client.monitor.set_online(True)

        assert report is not None
        assert client.has_pending() is False
        assert server.tasks["srv_9"]["completed"] is True
        assert [t.id for t in client.get_tasks()] == [RemoteId("srv_9")]
        assert client.get_progress().timer_sessions_completed == 1

    @pytest.mark.asyncio
    async def test_refresh_offline_returns_cache(self, client, server):
        """Test refresh serves the cache while offline."""
        client.store.set_progress(UserProgress(total_points=3))
        server.add_task("Piano", id="hw_2")

        snapshot = await client.refresh()

        assert snapshot.tasks == []
        assert snapshot.progress.total_points == 3
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_refresh_online(self, client, server):
        """Test refresh pulls server state when online."""
        server.add_task("Piano", id="hw_2")
        await go_online(client)

        snapshot = await client.refresh()

        assert [t.id for t in snapshot.tasks] == [RemoteId("hw_2")]

    @pytest.mark.asyncio
    async def test_refresh_falls_back_on_error(self, client, server):
        """Test refresh serves the cache when the fetch fails."""
        cache_server_task(client, server)
        await go_online(client)
        server.status_overrides[("GET", "/tasks")] = 500

        snapshot = await client.refresh()

        assert [t.id for t in snapshot.tasks] == [RemoteId("hw_1")]

    @pytest.mark.asyncio
    async def test_sync_pending_operations(self, client, server):
        """Test replaying the queue directly."""
        await client.create_task_offline_aware(TaskDraft(title="Read"))

        summary = await client.sync_pending_operations()

        assert summary.synced == 1
        assert client.has_pending() is False


class TestSession:
    """Tests for user switching and lookups."""

    @pytest.mark.asyncio
    async def test_login_scopes_cache(self, client):
        """Test each user sees only their own tasks."""
        client.login("alice")
        await client.create_task_offline_aware(TaskDraft(title="Alice's task"))

        client.login("bob")

        assert client.get_tasks() == []
        assert client.pending_count() == 0

    def test_logout_clears_id_map(self, client):
        """Test logout drops the identifier map."""
        client.login("alice")
        client.remapper.set_mapping(LocalId("local_1"), RemoteId("srv_1"))

        client.logout()
        client.login("alice")

        assert client.remapper.mappings() == {}

    @pytest.mark.asyncio
    async def test_find_task_id(self, client, server):
        """Test looking up tagged ids by text."""
        task = await client.create_task_offline_aware(TaskDraft(title="Read"))
        remote_id = cache_server_task(client, server)
        client.remapper.set_mapping(LocalId("local_old"), RemoteId("srv_5"))

        assert client.find_task_id(task.id.value) == task.id
        assert client.find_task_id("hw_1") == remote_id
        assert client.find_task_id("local_old") == RemoteId("srv_5")
        assert client.find_task_id("missing") is None


class TestCreateClient:
    """Tests for wiring from config."""

    def test_default_user_applied(self, server):
        """Test the configured default user becomes active."""
        config = Config()
        config.user.default_user = "alice"

        client = create_client(config, backend=MemoryBackend(), transport=server.transport)

        assert client.store.get_current_user() == "alice"
        assert client.is_online is True

    def test_existing_user_kept(self, server):
        """Test a stored active user is not overwritten."""
        backend = MemoryBackend()
        backend.set("taskbuddy_current_user", "bob")
        config = Config()
        config.user.default_user = "alice"

        client = create_client(config, backend=backend, transport=server.transport, online=False)

        assert client.store.get_current_user() == "bob"
        assert client.is_online is False

    @pytest.mark.asyncio
    async def test_sync_disabled(self, server):
        """Test disabling sync stops reconnect syncs."""
        config = Config()
        config.sync.enabled = False
        client = create_client(config, backend=MemoryBackend(), transport=server.transport, online=False)
        await client.create_task_offline_aware(TaskDraft(title="Read"))

        assert await client.monitor.set_online(True) is None
        assert client.pending_count() == 1

    def test_memory_backend_from_config(self, server):
        """Test the memory backend can be selected in config."""
        config = Config()
        config.storage.backend = "memory"

        client = create_client(config, transport=server.transport)

        assert isinstance(client.store.backend, MemoryBackend)
