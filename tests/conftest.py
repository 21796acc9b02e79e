"""Shared fixtures: an in-memory store and a fake REST server."""

import json

import httpx
import pytest

from taskbuddy.offline import OfflineTaskClient
from taskbuddy.storage import LocalStore, MemoryBackend
from taskbuddy.sync import ConnectivityMonitor, RemoteApi, SyncEngine

BASE_URL = "http://testserver/api"


class FakeServer:
    """In-memory stand-in for the task/progress/timer REST API."""

    def __init__(self):
        self.tasks: dict[str, dict] = {}
        self.progress = {
            "totalPoints": 0,
            "completedTasks": 0,
            "currentStreak": 0,
            "unlockedStickers": [],
            "timerSessionsCompleted": 0,
        }
        self.requests: list[tuple[str, str]] = []
        self.bodies: list[dict | None] = []
        self.next_ids: list[str] = []
        self.status_overrides: dict[tuple[str, str], int] = {}
        self.offline = False
        self._counter = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def _new_id(self) -> str:
        if self.next_ids:
            return self.next_ids.pop(0)
        self._counter += 1
        return f"srv_{self._counter}"

    def add_task(self, title: str, **fields) -> dict:
        task = {
            "id": fields.pop("id", None) or self._new_id(),
            "title": title,
            "description": None,
            "scheduledTime": None,
            "durationMinutes": None,
            "completed": False,
            "completedAt": None,
            "stickerId": None,
            "createdAt": "2026-10-19",
            "recurring": "none",
        }
        task.update(fields)
        self.tasks[task["id"]] = task
        return task

    def calls(self, method: str | None = None) -> list[tuple[str, str]]:
        return [r for r in self.requests if method is None or r[0] == method]

    def handler(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        path = request.url.path.removeprefix("/api")
        self.requests.append((method, path))
        body = json.loads(request.content) if request.content else None
        self.bodies.append(body)

        if self.offline:
            raise httpx.ConnectError("network unreachable", request=request)

        if (method, path) in self.status_overrides:
            return httpx.Response(self.status_overrides[(method, path)], text="overridden")

        parts = path.strip("/").split("/")

        if parts == ["tasks"] and method == "GET":
            return httpx.Response(200, json=list(self.tasks.values()))

        if parts == ["tasks"] and method == "POST":
            if not body or not body.get("title"):
                return httpx.Response(400, json={"error": "Task title is required"})
            fields = {k: v for k, v in body.items() if k != "scheduledDate"}
            title = fields.pop("title")
            return httpx.Response(201, json=self.add_task(title, **fields))

        if parts == ["progress"] and method == "GET":
            return httpx.Response(200, json=self.progress)

        if parts == ["timer", "complete"] and method == "POST":
            minutes = body["durationMinutes"]
            self.progress["timerSessionsCompleted"] += 1
            self.progress["totalPoints"] += minutes
            session = {
                "id": f"timer_{len(self.requests)}",
                "durationMinutes": minutes,
                "startedAt": "2026-10-19T10:00:00+00:00",
                "completedAt": "2026-10-19T10:25:00+00:00",
                "taskId": body.get("taskId"),
            }
            return httpx.Response(200, json={"session": session, "progress": self.progress})

        if len(parts) >= 2 and parts[0] == "tasks":
            task = self.tasks.get(parts[1])

            if len(parts) == 3 and parts[2] == "complete" and method == "POST":
                if task is None or task["completed"]:
                    return httpx.Response(404, json={"error": "Task not found or already completed"})
                task["completed"] = True
                task["completedAt"] = "2026-10-19T12:00:00+00:00"
                self.progress["completedTasks"] += 1
                self.progress["totalPoints"] += 10
                return httpx.Response(200, json=task)

            if task is None:
                return httpx.Response(404, json={"error": "Task not found"})

            if method == "PATCH":
                task.update(body or {})
                return httpx.Response(200, json=task)

            if method == "DELETE":
                del self.tasks[parts[1]]
                return httpx.Response(204)

        return httpx.Response(404, json={"error": "Not found"})


@pytest.fixture
def server():
    """Create a fake REST server."""
    return FakeServer()


@pytest.fixture
def backend():
    """Create an in-memory key-value backend."""
    return MemoryBackend()


@pytest.fixture
def store(backend):
    """Create a LocalStore over the in-memory backend."""
    return LocalStore(backend)


@pytest.fixture
def api(server):
    """Create an API client talking to the fake server, without retries."""
    return RemoteApi(
        BASE_URL,
        timeout=1.0,
        max_retries=1,
        retry_backoff_seconds=0,
        transport=server.transport,
    )


@pytest.fixture
def engine(store, api):
    """Create a sync engine over the store and fake server."""
    return SyncEngine(store, api)


@pytest.fixture
def monitor(engine):
    """Create a connectivity monitor that starts offline."""
    return ConnectivityMonitor(engine.queue, engine, initially_online=False)


@pytest.fixture
def client(store, api, engine, monitor):
    """Create an offline-aware client that starts offline."""
    return OfflineTaskClient(store, api, engine=engine, monitor=monitor)
