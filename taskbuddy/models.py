"""Data model shared by the offline cache, the sync engine and the API client.

Stored records use the same camelCase field names as the REST API so that a
cached task and a server task serialize alike. Task identifiers are the one
exception: in storage they are tagged as local or remote.
"""

import random
import string
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

_ID_ALPHABET = string.ascii_lowercase + string.digits


def _now_ms() -> int:
    return int(time.time() * 1000)


def _random_suffix(length: int = 9) -> str:
    return "".join(random.choices(_ID_ALPHABET, k=length))


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class LocalId:
    """Identifier generated on this device for a task the server hasn't seen."""

    value: str

    is_local = True

    def __str__(self) -> str:
        return self.value

    def to_dict(self) -> dict[str, str]:
        return {"kind": "local", "value": self.value}


@dataclass(frozen=True)
class RemoteId:
    """Identifier issued by the server."""

    value: str

    is_local = False

    def __str__(self) -> str:
        return self.value

    def to_dict(self) -> dict[str, str]:
        return {"kind": "remote", "value": self.value}


TaskId = LocalId | RemoteId


def task_id_from_dict(data: dict[str, str]) -> TaskId:
    """Rebuild a tagged task identifier from its stored form."""
    kind = data["kind"]
    if kind == "local":
        return LocalId(data["value"])
    if kind == "remote":
        return RemoteId(data["value"])
    raise ValueError(f"Unknown task id kind: {kind}")


def generate_local_id() -> LocalId:
    """Generate a device-local task identifier (local_<ms>_<random>)."""
    return LocalId(f"local_{_now_ms()}_{_random_suffix()}")


def generate_operation_id() -> str:
    return f"sync_{_now_ms()}_{_random_suffix()}"


class Recurrence(Enum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"


@dataclass
class Task:
    """A to-do item as cached on the device."""

    id: TaskId
    title: str
    created_at: str
    description: str | None = None
    scheduled_time: str | None = None  # "HH:MM"
    duration_minutes: int | None = None
    completed: bool = False
    completed_at: str | None = None
    sticker_id: str | None = None
    recurring: Recurrence = Recurrence.NONE

    def __post_init__(self) -> None:
        if self.completed and not self.completed_at:
            self.completed_at = utc_now_iso()

    def _fields(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "scheduledTime": self.scheduled_time,
            "durationMinutes": self.duration_minutes,
            "completed": self.completed,
            "completedAt": self.completed_at,
            "stickerId": self.sticker_id,
            "createdAt": self.created_at,
            "recurring": self.recurring.value,
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for local storage."""
        return {"id": self.id.to_dict(), **self._fields()}

    def to_api(self) -> dict[str, Any]:
        """Convert to the server's wire representation."""
        return {"id": self.id.value, **self._fields()}

    @classmethod
    def _build(cls, task_id: TaskId, data: dict[str, Any]) -> "Task":
        return cls(
            id=task_id,
            title=data["title"],
            created_at=data["createdAt"],
            description=data.get("description"),
            scheduled_time=data.get("scheduledTime"),
            duration_minutes=data.get("durationMinutes"),
            completed=bool(data.get("completed", False)),
            completed_at=data.get("completedAt"),
            sticker_id=data.get("stickerId"),
            recurring=Recurrence(data.get("recurring") or "none"),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Create from a stored dictionary."""
        return cls._build(task_id_from_dict(data["id"]), data)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Task":
        """Create from a server response. Server ids are always remote."""
        return cls._build(RemoteId(str(data["id"])), data)


@dataclass
class TaskDraft:
    """User input for a new task, before any identifier exists."""

    title: str
    description: str | None = None
    scheduled_time: str | None = None
    duration_minutes: int | None = None
    sticker_id: str | None = None
    recurring: Recurrence = Recurrence.NONE
    scheduled_date: str | None = None

    def __post_init__(self) -> None:
        if not self.title or not self.title.strip():
            raise ValueError("Task title is required")

    def to_payload(self) -> dict[str, Any]:
        """Body for POST /tasks."""
        payload: dict[str, Any] = {
            "title": self.title,
            "recurring": self.recurring.value,
        }
        if self.description:
            payload["description"] = self.description
        if self.scheduled_time:
            payload["scheduledTime"] = self.scheduled_time
        if self.duration_minutes:
            payload["durationMinutes"] = self.duration_minutes
        if self.sticker_id:
            payload["stickerId"] = self.sticker_id
        if self.scheduled_date:
            payload["scheduledDate"] = self.scheduled_date
        return payload

    def to_local_task(self, task_id: LocalId) -> Task:
        return Task(
            id=task_id,
            title=self.title,
            created_at=self.scheduled_date or date.today().isoformat(),
            description=self.description,
            scheduled_time=self.scheduled_time,
            duration_minutes=self.duration_minutes,
            sticker_id=self.sticker_id,
            recurring=self.recurring,
        )


@dataclass
class UserProgress:
    """Aggregate points, streak and sticker state for one user."""

    total_points: int = 0
    completed_tasks: int = 0
    current_streak: int = 0
    unlocked_stickers: list[str] = field(default_factory=list)
    timer_sessions_completed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalPoints": self.total_points,
            "completedTasks": self.completed_tasks,
            "currentStreak": self.current_streak,
            "unlockedStickers": list(self.unlocked_stickers),
            "timerSessionsCompleted": self.timer_sessions_completed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserProgress":
        return cls(
            total_points=int(data.get("totalPoints", 0)),
            completed_tasks=int(data.get("completedTasks", 0)),
            current_streak=int(data.get("currentStreak", 0)),
            unlocked_stickers=list(data.get("unlockedStickers", [])),
            timer_sessions_completed=int(data.get("timerSessionsCompleted", 0)),
        )


@dataclass
class TimerSession:
    """A focus-timer session as returned by the server."""

    id: str
    duration_minutes: int
    started_at: str
    completed_at: str | None = None
    task_id: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "TimerSession":
        return cls(
            id=str(data["id"]),
            duration_minutes=int(data["durationMinutes"]),
            started_at=data["startedAt"],
            completed_at=data.get("completedAt"),
            task_id=data.get("taskId"),
        )


class OperationKind(Enum):
    """Kinds of mutation that can wait in the sync queue."""

    CREATE_TASK = "CREATE_TASK"
    UPDATE_TASK = "UPDATE_TASK"
    DELETE_TASK = "DELETE_TASK"
    COMPLETE_TASK = "COMPLETE_TASK"
    TIMER_COMPLETE = "TIMER_COMPLETE"


@dataclass
class SyncOperation:
    """A mutation applied locally but not yet confirmed by the server."""

    id: str
    kind: OperationKind
    payload: dict[str, Any]
    timestamp: int  # epoch milliseconds
    target: TaskId | None = None  # task the operation acts on
    local_task_id: LocalId | None = None  # CREATE_TASK only

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.kind.value,
            "data": self.payload,
            "timestamp": self.timestamp,
            "target": self.target.to_dict() if self.target else None,
            "localTaskId": self.local_task_id.value if self.local_task_id else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncOperation":
        return cls(
            id=data["id"],
            kind=OperationKind(data["type"]),
            payload=data.get("data") or {},
            timestamp=int(data["timestamp"]),
            target=task_id_from_dict(data["target"]) if data.get("target") else None,
            local_task_id=(
                LocalId(data["localTaskId"]) if data.get("localTaskId") else None
            ),
        )

    @classmethod
    def new(
        cls,
        kind: OperationKind,
        payload: dict[str, Any],
        target: TaskId | None = None,
        local_task_id: LocalId | None = None,
    ) -> "SyncOperation":
        return cls(
            id=generate_operation_id(),
            kind=kind,
            payload=payload,
            timestamp=_now_ms(),
            target=target,
            local_task_id=local_task_id,
        )
