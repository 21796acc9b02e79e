"""Async client for the task, progress and timer REST endpoints."""

import asyncio
import logging
from typing import Any

import httpx

from ..config import ApiConfig
from ..errors import ApiError, TransientApiError, UnauthorizedError
from ..models import Task, TimerSession, UserProgress

logger = logging.getLogger(__name__)


class RemoteApi:
    """Thin wrapper over the backend's REST API.

    Connection errors, timeouts and 5xx responses are retried with linear
    backoff and then raised as TransientApiError. A 401 raises
    UnauthorizedError immediately; any other 4xx raises ApiError.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        max_retries: int = 2,
        retry_backoff_seconds: float = 1.0,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the API client.

        Args:
            base_url: API root (e.g., "http://localhost:5000/api").
            timeout: Per-request timeout in seconds.
            max_retries: Attempts per request before giving up.
            retry_backoff_seconds: Delay unit; attempt n waits n units.
            token: Optional bearer token sent with every request.
            transport: Optional httpx transport (used by tests).
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_backoff_seconds = retry_backoff_seconds
        self.token = token
        self._transport = transport

    @classmethod
    def from_config(
        cls,
        config: ApiConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "RemoteApi":
        return cls(
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=config.max_retries,
            retry_backoff_seconds=config.retry_backoff_seconds,
            token=config.token,
            transport=transport,
        )

    def _client(self) -> httpx.AsyncClient:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=headers,
            transport=self._transport,
        )

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        json_data: Any = None,
    ) -> Any:
        """Make an HTTP request, retrying transient failures.

        Args:
            method: HTTP method (GET, POST, PATCH, DELETE).
            path: URL path relative to base_url.
            json_data: Optional JSON body.

        Returns:
            Decoded JSON body, or None for an empty response.
        """
        last_error = "no attempts made"

        async with self._client() as client:
            for attempt in range(1, self.max_retries + 1):
                try:
                    response = await client.request(method, path, json=json_data)
                except httpx.TimeoutException:
                    last_error = f"{method} {path} timed out"
                    logger.warning(f"{last_error}, attempt {attempt}/{self.max_retries}")
                except httpx.TransportError as e:
                    last_error = f"{method} {path} failed: {e}"
                    logger.warning(f"{last_error}, attempt {attempt}/{self.max_retries}")
                else:
                    if response.is_success:
                        if response.status_code == 204 or not response.content:
                            return None
                        return response.json()

                    if response.status_code == 401:
                        raise UnauthorizedError()

                    if response.status_code < 500:
                        # Client error, don't retry
                        raise ApiError(response.status_code, response.text)

                    last_error = f"Server error {response.status_code}"
                    logger.warning(
                        f"{last_error} for {method} {path}, "
                        f"attempt {attempt}/{self.max_retries}"
                    )

                if attempt < self.max_retries:
                    await asyncio.sleep(self.retry_backoff_seconds * attempt)

        raise TransientApiError(None, last_error)

    # ==================== Tasks ====================

    async def list_tasks(self) -> list[Task]:
        data = await self._request_with_retry("GET", "/tasks")
        return [Task.from_api(t) for t in data or []]

    async def create_task(self, payload: dict[str, Any]) -> Task:
        data = await self._request_with_retry("POST", "/tasks", payload)
        return Task.from_api(data)

    async def update_task(self, task_id: str, updates: dict[str, Any]) -> Task:
        data = await self._request_with_retry("PATCH", f"/tasks/{task_id}", updates)
        return Task.from_api(data)

    async def delete_task(self, task_id: str) -> None:
        await self._request_with_retry("DELETE", f"/tasks/{task_id}")

    async def complete_task(self, task_id: str) -> Task:
        data = await self._request_with_retry("POST", f"/tasks/{task_id}/complete")
        return Task.from_api(data)

    # ==================== Progress & timer ====================

    async def get_progress(self) -> UserProgress:
        data = await self._request_with_retry("GET", "/progress")
        return UserProgress.from_dict(data or {})

    async def complete_timer(
        self,
        duration_minutes: int,
        task_id: str | None = None,
    ) -> tuple[TimerSession, UserProgress]:
        """Record a finished focus-timer session.

        Returns:
            Tuple of (completed session, refreshed progress).
        """
        body: dict[str, Any] = {"durationMinutes": duration_minutes}
        if task_id:
            body["taskId"] = task_id
        data = await self._request_with_retry("POST", "/timer/complete", body)
        return (
            TimerSession.from_api(data["session"]),
            UserProgress.from_dict(data.get("progress") or {}),
        )

    async def ping(self) -> bool:
        """Check whether the server is reachable.

        Any HTTP answer counts, including 401: the network is up even if
        the session is not.
        """
        try:
            async with self._client() as client:
                await client.get("/progress")
            return True
        except httpx.TransportError as e:
            logger.debug(f"Ping to {self.base_url} failed: {e}")
            return False
