"""Remote task store interface and its HTTP client.

The store owns persistence, recurrence materialization and XP bookkeeping.
Clients talk to it through ``RemoteTaskStore``; ``HttpTaskStore`` speaks the
``/v1/daily-tasks`` REST API with camelCase JSON and a bearer token.
"""

import logging
from typing import Any, Protocol

import httpx

from questboard.core.config import constants, settings
from questboard.core.errors import StaleStateError, TaskValidationError, TransportError
from questboard.domain.task import Task, TaskDraft, TaskFilters, TaskUpdate
from questboard.models.service_models import CompletionResult, Pagination, TaskSet, TaskStats


logger = logging.getLogger(__name__)


class RemoteTaskStore(Protocol):
    """Operations the engine needs from the store that owns task state."""

    async def list_tasks(self, user_id: str, filters: TaskFilters) -> TaskSet: ...

    async def reset_day(self, user_id: str) -> TaskSet:
        """Roll the user's tasks over to today; idempotent per user per local day."""
        ...

    async def complete_task(self, task_id: str) -> CompletionResult: ...

    async def uncomplete_task(self, task_id: str) -> None: ...

    async def create_task(self, user_id: str, draft: TaskDraft) -> Task: ...

    async def update_task(self, task_id: str, update: TaskUpdate) -> Task: ...

    async def delete_task(self, task_id: str) -> None: ...


def _unwrap(payload: Any, *keys: str) -> Any:
    """Strip a ``{"data": ...}`` style envelope if the server sent one."""
    if isinstance(payload, dict):
        for key in keys:
            if key in payload:
                return payload[key]
    return payload


def parse_task_set(payload: Any) -> TaskSet:
    """Build a TaskSet from a list/reset response.

    Accepts a flat ``tasks`` array, a ``tasksByDate`` grouping, or both.
    """
    body = _unwrap(payload, "data") or {}
    grouped = {
        key: [Task.model_validate(item) for item in items] for key, items in body.get("tasksByDate", {}).items()
    }
    if "tasks" in body:
        tasks = [Task.model_validate(item) for item in body["tasks"]]
    else:
        tasks = [task for items in grouped.values() for task in items]

    return TaskSet(
        tasks=tasks,
        tasks_by_date=grouped,
        stats=TaskStats.model_validate(body.get("stats", {})),
        pagination=Pagination.model_validate(body.get("pagination", {})),
    )


class HttpTaskStore:
    """``RemoteTaskStore`` over the daily-tasks REST API.

    A fresh ``httpx.AsyncClient`` is opened per call with the configured
    timeout, so every remote call is bounded.
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or settings.api_base_url).rstrip("/")
        self._token = token if token is not None else settings.api_token
        self._timeout = timeout if timeout is not None else settings.remote_timeout_seconds
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        transition: bool = False,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        """Send one request and map failures onto the engine's error taxonomy.

        Args:
            method: HTTP method
            path: Path below the base URL
            transition: Whether this is a complete/uncomplete call; client
                errors then mean the task is not in the assumed state
            params: Query parameters
            json: JSON body

        Raises:
            TransportError: Timeout, connection failure or 5xx response
            StaleStateError: Transition rejected because the task's state changed
            TaskValidationError: Create/update payload rejected
            KeyError: Task not found outside a transition
        """
        url = f"{self._base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.request(method, url, params=params, json=json, headers=self._headers())
        except httpx.TimeoutException as e:
            msg = f"{method} {path} timed out after {self._timeout}s"
            raise TransportError(msg) from e
        except httpx.RequestError as e:
            msg = f"{method} {path} connection error: {e}"
            raise TransportError(msg) from e

        if response.is_success:
            return response.json() if response.content else None

        status = response.status_code
        detail = _error_detail(response)
        logger.warning("Remote store rejected %s %s", method, path, extra={"status": status, "detail": detail})

        if status >= constants.HTTP_SERVER_ERROR:
            msg = f"{method} {path} failed with {status}: {detail}"
            raise TransportError(msg)
        if transition and status in (constants.HTTP_BAD_REQUEST, constants.HTTP_NOT_FOUND, constants.HTTP_CONFLICT):
            raise StaleStateError(detail)
        if status == constants.HTTP_NOT_FOUND:
            raise KeyError(path)
        if status == constants.HTTP_CONFLICT:
            raise StaleStateError(detail)
        raise TaskValidationError(detail)

    async def list_tasks(self, user_id: str, filters: TaskFilters) -> TaskSet:
        payload = await self._request("GET", "/v1/daily-tasks", params=filters.to_query_params())
        return parse_task_set(payload)

    async def reset_day(self, user_id: str) -> TaskSet:
        payload = await self._request("POST", f"/v1/daily-tasks/reset-day/{user_id}")
        return parse_task_set(payload)

    async def complete_task(self, task_id: str) -> CompletionResult:
        payload = await self._request("POST", f"/v1/daily-tasks/{task_id}/complete", transition=True)
        return CompletionResult.model_validate(_unwrap(payload, "data") or {})

    async def uncomplete_task(self, task_id: str) -> None:
        await self._request("PUT", f"/v1/daily-tasks/{task_id}", transition=True, json={"completedToday": False})

    async def create_task(self, user_id: str, draft: TaskDraft) -> Task:
        payload = await self._request(
            "POST", "/v1/daily-tasks", json=draft.model_dump(mode="json", by_alias=True, exclude_none=True)
        )
        return Task.model_validate(_unwrap(payload, "task", "data"))

    async def update_task(self, task_id: str, update: TaskUpdate) -> Task:
        payload = await self._request(
            "PUT", f"/v1/daily-tasks/{task_id}", json=update.model_dump(mode="json", by_alias=True, exclude_unset=True)
        )
        return Task.model_validate(_unwrap(payload, "task", "data"))

    async def delete_task(self, task_id: str) -> None:
        await self._request("DELETE", f"/v1/daily-tasks/{task_id}")


def _error_detail(response: httpx.Response) -> str:
    """Human-readable reason from an error response body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)
    return str(body)
