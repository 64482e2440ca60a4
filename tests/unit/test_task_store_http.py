"""Unit tests for the HTTP task store client."""

import json
from datetime import datetime

import httpx
import pytest

from questboard.core.errors import (
    ErrorCode,
    StaleStateError,
    TaskValidationError,
    TransportError,
    classify_error_with_response,
)
from questboard.domain.task import TaskCategory, TaskDraft, TaskFilters, TaskUpdate, TaskView
from questboard.services.task_store import HttpTaskStore, parse_task_set
from tests.unit.mocks import daily_rule


BASE_URL = "https://tasks.example.test/api"


def task_payload(task_id: str = "abc", **overrides) -> dict:
    payload = {
        "_id": task_id,
        "title": "Drink water",
        "category": "health",
        "xpReward": 10,
        "completedToday": False,
        "currentStreak": 2,
    }
    payload.update(overrides)
    return payload


class Recorder:
    """MockTransport handler that records requests and replies from a script."""

    def __init__(self, *responses):
        self.requests: list[httpx.Request] = []
        self._responses = list(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def store(self, **kwargs) -> HttpTaskStore:
        options = {"base_url": BASE_URL, "token": "secret-token", "timeout": 2.0, **kwargs}
        return HttpTaskStore(transport=httpx.MockTransport(self), **options)


@pytest.mark.unit
class TestParseTaskSet:
    """Tests for parse_task_set."""

    def test_flat_tasks_with_envelope(self):
        task_set = parse_task_set(
            {
                "data": {
                    "tasks": [task_payload("a"), task_payload("b")],
                    "stats": {"total": 2, "xpAvailable": 20},
                    "pagination": {"page": 1, "limit": 20, "total": 2, "pages": 1},
                }
            }
        )

        assert [task.id for task in task_set.tasks] == ["a", "b"]
        assert task_set.tasks[0].xp_reward == 10
        assert task_set.stats.xp_available == 20
        assert task_set.pagination.total == 2

    def test_tasks_by_date_is_flattened(self):
        task_set = parse_task_set(
            {
                "tasksByDate": {
                    "2024-05-06": [task_payload("a", deadline="2024-05-06T18:00:00")],
                    "no-deadline": [task_payload("b")],
                }
            }
        )

        assert [task.id for task in task_set.tasks] == ["a", "b"]
        assert list(task_set.tasks_by_date) == ["2024-05-06", "no-deadline"]

    def test_empty_body(self):
        assert parse_task_set(None).tasks == []


@pytest.mark.unit
class TestHttpTaskStore:
    """Tests for HttpTaskStore requests and error mapping."""

    async def test_list_tasks_sends_filters_and_bearer_token(self):
        recorder = Recorder(httpx.Response(200, json={"tasks": [task_payload()]}))

        task_set = await recorder.store().list_tasks(
            "user-1", TaskFilters(view=TaskView.TODAY, category=TaskCategory.HEALTH, search="water")
        )

        [request] = recorder.requests
        assert request.method == "GET"
        assert request.url.path == "/api/v1/daily-tasks"
        assert request.url.params["view"] == "today"
        assert request.url.params["category"] == "health"
        assert request.url.params["search"] == "water"
        assert request.headers["Authorization"] == "Bearer secret-token"
        assert task_set.tasks[0].current_streak == 2

    async def test_no_token_sends_no_authorization_header(self):
        recorder = Recorder(httpx.Response(200, json={"tasks": []}))

        await recorder.store(token="").list_tasks("user-1", TaskFilters())

        assert "Authorization" not in recorder.requests[0].headers

    async def test_reset_day_posts_to_user_path(self):
        recorder = Recorder(httpx.Response(200, json={"data": {"tasks": [task_payload()]}}))

        task_set = await recorder.store().reset_day("user-1")

        assert recorder.requests[0].method == "POST"
        assert recorder.requests[0].url.path == "/api/v1/daily-tasks/reset-day/user-1"
        assert len(task_set.tasks) == 1

    async def test_complete_returns_xp(self):
        recorder = Recorder(httpx.Response(200, json={"data": {"xpEarned": 30}}))

        result = await recorder.store().complete_task("abc")

        assert recorder.requests[0].url.path == "/api/v1/daily-tasks/abc/complete"
        assert result.xp_earned == 30

    async def test_uncomplete_clears_completed_today(self):
        recorder = Recorder(httpx.Response(204))

        await recorder.store().uncomplete_task("abc")

        request = recorder.requests[0]
        assert request.method == "PUT"
        assert json.loads(request.content) == {"completedToday": False}

    @pytest.mark.parametrize("status", [400, 404, 409])
    async def test_rejected_transition_is_stale(self, status):
        recorder = Recorder(httpx.Response(status, json={"message": "Task already completed today"}))

        with pytest.raises(StaleStateError, match="Task already completed today"):
            await recorder.store().complete_task("abc")

    async def test_server_error_is_transport(self):
        recorder = Recorder(httpx.Response(503, text="Service Unavailable"))

        with pytest.raises(TransportError, match="failed with 503"):
            await recorder.store().complete_task("abc")

    async def test_timeout_is_transport_and_classified_as_timeout(self):
        recorder = Recorder(httpx.ReadTimeout("read timed out"))

        with pytest.raises(TransportError) as exc_info:
            await recorder.store().reset_day("user-1")

        assert classify_error_with_response(exc_info.value).code == ErrorCode.ERR_TIMEOUT

    async def test_connection_failure_is_transport(self):
        recorder = Recorder(httpx.ConnectError("connection refused"))

        with pytest.raises(TransportError) as exc_info:
            await recorder.store().list_tasks("user-1", TaskFilters())

        assert classify_error_with_response(exc_info.value).code == ErrorCode.ERR_NETWORK_ERROR

    async def test_create_sends_camel_case_body(self):
        recorder = Recorder(httpx.Response(201, json={"task": task_payload("new", title="Stretch")}))
        draft = TaskDraft(
            title="Stretch",
            category=TaskCategory.FITNESS,
            xp_reward=25,
            deadline=datetime(2024, 5, 6, 18, 0),
            recurrence=daily_rule(interval=2),
        )

        task = await recorder.store().create_task("user-1", draft)

        body = json.loads(recorder.requests[0].content)
        assert body["xpReward"] == 25
        assert body["deadline"] == "2024-05-06T18:00:00"
        assert body["recurrence"]["pattern"]["interval"] == 2
        assert task.id == "new"

    async def test_update_sends_only_set_fields(self):
        recorder = Recorder(httpx.Response(200, json={"data": task_payload(title="Renamed")}))

        task = await recorder.store().update_task("abc", TaskUpdate(title="Renamed"))

        assert json.loads(recorder.requests[0].content) == {"title": "Renamed"}
        assert task.title == "Renamed"

    async def test_invalid_payload_is_validation_error(self):
        recorder = Recorder(httpx.Response(422, json={"error": "XP reward cannot exceed 1000"}))

        with pytest.raises(TaskValidationError, match="cannot exceed 1000"):
            await recorder.store().update_task("abc", TaskUpdate(xp_reward=5000))

    async def test_delete_missing_task_raises_key_error(self):
        recorder = Recorder(httpx.Response(404, json={"message": "Task not found"}))

        with pytest.raises(KeyError):
            await recorder.store().delete_task("abc")
