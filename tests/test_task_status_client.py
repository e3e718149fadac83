import httpx
import pytest

from quickrank.models.models import BatchTaskStatus, SingleTaskStatus, TaskHandle, TaskKind
from quickrank.services.task_status_client import (
    TaskStatusClient,
    normalize_batch_status,
    normalize_single_status,
)

BATCH = TaskHandle(id="cv-1", kind=TaskKind.BATCH)
SINGLE = TaskHandle(id="rank-1", kind=TaskKind.SINGLE)


class FakeResponse:
    def __init__(self, status_code, json_data=None, raise_on_json=False):
        self.status_code = status_code
        self._json = json_data
        self._raise_on_json = raise_on_json

    @property
    def is_success(self):
        return 200 <= self.status_code < 300

    def json(self):
        if self._raise_on_json:
            raise ValueError("not json")
        return self._json


class FakeAsyncClient:
    def __init__(self, responder):
        self.responder = responder
        self.calls = []

    async def get(self, url, **kwargs):
        self.calls.append(("GET", url, kwargs))
        return await self.responder()

    async def delete(self, url, **kwargs):
        self.calls.append(("DELETE", url, kwargs))
        return await self.responder()


def _client(responder, token="tok"):
    fake = FakeAsyncClient(responder)
    return fake, TaskStatusClient(fake, base_url="http://remote.test/api/", api_token=token)


def test_single_status_running_with_progress():
    status = normalize_single_status(
        {
            "success": True,
            "data": {
                "ready": False,
                "progress": {"status": "ranking", "progress_percent": 40, "message": "Round 2"},
            },
        }
    )
    assert isinstance(status, SingleTaskStatus)
    assert not status.ready
    assert status.progress.progress_percent == 40
    assert status.progress.message == "Round 2"


def test_single_status_ready_success():
    status = normalize_single_status(
        {"success": True, "data": {"ready": True, "result": {"success": True, "jobTitle": "X"}}}
    )
    assert status.ready and status.error is None
    assert status.result["jobTitle"] == "X"


def test_single_status_error_precedence():
    from_result = normalize_single_status(
        {
            "success": True,
            "data": {
                "ready": True,
                "result": {"success": False, "error": "No candidates"},
                "error": "outer",
            },
        }
    )
    from_envelope = normalize_single_status(
        {"success": True, "data": {"ready": True, "error": "Worker lost"}}
    )
    generic = normalize_single_status({"success": True, "data": {"ready": True}})

    assert from_result.error == "No candidates"
    assert from_envelope.error == "Worker lost"
    assert generic.error == "Task failed"


def test_single_status_malformed_is_transient():
    assert normalize_single_status({"success": False, "data": {"ready": True}}) is None
    assert normalize_single_status({"success": True, "data": {"ready": "yes"}}) is None
    assert normalize_single_status({"success": True}) is None
    assert normalize_single_status(["not", "a", "dict"]) is None


def test_single_status_ignores_odd_progress():
    status = normalize_single_status(
        {"success": True, "data": {"ready": False, "progress": {"progress_percent": 250}}}
    )
    assert status is not None
    assert status.progress is None


def test_batch_status_normalization():
    status = normalize_batch_status(
        {
            "success": True,
            "ready": True,
            "completed": 2,
            "total": 2,
            "failed": 1,
            "results": [
                {"task_id": "a", "status": "SUCCESS", "result": {"success": True, "user_id": "u1"}},
                {"task_id": "b", "status": "FAILURE", "error": "bad pdf"},
            ],
        }
    )
    assert isinstance(status, BatchTaskStatus)
    assert status.ready
    assert [item.succeeded for item in status.results] == [True, False]


def test_batch_status_with_odd_failed_item_stays_ready():
    status = normalize_batch_status(
        {
            "success": True,
            "ready": True,
            "completed": 3,
            "total": 3,
            "failed": 1,
            "results": [
                {"task_id": "a", "status": "SUCCESS", "result": {"success": True, "user_id": "u1"}},
                {"task_id": "b", "status": "SUCCESS", "result": {"success": True, "user_id": "u2"}},
                {
                    "task_id": "c",
                    "status": "FAILURE",
                    "result": None,
                    "error": {"type": "BadZipFile", "message": "File is not a zip file"},
                },
            ],
        }
    )
    assert status is not None
    assert status.ready
    assert not status.all_failed
    assert [item.result_field("user_id") for item in status.results if item.succeeded] == [
        "u1",
        "u2",
    ]
    assert "BadZipFile" in status.results[2].error


def test_batch_status_inconsistent_counts_never_ready():
    assert normalize_batch_status(
        {"success": True, "ready": True, "completed": 3, "total": 5, "failed": 0}
    ) is None
    assert normalize_batch_status(
        {"success": True, "ready": False, "completed": 2, "total": 5, "failed": 4}
    ) is None
    assert normalize_batch_status({"success": True, "ready": True}) is None
    assert normalize_batch_status(
        {"success": False, "ready": True, "completed": 1, "total": 1}
    ) is None


@pytest.mark.asyncio
async def test_query_batch_status_uses_batch_flag_and_bearer():
    async def responder():
        return FakeResponse(200, {"success": True, "ready": False, "completed": 1, "total": 5})

    fake, client = _client(responder)
    status = await client.query_status(BATCH)

    assert status.completed == 1
    method, url, kwargs = fake.calls[0]
    assert method == "GET"
    assert url == "http://remote.test/api/tasks/cv-1"
    assert kwargs["params"] == {"batch": "true"}
    assert kwargs["headers"]["Authorization"] == "Bearer tok"


@pytest.mark.asyncio
async def test_query_single_status_without_token_sends_no_auth_header():
    async def responder():
        return FakeResponse(200, {"success": True, "data": {"ready": False}})

    fake, client = _client(responder, token="")
    await client.query_status(SINGLE)

    _, _, kwargs = fake.calls[0]
    assert kwargs["params"] is None
    assert "Authorization" not in kwargs["headers"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        FakeResponse(502, {"success": True, "ready": True, "completed": 1, "total": 1}),
        FakeResponse(200, raise_on_json=True),
        FakeResponse(200, {"success": True, "ready": "maybe", "completed": 1, "total": 1}),
    ],
)
async def test_query_status_transient_failures(response):
    async def responder():
        return response

    _, client = _client(responder)
    assert await client.query_status(BATCH) is None


@pytest.mark.asyncio
async def test_query_status_transport_error_is_transient():
    async def responder():
        raise httpx.ConnectError("connection refused")

    _, client = _client(responder)
    assert await client.query_status(SINGLE) is None


@pytest.mark.asyncio
async def test_revoke():
    async def ok():
        return FakeResponse(200, {"success": True})

    async def refused():
        return FakeResponse(404, {"success": False})

    async def broken():
        raise httpx.ReadTimeout("timed out")

    fake, client = _client(ok)
    assert await client.revoke(SINGLE) is True
    assert fake.calls[0][:2] == ("DELETE", "http://remote.test/api/tasks/rank-1")

    _, client = _client(refused)
    assert await client.revoke(SINGLE) is False

    _, client = _client(broken)
    assert await client.revoke(SINGLE) is False
