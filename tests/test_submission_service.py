import json

import httpx
import pytest
from remote_stub import BASE_URL, TOKEN, FakeRemote

from quickrank.core.exceptions import PreconditionError, SubmissionError
from quickrank.models.models import TaskKind
from quickrank.services.submission_service import SubmissionClient


def _submissions(remote, token=TOKEN):
    return SubmissionClient(remote.client(), base_url=BASE_URL, api_token=token)


@pytest.mark.asyncio
async def test_upload_cv_returns_receipt(inputs):
    remote = FakeRemote()

    receipt = await _submissions(remote).upload_cv(inputs.cv_archive)

    assert receipt.batch_task_id == "cv-1"
    assert receipt.total_files == 5
    request = remote.calls("POST", "/employer/quick-rank/upload-cv")[0]
    assert request.headers["Authorization"] == f"Bearer {TOKEN}"
    assert request.headers["Content-Type"].startswith("multipart/form-data")
    assert b'filename="cvs.zip"' in request.content


@pytest.mark.asyncio
async def test_upload_jd_returns_receipt(inputs):
    remote = FakeRemote()

    receipt = await _submissions(remote).upload_jd(inputs.job_description)

    assert receipt.batch_task_id == "jd-1"
    assert b"application/pdf" in remote.requests[0].content


@pytest.mark.asyncio
async def test_missing_token_fails_before_any_request(inputs):
    remote = FakeRemote()

    with pytest.raises(PreconditionError, match="Not authenticated"):
        await _submissions(remote, token="").upload_cv(inputs.cv_archive)
    with pytest.raises(PreconditionError):
        await _submissions(remote, token="").start_ranking("job-42", [])

    assert remote.requests == []


@pytest.mark.asyncio
async def test_unreadable_file_is_a_precondition_error(tmp_path):
    remote = FakeRemote()

    with pytest.raises(PreconditionError, match="Cannot read"):
        await _submissions(remote).upload_cv(tmp_path / "missing.zip")
    assert remote.requests == []


@pytest.mark.asyncio
async def test_non_2xx_names_the_step(inputs):
    remote = FakeRemote()
    remote.jd_upload = (413, {"success": False, "error": "File too large"})

    with pytest.raises(SubmissionError) as excinfo:
        await _submissions(remote).upload_jd(inputs.job_description)

    assert excinfo.value.step == "Job description upload"
    assert excinfo.value.status_code == 413
    assert excinfo.value.message == "Job description upload failed: File too large (HTTP 413)"


@pytest.mark.asyncio
async def test_success_false_envelope(inputs):
    remote = FakeRemote()
    remote.cv_upload = {"success": False, "error": "Archive contains no CVs"}

    with pytest.raises(SubmissionError, match="CV upload failed: Archive contains no CVs"):
        await _submissions(remote).upload_cv(inputs.cv_archive)


@pytest.mark.asyncio
async def test_non_json_body(inputs):
    remote = FakeRemote()
    remote.cv_upload = httpx.Response(502, text="<html>Bad gateway</html>")

    with pytest.raises(SubmissionError, match="CV upload failed with status 502"):
        await _submissions(remote).upload_cv(inputs.cv_archive)


@pytest.mark.asyncio
async def test_transport_error(inputs):
    remote = FakeRemote()
    remote.cv_upload = httpx.ConnectError("connection refused")

    with pytest.raises(SubmissionError, match="CV upload network error"):
        await _submissions(remote).upload_cv(inputs.cv_archive)


@pytest.mark.asyncio
async def test_receipt_without_batch_id_is_rejected(inputs):
    remote = FakeRemote()
    remote.cv_upload = {"success": True, "totalFiles": 3}

    with pytest.raises(SubmissionError, match="unexpected response"):
        await _submissions(remote).upload_cv(inputs.cv_archive)


@pytest.mark.asyncio
async def test_start_ranking_body_with_candidates():
    remote = FakeRemote()

    handle = await _submissions(remote).start_ranking("job-42", ["u1", "u2"])

    assert handle.id == "rank-1"
    assert handle.kind == TaskKind.SINGLE
    request = remote.calls("POST", "/ranking/job/job-42")[0]
    assert json.loads(request.content) == {
        "sync": False,
        "skipHardGate": True,
        "candidateIds": ["u1", "u2"],
    }


@pytest.mark.asyncio
async def test_start_ranking_without_candidates_omits_the_list():
    remote = FakeRemote()

    await _submissions(remote).start_ranking("job-42", [])

    body = json.loads(remote.requests[0].content)
    assert body == {"sync": False, "skipHardGate": True}


@pytest.mark.asyncio
async def test_start_ranking_without_task_id():
    remote = FakeRemote()
    remote.ranking_start = {"success": True}

    with pytest.raises(SubmissionError, match="Ranking start returned an unexpected response"):
        await _submissions(remote).start_ranking("job-42", ["u1"])
