# quickrank/services/submission_service.py
"""
Submission calls of the quick-rank pipeline: CV archive upload, job
description upload and ranking start.

Submissions are never retried. Any transport failure, non-2xx status,
``success=false`` envelope or malformed body raises SubmissionError naming
the step that failed.
"""

import asyncio
import mimetypes
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from quickrank.core.config import config
from quickrank.core.exceptions import PreconditionError, SubmissionError
from quickrank.core.setup_logging import setup_default_logging
from quickrank.models.models import CvUploadReceipt, JdUploadReceipt, TaskHandle, TaskKind

logger = setup_default_logging()

CV_UPLOAD_PATH = "/employer/quick-rank/upload-cv"
JD_UPLOAD_PATH = "/employer/quick-rank/upload-jd"
RANKING_PATH = "/ranking/job/{job_posting_id}"

_FALLBACK_MIME_TYPES = {
    ".zip": "application/zip",
    ".pdf": "application/pdf",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}


def _guess_mime_type(path: Path) -> str:
    mime_type, _ = mimetypes.guess_type(path.name)
    return mime_type or _FALLBACK_MIME_TYPES.get(path.suffix.lower(), "application/octet-stream")


class SubmissionClient:
    """
    Client for the three submission endpoints.

    Every call requires the bearer credential; a missing credential raises
    PreconditionError before any network call is made.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: Optional[str] = None,
        api_token: Optional[str] = None,
        upload_timeout: Optional[float] = None,
    ):
        self.client = client
        self.base_url = (base_url if base_url is not None else config.API_BASE_URL).rstrip("/")
        self.api_token = api_token if api_token is not None else config.API_TOKEN
        self.upload_timeout = (
            upload_timeout if upload_timeout is not None else config.UPLOAD_TIMEOUT_SECONDS
        )

    def _auth_headers(self) -> Dict[str, str]:
        if not self.api_token:
            raise PreconditionError("Not authenticated. Please sign in again.")
        return {
            "Accept": "application/json",
            "Authorization": f"Bearer {self.api_token}",
        }

    async def _post(self, step: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        """
        POST to a submission endpoint and return the decoded success envelope.

        Raises:
            PreconditionError: If no credential is configured
            SubmissionError: On any transport, status or payload failure
        """
        headers = self._auth_headers()
        url = f"{self.base_url}{path}"

        try:
            response = await self.client.post(url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise SubmissionError(step, f"{step} network error: {e}", original_error=e)

        try:
            payload = response.json()
        except ValueError:
            raise SubmissionError(
                step,
                f"{step} failed with status {response.status_code}",
                status_code=response.status_code,
            )

        if not response.is_success or not isinstance(payload, dict) or not payload.get("success"):
            detail = None
            if isinstance(payload, dict):
                detail = payload.get("error") or payload.get("detail")
            message = f"{step} failed: {detail}" if detail else f"{step} failed"
            if not response.is_success:
                message += f" (HTTP {response.status_code})"
            raise SubmissionError(step, message, status_code=response.status_code)

        return payload

    async def _upload(self, step: str, path_template: str, file_path: Path) -> Dict[str, Any]:
        # Fail on the credential before touching the file system
        self._auth_headers()

        loop = asyncio.get_running_loop()
        try:
            content = await loop.run_in_executor(None, file_path.read_bytes)
        except OSError as e:
            raise PreconditionError(f"Cannot read {file_path.name}: {e}", original_error=e)

        files = {"file": (file_path.name, content, _guess_mime_type(file_path))}
        timeout = httpx.Timeout(
            connect=10.0, read=self.upload_timeout, write=self.upload_timeout, pool=10.0
        )
        logger.info(f"{step}: sending {file_path.name} ({len(content)} bytes)")
        return await self._post(step, path_template, files=files, timeout=timeout)

    async def upload_cv(self, file_path: Path) -> CvUploadReceipt:
        """
        Upload the CV archive; the remote side starts the extraction batch.

        Returns:
            CvUploadReceipt: Extraction batch id and number of files in the archive
        """
        step = "CV upload"
        payload = await self._upload(step, CV_UPLOAD_PATH, file_path)
        try:
            return CvUploadReceipt(
                batch_task_id=payload.get("batchTaskId"),
                total_files=payload.get("totalFiles") or 0,
            )
        except ValidationError:
            raise SubmissionError(step, f"{step} returned an unexpected response: {payload!r}")

    async def upload_jd(self, file_path: Path) -> JdUploadReceipt:
        """
        Upload the job description; the remote side starts a one-item analysis batch.
        """
        step = "Job description upload"
        payload = await self._upload(step, JD_UPLOAD_PATH, file_path)
        try:
            return JdUploadReceipt(batch_task_id=payload.get("batchTaskId"))
        except ValidationError:
            raise SubmissionError(step, f"{step} returned an unexpected response: {payload!r}")

    async def start_ranking(self, job_posting_id: str, candidate_ids: List[str]) -> TaskHandle:
        """
        Start the asynchronous ranking job for a job posting.

        Args:
            job_posting_id: Job posting produced by the analysis phase
            candidate_ids: Candidates to rank; empty means the remote default population

        Returns:
            TaskHandle: Handle of the single ranking task
        """
        step = "Ranking start"
        body: Dict[str, Any] = {"sync": False, "skipHardGate": True}
        if candidate_ids:
            body["candidateIds"] = list(candidate_ids)

        path = RANKING_PATH.format(job_posting_id=quote(job_posting_id, safe=""))
        payload = await self._post(step, path, json=body)
        task_id = payload.get("taskId")
        if not isinstance(task_id, str) or not task_id:
            raise SubmissionError(step, f"{step} returned an unexpected response: {payload!r}")
        return TaskHandle(id=task_id, kind=TaskKind.SINGLE)
