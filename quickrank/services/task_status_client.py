# quickrank/services/task_status_client.py
"""
Status queries against the remote task system.

Normalizes the two status endpoint shapes (single task, batch task) into
SingleTaskStatus / BatchTaskStatus. Any transport failure, non-2xx status,
``success=false`` envelope or malformed payload yields ``None``: a transient
marker the poller retries on its next tick. A malformed response is never
reported as ready.
"""

from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from quickrank.core.config import config
from quickrank.core.setup_logging import ContextAdapter, setup_default_logging
from quickrank.models.models import (
    BatchTaskStatus,
    SingleTaskStatus,
    TaskHandle,
    TaskKind,
    TaskProgress,
    TaskStatus,
)

logger = setup_default_logging()


def _parse_progress(raw: Any) -> Optional[TaskProgress]:
    if not isinstance(raw, dict):
        return None
    try:
        return TaskProgress.model_validate(raw)
    except ValidationError:
        # Progress is informational only; an odd payload must not hide the status
        return None


def normalize_single_status(payload: Any) -> Optional[SingleTaskStatus]:
    """
    Normalize ``{success, data: {ready, progress?, result?, error?}}``.

    A ready task succeeds only when its result carries a truthy ``success``
    flag; otherwise the result's own error, the envelope error or a generic
    message becomes the task error.
    """
    if not isinstance(payload, dict) or payload.get("success") is not True:
        return None
    data = payload.get("data")
    if not isinstance(data, dict) or not isinstance(data.get("ready"), bool):
        return None

    progress = _parse_progress(data.get("progress"))
    if not data["ready"]:
        return SingleTaskStatus(ready=False, progress=progress)

    result = data.get("result")
    if isinstance(result, dict) and result.get("success"):
        return SingleTaskStatus(ready=True, progress=progress, result=result)

    error = None
    if isinstance(result, dict) and result.get("error"):
        error = str(result["error"])
    elif data.get("error"):
        error = str(data["error"])
    return SingleTaskStatus(ready=True, progress=progress, error=error or "Task failed")


def normalize_batch_status(payload: Any) -> Optional[BatchTaskStatus]:
    """Normalize ``{success, ready, completed, total, failed, results?}``."""
    if not isinstance(payload, dict) or payload.get("success") is not True:
        return None
    try:
        return BatchTaskStatus.model_validate(
            {
                "ready": payload.get("ready"),
                "completed": payload.get("completed"),
                "total": payload.get("total"),
                "failed": payload.get("failed") or 0,
                "results": payload.get("results") or [],
            }
        )
    except ValidationError as e:
        logger.warning(f"Malformed batch status payload ignored: {e.error_count()} error(s)")
        return None


class TaskStatusClient:
    """
    Issues one status query per call for a task handle.

    The HTTP client is owned by the caller, which keeps connection pooling
    shared with the submission client.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: Optional[str] = None,
        api_token: Optional[str] = None,
    ):
        self.client = client
        self.base_url = (base_url if base_url is not None else config.API_BASE_URL).rstrip("/")
        self.api_token = api_token if api_token is not None else config.API_TOKEN

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    def status_url(self, handle: TaskHandle) -> str:
        return f"{self.base_url}/tasks/{quote(handle.id, safe='')}"

    async def query_status(self, handle: TaskHandle) -> Optional[TaskStatus]:
        """
        Query the status of one task.

        Args:
            handle: Task to query; its kind selects the endpoint shape

        Returns:
            The normalized status, or None on any transient failure
        """
        log = ContextAdapter(logger, {"task_id": handle.id})
        params = {"batch": "true"} if handle.kind == TaskKind.BATCH else None
        try:
            response = await self.client.get(
                self.status_url(handle), params=params, headers=self._headers()
            )
        except httpx.HTTPError as e:
            log.warning(f"Status query failed: {e!r}")
            return None

        if not response.is_success:
            log.warning(f"Status query returned {response.status_code}")
            return None

        try:
            payload = response.json()
        except ValueError:
            log.warning("Status query returned a non-JSON body")
            return None

        if handle.kind == TaskKind.BATCH:
            status: Optional[TaskStatus] = normalize_batch_status(payload)
        else:
            status = normalize_single_status(payload)

        if status is None:
            log.debug("Ignoring unusable status payload")
        return status

    async def revoke(self, handle: TaskHandle) -> bool:
        """
        Ask the remote side to cancel a task. Best effort.

        Returns:
            bool: True if the remote side acknowledged the cancellation
        """
        log = ContextAdapter(logger, {"task_id": handle.id})
        try:
            response = await self.client.delete(self.status_url(handle), headers=self._headers())
        except httpx.HTTPError as e:
            log.warning(f"Revoking remote task failed: {e!r}")
            return False

        if response.is_success:
            log.info("Remote task revoked")
            return True
        log.warning(f"Revoking remote task returned {response.status_code}")
        return False
