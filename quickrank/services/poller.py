# quickrank/services/poller.py
"""
Polling of one remote task until it reports ready, fails, or is cancelled.
"""

from typing import Any, Callable, Dict, Optional

from quickrank.core.cancellation import CancellationToken
from quickrank.core.config import config
from quickrank.core.exceptions import PipelineCancelled, TaskFailedError
from quickrank.core.setup_logging import ContextAdapter, setup_default_logging
from quickrank.models.models import BatchTaskStatus, TaskHandle, TaskKind, TaskStatus
from quickrank.services.task_status_client import TaskStatusClient

logger = setup_default_logging()

ReadyCallback = Callable[[TaskStatus], None]
FailedCallback = Callable[[str], None]
ProgressCallback = Callable[[TaskStatus], None]


def default_interval(kind: TaskKind) -> float:
    """Batch jobs run longer and return larger payloads, so they are polled less often."""
    if kind == TaskKind.BATCH:
        return config.BATCH_POLL_INTERVAL_SECONDS
    return config.SINGLE_POLL_INTERVAL_SECONDS


class Poller:
    """
    Polls one task handle.

    The first query is issued immediately, later ones after a fixed interval.
    A new query is only scheduled once the previous one resolved, so at most
    one query is in flight. Once ``stop()`` is called or the token is
    cancelled, no callback fires again.

    Attributes:
        handle: Task being polled
        query_count: Number of status queries that completed
    """

    def __init__(
        self,
        status_client: TaskStatusClient,
        handle: TaskHandle,
        token: CancellationToken,
        interval: Optional[float] = None,
        max_consecutive_failures: Optional[int] = None,
        log: Optional[ContextAdapter] = None,
    ):
        self.status_client = status_client
        self.handle = handle
        self.token = token
        self.interval = interval if interval is not None else default_interval(handle.kind)
        self.max_consecutive_failures = (
            max_consecutive_failures
            if max_consecutive_failures is not None
            else config.MAX_CONSECUTIVE_POLL_FAILURES
        )
        self.query_count = 0
        self._stopped = False
        base_log = log if log is not None else ContextAdapter(logger, {})
        self.log = base_log.bind(task_id=handle.id)

    @property
    def active(self) -> bool:
        return not self._stopped and not self.token.cancelled

    def stop(self) -> None:
        """Stop the schedule synchronously; pending responses are discarded."""
        self._stopped = True

    async def poll(
        self,
        on_ready: ReadyCallback,
        on_failed: FailedCallback,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        """
        Poll until the task is ready, has failed, or polling is cancelled.

        Args:
            on_ready: Called once with the terminal status of a successful task
            on_failed: Called once with a human-readable reason
            on_progress: Called with every non-terminal status
        """
        consecutive_failures = 0

        while self.active:
            try:
                status = await self.token.run(self.status_client.query_status(self.handle))
            except PipelineCancelled:
                return

            if not self.active:
                # Response arrived after stop/cancel: stale, discard it
                return
            self.query_count += 1

            if status is None:
                consecutive_failures += 1
                self.log.debug(f"Status unavailable ({consecutive_failures} in a row)")
                if self.max_consecutive_failures and (
                    consecutive_failures >= self.max_consecutive_failures
                ):
                    self._stopped = True
                    self.log.error(
                        f"Giving up after {consecutive_failures} failed status queries"
                    )
                    on_failed(
                        f"Task status unavailable after {consecutive_failures} consecutive attempts"
                    )
                    return
            else:
                consecutive_failures = 0
                if status.ready:
                    self._stopped = True
                    self._dispatch(status, on_ready, on_failed)
                    return
                if on_progress is not None:
                    on_progress(status)

            if await self.token.sleep(self.interval):
                return

    def _dispatch(
        self, status: TaskStatus, on_ready: ReadyCallback, on_failed: FailedCallback
    ) -> None:
        if isinstance(status, BatchTaskStatus):
            # A batch is a failure only when every item failed; partial failures
            # are handed over and filtered by the caller.
            if status.all_failed:
                on_failed(f"All {status.failed} files failed to process")
            else:
                if status.failed:
                    self.log.warning(
                        f"Batch finished with {status.failed}/{status.total} failed items"
                    )
                on_ready(status)
            return

        if status.error is not None:
            on_failed(status.error)
        else:
            on_ready(status)

    async def wait(self, on_progress: Optional[ProgressCallback] = None) -> TaskStatus:
        """
        Awaitable form of ``poll``.

        Returns:
            The terminal status of a successful task

        Raises:
            TaskFailedError: If the task failed
            PipelineCancelled: If polling was cancelled or stopped first
        """
        outcome: Dict[str, Any] = {}

        await self.poll(
            on_ready=lambda status: outcome.setdefault("status", status),
            on_failed=lambda reason: outcome.setdefault("error", reason),
            on_progress=on_progress,
        )

        if "status" in outcome:
            status: TaskStatus = outcome["status"]
            return status
        if "error" in outcome:
            raise TaskFailedError(self.handle.id, outcome["error"])
        raise PipelineCancelled()
