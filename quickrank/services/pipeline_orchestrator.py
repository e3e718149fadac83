# quickrank/services/pipeline_orchestrator.py
"""
Pipeline orchestrator for quick-rank runs.

Drives the fixed sequence upload -> CV extraction -> job description analysis
-> ranking against the remote task system, owning the pipeline run, its
cancellation token and the phase state machine.
"""

import asyncio
import uuid
from pathlib import Path
from typing import Any, Callable, List, Optional, Set, cast

import httpx

from quickrank.core.cancellation import CancellationToken
from quickrank.core.config import config
from quickrank.core.exceptions import (
    ErrorCode,
    PipelineBusyError,
    PipelineCancelled,
    PipelineError,
    PreconditionError,
    TaskFailedError,
)
from quickrank.core.phases import PhaseStateMachine
from quickrank.core.setup_logging import ContextAdapter, setup_default_logging
from quickrank.models.models import (
    BatchTaskStatus,
    Phase,
    PipelineInputs,
    PipelineRun,
    RankingResult,
    SingleTaskStatus,
    TaskHandle,
    TaskKind,
    TaskStatus,
)
from quickrank.services.poller import Poller
from quickrank.services.submission_service import SubmissionClient
from quickrank.services.task_status_client import TaskStatusClient

logger = setup_default_logging()

CV_ARCHIVE_SUFFIXES = (".zip",)
JOB_DESCRIPTION_SUFFIXES = (".pdf", ".docx")

_STARTABLE_PHASES = (Phase.IDLE, Phase.COMPLETE, Phase.ERROR)


def _check_input_file(path: Optional[Path], label: str, suffixes: tuple) -> None:
    if path is None:
        raise PreconditionError(f"No {label} provided")
    if path.suffix.lower() not in suffixes:
        raise PreconditionError(
            f"Invalid {label} type: {path.name} (expected {', '.join(suffixes)})"
        )
    if not path.is_file():
        raise PreconditionError(f"{label.capitalize()} not found: {path}")


def _candidate_ids(status: BatchTaskStatus) -> List[str]:
    """Candidate identifiers of the successfully extracted CVs, in result order."""
    ids = []
    for item in status.results:
        if not item.succeeded:
            continue
        user_id = item.result_field("user_id")
        if isinstance(user_id, str) and user_id:
            ids.append(user_id)
    return ids


def _job_posting_id(status: BatchTaskStatus) -> Optional[str]:
    if not status.results:
        return None
    job_posting_id = status.results[0].result_field("job_posting_id")
    if isinstance(job_posting_id, str) and job_posting_id:
        return job_posting_id
    return None


class PipelineOrchestrator:
    """
    Top-level coordinator of one quick-rank pipeline at a time.

    ``start()`` schedules the run on the running event loop and returns
    immediately; progress is observed through ``snapshot()`` and completion
    through ``wait()``. The pipeline run is single-writer: only this class
    mutates it.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        *,
        base_url: Optional[str] = None,
        api_token: Optional[str] = None,
        single_poll_interval: Optional[float] = None,
        batch_poll_interval: Optional[float] = None,
        max_consecutive_poll_failures: Optional[int] = None,
        deadline_seconds: Optional[float] = None,
        revoke_on_cancel: Optional[bool] = None,
    ):
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.HTTP_TIMEOUT_SECONDS)
        )
        self.api_token = api_token if api_token is not None else config.API_TOKEN
        self.status_client = TaskStatusClient(self._http, base_url=base_url, api_token=api_token)
        self.submissions = SubmissionClient(self._http, base_url=base_url, api_token=api_token)

        self.single_poll_interval = (
            single_poll_interval
            if single_poll_interval is not None
            else config.SINGLE_POLL_INTERVAL_SECONDS
        )
        self.batch_poll_interval = (
            batch_poll_interval
            if batch_poll_interval is not None
            else config.BATCH_POLL_INTERVAL_SECONDS
        )
        self.max_consecutive_poll_failures = (
            max_consecutive_poll_failures
            if max_consecutive_poll_failures is not None
            else config.MAX_CONSECUTIVE_POLL_FAILURES
        )
        self.deadline_seconds = (
            deadline_seconds if deadline_seconds is not None else config.PIPELINE_DEADLINE_SECONDS
        )
        self.revoke_on_cancel = (
            revoke_on_cancel if revoke_on_cancel is not None else config.REVOKE_REMOTE_ON_CANCEL
        )

        self._run = PipelineRun()
        self._machine = PhaseStateMachine(self._run)
        self._token: Optional[CancellationToken] = None
        self._task: Optional[asyncio.Task] = None
        self._poller: Optional[Poller] = None
        self._background: Set[asyncio.Task] = set()

    async def __aenter__(self) -> "PipelineOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    @property
    def run(self) -> PipelineRun:
        """Live pipeline run. Treat as read-only; prefer ``snapshot()`` from other code."""
        return self._run

    @property
    def phase(self) -> Phase:
        return self._run.current_phase

    @property
    def is_busy(self) -> bool:
        return self._run.current_phase not in _STARTABLE_PHASES

    @property
    def active_poller(self) -> Optional[Poller]:
        return self._poller

    def snapshot(self) -> PipelineRun:
        """Deep copy of the pipeline run, safe to read while the run progresses."""
        return self._run.model_copy(deep=True)

    def start(self, inputs: PipelineInputs) -> None:
        """
        Start a new pipeline run.

        Must be called from a running event loop. A previous COMPLETE or ERROR
        run is discarded implicitly.

        Raises:
            PipelineBusyError: If a run is already in progress
        """
        if self.is_busy:
            raise PipelineBusyError(
                f"A pipeline run is already in progress ({self._run.current_phase.value})"
            )

        self._discard_current()
        run = PipelineRun(run_id=uuid.uuid4().hex[:12])
        token = CancellationToken()
        self._run, self._token = run, token
        self._machine = PhaseStateMachine(run)
        self._machine.transition(Phase.UPLOADING, "Uploading files...")

        self._run_log(run).info("Pipeline run started")
        self._task = self._spawn_background(self._execute(run, token, inputs))

    def cancel(self) -> None:
        """
        Cancel the in-progress run and return it to IDLE.

        Flips the token (aborting in-flight calls), stops the active poller and
        freezes the run. A no-op when no run is in progress.
        """
        token = self._token
        if token is None or token.cancelled or not self.is_busy:
            return

        active_handle = self._poller.handle if self._poller is not None else None
        self._run_log(self._run).info("Cancelling pipeline run")
        token.cancel()
        self._stop_poller()
        self._machine.cancel()

        if self.revoke_on_cancel and active_handle is not None:
            self._spawn_background(self.status_client.revoke(active_handle))

    def reset(self) -> None:
        """Discard the run and its token regardless of phase and return to IDLE."""
        self._discard_current()
        self._run = PipelineRun()
        self._machine = PhaseStateMachine(self._run)

    async def wait(self) -> PipelineRun:
        """Wait for the current run's background task to finish and return a snapshot."""
        task = self._task
        if task is not None:
            await asyncio.wait({task})
        return self.snapshot()

    async def run_pipeline(self, inputs: PipelineInputs) -> PipelineRun:
        """Start a run and wait for it to finish."""
        self.start(inputs)
        return await self.wait()

    async def aclose(self) -> None:
        """Cancel any run, wait for pending work and close the owned HTTP client."""
        self.cancel()
        pending = list(self._background)
        if pending:
            await asyncio.wait(pending)
        if self._owns_client:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # Run execution
    # ------------------------------------------------------------------

    async def _execute(
        self, run: PipelineRun, token: CancellationToken, inputs: PipelineInputs
    ) -> None:
        log = self._run_log(run)
        try:
            if self.deadline_seconds:
                await asyncio.wait_for(self._drive(run, token, inputs), self.deadline_seconds)
            else:
                await self._drive(run, token, inputs)
        except PipelineCancelled:
            log.info("Pipeline run stopped after cancellation")
        except asyncio.TimeoutError:
            self._fail(
                run,
                token,
                f"Pipeline did not finish within {self.deadline_seconds:g} seconds",
                ErrorCode.DEADLINE_EXCEEDED,
            )
        except PipelineError as e:
            self._fail(run, token, e.message, e.code)
        except Exception as e:
            log.exception("Unexpected error in pipeline run")
            self._fail(run, token, f"Unexpected error: {e}", ErrorCode.UNEXPECTED_ERROR)
        finally:
            if run is self._run:
                self._stop_poller()

    async def _drive(
        self, run: PipelineRun, token: CancellationToken, inputs: PipelineInputs
    ) -> None:
        log = self._run_log(run)
        self._check_preconditions(inputs)

        # UPLOADING: the job description goes first so that a failed upload
        # never leaves a CV extraction running remotely
        jd_receipt = await token.run(self.submissions.upload_jd(inputs.job_description))
        self._guard(run, token)
        cv_receipt = await token.run(self.submissions.upload_cv(inputs.cv_archive))
        self._guard(run, token)
        log.info(
            f"Uploads accepted (cv batch {cv_receipt.batch_task_id}, "
            f"jd batch {jd_receipt.batch_task_id})"
        )

        # EXTRACTING
        run.total_files = cv_receipt.total_files
        self._advance(
            run,
            token,
            Phase.EXTRACTING,
            f"Extracting CVs (0/{cv_receipt.total_files} files)...",
        )
        cv_status = await self._await_batch(
            run,
            token,
            TaskHandle(id=cv_receipt.batch_task_id, kind=TaskKind.BATCH),
            on_progress=self._extraction_progress(run, token),
            failure_prefix="CV extraction failed",
        )
        candidate_ids = _candidate_ids(cv_status)
        self._guard(run, token)
        run.extracted_count = cv_status.succeeded_count
        run.candidate_ids.extend(candidate_ids)
        log.info(
            f"{cv_status.succeeded_count}/{cv_status.total} CVs extracted, "
            f"{len(candidate_ids)} candidate ids collected"
        )

        # ANALYZING
        self._advance(run, token, Phase.ANALYZING, "Analyzing job description...")
        jd_handle = TaskHandle(id=jd_receipt.batch_task_id, kind=TaskKind.BATCH)
        jd_status = await self._await_batch(
            run,
            token,
            jd_handle,
            on_progress=self._analysis_progress(run, token),
            failure_prefix="Job description analysis failed",
        )
        job_posting_id = _job_posting_id(jd_status)
        if job_posting_id is None:
            raise TaskFailedError(
                jd_handle.id, "Failed to create job posting from job description"
            )
        self._guard(run, token)
        run.job_posting_id = job_posting_id

        # RANKING
        self._advance(run, token, Phase.RANKING, f"Ranking {run.extracted_count} candidates...")
        ranking_handle = await token.run(
            self.submissions.start_ranking(job_posting_id, list(run.candidate_ids))
        )
        self._guard(run, token)
        ranking_status = cast(
            SingleTaskStatus,
            await self._await_task(
                run, token, ranking_handle, on_progress=self._ranking_progress(run, token)
            ),
        )

        # COMPLETE
        final_result = RankingResult.from_payload(ranking_status.result or {}, job_posting_id)
        self._guard(run, token)
        run.final_result = final_result
        self._machine.transition(Phase.COMPLETE, "Ranking complete!")
        log.info(
            f"Pipeline run complete: {final_result.total_candidates} candidates ranked "
            f"for job {job_posting_id}"
        )

    def _check_preconditions(self, inputs: PipelineInputs) -> None:
        if not self.api_token:
            raise PreconditionError("Not authenticated. Please sign in again.")
        _check_input_file(inputs.cv_archive, "CV archive", CV_ARCHIVE_SUFFIXES)
        _check_input_file(inputs.job_description, "job description", JOB_DESCRIPTION_SUFFIXES)

    async def _await_task(
        self,
        run: PipelineRun,
        token: CancellationToken,
        handle: TaskHandle,
        on_progress: Callable[[Any], None],
        failure_prefix: Optional[str] = None,
    ) -> TaskStatus:
        """
        Poll one task to a terminal state with a poller owned by the current phase.

        The poller is torn down before this returns, so no callback from this
        phase can land after the next phase starts.
        """
        interval = (
            self.batch_poll_interval if handle.kind == TaskKind.BATCH else self.single_poll_interval
        )
        poller = Poller(
            self.status_client,
            handle,
            token,
            interval=interval,
            max_consecutive_failures=self.max_consecutive_poll_failures,
            log=self._run_log(run),
        )
        self._poller = poller
        try:
            return await poller.wait(on_progress=on_progress)
        except TaskFailedError as e:
            if failure_prefix:
                raise TaskFailedError(e.task_id, f"{failure_prefix}: {e.message}")
            raise
        finally:
            poller.stop()
            if self._poller is poller:
                self._poller = None

    async def _await_batch(
        self,
        run: PipelineRun,
        token: CancellationToken,
        handle: TaskHandle,
        on_progress: Callable[[Any], None],
        failure_prefix: str,
    ) -> BatchTaskStatus:
        # The status client normalizes by handle kind, so a batch handle only yields batch statuses
        status = await self._await_task(run, token, handle, on_progress, failure_prefix)
        return cast(BatchTaskStatus, status)

    # ------------------------------------------------------------------
    # Progress callbacks
    # ------------------------------------------------------------------

    def _extraction_progress(
        self, run: PipelineRun, token: CancellationToken
    ) -> Callable[[Any], None]:
        def on_progress(status: Any) -> None:
            if not self._is_current(run, token) or not isinstance(status, BatchTaskStatus):
                return
            fraction = status.completed / status.total if status.total else 0.0
            self._machine.report_progress(
                fraction, f"Extracting CVs ({status.completed}/{status.total} files)..."
            )

        return on_progress

    def _analysis_progress(
        self, run: PipelineRun, token: CancellationToken
    ) -> Callable[[Any], None]:
        def on_progress(status: Any) -> None:
            if not self._is_current(run, token) or not isinstance(status, BatchTaskStatus):
                return
            fraction = status.completed / status.total if status.total else 0.0
            self._machine.report_progress(fraction)

        return on_progress

    def _ranking_progress(
        self, run: PipelineRun, token: CancellationToken
    ) -> Callable[[Any], None]:
        def on_progress(status: Any) -> None:
            if not self._is_current(run, token) or not isinstance(status, SingleTaskStatus):
                return
            progress = status.progress
            if progress is None:
                return
            if progress.status == "starting":
                self._machine.set_message("Preparing candidates for ranking...")
                return
            percent = progress.progress_percent or 0.0
            self._machine.report_progress(percent / 100.0, progress.message or None)

        return on_progress

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _is_current(self, run: PipelineRun, token: CancellationToken) -> bool:
        return run is self._run and token is self._token and not token.cancelled
    def _guard(self, run: PipelineRun, token: CancellationToken) -> None:
        """Stop a run whose token was flipped or which was replaced by reset()/start()."""
        token.raise_if_cancelled()
        if not self._is_current(run, token):
            raise PipelineCancelled()

    def _advance(
        self, run: PipelineRun, token: CancellationToken, phase: Phase, message: str
    ) -> None:
        self._guard(run, token)
        self._machine.transition(phase, message)
        self._run_log(run).info(f"Entering {phase.value}")

    def _fail(
        self, run: PipelineRun, token: CancellationToken, reason: str, code: ErrorCode
    ) -> None:
        log = self._run_log(run)
        if not self._is_current(run, token) or self._machine.is_terminal:
            log.info(f"Discarding failure of stale run: {reason}")
            return
        self._stop_poller()
        log.error(f"Pipeline run failed ({code.value}): {reason}")
        self._machine.fail(reason, code)

    def _run_log(self, run: PipelineRun) -> ContextAdapter:
        """Logger stamping records with the run id and the run's phase at emission time."""
        return ContextAdapter(
            logger, {"run_id": run.run_id, "phase": lambda: run.current_phase.value}
        )

    def _stop_poller(self) -> None:
        if self._poller is not None:
            self._poller.stop()
            self._poller = None

    def _discard_current(self) -> None:
        if self._token is not None:
            self._token.cancel()
        self._stop_poller()
        self._token = None
        self._task = None

    def _spawn_background(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task
