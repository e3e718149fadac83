# quickrank/models/models.py
"""
Data models for the quick-rank pipeline client.
Defines Pydantic models for remote task envelopes, submission receipts and the pipeline run.
"""

import json
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator, model_validator

from quickrank.core.exceptions import ErrorCode


class TaskKind(str, Enum):
    """Shape of a remote task: one unit of work, or a fan-out over many items."""

    SINGLE = "single"
    BATCH = "batch"


class Phase(str, Enum):
    """Phases of one pipeline run."""

    IDLE = "idle"
    UPLOADING = "uploading"
    EXTRACTING = "extracting"
    ANALYZING = "analyzing"
    RANKING = "ranking"
    COMPLETE = "complete"
    ERROR = "error"


class TaskHandle(BaseModel):
    """
    Identifies one remote unit of work.

    Attributes:
        id: Opaque task identifier returned by a submission endpoint
        kind: Whether the task is a single task or a batch task
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Opaque remote task identifier")
    kind: TaskKind = Field(..., description="Task kind - selects the status endpoint shape")


class TaskProgress(BaseModel):
    """Intermediate progress reported by a single task while it runs."""

    model_config = ConfigDict(extra="ignore")

    status: Optional[str] = Field(None, description="Stage label, e.g. 'starting' or 'ranking'")
    progress_percent: Optional[float] = Field(None, ge=0, le=100)
    message: Optional[str] = None


class SingleTaskStatus(BaseModel):
    """
    Snapshot of a single task.

    When ``ready`` is true exactly one of ``result`` / ``error`` is set;
    when it is false neither is.
    """

    kind: TaskKind = TaskKind.SINGLE
    ready: bool
    progress: Optional[TaskProgress] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @model_validator(mode="after")
    def _check_terminal_fields(self) -> "SingleTaskStatus":
        has_result = self.result is not None
        has_error = self.error is not None
        if self.ready and has_result == has_error:
            raise ValueError("a ready task must carry exactly one of result or error")
        if not self.ready and (has_result or has_error):
            raise ValueError("a running task cannot carry a result or an error")
        return self


class BatchItemResult(BaseModel):
    """
    Outcome of one item of a batch task.

    Item payloads are produced per file by remote workers and are not trusted:
    identifiers and errors of any shape are stringified, and a result that is
    not an object only means the item did not succeed.
    """

    model_config = ConfigDict(extra="ignore")

    task_id: Optional[str] = None
    status: Optional[str] = None
    result: Any = None
    error: Optional[str] = None

    @field_validator("task_id", "status", "error", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Optional[str]:
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, (dict, list)):
            return json.dumps(value, ensure_ascii=False, default=str)
        return str(value)

    @property
    def succeeded(self) -> bool:
        return isinstance(self.result, dict) and bool(self.result.get("success"))

    def result_field(self, key: str) -> Any:
        """Value of one key of the item's result, or None when the result is not an object."""
        if not isinstance(self.result, dict):
            return None
        return self.result.get(key)


class BatchTaskStatus(BaseModel):
    """
    Snapshot of a fan-out batch task.

    Invariants: 0 <= failed <= completed <= total, and ready only once completed == total.
    """

    kind: TaskKind = TaskKind.BATCH
    ready: StrictBool
    completed: int = Field(..., ge=0)
    total: int = Field(..., ge=0)
    failed: int = Field(0, ge=0)
    results: List[BatchItemResult] = Field(default_factory=list)

    @field_validator("results", mode="before")
    @classmethod
    def _coerce_items(cls, value: Any) -> Any:
        # Per-item payloads never invalidate the envelope: a non-list is dropped
        # and a non-object item becomes a failed item carrying its raw value.
        if not isinstance(value, list):
            return []
        return [item if isinstance(item, dict) else {"error": item} for item in value]

    @model_validator(mode="after")
    def _check_counts(self) -> "BatchTaskStatus":
        if not (self.failed <= self.completed <= self.total):
            raise ValueError(
                f"inconsistent batch counts: failed={self.failed} "
                f"completed={self.completed} total={self.total}"
            )
        if self.ready and self.completed != self.total:
            raise ValueError("a batch cannot be ready before every item completed")
        return self

    @property
    def succeeded_count(self) -> int:
        return self.completed - self.failed

    @property
    def all_failed(self) -> bool:
        return self.failed > 0 and self.succeeded_count == 0


TaskStatus = Union[SingleTaskStatus, BatchTaskStatus]


class CvUploadReceipt(BaseModel):
    """Response of the CV archive upload: the extraction batch that was started."""

    batch_task_id: str = Field(..., min_length=1)
    total_files: int = Field(0, ge=0)


class JdUploadReceipt(BaseModel):
    """Response of the job description upload: the analysis batch that was started."""

    batch_task_id: str = Field(..., min_length=1)


class PipelineInputs(BaseModel):
    """
    Files required to start a pipeline run.

    Attributes:
        cv_archive: ZIP archive holding the candidates' CVs
        job_description: PDF or DOCX job description
    """

    cv_archive: Optional[Path] = None
    job_description: Optional[Path] = None


def _pick(payload: Dict[str, Any], snake_key: str, camel_key: str, default: Any = None) -> Any:
    # TODO: drop the camelCase fallback once the ranking worker emits snake_case keys only.
    value = payload.get(snake_key)
    if value is None or value == "":
        value = payload.get(camel_key)
    return default if value is None or value == "" else value


class RankedCandidate(BaseModel):
    candidate_id: str = ""
    rank: int = 0
    name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "RankedCandidate":
        return cls(
            candidate_id=str(_pick(payload, "candidate_id", "candidateId", "")),
            rank=int(payload.get("rank") or 0),
            name=payload.get("name") or None,
            email=payload.get("email") or None,
            avatar_url=_pick(payload, "avatar_url", "avatarUrl") or None,
        )


class RankingStats(BaseModel):
    total_comparisons: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0


class RankingResult(BaseModel):
    """
    Final result of a pipeline run, assembled from the ranking task payload.

    Producers are not consistent about key casing, so every field accepts either
    its snake_case or its camelCase name.
    """

    job_posting_id: str
    job_title: str = "Untitled Job"
    ranked_candidates: List[RankedCandidate] = Field(default_factory=list)
    total_candidates: int = 0
    stats: RankingStats = Field(default_factory=RankingStats)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], job_posting_id: str) -> "RankingResult":
        raw_candidates = _pick(payload, "ranked_candidates", "rankedCandidates", [])
        candidates = [
            RankedCandidate.from_payload(item) for item in raw_candidates if isinstance(item, dict)
        ]
        total = _pick(payload, "total_candidates", "totalCandidates")
        return cls(
            job_posting_id=job_posting_id,
            job_title=_pick(payload, "job_title", "jobTitle") or "Untitled Job",
            ranked_candidates=candidates,
            total_candidates=int(total) if total is not None else len(candidates),
            stats=RankingStats(
                total_comparisons=int(_pick(payload, "total_comparisons", "totalComparisons", 0)),
                total_tokens=int(_pick(payload, "total_tokens", "totalTokens", 0)),
                total_cost=float(_pick(payload, "total_cost", "totalCost", 0.0)),
            ),
        )


class PipelineRun(BaseModel):
    """
    Working state of one pipeline execution.

    Mutated only by the orchestrator; readers should take a ``snapshot()``.

    Attributes:
        run_id: Identifier used to correlate log lines of one run
        current_phase: Phase the run is in
        overall_progress_percent: Blended progress, never decreasing within a run
        status_message: Free text for display
        candidate_ids: Candidate identifiers produced by successful extractions
        job_posting_id: Job posting produced by the job description analysis
        final_result: Ranking result, set on COMPLETE
        failure_reason: Human-readable reason, set on ERROR
        failure_code: Structured code of the error that ended the run, set on ERROR
        failed_phase: Phase that was active when the run entered ERROR
        total_files: Number of files in the uploaded CV archive
        extracted_count: Number of CVs extracted successfully
    """

    run_id: Optional[str] = None
    current_phase: Phase = Phase.IDLE
    overall_progress_percent: int = Field(0, ge=0, le=100)
    status_message: str = ""
    candidate_ids: List[str] = Field(default_factory=list)
    job_posting_id: Optional[str] = None
    final_result: Optional[RankingResult] = None
    failure_reason: Optional[str] = None
    failure_code: Optional[ErrorCode] = None
    failed_phase: Optional[Phase] = None
    total_files: int = 0
    extracted_count: int = 0
