# quickrank/core/phases.py
"""
Phase state machine for a pipeline run.

Phases run in a fixed order (IDLE -> UPLOADING -> EXTRACTING -> ANALYZING ->
RANKING -> COMPLETE) and ERROR is reachable from any non-terminal phase. Each
working phase owns a band of the overall 0-100 scale; intra-phase progress is
mapped into that band and the blended percentage never decreases within a run.
"""

from typing import Dict, List, Optional, Tuple

from quickrank.core.exceptions import ErrorCode, InvalidTransitionError
from quickrank.models.models import Phase, PipelineRun

PHASE_ORDER: List[Phase] = [
    Phase.IDLE,
    Phase.UPLOADING,
    Phase.EXTRACTING,
    Phase.ANALYZING,
    Phase.RANKING,
    Phase.COMPLETE,
]

# (band_start, band_end) in percent. Uploads are short, so UPLOADING has no
# intra-phase granularity: its head-start is granted when EXTRACTING begins.
PHASE_BANDS: Dict[Phase, Tuple[int, int]] = {
    Phase.IDLE: (0, 0),
    Phase.UPLOADING: (0, 0),
    Phase.EXTRACTING: (10, 45),
    Phase.ANALYZING: (45, 55),
    Phase.RANKING: (55, 100),
    Phase.COMPLETE: (100, 100),
}

TERMINAL_PHASES = (Phase.COMPLETE, Phase.ERROR)


def step_index(run: PipelineRun) -> int:
    """
    Zero-based index of the run's working step (uploading=0 ... complete=4).

    For a failed run this is the step that failed; -1 for idle.
    """
    phase = run.current_phase
    if phase == Phase.ERROR:
        phase = run.failed_phase or Phase.IDLE
    return PHASE_ORDER.index(phase) - 1


class PhaseStateMachine:
    """
    Drives the phase and progress fields of one PipelineRun.
    """

    def __init__(self, run: PipelineRun):
        self.run = run
        self._frozen = False

    @property
    def is_terminal(self) -> bool:
        return self.run.current_phase in TERMINAL_PHASES

    def transition(self, phase: Phase, message: Optional[str] = None) -> None:
        """
        Move to the next phase in the fixed order.

        Args:
            phase: Target phase; must be the immediate successor of the current one
            message: New status message (kept unchanged when None)

        Raises:
            InvalidTransitionError: If the move would revisit or skip a phase
        """
        if phase == Phase.ERROR:
            self.fail(message or "Unknown error")
            return
        if self._frozen:
            return

        current = self.run.current_phase
        if current in TERMINAL_PHASES:
            raise InvalidTransitionError(f"Cannot leave terminal phase {current.value}")
        expected = PHASE_ORDER[PHASE_ORDER.index(current) + 1]
        if phase != expected:
            raise InvalidTransitionError(
                f"Invalid phase transition {current.value} -> {phase.value} "
                f"(expected {expected.value})"
            )

        self.run.current_phase = phase
        self._raise_percent(PHASE_BANDS[phase][0])
        if message is not None:
            self.run.status_message = message

    def report_progress(self, fraction: float, message: Optional[str] = None) -> int:
        """
        Map intra-phase progress into the current phase's band.

        Args:
            fraction: Completion ratio of the current phase (clamped to [0, 1])
            message: New status message (kept unchanged when None)

        Returns:
            int: The overall percentage after the update
        """
        if self._frozen or self.run.current_phase not in PHASE_BANDS or self.is_terminal:
            return self.run.overall_progress_percent

        band_start, band_end = PHASE_BANDS[self.run.current_phase]
        fraction = min(max(fraction, 0.0), 1.0)
        value = band_start + (band_end - band_start) * fraction
        self._raise_percent(int(round(min(max(value, band_start), band_end))))
        if message is not None:
            self.run.status_message = message
        return self.run.overall_progress_percent

    def set_message(self, message: str) -> None:
        if not self._frozen and not self.is_terminal:
            self.run.status_message = message

    def fail(self, reason: str, code: ErrorCode = ErrorCode.TASK_FAILED) -> None:
        """
        Enter ERROR, freezing the percentage and appending the reason to the status message.

        Args:
            reason: Human-readable failure reason
            code: Structured code of the error that ended the run

        Raises:
            InvalidTransitionError: If the run already reached a terminal phase
        """
        if self.is_terminal:
            raise InvalidTransitionError(
                f"Cannot fail a run in terminal phase {self.run.current_phase.value}"
            )
        self.run.failed_phase = self.run.current_phase
        self.run.current_phase = Phase.ERROR
        self.run.failure_reason = reason
        self.run.failure_code = code
        current = self.run.status_message.rstrip()
        self.run.status_message = f"{current} Failed: {reason}" if current else f"Failed: {reason}"
        self._frozen = True

    def cancel(self, message: str = "Cancelled") -> None:
        """Return the run to IDLE and freeze it; later progress reports are ignored."""
        self._frozen = True
        self.run.current_phase = Phase.IDLE
        self.run.status_message = message

    def _raise_percent(self, value: int) -> None:
        if value > self.run.overall_progress_percent:
            self.run.overall_progress_percent = min(value, 100)
