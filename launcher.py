# launcher.py
"""
Command-line launcher: run one quick-rank pipeline against the remote API
and print its progress until it completes, fails or is interrupted.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from quickrank.__version__ import __version__
from quickrank.core.config import config
from quickrank.core.phases import step_index
from quickrank.core.setup_logging import LogContext, setup_default_logging
from quickrank.models.models import Phase, PipelineInputs, PipelineRun
from quickrank.services.pipeline_orchestrator import PipelineOrchestrator

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130

STEP_LABELS = ["Upload", "Extract CVs", "Analyze JD", "Rank", "Done"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quickrank",
        description="Upload a CV archive and a job description, then rank the candidates.",
    )
    parser.add_argument("--cv", required=True, type=Path, help="ZIP archive of CVs")
    parser.add_argument("--jd", required=True, type=Path, help="Job description (PDF or DOCX)")
    parser.add_argument(
        "--base-url", default=None, help=f"API base URL (default: {config.API_BASE_URL})"
    )
    parser.add_argument("--token", default=None, help="Bearer token (default: API_TOKEN)")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON formatted logs")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def format_progress(run: PipelineRun) -> str:
    percent = run.overall_progress_percent
    return f"[{percent:3d}%] {run.current_phase.value:<10} {run.status_message}"


def print_result(run: PipelineRun) -> None:
    result = run.final_result
    if result is None:
        return
    print(f"\n🏁 {result.job_title} (job posting {result.job_posting_id})")
    print(f"   {result.total_candidates} candidates ranked")
    print("-" * 50)
    for candidate in result.ranked_candidates:
        label = candidate.name or candidate.email or candidate.candidate_id
        print(f"{candidate.rank:>3}. {label}")
    stats = result.stats
    print("-" * 50)
    print(
        f"Comparisons: {stats.total_comparisons}  Tokens: {stats.total_tokens}  "
        f"Cost: {stats.total_cost:.4f}"
    )


def print_failure(run: PipelineRun) -> None:
    step = max(step_index(run), 0)
    print(f"\n❌ Failed at step {step + 1} ({STEP_LABELS[step]}): {run.failure_reason}")


async def run_once(
    orchestrator: PipelineOrchestrator, inputs: PipelineInputs, refresh: float = 0.5
) -> PipelineRun:
    """Start a run and print a progress line each time the snapshot changes."""
    orchestrator.start(inputs)
    last_line: Optional[str] = None
    while orchestrator.is_busy:
        line = format_progress(orchestrator.snapshot())
        if line != last_line:
            print(line)
            last_line = line
        await asyncio.sleep(refresh)
    return await orchestrator.wait()


async def main_async(args: argparse.Namespace) -> int:
    log_level = "DEBUG" if config.DEBUG else config.LOG_LEVEL
    logger = setup_default_logging(json_format=args.json_logs, log_level=log_level)
    inputs = PipelineInputs(cv_archive=args.cv, job_description=args.jd)

    async with PipelineOrchestrator(base_url=args.base_url, api_token=args.token) as orchestrator:
        with LogContext(logger, component="launcher"):
            try:
                run = await run_once(orchestrator, inputs)
            except asyncio.CancelledError:
                # Ctrl+C: asyncio.run re-raises KeyboardInterrupt once this returns
                orchestrator.cancel()
                return EXIT_CANCELLED

    if run.current_phase == Phase.COMPLETE:
        print(format_progress(run))
        print_result(run)
        return EXIT_OK
    if run.current_phase == Phase.ERROR:
        print_failure(run)
        return EXIT_FAILED
    print("\n⏹️  Run cancelled")
    return EXIT_CANCELLED


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point of the ``quickrank`` command.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config.validate_configuration()
    except ValueError as e:
        parser.error(str(e))

    try:
        return asyncio.run(main_async(args))
    except KeyboardInterrupt:
        logging.getLogger("quickrank").info("Interrupted by user")
        print("\n⏹️  Run cancelled")
        return EXIT_CANCELLED


if __name__ == "__main__":
    sys.exit(main())
