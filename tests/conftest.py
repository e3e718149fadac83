"""Pytest configuration for adding the project root to sys.path and isolating logs."""

import os
import sys
import tempfile

# Keep log files out of the working tree; must happen before quickrank is imported
os.environ.setdefault("LOG_DIRECTORY", tempfile.mkdtemp(prefix="quickrank-tests-"))

# Ensure the repository root (containing the `quickrank` package) is on sys.path
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest  # noqa: E402

from quickrank.models.models import PipelineInputs  # noqa: E402


@pytest.fixture
def inputs(tmp_path) -> PipelineInputs:
    """A CV archive and a job description on disk."""
    cv_archive = tmp_path / "cvs.zip"
    cv_archive.write_bytes(b"PK\x05\x06" + b"\x00" * 18)
    job_description = tmp_path / "job.pdf"
    job_description.write_bytes(b"%PDF-1.4\n%%EOF\n")
    return PipelineInputs(cv_archive=cv_archive, job_description=job_description)
