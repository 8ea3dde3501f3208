"""Centralized exit codes for all CLI commands.

Exit code ranges:
    0: Success
    1: Generic fatal error
    30-39: Prerequisite errors (tools, disk space, paths)
    40-49: Integrity errors (corrupt encode)
    100-123: Retry at lower quality (100 + suggested quality)
    130: Cancelled by SIGINT/SIGTERM
"""

from enum import IntEnum

from encodegate.config.models import QUALITY_MAX, QUALITY_MIN
from encodegate.workflow.exceptions import (
    EncodeGateError,
    IntegrityError,
    PrerequisiteError,
    QualityRejectedError,
    RunCancelledError,
)


class ExitCode(IntEnum):
    """Exit codes for encodegate CLI commands."""

    SUCCESS = 0
    GENERAL_ERROR = 1

    PREREQUISITE_FAILED = 30

    INTEGRITY_FAILURE = 40

    # Base of the retry range; the actual code adds the suggested quality
    RETRY_BASE = 100

    CANCELLED = 130


def retry_exit_code(suggested_quality: int) -> int:
    return ExitCode.RETRY_BASE + suggested_quality


def exit_code_for(error: EncodeGateError) -> int:
    """Map a run-ending exception to the process exit code."""
    if isinstance(error, RunCancelledError):
        return ExitCode.CANCELLED
    if isinstance(error, QualityRejectedError):
        quality = error.suggested_quality
        if quality is None or not QUALITY_MIN <= quality <= QUALITY_MAX:
            return ExitCode.GENERAL_ERROR
        return retry_exit_code(quality)
    if isinstance(error, PrerequisiteError):
        return ExitCode.PREREQUISITE_FAILED
    if isinstance(error, IntegrityError):
        return ExitCode.INTEGRITY_FAILURE
    return ExitCode.GENERAL_ERROR
