"""Run orchestration: run context, pipeline and run-ending exceptions."""

from encodegate.workflow.exceptions import (
    AudioSelectionError,
    EncodeGateError,
    IntegrityError,
    PrerequisiteError,
    QualityRejectedError,
    RunCancelledError,
    StageError,
)

__all__ = [
    "AudioSelectionError",
    "EncodeGateError",
    "IntegrityError",
    "PrerequisiteError",
    "QualityRejectedError",
    "RunCancelledError",
    "StageError",
]
