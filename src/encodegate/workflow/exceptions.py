"""Exception hierarchy for encodegate runs.

Every failure that ends a run is an EncodeGateError subclass, and each
subclass maps to one process exit code in ``encodegate.cli.exit_codes``.
Expected failures inside a stage are reported through result dataclasses;
these exceptions are raised once a stage has no remaining fallback.
"""


class EncodeGateError(Exception):
    """Base exception for run-ending failures.

    All encodegate exceptions inherit from this class, allowing the CLI to
    catch every run failure with a single except clause.
    """


class PrerequisiteError(EncodeGateError):
    """Missing tools, insufficient disk space or unusable paths.

    Raised before any subprocess work on the source begins.
    """


class StageError(EncodeGateError):
    """A stage failed transiently and its fallbacks are exhausted.

    Attributes:
        stage: Name of the stage that failed (e.g. "mux", "probe").
    """

    def __init__(self, stage: str, message: str) -> None:
        self.stage = stage
        super().__init__(f"{stage}: {message}")


class AudioSelectionError(StageError):
    """No audio stream passed filtering and validation."""

    def __init__(self, message: str) -> None:
        super().__init__("audio selection", message)


class IntegrityError(EncodeGateError):
    """The encode produced a Severe or Critical corruption verdict.

    Attributes:
        critical: True for Critical verdicts, which abort without fallback.
        reasons: Classifier reasons behind the verdict.
    """

    def __init__(
        self, message: str, critical: bool = False, reasons: tuple[str, ...] = ()
    ) -> None:
        self.critical = critical
        self.reasons = reasons
        super().__init__(message)


class QualityRejectedError(EncodeGateError):
    """A clean encode failed the adaptive quality gate.

    The original file is left untouched. The suggested quality is what an
    external retry wrapper should use for the next attempt.

    Attributes:
        suggested_quality: Lower (better) quality value to retry with, or
            None when the rejected quality was already the best allowed.
    """

    def __init__(self, message: str, suggested_quality: int | None) -> None:
        self.suggested_quality = suggested_quality
        super().__init__(message)


class RunCancelledError(EncodeGateError):
    """The run was cancelled by SIGINT/SIGTERM."""
