"""Encode data types and tagged result classes.

An encode attempt ends in exactly one of EncodeSuccess,
EncodeNeedsFallback or EncodeFatal. Callers branch with isinstance.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from pathlib import Path

from encodegate.domain.enums import BitrateClass, ResolutionTier


class Severity(IntEnum):
    """Corruption verdict, ordered by how bad it is."""

    NONE = 0
    MINOR = 1
    MODERATE = 2
    SEVERE = 3
    CRITICAL = 4


class EncodeMethod(Enum):
    HARDWARE = "hardware"
    SOFTWARE = "software"


@dataclass(frozen=True)
class SharpenParams:
    """Luma unsharp-mask parameters (ffmpeg ``unsharp`` filter)."""

    luma_amount: float
    matrix_size: int = 5

    @property
    def filter(self) -> str:
        size = self.matrix_size
        return (
            f"unsharp=luma_msize_x={size}:luma_msize_y={size}"
            f":luma_amount={self.luma_amount:.2f}"
        )


@dataclass(frozen=True)
class EncodingSettings:
    """Encoder settings derived once per run."""

    quality: int
    """Constant-quality value (CQ/CRF); lower is better."""

    tier: ResolutionTier
    lookahead: int
    max_frame_kib: int
    sharpen: SharpenParams | None = None
    bitrate_class: BitrateClass | None = None
    bpp: float | None = None
    base_quality: int | None = None
    resolution_adjustment: int = 0
    content_adjustment: int = 0
    overridden: bool = False
    """True when quality came from an explicit override."""


@dataclass(frozen=True)
class CorruptionReport:
    """Defect signature counts from one encode's diagnostics."""

    counts: dict[str, int] = field(default_factory=dict)
    weighted: dict[str, float] = field(default_factory=dict)
    container_matches: int = 0
    lines_scanned: int = 0
    truncated: bool = False
    """The line budget was exhausted before the diagnostics ended."""

    samples: tuple[str, ...] = ()

    @property
    def total_weighted(self) -> float:
        return sum(self.weighted.values())

    @property
    def total_matches(self) -> int:
        return sum(self.counts.values()) + self.container_matches


@dataclass(frozen=True)
class EncodeAttemptResult:
    """Outcome of one encode attempt."""

    method: EncodeMethod
    exit_code: int
    severity: Severity
    report: CorruptionReport
    artifact_path: Path | None = None
    artifact_size: int = 0
    reasons: tuple[str, ...] = ()
    timed_out: bool = False
    elapsed_seconds: float = 0.0
    avg_fps: float | None = None

    @property
    def defect_counts(self) -> dict[str, int]:
        return self.report.counts

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and self.severity <= Severity.MODERATE


@dataclass(frozen=True)
class EncodeSuccess:
    artifact: Path
    attempt: EncodeAttemptResult
    method: EncodeMethod
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class EncodeNeedsFallback:
    reason: str
    attempt: EncodeAttemptResult | None = None
    """None when the hardware path was never attempted (probe failure)."""


@dataclass(frozen=True)
class EncodeFatal:
    reason: str
    attempt: EncodeAttemptResult | None = None
    critical: bool = False


EncodeOutcome = EncodeSuccess | EncodeNeedsFallback | EncodeFatal
