"""Content complexity sampling.

Decodes a few short windows of the source to a null sink and turns decode
throughput into a quality delta in [-2, +3]. Content that decodes slowly
or unevenly is busy and gets a lower (better) quality value; content that
decodes fast and evenly gets a higher one.
"""

from __future__ import annotations

import logging
import statistics
from dataclasses import dataclass
from pathlib import Path

from encodegate.core.subprocess_utils import StreamingProcessRunner
from encodegate.domain.enums import BitrateClass
from encodegate.domain.models import VideoDescriptor
from encodegate.encoding.corruption import CorruptionScanner

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 10.0

SLOW_DECODE_RATIO = 1.5
FAST_DECODE_RATIO = 4.0
LOW_VARIANCE_CV = 0.15

BITRATE_FACTORS: dict[BitrateClass, int] = {
    BitrateClass.VERY_HIGH: -1,
    BitrateClass.HIGH: 0,
    BitrateClass.MEDIUM: 0,
    BitrateClass.LOW: 1,
}


def sample_count_for(duration: float) -> int:
    if duration < 600:
        return 3
    if duration < 3600:
        return 5
    return 7


def sample_positions(
    duration: float, count: int, window: float = DEFAULT_WINDOW_SECONDS
) -> list[float]:
    """Evenly spaced window starts across 10%-90% of the duration."""
    if duration <= 0 or count <= 0:
        return []
    start = duration * 0.10
    end = max(start, min(duration * 0.90, duration - window))
    if count == 1:
        return [round((start + end) / 2, 3)]
    step = (end - start) / (count - 1)
    return [round(start + i * step, 3) for i in range(count)]


@dataclass(frozen=True)
class ComplexityWindow:
    """Measurement of one decoded window."""

    position: float
    frames: int
    wall_seconds: float
    corrupted: bool = False

    @property
    def decode_fps(self) -> float:
        if self.wall_seconds <= 0:
            return 0.0
        return self.frames / self.wall_seconds

    @property
    def usable(self) -> bool:
        return not self.corrupted and self.frames > 0 and self.wall_seconds > 0


@dataclass(frozen=True)
class ComplexityResult:
    delta: int = 0
    bitrate_factor: int = 0
    speed_factor: int = 0
    variance_factor: int = 0
    speed_ratio: float | None = None
    variation: float | None = None
    windows: tuple[ComplexityWindow, ...] = ()

    @property
    def usable_count(self) -> int:
        return sum(1 for w in self.windows if w.usable)


def speed_factor(speed_ratio: float) -> int:
    if speed_ratio < SLOW_DECODE_RATIO:
        return -1
    if speed_ratio < FAST_DECODE_RATIO:
        return 0
    return 1


def variance_factor(variation: float | None) -> int:
    if variation is None:
        return 0
    return 1 if variation < LOW_VARIANCE_CV else 0


def compute_complexity(
    windows: list[ComplexityWindow] | tuple[ComplexityWindow, ...],
    bitrate_class: BitrateClass | None,
    source_fps: float,
) -> ComplexityResult:
    """Combine window measurements into a complexity delta.

    Corrupted windows are discarded. Without a usable window the delta is 0.
    """
    usable = [w for w in windows if w.usable]
    if not usable or source_fps <= 0:
        return ComplexityResult(windows=tuple(windows))

    speeds = [w.decode_fps for w in usable]
    mean_speed = statistics.fmean(speeds)
    ratio = mean_speed / source_fps
    variation: float | None = None
    if len(speeds) >= 2 and mean_speed > 0:
        variation = statistics.pstdev(speeds) / mean_speed

    b_factor = BITRATE_FACTORS.get(bitrate_class, 0) if bitrate_class else 0
    s_factor = speed_factor(ratio)
    v_factor = variance_factor(variation)
    return ComplexityResult(
        delta=b_factor + s_factor + v_factor,
        bitrate_factor=b_factor,
        speed_factor=s_factor,
        variance_factor=v_factor,
        speed_ratio=ratio,
        variation=variation,
        windows=tuple(windows),
    )


class ComplexitySampler:
    """Measure decode throughput of sampled source windows."""

    def __init__(
        self,
        ffmpeg_path: Path,
        runner: StreamingProcessRunner,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        timeout: float = 120.0,
    ) -> None:
        self._ffmpeg_path = ffmpeg_path
        self._runner = runner
        self._window = window_seconds
        self._timeout = timeout

    def build_command(
        self, source: Path, video: VideoDescriptor, position: float
    ) -> list[str]:
        return [
            str(self._ffmpeg_path),
            "-hide_banner",
            "-nostdin",
            "-ss",
            f"{position:.3f}",
            "-i",
            str(source),
            "-map",
            f"0:{video.stream_index}",
            "-t",
            f"{self._window:g}",
            "-an",
            "-sn",
            "-f",
            "null",
            "-",
        ]

    def measure_window(
        self, source: Path, video: VideoDescriptor, position: float
    ) -> ComplexityWindow:
        scanner = CorruptionScanner()
        outcome = self._runner.run(
            self.build_command(source, video, position),
            f"complexity sample at {position:.0f}s",
            timeout=self._timeout,
            line_callback=scanner.feed,
        )
        report = scanner.report()
        corrupted = (
            not outcome.success
            or report.container_matches > 0
            or report.total_weighted > 0
        )
        if corrupted:
            logger.info(
                "Discarding complexity window at %.0fs (rc=%d, %d defect lines)",
                position,
                outcome.returncode,
                report.total_matches,
            )
        return ComplexityWindow(
            position=position,
            frames=outcome.metrics.total_frames or 0,
            wall_seconds=outcome.elapsed_seconds,
            corrupted=corrupted,
        )

    def measure(
        self,
        source: Path,
        video: VideoDescriptor,
        bitrate_class: BitrateClass | None,
    ) -> ComplexityResult:
        positions = sample_positions(
            video.duration, sample_count_for(video.duration), self._window
        )
        windows = [self.measure_window(source, video, pos) for pos in positions]
        result = compute_complexity(windows, bitrate_class, video.frame_rate)
        logger.info(
            "Content complexity delta %+d from %d/%d usable window(s)",
            result.delta,
            result.usable_count,
            len(windows),
            extra={
                "bitrate_factor": result.bitrate_factor,
                "speed_factor": result.speed_factor,
                "variance_factor": result.variance_factor,
                "speed_ratio": result.speed_ratio,
            },
        )
        return result
