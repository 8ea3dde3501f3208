"""Sample window placement and extraction.

Samples are decoded to raw y4m so that both sides of every comparison are
in the same pixel format regardless of how they were encoded.
"""

from __future__ import annotations

import logging
from pathlib import Path

from encodegate.core.subprocess_utils import StreamingProcessRunner

logger = logging.getLogger(__name__)

SAMPLE_PIXEL_FORMAT = "yuv420p10le"

# Content shorter than this multiple of the intro skip uses a 10% intro
SHORT_CONTENT_FACTOR = 4
SHORT_CONTENT_INTRO_FRACTION = 0.10


def intro_skip_for(duration: float, intro_skip: float) -> float:
    """Seconds skipped at the start before the first validation sample."""
    if duration < intro_skip * SHORT_CONTENT_FACTOR:
        return duration * SHORT_CONTENT_INTRO_FRACTION
    return intro_skip


def validation_positions(
    duration: float, count: int, sample_seconds: float, intro_skip: float
) -> list[float]:
    """Evenly spaced sample starts between the intro and the last full window."""
    if duration <= 0 or count <= 0:
        return []
    start = intro_skip_for(duration, intro_skip)
    end = max(start, duration - sample_seconds)
    if count == 1 or end <= start:
        return [round(start, 3)]
    step = (end - start) / (count - 1)
    return [round(start + i * step, 3) for i in range(count)]


def ceiling_positions(
    duration: float, count: int, sample_seconds: float
) -> list[float]:
    """Ceiling samples at evenly spaced interior points (20%..80%)."""
    if duration <= 0 or count <= 0:
        return []
    start = duration * 0.20
    end = max(start, min(duration * 0.80, duration - sample_seconds))
    if count == 1:
        return [round((start + end) / 2, 3)]
    step = (end - start) / (count - 1)
    return [round(start + i * step, 3) for i in range(count)]


class SampleExtractor:
    """Decode short windows of a file to raw y4m."""

    def __init__(
        self,
        ffmpeg_path: Path,
        runner: StreamingProcessRunner,
        timeout: float = 600.0,
    ) -> None:
        self._ffmpeg_path = ffmpeg_path
        self._runner = runner
        self._timeout = timeout

    @property
    def ffmpeg_path(self) -> Path:
        return self._ffmpeg_path

    @property
    def runner(self) -> StreamingProcessRunner:
        return self._runner

    @property
    def timeout(self) -> float:
        return self._timeout

    def build_command(
        self,
        source: Path,
        stream_index: int,
        start: float,
        seconds: float,
        output: Path,
    ) -> list[str]:
        return [
            str(self._ffmpeg_path),
            "-hide_banner",
            "-nostdin",
            "-y",
            "-ss",
            f"{start:.3f}",
            "-i",
            str(source),
            "-map",
            f"0:{stream_index}",
            "-t",
            f"{seconds:g}",
            "-an",
            "-sn",
            "-pix_fmt",
            SAMPLE_PIXEL_FORMAT,
            "-strict",
            "-1",
            "-f",
            "yuv4mpegpipe",
            str(output),
        ]

    def extract(
        self,
        source: Path,
        stream_index: int,
        start: float,
        seconds: float,
        output: Path,
    ) -> bool:
        outcome = self._runner.run(
            self.build_command(source, stream_index, start, seconds, output),
            f"sample extraction at {start:.0f}s",
            timeout=self._timeout,
        )
        if not outcome.success or not output.exists() or output.stat().st_size == 0:
            logger.warning(
                "Sample extraction at %.0fs from %s failed: %s",
                start,
                source.name,
                outcome.tail_text(3),
            )
            output.unlink(missing_ok=True)
            return False
        return True
