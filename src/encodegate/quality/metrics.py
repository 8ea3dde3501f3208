"""PSNR/SSIM measurement with ffmpeg's ``psnr`` and ``ssim`` filters.

Both filters run in one pass over a distorted/reference pair and print a
summary line on stderr when the stream ends:

    [Parsed_psnr_2 @ 0x...] PSNR y:41.2 u:45.0 v:45.3 average:42.1 min:...
    [Parsed_ssim_3 @ 0x...] SSIM Y:0.98 (17.3) U:0.99 (20.1) ... All:0.985 (18.2)
"""

from __future__ import annotations

import logging
import math
import re
from pathlib import Path

from encodegate.core.subprocess_utils import StreamingProcessRunner
from encodegate.quality.types import PSNR_CAP_DB, MetricSample

logger = logging.getLogger(__name__)

PSNR_AVERAGE_PATTERN = re.compile(r"PSNR .*average:(\S+)")
SSIM_ALL_PATTERN = re.compile(r"SSIM .*All:(\S+)")


def parse_psnr_value(text: str) -> float | None:
    """Parse a PSNR figure, capping infinity at PSNR_CAP_DB."""
    try:
        value = float(text)
    except ValueError:
        return None
    if math.isinf(value) or value > PSNR_CAP_DB:
        return PSNR_CAP_DB
    if math.isnan(value):
        return None
    return value


class MetricLineCollector:
    """Pick the PSNR and SSIM summaries out of ffmpeg stderr lines."""

    def __init__(self) -> None:
        self.psnr: float | None = None
        self.ssim: float | None = None

    def feed(self, line: str) -> None:
        match = PSNR_AVERAGE_PATTERN.search(line)
        if match:
            self.psnr = parse_psnr_value(match.group(1))
            return
        match = SSIM_ALL_PATTERN.search(line)
        if match:
            try:
                self.ssim = float(match.group(1))
            except ValueError:
                self.ssim = None


def build_metric_filter(scale_to: tuple[int, int] | None = None) -> str:
    """Filter graph comparing input 0 (distorted) against input 1 (reference).

    Args:
        scale_to: Reference (width, height) when the distorted input has a
            different resolution.
    """
    distorted = "[0:v]"
    if scale_to is not None:
        width, height = scale_to
        distorted = f"[0:v]scale={width}:{height}:flags=bicubic,"
    return (
        f"{distorted}split=2[d1][d2];"
        "[1:v]split=2[r1][r2];"
        "[d1][r1]psnr;"
        "[d2][r2]ssim"
    )


def build_metric_command(
    ffmpeg_path: Path,
    distorted: Path,
    reference: Path,
    scale_to: tuple[int, int] | None = None,
) -> list[str]:
    return [
        str(ffmpeg_path),
        "-hide_banner",
        "-nostdin",
        "-i",
        str(distorted),
        "-i",
        str(reference),
        "-lavfi",
        build_metric_filter(scale_to),
        "-f",
        "null",
        "-",
    ]


def measure_pair(
    ffmpeg_path: Path,
    runner: StreamingProcessRunner,
    distorted: Path,
    reference: Path,
    position: float,
    timeout: float,
    scale_to: tuple[int, int] | None = None,
) -> MetricSample | None:
    """Compare two decoded samples.

    Returns:
        The sample's metrics, or None when ffmpeg failed or printed no
        summary.
    """
    collector = MetricLineCollector()
    outcome = runner.run(
        build_metric_command(ffmpeg_path, distorted, reference, scale_to),
        f"quality metrics at {position:.0f}s",
        timeout=timeout,
        line_callback=collector.feed,
    )
    if not outcome.success or collector.psnr is None or collector.ssim is None:
        logger.warning(
            "No metrics for sample at %.0fs (rc=%d): %s",
            position,
            outcome.returncode,
            outcome.tail_text(3),
        )
        return None
    return MetricSample(position=position, psnr=collector.psnr, ssim=collector.ssim)
