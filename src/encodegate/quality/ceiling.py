"""Source ceiling analysis.

Estimates how well the source can be reproduced at all: each sampled
window is re-encoded at near-lossless quality and compared with itself.
Noisy or damaged sources show a low ceiling, and the thresholds are
relaxed accordingly.
"""

from __future__ import annotations

import logging
from pathlib import Path

from encodegate.domain.models import VideoDescriptor
from encodegate.quality.metrics import measure_pair
from encodegate.quality.sampling import SampleExtractor, ceiling_positions
from encodegate.quality.types import MetricSample, MetricStats

logger = logging.getLogger(__name__)

CEILING_ENCODER = "libx265"
CEILING_CRF = 1
CEILING_PRESET = "ultrafast"


def build_reencode_command(
    ffmpeg_path: Path, reference: Path, output: Path
) -> list[str]:
    """Near-lossless self-reencode of a raw sample, decoded back to y4m."""
    return [
        str(ffmpeg_path),
        "-hide_banner",
        "-nostdin",
        "-y",
        "-i",
        str(reference),
        "-c:v",
        CEILING_ENCODER,
        "-preset",
        CEILING_PRESET,
        "-crf",
        str(CEILING_CRF),
        "-x265-params",
        "log-level=error",
        "-f",
        "matroska",
        str(output),
    ]


class CeilingAnalyzer:
    """Measure the source's self-reencode PSNR/SSIM ceiling."""

    def __init__(
        self,
        extractor: SampleExtractor,
        sample_count: int = 3,
        sample_seconds: float = 5.0,
    ) -> None:
        self._extractor = extractor
        self._sample_count = sample_count
        self._sample_seconds = sample_seconds

    def _measure_position(
        self, source: Path, video: VideoDescriptor, position: float, work_dir: Path
    ) -> MetricSample | None:
        tag = f"{position:.0f}"
        reference = work_dir / f"ceiling_ref_{tag}.y4m"
        encoded = work_dir / f"ceiling_enc_{tag}.mkv"
        decoded = work_dir / f"ceiling_dec_{tag}.y4m"
        extractor = self._extractor
        try:
            if not extractor.extract(
                source, video.stream_index, position, self._sample_seconds, reference
            ):
                return None

            outcome = extractor.runner.run(
                build_reencode_command(extractor.ffmpeg_path, reference, encoded),
                f"ceiling re-encode at {tag}s",
                timeout=extractor.timeout,
            )
            if not outcome.success or not encoded.exists():
                logger.warning("Ceiling re-encode at %ss failed", tag)
                return None

            if not extractor.extract(encoded, 0, 0.0, self._sample_seconds, decoded):
                return None

            return measure_pair(
                extractor.ffmpeg_path,
                extractor.runner,
                decoded,
                reference,
                position,
                extractor.timeout,
            )
        finally:
            for path in (reference, encoded, decoded):
                path.unlink(missing_ok=True)

    def analyze(
        self, source: Path, video: VideoDescriptor, work_dir: Path
    ) -> MetricStats | None:
        """Return the aggregate ceiling, or None when no sample succeeded."""
        positions = ceiling_positions(
            video.duration, self._sample_count, self._sample_seconds
        )
        samples: list[MetricSample] = []
        for position in positions:
            sample = self._measure_position(source, video, position, work_dir)
            if sample is not None:
                samples.append(sample)
        if not samples:
            logger.warning("Source ceiling analysis produced no samples")
            return None

        ceiling = MetricStats.from_samples(samples)
        logger.info(
            "Source ceiling: PSNR %.2f dB (sd %.2f), SSIM %.4f (sd %.4f)",
            ceiling.psnr,
            ceiling.psnr_stddev,
            ceiling.ssim,
            ceiling.ssim_stddev,
            extra={"samples": len(samples), "positions": positions},
        )
        return ceiling
