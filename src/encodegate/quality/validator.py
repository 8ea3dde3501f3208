"""Output quality validation.

Compares the finished encode with the original at several positions and
decides whether it clears the run's adaptive thresholds. A verdict needs
the mean PSNR and the mean SSIM to both clear their threshold. A failing
verdict is overridden to a pass when SSIM efficiency against the source
ceiling exceeds the configured percentage.

All sample files live in a directory owned by the validator and are
removed on every exit path.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from encodegate.config.models import QualityConfig
from encodegate.domain.models import VideoDescriptor
from encodegate.quality.metrics import measure_pair
from encodegate.quality.sampling import SampleExtractor, validation_positions
from encodegate.quality.thresholds import efficiency
from encodegate.quality.types import (
    MetricSample,
    MetricStats,
    QualityThresholds,
    QualityVerdict,
)
from encodegate.workflow.exceptions import StageError

logger = logging.getLogger(__name__)


def judge(
    measured: MetricStats,
    thresholds: QualityThresholds,
    ceiling: MetricStats | None,
    efficiency_override_percent: float,
) -> QualityVerdict:
    """Apply thresholds and the efficiency override to measured metrics."""
    reasons: list[str] = []
    if measured.psnr < thresholds.psnr:
        reasons.append(
            f"mean PSNR {measured.psnr:.2f} dB < {thresholds.psnr:.2f} dB"
        )
    if measured.ssim < thresholds.ssim:
        reasons.append(f"mean SSIM {measured.ssim:.4f} < {thresholds.ssim:.4f}")
    passed = not reasons

    psnr_eff: float | None = None
    ssim_eff: float | None = None
    if ceiling is not None:
        psnr_eff = efficiency(measured.psnr, ceiling.psnr)
        ssim_eff = efficiency(measured.ssim, ceiling.ssim)

    override = False
    if not passed and ssim_eff is not None and ssim_eff > efficiency_override_percent:
        override = True
        passed = True
        reasons.append(
            f"accepted on SSIM efficiency {ssim_eff:.1f}% > "
            f"{efficiency_override_percent:g}%"
        )

    return QualityVerdict(
        passed=passed,
        measured=measured,
        thresholds=thresholds,
        ceiling=ceiling,
        psnr_efficiency=psnr_eff,
        ssim_efficiency=ssim_eff,
        efficiency_override=override,
        reasons=tuple(reasons),
    )


class QualityValidator:
    """Sample, measure and judge an encode against its original."""

    def __init__(self, extractor: SampleExtractor, config: QualityConfig) -> None:
        self._extractor = extractor
        self._config = config

    def _measure_position(
        self,
        original: Path,
        original_video: VideoDescriptor,
        encoded: Path,
        encoded_video: VideoDescriptor,
        position: float,
        work_dir: Path,
    ) -> MetricSample | None:
        seconds = self._config.sample_seconds
        tag = f"{position:.0f}"
        reference = work_dir / f"ref_{tag}.y4m"
        distorted = work_dir / f"out_{tag}.y4m"
        extractor = self._extractor
        if not extractor.extract(
            original, original_video.stream_index, position, seconds, reference
        ):
            return None
        if not extractor.extract(
            encoded, encoded_video.stream_index, position, seconds, distorted
        ):
            return None

        scale_to: tuple[int, int] | None = None
        if (encoded_video.width, encoded_video.height) != (
            original_video.width,
            original_video.height,
        ):
            scale_to = (original_video.width, original_video.height)

        sample = measure_pair(
            extractor.ffmpeg_path,
            extractor.runner,
            distorted,
            reference,
            position,
            extractor.timeout,
            scale_to=scale_to,
        )
        reference.unlink(missing_ok=True)
        distorted.unlink(missing_ok=True)
        if sample is not None:
            logger.debug(
                "Sample at %.0fs: PSNR %.2f dB, SSIM %.4f",
                position,
                sample.psnr,
                sample.ssim,
            )
        return sample

    def validate(
        self,
        original: Path,
        original_video: VideoDescriptor,
        encoded: Path,
        encoded_video: VideoDescriptor,
        thresholds: QualityThresholds,
        work_dir: Path,
        ceiling: MetricStats | None = None,
    ) -> QualityVerdict:
        """Validate ``encoded`` against ``original``.

        Args:
            original: Original source file.
            original_video: Descriptor of the original's video stream.
            encoded: Finished encode.
            encoded_video: Descriptor of the encode's video stream.
            thresholds: Adapted pass thresholds.
            work_dir: Parent directory for the sample directory.
            ceiling: Source ceiling, enables efficiency figures.

        Raises:
            StageError: If no sample could be measured.
        """
        config = self._config
        sample_dir = work_dir / "quality_samples"
        sample_dir.mkdir(parents=True, exist_ok=True)
        try:
            positions = validation_positions(
                original_video.duration,
                config.sample_count,
                config.sample_seconds,
                config.intro_skip_seconds,
            )
            samples: list[MetricSample] = []
            for position in positions:
                sample = self._measure_position(
                    original,
                    original_video,
                    encoded,
                    encoded_video,
                    position,
                    sample_dir,
                )
                if sample is not None:
                    samples.append(sample)
        finally:
            shutil.rmtree(sample_dir, ignore_errors=True)

        if not samples:
            raise StageError("quality validation", "no sample could be measured")
        if len(samples) < len(positions):
            logger.warning(
                "Only %d of %d quality samples measured", len(samples), len(positions)
            )

        verdict = judge(
            MetricStats.from_samples(samples),
            thresholds,
            ceiling,
            config.efficiency_override_percent,
        )
        log = logger.info if verdict.passed else logger.warning
        log(
            "Quality %s: PSNR %.2f dB (>= %.2f), SSIM %.4f (>= %.4f)%s",
            "passed" if verdict.passed else "failed",
            verdict.measured.psnr,
            thresholds.psnr,
            verdict.measured.ssim,
            thresholds.ssim,
            " via efficiency override" if verdict.efficiency_override else "",
            extra={
                "psnr_efficiency": verdict.psnr_efficiency,
                "ssim_efficiency": verdict.ssim_efficiency,
                "samples": len(samples),
            },
        )
        return verdict
