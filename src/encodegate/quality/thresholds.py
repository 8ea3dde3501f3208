"""Adaptive PSNR/SSIM thresholds.

Base thresholds are capped at (ceiling - tolerance). When the ceiling is
low, the ceiling samples vary a lot, or the content is 4K, the thresholds
are relaxed further toward a fixed fraction of the ceiling. The result is
always within [floor, base].
"""

from __future__ import annotations

import logging

from encodegate.config.models import PSNR_FLOOR_DB, SSIM_FLOOR, QualityConfig
from encodegate.quality.types import MetricStats, QualityThresholds

logger = logging.getLogger(__name__)

LOW_CEILING_PSNR = 35.0
LOW_CEILING_SSIM = 0.95
HIGH_STDDEV_PSNR = 3.0
HIGH_STDDEV_SSIM = 0.02

RELAXED_PSNR_FRACTION = 0.85
RELAXED_SSIM_FRACTION = 0.97


def relaxation_reasons(ceiling: MetricStats | None, is_4k: bool) -> list[str]:
    reasons: list[str] = []
    if ceiling is not None:
        if ceiling.psnr < LOW_CEILING_PSNR or ceiling.ssim < LOW_CEILING_SSIM:
            reasons.append("low source ceiling")
        if (
            ceiling.psnr_stddev > HIGH_STDDEV_PSNR
            or ceiling.ssim_stddev > HIGH_STDDEV_SSIM
        ):
            reasons.append("high ceiling variance")
    if is_4k:
        reasons.append("4K content")
    return reasons


def adapt_thresholds(
    config: QualityConfig, ceiling: MetricStats | None, is_4k: bool = False
) -> QualityThresholds:
    """Compute the pass thresholds for a run.

    Without a ceiling the base thresholds apply unchanged; relaxation needs
    a ceiling to be relative to.
    """
    base_psnr = config.base_psnr
    base_ssim = config.base_ssim
    psnr = base_psnr
    ssim = base_ssim
    reasons: list[str] = []

    if ceiling is None:
        return QualityThresholds(
            psnr=psnr, ssim=ssim, base_psnr=base_psnr, base_ssim=base_ssim
        )

    psnr = min(psnr, ceiling.psnr - config.psnr_tolerance)
    ssim = min(ssim, ceiling.ssim - config.ssim_tolerance)
    if psnr < base_psnr or ssim < base_ssim:
        reasons.append("capped at ceiling minus tolerance")

    relax = relaxation_reasons(ceiling, is_4k)
    if relax:
        psnr = min(psnr, ceiling.psnr * RELAXED_PSNR_FRACTION)
        ssim = min(ssim, ceiling.ssim * RELAXED_SSIM_FRACTION)
        reasons.extend(relax)

    psnr = max(PSNR_FLOOR_DB, min(base_psnr, psnr))
    ssim = max(SSIM_FLOOR, min(base_ssim, ssim))

    thresholds = QualityThresholds(
        psnr=psnr,
        ssim=ssim,
        base_psnr=base_psnr,
        base_ssim=base_ssim,
        relaxed=bool(relax),
        reasons=tuple(reasons),
    )
    logger.info(
        "Quality thresholds: PSNR >= %.2f dB, SSIM >= %.4f",
        psnr,
        ssim,
        extra={"reasons": list(reasons)},
    )
    return thresholds


def efficiency(achieved: float, ceiling: float) -> float | None:
    """Achieved metric as a percentage of the ceiling."""
    if ceiling <= 0:
        return None
    return achieved / ceiling * 100.0
