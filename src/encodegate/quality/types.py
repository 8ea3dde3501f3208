"""Quality measurement and verdict types."""

from __future__ import annotations

import statistics
from dataclasses import dataclass

# Identical frames give infinite PSNR; report this instead
PSNR_CAP_DB = 100.0


@dataclass(frozen=True)
class MetricSample:
    """PSNR/SSIM of one compared window."""

    position: float
    psnr: float
    ssim: float


@dataclass(frozen=True)
class MetricStats:
    """Aggregate of several MetricSamples."""

    psnr: float
    ssim: float
    psnr_stddev: float = 0.0
    ssim_stddev: float = 0.0
    samples: tuple[MetricSample, ...] = ()

    @classmethod
    def from_samples(cls, samples: list[MetricSample]) -> MetricStats:
        if not samples:
            raise ValueError("at least one sample is required")
        psnrs = [s.psnr for s in samples]
        ssims = [s.ssim for s in samples]
        return cls(
            psnr=statistics.fmean(psnrs),
            ssim=statistics.fmean(ssims),
            psnr_stddev=statistics.pstdev(psnrs) if len(psnrs) > 1 else 0.0,
            ssim_stddev=statistics.pstdev(ssims) if len(ssims) > 1 else 0.0,
            samples=tuple(samples),
        )


@dataclass(frozen=True)
class QualityThresholds:
    """Pass thresholds for one run, after adaptation to the source."""

    psnr: float
    ssim: float
    base_psnr: float
    base_ssim: float
    relaxed: bool = False
    reasons: tuple[str, ...] = ()
    """Why the thresholds differ from the base values."""


@dataclass(frozen=True)
class QualityVerdict:
    passed: bool
    measured: MetricStats
    thresholds: QualityThresholds
    ceiling: MetricStats | None = None
    psnr_efficiency: float | None = None
    ssim_efficiency: float | None = None
    efficiency_override: bool = False
    """True when a failing verdict was turned into a pass by SSIM efficiency."""

    reasons: tuple[str, ...] = ()
