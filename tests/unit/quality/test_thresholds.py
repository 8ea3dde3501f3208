"""Tests for adaptive quality thresholds."""

import pytest

from encodegate.config.models import PSNR_FLOOR_DB, SSIM_FLOOR, QualityConfig
from encodegate.quality.thresholds import (
    adapt_thresholds,
    efficiency,
    relaxation_reasons,
)
from encodegate.quality.types import MetricStats


def _ceiling(psnr: float, ssim: float, psnr_sd: float = 0.5, ssim_sd: float = 0.002):
    return MetricStats(psnr=psnr, ssim=ssim, psnr_stddev=psnr_sd, ssim_stddev=ssim_sd)


class TestRelaxationReasons:
    def test_clean_ceiling(self) -> None:
        assert relaxation_reasons(_ceiling(45.0, 0.99), is_4k=False) == []

    def test_low_ceiling(self) -> None:
        assert "low source ceiling" in relaxation_reasons(_ceiling(33.0, 0.99), False)

    def test_high_variance(self) -> None:
        reasons = relaxation_reasons(_ceiling(45.0, 0.99, psnr_sd=4.0), False)
        assert reasons == ["high ceiling variance"]

    def test_4k_without_ceiling(self) -> None:
        assert relaxation_reasons(None, is_4k=True) == ["4K content"]


class TestAdaptThresholds:
    def test_no_ceiling_uses_base(self) -> None:
        thresholds = adapt_thresholds(QualityConfig(), None, is_4k=True)
        assert thresholds.psnr == 35.0
        assert thresholds.ssim == 0.95
        assert not thresholds.relaxed

    def test_capped_at_ceiling_minus_tolerance(self) -> None:
        thresholds = adapt_thresholds(QualityConfig(), _ceiling(38.0, 0.99))
        assert thresholds.psnr == pytest.approx(33.0)
        assert thresholds.ssim == pytest.approx(0.95)
        assert not thresholds.relaxed
        assert "capped at ceiling minus tolerance" in thresholds.reasons

    def test_high_ceiling_keeps_base(self) -> None:
        thresholds = adapt_thresholds(QualityConfig(), _ceiling(48.0, 0.995))
        assert thresholds.psnr == 35.0
        assert thresholds.ssim == 0.95
        assert thresholds.reasons == ()

    def test_4k_relaxes_toward_fraction(self) -> None:
        thresholds = adapt_thresholds(
            QualityConfig(), _ceiling(40.0, 0.98), is_4k=True
        )
        assert thresholds.relaxed
        assert thresholds.psnr == pytest.approx(34.0)
        assert thresholds.ssim == pytest.approx(0.95)

    def test_never_below_floor(self) -> None:
        thresholds = adapt_thresholds(QualityConfig(), _ceiling(18.0, 0.70))
        assert thresholds.psnr == PSNR_FLOOR_DB
        assert thresholds.ssim == SSIM_FLOOR

    @pytest.mark.parametrize("psnr", [20.0, 30.0, 38.0, 42.0, 60.0])
    def test_within_floor_and_base(self, psnr: float) -> None:
        config = QualityConfig()
        thresholds = adapt_thresholds(config, _ceiling(psnr, 0.97), is_4k=True)
        assert PSNR_FLOOR_DB <= thresholds.psnr <= config.base_psnr
        assert SSIM_FLOOR <= thresholds.ssim <= config.base_ssim


class TestEfficiency:
    def test_percentage(self) -> None:
        assert efficiency(0.95, 0.99) == pytest.approx(95.96, abs=0.01)

    def test_zero_ceiling(self) -> None:
        assert efficiency(0.95, 0.0) is None
