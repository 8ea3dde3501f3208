"""Tests for quality measurement types."""

import pytest

from encodegate.quality.types import MetricSample, MetricStats


class TestMetricStats:
    def test_single_sample_has_no_spread(self) -> None:
        stats = MetricStats.from_samples([MetricSample(60.0, 40.0, 0.97)])
        assert stats.psnr == 40.0
        assert stats.ssim == 0.97
        assert stats.psnr_stddev == 0.0

    def test_mean_and_population_stddev(self) -> None:
        stats = MetricStats.from_samples(
            [MetricSample(10.0, 38.0, 0.96), MetricSample(20.0, 42.0, 0.98)]
        )
        assert stats.psnr == pytest.approx(40.0)
        assert stats.ssim == pytest.approx(0.97)
        assert stats.psnr_stddev == pytest.approx(2.0)
        assert stats.ssim_stddev == pytest.approx(0.01)
        assert len(stats.samples) == 2

    def test_empty_rejected(self) -> None:
        with pytest.raises(ValueError):
            MetricStats.from_samples([])
