"""Tests for output quality validation."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from encodegate.config.models import QualityConfig
from encodegate.quality.thresholds import adapt_thresholds
from encodegate.quality.types import MetricSample, MetricStats, QualityThresholds
from encodegate.quality.validator import QualityValidator, judge
from encodegate.workflow.exceptions import StageError

BASE = QualityThresholds(psnr=35.0, ssim=0.95, base_psnr=35.0, base_ssim=0.95)


def _stats(psnr: float, ssim: float) -> MetricStats:
    return MetricStats(psnr=psnr, ssim=ssim)


class TestJudge:
    def test_pass(self) -> None:
        verdict = judge(_stats(40.0, 0.97), BASE, None, 90.0)
        assert verdict.passed
        assert verdict.reasons == ()
        assert verdict.ssim_efficiency is None

    def test_both_metrics_required(self) -> None:
        verdict = judge(_stats(40.0, 0.93), BASE, None, 90.0)
        assert not verdict.passed
        assert verdict.reasons == ("mean SSIM 0.9300 < 0.9500",)

    def test_identical_samples_pass(self) -> None:
        verdict = judge(_stats(100.0, 1.0), BASE, None, 90.0)
        assert verdict.passed

    def test_low_ceiling_pass(self) -> None:
        ceiling = MetricStats(psnr=38.0, ssim=0.99)
        thresholds = adapt_thresholds(QualityConfig(), ceiling)
        verdict = judge(_stats(34.5, 0.96), thresholds, ceiling, 90.0)
        assert thresholds.psnr == pytest.approx(33.0)
        assert verdict.passed
        assert not verdict.efficiency_override

    def test_efficiency_override(self) -> None:
        ceiling = MetricStats(psnr=40.0, ssim=0.96)
        thresholds = QualityThresholds(
            psnr=35.0, ssim=0.95, base_psnr=35.0, base_ssim=0.95
        )
        verdict = judge(_stats(33.0, 0.94), thresholds, ceiling, 90.0)
        assert verdict.passed
        assert verdict.efficiency_override
        assert verdict.ssim_efficiency == pytest.approx(97.92, abs=0.01)

    def test_no_override_below_efficiency(self) -> None:
        ceiling = MetricStats(psnr=40.0, ssim=0.99)
        verdict = judge(_stats(33.0, 0.85), BASE, ceiling, 90.0)
        assert not verdict.passed
        assert not verdict.efficiency_override


@pytest.fixture
def extractor() -> MagicMock:
    extractor = MagicMock()
    extractor.ffmpeg_path = Path("ffmpeg")
    extractor.timeout = 60.0

    def extract(source, stream_index, start, seconds, output):
        output.write_bytes(b"YUV4MPEG2")
        return True

    extractor.extract.side_effect = extract
    return extractor


class TestQualityValidator:
    @patch("encodegate.quality.validator.measure_pair")
    def test_validate_passes_and_cleans_up(
        self, mock_measure, extractor, temp_dir: Path, make_video
    ) -> None:
        mock_measure.side_effect = lambda *args, **kwargs: MetricSample(
            args[4], 41.0, 0.975
        )
        video = make_video()
        validator = QualityValidator(extractor, QualityConfig(sample_count=3))
        verdict = validator.validate(
            Path("in.mkv"), video, Path("out.mkv"), video, BASE, temp_dir
        )
        assert verdict.passed
        assert len(verdict.measured.samples) == 3
        assert mock_measure.call_args.kwargs["scale_to"] is None
        assert not (temp_dir / "quality_samples").exists()

    @patch("encodegate.quality.validator.measure_pair")
    def test_resolution_mismatch_scales(
        self, mock_measure, extractor, temp_dir: Path, make_video
    ) -> None:
        mock_measure.return_value = MetricSample(60.0, 41.0, 0.975)
        original = make_video(width=3840, height=2160)
        encoded = make_video()
        QualityValidator(extractor, QualityConfig(sample_count=1)).validate(
            Path("in.mkv"), original, Path("out.mkv"), encoded, BASE, temp_dir
        )
        assert mock_measure.call_args.kwargs["scale_to"] == (3840, 2160)

    @patch("encodegate.quality.validator.measure_pair")
    def test_failing_verdict(
        self, mock_measure, extractor, temp_dir: Path, make_video
    ) -> None:
        mock_measure.return_value = MetricSample(60.0, 30.0, 0.90)
        video = make_video()
        verdict = QualityValidator(extractor, QualityConfig()).validate(
            Path("in.mkv"), video, Path("out.mkv"), video, BASE, temp_dir
        )
        assert not verdict.passed
        assert len(verdict.reasons) == 2

    @patch("encodegate.quality.validator.measure_pair")
    def test_no_samples_is_stage_error(
        self, mock_measure, extractor, temp_dir: Path, make_video
    ) -> None:
        mock_measure.return_value = None
        video = make_video()
        with pytest.raises(StageError):
            QualityValidator(extractor, QualityConfig()).validate(
                Path("in.mkv"), video, Path("out.mkv"), video, BASE, temp_dir
            )
        assert not (temp_dir / "quality_samples").exists()
