"""Tests for source ceiling analysis."""

from pathlib import Path
from unittest.mock import MagicMock, patch

from encodegate.core.subprocess_utils import ProcessOutcome
from encodegate.quality.ceiling import (
    CEILING_CRF,
    CeilingAnalyzer,
    build_reencode_command,
)
from encodegate.quality.types import MetricSample


def _extractor(runner_returncode: int = 0) -> MagicMock:
    extractor = MagicMock()
    extractor.ffmpeg_path = Path("ffmpeg")
    extractor.timeout = 60.0

    def extract(source, stream_index, start, seconds, output):
        output.write_bytes(b"YUV4MPEG2")
        return True

    def run(cmd, description, timeout=None, **kwargs):
        Path(cmd[-1]).write_bytes(b"mkv")
        return ProcessOutcome(returncode=runner_returncode)

    extractor.extract.side_effect = extract
    extractor.runner.run.side_effect = run
    return extractor


def test_reencode_command_is_near_lossless() -> None:
    cmd = build_reencode_command(Path("ffmpeg"), Path("r.y4m"), Path("e.mkv"))
    assert cmd[cmd.index("-crf") + 1] == str(CEILING_CRF)
    assert cmd[-1] == "e.mkv"


class TestCeilingAnalyzer:
    @patch("encodegate.quality.ceiling.measure_pair")
    def test_aggregates_samples(self, mock_measure, temp_dir: Path, make_video):
        mock_measure.side_effect = [
            MetricSample(1080.0, 44.0, 0.99),
            MetricSample(2700.0, 46.0, 0.99),
            MetricSample(4320.0, 45.0, 0.99),
        ]
        analyzer = CeilingAnalyzer(_extractor(), sample_count=3)
        ceiling = analyzer.analyze(Path("in.mkv"), make_video(), temp_dir)
        assert ceiling is not None
        assert ceiling.psnr == 45.0
        assert len(ceiling.samples) == 3
        assert list(temp_dir.iterdir()) == []

    @patch("encodegate.quality.ceiling.measure_pair")
    def test_failed_reencode_yields_none(
        self, mock_measure, temp_dir: Path, make_video
    ) -> None:
        analyzer = CeilingAnalyzer(_extractor(runner_returncode=1))
        assert analyzer.analyze(Path("in.mkv"), make_video(), temp_dir) is None
        mock_measure.assert_not_called()
        assert list(temp_dir.iterdir()) == []

    @patch("encodegate.quality.ceiling.measure_pair")
    def test_partial_samples(self, mock_measure, temp_dir: Path, make_video):
        mock_measure.side_effect = [None, MetricSample(2700.0, 40.0, 0.97), None]
        ceiling = CeilingAnalyzer(_extractor()).analyze(
            Path("in.mkv"), make_video(), temp_dir
        )
        assert ceiling.psnr == 40.0
        assert ceiling.psnr_stddev == 0.0
