"""Unit tests for FFmpeg progress parsing and metrics aggregation."""

import pytest

from encodegate.tools.ffmpeg_metrics import FFmpegMetricsAggregator
from encodegate.tools.ffmpeg_progress import (
    FFmpegProgress,
    parse_stderr_progress,
    parse_time_to_us,
)

ENCODE_LINE = (
    "frame= 1440 fps= 48.2 q=28.0 size=   12288kB time=00:01:00.06 "
    "bitrate=1676.1kbits/s speed=2.01x"
)
AUDIO_LINE = "size=N/A time=00:00:30.00 bitrate=N/A speed= 120x"


class TestParseStderrProgress:
    """Tests for parse_stderr_progress."""

    def test_encode_line(self) -> None:
        """A video progress line yields every field."""
        progress = parse_stderr_progress(ENCODE_LINE)
        assert progress is not None
        assert progress.frame == 1440
        assert progress.fps == 48.2
        assert progress.bitrate == "1676.1kbits/s"
        assert progress.speed == "2.01x"
        assert progress.out_time_seconds == pytest.approx(60.06)

    def test_audio_only_line(self) -> None:
        """Decode-only lines without frame= still carry time and speed."""
        progress = parse_stderr_progress(AUDIO_LINE)
        assert progress is not None
        assert progress.frame is None
        assert progress.bitrate is None
        assert progress.out_time_seconds == 30.0
        assert progress.speed_factor == 120.0

    def test_non_progress_line(self) -> None:
        assert parse_stderr_progress("Stream #0:0: Video: hevc") is None

    def test_negative_time_ignored(self) -> None:
        assert parse_time_to_us("time=-00:00:00.04") is None


class TestFFmpegProgress:
    def test_percent(self) -> None:
        progress = FFmpegProgress(out_time_us=30_000_000)
        assert progress.get_percent(120.0) == 25.0
        assert progress.get_percent(None) == 0.0
        assert FFmpegProgress(out_time_us=200_000_000).get_percent(100.0) == 100.0

    def test_bad_speed(self) -> None:
        assert FFmpegProgress(speed="N/A").speed_factor is None


class TestFFmpegMetricsAggregator:
    """Tests for FFmpegMetricsAggregator."""

    def test_empty_aggregator_returns_none_values(self) -> None:
        """Empty aggregator should return None for all metrics."""
        summary = FFmpegMetricsAggregator().summarize()
        assert summary.avg_fps is None
        assert summary.total_frames is None
        assert summary.last_time_seconds is None
        assert summary.sample_count == 0

    def test_multiple_samples_average(self) -> None:
        """Multiple samples should be averaged; frame and time are last seen."""
        aggregator = FFmpegMetricsAggregator()
        for progress in (
            FFmpegProgress(frame=100, fps=20.0, bitrate="4000kbits/s"),
            FFmpegProgress(frame=200, fps=30.0, bitrate="5.0Mbits/s"),
            FFmpegProgress(frame=300, fps=40.0, out_time_us=12_500_000),
        ):
            aggregator.add_sample(progress)

        summary = aggregator.summarize()
        assert summary.avg_fps == 30.0
        assert summary.peak_fps == 40.0
        assert summary.avg_bitrate_kbps == 4500
        assert summary.total_frames == 300
        assert summary.last_time_seconds == 12.5
        assert summary.sample_count == 3

    def test_zero_fps_ignored(self) -> None:
        """FPS of 0 should be ignored (happens at start of encoding)."""
        aggregator = FFmpegMetricsAggregator()
        aggregator.add_sample(FFmpegProgress(frame=0, fps=0.0, bitrate="0kbits/s"))
        aggregator.add_sample(FFmpegProgress(frame=10, fps=24.0))
        summary = aggregator.summarize()
        assert summary.avg_fps == 24.0
        assert summary.avg_bitrate_kbps is None
