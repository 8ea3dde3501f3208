"""Tests for audio stream scoring and selection."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from encodegate.config.models import SelectionConfig
from encodegate.core.subprocess_utils import ProcessOutcome
from encodegate.domain.models import AudioStreamCandidate, ProbeResult
from encodegate.selection.audio import (
    AudioUsabilityProbe,
    DurationCheck,
    UsabilityResult,
    channel_bonus,
    check_duration_compatibility,
    codec_tier,
    filter_reason,
    score_audio_stream,
    select_audio_stream,
)
from encodegate.tools.ffmpeg_metrics import FFmpegMetricsSummary
from encodegate.workflow.exceptions import AudioSelectionError


def _audio(index: int = 1, **kwargs) -> AudioStreamCandidate:
    values = {
        "codec": "ac3",
        "channels": 6,
        "sample_rate": 48000,
        "bitrate": 640_000,
        "duration": 5400.0,
        "language": "eng",
    }
    values.update(kwargs)
    return AudioStreamCandidate(index=index, **values)


class TestScoring:
    def test_codec_tiers(self) -> None:
        assert codec_tier(_audio(codec="truehd")) == 100
        assert codec_tier(_audio(codec="pcm_s24le")) == 90
        assert codec_tier(_audio(codec="dts", profile="DTS-HD MA")) == 95
        assert codec_tier(_audio(codec="dts", profile="DTS")) == 70
        assert codec_tier(_audio(codec="wmav2")) == 0

    def test_channel_bonus_is_monotonic(self) -> None:
        bonuses = [channel_bonus(n) for n in range(0, 33)]
        assert bonuses == sorted(bonuses)

    def test_score_monotonic_in_channels(self) -> None:
        scores = [score_audio_stream(_audio(channels=n)) for n in range(1, 9)]
        assert scores == sorted(scores)

    def test_lossless_gets_no_bitrate_bonus(self) -> None:
        low = score_audio_stream(_audio(codec="flac", bitrate=100_000))
        high = score_audio_stream(_audio(codec="flac", bitrate=5_000_000))
        assert low == high

    def test_earlier_stream_wins_tie(self) -> None:
        assert score_audio_stream(_audio(index=1)) > score_audio_stream(_audio(index=2))

    def test_english_bonus(self) -> None:
        eng = score_audio_stream(_audio(language="eng"))
        und = score_audio_stream(_audio(language="und"))
        assert eng - und == 10


class TestFilterReason:
    @pytest.fixture
    def config(self) -> SelectionConfig:
        return SelectionConfig()

    def test_eligible(self, config: SelectionConfig) -> None:
        assert filter_reason(_audio(), 5400.0, config) is None

    def test_missing_codec(self, config: SelectionConfig) -> None:
        assert filter_reason(_audio(codec=None), 5400.0, config) == "missing codec name"

    @pytest.mark.parametrize("channels", [0, 33])
    def test_channel_bounds(self, config: SelectionConfig, channels: int) -> None:
        assert "channel count" in filter_reason(
            _audio(channels=channels), 5400.0, config
        )

    def test_short_duration(self, config: SelectionConfig) -> None:
        assert "duration" in filter_reason(_audio(duration=600.0), 5400.0, config)

    def test_commentary(self, config: SelectionConfig) -> None:
        candidate = _audio(title="Director's Commentary")
        assert filter_reason(candidate, 5400.0, config) == "commentary track"

    def test_language_not_accepted(self, config: SelectionConfig) -> None:
        assert "not accepted" in filter_reason(_audio(language="fre"), 5400.0, config)

    def test_undefined_language_policy(self) -> None:
        strict = SelectionConfig(accept_undefined_language=False)
        assert filter_reason(_audio(language="und"), 5400.0, strict) == (
            "undefined language"
        )
        assert filter_reason(_audio(language="und"), 5400.0, SelectionConfig()) is None


class TestDurationCompatibility:
    @pytest.mark.parametrize(
        "audio,expected",
        [
            (5400.0, DurationCheck.PASS),
            (5450.0, DurationCheck.PASS),
            (5000.0, DurationCheck.WARN),
            (4000.0, DurationCheck.FAIL),
            (7000.0, DurationCheck.FAIL),
            (None, DurationCheck.WARN),
        ],
    )
    def test_check(self, audio: float | None, expected: DurationCheck) -> None:
        assert check_duration_compatibility(audio, 5400.0) is expected


class TestSelectAudioStream:
    def test_selects_english_surround_from_fixture(
        self, sdr_probe: ProbeResult
    ) -> None:
        selection = select_audio_stream(
            sdr_probe.audio_streams, sdr_probe.video.duration, SelectionConfig()
        )
        assert selection.selected.index == 1
        assert selection.selected.language == "eng"
        rejected = {c.index: reason for c, reason in selection.rejected}
        assert rejected[2] == "commentary track"
        assert "not accepted" in rejected[3]

    def test_exactly_one_selected(self) -> None:
        candidates = [_audio(1), _audio(2, codec="truehd"), _audio(3, codec="aac")]
        selection = select_audio_stream(candidates, 5400.0, SelectionConfig())
        assert selection.selected.index == 2
        assert [c.index for c in selection.fallbacks] == [1, 3]
        assert selection.selected not in selection.fallbacks

    def test_no_candidates_raises(self) -> None:
        with pytest.raises(AudioSelectionError, match="no eligible audio stream"):
            select_audio_stream([], 5400.0, SelectionConfig())

    def test_duration_warning_recorded(self) -> None:
        selection = select_audio_stream(
            [_audio(duration=5000.0)], 5400.0, SelectionConfig()
        )
        assert len(selection.warnings) == 1

    def test_duration_failure_falls_through_to_next(self) -> None:
        candidates = [_audio(1, codec="truehd", duration=6800.0), _audio(2)]
        selection = select_audio_stream(candidates, 5400.0, SelectionConfig())
        assert selection.selected.index == 2

    def test_usability_failure_falls_through_to_next(self) -> None:
        candidates = [_audio(1, codec="truehd"), _audio(2)]

        def check(candidate: AudioStreamCandidate) -> UsabilityResult:
            return UsabilityResult(candidate.index != 1, "decode errors")

        selection = select_audio_stream(
            candidates, 5400.0, SelectionConfig(), usability_check=check
        )
        assert selection.selected.index == 2
        assert any(c.index == 1 for c, _ in selection.rejected)

    def test_all_unusable_raises(self) -> None:
        with pytest.raises(AudioSelectionError, match="no audio stream passed"):
            select_audio_stream(
                [_audio()],
                5400.0,
                SelectionConfig(),
                usability_check=lambda c: UsabilityResult(False, "broken"),
            )


class TestAudioUsabilityProbe:
    def _probe(self, outcome: ProcessOutcome) -> AudioUsabilityProbe:
        runner = MagicMock()
        runner.run.return_value = outcome
        return AudioUsabilityProbe(
            Path("/usr/bin/ffmpeg"), Path("movie.mkv"), runner, window_seconds=30.0
        )

    def test_command_maps_stream(self) -> None:
        probe = self._probe(ProcessOutcome(returncode=0))
        cmd = probe.build_command(_audio(index=3))
        assert cmd[cmd.index("-map") + 1] == "0:3"
        assert cmd[-3:] == ["-f", "null", "-"]

    def test_usable_when_window_decoded(self) -> None:
        outcome = ProcessOutcome(
            returncode=0, metrics=FFmpegMetricsSummary(last_time_seconds=30.0)
        )
        assert self._probe(outcome)(_audio()).usable

    def test_unusable_on_nonzero_exit(self) -> None:
        result = self._probe(ProcessOutcome(returncode=1))(_audio())
        assert not result.usable
        assert "exited with 1" in result.reason

    def test_unusable_on_short_decode(self) -> None:
        outcome = ProcessOutcome(
            returncode=0, metrics=FFmpegMetricsSummary(last_time_seconds=2.0)
        )
        result = self._probe(outcome)(_audio())
        assert not result.usable
        assert "decoded 2.0s" in result.reason

    def test_unusable_on_decode_error_lines(self) -> None:
        runner = MagicMock()

        def fake_run(cmd, description, timeout=None, line_callback=None, **kwargs):
            line_callback("[ac3 @ 0x1] Error while decoding stream #0:1")
            return ProcessOutcome(
                returncode=0, metrics=FFmpegMetricsSummary(last_time_seconds=30.0)
            )

        runner.run.side_effect = fake_run
        probe = AudioUsabilityProbe(Path("ffmpeg"), Path("movie.mkv"), runner)
        result = probe(_audio())
        assert not result.usable
        assert "decode errors" in result.reason

    def test_timeout(self) -> None:
        result = self._probe(ProcessOutcome(returncode=-1, timed_out=True))(_audio())
        assert not result.usable
        assert result.reason == "decode probe timed out"
