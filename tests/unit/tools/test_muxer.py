"""Unit tests for final container assembly."""

from pathlib import Path
from unittest.mock import patch

import pytest

from encodegate.config.models import MuxConfig
from encodegate.domain.enums import SubtitleSource
from encodegate.domain.models import AudioStreamCandidate, SubtitleStreamCandidate
from encodegate.selection.subtitles import SubtitlePlan
from encodegate.tools.muxer import Muxer, build_mux_command

AUDIO = AudioStreamCandidate(
    index=1, codec="ac3", channels=6, language="eng", title="Surround 5.1"
)


def _values(cmd: list[str], flag: str) -> list[str]:
    return [cmd[i + 1] for i, arg in enumerate(cmd) if arg == flag]


@pytest.fixture
def subtitles(temp_dir: Path) -> SubtitlePlan:
    return SubtitlePlan(
        retained=(
            SubtitleStreamCandidate(
                index=5,
                codec="hdmv_pgs_subtitle",
                language="eng",
                is_forced=True,
                is_default=True,
            ),
            SubtitleStreamCandidate(
                index=0,
                codec="subrip",
                language="spa",
                source=SubtitleSource.EXTERNAL,
                path=temp_dir / "movie.spa.srt",
            ),
            SubtitleStreamCandidate(index=4, codec="mov_text", language="eng"),
        )
    )


class TestBuildMuxCommand:
    def test_maps_and_inputs(self, subtitles: SubtitlePlan, temp_dir: Path) -> None:
        cmd = build_mux_command(
            Path("ffmpeg"),
            Path("encode.mkv"),
            Path("movie.mkv"),
            AUDIO,
            subtitles,
            Path("out.mkv"),
            MuxConfig(),
        )
        assert _values(cmd, "-i") == [
            "encode.mkv",
            "movie.mkv",
            str(temp_dir / "movie.spa.srt"),
        ]
        assert _values(cmd, "-map") == ["0:v:0", "1:1", "1:5", "2:0", "1:4"]
        assert "-r" not in cmd
        assert cmd[-3:] == ["-f", "matroska", "out.mkv"]

    def test_explicit_stream_metadata(self, subtitles: SubtitlePlan) -> None:
        cmd = build_mux_command(
            Path("ffmpeg"),
            Path("encode.mkv"),
            Path("movie.mkv"),
            AUDIO,
            subtitles,
            Path("out.mkv"),
            MuxConfig(),
        )
        assert cmd[cmd.index("-c:a:0") + 1] == "copy"
        assert _values(cmd, "-metadata:s:a:0") == [
            "language=eng",
            "title=Surround 5.1",
        ]
        assert cmd[cmd.index("-disposition:s:0") + 1] == "default+forced"
        assert cmd[cmd.index("-disposition:s:1") + 1] == "0"
        assert _values(cmd, "-metadata:s:s:1") == ["language=spa", "title="]
        assert cmd[cmd.index("-c:s:2") + 1] == "srt"

    def test_raw_bitstream_gets_frame_rate(self) -> None:
        cmd = build_mux_command(
            Path("ffmpeg"),
            Path("encode.hevc"),
            Path("movie.mkv"),
            AUDIO,
            SubtitlePlan(),
            Path("out.mkv"),
            MuxConfig(),
            frame_rate="24000/1001",
        )
        assert cmd.index("-r") < cmd.index("-i")
        assert cmd[cmd.index("-r") + 1] == "24000/1001"

    def test_audio_outside_copy_list_is_converted(self) -> None:
        audio = AudioStreamCandidate(index=2, codec="pcm_s24le", channels=2)
        cmd = build_mux_command(
            Path("ffmpeg"),
            Path("encode.mkv"),
            Path("movie.mkv"),
            audio,
            SubtitlePlan(),
            Path("out.mkv"),
            MuxConfig(),
        )
        assert cmd[cmd.index("-c:a:0") + 1] == "eac3"
        assert cmd[cmd.index("-b:a:0") + 1] == "640k"


class TestMuxer:
    @patch("encodegate.tools.results.run_command")
    def test_undersized_output_rejected(self, mock_run, temp_dir: Path) -> None:
        output = temp_dir / "out.mkv"

        def run(cmd, timeout=None, registry=None):
            output.write_bytes(b"\0" * 100)
            return "", "", 0

        mock_run.side_effect = run
        muxer = Muxer(Path("ffmpeg"), MuxConfig(), min_output_bytes=1024)
        result = muxer.mux(
            Path("encode.mkv"), Path("movie.mkv"), AUDIO, SubtitlePlan(), output
        )
        assert not result.success
        assert "undersized" in result.message
        assert not output.exists()

    @patch("encodegate.tools.results.run_command")
    def test_success(self, mock_run, temp_dir: Path) -> None:
        output = temp_dir / "out.mkv"

        def run(cmd, timeout=None, registry=None):
            output.write_bytes(b"\0" * 2048)
            return "", "", 0

        mock_run.side_effect = run
        muxer = Muxer(Path("ffmpeg"), MuxConfig(), min_output_bytes=1024)
        result = muxer.mux(
            Path("encode.mkv"), Path("movie.mkv"), AUDIO, SubtitlePlan(), output
        )
        assert result.success
        assert mock_run.call_args.kwargs["timeout"] == MuxConfig().timeout_seconds
