"""Tests for encode command building."""

from pathlib import Path

import pytest

from encodegate.config.models import EncodeConfig
from encodegate.encoding.command import (
    build_capability_probe_command,
    build_encode_command,
    build_x265_params,
    vbv_limits_kbps,
)
from encodegate.encoding.settings import derive_settings
from encodegate.encoding.types import EncodeMethod
from encodegate.hdr.static import resolve_static_metadata


def _arg(cmd: list[str], flag: str) -> str:
    return cmd[cmd.index(flag) + 1]


@pytest.fixture
def hdr_video(make_video):
    return make_video(
        width=3840,
        height=2160,
        bitrate=40_000_000,
        color_primaries="bt2020",
        color_transfer="smpte2084",
        color_space="bt2020nc",
        pixel_format="yuv420p10le",
    )


class TestVbvLimits:
    def test_maxrate_from_frame_budget(self, make_video) -> None:
        settings = derive_settings(make_video())
        maxrate, bufsize = vbv_limits_kbps(settings, 24.0)
        assert maxrate == round(1500 * 8 * 1024 / 1000 * 24)
        assert bufsize == 2 * maxrate


class TestBuildEncodeCommand:
    def test_software_sdr(self, make_video) -> None:
        video = make_video()
        settings = derive_settings(video)
        cmd = build_encode_command(
            Path("ffmpeg"),
            Path("in.mkv"),
            Path("out.mkv"),
            video,
            settings,
            EncodeMethod.SOFTWARE,
            EncodeConfig(),
        )
        assert _arg(cmd, "-map") == "0:0"
        assert {"-an", "-sn", "-dn"} <= set(cmd)
        assert _arg(cmd, "-c:v") == "libx265"
        assert _arg(cmd, "-crf") == str(settings.quality)
        assert _arg(cmd, "-pix_fmt") == "yuv420p"
        assert _arg(cmd, "-vf").startswith("unsharp=")
        assert "hdr10=1" not in _arg(cmd, "-x265-params")
        assert cmd[-1] == "out.mkv"

    def test_hardware_hdr(self, hdr_video) -> None:
        settings = derive_settings(hdr_video)
        hdr = resolve_static_metadata(hdr_video)
        cmd = build_encode_command(
            Path("ffmpeg"),
            Path("in.mkv"),
            Path("out.hevc"),
            hdr_video,
            settings,
            EncodeMethod.HARDWARE,
            EncodeConfig(),
            hdr=hdr,
        )
        assert _arg(cmd, "-c:v") == "hevc_nvenc"
        assert _arg(cmd, "-cq") == str(settings.quality)
        assert _arg(cmd, "-pix_fmt") == "p010le"
        assert _arg(cmd, "-profile:v") == "main10"
        assert _arg(cmd, "-color_trc") == "smpte2084"
        assert cmd[-3:] == ["-f", "hevc", "out.hevc"]
        assert "-x265-params" not in cmd

    def test_no_sharpen(self, make_video) -> None:
        video = make_video()
        cmd = build_encode_command(
            Path("ffmpeg"),
            Path("in.mkv"),
            Path("out.mkv"),
            video,
            derive_settings(video, sharpen=False),
            EncodeMethod.SOFTWARE,
            EncodeConfig(),
        )
        assert "-vf" not in cmd


class TestX265Params:
    def test_hdr_params(self, hdr_video) -> None:
        settings = derive_settings(hdr_video)
        hdr = resolve_static_metadata(hdr_video)
        params = build_x265_params(hdr_video, settings, hdr, Path("meta.json"))
        assert "hdr10=1" in params
        assert f"master-display={hdr.master_display}" in params
        assert "max-cll=1000,400" in params
        assert "transfer=smpte2084" in params
        assert params.endswith("dhdr10-info=meta.json")


def test_capability_probe_command() -> None:
    cmd = build_capability_probe_command(Path("ffmpeg"), "hevc_nvenc")
    assert _arg(cmd, "-f") == "lavfi"
    assert _arg(cmd, "-c:v") == "hevc_nvenc"
    assert cmd[-1] == "-"
