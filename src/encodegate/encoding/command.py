"""FFmpeg command building for HEVC encodes.

The encode writes a video-only artifact. Audio and subtitles are added
back by the muxer, so every encode command drops them (``-an -sn -dn``).
"""

from __future__ import annotations

import logging
from pathlib import Path

from encodegate.config.models import EncodeConfig
from encodegate.domain.models import VideoDescriptor
from encodegate.encoding.types import EncodeMethod, EncodingSettings
from encodegate.hdr.static import HdrStaticMetadata

logger = logging.getLogger(__name__)

HDR_PIXEL_FORMAT_SOFTWARE = "yuv420p10le"
HDR_PIXEL_FORMAT_HARDWARE = "p010le"
SDR_PIXEL_FORMAT = "yuv420p"

# Synthetic source for the hardware capability probe
PROBE_SOURCE = "testsrc2=size=1280x720:rate=30"
PROBE_DURATION_SECONDS = 1

_X265_TRANSFER = {"smpte2084": "smpte2084", "arib-std-b67": "arib-std-b67"}


def vbv_limits_kbps(settings: EncodingSettings, fps: float) -> tuple[int, int]:
    """(maxrate, bufsize) in kbit/s implied by the max frame size."""
    per_frame_kbit = settings.max_frame_kib * 8 * 1024 / 1000
    maxrate = round(per_frame_kbit * max(fps, 1.0))
    return maxrate, maxrate * 2


def build_color_args(video: VideoDescriptor) -> list[str]:
    """Copy colour description from the source onto the encode."""
    args: list[str] = []
    if video.color_primaries:
        args.extend(["-color_primaries", video.color_primaries])
    if video.color_transfer:
        args.extend(["-color_trc", video.color_transfer])
    if video.color_space:
        args.extend(["-colorspace", video.color_space])
    if video.color_range:
        args.extend(["-color_range", video.color_range])
    if video.chroma_location:
        args.extend(["-chroma_sample_location", video.chroma_location])
    return args


def build_x265_params(
    video: VideoDescriptor,
    settings: EncodingSettings,
    hdr: HdrStaticMetadata | None,
    hdr10plus_json: Path | None,
) -> str:
    maxrate, bufsize = vbv_limits_kbps(settings, video.frame_rate)
    params = [
        f"rc-lookahead={settings.lookahead}",
        f"vbv-maxrate={maxrate}",
        f"vbv-bufsize={bufsize}",
    ]
    if hdr is not None:
        params.extend(
            [
                "hdr10=1",
                "hdr10-opt=1",
                "repeat-headers=1",
                f"master-display={hdr.master_display}",
                f"max-cll={hdr.max_cll_param}",
            ]
        )
        if video.color_primaries:
            params.append(f"colorprim={video.color_primaries}")
        transfer = _X265_TRANSFER.get(video.color_transfer or "")
        if transfer:
            params.append(f"transfer={transfer}")
        if video.color_space:
            params.append(f"colormatrix={video.color_space}")
    if hdr10plus_json is not None:
        params.append(f"dhdr10-info={hdr10plus_json}")
    return ":".join(params)


def build_encode_command(
    ffmpeg_path: Path,
    source: Path,
    output: Path,
    video: VideoDescriptor,
    settings: EncodingSettings,
    method: EncodeMethod,
    config: EncodeConfig,
    hdr: HdrStaticMetadata | None = None,
    hdr10plus_json: Path | None = None,
) -> list[str]:
    """Build the ffmpeg command for one encode attempt.

    Args:
        ffmpeg_path: ffmpeg executable.
        source: Encode input (original or Dolby Vision base-layer remux).
        output: Video-only artifact path. A ``.hevc`` suffix writes raw
            Annex-B, which hdr10plus_tool can inject into.
        video: Descriptor of ``source``.
        settings: Derived encoding settings.
        method: Hardware or software path.
        config: Encoder names and presets.
        hdr: Static HDR metadata, None for SDR.
        hdr10plus_json: HDR10+ metadata for x265 (software path only).
    """
    is_hdr = hdr is not None
    cmd = [
        str(ffmpeg_path),
        "-hide_banner",
        "-nostdin",
        "-y",
        "-i",
        str(source),
        "-map",
        f"0:{video.stream_index}",
        "-an",
        "-sn",
        "-dn",
    ]

    if settings.sharpen is not None:
        cmd.extend(["-vf", settings.sharpen.filter])

    maxrate, bufsize = vbv_limits_kbps(settings, video.frame_rate)
    if method is EncodeMethod.HARDWARE:
        cmd.extend(
            [
                "-c:v",
                config.hardware_encoder,
                "-preset",
                config.hardware_preset,
                "-rc",
                "vbr",
                "-cq",
                str(settings.quality),
                "-b:v",
                "0",
                "-maxrate",
                f"{maxrate}k",
                "-bufsize",
                f"{bufsize}k",
                "-rc-lookahead",
                str(settings.lookahead),
                "-spatial-aq",
                "1",
                "-pix_fmt",
                HDR_PIXEL_FORMAT_HARDWARE if is_hdr else SDR_PIXEL_FORMAT,
            ]
        )
        if is_hdr:
            cmd.extend(["-profile:v", "main10"])
    else:
        cmd.extend(
            [
                "-c:v",
                config.software_encoder,
                "-preset",
                config.software_preset,
                "-crf",
                str(settings.quality),
                "-pix_fmt",
                HDR_PIXEL_FORMAT_SOFTWARE if is_hdr else SDR_PIXEL_FORMAT,
                "-x265-params",
                build_x265_params(video, settings, hdr, hdr10plus_json),
            ]
        )
        if is_hdr:
            cmd.extend(["-profile:v", "main10"])

    cmd.extend(build_color_args(video))

    if output.suffix.lower() == ".hevc":
        cmd.extend(["-f", "hevc"])
    cmd.append(str(output))

    logger.debug("Encode command (%s): %s", method.value, " ".join(cmd))
    return cmd


def build_capability_probe_command(ffmpeg_path: Path, encoder: str) -> list[str]:
    """One-second synthetic encode that proves the encoder initializes."""
    return [
        str(ffmpeg_path),
        "-hide_banner",
        "-nostdin",
        "-f",
        "lavfi",
        "-i",
        PROBE_SOURCE,
        "-t",
        str(PROBE_DURATION_SECONDS),
        "-c:v",
        encoder,
        "-f",
        "null",
        "-",
    ]
