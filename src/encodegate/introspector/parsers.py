"""Pure parsing functions for ffprobe JSON output.

These functions transform ffprobe JSON data into encodegate domain
objects. All functions are pure (no I/O, no side effects) for easy testing.
"""

import logging
import re
from pathlib import Path

from encodegate.domain.enums import SubtitleSource
from encodegate.domain.models import (
    AudioStreamCandidate,
    ContentLightLevel,
    MasteringDisplay,
    ProbeResult,
    SubtitleStreamCandidate,
    VideoDescriptor,
)
from encodegate.introspector.interface import MediaIntrospectionError
from encodegate.language import normalize_language

logger = logging.getLogger(__name__)

# Frame rate assumed when ffprobe reports none
DEFAULT_FRAME_RATE = 24000 / 1001

# Relative r_frame_rate/avg_frame_rate difference above which content is VFR
VFR_TOLERANCE = 0.01

DOVI_SIDE_DATA = "DOVI configuration record"
MASTERING_SIDE_DATA = "Mastering display metadata"
CLL_SIDE_DATA = "Content light level metadata"
HDR10PLUS_SIDE_DATA_MARKER = "SMPTE2094-40"

_DOVI_CODEC_TAGS = frozenset({"dvh1", "dvhe", "dav1"})

_DURATION_TAG = re.compile(r"^(\d+):(\d{2}):(\d{2}(?:\.\d+)?)$")


def sanitize_string(value: str | None) -> str | None:
    """Replace invalid UTF-8 characters in a tag value."""
    if value is None:
        return None
    return value.encode("utf-8", errors="replace").decode("utf-8")


def parse_duration(value: str | float | None) -> float | None:
    """Parse a duration from ffprobe ("3600.000") into seconds."""
    if value is None:
        return None
    try:
        duration = float(value)
    except (ValueError, TypeError):
        return None
    return duration if duration >= 0 else None


def parse_duration_tag(value: str | None) -> float | None:
    """Parse a Matroska DURATION tag ("01:23:45.123000000") into seconds."""
    if not value:
        return None
    match = _DURATION_TAG.match(value.strip())
    if not match:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def parse_int(value: str | int | None) -> int | None:
    """Parse a non-negative integer that ffprobe may report as a string."""
    if value is None:
        return None
    try:
        result = int(value)
    except (ValueError, TypeError):
        return None
    return result if result >= 0 else None


def parse_frame_rate(frame_rate_str: str | None) -> float | None:
    """Parse an ffprobe frame rate string (e.g. '24000/1001') to float."""
    if not frame_rate_str or frame_rate_str == "0/0":
        return None

    if "/" in frame_rate_str:
        try:
            num, denom = frame_rate_str.split("/")
            denom_val = float(denom)
            if denom_val == 0:
                return None
            value = float(num) / denom_val
        except ValueError:
            return None
    else:
        try:
            value = float(frame_rate_str)
        except ValueError:
            return None
    return value if value > 0 else None


def parse_fraction(value: str | int | float | None) -> float | None:
    """Parse a side-data rational ("34000/50000") into a float."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if "/" in value:
        num, _, denom = value.partition("/")
        try:
            denom_val = float(denom)
            if denom_val == 0:
                return None
            return float(num) / denom_val
        except ValueError:
            return None
    try:
        return float(value)
    except ValueError:
        return None


def detect_vfr_content(
    r_frame_rate: str | None,
    avg_frame_rate: str | None,
    tolerance: float = VFR_TOLERANCE,
) -> bool:
    """Return True when r_frame_rate and avg_frame_rate differ significantly."""
    r_fps = parse_frame_rate(r_frame_rate)
    avg_fps = parse_frame_rate(avg_frame_rate)
    if r_fps is None or avg_fps is None:
        return False
    return abs(r_fps - avg_fps) / avg_fps > tolerance


def _stream_tags(stream: dict) -> dict[str, str]:
    return {str(k).upper(): v for k, v in (stream.get("tags") or {}).items()}


def _stream_bitrate(stream: dict) -> int | None:
    bitrate = parse_int(stream.get("bit_rate"))
    if bitrate:
        return bitrate
    tags = _stream_tags(stream)
    for key in ("BPS", "BPS-ENG"):
        bitrate = parse_int(tags.get(key))
        if bitrate:
            return bitrate
    return None


def _stream_duration(stream: dict, container_duration: float | None) -> float | None:
    duration = parse_duration(stream.get("duration"))
    if duration:
        return duration
    tags = _stream_tags(stream)
    for key in ("DURATION", "DURATION-ENG"):
        duration = parse_duration_tag(tags.get(key))
        if duration:
            return duration
    return container_duration


def parse_mastering_display(side_data: dict) -> MasteringDisplay | None:
    """Parse "Mastering display metadata" frame side data.

    Returns None when any field is absent or unparseable. Value validity
    (zero chromaticities, inverted luminance) is judged later by the HDR
    metadata validator.
    """
    keys = (
        "red_x",
        "red_y",
        "green_x",
        "green_y",
        "blue_x",
        "blue_y",
        "white_point_x",
        "white_point_y",
        "max_luminance",
        "min_luminance",
    )
    values = [parse_fraction(side_data.get(key)) for key in keys]
    if any(v is None for v in values):
        return None
    return MasteringDisplay(*values)  # type: ignore[arg-type]


def parse_content_light_level(side_data: dict) -> ContentLightLevel | None:
    max_cll = parse_int(side_data.get("max_content"))
    max_fall = parse_int(side_data.get("max_average"))
    if max_cll is None or max_fall is None:
        return None
    return ContentLightLevel(max_cll=max_cll, max_fall=max_fall)


def select_video_stream(streams: list[dict]) -> dict | None:
    """Return the first real video stream (cover art excluded)."""
    for stream in streams:
        if stream.get("codec_type") != "video":
            continue
        if (stream.get("disposition") or {}).get("attached_pic") == 1:
            continue
        return stream
    return None


def parse_video_stream(
    stream: dict,
    frame_side_data: list[dict],
    container_duration: float | None,
    container_bitrate: int | None,
    file_path: str | None = None,
) -> VideoDescriptor:
    """Build a VideoDescriptor from the video stream and first-frame side data."""
    width = parse_int(stream.get("width")) or 0
    height = parse_int(stream.get("height")) or 0
    if width == 0 or height == 0:
        raise MediaIntrospectionError(f"Video stream has no dimensions in {file_path}")

    r_frame_rate = stream.get("r_frame_rate")
    avg_frame_rate = stream.get("avg_frame_rate")
    is_vfr = detect_vfr_content(r_frame_rate, avg_frame_rate)
    if is_vfr:
        frame_rate = parse_frame_rate(avg_frame_rate) or parse_frame_rate(r_frame_rate)
    else:
        frame_rate = parse_frame_rate(r_frame_rate) or parse_frame_rate(avg_frame_rate)
    if frame_rate is None:
        logger.warning(
            "No usable frame rate in %s, assuming %.3f fps",
            file_path or "source",
            DEFAULT_FRAME_RATE,
        )
        frame_rate = DEFAULT_FRAME_RATE

    stream_side_data = stream.get("side_data_list") or []
    has_dolby_vision = (
        any(sd.get("side_data_type") == DOVI_SIDE_DATA for sd in stream_side_data)
        or (stream.get("codec_tag_string") or "").lower() in _DOVI_CODEC_TAGS
    )

    mastering: MasteringDisplay | None = None
    cll: ContentLightLevel | None = None
    has_hdr10plus = False
    for sd in frame_side_data:
        sd_type = sd.get("side_data_type") or ""
        if sd_type == MASTERING_SIDE_DATA:
            mastering = parse_mastering_display(sd)
        elif sd_type == CLL_SIDE_DATA:
            cll = parse_content_light_level(sd)
        elif HDR10PLUS_SIDE_DATA_MARKER in sd_type:
            has_hdr10plus = True
        elif sd_type == DOVI_SIDE_DATA:
            has_dolby_vision = True

    return VideoDescriptor(
        stream_index=stream.get("index", 0),
        codec=stream.get("codec_name"),
        width=width,
        height=height,
        duration=_stream_duration(stream, container_duration) or 0.0,
        frame_rate_raw=r_frame_rate,
        avg_frame_rate_raw=avg_frame_rate,
        frame_rate=frame_rate,
        is_vfr=is_vfr,
        bitrate=_stream_bitrate(stream) or container_bitrate,
        color_primaries=stream.get("color_primaries"),
        color_transfer=stream.get("color_transfer"),
        color_space=stream.get("color_space"),
        color_range=stream.get("color_range"),
        pixel_format=stream.get("pix_fmt"),
        profile=stream.get("profile"),
        level=parse_int(stream.get("level")),
        chroma_location=stream.get("chroma_location"),
        has_dolby_vision=has_dolby_vision,
        has_hdr10plus=has_hdr10plus,
        mastering_display=mastering,
        content_light_level=cll,
    )


def parse_audio_stream(
    stream: dict, container_duration: float | None, file_path: str | None = None
) -> AudioStreamCandidate:
    tags = _stream_tags(stream)
    return AudioStreamCandidate(
        index=stream.get("index", 0),
        codec=stream.get("codec_name") or None,
        channels=parse_int(stream.get("channels")) or 0,
        sample_rate=parse_int(stream.get("sample_rate")),
        bitrate=_stream_bitrate(stream),
        duration=_stream_duration(stream, container_duration),
        language=normalize_language(tags.get("LANGUAGE"), context=file_path),
        title=sanitize_string(tags.get("TITLE")),
        profile=stream.get("profile"),
    )


def parse_subtitle_stream(
    stream: dict, file_path: str | None = None
) -> SubtitleStreamCandidate:
    tags = _stream_tags(stream)
    disposition = stream.get("disposition") or {}
    return SubtitleStreamCandidate(
        index=stream.get("index", 0),
        codec=stream.get("codec_name"),
        language=normalize_language(tags.get("LANGUAGE"), context=file_path),
        title=sanitize_string(tags.get("TITLE")),
        is_forced=disposition.get("forced", 0) == 1,
        is_default=disposition.get("default", 0) == 1,
        source=SubtitleSource.INTERNAL,
    )


def parse_ffprobe_output(
    path: Path,
    data: dict,
    frame_data: dict | None = None,
) -> ProbeResult:
    """Parse ffprobe JSON output into a ProbeResult.

    Args:
        path: Path to the media file.
        data: ``-show_streams -show_format`` output.
        frame_data: ``-show_frames`` output for the first video frame.

    Raises:
        MediaIntrospectionError: If there is no usable video stream.
    """
    file_path = str(path)
    format_info = data.get("format") or {}
    container_duration = parse_duration(format_info.get("duration"))
    container_bitrate = parse_int(format_info.get("bit_rate"))

    streams = data.get("streams") or []
    warnings: list[str] = []

    video_stream = select_video_stream(streams)
    if video_stream is None:
        raise MediaIntrospectionError(f"No video stream found in {path}")

    frames = (frame_data or {}).get("frames") or []
    frame_side_data = (frames[0].get("side_data_list") or []) if frames else []

    video = parse_video_stream(
        video_stream,
        frame_side_data,
        container_duration,
        container_bitrate,
        file_path,
    )
    if video.is_vfr:
        warnings.append(
            f"Variable frame rate detected (r_frame_rate={video.frame_rate_raw}, "
            f"avg_frame_rate={video.avg_frame_rate_raw})"
        )
    if video.bitrate is None:
        warnings.append("Video bitrate unknown")

    audio: list[AudioStreamCandidate] = []
    subtitles: list[SubtitleStreamCandidate] = []
    seen_indices: set[int] = set()
    for stream in streams:
        index = stream.get("index", 0)
        if index in seen_indices:
            warnings.append(f"Duplicate stream index {index}, skipping")
            continue
        seen_indices.add(index)

        codec_type = stream.get("codec_type")
        if codec_type == "audio":
            audio.append(parse_audio_stream(stream, container_duration, file_path))
        elif codec_type == "subtitle":
            subtitles.append(parse_subtitle_stream(stream, file_path))

    return ProbeResult(
        path=path,
        container_format=format_info.get("format_name"),
        duration=container_duration or video.duration,
        video=video,
        audio_streams=tuple(audio),
        subtitle_streams=tuple(subtitles),
        warnings=tuple(warnings),
    )
