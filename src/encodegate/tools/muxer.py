"""Final Matroska assembly with ffmpeg.

Input 0 is the video-only encode, input 1 the original file (selected
audio, retained internal subtitles, chapters), followed by one input per
external subtitle file. Every output audio and subtitle stream gets
explicit language, title and disposition directives so nothing is
inherited by accident from the original.
"""

from __future__ import annotations

import logging
from pathlib import Path

from encodegate.config.models import MuxConfig
from encodegate.core.subprocess_utils import ProcessRegistry
from encodegate.domain.enums import SubtitleSource
from encodegate.domain.models import AudioStreamCandidate, SubtitleStreamCandidate
from encodegate.selection.subtitles import SubtitlePlan
from encodegate.tools.results import ToolResult, run_tool

logger = logging.getLogger(__name__)

# Subtitle codecs Matroska cannot store as-is, with their replacement
SUBTITLE_TRANSCODES: dict[str, str] = {"mov_text": "srt"}

RAW_BITSTREAM_SUFFIXES = (".hevc", ".h265", ".265")


def _disposition(stream: SubtitleStreamCandidate) -> str:
    flags = []
    if stream.is_default:
        flags.append("default")
    if stream.is_forced:
        flags.append("forced")
    return "+".join(flags) if flags else "0"


def build_mux_command(
    ffmpeg_path: Path,
    video_artifact: Path,
    source: Path,
    audio: AudioStreamCandidate,
    subtitles: SubtitlePlan,
    output: Path,
    config: MuxConfig,
    frame_rate: str | None = None,
) -> list[str]:
    """Build the ffmpeg command assembling the final file.

    Args:
        ffmpeg_path: ffmpeg executable.
        video_artifact: Encoded video; raw Annex-B needs ``frame_rate``.
        source: Original file.
        audio: Selected audio stream (index into ``source``).
        subtitles: Retained subtitles in output order.
        output: Destination ``.mkv``.
        config: Audio copy and fallback settings.
        frame_rate: Input frame rate for raw bitstreams, e.g. "24000/1001".
    """
    cmd = [str(ffmpeg_path), "-hide_banner", "-nostdin", "-y"]

    if video_artifact.suffix.lower() in RAW_BITSTREAM_SUFFIXES:
        if frame_rate:
            cmd.extend(["-r", frame_rate])
        else:
            logger.warning("Raw bitstream muxed without a known frame rate")
    cmd.extend(["-i", str(video_artifact), "-i", str(source)])

    external = [s for s in subtitles.retained if s.source is SubtitleSource.EXTERNAL]
    external_inputs: dict[Path, int] = {}
    for stream in external:
        if stream.path is not None and stream.path not in external_inputs:
            external_inputs[stream.path] = 2 + len(external_inputs)
            cmd.extend(["-i", str(stream.path)])

    cmd.extend(["-map", "0:v:0", "-map", f"1:{audio.index}"])
    for stream in subtitles.retained:
        if stream.source is SubtitleSource.EXTERNAL and stream.path is not None:
            cmd.extend(["-map", f"{external_inputs[stream.path]}:0"])
        else:
            cmd.extend(["-map", f"1:{stream.index}"])
    cmd.extend(["-map_chapters", "1", "-map_metadata", "1"])

    cmd.extend(["-c:v", "copy", "-disposition:v:0", "default"])

    codec = (audio.codec or "").lower()
    if codec in config.audio_copy_codecs:
        cmd.extend(["-c:a:0", "copy"])
    else:
        logger.info(
            "Audio codec %s not in copy list, converting to %s",
            audio.codec,
            config.audio_fallback_codec,
        )
        cmd.extend(
            [
                "-c:a:0",
                config.audio_fallback_codec,
                "-b:a:0",
                config.audio_fallback_bitrate,
            ]
        )
    cmd.extend(
        [
            "-metadata:s:a:0",
            f"language={audio.language}",
            "-metadata:s:a:0",
            f"title={audio.title or ''}",
            "-disposition:a:0",
            "default",
        ]
    )

    for i, stream in enumerate(subtitles.retained):
        target = SUBTITLE_TRANSCODES.get((stream.codec or "").lower(), "copy")
        cmd.extend(
            [
                f"-c:s:{i}",
                target,
                f"-metadata:s:s:{i}",
                f"language={stream.language}",
                f"-metadata:s:s:{i}",
                f"title={stream.title or ''}",
                f"-disposition:s:{i}",
                _disposition(stream),
            ]
        )

    cmd.extend(["-f", "matroska", str(output)])
    return cmd


class Muxer:
    """Assemble and verify the final container."""

    def __init__(
        self,
        ffmpeg_path: Path,
        config: MuxConfig,
        registry: ProcessRegistry | None = None,
        min_output_bytes: int = 64 * 1024,
    ) -> None:
        self._ffmpeg_path = ffmpeg_path
        self._config = config
        self._registry = registry
        self._min_output_bytes = min_output_bytes

    def mux(
        self,
        video_artifact: Path,
        source: Path,
        audio: AudioStreamCandidate,
        subtitles: SubtitlePlan,
        output: Path,
        frame_rate: str | None = None,
    ) -> ToolResult:
        cmd = build_mux_command(
            self._ffmpeg_path,
            video_artifact,
            source,
            audio,
            subtitles,
            output,
            self._config,
            frame_rate=frame_rate,
        )
        logger.info(
            "Muxing final container with audio stream %d and %d subtitle(s)",
            audio.index,
            len(subtitles.retained),
        )
        result = run_tool(
            cmd,
            "mux",
            self._config.timeout_seconds,
            self._registry,
            output_path=output,
        )
        if not result.success:
            output.unlink(missing_ok=True)
            return result

        size = output.stat().st_size
        if size < self._min_output_bytes:
            output.unlink(missing_ok=True)
            return ToolResult(
                success=False, message=f"muxed output undersized ({size} bytes)"
            )
        return result
