"""Dolby Vision removal via dovi_tool.

The source video stream is copied to an Annex-B bitstream, split into base
and enhancement layers with ``dovi_tool demux``, and the base layer alone is
remuxed into a Matroska intermediate. The caller re-probes the intermediate
and encodes from it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from encodegate.core.subprocess_utils import ProcessRegistry
from encodegate.tools.results import ToolResult, run_tool

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 1800.0


class DoviTool:
    """Wrapper around dovi_tool demux plus the ffmpeg steps around it."""

    def __init__(
        self,
        tool_path: Path,
        ffmpeg_path: Path,
        registry: ProcessRegistry | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._tool_path = tool_path
        self._ffmpeg_path = ffmpeg_path
        self._registry = registry
        self._timeout = timeout

    def build_bitstream_command(
        self, source: Path, stream_index: int, output: Path
    ) -> list[str]:
        return [
            str(self._ffmpeg_path),
            "-hide_banner",
            "-nostdin",
            "-y",
            "-i",
            str(source),
            "-map",
            f"0:{stream_index}",
            "-c:v",
            "copy",
            "-bsf:v",
            "hevc_mp4toannexb",
            "-f",
            "hevc",
            str(output),
        ]

    def build_demux_command(
        self, bitstream: Path, base_layer: Path, enhancement_layer: Path
    ) -> list[str]:
        return [
            str(self._tool_path),
            "demux",
            str(bitstream),
            "-b",
            str(base_layer),
            "-e",
            str(enhancement_layer),
        ]

    def build_remux_command(
        self, base_layer: Path, frame_rate: str, output: Path
    ) -> list[str]:
        return [
            str(self._ffmpeg_path),
            "-hide_banner",
            "-nostdin",
            "-y",
            "-r",
            frame_rate,
            "-i",
            str(base_layer),
            "-c:v",
            "copy",
            str(output),
        ]

    def strip(
        self, source: Path, stream_index: int, frame_rate: str, work_dir: Path
    ) -> ToolResult:
        """Produce a base-layer-only Matroska file in ``work_dir``.

        Args:
            source: Original file.
            stream_index: Index of the Dolby Vision video stream.
            frame_rate: Source frame rate as ffprobe reports it (e.g.
                "24000/1001"); raw bitstreams carry no timing.
            work_dir: Run-scoped directory for intermediates.
        """
        bitstream = work_dir / "dovi_source.hevc"
        base_layer = work_dir / "dovi_bl.hevc"
        enhancement_layer = work_dir / "dovi_el.hevc"
        output = work_dir / "dovi_base_layer.mkv"
        try:
            steps = (
                (
                    self.build_bitstream_command(source, stream_index, bitstream),
                    "Dolby Vision bitstream copy",
                    bitstream,
                ),
                (
                    self.build_demux_command(bitstream, base_layer, enhancement_layer),
                    "dovi_tool demux",
                    base_layer,
                ),
                (
                    self.build_remux_command(base_layer, frame_rate, output),
                    "base layer remux",
                    output,
                ),
            )
            for cmd, description, expected in steps:
                result = run_tool(
                    cmd,
                    description,
                    self._timeout,
                    self._registry,
                    output_path=expected,
                )
                if not result.success:
                    output.unlink(missing_ok=True)
                    return result
        finally:
            for intermediate in (bitstream, base_layer, enhancement_layer):
                intermediate.unlink(missing_ok=True)

        logger.info("Dolby Vision removed, encoding from base layer %s", output.name)
        return ToolResult(success=True, output_path=output)
