"""FFprobe-based implementation of the MediaProber protocol."""

import json
import logging
import subprocess  # nosec B404 - subprocess is required for ffprobe invocation
from pathlib import Path

from encodegate.core.subprocess_utils import ProcessRegistry, run_command
from encodegate.domain.models import ProbeResult
from encodegate.introspector.interface import MediaIntrospectionError
from encodegate.introspector.parsers import parse_ffprobe_output

logger = logging.getLogger(__name__)


class FFprobeIntrospector:
    """ffprobe-based implementation of MediaProber.

    Runs two ffprobe passes: streams/format for the container layout, and
    the first decoded video frame for HDR side data (mastering display,
    content light level, HDR10+ dynamic metadata).
    """

    def __init__(
        self,
        ffprobe_path: Path,
        registry: ProcessRegistry | None = None,
        timeout: float = 60,
    ) -> None:
        self._ffprobe_path = ffprobe_path
        self._registry = registry
        self._timeout = timeout

    def probe(self, path: Path) -> ProbeResult:
        """Extract metadata from a media file.

        Raises:
            MediaIntrospectionError: If the file cannot be probed.
        """
        if not path.exists():
            raise MediaIntrospectionError(f"File not found: {path}")

        data = self._run_json(
            [
                "-show_streams",
                "-show_format",
                str(path),
            ],
            path,
        )
        if "streams" not in data:
            raise MediaIntrospectionError(
                f"Missing 'streams' in ffprobe output for {path}. "
                "File may be corrupted or not a valid media file."
            )
        if "format" not in data:
            raise MediaIntrospectionError(
                f"Missing 'format' in ffprobe output for {path}. "
                "File may be corrupted or not a valid media file."
            )

        try:
            frame_data = self._run_json(
                [
                    "-select_streams",
                    "v:0",
                    "-read_intervals",
                    "%+#1",
                    "-show_frames",
                    "-show_entries",
                    "frame=side_data_list",
                    str(path),
                ],
                path,
            )
        except MediaIntrospectionError as e:
            logger.warning("Frame side data unavailable for %s: %s", path, e)
            frame_data = {}

        result = parse_ffprobe_output(path, data, frame_data)
        for warning in result.warnings:
            logger.warning("%s: %s", path.name, warning)
        logger.info(
            "Probed %s: %dx%d %s, %.1fs, %d audio, %d subtitle",
            path.name,
            result.video.width,
            result.video.height,
            result.video.codec,
            result.duration,
            len(result.audio_streams),
            len(result.subtitle_streams),
            extra={
                "hdr_format": result.video.hdr_format.value,
                "dolby_vision": result.video.has_dolby_vision,
                "hdr10plus": result.video.has_hdr10plus,
            },
        )
        return result

    def _run_json(self, args: list[str], path: Path) -> dict:
        cmd = [
            str(self._ffprobe_path),
            "-v",
            "error",
            "-print_format",
            "json",
            *args,
        ]
        try:
            stdout, stderr, rc = run_command(
                cmd, timeout=self._timeout, registry=self._registry
            )
        except subprocess.TimeoutExpired as e:
            raise MediaIntrospectionError(
                f"ffprobe timed out for {path} after {e.timeout}s"
            ) from e
        except OSError as e:
            raise MediaIntrospectionError(f"Cannot run ffprobe: {e}") from e

        if rc != 0:
            raise MediaIntrospectionError(
                f"ffprobe failed for {path}: {stderr.strip() or rc}"
            )
        try:
            return json.loads(stdout)
        except json.JSONDecodeError as e:
            raise MediaIntrospectionError(
                f"Invalid ffprobe output for {path}: {e}"
            ) from e
