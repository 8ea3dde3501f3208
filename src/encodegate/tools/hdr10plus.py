"""HDR10+ dynamic metadata extraction and injection via hdr10plus_tool.

Extraction copies the source video stream to a raw Annex-B bitstream with
ffmpeg and runs ``hdr10plus_tool extract`` on it. The resulting JSON must
validate against Hdr10PlusMetadata (a non-empty SceneInfo list) before it
is used. Injection writes the metadata back into a raw encoded bitstream.
Both operations are best-effort: failures are returned, never raised.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from encodegate.core.subprocess_utils import ProcessRegistry
from encodegate.tools.results import ToolResult, run_tool

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 1800.0


class Hdr10PlusMetadata(BaseModel):
    """Pydantic model for hdr10plus_tool's metadata JSON.

    Only the scene list is checked; the remaining sections are kept as-is.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    scene_info: list[dict[str, Any]] = Field(alias="SceneInfo", min_length=1)
    json_info: dict[str, Any] | None = Field(default=None, alias="JSONInfo")

    @property
    def scene_count(self) -> int:
        return len(self.scene_info)


def load_metadata(path: Path) -> Hdr10PlusMetadata | None:
    """Load and validate an extracted metadata file.

    Returns:
        The parsed metadata, or None when the file is empty, not JSON, or
        has no scenes.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning("Cannot read HDR10+ metadata %s: %s", path, e)
        return None
    if not text.strip():
        logger.warning("HDR10+ metadata file %s is empty", path)
        return None
    try:
        return Hdr10PlusMetadata.model_validate(json.loads(text))
    except json.JSONDecodeError as e:
        logger.warning("HDR10+ metadata %s is not valid JSON: %s", path, e)
    except ValidationError as e:
        errors = e.errors()
        detail = errors[0].get("msg", str(e)) if errors else str(e)
        logger.warning("HDR10+ metadata %s rejected: %s", path, detail)
    return None


class Hdr10PlusTool:
    """Wrapper around hdr10plus_tool (and ffmpeg for bitstream extraction)."""

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

    def build_extract_command(self, bitstream: Path, output_json: Path) -> list[str]:
        return [str(self._tool_path), "extract", str(bitstream), "-o", str(output_json)]

    def build_inject_command(
        self, bitstream: Path, metadata_json: Path, output: Path
    ) -> list[str]:
        return [
            str(self._tool_path),
            "inject",
            "-i",
            str(bitstream),
            "-j",
            str(metadata_json),
            "-o",
            str(output),
        ]

    def extract(self, source: Path, stream_index: int, work_dir: Path) -> ToolResult:
        """Extract dynamic metadata from ``source`` into ``work_dir``.

        Success requires both steps to exit 0 and the JSON to validate.
        The intermediate bitstream is removed either way.
        """
        bitstream = work_dir / "hdr10plus_source.hevc"
        metadata_json = work_dir / "hdr10plus_metadata.json"
        try:
            copied = run_tool(
                self.build_bitstream_command(source, stream_index, bitstream),
                "HDR10+ bitstream copy",
                self._timeout,
                self._registry,
                output_path=bitstream,
            )
            if not copied.success:
                return copied

            extracted = run_tool(
                self.build_extract_command(bitstream, metadata_json),
                "hdr10plus_tool extract",
                self._timeout,
                self._registry,
                output_path=metadata_json,
            )
            if not extracted.success:
                return extracted
        finally:
            bitstream.unlink(missing_ok=True)

        metadata = load_metadata(metadata_json)
        if metadata is None:
            metadata_json.unlink(missing_ok=True)
            return ToolResult(
                success=False, message="HDR10+ metadata missing or has no scenes"
            )

        logger.info("Extracted HDR10+ metadata for %d scene(s)", metadata.scene_count)
        return ToolResult(
            success=True,
            message=f"{metadata.scene_count} scene(s)",
            output_path=metadata_json,
        )

    def inject(self, bitstream: Path, metadata_json: Path) -> ToolResult:
        """Inject metadata into a raw HEVC bitstream.

        On success the returned output path is a new ``.hevc`` file next to
        ``bitstream``.
        """
        output = bitstream.with_name(f"{bitstream.stem}_hdr10plus.hevc")
        result = run_tool(
            self.build_inject_command(bitstream, metadata_json, output),
            "hdr10plus_tool inject",
            self._timeout,
            self._registry,
            output_path=output,
        )
        if not result.success:
            output.unlink(missing_ok=True)
        else:
            logger.info("Injected HDR10+ metadata into %s", output.name)
        return result
