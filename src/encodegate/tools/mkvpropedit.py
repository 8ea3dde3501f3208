"""HDR container properties via mkvpropedit.

Writes colour description, mastering display and content light level onto
the first video track of the final Matroska file. This is an in-place
header edit; no remux is needed.
"""

from __future__ import annotations

import logging
from pathlib import Path

from encodegate.core.subprocess_utils import ProcessRegistry
from encodegate.domain.enums import HdrFormat
from encodegate.hdr.static import HdrStaticMetadata
from encodegate.tools.results import ToolResult, run_tool

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300.0

# Matroska colour enumerations (ISO/IEC 23091-4 code points)
PRIMARIES_BT2020 = 9
MATRIX_BT2020_NCL = 9
TRANSFER_CODES: dict[HdrFormat, int] = {
    HdrFormat.PQ: 16,
    HdrFormat.HLG: 18,
}


def hdr_property_args(metadata: HdrStaticMetadata, hdr_format: HdrFormat) -> list[str]:
    """mkvpropedit ``--set`` arguments for track v1."""
    md = metadata.mastering
    properties: list[tuple[str, object]] = [
        ("colour-primaries", PRIMARIES_BT2020),
        ("colour-matrix-coefficients", MATRIX_BT2020_NCL),
    ]
    transfer = TRANSFER_CODES.get(hdr_format)
    if transfer is not None:
        properties.append(("colour-transfer-characteristics", transfer))
    properties.extend(
        [
            ("chromaticity-coordinates-red-x", md.red_x),
            ("chromaticity-coordinates-red-y", md.red_y),
            ("chromaticity-coordinates-green-x", md.green_x),
            ("chromaticity-coordinates-green-y", md.green_y),
            ("chromaticity-coordinates-blue-x", md.blue_x),
            ("chromaticity-coordinates-blue-y", md.blue_y),
            ("white-coordinates-x", md.white_x),
            ("white-coordinates-y", md.white_y),
            ("max-luminance", md.max_luminance),
            ("min-luminance", md.min_luminance),
            ("max-content-light", metadata.light_level.max_cll),
            ("max-frame-light", metadata.light_level.max_fall),
        ]
    )
    args = ["--edit", "track:v1"]
    for name, value in properties:
        text = f"{value:g}" if isinstance(value, float) else str(value)
        args.extend(["--set", f"{name}={text}"])
    return args


class MkvpropeditRunner:
    """Apply HDR properties to a finished Matroska file."""

    def __init__(
        self,
        tool_path: Path,
        registry: ProcessRegistry | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._tool_path = tool_path
        self._registry = registry
        self._timeout = timeout

    def build_command(
        self, target: Path, metadata: HdrStaticMetadata, hdr_format: HdrFormat
    ) -> list[str]:
        return [
            str(self._tool_path),
            str(target),
            *hdr_property_args(metadata, hdr_format),
        ]

    def apply_hdr_metadata(
        self, target: Path, metadata: HdrStaticMetadata, hdr_format: HdrFormat
    ) -> ToolResult:
        result = run_tool(
            self.build_command(target, metadata, hdr_format),
            "mkvpropedit",
            self._timeout,
            self._registry,
        )
        if result.success:
            logger.info(
                "Wrote HDR container metadata (MaxCLL %d, MaxFALL %d)",
                metadata.light_level.max_cll,
                metadata.light_level.max_fall,
            )
        return result
