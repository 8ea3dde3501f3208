"""External tool detection and version parsing.

Finds the external tools the pipeline drives (configured path first, then
PATH), reads their versions, and probes hardware encoder usability for the
``doctor`` command.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess  # nosec B404 - subprocess is required for tool detection
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from encodegate.config.models import ToolPathsConfig
from encodegate.core.subprocess_utils import run_command

logger = logging.getLogger(__name__)

# Timeout for version detection commands (seconds)
DETECTION_TIMEOUT = 10

REQUIRED_TOOLS = ("ffmpeg", "ffprobe", "mkvpropedit")
OPTIONAL_TOOLS = ("hdr10plus_tool", "dovi_tool")


class ToolNotFoundError(RuntimeError):
    """Raised when a required external tool is not available."""


class ToolStatus(Enum):
    """Status of an external tool."""

    AVAILABLE = "available"
    MISSING = "missing"
    ERROR = "error"  # Found but version detection failed


@dataclass(frozen=True)
class ToolSpec:
    version_flag: str
    version_pattern: str
    install_hint: str


TOOL_SPECS: dict[str, ToolSpec] = {
    "ffmpeg": ToolSpec(
        "-version",
        r"ffmpeg version (\S+)",
        "Install ffmpeg (https://ffmpeg.org/download.html)",
    ),
    "ffprobe": ToolSpec(
        "-version",
        r"ffprobe version (\S+)",
        "Install ffmpeg, which provides ffprobe",
    ),
    "mkvpropedit": ToolSpec(
        "--version",
        r"mkvpropedit v(\S+)",
        "Install mkvtoolnix (https://mkvtoolnix.download/)",
    ),
    "hdr10plus_tool": ToolSpec(
        "--version",
        r"hdr10plus_tool (\S+)",
        "Install hdr10plus_tool (https://github.com/quietvoid/hdr10plus_tool)",
    ),
    "dovi_tool": ToolSpec(
        "--version",
        r"dovi_tool (\S+)",
        "Install dovi_tool (https://github.com/quietvoid/dovi_tool)",
    ),
}


@dataclass(frozen=True)
class ToolInfo:
    """Detection result for one external tool."""

    name: str
    status: ToolStatus
    path: Path | None = None
    version: str | None = None
    status_message: str | None = None

    def is_available(self) -> bool:
        return self.status is ToolStatus.AVAILABLE


@dataclass(frozen=True)
class Toolchain:
    """Resolved paths of the tools a run uses.

    Optional tools are None when absent; features that need them degrade
    with a warning.
    """

    ffmpeg: Path
    ffprobe: Path
    mkvpropedit: Path
    hdr10plus_tool: Path | None = None
    dovi_tool: Path | None = None


def find_tool(name: str, configured_path: Path | None = None) -> Path | None:
    """Find a tool executable, preferring a configured path over PATH."""
    if configured_path:
        if configured_path.is_file():
            return configured_path
        logger.warning(
            "Configured path for %s is not a file: %s", name, configured_path
        )

    which_result = shutil.which(name)
    if which_result:
        return Path(which_result)
    return None


def detect_tool(name: str, configured_path: Path | None = None) -> ToolInfo:
    """Locate a tool and read its version string."""
    spec = TOOL_SPECS[name]
    path = find_tool(name, configured_path)
    if path is None:
        return ToolInfo(
            name=name,
            status=ToolStatus.MISSING,
            status_message=f"{name} not found in PATH",
        )

    try:
        stdout, stderr, rc = run_command(
            [path, spec.version_flag], timeout=DETECTION_TIMEOUT
        )
    except (subprocess.TimeoutExpired, OSError) as e:
        return ToolInfo(
            name=name,
            status=ToolStatus.ERROR,
            path=path,
            status_message=f"Failed to run {name}: {e}",
        )
    if rc != 0:
        return ToolInfo(
            name=name,
            status=ToolStatus.ERROR,
            path=path,
            status_message=f"Failed to get {name} version: {stderr.strip()[:200]}",
        )

    match = re.search(spec.version_pattern, stdout)
    return ToolInfo(
        name=name,
        status=ToolStatus.AVAILABLE,
        path=path,
        version=match.group(1) if match else None,
    )


def detect_all_tools(config: ToolPathsConfig) -> dict[str, ToolInfo]:
    """Detect every required and optional tool."""
    return {
        name: detect_tool(name, getattr(config, name))
        for name in REQUIRED_TOOLS + OPTIONAL_TOOLS
    }


def require_tool(name: str, configured_path: Path | None = None) -> Path:
    """Get path to a required tool.

    Raises:
        ToolNotFoundError: If the tool is not available.
    """
    path = find_tool(name, configured_path)
    if path is None:
        hint = TOOL_SPECS[name].install_hint if name in TOOL_SPECS else ""
        raise ToolNotFoundError(f"Required tool not available: {name}. {hint}")
    return path


def resolve_toolchain(config: ToolPathsConfig) -> Toolchain:
    """Resolve required tool paths and whatever optional tools exist.

    Raises:
        ToolNotFoundError: If a required tool is missing.
    """
    toolchain = Toolchain(
        ffmpeg=require_tool("ffmpeg", config.ffmpeg),
        ffprobe=require_tool("ffprobe", config.ffprobe),
        mkvpropedit=require_tool("mkvpropedit", config.mkvpropedit),
        hdr10plus_tool=find_tool("hdr10plus_tool", config.hdr10plus_tool),
        dovi_tool=find_tool("dovi_tool", config.dovi_tool),
    )
    for name in OPTIONAL_TOOLS:
        if getattr(toolchain, name) is None:
            logger.info("Optional tool %s not found; related features disabled", name)
    return toolchain
