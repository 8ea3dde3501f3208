"""Result type shared by the external tool wrappers.

Expected tool failures (non-zero exit, timeout, missing binary) come back
as an unsuccessful ToolResult rather than an exception, so each pipeline
stage decides whether the failure is fatal or best-effort.
"""

import logging
import subprocess  # nosec B404 - needed for TimeoutExpired
from pathlib import Path

from encodegate.core.subprocess_utils import ProcessRegistry, run_command

logger = logging.getLogger(__name__)


class ToolResult:
    """Result of an external tool invocation."""

    def __init__(
        self,
        success: bool,
        message: str = "",
        output_path: Path | None = None,
        timed_out: bool = False,
    ) -> None:
        self.success = success
        self.message = message
        self.output_path = output_path
        self.timed_out = timed_out

    def __repr__(self) -> str:
        return (
            f"ToolResult(success={self.success!r}, message={self.message!r}, "
            f"output_path={self.output_path!r})"
        )


def run_tool(
    cmd: list[str],
    description: str,
    timeout: float,
    registry: ProcessRegistry | None = None,
    output_path: Path | None = None,
) -> ToolResult:
    """Run a tool to completion and fold every failure mode into a ToolResult.

    Args:
        cmd: Command and arguments.
        description: Human-readable step name for messages.
        timeout: Timeout in seconds; the process is killed on expiry.
        registry: Registry tracking the process while it runs.
        output_path: File the tool is expected to write. A missing file
            after a zero exit counts as a failure.
    """
    try:
        stdout, stderr, returncode = run_command(
            cmd, timeout=timeout, registry=registry
        )
    except subprocess.TimeoutExpired:
        return ToolResult(
            success=False,
            message=f"{description} timed out after {timeout:g}s",
            timed_out=True,
        )
    except OSError as e:
        return ToolResult(success=False, message=f"{description} failed: {e}")

    if returncode != 0:
        detail = (stderr or stdout).strip().splitlines()
        tail = detail[-1] if detail else ""
        return ToolResult(
            success=False,
            message=f"{description} exited with code {returncode}: {tail}",
        )

    if output_path is not None and not output_path.exists():
        return ToolResult(
            success=False, message=f"{description} produced no output file"
        )

    logger.debug("%s completed", description)
    return ToolResult(success=True, output_path=output_path)
