"""Core utilities package.

Subprocess invocation with timeouts and kill-on-expiry, and OS-level
process suspension behind a small capability protocol.
"""

from encodegate.core.process_control import (
    NullProcessController,
    ProcessController,
    PsutilProcessController,
    get_process_controller,
)
from encodegate.core.subprocess_utils import (
    ProcessOutcome,
    ProcessRegistry,
    StreamingProcessRunner,
    run_command,
)

__all__ = [
    "NullProcessController",
    "ProcessController",
    "ProcessOutcome",
    "ProcessRegistry",
    "PsutilProcessController",
    "StreamingProcessRunner",
    "get_process_controller",
    "run_command",
]
