"""OS-level process suspension.

Suspend and resume are hard (SIGSTOP-style) operations, not cooperative
pauses. They are platform specific, so callers depend on the
ProcessController protocol and get a no-op implementation where psutil
cannot suspend processes.
"""

from __future__ import annotations

import logging
from typing import Protocol

import psutil

logger = logging.getLogger(__name__)


class ProcessControlError(Exception):
    """Raised when a suspend or resume request fails."""


class ProcessController(Protocol):
    """Capability to suspend and resume a running process."""

    @property
    def supported(self) -> bool:
        """True if suspend/resume has any effect on this platform."""
        ...

    def suspend(self, pid: int) -> None:
        """Suspend a process.

        Raises:
            ProcessControlError: If the process cannot be suspended.
        """
        ...

    def resume(self, pid: int) -> None:
        """Resume a previously suspended process.

        Raises:
            ProcessControlError: If the process cannot be resumed.
        """
        ...


class PsutilProcessController:
    """ProcessController backed by psutil.Process.suspend/resume."""

    @property
    def supported(self) -> bool:
        return True

    def suspend(self, pid: int) -> None:
        try:
            psutil.Process(pid).suspend()
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            raise ProcessControlError(f"Cannot suspend pid {pid}: {e}") from e
        logger.info("Suspended encoder process", extra={"pid": pid})

    def resume(self, pid: int) -> None:
        try:
            psutil.Process(pid).resume()
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            raise ProcessControlError(f"Cannot resume pid {pid}: {e}") from e
        logger.info("Resumed encoder process", extra={"pid": pid})


class NullProcessController:
    """No-op controller for platforms without process suspension."""

    @property
    def supported(self) -> bool:
        return False

    def suspend(self, pid: int) -> None:
        logger.debug("Process suspension unsupported, ignoring pid %d", pid)

    def resume(self, pid: int) -> None:
        logger.debug("Process suspension unsupported, ignoring pid %d", pid)


def get_process_controller() -> ProcessController:
    """Return the best available controller for this platform."""
    if psutil.POSIX or psutil.WINDOWS:
        return PsutilProcessController()
    logger.warning("Process suspension not supported on this platform")
    return NullProcessController()
