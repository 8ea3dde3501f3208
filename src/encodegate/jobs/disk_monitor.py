"""Free-space monitoring of the run's temp volume."""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path

import psutil

from encodegate.jobs.background import PeriodicTask, TaskState
from encodegate.workflow.exceptions import PrerequisiteError

logger = logging.getLogger(__name__)

GIB = 1024**3


class SpaceLevel(Enum):
    OK = "ok"
    SOFT = "soft"
    HARD = "hard"


def format_size(size: float) -> str:
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} PB"


def free_bytes(path: Path) -> int:
    return psutil.disk_usage(str(path)).free


def space_level(free: int, soft_limit_gb: float, hard_limit_gb: float) -> SpaceLevel:
    if free < hard_limit_gb * GIB:
        return SpaceLevel.HARD
    if free < soft_limit_gb * GIB:
        return SpaceLevel.SOFT
    return SpaceLevel.OK


def check_disk_space(directory: Path, required_bytes: int) -> None:
    """Pre-flight check that ``directory`` has room for ``required_bytes``.

    Raises:
        PrerequisiteError: If not enough space is available or the volume
            cannot be inspected.
    """
    try:
        available = free_bytes(directory)
    except OSError as e:
        raise PrerequisiteError(f"Cannot check disk space for {directory}: {e}") from e
    if available < required_bytes:
        raise PrerequisiteError(
            f"Insufficient disk space in {directory}. "
            f"Required: {format_size(required_bytes)}, "
            f"Available: {format_size(available)}."
        )


class DiskSpaceMonitor(PeriodicTask):
    """Poll free space and warn once per level change."""

    def __init__(
        self,
        path: Path,
        interval: float = 30.0,
        soft_limit_gb: float = 20.0,
        hard_limit_gb: float = 5.0,
    ) -> None:
        super().__init__("disk-monitor", interval)
        self.path = path
        self.soft_limit_gb = soft_limit_gb
        self.hard_limit_gb = hard_limit_gb
        self._last_level = SpaceLevel.OK

    def poll(self) -> None:
        try:
            free = free_bytes(self.path)
        except OSError as e:
            logger.warning("Cannot read free space for %s: %s", self.path, e)
            self._set_status(TaskState.RUNNING, f"unreadable: {e}")
            return

        level = space_level(free, self.soft_limit_gb, self.hard_limit_gb)
        if level is not self._last_level:
            if level is SpaceLevel.HARD:
                logger.error(
                    "Free space on %s critically low: %s", self.path, format_size(free)
                )
            elif level is SpaceLevel.SOFT:
                logger.warning(
                    "Free space on %s running low: %s", self.path, format_size(free)
                )
            else:
                logger.info(
                    "Free space on %s recovered: %s", self.path, format_size(free)
                )
            self._last_level = level

        self._set_status(
            TaskState.RUNNING, level.value, free_bytes=free, level=level.value
        )
