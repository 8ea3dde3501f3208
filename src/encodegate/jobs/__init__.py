"""Background tasks that run beside a pipeline run.

Archival copy, disk-space monitoring and external scheduler coordination.
Each task publishes immutable TaskStatus snapshots and is stopped
unconditionally at run teardown.
"""

from encodegate.jobs.background import (
    BackgroundTask,
    PeriodicTask,
    TaskState,
    TaskStatus,
)
from encodegate.jobs.backup import ArchiveCopyTask, is_already_archived
from encodegate.jobs.disk_monitor import DiskSpaceMonitor, SpaceLevel, check_disk_space
from encodegate.jobs.scheduler import (
    SchedulerClient,
    SchedulerConnectionError,
    SchedulerCoordinator,
    SchedulerStatus,
)

__all__ = [
    "ArchiveCopyTask",
    "BackgroundTask",
    "DiskSpaceMonitor",
    "PeriodicTask",
    "SchedulerClient",
    "SchedulerConnectionError",
    "SchedulerCoordinator",
    "SchedulerStatus",
    "SpaceLevel",
    "TaskState",
    "TaskStatus",
    "check_disk_space",
    "is_already_archived",
]
