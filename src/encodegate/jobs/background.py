"""Supervised background tasks.

A BackgroundTask runs on a daemon thread and publishes its progress as an
immutable TaskStatus snapshot. The pipeline only ever reads snapshots; it
never touches task internals. Exceptions escaping a task are caught by the
supervisor loop and turned into a FAILED snapshot.
"""

from __future__ import annotations

import contextvars
import logging
import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_STOP_TIMEOUT = 5.0


class TaskState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"


@dataclass(frozen=True)
class TaskStatus:
    """Point-in-time view of a background task."""

    name: str
    state: TaskState = TaskState.PENDING
    message: str = ""
    updated_at: float = field(default_factory=time.time)
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def finished(self) -> bool:
        return self.state in (TaskState.COMPLETED, TaskState.FAILED, TaskState.STOPPED)


class BackgroundTask:
    """Base class for tasks that run beside the pipeline.

    Subclasses implement ``_run`` and check ``stop_requested`` (or wait on
    ``_wait``) often enough to honour ``stop``.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._status = TaskStatus(name=name)
        self._thread: threading.Thread | None = None

    @property
    def status(self) -> TaskStatus:
        with self._lock:
            return self._status

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def _set_status(self, state: TaskState, message: str = "", **details: Any) -> None:
        with self._lock:
            merged = {**self._status.details, **details}
            self._status = replace(
                self._status,
                state=state,
                message=message,
                updated_at=time.time(),
                details=merged,
            )

    def _wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; True if a stop was requested meanwhile."""
        return self._stop_event.wait(seconds)

    def _run(self) -> None:
        raise NotImplementedError

    def _supervise(self) -> None:
        self._set_status(TaskState.RUNNING)
        try:
            self._run()
        except Exception as e:
            logger.exception("Background task %s failed", self.name)
            self._set_status(TaskState.FAILED, str(e))
            return
        if self.status.state is TaskState.RUNNING:
            state = TaskState.STOPPED if self.stop_requested else TaskState.COMPLETED
            self._set_status(state, self.status.message)

    def start(self) -> None:
        if self._thread is not None:
            return
        # Copy the context so log records keep the run id
        context = contextvars.copy_context()
        self._thread = threading.Thread(
            target=context.run,
            args=(self._supervise,),
            name=f"encodegate-{self.name}",
            daemon=True,
        )
        self._thread.start()
        logger.debug("Started background task %s", self.name)

    def stop(self, timeout: float = DEFAULT_STOP_TIMEOUT) -> TaskStatus:
        """Request a stop and wait briefly for the thread to exit."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning(
                    "Background task %s did not stop within %gs", self.name, timeout
                )
        return self.status

    def join(self, timeout: float | None = None) -> TaskStatus:
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        return self.status


class PeriodicTask(BackgroundTask):
    """A task that calls ``poll`` immediately and then every ``interval``."""

    def __init__(self, name: str, interval: float) -> None:
        super().__init__(name)
        self.interval = interval

    def poll(self) -> None:
        raise NotImplementedError

    def on_stop(self) -> None:
        """Hook run once on the task thread after the loop exits."""

    def _run(self) -> None:
        try:
            while not self.stop_requested:
                self.poll()
                if self._wait(self.interval):
                    break
        finally:
            self.on_stop()
