"""Per-run state and teardown.

RunContext owns everything a run creates that must not outlive it: the
temp directory, the registry of live subprocesses, background tasks and
the SIGINT/SIGTERM handlers. Teardown runs exactly once, whichever way
the run ends.
"""

from __future__ import annotations

import logging
import shutil
import signal
import tempfile
import threading
import uuid
from pathlib import Path
from types import FrameType, TracebackType

from encodegate.core.subprocess_utils import ProcessRegistry, StreamingProcessRunner
from encodegate.jobs.background import BackgroundTask, TaskStatus
from encodegate.logging.context import clear_run_context, set_run_context
from encodegate.workflow.exceptions import RunCancelledError

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def new_run_id() -> str:
    return uuid.uuid4().hex[:8]


class RunContext:
    """Explicit run state passed through the pipeline.

    Use as a context manager:

        with RunContext(source, temp_root=config.temp_directory) as ctx:
            pipeline.run(ctx, ...)
    """

    def __init__(
        self,
        source: Path,
        temp_root: Path | None = None,
        run_id: str | None = None,
        install_signal_handlers: bool = True,
    ) -> None:
        self.run_id = run_id or new_run_id()
        self.source = source
        self.temp_root = temp_root
        self.registry = ProcessRegistry()
        self.cancel_event = threading.Event()
        self.runner = StreamingProcessRunner(
            registry=self.registry, cancel_event=self.cancel_event
        )
        self.warnings: list[str] = []
        self._temp_dir: Path | None = None
        self._tasks: dict[str, BackgroundTask] = {}
        self._install_signal_handlers = install_signal_handlers
        self._previous_handlers: dict[int, object] = {}
        self._teardown_lock = threading.Lock()
        self._torn_down = False

    @property
    def temp_dir(self) -> Path:
        if self._temp_dir is None:
            raise RuntimeError("RunContext has not been entered")
        return self._temp_dir

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def __enter__(self) -> RunContext:
        if self.temp_root is not None:
            self.temp_root.mkdir(parents=True, exist_ok=True)
        self._temp_dir = Path(
            tempfile.mkdtemp(prefix=f"encodegate-{self.run_id}-", dir=self.temp_root)
        )
        set_run_context(self.run_id, self.source)
        if self._install_signal_handlers:
            self._install_handlers()
        logger.debug("Run temp directory %s", self._temp_dir)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            self.teardown()
        finally:
            self._restore_handlers()
            clear_run_context()

    def _install_handlers(self) -> None:
        if self._previous_handlers:
            return
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread; signal handlers not installed")
            return
        for signum in HANDLED_SIGNALS:
            self._previous_handlers[signum] = signal.signal(signum, self._on_signal)

    def _restore_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    def _on_signal(self, signum: int, frame: FrameType | None) -> None:
        sig_name = signal.Signals(signum).name
        if self.cancel_event.is_set():
            logger.info("Received %s, cancellation already in progress", sig_name)
            return
        logger.warning("Received %s, cancelling run", sig_name)
        self.cancel()

    def cancel(self) -> None:
        """Flag the run as cancelled and kill its subprocesses.

        Safe to call from a signal handler: the kill happens on a helper
        thread, so the handler never blocks on the registry lock.
        """
        self.cancel_event.set()
        threading.Thread(
            target=self.registry.kill_all, name="encodegate-cancel", daemon=True
        ).start()

    def check_cancelled(self) -> None:
        """Raise RunCancelledError at a pipeline checkpoint if cancelled."""
        if self.cancel_event.is_set():
            raise RunCancelledError("run cancelled")

    def add_task(self, task: BackgroundTask) -> BackgroundTask:
        """Start a background task owned by this run."""
        self._tasks[task.name] = task
        task.start()
        return task

    def task_status(self, name: str) -> TaskStatus | None:
        task = self._tasks.get(name)
        return task.status if task is not None else None

    def work_path(self, name: str) -> Path:
        return self.temp_dir / name

    def teardown(self) -> None:
        """Kill subprocesses, stop tasks and delete the temp directory.

        Idempotent; only the first call does anything.
        """
        with self._teardown_lock:
            if self._torn_down:
                return
            self._torn_down = True

        killed = self.registry.kill_all()
        if killed:
            logger.info("Killed %d running subprocess(es)", killed)

        for task in self._tasks.values():
            status = task.stop()
            logger.debug(
                "Background task %s ended %s", task.name, status.state.value
            )

        if self._temp_dir is not None and self._temp_dir.exists():
            shutil.rmtree(self._temp_dir, ignore_errors=True)
            logger.debug("Removed run temp directory %s", self._temp_dir)
