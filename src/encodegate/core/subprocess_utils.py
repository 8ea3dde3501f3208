"""Subprocess utilities for external tool invocation.

Every external tool (ffprobe, ffmpeg, hdr10plus_tool, dovi_tool,
mkvpropedit) is run through this module so that each call carries an
explicit timeout, is force-killed when the timeout expires, and is visible
to the run's process registry for cancellation teardown.
"""

from __future__ import annotations

import logging
import queue
import subprocess  # nosec B404 - subprocess is required for tool invocation
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from encodegate.tools.ffmpeg_metrics import (
    FFmpegMetricsAggregator,
    FFmpegMetricsSummary,
)
from encodegate.tools.ffmpeg_progress import FFmpegProgress, parse_stderr_progress

logger = logging.getLogger(__name__)


class ProcessRegistry:
    """Thread-safe set of live subprocesses owned by a run.

    The registry is what cancellation teardown walks to kill everything
    the run started. It also exposes the process currently flagged as the
    encoder so the scheduler coordinator can suspend and resume it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._processes: set[subprocess.Popen] = set()
        self._encoder: subprocess.Popen | None = None

    def add(self, process: subprocess.Popen, *, is_encoder: bool = False) -> None:
        with self._lock:
            self._processes.add(process)
            if is_encoder:
                self._encoder = process

    def discard(self, process: subprocess.Popen) -> None:
        with self._lock:
            self._processes.discard(process)
            if self._encoder is process:
                self._encoder = None

    @property
    def encoder_pid(self) -> int | None:
        """PID of the running encoder, or None when no encode is active."""
        with self._lock:
            if self._encoder is None or self._encoder.poll() is not None:
                return None
            return self._encoder.pid

    def __len__(self) -> int:
        with self._lock:
            return len(self._processes)

    def kill_all(self) -> int:
        """Kill every tracked process that is still running.

        Returns:
            Number of processes that were signalled.
        """
        with self._lock:
            processes = list(self._processes)
            self._processes.clear()
            self._encoder = None

        killed = 0
        for process in processes:
            if process.poll() is not None:
                continue
            try:
                process.kill()
                killed += 1
            except OSError as e:
                logger.debug("Could not kill pid %s: %s", process.pid, e)
        for process in processes:
            try:
                process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                logger.warning("Process %s did not exit after kill", process.pid)
        return killed


def run_command(
    args: list[str | Path],
    timeout: float = 120,
    registry: ProcessRegistry | None = None,
    errors: str = "replace",
    **kwargs: Any,
) -> tuple[str, str, int]:
    """Run external command with standard error handling.

    Args:
        args: Command and arguments. Path objects are converted to strings.
        timeout: Timeout in seconds (default 120).
        registry: Optional registry that tracks the process while it runs.
        errors: Error handling mode for text decoding (default "replace").
        **kwargs: Additional subprocess.Popen arguments.

    Returns:
        Tuple of (stdout, stderr, returncode).

    Raises:
        subprocess.TimeoutExpired: If the command times out. The child is
            killed and reaped before the exception is raised.
    """
    str_args = [str(arg) for arg in args]
    command_name = str_args[0].split("/")[-1] if str_args else "unknown"

    logger.debug(
        "Executing command: %s",
        " ".join(str_args),
        extra={"command": command_name, "arg_count": len(str_args)},
    )

    start_time = time.monotonic()
    process = subprocess.Popen(  # nosec B603 - caller validates args
        str_args,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        stdin=subprocess.DEVNULL,
        text=True,
        errors=errors,
        **kwargs,
    )
    if registry is not None:
        registry.add(process)
    try:
        stdout, stderr = process.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        process.kill()
        process.communicate()
        elapsed = time.monotonic() - start_time
        logger.warning(
            "Command timed out after %ss: %s",
            timeout,
            " ".join(str_args[:3]) + ("..." if len(str_args) > 3 else ""),
            extra={
                "command": command_name,
                "timeout_seconds": timeout,
                "elapsed_seconds": round(elapsed, 3),
            },
        )
        raise
    finally:
        if registry is not None:
            registry.discard(process)

    elapsed = time.monotonic() - start_time
    logger.debug(
        "Command completed",
        extra={
            "command": command_name,
            "elapsed_seconds": round(elapsed, 3),
            "returncode": process.returncode,
        },
    )
    return stdout or "", stderr or "", process.returncode


@dataclass(frozen=True)
class ProcessOutcome:
    """Result of a streamed subprocess run."""

    returncode: int
    """Process exit code, -1 when killed on timeout or cancellation."""

    timed_out: bool = False
    cancelled: bool = False
    elapsed_seconds: float = 0.0
    stderr_tail: tuple[str, ...] = ()
    """Last lines of stderr, for error messages."""

    metrics: FFmpegMetricsSummary = field(default_factory=FFmpegMetricsSummary)

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out and not self.cancelled

    def tail_text(self, lines: int = 10) -> str:
        return "".join(self.stderr_tail[-lines:]).strip()


class StreamingProcessRunner:
    """Run a long-lived tool while streaming its stderr line by line.

    stderr is read on a separate thread so the main loop can enforce the
    timeout and react to cancellation while the tool is still producing
    output. Each line is passed to an optional line callback (used by the
    corruption scanner) and parsed for ffmpeg progress markers.
    """

    STDERR_DRAIN_TIMEOUT: float = 5.0
    TAIL_LINES: int = 50

    def __init__(
        self,
        registry: ProcessRegistry | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._registry = registry
        self._cancel_event = cancel_event

    def run(
        self,
        cmd: list[str],
        description: str,
        timeout: float | None = None,
        line_callback: Callable[[str], None] | None = None,
        progress_callback: Callable[[FFmpegProgress], None] | None = None,
        is_encoder: bool = False,
    ) -> ProcessOutcome:
        """Run a command with timeout and threaded stderr reading.

        Args:
            cmd: Command arguments.
            description: Description for logging (e.g., "hardware encode").
            timeout: Maximum time in seconds. None means no limit.
            line_callback: Called with every stderr line.
            progress_callback: Called with parsed ffmpeg progress samples.
            is_encoder: Flag the process as the run's active encoder.

        Returns:
            ProcessOutcome. returncode is -1 on timeout or cancellation.
        """
        process = subprocess.Popen(  # nosec B603
            cmd,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            text=True,
            errors="replace",
        )
        if self._registry is not None:
            self._registry.add(process, is_encoder=is_encoder)

        tail: deque[str] = deque(maxlen=self.TAIL_LINES)
        stderr_queue: queue.Queue[str | None] = queue.Queue()
        stop_event = threading.Event()
        metrics_aggregator = FFmpegMetricsAggregator()

        def read_stderr() -> None:
            try:
                assert process.stderr is not None
                for line in process.stderr:
                    if stop_event.is_set():
                        break
                    stderr_queue.put(line)
            except (ValueError, OSError) as e:
                logger.debug("Stderr reader stopped: %s", e)
            finally:
                stderr_queue.put(None)

        def handle_line(line: str) -> None:
            tail.append(line)
            if line_callback is not None:
                line_callback(line)
            try:
                progress = parse_stderr_progress(line)
            except ValueError as e:
                logger.debug("Failed to parse progress line: %s", e)
                return
            if progress is None:
                return
            metrics_aggregator.add_sample(progress)
            if progress_callback is not None:
                try:
                    progress_callback(progress)
                except Exception as e:
                    logger.warning("Progress callback error: %s", e)

        reader_thread = threading.Thread(target=read_stderr, daemon=True)
        reader_thread.start()

        timed_out = False
        cancelled = False
        start_time = time.monotonic()

        try:
            while True:
                if timeout is not None and time.monotonic() - start_time >= timeout:
                    timed_out = True
                    break
                if self._cancel_event is not None and self._cancel_event.is_set():
                    cancelled = True
                    break
                try:
                    line = stderr_queue.get(timeout=0.5)
                except queue.Empty:
                    if process.poll() is not None and not reader_thread.is_alive():
                        break
                    continue
                if line is None:
                    break
                handle_line(line)

            if timed_out or cancelled:
                reason = "timed out" if timed_out else "cancelled"
                logger.warning(
                    "%s %s, killing pid %s", description, reason, process.pid
                )
                stop_event.set()
                process.kill()
                if process.stderr:
                    try:
                        process.stderr.close()
                    except OSError:
                        logger.debug("Ignoring stderr close error after kill")
                process.wait()
                reader_thread.join(timeout=2.0)
                if reader_thread.is_alive():
                    logger.error(
                        "Stderr reader thread failed to terminate after kill. "
                        "Thread will be abandoned."
                    )
                return ProcessOutcome(
                    returncode=-1,
                    timed_out=timed_out,
                    cancelled=cancelled,
                    elapsed_seconds=time.monotonic() - start_time,
                    stderr_tail=tuple(tail),
                    metrics=metrics_aggregator.summarize(),
                )

            stop_event.set()
            reader_thread.join(timeout=self.STDERR_DRAIN_TIMEOUT)
            while True:
                try:
                    line = stderr_queue.get_nowait()
                except queue.Empty:
                    break
                if line is None:
                    break
                handle_line(line)
            process.wait()
        finally:
            if self._registry is not None:
                self._registry.discard(process)

        return ProcessOutcome(
            returncode=process.returncode,
            elapsed_seconds=time.monotonic() - start_time,
            stderr_tail=tuple(tail),
            metrics=metrics_aggregator.summarize(),
        )
