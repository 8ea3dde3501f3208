"""Coordination with an external batch scheduler.

Polls the scheduler's HTTP status endpoint. While it reports itself busy
the running encoder is suspended at the OS level, and it is resumed once
the scheduler is idle again. After ``max_failures`` consecutive
suspend/resume failures the coordinator disables itself and leaves the
encoder running.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from encodegate.core.process_control import ProcessControlError, ProcessController
from encodegate.jobs.background import PeriodicTask, TaskState

logger = logging.getLogger(__name__)


class SchedulerConnectionError(Exception):
    """Raised when the scheduler status cannot be fetched or parsed."""


class SchedulerStatus(BaseModel):
    """Pydantic model for the scheduler status response."""

    model_config = ConfigDict(extra="ignore")

    busy: bool = False
    active_jobs: int = Field(default=0, ge=0)

    @property
    def wants_exclusive(self) -> bool:
        return self.busy or self.active_jobs > 0


class SchedulerClient:
    """HTTP client for the scheduler status endpoint."""

    def __init__(
        self, url: str, api_key: str | None = None, timeout: float = 5.0
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._timeout = timeout
        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self._timeout, headers=self._headers())
        return self._client

    def _headers(self) -> dict[str, str]:
        if self._api_key:
            return {"X-Api-Key": self._api_key}
        return {}

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def get_status(self) -> SchedulerStatus:
        """Fetch and validate the current status.

        Raises:
            SchedulerConnectionError: If the request fails or the response
                does not match SchedulerStatus.
        """
        client = self._get_client()
        try:
            response = client.get(self._url)
            response.raise_for_status()
            return SchedulerStatus.model_validate(response.json())
        except httpx.TimeoutException as e:
            raise SchedulerConnectionError(f"Connection timeout: {e}") from e
        except httpx.HTTPError as e:
            raise SchedulerConnectionError(f"HTTP error: {e}") from e
        except (ValueError, ValidationError) as e:
            raise SchedulerConnectionError(f"Invalid status response: {e}") from e


class SchedulerCoordinator(PeriodicTask):
    """Suspend the encoder while the external scheduler is busy.

    Args:
        client: Status client.
        controller: OS process controller.
        encoder_pid: Returns the active encoder's PID, or None between
            encodes.
        interval: Poll interval in seconds.
        max_failures: Consecutive suspend/resume failures before the
            coordinator disables itself.
    """

    def __init__(
        self,
        client: SchedulerClient,
        controller: ProcessController,
        encoder_pid: Callable[[], int | None],
        interval: float = 15.0,
        max_failures: int = 3,
    ) -> None:
        super().__init__("scheduler", interval)
        self._client = client
        self._controller = controller
        self._encoder_pid = encoder_pid
        self.max_failures = max_failures
        self.consecutive_failures = 0
        self.disabled = False
        self.suspended_pid: int | None = None

    def _record_failure(self, action: str, error: ProcessControlError) -> None:
        self.consecutive_failures += 1
        logger.warning(
            "Failed to %s encoder (%d/%d): %s",
            action,
            self.consecutive_failures,
            self.max_failures,
            error,
        )
        if self.consecutive_failures >= self.max_failures:
            self.disabled = True
            logger.error(
                "Scheduler coordination disabled after %d consecutive failures",
                self.consecutive_failures,
            )

    def _resume(self) -> None:
        if self.suspended_pid is None:
            return
        try:
            self._controller.resume(self.suspended_pid)
        except ProcessControlError as e:
            self._record_failure("resume", e)
            if self.disabled:
                self.suspended_pid = None
            return
        self.consecutive_failures = 0
        self.suspended_pid = None

    def _suspend(self, pid: int) -> None:
        try:
            self._controller.suspend(pid)
        except ProcessControlError as e:
            self._record_failure("suspend", e)
            return
        self.consecutive_failures = 0
        self.suspended_pid = pid

    def poll(self) -> None:
        if self.disabled:
            self._set_status(TaskState.RUNNING, "disabled", disabled=True)
            return
        if not self._controller.supported:
            self.disabled = True
            logger.warning("Process suspension unsupported; scheduler coordination off")
            self._set_status(TaskState.RUNNING, "unsupported", disabled=True)
            return

        try:
            status = self._client.get_status()
        except SchedulerConnectionError as e:
            logger.warning("Scheduler status unavailable: %s", e)
            # Never leave the encoder frozen on a status we cannot read
            self._resume()
            self._set_status(TaskState.RUNNING, "status unavailable")
            return

        pid = self._encoder_pid()
        if self.suspended_pid is not None and self.suspended_pid != pid:
            # Encoder exited or was replaced while suspended
            self.suspended_pid = None

        if status.wants_exclusive and pid is not None and self.suspended_pid is None:
            logger.info("Scheduler busy, suspending encoder")
            self._suspend(pid)
        elif not status.wants_exclusive and self.suspended_pid is not None:
            logger.info("Scheduler idle, resuming encoder")
            self._resume()

        self._set_status(
            TaskState.RUNNING,
            "suspended" if self.suspended_pid is not None else "idle",
            busy=status.wants_exclusive,
            suspended=self.suspended_pid is not None,
            disabled=self.disabled,
            consecutive_failures=self.consecutive_failures,
        )

    def on_stop(self) -> None:
        self._resume()
        self._client.close()
