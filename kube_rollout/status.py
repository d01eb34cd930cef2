"""Monitoring the rollout of deployed resources.

After the manifests are applied the `StatusMonitor` polls the cluster until
every tracked resource is ready, one of them fails, or the deadline passes.

```python
monitor = deployer.status_monitor()
try:
    await monitor.check(sys.stdout)
except MonitorFailed as err:
    for resource in err.resources:
        print(f"Failed: {resource}")
```
"""

from abc import ABC, abstractmethod
import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
import logging
from typing import TextIO

from .context import trace_context
from .exceptions import MonitorFailed, MonitorTimedOut, RolloutException
from .logfile import write_progress
from .manifest import NamedResource, ResourceTypeKey

__all__ = [
    "MonitorState",
    "Status",
    "ResourceStatus",
    "StatusSource",
    "StatusMonitor",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_DEADLINE = 600.0
DEFAULT_POLL_INTERVAL = 1.0


class Status(StrEnum):
    """Rollout status of a single resource."""

    PENDING = "Pending"
    READY = "Ready"
    FAILED = "Failed"


@dataclass(frozen=True)
class ResourceStatus:
    """Rollout status and optional detail message for a resource."""

    status: Status
    message: str | None = None

    @property
    def terminal(self) -> bool:
        return self.status != Status.PENDING

    def __str__(self) -> str:
        """Return a string representation of the status."""
        if self.message:
            return f"{self.status}: {self.message}"
        return str(self.status)


class MonitorState(StrEnum):
    """State of the status check as a whole."""

    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"


class StatusSource(ABC):
    """Reports the rollout status of resources in the cluster."""

    @abstractmethod
    def supports(self, resource_type: ResourceTypeKey) -> bool:
        """Return True if the rollout status of the type can be observed."""

    @abstractmethod
    async def get_status(self, resource: NamedResource) -> ResourceStatus:
        """Return the current rollout status of the resource."""


class StatusMonitor:
    """Polls the status of deployed resources until they reach a terminal state."""

    def __init__(
        self,
        source: StatusSource,
        resources: Sequence[NamedResource],
        deadline: float = DEFAULT_DEADLINE,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        """Initialize StatusMonitor."""
        self._source = source
        self._resources = [
            resource for resource in resources if source.supports(resource.type_key)
        ]
        self._deadline = deadline
        self._poll_interval = poll_interval
        self._statuses: dict[NamedResource, ResourceStatus] = {}
        self.state = MonitorState.PENDING

    @property
    def resources(self) -> list[NamedResource]:
        """Return the resources being tracked."""
        return list(self._resources)

    @property
    def statuses(self) -> dict[NamedResource, ResourceStatus]:
        """Return the latest observed status for each resource."""
        return dict(self._statuses)

    def _pending(self) -> list[NamedResource]:
        return [
            resource
            for resource in self._resources
            if (status := self._statuses.get(resource)) is None or not status.terminal
        ]

    async def _poll(self, out: TextIO | None) -> None:
        """Observe every resource that has not reached a terminal state."""
        for resource in self._pending():
            try:
                status = await self._source.get_status(resource)
            except RolloutException as err:
                _LOGGER.warning("Unable to get status of %s: %s", resource, err)
                continue
            if self._statuses.get(resource) != status:
                write_progress(out, f" - {resource}: {status}")
            self._statuses[resource] = status
        if self._statuses:
            self.state = MonitorState.IN_PROGRESS

    def _failures(self) -> list[tuple[NamedResource, str | None]]:
        return [
            (resource, status.message)
            for resource in self._resources
            if (status := self._statuses.get(resource)) is not None
            and status.status == Status.FAILED
        ]

    async def _wait(self, out: TextIO | None) -> None:
        while True:
            await self._poll(out)
            # A single failure is terminal for the whole rollout
            if self._failures() or not self._pending():
                return
            await asyncio.sleep(self._poll_interval)

    async def check(self, out: TextIO | None) -> None:
        """Wait for the tracked resources to roll out.

        Returns when every resource is ready. Raises `MonitorFailed` when a
        resource failed, or `MonitorTimedOut` when the deadline passed first.
        Cancelling the calling task stops polling and raises
        `asyncio.CancelledError`.
        """
        with trace_context("status_check") as span:
            span.set_attribute("resources", str(len(self._resources)))
            if not self._resources:
                _LOGGER.debug("No resources to monitor")
                self.state = MonitorState.SUCCEEDED
                return
            write_progress(
                out, f"Waiting for {len(self._resources)} resources to stabilize"
            )
            try:
                async with asyncio.timeout(self._deadline):
                    await self._wait(out)
            except asyncio.TimeoutError as err:
                self.state = MonitorState.TIMED_OUT
                pending = self._pending()
                write_progress(
                    out, f"Status check timed out with {len(pending)} pending"
                )
                raise MonitorTimedOut(self._deadline, pending) from err

            if failures := self._failures():
                self.state = MonitorState.FAILED
                write_progress(
                    out,
                    f"{len(failures)} of {len(self._resources)} resources failed",
                )
                raise MonitorFailed(failures)
            self.state = MonitorState.SUCCEEDED
            write_progress(out, "Resources stabilized")

