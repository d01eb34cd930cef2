"""Lifecycle events emitted while deploying."""

from abc import ABC, abstractmethod
import logging

__all__ = [
    "EventSink",
    "LoggingEventSink",
]

_LOGGER = logging.getLogger(__name__)


class EventSink(ABC):
    """Receives notifications about deploy phase transitions.

    Sinks are notified fire-and-forget, an exception raised by a sink is logged
    and does not affect the deploy.
    """

    @abstractmethod
    def deploy_in_progress(self) -> None:
        """Manifests are about to be submitted to the cluster."""

    @abstractmethod
    def deploy_failed(self, err: BaseException) -> None:
        """The cluster rejected the manifests."""

    @abstractmethod
    def deploy_complete(self) -> None:
        """The manifests were accepted by the cluster."""


class LoggingEventSink(EventSink):
    """Event sink that writes the events to the log."""

    def deploy_in_progress(self) -> None:
        _LOGGER.info("Deploy in progress")

    def deploy_failed(self, err: BaseException) -> None:
        _LOGGER.info("Deploy failed: %s", err)

    def deploy_complete(self) -> None:
        _LOGGER.info("Deploy complete")
