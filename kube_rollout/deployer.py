"""Interface for submitting manifests to a cluster."""

from abc import ABC, abstractmethod
from typing import TextIO

from .manifest import ManifestList
from .status import StatusMonitor

__all__ = [
    "Deployer",
]


class Deployer(ABC):
    """Submits manifests to a cluster and exposes a monitor for the rollout."""

    @abstractmethod
    async def deploy(self, out: TextIO, manifests: ManifestList) -> None:
        """Apply the manifests to the cluster.

        Raises `ApplyError` when the cluster rejects any of the manifests. The
        manifests applied before the failure are left in place.
        """

    @abstractmethod
    def status_monitor(self) -> StatusMonitor:
        """Return a monitor tracking the resources deployed so far."""
