"""Exceptions related to kube-rollout."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .manifest import NamedResource

__all__ = [
    "RolloutException",
    "InputException",
    "ConfigurationError",
    "GenerationError",
    "CommandException",
    "ApplyError",
    "MonitorFailed",
    "MonitorTimedOut",
]


class RolloutException(Exception):
    """Generic base exception used for this library."""


class InputException(RolloutException):
    """Raised when the input files or values are not formatted as expected."""


class ConfigurationError(InputException):
    """Raised when the pipeline or transform configuration is invalid."""


class GenerationError(RolloutException):
    """Raised when the raw manifests could not be generated."""


class CommandException(RolloutException):
    """Raised when there is a failure running a subcommand."""


class KustomizeException(CommandException):
    """Raised when there is a failure running a kustomize command."""


class ApplyError(CommandException):
    """Raised when the cluster rejected or partially applied the manifests."""


class MonitorFailed(RolloutException):
    """Raised when one or more resources reached a terminal failure state."""

    def __init__(self, failed: list[tuple["NamedResource", str | None]]) -> None:
        details = ", ".join(
            f"{resource} ({message or 'Unknown error'})" for resource, message in failed
        )
        super().__init__(f"{len(failed)} resource(s) failed to roll out: {details}")
        self.failed = failed

    @property
    def resources(self) -> list["NamedResource"]:
        """Return the identities of the failed resources."""
        return [resource for resource, _ in self.failed]


class MonitorTimedOut(RolloutException):
    """Raised when the deadline elapsed before all resources became ready."""

    def __init__(self, deadline: float, pending: list["NamedResource"]) -> None:
        names = ", ".join(str(resource) for resource in pending)
        super().__init__(
            f"Timed out after {deadline}s waiting for resources to stabilize: {names}"
        )
        self.deadline = deadline
        self.pending = pending
