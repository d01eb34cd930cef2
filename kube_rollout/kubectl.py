"""Cluster access through the `kubectl` command.

`KubectlDeployer` pipes the manifests into `kubectl apply` and
`KubectlStatusSource` evaluates the rollout status of workloads from
`kubectl get -o json`, following the same rules as `kubectl rollout status`.
"""

import json
import logging
from collections.abc import Callable
from typing import Any, TextIO

from .command import Command, DEFAULT_TIMEOUT, run
from .context import trace_context
from .deployer import Deployer
from .exceptions import ApplyError, CommandException
from .logfile import write_progress
from .manifest import ManifestList, NamedResource, ResourceTypeKey
from .status import (
    DEFAULT_DEADLINE,
    DEFAULT_POLL_INTERVAL,
    ResourceStatus,
    Status,
    StatusMonitor,
    StatusSource,
)

__all__ = [
    "KubectlDeployer",
    "KubectlStatusSource",
]

_LOGGER = logging.getLogger(__name__)

KUBECTL_BIN = "kubectl"
APPLY_TIMEOUT = 300.0

# Container waiting reasons that will not resolve without a new rollout
POD_FAILURE_REASONS = {
    "CrashLoopBackOff",
    "ErrImagePull",
    "ImagePullBackOff",
    "CreateContainerConfigError",
    "InvalidImageName",
    "RunContainerError",
}


def _global_args(kube_context: str | None) -> list[str]:
    if kube_context:
        return ["--context", kube_context]
    return []


def _pending(message: str) -> ResourceStatus:
    return ResourceStatus(status=Status.PENDING, message=message)


def _conditions(obj: dict[str, Any]) -> dict[str, dict[str, Any]]:
    return {
        cond.get("type", ""): cond
        for cond in (obj.get("status") or {}).get("conditions") or []
    }


def _generation_observed(obj: dict[str, Any]) -> bool:
    generation = (obj.get("metadata") or {}).get("generation", 0)
    observed = (obj.get("status") or {}).get("observedGeneration", 0)
    return observed >= generation


def deployment_status(obj: dict[str, Any]) -> ResourceStatus:
    """Evaluate the rollout status of a Deployment."""
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    if (
        progressing := _conditions(obj).get("Progressing")
    ) and progressing.get("reason") == "ProgressDeadlineExceeded":
        return ResourceStatus(
            status=Status.FAILED,
            message=progressing.get("message") or "progress deadline exceeded",
        )
    if not _generation_observed(obj):
        return _pending("waiting for rollout to start")
    desired = spec.get("replicas", 1)
    updated = status.get("updatedReplicas", 0)
    if updated < desired:
        return _pending(f"{updated} of {desired} updated replicas")
    if (replicas := status.get("replicas", 0)) > updated:
        return _pending(f"{replicas - updated} old replicas pending termination")
    if (available := status.get("availableReplicas", 0)) < updated:
        return _pending(f"{available} of {updated} updated replicas available")
    return ResourceStatus(status=Status.READY)


def stateful_set_status(obj: dict[str, Any]) -> ResourceStatus:
    """Evaluate the rollout status of a StatefulSet."""
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    if not _generation_observed(obj):
        return _pending("waiting for rollout to start")
    desired = spec.get("replicas", 1)
    if (ready := status.get("readyReplicas", 0)) < desired:
        return _pending(f"{ready} of {desired} replicas ready")
    strategy = (spec.get("updateStrategy") or {}).get("type", "RollingUpdate")
    if strategy == "RollingUpdate" and status.get("updateRevision") != status.get(
        "currentRevision"
    ):
        updated = status.get("updatedReplicas", 0)
        return _pending(f"{updated} of {desired} replicas updated")
    return ResourceStatus(status=Status.READY)


def daemon_set_status(obj: dict[str, Any]) -> ResourceStatus:
    """Evaluate the rollout status of a DaemonSet."""
    status = obj.get("status") or {}
    if not _generation_observed(obj):
        return _pending("waiting for rollout to start")
    desired = status.get("desiredNumberScheduled", 0)
    if (updated := status.get("updatedNumberScheduled", 0)) < desired:
        return _pending(f"{updated} of {desired} updated pods scheduled")
    if (available := status.get("numberAvailable", 0)) < desired:
        return _pending(f"{available} of {desired} updated pods available")
    return ResourceStatus(status=Status.READY)


def pod_status(obj: dict[str, Any]) -> ResourceStatus:
    """Evaluate the status of a Pod."""
    status = obj.get("status") or {}
    phase = status.get("phase", "Unknown")
    for container in status.get("containerStatuses") or []:
        waiting = (container.get("state") or {}).get("waiting") or {}
        if (reason := waiting.get("reason")) in POD_FAILURE_REASONS:
            message = waiting.get("message")
            return ResourceStatus(
                status=Status.FAILED,
                message=f"container {container.get('name')} {reason}"
                + (f": {message}" if message else ""),
            )
    if phase == "Failed":
        return ResourceStatus(
            status=Status.FAILED, message=status.get("reason") or "pod failed"
        )
    if phase == "Succeeded":
        return ResourceStatus(status=Status.READY)
    if phase == "Running" and _conditions(obj).get("Ready", {}).get("status") == "True":
        return ResourceStatus(status=Status.READY)
    return _pending(f"pod is {phase}")


def job_status(obj: dict[str, Any]) -> ResourceStatus:
    """Evaluate the status of a Job."""
    conditions = _conditions(obj)
    if (failed := conditions.get("Failed")) and failed.get("status") == "True":
        return ResourceStatus(
            status=Status.FAILED, message=failed.get("message") or failed.get("reason")
        )
    if (complete := conditions.get("Complete")) and complete.get("status") == "True":
        return ResourceStatus(status=Status.READY)
    active = (obj.get("status") or {}).get("active", 0)
    return _pending(f"{active} active pods")


StatusFunc = Callable[[dict[str, Any]], ResourceStatus]

STATUS_FUNCS: dict[ResourceTypeKey, StatusFunc] = {
    ResourceTypeKey("apps", "Deployment"): deployment_status,
    ResourceTypeKey("apps", "StatefulSet"): stateful_set_status,
    ResourceTypeKey("apps", "DaemonSet"): daemon_set_status,
    ResourceTypeKey("", "Pod"): pod_status,
    ResourceTypeKey("batch", "Job"): job_status,
}


class KubectlStatusSource(StatusSource):
    """Reads the rollout status of workloads with `kubectl get`."""

    def __init__(
        self, kube_context: str | None = None, timeout: float = DEFAULT_TIMEOUT
    ) -> None:
        """Initialize KubectlStatusSource."""
        self._kube_context = kube_context
        self._timeout = timeout

    def supports(self, resource_type: ResourceTypeKey) -> bool:
        return resource_type in STATUS_FUNCS

    async def get_status(self, resource: NamedResource) -> ResourceStatus:
        """Fetch the object and evaluate its rollout status."""
        args = [
            KUBECTL_BIN,
            *_global_args(self._kube_context),
            "get",
            str(resource.type_key).lower(),
            resource.name,
            "--output",
            "json",
        ]
        if resource.namespace:
            args.extend(["--namespace", resource.namespace])
        out = await run(Command(args, timeout=self._timeout))
        try:
            obj = json.loads(out)
        except json.JSONDecodeError as err:
            raise CommandException(
                f"Unable to parse status of {resource}: {err}"
            ) from err
        return STATUS_FUNCS[resource.type_key](obj)


class KubectlDeployer(Deployer):
    """Deploys manifests with `kubectl apply`."""

    def __init__(
        self,
        kube_context: str | None = None,
        namespace: str | None = None,
        status_check_deadline: float = DEFAULT_DEADLINE,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        status_source: StatusSource | None = None,
    ) -> None:
        """Initialize KubectlDeployer."""
        self._kube_context = kube_context
        self._namespace = namespace
        self._status_check_deadline = status_check_deadline
        self._poll_interval = poll_interval
        self._status_source = status_source or KubectlStatusSource(kube_context)
        self._deployed: list[NamedResource] = []

    @property
    def deployed(self) -> list[NamedResource]:
        """Return the resources applied so far."""
        return list(self._deployed)

    async def deploy(self, out: TextIO, manifests: ManifestList) -> None:
        """Apply the manifests with a single `kubectl apply`."""
        if not len(manifests):
            write_progress(out, "No manifests to deploy")
            return
        args = [KUBECTL_BIN, *_global_args(self._kube_context)]
        if self._namespace:
            args.extend(["--namespace", self._namespace])
        args.extend(["apply", "-f", "-"])
        with trace_context("kubectl_apply"):
            result = await run(
                Command(args, exc=ApplyError, timeout=APPLY_TIMEOUT),
                stdin=manifests.yaml().encode("utf-8"),
            )
        write_progress(out, result.rstrip("\n"))
        # Objects without a namespace land in the one kubectl resolves
        self._deployed.extend(manifests.resources(self._namespace))

    def status_monitor(self) -> StatusMonitor:
        return StatusMonitor(
            self._status_source,
            self._deployed,
            deadline=self._status_check_deadline,
            poll_interval=self._poll_interval,
        )
