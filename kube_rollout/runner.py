"""Runs the render, apply, and status check stages of a rollout.

The `Runner` ties together the collaborators of a single pipeline run. Each
stage that talks to the cluster writes its output to a scoped log file that is
released however the stage exits.

```python
from kube_rollout.runner import default_labels, new_run_id, new_runner

runner = new_runner(config, Path.cwd(), default_labels(new_run_id()))
await runner.run(sys.stdout, artifacts)
```
"""

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
from contextlib import AbstractContextManager
import functools
import logging
from pathlib import Path
from typing import Any, TextIO, TypeVar
import uuid

from .artifact import Artifact
from .config import PipelineConfig
from .context import trace_context
from .deployer import Deployer
from .events import EventSink, LoggingEventSink
from .generate import new_generator
from .kubectl import KubectlDeployer
from .logfile import log_file_name, with_log_file, write_progress
from .manifest import ManifestList
from .policy import ResourceSelectorConfig, resolve_policy
from .render import Renderer

__all__ = [
    "Runner",
    "default_labels",
    "new_run_id",
    "new_runner",
]

_LOGGER = logging.getLogger(__name__)

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
RUN_ID_LABEL = "kube-rollout.dev/run-id"
MANAGED_BY = "kube-rollout"

LogScope = Callable[[str, TextIO | None], AbstractContextManager[TextIO]]

_T = TypeVar("_T")


def new_run_id() -> str:
    return str(uuid.uuid4())


def default_labels(run_id: str | None = None) -> dict[str, str]:
    """Return the labels that tie deployed resources to the tool and run."""
    labels = {MANAGED_BY_LABEL: MANAGED_BY}
    if run_id:
        labels[RUN_ID_LABEL] = run_id
    return labels


class Runner:
    """Executes a rollout against a single cluster."""

    def __init__(
        self,
        renderer: Renderer,
        deployer: Deployer,
        events: EventSink | None = None,
        log_dir: Path | None = None,
        muted: bool = False,
        log_scope: LogScope | None = None,
    ) -> None:
        """Initialize Runner."""
        self._renderer = renderer
        self._deployer = deployer
        self._events = events or LoggingEventSink()
        self._log_scope: LogScope = log_scope or functools.partial(
            with_log_file, muted=muted, log_dir=log_dir
        )
        self.has_deployed = False

    @property
    def renderer(self) -> Renderer:
        return self._renderer

    @property
    def deployer(self) -> Deployer:
        return self._deployer

    def _emit(self, event: Callable[..., None], *args: Any) -> None:
        try:
            event(*args)
        except Exception as err:  # pylint: disable=broad-except
            _LOGGER.warning("Event sink failed: %s", err)

    async def apply(
        self,
        out: TextIO | None,
        manifests: ManifestList,
        artifacts: Sequence[Artifact] = (),
    ) -> None:
        """Submit the manifests to the cluster.

        The outcome is reported to the event sink. Errors from the deployer
        are propagated after the deploy failed event, and no status check is
        performed for them.
        """
        with self._log_scope(log_file_name(), out) as log_out:
            self._emit(self._events.deploy_in_progress)
            try:
                with trace_context("apply_resources") as span:
                    span.set_attribute("manifests", str(len(manifests)))
                    span.set_attribute("artifacts", str(len(artifacts)))
                    await self._deployer.deploy(log_out, manifests)
            except (Exception, asyncio.CancelledError) as err:
                self._emit(self._events.deploy_failed, err)
                raise
            self.has_deployed = True
            self._emit(self._events.deploy_complete)

    async def status_check(self, out: TextIO | None) -> None:
        """Wait for the deployed resources to roll out."""
        with self._log_scope(log_file_name(), out) as log_out:
            await self._deployer.status_monitor().check(log_out)

    async def _stage(self, out: TextIO | None, name: str, step: Awaitable[_T]) -> _T:
        try:
            return await step
        except Exception as err:
            write_progress(out, f"{name} failed: {err}")
            raise

    async def run(
        self,
        out: TextIO | None,
        artifacts: Sequence[Artifact],
        status_check: bool = True,
    ) -> ManifestList:
        """Render, apply, and then optionally wait for the rollout.

        A failed stage is reported to `out` and stops the run.
        """
        manifests = await self._stage(
            out, "render", self._renderer.render(out, artifacts)
        )
        await self._stage(out, "apply", self.apply(out, manifests, artifacts))
        if status_check:
            await self._stage(out, "status check", self.status_check(out))
        else:
            _LOGGER.info("Skipping status check")
        return manifests


def new_runner(
    config: PipelineConfig,
    working_dir: Path,
    labels: Mapping[str, str],
    selectors: Sequence[ResourceSelectorConfig] = (),
    events: EventSink | None = None,
    muted: bool = False,
    log_dir: Path | None = None,
) -> Runner:
    """Create a runner from the pipeline configuration.

    The `selectors` override the resource selector of the configuration, in
    order. Raises `ConfigurationError` when the transform rules are invalid.
    """
    policy = resolve_policy([config.resource_selector, *selectors])
    renderer = Renderer(new_generator(working_dir, config.manifests), labels, policy)
    deployer = KubectlDeployer(
        kube_context=config.deploy.kube_context,
        namespace=config.deploy.namespace,
        status_check_deadline=config.deploy.status_check_deadline,
        poll_interval=config.deploy.poll_interval,
    )
    return Runner(renderer, deployer, events, log_dir=log_dir, muted=muted)
