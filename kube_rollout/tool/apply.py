"""Kube-rollout apply action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
import sys
from typing import cast

from kube_rollout.runner import default_labels, new_run_id, new_runner

from . import selector

_LOGGER = logging.getLogger(__name__)


class ApplyAction:
    """Kube-rollout apply action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "apply",
                help="Render the manifests, deploy them, and wait for the rollout",
                description="""Renders the manifests like `render`, applies them
                    to the cluster with kubectl, then waits for the deployed
                    workloads to become ready.""",
            ),
        )
        selector.add_pipeline_flags(args)
        selector.add_deploy_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        config_path: pathlib.Path | None,
        label: dict[str, str] | None,
        output_file: str | None,
        muted: bool,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        pipeline = await selector.load_config(config_path=config_path, **kwargs)
        run_id = new_run_id()
        _LOGGER.info("Starting run %s", run_id)
        labels = default_labels(run_id)
        labels.update(label or {})
        runner = new_runner(
            pipeline,
            selector.working_dir(config_path),
            labels,
            await selector.build_selectors(**kwargs),
            muted=muted,
        )
        artifacts = await selector.build_artifacts(**kwargs)
        manifests = await runner.run(
            sys.stdout, artifacts, status_check=pipeline.deploy.status_check
        )

        if output_file:
            with open(output_file, "w") as file:
                file.write(manifests.yaml())
