"""Kube-rollout render action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
import sys
from typing import cast

from kube_rollout.runner import default_labels, new_runner

from . import selector

_LOGGER = logging.getLogger(__name__)

DEFAULT_OUTPUT = "/dev/stdout"


class RenderAction:
    """Kube-rollout render action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "render",
                help="Render the hydrated manifests without deploying them",
                description="""Generates the raw manifests, substitutes the
                    built images, adds the labels, and applies the transform
                    rules. The result is what `apply` sends to the cluster.""",
            ),
        )
        selector.add_pipeline_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        config_path: pathlib.Path | None,
        label: dict[str, str] | None,
        output_file: str | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        pipeline = await selector.load_config(config_path=config_path, **kwargs)
        labels = default_labels()
        labels.update(label or {})
        runner = new_runner(
            pipeline,
            selector.working_dir(config_path),
            labels,
            await selector.build_selectors(**kwargs),
        )
        artifacts = await selector.build_artifacts(**kwargs)
        manifests = await runner.renderer.render(sys.stderr, artifacts)

        with open(output_file or DEFAULT_OUTPUT, "w") as file:
            file.write(manifests.yaml())
