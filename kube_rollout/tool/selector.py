"""Library for the flags shared by the pipeline commands."""

from argparse import (
    ArgumentParser,
    BooleanOptionalAction,
    Action,
    ArgumentError,
    Namespace,
)
import dataclasses
import logging
import pathlib
from typing import Any

from kube_rollout import artifact, config, policy

_LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG = pathlib.Path("kube-rollout.yaml")


class LabelAppendAction(Action):
    """Append a key=value pair to the argument dict."""

    def __call__(
        self,
        parser: ArgumentParser,
        namespace: Namespace,
        values: Any,
        option_string: str | None = None,
    ) -> None:
        values = values.split(",")
        if not values[0]:
            return
        result = getattr(namespace, self.dest) or {}
        for value in values:
            k, sep, v = value.partition("=")
            if not sep or not k:
                raise ArgumentError(
                    self, f"Expected key=value format but got '{value}'"
                )
            result[k] = v
        setattr(namespace, self.dest, result)


def add_pipeline_flags(args: ArgumentParser) -> None:
    """Add flags that select the manifests and how they are transformed."""
    args.add_argument(
        "--config",
        dest="config_path",
        type=pathlib.Path,
        default=None,
        help="Pipeline configuration file, defaults to kube-rollout.yaml when present",
    )
    args.add_argument(
        "--raw-yaml",
        type=lambda x: x.split(","),
        default=None,
        help="A comma separated list of yaml file patterns, replacing the "
        "manifests of the configuration file",
    )
    args.add_argument(
        "--transform-rules-file",
        type=pathlib.Path,
        default=None,
        help="File with allow and deny transform rules applied on top of the "
        "configuration file",
    )
    args.add_argument(
        "--build-artifacts",
        type=pathlib.Path,
        default=None,
        help="File with the built images, in the `builds` format",
    )
    args.add_argument(
        "--label",
        "-l",
        action=LabelAppendAction,
        help="Add labels to every deployed object e.g. `team=infra`",
    )
    args.add_argument(
        "--output-file",
        type=str,
        default=None,
        help="Output file for the rendered manifests",
    )


def add_deploy_flags(args: ArgumentParser) -> None:
    """Add flags that control where and how manifests are deployed."""
    args.add_argument(
        "--kube-context",
        type=str,
        default=None,
        help="The kubeconfig context to deploy to",
    )
    args.add_argument(
        "--namespace",
        "-n",
        type=str,
        default=None,
        help="The namespace for objects that don't specify one",
    )
    args.add_argument(
        "--status-check",
        default=None,
        action=BooleanOptionalAction,
        help="Wait for the deployed resources to become ready",
    )
    args.add_argument(
        "--status-check-deadline",
        type=float,
        default=None,
        help="Seconds to wait for the deployed resources to become ready",
    )
    args.add_argument(
        "--muted",
        default=False,
        action=BooleanOptionalAction,
        help="Only write the deploy output to the log file",
    )


def working_dir(config_path: pathlib.Path | None) -> pathlib.Path:
    """Return the directory the manifest patterns are relative to."""
    if config_path is not None:
        return config_path.parent
    return pathlib.Path.cwd()


async def load_config(  # type: ignore[no-untyped-def]
    config_path: pathlib.Path | None = None,
    raw_yaml: list[str] | None = None,
    kube_context: str | None = None,
    namespace: str | None = None,
    status_check: bool | None = None,
    status_check_deadline: float | None = None,
    **kwargs,  # pylint: disable=unused-argument
) -> config.PipelineConfig:
    """Read the configuration file and apply the command line overrides."""
    if config_path is not None:
        pipeline = await config.read_config(config_path)
    elif DEFAULT_CONFIG.exists():
        _LOGGER.debug("Using configuration file %s", DEFAULT_CONFIG)
        pipeline = await config.read_config(DEFAULT_CONFIG)
    else:
        pipeline = config.PipelineConfig()

    if raw_yaml:
        pipeline.manifests = config.ManifestsConfig(raw_yaml=raw_yaml)
    overrides = {
        "kube_context": kube_context,
        "namespace": namespace,
        "status_check": status_check,
        "status_check_deadline": status_check_deadline,
    }
    pipeline.deploy = dataclasses.replace(
        pipeline.deploy, **{k: v for k, v in overrides.items() if v is not None}
    )
    return pipeline


async def build_selectors(  # type: ignore[no-untyped-def]
    transform_rules_file: pathlib.Path | None = None,
    **kwargs,  # pylint: disable=unused-argument
) -> list[policy.ResourceSelectorConfig]:
    """Return the transform rules given on the command line."""
    if transform_rules_file is None:
        return []
    return [await policy.load_transform_rules(transform_rules_file)]


async def build_artifacts(  # type: ignore[no-untyped-def]
    build_artifacts: pathlib.Path | None = None,
    **kwargs,  # pylint: disable=unused-argument
) -> list[artifact.Artifact]:
    """Return the build artifacts given on the command line."""
    if build_artifacts is None:
        return []
    return await artifact.read_build_artifacts(build_artifacts)
