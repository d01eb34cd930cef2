"""Pipeline configuration file.

The configuration file describes where the manifests come from, how they are
transformed, and where they are deployed:

```yaml
manifests:
  rawYaml:
  - k8s/*.yaml
  kustomize:
    paths:
    - overlays/dev
resourceSelector:
  allow:
  - groupKind: Rollout.argoproj.io
    image: [spec.template.spec.containers.*.image]
  deny:
  - groupKind: Secret
    exclude: true
deploy:
  kubeContext: kind-dev
  statusCheckDeadlineSeconds: 300
```
"""

from dataclasses import dataclass, field
import logging
from pathlib import Path

import aiofiles
from mashumaro import DataClassDictMixin, field_options
from mashumaro.codecs.yaml import yaml_decode
from mashumaro.config import BaseConfig
from mashumaro.exceptions import ExtraKeysError, InvalidFieldValue, MissingField
import yaml

from .exceptions import ConfigurationError
from .policy import ResourceSelectorConfig
from .status import DEFAULT_DEADLINE, DEFAULT_POLL_INTERVAL

__all__ = [
    "PipelineConfig",
    "ManifestsConfig",
    "KustomizeConfig",
    "DeployConfig",
    "read_config",
]

_LOGGER = logging.getLogger(__name__)


class _Config(BaseConfig):
    forbid_extra_keys = True


@dataclass
class KustomizeConfig(DataClassDictMixin):
    """Kustomization directories to build."""

    paths: list[str] = field(default_factory=list)

    Config = _Config


@dataclass
class ManifestsConfig(DataClassDictMixin):
    """Sources of the raw manifests."""

    raw_yaml: list[str] = field(
        metadata=field_options(alias="rawYaml"), default_factory=list
    )
    """Glob patterns of plain yaml files, relative to the working directory."""

    kustomize: KustomizeConfig | None = None
    """Kustomization directories, relative to the working directory."""

    Config = _Config


@dataclass
class DeployConfig(DataClassDictMixin):
    """Settings for applying manifests to the cluster."""

    kube_context: str | None = field(
        metadata=field_options(alias="kubeContext"), default=None
    )
    """The kubeconfig context to deploy to, or the current context."""

    namespace: str | None = None
    """The namespace for objects that don't specify one."""

    status_check: bool = field(
        metadata=field_options(alias="statusCheck"), default=True
    )
    """Wait for the deployed resources to become ready."""

    status_check_deadline: float = field(
        metadata=field_options(alias="statusCheckDeadlineSeconds"),
        default=DEFAULT_DEADLINE,
    )
    """Seconds to wait for the deployed resources to become ready."""

    poll_interval: float = field(
        metadata=field_options(alias="pollIntervalSeconds"),
        default=DEFAULT_POLL_INTERVAL,
    )
    """Seconds between two status polls."""

    Config = _Config


@dataclass
class PipelineConfig(DataClassDictMixin):
    """Top level pipeline configuration."""

    manifests: ManifestsConfig = field(default_factory=ManifestsConfig)
    resource_selector: ResourceSelectorConfig = field(
        metadata=field_options(alias="resourceSelector"),
        default_factory=ResourceSelectorConfig,
    )
    deploy: DeployConfig = field(default_factory=DeployConfig)

    Config = _Config


def parse_config(content: str) -> PipelineConfig:
    """Parse the contents of a pipeline configuration file."""
    try:
        return yaml_decode(content or "{}", PipelineConfig)
    except (
        yaml.YAMLError,
        ExtraKeysError,
        MissingField,
        InvalidFieldValue,
        ValueError,
        TypeError,
        AttributeError,
    ) as err:
        raise ConfigurationError(f"Invalid pipeline configuration: {err}") from err


async def read_config(config_path: Path) -> PipelineConfig:
    """Return the contents of a pipeline configuration file."""
    try:
        async with aiofiles.open(str(config_path)) as config_file:
            content = await config_file.read()
    except OSError as err:
        raise ConfigurationError(
            f"Unable to read configuration file {config_path}: {err}"
        ) from err
    config = parse_config(content)
    _LOGGER.debug("Loaded configuration from %s", config_path)
    return config
