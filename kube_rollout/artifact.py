"""Build artifacts produced upstream of the pipeline.

An artifact binds the logical image name used in the manifest templates to the
fully qualified tag that was built, for example `my-app` to
`registry.example.com/my-app:v1@sha256:...`. The list of artifacts is usually
read from the output of the build step:

```yaml
builds:
- imageName: my-app
  tag: registry.example.com/my-app:v1
```
"""

from dataclasses import dataclass, field
import logging
from pathlib import Path

import aiofiles
from mashumaro import DataClassDictMixin, field_options
from mashumaro.codecs.yaml import yaml_decode
from mashumaro.exceptions import MissingField, InvalidFieldValue
import yaml

from .exceptions import ConfigurationError

__all__ = [
    "Artifact",
    "read_build_artifacts",
]

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Artifact(DataClassDictMixin):
    """A built image that may be referenced by the manifests."""

    image_name: str = field(metadata=field_options(alias="imageName"))
    """The logical image name referenced in the manifests."""

    tag: str
    """The fully qualified image reference to deploy."""


@dataclass
class BuildOutput(DataClassDictMixin):
    """Contents of a build output file."""

    builds: list[Artifact] = field(default_factory=list)


def tags_by_name(artifacts: list[Artifact]) -> dict[str, str]:
    """Return a lookup table from image name to tag.

    When an image name appears more than once the last artifact wins.
    """
    return {artifact.image_name: artifact.tag for artifact in artifacts}


def parse_build_artifacts(content: str) -> list[Artifact]:
    """Parse the contents of a build output file (JSON or YAML)."""
    try:
        output = yaml_decode(content or "{}", BuildOutput)
    except (
        yaml.YAMLError,
        MissingField,
        InvalidFieldValue,
        ValueError,
        TypeError,
        AttributeError,
    ) as err:
        raise ConfigurationError(f"Invalid build artifacts: {err}") from err
    return output.builds


async def read_build_artifacts(path: Path) -> list[Artifact]:
    """Read the artifacts from a build output file."""
    try:
        async with aiofiles.open(str(path)) as build_file:
            content = await build_file.read()
    except OSError as err:
        raise ConfigurationError(
            f"Unable to read build artifacts file {path}: {err}"
        ) from err
    artifacts = parse_build_artifacts(content)
    _LOGGER.debug("Read %d build artifacts from %s", len(artifacts), path)
    return artifacts
