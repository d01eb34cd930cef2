"""Generation strategies that produce the raw manifests.

A generator reads the manifest templates from the working directory and returns
the parsed documents, in order. Any failure, including templates that don't
exist, is raised as a `GenerationError`.

This example reads plain yaml files and a kustomization:
```python
from pathlib import Path
from kube_rollout import generate

generator = generate.CompositeGenerator([
    generate.RawYamlGenerator(Path("."), ["k8s/*.yaml"]),
    generate.KustomizeGenerator(Path("."), ["overlays/dev"]),
])
for doc in await generator.generate():
    print(f"Found object {doc['apiVersion']} {doc['kind']}")
```
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
import logging
from pathlib import Path
from typing import Any

import aiofiles
from aiofiles.ospath import isdir
import yaml

from .command import Command, run, format_path
from .config import ManifestsConfig
from .exceptions import GenerationError, KustomizeException

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "Generator",
    "RawYamlGenerator",
    "KustomizeGenerator",
    "CompositeGenerator",
    "new_generator",
]

KUSTOMIZE_BIN = "kustomize"


def _parse_docs(content: str, source: str) -> list[dict[str, Any]]:
    """Parse a multi-document yaml stream, skipping empty documents."""
    try:
        docs = list(yaml.safe_load_all(content))
    except yaml.YAMLError as err:
        raise GenerationError(
            f"Unable to parse manifests from {source}: {err}"
        ) from err
    result = []
    for doc in docs:
        if doc is None:
            continue
        if not isinstance(doc, dict):
            raise GenerationError(
                f"Expected manifest in {source} to be a dictionary but was {type(doc).__name__}: {doc}"
            )
        result.append(doc)
    return result


class Generator(ABC):
    """A strategy for generating the raw manifests."""

    @abstractmethod
    async def generate(self) -> list[dict[str, Any]]:
        """Return the raw manifest documents in order."""


class RawYamlGenerator(Generator):
    """Reads plain yaml files matching glob patterns."""

    def __init__(self, working_dir: Path, paths: Sequence[str]) -> None:
        """Initialize RawYamlGenerator."""
        self._working_dir = working_dir
        self._paths = list(paths)

    def _expand(self, pattern: str) -> list[Path]:
        root = self._working_dir
        relative = pattern
        if (pattern_path := Path(pattern)).is_absolute():
            root = Path(pattern_path.anchor)
            relative = str(pattern_path.relative_to(root))
        if not relative.strip():
            raise GenerationError(f"Invalid manifest path pattern '{pattern}'")
        matches = sorted(path for path in root.glob(relative) if path.is_file())
        if not matches:
            raise GenerationError(
                f"No manifests found matching '{pattern}' in {format_path(self._working_dir)}"
            )
        return matches

    async def generate(self) -> list[dict[str, Any]]:
        """Read and parse every matching file, in pattern then path order."""
        docs: list[dict[str, Any]] = []
        seen: set[Path] = set()
        for pattern in self._paths:
            for path in self._expand(pattern):
                if path in seen:
                    continue
                seen.add(path)
                _LOGGER.debug("Reading manifests from %s", format_path(path))
                try:
                    async with aiofiles.open(str(path)) as manifest_file:
                        content = await manifest_file.read()
                except OSError as err:
                    raise GenerationError(
                        f"Unable to read manifests {format_path(path)}: {err}"
                    ) from err
                docs.extend(_parse_docs(content, format_path(path)))
        return docs


class KustomizeGenerator(Generator):
    """Builds kustomization directories with `kustomize build`."""

    def __init__(self, working_dir: Path, paths: Sequence[str]) -> None:
        """Initialize KustomizeGenerator."""
        self._working_dir = working_dir
        self._paths = list(paths)

    async def generate(self) -> list[dict[str, Any]]:
        """Run the kustomize command for each path and return the documents."""
        docs: list[dict[str, Any]] = []
        for path in self._paths:
            full_path = self._working_dir / path
            if not await isdir(full_path):
                raise GenerationError(
                    f"Kustomization path '{path}' is not a directory: {format_path(full_path)}"
                )
            cmd = Command(
                [KUSTOMIZE_BIN, "build", str(full_path)], exc=KustomizeException
            )
            try:
                out = await run(cmd)
            except KustomizeException as err:
                raise GenerationError(str(err)) from err
            docs.extend(_parse_docs(out, str(cmd)))
        return docs


class CompositeGenerator(Generator):
    """Concatenates the output of several generators."""

    def __init__(self, generators: Sequence[Generator]) -> None:
        """Initialize CompositeGenerator."""
        self._generators = list(generators)

    async def generate(self) -> list[dict[str, Any]]:
        """Run each generator in order."""
        docs: list[dict[str, Any]] = []
        for generator in self._generators:
            docs.extend(await generator.generate())
        return docs


def new_generator(working_dir: Path, config: ManifestsConfig) -> Generator:
    """Create the generator described by the manifests configuration."""
    generators: list[Generator] = []
    if config.raw_yaml:
        generators.append(RawYamlGenerator(working_dir, config.raw_yaml))
    if config.kustomize and config.kustomize.paths:
        generators.append(KustomizeGenerator(working_dir, config.kustomize.paths))
    if len(generators) == 1:
        return generators[0]
    return CompositeGenerator(generators)
