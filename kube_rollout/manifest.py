"""Representation of the manifests flowing through the pipeline.

A `ManifestList` is an ordered list of parsed Kubernetes objects. The order is
significant since the cluster applies objects in the order given (e.g. a
Namespace must come before the objects inside it). Every transformation returns
a new `ManifestList` and leaves the original untouched.

```python
from kube_rollout.manifest import ManifestList

manifests = ManifestList.parse(content)
for resource in manifests.resources():
    print(f"Found object {resource}")
```
"""

import copy
from dataclasses import dataclass
from collections.abc import Generator, Iterable, Iterator, Mapping
from fnmatch import fnmatchcase
import logging
import re
from typing import Any

import yaml

from .exceptions import ConfigurationError, InputException

__all__ = [
    "ManifestList",
    "NamedResource",
    "ResourceTypeKey",
    "match_paths",
]

_LOGGER = logging.getLogger(__name__)


LABELS_PATH = ("metadata", "labels")

_KIND_RE = re.compile(r"^[A-Za-z][A-Za-z0-9]*$")
_GROUP_RE = re.compile(
    r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$"
)


@dataclass(frozen=True, order=True)
class ResourceTypeKey:
    """Identity of a kind of kubernetes resource, also known as a GroupKind."""

    group: str
    """The API group, empty for the core group."""

    kind: str
    """The kind of the object."""

    @classmethod
    def parse(cls, value: str) -> "ResourceTypeKey":
        """Parse a key from the `Kind.group` form e.g. `Deployment.apps`."""
        if not isinstance(value, str) or not value.strip():
            raise ConfigurationError(f"Invalid resource type '{value}': empty value")
        kind, _, group = value.strip().partition(".")
        if not _KIND_RE.match(kind):
            raise ConfigurationError(
                f"Invalid resource type '{value}': '{kind}' is not a valid kind"
            )
        if group and not _GROUP_RE.match(group):
            raise ConfigurationError(
                f"Invalid resource type '{value}': '{group}' is not a valid API group"
            )
        return cls(group=group, kind=kind)

    @classmethod
    def from_doc(cls, doc: Mapping[str, Any]) -> "ResourceTypeKey":
        """Extract the key from a kubernetes object."""
        if not (kind := doc.get("kind")):
            raise InputException(f"Invalid object missing kind: {doc}")
        if not (api_version := doc.get("apiVersion")):
            raise InputException(f"Invalid object missing apiVersion: {doc}")
        group, _, _ = str(api_version).rpartition("/")
        return cls(group=group, kind=str(kind))

    def __str__(self) -> str:
        if self.group:
            return f"{self.kind}.{self.group}"
        return self.kind


@dataclass(frozen=True, order=True)
class NamedResource:
    """Identifier for a kubernetes resource."""

    kind: str
    namespace: str | None
    name: str
    group: str = ""
    """The API group, empty for the core group."""

    @classmethod
    def from_doc(
        cls, doc: Mapping[str, Any], default_namespace: str | None = None
    ) -> "NamedResource":
        """Return the identity of a kubernetes object."""
        if not (kind := doc.get("kind")):
            raise InputException(f"Invalid object missing kind: {doc}")
        if not (metadata := doc.get("metadata")):
            raise InputException(f"Invalid object missing metadata: {doc}")
        if not (name := metadata.get("name")):
            raise InputException(f"Invalid object missing metadata.name: {doc}")
        group, _, _ = str(doc.get("apiVersion") or "").rpartition("/")
        return cls(
            kind=kind,
            namespace=metadata.get("namespace", default_namespace),
            name=name,
            group=group,
        )

    @property
    def type_key(self) -> ResourceTypeKey:
        """Return the resource type of the object."""
        return ResourceTypeKey(group=self.group, kind=self.kind)

    @property
    def namespaced_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    def __str__(self) -> str:
        """Return the kind and namespaced name concatenated as an id."""
        return f"{self.kind}/{self.namespaced_name}"


def _walk(
    node: Any, prefix: tuple[str, ...] = ()
) -> Generator[tuple[str, Any, Any, str | int], None, None]:
    """Yield (path, value, parent, key) for every field below node, pre-order."""
    items: Iterable[tuple[str | int, Any]]
    if isinstance(node, dict):
        items = node.items()
    elif isinstance(node, list):
        items = enumerate(node)
    else:
        return
    for key, value in list(items):
        path = prefix + (str(key),)
        yield ".".join(path), value, node, key
        yield from _walk(value, path)


def _normalize(pattern: str) -> str:
    return pattern.strip().lstrip(".").replace("[*]", ".*").replace("[]", ".*")


def match_paths(
    doc: dict[str, Any], patterns: Iterable[str]
) -> list[tuple[str, Any, Any, str | int]]:
    """Return the fields of a document whose dotted path matches a glob pattern.

    Paths are dotted field names with list indexes as numbers, for example
    `spec.template.spec.containers.0.image`. A `*` in a pattern matches any
    run of characters including dots, so `*.image` selects every field named
    `image` at any depth.
    """
    normalized = [_normalize(pattern) for pattern in patterns if pattern.strip()]
    if not normalized:
        return []
    return [
        entry
        for entry in _walk(doc)
        if any(fnmatchcase(entry[0], pattern) for pattern in normalized)
    ]


def _merge_labels(target: dict[str, Any], labels: Mapping[str, str]) -> None:
    for key, value in labels.items():
        target[key] = value


def set_labels(
    doc: dict[str, Any], labels: Mapping[str, str], patterns: Iterable[str] = ()
) -> None:
    """Merge labels into the object metadata and any mapping matching patterns.

    The supplied labels always win over labels already on the object.
    """
    if not labels:
        return
    metadata = doc.get(LABELS_PATH[0])
    if not isinstance(metadata, dict):
        metadata = {}
        doc[LABELS_PATH[0]] = metadata
    existing = metadata.get(LABELS_PATH[1])
    if not isinstance(existing, dict):
        existing = {}
        metadata[LABELS_PATH[1]] = existing
    _merge_labels(existing, labels)
    for path, value, _, _ in match_paths(doc, patterns):
        if isinstance(value, dict):
            _merge_labels(value, labels)
        else:
            _LOGGER.debug("Skipping labels on non-mapping field %s", path)


def remove_fields(doc: dict[str, Any], patterns: Iterable[str]) -> list[str]:
    """Delete every field matching the patterns, returning the removed paths."""
    removed = []
    # Deepest and last entries first so list indexes stay valid
    for path, _, parent, key in reversed(match_paths(doc, patterns)):
        if isinstance(parent, dict):
            parent.pop(key, None)
        elif isinstance(parent, list) and isinstance(key, int) and key < len(parent):
            del parent[key]
        removed.append(path)
    return removed


class ManifestList:
    """An ordered list of kubernetes objects."""

    def __init__(self, docs: Iterable[dict[str, Any]] = ()) -> None:
        """Initialize ManifestList with a copy of the documents."""
        self._docs = [copy.deepcopy(doc) for doc in docs]

    @classmethod
    def parse(cls, content: str) -> "ManifestList":
        """Parse a multi-document yaml stream."""
        try:
            docs = [doc for doc in yaml.safe_load_all(content) if doc is not None]
        except yaml.YAMLError as err:
            raise InputException(f"Unable to parse manifests: {err}") from err
        for doc in docs:
            if not isinstance(doc, dict):
                raise InputException(
                    f"Expected manifest to be a dictionary but was {type(doc).__name__}: {doc}"
                )
        return cls(docs)

    def __iter__(self) -> Iterator[dict[str, Any]]:
        return iter(self._docs)

    def __len__(self) -> int:
        return len(self._docs)

    def __getitem__(self, index: int) -> dict[str, Any]:
        return self._docs[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ManifestList):
            return NotImplemented
        return self._docs == other._docs

    def __repr__(self) -> str:
        return f"ManifestList({self._docs!r})"

    def resources(self, default_namespace: str | None = None) -> list[NamedResource]:
        """Return the identity of every object in the list."""
        return [NamedResource.from_doc(doc, default_namespace) for doc in self._docs]

    def yaml(self) -> str:
        """Serialize as a multi-document yaml stream."""
        if not self._docs:
            return ""
        return yaml.dump_all(self._docs, sort_keys=False, explicit_start=True)
