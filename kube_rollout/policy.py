"""Transform policy resolution.

The transform policy decides, per kind of resource, which edits the hydrator
performs on a document. It is made of two tables keyed by `ResourceTypeKey`:

- `allow`: resource types whose images are substituted with build artifacts
  and whose extra label fields (e.g. pod templates) receive pipeline labels.
- `deny`: resource types excluded from that processing, optionally having
  fields stripped or the whole resource dropped.

The tables are assembled from the built-in defaults and then any number of
override sources, in order. A later entry for the same resource type replaces
an earlier one in the same table. A resource type present in both tables after
merging is denied.

```python
from kube_rollout import policy

transform_policy = policy.resolve_policy(
    [policy.ResourceSelectorConfig(deny=[policy.TransformRule("Secret", exclude=True)])]
)
```
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any

import aiofiles
from mashumaro import DataClassDictMixin, field_options
from mashumaro.codecs.yaml import yaml_decode
from mashumaro.config import BaseConfig
from mashumaro.exceptions import ExtraKeysError, InvalidFieldValue, MissingField
import yaml

from .exceptions import ConfigurationError
from .image import IMAGE_PATTERNS, KINDS
from .manifest import ResourceTypeKey

__all__ = [
    "ResourceSelectorConfig",
    "ResourceTypeKey",
    "TransformPolicy",
    "TransformRule",
    "load_transform_rules",
    "resolve_policy",
]

_LOGGER = logging.getLogger(__name__)


# Labels on pod templates let the rolled out pods be traced back to the run
POD_TEMPLATE_LABELS = {
    "Deployment": ["spec.template.metadata.labels"],
    "StatefulSet": ["spec.template.metadata.labels"],
    "ReplicaSet": ["spec.template.metadata.labels"],
    "DaemonSet": ["spec.template.metadata.labels"],
    "Job": ["spec.template.metadata.labels"],
    "ReplicationController": ["spec.template.metadata.labels"],
    "CronJob": ["spec.jobTemplate.spec.template.metadata.labels"],
}


def _patterns(value: Any) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)) or not all(
        isinstance(item, str) for item in value
    ):
        raise ValueError(f"Expected a list of field path patterns but was {value!r}")
    return tuple(value)


def _flag(value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"Expected true or false but was {value!r}")
    return value


@dataclass(frozen=True)
class TransformRule(DataClassDictMixin):
    """How to transform resources of a single type."""

    group_kind: str = field(metadata=field_options(alias="groupKind"))
    """The resource type in `Kind.group` form, e.g. `Deployment.apps`."""

    image: tuple[str, ...] = field(
        default=(), metadata=field_options(deserialize=_patterns)
    )
    """Field path patterns holding image references to substitute."""

    labels: tuple[str, ...] = field(
        default=(), metadata=field_options(deserialize=_patterns)
    )
    """Field path patterns of additional mappings that receive the labels."""

    remove: tuple[str, ...] = field(
        default=(), metadata=field_options(deserialize=_patterns)
    )
    """Field path patterns deleted from denied resources."""

    exclude: bool = field(default=False, metadata=field_options(deserialize=_flag))
    """Drop denied resources from the output entirely."""

    @property
    def key(self) -> ResourceTypeKey:
        """Return the resource type this rule applies to."""
        return ResourceTypeKey.parse(self.group_kind)

    class Config(BaseConfig):
        forbid_extra_keys = True


@dataclass(frozen=True)
class ResourceSelectorConfig(DataClassDictMixin):
    """A single source of allow and deny rules."""

    allow: tuple[TransformRule, ...] = ()
    deny: tuple[TransformRule, ...] = ()

    class Config(BaseConfig):
        forbid_extra_keys = True


DEFAULT_ALLOWLIST: tuple[TransformRule, ...] = tuple(
    TransformRule(
        group_kind=f"{kind}.{group}" if group else kind,
        image=tuple(IMAGE_PATTERNS),
        labels=tuple(POD_TEMPLATE_LABELS.get(kind, [])),
    )
    for group, kind in KINDS
)

DEFAULT_DENYLIST: tuple[TransformRule, ...] = ()


@dataclass(frozen=True)
class TransformPolicy:
    """Resolved allow and deny tables, read only once built."""

    allow: Mapping[ResourceTypeKey, TransformRule] = field(
        default_factory=lambda: MappingProxyType({})
    )
    deny: Mapping[ResourceTypeKey, TransformRule] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def lookup(
        self, key: ResourceTypeKey
    ) -> tuple[TransformRule | None, TransformRule | None]:
        """Return the (allow, deny) rules for a resource type."""
        return self.allow.get(key), self.deny.get(key)


def _add_rules(
    table: dict[ResourceTypeKey, TransformRule], rules: Iterable[TransformRule]
) -> None:
    for rule in rules:
        table[rule.key] = rule


def resolve_policy(
    overrides: Iterable[ResourceSelectorConfig] = (),
    *,
    default_allow: Iterable[TransformRule] = DEFAULT_ALLOWLIST,
    default_deny: Iterable[TransformRule] = DEFAULT_DENYLIST,
) -> TransformPolicy:
    """Build the transform policy from the defaults and override sources.

    Raises `ConfigurationError` for a rule with an invalid resource type, in
    which case no policy is produced.
    """
    allow: dict[ResourceTypeKey, TransformRule] = {}
    deny: dict[ResourceTypeKey, TransformRule] = {}
    _add_rules(allow, default_allow)
    _add_rules(deny, default_deny)
    for selector in overrides:
        _add_rules(allow, selector.allow)
        _add_rules(deny, selector.deny)

    for key in allow.keys() & deny.keys():
        _LOGGER.debug("Resource type %s is both allowed and denied, denying", key)
        del allow[key]

    _LOGGER.debug(
        "Resolved transform policy with %d allowed and %d denied types",
        len(allow),
        len(deny),
    )
    return TransformPolicy(
        allow=MappingProxyType(allow),
        deny=MappingProxyType(deny),
    )


def parse_transform_rules(content: str) -> ResourceSelectorConfig:
    """Parse a transform rules document."""
    try:
        return yaml_decode(content or "{}", ResourceSelectorConfig)
    except (
        yaml.YAMLError,
        ExtraKeysError,
        MissingField,
        InvalidFieldValue,
        ValueError,
        TypeError,
        AttributeError,
    ) as err:
        raise ConfigurationError(f"Invalid transform rules: {err}") from err


async def load_transform_rules(path: Path) -> ResourceSelectorConfig:
    """Read a transform rules file with `allow` and `deny` lists."""
    try:
        async with aiofiles.open(str(path)) as rules_file:
            content = await rules_file.read()
    except OSError as err:
        raise ConfigurationError(
            f"Unable to read transform rules file {path}: {err}"
        ) from err
    return parse_transform_rules(content)
