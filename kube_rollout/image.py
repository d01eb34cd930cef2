"""Helper functions for working with container images."""

from collections.abc import Iterable, Mapping
import logging
from typing import Any

from .manifest import match_paths

_LOGGER = logging.getLogger(__name__)


# Object types that may have container images.
KINDS = [
    ("", "Pod"),
    ("apps", "Deployment"),
    ("apps", "StatefulSet"),
    ("apps", "ReplicaSet"),
    ("apps", "DaemonSet"),
    ("batch", "CronJob"),
    ("batch", "Job"),
    ("", "ReplicationController"),
]

# Default image fields for most object types. The `reference` form is used by
# image volumes, see https://kubernetes.io/blog/2024/08/16/kubernetes-1-31-image-volume-source/
IMAGE_PATTERNS = ["*.image", "*.image.reference"]


def image_name(reference: str) -> str:
    """Return the repository part of an image reference without tag or digest."""
    name = reference.split("@", 1)[0]
    slash = name.rfind("/")
    colon = name.rfind(":")
    if colon > slash:
        name = name[:colon]
    return name


def replace_images(
    doc: dict[str, Any], patterns: Iterable[str], tags: Mapping[str, str]
) -> list[tuple[str, str]]:
    """Replace image references in the fields matching patterns.

    References to images without a matching artifact are left untouched. Returns
    the list of (old, new) references that were replaced.
    """
    replaced: list[tuple[str, str]] = []
    if not tags:
        return replaced
    for path, value, parent, key in match_paths(doc, patterns):
        if not isinstance(value, str):
            continue
        if (tag := tags.get(image_name(value))) is None:
            _LOGGER.debug("No artifact for image %s at %s", value, path)
            continue
        parent[key] = tag
        replaced.append((value, tag))
    return replaced
