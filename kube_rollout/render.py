"""Hydration of the raw manifests into the manifests to deploy.

The renderer runs the generation strategy and then, document by document:
substitutes the built images, applies the pipeline labels, and applies the
transform policy. The relative order of the documents is preserved.

```python
from kube_rollout.render import Renderer

renderer = Renderer(generator, {"app.kubernetes.io/managed-by": "kube-rollout"}, policy)
manifests = await renderer.render(sys.stdout, artifacts)
print(manifests.yaml())
```
"""

from collections.abc import Mapping, Sequence
import copy
import logging
from types import MappingProxyType
from typing import Any, TextIO

from .artifact import Artifact, tags_by_name
from .context import trace_context
from .exceptions import GenerationError, InputException, RolloutException
from .generate import Generator
from .image import replace_images
from .logfile import write_progress
from .manifest import ManifestList, ResourceTypeKey, remove_fields, set_labels
from .policy import TransformPolicy

__all__ = [
    "Renderer",
    "hydrate_document",
]

_LOGGER = logging.getLogger(__name__)


def hydrate_document(
    doc: dict[str, Any],
    labels: Mapping[str, str],
    policy: TransformPolicy,
    tags: Mapping[str, str],
) -> dict[str, Any] | None:
    """Return a hydrated copy of the document, or None if it is excluded."""
    doc = copy.deepcopy(doc)
    try:
        key = ResourceTypeKey.from_doc(doc)
    except InputException as err:
        _LOGGER.warning("Unable to determine resource type, not transforming: %s", err)
        set_labels(doc, labels)
        return doc

    allow_rule, deny_rule = policy.lookup(key)
    if deny_rule is not None:
        if deny_rule.exclude:
            _LOGGER.debug("Excluding denied resource type %s", key)
            return None
        if removed := remove_fields(doc, deny_rule.remove):
            _LOGGER.debug("Removed fields %s from %s", removed, key)
        set_labels(doc, labels)
        return doc
    if allow_rule is not None:
        for old, new in replace_images(doc, allow_rule.image, tags):
            _LOGGER.debug("Replaced image %s with %s in %s", old, new, key)
        set_labels(doc, labels, allow_rule.labels)
        return doc
    set_labels(doc, labels)
    return doc


class Renderer:
    """Produces the final manifests from a generation strategy."""

    def __init__(
        self,
        generator: Generator,
        labels: Mapping[str, str],
        policy: TransformPolicy,
    ) -> None:
        """Initialize Renderer."""
        self._generator = generator
        self._labels = MappingProxyType(dict(labels))
        self._policy = policy

    @property
    def labels(self) -> Mapping[str, str]:
        return self._labels

    async def _generate(self) -> list[dict[str, Any]]:
        try:
            return await self._generator.generate()
        except GenerationError:
            raise
        except (RolloutException, OSError, ValueError) as err:
            raise GenerationError(f"Unable to generate manifests: {err}") from err

    async def render(
        self, out: TextIO | None, artifacts: Sequence[Artifact]
    ) -> ManifestList:
        """Generate and hydrate the manifests."""
        with trace_context("render_manifests") as span:
            span.set_attribute("generator", self._generator.__class__.__name__)
            _LOGGER.info("Rendering manifests")
            raw_docs = await self._generate()

            tags = tags_by_name(list(artifacts))
            docs = []
            for doc in raw_docs:
                hydrated = hydrate_document(doc, self._labels, self._policy, tags)
                if hydrated is not None:
                    docs.append(hydrated)
            manifests = ManifestList(docs)
            excluded = len(raw_docs) - len(manifests)
            write_progress(
                out, f"Rendered {len(manifests)} manifests ({excluded} excluded)"
            )
            return manifests
