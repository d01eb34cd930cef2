"""Tests for the manifest hydration."""

import io
from typing import Any

import pytest

from kube_rollout.artifact import Artifact
from kube_rollout.context import TraceCollector
from kube_rollout.exceptions import GenerationError, InputException
from kube_rollout.generate import Generator
from kube_rollout.manifest import ManifestList
from kube_rollout.policy import (
    ResourceSelectorConfig,
    TransformRule,
    resolve_policy,
)
from kube_rollout.render import Renderer, hydrate_document

LABELS = {"app.kubernetes.io/managed-by": "kube-rollout"}


def deployment(name: str = "a", image: str = "app") -> dict[str, Any]:
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": name, "namespace": "shop"},
        "spec": {
            "replicas": 2,
            "template": {
                "metadata": {"labels": {"app": name}},
                "spec": {"containers": [{"name": "main", "image": image}]},
            },
        },
    }


def service(name: str = "b") -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": name, "namespace": "shop", "labels": {"app": name}},
        "spec": {"selector": {"app": name}, "image": "app"},
    }


class FakeGenerator(Generator):
    """Generator returning fixed documents or an error."""

    def __init__(
        self, docs: list[dict[str, Any]], error: Exception | None = None
    ) -> None:
        self.docs = docs
        self.error = error
        self.calls = 0

    async def generate(self) -> list[dict[str, Any]]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.docs


def test_hydrate_unmatched_document() -> None:
    """Test a document in neither table only receives the labels."""
    doc = service()
    hydrated = hydrate_document(doc, LABELS, resolve_policy(), {"app": "app:v1"})
    expected = service()
    expected["metadata"]["labels"].update(LABELS)
    assert hydrated == expected
    # The input document is not modified
    assert doc == service()


def test_hydrate_allowed_document() -> None:
    """Test images and pod template labels of an allowed document."""
    hydrated = hydrate_document(
        deployment(), LABELS, resolve_policy(), {"app": "registry.example.com/app:v1"}
    )
    assert hydrated is not None
    assert hydrated["metadata"]["labels"] == LABELS
    template = hydrated["spec"]["template"]
    assert template["metadata"]["labels"] == {"app": "a", **LABELS}
    assert template["spec"]["containers"][0]["image"] == "registry.example.com/app:v1"


def test_hydrate_unresolved_image() -> None:
    """Test an image without a built artifact passes through unchanged."""
    hydrated = hydrate_document(
        deployment(image="nginx:1.25"), LABELS, resolve_policy(), {"app": "app:v1"}
    )
    assert hydrated is not None
    assert hydrated["spec"]["template"]["spec"]["containers"][0]["image"] == (
        "nginx:1.25"
    )


def test_hydrate_labels_override() -> None:
    """Test pipeline labels win over labels already on the document."""
    doc = service()
    doc["metadata"]["labels"]["example.com/managed"] = "false"
    hydrated = hydrate_document(
        doc, {"example.com/managed": "true"}, resolve_policy(), {}
    )
    assert hydrated is not None
    assert hydrated["metadata"]["labels"] == {
        "app": "b",
        "example.com/managed": "true",
    }


def test_hydrate_denied_document() -> None:
    """Test a denied document has fields removed and no image substitution."""
    policy = resolve_policy(
        [
            ResourceSelectorConfig(
                deny=(
                    TransformRule(
                        group_kind="Deployment.apps", remove=("spec.replicas",)
                    ),
                )
            )
        ]
    )
    hydrated = hydrate_document(deployment(), LABELS, policy, {"app": "app:v1"})
    assert hydrated is not None
    assert "replicas" not in hydrated["spec"]
    assert hydrated["metadata"]["labels"] == LABELS
    template = hydrated["spec"]["template"]
    assert template["metadata"]["labels"] == {"app": "a"}
    assert template["spec"]["containers"][0]["image"] == "app"


def test_hydrate_excluded_document() -> None:
    """Test an excluded resource type is dropped."""
    policy = resolve_policy(
        [
            ResourceSelectorConfig(
                deny=(TransformRule(group_kind="Service", exclude=True),)
            )
        ]
    )
    assert hydrate_document(service(), LABELS, policy, {}) is None


def test_hydrate_custom_resource() -> None:
    """Test the transform of an allowed custom resource type."""
    policy = resolve_policy(
        [
            ResourceSelectorConfig(
                allow=(
                    TransformRule(
                        group_kind="Service",
                        image=("spec.image",),
                        labels=("spec.selector",),
                    ),
                )
            )
        ]
    )
    hydrated = hydrate_document(service(), LABELS, policy, {"app": "app:v2"})
    assert hydrated is not None
    assert hydrated["spec"] == {"selector": {"app": "b", **LABELS}, "image": "app:v2"}


def test_hydrate_document_without_type() -> None:
    """Test a document without kind or apiVersion is only labeled."""
    doc = {"metadata": {"name": "unknown"}, "image": "app"}
    hydrated = hydrate_document(doc, LABELS, resolve_policy(), {"app": "app:v1"})
    assert hydrated == {
        "metadata": {"name": "unknown", "labels": LABELS},
        "image": "app",
    }


async def test_render_excludes_denied(trace_collector: TraceCollector) -> None:
    """Test excluding a denied kind keeps the other documents in order."""
    policy = resolve_policy(
        [
            ResourceSelectorConfig(
                deny=(TransformRule(group_kind="Deployment.apps", exclude=True),)
            )
        ]
    )
    renderer = Renderer(FakeGenerator([deployment(), service()]), LABELS, policy)
    out = io.StringIO()
    manifests = await renderer.render(out, [])

    expected = service()
    expected["metadata"]["labels"].update(LABELS)
    assert manifests == ManifestList([expected])
    assert out.getvalue() == "Rendered 1 manifests (1 excluded)\n"
    assert [span.name for span in trace_collector.spans] == ["render_manifests"]


async def test_render_artifacts() -> None:
    """Test build artifacts are substituted into allowed documents."""
    renderer = Renderer(
        FakeGenerator([service(), deployment("a"), deployment("c", "worker:dev")]),
        LABELS,
        resolve_policy(),
    )
    manifests = await renderer.render(
        None,
        [
            Artifact(image_name="app", tag="app:v1"),
            Artifact(image_name="worker", tag="worker:v1"),
        ],
    )
    assert [doc["metadata"]["name"] for doc in manifests] == ["b", "a", "c"]
    images = [
        doc["spec"]["template"]["spec"]["containers"][0]["image"]
        for doc in list(manifests)[1:]
    ]
    assert images == ["app:v1", "worker:v1"]
    # Services are not in the allow list
    assert manifests[0]["spec"]["image"] == "app"


async def test_render_labels_are_read_only() -> None:
    """Test the renderer keeps its own copy of the labels."""
    labels = dict(LABELS)
    renderer = Renderer(FakeGenerator([]), labels, resolve_policy())
    labels["extra"] = "value"
    assert dict(renderer.labels) == LABELS
    with pytest.raises(TypeError):
        renderer.labels["extra"] = "value"  # type: ignore[index]


@pytest.mark.parametrize(
    ("error", "match"),
    [
        (GenerationError("kustomize failed"), "^kustomize failed$"),
        (InputException("bad template"), "Unable to generate manifests: bad template"),
        (OSError("disk"), "Unable to generate manifests: disk"),
    ],
    ids=["generation", "input", "os"],
)
async def test_render_generation_error(
    trace_collector: TraceCollector, error: Exception, match: str
) -> None:
    """Test a failed generation is raised as a generation error."""
    generator = FakeGenerator([], error)
    renderer = Renderer(generator, LABELS, resolve_policy())
    with pytest.raises(GenerationError, match=match):
        await renderer.render(None, [])
    assert generator.calls == 1
    assert len(trace_collector.spans) == 1
    assert isinstance(trace_collector.spans[0].error, GenerationError)
