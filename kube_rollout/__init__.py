"""
kube-rollout renders Kubernetes manifests, applies them to a cluster, and
waits for the rollout to finish.

The pipeline runs in stages: a generator produces the raw manifests, the
renderer substitutes built images and adds labels according to the transform
policy, the deployer applies the result, and the status monitor waits for the
deployed workloads to become ready.
"""

__all__ = [
    "artifact",
    "config",
    "exceptions",
    "generate",
    "manifest",
    "policy",
    "render",
    "runner",
    "status",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
