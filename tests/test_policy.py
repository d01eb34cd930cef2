"""Tests for transform policy resolution."""

from pathlib import Path
from types import MappingProxyType

import pytest

from kube_rollout.exceptions import ConfigurationError
from kube_rollout.policy import (
    DEFAULT_ALLOWLIST,
    ResourceSelectorConfig,
    ResourceTypeKey,
    TransformRule,
    load_transform_rules,
    parse_transform_rules,
    resolve_policy,
)

DEPLOYMENT = ResourceTypeKey(group="apps", kind="Deployment")
SECRET = ResourceTypeKey(group="", kind="Secret")


def test_default_policy() -> None:
    """Test the built-in tables allow the workload kinds."""
    policy = resolve_policy()
    assert len(policy.allow) == len(DEFAULT_ALLOWLIST)
    assert not policy.deny

    allow_rule, deny_rule = policy.lookup(DEPLOYMENT)
    assert deny_rule is None
    assert allow_rule is not None
    assert allow_rule.image == ("*.image", "*.image.reference")
    assert allow_rule.labels == ("spec.template.metadata.labels",)

    cron_job, _ = policy.lookup(ResourceTypeKey(group="batch", kind="CronJob"))
    assert cron_job is not None
    assert cron_job.labels == ("spec.jobTemplate.spec.template.metadata.labels",)

    assert policy.lookup(SECRET) == (None, None)


def test_deny_wins() -> None:
    """Test a resource type in both tables is denied."""
    deny = TransformRule(group_kind="Deployment.apps", remove=("spec.replicas",))
    policy = resolve_policy([ResourceSelectorConfig(deny=(deny,))])

    assert DEPLOYMENT not in policy.allow
    assert policy.lookup(DEPLOYMENT) == (None, deny)


def test_deny_wins_regardless_of_order() -> None:
    """Test a later allow entry does not override an earlier deny entry."""
    deny = TransformRule(group_kind="Secret", exclude=True)
    allow = TransformRule(group_kind="Secret", image=("data.image",))
    policy = resolve_policy(
        [
            ResourceSelectorConfig(deny=(deny,)),
            ResourceSelectorConfig(allow=(allow,)),
        ]
    )
    assert policy.lookup(SECRET) == (None, deny)


def test_later_override_wins() -> None:
    """Test a later source replaces the rule for the same key and table."""
    first = TransformRule(group_kind="Deployment.apps", image=("spec.first",))
    second = TransformRule(group_kind="Deployment.apps", image=("spec.second",))
    policy = resolve_policy(
        [
            ResourceSelectorConfig(allow=(first,)),
            ResourceSelectorConfig(allow=(second,)),
        ]
    )
    assert policy.lookup(DEPLOYMENT) == (second, None)


def test_custom_defaults() -> None:
    """Test resolving with empty defaults only contains the overrides."""
    rule = TransformRule(group_kind="Rollout.argoproj.io", image=("*.image",))
    policy = resolve_policy(
        [ResourceSelectorConfig(allow=(rule,))], default_allow=(), default_deny=()
    )
    assert dict(policy.allow) == {
        ResourceTypeKey(group="argoproj.io", kind="Rollout"): rule
    }
    assert not policy.deny


def test_policy_is_read_only() -> None:
    """Test the resolved tables cannot be modified."""
    policy = resolve_policy()
    assert isinstance(policy.allow, MappingProxyType)
    with pytest.raises(TypeError):
        policy.allow[SECRET] = TransformRule(group_kind="Secret")  # type: ignore[index]


def test_invalid_rule() -> None:
    """Test an invalid resource type fails the whole resolution."""
    with pytest.raises(ConfigurationError, match="Invalid resource type"):
        resolve_policy(
            [ResourceSelectorConfig(allow=(TransformRule(group_kind="not a kind"),))]
        )


def test_parse_transform_rules() -> None:
    """Test parsing a transform rules document."""
    selector = parse_transform_rules(
        """
allow:
- groupKind: Rollout.argoproj.io
  image:
  - spec.template.spec.containers.*.image
  labels:
  - spec.template.metadata.labels
deny:
- groupKind: Secret
  exclude: true
- groupKind: ConfigMap
  remove:
  - data.password
"""
    )
    assert selector == ResourceSelectorConfig(
        allow=(
            TransformRule(
                group_kind="Rollout.argoproj.io",
                image=("spec.template.spec.containers.*.image",),
                labels=("spec.template.metadata.labels",),
            ),
        ),
        deny=(
            TransformRule(group_kind="Secret", exclude=True),
            TransformRule(group_kind="ConfigMap", remove=("data.password",)),
        ),
    )


@pytest.mark.parametrize(
    "content",
    [
        "allow: [",
        "allow:\n- image: [a]\n",
        "allow:\n- groupKind: Secret\n  unknown: true\n",
        "unknown: []\n",
        "- a\n",
        "allow:\n- groupKind: Foo.example.com\n  image: spec.image\n",
        "allow:\n- groupKind: Foo.example.com\n  labels: [1, 2]\n",
        "deny:\n- groupKind: ConfigMap\n  remove: data.password\n",
        "deny:\n- groupKind: Secret\n  exclude: 'false'\n",
        "deny:\n- groupKind: Secret\n  exclude: 1\n",
    ],
    ids=[
        "yaml-error",
        "missing-group-kind",
        "unknown-rule-key",
        "unknown-key",
        "list",
        "image-scalar",
        "labels-not-strings",
        "remove-scalar",
        "exclude-string",
        "exclude-number",
    ],
)
def test_parse_transform_rules_invalid(content: str) -> None:
    """Test invalid transform rules documents."""
    with pytest.raises(ConfigurationError, match="Invalid transform rules"):
        parse_transform_rules(content)


def test_parse_empty_transform_rules() -> None:
    """Test an empty document has no rules."""
    assert parse_transform_rules("") == ResourceSelectorConfig()


async def test_load_transform_rules(tmp_path: Path) -> None:
    """Test loading transform rules from a file."""
    rules_file = tmp_path / "rules.yaml"
    rules_file.write_text("deny:\n- groupKind: Secret\n  exclude: true\n")
    assert await load_transform_rules(rules_file) == ResourceSelectorConfig(
        deny=(TransformRule(group_kind="Secret", exclude=True),)
    )

    with pytest.raises(ConfigurationError, match="Unable to read transform rules"):
        await load_transform_rules(tmp_path / "missing.yaml")
