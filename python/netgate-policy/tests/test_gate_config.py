"""Tests for gate configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from netgate_policy.config import (
    ConfigError,
    GateConfig,
    TierRule,
    default_config,
    load_config,
    parse_config,
)
from netgate_policy.models import Tier
from pydantic import ValidationError

GATE_YAML = """\
tenants: [tenant-a, tenant-b]
roles: [security, dev, platform]
default_reviewer_role: security
blocking_warning_codes: [CrossTenantReference]
tier_rules:
  - path_prefix: "{tenant}/policies/00-base"
    tier: base
  - path_prefix: "{tenant}/policies/10-internal/"
    tier: internal
    auto_approvable: true
  - path_prefix: "./platform/"
    tier: internal
    owning_role: platform
approval_roles:
  external: security
"""


def test_load_config_from_yaml(tmp_path: Path) -> None:
    path = tmp_path / "gate.yaml"
    path.write_text(GATE_YAML)
    config = load_config(path)
    assert config.tenant_ids == {"tenant-a", "tenant-b"}
    assert "platform" in config.roles
    assert config.tier_rules[0].path_prefix == "{tenant}/policies/00-base/"
    assert config.tier_rules[2].path_prefix == "platform/"
    assert config.blocking_warning_codes == {"CrossTenantReference"}
    assert config.approval_role_for(Tier.EXTERNAL) == "security"
    assert config.approval_role_for(Tier.BASE) == "security"
    assert config.approval_role_for(Tier.APP) is None


def test_missing_file_raises_config_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Cannot read"):
        load_config(tmp_path / "nope.yaml")


def test_invalid_yaml_raises_config_error(tmp_path: Path) -> None:
    path = tmp_path / "gate.yaml"
    path.write_text("tier_rules: [unclosed")
    with pytest.raises(ConfigError):
        load_config(path)


def test_non_mapping_raises_config_error() -> None:
    with pytest.raises(ConfigError, match="must be a mapping"):
        parse_config(["not", "a", "mapping"])


def test_unknown_role_is_rejected() -> None:
    raw = {"tier_rules": [{"path_prefix": "x/", "tier": "app", "owning_role": "ghost"}]}
    with pytest.raises(ConfigError, match="ghost"):
        parse_config(raw)


def test_duplicate_tenants_are_rejected() -> None:
    with pytest.raises(ConfigError, match="Duplicate"):
        parse_config({"tenants": ["tenant-a", "tenant-a"]})


def test_unknown_tier_is_rejected() -> None:
    with pytest.raises(ConfigError):
        parse_config({"tier_rules": [{"path_prefix": "x/", "tier": "gold"}]})


def test_base_rule_cannot_be_made_auto_approvable() -> None:
    rule = TierRule(path_prefix="core/", tier=Tier.BASE, auto_approvable=True, owning_role="dev")
    assert rule.auto_approvable is False
    assert rule.owning_role == "security"


def test_base_approval_role_cannot_be_reassigned() -> None:
    config = parse_config({"approval_roles": {"base": "dev", "external": "dev"}})
    assert config.approval_role_for(Tier.BASE) == "security"
    assert config.approval_role_for(Tier.EXTERNAL) == "dev"


def test_approval_roles_cannot_be_mutated_after_load() -> None:
    for config in (GateConfig(), parse_config({"approval_roles": {"external": "security"}})):
        with pytest.raises(TypeError):
            config.approval_roles[Tier.APP] = "dev"  # type: ignore[index]
        assert config.approval_role_for(Tier.APP) is None


def test_approval_roles_dump_as_plain_mapping() -> None:
    dumped = default_config().model_dump(mode="json")
    assert dumped["approval_roles"] == {"base": "security", "external": "security"}


def test_empty_prefix_is_rejected() -> None:
    with pytest.raises(ConfigError):
        parse_config({"tier_rules": [{"path_prefix": "  ", "tier": "app"}]})


def test_dot_directory_prefix_is_preserved() -> None:
    assert TierRule(path_prefix=".github", tier=Tier.BASE).path_prefix == ".github/"


def test_config_is_frozen() -> None:
    config = GateConfig()
    with pytest.raises(ValidationError):
        config.default_reviewer_role = "dev"  # type: ignore[misc]
