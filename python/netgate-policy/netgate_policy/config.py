"""Gate configuration — the static tier/role table loaded once per run.

The table is immutable after loading and is passed explicitly into every
component. Base-tier protections are enforced here: no configuration can
make a Base path auto-approvable or owned by anyone but ``security``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any, Literal

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
    model_validator,
)

from netgate_policy.models import ResourceKind, Tier

logger = logging.getLogger(__name__)

SECURITY_ROLE = "security"
DEV_ROLE = "dev"
TENANT_PLACEHOLDER = "{tenant}/"

DEFAULT_POLICY_KINDS = ("CiliumNetworkPolicy", "CiliumClusterwideNetworkPolicy")


class GateError(Exception):
    """Base class for decision engine errors."""


class ConfigError(GateError):
    """The gate configuration could not be loaded or is inconsistent."""


class Tenant(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    description: str = ""


class TierRule(BaseModel):
    """One ordered path-prefix rule.

    Tenant-scoped prefixes start with ``{tenant}/``; the first path segment
    is then taken as the tenant identifier.
    """

    model_config = ConfigDict(frozen=True)

    path_prefix: str
    tier: Tier
    owning_role: str = DEV_ROLE
    auto_approvable: bool = False
    resource_kind: ResourceKind = ResourceKind.POLICY

    @field_validator("path_prefix")
    @classmethod
    def _normalize_prefix(cls, value: str) -> str:
        value = value.strip().removeprefix("./").lstrip("/")
        if not value:
            raise ValueError("path_prefix must not be empty")
        return value if value.endswith("/") else value + "/"

    @model_validator(mode="before")
    @classmethod
    def _protect_base(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("tier") != Tier.BASE:
            return data
        if data.get("auto_approvable") or data.get("owning_role", SECURITY_ROLE) != SECURITY_ROLE:
            logger.warning(
                "Base tier rule %s overridden to security-owned, not auto-approvable",
                data.get("path_prefix"),
            )
        return {**data, "auto_approvable": False, "owning_role": SECURITY_ROLE}

    @property
    def tenant_scoped(self) -> bool:
        return self.path_prefix.startswith(TENANT_PLACEHOLDER)

    @property
    def relative_prefix(self) -> str:
        """Prefix with the tenant placeholder stripped."""
        if self.tenant_scoped:
            return self.path_prefix[len(TENANT_PLACEHOLDER):]
        return self.path_prefix


class GateConfig(BaseModel):
    """Process-wide tier/role table."""

    model_config = ConfigDict(frozen=True)

    tenants: tuple[Tenant, ...] = ()
    roles: frozenset[str] = frozenset({SECURITY_ROLE, DEV_ROLE})
    tier_rules: tuple[TierRule, ...] = ()
    approval_roles: Mapping[Tier, str] = Field(
        default_factory=lambda: MappingProxyType(
            {Tier.BASE: SECURITY_ROLE, Tier.EXTERNAL: SECURITY_ROLE}
        )
    )
    default_reviewer_role: str = SECURITY_ROLE
    blocking_warning_codes: frozenset[str] = frozenset()
    policy_kinds: tuple[str, ...] = DEFAULT_POLICY_KINDS
    approval_scope: Literal["head", "changeset"] = "head"
    ignore_self_approval: bool = True

    @field_validator("tenants", mode="before")
    @classmethod
    def _coerce_tenants(cls, value: Any) -> Any:
        # Accept a bare list of tenant ids.
        if isinstance(value, list | tuple):
            return [{"id": t} if isinstance(t, str) else t for t in value]
        return value

    @model_validator(mode="before")
    @classmethod
    def _protect_base_approval(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not isinstance(data.get("approval_roles"), Mapping):
            return data
        approval_roles = {Tier(k): v for k, v in data["approval_roles"].items()}
        if approval_roles.get(Tier.BASE, SECURITY_ROLE) != SECURITY_ROLE:
            logger.warning("Approval role for base tier forced to %s", SECURITY_ROLE)
        approval_roles[Tier.BASE] = SECURITY_ROLE
        return {**data, "approval_roles": approval_roles}

    @field_validator("approval_roles")
    @classmethod
    def _freeze_approval_roles(cls, value: Mapping[Tier, str]) -> Mapping[Tier, str]:
        return MappingProxyType(dict(value))

    @field_serializer("approval_roles")
    def _dump_approval_roles(self, value: Mapping[Tier, str]) -> dict[str, str]:
        return {str(k): v for k, v in value.items()}

    @model_validator(mode="after")
    def _check_consistency(self) -> GateConfig:
        referenced = {self.default_reviewer_role, *self.approval_roles.values()}
        referenced.update(rule.owning_role for rule in self.tier_rules)
        unknown = sorted(referenced - self.roles)
        if unknown:
            raise ValueError(f"Unrecognized roles referenced: {', '.join(unknown)}")

        ids = [t.id for t in self.tenants]
        if len(ids) != len(set(ids)):
            raise ValueError("Duplicate tenant ids")
        return self

    @property
    def tenant_ids(self) -> frozenset[str]:
        return frozenset(t.id for t in self.tenants)

    def approval_role_for(self, tier: Tier) -> str | None:
        return self.approval_roles.get(tier)


def load_config(path: str | Path) -> GateConfig:
    """Load and validate a YAML gate configuration file."""
    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text())
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot read gate config {path}: {exc}") from exc
    return parse_config(raw, source=str(path))


def parse_config(raw: Any, source: str = "<memory>") -> GateConfig:
    if not isinstance(raw, dict):
        raise ConfigError(f"Gate config {source} must be a mapping")
    try:
        config = GateConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid gate config {source}: {exc}") from exc
    logger.info(
        "Loaded gate config from %s: %d tenants, %d tier rules",
        source,
        len(config.tenants),
        len(config.tier_rules),
    )
    return config


def default_config(tenants: list[str] | None = None) -> GateConfig:
    """Built-in table matching the repository layout::

        <tenant>/policies/00-base/      base      security
        <tenant>/policies/10-internal/  internal  dev, auto-approvable
        <tenant>/policies/20-external/  external  needs security approval
        <tenant>/apps/                  app       dev, auto-approvable
    """
    return GateConfig(
        tenants=tuple(Tenant(id=t) for t in (tenants or ["tenant-a", "tenant-b"])),
        tier_rules=(
            TierRule(path_prefix="{tenant}/policies/00-base/", tier=Tier.BASE),
            TierRule(
                path_prefix="{tenant}/policies/10-internal/",
                tier=Tier.INTERNAL,
                auto_approvable=True,
            ),
            TierRule(path_prefix="{tenant}/policies/20-external/", tier=Tier.EXTERNAL),
            TierRule(
                path_prefix="{tenant}/apps/",
                tier=Tier.APP,
                auto_approvable=True,
                resource_kind=ResourceKind.APPLICATION,
            ),
            TierRule(path_prefix="clusters/", tier=Tier.BASE, resource_kind=ResourceKind.CONFIG),
            TierRule(path_prefix=".github/", tier=Tier.BASE, resource_kind=ResourceKind.CONFIG),
            TierRule(path_prefix="gate/", tier=Tier.BASE, resource_kind=ResourceKind.CONFIG),
        ),
    )
