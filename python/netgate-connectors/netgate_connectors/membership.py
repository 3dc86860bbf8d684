"""Maps source-control host accounts to gate roles.

The gate never infers roles from the host; which accounts hold
``security`` or ``dev`` is declared in a YAML file::

    roles:
      security: [alice, bob]
      dev: [carol, dave]
    default_roles: [dev]
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError

logger = logging.getLogger(__name__)


class MembershipError(Exception):
    """The membership file could not be loaded."""


class RoleMembership(BaseModel):
    model_config = ConfigDict(frozen=True)

    roles: dict[str, frozenset[str]] = {}
    default_roles: frozenset[str] = frozenset()

    def roles_for(self, account: str) -> frozenset[str]:
        held = {role for role, members in self.roles.items() if account in members}
        return frozenset(held) | self.default_roles


def load_membership(path: str | Path) -> RoleMembership:
    path = Path(path)
    try:
        raw: Any = yaml.safe_load(path.read_text()) or {}
        membership = RoleMembership.model_validate(raw)
    except (OSError, yaml.YAMLError, ValidationError) as exc:
        raise MembershipError(f"Cannot load role membership {path}: {exc}") from exc
    logger.info("Loaded role membership for %d roles from %s", len(membership.roles), path)
    return membership
