"""Protection enforcer — decides whether an edit to a classified path is permissible.

Evaluated fresh on every run against the current classification; a
permission computed for an earlier revision of a changeset is never reused.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from netgate_policy.config import DEV_ROLE, SECURITY_ROLE
from netgate_policy.models import (
    Classification,
    ClassificationError,
    Deny,
    Permit,
    ReasonCode,
    Tier,
)

logger = logging.getLogger(__name__)

EDITOR_ROLES = frozenset({DEV_ROLE, SECURITY_ROLE})


def authorize(
    classification: Classification | ClassificationError,
    actor_roles: Iterable[str],
    override: bool = False,
) -> Permit | Deny:
    """Authorize an edit.

    Base tier is always denied in the normal flow. The only way through is
    an explicit ``override`` by an actor holding ``security``, and even then
    the change still needs a recorded security approval to merge.
    """
    if isinstance(classification, ClassificationError):
        return Deny(code=classification.code, message=classification.message)

    roles = frozenset(actor_roles)
    path = classification.path

    if classification.tier == Tier.BASE:
        if override and SECURITY_ROLE in roles:
            logger.info("Security override permits base-tier edit of %s", path)
            return Permit(requires_approval=SECURITY_ROLE)
        logger.info("Denied base-tier edit of %s", path)
        return Deny(
            code=ReasonCode.PROTECTED_TIER_MODIFICATION,
            message=f"'{path}' is in the protected base tier and cannot be modified",
        )

    editors = EDITOR_ROLES | {classification.owning_role}
    if not roles & editors:
        logger.info("Denied edit of %s: actor lacks any of %s", path, sorted(editors))
        return Deny(
            code=ReasonCode.INSUFFICIENT_ROLE,
            message=f"Editing '{path}' requires one of the roles: {', '.join(sorted(editors))}",
        )

    if classification.tier == Tier.EXTERNAL:
        return Permit(requires_approval=classification.requires_approval or SECURITY_ROLE)
    return Permit(requires_approval=classification.requires_approval)
