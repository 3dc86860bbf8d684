"""Maps a changed path to its (tenant, tier, resource kind).

Rules are matched by descending prefix specificity: the rule whose
effective prefix (tenant segment included for tenant-scoped rules) is
longest wins. Equal-length matches are resolved by declaration order,
first rule wins. A path no rule matches is an error, never ignorable.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from netgate_policy.models import Classification, ClassificationError, ReasonCode, Tier

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from netgate_policy.config import TierRule

logger = logging.getLogger(__name__)


def normalize_path(path: str) -> str:
    """Strip leading ``./`` and ``/`` so paths compare against repo-relative prefixes."""
    return path.strip().removeprefix("./").lstrip("/")


def _match(path: str, rule: TierRule) -> tuple[int, str | None] | None:
    """Return (specificity, tenant segment) if ``rule`` matches ``path``."""
    if not rule.tenant_scoped:
        if path.startswith(rule.path_prefix):
            return len(rule.path_prefix), None
        return None

    head, sep, rest = path.partition("/")
    if not sep or not head or not rest.startswith(rule.relative_prefix):
        return None
    return len(head) + 1 + len(rule.relative_prefix), head


def classify(
    path: str,
    tenants: Iterable[str],
    tier_rules: Sequence[TierRule],
    approval_roles: Mapping[Tier, str] | None = None,
) -> Classification | ClassificationError:
    """Classify a single path against the ordered tier rules.

    Pure function of its inputs. ``approval_roles`` maps a tier to the
    role whose approval a classification in that tier requires.
    """
    normalized = normalize_path(path)
    if not normalized or ".." in normalized.split("/"):
        return ClassificationError(
            path=path,
            code=ReasonCode.UNCLASSIFIED_PATH,
            message=f"Path '{path}' is not a repository-relative file path",
        )

    best: tuple[int, int, TierRule, str | None] | None = None
    for index, rule in enumerate(tier_rules):
        matched = _match(normalized, rule)
        if matched is None:
            continue
        specificity, tenant = matched
        # Strictly greater keeps the earliest rule on ties.
        if best is None or specificity > best[0]:
            best = (specificity, index, rule, tenant)

    if best is None:
        logger.info("Unclassified path %s", path)
        return ClassificationError(
            path=path,
            code=ReasonCode.UNCLASSIFIED_PATH,
            message=f"Path '{path}' matches no tier rule",
        )

    _, _, rule, tenant = best
    if rule.tenant_scoped and tenant not in set(tenants):
        logger.info("Unknown tenant %r in path %s", tenant, path)
        return ClassificationError(
            path=path,
            code=ReasonCode.UNKNOWN_TENANT,
            message=f"Path '{path}' names unknown tenant '{tenant}'",
        )

    return Classification(
        path=normalized,
        tenant=tenant,
        tier=rule.tier,
        resource_kind=rule.resource_kind,
        rule_prefix=rule.path_prefix,
        owning_role=rule.owning_role,
        auto_approvable=rule.auto_approvable,
        requires_approval=(approval_roles or {}).get(rule.tier),
    )


def classify_all(
    paths: Iterable[str],
    tenants: Iterable[str],
    tier_rules: Sequence[TierRule],
    approval_roles: Mapping[Tier, str] | None = None,
) -> dict[str, Classification | ClassificationError]:
    """Classify every path; the result has exactly one entry per distinct path."""
    tenant_set = frozenset(tenants)
    return {
        path: classify(path, tenant_set, tier_rules, approval_roles)
        for path in paths
    }


def most_restrictive(
    first: Classification | ClassificationError,
    second: Classification | ClassificationError,
) -> Classification | ClassificationError:
    """Pick the more restrictive of two classifications (used for renames)."""
    if isinstance(first, ClassificationError):
        return first
    if isinstance(second, ClassificationError):
        return second
    return first if _restriction(first) >= _restriction(second) else second


_TIER_RESTRICTION: dict[Tier, int] = {
    Tier.APP: 0,
    Tier.INTERNAL: 1,
    Tier.EXTERNAL: 2,
    Tier.BASE: 3,
}


def _restriction(classification: Classification) -> tuple[int, int]:
    return (
        _TIER_RESTRICTION[classification.tier],
        0 if classification.auto_approvable else 1,
    )
