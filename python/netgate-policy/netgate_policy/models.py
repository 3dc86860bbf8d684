"""Decision engine data models.

Inputs (changesets, actors, approvals) are supplied by the calling
collaborator; everything derived from them (classifications, findings,
authorizations, decisions) is frozen once produced.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# ── Enums ──────────────────────────────────────────────────────────


class Tier(StrEnum):
    """Protection level of a repository path."""

    BASE = "base"
    INTERNAL = "internal"
    EXTERNAL = "external"
    APP = "app"


class ChangeKind(StrEnum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


class ResourceKind(StrEnum):
    """What a classified file holds; only policies are validated."""

    POLICY = "policy"
    APPLICATION = "application"
    CONFIG = "config"


class Severity(StrEnum):
    ERROR = "error"
    WARNING = "warning"


class Outcome(StrEnum):
    """Merge outcomes, from most to least permissive."""

    AUTO_APPROVE = "auto_approve"
    REQUIRE_APPROVAL = "require_approval"
    BLOCK = "block"

    @property
    def rank(self) -> int:
        return _OUTCOME_RANK[self]


_OUTCOME_RANK: dict[Outcome, int] = {
    Outcome.AUTO_APPROVE: 0,
    Outcome.REQUIRE_APPROVAL: 1,
    Outcome.BLOCK: 2,
}


class ReasonCode(StrEnum):
    """Reason codes surfaced verbatim in audit records."""

    # Classification
    UNCLASSIFIED_PATH = "UnclassifiedPath"
    UNKNOWN_TENANT = "UnknownTenant"
    # Authorization
    PROTECTED_TIER_MODIFICATION = "ProtectedTierModification"
    INSUFFICIENT_ROLE = "InsufficientRole"
    # Validation
    MALFORMED_DOCUMENT = "MalformedDocument"
    UNEXPECTED_KIND = "UnexpectedKind"
    MISSING_REQUIRED_FIELD = "MissingRequiredField"
    MISSING_JUSTIFICATION = "MissingJustification"
    NAMESPACE_TENANT_MISMATCH = "NamespaceTenantMismatch"
    OVERLY_PERMISSIVE_RULE = "OverlyPermissiveRule"
    UNRESTRICTED_WILDCARD_RULE = "UnrestrictedWildcardRule"
    BROAD_PEER_SELECTOR = "BroadPeerSelector"
    CROSS_TENANT_REFERENCE = "CrossTenantReference"
    # Approval
    APPROVAL_REQUIRED = "ApprovalRequired"
    APPROVAL_SATISFIED = "ApprovalSatisfied"
    APPROVAL_INVALIDATED = "ApprovalInvalidated"
    SELF_APPROVAL_IGNORED = "SelfApprovalIgnored"
    BLOCKING_WARNING = "BlockingWarning"
    REVIEWER_FALLBACK = "ReviewerFallback"
    AUTO_APPROVABLE = "AutoApprovable"
    # Engine
    ENGINE_FAULT = "EngineFault"


class ReasonSeverity(StrEnum):
    """How a reason contributed to the decision."""

    BLOCK = "block"
    APPROVAL = "approval"
    WARNING = "warning"
    INFO = "info"


# ── Inputs ─────────────────────────────────────────────────────────


class ChangedFile(BaseModel):
    """A single file touched by a changeset."""

    model_config = ConfigDict(frozen=True)

    path: str
    change_kind: ChangeKind = ChangeKind.MODIFIED
    previous_path: str | None = None
    updated_at: datetime | None = None


class Actor(BaseModel):
    """Already-authenticated identity proposing the change."""

    model_config = ConfigDict(frozen=True)

    id: str
    roles: frozenset[str] = frozenset()


class RecordedApproval(BaseModel):
    """An approval recorded on the changeset by the source-control host."""

    model_config = ConfigDict(frozen=True)

    role: str
    actor_id: str
    timestamp: datetime
    commit_sha: str | None = None


class Changeset(BaseModel):
    """Snapshot of everything a decision run consumes."""

    model_config = ConfigDict(frozen=True)

    id: str = ""
    head_sha: str | None = None
    actor: Actor
    files: tuple[ChangedFile, ...] = ()
    contents: dict[str, str] = Field(default_factory=dict)
    approvals: tuple[RecordedApproval, ...] = ()
    override: bool = False


# ── Derived per-file results ───────────────────────────────────────


class Classification(BaseModel):
    """Resolved (tenant, tier, resource kind) for one path."""

    model_config = ConfigDict(frozen=True)

    path: str
    tenant: str | None
    tier: Tier
    resource_kind: ResourceKind
    rule_prefix: str
    owning_role: str
    auto_approvable: bool
    requires_approval: str | None = None


class ClassificationError(BaseModel):
    """A path the rule table could not resolve. Treated as maximally restrictive."""

    model_config = ConfigDict(frozen=True)

    path: str
    code: ReasonCode
    message: str


class ValidationFinding(BaseModel):
    model_config = ConfigDict(frozen=True)

    severity: Severity
    code: ReasonCode
    message: str
    path: str
    document_index: int = 0


class Permit(BaseModel):
    """The edit is permissible; ``requires_approval`` names a role that must still sign off."""

    model_config = ConfigDict(frozen=True)

    requires_approval: str | None = None


class Deny(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: ReasonCode
    message: str


class FileOutcome(BaseModel):
    """Everything computed for one changed file before aggregation."""

    model_config = ConfigDict(frozen=True)

    file: ChangedFile
    classification: Classification | ClassificationError
    authorization: Permit | Deny
    findings: tuple[ValidationFinding, ...] = ()

    @property
    def path(self) -> str:
        return self.file.path


# ── Decision ───────────────────────────────────────────────────────


class DecisionReason(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    code: ReasonCode
    explanation: str
    severity: ReasonSeverity = ReasonSeverity.INFO


class Decision(BaseModel):
    """Terminal artifact of a decision run."""

    model_config = ConfigDict(frozen=True)

    outcome: Outcome
    required_roles: tuple[str, ...] = ()
    reasons: tuple[DecisionReason, ...] = ()

    @property
    def reason_codes(self) -> list[ReasonCode]:
        seen: dict[ReasonCode, None] = {}
        for reason in self.reasons:
            seen.setdefault(reason.code, None)
        return list(seen)

    @property
    def affected_paths(self) -> list[str]:
        return sorted({r.path for r in self.reasons if r.path})

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
