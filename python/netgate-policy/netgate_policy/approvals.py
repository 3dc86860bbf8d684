"""Recorded-approval matching.

An approval only counts while it is current. With the ``head`` scope a
new commit invalidates earlier approvals: the approval must be recorded
against the changeset head (when both sides know it) and must not predate
the latest commit touching the approved file. Self-approvals by the
changeset author are ignored unless the config allows them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from netgate_policy.models import DecisionReason, ReasonCode, ReasonSeverity

if TYPE_CHECKING:
    from collections.abc import Sequence

    from netgate_policy.config import GateConfig
    from netgate_policy.models import ChangedFile, RecordedApproval


@dataclass(frozen=True)
class ApprovalStatus:
    """Whether a file's required approval is present, with the audit trail."""

    role: str
    satisfied: bool
    approver_ids: tuple[str, ...] = ()
    reasons: tuple[DecisionReason, ...] = field(default_factory=tuple)


def _utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _stale_reason(
    approval: RecordedApproval,
    file: ChangedFile,
    head_sha: str | None,
) -> str | None:
    if head_sha and approval.commit_sha and approval.commit_sha != head_sha:
        return (
            f"approval by {approval.actor_id} was recorded on {approval.commit_sha[:12]},"
            f" head is now {head_sha[:12]}"
        )
    if file.updated_at and _utc(approval.timestamp) < _utc(file.updated_at):
        return (
            f"approval by {approval.actor_id} predates the latest change"
            f" to the file ({file.updated_at.isoformat()})"
        )
    return None


def approval_status(
    role: str,
    file: ChangedFile,
    approvals: Sequence[RecordedApproval],
    config: GateConfig,
    author_id: str | None = None,
    head_sha: str | None = None,
) -> ApprovalStatus:
    """Match ``approvals`` against the ``role`` a changed file needs."""
    approvers: list[str] = []
    reasons: list[DecisionReason] = []

    for approval in sorted(approvals, key=lambda a: (_utc(a.timestamp), a.actor_id)):
        if approval.role != role:
            continue
        if config.ignore_self_approval and author_id and approval.actor_id == author_id:
            reasons.append(
                DecisionReason(
                    path=file.path,
                    code=ReasonCode.SELF_APPROVAL_IGNORED,
                    explanation=f"{approval.actor_id} authored the change and cannot approve it",
                    severity=ReasonSeverity.INFO,
                )
            )
            continue
        if config.approval_scope == "head":
            stale = _stale_reason(approval, file, head_sha)
            if stale is not None:
                reasons.append(
                    DecisionReason(
                        path=file.path,
                        code=ReasonCode.APPROVAL_INVALIDATED,
                        explanation=stale,
                        severity=ReasonSeverity.INFO,
                    )
                )
                continue
        approvers.append(approval.actor_id)

    return ApprovalStatus(
        role=role,
        satisfied=bool(approvers),
        approver_ids=tuple(dict.fromkeys(approvers)),
        reasons=tuple(reasons),
    )
