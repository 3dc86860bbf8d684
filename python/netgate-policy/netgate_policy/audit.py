"""Audit record builder — renders a Decision for the PR/CI surface.

Pure transformation: labels, a Markdown comment, status checks and a
machine-readable payload whose content hash makes persisted records
tamper-evident. Emission is left to the caller.
"""

from __future__ import annotations

import hashlib
import json
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict

from netgate_policy.models import Decision, DecisionReason, Outcome, ReasonCode, ReasonSeverity

AUDIT_SCHEMA = "netgate.audit/v1"

DECISION_CHECK = "netgate/decision"
CLASSIFICATION_CHECK = "netgate/classification"
VALIDATION_CHECK = "netgate/validation"
APPROVAL_CHECK = "netgate/approval"
REQUIRED_CHECKS = (DECISION_CHECK,)

AUTO_APPROVED_LABEL = "auto-approved"

CLASSIFICATION_CODES = frozenset({
    ReasonCode.UNCLASSIFIED_PATH,
    ReasonCode.UNKNOWN_TENANT,
    ReasonCode.PROTECTED_TIER_MODIFICATION,
    ReasonCode.INSUFFICIENT_ROLE,
})

# Block reason code → label. Anything unlisted is a validation failure.
BLOCK_LABELS: dict[ReasonCode, str] = {
    ReasonCode.PROTECTED_TIER_MODIFICATION: "blocked:base-policy",
    ReasonCode.UNCLASSIFIED_PATH: "blocked:unrecognized-path",
    ReasonCode.UNKNOWN_TENANT: "blocked:unrecognized-path",
    ReasonCode.INSUFFICIENT_ROLE: "blocked:insufficient-role",
    ReasonCode.ENGINE_FAULT: "blocked:engine-fault",
}
VALIDATION_BLOCK_LABEL = "blocked:validation"

OUTCOME_TITLES: dict[Outcome, str] = {
    Outcome.AUTO_APPROVE: "Auto-approved",
    Outcome.REQUIRE_APPROVAL: "Approval required",
    Outcome.BLOCK: "Blocked",
}

SEVERITY_ICONS: dict[ReasonSeverity, str] = {
    ReasonSeverity.BLOCK: ":no_entry:",
    ReasonSeverity.APPROVAL: ":hourglass:",
    ReasonSeverity.WARNING: ":warning:",
    ReasonSeverity.INFO: ":information_source:",
}


class CheckState(StrEnum):
    SUCCESS = "success"
    PENDING = "pending"
    FAILURE = "failure"


class StatusCheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    state: CheckState
    description: str


class AuditReport(BaseModel):
    """Everything the calling collaborator needs to publish a decision."""

    model_config = ConfigDict(frozen=True)

    changeset_id: str = ""
    outcome: Outcome
    labels: tuple[str, ...]
    comment_body: str
    status_checks: tuple[StatusCheck, ...]
    required_checks: tuple[str, ...] = REQUIRED_CHECKS
    payload: dict[str, Any]
    content_hash: str

    def verify_integrity(self) -> bool:
        return self.content_hash == content_hash(self.payload)

    def check(self, name: str) -> StatusCheck | None:
        return next((c for c in self.status_checks if c.name == name), None)


def canonical_json(obj: Any) -> bytes:
    """Deterministic JSON bytes for hashing."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode()


def content_hash(payload: dict[str, Any]) -> str:
    return hashlib.blake2b(canonical_json(payload), digest_size=32).hexdigest()


def build_labels(decision: Decision) -> tuple[str, ...]:
    if decision.outcome == Outcome.AUTO_APPROVE:
        return (AUTO_APPROVED_LABEL,)
    if decision.outcome == Outcome.REQUIRE_APPROVAL:
        return tuple(f"needs-{role}-review" for role in decision.required_roles)
    labels = {
        BLOCK_LABELS.get(r.code, VALIDATION_BLOCK_LABEL)
        for r in decision.reasons
        if r.severity == ReasonSeverity.BLOCK
    }
    return tuple(sorted(labels)) or (VALIDATION_BLOCK_LABEL,)


def build_status_checks(decision: Decision) -> tuple[StatusCheck, ...]:
    blocking = [r for r in decision.reasons if r.severity == ReasonSeverity.BLOCK]
    classification_blocks = [r for r in blocking if r.code in CLASSIFICATION_CODES]
    validation_blocks = [
        r for r in blocking
        if r.code not in CLASSIFICATION_CODES and r.code != ReasonCode.ENGINE_FAULT
    ]
    pending = [r for r in decision.reasons if r.severity == ReasonSeverity.APPROVAL]
    warnings = [r for r in decision.reasons if r.severity == ReasonSeverity.WARNING]
    faulted = any(r.code == ReasonCode.ENGINE_FAULT for r in blocking)

    if decision.outcome == Outcome.AUTO_APPROVE:
        main = StatusCheck(
            name=DECISION_CHECK, state=CheckState.SUCCESS, description="Auto-approved"
        )
    elif decision.outcome == Outcome.REQUIRE_APPROVAL:
        main = StatusCheck(
            name=DECISION_CHECK,
            state=CheckState.PENDING,
            description=f"Awaiting approval from: {', '.join(decision.required_roles)}",
        )
    else:
        main = StatusCheck(
            name=DECISION_CHECK,
            state=CheckState.FAILURE,
            description=f"Blocked by {len(blocking)} finding(s)",
        )

    if faulted:
        fault = "Gate could not evaluate the change"
        return (
            main,
            StatusCheck(name=CLASSIFICATION_CHECK, state=CheckState.FAILURE, description=fault),
            StatusCheck(name=VALIDATION_CHECK, state=CheckState.FAILURE, description=fault),
            StatusCheck(name=APPROVAL_CHECK, state=CheckState.FAILURE, description=fault),
        )

    return (
        main,
        StatusCheck(
            name=CLASSIFICATION_CHECK,
            state=CheckState.FAILURE if classification_blocks else CheckState.SUCCESS,
            description=(
                f"{len(classification_blocks)} path(s) unrecognized or protected"
                if classification_blocks
                else "All paths classified and editable"
            ),
        ),
        StatusCheck(
            name=VALIDATION_CHECK,
            state=CheckState.FAILURE if validation_blocks else CheckState.SUCCESS,
            description=f"{len(validation_blocks)} error(s), {len(warnings)} warning(s)",
        ),
        StatusCheck(
            name=APPROVAL_CHECK,
            state=CheckState.PENDING if pending else CheckState.SUCCESS,
            description=(
                f"{len(pending)} approval requirement(s) outstanding"
                if pending
                else "No outstanding approvals"
            ),
        ),
    )


def _cell(text: str) -> str:
    return text.replace("|", "\\|").replace("\n", " ")


def _reason_row(reason: DecisionReason) -> str:
    path = f"`{_cell(reason.path)}`" if reason.path else "-"
    return (
        f"| {SEVERITY_ICONS[reason.severity]} {reason.severity} | {path}"
        f" | `{reason.code}` | {_cell(reason.explanation)} |"
    )


def build_comment(decision: Decision, digest: str, changeset_id: str = "") -> str:
    title = OUTCOME_TITLES[decision.outcome]
    lines = [f"### Network policy gate: **{title}**", ""]
    if changeset_id:
        lines += [f"Changeset `{changeset_id}`", ""]
    if decision.required_roles and decision.outcome == Outcome.REQUIRE_APPROVAL:
        roles = ", ".join(f"`{r}`" for r in decision.required_roles)
        lines += [f"Required approvals: {roles}", ""]
    if decision.reasons:
        lines += [
            "| Severity | Path | Code | Explanation |",
            "| --- | --- | --- | --- |",
            *(_reason_row(r) for r in decision.reasons),
            "",
        ]
    else:
        lines += ["No reasons recorded.", ""]
    lines.append(f"<sub>audit {AUDIT_SCHEMA} · {digest[:16]}</sub>")
    return "\n".join(lines)


def build_payload(decision: Decision, changeset_id: str = "") -> dict[str, Any]:
    return {
        "schema": AUDIT_SCHEMA,
        "changeset_id": changeset_id,
        "outcome": str(decision.outcome),
        "required_roles": list(decision.required_roles),
        "reason_codes": [str(c) for c in decision.reason_codes],
        "affected_paths": decision.affected_paths,
        "reasons": [r.model_dump(mode="json") for r in decision.reasons],
    }


def render(decision: Decision, changeset_id: str = "") -> AuditReport:
    """Render a decision into labels, comment, status checks and audit payload."""
    payload = build_payload(decision, changeset_id)
    digest = content_hash(payload)
    return AuditReport(
        changeset_id=changeset_id,
        outcome=decision.outcome,
        labels=build_labels(decision),
        comment_body=build_comment(decision, digest, changeset_id),
        status_checks=build_status_checks(decision),
        payload=payload,
        content_hash=digest,
    )
