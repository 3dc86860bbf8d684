"""Decision aggregator — most-restrictive-wins reduction over per-file outcomes.

The rules below are evaluated top to bottom. The first rule that fires
sets the outcome; every rule that fires contributes its reasons, so a
blocked changeset still shows which approvals it would have needed.
Warnings are always recorded, whatever the outcome.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from netgate_policy.approvals import ApprovalStatus, approval_status
from netgate_policy.config import GateConfig
from netgate_policy.models import (
    Classification,
    Decision,
    DecisionReason,
    Deny,
    FileOutcome,
    Outcome,
    Permit,
    ReasonCode,
    ReasonSeverity,
    RecordedApproval,
    Severity,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregationInput:
    """Facts shared by every rule, computed once per aggregation."""

    outcomes: tuple[FileOutcome, ...]
    approvals: dict[str, ApprovalStatus]
    config: GateConfig

    @property
    def denied(self) -> list[tuple[FileOutcome, Deny]]:
        return [
            (o, o.authorization) for o in self.outcomes if isinstance(o.authorization, Deny)
        ]

    @property
    def error_findings(self) -> list[tuple[FileOutcome, int]]:
        return [
            (o, i)
            for o in self.outcomes
            for i, f in enumerate(o.findings)
            if f.severity == Severity.ERROR
        ]

    @property
    def missing_approvals(self) -> dict[str, ApprovalStatus]:
        return {path: s for path, s in self.approvals.items() if not s.satisfied}

    @property
    def blocking_warnings(self) -> list[tuple[str, str, str]]:
        return [
            (o.path, str(f.code), f.message)
            for o in self.outcomes
            for f in o.findings
            if f.severity == Severity.WARNING and f.code in self.config.blocking_warning_codes
        ]

    def merge_ready(self, outcome: FileOutcome) -> bool:
        """Auto-approvable on its own, or its required approval is recorded."""
        status = self.approvals.get(outcome.path)
        if status is not None:
            return status.satisfied
        classification = outcome.classification
        return isinstance(classification, Classification) and classification.auto_approvable


@dataclass(frozen=True)
class RuleResult:
    outcome: Outcome
    reasons: tuple[DecisionReason, ...]
    required_roles: tuple[str, ...] = ()


AggregationRule = Callable[[AggregationInput], RuleResult | None]


def _deny_rule(inputs: AggregationInput) -> RuleResult | None:
    denied = inputs.denied
    if not denied:
        return None
    reasons = tuple(
        DecisionReason(
            path=outcome.path,
            code=deny.code,
            explanation=deny.message,
            severity=ReasonSeverity.BLOCK,
        )
        for outcome, deny in denied
    )
    return RuleResult(outcome=Outcome.BLOCK, reasons=reasons)


def _error_finding_rule(inputs: AggregationInput) -> RuleResult | None:
    errors = inputs.error_findings
    if not errors:
        return None
    reasons = tuple(
        DecisionReason(
            path=outcome.path,
            code=outcome.findings[index].code,
            explanation=outcome.findings[index].message,
            severity=ReasonSeverity.BLOCK,
        )
        for outcome, index in errors
    )
    return RuleResult(outcome=Outcome.BLOCK, reasons=reasons)


def _approval_rule(inputs: AggregationInput) -> RuleResult | None:
    missing = inputs.missing_approvals
    if not missing:
        return None
    reasons: list[DecisionReason] = []
    for path in sorted(missing):
        status = missing[path]
        reasons.extend(status.reasons)
        reasons.append(
            DecisionReason(
                path=path,
                code=ReasonCode.APPROVAL_REQUIRED,
                explanation=f"Requires a current approval from role '{status.role}'",
                severity=ReasonSeverity.APPROVAL,
            )
        )
    roles = tuple(sorted({s.role for s in missing.values()}))
    return RuleResult(
        outcome=Outcome.REQUIRE_APPROVAL, reasons=tuple(reasons), required_roles=roles
    )


def _auto_approve_rule(inputs: AggregationInput) -> RuleResult | None:
    if inputs.denied or inputs.error_findings or inputs.missing_approvals:
        return None
    if inputs.blocking_warnings or not inputs.outcomes:
        return None
    if not all(inputs.merge_ready(o) for o in inputs.outcomes):
        return None
    reasons: list[DecisionReason] = []
    for outcome in inputs.outcomes:
        status = inputs.approvals.get(outcome.path)
        if status is not None:
            reasons.extend(status.reasons)
            reasons.append(
                DecisionReason(
                    path=outcome.path,
                    code=ReasonCode.APPROVAL_SATISFIED,
                    explanation=(
                        f"Approved by role '{status.role}': {', '.join(status.approver_ids)}"
                    ),
                )
            )
        else:
            tier = getattr(outcome.classification, "tier", None)
            reasons.append(
                DecisionReason(
                    path=outcome.path,
                    code=ReasonCode.AUTO_APPROVABLE,
                    explanation=f"{tier} tier is auto-approvable",
                )
            )
    return RuleResult(outcome=Outcome.AUTO_APPROVE, reasons=tuple(reasons))


def _fallback_rule(inputs: AggregationInput) -> RuleResult | None:
    if inputs.denied or inputs.error_findings or inputs.missing_approvals:
        return None
    if _auto_approve_rule(inputs) is not None:
        return None
    role = inputs.config.default_reviewer_role
    reasons: list[DecisionReason] = [
        DecisionReason(
            path=path,
            code=ReasonCode.BLOCKING_WARNING,
            explanation=f"{code} is configured as blocking: {message}",
            severity=ReasonSeverity.APPROVAL,
        )
        for path, code, message in inputs.blocking_warnings
    ]
    reasons.extend(
        DecisionReason(
            path=o.path,
            code=ReasonCode.REVIEWER_FALLBACK,
            explanation=f"Not auto-approvable; review by '{role}' required",
            severity=ReasonSeverity.APPROVAL,
        )
        for o in inputs.outcomes
        if not inputs.merge_ready(o)
    )
    if not inputs.outcomes:
        reasons.append(
            DecisionReason(
                path="",
                code=ReasonCode.REVIEWER_FALLBACK,
                explanation=f"Changeset contains no files; review by '{role}' required",
                severity=ReasonSeverity.APPROVAL,
            )
        )
    return RuleResult(
        outcome=Outcome.REQUIRE_APPROVAL, reasons=tuple(reasons), required_roles=(role,)
    )


RULES: tuple[AggregationRule, ...] = (
    _deny_rule,
    _error_finding_rule,
    _approval_rule,
    _auto_approve_rule,
    _fallback_rule,
)


def _warning_reasons(outcomes: Sequence[FileOutcome]) -> list[DecisionReason]:
    return [
        DecisionReason(
            path=o.path,
            code=f.code,
            explanation=f.message,
            severity=ReasonSeverity.WARNING,
        )
        for o in outcomes
        for f in o.findings
        if f.severity == Severity.WARNING
    ]


def aggregate(
    outcomes: Sequence[FileOutcome],
    approvals: Sequence[RecordedApproval],
    config: GateConfig,
    author_id: str | None = None,
    head_sha: str | None = None,
) -> Decision:
    """Reduce per-file outcomes to a single Decision.

    Runs only once every file outcome is available. Deterministic: the
    same outcomes, approvals and config always yield an equal Decision.
    """
    ordered = tuple(sorted(outcomes, key=lambda o: o.path))
    statuses: dict[str, ApprovalStatus] = {}
    for outcome in ordered:
        auth = outcome.authorization
        if isinstance(auth, Permit) and auth.requires_approval:
            statuses[outcome.path] = approval_status(
                auth.requires_approval,
                outcome.file,
                approvals,
                config,
                author_id=author_id,
                head_sha=head_sha,
            )
    inputs = AggregationInput(outcomes=ordered, approvals=statuses, config=config)

    fired = [result for rule in RULES if (result := rule(inputs)) is not None]
    # RULES is exhaustive: auto-approve and fallback are complementary.
    decisive = fired[0]
    reasons = [r for result in fired for r in result.reasons]
    reasons.extend(_warning_reasons(ordered))

    decision = Decision(
        outcome=decisive.outcome,
        required_roles=decisive.required_roles,
        reasons=tuple(reasons),
    )
    log = logger.warning if decision.outcome == Outcome.BLOCK else logger.info
    log(
        "Aggregated %d files: outcome=%s reasons=%s",
        len(ordered),
        decision.outcome,
        [str(c) for c in decision.reason_codes],
    )
    return decision
