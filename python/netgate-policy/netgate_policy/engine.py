"""Gate engine — runs classification, validation and authorization per file,
then aggregates once every file result is in.

A run never raises: any unexpected fault becomes a Block decision with an
EngineFault reason.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from netgate_policy.aggregator import aggregate
from netgate_policy.audit import AuditReport, render
from netgate_policy.classifier import classify, most_restrictive, normalize_path
from netgate_policy.config import GateConfig, load_config
from netgate_policy.enforcer import authorize
from netgate_policy.models import (
    ChangeKind,
    Classification,
    ClassificationError,
    Decision,
    DecisionReason,
    FileOutcome,
    Outcome,
    Permit,
    ReasonCode,
    ReasonSeverity,
    ResourceKind,
    Severity,
    ValidationFinding,
)
from netgate_policy.validator import validate

if TYPE_CHECKING:
    from pathlib import Path

    from netgate_policy.models import ChangedFile, Changeset, Deny

logger = logging.getLogger(__name__)


def fault_decision(message: str) -> Decision:
    """Fail-closed decision for a run that could not be evaluated."""
    return Decision(
        outcome=Outcome.BLOCK,
        reasons=(
            DecisionReason(
                path="",
                code=ReasonCode.ENGINE_FAULT,
                explanation=message,
                severity=ReasonSeverity.BLOCK,
            ),
        ),
    )


def _restriction(outcome: FileOutcome) -> tuple[bool, ...]:
    auth = outcome.authorization
    classification = outcome.classification
    return (
        not isinstance(auth, Permit),
        isinstance(classification, ClassificationError),
        any(f.severity == Severity.ERROR for f in outcome.findings),
        isinstance(auth, Permit) and auth.requires_approval is not None,
        isinstance(classification, Classification) and not classification.auto_approvable,
    )


class GateEngine:
    """Evaluates changesets against one immutable gate configuration."""

    def __init__(self, config: GateConfig) -> None:
        self._config = config

    @classmethod
    def from_path(cls, path: str | Path) -> GateEngine:
        """Build an engine from a YAML config file. Raises ConfigError."""
        return cls(load_config(path))

    @property
    def config(self) -> GateConfig:
        return self._config

    # ── Per-file stages ──────────────────────────────────────────

    def classify(self, path: str) -> Classification | ClassificationError:
        return classify(
            path,
            self._config.tenant_ids,
            self._config.tier_rules,
            self._config.approval_roles,
        )

    def classify_file(self, file: ChangedFile) -> Classification | ClassificationError:
        """Classify a changed file; a rename is governed by the stricter of its two paths."""
        current = self.classify(file.path)
        if file.change_kind == ChangeKind.RENAMED and file.previous_path:
            return most_restrictive(self.classify(file.previous_path), current)
        return current

    def authorize(
        self,
        classification: Classification | ClassificationError,
        actor_roles: frozenset[str],
        override: bool = False,
    ) -> Permit | Deny:
        return authorize(classification, actor_roles, override=override)

    def validate(
        self,
        path: str,
        content: str | None,
        classification: Classification,
    ) -> list[ValidationFinding]:
        if content is None:
            return [
                ValidationFinding(
                    severity=Severity.ERROR,
                    code=ReasonCode.MALFORMED_DOCUMENT,
                    message="File content was not supplied for validation",
                    path=path,
                )
            ]
        return validate(content, self._config.policy_kinds, classification, path=path)

    def needs_validation(self, file: ChangedFile, classification: Classification) -> bool:
        # Any surviving file under a policy prefix is validated, whatever its extension.
        return (
            classification.resource_kind == ResourceKind.POLICY
            and file.change_kind != ChangeKind.DELETED
        )

    def wants_content(self, path: str) -> bool:
        """Whether a host should fetch this path's content for validation."""
        classification = self.classify(path)
        return (
            isinstance(classification, Classification)
            and classification.resource_kind == ResourceKind.POLICY
        )

    def evaluate_file(self, file: ChangedFile, changeset: Changeset) -> FileOutcome:
        classification = self.classify_file(file)
        authorization = self.authorize(
            classification, changeset.actor.roles, override=changeset.override
        )
        findings: list[ValidationFinding] = []
        if isinstance(classification, Classification) and self.needs_validation(
            file, classification
        ):
            content = changeset.contents.get(file.path)
            if content is None:
                content = changeset.contents.get(normalize_path(file.path))
            findings = self.validate(file.path, content, classification)
        return FileOutcome(
            file=file,
            classification=classification,
            authorization=authorization,
            findings=tuple(findings),
        )

    # ── Runs ─────────────────────────────────────────────────────

    @staticmethod
    def _fold_duplicates(changeset: Changeset, outcomes: list[FileOutcome]) -> list[FileOutcome]:
        """Collapse repeated entries for one path into its most restrictive outcome."""
        grouped: dict[str, list[FileOutcome]] = {}
        for outcome in outcomes:
            grouped.setdefault(outcome.path, []).append(outcome)
        folded: list[FileOutcome] = []
        for path, group in grouped.items():
            if len(group) == 1:
                folded.append(group[0])
                continue
            logger.warning(
                "Merging %d entries for %s in changeset %s", len(group), path, changeset.id
            )
            governing = max(group, key=_restriction)
            findings: list[ValidationFinding] = []
            for finding in (f for outcome in group for f in outcome.findings):
                if finding not in findings:
                    findings.append(finding)
            folded.append(governing.model_copy(update={"findings": tuple(findings)}))
        return folded

    def _join(self, changeset: Changeset, outcomes: list[FileOutcome]) -> Decision:
        return aggregate(
            outcomes,
            changeset.approvals,
            self._config,
            author_id=changeset.actor.id,
            head_sha=changeset.head_sha,
        )

    def evaluate(self, changeset: Changeset) -> Decision:
        """Evaluate a changeset sequentially. Never raises."""
        try:
            outcomes = [self.evaluate_file(f, changeset) for f in changeset.files]
            return self._join(changeset, self._fold_duplicates(changeset, outcomes))
        except Exception as exc:
            logger.exception("Engine fault evaluating changeset %s", changeset.id)
            return fault_decision(f"Internal error while evaluating the changeset: {exc}")

    async def aevaluate(self, changeset: Changeset) -> Decision:
        """Evaluate files concurrently, then aggregate at a single join point."""
        try:
            outcomes = await asyncio.gather(
                *(asyncio.to_thread(self.evaluate_file, f, changeset) for f in changeset.files)
            )
            return self._join(changeset, self._fold_duplicates(changeset, list(outcomes)))
        except Exception as exc:
            logger.exception("Engine fault evaluating changeset %s", changeset.id)
            return fault_decision(f"Internal error while evaluating the changeset: {exc}")

    def run(self, changeset: Changeset) -> AuditReport:
        return render(self.evaluate(changeset), changeset.id)

    async def arun(self, changeset: Changeset) -> AuditReport:
        return render(await self.aevaluate(changeset), changeset.id)
