"""Tests for decision engine data models."""

from datetime import UTC, datetime

from netgate_policy.models import (
    Actor,
    ChangedFile,
    ChangeKind,
    Changeset,
    Decision,
    DecisionReason,
    Outcome,
    ReasonCode,
    ReasonSeverity,
    Tier,
)


def test_changed_file_defaults() -> None:
    f = ChangedFile(path="tenant-a/apps/web.yaml")
    assert f.change_kind == ChangeKind.MODIFIED
    assert f.previous_path is None
    assert f.updated_at is None


def test_changeset_minimal() -> None:
    cs = Changeset(actor=Actor(id="dev-1"))
    assert cs.files == ()
    assert cs.contents == {}
    assert cs.approvals == ()
    assert cs.override is False
    assert cs.actor.roles == frozenset()


def test_changeset_from_json() -> None:
    data = {
        "id": "pr-42",
        "head_sha": "abc123",
        "actor": {"id": "dev-1", "roles": ["dev"]},
        "files": [
            {"path": "tenant-a/apps/web.yaml", "change_kind": "added"},
            {
                "path": "tenant-a/apps/api.yaml",
                "change_kind": "renamed",
                "previous_path": "tenant-a/apps/old.yaml",
            },
        ],
        "approvals": [
            {"role": "security", "actor_id": "sec-1", "timestamp": "2026-03-01T12:00:00Z"}
        ],
    }
    cs = Changeset.model_validate(data)
    assert cs.actor.roles == frozenset({"dev"})
    assert cs.files[1].change_kind == ChangeKind.RENAMED
    assert cs.approvals[0].timestamp == datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def test_enum_values() -> None:
    assert Tier.BASE.value == "base"
    assert Outcome.REQUIRE_APPROVAL.value == "require_approval"
    assert ReasonCode.UNCLASSIFIED_PATH.value == "UnclassifiedPath"


def test_outcome_rank_orders_restrictiveness() -> None:
    ranks = [o.rank for o in (Outcome.AUTO_APPROVE, Outcome.REQUIRE_APPROVAL, Outcome.BLOCK)]
    assert ranks == sorted(ranks)
    assert len(set(ranks)) == 3


def test_decision_reason_codes_are_unique_and_ordered() -> None:
    d = Decision(
        outcome=Outcome.BLOCK,
        reasons=(
            DecisionReason(path="b", code=ReasonCode.INSUFFICIENT_ROLE, explanation="x"),
            DecisionReason(path="a", code=ReasonCode.UNCLASSIFIED_PATH, explanation="y"),
            DecisionReason(path="c", code=ReasonCode.INSUFFICIENT_ROLE, explanation="z"),
            DecisionReason(path="", code=ReasonCode.ENGINE_FAULT, explanation="w"),
        ),
    )
    assert d.reason_codes == [
        ReasonCode.INSUFFICIENT_ROLE,
        ReasonCode.UNCLASSIFIED_PATH,
        ReasonCode.ENGINE_FAULT,
    ]
    assert d.affected_paths == ["a", "b", "c"]


def test_decision_payload_serialization() -> None:
    d = Decision(
        outcome=Outcome.REQUIRE_APPROVAL,
        required_roles=("security",),
        reasons=(
            DecisionReason(
                path="a",
                code=ReasonCode.APPROVAL_REQUIRED,
                explanation="needs review",
                severity=ReasonSeverity.APPROVAL,
            ),
        ),
    )
    payload = d.to_payload()
    assert payload["outcome"] == "require_approval"
    assert payload["reasons"][0]["code"] == "ApprovalRequired"
    assert Decision.model_validate(payload) == d
