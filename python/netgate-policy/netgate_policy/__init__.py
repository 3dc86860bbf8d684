"""Netgate policy engine: change classification and merge decisions for network policy GitOps."""

from netgate_policy.aggregator import aggregate
from netgate_policy.audit import AuditReport, CheckState, StatusCheck, render
from netgate_policy.classifier import classify, classify_all
from netgate_policy.config import (
    ConfigError,
    GateConfig,
    GateError,
    Tenant,
    TierRule,
    default_config,
    load_config,
)
from netgate_policy.enforcer import authorize
from netgate_policy.engine import GateEngine, fault_decision
from netgate_policy.models import (
    Actor,
    ChangedFile,
    ChangeKind,
    Changeset,
    Classification,
    ClassificationError,
    Decision,
    DecisionReason,
    Deny,
    FileOutcome,
    Outcome,
    Permit,
    ReasonCode,
    RecordedApproval,
    ResourceKind,
    Severity,
    Tier,
    ValidationFinding,
)
from netgate_policy.validator import validate

__all__ = [
    "Actor",
    "AuditReport",
    "ChangeKind",
    "ChangedFile",
    "Changeset",
    "CheckState",
    "Classification",
    "ClassificationError",
    "ConfigError",
    "Decision",
    "DecisionReason",
    "Deny",
    "FileOutcome",
    "GateConfig",
    "GateEngine",
    "GateError",
    "Outcome",
    "Permit",
    "ReasonCode",
    "RecordedApproval",
    "ResourceKind",
    "Severity",
    "StatusCheck",
    "Tenant",
    "Tier",
    "TierRule",
    "ValidationFinding",
    "aggregate",
    "authorize",
    "classify",
    "classify_all",
    "default_config",
    "fault_decision",
    "load_config",
    "render",
    "validate",
]
