"""Manifest validator — structural and risk checks for network policy documents.

Each check is a class implementing the ManifestCheck protocol, registered
in a module-level registry keyed by check_id. A parse failure yields a
single MalformedDocument finding and no other check runs for that file;
otherwise every check runs and findings accumulate.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from netgate_policy.models import (
    Classification,
    ReasonCode,
    Severity,
    Tier,
    ValidationFinding,
)

logger = logging.getLogger(__name__)

CLUSTERWIDE_KINDS = frozenset({"CiliumClusterwideNetworkPolicy"})
JUSTIFICATION_ANNOTATION = "justification"
NAMESPACE_LABELS = ("k8s:io.kubernetes.pod.namespace", "io.kubernetes.pod.namespace")

# ── Document model ─────────────────────────────────────────────────


class PolicyMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str | None = None
    namespace: str | None = None
    annotations: dict[str, Any] | None = None
    labels: dict[str, Any] | None = None


class PolicySpec(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    endpoint_selector: dict[str, Any] | None = Field(default=None, alias="endpointSelector")
    ingress: list[dict[str, Any]] | None = None
    egress: list[dict[str, Any]] | None = None


class PolicyDocument(BaseModel):
    """Parsed policy manifest. Lives only for the duration of validation."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    api_version: str | None = Field(default=None, alias="apiVersion")
    kind: str | None = None
    metadata: PolicyMetadata = Field(default_factory=PolicyMetadata)
    spec: PolicySpec | None = None

    @property
    def clusterwide(self) -> bool:
        return self.kind in CLUSTERWIDE_KINDS

    @property
    def annotations(self) -> dict[str, Any]:
        return self.metadata.annotations or {}


@dataclass(frozen=True)
class CheckContext:
    """What a check knows about the document under inspection."""

    path: str
    document_index: int
    expected_kinds: tuple[str, ...]
    classification: Classification | None = None

    @property
    def tier(self) -> Tier | None:
        return self.classification.tier if self.classification else None

    @property
    def tenant(self) -> str | None:
        return self.classification.tenant if self.classification else None

    def finding(self, severity: Severity, code: ReasonCode, message: str) -> ValidationFinding:
        return ValidationFinding(
            severity=severity,
            code=code,
            message=message,
            path=self.path,
            document_index=self.document_index,
        )


# ── Check registry ─────────────────────────────────────────────────


@dataclass(frozen=True)
class CheckMetadata:
    check_id: str
    title: str
    description: str = ""


class ManifestCheck(ABC):
    """Abstract base for a manifest check."""

    @property
    @abstractmethod
    def metadata(self) -> CheckMetadata: ...

    @abstractmethod
    def evaluate(self, document: PolicyDocument, ctx: CheckContext) -> list[ValidationFinding]:
        """Return an empty list if the document passes."""
        ...


_CHECK_REGISTRY: dict[str, ManifestCheck] = {}


def register_check(cls: type[ManifestCheck]) -> type[ManifestCheck]:
    """Class decorator: instantiate and register a check."""
    instance = cls()
    _CHECK_REGISTRY[instance.metadata.check_id] = instance
    return cls


def get_checks() -> list[ManifestCheck]:
    return list(_CHECK_REGISTRY.values())


def get_check(check_id: str) -> ManifestCheck | None:
    return _CHECK_REGISTRY.get(check_id)


# ── Checks ─────────────────────────────────────────────────────────


@register_check
class KindCheck(ManifestCheck):
    @property
    def metadata(self) -> CheckMetadata:
        return CheckMetadata(
            check_id="kind",
            title="Document kind must be an accepted policy kind",
        )

    def evaluate(self, document: PolicyDocument, ctx: CheckContext) -> list[ValidationFinding]:
        if not document.kind:
            return [
                ctx.finding(Severity.ERROR, ReasonCode.MISSING_REQUIRED_FIELD, "Missing 'kind'")
            ]
        if ctx.expected_kinds and document.kind not in ctx.expected_kinds:
            return [
                ctx.finding(
                    Severity.ERROR,
                    ReasonCode.UNEXPECTED_KIND,
                    f"Kind '{document.kind}' is not one of: {', '.join(ctx.expected_kinds)}",
                )
            ]
        return []


@register_check
class RequiredFieldsCheck(ManifestCheck):
    @property
    def metadata(self) -> CheckMetadata:
        return CheckMetadata(
            check_id="required-fields",
            title="apiVersion, metadata.name, metadata.namespace and spec.endpointSelector",
        )

    def evaluate(self, document: PolicyDocument, ctx: CheckContext) -> list[ValidationFinding]:
        missing: list[str] = []
        if not _non_empty(document.api_version):
            missing.append("apiVersion")
        if not _non_empty(document.metadata.name):
            missing.append("metadata.name")
        # Only a clusterwide policy outside any tenant directory may omit the namespace.
        namespace_optional = document.clusterwide and ctx.tenant is None
        if not namespace_optional and not _non_empty(document.metadata.namespace):
            missing.append("metadata.namespace")
        if document.spec is None or document.spec.endpoint_selector is None:
            missing.append("spec.endpointSelector")
        return [
            ctx.finding(
                Severity.ERROR,
                ReasonCode.MISSING_REQUIRED_FIELD,
                f"Missing or empty required field '{name}'",
            )
            for name in missing
        ]


@register_check
class JustificationCheck(ManifestCheck):
    @property
    def metadata(self) -> CheckMetadata:
        return CheckMetadata(
            check_id="external-justification",
            title="External-tier policies carry a justification annotation",
        )

    def evaluate(self, document: PolicyDocument, ctx: CheckContext) -> list[ValidationFinding]:
        if ctx.tier != Tier.EXTERNAL:
            return []
        if _non_empty(document.annotations.get(JUSTIFICATION_ANNOTATION)):
            return []
        return [
            ctx.finding(
                Severity.ERROR,
                ReasonCode.MISSING_JUSTIFICATION,
                "External-tier policy requires a non-empty "
                f"metadata.annotations.{JUSTIFICATION_ANNOTATION}",
            )
        ]


@register_check
class NamespaceTenantCheck(ManifestCheck):
    @property
    def metadata(self) -> CheckMetadata:
        return CheckMetadata(
            check_id="namespace-tenant",
            title="metadata.namespace matches the tenant owning the path",
        )

    def evaluate(self, document: PolicyDocument, ctx: CheckContext) -> list[ValidationFinding]:
        namespace = document.metadata.namespace
        if ctx.tenant is None:
            return []
        if document.clusterwide:
            return [
                ctx.finding(
                    Severity.ERROR,
                    ReasonCode.NAMESPACE_TENANT_MISMATCH,
                    f"Cluster-wide policy kind '{document.kind}' applies to every tenant and"
                    f" cannot be placed under tenant '{ctx.tenant}'",
                )
            ]
        if not _non_empty(namespace):
            return []
        if namespace == ctx.tenant:
            return []
        return [
            ctx.finding(
                Severity.ERROR,
                ReasonCode.NAMESPACE_TENANT_MISMATCH,
                f"Namespace '{namespace}' does not match tenant '{ctx.tenant}' implied by the path",
            )
        ]


# Peer fields per rule direction; toPorts is the port restriction for both.
INGRESS_PEERS = (
    "fromEndpoints",
    "fromCIDR",
    "fromCIDRSet",
    "fromEntities",
    "fromGroups",
    "fromNodes",
)
EGRESS_PEERS = (
    "toEndpoints",
    "toCIDR",
    "toCIDRSet",
    "toEntities",
    "toFQDNs",
    "toServices",
    "toGroups",
    "toNodes",
)
PORT_FIELDS = ("toPorts", "icmps")
WILDCARD_ENTITIES = frozenset({"all", "world", "cluster"})
WILDCARD_CIDRS = frozenset({"0.0.0.0/0", "::/0"})
# Operators that let a namespace expression match namespaces beyond a fixed list.
OPEN_NAMESPACE_OPERATORS = frozenset({"Exists", "NotIn", "DoesNotExist"})


def _spans_namespaces(selector: dict[str, Any]) -> bool:
    expressions = selector.get("matchExpressions")
    if not isinstance(expressions, list):
        return False
    return any(
        isinstance(expr, dict)
        and expr.get("key") in NAMESPACE_LABELS
        and expr.get("operator") in OPEN_NAMESPACE_OPERATORS
        for expr in expressions
    )


def _is_wildcard_peer(field: str, value: Any) -> bool:
    items = value if isinstance(value, list) else [value]
    for item in items:
        if field.endswith("Endpoints") and isinstance(item, dict):
            if not item.get("matchLabels") and not item.get("matchExpressions"):
                return True
            if _spans_namespaces(item):
                return True
        elif field.endswith("Entities") and str(item).lower() in WILDCARD_ENTITIES:
            return True
        elif field.endswith("CIDR") and str(item) in WILDCARD_CIDRS:
            return True
        elif field.endswith("CIDRSet") and isinstance(item, dict):
            if str(item.get("cidr", "")) in WILDCARD_CIDRS:
                return True
        elif field == "toFQDNs" and isinstance(item, dict):
            if item.get("matchPattern") == "*":
                return True
    return False


@register_check
class PeerRestrictionCheck(ManifestCheck):
    """Flags ingress/egress rules that reach everything or explicitly target any peer."""

    @property
    def metadata(self) -> CheckMetadata:
        return CheckMetadata(
            check_id="peer-restriction",
            title="Ingress/egress rules restrict peers or ports",
        )

    def evaluate(self, document: PolicyDocument, ctx: CheckContext) -> list[ValidationFinding]:
        if document.spec is None:
            return []
        findings: list[ValidationFinding] = []
        for direction, peer_fields, rules in (
            ("ingress", INGRESS_PEERS, document.spec.ingress or []),
            ("egress", EGRESS_PEERS, document.spec.egress or []),
        ):
            for index, rule in enumerate(rules):
                location = f"{direction}[{index}]"
                peers = {f: rule[f] for f in peer_fields if rule.get(f)}
                has_ports = any(rule.get(f) for f in PORT_FIELDS)
                wildcard = sorted(f for f, v in peers.items() if _is_wildcard_peer(f, v))

                if wildcard and not has_ports:
                    findings.append(
                        ctx.finding(
                            Severity.ERROR,
                            ReasonCode.UNRESTRICTED_WILDCARD_RULE,
                            f"{location} targets any peer via {', '.join(wildcard)}"
                            " with no port restriction",
                        )
                    )
                elif wildcard:
                    findings.append(
                        ctx.finding(
                            Severity.WARNING,
                            ReasonCode.BROAD_PEER_SELECTOR,
                            f"{location} targets any peer via {', '.join(wildcard)}",
                        )
                    )
                elif not peers and not has_ports:
                    findings.append(
                        ctx.finding(
                            Severity.WARNING,
                            ReasonCode.OVERLY_PERMISSIVE_RULE,
                            f"{location} has no peer selector, FQDN, CIDR or port restriction",
                        )
                    )
        return findings


@register_check
class CrossTenantCheck(ManifestCheck):
    @property
    def metadata(self) -> CheckMetadata:
        return CheckMetadata(
            check_id="cross-tenant",
            title="Endpoint selectors referencing another tenant's namespace",
        )

    def evaluate(self, document: PolicyDocument, ctx: CheckContext) -> list[ValidationFinding]:
        if document.spec is None or ctx.tenant is None:
            return []
        findings: list[ValidationFinding] = []
        for direction, field, rules in (
            ("ingress", "fromEndpoints", document.spec.ingress or []),
            ("egress", "toEndpoints", document.spec.egress or []),
        ):
            for index, rule in enumerate(rules):
                for selector in rule.get(field) or []:
                    if not isinstance(selector, dict):
                        continue
                    labels = selector.get("matchLabels") or {}
                    for label in NAMESPACE_LABELS:
                        other = labels.get(label)
                        if other and other != ctx.tenant:
                            findings.append(
                                ctx.finding(
                                    Severity.WARNING,
                                    ReasonCode.CROSS_TENANT_REFERENCE,
                                    f"{direction}[{index}] selects endpoints in namespace"
                                    f" '{other}' outside tenant '{ctx.tenant}'",
                                )
                            )
        return findings


# ── Entry point ────────────────────────────────────────────────────


def _non_empty(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _malformed(path: str, message: str, document_index: int = 0) -> list[ValidationFinding]:
    return [
        ValidationFinding(
            severity=Severity.ERROR,
            code=ReasonCode.MALFORMED_DOCUMENT,
            message=message,
            path=path,
            document_index=document_index,
        )
    ]


def parse_documents(content: str) -> list[Any]:
    """Parse every YAML document in ``content``; raises yaml.YAMLError."""
    return [doc for doc in yaml.safe_load_all(content) if doc is not None]


def validate(
    content: str,
    expected_kind: str | Sequence[str] = (),
    classification: Classification | None = None,
    path: str = "",
) -> list[ValidationFinding]:
    """Validate a policy manifest and return every finding.

    ``classification`` supplies the tier and tenant the tier-specific
    checks need; without it only tier-independent checks apply.
    """
    path = path or (classification.path if classification else "")
    expected = (expected_kind,) if isinstance(expected_kind, str) else tuple(expected_kind)

    try:
        raw_documents = parse_documents(content)
    except yaml.YAMLError as exc:
        logger.info("Malformed YAML in %s: %s", path, exc)
        return _malformed(path, f"YAML parse error: {exc}")
    if not raw_documents:
        return _malformed(path, "Document is empty")

    documents: list[PolicyDocument] = []
    for index, raw in enumerate(raw_documents):
        if not isinstance(raw, dict):
            return _malformed(path, f"Document {index} is not a mapping", index)
        try:
            documents.append(PolicyDocument.model_validate(raw))
        except ValidationError as exc:
            return _malformed(
                path,
                f"Document {index} has an invalid structure: {exc.error_count()} errors",
                index,
            )

    findings: list[ValidationFinding] = []
    for index, document in enumerate(documents):
        ctx = CheckContext(
            path=path,
            document_index=index,
            expected_kinds=expected,
            classification=classification,
        )
        for check in get_checks():
            findings.extend(check.evaluate(document, ctx))
    return findings
