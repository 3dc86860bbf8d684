"""GitHub host adapter tests using httpx.MockTransport."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest
from netgate_connectors.credentials import GitHubCredentials
from netgate_connectors.github import COMMENT_MARKER, GitHubHost, is_gate_label
from netgate_connectors.membership import RoleMembership
from netgate_connectors.retry import HostError
from netgate_policy import ChangeKind, GateEngine, Outcome, default_config

REPO = "acme/network-policies"
HEAD = "a" * 40
OLD = "b" * 40

INTERNAL_POLICY = """\
apiVersion: cilium.io/v2
kind: CiliumNetworkPolicy
metadata:
  name: api-to-cache
  namespace: tenant-b
spec:
  endpointSelector:
    matchLabels: {app: api}
  egress:
    - toEndpoints:
        - matchLabels: {app: cache}
      toPorts:
        - ports: [{port: "6379", protocol: TCP}]
"""

MEMBERSHIP = RoleMembership(
    roles={"security": frozenset({"sec-lead"}), "dev": frozenset({"dev-1", "dev-2"})},
)


class FakeGitHub:
    """Routes requests to canned GitHub responses and records writes."""

    def __init__(
        self,
        files: list[dict[str, Any]],
        reviews: list[dict[str, Any]] | None = None,
        contents: dict[str, str] | None = None,
        labels: list[str] | None = None,
        comments: list[dict[str, Any]] | None = None,
    ) -> None:
        self.files = files
        self.reviews = reviews or []
        self.contents = contents or {}
        self.labels = labels or []
        self.comments = comments or []
        self.writes: list[tuple[str, str, Any]] = []
        self.content_refs: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        prefix = f"/repos/{REPO}"
        if request.method != "GET":
            body = json.loads(request.content) if request.content else None
            self.writes.append((request.method, path, body))
            return httpx.Response(201 if request.method == "POST" else 200, json={"id": 99})

        if path == f"{prefix}/pulls/7":
            return httpx.Response(
                200, json={"number": 7, "head": {"sha": HEAD}, "user": {"login": "dev-1"}}
            )
        if path == f"{prefix}/pulls/7/files":
            return httpx.Response(200, json=self.files)
        if path == f"{prefix}/pulls/7/reviews":
            return httpx.Response(200, json=self.reviews)
        if path == f"{prefix}/issues/7/labels":
            return httpx.Response(200, json=[{"name": n} for n in self.labels])
        if path == f"{prefix}/issues/7/comments":
            return httpx.Response(200, json=self.comments)
        if path.startswith(f"{prefix}/contents/"):
            self.content_refs.append(request.url.params["ref"])
            file_path = path.removeprefix(f"{prefix}/contents/")
            if file_path in self.contents:
                return httpx.Response(200, text=self.contents[file_path])
            return httpx.Response(404, json={"message": "Not Found"})
        return httpx.Response(404, json={"message": "Not Found"})


def _host(fake: FakeGitHub) -> GitHubHost:
    return GitHubHost(
        REPO,
        credentials=GitHubCredentials(token="test-token"),
        membership=MEMBERSHIP,
        transport=httpx.MockTransport(fake),
        base_delay=0.0,
        calls_per_second=10_000.0,
    )


def _review(login: str, state: str, at: str, commit: str = HEAD) -> dict[str, Any]:
    return {"user": {"login": login}, "state": state, "submitted_at": at, "commit_id": commit}


def test_repo_must_be_owner_and_name() -> None:
    with pytest.raises(ValueError):
        GitHubHost("just-a-name", credentials=GitHubCredentials(token="t"))


def test_gate_labels_are_recognized() -> None:
    assert is_gate_label("auto-approved")
    assert is_gate_label("blocked:validation")
    assert is_gate_label("needs-security-review")
    assert not is_gate_label("needs-triage")
    assert not is_gate_label("bug")


# ── Fetch ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_fetch_changeset_maps_files_and_contents() -> None:
    path = "tenant-b/policies/10-internal/api-to-cache.yaml"
    fake = FakeGitHub(
        files=[
            {"filename": path, "status": "added"},
            {"filename": "tenant-b/apps/README.md", "status": "modified"},
            {
                "filename": "tenant-b/policies/10-internal/new.yaml",
                "status": "renamed",
                "previous_filename": "tenant-b/policies/10-internal/old.yaml",
            },
            {"filename": "tenant-b/policies/10-internal/gone.yaml", "status": "removed"},
        ],
        contents={path: INTERNAL_POLICY},
    )
    engine = GateEngine(default_config())
    changeset = await _host(fake).fetch_changeset(7, wants_content=engine.wants_content)

    assert changeset.id == f"{REPO}#7"
    assert changeset.head_sha == HEAD
    assert changeset.actor.id == "dev-1"
    assert changeset.actor.roles == frozenset({"dev"})
    kinds = [f.change_kind for f in changeset.files]
    assert kinds == [ChangeKind.ADDED, ChangeKind.MODIFIED, ChangeKind.RENAMED, ChangeKind.DELETED]
    assert changeset.files[2].previous_path == "tenant-b/policies/10-internal/old.yaml"
    # Only surviving policy files are fetched, always at the head commit.
    assert changeset.contents == {path: INTERNAL_POLICY}
    assert set(fake.content_refs) == {HEAD}
    assert len(fake.content_refs) == 2


@pytest.mark.asyncio
async def test_fetch_changeset_fetches_policy_files_of_any_extension() -> None:
    json_path = "tenant-b/policies/10-internal/x.json"
    bare_path = "tenant-b/policies/10-internal/policy"
    fake = FakeGitHub(
        files=[
            {"filename": json_path, "status": "added"},
            {"filename": bare_path, "status": "added"},
            {"filename": "tenant-b/apps/values.yaml", "status": "modified"},
        ],
        contents={json_path: '{"kind": "CiliumNetworkPolicy"}', bare_path: INTERNAL_POLICY},
    )
    engine = GateEngine(default_config())
    changeset = await _host(fake).fetch_changeset(7, wants_content=engine.wants_content)

    assert set(changeset.contents) == {json_path, bare_path}


@pytest.mark.asyncio
async def test_fetch_changeset_without_selector_fetches_every_surviving_file() -> None:
    fake = FakeGitHub(
        files=[
            {"filename": "tenant-b/apps/README.md", "status": "modified"},
            {"filename": "tenant-b/policies/10-internal/gone.yaml", "status": "removed"},
        ],
        contents={"tenant-b/apps/README.md": "# app"},
    )
    changeset = await _host(fake).fetch_changeset(7)

    assert changeset.contents == {"tenant-b/apps/README.md": "# app"}
    assert len(fake.content_refs) == 1


@pytest.mark.asyncio
async def test_latest_review_per_reviewer_wins() -> None:
    fake = FakeGitHub(
        files=[],
        reviews=[
            _review("sec-lead", "APPROVED", "2026-03-01T10:00:00Z", OLD),
            _review("sec-lead", "COMMENTED", "2026-03-01T11:00:00Z"),
            _review("dev-2", "APPROVED", "2026-03-01T09:00:00Z"),
            _review("dev-2", "CHANGES_REQUESTED", "2026-03-01T12:00:00Z"),
            _review("outsider", "APPROVED", "2026-03-01T12:00:00Z"),
        ],
    )
    changeset = await _host(fake).fetch_changeset(7)

    assert [(a.actor_id, a.role) for a in changeset.approvals] == [("sec-lead", "security")]
    assert changeset.approvals[0].commit_sha == OLD


@pytest.mark.asyncio
async def test_fetch_raises_host_error_on_client_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"message": "Forbidden"})

    host = GitHubHost(
        REPO,
        credentials=GitHubCredentials(token="t"),
        transport=httpx.MockTransport(handler),
        calls_per_second=10_000.0,
    )
    with pytest.raises(HostError) as info:
        await host.fetch_changeset(7)
    assert info.value.status_code == 403


@pytest.mark.asyncio
async def test_transient_errors_are_retried() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls < 3:
            return httpx.Response(502)
        return httpx.Response(200, json={"full_name": REPO})

    host = GitHubHost(
        REPO,
        credentials=GitHubCredentials(token="t"),
        transport=httpx.MockTransport(handler),
        base_delay=0.0,
        calls_per_second=10_000.0,
    )
    assert await host.health_check() is True
    assert calls == 3


@pytest.mark.asyncio
async def test_health_check_without_token() -> None:
    host = GitHubHost(REPO, credentials=GitHubCredentials(token=""))
    assert await host.health_check() is False


# ── Check and publish ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_check_and_publish_auto_approved_change() -> None:
    path = "tenant-b/policies/10-internal/api-to-cache.yaml"
    fake = FakeGitHub(
        files=[{"filename": path, "status": "modified"}],
        contents={path: INTERNAL_POLICY},
        labels=["needs-security-review", "bug"],
    )
    host = _host(fake)
    report = await host.check(GateEngine(default_config()), 7, publish=True)

    assert report.outcome == Outcome.AUTO_APPROVE
    prefix = f"/repos/{REPO}"
    methods = [(method, path) for method, path, _ in fake.writes]
    assert ("DELETE", f"{prefix}/issues/7/labels/needs-security-review") in methods
    assert ("POST", f"{prefix}/issues/7/labels") in methods
    assert ("POST", f"{prefix}/issues/7/comments") in methods

    label_body = next(b for m, p, b in fake.writes if p.endswith("/labels") and m == "POST")
    assert label_body == {"labels": ["auto-approved"]}
    statuses = [b for m, p, b in fake.writes if p == f"{prefix}/statuses/{HEAD}"]
    assert [s["context"] for s in statuses] == [c.name for c in report.status_checks]
    assert statuses[0]["state"] == "success"


@pytest.mark.asyncio
async def test_check_validates_json_policy_file() -> None:
    path = "tenant-b/policies/10-internal/x.json"
    policy = {
        "apiVersion": "cilium.io/v2",
        "kind": "CiliumNetworkPolicy",
        "metadata": {"name": "x", "namespace": "tenant-a"},
        "spec": {
            "endpointSelector": {"matchLabels": {"app": "api"}},
            "egress": [{"toEndpoints": [{"matchLabels": {"app": "cache"}}]}],
        },
    }
    fake = FakeGitHub(
        files=[{"filename": path, "status": "added"}],
        contents={path: json.dumps(policy)},
    )
    report = await _host(fake).check(GateEngine(default_config()), 7)

    assert report.outcome == Outcome.BLOCK
    assert "NamespaceTenantMismatch" in report.payload["reason_codes"]


@pytest.mark.asyncio
async def test_publish_updates_existing_comment() -> None:
    fake = FakeGitHub(
        files=[{"filename": "tenant-a/policies/00-base/deny.yaml", "status": "modified"}],
        comments=[{"id": 41, "body": f"{COMMENT_MARKER}\nold decision"}],
    )
    host = _host(fake)
    report = await host.check(GateEngine(default_config()), 7)
    result = await host.publish(7, report)

    assert report.outcome == Outcome.BLOCK
    assert ("PATCH", f"/repos/{REPO}/issues/comments/41") in [(m, p) for m, p, _ in fake.writes]
    # Content 404s, so the base file is also malformed.
    assert result.labels_added == ["blocked:base-policy", "blocked:validation"]
    # No head sha given: statuses are not posted.
    assert result.statuses == []
    assert result.errors == []


@pytest.mark.asyncio
async def test_publish_collects_step_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json=[])
        return httpx.Response(422, json={"message": "Validation Failed"})

    host = GitHubHost(
        REPO,
        credentials=GitHubCredentials(token="t"),
        transport=httpx.MockTransport(handler),
        calls_per_second=10_000.0,
    )
    report = await GateEngine(default_config()).arun(
        await _host(FakeGitHub(files=[])).fetch_changeset(7)
    )
    result = await host.publish(7, report, head_sha=HEAD)

    assert len(result.errors) == 3
    assert result.labels_added == []
