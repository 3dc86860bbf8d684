"""GitHub host adapter — pull requests, reviews and statuses.

Talks to the GitHub REST API directly with httpx; no SDK is needed.
Approvals are taken from each reviewer's latest non-comment review, and
the reviewer's roles come from the injected membership table, never
from GitHub itself.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx
from netgate_policy import Actor, ChangedFile, ChangeKind, Changeset, RecordedApproval

from netgate_connectors.base import PublishResult, SourceControlHost
from netgate_connectors.credentials import GitHubCredentials
from netgate_connectors.membership import RoleMembership
from netgate_connectors.retry import HostError, RateLimiter, raise_for_status, with_retry

if TYPE_CHECKING:
    from collections.abc import Callable

    from netgate_policy import AuditReport

logger = logging.getLogger(__name__)

PER_PAGE = 100
COMMENT_MARKER = "<!-- netgate:decision -->"
STATUS_DESCRIPTION_LIMIT = 140

FILE_STATUS_KINDS: dict[str, ChangeKind] = {
    "added": ChangeKind.ADDED,
    "copied": ChangeKind.ADDED,
    "removed": ChangeKind.DELETED,
    "renamed": ChangeKind.RENAMED,
    "modified": ChangeKind.MODIFIED,
    "changed": ChangeKind.MODIFIED,
}

# Review states that carry no verdict and so never supersede an approval.
NON_VERDICT_STATES = frozenset({"COMMENTED", "PENDING"})


def is_gate_label(name: str) -> bool:
    """Labels the gate owns and may remove when the decision changes."""
    return (
        name == "auto-approved"
        or name.startswith("blocked:")
        or (name.startswith("needs-") and name.endswith("-review"))
    )


class GitHubHost(SourceControlHost):
    """Pull-request adapter for one ``owner/name`` repository."""

    def __init__(
        self,
        repo: str,
        credentials: GitHubCredentials | None = None,
        membership: RoleMembership | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        calls_per_second: float = 10.0,
    ) -> None:
        owner, sep, name = repo.partition("/")
        if not (owner and sep and name) or "/" in name:
            raise ValueError(f"Repository must be 'owner/name', got {repo!r}")
        self.repo = repo
        self._creds = credentials or GitHubCredentials.from_env()
        self._membership = membership or RoleMembership()
        self._transport = transport
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._limiter = RateLimiter(calls_per_second=calls_per_second)

    @property
    def name(self) -> str:
        return "github"

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self._creds.token:
            headers["Authorization"] = f"Bearer {self._creds.token}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._creds.api_url,
            headers=self._headers(),
            timeout=30.0,
            transport=self._transport,
        )

    # ── HTTP plumbing ─────────────────────────────────────────────

    async def _send(
        self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any
    ) -> httpx.Response:
        await self._limiter.acquire()
        response = await client.request(method, url, **kwargs)
        raise_for_status(response)
        return response

    async def _request(
        self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any
    ) -> httpx.Response:
        return await with_retry(
            self._send,
            client,
            method,
            url,
            max_attempts=self._max_attempts,
            base_delay=self._base_delay,
            **kwargs,
        )

    async def _paginate(
        self, client: httpx.AsyncClient, url: str
    ) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        page = 1
        while True:
            response = await self._request(
                client, "GET", url, params={"per_page": PER_PAGE, "page": page}
            )
            batch = response.json()
            items.extend(batch)
            if len(batch) < PER_PAGE:
                return items
            page += 1

    async def health_check(self) -> bool:
        """Verify the token can read the repository."""
        if not self._creds.token:
            return False
        try:
            async with self._client() as client:
                await self._request(client, "GET", f"/repos/{self.repo}")
        except HostError as exc:
            logger.warning("GitHub health check failed for %s: %s", self.repo, exc)
            return False
        return True

    # ── Fetch ─────────────────────────────────────────────────────

    async def fetch_changeset(
        self, number: int, wants_content: Callable[[str], bool] | None = None
    ) -> Changeset:
        """Snapshot pull request ``number`` at its current head."""
        base = f"/repos/{self.repo}/pulls/{number}"
        async with self._client() as client:
            pr = (await self._request(client, "GET", base)).json()
            head_sha = pr["head"]["sha"]
            author = pr["user"]["login"]

            raw_files = await self._paginate(client, f"{base}/files")
            files = [self._changed_file(raw) for raw in raw_files]
            contents: dict[str, str] = {}
            for file in files:
                if file.change_kind == ChangeKind.DELETED:
                    continue
                if wants_content is not None and not wants_content(file.path):
                    continue
                text = await self._fetch_content(client, file.path, head_sha)
                if text is not None:
                    contents[file.path] = text

            reviews = await self._paginate(client, f"{base}/reviews")

        changeset = Changeset(
            id=f"{self.repo}#{number}",
            head_sha=head_sha,
            actor=Actor(id=author, roles=self._membership.roles_for(author)),
            files=tuple(files),
            contents=contents,
            approvals=tuple(self._approvals(reviews)),
        )
        logger.info(
            "Fetched %s: %d files, %d contents, %d approvals",
            changeset.id,
            len(changeset.files),
            len(contents),
            len(changeset.approvals),
        )
        return changeset

    @staticmethod
    def _changed_file(raw: dict[str, Any]) -> ChangedFile:
        kind = FILE_STATUS_KINDS.get(raw.get("status", ""), ChangeKind.MODIFIED)
        previous = raw.get("previous_filename") if kind == ChangeKind.RENAMED else None
        return ChangedFile(path=raw["filename"], change_kind=kind, previous_path=previous)

    async def _fetch_content(
        self, client: httpx.AsyncClient, path: str, ref: str
    ) -> str | None:
        """Raw file text at ``ref``; None when GitHub has no such blob."""
        try:
            response = await self._request(
                client,
                "GET",
                f"/repos/{self.repo}/contents/{quote(path)}",
                params={"ref": ref},
                headers={"Accept": "application/vnd.github.raw"},
            )
        except HostError as exc:
            if exc.status_code == 404:
                logger.warning("No content for %s at %s", path, ref[:12])
                return None
            raise
        return response.text

    def _approvals(self, reviews: list[dict[str, Any]]) -> list[RecordedApproval]:
        latest: dict[str, dict[str, Any]] = {}
        for review in sorted(reviews, key=lambda r: r.get("submitted_at") or ""):
            login = (review.get("user") or {}).get("login")
            if not login or review.get("state") in NON_VERDICT_STATES:
                continue
            latest[login] = review

        approvals: list[RecordedApproval] = []
        for login, review in sorted(latest.items()):
            if review.get("state") != "APPROVED":
                continue
            for role in sorted(self._membership.roles_for(login)):
                approvals.append(
                    RecordedApproval(
                        role=role,
                        actor_id=login,
                        timestamp=review["submitted_at"],
                        commit_sha=review.get("commit_id"),
                    )
                )
        return approvals

    # ── Publish ───────────────────────────────────────────────────

    async def publish(
        self, number: int, report: AuditReport, head_sha: str | None = None
    ) -> PublishResult:
        """Apply labels, upsert the decision comment and post commit statuses.

        Each step is attempted independently; failures are collected in
        ``PublishResult.errors``.
        """
        result = PublishResult(host_name=self.name)
        async with self._client() as client:
            for step in (self._sync_labels, self._upsert_comment):
                try:
                    await step(client, number, report, result)
                except HostError as exc:
                    logger.error("Publishing %s to PR %d failed: %s", step.__name__, number, exc)
                    result.errors.append(f"{step.__name__}: {exc}")
            if head_sha:
                try:
                    await self._post_statuses(client, head_sha, report, result)
                except HostError as exc:
                    logger.error("Posting statuses for %s failed: %s", head_sha[:12], exc)
                    result.errors.append(f"_post_statuses: {exc}")
        return result

    async def _sync_labels(
        self,
        client: httpx.AsyncClient,
        number: int,
        report: AuditReport,
        result: PublishResult,
    ) -> None:
        url = f"/repos/{self.repo}/issues/{number}/labels"
        current = {label["name"] for label in await self._paginate(client, url)}
        wanted = set(report.labels)

        for stale in sorted(n for n in current if is_gate_label(n) and n not in wanted):
            await self._request(client, "DELETE", f"{url}/{quote(stale, safe='')}")
            result.labels_removed.append(stale)

        missing = [label for label in report.labels if label not in current]
        if missing:
            await self._request(client, "POST", url, json={"labels": missing})
            result.labels_added.extend(missing)

    async def _upsert_comment(
        self,
        client: httpx.AsyncClient,
        number: int,
        report: AuditReport,
        result: PublishResult,
    ) -> None:
        body = f"{COMMENT_MARKER}\n{report.comment_body}"
        url = f"/repos/{self.repo}/issues/{number}/comments"
        comments = await self._paginate(client, url)
        existing = next((c for c in comments if COMMENT_MARKER in (c.get("body") or "")), None)
        if existing is not None:
            response = await self._request(
                client,
                "PATCH",
                f"/repos/{self.repo}/issues/comments/{existing['id']}",
                json={"body": body},
            )
        else:
            response = await self._request(client, "POST", url, json={"body": body})
        result.comment_id = response.json().get("id")

    async def _post_statuses(
        self,
        client: httpx.AsyncClient,
        head_sha: str,
        report: AuditReport,
        result: PublishResult,
    ) -> None:
        for check in report.status_checks:
            await self._request(
                client,
                "POST",
                f"/repos/{self.repo}/statuses/{head_sha}",
                json={
                    "state": str(check.state),
                    "context": check.name,
                    "description": check.description[:STATUS_DESCRIPTION_LIMIT],
                },
            )
            result.statuses.append(check.name)
