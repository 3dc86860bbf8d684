"""Abstract source-control host with the fetch → evaluate → publish lifecycle."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from netgate_policy import AuditReport, Changeset, GateEngine

logger = logging.getLogger(__name__)


@dataclass
class PublishResult:
    """Summary of what a publish call changed on the host."""

    host_name: str
    labels_added: list[str] = field(default_factory=list)
    labels_removed: list[str] = field(default_factory=list)
    comment_id: int | None = None
    statuses: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class SourceControlHost(ABC):
    """Abstract interface that every host adapter implements.

    The host supplies changeset snapshots and receives rendered reports;
    it never decides anything itself.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique host identifier, e.g. 'github'."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Verify credentials and connectivity to the host."""

    @abstractmethod
    async def fetch_changeset(
        self, number: int, wants_content: Callable[[str], bool] | None = None
    ) -> Changeset:
        """Snapshot a change request: files, contents at head, approvals.

        ``wants_content`` selects which surviving paths have their content
        fetched; every non-deleted file is fetched when it is None.
        """

    @abstractmethod
    async def publish(
        self, number: int, report: AuditReport, head_sha: str | None = None
    ) -> PublishResult:
        """Apply a report's labels, comment and status checks."""

    async def check(self, engine: GateEngine, number: int, publish: bool = False) -> AuditReport:
        """Fetch a change request, evaluate it and optionally publish the result.

        This is the main entry point for CI use.
        """
        changeset = await self.fetch_changeset(number, wants_content=engine.wants_content)
        report = await engine.arun(changeset)
        logger.info(
            "Host %s change %s evaluated: %s (%d files)",
            self.name,
            changeset.id,
            report.outcome,
            len(changeset.files),
        )
        if publish:
            result = await self.publish(number, report, head_sha=changeset.head_sha)
            if result.errors:
                logger.warning("Publishing to %s had errors: %s", self.name, result.errors)
        return report
