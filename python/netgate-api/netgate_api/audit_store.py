"""Audit record storage — abstract interface + file-system implementation."""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from pathlib import Path
from uuid import uuid4

from netgate_policy.audit import AuditReport
from pydantic import BaseModel, Field, ValidationError

RECORD_ID_PATTERN = r"^[0-9a-f]{32}$"
_RECORD_ID = re.compile(RECORD_ID_PATTERN)

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base class for audit store errors."""


class NotFoundError(StoreError):
    """Audit record not found."""


class IntegrityError(StoreError):
    """Stored audit record failed integrity check."""


class AuditRecord(BaseModel):
    """A persisted decision report."""

    record_id: str = Field(default_factory=lambda: uuid4().hex)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    submitted_by: str = ""
    report: AuditReport


class AuditStore(ABC):
    """Abstract interface for audit record persistence backends."""

    @abstractmethod
    def save(self, record: AuditRecord) -> None:
        """Store a record."""

    @abstractmethod
    def get(self, record_id: str) -> AuditRecord:
        """Retrieve a record by ID, verifying integrity."""

    @abstractmethod
    def list(self, changeset_id: str | None = None, limit: int = 50) -> list[AuditRecord]:
        """List records, newest first."""


class FileAuditStore(AuditStore):
    """File-system backed audit store.

    Stores records as JSON files in a date-partitioned directory tree::

        {root}/YYYY/MM/DD/{record_id}.json
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _record_path(self, record: AuditRecord) -> Path:
        date_part = record.created_at.strftime("%Y/%m/%d")
        return self.root / date_part / f"{record.record_id}.json"

    def _find_path(self, record_id: str) -> Path:
        if not _RECORD_ID.match(record_id):
            raise NotFoundError(f"Audit record not found: {record_id}")
        for path in self.root.rglob(f"{record_id}.json"):
            return path
        raise NotFoundError(f"Audit record not found: {record_id}")

    def save(self, record: AuditRecord) -> None:
        path = self._record_path(record)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(record.model_dump(mode="json"), indent=2))

    def get(self, record_id: str) -> AuditRecord:
        path = self._find_path(record_id)
        record = AuditRecord.model_validate(json.loads(path.read_text()))
        if not record.report.verify_integrity():
            raise IntegrityError(f"Integrity check failed for audit record {record_id}")
        return record

    def list(self, changeset_id: str | None = None, limit: int = 50) -> list[AuditRecord]:
        results: list[AuditRecord] = []
        for path in self.root.rglob("*.json"):
            try:
                record = AuditRecord.model_validate(json.loads(path.read_text()))
            except (OSError, json.JSONDecodeError, ValidationError) as exc:
                logger.warning("Skipping unreadable audit record %s: %s", path, exc)
                continue
            if changeset_id and record.report.changeset_id != changeset_id:
                continue
            results.append(record)

        results.sort(key=lambda r: r.created_at, reverse=True)
        return results[:limit]
