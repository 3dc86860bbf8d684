"""Tests for the file-system audit store."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from netgate_api.audit_store import (
    AuditRecord,
    FileAuditStore,
    IntegrityError,
    NotFoundError,
)
from netgate_policy import Decision, Outcome, fault_decision, render


def _record(changeset_id: str, created_at: datetime | None = None) -> AuditRecord:
    report = render(Decision(outcome=Outcome.AUTO_APPROVE), changeset_id)
    if created_at is None:
        return AuditRecord(submitted_by="ci-runner", report=report)
    return AuditRecord(submitted_by="ci-runner", report=report, created_at=created_at)


def test_save_and_get(tmp_path: Path) -> None:
    store = FileAuditStore(tmp_path)
    record = _record("acme/np#1", datetime(2026, 3, 1, 12, tzinfo=UTC))
    store.save(record)

    assert (tmp_path / "2026" / "03" / "01" / f"{record.record_id}.json").exists()
    loaded = store.get(record.record_id)
    assert loaded == record


def test_get_unknown_record(tmp_path: Path) -> None:
    with pytest.raises(NotFoundError):
        FileAuditStore(tmp_path).get("f" * 32)


@pytest.mark.parametrize("record_id", ["../../etc/passwd", "*", "ABC", ""])
def test_get_rejects_malformed_ids(tmp_path: Path, record_id: str) -> None:
    with pytest.raises(NotFoundError):
        FileAuditStore(tmp_path).get(record_id)


def test_tampered_record_fails_integrity(tmp_path: Path) -> None:
    store = FileAuditStore(tmp_path)
    record = AuditRecord(report=render(fault_decision("boom"), "acme/np#2"))
    store.save(record)

    path = next(tmp_path.rglob(f"{record.record_id}.json"))
    raw = json.loads(path.read_text())
    raw["report"]["payload"]["reasons"] = []
    path.write_text(json.dumps(raw))

    with pytest.raises(IntegrityError):
        store.get(record.record_id)


def test_list_newest_first_with_filter_and_limit(tmp_path: Path) -> None:
    store = FileAuditStore(tmp_path)
    start = datetime(2026, 3, 1, tzinfo=UTC)
    for day in range(4):
        store.save(_record("acme/np#1" if day % 2 else "acme/np#2", start + timedelta(days=day)))

    everything = store.list()
    assert [r.created_at.day for r in everything] == [4, 3, 2, 1]

    only_one = store.list(changeset_id="acme/np#1")
    assert [r.created_at.day for r in only_one] == [4, 2]

    assert len(store.list(limit=1)) == 1


def test_list_skips_unreadable_records(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    store = FileAuditStore(tmp_path)
    record = _record("acme/np#1")
    store.save(record)
    corrupt = tmp_path / "2026" / "01" / "01"
    corrupt.mkdir(parents=True)
    (corrupt / f"{'0' * 32}.json").write_text("{not json")
    (corrupt / f"{'1' * 32}.json").write_text(json.dumps({"record_id": "x"}))

    with caplog.at_level("WARNING", logger="netgate_api.audit_store"):
        records = store.list()

    assert [r.record_id for r in records] == [record.record_id]
    assert caplog.text.count("Skipping unreadable audit record") == 2


def test_list_empty_store(tmp_path: Path) -> None:
    assert FileAuditStore(tmp_path / "fresh").list() == []
