"""Evaluate changesets and read back stored audit records."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from netgate_policy import Changeset, fault_decision, render

from netgate_api.audit_store import (
    RECORD_ID_PATTERN,
    AuditRecord,
    FileAuditStore,
    IntegrityError,
    NotFoundError,
)
from netgate_api.middleware.auth import TokenClaims, get_current_user, require_submitter
from netgate_api.state import GateState, get_audit_store, get_gate  # noqa: TC001

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/decisions", tags=["decisions"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_decision(
    changeset: Changeset,
    gate: GateState = Depends(get_gate),
    store: FileAuditStore = Depends(get_audit_store),
    user: TokenClaims = Depends(require_submitter),
) -> AuditRecord:
    """Evaluate a changeset, persist the rendered report and return it.

    A gate whose configuration failed to load still answers, with a
    blocking EngineFault report.
    """
    if gate.engine is None:
        decision = fault_decision(f"Gate configuration unavailable: {gate.config_error}")
        report = render(decision, changeset.id)
    else:
        report = await gate.engine.arun(changeset)

    record = AuditRecord(submitted_by=user.sub, report=report)
    store.save(record)
    logger.info(
        "Decision %s for changeset %s submitted by %s: %s",
        record.record_id,
        changeset.id,
        user.sub,
        report.outcome,
    )
    return record


@router.get("")
async def list_decisions(
    changeset_id: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    store: FileAuditStore = Depends(get_audit_store),
    user: TokenClaims = Depends(get_current_user),
) -> dict[str, object]:
    """List stored decisions, newest first."""
    records = store.list(changeset_id=changeset_id, limit=limit)
    return {
        "records": [r.model_dump(mode="json") for r in records],
        "count": len(records),
    }


@router.get("/{record_id}")
async def get_decision(
    record_id: str = Path(pattern=RECORD_ID_PATTERN),
    store: FileAuditStore = Depends(get_audit_store),
    user: TokenClaims = Depends(get_current_user),
) -> AuditRecord:
    """Fetch a stored decision, verifying its content hash."""
    try:
        return store.get(record_id)
    except NotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Decision {record_id} not found",
        ) from e
    except IntegrityError as e:
        logger.error("Audit record %s failed integrity check", record_id)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        ) from e
