"""Gate table endpoints: inspect the tier rules and classify paths."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, status
from netgate_policy import Classification, ClassificationError
from pydantic import BaseModel, Field

from netgate_api.middleware.auth import TokenClaims, get_current_user
from netgate_api.state import GateState, get_gate  # noqa: TC001

if TYPE_CHECKING:
    from netgate_policy import GateEngine

router = APIRouter(tags=["gate"])


class ClassifyRequest(BaseModel):
    paths: list[str] = Field(min_length=1, max_length=1000)


class ClassifyResult(BaseModel):
    path: str
    classification: Classification | None = None
    error: ClassificationError | None = None


def _require_engine(gate: GateState) -> GateEngine:
    if gate.engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Gate configuration unavailable: {gate.config_error}",
        )
    return gate.engine


@router.get("/config/tier-rules")
async def tier_rules(
    gate: GateState = Depends(get_gate),
    user: TokenClaims = Depends(get_current_user),
) -> dict[str, object]:
    """The loaded tier table, in match order."""
    config = _require_engine(gate).config
    return {
        "tenants": sorted(config.tenant_ids),
        "tier_rules": [rule.model_dump(mode="json") for rule in config.tier_rules],
        "approval_roles": {str(k): v for k, v in config.approval_roles.items()},
        "default_reviewer_role": config.default_reviewer_role,
    }


@router.post("/classify")
async def classify_paths(
    body: ClassifyRequest,
    gate: GateState = Depends(get_gate),
    user: TokenClaims = Depends(get_current_user),
) -> list[ClassifyResult]:
    """Classify each path against the loaded tier table."""
    engine = _require_engine(gate)
    results: list[ClassifyResult] = []
    for path in body.paths:
        outcome = engine.classify(path)
        if isinstance(outcome, ClassificationError):
            results.append(ClassifyResult(path=path, error=outcome))
        else:
            results.append(ClassifyResult(path=path, classification=outcome))
    return results
