"""Health check endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from netgate_api.state import GateState, get_gate  # noqa: TC001

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(gate: GateState = Depends(get_gate)) -> dict[str, object]:
    """Basic health check; ``degraded`` when the gate config failed to load."""
    body: dict[str, object] = {
        "status": "ok" if gate.engine is not None else "degraded",
        "service": "netgate-api",
    }
    if gate.config_error:
        body["detail"] = gate.config_error
    return body
