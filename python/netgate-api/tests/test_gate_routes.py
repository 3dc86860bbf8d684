"""Tests for tier table and classification routes."""

from __future__ import annotations

from collections.abc import Iterator

import httpx
import pytest
from netgate_api.main import app
from netgate_api.middleware.auth import create_token
from netgate_api.state import GateState, get_gate
from netgate_policy import GateEngine, default_config


@pytest.fixture
def client() -> Iterator[httpx.AsyncClient]:
    app.dependency_overrides[get_gate] = lambda: GateState(engine=GateEngine(default_config()))
    transport = httpx.ASGITransport(app=app)  # type: ignore[arg-type]
    yield httpx.AsyncClient(transport=transport, base_url="http://test")
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict[str, str]:
    token = create_token(sub="test-user")
    return {"Authorization": f"Bearer {token}"}


@pytest.mark.asyncio
async def test_tier_rules_structure(
    client: httpx.AsyncClient,
    auth_headers: dict[str, str],
) -> None:
    response = await client.get("/config/tier-rules", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["tenants"] == ["tenant-a", "tenant-b"]
    assert data["default_reviewer_role"] == "security"
    assert data["approval_roles"] == {"base": "security", "external": "security"}
    first = data["tier_rules"][0]
    assert first["path_prefix"] == "{tenant}/policies/00-base/"
    assert first["tier"] == "base"
    assert first["owning_role"] == "security"
    assert first["auto_approvable"] is False


@pytest.mark.asyncio
async def test_classify_paths(
    client: httpx.AsyncClient,
    auth_headers: dict[str, str],
) -> None:
    response = await client.post(
        "/classify",
        json={
            "paths": [
                "tenant-a/policies/20-external/stripe.yaml",
                "tenant-z/policies/10-internal/x.yaml",
                "docs/README.md",
            ]
        },
        headers=auth_headers,
    )
    assert response.status_code == 200
    external, unknown, unclassified = response.json()

    assert external["error"] is None
    assert external["classification"]["tier"] == "external"
    assert external["classification"]["tenant"] == "tenant-a"
    assert external["classification"]["requires_approval"] == "security"

    assert unknown["classification"] is None
    assert unknown["error"]["code"] == "UnknownTenant"
    assert unclassified["error"]["code"] == "UnclassifiedPath"


@pytest.mark.asyncio
async def test_classify_requires_paths(
    client: httpx.AsyncClient,
    auth_headers: dict[str, str],
) -> None:
    response = await client.post("/classify", json={"paths": []}, headers=auth_headers)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_gate_routes_unavailable_without_config(
    client: httpx.AsyncClient,
    auth_headers: dict[str, str],
) -> None:
    app.dependency_overrides[get_gate] = lambda: GateState(engine=None, config_error="bad yaml")
    response = await client.get("/config/tier-rules", headers=auth_headers)
    assert response.status_code == 503
    assert "bad yaml" in response.json()["detail"]

    response = await client.post(
        "/classify", json={"paths": ["tenant-a/apps/x.yaml"]}, headers=auth_headers
    )
    assert response.status_code == 503
