"""Netgate API application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from netgate_api.config import settings
from netgate_api.routes import decisions, gate, health
from netgate_api.state import close_gate, init_gate

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup / shutdown lifecycle."""
    configure_logging(settings.api_log_level)
    init_gate()
    yield
    close_gate()


app = FastAPI(
    title="Netgate API",
    description="Merge gate for multi-tenant network policy repositories",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(decisions.router)
app.include_router(gate.router)
