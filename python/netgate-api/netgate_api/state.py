"""Process-wide gate state: the loaded engine and the audit store."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from netgate_policy import ConfigError, GateEngine, default_config

from netgate_api.audit_store import FileAuditStore
from netgate_api.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GateState:
    """The engine, or the reason it could not be built."""

    engine: GateEngine | None
    config_error: str | None = None


# ── Gate state ────────────────────────────────────────────────────

_gate: GateState | None = None
_store: FileAuditStore | None = None


def load_gate(config_path: str | None = None) -> GateState:
    """Build the engine from ``config_path`` or the built-in tier table."""
    if not config_path:
        logger.warning("GATE_CONFIG_PATH not set, using the built-in tier table")
        return GateState(engine=GateEngine(default_config()))
    try:
        engine = GateEngine.from_path(config_path)
    except ConfigError as exc:
        logger.error("Gate config unusable, every decision will block: %s", exc)
        return GateState(engine=None, config_error=str(exc))
    logger.info("Gate config loaded from %s", config_path)
    return GateState(engine=engine)


def init_gate() -> None:
    """Load the gate table and open the audit store. Called on app startup."""
    global _gate, _store  # noqa: PLW0603

    _gate = load_gate(settings.gate_config_path)
    _store = FileAuditStore(settings.audit_store_dir)
    logger.info("Audit store at %s", settings.audit_store_dir)


def close_gate() -> None:
    """Drop gate state. Called on app shutdown."""
    global _gate, _store  # noqa: PLW0603

    _gate, _store = None, None


def get_gate() -> GateState:
    """FastAPI dependency returning the current gate state."""
    global _gate  # noqa: PLW0603

    if _gate is None:
        _gate = load_gate(settings.gate_config_path)
    return _gate


def get_audit_store() -> FileAuditStore:
    """FastAPI dependency returning the audit store."""
    global _store  # noqa: PLW0603

    if _store is None:
        _store = FileAuditStore(settings.audit_store_dir)
    return _store
