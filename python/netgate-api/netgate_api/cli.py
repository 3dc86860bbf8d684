"""Command-line entry point for CI pipelines.

Exit codes follow the decision: 0 auto-approve, 3 approval required,
2 blocked (including any failure to evaluate).
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Literal, NoReturn

import typer
from netgate_policy import (
    AuditReport,
    Changeset,
    ClassificationError,
    Outcome,
    fault_decision,
    render,
)
from pydantic import ValidationError

from netgate_api.config import settings
from netgate_api.main import configure_logging
from netgate_api.state import GateState, load_gate

logger = logging.getLogger(__name__)

app = typer.Typer(help="Network policy merge gate")

EXIT_CODES: dict[Outcome, int] = {
    Outcome.AUTO_APPROVE: 0,
    Outcome.REQUIRE_APPROVAL: 3,
    Outcome.BLOCK: 2,
}
_CONFIG_OPTION = typer.Option(
    None,
    "--config",
    help="Gate config YAML (defaults to GATE_CONFIG_PATH, then the built-in table)",
)
_FORMAT_OPTION = typer.Option(
    "markdown",
    "--format",
    help="Report output format: json|markdown",
    show_default=True,
)


@app.callback()
def main(
    log_level: str = typer.Option("warning", "--log-level", help="Python logging level"),
) -> None:
    """Network policy merge gate."""
    configure_logging(log_level)


def _gate(config: Path | None) -> GateState:
    return load_gate(str(config) if config else settings.gate_config_path)


def _emit(report: AuditReport, output_format: str) -> None:
    if output_format == "json":
        typer.echo(report.model_dump_json(indent=2))
    else:
        typer.echo(report.comment_body)


def _fault(message: str, changeset_id: str, output_format: str) -> NoReturn:
    _emit(render(fault_decision(message), changeset_id), output_format)
    raise typer.Exit(code=EXIT_CODES[Outcome.BLOCK])


@app.command()
def evaluate(
    changeset: Path = typer.Argument(..., help="Changeset JSON file"),
    config: Path | None = _CONFIG_OPTION,
    format: Literal["json", "markdown"] = _FORMAT_OPTION,
) -> None:
    """Evaluate a changeset file and print the audit report."""
    try:
        snapshot = Changeset.model_validate_json(changeset.read_text())
    except (OSError, ValidationError) as exc:
        _fault(f"Changeset {changeset} could not be read: {exc}", "", format)

    gate = _gate(config)
    if gate.engine is None:
        _fault(f"Gate configuration unavailable: {gate.config_error}", snapshot.id, format)

    report = gate.engine.run(snapshot)
    _emit(report, format)
    raise typer.Exit(code=EXIT_CODES[report.outcome])


@app.command()
def classify(
    paths: list[str] = typer.Argument(..., help="Repository-relative paths"),
    config: Path | None = _CONFIG_OPTION,
    format: Literal["json", "text"] = typer.Option("text", "--format", show_default=True),
) -> None:
    """Classify paths against the tier table. Exits 2 if any path is unclassifiable."""
    gate = _gate(config)
    if gate.engine is None:
        typer.echo(f"gate configuration unavailable: {gate.config_error}", err=True)
        raise typer.Exit(code=2)

    results = [gate.engine.classify(p) for p in paths]
    if format == "json":
        typer.echo(json.dumps([r.model_dump(mode="json") for r in results], indent=2))
    else:
        for result in results:
            if isinstance(result, ClassificationError):
                typer.echo(f"{result.path}\t{result.code}\t{result.message}")
            else:
                typer.echo(
                    f"{result.path}\t{result.tier}\t{result.tenant or '-'}\t{result.rule_prefix}"
                )
    if any(isinstance(r, ClassificationError) for r in results):
        raise typer.Exit(code=2)


@app.command("check-pr")
def check_pr(
    repo: str = typer.Option(..., "--repo", help="GitHub repository, owner/name"),
    pr: int = typer.Option(..., "--pr", help="Pull request number"),
    members: Path | None = typer.Option(None, "--members", help="Role membership YAML"),
    config: Path | None = _CONFIG_OPTION,
    publish: bool = typer.Option(False, "--publish", help="Apply labels, comment and statuses"),
    format: Literal["json", "markdown"] = _FORMAT_OPTION,
) -> None:
    """Fetch a GitHub pull request, evaluate it and optionally publish the decision."""
    from netgate_connectors.credentials import GitHubCredentials
    from netgate_connectors.github import GitHubHost
    from netgate_connectors.membership import MembershipError, RoleMembership, load_membership
    from netgate_connectors.retry import HostError

    changeset_id = f"{repo}#{pr}"
    gate = _gate(config)
    if gate.engine is None:
        _fault(f"Gate configuration unavailable: {gate.config_error}", changeset_id, format)

    try:
        membership = load_membership(members) if members else RoleMembership()
    except MembershipError as exc:
        _fault(str(exc), changeset_id, format)

    creds = GitHubCredentials(
        token=GitHubCredentials.from_env().token, api_url=settings.github_api_url
    )

    try:
        host = GitHubHost(repo, credentials=creds, membership=membership)
        report = asyncio.run(host.check(gate.engine, pr, publish=publish))
    except (HostError, ValueError) as exc:
        logger.error("check-pr %s failed: %s", changeset_id, exc)
        _fault(f"Could not evaluate {changeset_id}: {exc}", changeset_id, format)

    _emit(report, format)
    raise typer.Exit(code=EXIT_CODES[report.outcome])


@app.command()
def serve(
    host: str = typer.Option(settings.api_host, "--host"),
    port: int = typer.Option(settings.api_port, "--port"),
) -> None:
    """Run the decision API."""
    import uvicorn

    uvicorn.run("netgate_api.main:app", host=host, port=port, log_level=settings.api_log_level)
