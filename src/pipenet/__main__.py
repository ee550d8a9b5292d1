"""pipenet CLI.

Usage:
    python -m pipenet <command> [args] [options]

The model is a network JSON document, the store a SQLite database.
Read-only commands (validate, findings, audit) never write; `sync` is a dry
run unless --apply is given, and model write-back additionally requires
--accept / --accept-all.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, List, Optional

import typer

from pipenet import service
from pipenet.audit import dump_records
from pipenet.collaborators.json_model import JsonModelFile, next_revision
from pipenet.errors import PipenetError
from pipenet.models.findings import FindingStatus
from pipenet.models.network import Entity
from pipenet.models.sync import SyncMode
from pipenet.settings import Settings
from pipenet.store.sqlite import SQLiteReconciliationStore
from pipenet.sync.coordinator import SyncCoordinator
from pipenet.validators.coordinates import load_reference_points

app = typer.Typer(
    name="pipenet",
    help="pipenet: pipe network validation and model/store reconciliation.",
    no_args_is_help=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _output(data: dict) -> None:
    """Print JSON output to stdout."""
    typer.echo(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _fail(message: str) -> None:
    _output({"ok": False, "error": message})
    raise typer.Exit(1)


def _settings(config: Optional[str]) -> Settings:
    return Settings.load(config) if config else Settings()


def _model(path: str) -> JsonModelFile:
    if not Path(path).exists():
        _fail(f"Model not found: {path}")
    return JsonModelFile(path)


def _store(path: str) -> SQLiteReconciliationStore:
    """Open an existing store. Only `sync` may create one."""
    if not Path(path).exists():
        _fail(f"Store not found: {path}")
    return SQLiteReconciliationStore(path)


def _parse_value(raw: str) -> Any:
    """JSON literal if it parses, otherwise the raw string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log to stderr")) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Read-only commands
# ---------------------------------------------------------------------------

@app.command()
def validate(
    model: str = typer.Argument(..., help="Network JSON document"),
    refs: Optional[str] = typer.Option(None, "--refs", "-r", help="Reference points (JSON or CSV)"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings JSON"),
):
    """Validate a network and print its findings."""
    try:
        reference_points = load_reference_points(refs) if refs else None
        findings = service.validate(_model(model), _settings(config), reference_points)
    except PipenetError as e:
        _fail(str(e))
    _output({
        "ok": True,
        "errors": sum(1 for f in findings if f.severity.value == "error"),
        "warnings": sum(1 for f in findings if f.severity.value == "warning"),
        "findings": [
            {"key": f.key, **f.model_dump(mode="json", exclude={"first_detected", "status"})}
            for f in findings
        ],
    })


@app.command()
def findings(
    store: str = typer.Argument(..., help="Reconciliation store (SQLite)"),
    status: Optional[FindingStatus] = typer.Option(None, "--status", "-s", help="Filter by status"),
):
    """List findings persisted in the store."""
    with _store(store) as db:
        rows = db.load_findings(status)
    _output({
        "ok": True,
        "findings": [{"key": f.key, **f.model_dump(mode="json")} for f in rows],
    })


@app.command()
def audit(
    store: str = typer.Argument(..., help="Reconciliation store (SQLite)"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Last N records"),
):
    """Show the audit log."""
    with _store(store) as db:
        records = db.load_audit(limit)
    _output({"ok": True, "audit": dump_records(records)})


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

@app.command()
def sync(
    model: str = typer.Argument(..., help="Network JSON document"),
    store: str = typer.Argument(..., help="Reconciliation store (SQLite)"),
    apply: bool = typer.Option(False, "--apply", help="Write changes (default: dry run)"),
    accept: Optional[List[str]] = typer.Option(None, "--accept", "-a", help="Accept write-back for entity id"),
    accept_all: bool = typer.Option(False, "--accept-all", help="Accept every pending write-back"),
    refs: Optional[str] = typer.Option(None, "--refs", "-r", help="Reference points (JSON or CSV)"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings JSON"),
):
    """Reconcile the model with the store."""
    if accept_all:
        approve = lambda proposed: [c.entity_id for c in proposed]  # noqa: E731
    elif accept:
        approve = set(accept)
    else:
        approve = None

    mode = SyncMode.APPLY if apply else SyncMode.DRY_RUN
    try:
        reference_points = load_reference_points(refs) if refs else None
        with SQLiteReconciliationStore(store) as db:
            report = service.sync(
                _model(model), db, mode, approve,
                settings=_settings(config), reference_points=reference_points,
            )
    except PipenetError as e:
        _fail(str(e))

    _output({
        "ok": not report.failed,
        "summary": report.summary(),
        "entries": [
            e.model_dump(mode="json") for e in report.entries if e.outcome.value != "in_sync"
        ],
    })
    if report.failed:
        raise typer.Exit(1)


@app.command()
def resolve(
    model: str = typer.Argument(..., help="Network JSON document"),
    store: str = typer.Argument(..., help="Reconciliation store (SQLite)"),
    entity_id: str = typer.Argument(..., help="Entity in conflict"),
    keep: str = typer.Option(..., "--keep", "-k", help="Side to keep: model or store"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings JSON"),
):
    """Resolve a conflict by keeping the model or the store values."""
    try:
        with _store(store) as db:
            entry = SyncCoordinator(_settings(config)).resolve_conflict(
                _model(model), db, entity_id, keep
            )
    except (PipenetError, KeyError, ValueError) as e:
        _fail(str(e))
    _output({"ok": entry.outcome.value == "applied", "entry": entry.model_dump(mode="json")})


@app.command()
def correct(
    store: str = typer.Argument(..., help="Reconciliation store (SQLite)"),
    entity_id: str = typer.Argument(..., help="Entity to correct"),
    values: List[str] = typer.Option(..., "--set", "-s", help="field=value (value parsed as JSON)"),
):
    """Author a store-side correction to be written back to the model."""
    fields: dict[str, Any] = {}
    for item in values:
        name, sep, raw = item.partition("=")
        if not sep or not name:
            _fail(f"Expected field=value, got {item!r}")
        fields[name.strip()] = _parse_value(raw)

    with _store(store) as db:
        record = next((r for r in db.load_sync_state() if r.entity_id == entity_id), None)
        if record is None:
            _fail(f"Entity {entity_id} has never been synced")
        pending = {c.entity_id: c for c in db.load_pending_corrections()}
        base = pending[entity_id].revision if entity_id in pending else record.store_revision
        correction = Entity(
            entity_id=entity_id,
            entity_type=record.entity_type,
            revision=next_revision(base),
            fields={**(pending[entity_id].fields if entity_id in pending else {}), **fields},
        )
        db.record_correction(correction)
    _output({"ok": True, "correction": correction.model_dump(mode="json")})


@app.command()
def ack(
    store: str = typer.Argument(..., help="Reconciliation store (SQLite)"),
    key: str = typer.Argument(..., help="Finding key, e.g. UnconnectedEnd:P1:end"),
    resolve_: bool = typer.Option(False, "--resolve", help="Mark Resolved instead of Acknowledged"),
):
    """Acknowledge (or resolve) a finding."""
    status = FindingStatus.RESOLVED if resolve_ else FindingStatus.ACKNOWLEDGED
    with _store(store) as db:
        try:
            finding = db.set_finding_status(key, status)
        except KeyError as e:
            _fail(str(e.args[0]))
    _output({"ok": True, "finding": {"key": finding.key, "status": finding.status.value}})


if __name__ == "__main__":
    app()
