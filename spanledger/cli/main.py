# spanledger/cli/main.py
"""
CLI for inspecting, verifying and exporting the span ledger.
"""

import json
import os
import sqlite3
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from spanledger.core.errors import UnsupportedFormatError
from spanledger.core.types import SpanQuery
from spanledger.export import export_spans, parse_format
from spanledger.storage import SQLiteStorage
from spanledger.verify.verifier import SpanVerifier

app = typer.Typer(
    name="spanledger",
    help="Inspect, verify and export the append-only span ledger",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()


def get_db_path(db_flag: Optional[Path] = None) -> Path:
    """Resolve DB path in this order:
    1. --db flag
    2. SPANLEDGER_DB_PATH environment variable
    3. Default: ~/.spanledger/ledger.db
    """
    if db_flag:
        path = db_flag.resolve()
    else:
        env_path = os.environ.get("SPANLEDGER_DB_PATH")
        if env_path:
            path = Path(env_path).resolve()
        else:
            path = Path.home() / ".spanledger" / "ledger.db"

    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def open_storage(ctx: typer.Context, db: Optional[Path]) -> SQLiteStorage:
    # A subcommand --db wins over the one given before the subcommand
    db_path = get_db_path(db or (ctx.obj or {}).get("db"))

    if not db_path.exists():
        console.print(f"[red]Database file not found: {db_path}[/]")
        console.print("[yellow]To get started:[/]")
        console.print("  • Register a user or record spans first (creates/populates DB)")
        console.print("  • Set env var: export SPANLEDGER_DB_PATH=/path/to/ledger.db")
        console.print("  • Or use --db: spanledger traces --db /custom/path.db")
        raise typer.Exit(1)

    try:
        return SQLiteStorage(db_path)
    except sqlite3.Error as e:
        console.print(f"[red]Failed to open database: {str(e)}[/]")
        console.print("[yellow]The file may be corrupted or not a valid SQLite DB.[/]")
        raise typer.Exit(1)


@app.callback()
def main(
    ctx: typer.Context,
    db: Optional[Path] = typer.Option(
        None,
        "--db",
        help="Path to SQLite database (overrides SPANLEDGER_DB_PATH env var)",
    ),
):
    """Manage the span ledger."""
    ctx.obj = {"db": db}


@app.command()
def traces(
    ctx: typer.Context,
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """List all traces with span counts and last activity."""
    with open_storage(ctx, db) as storage:
        trace_list = storage.list_traces()

    if not trace_list:
        console.print("[yellow]No traces found in database.[/]")
        console.print("  (DB exists but no spans appended yet)")
        return

    table = Table(title="Traces")
    table.add_column("Trace ID")
    table.add_column("Spans")
    table.add_column("Last Activity")

    for trace_id, count, last_ts in trace_list:
        table.add_row(trace_id, str(count), last_ts or "—")

    console.print(table)


@app.command()
def spans(
    ctx: typer.Context,
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
    trace_id: Optional[str] = typer.Option(None, "--trace", "-t", help="Filter by trace id"),
    span_type: Optional[str] = typer.Option(None, "--type", help="Filter by span type"),
    entity: Optional[str] = typer.Option(None, "--entity", "-e", help="Filter by entity"),
    from_: Optional[str] = typer.Option(None, "--from", help="Earliest started_at (inclusive)"),
    to: Optional[str] = typer.Option(None, "--to", help="Latest started_at (inclusive)"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum number of spans to show (0 = all)"),
):
    """Query spans. Only one of --trace / --type / --entity is used (in that order)."""
    query = SpanQuery(trace_id=trace_id, type=span_type, entity=entity, from_=from_, to=to, limit=limit)
    with open_storage(ctx, db) as storage:
        found = storage.query_spans(query)

    if not found:
        console.print("[yellow]No spans match the given filter[/]")
        return

    for span in found:
        signed = "signed" if span.confirmed_by else "unsigned"
        console.print(f"[bold cyan]{span.started_at} | {span.type:24} | {span.entity:12} | {span.id}[/]")
        console.print(f"  trace={span.trace_id}  action={span.body.action}  {signed}")
        console.print(f"  {span.this.hash}")
        console.print("  " + "─" * 90)


@app.command()
def verify(
    ctx: typer.Context,
    trace_id: str = typer.Argument(..., help="Trace ID to verify"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
    require_signatures: bool = typer.Option(False, "--require-signatures", help="Fail on unsigned spans"),
):
    """Verify the content hashes and signatures of every span in a trace."""
    with open_storage(ctx, db) as storage:
        record = storage.get_identity()
        trusted_keys = {record.user_id: record.public_key} if record else {}

        if not trusted_keys:
            console.print("[yellow]Warning: No identity registered — signed spans cannot be checked.[/]")

        verifier = SpanVerifier(trusted_keys=trusted_keys, require_signatures=require_signatures)
        result = verifier.verify_from_storage(trace_id, storage)

    if result.is_valid:
        console.print(f"[green]✓ Trace '{trace_id}' is valid[/]")
        console.print(f"  {result.message}")
    else:
        console.print(f"[red]✗ Verification failed for trace '{trace_id}'[/]")
        for failure in result.failures:
            console.print(f"  • [{failure.index}] {failure.category}: {failure.message}")
        raise typer.Exit(1)


@app.command()
def export(
    ctx: typer.Context,
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
    fmt: str = typer.Option("ndjson", "--format", "-f", help="ndjson | json | csv"),
    trace_id: Optional[str] = typer.Option(None, "--trace", "-t", help="Export a single trace only"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file (default: ledger.<format>)"),
):
    """Export the ledger (or one trace) to ndjson, json or csv."""
    try:
        export_format = parse_format(fmt)
    except UnsupportedFormatError as e:
        console.print(f"[red]{str(e)}[/]")
        raise typer.Exit(2)

    with open_storage(ctx, db) as storage:
        if trace_id:
            found = storage.query_spans(SpanQuery(trace_id=trace_id))
        else:
            found = storage.all_spans()

    if not found:
        console.print("[yellow]No spans to export[/]")
        raise typer.Exit(0)

    out_path = output or Path(f"ledger{export_format.suffix}")
    with open(out_path, "w", encoding="utf-8", newline="") as f:
        f.write(export_spans(found, export_format))

    console.print(f"[green]Exported {len(found)} spans to {out_path}[/]")
    console.print(f"Format: {export_format.value} ({export_format.media_type})")


@app.command()
def identity(
    ctx: typer.Context,
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Print the installation's public key (JWK) for third-party verification."""
    with open_storage(ctx, db) as storage:
        record = storage.get_identity()

    if record is None:
        console.print("[yellow]No identity registered yet.[/]")
        raise typer.Exit(1)

    console.print(f"[bold]Signer:[/] {record.user_id}")
    console.print(f"[bold]Created:[/] {record.created_at}")
    console.print_json(json.dumps(record.public_key))


if __name__ == "__main__":
    app()
