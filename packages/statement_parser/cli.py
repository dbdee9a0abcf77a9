# ruff: noqa: I001
"""CLI for the ``statement_parser`` package.

Environment variables (``OPENAI_API_KEY``, ``DATABASE_URL`` and the
``STATEMENT_PARSER_*`` knobs) are loaded from a local ``.env`` using
``python-dotenv`` before any command runs. Business logic lives in
:mod:`statement_parser.orchestrator`; commands here only build an
orchestrator, call it and render the outcome with ``rich``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from .errors import StatementParserError
from .logging_setup import configure_logging

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Parse financial statements into transactions using cached or generated "
        "parser code. Loads OPENAI_API_KEY and DATABASE_URL from a local .env."
    ),
)

DatabaseUrlOption = Annotated[
    str | None, typer.Option(help="Override DATABASE_URL (falls back to env var).")
]


def _orchestrator(database_url: str | None):
    # Deferred import keeps `--help` fast and free of client construction.
    from .orchestrator import ParseOrchestrator

    try:
        return ParseOrchestrator(database_url=database_url)
    except ValueError as e:
        err_console.print(f"[red]Error:[/red] invalid settings: {e}")
        raise typer.Exit(1) from e


@app.command("parse")
def parse_cmd(
    file_path: Annotated[Path, typer.Argument(help="Statement file (text dump or CSV).")],
    *,
    source_hint: Annotated[
        str | None, typer.Option(help="Institution name, e.g. 'HDFC Bank'.")
    ] = None,
    password: Annotated[
        str | None, typer.Option(help="Password for encrypted documents.")
    ] = None,
    database_url: DatabaseUrlOption = None,
) -> None:
    """Register FILE_PATH as a statement and parse it."""

    if not file_path.exists():
        err_console.print(f"[red]Error:[/red] file not found: {file_path}")
        raise typer.Exit(1)
    orch = _orchestrator(database_url)
    sid = orch.create_statement(file_path.name, file_path=file_path, source_hint=source_hint)
    result = orch.parse_statement(sid, password=password)

    table = Table(title=f"Statement {sid}")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("status", result.status)
    table.add_row("source key", result.source_key or "-")
    table.add_row("transactions", str(result.transaction_count))
    table.add_row("holdings", str(result.holdings_count))
    table.add_row("period", f"{result.period_start or '?'} .. {result.period_end or '?'}")
    if result.error:
        table.add_row("error", f"[red]{result.error}[/red]")
    console.print(table)
    if result.status != "completed":
        raise typer.Exit(1)


@app.command("parse-spreadsheet")
def parse_spreadsheet_cmd(
    file_path: Annotated[Path, typer.Argument(help="CSV/TSV export of a statement.")],
    *,
    database_url: DatabaseUrlOption = None,
) -> None:
    """Parse a spreadsheet with a generated column mapping."""

    try:
        data = file_path.read_bytes()
    except OSError as e:
        err_console.print(f"[red]Error:[/red] cannot read {file_path}: {e}")
        raise typer.Exit(1) from e
    orch = _orchestrator(database_url)
    try:
        result = orch.parse_spreadsheet(data, file_path.name)
    except StatementParserError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    console.print(
        f"[green]Parsed[/green] {result.transaction_count} transaction(s) "
        f"({result.skipped_rows} row(s) skipped) into statement {result.statement_id}"
    )
    if result.config is not None:
        console.print_json(result.config.model_dump_json())


@app.command("work")
def work_cmd(*, database_url: DatabaseUrlOption = None) -> None:
    """Parse every pending statement, one at a time, oldest first."""

    orch = _orchestrator(database_url)
    results = orch.process_pending()
    if not results:
        console.print("No pending statements.")
        return
    table = Table(title="Processed statements")
    table.add_column("Statement")
    table.add_column("Status")
    table.add_column("Transactions", justify="right")
    table.add_column("Error")
    for r in results:
        color = "green" if r.status == "completed" else "red"
        status = f"[{color}]{r.status}[/{color}]"
        table.add_row(r.statement_id, status, str(r.transaction_count), r.error or "")
    console.print(table)
    if any(r.status != "completed" for r in results):
        raise typer.Exit(1)


@app.command("infer-types")
def infer_types_cmd(
    file_path: Annotated[Path, typer.Argument(help="CSV/TSV file to profile.")],
) -> None:
    """Show the inferred type and statistics of every column (no model calls)."""

    from .errors import InputError
    from .extractors import DefaultExtractor
    from .type_inference import extract_metadata

    try:
        sheet = DefaultExtractor().extract_sheet(file_path.read_bytes(), file_path.name)
    except (OSError, InputError) as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    meta = extract_metadata(sheet, file_type=file_path.suffix.lstrip(".").lower() or "csv")

    table = Table(title=f"{file_path.name}: {meta.row_count} rows")
    for col in ("#", "Column", "Type", "Nulls", "Unique", "Min", "Max", "Format / samples"):
        table.add_column(col)
    for c in meta.columns:
        s = c.stats
        extra = s.dominant_format or ", ".join(s.sample_values)
        table.add_row(
            str(c.index),
            c.name,
            c.data_type,
            str(s.null_count),
            str(s.unique_count),
            "" if s.minimum is None else str(s.minimum),
            "" if s.maximum is None else str(s.maximum),
            extra,
        )
    console.print(table)


@app.command("list-cache")
def list_cache_cmd(*, database_url: DatabaseUrlOption = None) -> None:
    """List source keys with cached parser code."""

    from .code_cache import CodeCache

    sources = CodeCache(database_url=database_url).list_sources()
    if not sources:
        console.print("No cached parsers.")
        return
    table = Table(title="Cached parsers")
    table.add_column("Source key")
    table.add_column("Versions", justify="right")
    table.add_column("Latest", justify="right")
    for s in sources:
        table.add_row(s.source_key, str(s.version_count), str(s.latest_version or "-"))
    console.print(table)


@app.command("clear-cache")
def clear_cache_cmd(
    source_key: Annotated[str, typer.Argument(help="Source key as shown by list-cache.")],
    *,
    database_url: DatabaseUrlOption = None,
) -> None:
    """Delete every cached parser version for SOURCE_KEY."""

    from .code_cache import CodeCache

    removed = CodeCache(database_url=database_url).clear(source_key)
    console.print(f"Removed {removed} version(s) for [bold]{source_key}[/bold]")


@app.callback()
def _root() -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover - exercised via console script
    main()
