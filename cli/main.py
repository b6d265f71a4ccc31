"""Email QC CLI: entry-point for backend operations.

Usage:
    python cli/main.py --help

Command groups:
    db      → database setup
    parse   → parse a preview into structured content
    probe   → verify one or more links
    run     → submit, show and list QC runs
"""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure the project root is on sys.path so that `from emailqc.xxx import ...`
# works when the CLI is invoked as `python cli/main.py` from any directory.
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

import json
from typing import List, Optional

import typer

from cli.commands.run import run_app
from emailqc.config import settings
from emailqc.db import get_connection, init_db
from emailqc.utils import configure_logging

app = typer.Typer(
    name="emailqc",
    help="Email QC backend CLI.",
    no_args_is_help=True,
)
app.add_typer(run_app, name="run")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log pipeline progress to stdout."),
) -> None:
    if verbose:
        configure_logging()


# ---------------------------------------------------------------------------
# DB commands
# ---------------------------------------------------------------------------
db_app = typer.Typer(help="Database operations.", no_args_is_help=True)
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """Initialise the SQLite database (create tables if they do not exist)."""
    conn = get_connection()
    init_db(conn)
    conn.close()
    typer.echo(f"[db init] Database ready at {settings.db_path}")


# ---------------------------------------------------------------------------
# Parse / probe
# ---------------------------------------------------------------------------
@app.command("parse")
def parse(
    file: Optional[Path] = typer.Option(None, "--file", exists=True, help="Local HTML file."),
    url: Optional[str] = typer.Option(None, "--url", help="Preview URL to fetch."),
) -> None:
    """Parse an email preview and print the structured content as JSON."""
    from emailqc.parser import fetch_preview_html, parse_email

    if file is None and not url:
        typer.echo("[parse] Provide --file or --url.")
        raise typer.Exit(code=1)

    html = file.read_text(encoding="utf-8") if file is not None else fetch_preview_html(url)  # type: ignore[arg-type]
    typer.echo(json.dumps(parse_email(html).to_dict(), indent=2))


@app.command("probe")
def probe(
    urls: List[str] = typer.Argument(..., help="One or more links to verify."),
) -> None:
    """Verify links: follow redirects and classify the destination host."""
    from emailqc.links import LinkChecker

    failures = 0
    for result in LinkChecker().check_links(urls):
        mark = "✓" if result.ok else "✗"
        note = f"  ({result.notes.value})" if result.notes else ""
        final = f" → {result.final_url}" if result.final_url and result.final_url != result.url else ""
        typer.echo(f"  {mark} {result.url}{final}  [{result.status_code or '-'}]{note}")
        failures += 0 if result.ok else 1

    if failures:
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    app()
