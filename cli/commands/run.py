"""QC run commands: submit a run in-process, inspect and list runs."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer

from emailqc.db import get_connection, init_db, runs
from emailqc.links.copydoc import extract_copy_doc_links_from_html
from emailqc.parser import fetch_preview_html, is_host_allowed
from emailqc.pipeline.model import build_model_client
from emailqc.pipeline.orchestrator import RunJob, process_run
from emailqc.pipeline.stages import stage_progress

run_app = typer.Typer(help="Submit and inspect QC runs.", no_args_is_help=True)


def _echo_run(run) -> None:  # type: ignore[no-untyped-def]
    verdict = {True: "PASS", False: "FAIL", None: "-"}[run.summary_pass]
    typer.echo(f"  id      : {run.id}")
    typer.echo(f"  status  : {run.status} ({stage_progress(run.status)}%)")
    typer.echo(f"  verdict : {verdict}  model={run.model_version or '-'}")
    for check in run.checks:
        mark = "✓" if check.passed else "✗"
        typer.echo(f"  {mark} [{check.type.value}] {check.name}")
    for link in run.links:
        mark = "✓" if link.ok else "✗"
        note = f"  ({link.notes.value})" if link.notes else ""
        typer.echo(f"  {mark} {link.url} → {link.status_code or '-'}{note}")


@run_app.command("submit")
def run_submit(
    url: str = typer.Option(..., "--url", help="Template preview URL."),
    copy_doc: Path = typer.Option(..., "--copy-doc", exists=True, help="Approved copy (plain text file)."),
    silo: str = typer.Option(..., help="Silo the email belongs to."),
    entity: str = typer.Option(..., help="Regulatory entity."),
    email_type: str = typer.Option("marketing", "--email-type", help="marketing | transactional."),
    copy_doc_html: Optional[Path] = typer.Option(None, "--copy-doc-html", exists=True, help="Copy doc as HTML."),
    link: List[str] = typer.Option([], "--link", help="Extra email link (repeatable)."),
    name: Optional[str] = typer.Option(None, help="Run display name."),
) -> None:
    """Create a run and process it synchronously in this process."""
    if not is_host_allowed(url):
        typer.echo(f"[run submit] Preview host not permitted: {url}")
        raise typer.Exit(code=1)

    copy_text = copy_doc.read_text(encoding="utf-8").strip()
    html = copy_doc_html.read_text(encoding="utf-8").strip() if copy_doc_html else None
    copy_links = extract_copy_doc_links_from_html(html)

    conn = get_connection()
    init_db(conn)
    try:
        run = runs.create_run(
            conn,
            braze_url=url,
            copy_doc_text=copy_text,
            silo=silo,
            entity=entity,
            email_type=email_type,
            name=name,
            copy_doc_html=html,
            copy_doc_links=copy_links,
        )
        typer.echo(f"[run submit] Processing run {run.id} …")
        job = RunJob(
            run_id=run.id,
            braze_url=url,
            copy_doc_text=copy_text,
            silo=silo,
            entity=entity,
            email_type=email_type,
            copy_doc_html=html,
            copy_doc_links=tuple(copy_links),
            email_preview_links=tuple(link),
        )
        process_run(conn, job, build_model_client(), preview_fetcher=fetch_preview_html)
        _echo_run(runs.get_run(conn, run.id))
    finally:
        conn.close()


@run_app.command("show")
def run_show(
    run_id: str = typer.Argument(..., help="Run identifier."),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON."),
) -> None:
    """Show a run with its checks and link results."""
    conn = get_connection()
    init_db(conn)
    try:
        run = runs.get_run(conn, run_id)
    finally:
        conn.close()

    if run is None:
        typer.echo(f"[run show] No run with id {run_id!r}.")
        raise typer.Exit(code=1)

    if as_json:
        typer.echo(runs.dumps(run))
        return
    _echo_run(run)


@run_app.command("list")
def run_list(
    silo: Optional[str] = typer.Option(None, help="Filter by silo."),
    entity: Optional[str] = typer.Option(None, help="Filter by entity."),
    page: int = typer.Option(1, help="Page number."),
) -> None:
    """List runs, newest first."""
    conn = get_connection()
    init_db(conn)
    try:
        items, total = runs.list_runs(conn, silo=silo, entity=entity, page=page)
    finally:
        conn.close()

    if not items:
        typer.echo("[run list] No runs found.")
        return
    typer.echo(f"[run list] {total} run(s)")
    for run in items:
        typer.echo(f"  {run.id}  [{run.status}]  {run.silo}/{run.entity}  {run.name or run.braze_url}")
