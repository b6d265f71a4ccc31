"""Persistence for QC runs, their checks and their link results.

Status changes go through :func:`advance_status`, :func:`finalize_run` and
:func:`fail_run`, which refuse to move a run backwards or out of a terminal
state.  Checks and link results are written once, in the same transaction
as the terminal status.
"""

from __future__ import annotations

import dataclasses
import json
import sqlite3
import uuid
from enum import Enum
from time import time
from typing import Any, Iterable, Optional, Sequence

from emailqc.db.models import (
    AuditFeedback,
    CheckResult,
    CheckType,
    IssueFeedback,
    IssueStatus,
    QcRun,
)
from emailqc.errors import (
    CheckNotFoundError,
    InvalidIssueFeedback,
    InvalidStageTransition,
    RunNotFoundError,
)
from emailqc.links.models import CopyDocLink, LinkProbeResult, ProbeNote
from emailqc.pipeline.stages import RunStage, can_transition

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _json_default(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serialisable")


def dumps(value: Any) -> str:
    """JSON-encode *value*, flattening dataclasses and enums."""
    return json.dumps(value, default=_json_default)


def _loads(value: Optional[str]) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except ValueError:
        return value


def _optional_bool(value: Any) -> Optional[bool]:
    return None if value is None else bool(value)


def _row_to_check(row: sqlite3.Row) -> CheckResult:
    try:
        check_type = CheckType(row["type"])
    except ValueError:
        check_type = CheckType.SYSTEM_NOTICE
    return CheckResult(
        type=check_type,
        name=row["name"],
        passed=bool(row["pass"]),
        details=_loads(row["details"]),
        id=row["id"],
    )


def _row_to_link(row: sqlite3.Row) -> LinkProbeResult:
    notes = row["notes"]
    try:
        note = ProbeNote(notes) if notes else None
    except ValueError:
        note = None
    return LinkProbeResult(
        url=row["url"],
        ok=bool(row["ok"]),
        redirected=bool(row["redirected"]),
        status_code=row["status_code"],
        final_url=row["final_url"],
        notes=note,
    )


def _row_to_run(row: sqlite3.Row) -> QcRun:
    raw_links = _loads(row["copy_doc_links"]) or []
    return QcRun(
        id=row["id"],
        name=row["name"],
        status=row["status"],
        braze_url=row["braze_url"],
        copy_doc_text=row["copy_doc_text"],
        copy_doc_html=row["copy_doc_html"],
        copy_doc_links=[
            CopyDocLink(href=item.get("href", ""), label=item.get("label", ""))
            for item in raw_links
            if isinstance(item, dict)
        ],
        silo=row["silo"],
        entity=row["entity"],
        email_type=row["email_type"],
        summary_pass=_optional_bool(row["summary_pass"]),
        model_version=row["model_version"],
        started_at=row["started_at"],
        finished_at=row["finished_at"],
    )


def _current_status(conn: sqlite3.Connection, run_id: str) -> str:
    row = conn.execute("SELECT status FROM qc_runs WHERE id = ?", (run_id,)).fetchone()
    if row is None:
        raise RunNotFoundError(f"QC run not found: {run_id!r}")
    return row["status"]


def _check_transition(conn: sqlite3.Connection, run_id: str, target: RunStage) -> str:
    current = _current_status(conn, run_id)
    if not can_transition(current, target):
        raise InvalidStageTransition(
            f"Run {run_id!r} cannot move from {current!r} to {target.value!r}"
        )
    return current


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def create_run(
    conn: sqlite3.Connection,
    braze_url: str,
    copy_doc_text: str,
    silo: str,
    entity: str,
    email_type: str = "marketing",
    name: Optional[str] = None,
    copy_doc_html: Optional[str] = None,
    copy_doc_links: Sequence[CopyDocLink] = (),
    run_id: Optional[str] = None,
) -> QcRun:
    """Insert a new run in the ``queued`` stage and return it."""
    rid = run_id or str(uuid.uuid4())
    with conn:
        conn.execute(
            """
            INSERT INTO qc_runs (
                id, name, status, braze_url, copy_doc_text, copy_doc_html,
                copy_doc_links, silo, entity, email_type, started_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                rid,
                name,
                RunStage.QUEUED.value,
                braze_url,
                copy_doc_text,
                copy_doc_html,
                dumps(list(copy_doc_links)),
                silo,
                entity,
                email_type,
                time(),
            ),
        )
    return get_run(conn, rid)  # type: ignore[return-value]


def get_run(conn: sqlite3.Connection, run_id: str) -> Optional[QcRun]:
    """Fetch a run with its checks (by name) and links (by URL).  ``None`` if absent."""
    row = conn.execute("SELECT * FROM qc_runs WHERE id = ?", (run_id,)).fetchone()
    if row is None:
        return None

    run = _row_to_run(row)
    run.checks = [
        _row_to_check(r)
        for r in conn.execute(
            "SELECT * FROM check_results WHERE run_id = ? ORDER BY name ASC, position ASC",
            (run_id,),
        ).fetchall()
    ]
    run.links = [
        _row_to_link(r)
        for r in conn.execute(
            "SELECT * FROM link_results WHERE run_id = ? ORDER BY url ASC",
            (run_id,),
        ).fetchall()
    ]
    return run


def list_runs(
    conn: sqlite3.Connection,
    silo: Optional[str] = None,
    entity: Optional[str] = None,
    started_from: Optional[float] = None,
    started_to: Optional[float] = None,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> tuple[list[QcRun], int]:
    """Return one page of runs (newest first) and the total matching count."""
    clauses: list[str] = []
    params: list[Any] = []
    if silo:
        clauses.append("silo = ?")
        params.append(silo)
    if entity:
        clauses.append("entity = ?")
        params.append(entity)
    if started_from is not None:
        clauses.append("started_at >= ?")
        params.append(started_from)
    if started_to is not None:
        clauses.append("started_at <= ?")
        params.append(started_to)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    take = min(page_size, MAX_PAGE_SIZE) if page_size > 0 else DEFAULT_PAGE_SIZE
    skip = (page - 1) * take if page > 1 else 0

    total = conn.execute(
        f"SELECT COUNT(*) FROM qc_runs {where}", params  # noqa: S608
    ).fetchone()[0]
    rows = conn.execute(
        f"SELECT * FROM qc_runs {where} ORDER BY started_at DESC LIMIT ? OFFSET ?",  # noqa: S608
        [*params, take, skip],
    ).fetchall()
    return [_row_to_run(r) for r in rows], total


def rename_run(conn: sqlite3.Connection, run_id: str, name: str) -> QcRun:
    """Set a run's display name.

    Raises:
        RunNotFoundError: If ``run_id`` does not exist.
    """
    with conn:
        cursor = conn.execute("UPDATE qc_runs SET name = ? WHERE id = ?", (name, run_id))
    if cursor.rowcount == 0:
        raise RunNotFoundError(f"QC run not found: {run_id!r}")
    return get_run(conn, run_id)  # type: ignore[return-value]


def advance_status(conn: sqlite3.Connection, run_id: str, stage: RunStage) -> None:
    """Move a run forward to *stage*.

    Raises:
        InvalidStageTransition: If *stage* is not ahead of the current stage,
            the run is already terminal, or *stage* is itself terminal.
        RunNotFoundError: If ``run_id`` does not exist.
    """
    if stage in (RunStage.COMPLETED, RunStage.FAILED):
        raise InvalidStageTransition(
            f"Terminal stage {stage.value!r} must be set by finalize_run/fail_run"
        )
    with conn:
        current = _check_transition(conn, run_id, stage)
        conn.execute(
            "UPDATE qc_runs SET status = ? WHERE id = ? AND status = ?",
            (stage.value, run_id, current),
        )


def _insert_checks(conn: sqlite3.Connection, run_id: str, checks: Iterable[CheckResult]) -> None:
    conn.executemany(
        """
        INSERT INTO check_results (id, run_id, type, name, pass, details, position)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                str(uuid.uuid4()),
                run_id,
                CheckType(check.type).value,
                check.name,
                int(check.passed),
                None if check.details is None else dumps(check.details),
                position,
            )
            for position, check in enumerate(checks)
        ],
    )


def finalize_run(
    conn: sqlite3.Connection,
    run_id: str,
    summary_pass: bool,
    model_version: str,
    checks: Sequence[CheckResult],
    links: Sequence[LinkProbeResult],
) -> None:
    """Persist all results and mark the run ``completed`` in one transaction."""
    with conn:
        _check_transition(conn, run_id, RunStage.COMPLETED)
        _insert_checks(conn, run_id, checks)
        conn.executemany(
            """
            INSERT INTO link_results (id, run_id, url, status_code, ok, redirected, final_url, notes)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    str(uuid.uuid4()),
                    run_id,
                    link.url,
                    link.status_code,
                    int(link.ok),
                    int(link.redirected),
                    link.final_url,
                    link.notes.value if link.notes else None,
                )
                for link in links
            ],
        )
        conn.execute(
            """
            UPDATE qc_runs
            SET status = ?, summary_pass = ?, model_version = ?, finished_at = ?
            WHERE id = ?
            """,
            (RunStage.COMPLETED.value, int(summary_pass), model_version, time(), run_id),
        )


def fail_run(conn: sqlite3.Connection, run_id: str, description: str) -> None:
    """Mark a run ``failed`` with a single diagnostic check."""
    with conn:
        _check_transition(conn, run_id, RunStage.FAILED)
        _insert_checks(
            conn,
            run_id,
            [
                CheckResult(
                    type=CheckType.SYSTEM_NOTICE,
                    name="Run failed",
                    passed=False,
                    details=description,
                )
            ],
        )
        conn.execute(
            "UPDATE qc_runs SET status = ?, finished_at = ? WHERE id = ?",
            (RunStage.FAILED.value, time(), run_id),
        )


# ---------------------------------------------------------------------------
# Reviewer feedback
# ---------------------------------------------------------------------------

def _row_to_audit_feedback(row: sqlite3.Row) -> AuditFeedback:
    return AuditFeedback(
        run_id=row["run_id"],
        feedback=row["feedback"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_issue_feedback(row: sqlite3.Row) -> IssueFeedback:
    return IssueFeedback(
        check_id=row["check_id"],
        run_id=row["run_id"],
        status=IssueStatus(row["status"]),
        feedback=row["feedback"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def get_audit_feedback(conn: sqlite3.Connection, run_id: str) -> Optional[AuditFeedback]:
    """Return the run-level reviewer feedback, or ``None`` if none was left.

    Raises:
        RunNotFoundError: If ``run_id`` does not exist.
    """
    _current_status(conn, run_id)
    row = conn.execute("SELECT * FROM audit_feedback WHERE run_id = ?", (run_id,)).fetchone()
    return _row_to_audit_feedback(row) if row else None


def set_audit_feedback(
    conn: sqlite3.Connection, run_id: str, feedback: Optional[str]
) -> Optional[AuditFeedback]:
    """Upsert the run's reviewer feedback; blank feedback deletes it.

    Raises:
        RunNotFoundError: If ``run_id`` does not exist.
    """
    text = (feedback or "").strip()
    with conn:
        _current_status(conn, run_id)
        if not text:
            conn.execute("DELETE FROM audit_feedback WHERE run_id = ?", (run_id,))
            return None
        now = time()
        conn.execute(
            """
            INSERT INTO audit_feedback (run_id, feedback, created_at, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(run_id) DO UPDATE SET
                feedback = excluded.feedback,
                updated_at = excluded.updated_at
            """,
            (run_id, text, now, now),
        )
    return get_audit_feedback(conn, run_id)


def list_issue_feedback(conn: sqlite3.Connection, run_id: str) -> dict[str, IssueFeedback]:
    """Return the triage record of every triaged check in the run, keyed by check id."""
    rows = conn.execute("SELECT * FROM issue_feedback WHERE run_id = ?", (run_id,)).fetchall()
    return {row["check_id"]: _row_to_issue_feedback(row) for row in rows}


def set_issue_feedback(
    conn: sqlite3.Connection,
    run_id: str,
    check_id: str,
    status: IssueStatus | str,
    feedback: Optional[str] = None,
) -> IssueFeedback:
    """Record the triage status of one check in a run.

    Raises:
        InvalidIssueFeedback: If *status* is unknown, or is ``unwanted``
            without feedback.
        CheckNotFoundError: If the check does not exist or belongs to
            another run.
    """
    try:
        resolved = IssueStatus(status)
    except ValueError as exc:
        raise InvalidIssueFeedback("status must be one of open, resolved, unwanted") from exc

    text = (feedback or "").strip() or None
    if resolved is IssueStatus.UNWANTED and text is None:
        raise InvalidIssueFeedback("Feedback is required when marking an issue as unwanted")

    with conn:
        row = conn.execute("SELECT run_id FROM check_results WHERE id = ?", (check_id,)).fetchone()
        if row is None or row["run_id"] != run_id:
            raise CheckNotFoundError(f"Check {check_id!r} not found for run {run_id!r}")
        now = time()
        conn.execute(
            """
            INSERT INTO issue_feedback (check_id, run_id, status, feedback, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(check_id) DO UPDATE SET
                status = excluded.status,
                feedback = excluded.feedback,
                updated_at = excluded.updated_at
            """,
            (check_id, run_id, resolved.value, text, now, now),
        )
    return list_issue_feedback(conn, run_id)[check_id]
