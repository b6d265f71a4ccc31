"""QC run endpoints.

Routes
------
POST /qc-runs                         Submit a run; returns ``{"id": ...}`` with 202
GET  /qc-runs                         Paginated run list (filters: silo, entity, from, to)
GET  /qc-runs/{id}                    Run record with checks, links and progress
PUT  /qc-runs/{id}                    Rename a run
GET  /qc-runs/{id}/feedback           Reviewer feedback on the whole run
PUT  /qc-runs/{id}/feedback           Set (or clear) that feedback
PUT  /qc-runs/{id}/issues/{check_id}  Triage one check: open, resolved or unwanted

Submission only validates and enqueues.  Progress and the eventual outcome
are observed by polling ``GET /qc-runs/{id}``.
"""

from __future__ import annotations

import logging
from time import time
from typing import Any, List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from emailqc.api.routers.common import enforce_rate_limit, validate_preview_url
from emailqc.db import runs
from emailqc.db.models import AuditFeedback, IssueFeedback, QcRun
from emailqc.errors import (
    CheckNotFoundError,
    InvalidIssueFeedback,
    QueueFullError,
    RunNotFoundError,
)
from emailqc.links.copydoc import (
    extract_copy_doc_links_from_html,
    normalise_copy_doc_html,
    normalise_copy_doc_links,
    normalise_link_array,
)
from emailqc.pipeline.orchestrator import RunJob
from emailqc.pipeline.stages import STAGE_METADATA, RunStage, stage_progress
from emailqc.utils import normalise_string

logger = logging.getLogger(__name__)

router = APIRouter()

EMAIL_TYPE_OPTIONS = ("marketing", "transactional")


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QcRunRequest(_CamelModel):
    name: Optional[str] = None
    braze_url: Optional[str] = None
    copy_doc_text: Optional[str] = None
    copy_doc_html: Optional[str] = None
    copy_doc_links: Optional[List[Any]] = None
    email_preview_links: Optional[List[Any]] = None
    silo: Optional[str] = None
    entity: Optional[str] = None
    email_type: Optional[str] = None


class RenameRequest(BaseModel):
    name: Optional[str] = None


class FeedbackRequest(BaseModel):
    feedback: Optional[Any] = None


class IssueFeedbackRequest(BaseModel):
    status: Optional[Any] = None
    feedback: Optional[Any] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _run_summary(run: QcRun) -> dict[str, Any]:
    return {
        "id": run.id,
        "name": run.name,
        "braze_url": run.braze_url,
        "silo": run.silo,
        "entity": run.entity,
        "email_type": run.email_type,
        "status": run.status,
        "summary_pass": run.summary_pass,
        "model_version": run.model_version,
        "started_at": run.started_at,
        "finished_at": run.finished_at,
    }


def _audit_feedback_dict(record: Optional[AuditFeedback]) -> Optional[dict[str, Any]]:
    if record is None:
        return None
    return {
        "run_id": record.run_id,
        "feedback": record.feedback,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    }


def _issue_feedback_dict(record: IssueFeedback) -> dict[str, Any]:
    return {
        "check_id": record.check_id,
        "run_id": record.run_id,
        "status": record.status.value,
        "feedback": record.feedback,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    }


def _run_detail(
    run: QcRun,
    audit: Optional[AuditFeedback] = None,
    issues: Optional[dict[str, IssueFeedback]] = None,
) -> dict[str, Any]:
    issues = issues or {}
    elapsed_ms = ((run.finished_at or time()) - run.started_at) * 1000
    try:
        meta = STAGE_METADATA[RunStage(run.status)]
        stage_label, stage_description = meta.label, meta.description
    except ValueError:
        stage_label, stage_description = run.status, ""

    return {
        **_run_summary(run),
        "copy_doc_text": run.copy_doc_text,
        "copy_doc_html": run.copy_doc_html,
        "copy_doc_links": [{"href": link.href, "label": link.label} for link in run.copy_doc_links],
        "progress": stage_progress(run.status, elapsed_ms),
        "stage_label": stage_label,
        "stage_description": stage_description,
        "checks": [
            {
                "id": c.id,
                "type": c.type.value,
                "name": c.name,
                "pass": c.passed,
                "details": c.details,
                "issue": (
                    {"status": issues[c.id].status.value, "feedback": issues[c.id].feedback}
                    if c.id in issues
                    else None
                ),
            }
            for c in run.checks
        ],
        "links": [link.to_dict() for link in run.links],
        "audit_feedback": _audit_feedback_dict(audit),
    }


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("", status_code=202)
def submit_run(body: QcRunRequest, request: Request) -> dict[str, str]:
    """Validate a submission, create the run in ``queued`` and enqueue it."""
    enforce_rate_limit(request)

    braze_url = normalise_string(body.braze_url)
    copy_doc_text = normalise_string(body.copy_doc_text)
    silo = normalise_string(body.silo)
    entity = normalise_string(body.entity)
    email_type = normalise_string(body.email_type) or "marketing"
    copy_doc_html = normalise_copy_doc_html(body.copy_doc_html)
    copy_doc_links = normalise_copy_doc_links(body.copy_doc_links)
    if not copy_doc_links and copy_doc_html:
        copy_doc_links = extract_copy_doc_links_from_html(copy_doc_html)

    if not braze_url or not copy_doc_text or not silo or not entity:
        raise HTTPException(
            status_code=400,
            detail="brazeUrl, copyDocText, silo, and entity are required",
        )
    if email_type not in EMAIL_TYPE_OPTIONS:
        raise HTTPException(status_code=400, detail="emailType must be marketing or transactional")
    validate_preview_url(braze_url)

    conn = request.app.state.db
    run = runs.create_run(
        conn,
        braze_url=braze_url,
        copy_doc_text=copy_doc_text,
        silo=silo,
        entity=entity,
        email_type=email_type,
        name=normalise_string(body.name),
        copy_doc_html=copy_doc_html,
        copy_doc_links=copy_doc_links,
    )

    job = RunJob(
        run_id=run.id,
        braze_url=braze_url,
        copy_doc_text=copy_doc_text,
        silo=silo,
        entity=entity,
        email_type=email_type,
        copy_doc_html=copy_doc_html,
        copy_doc_links=tuple(copy_doc_links),
        email_preview_links=tuple(normalise_link_array(body.email_preview_links)),
    )
    try:
        request.app.state.run_queue.submit(job)
    except QueueFullError as exc:
        runs.fail_run(conn, run.id, f"Run was not queued: {exc}")
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    logger.info("[queued] run=%s silo=%s entity=%s", run.id, silo, entity)
    return {"id": run.id}


@router.get("")
def list_qc_runs(
    request: Request,
    page: int = 1,
    page_size: int = Query(runs.DEFAULT_PAGE_SIZE, alias="pageSize"),
    silo: Optional[str] = None,
    entity: Optional[str] = None,
    started_from: Optional[float] = Query(None, alias="from"),
    started_to: Optional[float] = Query(None, alias="to"),
) -> dict[str, Any]:
    """Return one page of runs, newest first, with the total count."""
    conn = request.app.state.db
    items, total = runs.list_runs(
        conn,
        silo=silo or None,
        entity=entity or None,
        started_from=started_from,
        started_to=started_to,
        page=page,
        page_size=page_size,
    )
    take = min(page_size, runs.MAX_PAGE_SIZE) if page_size > 0 else runs.DEFAULT_PAGE_SIZE
    return {
        "data": [_run_summary(r) for r in items],
        "meta": {"total": total, "page": page if page > 0 else 1, "pageSize": take},
    }


@router.get("/{run_id}")
def get_qc_run(run_id: str, request: Request) -> dict[str, Any]:
    """Return the run record; poll this to follow a run's progress."""
    run = runs.get_run(request.app.state.db, run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="QC run not found")
    conn = request.app.state.db
    return _run_detail(
        run,
        audit=runs.get_audit_feedback(conn, run_id),
        issues=runs.list_issue_feedback(conn, run_id),
    )


@router.put("/{run_id}")
def rename_qc_run(run_id: str, body: RenameRequest, request: Request) -> dict[str, Any]:
    name = normalise_string(body.name)
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    try:
        run = runs.rename_run(request.app.state.db, run_id, name)
    except RunNotFoundError as exc:
        raise HTTPException(status_code=404, detail="QC run not found") from exc
    return {"run": _run_summary(run)}


@router.get("/{run_id}/feedback")
def get_run_feedback(run_id: str, request: Request) -> dict[str, Any]:
    try:
        record = runs.get_audit_feedback(request.app.state.db, run_id)
    except RunNotFoundError as exc:
        raise HTTPException(status_code=404, detail="QC run not found") from exc
    return {"feedback": _audit_feedback_dict(record)}


@router.put("/{run_id}/feedback")
def set_run_feedback(run_id: str, body: FeedbackRequest, request: Request) -> dict[str, Any]:
    """Store reviewer feedback on the run; a blank value removes it."""
    try:
        record = runs.set_audit_feedback(
            request.app.state.db, run_id, normalise_string(body.feedback)
        )
    except RunNotFoundError as exc:
        raise HTTPException(status_code=404, detail="QC run not found") from exc
    logger.info("[feedback] run=%s %s", run_id, "saved" if record else "cleared")
    return {"feedback": _audit_feedback_dict(record)}


@router.put("/{run_id}/issues/{check_id}")
def set_issue_status(
    run_id: str, check_id: str, body: IssueFeedbackRequest, request: Request
) -> dict[str, Any]:
    """Mark one check of the run as open, resolved or unwanted."""
    status = normalise_string(body.status) or ""
    try:
        record = runs.set_issue_feedback(
            request.app.state.db,
            run_id,
            check_id,
            status.lower(),
            normalise_string(body.feedback),
        )
    except InvalidIssueFeedback as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except CheckNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Check not found for this run") from exc
    logger.info("[feedback] run=%s check=%s status=%s", run_id, check_id, record.status.value)
    return {"feedback": _issue_feedback_dict(record)}
