"""QC run orchestration.

``process_run`` is the single entry point.  It walks one run through the
stage sequence, persisting each transition so pollers can follow along:

    fetch preview → parse → load rules → run model → check links → save

A failed preview fetch is advisory (a fallback document is synthesised from
the copy doc); a failed model call, or any other unexpected error, marks the
run ``failed`` with one diagnostic check and stops.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from emailqc.db import rules as rule_store
from emailqc.db import runs
from emailqc.db.models import CheckResult, CheckType, RuleSet
from emailqc.errors import ModelInvocationError
from emailqc.links.checker import LinkChecker, skipped_link_results
from emailqc.links.copydoc import merge_email_links
from emailqc.links.models import CopyDocLink, LinkProbeResult
from emailqc.links.rules import evaluate_copy_doc_coverage, evaluate_link_rules
from emailqc.parser import build_fallback_preview_html, fetch_preview_html, parse_email
from emailqc.parser.models import EmailPreview
from emailqc.pipeline.model import (
    AdditionalRulePayload,
    KeywordRulePayload,
    QcModel,
    QcModelInput,
    QcModelOutput,
)
from emailqc.pipeline.stages import RunStage
from emailqc.utils import describe_run_error

logger = logging.getLogger(__name__)

PreviewFetcher = Callable[[str], str]


@dataclass(frozen=True)
class RunJob:
    """Everything the orchestrator needs to process one submitted run."""

    run_id: str
    braze_url: str
    copy_doc_text: str
    silo: str
    entity: str
    email_type: str = "marketing"
    copy_doc_html: Optional[str] = None
    copy_doc_links: tuple[CopyDocLink, ...] = field(default_factory=tuple)
    email_preview_links: tuple[str, ...] = field(default_factory=tuple)


# ---------------------------------------------------------------------------
# Stage helpers
# ---------------------------------------------------------------------------

def _fetch_preview(
    job: RunJob,
    fetcher: PreviewFetcher,
    mock: bool,
    checks: List[CheckResult],
) -> str:
    try:
        return fetcher(job.braze_url)
    except Exception as exc:  # noqa: BLE001
        logger.warning("[fetching_preview] run=%s preview fetch failed: %s", job.run_id, exc)
        if mock:
            checks.append(
                CheckResult(
                    type=CheckType.SYSTEM_NOTICE,
                    name="Preview fallback",
                    passed=False,
                    details=(
                        "Preview could not be fetched. Generated fallback HTML "
                        "from the copy document instead."
                    ),
                )
            )
        else:
            checks.append(
                CheckResult(
                    type=CheckType.FETCH_FAILURE,
                    name="Preview fetch failed",
                    passed=False,
                    details=f"Failed to load preview: {describe_run_error(exc)}",
                )
            )
        return build_fallback_preview_html(job.copy_doc_text, job.copy_doc_html)


def _model_input(job: RunJob, rule_set: RuleSet, parsed: EmailPreview, html: str) -> QcModelInput:
    preview = parsed.to_dict()
    preview.pop("links", None)
    return QcModelInput(
        entity=job.entity,
        silo=job.silo,
        emailType=job.email_type,
        risk_rules=rule_set.risk_rules,
        disclaimer_rules=rule_set.disclaimer_rules,
        keyword_rules=[
            KeywordRulePayload(keyword=r.keyword, requiredText=r.required_text)
            for r in rule_set.keyword_rules
        ],
        additional_rules=[
            AdditionalRulePayload(
                topic=r.topic,
                silo=r.silo,
                entity=r.entity,
                text=r.text,
                links=r.links,
                notes=r.notes,
            )
            for r in rule_set.additional_rules
        ],
        braze_preview_url=job.braze_url,
        parsed_email=preview,
        raw_html=html,
        copy_document_text=job.copy_doc_text,
    )


def _run_model(model: QcModel, payload: QcModelInput) -> QcModelOutput:
    try:
        return model.run(payload)
    except Exception as exc:
        raise ModelInvocationError(
            f"Content validation model failed: {describe_run_error(exc)}"
        ) from exc


def _link_checks(job: RunJob, rule_set: RuleSet, email_links: List[str]) -> List[CheckResult]:
    checks: List[CheckResult] = []

    if rule_set.link_rules:
        requirement = evaluate_link_rules(rule_set.link_rules, email_links)
        checks.append(
            CheckResult(
                type=CheckType.LINK_REQUIREMENT,
                name="Link requirements",
                passed=not requirement.missing,
                details={
                    "evaluated": len(rule_set.link_rules),
                    "matched": requirement.matched,
                    "missing": requirement.missing,
                },
            )
        )

    if job.copy_doc_links:
        coverage = evaluate_copy_doc_coverage(job.copy_doc_links, email_links)
        checks.append(
            CheckResult(
                type=CheckType.LINK_REQUIREMENT,
                name="Copy doc link coverage",
                passed=not coverage.missing,
                details={
                    "copy_doc_links": len(job.copy_doc_links),
                    "matched": coverage.matched,
                    "missing": coverage.missing,
                },
            )
        )

    return checks


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def process_run(
    conn: sqlite3.Connection,
    job: RunJob,
    model: QcModel,
    link_checker: Optional[LinkChecker] = None,
    preview_fetcher: PreviewFetcher = fetch_preview_html,
) -> None:
    """Drive *job* from ``queued`` to ``completed`` (or ``failed``).

    Never raises for run-level problems: failures are persisted on the run
    record, which is the only way callers learn about them.
    """
    mock = bool(getattr(model, "mock", False))
    checker = link_checker or LinkChecker()
    additional: List[CheckResult] = []

    def stage(value: RunStage) -> None:
        logger.info("[%s] run=%s", value.value, job.run_id)
        runs.advance_status(conn, job.run_id, value)

    try:
        stage(RunStage.FETCHING_PREVIEW)
        html = _fetch_preview(job, preview_fetcher, mock, additional)

        stage(RunStage.PARSING_PREVIEW)
        parsed = parse_email(html)
        email_links = merge_email_links(job.email_preview_links, parsed.links)

        stage(RunStage.LOADING_RULES)
        rule_set = rule_store.load_rules(conn, job.entity, job.silo, job.email_type)

        stage(RunStage.RUNNING_MODEL)
        output = _run_model(model, _model_input(job, rule_set, parsed, html))
        if mock:
            additional.append(
                CheckResult(
                    type=CheckType.SYSTEM_NOTICE,
                    name="Mock QC mode",
                    passed=True,
                    details=(
                        "QC model ran in mock mode; results are generated locally "
                        "for development and links were not probed."
                    ),
                )
            )

        stage(RunStage.CHECKING_LINKS)
        link_results: List[LinkProbeResult] = (
            skipped_link_results(email_links) if mock else checker.check_links(email_links)
        )
        additional.extend(_link_checks(job, rule_set, email_links))
        logger.info(
            "[checking_links] run=%s probed %d link(s), %d not ok",
            job.run_id,
            len(link_results),
            sum(1 for link in link_results if not link.ok),
        )

        stage(RunStage.SAVING_RESULTS)
        model_checks = [
            CheckResult(type=c.type, name=c.name, passed=c.passed, details=c.details)
            for c in output.checks
        ]
        runs.finalize_run(
            conn,
            job.run_id,
            summary_pass=output.summary_pass,
            model_version=output.model_version,
            checks=[*model_checks, *additional],
            links=link_results,
        )
        logger.info("[completed] run=%s summary_pass=%s", job.run_id, output.summary_pass)

    except Exception as exc:  # noqa: BLE001
        description = describe_run_error(exc)
        logger.exception("[failed] run=%s %s", job.run_id, description)
        try:
            runs.fail_run(conn, job.run_id, description)
        except Exception:  # noqa: BLE001
            logger.exception("[failed] run=%s could not record failure", job.run_id)
