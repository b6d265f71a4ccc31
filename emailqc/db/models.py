"""Dataclass models representing DB rows.

These are plain Python objects – not ORM models.  The DB layer serialises /
deserialises to and from these types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from emailqc.links.models import CopyDocLink, LinkProbeResult, LinkRule


class CheckType(str, Enum):
    CONTENT_MISMATCH = "content_mismatch"
    SUBJECT_PREHEADER = "subject_preheader"
    DISCLAIMER = "disclaimer"
    KEYWORD_DISCLAIMER = "keyword_disclaimer"
    SYSTEM_NOTICE = "system_notice"
    FETCH_FAILURE = "fetch_failure"
    LINK_REQUIREMENT = "link_requirement"


# The only check types the content-validation model may emit.
MODEL_CHECK_TYPES = frozenset(
    {
        CheckType.CONTENT_MISMATCH,
        CheckType.SUBJECT_PREHEADER,
        CheckType.DISCLAIMER,
        CheckType.KEYWORD_DISCLAIMER,
    }
)


@dataclass(frozen=True)
class CheckResult:
    type: CheckType
    name: str
    passed: bool
    details: Any = None
    id: Optional[str] = None  # assigned when persisted


class IssueStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"
    UNWANTED = "unwanted"


@dataclass(frozen=True)
class AuditFeedback:
    run_id: str
    feedback: str
    created_at: float
    updated_at: float


@dataclass(frozen=True)
class IssueFeedback:
    check_id: str
    run_id: str
    status: IssueStatus
    feedback: Optional[str]
    created_at: float
    updated_at: float


@dataclass
class QcRun:
    id: str
    name: Optional[str]
    status: str
    braze_url: str
    copy_doc_text: str
    copy_doc_html: Optional[str]
    copy_doc_links: list[CopyDocLink]
    silo: str
    entity: str
    email_type: str
    summary_pass: Optional[bool]
    model_version: Optional[str]
    started_at: float
    finished_at: Optional[float]
    checks: list[CheckResult] = field(default_factory=list)
    links: list[LinkProbeResult] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Rule records (read-only to the pipeline)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class KeywordRule:
    keyword: str
    required_text: str


@dataclass(frozen=True)
class AdditionalRule:
    topic: str
    silo: str
    entity: str
    text: str
    links: Any = None
    notes: Optional[str] = None
    version: Optional[str] = None


@dataclass
class RuleSet:
    risk_rules: list[str] = field(default_factory=list)
    disclaimer_rules: list[str] = field(default_factory=list)
    keyword_rules: list[KeywordRule] = field(default_factory=list)
    additional_rules: list[AdditionalRule] = field(default_factory=list)
    link_rules: list[LinkRule] = field(default_factory=list)
