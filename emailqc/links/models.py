"""Data models for link verification and link matching."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Optional


class ProbeNote(str, Enum):
    """Closed vocabulary explaining a probe outcome."""

    NO_RESPONSE = "no_response"
    REDIRECT_MISSING_LOCATION = "redirect_missing_location"
    DEV_DOMAIN_DETECTED = "dev_domain_detected"
    UNAPPROVED_DOMAIN = "unapproved_domain"
    HTTP_ERROR = "http_error"
    TOO_MANY_REDIRECTS = "too_many_redirects"
    NON_HTTP_LINK = "non_http_link"
    INVALID_URL = "invalid_url"
    UNSUPPORTED_PROTOCOL = "unsupported_protocol"
    LINK_CHECK_SKIPPED = "link_check_skipped"


class MatchType(str, Enum):
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    EXACT = "exact"

    @classmethod
    def coerce(cls, value: Any) -> "MatchType":
        """Map stored strings to a member, defaulting to ``contains``."""
        try:
            return cls(value)
        except ValueError:
            return cls.CONTAINS


@dataclass(frozen=True)
class LinkProbeResult:
    """Outcome of probing one distinct link.  ``url`` is always the input."""

    url: str
    ok: bool
    redirected: bool = False
    status_code: Optional[int] = None
    final_url: Optional[str] = None
    notes: Optional[ProbeNote] = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["notes"] = self.notes.value if self.notes else None
        return data


@dataclass(frozen=True)
class LinkRule:
    id: str
    entity: str
    silo: Optional[str]
    email_type: str
    kind: str
    match_type: str
    href_pattern: str
    active: bool = True


@dataclass(frozen=True)
class CopyDocLink:
    href: str
    label: str = ""


@dataclass(frozen=True)
class NormalizedHref:
    base: str
    with_search: str


@dataclass(frozen=True)
class LinkRequirementMatch:
    rule_id: str
    kind: str
    href_pattern: str
    match_type: str
    matched_url: str


@dataclass(frozen=True)
class LinkRequirementMiss:
    rule_id: str
    kind: str
    href_pattern: str
    match_type: str


@dataclass(frozen=True)
class LinkRequirementResult:
    matched: list[LinkRequirementMatch]
    missing: list[LinkRequirementMiss]


@dataclass(frozen=True)
class CopyDocLinkMatch:
    href: str
    label: str
    matched_url: str


@dataclass(frozen=True)
class CopyDocCoverageResult:
    matched: list[CopyDocLinkMatch]
    missing: list[CopyDocLink]
