"""Link requirement and copy-document coverage matching."""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence
from urllib.parse import urlsplit

from emailqc.links.models import (
    CopyDocCoverageResult,
    CopyDocLink,
    CopyDocLinkMatch,
    LinkRequirementMatch,
    LinkRequirementMiss,
    LinkRequirementResult,
    LinkRule,
    MatchType,
    NormalizedHref,
)


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------

def _normalise_absolute(scheme: str, hostname: str, port: Optional[int], path: str, query: str) -> NormalizedHref:
    host = hostname + (f":{port}" if port is not None else "")
    trimmed_path = path.rstrip("/") or "/"
    base = f"{scheme}://{host}{trimmed_path}".lower()
    search = f"?{query}".lower() if query else ""
    return NormalizedHref(base=base, with_search=f"{base}{search}")


def _normalise_relative(value: str) -> Optional[NormalizedHref]:
    without_hash = value.split("#", 1)[0].strip()
    path_part, _, search_part = without_hash.partition("?")
    raw_path = path_part.rstrip("/")
    path = raw_path or ("/" if value.startswith("/") else raw_path)
    base = path.lower()
    search = f"?{search_part.lower()}" if search_part else ""
    if not base and not search:
        return None
    return NormalizedHref(base=base, with_search=f"{base}{search}")


def normalize_href(value: str) -> Optional[NormalizedHref]:
    """Return the comparison forms of *value*, or ``None`` for blanks.

    A trailing slash on the path is insignificant and host, path and query
    are lower-cased; fragments are ignored.  Relative values fall back to a
    path-only comparison.
    """
    trimmed = (value or "").strip()
    if not trimmed:
        return None

    try:
        parts = urlsplit(trimmed)
        hostname = parts.hostname or ""
        port = parts.port
    except ValueError:
        return _normalise_relative(trimmed)

    if not parts.scheme:
        return _normalise_relative(trimmed)

    return _normalise_absolute(parts.scheme, hostname, port, parts.path, parts.query)


# ---------------------------------------------------------------------------
# Link requirement rules
# ---------------------------------------------------------------------------

def matches_pattern(url: str, pattern: str, match_type: MatchType) -> bool:
    """Case-insensitive test of *url* against *pattern*."""
    value = url.lower()
    matcher = pattern.lower()
    if match_type is MatchType.STARTS_WITH:
        return value.startswith(matcher)
    if match_type is MatchType.ENDS_WITH:
        return value.endswith(matcher)
    if match_type is MatchType.EXACT:
        return value == matcher
    return matcher in value


def evaluate_link_rules(rules: Iterable[LinkRule], email_links: Iterable[str]) -> LinkRequirementResult:
    """Split active *rules* into those satisfied by some email link and the rest.

    The first matching link (in email-link order) is reported per rule; rule
    declaration order is preserved in both output lists.
    """
    cleaned = [href.strip() for href in email_links if href and href.strip()]
    matched: List[LinkRequirementMatch] = []
    missing: List[LinkRequirementMiss] = []

    for rule in rules:
        if not rule.active:
            continue
        pattern = (rule.href_pattern or "").strip()
        if not pattern:
            continue
        match_type = MatchType.coerce(rule.match_type)

        hit = next((link for link in cleaned if matches_pattern(link, pattern, match_type)), None)
        if hit is not None:
            matched.append(
                LinkRequirementMatch(
                    rule_id=rule.id,
                    kind=rule.kind,
                    href_pattern=pattern,
                    match_type=match_type.value,
                    matched_url=hit,
                )
            )
        else:
            missing.append(
                LinkRequirementMiss(
                    rule_id=rule.id,
                    kind=rule.kind,
                    href_pattern=pattern,
                    match_type=match_type.value,
                )
            )

    return LinkRequirementResult(matched=matched, missing=missing)


# ---------------------------------------------------------------------------
# Copy-document coverage
# ---------------------------------------------------------------------------

def evaluate_copy_doc_coverage(
    copy_doc_links: Sequence[CopyDocLink],
    email_links: Iterable[str],
) -> CopyDocCoverageResult:
    """Report which copy-doc links appear in the email, ignoring cosmetic differences."""
    if not copy_doc_links:
        return CopyDocCoverageResult(matched=[], missing=[])

    lookup: dict[str, str] = {}
    for href in email_links:
        normalised = normalize_href(href)
        if normalised is None:
            continue
        for key in (normalised.with_search, normalised.base):
            if key:
                lookup.setdefault(key, href)

    matched: List[CopyDocLinkMatch] = []
    missing: List[CopyDocLink] = []
    for link in copy_doc_links:
        normalised = normalize_href(link.href)
        if normalised is None:
            continue
        email_href = lookup.get(normalised.with_search) or lookup.get(normalised.base)
        if email_href:
            matched.append(CopyDocLinkMatch(href=link.href, label=link.label, matched_url=email_href))
        else:
            missing.append(link)

    return CopyDocCoverageResult(matched=matched, missing=missing)
