"""Link package: verification, requirement rules and copy-doc coverage."""

from emailqc.links.checker import LinkChecker
from emailqc.links.copydoc import merge_email_links
from emailqc.links.models import CopyDocLink, LinkProbeResult, LinkRule, ProbeNote
from emailqc.links.rules import (
    evaluate_copy_doc_coverage,
    evaluate_link_rules,
    normalize_href,
)

__all__ = [
    "LinkChecker",
    "LinkProbeResult",
    "LinkRule",
    "CopyDocLink",
    "ProbeNote",
    "evaluate_link_rules",
    "evaluate_copy_doc_coverage",
    "normalize_href",
    "merge_email_links",
]
