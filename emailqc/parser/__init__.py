"""Parser package: preview fetch & structured email extraction."""

from emailqc.parser.extractor import parse_email
from emailqc.parser.fetcher import (
    build_fallback_preview_html,
    fetch_preview_html,
    is_host_allowed,
)
from emailqc.parser.models import Cta, EmailPreview

__all__ = [
    "parse_email",
    "fetch_preview_html",
    "build_fallback_preview_html",
    "is_host_allowed",
    "Cta",
    "EmailPreview",
]
