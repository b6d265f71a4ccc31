"""Copy-document link helpers and email-link merging."""

from __future__ import annotations

from typing import Any, Iterable, List, Optional

from bs4 import BeautifulSoup

from emailqc.links.models import CopyDocLink


def normalise_copy_doc_html(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def normalise_copy_doc_links(value: Any) -> List[CopyDocLink]:
    """Coerce an untrusted list of ``{href, label}`` mappings into links.

    Entries without a usable ``href`` are dropped; labels default to ``""``.
    """
    if not isinstance(value, (list, tuple)):
        return []

    links: List[CopyDocLink] = []
    for entry in value:
        if isinstance(entry, CopyDocLink):
            href, label = entry.href, entry.label
        elif isinstance(entry, dict):
            href, label = entry.get("href"), entry.get("label")
        else:
            continue
        href = href.strip() if isinstance(href, str) else ""
        label = label.strip() if isinstance(label, str) else ""
        if href:
            links.append(CopyDocLink(href=href, label=label))
    return links


def extract_copy_doc_links_from_html(html: Optional[str]) -> List[CopyDocLink]:
    """Return every anchor with a non-empty href in the copy-doc HTML."""
    if not html:
        return []

    soup = BeautifulSoup(f"<body>{html}</body>", "html.parser")
    links: List[CopyDocLink] = []
    for anchor in soup.find_all("a"):
        href = str(anchor.get("href") or "").strip()
        if href:
            links.append(CopyDocLink(href=href, label=anchor.get_text().strip()))
    return links


def merge_email_links(primary: Iterable[Any], secondary: Iterable[Any]) -> List[str]:
    """Union of two link lists: trimmed, blanks dropped, first occurrence wins."""
    unique: dict[str, None] = {}
    for source in (primary, secondary):
        for value in source:
            if not isinstance(value, str):
                continue
            trimmed = value.strip()
            if trimmed:
                unique.setdefault(trimmed, None)
    return list(unique)


def normalise_link_array(value: Any) -> List[str]:
    """Return trimmed, non-empty strings from an array-like payload."""
    if not isinstance(value, (list, tuple)):
        return []
    return [entry.strip() for entry in value if isinstance(entry, str) and entry.strip()]
