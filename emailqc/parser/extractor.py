"""Email content extraction: turns preview HTML into an :class:`EmailPreview`.

The parser never raises on malformed input; missing pieces come back as
``None`` or empty sequences.
"""

from __future__ import annotations

import json
import re
from typing import Iterable, List, Optional

from bs4 import BeautifulSoup, Tag

from emailqc.parser.models import Cta, EmailPreview


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Preview pages ship the rendered message as JSON assigned to this global.
_EMBEDDED_PAYLOAD_MARKER = "window.__INITIAL_PROPS__"

_STRIPPED_TAGS = ["script", "style", "noscript", "svg"]

_BLOCK_TAGS = ["p", "li", "td", "span", "div"]

_LINK_ATTRIBUTES = ("href", "data-href", "data-url", "data-saferedirecturl")
_IGNORED_LINK_TAGS = frozenset({"base", "link", "meta", "script", "style"})

_HIDDEN_STYLE = re.compile(
    r"display\s*:\s*none"
    r"|opacity\s*:\s*0(?:\.0+)?(?![.\d])"
    r"|visibility\s*:\s*hidden"
    r"|(?<![\w-])(?:max-)?height\s*:\s*0(?![.\d])"
    r"|font-size\s*:\s*(?:0(?![.\d])|1px)",
    re.IGNORECASE,
)

_JAVASCRIPT_HREF = re.compile(r"^javascript:", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")

_PREHEADER_MIN_LENGTH = 5
_PREHEADER_MAX_LENGTH = 200


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _normalise_whitespace(value: str) -> str:
    return _WHITESPACE.sub(" ", value).strip()


def _attr(element: Tag, name: str) -> str:
    """Return an attribute as a trimmed string, whatever bs4 stored it as."""
    value = element.get(name)
    if value is None:
        return ""
    if isinstance(value, list):
        value = " ".join(value)
    return str(value).strip()


def _extract_embedded_message(raw_html: str) -> tuple[str, Optional[str]] | None:
    """Return ``(inner_html, subject)`` from an embedded preview payload.

    The payload is whatever follows ``window.__INITIAL_PROPS__ =`` up to the
    next ``</script>``.  Anything malformed yields ``None`` so the caller can
    parse the outer document instead.
    """
    marker_index = raw_html.find(_EMBEDDED_PAYLOAD_MARKER)
    if marker_index == -1:
        return None

    json_start = raw_html.find("=", marker_index)
    if json_start == -1:
        return None

    script_close = raw_html.find("</script>", json_start)
    if script_close == -1:
        return None

    payload = raw_html[json_start + 1:script_close].strip()
    if payload.endswith(";"):
        payload = payload[:-1].rstrip()
    if not payload:
        return None

    try:
        parsed = json.loads(payload)
    except (ValueError, RecursionError):
        return None

    if not isinstance(parsed, dict):
        return None
    message = parsed.get("message")
    inner = message.get("payload") if isinstance(message, dict) else None
    if not isinstance(inner, dict):
        return None

    body = inner.get("body")
    if not isinstance(body, str) or not body.strip():
        return None

    subject = inner.get("subject")
    return body, subject if isinstance(subject, str) else None


def _extract_subject(soup: BeautifulSoup) -> Optional[str]:
    for attrs in ({"name": "subject"}, {"name": "og:title"}, {"property": "og:title"}):
        meta = soup.find("meta", attrs=attrs)
        if isinstance(meta, Tag):
            cleaned = _normalise_whitespace(_attr(meta, "content"))
            if cleaned:
                return cleaned

    title = soup.find("title")
    if title is None:
        return None
    return _normalise_whitespace(title.get_text()) or None


def _extract_preheader(soup: BeautifulSoup) -> Optional[str]:
    explicit = soup.select_one("meta[name='preheader'], meta[name='preview_text']")
    if explicit is not None:
        cleaned = _normalise_whitespace(_attr(explicit, "content"))
        if cleaned:
            return cleaned

    root = soup.body or soup
    for element in root.find_all(style=True):
        if not _HIDDEN_STYLE.search(_attr(element, "style")):
            continue
        text = _normalise_whitespace(element.get_text())
        if _PREHEADER_MIN_LENGTH < len(text) < _PREHEADER_MAX_LENGTH:
            return text
    return None


def _extract_body_paragraphs(soup: BeautifulSoup) -> List[str]:
    """Collect visible text blocks, innermost first, deduplicated in order.

    Containers holding further block elements are skipped so the same text
    is not captured at several nesting levels; ``<p>`` is always kept.
    """
    root = soup.body or soup
    paragraphs: List[str] = []
    seen: set[str] = set()

    for element in root.find_all(_BLOCK_TAGS):
        if element.name != "p" and element.find(_BLOCK_TAGS) is not None:
            continue
        text = _normalise_whitespace(element.get_text())
        if len(text) < 2 or text in seen:
            continue
        seen.add(text)
        paragraphs.append(text)

    return paragraphs


def _extract_ctas(soup: BeautifulSoup) -> List[Cta]:
    ctas: List[Cta] = []
    seen: set[tuple[str, str]] = set()

    for anchor in soup.find_all("a", href=True):
        href = _attr(anchor, "href")
        label = _normalise_whitespace(anchor.get_text())
        if not href or not label:
            continue
        key = (label, href)
        if key in seen:
            continue
        seen.add(key)
        ctas.append(Cta(label=label, href=href))

    return ctas


def _iter_link_values(element: Tag) -> Iterable[str]:
    for name in _LINK_ATTRIBUTES:
        value = _attr(element, name)
        if value and not _JAVASCRIPT_HREF.match(value):
            yield value


def _extract_links(soup: BeautifulSoup) -> List[str]:
    """Return every href-like value, keeping alternates next to tracking hrefs.

    All qualifying attributes on an element are recorded, which lets a real
    destination in ``data-saferedirecturl`` survive next to a tracking href.
    """
    links: dict[str, None] = {}
    for element in soup.find_all(True):
        if element.name in _IGNORED_LINK_TAGS:
            continue
        for value in _iter_link_values(element):
            links.setdefault(value, None)
    return list(links)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_email(html: str) -> EmailPreview:
    """Parse a rendered email preview into structured content.

    When the document embeds the real message as a JSON payload inside a
    script block, the embedded HTML is parsed instead and its ``subject``
    takes precedence over anything found in meta tags or ``<title>``.
    """
    embedded = _extract_embedded_message(html or "")
    document = embedded[0] if embedded else (html or "")
    embedded_subject = embedded[1] if embedded else None

    soup = BeautifulSoup(document, "html.parser")
    for tag in soup(_STRIPPED_TAGS):
        tag.decompose()

    return EmailPreview(
        subject=embedded_subject or _extract_subject(soup),
        preheader=_extract_preheader(soup),
        body_paragraphs=tuple(_extract_body_paragraphs(soup)),
        ctas=tuple(_extract_ctas(soup)),
        links=tuple(_extract_links(soup)),
    )
