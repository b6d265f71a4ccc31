"""Preview fetching, host allow-listing and the copy-doc fallback document."""

from __future__ import annotations

import html as html_lib
import re
from typing import Optional, Sequence
from urllib.parse import urlsplit

import httpx

from emailqc.config import settings
from emailqc.errors import PreviewFetchError

_DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/118.0.0.0 Safari/537.36"
    )
}

_PARAGRAPH_BREAK = re.compile(r"\n{2,}")

_FALLBACK_TEMPLATE = (
    '<!doctype html><html lang="en"><head><meta charset="utf-8">'
    "<title>Fallback preview</title></head><body>{body}</body></html>"
)


def is_host_allowed(url: str, allowed_hosts: Optional[Sequence[str]] = None) -> bool:
    """Return ``True`` if *url*'s host is on the preview allow-list.

    An empty allow-list permits every host.  Otherwise the host must equal an
    entry or be a subdomain of one.
    """
    hosts = settings.allowed_preview_hosts if allowed_hosts is None else allowed_hosts
    allowed = [h.strip().lower() for h in hosts if h and h.strip()]
    if not allowed:
        return True

    hostname = (urlsplit(url).hostname or "").lower()
    if not hostname:
        return False
    return any(hostname == host or hostname.endswith(f".{host}") for host in allowed)


def fetch_preview_html(url: str, client: Optional[httpx.Client] = None) -> str:
    """Fetch the rendered preview at *url* and return its HTML.

    Raises:
        httpx.HTTPStatusError: If the server returns a 4xx/5xx status code.
        httpx.RequestError: On transport failures (timeouts, DNS, ...).
        PreviewFetchError: If the response body is empty.
    """
    if client is None:
        with httpx.Client(
            headers=_DEFAULT_HEADERS,
            timeout=settings.preview_fetch_timeout,
            follow_redirects=True,
        ) as own_client:
            return fetch_preview_html(url, own_client)

    response = client.get(url, headers=_DEFAULT_HEADERS)
    response.raise_for_status()
    body = response.text
    if not body or not body.strip():
        raise PreviewFetchError("Preview response returned empty body")
    return body


def build_fallback_preview_html(copy_doc_text: str, copy_doc_html: Optional[str] = None) -> str:
    """Synthesize a preview document from the approved copy.

    Raw copy-doc HTML is used verbatim when present; otherwise plain text is
    split on blank lines into escaped paragraphs.
    """
    raw_html = (copy_doc_html or "").strip()
    if raw_html:
        return _FALLBACK_TEMPLATE.format(body=raw_html)

    paragraphs = [
        f"<p>{html_lib.escape(segment.strip())}</p>"
        for segment in _PARAGRAPH_BREAK.split(copy_doc_text or "")
        if segment.strip()
    ]
    body = "\n".join(paragraphs) if paragraphs else "<p>(No preview content available)</p>"
    return _FALLBACK_TEMPLATE.format(body=body)
