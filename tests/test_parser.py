"""Tests for the email content parser and preview fetching.

Mocking strategy:
- ``respx`` patches ``httpx`` at the transport layer so ``fetch_preview_html``
  never touches the network.
- Everything else is pure HTML-in / dataclass-out.
"""

from __future__ import annotations

import json

import httpx
import pytest
import respx

from emailqc.errors import PreviewFetchError
from emailqc.parser import (
    Cta,
    build_fallback_preview_html,
    fetch_preview_html,
    is_host_allowed,
    parse_email,
)


# ---------------------------------------------------------------------------
# Fixtures / constants
# ---------------------------------------------------------------------------

_EMAIL_HTML = """\
<!DOCTYPE html>
<html>
<head>
  <title>Fallback title</title>
  <meta name="subject" content="  Your   weekly market update ">
  <style>.x { color: red; }</style>
</head>
<body>
  <div style="display:none; max-height:0">Markets moved this week, here is why</div>
  <table>
    <tr><td><p>Hello trader,</p></td></tr>
    <tr><td>Spreads are tighter than ever.</td></tr>
  </table>
  <p>Hello trader,</p>
  <a href="https://tradu.com/en/open-account">Open an account</a>
  <a href="https://tradu.com/en/open-account">Open an account</a>
  <a href="javascript:void(0)">Ignore me</a>
  <a href="https://click.example.com/t/123"
     data-saferedirecturl="https://tradu.com/en/support">Support</a>
  <script>var tracking = "https://evil.example.com";</script>
</body>
</html>
"""


def _embedded(body: str, subject: str | None = "Embedded subject") -> str:
    payload = {"message": {"payload": {"body": body, "subject": subject}}}
    return (
        "<html><head><title>Preview shell</title></head><body>"
        "<div>Shell chrome text</div>"
        f"<script>window.__INITIAL_PROPS__ = {json.dumps(payload)};</script>"
        "</body></html>"
    )


# ---------------------------------------------------------------------------
# parse_email
# ---------------------------------------------------------------------------

class TestParseEmail:
    def test_subject_from_meta_is_whitespace_normalised(self) -> None:
        assert parse_email(_EMAIL_HTML).subject == "Your weekly market update"

    def test_subject_falls_back_to_title(self) -> None:
        html = "<html><head><title> Plain title </title></head><body></body></html>"
        assert parse_email(html).subject == "Plain title"

    def test_og_title_used_before_title(self) -> None:
        html = (
            '<html><head><meta property="og:title" content="OG subject">'
            "<title>Other</title></head><body></body></html>"
        )
        assert parse_email(html).subject == "OG subject"

    def test_preheader_from_hidden_element(self) -> None:
        assert parse_email(_EMAIL_HTML).preheader == "Markets moved this week, here is why"

    def test_preheader_from_meta_wins(self) -> None:
        html = (
            '<html><head><meta name="preheader" content="Meta preheader"></head>'
            '<body><div style="display:none">Hidden preheader text</div></body></html>'
        )
        assert parse_email(html).preheader == "Meta preheader"

    def test_short_hidden_text_is_not_a_preheader(self) -> None:
        html = '<html><body><span style="display:none">Hi</span><p>Body copy</p></body></html>'
        assert parse_email(html).preheader is None

    def test_partial_opacity_is_not_hidden(self) -> None:
        html = '<html><body><div style="opacity:0.5">Half visible block of text</div></body></html>'
        assert parse_email(html).preheader is None

    def test_body_paragraphs_are_deduplicated_in_order(self) -> None:
        paragraphs = parse_email(_EMAIL_HTML).body_paragraphs
        assert paragraphs.count("Hello trader,") == 1
        assert paragraphs.index("Hello trader,") < paragraphs.index("Spreads are tighter than ever.")

    def test_script_content_never_leaks(self) -> None:
        preview = parse_email(_EMAIL_HTML)
        assert not any("tracking" in p for p in preview.body_paragraphs)
        assert "https://evil.example.com" not in preview.links

    def test_ctas_deduplicated_by_label_and_href(self) -> None:
        ctas = parse_email(_EMAIL_HTML).ctas
        assert ctas.count(Cta(label="Open an account", href="https://tradu.com/en/open-account")) == 1

    def test_links_include_saferedirect_alternate(self) -> None:
        links = parse_email(_EMAIL_HTML).links
        assert "https://click.example.com/t/123" in links
        assert "https://tradu.com/en/support" in links

    def test_javascript_links_rejected(self) -> None:
        links = parse_email(_EMAIL_HTML).links
        assert not any(link.lower().startswith("javascript:") for link in links)

    def test_links_are_unique(self) -> None:
        links = parse_email(_EMAIL_HTML).links
        assert len(links) == len(set(links))

    def test_empty_input_yields_empty_preview(self) -> None:
        preview = parse_email("")
        assert preview.subject is None
        assert preview.preheader is None
        assert preview.body_paragraphs == ()
        assert preview.links == ()

    def test_malformed_html_does_not_raise(self) -> None:
        preview = parse_email("<html><body><p>Unclosed <b>bold <a href='/x'>go")
        assert "/x" in preview.links

    def test_to_dict_is_json_serialisable(self) -> None:
        data = parse_email(_EMAIL_HTML).to_dict()
        json.dumps(data)
        assert data["ctas"][0]["label"] == "Open an account"


class TestEmbeddedPayload:
    def test_embedded_body_replaces_shell(self) -> None:
        html = _embedded('<p>Inner copy</p><a href="https://tradu.com/">Home</a>')
        preview = parse_email(html)
        assert preview.subject == "Embedded subject"
        assert "Inner copy" in preview.body_paragraphs
        assert "Shell chrome text" not in preview.body_paragraphs
        assert preview.links == ("https://tradu.com/",)

    def test_missing_embedded_subject_falls_back_to_inner_document(self) -> None:
        inner = "<html><head><title>Inner title</title></head><body><p>Copy</p></body></html>"
        assert parse_email(_embedded(inner, subject=None)).subject == "Inner title"

    def test_malformed_payload_parses_outer_document(self) -> None:
        html = (
            "<html><head><title>Outer</title></head><body><p>Outer copy</p>"
            "<script>window.__INITIAL_PROPS__ = {not json};</script></body></html>"
        )
        preview = parse_email(html)
        assert preview.subject == "Outer"
        assert "Outer copy" in preview.body_paragraphs

    def test_deeply_nested_payload_parses_outer_document(self) -> None:
        html = (
            "<html><head><title>Outer</title></head><body>"
            "<script>window.__INITIAL_PROPS__ = "
            + "[" * 100_000
            + "]" * 100_000
            + ";</script><a href='https://tradu.com/outer'>Outer link</a></body></html>"
        )
        preview = parse_email(html)
        assert preview.subject == "Outer"
        assert preview.links == ("https://tradu.com/outer",)


# ---------------------------------------------------------------------------
# Fetching / host allow-list / fallback
# ---------------------------------------------------------------------------

class TestIsHostAllowed:
    def test_empty_allow_list_permits_everything(self) -> None:
        assert is_host_allowed("https://anything.example.com/x", allowed_hosts=[]) is True

    def test_subdomain_of_allowed_host(self) -> None:
        assert is_host_allowed("https://preview.braze.com/p/1", allowed_hosts=["braze.com"])

    def test_lookalike_host_rejected(self) -> None:
        assert not is_host_allowed("https://notbraze.com/p/1", allowed_hosts=["braze.com"])

    def test_missing_host_rejected(self) -> None:
        assert not is_host_allowed("not a url", allowed_hosts=["braze.com"])


class TestFetchPreviewHtml:
    def test_returns_body(self) -> None:
        with respx.mock:
            respx.get("https://preview.example.com/p/1").mock(
                return_value=httpx.Response(200, text="<html><body>ok</body></html>")
            )
            assert "ok" in fetch_preview_html("https://preview.example.com/p/1")

    def test_http_error_raises(self) -> None:
        with respx.mock:
            respx.get("https://preview.example.com/missing").mock(
                return_value=httpx.Response(404)
            )
            with pytest.raises(httpx.HTTPStatusError):
                fetch_preview_html("https://preview.example.com/missing")

    def test_empty_body_raises(self) -> None:
        with respx.mock:
            respx.get("https://preview.example.com/empty").mock(
                return_value=httpx.Response(200, text="   ")
            )
            with pytest.raises(PreviewFetchError):
                fetch_preview_html("https://preview.example.com/empty")


class TestFallbackPreview:
    def test_plain_text_split_into_escaped_paragraphs(self) -> None:
        html = build_fallback_preview_html("First <para>\n\nSecond para")
        preview = parse_email(html)
        assert preview.body_paragraphs == ("First <para>", "Second para")

    def test_copy_doc_html_used_verbatim(self) -> None:
        html = build_fallback_preview_html("ignored", '<p>From HTML</p><a href="https://tradu.com/x">x</a>')
        preview = parse_email(html)
        assert "From HTML" in preview.body_paragraphs
        assert "https://tradu.com/x" in preview.links

    def test_empty_copy_yields_placeholder(self) -> None:
        assert "No preview content available" in build_fallback_preview_html("")
