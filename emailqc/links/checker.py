"""Link verification: classify a URL, follow its redirects, judge the host.

``LinkChecker.probe`` handles one URL; ``LinkChecker.check_links`` probes a
batch on a bounded thread pool so a long link list never fans out into an
unbounded number of concurrent connections.
"""

from __future__ import annotations

import ipaddress
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional, Sequence
from urllib.parse import urljoin, urlsplit

import httpx

from emailqc.config import settings
from emailqc.links.models import LinkProbeResult, ProbeNote

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})

_NON_HTTP_LINK = re.compile(r"^(mailto:|tel:|sms:)", re.IGNORECASE)
_HTTP_SCHEMES = frozenset({"http", "https"})

# Control characters, space and URL delimiters are never valid in a host.
_FORBIDDEN_HOST_CHARS = re.compile(r"[\x00-\x20#%/:<>?@\[\\\]^|\x7f]")


# ---------------------------------------------------------------------------
# Host classification helpers
# ---------------------------------------------------------------------------

def is_non_http_link(url: str) -> bool:
    return bool(_NON_HTTP_LINK.match(url))


def is_valid_hostname(hostname: str) -> bool:
    """Return ``True`` if *hostname* can be sent as a request host.

    Bracketed IPv6 literals arrive here without their brackets and are
    accepted only if they parse as an address.
    """
    if not hostname:
        return False
    if ":" in hostname:
        try:
            ipaddress.IPv6Address(hostname)
        except ValueError:
            return False
        return True
    return not _FORBIDDEN_HOST_CHARS.search(hostname)


def url_problem(url: str) -> Optional[ProbeNote]:
    """Return why *url* cannot be requested, or ``None`` if it can.

    Ports outside 0-65535 or non-numeric, hosts with forbidden characters
    and missing schemes or hosts are all ``invalid_url``; a scheme other
    than http(s) is ``unsupported_protocol``.
    """
    try:
        parts = urlsplit(url)
        hostname = parts.hostname or ""
        parts.port  # raises ValueError for a malformed or out-of-range port
    except ValueError:
        return ProbeNote.INVALID_URL

    if not parts.scheme:
        return ProbeNote.INVALID_URL
    if parts.scheme.lower() not in _HTTP_SCHEMES:
        return ProbeNote.UNSUPPORTED_PROTOCOL
    if not is_valid_hostname(hostname):
        return ProbeNote.INVALID_URL
    return None


def contains_dev_pattern(hostname: str, patterns: Sequence[str]) -> bool:
    """Return ``True`` if *hostname* looks like a development/staging host."""
    lower = hostname.lower()
    return any(pattern and pattern.lower() in lower for pattern in patterns)


def hostname_matches_approved(hostname: str, approved: Sequence[str]) -> bool:
    """Return ``True`` if *hostname* is an approved domain or a subdomain of one.

    An empty allow-list approves every domain.
    """
    if not approved:
        return True
    lower = hostname.lower()
    return any(lower == domain or lower.endswith(f".{domain}") for domain in approved)


# ---------------------------------------------------------------------------
# Checker
# ---------------------------------------------------------------------------

class LinkChecker:
    """Probe links with manual redirect following.

    Args:
        approved_domains: Allow-list for resolved hosts (empty = all approved).
        dev_host_patterns: Substrings that flag a host as non-production.
        max_redirects: Redirect hops followed before giving up.
        timeout: Per-request timeout in seconds.
        concurrency: Worker ceiling for :meth:`check_links`.
        client: Optional shared ``httpx.Client``; one is created per batch
            when omitted.
    """

    def __init__(
        self,
        approved_domains: Optional[Sequence[str]] = None,
        dev_host_patterns: Optional[Sequence[str]] = None,
        max_redirects: Optional[int] = None,
        timeout: Optional[float] = None,
        concurrency: Optional[int] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        domains = settings.approved_link_domains if approved_domains is None else approved_domains
        patterns = settings.dev_host_patterns if dev_host_patterns is None else dev_host_patterns
        self.approved_domains = [d.strip().lower() for d in domains if d and d.strip()]
        self.dev_host_patterns = [p.strip().lower() for p in patterns if p and p.strip()]
        self.max_redirects = settings.link_check_max_redirects if max_redirects is None else max_redirects
        self.timeout = settings.link_check_timeout if timeout is None else timeout
        self.concurrency = max(1, settings.link_check_concurrency if concurrency is None else concurrency)
        self._client = client

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def probe(self, url: str) -> LinkProbeResult:
        """Classify and, where needed, fetch a single *url*."""
        if self._client is not None:
            return self._probe(self._client, url)
        with self._new_client() as client:
            return self._probe(client, url)

    def check_links(self, urls: Iterable[str]) -> List[LinkProbeResult]:
        """Probe every URL in *urls*; results come back in input order."""
        targets = list(urls)
        if not targets:
            return []

        if self._client is not None:
            return self._run_pool(self._client, targets)
        with self._new_client() as client:
            return self._run_pool(client, targets)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _new_client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, follow_redirects=False)

    def _run_pool(self, client: httpx.Client, targets: List[str]) -> List[LinkProbeResult]:
        workers = min(self.concurrency, len(targets))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="linkcheck") as pool:
            return list(pool.map(lambda target: self._probe(client, target), targets))

    def _probe(self, client: httpx.Client, url: str) -> LinkProbeResult:
        if is_non_http_link(url):
            return LinkProbeResult(url=url, ok=True, notes=ProbeNote.NON_HTTP_LINK)

        problem = url_problem(url)
        if problem is not None:
            return LinkProbeResult(url=url, ok=False, notes=problem)

        hostname = urlsplit(url).hostname or ""
        if contains_dev_pattern(hostname, self.dev_host_patterns):
            return LinkProbeResult(
                url=url,
                ok=False,
                final_url=url,
                notes=ProbeNote.DEV_DOMAIN_DETECTED,
            )

        try:
            return self._follow_redirects(client, url)
        except ValueError as exc:
            logger.warning("[linkcheck] could not resolve %r: %s", url, exc)
            return LinkProbeResult(url=url, ok=False, final_url=url, notes=ProbeNote.INVALID_URL)

    def _request(self, client: httpx.Client, method: str, url: str) -> Optional[httpx.Response]:
        """Send one request and return the closed response; the body is never read."""
        try:
            with client.stream(method, url, follow_redirects=False) as response:
                return response
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.debug("[linkcheck] %s %s failed: %r", method, url, exc)
            return None

    def _follow_redirects(self, client: httpx.Client, initial_url: str) -> LinkProbeResult:
        current_url = initial_url
        redirected = False
        last_status: Optional[int] = None

        for _ in range(self.max_redirects + 1):
            response = self._request(client, "HEAD", current_url)
            if response is None or response.status_code == 405:
                response = self._request(client, "GET", current_url)

            if response is None:
                return LinkProbeResult(
                    url=initial_url,
                    ok=False,
                    redirected=redirected,
                    final_url=current_url,
                    notes=ProbeNote.NO_RESPONSE,
                )

            status = response.status_code
            last_status = status

            if status in REDIRECT_STATUSES:
                location = response.headers.get("location")
                if not location:
                    return LinkProbeResult(
                        url=initial_url,
                        ok=False,
                        redirected=redirected,
                        status_code=status,
                        final_url=current_url,
                        notes=ProbeNote.REDIRECT_MISSING_LOCATION,
                    )
                current_url = urljoin(current_url, location)
                redirected = True
                problem = url_problem(current_url)
                if problem is not None:
                    return LinkProbeResult(
                        url=initial_url,
                        ok=False,
                        redirected=True,
                        status_code=status,
                        final_url=current_url,
                        notes=problem,
                    )
                continue

            final_host = urlsplit(current_url).hostname or ""
            if contains_dev_pattern(final_host, self.dev_host_patterns):
                return LinkProbeResult(
                    url=initial_url,
                    ok=False,
                    redirected=redirected,
                    status_code=status,
                    final_url=current_url,
                    notes=ProbeNote.DEV_DOMAIN_DETECTED,
                )

            if 200 <= status < 300:
                approved = hostname_matches_approved(final_host, self.approved_domains)
                return LinkProbeResult(
                    url=initial_url,
                    ok=approved,
                    redirected=redirected,
                    status_code=status,
                    final_url=current_url,
                    notes=None if approved else ProbeNote.UNAPPROVED_DOMAIN,
                )

            return LinkProbeResult(
                url=initial_url,
                ok=False,
                redirected=redirected,
                status_code=status,
                final_url=current_url,
                notes=ProbeNote.HTTP_ERROR,
            )

        return LinkProbeResult(
            url=initial_url,
            ok=False,
            redirected=True,
            status_code=last_status,
            final_url=current_url,
            notes=ProbeNote.TOO_MANY_REDIRECTS,
        )


def skipped_link_results(urls: Iterable[str]) -> List[LinkProbeResult]:
    """Placeholder results recorded when probing is disabled (mock mode)."""
    return [LinkProbeResult(url=url, ok=True, notes=ProbeNote.LINK_CHECK_SKIPPED) for url in urls]
