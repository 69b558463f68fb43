"""Web acquisition: fetch a page, keep its readable content, return clean text.

Security requirements:
- SSRF guard: ipaddress module blocks private/loopback/link-local ranges before
  any connection is established, and again for every redirect target.
- Allowed URL schemes: https:// and http:// only.
- Content-Type whitelist: text/html and text/plain only.
- Max response body: 5 MB.
- Timeout: 30 seconds by default (connect + read).
- Max redirects: 3.

Politeness: at most ``parallelism`` concurrent requests per host, each
preceded by a random delay of up to ``random_delay`` seconds.
"""

from __future__ import annotations

import ipaddress
import random
import socket
import threading
import time
import urllib.error
import urllib.parse
import urllib.request
from http.client import HTTPResponse

import html2text
from bs4 import BeautifulSoup

from lectern.config import ScraperCfg
from lectern.errors import AcquisitionError, SsrfError
from lectern.log import get_logger

log = get_logger(__name__)

_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
_MAX_REDIRECTS = 3
_ALLOWED_SCHEMES = {"https", "http"}
_ALLOWED_CONTENT_TYPES = {"text/html", "text/plain"}

_STRIP_SELECTOR = (
    "script, style, nav, header, footer, aside, "
    ".navigation, .menu, .sidebar, .ad, .advertisement"
)
_CONTENT_SELECTOR = "main, article, [role=main]"

# Links to these are never worth ingesting as pages.
_ASSET_EXTENSIONS = frozenset(
    [
        ".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp", ".ico",
        ".pdf", ".doc", ".docx", ".xls", ".xlsx",
        ".zip", ".tar", ".gz", ".rar",
        ".mp3", ".mp4", ".avi", ".mov", ".wmv",
        ".css", ".js", ".json", ".xml",
    ]
)


def _html_converter() -> html2text.HTML2Text:
    h2t = html2text.HTML2Text()
    h2t.ignore_links = True
    h2t.ignore_images = True
    h2t.body_width = 0
    return h2t


def clean_whitespace(text: str) -> str:
    """Strip every line, drop blank ones, and join the rest with newlines."""
    return "\n".join(line.strip() for line in text.split("\n") if line.strip())


class WebAcquirer:
    """Fetch URLs and turn them into plain text for chunking.

    Args:
        config: Scraper settings (user agent, timeout, politeness, SSRF switch).
    """

    def __init__(self, config: ScraperCfg | None = None) -> None:
        self._config = config or ScraperCfg()
        self._host_slots: dict[str, threading.BoundedSemaphore] = {}
        self._slots_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def fetch_and_clean(self, url: str) -> str:
        """Return the readable text of the page at *url*.

        Raises:
            AcquisitionError: On an invalid or blocked URL, a fetch failure,
                an unsupported response, or when nothing readable remains.
        """
        body, content_type = self._get(url)
        text = body.decode("utf-8", errors="replace")
        if content_type == "text/plain":
            cleaned = clean_whitespace(text)
        else:
            cleaned = clean_whitespace(self._html_to_text(text))
        if not cleaned:
            raise AcquisitionError("no content extracted from URL")
        return cleaned

    def scan_links(self, url: str) -> list[str]:
        """Return same-host page links found at *url*, first-seen order.

        Fragments and query strings are dropped; links to images, documents,
        archives, media and static assets are filtered out.
        """
        body, content_type = self._get(url)
        if content_type != "text/html":
            return []
        host = urllib.parse.urlparse(url).netloc
        soup = BeautifulSoup(body.decode("utf-8", errors="replace"), "html.parser")

        seen: set[str] = set()
        links: list[str] = []
        for anchor in soup.find_all("a", href=True):
            absolute = urllib.parse.urljoin(url, anchor["href"].strip())
            parsed = urllib.parse.urlparse(absolute)
            if parsed.scheme not in _ALLOWED_SCHEMES or parsed.netloc != host:
                continue
            clean = urllib.parse.urlunparse(parsed._replace(query="", fragment=""))
            if clean in seen or _is_asset(parsed.path):
                continue
            seen.add(clean)
            links.append(clean)
        return links

    # ------------------------------------------------------------------
    # Fetch pipeline
    # ------------------------------------------------------------------

    def _get(self, url: str) -> tuple[bytes, str]:
        """Validate and politely fetch *url*. Returns (body, content_type)."""
        host = self._validate(url)
        with self._slot(host):
            if self._config.random_delay > 0:
                time.sleep(random.uniform(0, self._config.random_delay))
            return self._fetch(url)

    def _validate(self, url: str) -> str:
        parsed = urllib.parse.urlparse(url)
        if parsed.scheme not in _ALLOWED_SCHEMES:
            raise AcquisitionError(
                f"Unsupported URL scheme '{parsed.scheme}'. Only https:// and http:// are allowed."
            )
        if not parsed.hostname:
            raise AcquisitionError(f"URL has no hostname: {url}")
        if not self._config.allow_private_addresses:
            check_ssrf(parsed.hostname)
        return parsed.hostname

    def _slot(self, host: str) -> threading.BoundedSemaphore:
        with self._slots_lock:
            slot = self._host_slots.get(host)
            if slot is None:
                slot = threading.BoundedSemaphore(self._config.parallelism)
                self._host_slots[host] = slot
            return slot

    def _fetch(self, url: str) -> tuple[bytes, str]:
        """Fetch *url* with timeout, redirect limit, size cap, and Content-Type check.

        Returns (body_bytes, content_type_without_params).
        """
        request = urllib.request.Request(url, headers={"User-Agent": self._config.user_agent})
        opener = urllib.request.build_opener(
            _LimitedRedirectHandler(_MAX_REDIRECTS, self._config.allow_private_addresses)
        )

        try:
            response: HTTPResponse = opener.open(request, timeout=self._config.timeout)
        except AcquisitionError:
            raise
        except (urllib.error.URLError, OSError) as exc:
            raise AcquisitionError(f"failed to fetch URL: {exc}") from exc

        with response:
            raw_ct = response.headers.get("Content-Type", "text/html")
            ct = raw_ct.split(";")[0].strip().lower()
            if ct not in _ALLOWED_CONTENT_TYPES:
                raise AcquisitionError(
                    f"Unsupported Content-Type '{ct}' for URL '{url}'. "
                    f"Accepted: {', '.join(sorted(_ALLOWED_CONTENT_TYPES))}"
                )
            body = response.read(_MAX_BYTES + 1)

        if len(body) > _MAX_BYTES:
            raise AcquisitionError(
                f"Response body exceeds {_MAX_BYTES // (1024 * 1024)} MB limit for URL '{url}'."
            )
        log.debug("fetched %s (%d bytes, %s)", url, len(body), ct)
        return body, ct

    # ------------------------------------------------------------------
    # HTML → text
    # ------------------------------------------------------------------

    @staticmethod
    def _html_to_text(html: str) -> str:
        soup = BeautifulSoup(html, "html.parser")
        title = soup.title.get_text(strip=True) if soup.title else ""

        for tag in soup.select(_STRIP_SELECTOR):
            tag.decompose()

        h2t = _html_converter()
        parts: list[str] = []
        for container in soup.select(_CONTENT_SELECTOR):
            # Nested containers are already covered by their outermost ancestor.
            if container.find_parent(["main", "article"]) or container.find_parent(
                attrs={"role": "main"}
            ):
                continue
            text = h2t.handle(str(container)).strip()
            if text:
                parts.append(text)

        if not parts and soup.body is not None:
            text = h2t.handle(str(soup.body)).strip()
            if text:
                parts.append(text)

        content = "\n\n".join(parts)
        return f"# {title}\n\n{content}" if title else content


def check_ssrf(hostname: str) -> None:
    """Resolve *hostname* and block private/reserved IP ranges.

    Raises:
        SsrfError: If any resolved address is private, loopback, link-local,
            reserved, multicast or unspecified.
        AcquisitionError: If the name does not resolve.
    """
    try:
        addrinfos = socket.getaddrinfo(hostname, None)
    except socket.gaierror as exc:
        raise AcquisitionError(f"DNS resolution failed for '{hostname}': {exc}") from exc

    for addrinfo in addrinfos:
        try:
            ip = ipaddress.ip_address(addrinfo[4][0])
        except ValueError:
            continue
        if (
            ip.is_private
            or ip.is_loopback
            or ip.is_link_local
            or ip.is_reserved
            or ip.is_multicast
            or ip.is_unspecified
        ):
            raise SsrfError(
                f"URL resolves to private address ({ip}). "
                "Access to internal network addresses is not allowed."
            )


def _is_asset(path: str) -> bool:
    lowered = path.lower()
    return any(lowered.endswith(ext) for ext in _ASSET_EXTENSIONS)


class _LimitedRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Refuse more than *max_redirects* redirects or a redirect into a private network."""

    def __init__(self, max_redirects: int, allow_private: bool) -> None:
        self._max_redirects = max_redirects
        self._allow_private = allow_private
        self._count = 0

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        self._count += 1
        if self._count > self._max_redirects:
            raise AcquisitionError(
                f"Too many redirects (>{self._max_redirects}) for URL '{req.full_url}'."
            )
        parsed = urllib.parse.urlparse(newurl)
        if parsed.scheme not in _ALLOWED_SCHEMES:
            raise AcquisitionError(f"Redirect to unsupported URL scheme '{parsed.scheme}'.")
        if not self._allow_private and parsed.hostname:
            check_ssrf(parsed.hostname)
        return super().redirect_request(req, fp, code, msg, headers, newurl)
