"""HTTP access for the audit: pages, sitemap documents and link status checks.

Every request goes through one shared :class:`httpx.AsyncClient`.  Redirects
are followed manually so that each hop is validated against the SSRF rules
(scheme, hostname, no private / loopback / link-local targets) before the
next request is made.
"""

import asyncio
import html as html_lib
import ipaddress
import logging
import re
import socket
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple
from urllib.parse import urljoin, urlparse

import httpx

from app.exceptions import FetchError, FetchTimeoutError
from app.services.normalizer import ALLOWED_SCHEMES, normalize_url

logger = logging.getLogger(__name__)

MAX_CONTENT_SIZE = 10 * 1024 * 1024  # 10 MB
TIMEOUT = 10  # seconds, page and document fetches
STATUS_TIMEOUT = 5  # seconds, per HEAD/GET status check
MAX_REDIRECTS = 5
MAX_LINKS_PER_PAGE = 2000
MAX_STATUS_CHECKS = 200
CHUNK_SIZE = 20
USER_AGENT = "Mozilla/5.0 (compatible; LinkJuiceAudit/1.0)"

_ANCHOR_RE = re.compile(
    r"<a\s[^>]*?\bhref\s*=\s*[\"']([^\"']+)[\"'][^>]*>([\s\S]*?)</a>",
    re.IGNORECASE,
)
_TAG_RE = re.compile(r"<[^>]+>")

_PRIVATE_ADDRESS_ERROR = "Requests to private/internal addresses are not allowed."


class FetchResult(NamedTuple):
    url: str
    final_url: str
    status: int  # 0 on network / validation failure
    html: str
    content_type: str
    redirected: bool
    redirected_from: Optional[str]
    error: Optional[str] = None


class ExtractedLink(NamedTuple):
    url: str
    text: str
    html: str
    position: int  # offset of the anchor in the page HTML


class LinkStatus(NamedTuple):
    url: str
    status: int
    redirect_target: Optional[str] = None
    error: Optional[str] = None


def _is_private_address(hostname: str) -> bool:
    """Return True if *hostname* resolves to a private, loopback, or link-local address."""
    try:
        infos = socket.getaddrinfo(hostname, None)
    except socket.gaierror:
        return False

    for info in infos:
        raw_ip = info[4][0]
        # Strip IPv6 zone IDs (e.g. "::1%eth0" → "::1")
        raw_ip = raw_ip.split("%")[0]
        try:
            addr = ipaddress.ip_address(raw_ip)
        except ValueError:
            continue
        if addr.is_private or addr.is_loopback or addr.is_link_local or addr.is_reserved:
            return True
    return False


def _checked_hostname(url: str) -> str:
    """Return the hostname of *url*; raise ValueError on a bad scheme or a missing host."""
    parsed = urlparse(url)

    if parsed.scheme not in ALLOWED_SCHEMES:
        raise ValueError(f"Scheme '{parsed.scheme}' is not allowed. Use http or https.")

    hostname = parsed.hostname
    if not hostname:
        raise ValueError("URL must have a valid hostname.")
    return hostname


def _validate_url(url: str) -> None:
    """Raise ValueError if *url* fails SSRF / scheme validation."""
    if _is_private_address(_checked_hostname(url)):
        raise ValueError(_PRIVATE_ADDRESS_ERROR)


def validate_start_url(url: str) -> None:
    """Public entry point of the SSRF check, used before a run is started."""
    _validate_url(url)


async def _read_body(response: httpx.Response) -> bytes:
    content_length = response.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > MAX_CONTENT_SIZE:
        raise RuntimeError("Response body exceeds the maximum allowed size.")

    chunks = []
    total = 0
    async for chunk in response.aiter_bytes():
        total += len(chunk)
        if total > MAX_CONTENT_SIZE:
            raise RuntimeError("Response body exceeds the maximum allowed size.")
        chunks.append(chunk)
    return b"".join(chunks)


def extract_links(html: str, base_url: str, max_links: int = MAX_LINKS_PER_PAGE) -> List[ExtractedLink]:
    """Return up to *max_links* anchors of *html* with normalized absolute hrefs.

    Anchors whose href the normalizer rejects (fragments, ``mailto:``,
    binary files, admin paths…) are dropped.
    """
    links: List[ExtractedLink] = []
    if not html:
        return links
    for match in _ANCHOR_RE.finditer(html):
        url = normalize_url(html_lib.unescape(match.group(1)), base_url)
        if url is None:
            continue
        text = " ".join(html_lib.unescape(_TAG_RE.sub(" ", match.group(2))).split())
        links.append(ExtractedLink(url, text, match.group(0), match.start()))
        if len(links) >= max_links:
            logger.debug("Link cap of %d reached on %s", max_links, base_url)
            break
    return links


class PageFetcher:
    """Fetches pages and checks link statuses for one analysis run.

    Args:
        client: Optional pre-configured client.  When omitted the fetcher
            creates (and later closes) its own.
        timeout: Seconds allowed for a page or document fetch.
        status_timeout: Seconds allowed for one status check.
        max_redirects: Redirect hops followed by page / document fetches.
        chunk_size: Status checks running concurrently in one batch.
        max_status_checks: Distinct URLs checked per
            :meth:`check_links_status_in_chunks` call.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = TIMEOUT,
        status_timeout: float = STATUS_TIMEOUT,
        max_redirects: int = MAX_REDIRECTS,
        chunk_size: int = CHUNK_SIZE,
        max_status_checks: int = MAX_STATUS_CHECKS,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            follow_redirects=False,
            timeout=timeout,
            headers={"User-Agent": USER_AGENT},
        )
        self.timeout = timeout
        self.status_timeout = status_timeout
        self.max_redirects = max_redirects
        self.chunk_size = max(1, chunk_size)
        self.max_status_checks = max_status_checks
        self._status_cache: Dict[str, LinkStatus] = {}
        self._private_hosts: Dict[str, bool] = {}

    async def _validate(self, url: str) -> None:
        """SSRF check for fetches made during a run.

        The DNS lookup runs in a worker thread; verdicts are cached per host
        until :meth:`clear_cache`.
        """
        hostname = _checked_hostname(url)
        private = self._private_hosts.get(hostname)
        if private is None:
            private = await asyncio.to_thread(_is_private_address, hostname)
            self._private_hosts[hostname] = private
        if private:
            raise ValueError(_PRIVATE_ADDRESS_ERROR)

    async def _get(self, url: str) -> Tuple[str, int, bytes, httpx.Headers]:
        """GET *url* following validated redirects.

        Returns:
            ``(final_url, status, body, headers)``.

        Raises:
            ValueError: a hop failed SSRF / scheme validation.
            httpx.HTTPError: network errors, timeouts included.
            RuntimeError: oversized body or too many redirects.
        """
        await self._validate(url)
        current_url = url
        for _ in range(self.max_redirects + 1):
            async with self._client.stream("GET", current_url, timeout=self.timeout) as response:
                if response.is_redirect:
                    location = response.headers.get("location", "")
                    next_url = urljoin(current_url, location)
                    await self._validate(next_url)
                    current_url = next_url
                    continue
                body = await _read_body(response)
                return current_url, response.status_code, body, response.headers
        raise RuntimeError("Too many redirects.")

    async def fetch_page(self, url: str) -> FetchResult:
        """Fetch one HTML page.

        Non-2xx responses are returned as they are; network and validation
        failures come back with status 0 and ``error`` set.

        Raises:
            FetchTimeoutError: the page did not answer within ``timeout``.
        """
        try:
            final_url, status, body, headers = await self._get(url)
        except httpx.TimeoutException as exc:
            raise FetchTimeoutError(url, self.timeout) from exc
        except (ValueError, httpx.HTTPError, RuntimeError) as exc:
            logger.warning("Fetching %s failed: %s", url, exc)
            return FetchResult(url, url, 0, "", "", False, None, str(exc) or type(exc).__name__)

        content_type = headers.get("content-type", "")
        charset = _charset(content_type)
        html = body.decode(charset, errors="replace")
        redirected = final_url != url
        return FetchResult(
            url=url,
            final_url=final_url,
            status=status,
            html=html,
            content_type=content_type,
            redirected=redirected,
            redirected_from=url if redirected else None,
        )

    async def fetch_document(self, url: str) -> bytes:
        """Return the raw body of a sitemap / robots.txt document.

        Raises:
            FetchError: on validation, network or non-2xx failures.
        """
        try:
            _final_url, status, body, _headers = await self._get(url)
        except httpx.TimeoutException as exc:
            raise FetchTimeoutError(url, self.timeout) from exc
        except (ValueError, httpx.HTTPError, RuntimeError) as exc:
            raise FetchError(url, f"Failed to fetch {url}: {exc}") from exc
        if not 200 <= status < 300:
            raise FetchError(url, f"Failed to fetch {url}: HTTP {status}")
        return body

    async def check_url_status(self, url: str) -> LinkStatus:
        """Return the HTTP status of *url* without following redirects.

        HEAD first; on a network error or a 405/501 answer the check is
        retried once with GET.  Each URL is checked at most once per fetcher.
        """
        cached = self._status_cache.get(url)
        if cached is not None:
            return cached

        try:
            await self._validate(url)
        except ValueError as exc:
            result = LinkStatus(url, 0, None, str(exc))
        else:
            result = await self._request_status(url)
        self._status_cache[url] = result
        return result

    async def _request_status(self, url: str) -> LinkStatus:
        try:
            response = await self._client.head(url, timeout=self.status_timeout, follow_redirects=False)
            if response.status_code not in (405, 501):
                return _status_from(url, response)
            logger.debug("HEAD not supported by %s (%d), retrying with GET", url, response.status_code)
        except httpx.HTTPError as exc:
            logger.debug("HEAD %s failed (%s), retrying with GET", url, exc)

        try:
            async with self._client.stream(
                "GET", url, timeout=self.status_timeout, follow_redirects=False
            ) as response:
                return _status_from(url, response)
        except httpx.HTTPError as exc:
            logger.debug("Status check for %s failed: %s", url, exc)
            return LinkStatus(url, 0, None, str(exc) or type(exc).__name__)

    async def check_links_status_in_chunks(self, urls: Iterable[str]) -> Dict[str, LinkStatus]:
        """Check the status of *urls* in sequential batches of concurrent requests."""
        unique = list(dict.fromkeys(url for url in urls if url))
        if len(unique) > self.max_status_checks:
            logger.debug("Checking %d of %d links", self.max_status_checks, len(unique))
            unique = unique[: self.max_status_checks]

        results: Dict[str, LinkStatus] = {}
        for start in range(0, len(unique), self.chunk_size):
            batch = unique[start : start + self.chunk_size]
            statuses = await asyncio.gather(*(self.check_url_status(url) for url in batch))
            results.update(zip(batch, statuses))
        return results

    def clear_cache(self) -> None:
        self._status_cache.clear()
        self._private_hosts.clear()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _charset(content_type: str) -> str:
    for part in content_type.split(";")[1:]:
        key, _, value = part.strip().partition("=")
        if key.lower() == "charset" and value:
            charset = value.strip("\"' ")
            try:
                "".encode(charset)
            except LookupError:
                break
            return charset
    return "utf-8"


def _status_from(url: str, response: httpx.Response) -> LinkStatus:
    redirect_target = None
    if response.is_redirect:
        redirect_target = urljoin(url, response.headers.get("location", ""))
    return LinkStatus(url, response.status_code, redirect_target)
