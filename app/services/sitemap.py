"""Sitemap resolution and discovery."""

import gzip
import html as html_lib
import logging
import re
import zlib
from typing import List, Optional, Set, Tuple, Union
from urllib.parse import urlparse
from xml.etree import ElementTree

from app.exceptions import FetchError, SitemapFetchError
from app.services.fetcher import PageFetcher

logger = logging.getLogger(__name__)

# Sitemap indexes nested deeper than this are not followed
MAX_SITEMAP_DEPTH = 3

# Common sitemap paths, tried in order
_SITEMAP_PATHS = (
    "/sitemap.xml",
    "/sitemap_index.xml",
    "/sitemap-index.xml",
    "/wp-sitemap.xml",
)

_GZIP_MAGIC = b"\x1f\x8b"
_ENTRY_TAGS = ("url", "sitemap")

_LOC_RE = re.compile(r"<loc>\s*(?:<!\[CDATA\[)?\s*(.*?)\s*(?:\]\]>)?\s*</loc>", re.IGNORECASE | re.DOTALL)


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1].lower()


def _namespace(tag: str) -> str:
    return tag[1:].split("}", 1)[0] if tag.startswith("{") else ""


def _entry_locations(root: ElementTree.Element) -> List[str]:
    """``<loc>`` children of the ``<url>``/``<sitemap>`` entries of *root*.

    Extension elements such as ``<image:loc>`` live in another namespace or
    deeper in the tree and are skipped.
    """
    locations = []
    for entry in root:
        if not isinstance(entry.tag, str) or _local_name(entry.tag) not in _ENTRY_TAGS:
            continue
        namespace = _namespace(entry.tag)
        for child in entry:
            if not isinstance(child.tag, str) or _local_name(child.tag) != "loc":
                continue
            if _namespace(child.tag) == namespace and child.text and child.text.strip():
                locations.append(child.text.strip())
    return locations


def _decompress(url: str, payload: bytes) -> bytes:
    if not payload.startswith(_GZIP_MAGIC):
        return payload
    try:
        return gzip.decompress(payload)
    except (OSError, EOFError, zlib.error) as exc:
        raise FetchError(url, f"Invalid gzip payload from {url}: {exc}") from exc


def parse_sitemap(document: Union[bytes, str]) -> Tuple[bool, List[str]]:
    """Extract the ``<loc>`` values of a sitemap or sitemap index.

    Returns:
        ``(is_index, locations)`` in document order.  Documents that are not
        well-formed XML fall back to a regex scan of ``<loc>`` elements.
    """
    try:
        root = ElementTree.fromstring(document)
    except ElementTree.ParseError as exc:
        logger.debug("Sitemap XML does not parse (%s), scanning <loc> tags", exc)
        text = document.decode("utf-8", errors="replace") if isinstance(document, bytes) else document
        is_index = "<sitemapindex" in text.lower()
        return is_index, [html_lib.unescape(loc) for loc in _LOC_RE.findall(text) if loc]

    is_index = _local_name(root.tag) == "sitemapindex"
    return is_index, _entry_locations(root)


class SitemapResolver:
    """Expands a sitemap (or a tree of sitemap indexes) into its page URLs."""

    def __init__(self, fetcher: PageFetcher, max_depth: int = MAX_SITEMAP_DEPTH):
        self.fetcher = fetcher
        self.max_depth = max_depth

    async def resolve(self, sitemap_url: str) -> List[str]:
        """Return every page URL listed under *sitemap_url*, deduplicated, in encounter order.

        Raises:
            SitemapFetchError: the root document could not be retrieved.
        """
        urls: List[str] = []
        await self._resolve(sitemap_url, 0, urls, set(), set())
        logger.info("Sitemap %s lists %d URLs", sitemap_url, len(urls))
        return urls

    async def _resolve(self, url: str, depth: int, urls: List[str], seen: Set[str], visited: Set[str]) -> None:
        visited.add(url)
        try:
            payload = _decompress(url, await self.fetcher.fetch_document(url))
        except FetchError as exc:
            if depth == 0:
                logger.error("Root sitemap %s unavailable: %s", url, exc.message)
                raise SitemapFetchError(url, exc.message) from exc
            logger.warning("Skipping child sitemap %s: %s", url, exc.message)
            return

        is_index, locations = parse_sitemap(payload)
        if not is_index:
            for loc in locations:
                if loc not in seen:
                    seen.add(loc)
                    urls.append(loc)
            return

        if depth >= self.max_depth:
            logger.warning("Sitemap index %s nested too deeply, not followed", url)
            return
        for child in locations:
            if child in visited:
                continue
            await self._resolve(child, depth + 1, urls, seen, visited)

    async def discover_sitemap(self, base_url: str) -> Optional[str]:
        """Locate the sitemap of *base_url*'s site.

        ``Sitemap:`` lines of ``robots.txt`` come first, then the common
        sitemap paths are tried.  Returns None when nothing is found.
        """
        parsed = urlparse(base_url)
        origin = f"{parsed.scheme}://{parsed.netloc}"

        try:
            robots = await self.fetcher.fetch_document(f"{origin}/robots.txt")
        except FetchError as exc:
            logger.debug("No robots.txt for %s: %s", origin, exc.message)
        else:
            for line in robots.decode("utf-8", errors="replace").splitlines():
                key, _, value = line.partition(":")
                if key.strip().lower() == "sitemap" and value.strip():
                    logger.info("Sitemap %s found in robots.txt", value.strip())
                    return value.strip()

        for path in _SITEMAP_PATHS:
            candidate = origin + path
            try:
                payload = _decompress(candidate, await self.fetcher.fetch_document(candidate))
            except FetchError:
                continue
            head = payload[:2048].decode("utf-8", errors="replace")
            if "<urlset" in head or "<sitemapindex" in head:
                logger.info("Sitemap discovered at %s", candidate)
                return candidate
        return None
