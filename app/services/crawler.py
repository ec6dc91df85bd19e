"""Crawl orchestrator: BFS over the internal links of one site.

The crawl is driven one page at a time through :meth:`Crawler.step`, so a
caller can interleave its own work (or simply stop calling) between pages.
Everything the run learns is accumulated in a :class:`CrawlState`.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Iterable, List, Optional, Set

from app.exceptions import FetchError
from app.models.analysis_response import ProgressEvent
from app.models.link import LinkEdge
from app.models.page import PageDetails
from app.services.detector import CmsDetector, CmsTally
from app.services.fetcher import PageFetcher, extract_links
from app.services.link_context import LinkContextClassifier
from app.services.normalizer import (
    matches_domain_filter,
    normalize_url,
    page_depth,
    page_key,
    same_site,
)

logger = logging.getLogger(__name__)

# Hard ceiling to protect against runaway crawls
MAX_PAGES_HARD_LIMIT = 500

ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class CrawlState:
    """Everything one analysis run accumulates.  Never shared between runs."""

    start_url: str = ""
    site_url: str = ""  # start URL after its own redirects, defines "same site"
    sitemap_urls: List[str] = field(default_factory=list)
    visited: Set[str] = field(default_factory=set)
    frontier: Deque[str] = field(default_factory=deque)
    queued: Set[str] = field(default_factory=set)
    crawled_urls: List[str] = field(default_factory=list)
    edges: Dict[str, List[LinkEdge]] = field(default_factory=dict)  # keyed by target URL
    pages: Dict[str, PageDetails] = field(default_factory=dict)  # keyed by page_key
    cms: CmsTally = field(default_factory=CmsTally)
    orphaned_pages: List[str] = field(default_factory=list)
    stopped: bool = False

    def page(self, url: str) -> PageDetails:
        """Return the page for *url*, creating it on first reference."""
        key = page_key(url)
        page = self.pages.get(key)
        if page is None:
            page = PageDetails(url=url)
            self.pages[key] = page
        return page

    def find_page(self, url: str) -> Optional[PageDetails]:
        return self.pages.get(page_key(url))

    @property
    def all_edges(self) -> List[LinkEdge]:
        return [edge for edges in self.edges.values() for edge in edges]


class Crawler:
    """Breadth-first crawler recording one :class:`LinkEdge` per internal anchor.

    Args:
        fetcher: HTTP access for pages and status checks.
        detector: CMS detector; a fresh one is created when omitted.
        state: State to fill; a fresh one is created when omitted.
        on_progress: Called synchronously with a ``crawling`` event for every
            page taken from the frontier.  Exceptions it raises are logged
            and ignored.
        domain_filter: Host substrings a link must match to be followed.
        check_status: Verify the HTTP status of every outbound link.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        detector: Optional[CmsDetector] = None,
        state: Optional[CrawlState] = None,
        on_progress: Optional[ProgressCallback] = None,
        domain_filter: Optional[List[str]] = None,
        check_status: bool = True,
    ):
        self.fetcher = fetcher
        self.detector = detector or CmsDetector()
        self.state = state if state is not None else CrawlState()
        self.on_progress = on_progress
        self.domain_filter = domain_filter or []
        self.check_status = check_status
        self.max_pages = MAX_PAGES_HARD_LIMIT

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def seed(self, start_url: str) -> None:
        url = normalize_url(start_url, start_url) or start_url
        self.state.start_url = url
        self.state.site_url = url
        self._enqueue(url)

    def load_sitemap(self, urls: Iterable[str]) -> List[str]:
        """Normalize sitemap URLs against the start URL and mark their pages.

        URLs the normalizer rejects are dropped; equivalent spellings are
        kept once, first occurrence wins.
        """
        seen: Set[str] = set()
        normalized: List[str] = []
        for raw in urls:
            url = normalize_url(raw, self.state.start_url or None)
            if url is None:
                logger.debug("Ignoring sitemap entry %s", raw)
                continue
            key = page_key(url)
            if key in seen:
                continue
            seen.add(key)
            normalized.append(url)
            self.state.page(url).in_sitemap = True
        self.state.sitemap_urls = normalized
        return normalized

    # ------------------------------------------------------------------
    # Crawl loop
    # ------------------------------------------------------------------

    def stop(self) -> None:
        """Ask the crawl to end after the page currently being processed."""
        self.state.stopped = True

    async def crawl(self, max_pages: int = MAX_PAGES_HARD_LIMIT) -> CrawlState:
        self.max_pages = max(1, min(max_pages, MAX_PAGES_HARD_LIMIT))
        while await self.step():
            pass
        logger.info(
            "Crawl finished: %d pages processed, %d links recorded",
            len(self.state.crawled_urls),
            sum(len(edges) for edges in self.state.edges.values()),
        )
        return self.state

    async def step(self) -> bool:
        """Process the next frontier URL.  Returns False once the crawl is over."""
        if self.state.stopped or len(self.state.crawled_urls) >= self.max_pages:
            return False
        url = self._next_url()
        if url is None:
            return False

        self.state.visited.add(page_key(url))
        self.state.crawled_urls.append(url)
        current = len(self.state.crawled_urls)
        self._emit(
            ProgressEvent(
                step="crawling",
                message=f"Crawling page {current}/{self.max_pages}: {url}",
                current=current,
                total=self.max_pages,
                url=url,
            )
        )
        await self._process(url)
        return True

    def _next_url(self) -> Optional[str]:
        while self.state.frontier:
            url = self.state.frontier.popleft()
            key = page_key(url)
            self.state.queued.discard(key)
            if key not in self.state.visited:
                return url
        return None

    def _enqueue(self, url: str) -> bool:
        key = page_key(url)
        if key in self.state.visited or key in self.state.queued:
            return False
        self.state.frontier.append(url)
        self.state.queued.add(key)
        return True

    def _emit(self, event: ProgressEvent) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(event)
        except Exception:
            logger.warning("Progress callback failed for step %s", event.step, exc_info=True)

    # ------------------------------------------------------------------
    # Page processing
    # ------------------------------------------------------------------

    async def _process(self, url: str) -> None:
        page = self.state.page(url)
        page.crawled = True
        page.depth = page_depth(url)

        try:
            result = await self.fetcher.fetch_page(url)
        except FetchError as exc:
            logger.warning("Skipping %s: %s", url, exc.message)
            page.http_status = 0
            return

        page.http_status = result.status
        if result.status == 0:
            return

        effective_url = url
        if result.redirected:
            effective_url = normalize_url(result.final_url, result.final_url) or result.final_url
            target_key = page_key(effective_url)
            already_crawled = target_key != page_key(url) and target_key in self.state.visited
            self._record_redirect(url, effective_url, result.status, already_crawled)
            if already_crawled:
                logger.debug("Redirect target %s of %s was already crawled", effective_url, url)
                return

        if result.status >= 400:
            logger.info("Page %s answered HTTP %d", url, result.status)
            return
        content_type = result.content_type.lower()
        if content_type and "html" not in content_type:
            logger.debug("Not parsing %s (%s)", effective_url, result.content_type)
            return

        self.state.cms.merge(self.detector.detect(result.html, effective_url))

        classifier = LinkContextClassifier(result.html)
        targets: List[str] = []
        for link in extract_links(result.html, effective_url):
            if not same_site(link.url, self.state.site_url):
                continue
            if not matches_domain_filter(link.url, self.domain_filter):
                continue
            self._record_edge(classifier.classify(link.html, effective_url, link.url, link.position))
            targets.append(link.url)

        if self.check_status and targets:
            await self._check_statuses(targets)

        for target in dict.fromkeys(targets):
            self._enqueue(target)

    def _record_redirect(self, url: str, effective_url: str, status: int, already_crawled: bool = False) -> None:
        page = self.state.page(url)
        page.redirected = True
        page.redirect_target = effective_url
        if url == self.state.start_url:
            self.state.site_url = effective_url
        if already_crawled or page_key(effective_url) == page_key(url):
            return

        target = self.state.page(effective_url)
        target.redirected_from = url
        target.http_status = status
        target.crawled = True
        target.depth = page_depth(effective_url)
        self.state.visited.add(page_key(effective_url))

    def _record_edge(self, edge: LinkEdge) -> None:
        self.state.edges.setdefault(edge.to_url, []).append(edge)

        source = self.state.page(edge.from_url)
        source.outbound_links += 1
        source.outbound_importance += edge.importance

        target = self.state.page(edge.to_url)
        target.inbound_links += 1
        target.inbound_importance += edge.importance
        target.link_types[edge.context_type] = target.link_types.get(edge.context_type, 0) + 1
        if target.depth == -1:
            target.depth = page_depth(edge.to_url)

    async def _check_statuses(self, urls: List[str]) -> None:
        statuses = await self.fetcher.check_links_status_in_chunks(urls)
        for url, status in statuses.items():
            page = self.state.page(url)
            if page.crawled:
                continue
            page.http_status = status.status
            if status.redirect_target:
                page.redirected = True
                page.redirect_target = normalize_url(status.redirect_target, status.redirect_target) or status.redirect_target

    # ------------------------------------------------------------------
    # Orphans
    # ------------------------------------------------------------------

    def detect_orphans(self) -> List[str]:
        """Return the sitemap URLs the crawl never reached, in sitemap order."""
        self.state.orphaned_pages = [url for url in self.state.sitemap_urls if page_key(url) not in self.state.visited]
        return self.state.orphaned_pages
