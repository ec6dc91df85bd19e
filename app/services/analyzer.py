"""Analysis run: sitemap → crawl → orphan detection → aggregation.

:func:`start_analysis` is the single entry point used by the API.  A run
walks the phases ``idle → resolving_sitemap → crawling → orphan_detection →
aggregating`` and ends in ``complete`` or ``failed``, reporting each
transition through the optional progress callback.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Literal, Optional

import httpx

from app.exceptions import LinkAuditError
from app.models.analysis_request import AnalysisRequest
from app.models.analysis_response import (
    AnalysisParams,
    AnalysisResponse,
    AnalysisResult,
    CmsSummary,
    ImportanceAnalysis,
    ProgressEvent,
)
from app.services.anchors import analyze_anchor_quality
from app.services.contexts import analyze_context_distribution
from app.services.crawler import Crawler, CrawlState, ProgressCallback
from app.services.detector import CmsDetector
from app.services.fetcher import PageFetcher
from app.services.performance import generate_performance_metrics
from app.services.ranking import RankingEngine
from app.services.recommendations import generate_recommendations
from app.services.sitemap import SitemapResolver
from app.services.summary import (
    analyze_in_text_links,
    build_page_details,
    low_importance_pages,
    summarize_links,
    top_important_pages,
)

logger = logging.getLogger(__name__)

AnalysisPhase = Literal[
    "idle",
    "resolving_sitemap",
    "crawling",
    "orphan_detection",
    "aggregating",
    "complete",
    "failed",
]


def _safe_callback(on_progress: Optional[ProgressCallback]) -> Callable[[ProgressEvent], None]:
    def notify(event: ProgressEvent) -> None:
        if on_progress is None:
            return
        try:
            on_progress(event)
        except Exception:
            logger.warning("Progress callback failed for step %s", event.step, exc_info=True)

    return notify


class LinkAnalyzer:
    """Runs analyses and keeps the results of the last successful one.

    Args:
        client: Optional HTTP client shared by every request of a run
            (tests pass one backed by :class:`httpx.MockTransport`).
        ranking: Ranking engine; custom context weights set on it apply to
            every later run.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, ranking: Optional[RankingEngine] = None):
        self._client = client
        self.ranking = ranking or RankingEngine()
        self.phase: AnalysisPhase = "idle"
        self.last_results: Optional[AnalysisResult] = None
        self._crawler: Optional[Crawler] = None

    def stop(self) -> None:
        """Stop the running crawl after its current page."""
        if self._crawler is not None:
            self._crawler.stop()

    async def run(self, params: AnalysisRequest, on_progress: Optional[ProgressCallback] = None) -> AnalysisResponse:
        notify = _safe_callback(on_progress)
        fetcher = PageFetcher(client=self._client)
        try:
            return await self._run(params, fetcher, notify)
        except (LinkAuditError, httpx.HTTPError, RuntimeError) as exc:
            self.phase = "failed"
            logger.error("Analysis of %s failed: %s", params.start_url, exc)
            notify(ProgressEvent(step="error", message=f"Error: {exc}"))
            return AnalysisResponse(success=False, message=str(exc) or "The analysis failed.")
        finally:
            self._crawler = None
            await fetcher.aclose()

    async def _run(
        self,
        params: AnalysisRequest,
        fetcher: PageFetcher,
        notify: Callable[[ProgressEvent], None],
    ) -> AnalysisResponse:
        start_url = str(params.start_url)

        self.phase = "resolving_sitemap"
        notify(ProgressEvent(step="sitemap", message="Parsing sitemap..."))
        resolver = SitemapResolver(fetcher)
        sitemap_url = str(params.sitemap_url) if params.sitemap_url else await resolver.discover_sitemap(start_url)
        raw_sitemap_urls: List[str] = []
        if sitemap_url:
            raw_sitemap_urls = await resolver.resolve(sitemap_url)
        else:
            logger.warning("No sitemap found for %s, orphan detection disabled", start_url)

        state = CrawlState()
        crawler = Crawler(
            fetcher,
            CmsDetector(),
            state,
            on_progress=notify,
            domain_filter=params.domain_filter,
            check_status=params.check_status,
        )
        self._crawler = crawler
        crawler.seed(start_url)
        sitemap_urls = crawler.load_sitemap(raw_sitemap_urls)
        notify(
            ProgressEvent(
                step="sitemap_complete",
                message=f"{len(sitemap_urls)} URLs found in the sitemap.",
                urls=len(sitemap_urls),
            )
        )

        self.phase = "crawling"
        notify(ProgressEvent(step="crawl", message="Starting crawl..."))
        await crawler.crawl(params.max_pages)
        crawled = len(state.crawled_urls)
        notify(ProgressEvent(step="crawl_complete", message=f"{crawled} pages crawled.", urls=crawled))

        self.phase = "orphan_detection"
        notify(ProgressEvent(step="orphaned", message="Identifying orphaned pages..."))
        orphans = crawler.detect_orphans()
        notify(
            ProgressEvent(
                step="orphaned_complete",
                message=f"{len(orphans)} orphaned pages identified.",
                urls=len(orphans),
            )
        )

        self.phase = "aggregating"
        notify(ProgressEvent(step="analysis", message="Analysing link data..."))
        result = self.aggregate(state, params, sitemap_url)

        self.phase = "complete"
        self.last_results = result
        message = f"{len(sitemap_urls)} pages in sitemap, {crawled} crawled, {len(orphans)} orphaned"
        logger.info("Analysis of %s complete: %s", start_url, message)
        notify(ProgressEvent(step="complete", message="Analysis completed successfully.", results=result))
        return AnalysisResponse(success=True, message=message, results=result)

    def aggregate(self, state: CrawlState, params: AnalysisRequest, sitemap_url: Optional[str]) -> AnalysisResult:
        """Derive every summary, score and recommendation from a finished crawl."""
        edges = state.edges
        sitemap_count = len(state.sitemap_urls)
        crawled_count = len(state.crawled_urls)
        orphaned_count = len(state.orphaned_pages)
        dominant_cms = state.cms.dominant

        links_summary = summarize_links(edges)
        anchor_quality = analyze_anchor_quality(edges)
        context_analysis = analyze_context_distribution(edges, dominant_cms)
        in_text_analysis = analyze_in_text_links(edges)
        page_details = build_page_details(state.pages.values())
        page_rank = self.ranking.pagerank(edges)
        juice_scores = self.ranking.juice_scores(edges)
        performance = generate_performance_metrics(
            edges,
            links_summary,
            anchor_quality,
            page_details,
            page_rank,
            juice_scores,
            sitemap_count,
            crawled_count,
            orphaned_count,
        )
        recommendations = generate_recommendations(
            orphaned_count,
            sitemap_count,
            anchor_quality,
            context_analysis,
            in_text_analysis,
            performance,
            links_summary,
        )

        return AnalysisResult(
            sitemap_url_count=sitemap_count,
            crawled_url_count=crawled_count,
            orphaned_page_count=orphaned_count,
            sitemap_urls=list(state.sitemap_urls),
            crawled_urls=list(state.crawled_urls),
            orphaned_pages=list(state.orphaned_pages),
            link_context_data={url: list(group) for url, group in edges.items()},
            links_summary=links_summary,
            anchor_quality=anchor_quality,
            context_analysis=context_analysis,
            in_text_analysis=in_text_analysis,
            page_details=page_details,
            page_rank=page_rank,
            juice_link_scores=juice_scores,
            juice_flow=self.ranking.juice_flow(edges, page_rank),
            importance_analysis=ImportanceAnalysis(
                top_important_pages=top_important_pages(edges),
                low_importance_pages=low_importance_pages(edges),
            ),
            performance_metrics=performance,
            recommendations=recommendations,
            detected_cms=dominant_cms,
            cms=CmsSummary(
                dominant=dominant_cms,
                scores=dict(state.cms.totals),
                confidence=state.cms.confidence,
            ),
            params=AnalysisParams(
                sitemap_url=sitemap_url,
                start_url=str(params.start_url),
                max_pages=params.max_pages,
                domain_filter=list(params.domain_filter),
                date=datetime.now(timezone.utc).isoformat(),
            ),
        )


async def start_analysis(
    params: AnalysisRequest,
    on_progress: Optional[ProgressCallback] = None,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> AnalysisResponse:
    """Run one complete analysis with a fresh state."""
    return await LinkAnalyzer(client=client).run(params, on_progress)
