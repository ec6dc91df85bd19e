"""Run-level link summaries, in-text split and per-page details."""

from collections import Counter
from typing import Dict, Iterable, List, Mapping

from app.models.analysis_response import (
    ImportanceBands,
    InTextAnalysis,
    LinksSummary,
    PageImportance,
    UrlCount,
)
from app.models.link import LinkEdge
from app.models.page import PageDetails
from app.services.link_context import IN_TEXT_CONTEXTS, NAVIGATION_CONTEXTS
from app.services.ranking import EdgeInput, flatten_edges

HIGH_IMPORTANCE = 0.8
MEDIUM_IMPORTANCE = 0.5
TOP_PAGES_LIMIT = 20
TOP_IN_TEXT_PAGES = 10


def _percentage(part: int, total: int) -> float:
    return round(part / total * 100, 1) if total else 0.0


def _ranked(counts: Counter, limit: int) -> List[UrlCount]:
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [UrlCount(url=url, count=count) for url, count in ordered[:limit]]


def summarize_links(edges: EdgeInput) -> LinksSummary:
    """Count links by context and importance band; rank source and destination pages."""
    by_context: Counter = Counter()
    sources: Counter = Counter()
    destinations: Counter = Counter()
    bands = ImportanceBands()

    edge_list = flatten_edges(edges)
    for edge in edge_list:
        by_context[edge.context_type] += 1
        sources[edge.from_url] += 1
        destinations[edge.to_url] += 1
        if edge.importance >= HIGH_IMPORTANCE:
            bands.high += 1
        elif edge.importance >= MEDIUM_IMPORTANCE:
            bands.medium += 1
        else:
            bands.low += 1

    total = len(edge_list)
    percentages = None
    if total:
        percentages = ImportanceBands(
            high=_percentage(bands.high, total),
            medium=_percentage(bands.medium, total),
            low=_percentage(bands.low, total),
        )
    return LinksSummary(
        total_links=total,
        by_context=dict(by_context),
        by_importance=bands,
        by_importance_percentage=percentages,
        top_source_pages=_ranked(sources, TOP_PAGES_LIMIT),
        top_destination_pages=_ranked(destinations, TOP_PAGES_LIMIT),
    )


def analyze_in_text_links(edges: EdgeInput) -> InTextAnalysis:
    """Split links between body copy (in-text) and navigation blocks.

    Links in neither group (buttons, images, social…) only count towards
    the total.  ``in_text_by_page`` is keyed by target URL.
    """
    analysis = InTextAnalysis()
    by_page: Counter = Counter()
    for edge in flatten_edges(edges):
        analysis.total += 1
        if edge.context_type in IN_TEXT_CONTEXTS:
            analysis.in_text_links += 1
            by_page[edge.to_url] += 1
        elif edge.context_type in NAVIGATION_CONTEXTS:
            analysis.navigation_links += 1

    analysis.in_text_percentage = _percentage(analysis.in_text_links, analysis.total)
    analysis.navigation_percentage = _percentage(analysis.navigation_links, analysis.total)
    analysis.in_text_by_page = dict(by_page)
    analysis.top_in_text_pages = _ranked(by_page, TOP_IN_TEXT_PAGES)
    if by_page:
        analysis.average_in_text_per_page = round(analysis.in_text_links / len(by_page), 1)
    return analysis


def build_page_details(pages: Iterable[PageDetails]) -> Dict[str, PageDetails]:
    """Snapshot of every page keyed by URL, with importance averages filled in."""
    details: Dict[str, PageDetails] = {}
    for page in pages:
        inbound = page.inbound_links
        outbound = page.outbound_links
        details[page.url] = page.model_copy(
            update={
                "inbound_importance": round(page.inbound_importance, 4),
                "outbound_importance": round(page.outbound_importance, 4),
                "avg_inbound_importance": round(page.inbound_importance / inbound, 4) if inbound else 0.0,
                "avg_outbound_importance": round(page.outbound_importance / outbound, 4) if outbound else 0.0,
                "link_types": dict(page.link_types),
            }
        )
    return details


def _page_importance(edges_by_target: Mapping[str, List[LinkEdge]]) -> List[PageImportance]:
    pages = []
    for url, inbound in edges_by_target.items():
        if not inbound:
            continue
        total = sum(edge.importance for edge in inbound)
        pages.append(
            PageImportance(
                url=url,
                average_importance=round(total / len(inbound), 4),
                link_count=len(inbound),
                total_importance=round(total, 4),
            )
        )
    return pages


def _by_target(edges: EdgeInput) -> Dict[str, List[LinkEdge]]:
    if isinstance(edges, Mapping):
        return dict(edges)
    grouped: Dict[str, List[LinkEdge]] = {}
    for edge in edges:
        grouped.setdefault(edge.to_url, []).append(edge)
    return grouped


def top_important_pages(edges: EdgeInput, limit: int = 10) -> List[PageImportance]:
    """Link targets with the highest average inbound importance."""
    pages = _page_importance(_by_target(edges))
    return sorted(pages, key=lambda page: (-page.average_importance, page.url))[:limit]


def low_importance_pages(edges: EdgeInput, limit: int = 10) -> List[PageImportance]:
    """Link targets with the lowest average inbound importance."""
    pages = _page_importance(_by_target(edges))
    return sorted(pages, key=lambda page: (page.average_importance, page.url))[:limit]
