"""Composite internal-linking scores."""

from typing import Dict, Mapping, NamedTuple

from app.models.analysis_response import AnchorQuality, LinksSummary, PerformanceMetrics
from app.models.page import PageDetails
from app.services.link_context import IN_TEXT_CONTEXTS
from app.services.normalizer import page_key
from app.services.ranking import EdgeInput, dispersion, flatten_edges


class ScoreWeights(NamedTuple):
    """Weights of the overall internal-linking score; they sum to 1."""

    non_orphaned: float = 0.25
    links_per_page: float = 0.15
    content_links: float = 0.2
    anchor_quality: float = 0.15
    importance: float = 0.15
    authority_flow: float = 0.1


DEFAULT_SCORE_WEIGHTS = ScoreWeights()

# Scores reported when there is nothing to measure
NEUTRAL_SILO_DENSITY = 5.0
NEUTRAL_HIERARCHY_SCORE = 7
NEUTRAL_OVERALL_SCORE = 75


def _clamp(value: int, low: int, high: int) -> int:
    return min(high, max(low, value))


def silo_density(edges: EdgeInput, page_details: Mapping[str, PageDetails]) -> float:
    """How much pages link within their own depth level, on a 1–10 scale.

    Links are bucketed by target depth; the share of same-depth sources is
    averaged over the buckets.  Pages are matched by :func:`page_key`;
    unknown depths count as 0.
    """
    depths = {page_key(url): page.depth for url, page in page_details.items()}
    per_depth: Dict[int, int] = {}
    within_depth: Dict[int, int] = {}
    for edge in flatten_edges(edges):
        target_depth = _depth(edge.to_url, depths)
        source_depth = _depth(edge.from_url, depths)
        per_depth[target_depth] = per_depth.get(target_depth, 0) + 1
        if source_depth == target_depth:
            within_depth[target_depth] = within_depth.get(target_depth, 0) + 1

    if not per_depth:
        return NEUTRAL_SILO_DENSITY
    ratio = sum(within_depth.get(depth, 0) / count for depth, count in per_depth.items()) / len(per_depth)
    return float(_clamp(round(ratio * 10), 1, 10))


def _depth(url: str, depths: Mapping[str, int]) -> int:
    return max(depths.get(page_key(url), 0), 0)


def hierarchy_score(orphaned_count: int, sitemap_count: int) -> int:
    if not sitemap_count:
        return NEUTRAL_HIERARCHY_SCORE
    non_orphaned = 1 - orphaned_count / sitemap_count
    return _clamp(round(non_orphaned * 8) + 2, 1, 10)


def average_importance(edges: EdgeInput) -> float:
    edge_list = flatten_edges(edges)
    if not edge_list:
        return 0.0
    return sum(edge.importance for edge in edge_list) / len(edge_list)


def overall_score(
    links_summary: LinksSummary,
    anchor_quality: AnchorQuality,
    orphaned_count: int,
    sitemap_count: int,
    crawled_count: int,
    avg_importance: float,
    pagerank_dispersion: float,
    weights: ScoreWeights = DEFAULT_SCORE_WEIGHTS,
) -> int:
    """Weighted 0–100 blend of the individual linking indicators."""
    non_orphaned = (1 - orphaned_count / sitemap_count) * 100 if sitemap_count else 100.0
    links_per_page = links_summary.total_links / crawled_count if crawled_count else 0.0
    links_score = min(100.0, links_per_page * 10)

    total = links_summary.total_links
    content_links = sum(count for context, count in links_summary.by_context.items() if context in IN_TEXT_CONTEXTS)
    content_score = content_links / total * 100 if total else 0.0

    anchor_score = anchor_quality.meaningful_percentage
    high_share = links_summary.by_importance_percentage.high if links_summary.by_importance_percentage else 0.0
    importance_score = high_share + avg_importance * 50
    authority_flow = 100 - min(100.0, pagerank_dispersion * 200)

    score = round(
        non_orphaned * weights.non_orphaned
        + links_score * weights.links_per_page
        + content_score * weights.content_links
        + anchor_score * weights.anchor_quality
        + importance_score * weights.importance
        + authority_flow * weights.authority_flow
    )
    return _clamp(score, 0, 100)


def generate_performance_metrics(
    edges: EdgeInput,
    links_summary: LinksSummary,
    anchor_quality: AnchorQuality,
    page_details: Mapping[str, PageDetails],
    page_rank: Mapping[str, float],
    juice_scores: Mapping[str, float],
    sitemap_count: int,
    crawled_count: int,
    orphaned_count: int,
    weights: ScoreWeights = DEFAULT_SCORE_WEIGHTS,
) -> PerformanceMetrics:
    """Compute every performance indicator of a run.

    Without a sitemap or without crawled pages, silo density, hierarchy and
    overall scores keep their neutral defaults.
    """
    avg_importance = average_importance(edges)
    metrics = PerformanceMetrics(
        average_links_per_page=round(links_summary.total_links / crawled_count, 1) if crawled_count else 0.0,
        average_link_importance=round(avg_importance, 3),
        silo_density=NEUTRAL_SILO_DENSITY,
        hierarchy_score=NEUTRAL_HIERARCHY_SCORE,
        internal_linking_score=NEUTRAL_OVERALL_SCORE,
    )
    if not sitemap_count or not crawled_count:
        return metrics

    rank_dispersion = round(dispersion(page_rank), 5)
    metrics.silo_density = silo_density(edges, page_details)
    metrics.hierarchy_score = hierarchy_score(orphaned_count, sitemap_count)
    metrics.internal_linking_score = overall_score(
        links_summary,
        anchor_quality,
        orphaned_count,
        sitemap_count,
        crawled_count,
        avg_importance,
        rank_dispersion,
        weights,
    )
    metrics.pagerank_dispersion = rank_dispersion
    if juice_scores:
        metrics.average_juice_link_score = round(sum(juice_scores.values()) / len(juice_scores), 4)
    return metrics
