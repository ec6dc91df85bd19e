"""Tests for the aggregate metrics: anchors, contexts, summaries and performance scores."""

import pytest

from app.models.analysis_response import AnchorQuality, LinksSummary
from app.models.link import LinkEdge
from app.models.page import PageDetails
from app.services.anchors import analyze_anchor_quality, generic_term
from app.services.contexts import analyze_context_distribution
from app.services.performance import (
    generate_performance_metrics,
    hierarchy_score,
    overall_score,
    silo_density,
)
from app.services.summary import (
    analyze_in_text_links,
    build_page_details,
    low_importance_pages,
    summarize_links,
    top_important_pages,
)


def _edge(src="a", dst="b", context="paragraph", importance=0.8, text="anchor") -> LinkEdge:
    return LinkEdge(
        from_url=src,
        to_url=dst,
        context_type=context,
        context_score=0.5,
        importance=importance,
        anchor_text=text,
    )


# ---------------------------------------------------------------------------
# Anchor quality
# ---------------------------------------------------------------------------

class TestGenericTerm:
    @pytest.mark.parametrize(
        "text, term",
        [
            ("Click here", "click"),
            ("Read more", "read more"),
            ("En savoir plus", "plus"),
            ("ici", "ici"),
        ],
    )
    def test_generic(self, text, term):
        assert generic_term(text) == term

    def test_whole_words_only(self):
        assert generic_term("Surplus stock") is None
        assert generic_term("Linkedin profile") is None


class TestAnchorQuality:
    def test_counts_and_percentages(self):
        edges = [
            _edge(text="Click here"),
            _edge(text="Pricing plans for teams"),
            _edge(text="Go"),
            _edge(text="About"),
        ]
        quality = analyze_anchor_quality(edges)
        assert quality.total_anchors == 4
        assert quality.generic_anchors == 1
        assert quality.meaningful_anchors == 2
        assert quality.keyword_rich_anchors == 2
        assert quality.generic_percentage == 25.0
        assert quality.meaningful_percentage == 50.0
        assert quality.average_length == 10.0
        distribution = quality.length_distribution
        assert (distribution.very_short, distribution.short, distribution.medium, distribution.long) == (1, 2, 0, 1)
        assert [(t.term, t.count) for t in quality.common_generic_terms] == [("click", 1)]
        assert {t.term for t in quality.common_keywords} == {"pricing", "plans", "teams", "about"}

    def test_custom_generic_terms(self):
        quality = analyze_anchor_quality([_edge(text="Discover our offer")], generic_terms=["discover"])
        assert quality.generic_anchors == 1

    def test_empty(self):
        quality = analyze_anchor_quality([])
        assert quality.total_anchors == 0
        assert quality.generic_percentage == 0.0
        assert quality.common_keywords == []


# ---------------------------------------------------------------------------
# Context distribution
# ---------------------------------------------------------------------------

class TestContextDistribution:
    EDGES = [
        _edge(context="menu"),
        _edge(context="menu"),
        _edge(context="paragraph"),
        _edge(context="content-main"),
        _edge(context="wp-menu"),
    ]

    def test_counts(self):
        distribution = analyze_context_distribution(self.EDGES, "wordpress")
        assert distribution.total == 5
        assert distribution.by_type == {"menu": 2, "paragraph": 1, "content-main": 1, "wp-menu": 1}
        assert distribution.by_type_percentage["menu"] == 40.0
        assert distribution.by_category["navigation"] == 3
        assert distribution.by_category["content"] == 2
        assert distribution.by_category["social"] == 0

    def test_ratios_and_scores(self):
        distribution = analyze_context_distribution(self.EDGES, "wordpress")
        assert distribution.menu_to_content_ratio == 1.0
        assert distribution.paragraph_percentage == 20.0
        assert distribution.contextual_links_score == 4
        assert distribution.cms_specific["wordpress"] == 1
        assert distribution.cms_specific_percentage["wordpress"] == 20.0
        assert distribution.detected_cms == "wordpress"
        assert distribution.cms_confidence == 20

    def test_no_content_links(self):
        distribution = analyze_context_distribution([_edge(context="footer")])
        assert distribution.menu_to_content_ratio is None
        assert distribution.contextual_links_score == 1
        assert distribution.cms_confidence == 0

    def test_empty(self):
        distribution = analyze_context_distribution([])
        assert distribution.total == 0
        assert distribution.contextual_links_score == 0
        assert distribution.by_type_percentage == {}


# ---------------------------------------------------------------------------
# Link summaries
# ---------------------------------------------------------------------------

class TestSummarizeLinks:
    EDGES = [
        _edge("a", "x", importance=0.9),
        _edge("a", "x", importance=0.8),
        _edge("b", "y", context="menu", importance=0.5),
        _edge("c", "x", context="footer", importance=0.49),
    ]

    def test_importance_bands(self):
        summary = summarize_links(self.EDGES)
        assert summary.total_links == 4
        assert (summary.by_importance.high, summary.by_importance.medium, summary.by_importance.low) == (2, 1, 1)
        assert summary.by_importance_percentage.high == 50.0
        assert summary.by_importance_percentage.low == 25.0
        assert summary.by_context == {"paragraph": 2, "menu": 1, "footer": 1}

    def test_ranked_pages(self):
        summary = summarize_links(self.EDGES)
        assert [(p.url, p.count) for p in summary.top_destination_pages] == [("x", 3), ("y", 1)]
        assert [(p.url, p.count) for p in summary.top_source_pages] == [("a", 2), ("b", 1), ("c", 1)]

    def test_empty(self):
        summary = summarize_links([])
        assert summary.total_links == 0
        assert summary.by_importance_percentage is None

    def test_important_pages(self):
        assert [page.url for page in top_important_pages(self.EDGES)] == ["x", "y"]
        assert [page.url for page in low_importance_pages(self.EDGES)] == ["y", "x"]
        top = top_important_pages(self.EDGES)[0]
        assert top.link_count == 3
        assert top.total_importance == pytest.approx(2.19)


class TestInTextLinks:
    def test_split(self):
        edges = [
            _edge("p1", "A", context="paragraph"),
            _edge("p2", "A", context="content-main"),
            _edge("p1", "B", context="menu"),
            _edge("p1", "C", context="button"),
        ]
        analysis = analyze_in_text_links(edges)
        assert analysis.total == 4
        assert analysis.in_text_links == 2
        assert analysis.navigation_links == 1
        assert analysis.in_text_percentage == 50.0
        assert analysis.navigation_percentage == 25.0
        assert analysis.in_text_by_page == {"A": 2}
        assert analysis.average_in_text_per_page == 2.0

    def test_empty(self):
        analysis = analyze_in_text_links([])
        assert analysis.in_text_percentage == 0.0
        assert analysis.average_in_text_per_page == 0.0


class TestPageDetails:
    def test_averages(self):
        page = PageDetails(url="https://example.com/a", inbound_links=2, inbound_importance=1.5)
        details = build_page_details([page])
        snapshot = details["https://example.com/a"]
        assert snapshot.avg_inbound_importance == 0.75
        assert snapshot.avg_outbound_importance == 0.0
        assert page.avg_inbound_importance == 0.0


# ---------------------------------------------------------------------------
# Performance
# ---------------------------------------------------------------------------

class TestHierarchyScore:
    @pytest.mark.parametrize(
        "orphaned, sitemap, expected",
        [(0, 10, 10), (10, 10, 2), (2, 5, 7), (0, 0, 7)],
    )
    def test_values(self, orphaned, sitemap, expected):
        assert hierarchy_score(orphaned, sitemap) == expected


class TestSiloDensity:
    DETAILS = {
        "a": PageDetails(url="a", depth=1),
        "b": PageDetails(url="b", depth=1),
        "c": PageDetails(url="c", depth=2),
    }

    def test_same_level_links(self):
        assert silo_density([_edge("a", "b")], self.DETAILS) == 10.0

    def test_cross_level_links(self):
        assert silo_density([_edge("a", "c")], self.DETAILS) == 1.0

    def test_no_links(self):
        assert silo_density([], self.DETAILS) == 5.0

    def test_pages_matched_across_spellings(self):
        details = {
            "https://example.com/a": PageDetails(url="https://example.com/a", depth=1),
            "https://example.com/x/y": PageDetails(url="https://example.com/x/y", depth=2),
        }
        edge = _edge("https://www.example.com/a", "http://example.com/x/y/")
        assert silo_density([edge], details) == 1.0


class TestOverallScore:
    def test_perfect_site(self):
        edges = [_edge(f"s{i}", f"t{i}", importance=1.0) for i in range(10)]
        score = overall_score(
            summarize_links(edges),
            AnchorQuality(meaningful_percentage=100.0),
            orphaned_count=0,
            sitemap_count=10,
            crawled_count=2,
            avg_importance=1.0,
            pagerank_dispersion=0.0,
        )
        assert score == 100

    def test_empty_site(self):
        score = overall_score(
            LinksSummary(),
            AnchorQuality(),
            orphaned_count=10,
            sitemap_count=10,
            crawled_count=5,
            avg_importance=0.0,
            pagerank_dispersion=0.0,
        )
        assert score == 10


class TestPerformanceMetrics:
    def test_neutral_without_sitemap(self):
        edges = [_edge()]
        metrics = generate_performance_metrics(
            edges,
            summarize_links(edges),
            analyze_anchor_quality(edges),
            {},
            {"a": 0.0, "b": 1.0},
            {"b": 0.5},
            sitemap_count=0,
            crawled_count=1,
            orphaned_count=0,
        )
        assert metrics.silo_density == 5.0
        assert metrics.hierarchy_score == 7
        assert metrics.internal_linking_score == 75
        assert metrics.average_links_per_page == 1.0
        assert metrics.average_link_importance == 0.8

    def test_full_run(self):
        edges = [_edge("a", "b"), _edge("b", "a", importance=0.6)]
        details = {"a": PageDetails(url="a", depth=1), "b": PageDetails(url="b", depth=1)}
        metrics = generate_performance_metrics(
            edges,
            summarize_links(edges),
            analyze_anchor_quality(edges),
            details,
            {"a": 0.0, "b": 1.0},
            {"a": 0.4, "b": 0.6},
            sitemap_count=4,
            crawled_count=2,
            orphaned_count=2,
        )
        assert metrics.silo_density == 10.0
        assert metrics.hierarchy_score == 6
        assert metrics.pagerank_dispersion == 0.5
        assert metrics.average_juice_link_score == 0.5
        assert metrics.average_link_importance == 0.7
        assert 0 <= metrics.internal_linking_score <= 100
