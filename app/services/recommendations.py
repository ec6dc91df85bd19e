"""Rule-based recommendations derived from the aggregate metrics.

Each rule looks at one or more metrics, compares them with a fixed
threshold and, when triggered, emits one :class:`Recommendation`.  Rules are
independent of each other; the global strategy record is always emitted.
"""

from typing import Callable, Dict, List, NamedTuple, Optional

from app.models.analysis_response import (
    AnchorQuality,
    ContextDistribution,
    InTextAnalysis,
    LinksSummary,
    PerformanceMetrics,
    Recommendation,
)

ORPHANED_HIGH_PRIORITY_PCT = 20.0
GENERIC_ANCHOR_MAX_PCT = 30.0
PARAGRAPH_LINKS_MIN_PCT = 40.0
MIN_LINKS_PER_PAGE = 3.0
MIN_HIERARCHY_SCORE = 7
HIGH_IMPORTANCE_MIN_PCT = 20.0
IN_TEXT_MIN_PCT = 25.0
CMS_SPECIFIC_MIN_PCT = 30.0

CMS_ACTIONS: Dict[str, List[str]] = {
    "wordpress": [
        "Use an internal-linking plugin such as Link Whisper or Yoast SEO",
        "Add a related-posts widget to the sidebar",
        "Customise the theme to surface contextual navigation",
        "Use categories and tags to reinforce topical linking",
    ],
    "duda": [
        "Use custom widgets for contextual links",
        "Build content sections with topical links",
        "Optimise the mobile navigation structure",
        "Use multi-level navigation features for internal linking",
    ],
    "webflow": [
        "Use dynamic collections to link related content",
        "Create reusable components that carry contextual links",
        "Optimise the links in CMS templates",
        "Add reference lists for related articles",
    ],
    "wix": [
        "Use the related pages tool of the Wix editor",
        "Create topical secondary menus",
        "Add related-content sections to page templates",
        "Use Wix repeaters to display related articles",
    ],
    "shopify": [
        "Link related products and collections to each other",
        "Add similar-products or recently-viewed sections",
        "Improve category navigation links",
        "Use the blog to strengthen links towards product pages",
    ],
}

DEFAULT_CMS_ACTIONS = [
    "Optimise the navigation structure your CMS generates",
    "Check the automatic linking options of your platform",
    "Improve page templates so they include more contextual links",
    "Look for extensions or plugins dedicated to internal linking",
]


class RecommendationInput(NamedTuple):
    orphaned_count: int
    sitemap_count: int
    anchor_quality: AnchorQuality
    context_analysis: ContextDistribution
    in_text_analysis: InTextAnalysis
    performance: PerformanceMetrics
    links_summary: LinksSummary


Rule = Callable[[RecommendationInput], Optional[Recommendation]]


def _orphaned_pages(data: RecommendationInput) -> Optional[Recommendation]:
    if data.orphaned_count <= 0 or not data.sitemap_count:
        return None
    percentage = round(data.orphaned_count / data.sitemap_count * 100, 1)
    return Recommendation(
        id="orphaned_pages",
        title="Reduce orphaned pages",
        description=(
            f"{data.orphaned_count} pages ({percentage}%) are listed in the sitemap "
            "but cannot be reached through internal links."
        ),
        priority="high" if percentage > ORPHANED_HIGH_PRIORITY_PCT else "medium",
        actions=[
            "Link to these pages from topically related content",
            "Add these pages to the main or secondary navigation",
            "Create related-articles sections that point to these pages",
        ],
    )


def _anchor_quality(data: RecommendationInput) -> Optional[Recommendation]:
    percentage = data.anchor_quality.generic_percentage
    if percentage <= GENERIC_ANCHOR_MAX_PCT:
        return None
    return Recommendation(
        id="anchor_quality",
        title="Improve anchor text quality",
        description=f'{percentage}% of your links use generic wording such as "click here" or "read more".',
        priority="medium",
        actions=[
            "Use descriptive keywords in anchor texts",
            'Avoid generic wording such as "click here"',
            "Make each anchor relevant to the content it points to",
        ],
    )


def _contextual_links(data: RecommendationInput) -> Optional[Recommendation]:
    percentage = data.context_analysis.paragraph_percentage
    if percentage >= PARAGRAPH_LINKS_MIN_PCT:
        return None
    return Recommendation(
        id="contextual_links",
        title="Add more contextual links",
        description=f"Only {percentage}% of your links sit inside content paragraphs.",
        priority="medium",
        actions=[
            "Place more links in the running text of articles",
            "Link relevant terms naturally to other pages",
            "Rely less on menus and widgets for navigation",
        ],
    )


def _link_density(data: RecommendationInput) -> Optional[Recommendation]:
    average = data.performance.average_links_per_page
    if average >= MIN_LINKS_PER_PAGE:
        return None
    return Recommendation(
        id="link_density",
        title="Increase link density",
        description=f"Your pages carry only {average} internal links on average.",
        priority="medium",
        actions=[
            "Add more internal links between related pages",
            "Create related-articles or see-also sections",
            "Use contextual links in the body text",
        ],
    )


def _hierarchy_structure(data: RecommendationInput) -> Optional[Recommendation]:
    if data.performance.hierarchy_score >= MIN_HIERARCHY_SCORE:
        return None
    return Recommendation(
        id="hierarchy_structure",
        title="Improve the hierarchical structure",
        description="The hierarchy of your internal linking could be improved.",
        priority="low",
        actions=[
            "Organise content into topical silos",
            "Clearly separate pillar pages from supporting pages",
            "Make every page reachable in three clicks or fewer",
        ],
    )


def _importance_distribution(data: RecommendationInput) -> Optional[Recommendation]:
    percentages = data.links_summary.by_importance_percentage
    if percentages is None:
        return None
    high = float(percentages.high)
    if high >= HIGH_IMPORTANCE_MIN_PCT:
        return None
    return Recommendation(
        id="importance_distribution",
        title="Increase link importance",
        description=f"Only {high}% of your links carry high importance.",
        priority="medium",
        actions=[
            "Place more links in relevant content paragraphs",
            "Use keyword-rich anchor texts",
            "Add links to call-to-action sections and prominent blocks",
            "Avoid generic links in secondary menus",
        ],
    )


def _intext_links(data: RecommendationInput) -> Optional[Recommendation]:
    percentage = data.in_text_analysis.in_text_percentage
    if percentage >= IN_TEXT_MIN_PCT:
        return None
    return Recommendation(
        id="intext_links",
        title="Add more in-text links",
        description=f"Only {percentage}% of your links are placed inside the content.",
        priority="high",
        actions=[
            "Prefer links in the body text over links in menus",
            "Turn the key terms of your content into links",
            "Add contextual links in paragraphs towards your most important content",
        ],
    )


def _cms_specific(data: RecommendationInput) -> Optional[Recommendation]:
    percentages = data.context_analysis.cms_specific_percentage
    vendor, best = "", 0.0
    for name, percentage in percentages.items():
        if percentage > best:
            vendor, best = name, percentage
    if not vendor or best <= CMS_SPECIFIC_MIN_PCT:
        return None
    return Recommendation(
        id="cms_specific",
        title=f"Optimisation for {vendor}",
        description=f"Your site mostly relies on {vendor} ({best}% of the navigation elements).",
        priority="low",
        actions=list(CMS_ACTIONS.get(vendor, DEFAULT_CMS_ACTIONS)),
    )


def _global_strategy(data: RecommendationInput) -> Optional[Recommendation]:
    return Recommendation(
        id="global_strategy",
        title="Set up a global internal-linking strategy",
        description=(
            "A deliberate internal-linking strategy can noticeably improve both "
            "search rankings and user experience."
        ),
        priority="medium",
        actions=[
            "Identify your pillar pages and plan links from their satellite content",
            "Organise content into topical silos to reinforce relevance",
            "Define a minimum number of internal links per content page",
            "Review the linking structure regularly and adapt it to performance",
        ],
    )


RULES: List[Rule] = [
    _orphaned_pages,
    _anchor_quality,
    _contextual_links,
    _link_density,
    _hierarchy_structure,
    _importance_distribution,
    _intext_links,
    _cms_specific,
    _global_strategy,
]


def generate_recommendations(
    orphaned_count: int,
    sitemap_count: int,
    anchor_quality: AnchorQuality,
    context_analysis: ContextDistribution,
    in_text_analysis: InTextAnalysis,
    performance: PerformanceMetrics,
    links_summary: LinksSummary,
) -> List[Recommendation]:
    """Evaluate every rule and return the triggered recommendations."""
    data = RecommendationInput(
        orphaned_count,
        sitemap_count,
        anchor_quality,
        context_analysis,
        in_text_analysis,
        performance,
        links_summary,
    )
    recommendations = []
    for rule in RULES:
        recommendation = rule(data)
        if recommendation is not None:
            recommendations.append(recommendation)
    return recommendations
