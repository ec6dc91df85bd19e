"""Distribution of links over context types, categories and CMS vendors."""

from collections import Counter
from typing import Dict, Optional

from app.models.analysis_response import ContextDistribution
from app.services.link_context import CATEGORIES, CATEGORY_BY_TYPE, CMS_BY_TYPE
from app.services.ranking import EdgeInput, flatten_edges

CMS_VENDORS = ("wordpress", "duda", "webflow", "wix", "shopify", "squarespace")


def _percentages(counts: Dict[str, int], total: int) -> Dict[str, float]:
    if not total:
        return {}
    return {key: round(count / total * 100, 1) for key, count in counts.items()}


def analyze_context_distribution(edges: EdgeInput, detected_cms: Optional[str] = None) -> ContextDistribution:
    """Count links per context type, per category and per CMS-specific type.

    ``menu_to_content_ratio`` is menu links over paragraph + content-main
    links (None without such links).  ``contextual_links_score`` rescales the
    share of content-category links to 1–10.  ``cms_confidence`` is the
    percentage of links typed for *detected_cms*.
    """
    by_type: Counter = Counter()
    by_category = {category: 0 for category in CATEGORIES}
    cms_specific = {vendor: 0 for vendor in CMS_VENDORS}

    edge_list = flatten_edges(edges)
    for edge in edge_list:
        by_type[edge.context_type] += 1
        category = CATEGORY_BY_TYPE.get(edge.context_type)
        if category:
            by_category[category] += 1
        vendor = CMS_BY_TYPE.get(edge.context_type)
        if vendor:
            cms_specific[vendor] = cms_specific.get(vendor, 0) + 1

    total = len(edge_list)
    distribution = ContextDistribution(
        total=total,
        by_type=dict(by_type),
        by_type_percentage=_percentages(dict(by_type), total),
        by_category=by_category,
        by_category_percentage=_percentages(by_category, total),
        cms_specific=cms_specific,
        cms_specific_percentage=_percentages(cms_specific, total),
        detected_cms=detected_cms,
    )
    if not total:
        return distribution

    menu_links = by_type.get("menu", 0)
    content_links = by_type.get("paragraph", 0) + by_type.get("content-main", 0)
    distribution.menu_to_content_ratio = round(menu_links / content_links, 2) if content_links else None
    distribution.paragraph_percentage = round(by_type.get("paragraph", 0) / total * 100, 1)

    content_ratio = by_category["content"] / total
    distribution.contextual_links_score = min(10, max(1, round(content_ratio * 10)))

    if detected_cms and cms_specific.get(detected_cms):
        distribution.cms_confidence = min(100, round(cms_specific[detected_cms] / total * 100))
    return distribution
