"""CMS / site-builder detection from raw page HTML.

Every vendor has a list of literal markers (class prefixes, asset paths,
global JS objects).  :meth:`CmsDetector.detect` counts how often each marker
occurs in a page, case-insensitively, and sums the counts per vendor.  The
vendor with the highest total is the page's *dominant* CMS and the share of
its hits among all hits is the detection confidence.

Markers overlap on purpose (``wp-content`` is also counted by ``wp-``): a
page that merely mentions a vendor once scores far lower than a page built
with it, which is what the run-wide tally in :class:`CmsTally` relies on.
"""

import hashlib
import logging
from typing import Dict, List, NamedTuple, Optional

logger = logging.getLogger(__name__)

CMS_SIGNATURES: Dict[str, List[str]] = {
    "wordpress": ["wp-content", "wp-includes", "wp-", "wordpress", 'class="wp-'],
    "duda": ["dmUDNavigationItem", "unifiednav__item", "dmNav", "dmBody", "dm-", "data-anim-desktop"],
    "webflow": ["w-webflow", "wf-", "webflow", "w-nav"],
    "wix": ["wix-", "_wixCssImports", "_wixTemplate", "wixui"],
    "shopify": ["shopify", "Shopify.theme", "shopify-section"],
    "squarespace": ["squarespace", "sqs-", "data-sqs-type"],
}

# Only the head of the document is hashed when no URL is given as cache key
_HASH_PREFIX_LENGTH = 5000


class CmsDetection(NamedTuple):
    scores: Dict[str, int]
    dominant: Optional[str]
    dominant_score: int
    confidence: float  # dominant_score / total hits, 0 when nothing matched


def _dominant(scores: Dict[str, int], current: Optional[str] = None) -> Optional[str]:
    """Return the vendor with the highest score; ties keep *current*."""
    best = current if current is not None and scores.get(current, 0) > 0 else None
    best_score = scores.get(best, 0) if best else 0
    for vendor, score in scores.items():
        if score > best_score:
            best, best_score = vendor, score
    return best


class CmsDetector:
    """Signature-based CMS detector with a clearable per-page cache."""

    def __init__(self, signatures: Optional[Dict[str, List[str]]] = None):
        source = signatures if signatures is not None else CMS_SIGNATURES
        self._signatures: Dict[str, List[str]] = {vendor: list(markers) for vendor, markers in source.items()}
        self._cache: Dict[str, CmsDetection] = {}

    @property
    def signatures(self) -> Dict[str, List[str]]:
        return {vendor: list(markers) for vendor, markers in self._signatures.items()}

    def add_signatures(self, vendor: str, markers: List[str]) -> None:
        """Register extra *markers* for *vendor*; invalidates cached detections."""
        if not vendor or not markers:
            return
        self._signatures.setdefault(vendor, []).extend(markers)
        self._cache.clear()

    def clear_cache(self) -> None:
        self._cache.clear()

    def _cache_key(self, html: str, url: Optional[str]) -> str:
        if url:
            return url
        if not html:
            return "empty"
        return hashlib.md5(html[:_HASH_PREFIX_LENGTH].encode("utf-8", errors="replace")).hexdigest()

    def detect(self, html: str, url: Optional[str] = None) -> CmsDetection:
        """Score *html* against every vendor's markers.

        Args:
            html: Raw page HTML.
            url: Optional page URL, used as cache key when given.
        """
        key = self._cache_key(html, url)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        scores = {vendor: 0 for vendor in self._signatures}
        if html:
            lowered = html.lower()
            for vendor, markers in self._signatures.items():
                scores[vendor] = sum(lowered.count(marker.lower()) for marker in markers)

        total = sum(scores.values())
        dominant = _dominant(scores)
        dominant_score = scores[dominant] if dominant else 0
        confidence = round(dominant_score / total, 4) if total else 0.0

        result = CmsDetection(scores, dominant, dominant_score, confidence)
        self._cache[key] = result
        return result


class CmsTally:
    """Run-wide accumulation of per-page CMS hit counts."""

    def __init__(self) -> None:
        self.totals: Dict[str, int] = {}
        self.dominant: Optional[str] = None

    def merge(self, detection: CmsDetection) -> Optional[str]:
        """Add *detection*'s counts and return the (possibly new) dominant vendor."""
        for vendor, score in detection.scores.items():
            self.totals[vendor] = self.totals.get(vendor, 0) + score
        previous = self.dominant
        self.dominant = _dominant(self.totals, previous)
        if self.dominant != previous:
            logger.debug("Dominant CMS is now %s", self.dominant)
        return self.dominant

    @property
    def confidence(self) -> float:
        total = sum(self.totals.values())
        if not total or not self.dominant:
            return 0.0
        return round(self.totals[self.dominant] / total, 4)
