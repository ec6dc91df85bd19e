"""Structural context classification and importance scoring of links.

A link's *context* is the structural role of the markup around it: a menu,
a footer, a paragraph of body copy, a call-to-action block, a Webflow nav
bar…  The classifier works on raw HTML text, not on a DOM.  It evaluates an
ordered catalogue of :class:`ContextRule` entries against one anchor:

``container`` rules
    The anchor's literal HTML occurs inside an element of the page whose
    opening tag matches the rule (``<footer>``, ``<div class="sidebar">``…).
    Containment is decided by matching opening and closing tags of the same
    name, so an element that was closed before the anchor does not count.

``anchor`` rules
    The anchor's own markup matches (``class="btn"``, ``target="_blank"``,
    an ``<img>`` child…).

Every matching rule contributes a candidate; the highest score wins and ties
go to the rule declared first (semantic > CMS-specific > content > special).
When nothing matches, Duda menu markers, then images, then the residual
``content`` type (0.5) are used.

Importance starts from the winning context score and is adjusted by a fixed,
ordered list of bonuses and penalties before being clamped to [0, 1].
"""

import html as html_lib
import re
from typing import Callable, Dict, List, NamedTuple, Optional, Pattern, Tuple

from app.models.link import ContextType, LinkAttributes, LinkEdge
from app.services.normalizer import same_site

# ---------------------------------------------------------------------------
# Importance adjustments (hand-tuned heuristics, applied in this order)
# ---------------------------------------------------------------------------
IN_TEXT_BONUS = 0.15
IMAGE_BONUS = 0.1
BUTTON_BONUS = 0.1
DOWNLOAD_BONUS = 0.05
NEW_TAB_PENALTY = 0.05
NOFOLLOW_PENALTY = 0.1
EXTERNAL_PENALTY = 0.05
# (minimum anchor-text length, bonus) pairs; every threshold exceeded adds its bonus
ANCHOR_LENGTH_BONUSES = ((10, 0.05), (20, 0.05))

DEFAULT_CONTEXT: Tuple[ContextType, float] = ("content", 0.5)

IN_TEXT_CONTEXTS = frozenset({"paragraph", "content", "content-main"})

NAVIGATION_CONTEXTS = frozenset(
    {
        "menu",
        "header",
        "footer",
        "sidebar",
        "wp-menu",
        "duda-menu",
        "webflow-nav",
        "wix-menu",
        "shopify-menu",
        "squarespace-nav",
    }
)

CATEGORY_BY_TYPE: Dict[str, str] = {
    "menu": "navigation",
    "header": "navigation",
    "footer": "navigation",
    "sidebar": "navigation",
    "wp-menu": "navigation",
    "wp-widget": "navigation",
    "duda-menu": "navigation",
    "webflow-nav": "navigation",
    "wix-menu": "navigation",
    "shopify-menu": "navigation",
    "shopify-collection": "navigation",
    "squarespace-nav": "navigation",
    "paragraph": "content",
    "content": "content",
    "content-main": "content",
    "card": "content",
    "button": "interactive",
    "CTA": "interactive",
    "wp-featured-image": "interactive",
    "duda-button": "interactive",
    "webflow-button": "interactive",
    "webflow-link-block": "interactive",
    "wix-button": "interactive",
    "shopify-product-link": "interactive",
    "squarespace-button": "interactive",
    "image": "media",
    "breadcrumb": "metadata",
    "author": "metadata",
    "taxonomy": "metadata",
    "wp-post-navigation": "metadata",
    "social": "social",
    "duda-social": "social",
}

CATEGORIES = ("navigation", "content", "interactive", "media", "metadata", "social")

CMS_BY_TYPE: Dict[str, str] = {
    "wp-menu": "wordpress",
    "wp-widget": "wordpress",
    "wp-post-navigation": "wordpress",
    "wp-featured-image": "wordpress",
    "duda-menu": "duda",
    "duda-button": "duda",
    "duda-social": "duda",
    "duda-element": "duda",
    "webflow-nav": "webflow",
    "webflow-button": "webflow",
    "webflow-link-block": "webflow",
    "wix-menu": "wix",
    "wix-button": "wix",
    "wix-component": "wix",
    "shopify-menu": "shopify",
    "shopify-product-link": "shopify",
    "shopify-collection": "shopify",
    "squarespace-nav": "squarespace",
    "squarespace-button": "squarespace",
}

_IMG_RE = re.compile(r"<img\b[^>]*>", re.IGNORECASE)
_ICON_RE = re.compile(r"<i\b[^>]*class=[\"'][^\"']*\b(?:fa|icon|material-icons)\b[^\"']*[\"'][^>]*>", re.IGNORECASE)
_BUTTON_CLASS_RE = re.compile(r"class=[\"'][^\"']*\b(?:btn|button)\b[^\"']*[\"']", re.IGNORECASE)
_DOWNLOAD_RE = re.compile(r"\sdownload\b(?:=[\"'][^\"']*[\"'])?", re.IGNORECASE)
_NEW_TAB_RE = re.compile(r"target=[\"']?_blank\b", re.IGNORECASE)
_NOFOLLOW_RE = re.compile(r"rel=[\"'][^\"']*\bnofollow\b[^\"']*[\"']", re.IGNORECASE)
_OPENING_TAG_RE = re.compile(r"^\s*<a\b[^>]*>", re.IGNORECASE)
_CLASS_ATTR_RE = re.compile(r"class=[\"']([^\"']*)[\"']", re.IGNORECASE)
_TEXT_RUN_RE = re.compile(r">([^<]+)<")
_DUDA_MENU_MARKERS = ("dmUDNavigationItem", "unifiednav__item")

# Anchors are looked up at most this many times in a page when no offset is given
_MAX_OCCURRENCES = 50


# ---------------------------------------------------------------------------
# Page structure
# ---------------------------------------------------------------------------


class PageStructure:
    """Element spans of one page, computed lazily and cached per tag / opener.

    The page is scanned at most once per tag name: opening and closing tags
    of that name are paired with a stack, unclosed elements extend to the end
    of the document.
    """

    def __init__(self, html: str):
        self.html = html
        self._closing: Dict[str, Dict[int, int]] = {}
        self._spans: Dict[Pattern, List[Tuple[int, int]]] = {}

    def _closing_positions(self, tag: str) -> Dict[int, int]:
        tag = tag.lower()
        if tag not in self._closing:
            closing: Dict[int, int] = {}
            stack: List[int] = []
            tag_re = re.compile(rf"<(/?){re.escape(tag)}(?=[\s/>])", re.IGNORECASE)
            for match in tag_re.finditer(self.html):
                if match.group(1):
                    if stack:
                        closing[stack.pop()] = match.start()
                else:
                    stack.append(match.start())
            for start in stack:
                closing[start] = len(self.html)
            self._closing[tag] = closing
        return self._closing[tag]

    def spans(self, opener: Pattern) -> List[Tuple[int, int]]:
        """Return ``(content_start, content_end)`` for every element *opener* matches."""
        if opener not in self._spans:
            spans = []
            for match in opener.finditer(self.html):
                closing = self._closing_positions(match.group("tag"))
                spans.append((match.end(), closing.get(match.start(), len(self.html))))
            self._spans[opener] = spans
        return self._spans[opener]

    def encloses(self, opener: Pattern, start: int, end: int) -> bool:
        return any(open_end <= start and end <= close for open_end, close in self.spans(opener))

    def occurrences(self, needle: str) -> Tuple[int, ...]:
        positions = []
        index = self.html.find(needle)
        while index != -1 and len(positions) < _MAX_OCCURRENCES:
            positions.append(index)
            index = self.html.find(needle, index + 1)
        return tuple(positions)


class _Anchor(NamedTuple):
    html: str
    structure: PageStructure
    positions: Tuple[int, ...]


Predicate = Callable[[_Anchor], bool]


class ContextRule(NamedTuple):
    context: ContextType
    score: float
    matches: Predicate


def _opening(tags: str, attr: str = "class", values: str = "") -> str:
    """Regex source for an opening tag among *tags* whose *attr* contains a word in *values*."""
    if not values:
        return rf"<(?P<tag>{tags})(?=[\s/>])[^>]*>"
    return (
        rf"<(?P<tag>{tags})(?=[\s/>])[^>]*\b{attr}=[\"'][^\"']*\b(?:{values})\b[^\"']*[\"'][^>]*>"
    )


def _inside(opening: str) -> Predicate:
    opener = re.compile(opening, re.IGNORECASE)

    def predicate(anchor: _Anchor) -> bool:
        length = len(anchor.html)
        return any(anchor.structure.encloses(opener, pos, pos + length) for pos in anchor.positions)

    return predicate


def _anchor_matches(pattern: str) -> Predicate:
    regex = re.compile(pattern, re.IGNORECASE)
    return lambda anchor: regex.search(anchor.html) is not None


def _anchor_class(values: str) -> Predicate:
    return _anchor_matches(rf"^\s*<a\b[^>]*\bclass=[\"'][^\"']*\b(?:{values})\b[^\"']*[\"']")


def _class_tokens(link_html: str) -> List[str]:
    opening = _OPENING_TAG_RE.match(link_html)
    match = _CLASS_ATTR_RE.search(opening.group(0) if opening else link_html)
    return match.group(1).split() if match else []


def _nav_class(anchor: _Anchor) -> bool:
    navigation_words = ("nav", "menu", "header", "footer", "unifiednav", "dmnav")
    return any(word in cls.lower() for cls in _class_tokens(anchor.html) for word in navigation_words)


def _duda_classes(anchor: _Anchor) -> List[str]:
    tokens = _class_tokens(anchor.html)
    if any(cls.startswith("dm") or "duda" in cls.lower() for cls in tokens):
        return tokens
    return []


def _duda_menu(anchor: _Anchor) -> bool:
    return any("NavItem" in cls or "nav-item" in cls for cls in _duda_classes(anchor))


def _duda_button(anchor: _Anchor) -> bool:
    return any("Button" in cls or "btn" in cls for cls in _duda_classes(anchor))


def _duda_element(anchor: _Anchor) -> bool:
    return bool(_duda_classes(anchor))


SEMANTIC_RULES = (
    ContextRule("menu", 0.6, _nav_class),
    ContextRule("menu", 0.6, _inside(_opening("nav|ul|menu"))),
    ContextRule(
        "menu", 0.6, _inside(_opening("div", "class", "menu|navigation|navbar|main-menu|primary-menu|menu-container"))
    ),
    ContextRule("button", 0.7, _inside(_opening("button"))),
    ContextRule("button", 0.7, _anchor_class("btn|button|wp-block-button__link")),
    ContextRule("CTA", 0.8, _inside(_opening("div", "class", "cta|call-to-action|action"))),
    ContextRule("CTA", 0.8, _anchor_class("cta|call-to-action|hero-button|primary-button")),
    ContextRule("footer", 0.5, _inside(_opening("footer"))),
    ContextRule("footer", 0.5, _inside(_opening("div", "class", "footer|site-footer|page-footer"))),
    ContextRule("footer", 0.5, _inside(_opening("div", "id", "footer|site-footer|page-footer"))),
    ContextRule("header", 0.6, _inside(_opening("header"))),
    ContextRule("header", 0.6, _inside(_opening("div", "class", "header|site-header|page-header"))),
    ContextRule("header", 0.6, _inside(_opening("div", "id", "header|site-header|page-header"))),
    ContextRule("sidebar", 0.5, _inside(_opening("aside|div", "class", "sidebar|widget-area|side-column"))),
    ContextRule("breadcrumb", 0.7, _inside(_opening("div|nav|ul|ol", "class", "breadcrumb|breadcrumbs|trail-items"))),
)

CMS_RULES = (
    # WordPress
    ContextRule("wp-menu", 0.6, _inside(_opening("ul", "class", "menu|main-menu|primary-menu|nav-menu|wp-nav"))),
    ContextRule("wp-widget", 0.5, _inside(_opening("div|aside", "class", "widget|wp-block-widget"))),
    ContextRule("wp-post-navigation", 0.7, _inside(_opening("div|nav", "class", "post-navigation|nav-links|pagination"))),
    ContextRule("wp-featured-image", 0.8, _anchor_class("post-thumbnail|featured-image")),
    # Duda
    ContextRule("duda-menu", 0.6, _duda_menu),
    ContextRule("duda-button", 0.7, _duda_button),
    ContextRule("duda-social", 0.4, _inside(_opening("div", "class", "dmSocialHub|socialHubWrapper"))),
    ContextRule("duda-element", 0.5, _duda_element),
    # Webflow
    ContextRule("webflow-nav", 0.6, _inside(_opening("nav|div", "class", "w-nav|w-nav-menu"))),
    ContextRule("webflow-nav", 0.6, _anchor_class("w-nav-link")),
    ContextRule("webflow-button", 0.7, _anchor_class("w-button")),
    ContextRule("webflow-link-block", 0.6, _anchor_class("w-inline-block")),
    # Wix
    ContextRule("wix-menu", 0.6, _inside(_opening("nav|ul|div", "class", "wixui-horizontal-menu|wixui-dropdown-menu"))),
    ContextRule("wix-button", 0.7, _anchor_class("wixui-button|StylableButton")),
    ContextRule("wix-component", 0.5, _anchor_matches(r"^\s*<a\b[^>]*\bdata-testid=[\"']linkElement[\"']")),
    # Shopify
    ContextRule("shopify-menu", 0.6, _inside(_opening("nav|ul|div", "class", "site-nav|header__menu|header__inline-menu"))),
    ContextRule("shopify-product-link", 0.7, _anchor_matches(r"^\s*<a\b[^>]*\bhref=[\"'][^\"']*/products/")),
    ContextRule("shopify-collection", 0.6, _anchor_matches(r"^\s*<a\b[^>]*\bhref=[\"'][^\"']*/collections/")),
    # Squarespace
    ContextRule("squarespace-nav", 0.6, _inside(_opening("nav|div", "class", "header-nav|header-nav-list"))),
    ContextRule("squarespace-button", 0.7, _anchor_class("sqs-block-button-element")),
)

CONTENT_RULES = (
    ContextRule("content-main", 0.9, _inside(_opening("main|article|section"))),
    ContextRule(
        "content-main",
        0.9,
        _inside(_opening("div", "class", "content|main-content|entry-content|post-content|page-content")),
    ),
    ContextRule("paragraph", 0.8, _inside(_opening("p"))),
    ContextRule("image", 0.7, _anchor_matches(r"<a\b[^>]*>[\s\S]*?<img\b[^>]*>")),
    ContextRule("card", 0.7, _inside(_opening("div|article", "class", "card|block|box|item|tile"))),
)

SPECIAL_RULES = (
    ContextRule(
        "social",
        0.4,
        _anchor_class("social|social-link|social-icon|share|facebook|twitter|instagram|linkedin"),
    ),
    ContextRule(
        "social",
        0.4,
        _anchor_matches(
            r"^\s*<a\b[^>]*\bhref=[\"']https?://(?:www\.)?(?:facebook|twitter|x|linkedin|instagram|youtube|pinterest)\.[a-z]+"
        ),
    ),
    ContextRule("external", 0.6, _anchor_matches(r"^\s*<a\b[^>]*\btarget=[\"']?_blank\b")),
    ContextRule("external", 0.6, _anchor_matches(r"^\s*<a\b[^>]*\brel=[\"'][^\"']*\bnoopener\b")),
    ContextRule("author", 0.7, _anchor_class("author|byline")),
    ContextRule("author", 0.7, _anchor_matches(r"^\s*<a\b[^>]*\brel=[\"'][^\"']*\bauthor\b")),
    ContextRule("taxonomy", 0.6, _anchor_class("tag|category|cat-link|term")),
    ContextRule("taxonomy", 0.6, _anchor_matches(r"^\s*<a\b[^>]*\brel=[\"'][^\"']*\b(?:tag|category)\b")),
)

CONTEXT_RULES = SEMANTIC_RULES + CMS_RULES + CONTENT_RULES + SPECIAL_RULES


# ---------------------------------------------------------------------------
# Attributes, anchor text and importance
# ---------------------------------------------------------------------------


def extract_link_attributes(link_html: str, source_url: str = "", target_url: str = "") -> LinkAttributes:
    """Read the raw flags of an anchor from its HTML.

    ``is_external`` compares *target_url* with *source_url* (ignoring
    ``www.``); it stays False when either URL is unknown.
    """
    opening_match = _OPENING_TAG_RE.match(link_html)
    opening = opening_match.group(0) if opening_match else link_html
    return LinkAttributes(
        has_image=bool(_IMG_RE.search(link_html)),
        has_icon=bool(_ICON_RE.search(link_html)),
        has_button=bool(_BUTTON_CLASS_RE.search(opening)),
        is_download=bool(_DOWNLOAD_RE.search(opening)),
        is_new_tab=bool(_NEW_TAB_RE.search(opening)),
        is_no_follow=bool(_NOFOLLOW_RE.search(opening)),
        is_external=bool(source_url and target_url and not same_site(target_url, source_url)),
    )


def extract_anchor_text(link_html: str) -> str:
    """Return the first non-blank run of text inside the anchor, entities decoded."""
    for match in _TEXT_RUN_RE.finditer(link_html):
        text = " ".join(html_lib.unescape(match.group(1)).split())
        if text:
            return text
    return ""


def score_importance(
    context_type: str,
    context_score: float,
    attributes: LinkAttributes,
    anchor_text: str,
) -> Tuple[float, bool]:
    """Apply the importance adjustments to *context_score*.

    Returns:
        ``(importance, is_in_text)`` with importance clamped to [0, 1].
    """
    importance = context_score
    is_in_text = context_type in IN_TEXT_CONTEXTS
    if is_in_text:
        importance += IN_TEXT_BONUS

    if attributes.has_image:
        importance += IMAGE_BONUS
    if attributes.has_button:
        importance += BUTTON_BONUS
    if attributes.is_download:
        importance += DOWNLOAD_BONUS
    if attributes.is_new_tab:
        importance -= NEW_TAB_PENALTY
    if attributes.is_no_follow:
        importance -= NOFOLLOW_PENALTY
    if attributes.is_external:
        importance -= EXTERNAL_PENALTY

    for min_length, bonus in ANCHOR_LENGTH_BONUSES:
        if len(anchor_text) > min_length:
            importance += bonus

    return round(max(0.0, min(1.0, importance)), 4), is_in_text


class LinkContextClassifier:
    """Classifies the anchors of one page.

    The page structure is computed once and shared by every anchor, so build
    one classifier per fetched page.
    """

    def __init__(self, page_html: str, rules: Tuple[ContextRule, ...] = CONTEXT_RULES):
        self.structure = PageStructure(page_html or "")
        self.rules = rules

    def determine_context(self, link_html: str, position: Optional[int] = None) -> Tuple[ContextType, float]:
        """Return ``(context_type, context_score)`` for the anchor *link_html*.

        Args:
            link_html: The anchor's full HTML (``<a …>…</a>``).
            position: Offset of the anchor in the page, when known.  Otherwise
                every occurrence of *link_html* in the page is considered.
        """
        if position is not None and self.structure.html.startswith(link_html, position):
            positions: Tuple[int, ...] = (position,)
        else:
            positions = self.structure.occurrences(link_html)
        anchor = _Anchor(link_html, self.structure, positions)

        best: Optional[Tuple[ContextType, float]] = None
        for rule in self.rules:
            if (best is None or rule.score > best[1]) and rule.matches(anchor):
                best = (rule.context, rule.score)
        if best is not None:
            return best

        if any(marker in link_html for marker in _DUDA_MENU_MARKERS):
            return "duda-menu", 0.6
        if _IMG_RE.search(link_html):
            return "image", 0.7
        return DEFAULT_CONTEXT

    def classify(
        self,
        link_html: str,
        source_url: str,
        target_url: str,
        position: Optional[int] = None,
    ) -> LinkEdge:
        """Build the :class:`LinkEdge` for one anchor of this page."""
        context_type, context_score = self.determine_context(link_html, position)
        attributes = extract_link_attributes(link_html, source_url, target_url)
        anchor_text = extract_anchor_text(link_html)
        importance, is_in_text = score_importance(context_type, context_score, attributes, anchor_text)
        return LinkEdge(
            from_url=source_url,
            to_url=target_url,
            context_type=context_type,
            context_score=context_score,
            importance=importance,
            anchor_text=anchor_text,
            attributes=attributes,
            is_in_text=is_in_text,
        )


def determine_context(link_html: str, page_html: str) -> Tuple[ContextType, float]:
    """Classify a single anchor of *page_html*."""
    return LinkContextClassifier(page_html).determine_context(link_html)


def calculate_link_importance(link_html: str, page_html: str, source_url: str, target_url: str) -> LinkEdge:
    """Classify a single anchor and score its importance."""
    return LinkContextClassifier(page_html).classify(link_html, source_url, target_url)
