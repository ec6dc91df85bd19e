from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ContextType = Literal[
    # Semantic containers and class heuristics
    "menu",
    "header",
    "footer",
    "sidebar",
    "button",
    "CTA",
    "breadcrumb",
    # CMS / site-builder specific
    "wp-menu",
    "wp-widget",
    "wp-post-navigation",
    "wp-featured-image",
    "duda-menu",
    "duda-button",
    "duda-element",
    "duda-social",
    "webflow-nav",
    "webflow-button",
    "webflow-link-block",
    "wix-menu",
    "wix-button",
    "wix-component",
    "shopify-menu",
    "shopify-product-link",
    "shopify-collection",
    "squarespace-nav",
    "squarespace-button",
    # Content
    "content-main",
    "paragraph",
    "image",
    "card",
    # Special
    "social",
    "external",
    "author",
    "taxonomy",
    # Residual default
    "content",
]


class LinkAttributes(BaseModel):
    """Raw flags read from the anchor's own HTML."""

    model_config = ConfigDict(frozen=True)

    has_image: bool = False
    has_icon: bool = False
    has_button: bool = False
    is_download: bool = False
    is_new_tab: bool = False
    is_no_follow: bool = False
    is_external: bool = False


class LinkEdge(BaseModel):
    """One anchor observed on *from_url* pointing at *to_url*."""

    model_config = ConfigDict(frozen=True)

    from_url: str
    to_url: str
    context_type: ContextType
    context_score: float = Field(ge=0, le=1)
    importance: float = Field(ge=0, le=1)
    anchor_text: str = ""
    attributes: LinkAttributes = LinkAttributes()
    is_in_text: bool = False
