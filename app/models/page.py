from typing import Dict, Optional

from pydantic import BaseModel


class PageDetails(BaseModel):
    """Everything the audit knows about one page of the crawled site."""

    url: str
    in_sitemap: bool = False
    crawled: bool = False
    depth: int = -1  # -1 until the page is crawled or linked
    http_status: Optional[int] = None  # None = never checked, 0 = network failure
    redirected: bool = False
    redirect_target: Optional[str] = None
    redirected_from: Optional[str] = None
    inbound_links: int = 0
    outbound_links: int = 0
    inbound_importance: float = 0.0
    outbound_importance: float = 0.0
    avg_inbound_importance: float = 0.0
    avg_outbound_importance: float = 0.0
    link_types: Dict[str, int] = {}
