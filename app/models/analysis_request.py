from typing import List, Optional, Union

from pydantic import BaseModel, Field, HttpUrl, field_validator

from app.services.normalizer import parse_domain_filter


class AnalysisRequest(BaseModel):
    start_url: HttpUrl
    sitemap_url: Optional[HttpUrl] = Field(
        default=None,
        description="Sitemap or sitemap index. Discovered from robots.txt / common paths when omitted.",
    )
    max_pages: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Maximum number of pages to crawl (1–500).",
    )
    domain_filter: List[str] = Field(
        default_factory=list,
        description="Only follow links whose host contains one of these strings. "
        "Accepts a list or a comma-separated string.",
    )
    check_status: bool = Field(
        default=True,
        description="Verify the HTTP status of every outbound link (HEAD, GET fallback).",
    )

    @field_validator("domain_filter", mode="before")
    @classmethod
    def _split_domain_filter(cls, value: Union[str, List[str], None]) -> List[str]:
        return parse_domain_filter(value)
