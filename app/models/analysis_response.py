from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from app.models.link import LinkEdge
from app.models.page import PageDetails


class UrlCount(BaseModel):
    url: str
    count: int


class TermCount(BaseModel):
    term: str
    count: int


class ImportanceBands(BaseModel):
    high: Union[int, float] = 0  # importance >= 0.8
    medium: Union[int, float] = 0  # 0.5 <= importance < 0.8
    low: Union[int, float] = 0


class LinksSummary(BaseModel):
    total_links: int = 0
    by_context: Dict[str, int] = {}
    by_importance: ImportanceBands = ImportanceBands()
    by_importance_percentage: Optional[ImportanceBands] = None
    top_source_pages: List[UrlCount] = []
    top_destination_pages: List[UrlCount] = []


class InTextAnalysis(BaseModel):
    total: int = 0
    in_text_links: int = 0
    navigation_links: int = 0
    in_text_percentage: float = 0.0
    navigation_percentage: float = 0.0
    in_text_by_page: Dict[str, int] = {}
    top_in_text_pages: List[UrlCount] = []
    average_in_text_per_page: float = 0.0


class LengthDistribution(BaseModel):
    very_short: int = 0  # 1-3 characters
    short: int = 0  # 4-10
    medium: int = 0  # 11-20
    long: int = 0  # 21+


class AnchorQuality(BaseModel):
    total_anchors: int = 0
    meaningful_anchors: int = 0
    generic_anchors: int = 0
    keyword_rich_anchors: int = 0
    length_distribution: LengthDistribution = LengthDistribution()
    common_generic_terms: List[TermCount] = []
    common_keywords: List[TermCount] = []
    total_length: int = 0
    average_length: float = 0.0
    meaningful_percentage: float = 0.0
    generic_percentage: float = 0.0
    keyword_rich_percentage: float = 0.0


class ContextDistribution(BaseModel):
    total: int = 0
    by_type: Dict[str, int] = {}
    by_type_percentage: Dict[str, float] = {}
    by_category: Dict[str, int] = {}
    by_category_percentage: Dict[str, float] = {}
    cms_specific: Dict[str, int] = {}
    cms_specific_percentage: Dict[str, float] = {}
    menu_to_content_ratio: Optional[float] = None  # None when there are no content links
    paragraph_percentage: float = 0.0
    contextual_links_score: int = 0  # 1-10 once links exist
    detected_cms: Optional[str] = None
    cms_confidence: int = 0  # 0-100


class PerformanceMetrics(BaseModel):
    average_links_per_page: float = 0.0
    silo_density: float = 5.0
    hierarchy_score: int = 7
    internal_linking_score: int = 75
    average_link_importance: float = 0.0
    pagerank_dispersion: float = 0.0
    average_juice_link_score: float = 0.0


class Recommendation(BaseModel):
    id: str
    title: str
    description: str
    priority: Literal["high", "medium", "low"]
    actions: List[str]


class PageImportance(BaseModel):
    url: str
    average_importance: float
    link_count: int
    total_importance: float


class ImportanceAnalysis(BaseModel):
    top_important_pages: List[PageImportance] = []
    low_importance_pages: List[PageImportance] = []


class JuiceFlowNode(BaseModel):
    id: str
    page_rank: float = 0.0
    links_in: int = 0
    links_out: int = 0


class JuiceFlowLink(BaseModel):
    source: str
    target: str
    value: float
    context: str


class JuiceFlow(BaseModel):
    nodes: List[JuiceFlowNode] = []
    links: List[JuiceFlowLink] = []


class CmsSummary(BaseModel):
    dominant: Optional[str] = None
    scores: Dict[str, int] = {}
    confidence: float = 0.0


class AnalysisParams(BaseModel):
    """The request parameters echoed back with the time the run finished."""

    sitemap_url: Optional[str] = None
    start_url: str
    max_pages: int
    domain_filter: List[str] = []
    date: str


class AnalysisResult(BaseModel):
    sitemap_url_count: int
    crawled_url_count: int
    orphaned_page_count: int
    sitemap_urls: List[str]
    crawled_urls: List[str]
    orphaned_pages: List[str]
    link_context_data: Dict[str, List[LinkEdge]]
    links_summary: LinksSummary
    anchor_quality: AnchorQuality
    context_analysis: ContextDistribution
    in_text_analysis: InTextAnalysis
    page_details: Dict[str, PageDetails]
    page_rank: Dict[str, float]
    juice_link_scores: Dict[str, float]
    juice_flow: JuiceFlow
    importance_analysis: ImportanceAnalysis
    performance_metrics: PerformanceMetrics
    recommendations: List[Recommendation]
    detected_cms: Optional[str] = None
    cms: CmsSummary = CmsSummary()
    params: AnalysisParams


class AnalysisResponse(BaseModel):
    success: bool
    message: str
    results: Optional[AnalysisResult] = None


ProgressStep = Literal[
    "sitemap",
    "sitemap_complete",
    "crawl",
    "crawling",
    "crawl_complete",
    "orphaned",
    "orphaned_complete",
    "analysis",
    "complete",
    "error",
]


class ProgressEvent(BaseModel):
    step: ProgressStep
    message: str = ""
    urls: Optional[int] = None
    current: Optional[int] = None
    total: Optional[int] = None
    url: Optional[str] = None
    results: Optional[AnalysisResult] = Field(default=None, repr=False)
