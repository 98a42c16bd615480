"""
Pydantic schemas for Meta Tag Analyzer API.

Defines the extracted metadata record and the request and response
models of the HTTP layer.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class MetaTags(BaseModel):
    """Standard <title> and <meta name> values."""
    title: Optional[str] = None
    description: Optional[str] = None
    keywords: Optional[str] = None
    robots: Optional[str] = None
    viewport: Optional[str] = None
    author: Optional[str] = None
    generator: Optional[str] = None
    theme_color: Optional[str] = None
    charset: Optional[str] = None


class OpenGraph(BaseModel):
    """Open Graph protocol properties."""
    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    url: Optional[str] = None
    image: Optional[str] = None
    image_alt: Optional[str] = None
    site_name: Optional[str] = None
    locale: Optional[str] = None


class TwitterCard(BaseModel):
    """Twitter Card properties."""
    card: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    image_alt: Optional[str] = None
    site: Optional[str] = None
    creator: Optional[str] = None


class Headings(BaseModel):
    """First headings per level (H1-H3)."""
    h1: List[str] = Field(default_factory=list)
    h2: List[str] = Field(default_factory=list)
    h3: List[str] = Field(default_factory=list)


class HreflangLink(BaseModel):
    lang: str
    url: str


class AnalysisMeta(BaseModel):
    analysis_time_ms: int = 0
    html_size_bytes: int = 0
    dom_elements_count: int = 0


class PageMetadata(BaseModel):
    """
    Structured SEO metadata extracted from one page.

    This is the record stored in the cache and returned under ``data``.
    """
    meta: MetaTags = Field(default_factory=MetaTags)
    open_graph: OpenGraph = Field(default_factory=OpenGraph)
    twitter_card: TwitterCard = Field(default_factory=TwitterCard)
    headings: Headings = Field(default_factory=Headings)
    hreflang: List[HreflangLink] = Field(default_factory=list)
    canonical: Optional[str] = None
    favicon: Optional[str] = None
    schema_org: List[str] = Field(default_factory=list)
    word_count: int = 0
    analysis_meta: AnalysisMeta = Field(default_factory=AnalysisMeta)


class AnalyzeRequest(BaseModel):
    """Request schema for POST /api/analyze."""
    url: str = Field(
        ...,
        min_length=1,
        max_length=2048,
        description="Page URL to analyze (scheme defaults to http://)"
    )
    bypass_cache: bool = Field(False, description="Skip the cache lookup and fetch fresh")
    include_raw_html: bool = Field(False, description="Return (and cache) the minimised HTML")

    @field_validator("url")
    @classmethod
    def strip_url(cls, v: str) -> str:
        return v.strip()


class RateLimitStatus(BaseModel):
    """Rate-limit block attached to every analysis response."""
    limit: int
    remaining: int
    reset_at: int = Field(..., description="Unix timestamp of the next reset")
    reset_at_formatted: str
    time_until_reset_seconds: int

    @classmethod
    def from_decision(cls, decision, now: Optional[datetime] = None) -> "RateLimitStatus":
        now = now or datetime.now(timezone.utc)
        return cls(
            limit=decision.limit,
            remaining=decision.remaining,
            reset_at=int(decision.reset_at.timestamp()),
            reset_at_formatted=decision.reset_at.strftime("%Y-%m-%d %H:%M:%S"),
            time_until_reset_seconds=decision.seconds_until_reset(now),
        )


class HttpInfo(BaseModel):
    status_code: Optional[int] = None
    content_type: Optional[str] = None
    content_length: Optional[int] = None
    fetch_time_ms: int = 0
    redirect_count: int = 0


class ResponseMeta(BaseModel):
    url: str
    requested_url: str
    final_url: str
    cache_hit: bool
    cache_key: str
    processing_time_ms: int
    timings: Dict[str, int] = Field(default_factory=dict)
    fetched_at: str
    api_version: str
    http: Optional[HttpInfo] = None
    rate_limit: RateLimitStatus


class AnalysisResponse(BaseModel):
    """Response schema for /api/analyze."""
    success: bool = True
    data: PageMetadata
    meta: ResponseMeta
    raw_html: Optional[str] = None


class HistoryItem(BaseModel):
    url: str
    final_url: Optional[str] = None
    http_status: Optional[int] = None
    title: Optional[str] = None
    description: Optional[str] = None
    og_title: Optional[str] = None
    og_description: Optional[str] = None
    cache_hit: bool = False
    duration_ms: int = 0
    created_at: datetime


class HistoryResponse(BaseModel):
    items: List[HistoryItem]


class HealthResponse(BaseModel):
    """Response schema for GET /health."""
    status: str = Field(default="healthy", description="Overall health status")
    version: str = Field(..., description="API version")
    environment: str
    storage_backend: str
    features: Dict[str, bool]


class ErrorResponse(BaseModel):
    """Standardized error response."""
    success: bool = False
    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    stage: Optional[str] = Field(None, description="Pipeline stage that failed")
    rate_limit: Optional[RateLimitStatus] = None

    class Config:
        json_schema_extra = {
            "example": {
                "success": False,
                "error_code": "scheme_not_allowed",
                "message": "Only HTTP and HTTPS URLs are allowed",
                "details": {"scheme": "ftp"},
                "stage": "validating",
            }
        }
