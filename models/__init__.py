"""Models package for Meta Tag Analyzer."""

from .schemas import (
    PageMetadata,
    MetaTags,
    OpenGraph,
    TwitterCard,
    Headings,
    HreflangLink,
    AnalyzeRequest,
    AnalysisResponse,
    RateLimitStatus,
    HealthResponse,
    ErrorResponse,
)
from .enums import AnalysisStage, ExportFormat
from .records import (
    CacheEntry,
    FetchEnvelope,
    HistoryRecord,
    RateDecision,
    RequestRecord,
)

__all__ = [
    "PageMetadata",
    "MetaTags",
    "OpenGraph",
    "TwitterCard",
    "Headings",
    "HreflangLink",
    "AnalyzeRequest",
    "AnalysisResponse",
    "RateLimitStatus",
    "HealthResponse",
    "ErrorResponse",
    "AnalysisStage",
    "ExportFormat",
    "CacheEntry",
    "FetchEnvelope",
    "HistoryRecord",
    "RateDecision",
    "RequestRecord",
]
