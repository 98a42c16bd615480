"""
Enumerations and constants for Meta Tag Analyzer.

This module defines the pipeline stages and the static tables the
metadata extractor uses to map tag names onto output fields.
"""

from enum import Enum
from typing import Dict, List


class AnalysisStage(str, Enum):
    """
    Stages an analysis request moves through.

    Validating → RateLimiting → CacheLookup → {CacheHit | Fetching →
    Extracting → CacheStoring} → HistoryRecording → Responding
    """
    VALIDATING = "validating"
    RATE_LIMITING = "rate_limiting"
    CACHE_LOOKUP = "cache_lookup"
    CACHE_HIT = "cache_hit"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    CACHE_STORING = "cache_storing"
    HISTORY_RECORDING = "history_recording"
    RESPONDING = "responding"


class ExportFormat(str, Enum):
    """Supported export formats."""
    JSON = "json"
    CSV = "csv"


# <meta name="..."> → MetaTags field
META_NAME_FIELDS: Dict[str, str] = {
    "description": "description",
    "keywords": "keywords",
    "robots": "robots",
    "viewport": "viewport",
    "author": "author",
    "generator": "generator",
    "theme-color": "theme_color",
}

# <meta property="og:..."> → OpenGraph field
OPEN_GRAPH_FIELDS: Dict[str, str] = {
    "og:title": "title",
    "og:description": "description",
    "og:type": "type",
    "og:url": "url",
    "og:image": "image",
    "og:image:alt": "image_alt",
    "og:site_name": "site_name",
    "og:locale": "locale",
}

# <meta name="twitter:..."> → TwitterCard field
TWITTER_CARD_FIELDS: Dict[str, str] = {
    "twitter:card": "card",
    "twitter:title": "title",
    "twitter:description": "description",
    "twitter:image": "image",
    "twitter:image:alt": "image_alt",
    "twitter:site": "site",
    "twitter:creator": "creator",
}

# Fields holding URLs: resolved against the page URL, first value wins
URL_FIELDS = frozenset({"image"})

# Favicon link rels in priority order
FAVICON_RELS: List[str] = [
    "icon",
    "shortcut icon",
    "apple-touch-icon",
    "apple-touch-icon-precomposed",
]

HEADING_LEVELS: List[str] = ["h1", "h2", "h3"]

# Elements dropped before counting words
NON_CONTENT_TAGS: List[str] = ["script", "style", "noscript", "nav", "aside", "footer", "header"]

# Windows reserved file names (export filenames)
RESERVED_FILENAMES = frozenset(
    ["CON", "PRN", "AUX", "NUL"]
    + [f"COM{i}" for i in range(1, 10)]
    + [f"LPT{i}" for i in range(1, 10)]
)
