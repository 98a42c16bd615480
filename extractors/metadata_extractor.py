"""
SEO metadata extraction.

Walks a parsed HTML document once per section and fills the
PageMetadata record. Tag names are dispatched through the static
tables in models/enums.py; unknown names are ignored.
"""

import json
import logging
import time
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

from config import Settings, settings as default_settings
from models.enums import (
    FAVICON_RELS,
    HEADING_LEVELS,
    META_NAME_FIELDS,
    NON_CONTENT_TAGS,
    OPEN_GRAPH_FIELDS,
    TWITTER_CARD_FIELDS,
    URL_FIELDS,
)
from models.errors import ExtractionError
from models.schemas import (
    AnalysisMeta,
    Headings,
    HreflangLink,
    MetaTags,
    OpenGraph,
    PageMetadata,
    TwitterCard,
)
from utils.html_normalize import count_words
from utils.url_validator import resolve_relative_url

logger = logging.getLogger(__name__)


def _rel_values(tag) -> List[str]:
    # bs4 splits multi-valued rel attributes into lists
    rel = tag.get("rel") or []
    if isinstance(rel, str):
        rel = rel.split()
    return [value.lower() for value in rel]


def _content(tag) -> str:
    return (tag.get("content") or "").strip()


def collect_schema_types(data: Any) -> List[str]:
    """Collect every ``@type`` in a decoded JSON-LD document, depth first."""
    types: List[str] = []
    if isinstance(data, list):
        for item in data:
            types.extend(collect_schema_types(item))
    elif isinstance(data, dict):
        declared = data.get("@type")
        if isinstance(declared, list):
            types.extend(str(t) for t in declared if t)
        elif declared:
            types.append(str(declared))
        for key, value in data.items():
            if key != "@type" and isinstance(value, (dict, list)):
                types.extend(collect_schema_types(value))
    return types


class MetadataExtractor:
    """
    Extracts SEO metadata from HTML content.

    Args:
        settings: Application settings (feature flags, heading limit,
            word length, favicon fallbacks)
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings

    def extract(self, html: str, base_url: Optional[str] = None) -> PageMetadata:
        """
        Extract metadata from an HTML document.

        Args:
            html: Decoded (and minimised) HTML
            base_url: Final page URL, used to resolve relative URLs

        Returns:
            PageMetadata record

        Raises:
            ExtractionError: If the document cannot be parsed
        """
        start_time = time.monotonic()
        try:
            soup = BeautifulSoup(html or "", "lxml")
        except Exception as e:
            logger.error(f"HTML parsing failed for {base_url}: {e}")
            raise ExtractionError("Could not parse HTML content", {"url": base_url}) from e

        metadata = PageMetadata(
            meta=self._extract_meta(soup),
            open_graph=OpenGraph(**self._extract_prefixed(soup, "property", OPEN_GRAPH_FIELDS, base_url)),
            twitter_card=TwitterCard(**self._extract_prefixed(soup, "name", TWITTER_CARD_FIELDS, base_url)),
            headings=self._extract_headings(soup),
            hreflang=self._extract_hreflang(soup, base_url),
            canonical=self._extract_canonical(soup, base_url),
            favicon=self._extract_favicon(soup, base_url),
            schema_org=self._extract_schema_org(soup),
            word_count=self._word_count(html),
        )
        metadata.analysis_meta = AnalysisMeta(
            analysis_time_ms=int((time.monotonic() - start_time) * 1000),
            html_size_bytes=len((html or "").encode("utf-8")),
            dom_elements_count=len(soup.find_all(True)),
        )
        return metadata

    def _extract_meta(self, soup: BeautifulSoup) -> MetaTags:
        values: Dict[str, str] = {}

        title = soup.find("title")
        if title:
            text = title.get_text(strip=True)
            if text:
                values["title"] = text

        for tag in soup.find_all("meta"):
            if tag.get("charset"):
                values["charset"] = tag["charset"].strip()
                continue
            name = (tag.get("name") or "").strip().lower()
            field = META_NAME_FIELDS.get(name)
            content = _content(tag)
            if field and content:
                values[field] = content

        return MetaTags(**values)

    def _extract_prefixed(
        self,
        soup: BeautifulSoup,
        attribute: str,
        fields: Dict[str, str],
        base_url: Optional[str],
    ) -> Dict[str, str]:
        """Map ``og:*`` / ``twitter:*`` meta tags onto output fields."""
        values: Dict[str, str] = {}
        for tag in soup.find_all("meta"):
            # Some sites publish twitter:* under property and og:* under name
            key = (tag.get(attribute) or tag.get("property") or tag.get("name") or "").strip().lower()
            field = fields.get(key)
            content = _content(tag)
            if not field or not content:
                continue
            if field in URL_FIELDS:
                # First image wins
                if field not in values:
                    values[field] = resolve_relative_url(base_url, content)
            else:
                values[field] = content
        return values

    def _extract_headings(self, soup: BeautifulSoup) -> Headings:
        limit = self.settings.max_headings_per_level
        headings: Dict[str, List[str]] = {}
        for level in HEADING_LEVELS:
            texts: List[str] = []
            for tag in soup.find_all(level):
                if len(texts) >= limit:
                    break
                text = tag.get_text(" ", strip=True)
                if text:
                    texts.append(text)
            headings[level] = texts
        return Headings(**headings)

    def _extract_hreflang(self, soup: BeautifulSoup, base_url: Optional[str]) -> List[HreflangLink]:
        links = []
        for tag in soup.find_all("link", hreflang=True):
            if "alternate" not in _rel_values(tag):
                continue
            lang = (tag.get("hreflang") or "").strip()
            href = (tag.get("href") or "").strip()
            if lang and href:
                links.append(HreflangLink(lang=lang, url=resolve_relative_url(base_url, href)))
        return links

    def _extract_canonical(self, soup: BeautifulSoup, base_url: Optional[str]) -> Optional[str]:
        for tag in soup.find_all("link"):
            if "canonical" in _rel_values(tag):
                href = (tag.get("href") or "").strip()
                return resolve_relative_url(base_url, href) if href else None
        return None

    def _extract_favicon(self, soup: BeautifulSoup, base_url: Optional[str]) -> Optional[str]:
        if not self.settings.enable_favicon_discovery:
            return None

        links = soup.find_all("link")
        for rel in FAVICON_RELS:
            for tag in links:
                if " ".join(_rel_values(tag)) != rel:
                    continue
                href = (tag.get("href") or "").strip()
                if href:
                    return resolve_relative_url(base_url, href)

        if base_url and self.settings.favicon_fallbacks:
            return resolve_relative_url(base_url, self.settings.favicon_fallbacks[0])
        return None

    def _extract_schema_org(self, soup: BeautifulSoup) -> List[str]:
        if not self.settings.enable_schema_detection:
            return []

        found: List[str] = []

        for script in soup.find_all("script", type="application/ld+json"):
            raw = script.string or script.get_text()
            if not raw or not raw.strip():
                continue
            try:
                decoded = json.loads(raw)
            except ValueError:
                logger.debug("Skipping malformed JSON-LD block")
                continue
            found.extend(collect_schema_types(decoded))

        for tag in soup.find_all(itemtype=True):
            itemtype = tag.get("itemtype") or ""
            if isinstance(itemtype, list):
                itemtype = " ".join(itemtype)
            for value in itemtype.split():
                if "schema.org" in value:
                    found.append(value.rstrip("/").rsplit("/", 1)[-1])

        # De-duplicate, first occurrence wins
        return list(dict.fromkeys(t for t in found if t))

    def _word_count(self, html: str) -> int:
        if not self.settings.enable_word_count or not html:
            return 0

        soup = BeautifulSoup(html, "lxml")
        root = soup.body or soup
        for tag in root.find_all(NON_CONTENT_TAGS):
            tag.decompose()
        text = root.get_text(" ")
        return count_words(text, self.settings.word_count_min_length)
