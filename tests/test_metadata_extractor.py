"""
Unit tests for SEO metadata extraction.
"""

import pytest

from conftest import make_settings
from extractors.metadata_extractor import MetadataExtractor, collect_schema_types


BASE_URL = "https://example.com/blog/post"

FULL_PAGE = """<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>  Example Post Title  </title>
    <meta name="description" content="A post about examples">
    <meta name="Keywords" content="seo, meta, tags">
    <meta name="robots" content="index, follow">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <meta name="author" content="Jane Doe">
    <meta name="generator" content="Hugo 0.120">
    <meta name="theme-color" content="#ffffff">
    <meta name="unknown-tag" content="ignored">

    <meta property="og:title" content="OG Title">
    <meta property="og:description" content="OG Description">
    <meta property="og:type" content="article">
    <meta property="og:url" content="https://example.com/blog/post">
    <meta property="og:image" content="/images/first.png">
    <meta property="og:image" content="/images/second.png">
    <meta property="og:image:alt" content="A picture">
    <meta property="og:site_name" content="Example Blog">
    <meta property="og:locale" content="en_US">

    <meta name="twitter:card" content="summary_large_image">
    <meta name="twitter:title" content="Twitter Title">
    <meta property="twitter:description" content="Twitter Description">
    <meta name="twitter:image" content="https://cdn.example.com/tw.png">
    <meta name="twitter:site" content="@example">
    <meta name="twitter:creator" content="@jane">

    <link rel="canonical" href="/blog/post">
    <link rel="alternate" hreflang="en" href="https://example.com/blog/post">
    <link rel="alternate" hreflang="de" href="/de/blog/post">
    <link rel="apple-touch-icon" href="/apple.png">
    <link rel="icon" href="/favicon-32.png">

    <script type="application/ld+json">
    {"@context": "https://schema.org", "@type": "BlogPosting",
     "author": {"@type": "Person", "name": "Jane Doe"}}
    </script>
    <script type="application/ld+json">{not valid json</script>
</head>
<body>
    <header><nav>Home About Contact</nav></header>
    <h1>Main Heading</h1>
    <h2>First Section</h2>
    <h2>  </h2>
    <h2>Second Section</h2>
    <h2>Third Section</h2>
    <h2>Fourth Section</h2>
    <h3>Sub <em>heading</em></h3>
    <div itemscope itemtype="https://schema.org/Product">Widget</div>
    <p>The quick brown fox jumps over the lazy dog. It is a fox.</p>
    <footer>Copyright notice text</footer>
</body>
</html>
"""


extractor = MetadataExtractor(make_settings())
full = extractor.extract(FULL_PAGE, BASE_URL)


class TestMetaTags:
    """Tests for <title> and <meta name> extraction."""

    def test_title_is_trimmed(self):
        assert full.meta.title == "Example Post Title"

    def test_standard_meta_names(self):
        assert full.meta.description == "A post about examples"
        assert full.meta.keywords == "seo, meta, tags"
        assert full.meta.robots == "index, follow"
        assert full.meta.viewport == "width=device-width, initial-scale=1"
        assert full.meta.author == "Jane Doe"
        assert full.meta.generator == "Hugo 0.120"
        assert full.meta.theme_color == "#ffffff"
        assert full.meta.charset == "utf-8"

    def test_missing_values_are_none(self):
        result = extractor.extract("<html><head></head><body><p>x</p></body></html>", BASE_URL)
        assert result.meta.title is None
        assert result.meta.description is None
        assert result.open_graph.title is None
        assert result.canonical is None


class TestSocialTags:
    """Tests for Open Graph and Twitter Card extraction."""

    def test_open_graph_fields(self):
        og = full.open_graph
        assert og.title == "OG Title"
        assert og.description == "OG Description"
        assert og.type == "article"
        assert og.url == "https://example.com/blog/post"
        assert og.image_alt == "A picture"
        assert og.site_name == "Example Blog"
        assert og.locale == "en_US"

    def test_first_image_wins_and_is_absolute(self):
        assert full.open_graph.image == "https://example.com/images/first.png"

    def test_twitter_fields(self):
        tw = full.twitter_card
        assert tw.card == "summary_large_image"
        assert tw.title == "Twitter Title"
        assert tw.image == "https://cdn.example.com/tw.png"
        assert tw.site == "@example"
        assert tw.creator == "@jane"

    def test_twitter_under_property_attribute(self):
        assert full.twitter_card.description == "Twitter Description"

    def test_og_under_name_attribute(self):
        html = '<html><head><meta name="og:title" content="Named OG"></head></html>'
        assert extractor.extract(html, BASE_URL).open_graph.title == "Named OG"


class TestHeadings:
    """Tests for heading extraction."""

    def test_first_non_empty_headings_per_level(self):
        assert full.headings.h1 == ["Main Heading"]
        assert full.headings.h2 == ["First Section", "Second Section", "Third Section"]
        assert full.headings.h3 == ["Sub heading"]

    def test_configurable_limit(self):
        one = MetadataExtractor(make_settings(max_headings_per_level=1))
        assert one.extract(FULL_PAGE, BASE_URL).headings.h2 == ["First Section"]


class TestLinks:
    """Tests for canonical, hreflang and favicon extraction."""

    def test_canonical_resolved(self):
        assert full.canonical == "https://example.com/blog/post"

    def test_hreflang_links(self):
        pairs = [(link.lang, link.url) for link in full.hreflang]
        assert pairs == [
            ("en", "https://example.com/blog/post"),
            ("de", "https://example.com/de/blog/post"),
        ]

    def test_icon_preferred_over_apple_touch_icon(self):
        assert full.favicon == "https://example.com/favicon-32.png"

    def test_shortcut_icon(self):
        html = '<html><head><link rel="shortcut icon" href="/fav.ico"></head></html>'
        assert extractor.extract(html, BASE_URL).favicon == "https://example.com/fav.ico"

    def test_favicon_fallback_path(self):
        html = "<html><head><title>No icon</title></head></html>"
        assert extractor.extract(html, BASE_URL).favicon == "https://example.com/favicon.ico"

    def test_favicon_discovery_disabled(self):
        off = MetadataExtractor(make_settings(enable_favicon_discovery=False))
        assert off.extract(FULL_PAGE, BASE_URL).favicon is None


class TestSchemaOrg:
    """Tests for structured data detection."""

    def test_json_ld_and_microdata_types(self):
        assert full.schema_org == ["BlogPosting", "Person", "Product"]

    def test_malformed_json_ld_skipped(self):
        html = '<html><head><script type="application/ld+json">{oops</script></head></html>'
        assert extractor.extract(html, BASE_URL).schema_org == []

    def test_graph_documents(self):
        data = {"@graph": [{"@type": "WebSite"}, {"@type": ["Organization", "Brand"]}]}
        assert collect_schema_types(data) == ["WebSite", "Organization", "Brand"]

    def test_duplicates_removed(self):
        html = (
            '<html><head>'
            '<script type="application/ld+json">{"@type": "Article"}</script>'
            '<script type="application/ld+json">[{"@type": "Article"}, {"@type": "FAQPage"}]</script>'
            '</head></html>'
        )
        assert extractor.extract(html, BASE_URL).schema_org == ["Article", "FAQPage"]

    def test_schema_detection_disabled(self):
        off = MetadataExtractor(make_settings(enable_schema_detection=False))
        assert off.extract(FULL_PAGE, BASE_URL).schema_org == []


class TestWordCount:
    """Tests for content word counting."""

    def test_short_words_and_chrome_ignored(self):
        # Body only: 12 heading words, "Widget", and 10 paragraph words
        # of three letters or more; header, nav and footer are dropped
        assert full.word_count == 23

    def test_word_count_disabled(self):
        off = MetadataExtractor(make_settings(enable_word_count=False))
        assert off.extract(FULL_PAGE, BASE_URL).word_count == 0


class TestAnalysisMeta:

    def test_sizes_recorded(self):
        assert full.analysis_meta.html_size_bytes == len(FULL_PAGE.encode("utf-8"))
        assert full.analysis_meta.dom_elements_count > 20
        assert full.analysis_meta.analysis_time_ms >= 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
