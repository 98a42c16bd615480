"""Adapters package for outbound HTTP."""

from .page_fetcher import PageFetcher

__all__ = [
    "PageFetcher",
]
