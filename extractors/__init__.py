"""Extractors package for Meta Tag Analyzer."""

from .metadata_extractor import MetadataExtractor

__all__ = ["MetadataExtractor"]
