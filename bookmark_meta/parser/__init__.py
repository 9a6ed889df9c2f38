# bookmark_meta/parser/__init__.py
"""Regex-based HTML metadata extraction."""
from bookmark_meta.parser.metadata_parser import ParsedMetadata, fallback_title, parse_metadata

__all__ = ("ParsedMetadata", "parse_metadata", "fallback_title")
