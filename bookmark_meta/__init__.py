# bookmark_meta/__init__.py
"""
BookmarkMeta package initializer.
Defines package version and exposes the metadata service.
"""
__version__ = "0.1.0"

from bookmark_meta.service import MetadataResult, MetadataService, ServiceFailure, fetch_metadata

__all__ = ["__version__", "MetadataService", "MetadataResult", "ServiceFailure", "fetch_metadata"]
