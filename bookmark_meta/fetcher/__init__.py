# bookmark_meta/fetcher/__init__.py
"""Redirect-aware secure HTTP fetching and bounded body reads."""
from bookmark_meta.fetcher.bounded_reader import read_bounded
from bookmark_meta.fetcher.models import BoundedRead, FetchAttempt, FetchResult
from bookmark_meta.fetcher.secure_fetcher import SecureFetcher

__all__ = ("SecureFetcher", "read_bounded", "BoundedRead", "FetchAttempt", "FetchResult")
