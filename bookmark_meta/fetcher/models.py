# bookmark_meta/fetcher/models.py
"""
Data models for the secure fetcher.
"""
from __future__ import annotations

from dataclasses import dataclass

from aiohttp import ClientResponse


@dataclass(slots=True)
class FetchAttempt:
    """Mutable state of one redirect loop; lives only for the duration of a fetch."""

    requested_url: str
    current_url: str
    redirect_count: int
    start_time: float


@dataclass(frozen=True, slots=True)
class FetchResult:
    """Terminal (non-redirect) response. The caller must read or release ``response``."""

    response: ClientResponse
    final_url: str
    redirect_count: int


@dataclass(frozen=True, slots=True)
class BoundedRead:
    """Decoded body; ``bytes_consumed`` never exceeds ``cap``."""

    bytes_consumed: int
    cap: int
    text: str
