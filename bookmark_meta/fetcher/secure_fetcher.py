# bookmark_meta/fetcher/secure_fetcher.py
"""
Secure fetcher: issues each hop with redirects disabled at the transport,
re-validates every redirect target and enforces a hard timeout per hop
(or one deadline for the whole chain, see ``FetchConfig.timeout_policy``).
"""
from __future__ import annotations

import asyncio
from typing import Mapping, Optional
from urllib.parse import urljoin

from aiohttp import ClientError, ClientSession, ClientTimeout

from bookmark_meta.config import FetchConfig
from bookmark_meta.errors import ErrorKind, Rejected
from bookmark_meta.fetcher.models import FetchAttempt, FetchResult
from bookmark_meta.logger import get_logger
from bookmark_meta.security.validator import UrlValidator

__all__ = ("SecureFetcher",)

log = get_logger("fetcher")

TIMEOUT_REASON = "Request timed out. The server did not respond in time."


class SecureFetcher:
    """Follows redirects by hand so that :class:`UrlValidator` sees every hop."""

    def __init__(
        self,
        session: ClientSession,
        validator: UrlValidator,
        config: Optional[FetchConfig] = None,
    ) -> None:
        self.session = session
        self.validator = validator
        self.config = config or FetchConfig()

    async def fetch(
        self,
        url: str,
        *,
        timeout: Optional[float] = None,
        max_redirects: Optional[int] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> FetchResult | Rejected:
        """
        Fetch *url*, following at most *max_redirects* redirects.

        *timeout* is in seconds. Returns the terminal response wrapped in a
        :class:`FetchResult`, or a :class:`Rejected` describing why the chain
        was abandoned. Redirect responses are released before the next hop.
        """
        timeout = self.config.fetch_timeout if timeout is None else timeout
        max_redirects = self.config.max_redirects if max_redirects is None else max_redirects
        request_headers = {**self.config.default_headers(), **(headers or {})}
        cumulative = self.config.timeout_policy == "cumulative"

        outcome = await self.validator.validate(url)
        if isinstance(outcome, Rejected):
            return outcome

        loop = asyncio.get_running_loop()
        attempt = FetchAttempt(requested_url=url, current_url=url, redirect_count=0, start_time=loop.time())
        deadline = attempt.start_time + timeout

        while attempt.redirect_count <= max_redirects:
            hop_timeout = deadline - loop.time() if cumulative else timeout
            if hop_timeout <= 0:
                return Rejected(ErrorKind.REQUEST_TIMEOUT, TIMEOUT_REASON, url=attempt.current_url)

            try:
                resp = await self.session.get(
                    attempt.current_url,
                    headers=request_headers,
                    allow_redirects=False,
                    timeout=ClientTimeout(total=hop_timeout),
                )
            except asyncio.TimeoutError:
                log.debug("Hop %d timed out after %.2f s: %s", attempt.redirect_count, hop_timeout, attempt.current_url)
                return Rejected(ErrorKind.REQUEST_TIMEOUT, TIMEOUT_REASON, url=attempt.current_url)
            except (ClientError, OSError, ValueError) as exc:
                return Rejected(ErrorKind.FETCH_FAILURE, f"Failed to fetch URL: {exc}", url=attempt.current_url)

            if not 300 <= resp.status < 400:
                return FetchResult(response=resp, final_url=attempt.current_url, redirect_count=attempt.redirect_count)

            location = resp.headers.get("Location", "").strip()
            resp.release()
            if not location:
                return Rejected(
                    ErrorKind.MISSING_REDIRECT_LOCATION,
                    "Redirect response missing Location header.",
                    url=attempt.current_url,
                )
            try:
                target = urljoin(attempt.current_url, location)
            except ValueError:
                return Rejected(ErrorKind.INVALID_URL, "Invalid redirect location.", url=location)

            attempt.redirect_count += 1
            if attempt.redirect_count > max_redirects:
                return Rejected(
                    ErrorKind.TOO_MANY_REDIRECTS,
                    f"Too many redirects (max {max_redirects} allowed).",
                    url=target,
                )

            outcome = await self.validator.validate(target)
            if isinstance(outcome, Rejected):
                log.debug("Redirect %d rejected: %s -> %s", attempt.redirect_count, attempt.current_url, target)
                return outcome

            log.debug("Redirect %d: %s -> %s (%d)", attempt.redirect_count, attempt.current_url, target, resp.status)
            attempt.current_url = target

        # the loop always returns from inside; kept for type checkers
        return Rejected(ErrorKind.TOO_MANY_REDIRECTS, "Unexpected error in redirect handling.", url=attempt.current_url)
