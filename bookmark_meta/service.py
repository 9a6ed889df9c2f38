# File: bookmark_meta/service.py
"""bookmark_meta.service: фасад конвейера загрузки метаданных закладки.

Порядок: лимитер → валидация и цепочка редиректов → проверка Content-Type →
ограниченное чтение тела → разбор title/favicon.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from aiohttp import BaseConnector, ClientSession, DummyCookieJar

from bookmark_meta.config import FetchConfig
from bookmark_meta.errors import ErrorCategory, ErrorKind, Rejected
from bookmark_meta.fetcher.bounded_reader import read_bounded
from bookmark_meta.fetcher.secure_fetcher import SecureFetcher
from bookmark_meta.logger import get_logger
from bookmark_meta.parser.metadata_parser import fallback_title, parse_metadata
from bookmark_meta.security.events import SecurityEventType, SecurityLogger
from bookmark_meta.security.rate_limiter import RateLimiter
from bookmark_meta.security.validator import UrlValidator

__all__ = ["MetadataResult", "ServiceFailure", "MetadataService", "fetch_metadata"]

log = get_logger("service")

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")

SECURITY_MESSAGE = "This URL cannot be accessed for security reasons."
INTERNAL_MESSAGE = "Internal server error. Please try again later."
_MESSAGES = {
    ErrorKind.REQUEST_TIMEOUT: "Request timed out. The website may be slow or unavailable.",
    ErrorKind.CONTENT_TYPE_VIOLATION: "URL does not point to a valid HTML page.",
    ErrorKind.SIZE_LIMIT_EXCEEDED: "Content size too large.",
    ErrorKind.RATE_LIMIT_EXCEEDED: "Rate limit exceeded. Please try again later.",
    ErrorKind.FETCH_FAILURE: "Failed to fetch URL metadata.",
}


@dataclass(frozen=True, slots=True)
class MetadataResult:
    """Успешный ответ: ``url`` — итоговый адрес после редиректов."""

    title: Optional[str]
    favicon: Optional[str]
    url: str

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"title": self.title, "favicon": self.favicon, "url": self.url}


@dataclass(frozen=True, slots=True)
class ServiceFailure:
    """Ошибка для вызывающей стороны. ``kind`` только для внутреннего использования."""

    category: ErrorCategory
    message: str
    kind: Optional[ErrorKind] = None

    @property
    def http_status(self) -> int:
        return self.category.http_status

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.message}

    @classmethod
    def from_rejection(cls, rejected: Rejected) -> ServiceFailure:
        if rejected.kind.security_relevant:
            message = SECURITY_MESSAGE
        else:
            message = _MESSAGES.get(rejected.kind, INTERNAL_MESSAGE)
        return cls(category=rejected.category, message=message, kind=rejected.kind)


def _is_html(content_type: str) -> bool:
    content_type = content_type.lower()
    return any(t in content_type for t in HTML_CONTENT_TYPES)


class MetadataService:
    """Фасад для API и CLI: один экземпляр на процесс, зависимости передаются явно."""

    def __init__(
        self,
        config: Optional[FetchConfig] = None,
        *,
        session: Optional[ClientSession] = None,
        connector: Optional[BaseConnector] = None,
        validator: Optional[UrlValidator] = None,
        rate_limiter: Optional[RateLimiter] = None,
        security_log: Optional[SecurityLogger] = None,
    ) -> None:
        self.config = config or FetchConfig()
        self.session = session
        self._owns_session = session is None
        self._connector = connector
        self.validator = validator or UrlValidator(
            resolve_timeout=self.config.dns_timeout,
            strict_dns=self.config.strict_dns,
            max_url_length=self.config.max_url_length,
        )
        self.rate_limiter = rate_limiter or RateLimiter(
            stale_after_ms=self.config.stale_after_ms,
            user_limit=self.config.user_rate_limit,
            ip_limit=self.config.ip_rate_limit,
            window_ms=self.config.rate_window_ms,
        )
        self.security_log = security_log or SecurityLogger()
        self.fetcher: Optional[SecureFetcher] = None

    async def __aenter__(self) -> MetadataService:
        if self.session is None:
            # no cookies may leak between callers' fetches
            self.session = ClientSession(connector=self._connector, cookie_jar=DummyCookieJar())
        self.fetcher = SecureFetcher(self.session, self.validator, self.config)
        self.rate_limiter.start_sweeper(self.config.sweep_interval_s)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.rate_limiter.stop_sweeper()
        if self._owns_session and self.session and not self.session.closed:
            await self.session.close()
        await self.validator.close()

    async def fetch_metadata(
        self, url: str, *, user_id: str, client_ip: Optional[str] = None
    ) -> MetadataResult | ServiceFailure:
        """Загружает title/favicon для *url* от имени пользователя *user_id*."""
        identity = f"user:{user_id}"
        try:
            return await self._fetch_metadata(url, identity, user_id, client_ip)
        except Exception:
            log.exception("Unexpected error while fetching metadata for %s", url)
            return ServiceFailure(ErrorCategory.INTERNAL, INTERNAL_MESSAGE)

    async def _fetch_metadata(
        self, url: str, identity: str, user_id: str, client_ip: Optional[str]
    ) -> MetadataResult | ServiceFailure:
        if self.fetcher is None:
            raise RuntimeError("MetadataService used outside of 'async with'")

        if not self._admit(identity, user_id, client_ip):
            return ServiceFailure.from_rejection(
                Rejected(ErrorKind.RATE_LIMIT_EXCEEDED, "rate limit exceeded")
            )

        outcome = await self.fetcher.fetch(url)
        if isinstance(outcome, Rejected):
            return self._fail(outcome, identity, client_ip, url)

        response = outcome.response
        final_url = outcome.final_url
        try:
            content_type = response.headers.get("Content-Type", "")
            if not _is_html(content_type):
                response.close()
                rejected = Rejected(
                    ErrorKind.CONTENT_TYPE_VIOLATION,
                    f"Invalid content type: {content_type or '(none)'}",
                    url=final_url,
                )
                return self._fail(rejected, identity, client_ip, final_url)
            body = await read_bounded(response, self.config.max_content_size)
        except BaseException:
            response.close()
            raise
        if isinstance(body, Rejected):
            return self._fail(body, identity, client_ip, final_url)

        metadata = parse_metadata(body.text, final_url)
        title = metadata.title or fallback_title(final_url)
        self.security_log.log_fetch_attempt(final_url, identity, success=True)
        log.info("Fetched metadata for %s (%d redirects, %d bytes)", final_url, outcome.redirect_count, body.bytes_consumed)
        return MetadataResult(title=title, favicon=metadata.favicon, url=final_url)

    def _admit(self, identity: str, user_id: str, client_ip: Optional[str]) -> bool:
        # both buckets are charged together, so a denial by one leaves the other untouched
        denied = self.rate_limiter.admit_request(user_id, client_ip)
        if denied is None:
            return True
        if denied == identity:
            reason = "User exceeded rate limit for metadata fetch"
        else:
            reason = "Address exceeded rate limit for metadata fetch"
        self.security_log.log_event(
            SecurityEventType.RATE_LIMIT_EXCEEDED, identity=identity, url="", reason=reason, ip=client_ip
        )
        return False

    def _fail(self, rejected: Rejected, identity: str, client_ip: Optional[str], url: str) -> ServiceFailure:
        log.info("Metadata fetch for %s failed: %s (%s)", url, rejected.kind.value, rejected.reason)
        self.security_log.log_rejection(rejected, identity=identity, ip=client_ip)
        self.security_log.log_fetch_attempt(url, identity, success=False)
        return ServiceFailure.from_rejection(rejected)


async def fetch_metadata(
    url: str,
    config: Optional[FetchConfig] = None,
    *,
    user_id: str = "cli",
    client_ip: Optional[str] = None,
) -> MetadataResult | ServiceFailure:
    """Одноразовый запуск конвейера (используется CLI)."""
    async with MetadataService(config) as service:
        return await service.fetch_metadata(url, user_id=user_id, client_ip=client_ip)
