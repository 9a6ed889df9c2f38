# File: tests/test_service.py
"""Сквозные тесты конвейера: лимитер → валидация → редиректы → Content-Type → чтение → разбор."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from aiohttp import ClientSession, web

from bookmark_meta.config import FetchConfig
from bookmark_meta.errors import ErrorCategory, ErrorKind
from bookmark_meta.security.events import SecurityEventType, SecurityLogger
from bookmark_meta.security.rate_limiter import RateLimiter
from bookmark_meta.service import (
    INTERNAL_MESSAGE,
    SECURITY_MESSAGE,
    MetadataResult,
    MetadataService,
    ServiceFailure,
    fetch_metadata,
)
from tests.conftest import html_page, serve_app


class RecordingSecurityLogger(SecurityLogger):
    def __init__(self) -> None:
        super().__init__()
        self.events = []

    def emit(self, event) -> None:
        self.events.append(event)


def build_app() -> web.Application:
    app = web.Application()

    async def page(_):
        head = '<link rel="icon" href="/static/icon.png">'
        return web.Response(text=html_page("Example &amp; Co", head), content_type="text/html")

    async def moved(_):
        raise web.HTTPFound("/")

    async def untitled(_):
        return web.Response(text="<html><body>no head</body></html>", content_type="text/html")

    async def xhtml(_):
        return web.Response(text=html_page("XHTML"), content_type="application/xhtml+xml")

    async def json_doc(_):
        return web.json_response({"title": "not html"})

    async def big(_):
        return web.Response(text=html_page("Big") + "x" * 8192, content_type="text/html")

    async def to_private(_):
        raise web.HTTPFound("http://10.0.0.5/")

    async def hang(_):
        await asyncio.sleep(2)
        return web.Response(text=html_page("Late"), content_type="text/html")

    app.router.add_get("/", page)
    app.router.add_get("/moved", moved)
    app.router.add_get("/untitled", untitled)
    app.router.add_get("/xhtml", xhtml)
    app.router.add_get("/json", json_doc)
    app.router.add_get("/big", big)
    app.router.add_get("/to-private", to_private)
    app.router.add_get("/hang", hang)
    return app


@pytest_asyncio.fixture
async def base_url(unused_tcp_port: int) -> AsyncIterator[str]:
    async for url in serve_app(build_app(), unused_tcp_port):
        yield url


@pytest.fixture()
def security_log() -> RecordingSecurityLogger:
    return RecordingSecurityLogger()


@pytest_asyncio.fixture
async def make_service(routing_connector, validator, clock, security_log):
    """Factory: ``await make_service(**config)`` → entered :class:`MetadataService`."""
    stack = []

    async def factory(**overrides) -> MetadataService:
        config = FetchConfig(**overrides)
        session = ClientSession(connector=routing_connector, connector_owner=False)
        limiter = RateLimiter(
            clock,
            user_limit=config.user_rate_limit,
            ip_limit=config.ip_rate_limit,
            window_ms=config.rate_window_ms,
        )
        service = MetadataService(
            config, session=session, validator=validator, rate_limiter=limiter, security_log=security_log
        )
        await service.__aenter__()
        stack.append((service, session))
        return service

    yield factory

    for service, session in stack:
        await service.__aexit__(None, None, None)
        await session.close()


@pytest.mark.asyncio()
async def test_success_follows_redirect(make_service, base_url, caplog):
    caplog.set_level(logging.INFO, logger="BookmarkMeta")
    service = await make_service()
    result = await service.fetch_metadata(f"{base_url}/moved", user_id="alice")

    assert isinstance(result, MetadataResult)
    assert result.url == f"{base_url}/"
    assert result.title == "Example & Co"
    assert result.favicon == f"{base_url}/static/icon.png"
    assert "[FETCH SUCCESS]" in caplog.text


@pytest.mark.asyncio()
async def test_missing_title_falls_back_to_hostname(make_service, base_url):
    service = await make_service()
    result = await service.fetch_metadata(f"{base_url}/untitled", user_id="alice")

    assert isinstance(result, MetadataResult)
    assert result.title == "good.example"
    assert result.favicon == f"{base_url}/favicon.ico"


@pytest.mark.asyncio()
async def test_xhtml_is_accepted(make_service, base_url):
    service = await make_service()
    result = await service.fetch_metadata(f"{base_url}/xhtml", user_id="alice")
    assert isinstance(result, MetadataResult)
    assert result.title == "XHTML"


@pytest.mark.asyncio()
async def test_non_html_content_type(make_service, base_url, security_log):
    service = await make_service()
    result = await service.fetch_metadata(f"{base_url}/json", user_id="alice")

    assert isinstance(result, ServiceFailure)
    assert result.kind is ErrorKind.CONTENT_TYPE_VIOLATION
    assert result.message == "URL does not point to a valid HTML page."
    assert result.http_status == 400
    assert security_log.events[-1].type is SecurityEventType.CONTENT_TYPE_VIOLATION


@pytest.mark.asyncio()
async def test_body_over_size_limit(make_service, base_url, security_log):
    service = await make_service(max_content_size=4096)
    result = await service.fetch_metadata(f"{base_url}/big", user_id="alice")

    assert isinstance(result, ServiceFailure)
    assert result.category is ErrorCategory.PAYLOAD_TOO_LARGE
    assert result.http_status == 413
    assert result.message == "Content size too large."
    assert security_log.events[-1].type is SecurityEventType.SIZE_LIMIT_EXCEEDED


@pytest.mark.asyncio()
async def test_timeout(make_service, base_url):
    service = await make_service(fetch_timeout_ms=200)
    result = await service.fetch_metadata(f"{base_url}/hang", user_id="alice")

    assert isinstance(result, ServiceFailure)
    assert result.category is ErrorCategory.TIMEOUT
    assert result.http_status == 408


@pytest.mark.asyncio()
async def test_user_rate_limit(make_service, base_url, security_log, clock):
    service = await make_service(user_rate_limit=2)
    for _ in range(2):
        assert isinstance(await service.fetch_metadata(f"{base_url}/", user_id="alice"), MetadataResult)

    result = await service.fetch_metadata(f"{base_url}/", user_id="alice")
    assert isinstance(result, ServiceFailure)
    assert result.category is ErrorCategory.TOO_MANY_REQUESTS
    assert result.http_status == 429
    assert result.message == "Rate limit exceeded. Please try again later."
    event = security_log.events[-1]
    assert event.type is SecurityEventType.RATE_LIMIT_EXCEEDED
    assert event.identity == "user:alice"

    # other users are unaffected, and the bucket refills with time
    assert isinstance(await service.fetch_metadata(f"{base_url}/", user_id="bob"), MetadataResult)
    clock.advance(60_000)
    assert isinstance(await service.fetch_metadata(f"{base_url}/", user_id="alice"), MetadataResult)


@pytest.mark.asyncio()
async def test_ip_rate_limit(make_service, base_url, security_log):
    service = await make_service(ip_rate_limit=1)
    first = await service.fetch_metadata(f"{base_url}/", user_id="a", client_ip="203.0.113.9")
    second = await service.fetch_metadata(f"{base_url}/", user_id="b", client_ip="203.0.113.9")

    assert isinstance(first, MetadataResult)
    assert isinstance(second, ServiceFailure)
    assert second.category is ErrorCategory.TOO_MANY_REQUESTS
    assert security_log.events[-1].ip == "203.0.113.9"


@pytest.mark.asyncio()
async def test_security_rejection_is_generic(make_service, security_log):
    service = await make_service()
    result = await service.fetch_metadata("http://127.0.0.1/admin", user_id="alice", client_ip="198.51.100.7")

    assert isinstance(result, ServiceFailure)
    assert result.kind is ErrorKind.PRIVATE_IP_TARGET
    assert result.message == SECURITY_MESSAGE
    assert result.to_dict() == {"error": SECURITY_MESSAGE}
    assert "127.0.0.1" not in result.message
    assert result.http_status == 400

    event = security_log.events[-1]
    assert event.type is SecurityEventType.PRIVATE_IP_ACCESS
    assert event.identity == "user:alice"
    assert event.url == "http://127.0.0.1/admin"
    assert event.ip == "198.51.100.7"


@pytest.mark.asyncio()
async def test_protocol_rejection_event(make_service, security_log):
    service = await make_service()
    result = await service.fetch_metadata("file:///etc/passwd", user_id="alice")

    assert isinstance(result, ServiceFailure)
    assert result.message == SECURITY_MESSAGE
    assert security_log.events[-1].type is SecurityEventType.PROTOCOL_VIOLATION


@pytest.mark.asyncio()
async def test_dns_rebinding_event(make_service, base_url, security_log):
    service = await make_service()
    port = base_url.rsplit(":", 1)[1]
    result = await service.fetch_metadata(f"http://evil.example:{port}/", user_id="alice")

    assert isinstance(result, ServiceFailure)
    assert result.message == SECURITY_MESSAGE
    assert security_log.events[-1].type is SecurityEventType.DNS_REBINDING


@pytest.mark.asyncio()
async def test_redirect_to_private_address(make_service, base_url, security_log):
    service = await make_service()
    result = await service.fetch_metadata(f"{base_url}/to-private", user_id="alice")

    assert isinstance(result, ServiceFailure)
    assert result.message == SECURITY_MESSAGE
    assert security_log.events[-1].url == "http://10.0.0.5/"


@pytest.mark.asyncio()
async def test_unexpected_error_is_internal(make_service, base_url, monkeypatch, caplog):
    def boom(html, url):
        raise RuntimeError("parser exploded")

    monkeypatch.setattr("bookmark_meta.service.parse_metadata", boom)
    service = await make_service()
    result = await service.fetch_metadata(f"{base_url}/", user_id="alice")

    assert isinstance(result, ServiceFailure)
    assert result.category is ErrorCategory.INTERNAL
    assert result.http_status == 500
    assert result.message == INTERNAL_MESSAGE
    assert "parser exploded" not in result.message
    assert "parser exploded" in caplog.text


@pytest.mark.asyncio()
async def test_service_outside_context_manager():
    service = MetadataService()
    result = await service.fetch_metadata("https://example.com/", user_id="alice")
    assert isinstance(result, ServiceFailure)
    assert result.category is ErrorCategory.INTERNAL


@pytest.mark.asyncio()
async def test_module_level_fetch_rejects_statically():
    result = await fetch_metadata("http://localhost:8080/")
    assert isinstance(result, ServiceFailure)
    assert result.kind is ErrorKind.BLOCKED_HOSTNAME
    assert result.message == SECURITY_MESSAGE


@pytest.mark.asyncio()
async def test_ip_denial_does_not_spend_user_quota(make_service, base_url, security_log):
    service = await make_service(user_rate_limit=2, ip_rate_limit=1)
    assert isinstance(await service.fetch_metadata(f"{base_url}/", user_id="alice", client_ip="203.0.113.9"), MetadataResult)

    denied = await service.fetch_metadata(f"{base_url}/", user_id="alice", client_ip="203.0.113.9")
    assert isinstance(denied, ServiceFailure)
    assert security_log.events[-1].reason == "Address exceeded rate limit for metadata fetch"

    # the address denial above left alice's second token in place
    assert isinstance(await service.fetch_metadata(f"{base_url}/", user_id="alice"), MetadataResult)
    again = await service.fetch_metadata(f"{base_url}/", user_id="alice")
    assert isinstance(again, ServiceFailure)
    assert security_log.events[-1].reason == "User exceeded rate limit for metadata fetch"
