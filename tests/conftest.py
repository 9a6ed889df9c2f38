# File: tests/conftest.py
from __future__ import annotations

import socket
from collections.abc import AsyncIterator
from typing import Dict, List, Sequence

import pytest
import pytest_asyncio
from aiohttp import TCPConnector, web
from aiohttp.abc import AbstractResolver

from bookmark_meta.security.validator import UrlValidator

#: what the validator's "public" DNS says about the test hostnames
PUBLIC_DNS: Dict[str, Sequence[str]] = {
    "good.example": ["93.184.216.34"],
    "other.example": ["93.184.216.35"],
    "evil.example": ["10.0.0.5"],
    "rebind.example": ["93.184.216.36", "127.0.0.1"],
    "mapped.example": ["::ffff:169.254.169.254"],
    "v6.example": ["2606:2800:220:1:248:1893:25c8:1946"],
}

#: every test hostname is served by the local aiohttp test server
LOCAL_ROUTES: Dict[str, Sequence[str]] = {name: ["127.0.0.1"] for name in PUBLIC_DNS}


class FakeResolver(AbstractResolver):
    """Table-driven resolver; unknown names fail like a real NXDOMAIN."""

    def __init__(self, table: Dict[str, Sequence[str]]) -> None:
        self.table = table
        self.calls: List[str] = []

    async def resolve(self, host: str, port: int = 0, family: int = socket.AF_INET) -> List[dict]:
        self.calls.append(host)
        if host not in self.table:
            raise OSError(f"DNS lookup failed for {host}")
        results = []
        for address in self.table[host]:
            addr_family = socket.AF_INET6 if ":" in address else socket.AF_INET
            if family not in (socket.AF_UNSPEC, addr_family):
                continue
            results.append(
                {
                    "hostname": host,
                    "host": address,
                    "port": port,
                    "family": addr_family,
                    "proto": 0,
                    "flags": socket.AI_NUMERICHOST,
                }
            )
        if not results:
            raise OSError(f"DNS lookup failed for {host}")
        return results

    async def close(self) -> None:
        pass


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture()
def public_resolver() -> FakeResolver:
    return FakeResolver(PUBLIC_DNS)


@pytest.fixture()
def validator(public_resolver) -> UrlValidator:
    return UrlValidator(resolver=public_resolver, resolve_timeout=1.0)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def routing_connector() -> AsyncIterator[TCPConnector]:
    """Connector that sends every test hostname to 127.0.0.1."""
    connector = TCPConnector(resolver=FakeResolver(LOCAL_ROUTES), use_dns_cache=False)
    try:
        yield connector
    finally:
        await connector.close()


async def serve_app(app: web.Application, port: int) -> AsyncIterator[str]:
    """Start *app* on 127.0.0.1:*port*, yield its public-looking base URL, ensure cleanup."""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", port)
    await site.start()
    try:
        yield f"http://good.example:{port}"
    finally:
        await runner.cleanup()


def html_page(title: str = "Example", head: str = "") -> str:
    return f"<html><head><title>{title}</title>{head}</head><body><p>hi</p></body></html>"
