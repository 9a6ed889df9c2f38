# bookmark_meta/security/validator.py
"""
URL security validation: protocol, hostname blocklist, IP-literal blocklist
and a DNS-rebinding check on every resolved address.

The validator is called for the submitted URL and again for every redirect
target, so a public page cannot bounce the fetcher onto ``169.254.169.254``.
"""
from __future__ import annotations

import asyncio
import ipaddress
import socket
from typing import List, Optional, Tuple
from urllib.parse import urlsplit

from aiohttp import ThreadedResolver
from aiohttp.abc import AbstractResolver

from bookmark_meta.errors import Allowed, ErrorKind, Rejected, ValidationOutcome
from bookmark_meta.logger import get_logger

__all__ = ("UrlValidator", "is_blocked_ip", "is_ip_literal", "check_protocol", "check_hostname")

log = get_logger("validator")

ALLOWED_SCHEMES = ("http", "https")

BLOCKED_HOSTNAMES = frozenset({"localhost", "localhost.localdomain", "ip6-localhost", "ip6-loopback"})
BLOCKED_SUFFIXES = (".local", ".internal", ".localhost")

BLOCKED_NETWORKS = tuple(
    ipaddress.ip_network(n)
    for n in (
        "127.0.0.0/8",
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "169.254.0.0/16",
        "0.0.0.0/32",
        "255.255.255.255/32",
        "::1/128",
        "::/128",
        "fe80::/10",
        "fc00::/7",
        "fd00::/8",
        "ffff:ffff:ffff:ffff:ffff:ffff:ffff:ffff/128",
    )
)


def _parse_ip(host: str) -> Optional[ipaddress.IPv4Address | ipaddress.IPv6Address]:
    try:
        return ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return None


def is_ip_literal(host: str) -> bool:
    return _parse_ip(host) is not None


def is_blocked_ip(address: str) -> bool:
    """True for loopback, private, link-local, unique-local and all-zeros/all-ones addresses."""
    ip = _parse_ip(address)
    if ip is None:
        return False
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return any(ip.version == net.version and ip in net for net in BLOCKED_NETWORKS)


def check_protocol(scheme: str) -> Optional[Rejected]:
    if scheme.lower() not in ALLOWED_SCHEMES:
        return Rejected(
            ErrorKind.DISALLOWED_PROTOCOL,
            f"Invalid protocol: {scheme or '(none)'}. Only HTTP and HTTPS are allowed.",
        )
    return None


def check_hostname(host: str) -> Optional[Rejected]:
    """Static hostname checks: name blocklist, then IP-literal blocklist."""
    name = host.lower().rstrip(".")
    if name in BLOCKED_HOSTNAMES:
        return Rejected(ErrorKind.BLOCKED_HOSTNAME, f'Hostname "{host}" is not allowed for security reasons.')
    for suffix in BLOCKED_SUFFIXES:
        if name.endswith(suffix):
            return Rejected(ErrorKind.BLOCKED_HOSTNAME, f'TLD "{suffix}" is not allowed for security reasons.')
    if is_blocked_ip(name):
        return Rejected(ErrorKind.PRIVATE_IP_TARGET, "Private IP addresses are not allowed for security reasons.")
    return None


def _normalize_host(host: str) -> str:
    # the transport IDNA-encodes hostnames, so the checks must see the same form
    if host.isascii():
        return host
    return host.encode("idna").decode("ascii").lower()


def _with_url(rejected: Rejected, url: str) -> Rejected:
    if rejected.url == url:
        return rejected
    return Rejected(rejected.kind, rejected.reason, url=url, resolved_ip=rejected.resolved_ip)


class UrlValidator:
    """Validates outbound fetch targets.

    ``resolver`` follows :class:`aiohttp.abc.AbstractResolver`; by default a
    :class:`aiohttp.ThreadedResolver` (system ``getaddrinfo``) is created on
    first use. With ``strict_dns`` a failed lookup rejects the URL instead of
    letting the fetch proceed.
    """

    def __init__(
        self,
        resolver: Optional[AbstractResolver] = None,
        *,
        resolve_timeout: float = 5.0,
        strict_dns: bool = False,
        max_url_length: int = 2048,
    ) -> None:
        self._resolver = resolver
        self.resolve_timeout = resolve_timeout
        self.strict_dns = strict_dns
        self.max_url_length = max_url_length

    @property
    def resolver(self) -> AbstractResolver:
        if self._resolver is None:
            self._resolver = ThreadedResolver()
        return self._resolver

    async def validate(self, url: str) -> ValidationOutcome:
        rejected, host = self._check_static(url)
        if rejected is not None:
            return rejected
        rejected = await self.check_dns(host)
        if rejected is not None:
            return _with_url(rejected, url)
        return Allowed(url)

    def check_static(self, url: str) -> Optional[Rejected]:
        """Every check that does not need the network, in order."""
        return self._check_static(url)[0]

    def _check_static(self, url: str) -> Tuple[Optional[Rejected], str]:
        if not isinstance(url, str) or not url.strip():
            return Rejected(ErrorKind.INVALID_URL, "Invalid URL format.", url=str(url or "")), ""
        if len(url) > self.max_url_length:
            return Rejected(ErrorKind.INVALID_URL, f"URL longer than {self.max_url_length} characters.", url=url), ""
        try:
            parts = urlsplit(url.strip())
            parts.port  # raises ValueError for a malformed port
            host = parts.hostname or ""
        except ValueError:
            return Rejected(ErrorKind.INVALID_URL, "Invalid URL format.", url=url), ""
        if not parts.scheme:
            return Rejected(ErrorKind.INVALID_URL, "Invalid URL format.", url=url), ""

        rejected = check_protocol(parts.scheme)
        if rejected is None and not host:
            rejected = Rejected(ErrorKind.INVALID_URL, "URL has no host.")
        if rejected is None:
            try:
                host = _normalize_host(host)
            except UnicodeError:
                rejected = Rejected(ErrorKind.INVALID_URL, "Invalid hostname encoding.")
            else:
                rejected = check_hostname(host)
        if rejected is not None:
            return _with_url(rejected, url), host
        return None, host

    async def check_dns(self, host: str) -> Optional[Rejected]:
        """Reject when any resolved address is blocked; lookup failures soft-fail."""
        if is_ip_literal(host):
            return None
        try:
            addresses = await asyncio.wait_for(self._resolve(host), timeout=self.resolve_timeout)
        except (OSError, ValueError, asyncio.TimeoutError) as exc:
            if self.strict_dns:
                return Rejected(ErrorKind.BLOCKED_HOSTNAME, f'Hostname "{host}" could not be resolved.')
            log.warning("DNS resolution failed for %s, proceeding with fetch: %s", host, exc)
            return None

        for address in addresses:
            if is_blocked_ip(address):
                return Rejected(
                    ErrorKind.PRIVATE_IP_TARGET,
                    f'Hostname "{host}" resolves to a private IP address and is not allowed.',
                    resolved_ip=address,
                )
        return None

    async def _resolve(self, host: str) -> List[str]:
        results = await self.resolver.resolve(host, 0, socket.AF_UNSPEC)
        return [r["host"] for r in results]

    async def close(self) -> None:
        if self._resolver is not None:
            await self._resolver.close()
