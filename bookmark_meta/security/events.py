# bookmark_meta/security/events.py
"""
Security event logging.

Events are write-once audit records emitted as one JSON object per line on
the ``BookmarkMeta.security`` logger. Handlers attached to that logger (file,
syslog, an APM bridge) decide where they end up.
"""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from bookmark_meta.errors import ErrorKind, Rejected
from bookmark_meta.logger import get_logger

__all__ = ("SecurityEventType", "SecurityEvent", "SecurityLogger", "event_type_for")


class SecurityEventType(str, Enum):
    SSRF_ATTEMPT = "SSRF_ATTEMPT"
    PROTOCOL_VIOLATION = "PROTOCOL_VIOLATION"
    PRIVATE_IP_ACCESS = "PRIVATE_IP_ACCESS"
    DNS_REBINDING = "DNS_REBINDING"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INVALID_URL = "INVALID_URL"
    TIMEOUT = "TIMEOUT"
    REDIRECT_LIMIT = "REDIRECT_LIMIT"
    CONTENT_TYPE_VIOLATION = "CONTENT_TYPE_VIOLATION"
    SIZE_LIMIT_EXCEEDED = "SIZE_LIMIT_EXCEEDED"


_EVENT_FOR_KIND = {
    ErrorKind.INVALID_URL: SecurityEventType.INVALID_URL,
    ErrorKind.DISALLOWED_PROTOCOL: SecurityEventType.PROTOCOL_VIOLATION,
    ErrorKind.BLOCKED_HOSTNAME: SecurityEventType.SSRF_ATTEMPT,
    ErrorKind.PRIVATE_IP_TARGET: SecurityEventType.PRIVATE_IP_ACCESS,
    ErrorKind.TOO_MANY_REDIRECTS: SecurityEventType.REDIRECT_LIMIT,
    ErrorKind.MISSING_REDIRECT_LOCATION: SecurityEventType.SSRF_ATTEMPT,
    ErrorKind.REQUEST_TIMEOUT: SecurityEventType.TIMEOUT,
    ErrorKind.CONTENT_TYPE_VIOLATION: SecurityEventType.CONTENT_TYPE_VIOLATION,
    ErrorKind.SIZE_LIMIT_EXCEEDED: SecurityEventType.SIZE_LIMIT_EXCEEDED,
    ErrorKind.RATE_LIMIT_EXCEEDED: SecurityEventType.RATE_LIMIT_EXCEEDED,
}


def event_type_for(rejected: Rejected) -> Optional[SecurityEventType]:
    """Audit event type for a rejection, or None when it is not audited."""
    if rejected.kind is ErrorKind.PRIVATE_IP_TARGET and rejected.resolved_ip:
        return SecurityEventType.DNS_REBINDING
    return _EVENT_FOR_KIND.get(rejected.kind)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True, slots=True)
class SecurityEvent:
    type: SecurityEventType
    identity: str
    url: str
    reason: str
    timestamp: str = field(default_factory=_now_iso)
    ip: Optional[str] = None
    user_agent: Optional[str] = None

    def to_json(self) -> str:
        data = {k: v for k, v in asdict(self).items() if v is not None}
        data["type"] = self.type.value
        return json.dumps(data, ensure_ascii=False, sort_keys=True)


class SecurityLogger:
    """Fire-and-forget sink for :class:`SecurityEvent` records."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or get_logger("security")

    def log_event(
        self,
        event_type: SecurityEventType,
        *,
        identity: str,
        url: str,
        reason: str,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SecurityEvent:
        event = SecurityEvent(
            type=event_type, identity=identity, url=url, reason=reason, ip=ip, user_agent=user_agent
        )
        self.emit(event)
        return event

    def log_rejection(self, rejected: Rejected, *, identity: str, ip: Optional[str] = None) -> Optional[SecurityEvent]:
        """Record an audited rejection; returns None for kinds that are not audited."""
        event_type = event_type_for(rejected)
        if event_type is None:
            return None
        return self.log_event(event_type, identity=identity, url=rejected.url, reason=rejected.reason, ip=ip)

    def log_fetch_attempt(self, url: str, identity: str, success: bool = True) -> None:
        payload = json.dumps({"url": url, "identity": identity, "timestamp": _now_iso()}, ensure_ascii=False)
        self.logger.info("[FETCH %s] %s", "SUCCESS" if success else "FAILURE", payload)

    def emit(self, event: SecurityEvent) -> None:
        self.logger.warning("[SECURITY EVENT] %s", event.to_json())
