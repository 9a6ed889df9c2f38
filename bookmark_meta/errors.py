# bookmark_meta/errors.py
"""
Error taxonomy and tagged result values shared by the fetch pipeline.

Validation, fetching and bounded reading never raise for expected failures:
they return a :class:`Rejected` carrying an :class:`ErrorKind`, and callers
branch on ``isinstance(outcome, Rejected)``.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

__all__ = ("ErrorCategory", "ErrorKind", "Allowed", "Rejected", "ValidationOutcome")


class ErrorCategory(str, Enum):
    """Caller-visible failure classes; the API layer maps them to HTTP statuses."""

    CLIENT_ERROR = "client_error"
    TIMEOUT = "timeout"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    TOO_MANY_REQUESTS = "too_many_requests"
    INTERNAL = "internal"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]


_HTTP_STATUS = {
    ErrorCategory.CLIENT_ERROR: 400,
    ErrorCategory.TIMEOUT: 408,
    ErrorCategory.PAYLOAD_TOO_LARGE: 413,
    ErrorCategory.TOO_MANY_REQUESTS: 429,
    ErrorCategory.INTERNAL: 500,
}


class ErrorKind(str, Enum):
    """Internal failure categories. Never echoed verbatim to the requester."""

    INVALID_URL = "InvalidURL"
    DISALLOWED_PROTOCOL = "DisallowedProtocol"
    BLOCKED_HOSTNAME = "BlockedHostname"
    PRIVATE_IP_TARGET = "PrivateIPTarget"
    TOO_MANY_REDIRECTS = "TooManyRedirects"
    MISSING_REDIRECT_LOCATION = "MissingRedirectLocation"
    REQUEST_TIMEOUT = "RequestTimeout"
    CONTENT_TYPE_VIOLATION = "ContentTypeViolation"
    SIZE_LIMIT_EXCEEDED = "SizeLimitExceeded"
    FETCH_FAILURE = "FetchFailure"
    RATE_LIMIT_EXCEEDED = "RateLimitExceeded"

    @property
    def security_relevant(self) -> bool:
        return self in _SECURITY_RELEVANT

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORY.get(self, ErrorCategory.CLIENT_ERROR)


_SECURITY_RELEVANT = frozenset(
    {
        ErrorKind.INVALID_URL,
        ErrorKind.DISALLOWED_PROTOCOL,
        ErrorKind.BLOCKED_HOSTNAME,
        ErrorKind.PRIVATE_IP_TARGET,
        ErrorKind.TOO_MANY_REDIRECTS,
        ErrorKind.MISSING_REDIRECT_LOCATION,
    }
)

_CATEGORY = {
    ErrorKind.REQUEST_TIMEOUT: ErrorCategory.TIMEOUT,
    ErrorKind.SIZE_LIMIT_EXCEEDED: ErrorCategory.PAYLOAD_TOO_LARGE,
    ErrorKind.RATE_LIMIT_EXCEEDED: ErrorCategory.TOO_MANY_REQUESTS,
}


@dataclass(frozen=True, slots=True)
class Allowed:
    """The URL passed every check."""

    url: str


@dataclass(frozen=True, slots=True)
class Rejected:
    """A failed check or fetch.

    ``resolved_ip`` is set only when a public-looking name resolved to a
    blocked address.
    """

    kind: ErrorKind
    reason: str
    url: str = ""
    resolved_ip: Optional[str] = None

    @property
    def category(self) -> ErrorCategory:
        return self.kind.category


ValidationOutcome = Allowed | Rejected
