# bookmark_meta/security/__init__.py
"""URL validation, rate limiting and security audit logging."""
from bookmark_meta.security.events import SecurityEvent, SecurityEventType, SecurityLogger
from bookmark_meta.security.rate_limiter import RateLimiter
from bookmark_meta.security.validator import UrlValidator, is_blocked_ip

__all__ = (
    "RateLimiter",
    "SecurityEvent",
    "SecurityEventType",
    "SecurityLogger",
    "UrlValidator",
    "is_blocked_ip",
)
