"""Rate limiting configuration."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from trailhook.config import get_settings

settings = get_settings()


def org_or_remote_address(request: Request) -> str:
    """Limit per organization when the auth layer supplied one, else per client."""
    org_id = request.headers.get("X-Org-ID")
    if org_id:
        return f"org:{org_id}"
    return get_remote_address(request)


# Create limiter instance
limiter = Limiter(
    key_func=org_or_remote_address,
    default_limits=[f"{settings.RATE_LIMIT_PER_MINUTE}/minute"],
    storage_uri="memory://" if settings.TESTING else settings.VALKEY_URL,
    enabled=not settings.TESTING,
)


def get_rate_limit_string() -> str:
    """Get current rate limit as string for dynamic updates."""
    return f"{settings.RATE_LIMIT_PER_MINUTE}/minute"
