"""Middleware package for API protection."""

from esign_compliance.middleware.rate_limiting import (
    ENDPOINT_TIERS,
    RateLimitMiddleware,
    add_rate_limit_headers,
    get_tier_for_path,
)

__all__ = [
    "ENDPOINT_TIERS",
    "RateLimitMiddleware",
    "add_rate_limit_headers",
    "get_tier_for_path",
]
