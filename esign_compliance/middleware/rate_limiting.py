"""Rate limiting middleware for API protection."""

import logging
from typing import Callable, Dict, List, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from esign_compliance.security.rate_limiter import (
    RateLimitDecision,
    RateLimitTier,
    get_rate_limiter,
)
from esign_compliance.utils.request_context import RequestContext

logger = logging.getLogger(__name__)


# Endpoint to rate limit tier mapping, longest prefix first
ENDPOINT_TIERS: Dict[str, RateLimitTier] = {
    "/api/sign": RateLimitTier.SIGNATURE,
    "/api/auth": RateLimitTier.AUTH,
    "/api/webhooks": RateLimitTier.API,
    "/api/admin": RateLimitTier.API,
    "/api": RateLimitTier.API,
}


def get_tier_for_path(path: str) -> Optional[RateLimitTier]:
    """Determine rate limit tier based on request path; None means unlimited."""
    for prefix, tier in ENDPOINT_TIERS.items():
        if path == prefix or path.startswith(prefix + "/"):
            return tier
    return None


def add_rate_limit_headers(response: Response, decision: RateLimitDecision) -> None:
    """Add rate limit headers to response."""
    for name, value in decision.headers().items():
        response.headers[name] = value


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Applies the path's tier to every request and stamps quota headers."""

    def __init__(self, app, exclude_paths: Optional[List[str]] = None):
        super().__init__(app)
        self.exclude_paths = exclude_paths or [
            "/health",
            "/docs",
            "/redoc",
            "/openapi.json",
        ]

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request with rate limiting."""
        path = request.url.path

        if any(path.startswith(excluded) for excluded in self.exclude_paths):
            return await call_next(request)

        tier = get_tier_for_path(path)
        if tier is None:
            return await call_next(request)

        limiter = get_rate_limiter()
        context = RequestContext.from_request(request)
        decision = limiter.check(tier, context.ip_address or "unknown", path)

        if not decision.allowed:
            await run_in_threadpool(limiter.record_violation, decision, context, path)
            error = decision.to_error().to_response()
            response = JSONResponse(
                status_code=error.status_code,
                content=error.to_dict(),
            )
            add_rate_limit_headers(response, decision)
            return response

        response = await call_next(request)
        add_rate_limit_headers(response, decision)
        return response
