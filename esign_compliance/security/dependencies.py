"""Route-level rate limit and anomaly dependencies."""

from typing import Annotated, Callable

from fastapi import Depends, Request

from esign_compliance.security.anomaly_detection import get_anomaly_detector
from esign_compliance.security.rate_limiter import (
    RateLimitDecision,
    RateLimitTier,
    get_rate_limiter,
)
from esign_compliance.utils.auth import CurrentUser, get_current_user
from esign_compliance.utils.request_context import RequestContext, get_request_context


def rate_limit(tier: RateLimitTier) -> Callable[..., RateLimitDecision]:
    """
    Dependency factory applying an extra tier to a single route.

    Counts under the tier's own key prefix, so it stacks with whatever tier
    the middleware already applied to the path.
    """

    def dependency(
        request: Request,
        context: Annotated[RequestContext, Depends(get_request_context)],
    ) -> RateLimitDecision:
        return get_rate_limiter().enforce(tier, context, request.url.path)

    return dependency


def require_anomaly_clearance(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    context: Annotated[RequestContext, Depends(get_request_context)],
) -> CurrentUser:
    """Run the authenticated user's access through the anomaly detector."""
    get_anomaly_detector().enforce(current_user.id, context)
    return current_user
