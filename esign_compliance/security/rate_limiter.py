"""Fixed-window rate limiting by tier, client IP and endpoint."""

import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from esign_compliance.audit.service import record_security_event
from esign_compliance.config.settings import (
    RateLimitSettings,
    RateLimitTierSettings,
    get_settings,
)
from esign_compliance.models.audit_log import AuditEventType, AuditResourceType
from esign_compliance.security.stores import CounterStore, create_counter_store
from esign_compliance.utils.errors import RateLimitedError
from esign_compliance.utils.request_context import RequestContext

logger = logging.getLogger(__name__)


# =============================================================================
# Rate Limit Configuration
# =============================================================================

class RateLimitTier(str, Enum):
    """Rate limit tiers for different endpoints."""

    SIGNATURE = "signature"     # Signing links: 5 per 15 minutes
    AUTH = "auth"               # Authentication: 10 per hour
    API = "api"                 # General API: 100 per minute
    STRICT = "strict"           # Destructive admin actions: 3 per hour


# Counter key prefix per tier
TIER_KEY_PREFIXES: Dict[RateLimitTier, str] = {
    RateLimitTier.SIGNATURE: "sig",
    RateLimitTier.AUTH: "auth",
    RateLimitTier.API: "api",
    RateLimitTier.STRICT: "strict",
}


@dataclass
class RateLimitDecision:
    """Outcome of counting one request."""

    tier: RateLimitTier
    allowed: bool
    limit: int
    count: int
    remaining: int
    reset_seconds: int

    @property
    def retry_after(self) -> Optional[int]:
        if self.allowed:
            return None
        return max(1, self.reset_seconds)

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_seconds),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers

    def to_error(self) -> RateLimitedError:
        return RateLimitedError(
            retry_after=self.retry_after or 1,
            limit=self.limit,
            reset_seconds=self.reset_seconds,
        )


# =============================================================================
# Rate Limiter
# =============================================================================

class RateLimiter:
    """
    Counts requests per `{tier prefix}:{client ip}:{endpoint}` key.

    The window opens on the first request and is not extended by later ones;
    once it lapses the next request starts a fresh window at count 1.
    """

    def __init__(
        self,
        store: CounterStore,
        settings: RateLimitSettings,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.settings = settings
        self._clock = clock

    def tier_config(self, tier: RateLimitTier) -> RateLimitTierSettings:
        return getattr(self.settings, tier.value)

    @staticmethod
    def build_key(tier: RateLimitTier, client_ip: str, endpoint: str) -> str:
        return f"{TIER_KEY_PREFIXES[tier]}:{client_ip or 'unknown'}:{endpoint}"

    def check(self, tier: RateLimitTier, client_ip: str, endpoint: str) -> RateLimitDecision:
        """Count this request and report whether it is within quota."""
        config = self.tier_config(tier)
        state = self.store.increment(
            self.build_key(tier, client_ip, endpoint),
            config.window_seconds,
        )
        reset_seconds = math.ceil(state.seconds_until_reset(self._clock()))

        return RateLimitDecision(
            tier=tier,
            allowed=state.count <= config.max_requests,
            limit=config.max_requests,
            count=state.count,
            remaining=max(0, config.max_requests - state.count),
            reset_seconds=reset_seconds,
        )

    def record_violation(
        self,
        decision: RateLimitDecision,
        context: RequestContext,
        endpoint: str,
    ) -> None:
        """Log and audit a rejected request."""
        log = logger.error if decision.tier == RateLimitTier.STRICT else logger.warning
        log(
            f"Rate limit exceeded: {context.ip_address} on {endpoint} "
            f"({decision.tier.value} tier, {decision.count}/{decision.limit})"
        )
        record_security_event(
            AuditEventType.RATE_LIMIT_EXCEEDED,
            resource_type=AuditResourceType.ENDPOINT,
            resource_id=endpoint,
            context=context,
            metadata={
                "endpoint": endpoint,
                "tier": decision.tier.value,
                "count": decision.count,
                "limit": decision.limit,
                "retryAfter": decision.retry_after,
                "severity": "WARNING",
            },
        )

    def enforce(
        self,
        tier: RateLimitTier,
        context: RequestContext,
        endpoint: str,
    ) -> RateLimitDecision:
        """Check and raise RateLimitedError when over quota."""
        decision = self.check(tier, context.ip_address or "unknown", endpoint)
        if not decision.allowed:
            self.record_violation(decision, context, endpoint)
            raise decision.to_error()
        return decision

    def sweep(self) -> int:
        return self.store.sweep()


# Global rate limiter instance
_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get or create rate limiter singleton."""
    global _rate_limiter
    if _rate_limiter is None:
        settings = get_settings().rate_limit
        _rate_limiter = RateLimiter(create_counter_store(settings.backend), settings)
    return _rate_limiter


def set_rate_limiter(limiter: Optional[RateLimiter]) -> None:
    """Replace the singleton; None rebuilds it from settings on next use."""
    global _rate_limiter
    _rate_limiter = limiter
