"""Rate limiting and anomaly detection."""

from esign_compliance.security.anomaly_detection import (
    AnomalyAlert,
    AnomalyDetector,
    AnomalyType,
    Severity,
    get_anomaly_detector,
    set_anomaly_detector,
)
from esign_compliance.security.rate_limiter import (
    RateLimitDecision,
    RateLimiter,
    RateLimitTier,
    get_rate_limiter,
    set_rate_limiter,
)
from esign_compliance.security.stores import (
    AccessPattern,
    AccessPatternStore,
    CounterStore,
    InMemoryAccessPatternStore,
    InMemoryCounterStore,
    RedisAccessPatternStore,
    RedisCounterStore,
)

__all__ = [
    # Anomaly detection
    "AnomalyAlert",
    "AnomalyDetector",
    "AnomalyType",
    "Severity",
    "get_anomaly_detector",
    "set_anomaly_detector",
    # Rate limiting
    "RateLimitDecision",
    "RateLimiter",
    "RateLimitTier",
    "get_rate_limiter",
    "set_rate_limiter",
    # Stores
    "AccessPattern",
    "AccessPatternStore",
    "CounterStore",
    "InMemoryAccessPatternStore",
    "InMemoryCounterStore",
    "RedisAccessPatternStore",
    "RedisCounterStore",
]
