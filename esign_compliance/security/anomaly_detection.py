"""
Access-pattern anomaly detection.

Each access is recorded against the caller's pattern and then checked against
fixed thresholds. Every alert lands in the audit stream; a CRITICAL alert or
two HIGH alerts block the request and notify the security operator.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from esign_compliance.audit.service import record_security_event
from esign_compliance.config.settings import AnomalySettings, get_settings
from esign_compliance.models.audit_log import AuditResourceType, AuditEventType
from esign_compliance.security.stores import (
    AccessPattern,
    AccessPatternStore,
    create_access_pattern_store,
)
from esign_compliance.utils.errors import AnomalyBlockedError
from esign_compliance.utils.request_context import RequestContext

logger = logging.getLogger(__name__)


class AnomalyType(str, Enum):
    """Kinds of suspicious access."""

    MULTIPLE_IPS = "MULTIPLE_IPS"
    RAPID_LOCATION_CHANGE = "RAPID_LOCATION_CHANGE"
    UNUSUAL_TIME = "UNUSUAL_TIME"
    EXCESSIVE_REQUESTS = "EXCESSIVE_REQUESTS"
    SUSPICIOUS_USER_AGENT = "SUSPICIOUS_USER_AGENT"


class Severity(str, Enum):
    """Alert severity, lowest first."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


@dataclass
class AnomalyAlert:
    """One detected anomaly."""

    type: AnomalyType
    severity: Severity
    user_id: str
    details: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def audit_event(self) -> str:
        return f"ANOMALY_{self.type.value}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "userId": self.user_id,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class AnomalyCheckResult:
    """Alerts raised for one access and whether it may proceed."""

    allowed: bool
    alerts: List[AnomalyAlert] = field(default_factory=list)


def should_block(alerts: List[AnomalyAlert]) -> bool:
    """Block on any CRITICAL alert or on two or more HIGH alerts."""
    if any(a.severity == Severity.CRITICAL for a in alerts):
        return True
    return sum(1 for a in alerts if a.severity == Severity.HIGH) >= 2


class AnomalyDetector:
    """Tracks per-user access patterns and flags suspicious ones."""

    def __init__(
        self,
        store: AccessPatternStore,
        settings: AnomalySettings,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        alert_sender: Optional[Callable[[List[AnomalyAlert]], None]] = None,
    ):
        self.store = store
        self.settings = settings
        self._clock = clock
        self._tz = ZoneInfo(settings.timezone)
        self._alert_sender = alert_sender or self._email_security_operator

    # =========================================================================
    # Detection
    # =========================================================================

    def detect(self, user_id: str, context: RequestContext) -> List[AnomalyAlert]:
        """Record this access and return the alerts it raises."""
        config = self.settings
        ip_address = context.ip_address or "unknown"
        user_agent = context.user_agent or "unknown"

        snapshot = self.store.record_access(
            user_id,
            ip_address,
            user_agent,
            context.geo.location_key,
            config.rapid_access_window_seconds,
        )
        pattern = snapshot.pattern
        now = self._clock()
        alerts: List[AnomalyAlert] = []

        def alert(anomaly: AnomalyType, severity: Severity, details: str) -> None:
            alerts.append(AnomalyAlert(anomaly, severity, user_id, details, timestamp=now))

        ip_count = len(pattern.ip_addresses)
        if ip_count > config.max_ips:
            alert(
                AnomalyType.MULTIPLE_IPS,
                Severity.CRITICAL if ip_count > config.critical_ips else Severity.HIGH,
                f"Access from {ip_count} different IP addresses",
            )

        agent_count = len(pattern.user_agents)
        if agent_count > config.max_user_agents:
            alert(
                AnomalyType.SUSPICIOUS_USER_AGENT,
                Severity.MEDIUM,
                f"Access from {agent_count} different user agents",
            )

        if snapshot.recent_count > config.rapid_access_count:
            alert(
                AnomalyType.EXCESSIVE_REQUESTS,
                Severity.CRITICAL
                if snapshot.recent_count > config.critical_access_count
                else Severity.HIGH,
                f"{snapshot.recent_count} requests from {ip_address} in "
                f"{config.rapid_access_window_seconds} seconds",
            )

        if self._is_unusual_hour(now):
            alert(
                AnomalyType.UNUSUAL_TIME,
                Severity.LOW,
                f"Access at unusual hour: {now.astimezone(self._tz).hour}:00 {config.timezone}",
            )

        location_count = len(pattern.locations)
        if location_count > config.max_locations:
            alert(
                AnomalyType.RAPID_LOCATION_CHANGE,
                Severity.HIGH,
                f"Access from {location_count} different locations",
            )

        return alerts

    def _is_unusual_hour(self, now: datetime) -> bool:
        start, end = self.settings.unusual_hours
        hour = now.astimezone(self._tz).hour
        if start <= end:
            return start <= hour <= end
        # Range wraps midnight, e.g. 22-4
        return hour >= start or hour <= end

    # =========================================================================
    # Decision
    # =========================================================================

    def check(self, user_id: str, context: RequestContext) -> AnomalyCheckResult:
        """Detect, persist every alert, and decide whether to block."""
        alerts = self.detect(user_id, context)

        for item in alerts:
            logger.warning(
                f"Anomaly {item.type.value} ({item.severity.value}) for {user_id}: {item.details}"
            )
            record_security_event(
                item.audit_event,
                resource_type=AuditResourceType.USER,
                resource_id=user_id,
                actor=user_id,
                context=context,
                metadata={
                    "severity": item.severity.value,
                    "userId": user_id,
                    "details": item.details,
                },
            )

        if not should_block(alerts):
            return AnomalyCheckResult(allowed=True, alerts=alerts)

        self.send_security_alert(user_id, alerts, context)
        return AnomalyCheckResult(allowed=False, alerts=alerts)

    def enforce(self, user_id: str, context: RequestContext) -> AnomalyCheckResult:
        """Raise AnomalyBlockedError when the access must be denied."""
        result = self.check(user_id, context)
        if not result.allowed:
            raise AnomalyBlockedError(
                details={"alerts": [a.type.value for a in result.alerts]},
            )
        return result

    def send_security_alert(
        self,
        user_id: str,
        alerts: List[AnomalyAlert],
        context: Optional[RequestContext] = None,
    ) -> None:
        """Tell the security operator about a blocked access."""
        logger.error(
            f"SECURITY ALERT: blocked {user_id} after {len(alerts)} anomalies: "
            f"{', '.join(f'{a.type.value}/{a.severity.value}' for a in alerts)}"
        )
        record_security_event(
            AuditEventType.SECURITY_ALERT_SENT,
            resource_type=AuditResourceType.USER,
            resource_id=user_id,
            actor="system",
            context=context,
            metadata={
                "alertCount": len(alerts),
                "alerts": [
                    {"type": a.type.value, "severity": a.severity.value, "userId": a.user_id}
                    for a in alerts
                ],
            },
        )
        if self.settings.security_alert_email:
            self._alert_sender(alerts)

    def _email_security_operator(self, alerts: List[AnomalyAlert]) -> None:
        from esign_compliance.services.email import EmailAddress, EmailMessage
        from esign_compliance.services.notifications import get_email_provider

        lines = [
            f"{a.timestamp.isoformat()} {a.severity.value} {a.type.value} "
            f"user={a.user_id}: {a.details}"
            for a in alerts
        ]
        message = EmailMessage(
            to=[EmailAddress(email=self.settings.security_alert_email)],
            subject=f"Security alert: {len(alerts)} anomalies detected",
            text_content="\n".join(lines),
            tags=["security-alert"],
        )
        try:
            result = asyncio.run(get_email_provider().send(message))
        except Exception:
            logger.exception("Failed to email security alert")
            return
        if not result.success:
            logger.error(f"Security alert email rejected: {result.error_message}")

    # =========================================================================
    # Pattern Access
    # =========================================================================

    def get_pattern(self, user_id: str) -> Optional[AccessPattern]:
        return self.store.get_pattern(user_id)

    def clear_pattern(self, user_id: str) -> None:
        logger.info(f"Cleared access pattern for {user_id}")
        self.store.clear_pattern(user_id)

    def sweep(self) -> int:
        return self.store.sweep(self.settings.rapid_access_window_seconds)


# Global detector instance
_detector: Optional[AnomalyDetector] = None


def get_anomaly_detector() -> AnomalyDetector:
    """Get or create anomaly detector singleton."""
    global _detector
    if _detector is None:
        settings = get_settings()
        store = create_access_pattern_store(
            settings.rate_limit.backend,
            settings.anomaly.pattern_ttl_seconds,
        )
        _detector = AnomalyDetector(store, settings.anomaly)
    return _detector


def set_anomaly_detector(detector: Optional[AnomalyDetector]) -> None:
    """Replace the singleton; None rebuilds it from settings on next use."""
    global _detector
    _detector = detector
