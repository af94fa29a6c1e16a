"""Application configuration settings."""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional, Tuple


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class WebhookSettings:
    """Inbound e-sign provider webhook configuration."""

    # Shared HMAC secret; required in every environment unless test_mode is on
    secret: Optional[str] = None
    test_mode: bool = False
    signature_header: str = "X-Esign-Signature"


@dataclass
class RateLimitTierSettings:
    """Quota for a single rate limit tier."""

    max_requests: int
    window_seconds: int


@dataclass
class RateLimitSettings:
    """Rate limiter configuration."""

    # "memory" for a single process, "redis" when running several instances
    backend: str = "memory"
    sweep_interval_seconds: int = 60
    signature: RateLimitTierSettings = field(
        default_factory=lambda: RateLimitTierSettings(5, 15 * 60)
    )
    auth: RateLimitTierSettings = field(
        default_factory=lambda: RateLimitTierSettings(10, 60 * 60)
    )
    api: RateLimitTierSettings = field(
        default_factory=lambda: RateLimitTierSettings(100, 60)
    )
    strict: RateLimitTierSettings = field(
        default_factory=lambda: RateLimitTierSettings(3, 60 * 60)
    )


@dataclass
class AnomalySettings:
    """Anomaly detection thresholds."""

    max_ips: int = 5
    critical_ips: int = 10
    max_user_agents: int = 3
    rapid_access_count: int = 10
    rapid_access_window_seconds: int = 60
    critical_access_count: int = 50
    max_locations: int = 2
    # Inclusive hour range, evaluated in `timezone`
    unusual_hours: Tuple[int, int] = (2, 5)
    timezone: str = "UTC"
    pattern_ttl_seconds: int = 24 * 60 * 60
    sweep_interval_seconds: int = 5 * 60
    security_alert_email: Optional[str] = None


@dataclass
class SigningSettings:
    """Signing link configuration."""

    token_ttl_days: int = 30


@dataclass
class AuditSettings:
    """Audit retention and export configuration."""

    export_max_rows: int = 10000
    retention_years: int = 7


@dataclass
class NotificationSettings:
    """Outbound email configuration."""

    email_provider: str = "mock"
    from_address: str = "noreply@example.com"
    from_name: str = "Signature Service"
    sendgrid_api_key: Optional[str] = None
    use_queue: bool = False


@dataclass
class Settings:
    """Main application settings."""

    # Application info
    app_name: str = "E-Signature Compliance API"
    app_version: str = "1.0.0"
    environment: str = "development"
    debug: bool = False
    base_url: str = "http://localhost:8000"

    # Database
    database_url: str = ""
    database_pool_size: int = 5
    database_max_overflow: int = 10

    webhook: WebhookSettings = field(default_factory=WebhookSettings)
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)
    anomaly: AnomalySettings = field(default_factory=AnomalySettings)
    signing: SigningSettings = field(default_factory=SigningSettings)
    audit: AuditSettings = field(default_factory=AuditSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables."""
        return cls(
            app_name=os.getenv("APP_NAME", "E-Signature Compliance API"),
            app_version=os.getenv("APP_VERSION", "1.0.0"),
            environment=os.getenv("APP_ENV", "development").lower(),
            debug=_env_bool("DEBUG"),
            base_url=os.getenv("APP_BASE_URL", "http://localhost:8000").rstrip("/"),
            database_url=os.getenv(
                "DATABASE_URL",
                f"postgresql://{os.getenv('DB_USER', 'postgres')}:{os.getenv('DB_PASSWORD', '')}@"
                f"{os.getenv('DB_HOST', 'localhost')}:{os.getenv('DB_PORT', '5432')}/"
                f"{os.getenv('DB_NAME', 'esign')}"
            ),
            database_pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
            database_max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
            webhook=WebhookSettings(
                secret=os.getenv("ESIGN_WEBHOOK_SECRET") or None,
                test_mode=_env_bool("ESIGN_WEBHOOK_TEST_MODE"),
                signature_header=os.getenv(
                    "ESIGN_WEBHOOK_SIGNATURE_HEADER", "X-Esign-Signature"
                ),
            ),
            rate_limit=RateLimitSettings(
                backend=os.getenv("RATE_LIMIT_BACKEND", "memory").lower(),
                sweep_interval_seconds=int(os.getenv("RATE_LIMIT_SWEEP_SECONDS", "60")),
                signature=_tier_from_env("SIGNATURE", 5, 15 * 60),
                auth=_tier_from_env("AUTH", 10, 60 * 60),
                api=_tier_from_env("API", 100, 60),
                strict=_tier_from_env("STRICT", 3, 60 * 60),
            ),
            anomaly=AnomalySettings(
                max_ips=int(os.getenv("ANOMALY_MAX_IPS", "5")),
                critical_ips=int(os.getenv("ANOMALY_CRITICAL_IPS", "10")),
                max_user_agents=int(os.getenv("ANOMALY_MAX_USER_AGENTS", "3")),
                rapid_access_count=int(os.getenv("ANOMALY_RAPID_ACCESS_COUNT", "10")),
                rapid_access_window_seconds=int(
                    os.getenv("ANOMALY_RAPID_ACCESS_WINDOW_SECONDS", "60")
                ),
                critical_access_count=int(os.getenv("ANOMALY_CRITICAL_ACCESS_COUNT", "50")),
                max_locations=int(os.getenv("ANOMALY_MAX_LOCATIONS", "2")),
                unusual_hours=_parse_hour_range(os.getenv("ANOMALY_UNUSUAL_HOURS", "2-5")),
                timezone=os.getenv("ANOMALY_TIMEZONE", "UTC"),
                pattern_ttl_seconds=int(os.getenv("ANOMALY_PATTERN_TTL_SECONDS", "86400")),
                sweep_interval_seconds=int(os.getenv("ANOMALY_SWEEP_SECONDS", "300")),
                security_alert_email=os.getenv("SECURITY_ALERT_EMAIL") or None,
            ),
            signing=SigningSettings(
                token_ttl_days=int(os.getenv("SIGNING_TOKEN_TTL_DAYS", "30")),
            ),
            audit=AuditSettings(
                export_max_rows=int(os.getenv("AUDIT_EXPORT_MAX_ROWS", "10000")),
                # Never below the 7 year SEC books-and-records floor
                retention_years=max(7, int(os.getenv("AUDIT_RETENTION_YEARS", "7"))),
            ),
            notifications=NotificationSettings(
                email_provider=os.getenv("EMAIL_PROVIDER", "mock").lower(),
                from_address=os.getenv("EMAIL_FROM_ADDRESS", "noreply@example.com"),
                from_name=os.getenv("EMAIL_FROM_NAME", "Signature Service"),
                sendgrid_api_key=os.getenv("SENDGRID_API_KEY") or None,
                use_queue=_env_bool("NOTIFICATIONS_USE_QUEUE"),
            ),
        )


def _tier_from_env(name: str, max_requests: int, window_seconds: int) -> RateLimitTierSettings:
    return RateLimitTierSettings(
        max_requests=int(os.getenv(f"RATE_LIMIT_{name}_MAX", str(max_requests))),
        window_seconds=int(
            os.getenv(f"RATE_LIMIT_{name}_WINDOW_SECONDS", str(window_seconds))
        ),
    )


def _parse_hour_range(value: str) -> Tuple[int, int]:
    """Parse an inclusive "start-end" hour range such as "2-5"."""
    start, _, end = value.partition("-")
    start_hour = int(start)
    end_hour = int(end or start)
    if not (0 <= start_hour <= 23 and 0 <= end_hour <= 23):
        raise ValueError(f"Invalid hour range: {value}")
    return start_hour, end_hour


# Singleton settings instance
_settings: Optional[Settings] = None


@lru_cache()
def get_settings() -> Settings:
    """Get application settings (cached)."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Reset settings (for testing)."""
    global _settings
    _settings = None
    get_settings.cache_clear()
