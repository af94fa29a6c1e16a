"""Tests for environment-driven settings."""

import pytest

from esign_compliance.config.settings import (
    Settings,
    _parse_hour_range,
    get_settings,
    reset_settings,
)


class TestParseHourRange:
    """Test cases for hour range parsing."""

    @pytest.mark.parametrize(
        "value,expected",
        [("2-5", (2, 5)), ("22-4", (22, 4)), ("3", (3, 3)), ("0-23", (0, 23))],
    )
    def test_valid_ranges(self, value, expected):
        assert _parse_hour_range(value) == expected

    @pytest.mark.parametrize("value", ["2-24", "-1-3", "a-b", ""])
    def test_invalid_ranges(self, value):
        with pytest.raises(ValueError):
            _parse_hour_range(value)


class TestFromEnv:
    """Test cases for building settings from the environment."""

    def test_defaults(self, monkeypatch):
        """Test the documented default quotas and thresholds."""
        for name in ("RATE_LIMIT_SIGNATURE_MAX", "ANOMALY_UNUSUAL_HOURS", "AUDIT_RETENTION_YEARS"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings.from_env()

        assert (settings.rate_limit.signature.max_requests, settings.rate_limit.signature.window_seconds) == (5, 900)
        assert (settings.rate_limit.strict.max_requests, settings.rate_limit.strict.window_seconds) == (3, 3600)
        assert settings.anomaly.unusual_hours == (2, 5)
        assert settings.audit.retention_years == 7

    def test_overrides(self, monkeypatch):
        """Test that environment variables override defaults."""
        monkeypatch.setenv("RATE_LIMIT_SIGNATURE_MAX", "8")
        monkeypatch.setenv("ANOMALY_UNUSUAL_HOURS", "22-4")
        monkeypatch.setenv("ANOMALY_TIMEZONE", "America/New_York")
        monkeypatch.setenv("SECURITY_ALERT_EMAIL", "security@fundco.com")
        monkeypatch.setenv("APP_BASE_URL", "https://sign.fundco.com/")

        settings = Settings.from_env()

        assert settings.rate_limit.signature.max_requests == 8
        assert settings.anomaly.unusual_hours == (22, 4)
        assert settings.anomaly.timezone == "America/New_York"
        assert settings.anomaly.security_alert_email == "security@fundco.com"
        assert settings.base_url == "https://sign.fundco.com"

    def test_retention_never_below_seven_years(self, monkeypatch):
        """Test that a shorter retention is raised to the floor."""
        monkeypatch.setenv("AUDIT_RETENTION_YEARS", "3")

        assert Settings.from_env().audit.retention_years == 7

    def test_production_flag(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "Production")

        assert Settings.from_env().is_production is True

    def test_empty_secret_is_unset(self, monkeypatch):
        monkeypatch.setenv("ESIGN_WEBHOOK_SECRET", "")

        assert Settings.from_env().webhook.secret is None


class TestSingleton:
    """Test cases for the cached settings."""

    def test_cached_until_reset(self):
        first = get_settings()

        assert get_settings() is first
        reset_settings()
        assert get_settings() is not first
