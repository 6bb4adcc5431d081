"""Tests for core/config.py -- Settings defaults, environment overrides and policy validation."""

import pydantic
import pytest

from core.config import Settings, get_settings


def _settings(**kwargs) -> Settings:
    return Settings(_env_file=None, **kwargs)


class TestDefaults:
    def test_policy_defaults(self):
        s = _settings()
        assert s.lockout_threshold == 5
        assert s.lockout_minutes == 30
        assert s.totp_window_steps == 2
        assert s.backup_code_count == 10
        assert s.session_ttl_hours == 24
        assert s.suspicious_failure_threshold == 5
        assert s.suspicious_window_minutes == 30
        assert s.known_ip_window_days == 7
        assert s.geo_lookup_url == ""
        assert s.audit_max_page_size == 100

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("LOCKOUT_THRESHOLD", "3")
        monkeypatch.setenv("TOTP_ISSUER", "Example Corp")
        s = _settings()
        assert s.lockout_threshold == 3
        assert s.totp_issuer == "Example Corp"

    def test_get_settings_is_cached(self):
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()


class TestValidation:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"lockout_threshold": 0},
            {"lockout_minutes": 0},
            {"totp_window_steps": -1},
            {"backup_code_count": 0},
            {"geo_lookup_url": "http://ip-api.com/json/"},
        ],
    )
    def test_rejects_broken_policy(self, kwargs):
        with pytest.raises(pydantic.ValidationError):
            _settings(**kwargs)

    def test_geo_url_with_placeholder_accepted(self):
        assert _settings(geo_lookup_url="http://ip-api.com/json/{ip}").geo_lookup_url.endswith("{ip}")

    def test_wide_window_warns(self, caplog):
        with caplog.at_level("WARNING", logger="accountguard.config"):
            _settings(totp_window_steps=6)
        assert "TOTP_WINDOW_STEPS=6" in caplog.text
