"""Unit tests for environment-based settings.

Tests verify:
- Gateway and cache defaults
- SUBSIDY_ prefixed environment overrides
- Cache window validation
- Singleton behavior of get_settings
"""

import pytest
from pydantic import ValidationError

from subsidy_hub.config.settings import Settings, get_settings


@pytest.mark.unit
def test_defaults(monkeypatch):
    """Defaults follow the upstream quota."""
    monkeypatch.delenv("SUBSIDY_GATEWAY_MAX_CONCURRENT", raising=False)
    settings = Settings()

    assert settings.gateway_max_concurrent == 2
    assert settings.gateway_min_interval_seconds == 0.5
    assert settings.gateway_backoff_base_seconds == 3.0
    assert settings.gateway_backoff_cap_seconds == 60.0
    assert settings.cache_fresh_ttl_seconds == 300.0
    assert settings.cache_stale_ttl_seconds == 1800.0
    assert settings.rebate_scale == 10000
    assert settings.default_base_margin == 50000.0


@pytest.mark.unit
def test_environment_override(monkeypatch):
    """SUBSIDY_ prefixed variables override defaults."""
    monkeypatch.setenv("SUBSIDY_GATEWAY_MAX_CONCURRENT", "4")
    monkeypatch.setenv("SUBSIDY_CACHE_FRESH_TTL_SECONDS", "60")
    monkeypatch.setenv("SUBSIDY_DEFAULT_BASE_MARGIN", "30000")

    settings = Settings()

    assert settings.gateway_max_concurrent == 4
    assert settings.cache_fresh_ttl_seconds == 60.0
    assert settings.default_base_margin == 30000.0


@pytest.mark.unit
def test_stale_window_must_cover_fresh_window(monkeypatch):
    """A stale TTL shorter than the fresh TTL is rejected."""
    monkeypatch.setenv("SUBSIDY_CACHE_FRESH_TTL_SECONDS", "600")
    monkeypatch.setenv("SUBSIDY_CACHE_STALE_TTL_SECONDS", "300")

    with pytest.raises(ValidationError) as exc_info:
        Settings()

    assert "cache_stale_ttl_seconds" in str(exc_info.value)


@pytest.mark.unit
def test_invalid_concurrency_rejected(monkeypatch):
    monkeypatch.setenv("SUBSIDY_GATEWAY_MAX_CONCURRENT", "0")
    with pytest.raises(ValidationError):
        Settings()


@pytest.mark.unit
def test_settings_singleton():
    """get_settings returns one cached instance until cleared."""
    first = get_settings()
    assert get_settings() is first

    get_settings.cache_clear()
    assert get_settings() is not first
