"""
Test environment-driven settings.
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from checkout_integrity.config import Settings


def test_defaults(test_settings):
    assert test_settings.storage_backend == "memory"
    assert test_settings.uses_redis is False
    assert test_settings.is_production is False
    assert test_settings.velocity_window_ms == 15 * 60 * 1000
    assert test_settings.risk_thresholds().allow_threshold == 30
    assert test_settings.risk_thresholds().block_threshold == 70
    assert test_settings.weights().weight_for("chain_hash_mutation") == 1.5


def test_environment_prefix(monkeypatch):
    monkeypatch.setenv("CHECKOUT_INTEGRITY_STORAGE_BACKEND", "Redis")
    monkeypatch.setenv("CHECKOUT_INTEGRITY_VELOCITY_MAX_SESSIONS_PER_EMAIL", "3")
    monkeypatch.setenv("CHECKOUT_INTEGRITY_LOG_LEVEL", "warning")
    monkeypatch.setenv("CHECKOUT_INTEGRITY_APP_ENV", "production")

    settings = Settings(_env_file=None)

    assert settings.uses_redis is True
    assert settings.velocity_limits().max_sessions_per_email == 3
    assert settings.log_level == "WARNING"
    assert settings.is_production is True


def test_signal_weight_overrides(monkeypatch):
    monkeypatch.setenv("CHECKOUT_INTEGRITY_SIGNAL_WEIGHTS", '{"geo_mismatch": 2.0, "promo_abuse": 0.5}')

    weights = Settings(_env_file=None).weights()

    assert weights.weight_for("geo_mismatch") == 2.0
    assert weights.weight_for("promo_abuse") == 0.5
    assert weights.weight_for("velocity_ip") == 0.8
    assert weights.weight_for("unlisted") == 1.0


@pytest.mark.parametrize("overrides", [
    {"log_level": "VERBOSE"},
    {"storage_backend": "postgres"},
    {"allow_threshold": 80, "block_threshold": 70},
    {"signal_weights": {"geo_mismatch": 9.0}},
    {"velocity_window_ms": 0},
])
def test_invalid_settings_fail_at_startup(overrides):
    with pytest.raises(PydanticValidationError):
        Settings(_env_file=None, **overrides)
