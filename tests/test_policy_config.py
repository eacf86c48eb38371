"""
Tests for policy loading and configuration.
"""

from datetime import timedelta

import pytest

from heartid_core import config
from heartid_core.data_models import SecurityLevel
from heartid_core.exceptions import ConfigurationError
from heartid_core.policy import LevelThresholds, QualityPolicy, SecurityPolicy, load_policy


class TestLoadPolicy:
    """Test cases for building the policy from the environment."""

    def test_defaults(self):
        policy = load_policy()

        assert policy.quality.min_samples == 200
        assert policy.quality.quick_check_min_samples == 50
        assert policy.quality.min_quality_score == 0.7
        assert policy.max_attempts == 3
        assert policy.session_timeout == timedelta(minutes=5)
        assert policy.default_security_level is SecurityLevel.MEDIUM
        assert policy.capture_duration_bounds == (6, 16)
        assert policy.lockout_enabled
        assert policy.thresholds_for(SecurityLevel.HIGH) == LevelThresholds(0.85, 0.6)

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("HEARTID_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("HEARTID_SESSION_TIMEOUT_SECONDS", "120")
        monkeypatch.setenv("HEARTID_SECURITY_LEVEL", "HIGH")
        monkeypatch.setenv("HEARTID_LOCKOUT_ENABLED", "false")
        monkeypatch.setenv("HEARTID_LEVEL_THRESHOLDS", '{"low": [0.65, 0.45]}')

        policy = load_policy()

        assert policy.max_attempts == 5
        assert policy.session_timeout == timedelta(seconds=120)
        assert policy.default_security_level is SecurityLevel.HIGH
        assert not policy.lockout_enabled
        assert policy.thresholds_for(SecurityLevel.LOW) == LevelThresholds(0.65, 0.45)
        assert policy.thresholds_for(SecurityLevel.MEDIUM) == LevelThresholds(0.75, 0.5)

    def test_policy_is_read_at_call_time(self, monkeypatch):
        first = load_policy()
        monkeypatch.setenv("HEARTID_MAX_ATTEMPTS", "7")

        assert first.max_attempts == 3
        assert load_policy().max_attempts == 7

    @pytest.mark.parametrize(
        "name, value",
        [
            ("HEARTID_MAX_ATTEMPTS", "three"),
            ("HEARTID_MIN_QUALITY_SCORE", "high"),
            ("HEARTID_SECURITY_LEVEL", "paranoid"),
            ("HEARTID_LEVEL_THRESHOLDS", "[0.9, 0.7]"),
            ("HEARTID_LEVEL_THRESHOLDS", '{"high": [0.5, 0.8]}'),
            ("HEARTID_LEVEL_THRESHOLDS", '{"extreme": [0.95, 0.8]}'),
            ("HEARTID_MAX_ATTEMPTS", "0"),
            ("HEARTID_QUICK_CHECK_MIN_SAMPLES", "500"),
        ],
    )
    def test_invalid_values(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(ConfigurationError):
            load_policy()


class TestSecurityPolicy:
    """Test cases for SecurityPolicy helpers."""

    @pytest.fixture
    def policy(self):
        return SecurityPolicy()

    def test_recommended_capture_duration(self, policy):
        assert policy.capture_duration_for(SecurityLevel.LOW) == 6
        assert policy.capture_duration_for(SecurityLevel.HIGH) == 10

    def test_requested_duration_is_clamped(self, policy):
        assert policy.capture_duration_for(SecurityLevel.MEDIUM, requested=30) == 16
        assert policy.capture_duration_for(SecurityLevel.MEDIUM, requested=2) == 6
        assert policy.capture_duration_for(SecurityLevel.MEDIUM, requested=9) == 9

    def test_thresholds_must_be_ordered(self):
        with pytest.raises(ConfigurationError):
            LevelThresholds(0.5, 0.6)

    def test_quality_policy_validation(self):
        with pytest.raises(ConfigurationError):
            QualityPolicy(min_samples=100, max_samples=50)

    def test_to_dict(self, policy):
        data = policy.to_dict()

        assert data["max_attempts"] == 3
        assert data["thresholds"]["maximum"] == [0.9, 0.7]


class TestConfiguration:
    """Test cases for the configuration module."""

    def test_validate_configuration(self):
        assert config.validate_configuration()

    def test_validate_configuration_rejects_bad_policy(self, monkeypatch):
        monkeypatch.setenv("HEARTID_MIN_QUALITY_SCORE", "1.5")
        with pytest.raises(ConfigurationError):
            config.validate_configuration()

    def test_config_summary(self):
        summary = config.get_config_summary()

        assert summary["policy"]["max_attempts"] == 3
        assert "template_store" in summary

    def test_passphrase_required(self, monkeypatch):
        monkeypatch.delenv("HEARTID_PASSPHRASE", raising=False)
        with pytest.raises(ConfigurationError):
            config.get_template_passphrase()

        monkeypatch.setenv("HEARTID_PASSPHRASE", "secret")
        assert config.get_template_passphrase() == "secret"
