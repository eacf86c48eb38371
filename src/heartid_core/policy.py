"""
Security and quality policy objects for the HeartID core.

Policies are plain data. ``load_policy`` builds a ``SecurityPolicy`` from
the environment; the decision engine calls it once per enrollment and once
per authentication session, never in the middle of one.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Mapping, Optional, Tuple

import structlog

from .config import read_policy_environment
from .constants import (
    HEART_RATE_RANGE,
    LOCKOUT_PERIODS_MINUTES,
    MAX_ATTEMPTS,
    MAX_CAPTURE_SECONDS,
    MAX_NOISE_LEVEL,
    MAX_SAMPLES,
    MIN_CAPTURE_SECONDS,
    MIN_IN_RANGE_RATIO,
    MIN_QUALITY_SCORE,
    MIN_SAMPLES,
    QUICK_CHECK_MIN_SAMPLES,
    SESSION_TIMEOUT_SECONDS,
)
from .data_models import SecurityLevel
from .exceptions import ConfigurationError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class LevelThresholds:
    """Approve and retry confidence thresholds of one security level."""

    approve_threshold: float
    retry_threshold: float

    def __post_init__(self) -> None:
        if not (0.0 < self.retry_threshold < self.approve_threshold < 1.0):
            raise ConfigurationError(
                "Thresholds must satisfy 0 < retry < approve < 1",
                context={
                    "approve_threshold": self.approve_threshold,
                    "retry_threshold": self.retry_threshold,
                },
            )


def _default_thresholds() -> Dict[SecurityLevel, LevelThresholds]:
    return {
        level: LevelThresholds(level.approve_threshold, level.retry_threshold)
        for level in SecurityLevel
    }


@dataclass(frozen=True)
class QualityPolicy:
    """
    Parameters of the signal quality validator.

    Parameters
    ----------
    min_samples : int, default=MIN_SAMPLES
        Sample-count floor for enrollment-grade captures.
    quick_check_min_samples : int, default=QUICK_CHECK_MIN_SAMPLES
        Lower floor used by quick checks.
    max_samples : int, default=MAX_SAMPLES
        Count above which the sample-count subscore is slightly reduced.
    min_quality_score : float, default=MIN_QUALITY_SCORE
        Minimum combined score for acceptance.
    heart_rate_range : Tuple[float, float], default=HEART_RATE_RANGE
        Physiologically plausible band in BPM.
    min_in_range_ratio : float, default=MIN_IN_RANGE_RATIO
        Minimum fraction of readings inside the band.
    max_noise_level : float, default=MAX_NOISE_LEVEL
        Mean absolute deviation above which a capture is too noisy.
    """

    min_samples: int = MIN_SAMPLES
    quick_check_min_samples: int = QUICK_CHECK_MIN_SAMPLES
    max_samples: int = MAX_SAMPLES
    min_quality_score: float = MIN_QUALITY_SCORE
    heart_rate_range: Tuple[float, float] = HEART_RATE_RANGE
    min_in_range_ratio: float = MIN_IN_RANGE_RATIO
    max_noise_level: float = MAX_NOISE_LEVEL

    def __post_init__(self) -> None:
        if self.min_samples < 1:
            raise ConfigurationError("min_samples must be at least 1")
        if not 1 <= self.quick_check_min_samples <= self.min_samples:
            raise ConfigurationError(
                "quick_check_min_samples must be between 1 and min_samples"
            )
        if self.max_samples < self.min_samples:
            raise ConfigurationError("max_samples cannot be below min_samples")
        if not 0.0 <= self.min_quality_score <= 1.0:
            raise ConfigurationError("min_quality_score must be between 0.0 and 1.0")
        low, high = self.heart_rate_range
        if not 0 < low < high:
            raise ConfigurationError("heart_rate_range must satisfy 0 < low < high")
        if not 0.0 < self.min_in_range_ratio <= 1.0:
            raise ConfigurationError("min_in_range_ratio must be in (0, 1]")
        if self.max_noise_level <= 0:
            raise ConfigurationError("max_noise_level must be positive")


@dataclass(frozen=True)
class SecurityPolicy:
    """
    Complete policy consulted by the decision engine.

    Parameters
    ----------
    quality : QualityPolicy
        Validator parameters.
    thresholds : Mapping[SecurityLevel, LevelThresholds]
        Approve/retry thresholds per security level.
    default_security_level : SecurityLevel, default=SecurityLevel.MEDIUM
        Level assigned to new enrollments that do not request one.
    max_attempts : int, default=MAX_ATTEMPTS
        Denied attempts after which a session is locked out.
    session_timeout : timedelta
        Session lifetime measured from its first attempt.
    capture_duration_bounds : Tuple[float, float]
        Allowed capture window in seconds.
    lockout_enabled : bool, default=True
        Whether lockouts impose a progressive cooldown.
    lockout_periods : Tuple[timedelta, ...]
        Cooldown escalation applied after consecutive lockouts.
    """

    quality: QualityPolicy = field(default_factory=QualityPolicy)
    thresholds: Mapping[SecurityLevel, LevelThresholds] = field(
        default_factory=_default_thresholds
    )
    default_security_level: SecurityLevel = SecurityLevel.MEDIUM
    max_attempts: int = MAX_ATTEMPTS
    session_timeout: timedelta = timedelta(seconds=SESSION_TIMEOUT_SECONDS)
    capture_duration_bounds: Tuple[float, float] = (
        MIN_CAPTURE_SECONDS,
        MAX_CAPTURE_SECONDS,
    )
    lockout_enabled: bool = True
    lockout_periods: Tuple[timedelta, ...] = tuple(
        timedelta(minutes=m) for m in LOCKOUT_PERIODS_MINUTES
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        if self.session_timeout <= timedelta(0):
            raise ConfigurationError("session_timeout must be positive")
        low, high = self.capture_duration_bounds
        if not 0 < low <= high:
            raise ConfigurationError("capture_duration_bounds must satisfy 0 < min <= max")
        missing = [level.value for level in SecurityLevel if level not in self.thresholds]
        if missing:
            raise ConfigurationError(f"Missing thresholds for security levels {missing}")
        if self.lockout_enabled and not self.lockout_periods:
            raise ConfigurationError("lockout_periods cannot be empty when lockout is enabled")

    def thresholds_for(self, level: SecurityLevel) -> LevelThresholds:
        return self.thresholds[level]

    def capture_duration_for(
        self, level: SecurityLevel, requested: Optional[float] = None
    ) -> float:
        """
        Capture window in seconds for a security level.

        The requested duration (or the level's recommendation) is clamped
        into ``capture_duration_bounds``.
        """
        low, high = self.capture_duration_bounds
        duration = requested if requested is not None else level.recommended_capture_seconds
        return max(low, min(high, duration))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "min_samples": self.quality.min_samples,
            "quick_check_min_samples": self.quality.quick_check_min_samples,
            "min_quality_score": self.quality.min_quality_score,
            "default_security_level": self.default_security_level.value,
            "max_attempts": self.max_attempts,
            "session_timeout_seconds": self.session_timeout.total_seconds(),
            "capture_duration_bounds": list(self.capture_duration_bounds),
            "lockout_enabled": self.lockout_enabled,
            "thresholds": {
                level.value: [t.approve_threshold, t.retry_threshold]
                for level, t in self.thresholds.items()
            },
        }


def _parse_level(value: str) -> SecurityLevel:
    try:
        return SecurityLevel(value)
    except ValueError:
        raise ConfigurationError(
            f"Unknown security level '{value}'",
            config_key="HEARTID_SECURITY_LEVEL",
            config_value=value,
        )


def _merge_thresholds(
    overrides: Optional[Mapping[str, Any]],
) -> Dict[SecurityLevel, LevelThresholds]:
    thresholds = _default_thresholds()
    if not overrides:
        return thresholds

    for name, pair in overrides.items():
        level = _parse_level(name)
        try:
            approve, retry = pair
            thresholds[level] = LevelThresholds(float(approve), float(retry))
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"Thresholds for '{name}' must be [approve, retry]",
                config_key="HEARTID_LEVEL_THRESHOLDS",
                config_value=str(pair),
            )
    return thresholds


def load_policy() -> SecurityPolicy:
    """
    Build a SecurityPolicy from the current environment.

    Returns
    -------
    SecurityPolicy
        Freshly loaded policy.

    Raises
    ------
    ConfigurationError
        If any policy variable is malformed or inconsistent.
    """
    raw = read_policy_environment()

    quality = QualityPolicy(
        min_samples=raw["min_samples"],
        quick_check_min_samples=raw["quick_check_min_samples"],
        min_quality_score=raw["min_quality_score"],
    )
    policy = SecurityPolicy(
        quality=quality,
        thresholds=_merge_thresholds(raw["level_thresholds"]),
        default_security_level=_parse_level(raw["default_security_level"]),
        max_attempts=raw["max_attempts"],
        session_timeout=timedelta(seconds=raw["session_timeout_seconds"]),
        capture_duration_bounds=(raw["min_capture_seconds"], raw["max_capture_seconds"]),
        lockout_enabled=raw["lockout_enabled"],
    )

    logger.debug("Security policy loaded", **policy.to_dict())
    return policy
