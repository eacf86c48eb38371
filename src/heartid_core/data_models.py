"""
Data models for the HeartID core.

This module defines the core data structures that flow through the
enrollment and authentication pipeline: raw sample batches, quality
reports, feature vectors, stored templates, and the typed outcomes
returned to callers. All models are dataclasses; the ones that must not
change after creation are frozen.
"""

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

import numpy as np

from .constants import (
    FEATURE_NAMES,
    RECOMMENDED_CAPTURE_SECONDS,
    SECURITY_LEVEL_THRESHOLDS,
)


@dataclass(frozen=True)
class HeartRateSample:
    """A single raw heart-rate reading in BPM with its capture timestamp."""

    value: float
    timestamp: datetime


@dataclass(frozen=True)
class SampleBatch:
    """
    Ordered, non-empty batch of raw heart-rate samples.

    Batches are produced by the capture collaborator once a capture window
    completes and are consumed once by the validator. Values are raw sensor
    output and are not sanitized here.

    Parameters
    ----------
    samples : Tuple[HeartRateSample, ...]
        Samples in insertion order.

    Examples
    --------
    >>> batch = SampleBatch.from_values([72.0, 74.5, 73.1])
    >>> batch.size
    3
    """

    samples: Tuple[HeartRateSample, ...]

    def __post_init__(self) -> None:
        if not isinstance(self.samples, tuple):
            object.__setattr__(self, "samples", tuple(self.samples))
        if not self.samples:
            raise ValueError("SampleBatch must contain at least one sample")

    @classmethod
    def from_values(
        cls,
        values: Iterable[float],
        start: Optional[datetime] = None,
        interval_seconds: float = 1.0,
    ) -> "SampleBatch":
        """
        Build a batch from bare BPM values spaced at a fixed interval.

        Parameters
        ----------
        values : Iterable[float]
            Heart-rate readings in BPM.
        start : datetime, optional
            Timestamp of the first reading. Defaults to the current UTC time.
        interval_seconds : float, default=1.0
            Spacing between consecutive readings.

        Returns
        -------
        SampleBatch
            Batch with one sample per value.
        """
        start = start or datetime.now(timezone.utc)
        step = timedelta(seconds=interval_seconds)
        return cls(
            tuple(
                HeartRateSample(float(value), start + i * step)
                for i, value in enumerate(values)
            )
        )

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[float, datetime]]) -> "SampleBatch":
        """Build a batch from ``(value, timestamp)`` pairs."""
        return cls(tuple(HeartRateSample(float(v), ts) for v, ts in pairs))

    @property
    def values(self) -> np.ndarray:
        """BPM values as a float64 array in insertion order."""
        return np.fromiter(
            (sample.value for sample in self.samples),
            dtype=np.float64,
            count=len(self.samples),
        )

    @property
    def size(self) -> int:
        return len(self.samples)

    @property
    def duration_seconds(self) -> float:
        """Elapsed time between the first and last sample."""
        return (self.samples[-1].timestamp - self.samples[0].timestamp).total_seconds()

    def __len__(self) -> int:
        return len(self.samples)


class FailureReason(str, Enum):
    """Why a sample batch was rejected by the quality validator."""

    INSUFFICIENT_SAMPLES = "insufficient_samples"
    OUT_OF_RANGE = "out_of_range"
    NO_VARIATION = "no_variation"
    EXCESSIVE_NOISE = "excessive_noise"
    BELOW_QUALITY_THRESHOLD = "below_quality_threshold"


@dataclass(frozen=True)
class QualityReport:
    """
    Result of validating a single sample batch.

    Parameters
    ----------
    is_acceptable : bool
        Whether the batch may be passed to feature extraction.
    score : float
        Combined quality score between 0.0 and 1.0.
    failure_reason : Optional[FailureReason], default=None
        Reason for rejection; None when the batch is acceptable.
    subscores : Mapping[str, float]
        Individual quality components, each between 0.0 and 1.0.
    recommendations : Tuple[str, ...]
        Ordered, de-duplicated advice for the person capturing.
    details : Mapping[str, Any]
        Diagnostic statistics (sample count, mean heart rate, noise level).
    """

    is_acceptable: bool
    score: float
    failure_reason: Optional[FailureReason] = None
    subscores: Mapping[str, float] = field(default_factory=dict)
    recommendations: Tuple[str, ...] = ()
    details: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not 0.0 <= self.score <= 1.0:
            raise ValueError("score must be between 0.0 and 1.0")
        if self.is_acceptable and self.failure_reason is not None:
            raise ValueError("an acceptable report cannot carry a failure reason")
        if not self.is_acceptable and self.failure_reason is None:
            raise ValueError("a rejected report must carry a failure reason")

    @property
    def summary(self) -> str:
        """Short human-readable summary used in retry messages."""
        if self.is_acceptable:
            return f"Signal quality {self.score:.0%}"
        advice = self.recommendations[0] if self.recommendations else "Retry capture"
        return f"Capture rejected ({self.failure_reason.value}): {advice}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert the report to a dictionary for serialization."""
        return {
            "is_acceptable": self.is_acceptable,
            "score": self.score,
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
            "subscores": dict(self.subscores),
            "recommendations": list(self.recommendations),
            "details": dict(self.details),
        }


@dataclass(frozen=True)
class FeatureVector:
    """
    Fixed set of heart-rate variability and statistical descriptors.

    Every descriptor must be a finite, non-negative number and ``pnn50`` is a
    fraction in [0, 1]. Construction fails otherwise, so an instance is always
    safe to store or compare.

    Parameters
    ----------
    mean_hr, min_hr, max_hr : float
        Mean, minimum and maximum heart rate in BPM.
    sdnn : float
        Population standard deviation of the readings.
    rmssd : float
        Root mean square of successive differences.
    pnn50 : float
        Fraction of successive differences exceeding 50 BPM.
    triangular_index : float
        ``(max - min) / mean`` approximation of the HRV triangular index.
    overall_variability : float
        Mean absolute successive difference.
    """

    mean_hr: float
    min_hr: float
    max_hr: float
    sdnn: float
    rmssd: float
    pnn50: float
    triangular_index: float
    overall_variability: float

    def __post_init__(self) -> None:
        for name in FEATURE_NAMES:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{name} must be a number")
            if not math.isfinite(value):
                raise ValueError(f"{name} must be finite")
            if value < 0:
                raise ValueError(f"{name} must be non-negative")
            object.__setattr__(self, name, float(value))

        if self.pnn50 > 1.0:
            raise ValueError("pnn50 must be a fraction between 0.0 and 1.0")
        if self.min_hr > self.max_hr:
            raise ValueError("min_hr cannot exceed max_hr")

    @property
    def is_flat(self) -> bool:
        """True for a zero-variability (flat-line) signal."""
        return self.sdnn == 0.0

    def as_dict(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in FEATURE_NAMES}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FeatureVector":
        missing = [name for name in FEATURE_NAMES if name not in data]
        if missing:
            raise ValueError(f"Missing feature descriptors: {missing}")
        return cls(**{name: data[name] for name in FEATURE_NAMES})


class SecurityLevel(str, Enum):
    """Named policy bundle fixing the approve/retry confidence thresholds."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    MAXIMUM = "maximum"

    @property
    def approve_threshold(self) -> float:
        return SECURITY_LEVEL_THRESHOLDS[self.value][0]

    @property
    def retry_threshold(self) -> float:
        return SECURITY_LEVEL_THRESHOLDS[self.value][1]

    @property
    def recommended_capture_seconds(self) -> float:
        return RECOMMENDED_CAPTURE_SECONDS[self.value]

    @property
    def description(self) -> str:
        return {
            SecurityLevel.LOW: "Lower security, faster authentication",
            SecurityLevel.MEDIUM: "Balanced security and convenience",
            SecurityLevel.HIGH: "Higher security, more precise matching required",
            SecurityLevel.MAXIMUM: "Maximum security, strictest pattern matching",
        }[self]


@dataclass(frozen=True)
class Template:
    """
    Enrolled biometric template for one identity.

    Templates are never updated in place; ``record_authentication`` returns
    the successor that replaces the stored one.

    Parameters
    ----------
    template_id : str
        Unique identifier of this enrollment.
    identity_id : str
        Identity that owns the template.
    created_at : datetime
        Enrollment timestamp.
    feature_vector : FeatureVector
        Descriptors captured at enrollment.
    security_level : SecurityLevel
        Policy applied when authenticating against this template.
    last_authenticated_at : Optional[datetime], default=None
        Timestamp of the last approved authentication.
    authentication_count : int, default=0
        Number of approved authentications.
    """

    template_id: str
    identity_id: str
    created_at: datetime
    feature_vector: FeatureVector
    security_level: SecurityLevel
    last_authenticated_at: Optional[datetime] = None
    authentication_count: int = 0

    def __post_init__(self) -> None:
        if not self.template_id or not isinstance(self.template_id, str):
            raise ValueError("template_id must be a non-empty string")
        if not self.identity_id or not isinstance(self.identity_id, str):
            raise ValueError("identity_id must be a non-empty string")
        if not isinstance(self.authentication_count, int) or self.authentication_count < 0:
            raise ValueError("authentication_count must be a non-negative integer")

    def record_authentication(self, authenticated_at: datetime) -> "Template":
        """Return the template as it stands after an approved authentication."""
        return replace(
            self,
            last_authenticated_at=authenticated_at,
            authentication_count=self.authentication_count + 1,
        )


class OutcomeKind(str, Enum):
    APPROVED = "approved"
    DENIED = "denied"
    RETRY_REQUESTED = "retry_requested"
    ERROR = "error"


@dataclass(frozen=True)
class AuthenticationOutcome:
    """Base class of the tagged authentication result."""

    kind = None

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError


@dataclass(frozen=True)
class Approved(AuthenticationOutcome):
    confidence: float
    kind = OutcomeKind.APPROVED

    def to_dict(self) -> Dict[str, Any]:
        return {"outcome": self.kind.value, "confidence": self.confidence}


@dataclass(frozen=True)
class Denied(AuthenticationOutcome):
    reason: str
    confidence: Optional[float] = None
    kind = OutcomeKind.DENIED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.kind.value,
            "reason": self.reason,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class RetryRequested(AuthenticationOutcome):
    message: str
    confidence: Optional[float] = None
    quality_report: Optional[QualityReport] = None
    kind = OutcomeKind.RETRY_REQUESTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.kind.value,
            "message": self.message,
            "confidence": self.confidence,
            "quality_report": (
                self.quality_report.to_dict() if self.quality_report else None
            ),
        }


@dataclass(frozen=True)
class Error(AuthenticationOutcome):
    message: str
    kind = OutcomeKind.ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {"outcome": self.kind.value, "message": self.message}


@dataclass(frozen=True)
class AttemptRecord:
    """
    One authentication attempt within a session; immutable once written.

    ``similarity_score`` is None when the capture was rejected for quality
    and never reached the scorer.
    """

    timestamp: datetime
    similarity_score: Optional[float]
    outcome: AuthenticationOutcome

    @property
    def counts_toward_lockout(self) -> bool:
        return self.outcome.kind is OutcomeKind.DENIED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "similarity_score": self.similarity_score,
            "outcome": self.outcome.to_dict(),
        }


@dataclass(frozen=True)
class EnrollmentResult:
    """
    Result of an enrollment call.

    Parameters
    ----------
    success : bool
        Whether a template was committed.
    template_id : Optional[str], default=None
        Identifier of the committed template.
    quality_report : Optional[QualityReport], default=None
        Diagnostics of the enrollment capture, when it was assessed.
    message : Optional[str], default=None
        Reason for failure, or a short confirmation.
    """

    success: bool
    template_id: Optional[str] = None
    quality_report: Optional[QualityReport] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "template_id": self.template_id,
            "quality_report": (
                self.quality_report.to_dict() if self.quality_report else None
            ),
            "message": self.message,
        }


def dedupe_preserving_order(items: Sequence[str]) -> Tuple[str, ...]:
    """Drop repeated strings while keeping first-seen order."""
    return tuple(dict.fromkeys(items))
