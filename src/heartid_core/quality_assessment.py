"""
Heart-rate signal quality assessment for the HeartID core.

This module scores a raw sample batch before any feature work. Structural
problems (too few samples, flat line, implausible values, excessive noise)
reject the batch outright; otherwise seven weighted quality components are
combined into an overall score in [0, 1] that must clear the policy minimum.

Validation is a pure function of the batch and the quality policy. Every
outcome is reported through a QualityReport; only unusable input raises.
"""

from typing import Dict, List, Optional, Tuple

import numpy as np
import structlog

from .constants import CONSISTENCY_SEGMENTS, QUALITY_WEIGHTS
from .data_models import (
    FailureReason,
    QualityReport,
    SampleBatch,
    dedupe_preserving_order,
)
from .exceptions import QualityCheckError
from .feature_extraction import compute_descriptors, successive_differences
from .policy import QualityPolicy

# Initialize structured logger
logger = structlog.get_logger(__name__)

ComponentScore = Tuple[float, List[str]]


class SignalQualityValidator:
    """
    Signal quality validator for heart-rate sample batches.

    Parameters
    ----------
    policy : QualityPolicy, optional
        Validator parameters. Defaults to the enrollment-grade policy.
    weights : Dict[str, float], optional
        Weights of the quality components. Defaults to QUALITY_WEIGHTS.

    Examples
    --------
    >>> validator = SignalQualityValidator()
    >>> report = validator.validate(batch)
    >>> report.is_acceptable, report.failure_reason
    (False, <FailureReason.INSUFFICIENT_SAMPLES: 'insufficient_samples'>)
    """

    def __init__(
        self,
        policy: Optional[QualityPolicy] = None,
        weights: Optional[Dict[str, float]] = None,
    ) -> None:
        self.policy = policy or QualityPolicy()
        self.weights = dict(weights or QUALITY_WEIGHTS)

        unknown = set(self.weights) - set(QUALITY_WEIGHTS)
        if unknown:
            raise QualityCheckError(f"Unknown quality components: {sorted(unknown)}")
        if any(w < 0 for w in self.weights.values()) or sum(self.weights.values()) <= 0:
            raise QualityCheckError("Quality weights must be non-negative and not all zero")

        logger.debug(
            "SignalQualityValidator initialized",
            min_samples=self.policy.min_samples,
            min_quality_score=self.policy.min_quality_score,
        )

    def validate(self, batch: SampleBatch) -> QualityReport:
        """
        Validate a batch against the enrollment-grade sample floor.

        Parameters
        ----------
        batch : SampleBatch
            Raw samples from the capture collaborator.

        Returns
        -------
        QualityReport
            Acceptance decision, score, subscores and recommendations.
        """
        return self._assess(batch, self.policy.min_samples)

    def quick_check(self, batch: SampleBatch) -> QualityReport:
        """Validate a batch against the lower quick-check sample floor."""
        return self._assess(batch, self.policy.quick_check_min_samples)

    def _assess(self, batch: SampleBatch, min_samples: int) -> QualityReport:
        if not isinstance(batch, SampleBatch):
            raise QualityCheckError(
                f"Expected SampleBatch, got {type(batch).__name__}"
            )

        values = batch.values
        count = values.size

        # 1. Sample count floor
        if count < min_samples:
            return self._reject(
                FailureReason.INSUFFICIENT_SAMPLES,
                [
                    f"Extend capture duration to at least {min_samples} samples",
                    "Ensure continuous sensor contact",
                ],
                {"sample_count": count, "min_samples": min_samples},
            )

        # 2. Non-finite readings
        if not np.isfinite(values).all():
            return self._reject(
                FailureReason.OUT_OF_RANGE,
                ["Sensor produced invalid readings - check sensor placement"],
                {
                    "sample_count": count,
                    "non_finite_count": int(np.count_nonzero(~np.isfinite(values))),
                },
            )

        # 3. Flat line
        if np.ptp(values) == 0:
            return self._reject(
                FailureReason.NO_VARIATION,
                [
                    "No heart rate variation detected - check sensor placement",
                    "Ensure skin contact",
                ],
                {"sample_count": count, "constant_value": float(values[0])},
            )

        # 4. Physiological band
        low, high = self.policy.heart_rate_range
        in_range = (values >= low) & (values <= high)
        in_range_ratio = float(np.count_nonzero(in_range) / count)
        mean_hr = float(np.mean(values))

        if not low <= mean_hr <= high or in_range_ratio < self.policy.min_in_range_ratio:
            return self._reject(
                FailureReason.OUT_OF_RANGE,
                ["Improve sensor contact", "Reduce motion during capture"],
                {
                    "sample_count": count,
                    "mean_hr": mean_hr,
                    "in_range_ratio": in_range_ratio,
                },
            )

        # 5. Noise
        noise_level = float(np.mean(np.abs(values - mean_hr)))
        if noise_level > self.policy.max_noise_level:
            return self._reject(
                FailureReason.EXCESSIVE_NOISE,
                [
                    "Significant noise detected - hold still during capture",
                    "Ensure stable sensor contact",
                ],
                {"sample_count": count, "mean_hr": mean_hr, "noise_level": noise_level},
            )

        # 6. Weighted quality components
        components = {
            "sample_count": self._score_sample_count(count),
            "range": self._score_range(values, in_range, in_range_ratio),
            "signal_quality": self._score_signal_quality(mean_hr, noise_level),
            "consistency": self._score_consistency(values, mean_hr),
            "hrv": self._score_hrv(values),
            "completeness": self._score_completeness(values),
            "stability": self._score_stability(values),
        }

        subscores = {name: float(score) for name, (score, _) in components.items()}
        recommendations: List[str] = []
        for _, advice in components.values():
            recommendations.extend(advice)

        overall = self._combine(subscores)
        details = {
            "sample_count": count,
            "mean_hr": mean_hr,
            "min_hr": float(np.min(values)),
            "max_hr": float(np.max(values)),
            "noise_level": noise_level,
            "signal_noise_ratio": mean_hr / max(noise_level, 1.0),
            "in_range_ratio": in_range_ratio,
        }

        is_acceptable = overall >= self.policy.min_quality_score
        if not is_acceptable:
            recommendations.append("Extend capture and hold still for a cleaner signal")

        report = QualityReport(
            is_acceptable=is_acceptable,
            score=overall,
            failure_reason=None if is_acceptable else FailureReason.BELOW_QUALITY_THRESHOLD,
            subscores=subscores,
            recommendations=dedupe_preserving_order(recommendations),
            details=details,
        )

        logger.info(
            "Signal quality assessment completed",
            sample_count=count,
            score=round(overall, 4),
            is_acceptable=is_acceptable,
            subscores=subscores,
        )

        return report

    def _reject(
        self, reason: FailureReason, recommendations: List[str], details: dict
    ) -> QualityReport:
        logger.info(
            "Sample batch rejected",
            failure_reason=reason.value,
            sample_count=details.get("sample_count"),
        )
        return QualityReport(
            is_acceptable=False,
            score=0.0,
            failure_reason=reason,
            recommendations=dedupe_preserving_order(recommendations),
            details=details,
        )

    def _combine(self, subscores: Dict[str, float]) -> float:
        weighted_sum = 0.0
        total_weight = 0.0
        for name, score in subscores.items():
            weight = self.weights.get(name, 0.0)
            weighted_sum += score * weight
            total_weight += weight
        overall = weighted_sum / total_weight if total_weight > 0 else 0.0
        return max(0.0, min(1.0, overall))

    def _score_sample_count(self, count: int) -> ComponentScore:
        min_samples = self.policy.min_samples
        max_samples = self.policy.max_samples

        if count < min_samples:
            # Only reachable from quick checks
            return (
                count / min_samples * 0.6,
                [f"Extend capture duration to {min_samples} samples"],
            )
        if count > max_samples:
            return 0.95, ["Optimize capture duration"]

        optimal = (min_samples + max_samples) / 2
        distance = abs(count - optimal) / optimal
        return max(0.8, 1.0 - distance * 0.2), []

    def _score_range(
        self, values: np.ndarray, in_range: np.ndarray, in_range_ratio: float
    ) -> ComponentScore:
        advice = []
        if in_range_ratio < 0.8:
            advice.append("Improve sensor contact for stable readings")

        valid_mean = float(np.mean(values[in_range])) if in_range.any() else 0.0
        plausible = 50.0 <= valid_mean <= 180.0
        if not plausible:
            advice.append("Unusual heart rate detected - ensure proper measurement conditions")

        return in_range_ratio * 0.8 + (0.2 if plausible else 0.0), advice

    def _score_signal_quality(self, mean_hr: float, noise_level: float) -> ComponentScore:
        advice = []
        signal_noise_ratio = mean_hr / max(noise_level, 1.0)
        score = 0.5

        if noise_level <= 5.0:
            score += 0.3
        elif noise_level <= 10.0:
            score += 0.2
            advice.append("Reduce movement during capture for better quality")
        elif noise_level <= self.policy.max_noise_level:
            score += 0.1
            advice.append("Hold still during capture to reduce noise")

        if signal_noise_ratio > 8.0:
            score += 0.2
        elif signal_noise_ratio > 5.0:
            score += 0.1

        return min(1.0, score), advice

    def _score_consistency(self, values: np.ndarray, mean_hr: float) -> ComponentScore:
        segments = np.array_split(values, min(CONSISTENCY_SEGMENTS, values.size))
        segment_means = np.array([segment.mean() for segment in segments])
        variation = float(np.mean(np.abs(segment_means - mean_hr)))
        ratio = variation / max(mean_hr, 1.0)

        if ratio <= 0.05:
            return 1.0, []
        if ratio <= 0.1:
            return 0.9, []
        if ratio <= 0.2:
            return 0.7, ["Maintain steady position during capture"]
        return 0.4, ["High variation detected - ensure consistent sensor contact"]

    def _score_hrv(self, values: np.ndarray) -> ComponentScore:
        descriptors = compute_descriptors(values)
        rmssd = descriptors["rmssd"]
        pnn50 = descriptors["pnn50"]
        variability = descriptors["overall_variability"]

        advice = []
        score = 0.5

        if 20.0 <= rmssd <= 100.0:
            score += 0.2
        elif rmssd < 10.0:
            advice.append("Very low heart rate variability detected")

        if 0.05 <= pnn50 <= 0.5:
            score += 0.15

        if 5.0 <= variability <= 50.0:
            score += 0.15
        else:
            advice.append("Unusual heart rate variability pattern")

        if rmssd > 0 and pnn50 > 0:
            score += 0.1

        return min(1.0, score), advice

    def _score_completeness(self, values: np.ndarray) -> ComponentScore:
        advice = []
        score = 1.0

        zero_ratio = float(np.count_nonzero(values == 0) / values.size)
        if zero_ratio > 0.1:
            score -= zero_ratio * 0.5
            advice.append("Data gaps detected - ensure continuous sensor contact")

        unique_ratio = np.unique(values).size / values.size
        if unique_ratio < 0.1:
            score -= 0.4
            advice.append("Insufficient variation - check sensor placement")
        elif unique_ratio < 0.3:
            score -= 0.2
            advice.append("Limited variation detected")

        return max(0.0, score), advice

    def _score_stability(self, values: np.ndarray) -> ComponentScore:
        diffs = successive_differences(values)
        average_change = float(np.mean(diffs)) if diffs.size else 0.0

        if average_change <= 2.0:
            return 1.0, []
        if average_change <= 5.0:
            return 0.9, []
        if average_change <= 10.0:
            return 0.7, ["Reduce movement for more stable readings"]
        if average_change <= 20.0:
            return 0.5, ["Significant movement detected - hold still"]
        return 0.2, ["Excessive movement - ensure stable sensor contact"]


def validate_batch(batch: SampleBatch, policy: Optional[QualityPolicy] = None) -> QualityReport:
    """
    Convenience function to validate a batch with a default validator.

    Parameters
    ----------
    batch : SampleBatch
        Raw samples.
    policy : QualityPolicy, optional
        Validator parameters.

    Returns
    -------
    QualityReport
        Validation result.
    """
    return SignalQualityValidator(policy).validate(batch)
