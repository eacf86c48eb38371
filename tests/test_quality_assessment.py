"""
Tests for signal quality assessment.
"""

import numpy as np
import pytest

from heartid_core.data_models import FailureReason, SampleBatch
from heartid_core.exceptions import QualityCheckError
from heartid_core.policy import QualityPolicy
from heartid_core.quality_assessment import SignalQualityValidator, validate_batch

from conftest import make_batch


class TestSignalQualityValidator:
    """Test cases for SignalQualityValidator."""

    @pytest.fixture
    def validator(self):
        return SignalQualityValidator()

    def test_realistic_batch_is_accepted(self, validator, realistic_batch):
        """300 in-range samples with mean 75 and sd 8 pass with a good score."""
        report = validator.validate(realistic_batch)

        assert report.is_acceptable
        assert report.failure_reason is None
        assert report.score >= 0.6
        assert set(report.subscores) == {
            "sample_count",
            "range",
            "signal_quality",
            "consistency",
            "hrv",
            "completeness",
            "stability",
        }
        assert all(0.0 <= value <= 1.0 for value in report.subscores.values())
        assert report.details["sample_count"] == 300

    def test_below_sample_floor(self, validator, rng):
        report = validator.validate(make_batch(rng.normal(75.0, 8.0, 199)))

        assert not report.is_acceptable
        assert report.failure_reason is FailureReason.INSUFFICIENT_SAMPLES
        assert report.score == 0.0
        assert report.recommendations

    def test_single_sample_is_insufficient(self, validator):
        report = validator.validate(make_batch([72.0]))
        assert report.failure_reason is FailureReason.INSUFFICIENT_SAMPLES

    def test_flat_line_has_no_variation(self, validator, flat_batch):
        report = validator.validate(flat_batch)

        assert not report.is_acceptable
        assert report.failure_reason is FailureReason.NO_VARIATION

    def test_mean_outside_band_is_out_of_range(self, validator, rng):
        report = validator.validate(make_batch(rng.normal(220.0, 5.0, 300)))
        assert report.failure_reason is FailureReason.OUT_OF_RANGE

    def test_low_in_range_ratio_is_out_of_range(self, validator):
        """Mean is plausible but only half of the readings are in band."""
        values = [30.0, 100.0] * 150
        report = validator.validate(make_batch(values))

        assert report.failure_reason is FailureReason.OUT_OF_RANGE
        assert report.details["in_range_ratio"] == pytest.approx(0.5)

    def test_non_finite_readings_are_out_of_range(self, validator, rng):
        values = list(rng.normal(75.0, 8.0, 300))
        values[10] = float("nan")
        report = validator.validate(make_batch(values))

        assert report.failure_reason is FailureReason.OUT_OF_RANGE
        assert report.details["non_finite_count"] == 1

    def test_excessive_noise(self, validator):
        values = [45.0, 195.0] * 150
        report = validator.validate(make_batch(values))

        assert report.failure_reason is FailureReason.EXCESSIVE_NOISE
        assert report.details["noise_level"] == pytest.approx(75.0)

    def test_below_quality_threshold(self, realistic_batch):
        validator = SignalQualityValidator(QualityPolicy(min_quality_score=0.99))
        report = validator.validate(realistic_batch)

        assert not report.is_acceptable
        assert report.failure_reason is FailureReason.BELOW_QUALITY_THRESHOLD
        assert 0.0 < report.score < 0.99

    def test_quick_check_uses_lower_floor(self, validator, short_batch):
        assert (
            validator.validate(short_batch).failure_reason
            is FailureReason.INSUFFICIENT_SAMPLES
        )
        assert (
            validator.quick_check(short_batch).failure_reason
            is not FailureReason.INSUFFICIENT_SAMPLES
        )

    def test_recommendations_are_unique(self, validator, rng):
        values = np.concatenate([rng.normal(70.0, 12.0, 150), rng.normal(95.0, 12.0, 150)])
        report = validator.validate(make_batch(values))

        assert len(report.recommendations) == len(set(report.recommendations))

    @pytest.mark.parametrize("seed", [1, 2, 3, 4, 5])
    def test_score_is_bounded(self, validator, seed):
        rng = np.random.default_rng(seed)
        values = rng.normal(rng.uniform(50, 150), rng.uniform(1, 30), 400)
        report = validator.validate(make_batch(values))

        assert 0.0 <= report.score <= 1.0

    def test_validation_is_deterministic(self, validator, realistic_batch):
        assert validator.validate(realistic_batch) == validator.validate(realistic_batch)

    def test_rejects_non_batch_input(self, validator):
        with pytest.raises(QualityCheckError):
            validator.validate([72.0, 73.0])

    def test_rejects_unknown_weights(self):
        with pytest.raises(QualityCheckError):
            SignalQualityValidator(weights={"brightness": 1.0})

    def test_convenience_function(self, realistic_batch):
        assert validate_batch(realistic_batch).is_acceptable


class TestSampleBatch:
    """Test cases for SampleBatch construction."""

    def test_empty_batch_rejected(self):
        with pytest.raises(ValueError):
            SampleBatch(())

    def test_from_values_spacing(self):
        batch = make_batch([70.0, 71.0, 72.0])

        assert batch.size == 3
        assert batch.duration_seconds == 2.0
        assert batch.values.tolist() == [70.0, 71.0, 72.0]
