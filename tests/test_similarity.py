"""
Tests for feature-vector similarity scoring.
"""

import numpy as np
import pytest

from heartid_core.data_models import FeatureVector
from heartid_core.exceptions import SimilarityError
from heartid_core.feature_extraction import FeatureExtractor
from heartid_core.similarity import SimilarityScorer

from conftest import make_batch


def _vectors(count, seed=99):
    rng = np.random.default_rng(seed)
    extractor = FeatureExtractor()
    return [
        extractor.extract(make_batch(rng.normal(rng.uniform(65, 110), rng.uniform(2, 12), 300)))
        for _ in range(count)
    ]


class TestSimilarityScorer:
    """Test cases for SimilarityScorer."""

    @pytest.fixture
    def scorer(self):
        return SimilarityScorer()

    def test_identical_vectors_score_exactly_one(self, scorer, sample_vector):
        assert scorer.score(sample_vector, sample_vector) == 1.0

    @pytest.mark.parametrize("vector", _vectors(5))
    def test_reflexive_for_extracted_vectors(self, scorer, vector):
        assert scorer.score(vector, vector) == pytest.approx(1.0, abs=1e-9)

    def test_symmetric(self, scorer):
        vectors = _vectors(6, seed=7)
        for a in vectors:
            for b in vectors:
                assert scorer.score(a, b) == pytest.approx(scorer.score(b, a), abs=1e-9)

    def test_score_is_bounded(self, scorer):
        vectors = _vectors(6, seed=11)
        for a in vectors:
            for b in vectors:
                assert 0.0 <= scorer.score(a, b) <= 1.0

    def test_distant_vectors_score_zero(self, scorer):
        resting = FeatureVector(60.0, 55.0, 65.0, 2.0, 3.0, 0.0, 0.1, 2.0)
        exercising = FeatureVector(160.0, 100.0, 190.0, 90.0, 120.0, 0.9, 0.9, 80.0)

        assert scorer.score(resting, exercising) == 0.0

    def test_flat_vector_cannot_match_on_variability(self, scorer):
        flat = FeatureVector(75.0, 75.0, 75.0, 0.0, 0.0, 0.0, 0.0, 0.0)
        breakdown = scorer.breakdown(flat, flat)

        assert breakdown["mean_hr"] == 1.0
        assert breakdown["rmssd"] == 0.0
        assert breakdown["sdnn"] == 0.0
        assert scorer.score(flat, flat) == pytest.approx(0.15)

    def test_breakdown_covers_weighted_descriptors(self, scorer, sample_vector):
        assert set(scorer.breakdown(sample_vector, sample_vector)) == set(scorer.weights)

    def test_normalized_weights_sum_to_one(self, scorer):
        assert sum(scorer.normalized_weights.values()) == pytest.approx(1.0)

    def test_custom_weights(self, sample_vector):
        scorer = SimilarityScorer(weights={"mean_hr": 1.0})
        shifted = FeatureVector.from_dict({**sample_vector.as_dict(), "mean_hr": sample_vector.mean_hr + 15.0})

        assert scorer.score(sample_vector, shifted) == pytest.approx(0.5)

    def test_unknown_descriptor_rejected(self):
        with pytest.raises(SimilarityError):
            SimilarityScorer(weights={"heart_shape": 1.0})

    def test_zero_weights_rejected(self):
        with pytest.raises(SimilarityError):
            SimilarityScorer(weights={"mean_hr": 0.0, "sdnn": 0.0})

    def test_non_positive_scale_rejected(self):
        with pytest.raises(SimilarityError):
            SimilarityScorer(weights={"mean_hr": 1.0}, scales={"mean_hr": 0.0})

    def test_rejects_non_vectors(self, scorer, sample_vector):
        with pytest.raises(SimilarityError):
            scorer.score(sample_vector, sample_vector.as_dict())
