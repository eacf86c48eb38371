"""
Feature-vector similarity scoring for the HeartID core.

Confidence is a fixed weighted sum of per-descriptor similarities, each
``max(0, 1 - |stored - current| / scale)``. The score is deterministic and
symmetric, and reflexive for non-flat vectors. A flat-line vector (zero
variability) contributes nothing on its variability descriptors, so a
sensor artifact that slipped past validation can never produce a
spuriously high match.
"""

from typing import Dict, Optional

import structlog

from .constants import SIMILARITY_SCALES, SIMILARITY_WEIGHTS, VARIABILITY_FEATURES
from .data_models import FeatureVector
from .exceptions import SimilarityError

# Initialize structured logger
logger = structlog.get_logger(__name__)


class SimilarityScorer:
    """
    Weighted descriptor similarity between two feature vectors.

    Parameters
    ----------
    weights : Dict[str, float], optional
        Weight per descriptor; the score divides by their sum.
    scales : Dict[str, float], optional
        Normalization scale per weighted descriptor.

    Examples
    --------
    >>> scorer = SimilarityScorer()
    >>> scorer.score(vector, vector)
    1.0
    """

    def __init__(
        self,
        weights: Optional[Dict[str, float]] = None,
        scales: Optional[Dict[str, float]] = None,
    ) -> None:
        self.weights = dict(weights or SIMILARITY_WEIGHTS)
        self.scales = dict(scales or SIMILARITY_SCALES)

        self._validate_configuration()

        logger.debug(
            "SimilarityScorer initialized", weights=self.weights, scales=self.scales
        )

    def _validate_configuration(self) -> None:
        """
        Validate weights and scales.

        Raises
        ------
        SimilarityError
            If a descriptor is unknown, a scale is missing or not positive,
            or the weights are negative or all zero.
        """
        known = set(FeatureVector.__dataclass_fields__)

        for name, weight in self.weights.items():
            if name not in known:
                raise SimilarityError(f"Unknown descriptor '{name}'", descriptor=name)
            if weight < 0:
                raise SimilarityError(
                    f"Weight for '{name}' must be non-negative, got {weight}",
                    descriptor=name,
                )
            scale = self.scales.get(name)
            if scale is None or scale <= 0:
                raise SimilarityError(
                    f"Scale for '{name}' must be positive, got {scale}",
                    descriptor=name,
                )

        # Summed in the same fixed order as score() so identical vectors give exactly 1.0
        self._total_weight = sum(self.weights[name] for name in sorted(self.weights))
        if self._total_weight == 0:
            raise SimilarityError("Similarity weights cannot all be zero")

    @property
    def normalized_weights(self) -> Dict[str, float]:
        return {name: w / self._total_weight for name, w in self.weights.items()}

    def breakdown(self, stored: FeatureVector, current: FeatureVector) -> Dict[str, float]:
        """
        Per-descriptor similarities between two feature vectors.

        Parameters
        ----------
        stored : FeatureVector
            Enrolled descriptors.
        current : FeatureVector
            Freshly captured descriptors.

        Returns
        -------
        Dict[str, float]
            Similarity in [0, 1] for every weighted descriptor.
        """
        if not isinstance(stored, FeatureVector) or not isinstance(current, FeatureVector):
            raise SimilarityError("Both inputs must be FeatureVector instances")

        flat = stored.is_flat or current.is_flat
        similarities = {}

        for name in self.weights:
            if flat and name in VARIABILITY_FEATURES:
                similarities[name] = 0.0
                continue

            difference = abs(getattr(stored, name) - getattr(current, name))
            similarities[name] = max(0.0, 1.0 - difference / self.scales[name])

        return similarities

    def score(self, stored: FeatureVector, current: FeatureVector) -> float:
        """
        Confidence that two feature vectors belong to the same identity.

        Parameters
        ----------
        stored : FeatureVector
            Enrolled descriptors.
        current : FeatureVector
            Freshly captured descriptors.

        Returns
        -------
        float
            Confidence between 0.0 and 1.0.
        """
        similarities = self.breakdown(stored, current)

        weighted = sum(
            self.weights[name] * similarities[name] for name in sorted(self.weights)
        )
        confidence = max(0.0, min(1.0, weighted / self._total_weight))

        logger.debug(
            "Similarity computed",
            confidence=round(confidence, 6),
            flat_signal=stored.is_flat or current.is_flat,
        )

        return confidence
