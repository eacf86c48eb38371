"""
Heart-rate feature extraction for the HeartID core.

This module converts a validated sample batch into a fixed-size feature
vector of heart-rate variability (HRV) and statistical descriptors. The
computation is a pure, deterministic function of the sample values: no
randomness and no dependence on wall-clock time.

Successive differences are taken directly over the BPM readings, so RMSSD,
pNN50 and the overall variability are all expressed in BPM units.
"""

from typing import Dict

import numpy as np
import structlog

from .constants import PNN50_THRESHOLD
from .data_models import FeatureVector, SampleBatch
from .exceptions import FeatureExtractionError

# Initialize structured logger
logger = structlog.get_logger(__name__)


def successive_differences(values: np.ndarray) -> np.ndarray:
    """Absolute sample-to-sample differences; empty for fewer than two values."""
    if values.size < 2:
        return np.empty(0, dtype=np.float64)
    return np.abs(np.diff(values))


def compute_descriptors(values: np.ndarray) -> Dict[str, float]:
    """
    Compute the raw HRV and statistical descriptors of a value sequence.

    Parameters
    ----------
    values : np.ndarray
        1D array of BPM readings, at least one element.

    Returns
    -------
    Dict[str, float]
        Descriptor values keyed by FeatureVector field name. For a single
        reading every variability descriptor is 0.

    Examples
    --------
    >>> compute_descriptors(np.array([70.0, 72.0, 71.0]))["rmssd"]
    1.5811388300841898
    """
    mean_hr = float(np.mean(values))
    min_hr = float(np.min(values))
    max_hr = float(np.max(values))

    diffs = successive_differences(values)
    if diffs.size == 0:
        return {
            "mean_hr": mean_hr,
            "min_hr": min_hr,
            "max_hr": max_hr,
            "sdnn": 0.0,
            "rmssd": 0.0,
            "pnn50": 0.0,
            "triangular_index": 0.0,
            "overall_variability": 0.0,
        }

    # Population standard deviation (ddof=0)
    sdnn = float(np.std(values))
    rmssd = float(np.sqrt(np.mean(np.square(diffs))))
    pnn50 = float(np.count_nonzero(diffs > PNN50_THRESHOLD) / diffs.size)
    overall_variability = float(np.mean(diffs))

    heart_rate_range = max_hr - min_hr
    triangular_index = heart_rate_range / mean_hr if heart_rate_range > 0 and mean_hr > 0 else 0.0

    return {
        "mean_hr": mean_hr,
        "min_hr": min_hr,
        "max_hr": max_hr,
        "sdnn": sdnn,
        "rmssd": rmssd,
        "pnn50": pnn50,
        "triangular_index": float(triangular_index),
        "overall_variability": overall_variability,
    }


class FeatureExtractor:
    """
    Converts validated sample batches into feature vectors.

    The extractor is stateless; a single instance can be shared by any
    number of enrollment and authentication calls.

    Examples
    --------
    >>> extractor = FeatureExtractor()
    >>> vector = extractor.extract(SampleBatch.from_values([72.0, 75.0, 71.0]))
    >>> vector.max_hr
    75.0
    """

    def extract(self, batch: SampleBatch) -> FeatureVector:
        """
        Extract the feature vector of a sample batch.

        Parameters
        ----------
        batch : SampleBatch
            Batch that has already passed quality validation.

        Returns
        -------
        FeatureVector
            Descriptors of the batch.

        Raises
        ------
        FeatureExtractionError
            If the batch contains non-finite readings or the descriptors do
            not form a valid feature vector.
        """
        values = batch.values

        if not np.isfinite(values).all():
            raise FeatureExtractionError(
                "Sample batch contains non-finite readings", sample_count=batch.size
            )

        descriptors = compute_descriptors(values)

        try:
            vector = FeatureVector(**descriptors)
        except ValueError as e:
            raise FeatureExtractionError(
                f"Invalid feature vector: {e}", sample_count=batch.size
            )

        logger.debug(
            "Feature extraction completed",
            sample_count=batch.size,
            is_flat=vector.is_flat,
        )

        return vector


def extract_features(batch: SampleBatch) -> FeatureVector:
    """
    Convenience function to extract features with a default extractor.

    Parameters
    ----------
    batch : SampleBatch
        Validated sample batch.

    Returns
    -------
    FeatureVector
        Extracted descriptors.
    """
    return FeatureExtractor().extract(batch)
