"""
Constants and default policy parameters for the HeartID core.

This module centralizes the numeric parameters of quality assessment,
feature extraction, similarity scoring and session management so that
there is a single source of truth for every threshold.
"""

from typing import Dict, Final, Tuple

# =============================================================================
# Signal Quality Parameters
# =============================================================================

# Minimum number of samples for an enrollment-grade capture
MIN_SAMPLES: Final[int] = 200

# Lower floor permitted for quick checks
QUICK_CHECK_MIN_SAMPLES: Final[int] = 50

# Sample count above which captures are slightly penalized
MAX_SAMPLES: Final[int] = 1000

# Minimum combined quality score for a batch to be accepted
MIN_QUALITY_SCORE: Final[float] = 0.7

# Physiologically plausible heart-rate band in BPM
HEART_RATE_RANGE: Final[Tuple[float, float]] = (40.0, 200.0)

# Minimum fraction of readings inside HEART_RATE_RANGE
MIN_IN_RANGE_RATIO: Final[float] = 0.75

# Mean absolute deviation (BPM) above which a capture is rejected as noisy
MAX_NOISE_LEVEL: Final[float] = 25.0

# Number of segments used by the consistency check
CONSISTENCY_SEGMENTS: Final[int] = 10

# Weights of the quality subscores
QUALITY_WEIGHTS: Final[Dict[str, float]] = {
    "sample_count": 0.15,
    "range": 0.15,
    "signal_quality": 0.25,
    "consistency": 0.15,
    "hrv": 0.15,
    "completeness": 0.10,
    "stability": 0.05,
}

# =============================================================================
# Feature Extraction Parameters
# =============================================================================

# Successive-difference magnitude counted by the pNN50 descriptor
PNN50_THRESHOLD: Final[float] = 50.0

# Names of the descriptors carried by a feature vector
FEATURE_NAMES: Final[Tuple[str, ...]] = (
    "mean_hr",
    "min_hr",
    "max_hr",
    "sdnn",
    "rmssd",
    "pnn50",
    "triangular_index",
    "overall_variability",
)

# Descriptors that collapse to zero on a flat-line signal
VARIABILITY_FEATURES: Final[Tuple[str, ...]] = (
    "sdnn",
    "rmssd",
    "pnn50",
    "triangular_index",
    "overall_variability",
)

# =============================================================================
# Similarity Scoring Parameters
# =============================================================================

# Normalization scale per descriptor
SIMILARITY_SCALES: Final[Dict[str, float]] = {
    "rmssd": 50.0,
    "sdnn": 75.0,
    "mean_hr": 30.0,
    "pnn50": 0.3,
    "triangular_index": 0.5,
    "overall_variability": 50.0,
}

# Weight per descriptor; RMSSD and SDNN carry the most identity information
SIMILARITY_WEIGHTS: Final[Dict[str, float]] = {
    "rmssd": 0.35,
    "sdnn": 0.30,
    "mean_hr": 0.15,
    "pnn50": 0.10,
    "triangular_index": 0.05,
    "overall_variability": 0.05,
}

# =============================================================================
# Security Levels
# =============================================================================

# (approve_threshold, retry_threshold) per security level
SECURITY_LEVEL_THRESHOLDS: Final[Dict[str, Tuple[float, float]]] = {
    "low": (0.60, 0.40),
    "medium": (0.75, 0.50),
    "high": (0.85, 0.60),
    "maximum": (0.90, 0.70),
}

# Recommended capture duration in seconds per security level
RECOMMENDED_CAPTURE_SECONDS: Final[Dict[str, float]] = {
    "low": 6.0,
    "medium": 8.0,
    "high": 10.0,
    "maximum": 12.0,
}

DEFAULT_SECURITY_LEVEL: Final[str] = "medium"

# =============================================================================
# Capture and Session Parameters
# =============================================================================

MIN_CAPTURE_SECONDS: Final[float] = 6.0
MAX_CAPTURE_SECONDS: Final[float] = 16.0

# Denied attempts before a session is locked out
MAX_ATTEMPTS: Final[int] = 3

# Session lifetime in seconds
SESSION_TIMEOUT_SECONDS: Final[float] = 300.0

# Progressive cooldown after consecutive lockouts, in minutes
LOCKOUT_PERIODS_MINUTES: Final[Tuple[int, ...]] = (10, 20, 40, 90, 360, 1440, 2880)

# =============================================================================
# Template Record
# =============================================================================

TEMPLATE_VERSION: Final[int] = 1

# Magic prefix of blobs produced by the reference AES-GCM sealer
SEALED_BLOB_MAGIC: Final[bytes] = b"HIDT1\0"

AES_KEY_SIZE: Final[int] = 32
AES_NONCE_SIZE: Final[int] = 12

# Argon2id key-derivation parameters for the reference sealer
ARGON2_TIME_COST: Final[int] = 3
ARGON2_MEMORY_COST: Final[int] = 65536
ARGON2_PARALLELISM: Final[int] = 1
ARGON2_SALT_LENGTH: Final[int] = 16

# Default file names
TEMPLATE_FILE_SUFFIX: Final[str] = ".tpl"
KEY_SALT_FILE: Final[str] = "sealer.salt"
LOCKOUT_STATE_FILE: Final[str] = "lockouts.json"
