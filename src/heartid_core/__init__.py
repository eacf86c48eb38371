"""
HeartID Core - Heart-rate Biometric Enrollment and Authentication

A decision engine that validates heart-rate captures, extracts heart-rate
variability descriptors, stores them as sealed, versioned templates and
renders graded authentication decisions under a configurable security
policy with attempt limiting, session timeout and progressive lockout.
"""

__version__ = "1.0.0"
__author__ = "HeartID Team"

from .data_models import (
    Approved,
    AuthenticationOutcome,
    Denied,
    EnrollmentResult,
    Error,
    FeatureVector,
    QualityReport,
    RetryRequested,
    SampleBatch,
    SecurityLevel,
    Template,
)
from .decision_engine import AuthenticationEngine, EngineState
from .feature_extraction import FeatureExtractor, extract_features
from .policy import SecurityPolicy, load_policy
from .quality_assessment import SignalQualityValidator, validate_batch
from .similarity import SimilarityScorer
from .template_codec import TemplateCodec, TemplateRecord, TemplateRepository

__all__ = [
    "Approved",
    "AuthenticationEngine",
    "AuthenticationOutcome",
    "Denied",
    "EngineState",
    "EnrollmentResult",
    "Error",
    "FeatureExtractor",
    "FeatureVector",
    "QualityReport",
    "RetryRequested",
    "SampleBatch",
    "SecurityLevel",
    "SecurityPolicy",
    "SignalQualityValidator",
    "SimilarityScorer",
    "Template",
    "TemplateCodec",
    "TemplateRecord",
    "TemplateRepository",
    "extract_features",
    "load_policy",
    "validate_batch",
]
