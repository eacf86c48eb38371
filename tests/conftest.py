"""
Shared fixtures for the HeartID core test suite.
"""

import os
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import numpy as np
import pytest

from heartid_core.data_models import FeatureVector, SampleBatch
from heartid_core.decision_engine import AuthenticationEngine
from heartid_core.policy import SecurityPolicy
from heartid_core.secure_storage import AesGcmSealer, InMemorySecureStorage
from heartid_core.similarity import SimilarityScorer
from heartid_core.template_codec import TemplateRepository

START = datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock for session timeout and cooldown tests."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_batch(values) -> SampleBatch:
    return SampleBatch.from_values(values, start=START)


@pytest.fixture(autouse=True)
def clean_policy_environment(monkeypatch):
    """Keep HEARTID_* variables from the host out of every test."""
    for name in list(os.environ):
        if name.startswith("HEARTID_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def realistic_batch(rng):
    """300 in-range samples with mean 75 BPM and standard deviation 8."""
    return make_batch(rng.normal(75.0, 8.0, 300))


@pytest.fixture
def flat_batch():
    return make_batch([75.0] * 300)


@pytest.fixture
def short_batch(rng):
    return make_batch(rng.normal(75.0, 8.0, 50))


@pytest.fixture
def sample_vector():
    return FeatureVector(
        mean_hr=72.123456789,
        min_hr=58.0,
        max_hr=91.5,
        sdnn=7.3000000000000007,
        rmssd=11.1,
        pnn50=0.0033444816053511705,
        triangular_index=0.4644779531,
        overall_variability=0.1 + 0.2,
    )


@pytest.fixture
def fixed_clock():
    return FakeClock()


@pytest.fixture
def policy():
    return SecurityPolicy()


@pytest.fixture
def storage():
    return InMemorySecureStorage()


@pytest.fixture
def sealer():
    return AesGcmSealer.generate()


@pytest.fixture
def repository(storage, sealer):
    return TemplateRepository(storage, sealer)


@pytest.fixture
def engine(repository, policy, fixed_clock):
    return AuthenticationEngine(
        repository, policy_provider=lambda: policy, clock=fixed_clock
    )


@pytest.fixture
def mock_scorer():
    """Scorer stub; set ``return_value`` or ``side_effect`` on ``score``."""
    scorer = Mock(spec=SimilarityScorer)
    scorer.score.return_value = 0.1
    return scorer


@pytest.fixture
def scored_engine(repository, policy, fixed_clock, mock_scorer):
    """Engine whose similarity decisions are driven by ``mock_scorer``."""
    return AuthenticationEngine(
        repository,
        scorer=mock_scorer,
        policy_provider=lambda: policy,
        clock=fixed_clock,
    )
