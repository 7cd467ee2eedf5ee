"""Shared test fixtures for faceverify tests."""

import asyncio
import time

import numpy as np
import pytest

from faceverify.descriptor import FaceDescriptor, Vector
from faceverify.descriptor_store import DescriptorStore
from faceverify.enrollment import EnrollmentGate
from faceverify.errors import ExtractionFailure
from faceverify.matcher import MatcherEngine
from faceverify.orchestrator import VerificationOrchestrator
from faceverify.schemas import ExtractionOutcome, VerificationConfig

ALGORITHM = "test-model-v1"


def make_descriptor(identity_id, values, algorithm_version=ALGORITHM):
    return FaceDescriptor(identity_id=identity_id, vector=Vector(values), algorithm_version=algorithm_version)


def random_vector(seed, dim=128):
    rng = np.random.default_rng(seed)
    return rng.normal(0.0, 0.1, size=dim)


class StubProvider:
    """Embedding provider double: maps image bytes to canned outcomes."""

    def __init__(self, outcomes=None, delay=0.0, error=None, ready=True):
        self.outcomes = outcomes or {}
        self.delay = delay
        self.error = error
        self.algorithm_version = ALGORITHM
        self._ready = ready
        self.calls = 0

    @property
    def is_ready(self):
        return self._ready

    def warm_up(self):
        if self.error is not None and not self._ready:
            raise ExtractionFailure("model unavailable")
        self._ready = True

    def extract(self, image):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.outcomes.get(bytes(image), ExtractionOutcome(face_detected=False))


class AsyncStubProvider(StubProvider):
    async def extract(self, image):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.outcomes.get(bytes(image), ExtractionOutcome(face_detected=False))


@pytest.fixture
def config_2d():
    """Configuration for the two-dimensional scenario population."""
    return VerificationConfig(threshold=1.0, vector_dimensionality=2, algorithm_version=ALGORITHM)


@pytest.fixture
def store_2d():
    """Store holding A at the origin and B at (10, 10)."""
    store = DescriptorStore(vector_dimensionality=2, algorithm_version=ALGORITHM)
    for identity_id in ("A", "B"):
        store.provision_identity(identity_id)
    store.append(make_descriptor("A", [0.0, 0.0]))
    store.append(make_descriptor("B", [10.0, 10.0]))
    return store


@pytest.fixture
def orchestrator_2d(config_2d, store_2d):
    return VerificationOrchestrator(store_2d, MatcherEngine.from_config(config_2d), config=config_2d)


@pytest.fixture
def store_128():
    store = DescriptorStore(vector_dimensionality=128, algorithm_version=ALGORITHM)
    for identity_id in ("member-1", "member-2", "member-3"):
        store.provision_identity(identity_id)
    return store


@pytest.fixture
def gate_128(store_128):
    return EnrollmentGate(store_128, max_descriptors_per_identity=3, algorithm_version=ALGORITHM)
