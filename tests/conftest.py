"""
Shared fixtures for the attendance service tests.

Feature vectors are synthetic: a zero vector plus an offset on one
dimension, so distances between them are exact.
"""

import os
import sys
from datetime import datetime

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from attendance_service.config import Config
from attendance_service.models import EnrollmentRecord
from attendance_service.recognition.eligibility import EligibilityGate
from attendance_service.recognition.confirmation import ConfirmationController
from attendance_service.recognition.gallery import build_gallery
from attendance_service.store import InMemoryAttendanceStore

DIM = 128


def vec(offset: float = 0.0, axis: int = 0, base=None) -> np.ndarray:
    """Vector at Euclidean distance |offset| from `base` (zeros by default)."""
    v = np.zeros(DIM) if base is None else np.array(base, dtype=np.float64)
    v[axis] += offset
    return v


def make_config(**overrides) -> Config:
    values = dict(
        backend_url='http://backend.test',
        store_backend='memory',
        request_timeout_seconds=1.0,
        camera_source='0',
        camera_id='test-cam',
        frame_skip=1,
        service_name='attendance-test',
        api_port=5999,
        match_threshold=0.45,
        accept_confidence=55,
        vector_dim=DIM,
        detection_model='hog',
        detection_scale=1.0,
        detector_timeout_seconds=0.5,
        cooldown_seconds=10.0,
        capture_snapshots=False,
        snapshot_quality=60,
        recent_events_limit=10,
        reload_gallery_interval=300,
        debug_mode=False,
    )
    values.update(overrides)
    return Config(**values)


class FixedClock:
    """Settable clock for controllers and sessions."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def alice_vector():
    # Alice lives on axis 0, Bob on axis 1, far apart from each other
    return vec(1.0, axis=0)


@pytest.fixture
def bob_vector():
    return vec(1.0, axis=1)


@pytest.fixture
def store(alice_vector, bob_vector):
    """Memory store with Alice (two photos) and Bob enrolled."""
    store = InMemoryAttendanceStore(vector_dim=DIM)
    store.add_enrollment('Alice Smith', alice_vector)
    store.add_enrollment('Bob Jones', bob_vector)
    store.add_enrollment('  alice smith ', vec(0.2, axis=2, base=alice_vector))
    return store


@pytest.fixture
def gallery(store):
    return build_gallery(store.list_identities(), vector_dim=DIM)


@pytest.fixture
def clock():
    return FixedClock(datetime(2026, 3, 2, 9, 0, 0))


@pytest.fixture
def gate(store, config):
    return EligibilityGate(store, cooldown_seconds=config.cooldown_seconds)


@pytest.fixture
def controller(store, gate, config, clock, gallery):
    controller = ConfirmationController(store, gate, config, clock=clock)
    controller.start_session(gallery)
    return controller
