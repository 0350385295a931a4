"""
Tests for the matching module.

Run with: pytest tests/test_matching.py -v
"""

import math

import numpy as np
import pytest

from attendance_service.models import EnrollmentRecord
from attendance_service.recognition.gallery import GalleryIndex, build_gallery
from attendance_service.recognition.matching import (
    distance_to_confidence,
    is_actionable,
    match,
)
from tests.conftest import vec

THRESHOLD = 0.45


def gallery_of(*rows):
    return build_gallery([
        EnrollmentRecord(identity_id=i, display_name=name, vector=v)
        for i, name, v in rows
    ])


class TestConfidence:
    """Tests for distance -> confidence conversion."""

    def test_zero_distance_is_full_confidence(self):
        assert distance_to_confidence(0.0) == 100

    def test_reference_threshold_maps_to_cutoff(self):
        assert distance_to_confidence(0.45) == 55

    def test_clamped_to_zero(self):
        assert distance_to_confidence(1.7) == 0
        assert distance_to_confidence(math.inf) == 0

    def test_rounds_half_up(self):
        assert distance_to_confidence(0.125) == 88


class TestMatch:
    """Tests for nearest-identity matching."""

    def test_identical_vector_matches_exactly(self):
        rng = np.random.default_rng(7)
        enrolled = rng.normal(size=128)
        index = gallery_of((1, 'Ada', enrolled))

        result = match(index, enrolled.copy(), THRESHOLD)

        assert result.identity_id == 1
        assert result.display_name == 'Ada'
        assert result.distance == 0.0
        assert result.confidence == 100

    def test_score_is_minimum_not_average(self):
        # Ada: distances 0.2 and 0.9 (average 0.55 would miss the threshold)
        index = gallery_of(
            (1, 'Ada', vec(0.2, 0)),
            (2, 'ada', vec(0.9, 1)),
            (3, 'Alan', vec(0.3, 2)),
        )
        result = match(index, vec(), THRESHOLD)

        assert result.identity_id == 1
        assert result.distance == pytest.approx(0.2)
        assert result.confidence == 80

    def test_closest_identity_wins(self):
        index = gallery_of(
            (1, 'Ada', vec(0.4, 0)),
            (2, 'Alan', vec(0.1, 1)),
        )
        result = match(index, vec(), THRESHOLD)
        assert result.identity_id == 2
        assert result.display_name == 'Alan'

    def test_ties_go_to_smallest_id(self):
        index = gallery_of(
            (5, 'Ada', vec(0.3, 0)),
            (2, 'Alan', vec(0.3, 1)),
        )
        result = match(index, vec(), THRESHOLD)
        assert result.identity_id == 2

    def test_threshold_is_inclusive(self):
        index = gallery_of((1, 'Ada', vec()))

        accepted = match(index, vec(0.45, 0), THRESHOLD)
        rejected = match(index, vec(0.450001, 0), THRESHOLD)

        assert accepted.is_match
        assert accepted.confidence == 55
        assert not rejected.is_match
        assert rejected.identity_id is None
        assert rejected.display_name == 'unknown'

    def test_unknown_still_reports_confidence(self):
        index = gallery_of((1, 'Ada', vec()))
        result = match(index, vec(0.6, 3), THRESHOLD)

        assert not result.is_match
        assert result.distance == pytest.approx(0.6)
        assert result.confidence == 40

    def test_empty_gallery_is_unknown(self):
        result = match(GalleryIndex(), vec(), THRESHOLD)

        assert not result.is_match
        assert result.confidence == 0
        assert math.isinf(result.distance)

    def test_repeated_calls_are_deterministic(self):
        rng = np.random.default_rng(3)
        index = gallery_of(*[(i, f'person {i}', rng.normal(size=128) * 0.05) for i in range(1, 20)])
        query = rng.normal(size=128) * 0.05

        results = [match(index, query, THRESHOLD) for _ in range(5)]
        assert all(r == results[0] for r in results)

    def test_query_of_wrong_dimension_rejected(self):
        index = gallery_of((1, 'Ada', vec()))
        with pytest.raises(ValueError):
            match(index, np.zeros(10), THRESHOLD)

    def test_accepts_plain_lists(self):
        index = gallery_of((1, 'Ada', vec()))
        result = match(index, [0.0] * 128, THRESHOLD)
        assert result.identity_id == 1


class TestActionable:
    """Tests for the confidence cutoff applied on top of the threshold."""

    def test_cutoff_is_independent_of_threshold(self):
        index = gallery_of((1, 'Ada', vec()))
        result = match(index, vec(0.3, 0), threshold=0.45)

        assert result.is_match
        assert is_actionable(result, accept_confidence=55)
        assert not is_actionable(result, accept_confidence=80)

    def test_unknown_never_actionable(self):
        result = match(GalleryIndex(), vec(), THRESHOLD)
        assert not is_actionable(result, accept_confidence=0)
