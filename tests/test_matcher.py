"""Tests for the matcher engine."""

import math

import pytest

from faceverify.descriptor import Vector
from faceverify.matcher import MatcherEngine, distance_to_confidence
from faceverify.schemas import ErrorCause, VerificationStatus

from conftest import make_descriptor, random_vector

POPULATION = [
    make_descriptor("A", [0.0, 0.0]),
    make_descriptor("B", [10.0, 10.0]),
]


def test_scenario_match_nearest_identity():
    result = MatcherEngine(threshold=1.0).match(Vector([0.1, 0.1]), POPULATION)

    assert result.status == VerificationStatus.MATCH
    assert result.matched_identity_id == "A"
    assert result.distance == pytest.approx(0.1414, abs=1e-4)
    assert result.confidence == pytest.approx(0.8586, abs=1e-4)
    assert result.recognized


def test_scenario_no_match_far_from_everyone():
    result = MatcherEngine(threshold=1.0).match(Vector([5.0, 5.0]), POPULATION)

    assert result.status == VerificationStatus.NO_MATCH
    assert result.matched_identity_id is None
    assert result.distance == pytest.approx(7.07, abs=1e-2)
    assert result.confidence == 0.0
    assert not result.recognized


@pytest.mark.parametrize("threshold", [1e-6, 0.1, 0.6, 5.0])
def test_identical_probe_matches_with_full_confidence(threshold):
    values = random_vector(7)
    population = [make_descriptor("owner", values)]

    result = MatcherEngine(threshold=threshold).match(Vector(values), population)

    assert result.status == VerificationStatus.MATCH
    assert result.matched_identity_id == "owner"
    assert result.distance == 0.0
    assert result.confidence == 1.0


def test_threshold_boundary_is_inclusive():
    population = [make_descriptor("edge", [0.6, 0.0])]

    result = MatcherEngine(threshold=0.6).match(Vector([0.0, 0.0]), population)

    assert result.distance == 0.6
    assert result.status == VerificationStatus.MATCH
    assert result.matched_identity_id == "edge"
    assert result.confidence == 0.0


def test_just_beyond_threshold_is_no_match():
    population = [make_descriptor("edge", [0.6000001, 0.0])]

    result = MatcherEngine(threshold=0.6).match(Vector([0.0, 0.0]), population)

    assert result.status == VerificationStatus.NO_MATCH


def test_empty_population_is_no_match_not_error():
    result = MatcherEngine(threshold=0.6).match(Vector([0.0, 0.0]), [])

    assert result.status == VerificationStatus.NO_MATCH
    assert result.distance is None
    assert result.confidence == 0.0
    assert result.error_cause is None


def test_closer_candidate_is_preferred():
    population = [
        make_descriptor("far", [0.5, 0.0]),
        make_descriptor("near", [0.2, 0.0]),
        make_descriptor("mid", [0.3, 0.0]),
    ]

    result = MatcherEngine(threshold=1.0).match(Vector([0.0, 0.0]), population)

    assert result.matched_identity_id == "near"
    assert result.distance == pytest.approx(0.2)


def test_best_of_multiple_descriptors_per_identity():
    population = [
        make_descriptor("A", [0.9, 0.0]),
        make_descriptor("B", [0.4, 0.0]),
        make_descriptor("A", [0.1, 0.0]),
    ]

    result = MatcherEngine(threshold=1.0).match(Vector([0.0, 0.0]), population)

    assert result.matched_identity_id == "A"
    assert result.distance == pytest.approx(0.1)


def test_mismatched_candidate_is_excluded_not_fatal():
    population = [
        make_descriptor("broken", [0.0, 0.0, 0.0]),
        make_descriptor("A", [0.1, 0.0]),
    ]

    result = MatcherEngine(threshold=1.0).match(Vector([0.0, 0.0]), population)

    assert result.status == VerificationStatus.MATCH
    assert result.matched_identity_id == "A"
    assert result.excluded_identity_ids == ["broken"]


def test_probe_with_wrong_dimensionality_is_error():
    engine = MatcherEngine(threshold=1.0, vector_dimensionality=2)

    result = engine.match(Vector([0.0, 0.0, 0.0]), POPULATION)

    assert result.status == VerificationStatus.ERROR
    assert result.error_cause == ErrorCause.SHAPE_MISMATCH
    assert result.distance is None
    assert result.matched_identity_id is None


def test_probe_mismatching_every_candidate_is_error_without_configured_dimensionality():
    result = MatcherEngine(threshold=1.0).match(Vector([0.0, 0.0, 0.0]), POPULATION)

    assert result.status == VerificationStatus.ERROR
    assert result.error_cause == ErrorCause.SHAPE_MISMATCH


def test_non_finite_probe_is_error():
    result = MatcherEngine(threshold=1.0).match(Vector([math.nan, 0.0]), POPULATION)

    assert result.status == VerificationStatus.ERROR
    assert result.error_cause == ErrorCause.EXTRACTION_FAILURE


def test_repeated_calls_are_deterministic():
    population = [make_descriptor(f"id-{i}", random_vector(i)) for i in range(50)]
    probe = Vector(random_vector(1000))
    engine = MatcherEngine(threshold=2.0)

    results = [engine.match(probe, population) for _ in range(5)]

    first = results[0]
    for r in results[1:]:
        assert (r.status, r.matched_identity_id, r.distance) == (
            first.status,
            first.matched_identity_id,
            first.distance,
        )


def test_accepts_any_iterable_population():
    result = MatcherEngine(threshold=1.0).match(Vector([0.1, 0.1]), iter(POPULATION))

    assert result.matched_identity_id == "A"


@pytest.mark.parametrize(
    "distance,expected",
    [(0.0, 1.0), (0.3, 0.5), (0.6, 0.0), (1.2, 0.0)],
)
def test_distance_to_confidence(distance, expected):
    assert distance_to_confidence(distance, 0.6) == pytest.approx(expected)


def test_confidence_decreases_with_distance():
    values = [distance_to_confidence(d / 10, 1.0) for d in range(12)]
    assert values == sorted(values, reverse=True)


@pytest.mark.parametrize("threshold", [0.0, -1.0, math.inf, math.nan])
def test_rejects_invalid_threshold(threshold):
    with pytest.raises(ValueError):
        MatcherEngine(threshold=threshold)


def test_rejects_unsupported_metric():
    with pytest.raises(ValueError):
        MatcherEngine(threshold=0.6, metric="cosine")


class TestAmbiguity:
    population = [
        make_descriptor("A", [0.10, 0.0]),
        make_descriptor("B", [0.0, 0.12]),
        make_descriptor("C", [5.0, 5.0]),
    ]

    def test_disabled_by_default(self):
        result = MatcherEngine(threshold=0.6).match(Vector([0.0, 0.0]), self.population)

        assert result.status == VerificationStatus.MATCH
        assert result.matched_identity_id == "A"

    def test_near_tie_between_identities_is_ambiguous(self):
        engine = MatcherEngine(threshold=0.6, ambiguity_margin=0.05)

        result = engine.match(Vector([0.0, 0.0]), self.population)

        assert result.status == VerificationStatus.AMBIGUOUS
        assert result.matched_identity_id is None
        assert result.distance == pytest.approx(0.10)

    def test_clear_winner_with_margin_enabled(self):
        engine = MatcherEngine(threshold=0.6, ambiguity_margin=0.01)

        result = engine.match(Vector([0.0, 0.0]), self.population)

        assert result.status == VerificationStatus.MATCH
        assert result.matched_identity_id == "A"

    def test_same_identity_descriptors_never_ambiguous(self):
        population = [
            make_descriptor("A", [0.10, 0.0]),
            make_descriptor("A", [0.0, 0.11]),
        ]
        engine = MatcherEngine(threshold=0.6, ambiguity_margin=0.05)

        result = engine.match(Vector([0.0, 0.0]), population)

        assert result.status == VerificationStatus.MATCH

    def test_runner_up_beyond_threshold_is_not_ambiguous(self):
        population = [
            make_descriptor("A", [0.58, 0.0]),
            make_descriptor("B", [0.62, 0.0]),
        ]
        engine = MatcherEngine(threshold=0.6, ambiguity_margin=0.1)

        result = engine.match(Vector([0.0, 0.0]), population)

        assert result.status == VerificationStatus.MATCH
        assert result.matched_identity_id == "A"
