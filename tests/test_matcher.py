from __future__ import annotations

import math

import numpy as np
import pytest

from faceverify.errors import ConfigError, DimensionMismatch, EmptyGallery, InvalidInput
from faceverify.face.gallery import Gallery
from faceverify.face.matcher import EuclideanMatcher, MatcherConfig, MatchResult


def _ab_gallery() -> Gallery:
    return Gallery.from_descriptors({"a": [0.0, 0.0], "b": [3.0, 4.0]})


def test_near_query_is_accepted():
    result = EuclideanMatcher(MatcherConfig(acceptance_threshold=1.5)).match([0.0, 1.0], _ab_gallery())
    assert result == MatchResult(label="a", distance=1.0, accepted=True)


def test_far_query_reports_nearest_but_rejects():
    result = EuclideanMatcher(MatcherConfig(acceptance_threshold=1.5)).match([10.0, 10.0], _ab_gallery())

    assert result.label == "b"
    # (10-3, 10-4) = (7, 6)
    assert result.distance == pytest.approx(math.sqrt(7**2 + 6**2))
    assert result.accepted is False


def test_threshold_is_inclusive():
    result = EuclideanMatcher(MatcherConfig(acceptance_threshold=1.0)).match([0.0, 1.0], _ab_gallery())
    assert result.accepted is True


def test_entry_distance_is_min_over_its_descriptors():
    gallery = Gallery.from_descriptors({"a": [[10.0, 10.0], [0.0, 0.5]], "b": [[0.0, 2.0]]})
    result = EuclideanMatcher(MatcherConfig(acceptance_threshold=1.0)).match([0.0, 0.0], gallery)

    assert result.label == "a"
    assert result.distance == pytest.approx(0.5)


def test_ties_go_to_lexicographically_first_label():
    gallery = Gallery.from_descriptors({"zed": [1.0, 0.0], "amy": [-1.0, 0.0], "max": [0.0, 1.0]})
    matcher = EuclideanMatcher(MatcherConfig(acceptance_threshold=2.0))

    first = matcher.match([0.0, 0.0], gallery)
    second = matcher.match([0.0, 0.0], gallery)

    assert first.label == "amy"
    assert first == second


def test_match_is_deterministic_on_random_gallery():
    rng = np.random.default_rng(7)
    gallery = Gallery.from_descriptors({f"id{i:03d}": rng.normal(size=(3, 128)) for i in range(200)})
    query = rng.normal(size=128)
    matcher = EuclideanMatcher(MatcherConfig(acceptance_threshold=10.0))

    assert matcher.match(query, gallery) == matcher.match(query, gallery)


@pytest.mark.parametrize("factor", [0.01, 3.0, 250.0])
def test_winner_is_invariant_to_uniform_scaling(factor):
    rng = np.random.default_rng(11)
    refs = {f"p{i}": rng.normal(size=(2, 16)) for i in range(25)}
    query = rng.normal(size=16)
    matcher = EuclideanMatcher(MatcherConfig(acceptance_threshold=1.0))

    base = matcher.match(query, Gallery.from_descriptors(refs))
    scaled = matcher.match(
        query * factor, Gallery.from_descriptors({k: v * factor for k, v in refs.items()})
    )

    assert scaled.label == base.label
    assert scaled.distance == pytest.approx(base.distance * factor, rel=1e-5)


def test_dimension_mismatch_raises():
    matcher = EuclideanMatcher(MatcherConfig(acceptance_threshold=1.0))
    with pytest.raises(DimensionMismatch) as exc:
        matcher.match([0.0, 0.0, 0.0], _ab_gallery())
    assert exc.value.expected == 2
    assert exc.value.actual == 3


def test_malformed_query_raises_invalid_input():
    matcher = EuclideanMatcher(MatcherConfig(acceptance_threshold=1.0))
    with pytest.raises(InvalidInput):
        matcher.match([[0.0, 1.0], [1.0, 0.0]], _ab_gallery())
    with pytest.raises(InvalidInput):
        matcher.match([np.inf, 0.0], _ab_gallery())


def test_empty_gallery_raises():
    matcher = EuclideanMatcher(MatcherConfig(acceptance_threshold=1.0))
    with pytest.raises(EmptyGallery):
        matcher.match([0.0, 0.0], Gallery({}))


@pytest.mark.parametrize("bad", [None, -0.1, float("nan"), float("inf")])
def test_acceptance_threshold_must_be_supplied_and_valid(bad):
    with pytest.raises(ConfigError):
        MatcherConfig(acceptance_threshold=bad)


def test_rank_orders_nearest_first():
    gallery = Gallery.from_descriptors({"a": [0.0, 0.0], "b": [3.0, 4.0], "c": [0.0, 2.0]})
    ranked = EuclideanMatcher(MatcherConfig(acceptance_threshold=1.0)).rank([0.0, 1.0], gallery, topk=2)

    assert [label for label, _ in ranked] == ["a", "c"]
    assert ranked[0][1] == pytest.approx(1.0)
