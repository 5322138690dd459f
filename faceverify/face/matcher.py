"""Nearest-neighbour matching of a query descriptor against a Gallery."""

from __future__ import annotations

import math

from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

from faceverify.errors import ConfigError, DimensionMismatch, EmptyGallery
from faceverify.face.gallery import Gallery, to_descriptor
from faceverify.utils.math import row_distances


@dataclass
class MatcherConfig:
    # Maximum Euclidean distance accepted as a match. No default: the scale depends on
    # the embedding model (raw face-api/dlib 128-D, ArcFace 512-D, normalized or not).
    acceptance_threshold: float

    def __post_init__(self) -> None:
        thr = self.acceptance_threshold
        if thr is None:
            raise ConfigError("acceptance_threshold is required")
        thr = float(thr)
        if not math.isfinite(thr) or thr < 0.0:
            raise ConfigError(f"acceptance_threshold must be a finite value >= 0, got {thr}")
        self.acceptance_threshold = thr


@dataclass(frozen=True)
class MatchResult:
    label: str
    distance: float
    accepted: bool


class EuclideanMatcher:
    """Exhaustive nearest-neighbour matcher over a Gallery.

    Every reference descriptor is compared to the query in one vectorized pass;
    an identity's distance is the minimum over its descriptors. No index structure
    is kept: at tens to low thousands of identities a linear scan costs well under
    the embedding model's own latency.
    """

    def __init__(self, config: MatcherConfig):
        self.config = config

    def _per_label_distances(self, query, gallery: Gallery) -> np.ndarray:
        if gallery is None or len(gallery) == 0:
            raise EmptyGallery("gallery has no enrolled identities")
        q = to_descriptor(query)
        if int(q.shape[0]) != int(gallery.dim):
            raise DimensionMismatch(gallery.dim, int(q.shape[0]))

        dists = row_distances(gallery.matrix, q)
        best = np.full((len(gallery),), np.inf, dtype=np.float64)
        # best[label] = min(best[label], dists[row])
        np.minimum.at(best, gallery.label_ids, dists)
        return best

    def match(self, query, gallery: Gallery) -> MatchResult:
        best = self._per_label_distances(query, gallery)
        # argmin returns the first minimum; labels are sorted, so ties go to the
        # lexicographically smallest label.
        idx = int(np.argmin(best))
        distance = float(best[idx])
        return MatchResult(
            label=gallery.labels[idx],
            distance=distance,
            accepted=distance <= float(self.config.acceptance_threshold),
        )

    def rank(self, query, gallery: Gallery, topk: int = 5) -> List[Tuple[str, float]]:
        """Top-k (label, distance) pairs, nearest first. Used for debug logging."""
        best = self._per_label_distances(query, gallery)
        order = np.argsort(best, kind="stable")[: int(max(1, topk))]
        return [(gallery.labels[int(i)], float(best[int(i)])) for i in order]
