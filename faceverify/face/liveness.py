"""Geometric liveness check on 3-D face landmarks.

The check is a hard AND of two heuristics computed from a single frame:

- both eyes are open (eye aspect ratio above a threshold), which rejects
  photos with closed or half-closed eyes;
- the face is roughly frontal (nose tip close to the midpoint between the outer
  eye corners), which rejects photos held at an angle.

Landmark indices follow the MediaPipe Face Mesh topology (468 points, 478 with
refined irises).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

from faceverify.errors import InvalidInput
from faceverify.utils.math import euclidean_distance

# Face Mesh indices: (corner, top, top, corner, bottom, bottom).
# p1/p5 and p2/p4 form the vertical chords, p0/p3 the horizontal one.
LEFT_EYE_INDICES: Tuple[int, ...] = (33, 160, 158, 133, 153, 144)
RIGHT_EYE_INDICES: Tuple[int, ...] = (362, 385, 387, 263, 373, 380)

NOSE_TIP_INDEX = 1
LEFT_EYE_OUTER_INDEX = 33
RIGHT_EYE_OUTER_INDEX = 263

FACE_MESH_POINTS = 468
FACE_MESH_POINTS_REFINED = 478
MIN_LANDMARK_POINTS = 68


@dataclass
class LivenessConfig:
    # Eye is open when its aspect ratio is strictly above this value.
    eye_openness_threshold: float = 0.2
    # Face is frontal when |nose offset| < ratio * inter-eye distance.
    frontal_offset_ratio: float = 0.2
    # Exact point count produced by the landmark source.
    num_landmarks: int = FACE_MESH_POINTS


@dataclass(frozen=True)
class LivenessVerdict:
    """Liveness decision for one frame."""

    is_live: bool
    left_eye_openness: float
    right_eye_openness: float
    is_frontal: bool
    # Diagnostics only; never surfaced to end users.
    nose_offset: float = 0.0
    inter_eye_distance: float = 0.0


def eye_aspect_ratio(landmarks: np.ndarray, indices: Sequence[int]) -> float:
    """(|p1-p5| + |p2-p4|) / (2 * |p0-p3|) over six eye landmarks.

    Returns 0.0 for a degenerate eye (zero width).
    """
    p = [landmarks[int(i)] for i in indices]
    vertical_1 = euclidean_distance(p[1], p[5])
    vertical_2 = euclidean_distance(p[2], p[4])
    horizontal = euclidean_distance(p[0], p[3])
    if horizontal <= 0.0:
        return 0.0
    return (vertical_1 + vertical_2) / (2.0 * horizontal)


def nose_offset(landmarks: np.ndarray) -> Tuple[float, float]:
    """Return (horizontal nose offset from eye midpoint, inter-eye distance)."""
    nose = landmarks[NOSE_TIP_INDEX]
    left = landmarks[LEFT_EYE_OUTER_INDEX]
    right = landmarks[RIGHT_EYE_OUTER_INDEX]
    mid_x = (float(left[0]) + float(right[0])) / 2.0
    return float(nose[0]) - mid_x, euclidean_distance(left, right)


class LivenessEvaluator:
    """Pure landmark-geometry liveness evaluator."""

    def __init__(self, config: LivenessConfig = None):
        self.config = config or LivenessConfig()
        needed = max(max(LEFT_EYE_INDICES), max(RIGHT_EYE_INDICES), NOSE_TIP_INDEX) + 1
        if int(self.config.num_landmarks) < max(MIN_LANDMARK_POINTS, needed):
            raise InvalidInput(
                f"num_landmarks={self.config.num_landmarks} cannot hold the eye/nose indices (need >= {needed})"
            )

    def _validate(self, landmarks) -> np.ndarray:
        if landmarks is None:
            raise InvalidInput("landmarks is None")
        arr = np.asarray(landmarks, dtype=np.float64)
        n = int(self.config.num_landmarks)
        if arr.ndim != 2 or arr.shape != (n, 3):
            raise InvalidInput(f"expected landmarks of shape ({n}, 3), got {arr.shape}")
        if not np.all(np.isfinite(arr)):
            raise InvalidInput("landmarks contain non-finite values")
        return arr

    def evaluate(self, landmarks) -> LivenessVerdict:
        arr = self._validate(landmarks)
        cfg = self.config

        left = eye_aspect_ratio(arr, LEFT_EYE_INDICES)
        right = eye_aspect_ratio(arr, RIGHT_EYE_INDICES)
        eyes_open = left > float(cfg.eye_openness_threshold) and right > float(cfg.eye_openness_threshold)

        offset, eye_dist = nose_offset(arr)
        is_frontal = abs(offset) < float(cfg.frontal_offset_ratio) * eye_dist

        return LivenessVerdict(
            is_live=bool(eyes_open and is_frontal),
            left_eye_openness=float(left),
            right_eye_openness=float(right),
            is_frontal=bool(is_frontal),
            nose_offset=float(offset),
            inter_eye_distance=float(eye_dist),
        )
