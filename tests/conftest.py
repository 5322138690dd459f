from __future__ import annotations

import sys

from pathlib import Path

import numpy as np
import pytest

# Ensure repo root is on sys.path so tests can import `faceverify` and `face_verifier`
# without an editable install.
repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))


def make_landmarks(
    left_ear: float = 0.4,
    right_ear: float = 0.4,
    nose_dx: float = 0.0,
    n: int = 468,
    scale: float = 1.0,
) -> np.ndarray:
    """Synthetic Face Mesh landmark set with controllable eye openness and nose offset.

    Each eye is 10 units wide; the vertical chords are `ear * 10` long so the eye
    aspect ratio equals `ear`. Outer eye corners sit at x=0 and x=40, so the
    inter-eye distance is 40 and the nose tip is at x = 20 + nose_dx.
    """
    pts = np.zeros((n, 3), dtype=np.float64)

    def _eye(corner_a, top_1, top_2, corner_b, bottom_2, bottom_1, x0, ear):
        half = ear * 10.0 / 2.0
        pts[corner_a] = (x0, 0.0, 0.0)
        pts[corner_b] = (x0 + 10.0, 0.0, 0.0)
        pts[top_1] = (x0 + 3.0, half, 0.0)
        pts[bottom_1] = (x0 + 3.0, -half, 0.0)
        pts[top_2] = (x0 + 7.0, half, 0.0)
        pts[bottom_2] = (x0 + 7.0, -half, 0.0)

    # (p0, p1, p2, p3, p4, p5) per eye; p1/p5 and p2/p4 are the vertical chords.
    _eye(33, 160, 158, 133, 153, 144, 0.0, left_ear)
    _eye(362, 385, 387, 263, 373, 380, 30.0, right_ear)
    pts[1] = (20.0 + nose_dx, 12.0, -4.0)
    return pts * float(scale)


@pytest.fixture
def landmarks_factory():
    return make_landmarks
