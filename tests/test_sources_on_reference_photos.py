from __future__ import annotations

from pathlib import Path

import pytest

from faceverify.face.gallery import build_gallery, iter_reference_images
from faceverify.face.matcher import EuclideanMatcher, MatcherConfig
from faceverify.face.sources import (
    InsightFaceEmbeddingSource,
    MediaPipeLandmarkSource,
    SourceConfig,
    resolve_device,
)


def test_resolve_device_passthrough():
    assert resolve_device("cpu") == "cpu"
    assert resolve_device(" GPU ") == "gpu"
    assert resolve_device("auto") in ("cpu", "gpu")


def test_real_sources_on_reference_photos():
    repo_root = Path(__file__).resolve().parents[1]
    gallery_dir = repo_root / "data" / "id_photo"
    if not gallery_dir.exists():
        pytest.skip("data/id_photo (gallery) not found")
    pytest.importorskip("insightface")
    pytest.importorskip("mediapipe")

    cfg = SourceConfig(device="cpu", det_size=640)
    embedder = InsightFaceEmbeddingSource(cfg)
    landmarker = MediaPipeLandmarkSource(cfg)

    refs = list(iter_reference_images(gallery_dir))
    if not refs:
        pytest.skip("no reference images under data/id_photo")

    gallery = build_gallery(refs, embedder)
    assert len(gallery) >= 1
    assert gallery.dim in (128, 512)

    # A reference photo must map back to an enrolled descriptor at distance ~0.
    _, image = refs[0]
    descriptor = embedder.extract_embedding(image)
    if descriptor is not None:
        result = EuclideanMatcher(MatcherConfig(acceptance_threshold=1e-3)).match(descriptor, gallery)
        assert result.accepted

    landmarks = landmarker.extract_landmarks(image)
    if landmarks is not None:
        assert landmarks.shape == (468, 3)
    landmarker.close()


def test_callable_sources_and_strict_helpers():
    import numpy as np

    from faceverify.errors import NoFaceFound
    from faceverify.face.sources import (
        CallableEmbeddingSource,
        CallableLandmarkSource,
        require_embedding,
        require_landmarks,
    )

    found = CallableEmbeddingSource(lambda image: np.ones(4, dtype=np.float32))
    missing = CallableLandmarkSource(lambda image: None)

    assert require_embedding(found, "img").shape == (4,)
    with pytest.raises(NoFaceFound):
        require_landmarks(missing, "img")
