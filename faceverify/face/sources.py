"""Landmark and embedding sources consumed by the verification core.

The core only depends on the two abstract interfaces below. Concrete adapters for
InsightFace (ArcFace descriptors) and MediaPipe Face Mesh (3-D landmarks) import
their model libraries lazily, so tests can run with canned vectors only.
"""

from __future__ import annotations

import threading

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import numpy as np

from faceverify.errors import NoFaceFound
from faceverify.utils.log import get_logger, suppress_fds
from faceverify.utils.math import l2_normalize

logger = get_logger(__name__)

# Process-wide model cache: constructing several sources (or pipelines in one pytest
# session) must not reload weights. Keys include every argument that changes output.
_FACEAPP_CACHE: Dict[Tuple, Any] = {}
_FACEAPP_LOCK = threading.Lock()


@dataclass
class SourceConfig:
    # InsightFace model pack name.
    model: str = "buffalo_l"
    det_size: int = 640
    # 'auto' / 'cpu' / 'gpu'
    device: str = "auto"
    # Return `normed_embedding` instead of the raw one; changes the distance scale.
    normalize_embeddings: bool = False
    # MediaPipe Face Mesh: 478 points with iris refinement, 468 without.
    refine_landmarks: bool = False
    min_detection_confidence: float = 0.5


class LandmarkSource(ABC):
    """image -> (N, 3) landmark array, or None when no face is found."""

    @abstractmethod
    def extract_landmarks(self, image) -> Optional[np.ndarray]:
        pass


class EmbeddingSource(ABC):
    """image -> (D,) descriptor, or None when no face is found."""

    @abstractmethod
    def extract_embedding(self, image) -> Optional[np.ndarray]:
        pass


class CallableLandmarkSource(LandmarkSource):
    """Wrap a plain function (or coroutine function) as a LandmarkSource."""

    def __init__(self, fn: Callable):
        self.fn = fn

    def extract_landmarks(self, image):
        return self.fn(image)


class CallableEmbeddingSource(EmbeddingSource):
    """Wrap a plain function (or coroutine function) as an EmbeddingSource."""

    def __init__(self, fn: Callable):
        self.fn = fn

    def extract_embedding(self, image):
        return self.fn(image)


def require_landmarks(source: LandmarkSource, image) -> np.ndarray:
    landmarks = source.extract_landmarks(image)
    if landmarks is None:
        raise NoFaceFound("landmark source found no face")
    return landmarks


def require_embedding(source: EmbeddingSource, image) -> np.ndarray:
    descriptor = source.extract_embedding(image)
    if descriptor is None:
        raise NoFaceFound("embedding source found no face")
    return descriptor


def resolve_device(device: str) -> str:
    """Map 'auto' to 'gpu' when CUDA is available, otherwise 'cpu'."""
    dev = str(device).lower().strip()
    if dev != "auto":
        return dev
    try:
        import torch

        return "gpu" if torch.cuda.is_available() else "cpu"
    except Exception:
        return "cpu"


def _largest_face(faces):
    def _area(f) -> float:
        x1, y1, x2, y2 = [float(v) for v in f.bbox[:4]]
        return max(0.0, x2 - x1) * max(0.0, y2 - y1)

    return max(faces, key=_area)


class InsightFaceEmbeddingSource(EmbeddingSource):
    """ArcFace descriptors from an InsightFace model pack (largest face in the image)."""

    def __init__(self, config: Optional[SourceConfig] = None):
        self.config = config or SourceConfig()
        device = resolve_device(self.config.device)
        if device == "gpu":
            providers = ["CUDAExecutionProvider"]
            self.ctx_id = 0
        else:
            providers = ["CPUExecutionProvider"]
            self.ctx_id = -1

        det_size = (int(self.config.det_size), int(self.config.det_size))
        key = (str(self.config.model), tuple(providers), int(self.ctx_id), det_size)
        with _FACEAPP_LOCK:
            app = _FACEAPP_CACHE.get(key)
            if app is None:
                from insightface.app import FaceAnalysis

                with suppress_fds():
                    app = FaceAnalysis(
                        name=self.config.model,
                        providers=providers,
                        allowed_modules=["detection", "recognition"],
                    )
                    app.prepare(ctx_id=self.ctx_id, det_size=det_size)
                _FACEAPP_CACHE[key] = app
                logger.info(f"Loaded InsightFace model {self.config.model} ({device}, det_size={det_size[0]})")
        self._app = app

    def extract_embedding(self, image) -> Optional[np.ndarray]:
        if image is None:
            return None
        faces = self._app.get(image)
        if not faces:
            return None
        face = _largest_face(faces)
        emb = getattr(face, "embedding", None)
        if emb is None:
            return None
        emb = np.asarray(emb, dtype=np.float32).reshape(-1)
        if self.config.normalize_embeddings:
            emb = l2_normalize(emb)
        return emb


class MediaPipeLandmarkSource(LandmarkSource):
    """3-D Face Mesh landmarks in pixel units for a BGR image."""

    def __init__(self, config: Optional[SourceConfig] = None):
        import mediapipe as mp

        self.config = config or SourceConfig()
        with suppress_fds():
            self._mesh = mp.solutions.face_mesh.FaceMesh(
                static_image_mode=True,
                max_num_faces=1,
                refine_landmarks=bool(self.config.refine_landmarks),
                min_detection_confidence=float(self.config.min_detection_confidence),
            )
        # FaceMesh graphs are not safe for concurrent process() calls.
        self._lock = threading.Lock()

    def extract_landmarks(self, image) -> Optional[np.ndarray]:
        import cv2

        if image is None:
            return None
        h, w = image.shape[:2]
        rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        with self._lock:
            results = self._mesh.process(rgb)
        if not results.multi_face_landmarks:
            return None
        points = results.multi_face_landmarks[0].landmark
        # Normalized x/y are relative to width/height; z shares the x scale.
        return np.array([[p.x * w, p.y * h, p.z * w] for p in points], dtype=np.float64)

    def close(self) -> None:
        self._mesh.close()
