"""Reference gallery: labelled face descriptors, built once and swapped wholesale."""

from __future__ import annotations

import threading

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from faceverify.errors import DimensionMismatch, EmptyGallery, InvalidInput
from faceverify.utils.log import get_logger

logger = get_logger(__name__)

IMAGE_SUFFIXES = (".jpg", ".jpeg", ".png")


@dataclass
class GalleryConfig:
    # Keep at most K reference descriptors per label (first K in input order). None = unlimited.
    max_descriptors_per_label: Optional[int] = None


def to_descriptor(vec) -> np.ndarray:
    """Coerce a descriptor to a finite 1-D float32 array."""
    if vec is None:
        raise InvalidInput("descriptor is None")
    arr = np.asarray(vec, dtype=np.float32)
    if arr.ndim == 2 and arr.shape[0] == 1:
        arr = arr.reshape(-1)
    if arr.ndim != 1 or arr.size == 0:
        raise InvalidInput(f"descriptor must be a non-empty 1-D vector, got shape {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise InvalidInput("descriptor contains non-finite values")
    return arr


@dataclass(frozen=True)
class GalleryEntry:
    label: str
    # (K, D) float32, read-only, K >= 1.
    descriptors: np.ndarray

    @property
    def count(self) -> int:
        return int(self.descriptors.shape[0])


class Gallery:
    """Immutable label -> reference descriptors mapping.

    Entries iterate in lexicographic label order. A flattened (N, D) matrix plus a
    row -> entry index is kept alongside so the matcher can scan every reference
    descriptor in one vectorized pass.
    """

    def __init__(self, entries: Mapping[str, np.ndarray]):
        by_label: Dict[str, object] = {}
        for key, value in entries.items():
            label = str(key)
            if label in by_label:
                raise InvalidInput(f"duplicate gallery label {label!r}")
            by_label[label] = value
        labels = sorted(by_label)
        built: Dict[str, GalleryEntry] = {}
        mats: List[np.ndarray] = []
        ids: List[np.ndarray] = []
        dim = 0

        for idx, label in enumerate(labels):
            mat = np.asarray(by_label[label], dtype=np.float32)
            if mat.ndim == 1:
                mat = mat.reshape(1, -1)
            if mat.ndim != 2 or mat.shape[0] == 0 or mat.shape[1] == 0:
                raise InvalidInput(f"gallery entry {label!r} has no usable descriptors (shape {mat.shape})")
            if not np.all(np.isfinite(mat)):
                raise InvalidInput(f"gallery entry {label!r} contains non-finite values")
            if dim == 0:
                dim = int(mat.shape[1])
            if int(mat.shape[1]) != dim:
                raise DimensionMismatch(dim, int(mat.shape[1]))

            mat = np.array(mat, dtype=np.float32, copy=True)
            mat.setflags(write=False)
            built[label] = GalleryEntry(label=label, descriptors=mat)
            mats.append(mat)
            ids.append(np.full((int(mat.shape[0]),), idx, dtype=np.int32))

        self._entries = built
        self._labels: Tuple[str, ...] = tuple(labels)
        self._dim = dim
        if mats:
            matrix = np.ascontiguousarray(np.concatenate(mats, axis=0))
            label_ids = np.concatenate(ids, axis=0)
        else:
            matrix = np.zeros((0, 0), dtype=np.float32)
            label_ids = np.zeros((0,), dtype=np.int32)
        matrix.setflags(write=False)
        label_ids.setflags(write=False)
        self._matrix = matrix
        self._label_ids = label_ids

    @classmethod
    def from_descriptors(cls, mapping: Mapping[str, Sequence]) -> "Gallery":
        """Build directly from label -> descriptor(s), e.g. precomputed vectors."""
        out: Dict[str, np.ndarray] = {}
        for label, vecs in mapping.items():
            arr = np.asarray(vecs, dtype=np.float32)
            if arr.ndim == 1:
                arr = arr.reshape(1, -1)
            out[str(label)] = np.stack([to_descriptor(v) for v in arr], axis=0) if arr.size else arr
        return cls(out)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, label) -> bool:
        return label in self._entries

    def __getitem__(self, label: str) -> GalleryEntry:
        return self._entries[label]

    def __iter__(self) -> Iterator[GalleryEntry]:
        for label in self._labels:
            yield self._entries[label]

    @property
    def labels(self) -> Tuple[str, ...]:
        return self._labels

    @property
    def dim(self) -> int:
        return self._dim

    @property
    def matrix(self) -> np.ndarray:
        return self._matrix

    @property
    def label_ids(self) -> np.ndarray:
        return self._label_ids

    def info(self) -> Dict:
        return {
            "identities": len(self._entries),
            "dimension": int(self._dim),
            "descriptors": {label: self._entries[label].count for label in self._labels},
        }


def build_gallery(
    entries: Iterable[Tuple[str, object]],
    embedding_source,
    config: Optional[GalleryConfig] = None,
) -> Gallery:
    """Run every reference image through `embedding_source` and build a Gallery.

    References where the source finds no face are skipped with a warning. Repeated
    labels accumulate descriptors. Raises EmptyGallery if nothing survives.
    """
    cfg = config or GalleryConfig()
    per_label: Dict[str, List[np.ndarray]] = {}
    dim = 0
    total = 0
    ok = 0

    for label, image in entries:
        total += 1
        label = str(label)
        descriptor = embedding_source.extract_embedding(image)
        if descriptor is None:
            logger.warning(f"No face found in reference image for {label!r}; skipped")
            continue
        vec = to_descriptor(descriptor)
        if dim == 0:
            dim = int(vec.shape[0])
        elif int(vec.shape[0]) != dim:
            raise DimensionMismatch(dim, int(vec.shape[0]))

        bucket = per_label.setdefault(label, [])
        limit = cfg.max_descriptors_per_label
        if limit is not None and len(bucket) >= int(limit):
            logger.info(f"{label!r}: keeping first {int(limit)} references, extra one ignored")
            continue
        bucket.append(vec)
        ok += 1

    if not per_label:
        raise EmptyGallery(f"no reference image produced a descriptor ({total} tried)")

    gallery = Gallery({label: np.stack(vecs, axis=0) for label, vecs in per_label.items()})
    logger.info(f"Gallery built: {len(gallery)} identities, {ok}/{total} reference images")
    return gallery


def iter_reference_images(gallery_dir) -> Iterator[Tuple[str, np.ndarray]]:
    """Yield (label, BGR image) pairs from a reference directory.

    Layouts: `<dir>/<label>/*.jpg` (several photos per identity) and
    `<dir>/<label>.jpg` (label = file stem). Unreadable files are logged and skipped.
    """
    root = Path(gallery_dir)
    if not root.is_dir():
        raise FileNotFoundError(f"gallery directory not found: {root}")

    import cv2

    for path in sorted(root.iterdir()):
        if path.is_dir():
            label = path.name
            # Case-insensitive suffix match so 0001.JPG is picked up too.
            files = sorted(p for p in path.iterdir() if p.is_file() and p.suffix.lower() in IMAGE_SUFFIXES)
        elif path.is_file() and path.suffix.lower() in IMAGE_SUFFIXES:
            label = path.stem
            files = [path]
        else:
            continue

        for img_file in files:
            image = cv2.imread(str(img_file))
            if image is None:
                logger.warning(f"Cannot read image: {img_file}")
                continue
            yield label, image


class GalleryHandle:
    """Holds the current Gallery; rebuilt galleries are published by swapping the reference.

    Readers call `current()` once per attempt and keep that snapshot. Only writers
    take the lock.
    """

    def __init__(self, gallery: Gallery):
        self._gallery = gallery
        self._lock = threading.Lock()

    def current(self) -> Gallery:
        return self._gallery

    def swap(self, gallery: Gallery) -> Gallery:
        """Publish `gallery`, returning the previous one."""
        if not isinstance(gallery, Gallery):
            raise TypeError(f"expected Gallery, got {type(gallery).__name__}")
        with self._lock:
            old = self._gallery
            self._gallery = gallery
        logger.info(f"Gallery swapped: {len(old)} -> {len(gallery)} identities")
        return old
