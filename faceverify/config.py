from __future__ import annotations

import math

from dataclasses import dataclass, field, fields
from typing import Any, Mapping, Optional

from faceverify.errors import ConfigError
from faceverify.face.gallery import GalleryConfig
from faceverify.face.liveness import FACE_MESH_POINTS, FACE_MESH_POINTS_REFINED, LivenessConfig
from faceverify.face.matcher import MatcherConfig
from faceverify.face.sources import SourceConfig


@dataclass
class VerificationConfig:
    # Required; calibrate per embedding model (see MatcherConfig).
    acceptance_threshold: Optional[float] = None
    eye_openness_threshold: float = 0.2
    frontal_offset_ratio: float = 0.2

    # Log the nearest few identities on every attempt.
    debug_topk: int = 0

    gallery: GalleryConfig = field(default_factory=GalleryConfig)
    sources: SourceConfig = field(default_factory=SourceConfig)

    def validate(self) -> "VerificationConfig":
        if self.acceptance_threshold is None:
            raise ConfigError("acceptance_threshold is required (no default; calibrate it to the embedding model)")
        for name in ("acceptance_threshold", "eye_openness_threshold", "frontal_offset_ratio"):
            value = float(getattr(self, name))
            if not math.isfinite(value) or value < 0.0:
                raise ConfigError(f"{name} must be a finite value >= 0, got {value}")
            setattr(self, name, value)
        if self.gallery.max_descriptors_per_label is not None and int(self.gallery.max_descriptors_per_label) < 1:
            raise ConfigError("gallery.max_descriptors_per_label must be >= 1")
        return self

    def liveness_config(self) -> LivenessConfig:
        points = FACE_MESH_POINTS_REFINED if self.sources.refine_landmarks else FACE_MESH_POINTS
        return LivenessConfig(
            eye_openness_threshold=float(self.eye_openness_threshold),
            frontal_offset_ratio=float(self.frontal_offset_ratio),
            num_landmarks=points,
        )

    def matcher_config(self) -> MatcherConfig:
        return MatcherConfig(acceptance_threshold=self.acceptance_threshold)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "VerificationConfig":
        """Build from a flat or nested mapping (e.g. parsed JSON/YAML); unknown keys are rejected."""
        data = dict(data)
        gallery = GalleryConfig(**dict(data.pop("gallery", {}) or {}))
        sources = SourceConfig(**dict(data.pop("sources", {}) or {}))
        known = {f.name for f in fields(cls)} - {"gallery", "sources"}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"unknown configuration keys: {unknown}")
        return cls(gallery=gallery, sources=sources, **data).validate()
