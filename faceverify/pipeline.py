"""Verification pipeline: captured image -> liveness gate -> nearest match -> verdict.

One `VerificationAttempt` is created per image and discarded after the verdict.
The pipeline itself only holds immutable handles (config, sources, gallery handle),
so attempts can run concurrently in threads or asyncio tasks.
"""

from __future__ import annotations

import asyncio
import inspect
import time

from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Tuple, Union

from faceverify.config import VerificationConfig
from faceverify.face.gallery import Gallery, GalleryHandle, build_gallery
from faceverify.face.liveness import LivenessEvaluator, LivenessVerdict
from faceverify.face.matcher import EuclideanMatcher, MatchResult
from faceverify.face.sources import EmbeddingSource, LandmarkSource
from faceverify.utils.log import get_logger

logger = get_logger(__name__)

# Shared pool for synchronous sources called from `averify`. Model inference is the
# bottleneck, so a small pool avoids oversubscribing the CPU.
_SOURCE_EXECUTOR = ThreadPoolExecutor(max_workers=4, thread_name_prefix="faceverify_src_")


class AttemptState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    EXTRACTING_FEATURES = "extracting_features"
    CHECKING_LIVENESS = "checking_liveness"
    MATCHING = "matching"
    DECIDED = "decided"


class RejectReason(str, Enum):
    NO_FACE_DETECTED = "no_face_detected"
    LIVENESS_FAILED = "liveness_failed"
    NO_MATCH = "no_match"


@dataclass(frozen=True)
class Accepted:
    label: str
    distance: float

    @property
    def accepted(self) -> bool:
        return True


@dataclass(frozen=True)
class Rejected:
    reason: RejectReason
    # Only set for NO_MATCH (distance to the nearest identity).
    distance: Optional[float] = None

    @property
    def accepted(self) -> bool:
        return False


VerificationVerdict = Union[Accepted, Rejected]


class VerificationAttempt:
    """Single-use state machine for one captured image."""

    def __init__(
        self,
        gallery: Gallery,
        landmark_source: LandmarkSource,
        embedding_source: EmbeddingSource,
        evaluator: LivenessEvaluator,
        matcher: EuclideanMatcher,
        debug_topk: int = 0,
    ):
        self.gallery = gallery
        self.landmark_source = landmark_source
        self.embedding_source = embedding_source
        self.evaluator = evaluator
        self.matcher = matcher
        self.debug_topk = int(debug_topk)

        self.state = AttemptState.IDLE
        self.history: List[AttemptState] = [AttemptState.IDLE]
        self.liveness: Optional[LivenessVerdict] = None
        self.match_result: Optional[MatchResult] = None
        self.verdict: Optional[VerificationVerdict] = None

    def _enter(self, state: AttemptState) -> None:
        if self.state is AttemptState.DECIDED:
            raise RuntimeError("attempt already decided; create a new one")
        self.state = state
        self.history.append(state)

    def _decide(self, verdict: VerificationVerdict) -> VerificationVerdict:
        self._enter(AttemptState.DECIDED)
        self.verdict = verdict
        return verdict

    def _after_extraction(self, landmarks, descriptor) -> Optional[VerificationVerdict]:
        if landmarks is None or descriptor is None:
            return self._decide(Rejected(RejectReason.NO_FACE_DETECTED))

        self._enter(AttemptState.CHECKING_LIVENESS)
        self.liveness = self.evaluator.evaluate(landmarks)
        if not self.liveness.is_live:
            logger.debug(
                f"liveness failed: ear=({self.liveness.left_eye_openness:.3f}, "
                f"{self.liveness.right_eye_openness:.3f}), frontal={self.liveness.is_frontal}"
            )
            return self._decide(Rejected(RejectReason.LIVENESS_FAILED))
        return None

    def _match(self, descriptor) -> VerificationVerdict:
        self._enter(AttemptState.MATCHING)
        result = self.matcher.match(descriptor, self.gallery)
        self.match_result = result
        if self.debug_topk > 0:
            logger.info(f"match debug: top{self.debug_topk}={self.matcher.rank(descriptor, self.gallery, self.debug_topk)}")
        if result.accepted:
            return self._decide(Accepted(label=result.label, distance=result.distance))
        return self._decide(Rejected(RejectReason.NO_MATCH, distance=result.distance))

    def run(self, image) -> VerificationVerdict:
        self._enter(AttemptState.CAPTURING)

        self._enter(AttemptState.EXTRACTING_FEATURES)
        landmarks = _ensure_sync(self.landmark_source.extract_landmarks(image))
        descriptor = None
        if landmarks is not None:
            descriptor = _ensure_sync(self.embedding_source.extract_embedding(image))

        verdict = self._after_extraction(landmarks, descriptor)
        if verdict is not None:
            return verdict
        return self._match(descriptor)

    async def arun(self, image, executor: Optional[Executor] = None) -> VerificationVerdict:
        self._enter(AttemptState.CAPTURING)

        self._enter(AttemptState.EXTRACTING_FEATURES)
        # Cancelling the awaiting task cancels both extractions; nothing shared has
        # been touched yet, so there is nothing to roll back.
        landmarks, descriptor = await asyncio.gather(
            _call_async(self.landmark_source.extract_landmarks, image, executor),
            _call_async(self.embedding_source.extract_embedding, image, executor),
        )

        verdict = self._after_extraction(landmarks, descriptor)
        if verdict is not None:
            return verdict
        return self._match(descriptor)


def _ensure_sync(result):
    if inspect.isawaitable(result):
        if inspect.iscoroutine(result):
            result.close()
        raise TypeError("source returned an awaitable; use VerificationPipeline.averify")
    return result


async def _call_async(func, image, executor: Optional[Executor]):
    if inspect.iscoroutinefunction(func):
        return await func(image)
    loop = asyncio.get_running_loop()
    result = await loop.run_in_executor(executor or _SOURCE_EXECUTOR, func, image)
    # Callable adapters wrapping coroutine functions hand back a coroutine.
    if inspect.isawaitable(result):
        result = await result
    return result


class VerificationPipeline:
    """Verifies captured images against the current gallery."""

    def __init__(
        self,
        config: VerificationConfig,
        landmark_source: LandmarkSource,
        embedding_source: EmbeddingSource,
        gallery: Gallery,
        executor: Optional[Executor] = None,
    ):
        self.config = config.validate()
        self.landmark_source = landmark_source
        self.embedding_source = embedding_source
        self.evaluator = LivenessEvaluator(self.config.liveness_config())
        self.matcher = EuclideanMatcher(self.config.matcher_config())
        self._gallery = GalleryHandle(gallery)
        self._executor = executor

    @classmethod
    def from_references(
        cls,
        config: VerificationConfig,
        landmark_source: LandmarkSource,
        embedding_source: EmbeddingSource,
        references: Iterable[Tuple[str, object]],
        **kwargs,
    ) -> "VerificationPipeline":
        gallery = build_gallery(references, embedding_source, config.gallery)
        return cls(config, landmark_source, embedding_source, gallery, **kwargs)

    @property
    def gallery(self) -> Gallery:
        return self._gallery.current()

    def reload_gallery(self, references: Iterable[Tuple[str, object]]) -> Gallery:
        """Rebuild the gallery from reference images and publish it atomically.

        On failure (e.g. EmptyGallery) the current gallery stays in place.
        """
        gallery = build_gallery(references, self.embedding_source, self.config.gallery)
        self._gallery.swap(gallery)
        return gallery

    def replace_gallery(self, gallery: Gallery) -> Gallery:
        return self._gallery.swap(gallery)

    def new_attempt(self) -> VerificationAttempt:
        return VerificationAttempt(
            self._gallery.current(),
            self.landmark_source,
            self.embedding_source,
            self.evaluator,
            self.matcher,
            debug_topk=self.config.debug_topk,
        )

    def verify(self, image) -> VerificationVerdict:
        t0 = time.perf_counter()
        verdict = self.new_attempt().run(image)
        _log_verdict(verdict, time.perf_counter() - t0)
        return verdict

    async def averify(self, image) -> VerificationVerdict:
        t0 = time.perf_counter()
        verdict = await self.new_attempt().arun(image, self._executor)
        _log_verdict(verdict, time.perf_counter() - t0)
        return verdict


def _log_verdict(verdict: VerificationVerdict, elapsed: float) -> None:
    if isinstance(verdict, Accepted):
        logger.info(f"verification accepted: label={verdict.label} distance={verdict.distance:.4f} ({elapsed:.3f}s)")
    elif verdict.distance is not None:
        logger.info(
            f"verification rejected: {verdict.reason.value} nearest_distance={verdict.distance:.4f} ({elapsed:.3f}s)"
        )
    else:
        logger.info(f"verification rejected: {verdict.reason.value} ({elapsed:.3f}s)")


def verify(
    image,
    gallery: Gallery,
    acceptance_threshold: float,
    landmark_source: LandmarkSource,
    embedding_source: EmbeddingSource,
    eye_openness_threshold: float = 0.2,
    frontal_offset_ratio: float = 0.2,
    num_landmarks: Optional[int] = None,
) -> VerificationVerdict:
    """One-shot verification without keeping a pipeline around."""
    config = VerificationConfig(
        acceptance_threshold=acceptance_threshold,
        eye_openness_threshold=eye_openness_threshold,
        frontal_offset_ratio=frontal_offset_ratio,
    ).validate()
    live_cfg = config.liveness_config()
    if num_landmarks is not None:
        live_cfg.num_landmarks = int(num_landmarks)
    attempt = VerificationAttempt(
        gallery,
        landmark_source,
        embedding_source,
        LivenessEvaluator(live_cfg),
        EuclideanMatcher(config.matcher_config()),
    )
    return attempt.run(image)
