"""CLI entry: verify one captured image against a reference gallery directory."""

from __future__ import annotations

import argparse
import json
import sys

from pathlib import Path

from faceverify.config import VerificationConfig
from faceverify.errors import VerificationError
from faceverify.face.gallery import GalleryConfig, iter_reference_images
from faceverify.face.sources import InsightFaceEmbeddingSource, MediaPipeLandmarkSource, SourceConfig
from faceverify.pipeline import VerificationPipeline
from faceverify.utils.log import get_logger, set_level
from faceverify.utils.serializer import serialize_liveness, serialize_verdict

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Face verification with a landmark-based liveness gate")
    parser.add_argument("image", help="Captured image to verify")
    parser.add_argument("--gallery", "-g", default="data/id_photo", help="Reference directory (<label>/*.jpg or <label>.jpg)")
    parser.add_argument(
        "--acceptance-threshold",
        "-t",
        type=float,
        required=True,
        help="Maximum Euclidean distance accepted as a match (calibrate per embedding model)",
    )
    parser.add_argument("--eye-openness-threshold", type=float, default=0.2, help="Eye aspect ratio above which an eye is open")
    parser.add_argument("--frontal-offset-ratio", type=float, default=0.2, help="Max nose offset as a fraction of eye distance")
    parser.add_argument("--model", default="buffalo_l", help="InsightFace model pack (default buffalo_l)")
    parser.add_argument("--det-size", type=int, default=640, help="InsightFace det_size (default 640)")
    parser.add_argument(
        "--device",
        type=str,
        default="auto",
        choices=["auto", "cpu", "gpu"],
        help="Compute device: auto/cpu/gpu (auto uses the GPU when CUDA is available)",
    )
    parser.add_argument("--normalize-embeddings", action="store_true", help="Match on L2-normalized embeddings")
    parser.add_argument("--refine-landmarks", action="store_true", help="Use Face Mesh iris refinement (478 points)")
    parser.add_argument("--max-refs-per-label", type=int, default=None, help="Keep at most K references per identity")
    parser.add_argument("--debug-topk", type=int, default=0, help="Log the k nearest identities for each attempt")
    parser.add_argument("--output-json", "-j", default=None, help="Write the verdict JSON to this path")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default INFO)")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    set_level(args.log_level)

    import cv2

    config = VerificationConfig(
        acceptance_threshold=args.acceptance_threshold,
        eye_openness_threshold=args.eye_openness_threshold,
        frontal_offset_ratio=args.frontal_offset_ratio,
        debug_topk=args.debug_topk,
        gallery=GalleryConfig(max_descriptors_per_label=args.max_refs_per_label),
        sources=SourceConfig(
            model=args.model,
            det_size=args.det_size,
            device=args.device,
            normalize_embeddings=args.normalize_embeddings,
            refine_landmarks=args.refine_landmarks,
        ),
    )

    image = cv2.imread(str(args.image))
    if image is None:
        logger.error(f"Cannot read image: {args.image}")
        return 2

    try:
        config.validate()
        embedding_source = InsightFaceEmbeddingSource(config.sources)
        landmark_source = MediaPipeLandmarkSource(config.sources)
        pipeline = VerificationPipeline.from_references(
            config, landmark_source, embedding_source, iter_reference_images(args.gallery)
        )
        logger.info(f"Gallery: {pipeline.gallery.info()['identities']} identities")

        attempt = pipeline.new_attempt()
        verdict = attempt.run(image)
    except (VerificationError, FileNotFoundError) as e:
        logger.error(f"Verification failed: {e}")
        return 2

    out = serialize_verdict(verdict)
    if attempt.liveness is not None and args.debug_topk > 0:
        out["liveness"] = serialize_liveness(attempt.liveness)

    text = json.dumps(out, ensure_ascii=False, indent=2)
    print(text)
    if args.output_json:
        Path(args.output_json).write_text(text, encoding="utf-8")
        logger.info(f"Verdict written to {args.output_json}")
    return 0 if verdict.accepted else 1


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
