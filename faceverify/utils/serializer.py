from typing import Dict

from faceverify.face.liveness import LivenessVerdict
from faceverify.pipeline import Accepted, VerificationVerdict


def serialize_verdict(verdict: VerificationVerdict) -> Dict:
    """Serialize a verdict into a JSON-safe dict.

    Only the matched label and distance leave the core; descriptors and landmarks
    are never included.
    """
    if isinstance(verdict, Accepted):
        return {
            "status": "accepted",
            "label": str(verdict.label),
            "distance": round(float(verdict.distance), 6),
            "reason": None,
        }

    return {
        "status": "rejected",
        "label": None,
        "distance": None if verdict.distance is None else round(float(verdict.distance), 6),
        "reason": verdict.reason.value,
    }


def serialize_liveness(verdict: LivenessVerdict) -> Dict:
    """Liveness diagnostics for debug output (ratios and the frontal flag only)."""
    return {
        "is_live": bool(verdict.is_live),
        "left_eye_openness": round(float(verdict.left_eye_openness), 4),
        "right_eye_openness": round(float(verdict.right_eye_openness), 4),
        "is_frontal": bool(verdict.is_frontal),
    }
