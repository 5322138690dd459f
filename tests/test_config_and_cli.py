from __future__ import annotations

import pytest

from faceverify.config import VerificationConfig
from faceverify.errors import ConfigError


def test_from_dict_nested_sections():
    cfg = VerificationConfig.from_dict(
        {
            "acceptance_threshold": 0.6,
            "eye_openness_threshold": 0.25,
            "gallery": {"max_descriptors_per_label": 3},
            "sources": {"device": "cpu", "refine_landmarks": True},
        }
    )

    assert cfg.acceptance_threshold == 0.6
    assert cfg.frontal_offset_ratio == 0.2
    assert cfg.gallery.max_descriptors_per_label == 3
    assert cfg.sources.device == "cpu"
    assert cfg.liveness_config().num_landmarks == 478
    assert cfg.liveness_config().eye_openness_threshold == 0.25
    assert cfg.matcher_config().acceptance_threshold == 0.6


def test_from_dict_rejects_unknown_keys():
    with pytest.raises(ConfigError):
        VerificationConfig.from_dict({"acceptance_threshold": 0.6, "threshold": 0.4})


@pytest.mark.parametrize(
    "kwargs",
    [
        {},
        {"acceptance_threshold": -1.0},
        {"acceptance_threshold": 0.6, "eye_openness_threshold": -0.2},
        {"acceptance_threshold": 0.6, "frontal_offset_ratio": float("nan")},
    ],
)
def test_validate_rejects_bad_values(kwargs):
    with pytest.raises(ConfigError):
        VerificationConfig(**kwargs).validate()


def test_default_liveness_point_count():
    assert VerificationConfig(acceptance_threshold=1.0).liveness_config().num_landmarks == 468


def test_cli_requires_acceptance_threshold():
    from face_verifier import build_parser

    with pytest.raises(SystemExit):
        build_parser().parse_args(["capture.jpg"])

    args = build_parser().parse_args(["capture.jpg", "-t", "0.6", "--device", "cpu"])
    assert args.acceptance_threshold == 0.6
    assert args.eye_openness_threshold == 0.2
    assert args.frontal_offset_ratio == 0.2


def test_cli_unreadable_image_exits_with_error(tmp_path):
    pytest.importorskip("cv2")
    from face_verifier import main

    assert main([str(tmp_path / "missing.jpg"), "-t", "0.6", "-g", str(tmp_path)]) == 2
