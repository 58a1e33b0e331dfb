from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from pgjlf.policy import FusionPolicyError, build_fusion_config, load_fusion_policy, split_output_root

BASE_POLICY = Path(__file__).parent.parent / "policy" / "pgjlf.yaml"


def _write_policy(tmp_path: Path, manifest: dict) -> Path:
    path = tmp_path / "pgjlf.yaml"
    with path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(manifest, f, sort_keys=False)
    return path


def _build(**kwargs):
    values = dict(
        input_image=Path("sub01.nii.gz"),
        template_to_subject="-t sub01_1Warp.nii.gz",
        atlas_dir=Path("atlases"),
        output_root="out/sub01_",
        environ={},
    )
    values.update(kwargs)
    return build_fusion_config(**values)


def test_shipped_policy_matches_defaults():
    values = load_fusion_policy(BASE_POLICY)
    config = _build(policy=values)
    assert config == _build()
    assert config.majority_threshold == 0.9
    assert config.majority_vote is False
    assert config.joint_fusion is True
    assert config.label_interpolation == "GenericLabel"
    assert config.cleanup is False


def test_cli_overrides_beat_policy(tmp_path: Path):
    policy = load_fusion_policy(
        _write_policy(tmp_path, {"version": 1, "fusion": {"majority_threshold": 0.7, "majority_vote": True}})
    )
    config = _build(policy=policy, overrides={"majority_threshold": 0.6, "majority_vote": None})
    assert config.majority_threshold == 0.6
    assert config.majority_vote is True


def test_environment_supplies_ants_path_and_tmp_dir():
    config = _build(environ={"ANTSPATH": "/opt/ants/bin/", "TMPDIR": "/scratch"})
    assert config.ants_path == Path("/opt/ants/bin/")
    assert config.tmp_dir == Path("/scratch")


@pytest.mark.parametrize("threshold", [0.0, -0.1, 1.5])
def test_threshold_outside_unit_interval_is_rejected(threshold):
    with pytest.raises(FusionPolicyError, match="threshold"):
        _build(overrides={"majority_threshold": threshold})


def test_threshold_of_one_is_allowed():
    assert _build(overrides={"majority_threshold": 1.0}).majority_threshold == 1.0


@pytest.mark.parametrize(
    "manifest, message",
    [
        ({"fusion": {}}, "version"),
        ({"version": 1, "extras": {}}, "unknown section"),
        ({"version": 1, "fusion": {"jlf": True}}, "unknown key"),
        ({"version": 1, "fusion": {"majority_vote": "yes"}}, "majority_vote"),
        ({"version": 1, "fusion": {"majority_threshold": "high"}}, "majority_threshold"),
        ({"version": 1, "fusion": {"label_interpolation": ""}}, "label_interpolation"),
        ({"version": 1, "execution": {"workers": 1.5}}, "workers"),
        ({"version": 1, "execution": ["workers"]}, "mapping"),
    ],
)
def test_invalid_policy_is_rejected(tmp_path: Path, manifest: dict, message: str):
    with pytest.raises(FusionPolicyError, match=message):
        load_fusion_policy(_write_policy(tmp_path, manifest))


def test_missing_policy_file(tmp_path: Path):
    with pytest.raises(FusionPolicyError, match="not found"):
        load_fusion_policy(tmp_path / "absent.yaml")


def test_output_root_split():
    assert split_output_root("out/sub01_") == (Path("out"), "sub01_")
    assert split_output_root("sub01_") == (Path("."), "sub01_")
    assert split_output_root("out/") == (Path("out"), "")
    config = _build(output_root="results/s/sub01_")
    assert config.output_path("PGJLF.nii.gz") == Path("results/s/sub01_PGJLF.nii.gz")
