"""Shared fixtures: synthetic atlas collections and a fake ANTs toolchain."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Dict, Optional, Tuple

import numpy as np
import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from helpers.fake_ants import FakeAnts, save_volume  # noqa: E402
from pgjlf.ants import AntsTools  # noqa: E402
from pgjlf.policy import FusionConfig  # noqa: E402

SHAPE = (6, 6, 6)


def cube_labels(label: int = 1, lo: int = 1, hi: int = 4) -> np.ndarray:
    data = np.zeros(SHAPE, dtype=np.float32)
    data[lo:hi, lo:hi, lo:hi] = label
    return data


def gray_like(labels: np.ndarray, offset: float = 0.0) -> np.ndarray:
    return labels * 100.0 + 10.0 + offset


def write_atlas(
    atlas_dir: Path,
    atlas_id: str,
    labels: np.ndarray,
    gray: Optional[np.ndarray] = None,
    skip: Tuple[str, ...] = (),
) -> None:
    atlas_dir.mkdir(parents=True, exist_ok=True)
    if "gray" not in skip:
        save_volume(atlas_dir / f"{atlas_id}.nii.gz", gray_like(labels) if gray is None else gray)
    if "labels" not in skip:
        save_volume(atlas_dir / f"{atlas_id}_Seg.nii.gz", labels)
    if "warp" not in skip:
        save_volume(atlas_dir / f"{atlas_id}_ToTemplate_1Warp.nii.gz", np.zeros(SHAPE))
    if "affine" not in skip:
        (atlas_dir / f"{atlas_id}_ToTemplate_0GenericAffine.mat").write_text("x", encoding="utf-8")


@pytest.fixture
def fake_ants(monkeypatch: pytest.MonkeyPatch) -> FakeAnts:
    fake = FakeAnts()
    monkeypatch.setattr("pgjlf.ants._run_command", fake)
    return fake


@pytest.fixture
def tools() -> AntsTools:
    return AntsTools(bin_dir=None)


@pytest.fixture
def subject_image(tmp_path: Path) -> Path:
    return save_volume(tmp_path / "subject" / "sub01.nii.gz", gray_like(cube_labels()))


@pytest.fixture
def make_atlas_dir(tmp_path: Path):
    def _make(atlases: Dict[str, np.ndarray], grays: Optional[Dict[str, np.ndarray]] = None) -> Path:
        atlas_dir = tmp_path / "atlases"
        atlas_dir.mkdir(parents=True, exist_ok=True)
        for atlas_id, labels in atlases.items():
            write_atlas(atlas_dir, atlas_id, labels, (grays or {}).get(atlas_id))
        return atlas_dir

    return _make


@pytest.fixture
def make_config(tmp_path: Path, subject_image: Path):
    def _make(atlas_dir: Path, **overrides) -> FusionConfig:
        values = dict(
            input_image=subject_image,
            template_to_subject="-t sub01_1Warp.nii.gz -t sub01_0GenericAffine.mat",
            atlas_dir=atlas_dir,
            output_root=str(tmp_path / "out" / "sub01_"),
            reportlets=False,
        )
        values.update(overrides)
        return FusionConfig(**values)

    return _make


@pytest.fixture
def workspace(tmp_path: Path, subject_image: Path):
    from pgjlf.workspace import Workspace

    ws = Workspace(path=tmp_path / "ws", file_root="sub01_")
    ws.path.mkdir(parents=True)
    ws.reference_image.write_bytes(subject_image.read_bytes())
    return ws
