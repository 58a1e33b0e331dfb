"""
Consensus voting and hybrid joint label fusion in subject space.

Hybrid fusion runs majority voting with an agreement threshold. Voxels where
the fraction of atlases agreeing with the majority label is below the
threshold form the disagreement region; only there is antsJointFusion run.
The two results are merged with a voxel-wise maximum, which relies on the
fusion output being 0 (background) outside the region it was asked to
label and on label 0 meaning background in every atlas.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Sequence, cast

import nibabel as nib
import numpy as np
from nibabel.filebasedimages import ImageFileError

from pgjlf.ants import AntsTools, require
from pgjlf.errors import CollaboratorError, LabelConventionError, NoAtlasesError
from pgjlf.warp import SubjectSpaceAtlas
from pgjlf.workspace import Workspace

logger = logging.getLogger(__name__)

BACKGROUND_LABEL = 0


@dataclass
class HybridFusionResult:
    labels: Path
    majority_labels: Path
    disagreement_mask: Path
    disagreement_voxels: int
    fusion_invoked: bool
    fusion_labels: Optional[Path] = None

    def as_dict(self) -> dict:
        return {
            "labels": str(self.labels),
            "majority_labels": str(self.majority_labels),
            "disagreement_mask": str(self.disagreement_mask),
            "disagreement_voxels": self.disagreement_voxels,
            "fusion_invoked": self.fusion_invoked,
            "fusion_labels": str(self.fusion_labels) if self.fusion_labels else None,
        }


def voting_mask_path(majority_output: Path) -> Path:
    """Where ImageMath MajorityVoting writes the below-threshold mask."""
    name = majority_output.name
    for ext in (".nii.gz", ".nii"):
        if name.endswith(ext):
            return majority_output.with_name(name[: -len(ext)] + "_Mask" + ext)
    return majority_output.with_name(majority_output.stem + "_Mask" + majority_output.suffix)


def read_volume(path: Path, step: str) -> np.ndarray:
    """Voxel data of a collaborator output; unreadable files fail the step."""
    try:
        img = cast(Any, nib.load(path))
        return np.asanyarray(img.dataobj)
    except (OSError, EOFError, ValueError, ImageFileError) as err:
        raise CollaboratorError(step, message=f"{step}: cannot read {path}: {err}") from err


def count_nonzero_voxels(path: Path, step: str = "disagreement count") -> int:
    return int(np.count_nonzero(read_volume(path, step)))


def check_label_convention(atlases: Sequence[SubjectSpaceAtlas]) -> None:
    """Require non-negative label ids so that 0 is the smallest, background, label."""
    for atlas in atlases:
        data = read_volume(atlas.labels, f"label check ({atlas.atlas_id})")
        if data.size and float(data.min()) < BACKGROUND_LABEL:
            raise LabelConventionError(
                f"Atlas {atlas.atlas_id} has negative label ids in {atlas.labels}; "
                f"label {BACKGROUND_LABEL} must be background and all other labels positive."
            )


def majority_vote(
    atlases: Sequence[SubjectSpaceAtlas],
    tools: AntsTools,
    workspace: Workspace,
    mask: Path,
) -> Path:
    """Plain majority voting restricted to the mask."""
    if not atlases:
        raise NoAtlasesError("Cannot vote without atlases in subject space.")
    labels = [atlas.labels for atlas in atlases]
    votes = workspace.file("MajorityLabels.nii.gz")
    require(tools.majority_voting(votes, labels), "ImageMath MajorityVoting", [votes])
    masked = workspace.file("MajorityLabelsMasked.nii.gz")
    require(tools.multiply(masked, mask, votes), "ImageMath m (majority labels)", [masked])
    return masked


def hybrid_fusion(
    atlases: Sequence[SubjectSpaceAtlas],
    tools: AntsTools,
    workspace: Workspace,
    mask: Path,
    threshold: float,
) -> HybridFusionResult:
    """
    Majority voting where atlases agree, joint label fusion where they do not.

    Args:
        atlases: Subject-space atlases; all warps must be complete.
        mask: Region of interest; disagreement outside it is ignored.
        threshold: Minimum fraction of atlases agreeing for a voxel to be
            settled by voting, in (0, 1].
    """
    if not atlases:
        raise NoAtlasesError("Cannot run label fusion without atlases in subject space.")
    if not 0.0 < threshold <= 1.0:
        raise ValueError(f"Agreement threshold must be in (0, 1]; got {threshold}")

    labels = [atlas.labels for atlas in atlases]
    grays = [atlas.gray for atlas in atlases]

    votes = workspace.file("ThreshMajorityLabels.nii.gz")
    votes_mask = voting_mask_path(votes)
    require(
        tools.majority_voting(votes, labels, threshold=threshold),
        "ImageMath MajorityVoting (thresholded)",
        [votes, votes_mask],
    )

    # The voting mask may include voxels outside the region of interest.
    majority = workspace.file("ThreshMajorityLabelsMasked.nii.gz")
    require(tools.multiply(majority, mask, votes), "ImageMath m (thresholded majority labels)", [majority])
    jlf_mask = workspace.file("JLFMask.nii.gz")
    require(tools.multiply(jlf_mask, mask, votes_mask), "ImageMath m (disagreement mask)", [jlf_mask])

    disagreement = count_nonzero_voxels(jlf_mask)
    logger.info("Disagreement region: %d voxels at threshold %g", disagreement, threshold)

    if disagreement == 0:
        logger.info("Atlases agree everywhere in the mask; skipping joint label fusion")
        return HybridFusionResult(
            labels=majority,
            majority_labels=majority,
            disagreement_mask=jlf_mask,
            disagreement_voxels=0,
            fusion_invoked=False,
        )

    logger.info("Running antsJointFusion with %d atlases", len(atlases))
    jlf_result = workspace.file("JLF.nii.gz")
    require(
        tools.joint_fusion(workspace.reference_image, jlf_mask, grays, labels, jlf_result),
        "antsJointFusion",
        [jlf_result],
    )

    merged = workspace.file("PGJLF.nii.gz")
    require(tools.maximum(merged, jlf_result, majority), "ImageMath max (merge)", [merged])

    return HybridFusionResult(
        labels=merged,
        majority_labels=majority,
        disagreement_mask=jlf_mask,
        disagreement_voxels=disagreement,
        fusion_invoked=True,
        fusion_labels=jlf_result,
    )
