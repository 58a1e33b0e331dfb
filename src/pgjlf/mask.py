"""
Labeling mask derived from subject-space atlas segmentations.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Sequence

from pgjlf.ants import AntsTools, require
from pgjlf.errors import NoAtlasesError
from pgjlf.warp import SubjectSpaceAtlas
from pgjlf.workspace import Workspace

logger = logging.getLogger(__name__)

FOREGROUND_LOW = "1"
UNION_EPSILON = "1E-6"
UPPER_BOUND = "Inf"


def derive_union_mask(
    atlases: Sequence[SubjectSpaceAtlas],
    tools: AntsTools,
    workspace: Workspace,
) -> Path:
    """
    Union of the foreground of every atlas label volume.

    Each label volume is binarized at label >= 1, the binary volumes are
    averaged in a single pass and the average is thresholded just above
    zero.
    """
    if not atlases:
        raise NoAtlasesError("Cannot derive a mask without atlases in subject space.")

    logger.info("No brain mask defined, creating mask from binarized atlas segmentations")
    binarized: List[Path] = []
    for counter, atlas in enumerate(atlases):
        output = workspace.path / f"atlasSegBinarized_{counter}.nii.gz"
        require(
            tools.threshold(atlas.labels, output, FOREGROUND_LOW, UPPER_BOUND),
            f"ThresholdImage ({atlas.atlas_id} foreground)",
            [output],
        )
        binarized.append(output)

    average = workspace.path / "averageAtlasSegBinarized.nii.gz"
    require(tools.average(average, binarized), "AverageImages (atlas foreground)", [average])

    mask = workspace.reference_mask
    require(tools.threshold(average, mask, UNION_EPSILON, UPPER_BOUND), "ThresholdImage (union mask)", [mask])
    return mask


def resolve_mask(
    atlases: Sequence[SubjectSpaceAtlas],
    tools: AntsTools,
    workspace: Workspace,
) -> Path:
    """Staged user mask if there is one, otherwise the derived union mask."""
    if workspace.reference_mask.is_file():
        return workspace.reference_mask
    return derive_union_mask(atlases, tools, workspace)
