"""
Resample atlas gray images and label volumes into subject space.
"""

from __future__ import annotations

import logging
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Dict, List, Sequence

from pgjlf.ants import AntsTools, require
from pgjlf.atlas_registry import AtlasEntry
from pgjlf.transforms import build_chain
from pgjlf.workspace import Workspace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubjectSpaceAtlas:
    atlas_id: str
    gray: Path
    labels: Path


def warp_atlas(
    entry: AtlasEntry,
    tools: AntsTools,
    workspace: Workspace,
    template_to_subject: str,
    label_interpolation: str,
) -> SubjectSpaceAtlas:
    chain = build_chain(entry, template_to_subject)
    reference = workspace.reference_image
    gray_out = workspace.gray_deformed(entry.atlas_id)
    seg_out = workspace.seg_deformed(entry.atlas_id)

    logger.info("Warping %s", entry.atlas_id)
    require(
        tools.apply_transforms(entry.gray, gray_out, reference, chain),
        f"antsApplyTransforms ({entry.atlas_id} gray)",
        [gray_out],
    )
    require(
        tools.apply_transforms(entry.labels, seg_out, reference, chain, interpolation=label_interpolation),
        f"antsApplyTransforms ({entry.atlas_id} labels)",
        [seg_out],
    )
    return SubjectSpaceAtlas(atlas_id=entry.atlas_id, gray=gray_out, labels=seg_out)


def warp_atlases(
    entries: Sequence[AtlasEntry],
    tools: AntsTools,
    workspace: Workspace,
    template_to_subject: str,
    label_interpolation: str,
    workers: int = 1,
) -> List[SubjectSpaceAtlas]:
    """
    Warp every atlas and return once all of them are in subject space.

    Atlases write to disjoint paths, so with workers > 1 they run in a
    process pool. The result keeps the order of `entries` regardless of
    completion order. The first failure cancels pending work and is raised.
    """
    warp_one = partial(
        warp_atlas,
        tools=tools,
        workspace=workspace,
        template_to_subject=template_to_subject,
        label_interpolation=label_interpolation,
    )

    if workers == 1 or len(entries) <= 1:
        return [warp_one(entry) for entry in entries]

    results: Dict[str, SubjectSpaceAtlas] = {}
    with ProcessPoolExecutor(max_workers=min(workers, len(entries))) as executor:
        future_to_id = {executor.submit(warp_one, entry): entry.atlas_id for entry in entries}
        try:
            for future in as_completed(future_to_id):
                results[future_to_id[future]] = future.result()
        except BaseException:
            for future in future_to_id:
                future.cancel()
            raise

    return [results[entry.atlas_id] for entry in entries]
