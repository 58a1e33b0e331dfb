"""
Atlas discovery and validation.

An atlas collection is a single directory holding, for each atlas `id`:

    id.nii.gz                            gray image
    id_Seg.nii.gz                        label volume
    id_ToTemplate_1Warp.nii.gz           deformable warp to the template
    id_ToTemplate_0GenericAffine.mat     affine to the template
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

GRAY_SUFFIX = ".nii.gz"
SEG_SUFFIX = "_Seg.nii.gz"
WARP_SUFFIX = "_ToTemplate_1Warp.nii.gz"
AFFINE_SUFFIX = "_ToTemplate_0GenericAffine.mat"

SAME_AS_INPUT = "same image as input"


@dataclass(frozen=True)
class AtlasEntry:
    atlas_id: str
    gray: Path
    labels: Path
    warp: Path
    affine: Path

    @classmethod
    def from_directory(cls, atlas_dir: Path, atlas_id: str) -> "AtlasEntry":
        return cls(
            atlas_id=atlas_id,
            gray=atlas_dir / f"{atlas_id}{GRAY_SUFFIX}",
            labels=atlas_dir / f"{atlas_id}{SEG_SUFFIX}",
            warp=atlas_dir / f"{atlas_id}{WARP_SUFFIX}",
            affine=atlas_dir / f"{atlas_id}{AFFINE_SUFFIX}",
        )

    def missing_files(self) -> List[Path]:
        return [path for path in (self.gray, self.labels, self.warp, self.affine) if not path.is_file()]


@dataclass
class AtlasRegistry:
    atlas_dir: Path
    discovered: List[str] = field(default_factory=list)
    entries: Dict[str, AtlasEntry] = field(default_factory=dict)
    excluded: Dict[str, str] = field(default_factory=dict)

    @property
    def validated(self) -> List[AtlasEntry]:
        return [self.entries[atlas_id] for atlas_id in self.discovered if atlas_id in self.entries]

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, atlas_id: object) -> bool:
        return atlas_id in self.entries

    def __getitem__(self, atlas_id: str) -> AtlasEntry:
        return self.entries[atlas_id]

    def as_dict(self) -> dict:
        return {
            "atlas_dir": str(self.atlas_dir),
            "discovered": list(self.discovered),
            "validated": [entry.atlas_id for entry in self.validated],
            "excluded": dict(self.excluded),
        }


def discover_atlas_ids(atlas_dir: Path) -> List[str]:
    """Identifiers of every `*_Seg.nii.gz` in the directory, sorted."""
    ids = [path.name[: -len(SEG_SUFFIX)] for path in atlas_dir.glob(f"*{SEG_SUFFIX}")]
    return sorted(atlas_id for atlas_id in ids if atlas_id)


def load_atlas_registry(atlas_dir: Path, input_image: Optional[Path] = None) -> AtlasRegistry:
    """
    Scan an atlas directory once and validate every candidate.

    Args:
        atlas_dir: Directory following the atlas naming convention.
        input_image: Image being labeled. An atlas whose gray image is this
            exact path is left out.

    Returns:
        Registry with discovered, validated and excluded atlases. Exclusions
        are not errors; the caller decides whether what is left is enough.
    """
    atlas_dir = Path(atlas_dir)
    registry = AtlasRegistry(atlas_dir=atlas_dir)
    if not atlas_dir.is_dir():
        logger.warning("Atlas directory not found: %s", atlas_dir)
        return registry

    input_key = Path(input_image).absolute() if input_image is not None else None

    for atlas_id in discover_atlas_ids(atlas_dir):
        registry.discovered.append(atlas_id)
        entry = AtlasEntry.from_directory(atlas_dir, atlas_id)

        if input_key is not None and entry.gray.absolute() == input_key:
            logger.info("Skipping %s because it is the same image as the input", atlas_id)
            registry.excluded[atlas_id] = SAME_AS_INPUT
            continue

        missing = entry.missing_files()
        if missing:
            reason = "missing " + ", ".join(path.name for path in missing)
            logger.warning("Excluding atlas %s: %s", atlas_id, reason)
            registry.excluded[atlas_id] = reason
            continue

        registry.entries[atlas_id] = entry

    logger.info(
        "Atlas registry: %d discovered, %d validated, %d excluded",
        len(registry.discovered),
        len(registry.entries),
        len(registry.excluded),
    )
    return registry
