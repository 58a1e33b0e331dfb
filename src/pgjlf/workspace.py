"""
Scratch workspace for a single labeling run.

The workspace is named from the output file root (`{root}pseudoJLF`) and
lives under TMPDIR when one is configured, otherwise beside the outputs.
It is created exclusively: finding it already present means a previous run
failed or another run is using it, and the new run must not start.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pgjlf.errors import PreconditionError

logger = logging.getLogger(__name__)

WORKSPACE_SUFFIX = "pseudoJLF"


@dataclass(frozen=True)
class Workspace:
    path: Path
    file_root: str

    @property
    def reference_image(self) -> Path:
        return self.path / f"{self.file_root}ImageToLabel.nii.gz"

    @property
    def reference_mask(self) -> Path:
        return self.path / f"{self.file_root}Mask.nii.gz"

    def gray_deformed(self, atlas_id: str) -> Path:
        return self.path / f"{atlas_id}_Deformed.nii.gz"

    def seg_deformed(self, atlas_id: str) -> Path:
        return self.path / f"{atlas_id}_SegDeformed.nii.gz"

    def file(self, name: str) -> Path:
        return self.path / f"{self.file_root}{name}"


def workspace_path(output_dir: Path, file_root: str, tmp_dir: Optional[Path] = None) -> Path:
    """
    Location of the workspace for an output root.

    Args:
        output_dir: Directory receiving the final outputs.
        file_root: File name prefix of the outputs.
        tmp_dir: System temporary directory; used only if it exists.
    """
    base = Path(tmp_dir) if tmp_dir is not None and Path(tmp_dir).is_dir() else Path(output_dir)
    return base / f"{file_root}{WORKSPACE_SUFFIX}"


def create_workspace(output_dir: Path, file_root: str, tmp_dir: Optional[Path] = None) -> Workspace:
    path = workspace_path(output_dir, file_root, tmp_dir)
    try:
        path.mkdir(parents=True, exist_ok=False, mode=0o755)
    except FileExistsError as err:
        raise PreconditionError(
            f"Cannot create working directory {path} (maybe it exists from a previous failed run)"
        ) from err
    except OSError as err:
        raise PreconditionError(f"Cannot create working directory {path}: {err}") from err
    logger.info("Workspace: %s", path)
    return Workspace(path=path, file_root=file_root)


def remove_workspace(workspace: Workspace) -> None:
    if workspace.path.exists():
        shutil.rmtree(workspace.path)
        logger.info("Removed workspace %s", workspace.path)
