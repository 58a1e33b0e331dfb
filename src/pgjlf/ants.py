"""
Thin wrappers around the ANTs command-line tools used by the pipeline.

Each wrapper builds an argument list, runs it and returns a CommandResult.
Callers decide what a failure means; `require` is the usual way to turn a
failed result into a CollaboratorError.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from pgjlf.errors import CollaboratorError
from pgjlf.transforms import TransformChain

logger = logging.getLogger(__name__)

IMAGE_DIMENSION = "3"

REQUIRED_TOOLS = (
    "antsApplyTransforms",
    "ThresholdImage",
    "AverageImages",
    "ImageMath",
    "antsJointFusion",
)


@dataclass
class CommandResult:
    command: List[str]
    ok: bool
    output: str
    returncode: Optional[int] = None

    def as_dict(self) -> dict:
        return {
            "command": " ".join(self.command),
            "ok": self.ok,
            "returncode": self.returncode,
            "output": self.output,
        }


def _run_command(cmd: list[str]) -> CommandResult:
    logger.info("Running: %s", " ".join(cmd))
    try:
        result = subprocess.run(cmd, text=True, capture_output=True, check=True)
    except FileNotFoundError:
        return CommandResult(command=cmd, ok=False, output=f"Command not found: {cmd[0]}")
    except subprocess.CalledProcessError as err:
        output = "\n".join(part for part in [err.stdout, err.stderr] if part)
        return CommandResult(command=cmd, ok=False, output=output.strip(), returncode=err.returncode)
    output = "\n".join(part for part in [result.stdout, result.stderr] if part)
    logger.debug(output)
    return CommandResult(command=cmd, ok=True, output=output.strip(), returncode=result.returncode)


def require(result: CommandResult, step: str, outputs: Iterable[Path] = ()) -> CommandResult:
    """Raise CollaboratorError unless the call succeeded and wrote its outputs."""
    if not result.ok:
        raise CollaboratorError(step, result)
    missing = [str(path) for path in outputs if not Path(path).exists()]
    if missing:
        raise CollaboratorError(
            step,
            result,
            message=f"{step} reported success but did not write: {', '.join(missing)}",
        )
    return result


@dataclass
class AntsTools:
    """Locates and invokes ANTs executables.

    Args:
        bin_dir: Directory holding the ANTs binaries. When None the bare
            tool names are used and resolved through PATH.
    """

    bin_dir: Optional[Path] = None

    def executable(self, name: str) -> str:
        if self.bin_dir is None:
            return name
        return str(Path(self.bin_dir) / name)

    def apply_transforms(
        self,
        moving: Path,
        output: Path,
        reference: Path,
        chain: TransformChain,
        interpolation: Optional[str] = None,
    ) -> CommandResult:
        cmd = [
            self.executable("antsApplyTransforms"),
            "-d",
            IMAGE_DIMENSION,
            "-i",
            str(moving),
            "-o",
            str(output),
        ]
        if interpolation:
            cmd.extend(["-n", interpolation])
        cmd.extend(["-r", str(reference)])
        cmd.extend(chain.as_ants_arguments())
        return _run_command(cmd)

    def threshold(self, image: Path, output: Path, low: str, high: str) -> CommandResult:
        return _run_command(
            [self.executable("ThresholdImage"), IMAGE_DIMENSION, str(image), str(output), str(low), str(high)]
        )

    def average(self, output: Path, images: Sequence[Path]) -> CommandResult:
        # 0 == do not normalize intensities before averaging
        return _run_command(
            [self.executable("AverageImages"), IMAGE_DIMENSION, str(output), "0", *[str(p) for p in images]]
        )

    def majority_voting(
        self,
        output: Path,
        labels: Sequence[Path],
        threshold: Optional[float] = None,
    ) -> CommandResult:
        cmd = [self.executable("ImageMath"), IMAGE_DIMENSION, str(output), "MajorityVoting"]
        if threshold is not None:
            cmd.append(f"{threshold:g}")
        cmd.extend(str(p) for p in labels)
        return _run_command(cmd)

    def multiply(self, output: Path, first: Path, second: Path) -> CommandResult:
        return _run_command(
            [self.executable("ImageMath"), IMAGE_DIMENSION, str(output), "m", str(first), str(second)]
        )

    def maximum(self, output: Path, first: Path, second: Path) -> CommandResult:
        return _run_command(
            [self.executable("ImageMath"), IMAGE_DIMENSION, str(output), "max", str(first), str(second)]
        )

    def joint_fusion(
        self,
        target: Path,
        mask: Path,
        atlas_images: Sequence[Path],
        atlas_labels: Sequence[Path],
        output: Path,
    ) -> CommandResult:
        cmd = [
            self.executable("antsJointFusion"),
            "-d",
            IMAGE_DIMENSION,
            "-v",
            "1",
            "-t",
            str(target),
            "-x",
            str(mask),
        ]
        for image in atlas_images:
            cmd.extend(["-g", str(image)])
        for labels in atlas_labels:
            cmd.extend(["-l", str(labels)])
        cmd.extend(["-o", str(output)])
        return _run_command(cmd)
