"""
Environment prerequisites for a labeling run.

The pipeline needs the ANTs command-line tools. They are looked up in
ANTSPATH when it was configured, otherwise on PATH.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from shutil import which
from typing import Dict, List, Optional

from pgjlf.ants import REQUIRED_TOOLS, AntsTools
from pgjlf.errors import PreconditionError


@dataclass
class EnvCheck:
    name: str
    passed: bool
    message: str
    info: Dict[str, str]

    def as_dict(self) -> dict:
        return {
            "name": self.name,
            "passed": self.passed,
            "message": self.message,
            "info": dict(self.info),
        }


def environment_checks(ants_path: Optional[Path]) -> List[EnvCheck]:
    checks: List[EnvCheck] = []
    bin_dir = _resolve_bin_dir(ants_path)
    if bin_dir is None:
        checks.append(
            EnvCheck(
                name="ants_path",
                passed=False,
                message="ANTs not found; set ANTSPATH or add the ANTs binaries to PATH.",
                info={},
            )
        )
        return checks

    checks.append(
        EnvCheck(
            name="ants_path",
            passed=bin_dir.is_dir(),
            message="ANTs directory available." if bin_dir.is_dir() else f"ANTSPATH is not a directory: {bin_dir}",
            info={"ants_path": str(bin_dir)},
        )
    )
    for tool in REQUIRED_TOOLS:
        path = bin_dir / tool
        present = _is_executable(path)
        checks.append(
            EnvCheck(
                name=f"tool:{tool}",
                passed=present,
                message="Tool available." if present else f"{tool} not found in {bin_dir}",
                info={"path": str(path)},
            )
        )
    return checks


def resolve_ants_tools(ants_path: Optional[Path]) -> AntsTools:
    """Return an AntsTools bound to a verified directory or raise PreconditionError."""
    checks = environment_checks(ants_path)
    failures = [check for check in checks if not check.passed]
    if failures:
        raise PreconditionError("; ".join(check.message for check in failures))
    return AntsTools(bin_dir=_resolve_bin_dir(ants_path))


def _resolve_bin_dir(ants_path: Optional[Path]) -> Optional[Path]:
    if ants_path is not None:
        return Path(ants_path)
    found = which(REQUIRED_TOOLS[0])
    if found is None:
        return None
    return Path(found).resolve().parent


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)
