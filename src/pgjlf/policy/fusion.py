"""
Run configuration for template-based joint label fusion.

A FusionConfig is built once at startup from three layers, lowest priority
first: built-in defaults, an optional policy YAML, explicit command-line
values. Components receive the config and never read flags or the process
environment themselves.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml


class FusionPolicyError(ValueError):
    """Raised when a fusion policy file or configuration value is invalid."""


DEFAULT_MAJORITY_THRESHOLD = 0.9
DEFAULT_LABEL_INTERPOLATION = "GenericLabel"

POLICY_SECTIONS = {
    "fusion": ("majority_vote", "joint_fusion", "majority_threshold", "label_interpolation"),
    "execution": ("workers", "cleanup", "validate_labels", "reportlets"),
}


def split_output_root(output_root: str) -> Tuple[Path, str]:
    """Split `out/sub01_` into the output directory and the file name prefix."""
    directory, root = os.path.split(str(output_root))
    return (Path(directory) if directory else Path(".")), root


@dataclass(frozen=True)
class FusionConfig:
    input_image: Path
    template_to_subject: str
    atlas_dir: Path
    output_root: str
    input_mask: Optional[Path] = None
    majority_vote: bool = False
    joint_fusion: bool = True
    majority_threshold: float = DEFAULT_MAJORITY_THRESHOLD
    label_interpolation: str = DEFAULT_LABEL_INTERPOLATION
    workers: int = 1
    cleanup: bool = False
    validate_labels: bool = True
    reportlets: bool = True
    ants_path: Optional[Path] = None
    tmp_dir: Optional[Path] = None
    policy_path: Optional[Path] = None

    @property
    def output_dir(self) -> Path:
        return split_output_root(self.output_root)[0]

    @property
    def file_root(self) -> str:
        return split_output_root(self.output_root)[1]

    def output_path(self, name: str) -> Path:
        return self.output_dir / f"{self.file_root}{name}"

    def as_dict(self) -> dict:
        payload = {}
        for f in fields(self):
            value = getattr(self, f.name)
            payload[f.name] = str(value) if isinstance(value, Path) else value
        return payload


def load_fusion_policy(policy_path: Path | str) -> Dict[str, Any]:
    """
    Load a policy YAML and flatten it into FusionConfig keyword arguments.

    Raises:
        FusionPolicyError: when the file is missing or structurally invalid.
    """
    path = Path(policy_path)
    if not path.exists():
        raise FusionPolicyError(f"Fusion policy not found: {path}")

    with path.open("r", encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as err:
            raise FusionPolicyError(f"Failed to parse fusion policy YAML: {err}") from err

    if not isinstance(raw, dict):
        raise FusionPolicyError("Fusion policy must be a mapping at the top level.")

    version = raw.get("version")
    if not isinstance(version, int):
        raise FusionPolicyError("Fusion policy missing required integer field 'version'.")

    unknown = sorted(set(raw) - set(POLICY_SECTIONS) - {"version"})
    if unknown:
        raise FusionPolicyError(f"Fusion policy has unknown section(s): {', '.join(unknown)}")

    values: Dict[str, Any] = {}
    for section, keys in POLICY_SECTIONS.items():
        section_raw = raw.get(section, {}) or {}
        if not isinstance(section_raw, dict):
            raise FusionPolicyError(f"Fusion policy section '{section}' must be a mapping.")
        unknown_keys = sorted(set(section_raw) - set(keys))
        if unknown_keys:
            raise FusionPolicyError(
                f"Fusion policy section '{section}' has unknown key(s): {', '.join(unknown_keys)}"
            )
        values.update(section_raw)

    for bool_field in ("majority_vote", "joint_fusion", "cleanup", "validate_labels", "reportlets"):
        if bool_field in values and not isinstance(values[bool_field], bool):
            raise FusionPolicyError(f"Fusion policy field '{bool_field}' must be true or false.")

    if "majority_threshold" in values:
        value = values["majority_threshold"]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise FusionPolicyError("Fusion policy field 'majority_threshold' must be a number.")
        values["majority_threshold"] = float(value)

    if "label_interpolation" in values:
        value = values["label_interpolation"]
        if not isinstance(value, str) or not value.strip():
            raise FusionPolicyError("Fusion policy field 'label_interpolation' must be a non-empty string.")

    if "workers" in values:
        value = values["workers"]
        if isinstance(value, bool) or not isinstance(value, int):
            raise FusionPolicyError("Fusion policy field 'workers' must be an integer.")

    return values


def build_fusion_config(
    input_image: Path,
    template_to_subject: str,
    atlas_dir: Path,
    output_root: str,
    policy: Optional[Mapping[str, Any]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> FusionConfig:
    """
    Assemble and validate the immutable run configuration.

    `overrides` holds explicitly supplied command-line values; None entries
    are ignored so that unset flags fall through to the policy or defaults.
    ANTSPATH and TMPDIR are read from `environ` (default: os.environ) here
    and nowhere else.
    """
    env = os.environ if environ is None else environ
    config = FusionConfig(
        input_image=Path(input_image),
        template_to_subject=template_to_subject,
        atlas_dir=Path(atlas_dir),
        output_root=str(output_root),
    )
    if policy:
        config = replace(config, **dict(policy))
    if overrides:
        config = replace(config, **{key: value for key, value in overrides.items() if value is not None})

    if config.ants_path is None and env.get("ANTSPATH"):
        config = replace(config, ants_path=Path(env["ANTSPATH"]))
    if config.tmp_dir is None and env.get("TMPDIR"):
        config = replace(config, tmp_dir=Path(env["TMPDIR"]))

    validate_fusion_config(config)
    return config


def validate_fusion_config(config: FusionConfig) -> None:
    if not 0.0 < config.majority_threshold <= 1.0:
        raise FusionPolicyError(
            f"Majority threshold must be in (0, 1]; got {config.majority_threshold}"
        )
    if config.workers < 1:
        raise FusionPolicyError(f"Workers must be a positive integer; got {config.workers}")
    if not config.label_interpolation:
        raise FusionPolicyError("Label interpolation must not be empty.")
    if not config.template_to_subject or not config.template_to_subject.strip():
        raise FusionPolicyError("Template to subject transform string must not be empty.")
    if not str(config.output_root).strip():
        raise FusionPolicyError("Output root must not be empty.")
