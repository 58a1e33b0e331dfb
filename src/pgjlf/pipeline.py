"""
pgjlf run and check entry points.

A run labels one subject image:

    [atlas1] -> [template]
    [atlas2] -> [template]  -> [subject]
    [atlas3] -> [template]

Each atlas is brought into subject space through its own registration to
the template followed by the single template to subject transform, then the
atlas labels are combined by majority voting, hybrid joint label fusion,
or both.
"""

from __future__ import annotations

import json
import logging
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from shutil import copy2
from typing import Dict, Optional

from jsonschema import Draft7Validator

from pgjlf.ants import AntsTools
from pgjlf.atlas_registry import AtlasRegistry, load_atlas_registry
from pgjlf.environment import resolve_ants_tools
from pgjlf.errors import NoAtlasesError, PipelineError, PreconditionError
from pgjlf.fusion import HybridFusionResult, check_label_convention, hybrid_fusion, majority_vote
from pgjlf.mask import resolve_mask
from pgjlf.policy import FusionConfig, FusionPolicyError, split_output_root
from pgjlf.reportlets import render_label_overlay_png
from pgjlf.warp import warp_atlases
from pgjlf.workspace import Workspace, create_workspace, remove_workspace

logger = logging.getLogger(__name__)

STEP = "pgjlf"
QC_SCHEMA_PATH = Path(__file__).parent / "schemas" / "qc_pgjlf.json"

BRAIN_OUTPUT = "Brain.nii.gz"
MAJORITY_OUTPUT = "MajorityLabels.nii.gz"
FUSION_OUTPUT = "PGJLF.nii.gz"
QC_OUTPUT = "PGJLF_qc.json"
OVERLAY_OUTPUT = "PGJLF_overlay.png"


@dataclass
class StepResult:
    status: str
    failure_message: Optional[str]
    qc_path: Optional[Path] = None
    workspace_path: Optional[Path] = None
    outputs: Dict[str, Path] = field(default_factory=dict)


def run_pseudo_jlf(config: FusionConfig, tools: Optional[AntsTools] = None) -> StepResult:
    """
    Label `config.input_image` and write the requested outputs.

    Fatal errors are reported through the returned StepResult. Outputs are
    copied into the output directory only once the stage producing them has
    completed; a failed run may leave a partially filled workspace behind.
    """
    workspace: Optional[Workspace] = None
    outputs: Dict[str, Path] = {}
    try:
        _discard_stale_qc(config)
        if tools is None:
            tools = resolve_ants_tools(config.ants_path)
        _check_inputs(config)

        registry = load_atlas_registry(config.atlas_dir, config.input_image)
        if not registry.entries:
            raise NoAtlasesError(_no_atlas_message(registry))

        try:
            config.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as err:
            raise PreconditionError(f"Cannot create output directory {config.output_dir}: {err}") from err
        workspace = create_workspace(config.output_dir, config.file_root, config.tmp_dir)
        mask_source = _stage_inputs(config, workspace)

        atlases = warp_atlases(
            registry.validated,
            tools,
            workspace,
            template_to_subject=config.template_to_subject,
            label_interpolation=config.label_interpolation,
            workers=config.workers,
        )
        if config.validate_labels:
            check_label_convention(atlases)

        mask = resolve_mask(atlases, tools, workspace)
        logger.info("Labeling with %d atlases", len(atlases))

        if config.majority_vote:
            majority = majority_vote(atlases, tools, workspace, mask)
            outputs["majority_labels"] = _publish(majority, config.output_path(MAJORITY_OUTPUT))

        hybrid: Optional[HybridFusionResult] = None
        if config.joint_fusion:
            hybrid = hybrid_fusion(atlases, tools, workspace, mask, config.majority_threshold)
            outputs["pgjlf_labels"] = _publish(hybrid.labels, config.output_path(FUSION_OUTPUT))

        # Copy input to output for easy evaluation
        outputs["brain"] = _publish(workspace.reference_image, config.output_path(BRAIN_OUTPUT))

        if config.reportlets:
            overlay = _render_overlay(config, workspace, outputs)
            if overlay is not None:
                outputs["overlay"] = overlay

        qc = {
            "step": STEP,
            "status": "PASS",
            "failure_message": None,
            "command_line": _format_command_line(config),
            "config": config.as_dict(),
            "atlases": registry.as_dict(),
            "subject_space_atlases": [atlas.atlas_id for atlas in atlases],
            "mask": {"source": mask_source, "path": str(mask)},
            "hybrid_fusion": hybrid.as_dict() if hybrid is not None else None,
            "outputs": {name: str(path) for name, path in sorted(outputs.items())},
            "workspace": str(workspace.path),
            "workspace_retained": not config.cleanup,
        }
        qc_path = config.output_path(QC_OUTPUT)
        _write_json(qc_path, qc)

        if config.cleanup:
            remove_workspace(workspace)

        return StepResult(
            status="PASS",
            failure_message=None,
            qc_path=qc_path,
            workspace_path=workspace.path,
            outputs=outputs,
        )
    except (PipelineError, FusionPolicyError) as err:
        logger.error("%s", err)
        qc_path = None
        if workspace is not None and workspace.path.is_dir():
            # Failed runs keep their record in the workspace, not in the outputs.
            qc_path = workspace.file(QC_OUTPUT)
            _write_json(
                qc_path,
                {
                    "step": STEP,
                    "status": "FAIL",
                    "failure_message": str(err),
                    "command_line": _format_command_line(config),
                    "outputs": {name: str(path) for name, path in sorted(outputs.items())},
                },
            )
        return StepResult(
            status="FAIL",
            failure_message=str(err),
            qc_path=qc_path,
            workspace_path=workspace.path if workspace is not None else None,
            outputs=outputs,
        )


def check_pseudo_jlf(output_root: str) -> StepResult:
    """Verify a finished run from its QC record without touching any image."""
    output_dir, file_root = split_output_root(output_root)
    qc_path = output_dir / f"{file_root}{QC_OUTPUT}"
    if not qc_path.exists() or qc_path.stat().st_size == 0:
        return StepResult(status="FAIL", failure_message=f"Missing required artifact: {qc_path}", qc_path=qc_path)

    try:
        _validate_json(qc_path, QC_SCHEMA_PATH)
    except ValueError as err:
        return StepResult(status="FAIL", failure_message=str(err), qc_path=qc_path)

    qc = json.loads(qc_path.read_text(encoding="utf-8"))
    outputs = {name: Path(path) for name, path in qc["outputs"].items()}
    missing = [str(path) for path in outputs.values() if not path.exists() or path.stat().st_size == 0]
    if missing:
        return StepResult(
            status="FAIL",
            failure_message=f"Missing required output(s): {', '.join(missing)}",
            qc_path=qc_path,
            outputs=outputs,
        )
    return StepResult(status=qc["status"], failure_message=qc["failure_message"], qc_path=qc_path, outputs=outputs)


def _discard_stale_qc(config: FusionConfig) -> None:
    """A QC record left by an earlier run must not vouch for this one."""
    stale = config.output_path(QC_OUTPUT)
    if stale.exists():
        logger.info("Removing QC record of a previous run: %s", stale)
        try:
            stale.unlink()
        except OSError as err:
            raise PreconditionError(f"Cannot remove previous QC record {stale}: {err}") from err


def _check_inputs(config: FusionConfig) -> None:
    if not config.input_image.is_file():
        raise PreconditionError(f"Input image not found: {config.input_image}")
    if not config.atlas_dir.is_dir():
        raise PreconditionError(f"Atlas directory not found: {config.atlas_dir}")


def _no_atlas_message(registry: AtlasRegistry) -> str:
    if not registry.discovered:
        return f"No atlases found in {registry.atlas_dir} (expected files named *_Seg.nii.gz)."
    reasons = "; ".join(f"{atlas_id}: {reason}" for atlas_id, reason in sorted(registry.excluded.items()))
    return f"No usable atlases in {registry.atlas_dir} after validation and leave-one-out ({reasons})."


def _stage_inputs(config: FusionConfig, workspace: Workspace) -> str:
    """Copy image and mask into the workspace; return where the mask comes from."""
    _copy_file(config.input_image, workspace.reference_image)
    if config.input_mask is not None:
        if config.input_mask.is_file():
            _copy_file(config.input_mask, workspace.reference_mask)
            return "input"
        logger.warning("Input mask %s not found; deriving mask from atlases", config.input_mask)
    return "derived"


def _publish(source: Path, dest: Path) -> Path:
    _copy_file(source, dest)
    logger.info("Wrote %s", dest)
    return dest


def _render_overlay(config: FusionConfig, workspace: Workspace, outputs: Dict[str, Path]) -> Optional[Path]:
    labels = outputs.get("pgjlf_labels") or outputs.get("majority_labels")
    if labels is None:
        return None
    overlay = render_label_overlay_png(workspace.reference_image, labels, workspace.file(OVERLAY_OUTPUT))
    if overlay is None:
        logger.warning("Could not render label overlay for %s", labels)
        return None
    return _publish(overlay, config.output_path(OVERLAY_OUTPUT))


def _format_command_line(config: FusionConfig) -> str:
    parts = [
        "pgjlf",
        "run",
        "--input-image",
        str(config.input_image),
        "--template-to-subject-warp-string",
        config.template_to_subject,
        "--atlas-dir",
        str(config.atlas_dir),
        "--output-root",
        config.output_root,
    ]
    if config.input_mask is not None:
        parts.extend(["--input-mask", str(config.input_mask)])
    parts.extend(["--majority-vote", str(int(config.majority_vote))])
    parts.extend(["--jlf", str(int(config.joint_fusion))])
    parts.extend(["--jlf-majority-thresh", f"{config.majority_threshold:g}"])
    parts.extend(["--atlas-label-interpolation", config.label_interpolation])
    parts.extend(["--workers", str(config.workers)])
    if config.policy_path is not None:
        parts.extend(["--policy", str(config.policy_path)])
    if config.cleanup:
        parts.append("--cleanup")
    if not config.reportlets:
        parts.append("--no-reportlets")
    return " ".join(shlex.quote(part) for part in parts)


def _copy_file(source: Path, dest: Path) -> None:
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        copy2(source, dest)
    except OSError as err:
        raise PipelineError(f"Cannot copy {source} to {dest}: {err}") from err


def _write_json(path: Path, payload: dict) -> None:
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True)
        f.write("\n")


def _validate_json(path: Path, schema_path: Path) -> None:
    data = json.loads(path.read_text(encoding="utf-8"))
    schema = json.loads(schema_path.read_text(encoding="utf-8"))
    validator = Draft7Validator(schema)  # type: ignore[arg-type]
    errors = sorted(validator.iter_errors(data), key=lambda e: str(list(e.path)))
    if errors:
        msgs = "; ".join(e.message for e in errors)
        raise ValueError(f"Schema validation failed for {path}: {msgs}")
