"""
pgjlf command line interface.

Joint fusion of atlases via a template: the N atlas to template warps are
concatenated with a single template to subject warp, and joint label fusion
is run on the atlases and labels in subject space.
"""

from __future__ import annotations

import argparse
import json
import logging
from importlib import metadata
from pathlib import Path

from pgjlf.pipeline import check_pseudo_jlf, run_pseudo_jlf
from pgjlf.policy import FusionPolicyError, build_fusion_config, load_fusion_policy
from pgjlf.policy.fusion import DEFAULT_LABEL_INTERPOLATION, DEFAULT_MAJORITY_THRESHOLD

ATLAS_LAYOUT = """\
The atlases should be organized in a single directory containing for each atlas:

  atlas.nii.gz
  atlas_Seg.nii.gz
  atlas_ToTemplate_1Warp.nii.gz
  atlas_ToTemplate_0GenericAffine.mat

Requires ANTs (ANTSPATH or the ANTs binaries on PATH).
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pgjlf",
        description="Joint fusion of atlases via a template",
        epilog=ATLAS_LAYOUT,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="store_true", help="Print version and exit.")
    parser.add_argument("--verbose", action="store_true", help="Log collaborator output.")
    subparsers = parser.add_subparsers(dest="command", required=False)

    run_parser = subparsers.add_parser(
        "run",
        help="Label an image",
        epilog=ATLAS_LAYOUT,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    _add_run_arguments(run_parser)
    _add_verbose_argument(run_parser)

    check_parser = subparsers.add_parser("check", help="Check the outputs of a finished run")
    check_parser.add_argument("--output-root", required=True, help="Root for output images.")
    _add_verbose_argument(check_parser)

    return parser


def _add_verbose_argument(subparser: argparse.ArgumentParser) -> None:
    # SUPPRESS keeps a top-level --verbose from being reset by the subcommand default.
    subparser.add_argument(
        "--verbose", action="store_true", default=argparse.SUPPRESS, help="Log collaborator output."
    )


def _add_run_arguments(subparser: argparse.ArgumentParser) -> None:
    subparser.add_argument("--input-image", required=True, type=Path, help="Head or brain image to be labeled.")
    subparser.add_argument(
        "--template-to-subject-warp-string",
        required=True,
        help="A string passed to antsApplyTransforms to warp the template to the subject.",
    )
    subparser.add_argument(
        "--atlas-dir",
        required=True,
        type=Path,
        help="Directory containing atlases, segmentations, and warps to the template.",
    )
    subparser.add_argument("--output-root", required=True, help="Root for output images.")
    subparser.add_argument(
        "--input-mask",
        type=Path,
        help="A mask in which labeling is performed. If not provided, it is defined from the atlas segmentations.",
    )
    subparser.add_argument(
        "--majority-vote",
        type=int,
        choices=[0, 1],
        help="Do majority voting, less accurate but much faster than JLF (default = 0).",
    )
    subparser.add_argument("--jlf", type=int, choices=[0, 1], help="Do joint label fusion (default = 1).")
    subparser.add_argument(
        "--jlf-majority-thresh",
        type=float,
        help="Voting threshold for computing JLF in each voxel. If the proportion of atlases agreeing on "
        "the label is equal or greater than the threshold, joint fusion is not computed in the voxel "
        f"(default = {DEFAULT_MAJORITY_THRESHOLD}).",
    )
    subparser.add_argument(
        "--atlas-label-interpolation",
        help="Method to resample the individual atlas labels in subject space, before voting or label "
        f"fusion (default = {DEFAULT_LABEL_INTERPOLATION}).",
    )
    subparser.add_argument("--policy", type=Path, help="Fusion policy YAML providing defaults for the options above.")
    subparser.add_argument("--workers", type=int, help="Number of atlases to warp in parallel (default = 1).")
    subparser.add_argument(
        "--cleanup",
        action="store_true",
        default=None,
        help="Delete the working directory after a successful run.",
    )
    subparser.add_argument(
        "--no-reportlets",
        dest="reportlets",
        action="store_false",
        default=None,
        help="Skip the label overlay PNG.",
    )


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.version:
        try:
            version = metadata.version("pgjlf")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        return 0

    if not args.command:
        parser.error("No command provided.")
        return 2

    if args.command == "run":
        try:
            config = _build_config(args)
        except FusionPolicyError as err:
            print(json.dumps({"status": "FAIL", "failure_message": str(err)}, indent=2))
            return 1
        result = run_pseudo_jlf(config)
    elif args.command == "check":
        result = check_pseudo_jlf(args.output_root)
    else:
        parser.error(f"Unknown command: {args.command}")
        return 2

    # Print a compact summary for humans.
    summary = {"status": result.status, "failure_message": result.failure_message}
    print(json.dumps(summary, indent=2))

    return 0 if result.status == "PASS" else 1


def _build_config(args):
    policy = load_fusion_policy(args.policy) if args.policy is not None else None
    overrides = {
        "input_mask": args.input_mask,
        "majority_vote": None if args.majority_vote is None else bool(args.majority_vote),
        "joint_fusion": None if args.jlf is None else bool(args.jlf),
        "majority_threshold": args.jlf_majority_thresh,
        "label_interpolation": args.atlas_label_interpolation,
        "workers": args.workers,
        "cleanup": args.cleanup,
        "reportlets": args.reportlets,
        "policy_path": args.policy,
    }
    return build_fusion_config(
        input_image=args.input_image,
        template_to_subject=args.template_to_subject_warp_string,
        atlas_dir=args.atlas_dir,
        output_root=args.output_root,
        policy=policy,
        overrides=overrides,
    )


if __name__ == "__main__":
    raise SystemExit(main())
