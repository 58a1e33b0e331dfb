"""
Composite transform chains mapping atlas space to subject space.

Points flow atlas -> template -> subject. The chain stores its steps
innermost-first (the step applied first to an atlas point comes first):

    [atlas->template affine, atlas->template warp, template->subject]

antsApplyTransforms applies the *last* listed `-t` first, so the command
line is the reverse of that order.
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple, Union

from pgjlf.atlas_registry import AtlasEntry


@dataclass(frozen=True)
class TransformStep:
    kind: str
    value: str

    def as_ants_arguments(self) -> List[str]:
        if self.kind == "template_to_subject":
            # Opaque user string, may hold several -t options already.
            return shlex.split(self.value)
        return ["-t", self.value]


@dataclass(frozen=True)
class TransformChain:
    steps: Tuple[TransformStep, ...]

    def __post_init__(self) -> None:
        kinds = tuple(step.kind for step in self.steps)
        if kinds != ("affine", "warp", "template_to_subject"):
            raise ValueError(
                f"Transform chain must be ordered affine, warp, template_to_subject; got {kinds}"
            )

    @classmethod
    def compose(
        cls,
        *,
        affine: Union[Path, str],
        warp: Union[Path, str],
        template_to_subject: str,
    ) -> "TransformChain":
        if not template_to_subject or not template_to_subject.strip():
            raise ValueError("Template to subject transform string must not be empty.")
        return cls(
            steps=(
                TransformStep("affine", str(affine)),
                TransformStep("warp", str(warp)),
                TransformStep("template_to_subject", template_to_subject.strip()),
            )
        )

    @property
    def affine(self) -> str:
        return self.steps[0].value

    @property
    def warp(self) -> str:
        return self.steps[1].value

    @property
    def template_to_subject(self) -> str:
        return self.steps[2].value

    def as_ants_arguments(self) -> List[str]:
        args: List[str] = []
        for step in reversed(self.steps):
            args.extend(step.as_ants_arguments())
        return args


def build_chain(entry: AtlasEntry, template_to_subject: str) -> TransformChain:
    """Prepend the atlas's template registration to the template->subject transform."""
    return TransformChain.compose(
        affine=entry.affine,
        warp=entry.warp,
        template_to_subject=template_to_subject,
    )
