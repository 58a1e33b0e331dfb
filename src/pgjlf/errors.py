"""
Exception types raised by the labeling pipeline.

Every error that should stop a run derives from PipelineError so the
orchestrator can turn it into a FAIL step result at a single boundary.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from pgjlf.ants import CommandResult


class PipelineError(RuntimeError):
    """Base class for fatal pipeline errors."""


class PreconditionError(PipelineError):
    """Raised when the environment or inputs do not allow a run to start."""


class NoAtlasesError(PipelineError):
    """Raised when no atlas survives discovery, validation and leave-one-out."""


class LabelConventionError(PipelineError):
    """Raised when a label volume violates the 0 == background convention."""


class CollaboratorError(PipelineError):
    """Raised when an external tool invocation fails."""

    def __init__(self, step: str, result: Optional["CommandResult"] = None, message: Optional[str] = None):
        self.step = step
        self.result = result
        if message is None:
            detail = result.output if result is not None and result.output else "no output"
            message = f"{step} failed: {detail}"
        super().__init__(message)

    def __reduce__(self):
        # Worker processes send exceptions back pickled; rebuild from all three fields.
        return (type(self), (self.step, self.result, str(self)))
