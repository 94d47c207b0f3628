"""
Failure taxonomy for the change pipeline.

Every component raises one of these. The pipeline runner catches them,
records the message on the status store and moves on; nothing retries.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for every failure that ends a task's run."""


class ConfigError(Exception):
    """Raised at start-up when required configuration is missing."""


class TaskAlreadyProcessing(Exception):
    """Raised when a task id is submitted while a run for it is in flight."""

    def __init__(self, task_id: str):
        super().__init__(f"Task {task_id} is already processing")
        self.task_id = task_id


class AcquisitionError(PipelineError):
    """Clone/checkout failed or the remote is unreachable."""


class GenerationFailed(PipelineError):
    """The external generation call failed or timed out."""


class UnparseableInstruction(PipelineError):
    """The task (or the model's reply) did not map to an actionable change."""


class ParseError(PipelineError):
    """Diff text had no recognizable header pair."""


class ApplyConflict(PipelineError):
    """A removed (or offset-anchored) line could not be located."""

    def __init__(self, path: str, hunk_index: int, line: str, reason: str = "line not found"):
        super().__init__(
            f"Conflict in {path} (hunk #{hunk_index + 1}): {reason}: {line!r}"
        )
        self.path = path
        self.hunk_index = hunk_index
        self.line = line
        self.reason = reason

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "hunk": self.hunk_index + 1,
            "line": self.line,
            "reason": self.reason,
        }


class GitOperationError(PipelineError):
    """A git command or remote-API step failed. Earlier steps are not undone."""

    def __init__(self, message: str, stage: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.stage = stage
        # What had already been created when the step failed (branch, commit_sha, ...)
        self.details = details or {}
