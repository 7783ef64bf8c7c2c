"""
Error taxonomy for the auto-job workflow engine.

Three kinds of failure flow through a run:

- StructuralFailure: the run cannot continue (source unreachable, settings
  invalid). The current step and the run are marked failed.
- ItemFailure: one posting could not be processed. It is recorded on the
  AutoJobRecord and in stats.errors; the step keeps going.
- AdapterError: raised by an AI adapter call. The controller converts it
  into an ItemFailure for the posting being processed.

Cancellation is not an error. It is a flag checked by the controller.
"""

from typing import Optional


class WorkflowError(Exception):
    """Base class for all workflow engine errors."""


class StructuralFailure(WorkflowError):
    """Failure that aborts the whole run."""

    def __init__(self, message: str, step: Optional[str] = None):
        self.step = step
        super().__init__(message)


class SourceUnavailable(StructuralFailure):
    """Raised by a job source when it cannot be reached."""


class InvalidSettings(StructuralFailure):
    """Raised when owner settings cannot drive a run."""


class ItemFailure(WorkflowError):
    """Failure scoped to a single posting."""

    def __init__(self, message: str, job_id: Optional[str] = None):
        self.job_id = job_id
        super().__init__(message)


class AdapterError(WorkflowError):
    """Raised when an AI adapter call fails or returns malformed output."""


class AlreadyRunning(WorkflowError):
    """Raised when an owner already has an active run."""

    def __init__(self, owner_id: str, run_id: Optional[str] = None):
        self.owner_id = owner_id
        self.run_id = run_id
        super().__init__(
            f"Owner {owner_id} already has an active workflow run"
            + (f" ({run_id})" if run_id else "")
        )


class RunNotFound(WorkflowError):
    """Raised when a workflow run id does not exist."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Workflow run {run_id} not found")
