"""Exception hierarchy for the cleaning pipeline."""

from typing import Optional

from phaseclean.models.enums import FailureKind, PipelinePhase


class CleaningPipelineError(Exception):
    """Error during cleaning pipeline execution."""

    pass


class OperationFailure(CleaningPipelineError):
    """A step could not produce a trustworthy result.

    Raised inside steps and routed to the fallback coordinator; it never
    escapes a run.
    """

    def __init__(
        self,
        kind: FailureKind,
        phase: PipelinePhase,
        step: str,
        message: str = "",
        loss_ratio: Optional[float] = None,
    ):
        self.kind = kind
        self.phase = phase
        self.step = step
        self.message = message
        self.loss_ratio = loss_ratio
        super().__init__(f"{phase.value}/{step}: {kind.value}" + (f" ({message})" if message else ""))


class PipelineCancelled(CleaningPipelineError):
    """The run's cancellation token was triggered."""

    pass


class ResumeError(CleaningPipelineError):
    """A persisted run cannot be resumed."""

    pass


class PersistenceError(CleaningPipelineError):
    """Persisted state could not be written or decoded."""

    pass
