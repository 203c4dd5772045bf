"""Phase-checkpointed cleaning pipeline.

Reconnaissance produces frozen StructureHints; every later phase reads
them together with a view of the AccumulatedContext, passes a checkpoint
and folds into a confidence score that never rises.
"""

from .batch import BatchItem, BatchReport, BatchRunner
from .cancellation import CancellationToken
from .checkpoints import evaluate_checkpoint
from .confidence import ConfidenceTracker, confidence_level
from .errors import (
    CleaningPipelineError,
    OperationFailure,
    PersistenceError,
    PipelineCancelled,
    ResumeError,
)
from .fallback import FallbackCoordinator
from .orchestrator import DecisionProvider, PendingRun, PipelineOrchestrator, PipelineRun
from .persistence import JsonRunStore, RunState
from .phases import PHASE_STEPS, PhaseOutputs, PhaseRunner, StepSpec
from .rollback import rollback

__all__ = [
    # Orchestration
    "PipelineOrchestrator",
    "PipelineRun",
    "PendingRun",
    "DecisionProvider",
    "BatchRunner",
    "BatchItem",
    "BatchReport",
    "CancellationToken",
    # Phases and gates
    "PHASE_STEPS",
    "PhaseOutputs",
    "PhaseRunner",
    "StepSpec",
    "evaluate_checkpoint",
    "ConfidenceTracker",
    "confidence_level",
    "FallbackCoordinator",
    "rollback",
    # Persistence
    "JsonRunStore",
    "RunState",
    # Errors
    "CleaningPipelineError",
    "OperationFailure",
    "PipelineCancelled",
    "ResumeError",
    "PersistenceError",
]
