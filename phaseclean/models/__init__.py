"""Pydantic data models for the cleaning pipeline."""

from .enums import (
    PHASE_ORDER,
    BoundaryType,
    ChapterMarkerStyle,
    CheckpointResult,
    CheckpointType,
    ConfidenceLevel,
    ContentType,
    DetectionMethod,
    EvidenceType,
    FailureKind,
    FallbackActionKind,
    FlagReason,
    PatternKind,
    PatternStyle,
    PipelinePhase,
    RecommendedAction,
    RegionType,
    RemovalType,
    RunStatus,
    Severity,
    StepMethod,
    TransformationType,
    ValidationMethod,
)
from .regions import DetectionEvidence, LineRange, Pattern, Region, link_overlaps
from .hints import ContentCharacteristics, StructureHints, StructureWarning
from .document import DocumentLine, WorkingDocument, count_words
from .checkpoint import CheckpointOutcome, CriterionResult
from .recovery import FallbackAction, RecoveryEvent
from .context import (
    AccumulatedContext,
    AICallRecord,
    AppliedPattern,
    ConfirmedBoundary,
    DocumentMetadata,
    FlaggedContent,
    PhaseContributions,
    ProcessingWarning,
    RemovedRegion,
    RunningMetrics,
    TransformationRecord,
)
from .result import ConfidenceDisplay, PipelineResult

__all__ = [
    # Enums
    "PHASE_ORDER",
    "PipelinePhase",
    "CheckpointType",
    "CheckpointResult",
    "Severity",
    "RecommendedAction",
    "RunStatus",
    "ContentType",
    "RegionType",
    "DetectionMethod",
    "EvidenceType",
    "PatternKind",
    "PatternStyle",
    "ValidationMethod",
    "RemovalType",
    "TransformationType",
    "BoundaryType",
    "FlagReason",
    "FailureKind",
    "StepMethod",
    "FallbackActionKind",
    "ConfidenceLevel",
    "ChapterMarkerStyle",
    # Regions and hints
    "LineRange",
    "DetectionEvidence",
    "Region",
    "Pattern",
    "link_overlaps",
    "ContentCharacteristics",
    "StructureWarning",
    "StructureHints",
    # Document
    "DocumentLine",
    "WorkingDocument",
    "count_words",
    # Checkpoints and recovery
    "CriterionResult",
    "CheckpointOutcome",
    "FallbackAction",
    "RecoveryEvent",
    # Context
    "AccumulatedContext",
    "AICallRecord",
    "AppliedPattern",
    "ConfirmedBoundary",
    "DocumentMetadata",
    "FlaggedContent",
    "PhaseContributions",
    "ProcessingWarning",
    "RemovedRegion",
    "RunningMetrics",
    "TransformationRecord",
    # Results
    "ConfidenceDisplay",
    "PipelineResult",
]
