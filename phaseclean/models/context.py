"""AccumulatedContext - the append-only intelligence ledger of a run.

The orchestrator is the only writer. Phases receive a read view (a deep
copy) and return a PhaseContributions bundle that the orchestrator
appends. Rollback is the only operation that deletes entries, and it only
deletes entries tagged with the rolled-back phase.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from phaseclean.models.checkpoint import CheckpointOutcome
from phaseclean.models.enums import (
    BoundaryType,
    FlagReason,
    PatternKind,
    PipelinePhase,
    RemovalType,
    Severity,
    TransformationType,
    ValidationMethod,
)
from phaseclean.models.recovery import RecoveryEvent
from phaseclean.models.regions import LineRange, new_id


# =============================================================================
# Audit Records
# =============================================================================

class AuditRecord(BaseModel):
    """Common provenance stamped on every ledger entry."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("rec"))
    produced_by_phase: PipelinePhase
    step: str
    validation_method: ValidationMethod = ValidationMethod.NO_VALIDATION
    recorded_at: datetime = Field(default_factory=datetime.now)


class RemovedRegion(AuditRecord):
    """A contiguous block of content that was removed."""

    removal_type: RemovalType
    line_range: LineRange
    word_count: int = Field(ge=0)
    confidence: float = Field(ge=0.0, le=1.0)
    justification: str = ""
    content_sample: Optional[str] = Field(None, max_length=200)


class AppliedPattern(AuditRecord):
    """A hint pattern that was applied line-by-line."""

    pattern_kind: PatternKind
    matcher: str
    removal_count: int = Field(ge=0, description="Matches removed")
    estimated_count: int = Field(ge=0, description="Matches the hints predicted")
    words_removed: int = Field(default=0, ge=0)
    lines_affected: tuple[int, ...] = Field(default=(), description="Original line numbers touched")
    quality_score: float = Field(ge=0.0, le=1.0)


class ConfirmedBoundary(AuditRecord):
    """A structural boundary the pipeline has committed to."""

    boundary_type: BoundaryType
    line: int = Field(ge=1, description="Original line number of the boundary")
    confidence: float = Field(ge=0.0, le=1.0)
    hinted_line: Optional[int] = Field(None, description="Line the hints predicted")


class TransformationRecord(AuditRecord):
    """An in-place rewrite of content."""

    transformation_type: TransformationType
    affected_range: Optional[LineRange] = None
    words_before: int = Field(ge=0)
    words_after: int = Field(ge=0)
    description: str = ""

    @property
    def word_ratio(self) -> float:
        if self.words_before == 0:
            return 1.0
        return self.words_after / self.words_before


class FlaggedContent(AuditRecord):
    """Content flagged for a human to look at."""

    reason: FlagReason
    line_range: Optional[LineRange] = None
    message: str
    requires_action: bool = False


class ProcessingWarning(AuditRecord):
    """A warning raised while processing."""

    severity: Severity = Severity.WARNING
    message: str
    resolved: bool = False
    from_recovery: bool = Field(
        default=False,
        description="Raised by recovery/rollback; survives phase purges",
    )


class AICallRecord(AuditRecord):
    """One AI response and whether it passed validation."""

    validated: bool
    detail: str = ""


class DocumentMetadata(BaseModel):
    """Bibliographic metadata extracted from the document."""

    title: Optional[str] = None
    author: Optional[str] = None
    publication_date: Optional[str] = None
    publisher: Optional[str] = None
    isbn: Optional[str] = None
    language: Optional[str] = None
    chapters_detected: int = 0


# =============================================================================
# Phase Contributions
# =============================================================================

class PhaseContributions(BaseModel):
    """Everything one phase adds to the ledger."""

    phase: PipelinePhase
    removed_regions: list[RemovedRegion] = Field(default_factory=list)
    applied_patterns: list[AppliedPattern] = Field(default_factory=list)
    confirmed_boundaries: list[ConfirmedBoundary] = Field(default_factory=list)
    transformations: list[TransformationRecord] = Field(default_factory=list)
    flags: list[FlaggedContent] = Field(default_factory=list)
    warnings: list[ProcessingWarning] = Field(default_factory=list)
    ai_calls: list[AICallRecord] = Field(default_factory=list)
    metadata: Optional[DocumentMetadata] = None
    fallback_used: bool = False
    used_ai: bool = False

    def extend(self, other: "PhaseContributions") -> None:
        """Merge a step's contributions into the phase bundle."""
        self.removed_regions.extend(other.removed_regions)
        self.applied_patterns.extend(other.applied_patterns)
        self.confirmed_boundaries.extend(other.confirmed_boundaries)
        self.transformations.extend(other.transformations)
        self.flags.extend(other.flags)
        self.warnings.extend(other.warnings)
        self.ai_calls.extend(other.ai_calls)
        if other.metadata is not None:
            self.metadata = other.metadata
        self.fallback_used = self.fallback_used or other.fallback_used
        self.used_ai = self.used_ai or other.used_ai

    def summary(self) -> dict[str, int]:
        return {
            "removed_regions": len(self.removed_regions),
            "applied_patterns": len(self.applied_patterns),
            "confirmed_boundaries": len(self.confirmed_boundaries),
            "transformations": len(self.transformations),
            "flags": len(self.flags),
            "warnings": len(self.warnings),
        }


class RunningMetrics(BaseModel):
    """Counters maintained across phases."""

    original_word_count: int = 0
    current_word_count: int = 0
    original_line_count: int = 0
    phase_words_before: dict[PipelinePhase, int] = Field(default_factory=dict)
    phase_words_after: dict[PipelinePhase, int] = Field(default_factory=dict)
    phase_durations: dict[PipelinePhase, float] = Field(default_factory=dict)

    @property
    def total_reduction(self) -> float:
        if self.original_word_count == 0:
            return 0.0
        return 1.0 - self.current_word_count / self.original_word_count


# =============================================================================
# Accumulated Context
# =============================================================================

class AccumulatedContext(BaseModel):
    """Ledger owned by exactly one orchestrator run."""

    run_id: str = Field(default_factory=lambda: new_id("run"))
    document_id: str
    hints_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    # Phase state
    current_phase: Optional[PipelinePhase] = None
    completed_phases: list[PipelinePhase] = Field(default_factory=list)
    skipped_phases: dict[PipelinePhase, str] = Field(default_factory=dict)
    running_metrics: RunningMetrics = Field(default_factory=RunningMetrics)

    # Ledger
    removed_regions: list[RemovedRegion] = Field(default_factory=list)
    applied_patterns: list[AppliedPattern] = Field(default_factory=list)
    confirmed_boundaries: list[ConfirmedBoundary] = Field(default_factory=list)
    transformations: list[TransformationRecord] = Field(default_factory=list)
    flags: list[FlaggedContent] = Field(default_factory=list)
    warnings: list[ProcessingWarning] = Field(default_factory=list)
    ai_calls: list[AICallRecord] = Field(default_factory=list)
    checkpoint_outcomes: list[CheckpointOutcome] = Field(default_factory=list)
    recovery_events: list[RecoveryEvent] = Field(default_factory=list)
    phase_contributions: dict[PipelinePhase, dict[str, int]] = Field(default_factory=dict)
    document_metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)

    # =========================================================================
    # Views
    # =========================================================================

    def view(self) -> "AccumulatedContext":
        """Detached copy handed to phases."""
        return self.model_copy(deep=True)

    @property
    def last_completed_phase(self) -> Optional[PipelinePhase]:
        return self.completed_phases[-1] if self.completed_phases else None

    def entries_for(self, phase: PipelinePhase) -> int:
        """Count ledger entries tagged with `phase` (purgeable entries only)."""
        return (
            sum(1 for r in self.removed_regions if r.produced_by_phase == phase)
            + sum(1 for p in self.applied_patterns if p.produced_by_phase == phase)
            + sum(1 for b in self.confirmed_boundaries if b.produced_by_phase == phase)
            + sum(1 for t in self.transformations if t.produced_by_phase == phase)
            + sum(1 for f in self.flags if f.produced_by_phase == phase)
            + sum(1 for w in self.warnings if w.produced_by_phase == phase and not w.from_recovery)
        )

    def boundaries_of(self, *types: BoundaryType) -> list[ConfirmedBoundary]:
        return [b for b in self.confirmed_boundaries if b.boundary_type in types]

    def chapter_starts(self) -> list[int]:
        return sorted({b.line for b in self.boundaries_of(BoundaryType.CHAPTER_START)})

    def outcome_for(self, phase: PipelinePhase) -> Optional[CheckpointOutcome]:
        """Latest checkpoint outcome recorded for `phase`."""
        for outcome in reversed(self.checkpoint_outcomes):
            if outcome.phase == phase:
                return outcome
        return None

    def unresolved_critical_warnings(self) -> list[ProcessingWarning]:
        return [
            w for w in self.warnings
            if w.severity == Severity.CRITICAL and not w.resolved
        ]

    # =========================================================================
    # Mutations (orchestrator only)
    # =========================================================================

    def _touch(self) -> None:
        self.updated_at = datetime.now()

    def apply(self, contributions: PhaseContributions) -> None:
        """Append a phase's contributions to the ledger."""
        self.removed_regions.extend(contributions.removed_regions)
        self.applied_patterns.extend(contributions.applied_patterns)
        self.confirmed_boundaries.extend(contributions.confirmed_boundaries)
        self.transformations.extend(contributions.transformations)
        self.flags.extend(contributions.flags)
        self.warnings.extend(contributions.warnings)
        self.ai_calls.extend(contributions.ai_calls)
        if contributions.metadata is not None:
            self.document_metadata = contributions.metadata
        self.phase_contributions[contributions.phase] = contributions.summary()
        self._touch()

    def complete_phase(self, phase: PipelinePhase) -> None:
        if phase not in self.completed_phases:
            self.completed_phases.append(phase)
        self._touch()

    def skip_phase(self, phase: PipelinePhase, reason: str) -> None:
        self.skipped_phases[phase] = reason
        self._touch()

    def add_warning(self, warning: ProcessingWarning) -> None:
        self.warnings.append(warning)
        self._touch()

    def add_outcome(self, outcome: CheckpointOutcome) -> None:
        self.checkpoint_outcomes.append(outcome)
        self._touch()

    def add_recovery_event(self, event: RecoveryEvent) -> None:
        self.recovery_events.append(event)
        self._touch()

    def purge_phase(self, phase: PipelinePhase) -> int:
        """Delete every purgeable entry produced by `phase`.

        Checkpoint outcomes, recovery events and AI call records are
        history and survive. Warnings raised by recovery survive too.

        Returns:
            Number of entries removed.
        """
        before = self.entries_for(phase)
        self.removed_regions = [r for r in self.removed_regions if r.produced_by_phase != phase]
        self.applied_patterns = [p for p in self.applied_patterns if p.produced_by_phase != phase]
        self.confirmed_boundaries = [b for b in self.confirmed_boundaries if b.produced_by_phase != phase]
        self.transformations = [t for t in self.transformations if t.produced_by_phase != phase]
        self.flags = [f for f in self.flags if f.produced_by_phase != phase]
        self.warnings = [
            w for w in self.warnings
            if w.produced_by_phase != phase or w.from_recovery
        ]
        self.phase_contributions.pop(phase, None)
        if phase in self.completed_phases:
            self.completed_phases.remove(phase)
        self._touch()
        return before
