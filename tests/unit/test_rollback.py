"""Unit tests for phase rollback and ledger purging."""

from phaseclean.models import (
    AccumulatedContext,
    AICallRecord,
    AppliedPattern,
    CheckpointOutcome,
    CheckpointResult,
    CheckpointType,
    FailureKind,
    FallbackAction,
    FallbackActionKind,
    LineRange,
    PatternKind,
    PhaseContributions,
    PipelinePhase,
    ProcessingWarning,
    RecommendedAction,
    RecoveryEvent,
    RemovalType,
    RemovedRegion,
    WorkingDocument,
)
from phaseclean.pipeline.rollback import rollback


def semantic_contributions() -> PhaseContributions:
    contributions = PhaseContributions(phase=PipelinePhase.SEMANTIC)
    contributions.applied_patterns.append(AppliedPattern(
        produced_by_phase=PipelinePhase.SEMANTIC,
        step="remove_headers_footers",
        pattern_kind=PatternKind.PAGE_NUMBER,
        matcher=r"^\d+$",
        removal_count=3,
        estimated_count=3,
        quality_score=0.9,
    ))
    contributions.removed_regions.append(RemovedRegion(
        produced_by_phase=PipelinePhase.SEMANTIC,
        step="remove_headers_footers",
        removal_type=RemovalType.OTHER,
        line_range=LineRange(start=4, end=6),
        word_count=3,
        confidence=0.9,
    ))
    contributions.warnings.append(ProcessingWarning(
        produced_by_phase=PipelinePhase.SEMANTIC,
        step="remove_headers_footers",
        message="many matches",
    ))
    contributions.ai_calls.append(AICallRecord(
        produced_by_phase=PipelinePhase.SEMANTIC, step="remove_headers_footers", validated=True,
    ))
    return contributions


def recon_contributions() -> PhaseContributions:
    contributions = PhaseContributions(phase=PipelinePhase.RECONNAISSANCE)
    contributions.warnings.append(ProcessingWarning(
        produced_by_phase=PipelinePhase.RECONNAISSANCE,
        step="analyze_structure",
        message="content type differs",
    ))
    return contributions


def build_context() -> AccumulatedContext:
    context = AccumulatedContext(document_id="doc")
    context.apply(recon_contributions())
    context.complete_phase(PipelinePhase.RECONNAISSANCE)
    context.apply(semantic_contributions())
    context.complete_phase(PipelinePhase.SEMANTIC)
    context.add_outcome(CheckpointOutcome(
        checkpoint_type=CheckpointType.SEMANTIC_INTEGRITY,
        phase=PipelinePhase.SEMANTIC,
        result=CheckpointResult.FAILED,
        confidence=0.7,
        recommended_action=RecommendedAction.ROLLBACK_PHASE,
    ))
    context.add_recovery_event(RecoveryEvent(
        phase=PipelinePhase.SEMANTIC,
        step="checkpoint",
        failure_kind=FailureKind.VALIDATION_FAILED,
        action=FallbackAction(kind=FallbackActionKind.ROLLBACK_PHASE),
    ))
    return context


class TestPurgePhase:
    """Tests for AccumulatedContext.purge_phase."""

    def test_removes_only_tagged_entries(self):
        context = build_context()
        assert context.entries_for(PipelinePhase.SEMANTIC) == 3

        purged = context.purge_phase(PipelinePhase.SEMANTIC)

        assert purged == 3
        assert context.entries_for(PipelinePhase.SEMANTIC) == 0
        assert context.entries_for(PipelinePhase.RECONNAISSANCE) == 1
        assert context.completed_phases == [PipelinePhase.RECONNAISSANCE]
        assert PipelinePhase.SEMANTIC not in context.phase_contributions

    def test_history_survives(self):
        context = build_context()
        context.purge_phase(PipelinePhase.SEMANTIC)
        assert len(context.checkpoint_outcomes) == 1
        assert len(context.recovery_events) == 1
        assert len(context.ai_calls) == 1


class TestRollback:
    """Tests for rollback()."""

    def test_restores_snapshot_and_records_warning(self):
        snapshot = WorkingDocument.from_text("one\ntwo three\nfour")
        context = build_context()
        context.running_metrics.current_word_count = 1

        document, context = rollback(PipelinePhase.SEMANTIC, snapshot, context, reason="checkpoint failed")

        assert document == snapshot
        assert context.running_metrics.current_word_count == 4
        recovery_warnings = [w for w in context.warnings if w.from_recovery]
        assert len(recovery_warnings) == 1
        assert "phase rolled back: checkpoint failed" in recovery_warnings[0].message

    def test_matches_never_having_run(self):
        snapshot = WorkingDocument.from_text("a\nb")
        rolled_back = build_context()
        rollback(PipelinePhase.SEMANTIC, snapshot, rolled_back)

        never_ran = AccumulatedContext(document_id="doc")
        never_ran.apply(recon_contributions())
        never_ran.complete_phase(PipelinePhase.RECONNAISSANCE)

        assert rolled_back.removed_regions == never_ran.removed_regions
        assert rolled_back.applied_patterns == never_ran.applied_patterns
        assert [w.message for w in rolled_back.warnings if not w.from_recovery] == (
            [w.message for w in never_ran.warnings]
        )
        assert rolled_back.completed_phases == never_ran.completed_phases

    def test_repeating_adds_only_a_warning(self):
        snapshot = WorkingDocument.from_text("a\nb")
        context = build_context()
        rollback(PipelinePhase.SEMANTIC, snapshot, context)
        entries_after_first = sum(context.entries_for(phase) for phase in PipelinePhase)
        warnings_after_first = len(context.warnings)

        rollback(PipelinePhase.SEMANTIC, snapshot, context)

        assert sum(context.entries_for(phase) for phase in PipelinePhase) == entries_after_first
        assert len(context.warnings) == warnings_after_first + 1
