"""Checkpoint evaluators - quality gates between phases.

Each evaluator is a pure function of the phase outputs, the structure
hints, a read view of the context and the thresholds. It checks a fixed
table of criteria and grades the result:

- any unmet critical criterion  -> failed
- unmet error criteria only     -> marginal
- unmet warning criteria only   -> passed_with_warnings
- otherwise                     -> passed

Outcome confidence is the product of (1 - penalty) over unmet criteria.
"""

from typing import Callable, Optional

import structlog

from phaseclean.config.settings import CheckpointThresholds, SeverityPenalties
from phaseclean.models.checkpoint import CheckpointOutcome, CriterionResult
from phaseclean.models.context import AccumulatedContext
from phaseclean.models.enums import (
    CHECKPOINT_FOR_PHASE,
    BoundaryType,
    CheckpointResult,
    CheckpointType,
    DetectionMethod,
    PipelinePhase,
    RecommendedAction,
    Severity,
    TransformationType,
)
from phaseclean.models.hints import StructureHints
from phaseclean.models.regions import high_confidence_overlaps
from phaseclean.pipeline.phases import PhaseOutputs

logger = structlog.get_logger(__name__)

Evaluator = Callable[
    [PhaseOutputs, StructureHints, AccumulatedContext, CheckpointThresholds],
    list[CriterionResult],
]


def _criterion(
    name: str,
    passed: bool,
    severity: Severity,
    actual=None,
    expected=None,
    explanation: str = "",
) -> CriterionResult:
    return CriterionResult(
        name=name,
        passed=passed,
        severity=severity,
        actual=actual,
        expected=expected,
        explanation=explanation,
    )


def _reduction(before: int, after: int) -> float:
    if before <= 0:
        return 0.0
    return max(0.0, 1.0 - after / before)


# =============================================================================
# Criterion Tables
# =============================================================================

def _reconnaissance_criteria(
    outputs: PhaseOutputs,
    hints: StructureHints,
    context: AccumulatedContext,
    thresholds: CheckpointThresholds,
) -> list[CriterionResult]:
    overlaps = high_confidence_overlaps(list(hints.regions), thresholds.high_overlap_confidence)
    return [
        _criterion(
            "reconnaissance_confidence",
            hints.overall_confidence >= thresholds.recon_min_confidence,
            Severity.CRITICAL,
            actual=round(hints.overall_confidence, 4),
            expected=f">= {thresholds.recon_min_confidence}",
            explanation="Overall confidence of the structure analysis",
        ),
        _criterion(
            "core_content_identified",
            hints.has_core_content,
            Severity.CRITICAL,
            actual=str(hints.core_range()) if hints.core_range() else None,
            expected="a core content range",
        ),
        _criterion(
            "no_conflicting_regions",
            not overlaps,
            Severity.CRITICAL,
            actual=[f"{a.type.value}@{a.line_range}/{b.type.value}@{b.line_range}" for a, b in overlaps],
            expected="no overlapping regions above the overlap threshold",
        ),
        _criterion(
            "content_type_alignment",
            hints.content_type_matches,
            Severity.WARNING,
            actual=hints.detected_content_type.value,
            expected=hints.user_selected_content_type.value,
            explanation="Detected content type agrees with the selected one",
        ),
        _criterion(
            "ai_analysis_used",
            hints.analysis_method == DetectionMethod.AI_ANALYSIS,
            Severity.INFO,
            actual=hints.analysis_method.value,
            expected=DetectionMethod.AI_ANALYSIS.value,
        ),
    ]


def _semantic_criteria(
    outputs: PhaseOutputs,
    hints: StructureHints,
    context: AccumulatedContext,
    thresholds: CheckpointThresholds,
) -> list[CriterionResult]:
    reduction = _reduction(outputs.words_before, outputs.words_after)
    core = hints.core_range()
    intersecting = [
        str(r.line_range) for r in outputs.contributions.removed_regions
        if core is not None and r.line_range.overlaps(core)
    ]
    return [
        _criterion(
            "word_reduction",
            reduction <= thresholds.semantic_max_reduction,
            Severity.ERROR,
            actual=round(reduction, 4),
            expected=f"<= {thresholds.semantic_max_reduction}",
        ),
        _criterion(
            "core_content_untouched",
            not intersecting,
            Severity.CRITICAL,
            actual=intersecting,
            expected="no removed blocks inside the core content range",
        ),
    ]


def _boundary_criterion(
    name: str,
    outputs: PhaseOutputs,
    boundary_type: BoundaryType,
    hinted: Optional[int],
    tolerance: int,
) -> CriterionResult:
    confirmed = [
        b.line for b in outputs.contributions.confirmed_boundaries
        if b.boundary_type == boundary_type
    ]
    if not confirmed or hinted is None:
        return _criterion(name, True, Severity.CRITICAL, actual=confirmed, expected=hinted,
                          explanation="No hinted position to compare against")
    worst = max(abs(line - hinted) for line in confirmed)
    return _criterion(
        name,
        worst <= tolerance,
        Severity.CRITICAL,
        actual=confirmed,
        expected=f"{hinted} +/- {tolerance}",
    )


def _structural_criteria(
    outputs: PhaseOutputs,
    hints: StructureHints,
    context: AccumulatedContext,
    thresholds: CheckpointThresholds,
) -> list[CriterionResult]:
    tolerance = thresholds.boundary_tolerance_lines
    core = hints.core_range()
    preservation = 1.0
    if core is not None:
        # One minus the share of the original core words this phase removed
        reference = outputs.original_document if outputs.original_document is not None else outputs.document_before
        core_original = reference.words_in(core)
        removed = outputs.document_before.words_in(core) - outputs.document_after.words_in(core)
        if core_original:
            preservation = 1.0 - max(removed, 0) / core_original
    original = context.running_metrics.original_word_count
    total_reduction = _reduction(original, outputs.words_after)

    return [
        _boundary_criterion(
            "front_boundary_position", outputs, BoundaryType.FRONT_MATTER_END,
            hints.front_matter_end(), tolerance,
        ),
        _boundary_criterion(
            "back_boundary_position", outputs, BoundaryType.BACK_MATTER_START,
            hints.back_matter_start(), tolerance,
        ),
        _criterion(
            "core_content_preserved",
            preservation >= thresholds.structural_min_core_preservation,
            Severity.CRITICAL,
            actual=round(preservation, 4),
            expected=f">= {thresholds.structural_min_core_preservation}",
        ),
        _criterion(
            "total_reduction",
            total_reduction <= thresholds.structural_max_total_reduction,
            Severity.ERROR,
            actual=round(total_reduction, 4),
            expected=f"<= {thresholds.structural_max_total_reduction}",
        ),
        _criterion(
            "boundaries_without_fallback",
            not outputs.contributions.fallback_used,
            Severity.WARNING,
            actual="fallback" if outputs.contributions.fallback_used else "primary",
            expected="primary",
            explanation="Boundaries were confirmed by the primary method",
        ),
    ]


def _reference_criteria(
    outputs: PhaseOutputs,
    hints: StructureHints,
    context: AccumulatedContext,
    thresholds: CheckpointThresholds,
) -> list[CriterionResult]:
    applied = outputs.contributions.applied_patterns
    low_quality = [
        p.matcher for p in applied
        if p.quality_score < thresholds.reference_min_pattern_quality
    ]
    out_of_range = [
        f"{p.matcher}: {p.removal_count}/{p.estimated_count}"
        for p in applied
        if p.estimated_count > 0 and not (
            thresholds.reference_min_count_ratio
            <= p.removal_count / p.estimated_count
            <= thresholds.reference_max_count_ratio
        )
    ]
    reduction = _reduction(outputs.words_before, outputs.words_after)
    return [
        _criterion(
            "pattern_quality",
            not low_quality,
            Severity.ERROR,
            actual=low_quality,
            expected=f"quality >= {thresholds.reference_min_pattern_quality}",
        ),
        _criterion(
            "removal_count_matches_estimate",
            not out_of_range,
            Severity.WARNING,
            actual=out_of_range,
            expected=f"{thresholds.reference_min_count_ratio}x-{thresholds.reference_max_count_ratio}x estimate",
        ),
        _criterion(
            "reference_reduction",
            reduction <= thresholds.reference_max_reduction,
            Severity.ERROR,
            actual=round(reduction, 4),
            expected=f"<= {thresholds.reference_max_reduction}",
        ),
    ]


def _word_ratio_criterion(
    name: str,
    outputs: PhaseOutputs,
    transformation_type: TransformationType,
    max_deviation: float,
) -> CriterionResult:
    records = [
        t for t in outputs.contributions.transformations
        if t.transformation_type == transformation_type
    ]
    before = sum(t.words_before for t in records)
    after = sum(t.words_after for t in records)
    ratio = after / before if before else 1.0
    return _criterion(
        name,
        abs(ratio - 1.0) <= max_deviation,
        Severity.ERROR,
        actual=round(ratio, 4),
        expected=f"1.0 +/- {max_deviation}",
    )


def _optimization_criteria(
    outputs: PhaseOutputs,
    hints: StructureHints,
    context: AccumulatedContext,
    thresholds: CheckpointThresholds,
) -> list[CriterionResult]:
    spanning = outputs.document_after.lines_spanning(context.chapter_starts())
    return [
        _word_ratio_criterion(
            "reflow_word_ratio", outputs, TransformationType.PARAGRAPH_REFLOW,
            thresholds.reflow_max_word_deviation,
        ),
        _word_ratio_criterion(
            "optimize_word_ratio", outputs, TransformationType.PARAGRAPH_SPLIT,
            thresholds.optimize_max_word_deviation,
        ),
        _criterion(
            "chapter_boundaries_respected",
            not spanning,
            Severity.ERROR,
            actual=[f"{line.start}-{line.end} spans {mark}" for line, mark in spanning[:10]],
            expected="no paragraph crossing a chapter start",
        ),
    ]


def _final_criteria(
    outputs: PhaseOutputs,
    hints: StructureHints,
    context: AccumulatedContext,
    thresholds: CheckpointThresholds,
) -> list[CriterionResult]:
    original = context.running_metrics.original_word_count
    preservation = outputs.words_after / original if original else 1.0
    critical = context.unresolved_critical_warnings()
    review = outputs.review
    return [
        _criterion(
            "word_preservation",
            preservation >= thresholds.final_min_word_preservation,
            Severity.CRITICAL,
            actual=round(preservation, 4),
            expected=f">= {thresholds.final_min_word_preservation}",
        ),
        _criterion(
            "no_unresolved_critical_warnings",
            not critical,
            Severity.CRITICAL,
            actual=[w.message for w in critical],
            expected="none",
        ),
        _criterion(
            "review_quality",
            review is None or review.quality_score >= thresholds.final_min_quality,
            Severity.ERROR,
            actual=round(review.quality_score, 4) if review else None,
            expected=f">= {thresholds.final_min_quality}",
            explanation="" if review else "No review result available",
        ),
    ]


CRITERIA: dict[CheckpointType, Evaluator] = {
    CheckpointType.RECONNAISSANCE_QUALITY: _reconnaissance_criteria,
    CheckpointType.SEMANTIC_INTEGRITY: _semantic_criteria,
    CheckpointType.STRUCTURAL_INTEGRITY: _structural_criteria,
    CheckpointType.REFERENCE_INTEGRITY: _reference_criteria,
    CheckpointType.OPTIMIZATION_INTEGRITY: _optimization_criteria,
    CheckpointType.FINAL_QUALITY: _final_criteria,
}

ROLLBACK_ON_FAILURE = frozenset({
    CheckpointType.SEMANTIC_INTEGRITY,
    CheckpointType.STRUCTURAL_INTEGRITY,
    CheckpointType.REFERENCE_INTEGRITY,
    CheckpointType.OPTIMIZATION_INTEGRITY,
})


# =============================================================================
# Grading
# =============================================================================

def grade(criteria: list[CriterionResult]) -> CheckpointResult:
    unmet = {c.severity for c in criteria if not c.passed}
    if Severity.CRITICAL in unmet:
        return CheckpointResult.FAILED
    if Severity.ERROR in unmet:
        return CheckpointResult.MARGINAL
    if Severity.WARNING in unmet:
        return CheckpointResult.PASSED_WITH_WARNINGS
    return CheckpointResult.PASSED


def recommended_action(checkpoint_type: CheckpointType, result: CheckpointResult) -> RecommendedAction:
    if checkpoint_type == CheckpointType.RECONNAISSANCE_QUALITY:
        return RecommendedAction.REQUEST_USER_DECISION
    if result == CheckpointResult.FAILED:
        if checkpoint_type in ROLLBACK_ON_FAILURE:
            return RecommendedAction.ROLLBACK_PHASE
        return RecommendedAction.HALT_PIPELINE
    if result == CheckpointResult.MARGINAL:
        return RecommendedAction.CONTINUE_WITH_CAUTION
    return RecommendedAction.CONTINUE_NORMALLY


def outcome_confidence(criteria: list[CriterionResult], penalties: SeverityPenalties) -> float:
    confidence = 1.0
    for criterion in criteria:
        if not criterion.passed:
            confidence *= 1.0 - penalties.for_severity(criterion.severity)
    return round(confidence, 6)


def evaluate_checkpoint(
    outputs: PhaseOutputs,
    hints: StructureHints,
    context: AccumulatedContext,
    thresholds: CheckpointThresholds,
    penalties: SeverityPenalties,
) -> Optional[CheckpointOutcome]:
    """Evaluate the checkpoint that follows `outputs.phase`.

    Returns:
        CheckpointOutcome, or None when the phase has no checkpoint.
    """
    checkpoint_type = CHECKPOINT_FOR_PHASE.get(outputs.phase)
    if checkpoint_type is None:
        return None

    criteria = CRITERIA[checkpoint_type](outputs, hints, context, thresholds)
    result = grade(criteria)
    unmet = [c.name for c in criteria if not c.passed]
    outcome = CheckpointOutcome(
        checkpoint_type=checkpoint_type,
        phase=outputs.phase,
        result=result,
        criteria=tuple(criteria),
        confidence=outcome_confidence(criteria, penalties),
        recommended_action=recommended_action(checkpoint_type, result),
        summary=(
            f"{checkpoint_type.value}: {result.value}"
            + (f" (unmet: {', '.join(unmet)})" if unmet else "")
        ),
    )
    logger.info(
        "checkpoint_evaluated",
        checkpoint=checkpoint_type.value,
        result=result.value,
        confidence=outcome.confidence,
        action=outcome.recommended_action.value,
        unmet=unmet,
    )
    return outcome


def skipped_outcome(phase: PipelinePhase, reason: str) -> Optional[CheckpointOutcome]:
    """Outcome recorded for a phase whose checkpoint could not run."""
    checkpoint_type = CHECKPOINT_FOR_PHASE.get(phase)
    if checkpoint_type is None:
        return None
    return CheckpointOutcome(
        checkpoint_type=checkpoint_type,
        phase=phase,
        result=CheckpointResult.SKIPPED,
        confidence=1.0,
        recommended_action=RecommendedAction.CONTINUE_WITH_CAUTION,
        summary=f"{checkpoint_type.value}: skipped ({reason})",
    )
