"""Confidence tracker - one monotonically non-increasing score per run.

The score starts at the reconnaissance confidence. After every later
checkpoint a weighted combination of five factors is computed:

    reconnaissance      hints.overall_confidence
    execution           product of post-reconnaissance checkpoint confidences
    content_type_match  content_type_confidence (halved on a mismatch)
    pattern_consistency mean quality of applied patterns
    validation_success  share of AI responses that passed validation

The combination is multiplied by the penalties of the checkpoint's unmet
criteria, and the tracker keeps min(previous, computed).
"""

from typing import Optional

import structlog

from phaseclean.config.settings import ConfidenceWeights, SeverityPenalties
from phaseclean.models.checkpoint import CheckpointOutcome
from phaseclean.models.context import AccumulatedContext
from phaseclean.models.enums import ConfidenceLevel, PipelinePhase
from phaseclean.models.hints import StructureHints
from phaseclean.models.result import ConfidenceDisplay

logger = structlog.get_logger(__name__)

RECOMMENDATIONS: dict[ConfidenceLevel, str] = {
    ConfidenceLevel.HIGH: "Output is ready to use.",
    ConfidenceLevel.GOOD: "Output is reliable; spot-check the flagged sections.",
    ConfidenceLevel.MODERATE: "Review the warnings and flagged sections before use.",
    ConfidenceLevel.LOW: "Manual review is recommended before use.",
    ConfidenceLevel.VERY_LOW: "Treat the output as a draft; manual cleaning is recommended.",
}


def confidence_level(value: float) -> ConfidenceLevel:
    if value >= 0.90:
        return ConfidenceLevel.HIGH
    if value >= 0.75:
        return ConfidenceLevel.GOOD
    if value >= 0.60:
        return ConfidenceLevel.MODERATE
    if value >= 0.40:
        return ConfidenceLevel.LOW
    return ConfidenceLevel.VERY_LOW


class ConfidenceTracker:
    """Tracks the pipeline confidence of one run."""

    def __init__(
        self,
        weights: Optional[ConfidenceWeights] = None,
        penalties: Optional[SeverityPenalties] = None,
    ):
        self.weights = weights or ConfidenceWeights()
        self.penalties = penalties or SeverityPenalties()
        self.current: Optional[float] = None
        self.history: list[tuple[PipelinePhase, float]] = []

    def initialize(self, hints: StructureHints) -> float:
        """Start from the reconnaissance confidence."""
        self.current = round(hints.overall_confidence, 6)
        self.history = [(PipelinePhase.RECONNAISSANCE, self.current)]
        logger.debug("confidence_initialized", confidence=self.current)
        return self.current

    def factors(self, hints: StructureHints, context: AccumulatedContext) -> dict[str, float]:
        """Compute the five weighted factors from the hints and the ledger."""
        execution = 1.0
        for outcome in context.checkpoint_outcomes:
            if outcome.phase != PipelinePhase.RECONNAISSANCE:
                execution *= outcome.confidence

        content_type = hints.content_type_confidence
        if not hints.content_type_matches:
            content_type *= 0.5

        qualities = [p.quality_score for p in context.applied_patterns]
        pattern_consistency = sum(qualities) / len(qualities) if qualities else hints.overall_confidence

        calls = [c for c in context.ai_calls if c.produced_by_phase != PipelinePhase.RECONNAISSANCE]
        validation = sum(1 for c in calls if c.validated) / len(calls) if calls else 1.0

        return {
            "reconnaissance": hints.overall_confidence,
            "execution": execution,
            "content_type_match": content_type,
            "pattern_consistency": pattern_consistency,
            "validation_success": validation,
        }

    def compute(self, outcome: CheckpointOutcome, hints: StructureHints, context: AccumulatedContext) -> float:
        factors = self.factors(hints, context)
        combined = (
            self.weights.reconnaissance * factors["reconnaissance"]
            + self.weights.execution * factors["execution"]
            + self.weights.content_type_match * factors["content_type_match"]
            + self.weights.pattern_consistency * factors["pattern_consistency"]
            + self.weights.validation_success * factors["validation_success"]
        )
        for severity in outcome.unmet_severities:
            combined *= 1.0 - self.penalties.for_severity(severity)
        return max(0.0, min(1.0, combined))

    def update(
        self,
        outcome: CheckpointOutcome,
        hints: StructureHints,
        context: AccumulatedContext,
    ) -> float:
        """Fold a post-reconnaissance checkpoint into the score.

        Args:
            outcome: The checkpoint just evaluated (already in `context`).
            hints: Structure hints of the run.
            context: Ledger view including the checkpoint outcome.

        Returns:
            The new (never higher) confidence.
        """
        if self.current is None:
            self.initialize(hints)
        computed = self.compute(outcome, hints, context)
        self.current = round(min(self.current, computed), 6)
        self.history.append((outcome.phase, self.current))
        logger.info(
            "confidence_updated",
            phase=outcome.phase.value,
            computed=round(computed, 4),
            confidence=self.current,
        )
        return self.current

    def get_display(self) -> ConfidenceDisplay:
        value = self.current if self.current is not None else 0.0
        level = confidence_level(value)
        return ConfidenceDisplay(
            value=value,
            percentage=int(round(value * 100)),
            level=level,
            recommendation=RECOMMENDATIONS[level],
        )
