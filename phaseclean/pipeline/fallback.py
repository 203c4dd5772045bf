"""Fallback & recovery coordinator.

Maps a failure to one bounded recovery action. The coordinator is a pure
decision table: it never touches the document or the context. It returns
the action together with the RecoveryEvent the orchestrator records.

DECISION TABLE:
- ai_response_invalid / ai_error: hybrid step falls back to its heuristic;
  a transformation step is skipped with content preserved
- ai_timeout: first attempt retries once with an extended budget; after
  that, same as an invalid response
- operation_error: a hybrid step that failed while asking the AI falls back
  to its heuristic; a heuristic or pattern step is skipped
- content_loss_detected: rollback above 50% loss, skip the remaining
  steps between 25% and 50%, otherwise continue with a warning
- validation_failed: rollback when the checkpoint failed, continue with a
  warning when it was marginal
"""

from typing import Optional

import structlog

from phaseclean.config.settings import PipelineSettings, get_settings
from phaseclean.models.enums import (
    CheckpointResult,
    FailureKind,
    FallbackActionKind,
    PipelinePhase,
    StepMethod,
)
from phaseclean.models.recovery import FallbackAction, RecoveryEvent

logger = structlog.get_logger(__name__)


class FallbackCoordinator:
    """Chooses recovery actions for failed operations."""

    def __init__(self, settings: Optional[PipelineSettings] = None):
        self.settings = settings or get_settings()

    def decide(
        self,
        failure_kind: FailureKind,
        phase: PipelinePhase,
        step: str,
        step_method: StepMethod,
        attempt: int = 1,
        loss_ratio: Optional[float] = None,
        checkpoint_result: Optional[CheckpointResult] = None,
        message: str = "",
    ) -> tuple[FallbackAction, RecoveryEvent]:
        """Decide how to recover from a failure.

        Args:
            failure_kind: What went wrong.
            phase: Phase the failing step belongs to.
            step: Step name.
            step_method: How the step produces results.
            attempt: 1 for the first failure of this step, 2 after a retry.
            loss_ratio: Share of the phase input lost (content loss only).
            checkpoint_result: Checkpoint result (validation failures only).
            message: Failure detail for the audit record.

        Returns:
            Tuple of (action, recovery event).
        """
        action = self._choose(failure_kind, step_method, attempt, loss_ratio, checkpoint_result)
        event = RecoveryEvent(
            phase=phase,
            step=step,
            failure_kind=failure_kind,
            action=action,
            attempt=attempt,
            message=message,
        )
        logger.warning(
            "recovery_decided",
            phase=phase.value,
            step=step,
            failure=failure_kind.value,
            action=action.kind.value,
            fallback_method=action.fallback_method.value if action.fallback_method else None,
            attempt=attempt,
            error=message,
        )
        return action, event

    # =========================================================================
    # Decision Table
    # =========================================================================

    def _choose(
        self,
        failure_kind: FailureKind,
        step_method: StepMethod,
        attempt: int,
        loss_ratio: Optional[float],
        checkpoint_result: Optional[CheckpointResult],
    ) -> FallbackAction:
        if failure_kind == FailureKind.AI_TIMEOUT and attempt == 1:
            return FallbackAction(
                kind=FallbackActionKind.RETRY_ONCE,
                fallback_method=(
                    StepMethod.HEURISTIC if step_method == StepMethod.HYBRID else None
                ),
                timeout_multiplier=self.settings.timeout_retry_multiplier,
                reason="AI call timed out; retrying once with an extended budget",
            )

        if failure_kind in (FailureKind.AI_RESPONSE_INVALID, FailureKind.AI_ERROR, FailureKind.AI_TIMEOUT):
            if step_method == StepMethod.HYBRID:
                return FallbackAction(
                    kind=FallbackActionKind.FALLBACK_TO,
                    fallback_method=StepMethod.HEURISTIC,
                    reason="AI result not usable; using the heuristic method",
                )
            return FallbackAction(
                kind=FallbackActionKind.SKIP_STEP,
                reason="AI transformation not usable; content preserved unchanged",
            )

        if failure_kind == FailureKind.CONTENT_LOSS_DETECTED:
            loss = loss_ratio or 0.0
            if loss > self.settings.loss_rollback_above:
                return FallbackAction(
                    kind=FallbackActionKind.ROLLBACK_PHASE,
                    reason=f"Phase removed {loss:.0%} of its input",
                )
            if loss >= self.settings.loss_skip_above:
                return FallbackAction(
                    kind=FallbackActionKind.SKIP_REMAINING_STEPS_IN_PHASE,
                    reason=f"Phase removed {loss:.0%} of its input; remaining steps skipped",
                )
            return FallbackAction(
                kind=FallbackActionKind.CONTINUE_WITH_WARNING,
                reason=f"Phase removed {loss:.0%} of its input, above its budget",
            )

        if failure_kind == FailureKind.VALIDATION_FAILED:
            if checkpoint_result == CheckpointResult.MARGINAL:
                return FallbackAction(
                    kind=FallbackActionKind.CONTINUE_WITH_WARNING,
                    reason="Checkpoint marginal",
                )
            return FallbackAction(
                kind=FallbackActionKind.ROLLBACK_PHASE,
                reason="Checkpoint failed",
            )

        if step_method == StepMethod.HYBRID:
            return FallbackAction(
                kind=FallbackActionKind.FALLBACK_TO,
                fallback_method=StepMethod.HEURISTIC,
                reason="AI step raised unexpectedly; using the heuristic method",
            )

        return FallbackAction(
            kind=FallbackActionKind.SKIP_STEP,
            reason="Operation failed; content preserved unchanged",
        )
