"""Unit tests for the fallback coordinator decision table."""

import pytest

from phaseclean.models import (
    CheckpointResult,
    FailureKind,
    FallbackActionKind,
    PipelinePhase,
    StepMethod,
)
from phaseclean.pipeline.fallback import FallbackCoordinator


@pytest.fixture
def coordinator(settings) -> FallbackCoordinator:
    return FallbackCoordinator(settings)


class TestAIFailures:
    """Tests for AI failure handling."""

    def test_first_timeout_retries_with_longer_budget(self, coordinator):
        action, event = coordinator.decide(
            FailureKind.AI_TIMEOUT, PipelinePhase.STRUCTURAL, "detect_boundaries", StepMethod.HYBRID,
        )
        assert action.kind == FallbackActionKind.RETRY_ONCE
        assert action.timeout_multiplier == 2.0
        assert action.fallback_method == StepMethod.HEURISTIC
        assert event.attempt == 1
        assert event.failure_kind == FailureKind.AI_TIMEOUT

    def test_second_timeout_falls_back(self, coordinator):
        action, _ = coordinator.decide(
            FailureKind.AI_TIMEOUT, PipelinePhase.STRUCTURAL, "detect_boundaries", StepMethod.HYBRID, attempt=2,
        )
        assert action.kind == FallbackActionKind.FALLBACK_TO
        assert action.fallback_method == StepMethod.HEURISTIC

    def test_invalid_response_on_hybrid_step_falls_back(self, coordinator):
        action, event = coordinator.decide(
            FailureKind.AI_RESPONSE_INVALID, PipelinePhase.STRUCTURAL, "detect_boundaries", StepMethod.HYBRID,
            message="back boundary at line 4 rejected",
        )
        assert action.kind == FallbackActionKind.FALLBACK_TO
        assert event.message == "back boundary at line 4 rejected"

    def test_invalid_response_on_transformation_is_skipped(self, coordinator):
        action, _ = coordinator.decide(
            FailureKind.AI_RESPONSE_INVALID, PipelinePhase.OPTIMIZATION, "reflow_paragraphs",
            StepMethod.TRANSFORMATION,
        )
        assert action.kind == FallbackActionKind.SKIP_STEP
        assert action.preserves_content

    def test_timeout_retry_on_transformation_has_no_fallback_method(self, coordinator):
        action, _ = coordinator.decide(
            FailureKind.AI_TIMEOUT, PipelinePhase.OPTIMIZATION, "reflow_paragraphs", StepMethod.TRANSFORMATION,
        )
        assert action.kind == FallbackActionKind.RETRY_ONCE
        assert action.fallback_method is None


class TestContentLoss:
    """Tests for content loss thresholds."""

    @pytest.mark.parametrize("loss,kind", [
        (0.10, FallbackActionKind.CONTINUE_WITH_WARNING),
        (0.25, FallbackActionKind.SKIP_REMAINING_STEPS_IN_PHASE),
        (0.50, FallbackActionKind.SKIP_REMAINING_STEPS_IN_PHASE),
        (0.51, FallbackActionKind.ROLLBACK_PHASE),
    ])
    def test_thresholds(self, coordinator, loss, kind):
        action, _ = coordinator.decide(
            FailureKind.CONTENT_LOSS_DETECTED, PipelinePhase.SEMANTIC, "remove_headers_footers",
            StepMethod.PATTERN, loss_ratio=loss,
        )
        assert action.kind == kind


class TestOtherFailures:
    """Tests for checkpoint and operation failures."""

    def test_marginal_checkpoint_continues(self, coordinator):
        action, _ = coordinator.decide(
            FailureKind.VALIDATION_FAILED, PipelinePhase.REFERENCE, "checkpoint", StepMethod.HEURISTIC,
            checkpoint_result=CheckpointResult.MARGINAL,
        )
        assert action.kind == FallbackActionKind.CONTINUE_WITH_WARNING

    def test_failed_checkpoint_rolls_back(self, coordinator):
        action, _ = coordinator.decide(
            FailureKind.VALIDATION_FAILED, PipelinePhase.REFERENCE, "checkpoint", StepMethod.HEURISTIC,
            checkpoint_result=CheckpointResult.FAILED,
        )
        assert action.kind == FallbackActionKind.ROLLBACK_PHASE

    def test_operation_error_skips_step(self, coordinator):
        action, _ = coordinator.decide(
            FailureKind.OPERATION_ERROR, PipelinePhase.SEMANTIC, "clean_special_characters", StepMethod.HEURISTIC,
        )
        assert action.kind == FallbackActionKind.SKIP_STEP

    def test_operation_error_in_hybrid_step_falls_back(self, coordinator):
        action, event = coordinator.decide(
            FailureKind.OPERATION_ERROR, PipelinePhase.RECONNAISSANCE, "analyze_structure", StepMethod.HYBRID,
            message="model client crashed",
        )
        assert action.kind == FallbackActionKind.FALLBACK_TO
        assert action.fallback_method == StepMethod.HEURISTIC
        assert event.failure_kind == FailureKind.OPERATION_ERROR
