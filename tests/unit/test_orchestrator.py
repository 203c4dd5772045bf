"""End-to-end tests for the phase orchestrator."""

from dataclasses import replace

import pytest

from phaseclean.config.settings import UserConfig
from phaseclean.llm.service import AIServiceError, AITimeoutError
from phaseclean.models import (
    CheckpointResult,
    DetectionMethod,
    FailureKind,
    FallbackActionKind,
    PipelinePhase,
    RunStatus,
)
from phaseclean.models.enums import ContentType
from phaseclean.pipeline.cancellation import CancellationToken
from phaseclean.pipeline.orchestrator import PendingRun, PipelineOrchestrator
from phaseclean.pipeline.phases import PHASE_STEPS

from tests.scenario import FakeAIService, echo_reflow, structure_response


def decline(hints, outcome):
    return False


class TestScenarioRuns:
    """Full runs of the scenario book with a scripted AI service."""

    def test_invalid_back_boundary_falls_back(self, scenario_text, settings, academic_config):
        service = FakeAIService(back={"boundary_line": 4, "confidence": 0.9})
        orchestrator = PipelineOrchestrator(service=service, settings=settings)

        result = orchestrator.run(scenario_text, academic_config)

        assert result.status == RunStatus.COMPLETED_WITH_WARNINGS
        events = result.context.recovery_events
        assert len(events) == 1
        assert events[0].step == "detect_boundaries"
        assert events[0].failure_kind == FailureKind.AI_RESPONSE_INVALID
        assert events[0].action.kind == FallbackActionKind.FALLBACK_TO
        assert result.final_confidence == pytest.approx(0.7885, abs=1e-3)

        page_patterns = [
            p for p in result.context.applied_patterns
            if p.produced_by_phase == PipelinePhase.SEMANTIC and p.step == "remove_page_numbers"
        ]
        assert page_patterns[0].removal_count == 95
        assert "Bibliography" not in result.cleaned_text
        assert "Contents" not in result.cleaned_text
        assert "<!-- CHAPTER: Chapter 1: Sources -->" in result.cleaned_text

    def test_every_phase_completes(self, scenario_text, settings, academic_config):
        result = PipelineOrchestrator(service=FakeAIService(), settings=settings).run(
            scenario_text, academic_config,
        )
        assert result.succeeded
        assert set(result.context.completed_phases) == set(PipelinePhase)
        assert result.final_word_count < result.original_word_count

    def test_low_confidence_declined(self, scenario_text, settings, academic_config):
        service = FakeAIService(structure=structure_response(0.45))
        orchestrator = PipelineOrchestrator(service=service, settings=settings, decision_provider=decline)

        result = orchestrator.run(scenario_text, academic_config)

        assert result.status == RunStatus.CANCELLED_BY_USER
        assert result.cleaned_text == scenario_text
        assert result.final_confidence == pytest.approx(0.45)
        assert [name for name, _ in service.calls] == ["analyze_structure"]

    def test_reconnaissance_failure_defaults_to_decline(self, scenario_text, settings, academic_config):
        service = FakeAIService(structure=structure_response(0.45))
        orchestrator = PipelineOrchestrator(service=service, settings=settings)

        pending = orchestrator.start(scenario_text, academic_config)

        assert isinstance(pending, PendingRun)
        assert pending.outcome.is_failure
        assert pending.default_decision is False


class TestHeuristicRuns:
    """Runs that never call the AI service."""

    def test_no_ai_calls(self, scenario_text, settings, heuristic_config):
        service = FakeAIService()
        result = PipelineOrchestrator(service=service, settings=settings).run(scenario_text, heuristic_config)

        assert service.calls == []
        assert result.succeeded
        assert result.final_confidence <= 0.7
        assert "Chapter 1: Sources" in result.cleaned_text

    def test_confidence_never_rises(self, scenario_text, settings, heuristic_config):
        pending = PipelineOrchestrator(settings=settings).start(scenario_text, heuristic_config)
        pending.resume(True)

        values = [value for _, value in pending.session.tracker.history]
        assert len(values) > 1
        assert all(later <= earlier for earlier, later in zip(values, values[1:]))

    def test_disabled_step_is_skipped(self, scenario_text, settings):
        config = UserConfig(
            document_id="rivers",
            content_type=ContentType.ACADEMIC,
            heuristic_only=True,
            disabled_steps={"add_structure"},
        )
        result = PipelineOrchestrator(settings=settings).run(scenario_text, config)

        assert result.succeeded
        assert "<!-- CHAPTER" not in result.cleaned_text


class TestRollback:
    """A destructive phase is rolled back and skipped."""

    def test_destructive_header_pattern(self, scenario_text, settings, academic_config):
        response = structure_response()
        response["patterns"].append({
            "kind": "header",
            "matcher": "^[A-Z].*$",
            "confidence": 0.9,
            "estimated_count": 50,
        })
        service = FakeAIService(structure=response)

        result = PipelineOrchestrator(service=service, settings=settings).run(scenario_text, academic_config)

        assert result.context.skipped_phases[PipelinePhase.SEMANTIC] == "rolled back"
        assert PipelinePhase.SEMANTIC not in result.context.completed_phases
        assert not [p for p in result.context.applied_patterns if p.produced_by_phase == PipelinePhase.SEMANTIC]
        assert any(e.failure_kind == FailureKind.CONTENT_LOSS_DETECTED for e in result.context.recovery_events)
        assert any("Semantic phase rolled back" in w.message for w in result.context.warnings)
        assert PipelinePhase.STRUCTURAL in result.context.completed_phases
        assert result.succeeded


class TestRecovery:
    """Failures inside AI steps are recovered, never raised to the caller."""

    def test_crashing_structure_call_falls_back_to_heuristic(self, scenario_text, settings, academic_config):
        service = FakeAIService(structure=RuntimeError("model client crashed"))
        orchestrator = PipelineOrchestrator(
            service=service, settings=settings, decision_provider=lambda hints, outcome: True,
        )

        result = orchestrator.run(scenario_text, academic_config)

        assert result.succeeded
        assert result.hints.analysis_method == DetectionMethod.HEURISTIC
        event = result.context.recovery_events[0]
        assert event.phase == PipelinePhase.RECONNAISSANCE
        assert event.failure_kind == FailureKind.OPERATION_ERROR
        assert event.action.kind == FallbackActionKind.FALLBACK_TO
        assert "Chapter 1: Sources" in result.cleaned_text

    def test_boundary_timeout_retries_with_longer_budget(self, scenario_text, settings, academic_config):
        service = FakeAIService(front=[AITimeoutError("front boundary timed out"), {"boundary_line": 52, "confidence": 0.9}])

        result = PipelineOrchestrator(service=service, settings=settings).run(scenario_text, academic_config)

        assert result.succeeded
        assert [call["timeout"] for call in service.calls_to("detect_boundary")] == [120.0, 240.0, 240.0]
        event = result.context.recovery_events[0]
        assert event.failure_kind == FailureKind.AI_TIMEOUT
        assert event.action.kind == FallbackActionKind.RETRY_ONCE
        failed = [c for c in result.context.ai_calls if c.step == "detect_boundaries" and not c.validated]
        assert len(failed) == 1
        assert "AITimeoutError" in failed[0].detail

    def test_review_service_error_is_recorded_as_unvalidated(self, scenario_text, settings, academic_config):
        service = FakeAIService(review=AIServiceError("connection refused"))

        result = PipelineOrchestrator(service=service, settings=settings).run(scenario_text, academic_config)

        calls = [c for c in result.context.ai_calls if c.step == "final_quality_review"]
        assert [c.validated for c in calls] == [False]
        assert result.context.recovery_events[0].action.kind == FallbackActionKind.FALLBACK_TO
        assert result.context.outcome_for(PipelinePhase.FINAL_REVIEW) is not None

    def test_miscounted_reflow_chunk_is_kept_unchanged(self, scenario_text, settings, academic_config):
        def miscount_first_chapter(chunk_text, **kwargs):
            answer = echo_reflow(chunk_text)
            if "Chapter 1: Sources" in chunk_text:
                answer["output_word_count"] += 1
            return answer

        service = FakeAIService(reflow=miscount_first_chapter)
        result = PipelineOrchestrator(service=service, settings=settings).run(scenario_text, academic_config)

        events = [e for e in result.context.recovery_events if e.step.startswith("reflow_paragraphs[")]
        assert len(events) == 1
        assert events[0].failure_kind == FailureKind.AI_RESPONSE_INVALID
        assert events[0].action.kind == FallbackActionKind.SKIP_STEP
        lines = scenario_text.splitlines()
        assert f"{lines[54]}\n{lines[55]}" in result.cleaned_text
        assert PipelinePhase.OPTIMIZATION in result.context.completed_phases

    def test_critical_review_halts(self, scenario_text, settings, academic_config):
        review = {
            "quality_score": 0.2,
            "confidence": 0.9,
            "issues": [{"category": "content_loss", "severity": "critical", "description": "Chapter 4 missing"}],
            "summary": "Broken",
        }
        result = PipelineOrchestrator(service=FakeAIService(review=review), settings=settings).run(
            scenario_text, academic_config,
        )

        assert result.status == RunStatus.CRITICAL_FAILURE
        assert not result.succeeded
        assert "no_unresolved_critical_warnings" in result.halt_reason
        assert any("Pipeline halted" in w.message for w in result.context.warnings)


class TestDegradedReattempt:
    """A rolled-back AI phase is re-run without AI."""

    @staticmethod
    def keep_three_words(chunk_text, **kwargs):
        answer = echo_reflow(chunk_text)
        text = "\n\n".join(" ".join(p.split()[:3]) for p in answer["reflowed_text"].split("\n\n"))
        answer.update(reflowed_text=text, output_word_count=len(text.split()))
        return answer

    def test_reattempt_matches_fresh_heuristic_phase(self, scenario_text, settings, academic_config):
        degraded = PipelineOrchestrator(
            service=FakeAIService(reflow=self.keep_three_words), settings=settings,
        ).run(scenario_text, academic_config)

        heuristic_steps = [replace(spec, ai=None) for spec in PHASE_STEPS[PipelinePhase.OPTIMIZATION]]
        fresh = PipelineOrchestrator(
            service=FakeAIService(), settings=settings,
            phase_steps={PipelinePhase.OPTIMIZATION: heuristic_steps},
        ).run(scenario_text, academic_config)

        loss = [e for e in degraded.context.recovery_events if e.failure_kind == FailureKind.CONTENT_LOSS_DETECTED]
        assert loss[0].phase == PipelinePhase.OPTIMIZATION
        assert loss[0].action.kind == FallbackActionKind.ROLLBACK_PHASE
        assert PipelinePhase.OPTIMIZATION in degraded.context.completed_phases
        assert degraded.cleaned_text == fresh.cleaned_text

    def test_skipped_phase_records_skipped_outcome(self, scenario_text, settings, academic_config):
        response = structure_response()
        response["patterns"].append({
            "kind": "header",
            "matcher": "^[A-Z].*$",
            "confidence": 0.9,
            "estimated_count": 50,
        })
        result = PipelineOrchestrator(service=FakeAIService(structure=response), settings=settings).run(
            scenario_text, academic_config,
        )

        outcome = result.context.outcome_for(PipelinePhase.SEMANTIC)
        assert outcome.result == CheckpointResult.SKIPPED
        assert outcome.summary.endswith("skipped (rolled back)")


class TestCancellation:
    """Cooperative cancellation."""

    def test_cancelled_before_start(self, scenario_text, settings, academic_config):
        token = CancellationToken()
        token.cancel("shutting down")
        service = FakeAIService()

        result = PipelineOrchestrator(service=service, settings=settings).run(
            scenario_text, academic_config, token,
        )

        assert result.status == RunStatus.CANCELLED
        assert service.calls == []
        assert result.cleaned_text == scenario_text

    def test_cancelled_at_gate(self, scenario_text, settings, academic_config):
        token = CancellationToken()

        def cancel_then_proceed(hints, outcome):
            token.cancel("window closed")
            return True

        orchestrator = PipelineOrchestrator(
            service=FakeAIService(), settings=settings, decision_provider=cancel_then_proceed,
        )
        result = orchestrator.run(scenario_text, academic_config, token)

        assert result.status == RunStatus.CANCELLED
        assert result.context.completed_phases == [PipelinePhase.RECONNAISSANCE]
        assert result.cleaned_text == scenario_text

    def test_cancelled_during_ai_call(self, scenario_text, settings, academic_config):
        token = CancellationToken()

        def on_call(method):
            if method == "detect_boundary":
                token.cancel("stop")

        service = FakeAIService(on_call=on_call)
        result = PipelineOrchestrator(service=service, settings=settings).run(
            scenario_text, academic_config, token,
        )

        assert result.status == RunStatus.CANCELLED
        assert PipelinePhase.STRUCTURAL not in result.context.completed_phases
        assert PipelinePhase.SEMANTIC in result.context.completed_phases


class TestPendingRun:
    """The reconnaissance gate as a separate step."""

    def test_start_then_resume(self, scenario_text, settings, academic_config):
        orchestrator = PipelineOrchestrator(service=FakeAIService(), settings=settings)

        pending = orchestrator.start(scenario_text, academic_config)

        assert isinstance(pending, PendingRun)
        assert pending.hints.overall_confidence == 0.85
        assert pending.default_decision is True
        assert pending.session.context.completed_phases == [PipelinePhase.RECONNAISSANCE]

        result = pending.resume(True)
        assert result.succeeded
        assert result.run_id == pending.run_id

    def test_auto_proceed_overrides_default(self, scenario_text, settings):
        config = UserConfig(document_id="rivers", content_type=ContentType.ACADEMIC, auto_proceed=False)
        pending = PipelineOrchestrator(service=FakeAIService(), settings=settings).start(scenario_text, config)
        assert pending.default_decision is False
