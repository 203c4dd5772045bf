"""Phase orchestrator - drives a document through the cleaning phases.

Philosophy: "Nothing is removed that a checkpoint cannot vouch for."

PHASE LOOP:
- Snapshot the document, run the phase's steps on a read view of the context
- Apply the phase's contributions, evaluate its checkpoint
- Fold the checkpoint into the (never rising) confidence score
- Branch on the recommended action: commit, roll back, halt or ask

Reconnaissance is special: its checkpoint always asks the host whether to
proceed. `start()` returns a PendingRun holding that question so a batch
can release its worker while a human decides; `run()` answers it inline.

The orchestrator is the only writer of the AccumulatedContext. Each run
gets its own PipelineRun session, so one orchestrator can serve several
documents concurrently.
"""

import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from phaseclean.config.settings import PipelineSettings, UserConfig, get_settings
from phaseclean.llm.service import CleaningAIService
from phaseclean.models.checkpoint import CheckpointOutcome
from phaseclean.models.context import AccumulatedContext, ProcessingWarning, RunningMetrics
from phaseclean.models.document import WorkingDocument
from phaseclean.models.enums import (
    PHASE_ORDER,
    CheckpointResult,
    FailureKind,
    PipelinePhase,
    RecommendedAction,
    RunStatus,
    Severity,
    StepMethod,
    ValidationMethod,
)
from phaseclean.models.hints import StructureHints
from phaseclean.models.result import PipelineResult
from phaseclean.pipeline.cancellation import CancellationToken
from phaseclean.pipeline.checkpoints import evaluate_checkpoint, skipped_outcome
from phaseclean.pipeline.confidence import ConfidenceTracker
from phaseclean.pipeline.errors import CleaningPipelineError, PipelineCancelled, ResumeError
from phaseclean.pipeline.fallback import FallbackCoordinator
from phaseclean.pipeline.persistence import JsonRunStore, RunState
from phaseclean.pipeline.phases import PhaseEnvironment, PhaseOutputs, PhaseRunner, StepSpec
from phaseclean.pipeline.rollback import rollback

logger = structlog.get_logger(__name__)

# Called with the hints and the reconnaissance outcome; returns True to proceed.
DecisionProvider = Callable[[StructureHints, CheckpointOutcome], bool]


# =============================================================================
# Run Session
# =============================================================================

class PipelineRun:
    """State of one document's run. Owns its AccumulatedContext."""

    def __init__(
        self,
        orchestrator: "PipelineOrchestrator",
        document_text: str,
        user_config: UserConfig,
        token: CancellationToken,
    ):
        self.orchestrator = orchestrator
        self.settings = orchestrator.settings
        self.user_config = user_config
        self.token = token
        self.document_id = user_config.document_id or f"doc_{uuid.uuid4().hex[:8]}"
        self.original_text = document_text
        self.original = WorkingDocument.from_text(document_text)
        self.document = self.original
        self.hints: Optional[StructureHints] = None
        self.tracker = ConfidenceTracker(self.settings.weights, self.settings.penalties)
        self.coordinator = FallbackCoordinator(self.settings)
        self.context = AccumulatedContext(
            document_id=self.document_id,
            running_metrics=RunningMetrics(
                original_word_count=self.original.word_count,
                current_word_count=self.original.word_count,
                original_line_count=self.original.line_count,
            ),
        )
        self.awaiting_decision = False
        self.started_at = time.perf_counter()

    @property
    def run_id(self) -> str:
        return self.context.run_id

    # =========================================================================
    # Phase Execution
    # =========================================================================

    def _execute(self, phase: PipelinePhase, document: WorkingDocument, degraded: bool = False) -> PhaseOutputs:
        env = PhaseEnvironment(
            phase=phase,
            document_id=self.document_id,
            original_document=self.original,
            hints=self.hints,
            context=self.context.view(),
            user_config=self.user_config,
            settings=self.settings,
            service=self.orchestrator.service,
            token=self.token,
            coordinator=self.coordinator,
            degraded=degraded,
        )
        return PhaseRunner(env, self.orchestrator.steps_for(phase)).run(document)

    def _record(self, outputs: PhaseOutputs) -> Optional[CheckpointOutcome]:
        """Apply a phase's contributions and evaluate its checkpoint."""
        self.context.apply(outputs.contributions)
        for event in outputs.recovery_events:
            self.context.add_recovery_event(event)

        hints = outputs.hints or self.hints
        outcome = evaluate_checkpoint(
            outputs,
            hints,
            self.context.view(),
            self.settings.thresholds,
            self.settings.penalties,
        )
        if outcome is None:
            return None
        self.context.add_outcome(outcome)
        if outcome.phase != PipelinePhase.RECONNAISSANCE:
            self.tracker.update(outcome, hints, self.context.view())
        return outcome

    def _commit(self, phase: PipelinePhase, document: WorkingDocument, started: float) -> None:
        self.document = document
        metrics = self.context.running_metrics
        metrics.current_word_count = document.word_count
        metrics.phase_words_after[phase] = document.word_count
        metrics.phase_durations[phase] = round(time.perf_counter() - started, 4)
        self.context.complete_phase(phase)

    def _warn(self, phase: PipelinePhase, message: str, severity: Severity = Severity.WARNING) -> None:
        self.context.add_warning(ProcessingWarning(
            produced_by_phase=phase,
            step="checkpoint",
            validation_method=ValidationMethod.NO_VALIDATION,
            severity=severity,
            message=message,
            from_recovery=True,
        ))

    def run_reconnaissance(self) -> CheckpointOutcome:
        """Analyze the structure and evaluate the reconnaissance checkpoint.

        Raises:
            PipelineCancelled: If the token fires during analysis.
            CleaningPipelineError: If no structure hints could be produced.
        """
        phase = PipelinePhase.RECONNAISSANCE
        started = time.perf_counter()
        self.context.current_phase = phase
        self.context.running_metrics.phase_words_before[phase] = self.document.word_count
        logger.info("phase_start", run_id=self.run_id, phase=phase.value, words=self.document.word_count)

        outputs = self._execute(phase, self.document)
        if outputs.hints is None:
            raise CleaningPipelineError("Reconnaissance produced no structure hints")

        self.hints = outputs.hints
        self.context.hints_id = self.hints.id
        outcome = self._record(outputs)
        self.tracker.initialize(self.hints)
        self._commit(phase, self.document, started)
        self.awaiting_decision = True

        store = self.orchestrator.store
        if store is not None:
            store.save_hints(self.hints)
            store.save_run(self.to_state())

        logger.info(
            "phase_complete",
            run_id=self.run_id,
            phase=phase.value,
            result=outcome.result.value,
            confidence=self.hints.overall_confidence,
            regions=len(self.hints.regions),
            patterns=len(self.hints.patterns),
            method=self.hints.analysis_method.value,
        )
        return outcome

    def run_phase(self, phase: PipelinePhase) -> Optional[tuple[RunStatus, str]]:
        """Run one post-reconnaissance phase through its checkpoint.

        Returns:
            None to continue, or (terminal status, reason) to stop.
        """
        snapshot = self.document
        started = time.perf_counter()
        self.context.current_phase = phase
        self.context.running_metrics.phase_words_before[phase] = snapshot.word_count
        logger.info("phase_start", run_id=self.run_id, phase=phase.value, words=snapshot.word_count)

        outputs = self._execute(phase, snapshot)
        outcome = self._record(outputs)
        action = self._action(outputs, outcome)

        if action == RecommendedAction.ROLLBACK_PHASE:
            self._roll_back(phase, snapshot, outputs, outcome)
            if outputs.contributions.used_ai:
                return self._reattempt_degraded(phase, snapshot, started)
            self._skip(phase, snapshot, started, "rolled back")
            return None

        if action == RecommendedAction.HALT_PIPELINE:
            self._commit(phase, outputs.document_after, started)
            reason = outcome.summary if outcome else f"{phase.value} halted"
            self._warn(phase, f"Pipeline halted: {reason}", Severity.ERROR)
            logger.error("pipeline_halted", run_id=self.run_id, phase=phase.value, reason=reason)
            return RunStatus.CRITICAL_FAILURE, reason

        if action == RecommendedAction.CONTINUE_WITH_CAUTION:
            self._warn(phase, f"{phase.display_name} checkpoint marginal; continuing with caution")

        self._commit(phase, outputs.document_after, started)
        self._log_phase_complete(phase, outputs, outcome)
        return None

    def _action(self, outputs: PhaseOutputs, outcome: Optional[CheckpointOutcome]) -> RecommendedAction:
        if outputs.rollback_requested:
            return RecommendedAction.ROLLBACK_PHASE
        if outcome is None:
            return RecommendedAction.CONTINUE_NORMALLY
        return outcome.recommended_action

    def _roll_back(
        self,
        phase: PipelinePhase,
        snapshot: WorkingDocument,
        outputs: PhaseOutputs,
        outcome: Optional[CheckpointOutcome],
    ) -> None:
        if outputs.rollback_requested:
            reason = outputs.rollback_reason
        else:
            _, event = self.coordinator.decide(
                FailureKind.VALIDATION_FAILED,
                phase,
                "checkpoint",
                StepMethod.HEURISTIC,
                checkpoint_result=outcome.result if outcome else CheckpointResult.FAILED,
                message=outcome.summary if outcome else "",
            )
            self.context.add_recovery_event(event)
            reason = outcome.summary if outcome else "checkpoint failed"
        self.document, self.context = rollback(phase, snapshot, self.context, reason)

    def _reattempt_degraded(
        self,
        phase: PipelinePhase,
        snapshot: WorkingDocument,
        started: float,
    ) -> Optional[tuple[RunStatus, str]]:
        logger.info("phase_reattempt_degraded", run_id=self.run_id, phase=phase.value)
        outputs = self._execute(phase, snapshot, degraded=True)
        outcome = self._record(outputs)
        action = self._action(outputs, outcome)

        if action in (RecommendedAction.ROLLBACK_PHASE, RecommendedAction.HALT_PIPELINE):
            reason = outputs.rollback_reason or (outcome.summary if outcome else "re-attempt failed")
            self.document, self.context = rollback(phase, snapshot, self.context, reason)
            self._skip(phase, snapshot, started, "degraded re-attempt failed")
            return None

        if action == RecommendedAction.CONTINUE_WITH_CAUTION:
            self._warn(phase, f"{phase.display_name} checkpoint marginal after degraded re-attempt")
        self._commit(phase, outputs.document_after, started)
        self._log_phase_complete(phase, outputs, outcome)
        return None

    def _skip(self, phase: PipelinePhase, snapshot: WorkingDocument, started: float, reason: str) -> None:
        self.document = snapshot
        self.context.skip_phase(phase, reason)
        outcome = skipped_outcome(phase, reason)
        if outcome is not None:
            self.context.add_outcome(outcome)
        self.context.running_metrics.phase_durations[phase] = round(time.perf_counter() - started, 4)
        logger.warning("phase_skipped", run_id=self.run_id, phase=phase.value, reason=reason)

    def _log_phase_complete(
        self,
        phase: PipelinePhase,
        outputs: PhaseOutputs,
        outcome: Optional[CheckpointOutcome],
    ) -> None:
        logger.info(
            "phase_complete",
            run_id=self.run_id,
            phase=phase.value,
            words_before=outputs.words_before,
            words_after=outputs.words_after,
            result=outcome.result.value if outcome else None,
            confidence=self.tracker.current,
            skipped_steps=outputs.skipped_steps,
            **outputs.contributions.summary(),
        )

    # =========================================================================
    # Run Control
    # =========================================================================

    def next_phases(self) -> list[PipelinePhase]:
        """Phases after the last completed or skipped one."""
        done = set(self.context.completed_phases) | set(self.context.skipped_phases)
        if not done:
            return list(PHASE_ORDER)
        last = max(PHASE_ORDER.index(p) for p in done)
        return PHASE_ORDER[last + 1:]

    def continue_run(self) -> PipelineResult:
        """Run the remaining phases and build the terminal result."""
        self.awaiting_decision = False
        store = self.orchestrator.store
        try:
            for phase in self.next_phases():
                self.token.raise_if_cancelled(f"start of {phase.value}")
                stop = self.run_phase(phase)
                if store is not None:
                    store.save_run(self.to_state())
                if stop is not None:
                    status, reason = stop
                    return self.finish(status, reason)
        except PipelineCancelled as e:
            logger.warning(
                "pipeline_cancelled",
                run_id=self.run_id,
                phase=self.context.current_phase.value if self.context.current_phase else None,
                reason=str(e),
            )
            self._warn(
                self.context.current_phase or PipelinePhase.RECONNAISSANCE,
                f"Run cancelled: {e}",
            )
            return self.finish(RunStatus.CANCELLED, str(e))
        return self.finish(self._completion_status())

    def cancel_by_user(self) -> PipelineResult:
        """Decline at the reconnaissance gate: no content is touched."""
        self.awaiting_decision = False
        self.document = self.original
        logger.info(
            "pipeline_declined",
            run_id=self.run_id,
            confidence=self.tracker.current,
        )
        return self.finish(RunStatus.CANCELLED_BY_USER, "Declined after reconnaissance")

    def _completion_status(self) -> RunStatus:
        if (
            self.context.skipped_phases
            or self.context.recovery_events
            or any(w.severity.rank >= Severity.WARNING.rank for w in self.context.warnings)
        ):
            return RunStatus.COMPLETED_WITH_WARNINGS
        return RunStatus.COMPLETED

    def finish(self, status: RunStatus, reason: Optional[str] = None) -> PipelineResult:
        self.context.current_phase = None
        if self.tracker.current is None and self.hints is not None:
            self.tracker.initialize(self.hints)
        display = self.tracker.get_display()
        result = PipelineResult(
            run_id=self.run_id,
            document_id=self.document_id,
            status=status,
            cleaned_text=self.document.text,
            final_confidence=display.value,
            confidence_display=display,
            context=self.context,
            hints=self.hints,
            original_word_count=self.original.word_count,
            final_word_count=self.document.word_count,
            halt_reason=reason if status != RunStatus.COMPLETED else None,
        )
        store = self.orchestrator.store
        if store is not None:
            store.save_run(self.to_state(status))

        logger.info(
            "pipeline_complete",
            run_id=self.run_id,
            document_id=self.document_id,
            status=status.value,
            confidence=display.value,
            level=display.level.value,
            words_before=result.original_word_count,
            words_after=result.final_word_count,
            duration_seconds=round(time.perf_counter() - self.started_at, 2),
            recovery_events=len(self.context.recovery_events),
            warnings=len(self.context.warnings),
        )
        return result

    # =========================================================================
    # Persistence
    # =========================================================================

    def to_state(self, status: Optional[RunStatus] = None) -> RunState:
        return RunState(
            run_id=self.run_id,
            document_id=self.document_id,
            user_config=self.user_config,
            original_text=self.original_text,
            document=self.document,
            hints=self.hints,
            context=self.context,
            confidence=self.tracker.current,
            confidence_history=list(self.tracker.history),
            awaiting_decision=self.awaiting_decision,
            status=status,
        )

    @classmethod
    def from_state(
        cls,
        orchestrator: "PipelineOrchestrator",
        state: RunState,
        token: CancellationToken,
    ) -> "PipelineRun":
        session = cls(orchestrator, state.original_text, state.user_config, token)
        session.document_id = state.document_id
        session.document = state.document
        session.hints = state.hints
        session.context = state.context.model_copy(deep=True)
        session.tracker.current = state.confidence
        session.tracker.history = list(state.confidence_history)
        session.awaiting_decision = state.awaiting_decision
        return session


# =============================================================================
# Pending Decision
# =============================================================================

@dataclass
class PendingRun:
    """A run paused at the reconnaissance gate."""
    session: PipelineRun
    hints: StructureHints
    outcome: CheckpointOutcome

    @property
    def run_id(self) -> str:
        return self.session.run_id

    @property
    def default_decision(self) -> bool:
        """Answer used when no decision provider is configured."""
        if self.session.user_config.auto_proceed is not None:
            return self.session.user_config.auto_proceed
        return self.outcome.result != CheckpointResult.FAILED

    def resume(self, proceed: bool) -> PipelineResult:
        """Answer the reconnaissance question and finish the run."""
        orchestrator = self.session.orchestrator
        return orchestrator._guard(
            self.session,
            lambda: self.session.continue_run() if proceed else self.session.cancel_by_user(),
        )


# =============================================================================
# Orchestrator
# =============================================================================

class PipelineOrchestrator:
    """Runs documents through the phase sequence."""

    def __init__(
        self,
        service: Optional[CleaningAIService] = None,
        settings: Optional[PipelineSettings] = None,
        decision_provider: Optional[DecisionProvider] = None,
        store: Optional[JsonRunStore] = None,
        phase_steps: Optional[dict[PipelinePhase, list[StepSpec]]] = None,
    ):
        """
        Args:
            service: AI capability; None runs every step heuristically.
            settings: Pipeline settings (defaults from the environment).
            decision_provider: Answers the reconnaissance proceed/cancel question.
            store: Run store; when given, state is saved after every phase.
            phase_steps: Override of the steps per phase.
        """
        self.service = service
        self.settings = settings or get_settings()
        self.decision_provider = decision_provider
        self.store = store
        self.phase_steps = phase_steps or {}

    def steps_for(self, phase: PipelinePhase) -> Optional[list[StepSpec]]:
        return self.phase_steps.get(phase)

    def _guard(self, session: PipelineRun, body: Callable[[], PipelineResult]) -> PipelineResult:
        try:
            return body()
        except CleaningPipelineError:
            raise
        except Exception as e:
            logger.error(
                "pipeline_failed",
                run_id=session.run_id,
                phase=session.context.current_phase.value if session.context.current_phase else None,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise CleaningPipelineError(f"Pipeline failed: {e}") from e

    def start(
        self,
        document_text: str,
        user_config: Optional[UserConfig] = None,
        token: Optional[CancellationToken] = None,
    ) -> PendingRun | PipelineResult:
        """Run reconnaissance and stop at the decision gate.

        Returns:
            PendingRun awaiting the proceed/cancel answer, or a terminal
            PipelineResult when the run was cancelled during reconnaissance.
        """
        session = PipelineRun(self, document_text, user_config or UserConfig(), token or CancellationToken())
        logger.info(
            "pipeline_start",
            run_id=session.run_id,
            document_id=session.document_id,
            lines=session.original.line_count,
            words=session.original.word_count,
            ai_enabled=self.service is not None and not session.user_config.heuristic_only,
        )

        def body():
            try:
                outcome = session.run_reconnaissance()
            except PipelineCancelled as e:
                return session.finish(RunStatus.CANCELLED, str(e))
            return PendingRun(session=session, hints=session.hints, outcome=outcome)

        return self._guard(session, body)

    def decide(self, pending: PendingRun) -> bool:
        if self.decision_provider is not None:
            return bool(self.decision_provider(pending.hints, pending.outcome))
        return pending.default_decision

    def run(
        self,
        document_text: str,
        user_config: Optional[UserConfig] = None,
        token: Optional[CancellationToken] = None,
    ) -> PipelineResult:
        """Clean a document end to end.

        Args:
            document_text: Raw extracted text.
            user_config: Per-run options.
            token: Cancellation token checked at every phase and AI call.

        Returns:
            PipelineResult; failures are reported through its status.

        Raises:
            CleaningPipelineError: On an internal error of the orchestrator.
        """
        started = self.start(document_text, user_config, token)
        if isinstance(started, PipelineResult):
            return started
        return started.resume(self.decide(started))

    def resume_from_state(
        self,
        state: RunState,
        proceed: Optional[bool] = None,
        token: Optional[CancellationToken] = None,
    ) -> PipelineResult:
        """Continue a persisted run after its last completed phase.

        Raises:
            ResumeError: If the run is already terminal or has no hints.
        """
        if state.is_terminal:
            raise ResumeError(f"Run {state.run_id} already finished with status {state.status.value}")
        if state.hints is None:
            raise ResumeError(f"Run {state.run_id} has no structure hints; start it again")

        session = PipelineRun.from_state(self, state, token or CancellationToken())
        logger.info(
            "pipeline_resumed",
            run_id=session.run_id,
            next_phases=[p.value for p in session.next_phases()],
            awaiting_decision=session.awaiting_decision,
        )
        if session.awaiting_decision:
            outcome = session.context.outcome_for(PipelinePhase.RECONNAISSANCE) or skipped_outcome(
                PipelinePhase.RECONNAISSANCE, "restored without outcome",
            )
            pending = PendingRun(session=session, hints=session.hints, outcome=outcome)
            return pending.resume(self.decide(pending) if proceed is None else proceed)
        return self._guard(session, session.continue_run)

    def resume_run(self, run_id: str, proceed: Optional[bool] = None) -> PipelineResult:
        """Load a run from the store and continue it."""
        if self.store is None:
            raise ResumeError("No run store configured")
        return self.resume_from_state(self.store.load_run(run_id), proceed=proceed)
