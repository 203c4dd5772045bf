"""Phase rollback.

A rollback restores the document snapshot taken before the phase and
purges every ledger entry the phase produced. Checkpoint outcomes,
recovery events, AI call records and recovery warnings are history and
survive, so repeating a rollback changes nothing except one more warning.
"""

import structlog

from phaseclean.models.context import AccumulatedContext, ProcessingWarning
from phaseclean.models.document import WorkingDocument
from phaseclean.models.enums import PipelinePhase, Severity, ValidationMethod

logger = structlog.get_logger(__name__)


def rollback(
    phase: PipelinePhase,
    snapshot: WorkingDocument,
    context: AccumulatedContext,
    reason: str = "",
) -> tuple[WorkingDocument, AccumulatedContext]:
    """Undo a phase.

    Args:
        phase: Phase to roll back.
        snapshot: Document as it was before the phase ran.
        context: Ledger owned by the orchestrator (mutated in place).
        reason: Why the phase is rolled back.

    Returns:
        Tuple of (restored document, context).
    """
    purged = context.purge_phase(phase)
    context.running_metrics.current_word_count = snapshot.word_count
    context.running_metrics.phase_words_after.pop(phase, None)
    context.add_warning(ProcessingWarning(
        produced_by_phase=phase,
        step="rollback",
        validation_method=ValidationMethod.NO_VALIDATION,
        severity=Severity.WARNING,
        message=f"{phase.display_name} phase rolled back" + (f": {reason}" if reason else ""),
        from_recovery=True,
    ))
    logger.warning(
        "phase_rolled_back",
        phase=phase.value,
        entries_purged=purged,
        words_restored=snapshot.word_count,
        reason=reason,
    )
    return snapshot, context
