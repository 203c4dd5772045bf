"""Phase step definitions and the step runner.

Each phase is an ordered list of steps. A step reads the current document
and the phase environment (hints, read view of the context, settings) and
returns a new document plus the ledger entries it produced. Steps never
touch the AccumulatedContext; the orchestrator applies what they return.

STEP METHODS:
- hybrid: AI first, validated; heuristic on failure
- transformation: AI rewrite; skipped (content preserved) on failure
- pattern: applies hint patterns deterministically
- heuristic: deterministic only

Failures become OperationFailure-style decisions by the FallbackCoordinator.
After every step the runner checks the phase's cumulative content loss
against the phase's loss budget.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Optional

import structlog

from phaseclean.cleaning.assembly import add_chapter_markers
from phaseclean.cleaning.boundaries import (
    chapter_starts,
    detect_boundaries_heuristic,
    remove_lines_in,
    still_present,
)
from phaseclean.cleaning.chunking import ChunkingConfig, build_excerpt, chunk_paragraphs
from phaseclean.cleaning.detection import (
    analyze_structure_heuristic,
    is_chapter_heading,
    measure_characteristics,
)
from phaseclean.cleaning.metadata import extract_metadata
from phaseclean.cleaning.reflow import (
    align_reflowed_chunk,
    merge_reflowed_chunks,
    reflow_heuristic,
    split_long_paragraphs,
)
from phaseclean.cleaning.review import (
    ReviewAssessment,
    ReviewFinding,
    review_heuristic,
    sample_text,
)
from phaseclean.cleaning.text_cleaner import (
    apply_inline_patterns,
    clean_special_characters,
    collapse_blank_lines,
    match_inline_pattern,
    remove_line_patterns,
)
from phaseclean.config.settings import PipelineSettings, UserConfig
from phaseclean.llm.service import (
    AIResponseError,
    AIServiceError,
    AITimeoutError,
    CleaningAIService,
)
from phaseclean.models.context import (
    AccumulatedContext,
    AICallRecord,
    AppliedPattern,
    ConfirmedBoundary,
    FlaggedContent,
    PhaseContributions,
    ProcessingWarning,
    RemovedRegion,
    TransformationRecord,
)
from phaseclean.models.document import DocumentLine, WorkingDocument
from phaseclean.models.enums import (
    BoundaryType,
    FailureKind,
    FallbackActionKind,
    FlagReason,
    PatternKind,
    PipelinePhase,
    RegionType,
    RemovalType,
    Severity,
    StepMethod,
    TransformationType,
    ValidationMethod,
)
from phaseclean.models.hints import StructureHints
from phaseclean.models.recovery import RecoveryEvent
from phaseclean.models.regions import LineRange, Pattern
from phaseclean.pipeline.cancellation import CancellationToken
from phaseclean.pipeline.errors import OperationFailure, PipelineCancelled
from phaseclean.pipeline.fallback import FallbackCoordinator
from phaseclean.pipeline.validation import (
    ResponseValidationError,
    build_hints,
    check_section,
    validate_boundary_response,
    validate_reflow_response,
    validate_review_response,
    validate_structure_response,
    verify_section_content,
)

logger = structlog.get_logger(__name__)

# Lines shown to the model when asking for one boundary
BOUNDARY_EXCERPT_SHARE = 0.5


# =============================================================================
# Phase Data
# =============================================================================

@dataclass
class StepResult:
    """What one step produced."""
    document: WorkingDocument
    contributions: PhaseContributions
    hints: Optional[StructureHints] = None
    review: Optional[ReviewAssessment] = None


@dataclass
class PhaseOutputs:
    """Everything a phase produced, handed to the checkpoint and orchestrator."""
    phase: PipelinePhase
    document_before: WorkingDocument
    document_after: WorkingDocument
    contributions: PhaseContributions
    recovery_events: list[RecoveryEvent] = field(default_factory=list)
    step_words: dict[str, tuple[int, int]] = field(default_factory=dict)
    skipped_steps: list[str] = field(default_factory=list)
    rollback_requested: bool = False
    rollback_reason: str = ""
    hints: Optional[StructureHints] = None
    review: Optional[ReviewAssessment] = None
    original_document: Optional[WorkingDocument] = None

    @property
    def words_before(self) -> int:
        return self.document_before.word_count

    @property
    def words_after(self) -> int:
        return self.document_after.word_count


@dataclass
class PhaseEnvironment:
    """Read-only inputs of a phase plus the recorders it may write to."""
    phase: PipelinePhase
    document_id: str
    original_document: WorkingDocument
    hints: Optional[StructureHints]
    context: AccumulatedContext
    user_config: UserConfig
    settings: PipelineSettings
    service: Optional[CleaningAIService]
    token: CancellationToken
    coordinator: FallbackCoordinator
    degraded: bool = False
    pending: PhaseContributions = field(init=False)
    ai_calls: list[AICallRecord] = field(default_factory=list)
    recovery_events: list[RecoveryEvent] = field(default_factory=list)
    recovery_warnings: list[ProcessingWarning] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        self.pending = PhaseContributions(phase=self.phase)

    @property
    def ai_enabled(self) -> bool:
        return self.service is not None and not self.user_config.heuristic_only and not self.degraded

    @property
    def chunking(self) -> ChunkingConfig:
        return ChunkingConfig(
            excerpt_tokens=self.settings.excerpt_token_budget,
            reflow_chunk_tokens=self.settings.reflow_chunk_tokens,
        )

    def record_ai_call(self, step: str, validated: bool, detail: str = "") -> None:
        with self._lock:
            self.ai_calls.append(AICallRecord(
                produced_by_phase=self.phase,
                step=step,
                validation_method=ValidationMethod.RESPONSE_VALIDATION,
                validated=validated,
                detail=detail[:500],
            ))

    def record_recovery(self, event: RecoveryEvent) -> None:
        with self._lock:
            self.recovery_events.append(event)
            self.recovery_warnings.append(ProcessingWarning(
                produced_by_phase=self.phase,
                step=event.step,
                validation_method=ValidationMethod.HEURISTIC_FALLBACK,
                message=f"{event.failure_kind.value}: {event.action.kind.value}"
                + (f" ({event.message})" if event.message else ""),
                from_recovery=True,
            ))


StepFunction = Callable[[PhaseEnvironment, WorkingDocument, float], StepResult]
HeuristicFunction = Callable[[PhaseEnvironment, WorkingDocument], StepResult]


@dataclass
class StepSpec:
    """One named step of a phase."""
    name: str
    method: StepMethod
    heuristic: Optional[HeuristicFunction] = None
    ai: Optional[StepFunction] = None


# =============================================================================
# AI Call Helpers
# =============================================================================

def _ask(env: PhaseEnvironment, step: str, call: Callable[[], dict], validate: Callable[[dict], object]):
    """Call the AI service, validate the answer and record the call.

    Raises:
        PipelineCancelled: If the token fires before or after the call.
        ResponseValidationError / AIResponseError: On an invalid answer.
        AITimeoutError / AIServiceError: On transport problems. Every
            failed call is recorded as unvalidated before re-raising.
    """
    env.token.raise_if_cancelled(f"before {step}")
    try:
        raw = call()
    except PipelineCancelled:
        raise
    except Exception as e:
        env.record_ai_call(step, validated=False, detail=f"{type(e).__name__}: {e}")
        raise
    env.token.raise_if_cancelled(f"after {step}")
    try:
        value = validate(raw)
    except ResponseValidationError as e:
        env.record_ai_call(step, validated=False, detail=str(e))
        raise
    env.record_ai_call(step, validated=True)
    return value


def classify_failure(error: Exception, used_ai: bool) -> FailureKind:
    """Map an exception raised by a step to the failure taxonomy."""
    if isinstance(error, OperationFailure):
        return error.kind
    if isinstance(error, AITimeoutError):
        return FailureKind.AI_TIMEOUT
    if isinstance(error, (AIResponseError, ResponseValidationError)):
        return FailureKind.AI_RESPONSE_INVALID
    if isinstance(error, AIServiceError):
        return FailureKind.AI_ERROR
    if used_ai and isinstance(error, TimeoutError):
        return FailureKind.AI_TIMEOUT
    return FailureKind.OPERATION_ERROR


def _contributions(env: PhaseEnvironment) -> PhaseContributions:
    return PhaseContributions(phase=env.phase)


def _protected_lines(document: WorkingDocument) -> frozenset[int]:
    return frozenset(line.start for line in document.lines if is_chapter_heading(line.text))


def _sample(lines: list[DocumentLine]) -> Optional[str]:
    text = " ".join(line.text.strip() for line in lines if not line.is_blank)
    return text[:200] if text else None


# =============================================================================
# Reconnaissance
# =============================================================================

def _reconnaissance_ai(env: PhaseEnvironment, document: WorkingDocument, timeout: float) -> StepResult:
    step = "analyze_structure"
    excerpt = build_excerpt(document, env.chunking)
    response = _ask(
        env, step,
        lambda: env.service.analyze_structure(
            excerpt=excerpt,
            total_lines=document.line_count,
            total_words=document.word_count,
            content_type_hint=env.user_config.content_type.value,
            timeout=timeout,
        ),
        lambda raw: validate_structure_response(raw, document.line_count),
    )
    hints = build_hints(
        response,
        document_id=env.document_id,
        document=document,
        user_content_type=env.user_config.content_type,
        characteristics=measure_characteristics(document),
    )
    contributions = _contributions(env)
    contributions.used_ai = True
    return StepResult(document=document, contributions=contributions, hints=hints)


def _reconnaissance_heuristic(env: PhaseEnvironment, document: WorkingDocument) -> StepResult:
    hints = analyze_structure_heuristic(document, env.document_id, env.user_config.content_type)
    return StepResult(document=document, contributions=_contributions(env), hints=hints)


# =============================================================================
# Metadata
# =============================================================================

def _extract_metadata(env: PhaseEnvironment, document: WorkingDocument) -> StepResult:
    contributions = _contributions(env)
    contributions.metadata = extract_metadata(document, env.hints)
    return StepResult(document=document, contributions=contributions)


# =============================================================================
# Semantic
# =============================================================================

def _remove_line_patterns(
    env: PhaseEnvironment,
    document: WorkingDocument,
    step: str,
    patterns: list[Pattern],
) -> StepResult:
    contributions = _contributions(env)
    if not patterns:
        return StepResult(document=document, contributions=contributions)

    result = remove_line_patterns(document, patterns, protected=_protected_lines(document))
    for removal in result.removals:
        contributions.applied_patterns.append(AppliedPattern(
            produced_by_phase=env.phase,
            step=step,
            validation_method=ValidationMethod.CONTENT_VERIFICATION,
            pattern_kind=removal.pattern.kind,
            matcher=removal.pattern.matcher,
            removal_count=removal.removal_count,
            estimated_count=removal.pattern.estimated_count,
            words_removed=removal.words_removed,
            lines_affected=removal.lines_affected,
            quality_score=removal.pattern.quality_score,
        ))
    for run in result.removed_runs():
        removed_lines = document.lines_in(run)
        contributions.removed_regions.append(RemovedRegion(
            produced_by_phase=env.phase,
            step=step,
            validation_method=ValidationMethod.CONTENT_VERIFICATION,
            removal_type=RemovalType.OTHER,
            line_range=run,
            word_count=sum(line.word_count for line in removed_lines),
            confidence=min(p.confidence for p in patterns),
            justification="Consecutive lines matched by noise patterns",
            content_sample=_sample(removed_lines),
        ))
    return StepResult(document=result.document, contributions=contributions)


def _remove_page_numbers(env: PhaseEnvironment, document: WorkingDocument) -> StepResult:
    return _remove_line_patterns(
        env, document, "remove_page_numbers", env.hints.patterns_of(PatternKind.PAGE_NUMBER),
    )


def _remove_headers_footers(env: PhaseEnvironment, document: WorkingDocument) -> StepResult:
    patterns = env.hints.patterns_of(PatternKind.HEADER) + env.hints.patterns_of(PatternKind.FOOTER)
    return _remove_line_patterns(env, document, "remove_headers_footers", patterns)


# =============================================================================
# Structural
# =============================================================================

def _confirm_boundaries(
    env: PhaseEnvironment,
    front_end: Optional[int],
    front_conf: float,
    back_start: Optional[int],
    back_conf: float,
    index_start: Optional[int],
    index_conf: float,
    chapters: list[int],
    validation_method: ValidationMethod,
) -> PhaseContributions:
    hints = env.hints
    contributions = _contributions(env)

    def confirm(boundary_type: BoundaryType, line: int, confidence: float, hinted: Optional[int]) -> None:
        contributions.confirmed_boundaries.append(ConfirmedBoundary(
            produced_by_phase=env.phase,
            step="detect_boundaries",
            validation_method=validation_method,
            boundary_type=boundary_type,
            line=line,
            confidence=max(0.0, min(1.0, confidence)),
            hinted_line=hinted,
        ))

    hinted_front = hints.front_matter_end()
    hinted_back = hints.back_matter_start()
    if front_end is not None:
        confirm(BoundaryType.FRONT_MATTER_END, front_end, front_conf, hinted_front)
        confirm(BoundaryType.CORE_CONTENT_START, front_end + 1, front_conf,
                hinted_front + 1 if hinted_front is not None else None)
    if back_start is not None:
        confirm(BoundaryType.BACK_MATTER_START, back_start, back_conf, hinted_back)
        if back_start > 1:
            confirm(BoundaryType.CORE_CONTENT_END, back_start - 1, back_conf,
                    hinted_back - 1 if hinted_back is not None else None)
    if index_start is not None:
        index_region = hints.best_region(RegionType.INDEX)
        confirm(BoundaryType.INDEX_START, index_start, index_conf,
                index_region.line_range.start if index_region else None)
    for line in chapters:
        confirm(BoundaryType.CHAPTER_START, line, hints.overall_confidence, line)
    return contributions


def _detect_boundaries_ai(env: PhaseEnvironment, document: WorkingDocument, timeout: float) -> StepResult:
    step = "detect_boundaries"
    total_lines = env.hints.total_lines
    context_hints = (
        f"content type: {env.hints.effective_content_type.value}; "
        f"hinted core content: {env.hints.core_range() or 'unknown'}"
    )

    front, front_range = _ask(
        env, step,
        lambda: env.service.detect_boundary(
            boundary_kind="front",
            excerpt=build_excerpt(document, env.chunking, head_share=1.0),
            total_lines=total_lines,
            context_hints=context_hints,
            timeout=timeout,
        ),
        lambda raw: validate_boundary_response(raw, "front", total_lines, document),
    )
    back, back_range = _ask(
        env, step,
        lambda: env.service.detect_boundary(
            boundary_kind="back",
            excerpt=build_excerpt(document, env.chunking, head_share=0.0),
            total_lines=total_lines,
            context_hints=context_hints,
            timeout=timeout,
        ),
        lambda raw: validate_boundary_response(raw, "back", total_lines, document),
    )

    heuristic = detect_boundaries_heuristic(document, env.hints)
    contributions = _confirm_boundaries(
        env,
        front_end=front_range.end if front_range else None,
        front_conf=front.confidence,
        back_start=back_range.start if back_range else None,
        back_conf=back.confidence,
        index_start=heuristic.index_start,
        index_conf=heuristic.index_confidence,
        chapters=heuristic.chapter_starts,
        validation_method=ValidationMethod.FULL_DEFENSE,
    )
    contributions.used_ai = True
    return StepResult(document=document, contributions=contributions)


def _detect_boundaries_heuristic(env: PhaseEnvironment, document: WorkingDocument) -> StepResult:
    proposal = detect_boundaries_heuristic(document, env.hints)
    contributions = _confirm_boundaries(
        env,
        front_end=proposal.front_matter_end,
        front_conf=proposal.front_confidence,
        back_start=proposal.back_matter_start,
        back_conf=proposal.back_confidence,
        index_start=proposal.index_start,
        index_conf=proposal.index_confidence,
        chapters=proposal.chapter_starts,
        validation_method=ValidationMethod.HEURISTIC_FALLBACK,
    )
    return StepResult(document=document, contributions=contributions)


def _pending_boundary(env: PhaseEnvironment, boundary_type: BoundaryType):
    found = [b for b in env.pending.confirmed_boundaries if b.boundary_type == boundary_type]
    return found[-1] if found else None


def _remove_checked_section(
    env: PhaseEnvironment,
    document: WorkingDocument,
    step: str,
    section: str,
    removal_type: RemovalType,
    line_range: LineRange,
    confidence: float,
    protected: frozenset[int] = frozenset(),
) -> StepResult:
    """Remove a section if it passes its placement and content checks; flag it otherwise."""
    contributions = _contributions(env)
    check = check_section(section, line_range, confidence, env.hints.total_lines)
    if check.valid:
        check = verify_section_content(section, document.lines_in(line_range))
    if not check.valid:
        contributions.flags.append(FlaggedContent(
            produced_by_phase=env.phase,
            step=step,
            validation_method=ValidationMethod.CONTENT_VERIFICATION,
            reason=FlagReason.PRESERVED_DESPITE_LOW_CONFIDENCE,
            line_range=line_range,
            message=f"{section} kept: {check.reason}",
        ))
        return StepResult(document=document, contributions=contributions)

    new_document, removed = remove_lines_in(document, line_range, protected)
    if removed:
        contributions.removed_regions.append(RemovedRegion(
            produced_by_phase=env.phase,
            step=step,
            validation_method=ValidationMethod.CONTENT_VERIFICATION,
            removal_type=removal_type,
            line_range=line_range,
            word_count=sum(line.word_count for line in removed),
            confidence=confidence,
            justification=f"{section} within placement limits and content verified",
            content_sample=_sample(removed),
        ))
    return StepResult(document=new_document, contributions=contributions)


def _remove_front_matter(env: PhaseEnvironment, document: WorkingDocument) -> StepResult:
    boundary = _pending_boundary(env, BoundaryType.FRONT_MATTER_END)
    if boundary is None:
        return StepResult(document=document, contributions=_contributions(env))
    return _remove_checked_section(
        env, document, "remove_front_matter", "front_matter", RemovalType.FRONT_MATTER,
        LineRange(start=1, end=boundary.line), boundary.confidence,
    )


def _remove_table_of_contents(env: PhaseEnvironment, document: WorkingDocument) -> StepResult:
    result = StepResult(document=document, contributions=_contributions(env))
    for region in still_present(document, env.hints.regions_of(RegionType.TABLE_OF_CONTENTS)):
        step_result = _remove_checked_section(
            env, result.document, "remove_table_of_contents", "table_of_contents",
            RemovalType.TABLE_OF_CONTENTS, region.line_range, region.confidence,
        )
        result.document = step_result.document
        result.contributions.extend(step_result.contributions)
    return result


def _remove_back_matter(env: PhaseEnvironment, document: WorkingDocument) -> StepResult:
    boundary = _pending_boundary(env, BoundaryType.BACK_MATTER_START)
    if boundary is None:
        return StepResult(document=document, contributions=_contributions(env))
    return _remove_checked_section(
        env, document, "remove_back_matter", "back_matter", RemovalType.BACK_MATTER,
        LineRange(start=boundary.line, end=env.hints.total_lines), boundary.confidence,
    )


def _remove_index(env: PhaseEnvironment, document: WorkingDocument) -> StepResult:
    boundary = _pending_boundary(env, BoundaryType.INDEX_START)
    if boundary is None or not document.lines_in(LineRange(start=boundary.line, end=env.hints.total_lines)):
        return StepResult(document=document, contributions=_contributions(env))
    region = env.hints.best_region(RegionType.INDEX)
    end = region.line_range.end if region and region.line_range.start == boundary.line else env.hints.total_lines
    return _remove_checked_section(
        env, document, "remove_index", "index", RemovalType.INDEX,
        LineRange(start=boundary.line, end=end), boundary.confidence,
    )


# =============================================================================
# Reference
# =============================================================================

def _remove_auxiliary_lists(env: PhaseEnvironment, document: WorkingDocument) -> StepResult:
    result = StepResult(document=document, contributions=_contributions(env))
    regions = [r for r in env.hints.regions if r.type.is_auxiliary_list]
    for region in still_present(document, regions):
        step_result = _remove_checked_section(
            env, result.document, "remove_auxiliary_lists", "auxiliary_list",
            RemovalType.AUXILIARY_LIST, region.line_range, region.confidence,
        )
        result.document = step_result.document
        result.contributions.extend(step_result.contributions)
    return result


def _remove_inline_patterns(
    env: PhaseEnvironment,
    document: WorkingDocument,
    step: str,
    patterns: list[Pattern],
) -> StepResult:
    """Match inline patterns concurrently, then strip them in hint order."""
    contributions = _contributions(env)
    patterns = [p for p in patterns if p.is_regex]
    if not patterns:
        return StepResult(document=document, contributions=contributions)

    with ThreadPoolExecutor(max_workers=min(env.settings.max_workers, len(patterns))) as executor:
        futures = [executor.submit(match_inline_pattern, document, pattern) for pattern in patterns]
        matches = [future.result() for future in futures]

    for match in matches:
        contributions.applied_patterns.append(AppliedPattern(
            produced_by_phase=env.phase,
            step=step,
            validation_method=ValidationMethod.CONTENT_VERIFICATION,
            pattern_kind=match.pattern.kind,
            matcher=match.pattern.matcher,
            removal_count=match.removal_count,
            estimated_count=match.pattern.estimated_count,
            words_removed=match.words_removed,
            lines_affected=match.lines_affected,
            quality_score=match.pattern.quality_score,
        ))
    logger.debug(
        "inline_patterns_matched",
        step=step,
        patterns=len(patterns),
        matches=sum(m.removal_count for m in matches),
    )
    return StepResult(document=apply_inline_patterns(document, patterns), contributions=contributions)


def _remove_citations(env: PhaseEnvironment, document: WorkingDocument) -> StepResult:
    return _remove_inline_patterns(
        env, document, "remove_citations", env.hints.patterns_of(PatternKind.CITATION),
    )


def _remove_footnotes(env: PhaseEnvironment, document: WorkingDocument) -> StepResult:
    result = _remove_inline_patterns(
        env, document, "remove_footnotes", env.hints.patterns_of(PatternKind.FOOTNOTE_MARKER),
    )
    for region in still_present(result.document, env.hints.regions_of(RegionType.FOOTNOTE_SECTION)):
        step_result = _remove_checked_section(
            env, result.document, "remove_footnotes", "footnote_section",
            RemovalType.FOOTNOTE_SECTION, region.line_range, region.confidence,
        )
        result.document = step_result.document
        result.contributions.extend(step_result.contributions)
    return result


# =============================================================================
# Finishing
# =============================================================================

def _clean_special_characters(env: PhaseEnvironment, document: WorkingDocument) -> StepResult:
    contributions = _contributions(env)
    normalized = document.map_text(clean_special_characters)
    changed = sum(1 for before, after in zip(document.lines, normalized.lines) if before.text != after.text)
    cleaned = collapse_blank_lines(normalized)
    contributions.transformations.append(TransformationRecord(
        produced_by_phase=env.phase,
        step="clean_special_characters",
        transformation_type=TransformationType.SPECIAL_CHAR_REMOVAL,
        words_before=document.word_count,
        words_after=cleaned.word_count,
        description=f"{changed} lines normalized, {document.line_count - cleaned.line_count} blank lines collapsed",
    ))
    return StepResult(document=cleaned, contributions=contributions)


# =============================================================================
# Optimization
# =============================================================================

def _reflow_record(env: PhaseEnvironment, before: WorkingDocument, after: WorkingDocument, description: str):
    return TransformationRecord(
        produced_by_phase=env.phase,
        step="reflow_paragraphs",
        transformation_type=TransformationType.PARAGRAPH_REFLOW,
        affected_range=(
            LineRange(start=before.first_line(), end=max(before.first_line(), before.last_line()))
            if before.lines else None
        ),
        words_before=before.word_count,
        words_after=after.word_count,
        description=description,
    )


def _reflow_ai(env: PhaseEnvironment, document: WorkingDocument, timeout: float) -> StepResult:
    """Reflow chunk by chunk; chunks fan out on a thread pool.

    A chunk whose answer cannot be used keeps its original lines; its
    recovery is decided by the coordinator like any other failure.
    """
    step = "reflow_paragraphs"
    chunks = chunk_paragraphs(document.paragraphs(), env.context.chapter_starts(), env.chunking)
    if not chunks:
        return StepResult(document=document, contributions=_contributions(env))
    context_hints = f"content type: {env.hints.effective_content_type.value}"

    def reflow_one(chunk) -> Optional[list[DocumentLine]]:
        attempt = 1
        budget = timeout
        while True:
            try:
                response = _ask(
                    env, f"{step}[{chunk.index}]",
                    lambda: env.service.reflow_chunk(
                        chunk_text=chunk.text,
                        chunk_index=chunk.index,
                        total_chunks=len(chunks),
                        context_hints=context_hints,
                        timeout=budget,
                    ),
                    lambda raw: validate_reflow_response(raw, chunk.text),
                )
                return align_reflowed_chunk(chunk, response.reflowed_text)
            except PipelineCancelled:
                raise
            except (AIServiceError, ResponseValidationError) as e:
                action, event = env.coordinator.decide(
                    classify_failure(e, used_ai=True), env.phase, f"{step}[{chunk.index}]",
                    StepMethod.TRANSFORMATION, attempt=attempt, message=str(e),
                )
                env.record_recovery(event)
                if action.kind != FallbackActionKind.RETRY_ONCE:
                    return None
                attempt += 1
                budget = timeout * action.timeout_multiplier

    with ThreadPoolExecutor(max_workers=env.settings.max_workers) as executor:
        futures = {chunk.index: executor.submit(reflow_one, chunk) for chunk in chunks}
        replacements = {}
        for index, future in futures.items():
            lines = future.result()
            if lines is not None:
                replacements[index] = lines

    reflowed = merge_reflowed_chunks(document, replacements, chunks)
    contributions = _contributions(env)
    contributions.used_ai = True
    contributions.transformations.append(_reflow_record(
        env, document, reflowed,
        f"{len(replacements)}/{len(chunks)} chunks reflowed by AI",
    ))
    return StepResult(document=reflowed, contributions=contributions)


def _reflow_heuristic(env: PhaseEnvironment, document: WorkingDocument) -> StepResult:
    reflowed, stats = reflow_heuristic(document, env.context.chapter_starts())
    contributions = _contributions(env)
    contributions.transformations.append(_reflow_record(
        env, document, reflowed,
        f"{stats.lines_before} lines joined into {stats.lines_after}; {stats.hyphens_joined} hyphenations repaired",
    ))
    return StepResult(document=reflowed, contributions=contributions)


def _optimize_paragraph_length(env: PhaseEnvironment, document: WorkingDocument) -> StepResult:
    optimized, split_count = split_long_paragraphs(document, env.user_config.max_paragraph_words)
    contributions = _contributions(env)
    contributions.transformations.append(TransformationRecord(
        produced_by_phase=env.phase,
        step="optimize_paragraph_length",
        transformation_type=TransformationType.PARAGRAPH_SPLIT,
        words_before=document.word_count,
        words_after=optimized.word_count,
        description=f"{split_count} paragraphs over {env.user_config.max_paragraph_words} words split",
    ))
    return StepResult(document=optimized, contributions=contributions)


# =============================================================================
# Assembly
# =============================================================================

def _add_structure(env: PhaseEnvironment, document: WorkingDocument) -> StepResult:
    assembled, stats = add_chapter_markers(
        document, env.context.chapter_starts(), env.user_config.chapter_marker_style,
    )
    contributions = _contributions(env)
    contributions.transformations.append(TransformationRecord(
        produced_by_phase=env.phase,
        step="add_structure",
        transformation_type=TransformationType.STRUCTURE_ADDITION,
        words_before=document.word_count,
        words_after=assembled.word_count,
        description=(
            f"{stats.headings_replaced} headings marked, {stats.markers_added} markers inserted "
            f"({env.user_config.chapter_marker_style.value})"
        ),
    ))
    return StepResult(document=assembled, contributions=contributions)


# =============================================================================
# Final Review
# =============================================================================

def _review_contributions(env: PhaseEnvironment, assessment: ReviewAssessment) -> PhaseContributions:
    contributions = _contributions(env)
    for finding in assessment.findings:
        if finding.severity == Severity.INFO:
            continue
        contributions.warnings.append(ProcessingWarning(
            produced_by_phase=env.phase,
            step="final_quality_review",
            validation_method=(
                ValidationMethod.RESPONSE_VALIDATION if assessment.method == "ai"
                else ValidationMethod.HEURISTIC_FALLBACK
            ),
            severity=finding.severity,
            message=f"{finding.category}: {finding.description}",
        ))
    return contributions


def _final_review_ai(env: PhaseEnvironment, document: WorkingDocument, timeout: float) -> StepResult:
    original_words = env.original_document.word_count
    response = _ask(
        env, "final_quality_review",
        lambda: env.service.review_quality(
            original_sample=sample_text(env.original_document),
            cleaned_sample=sample_text(document),
            content_type=env.hints.effective_content_type.value,
            original_words=original_words,
            cleaned_words=document.word_count,
            timeout=timeout,
        ),
        validate_review_response,
    )
    assessment = ReviewAssessment(
        quality_score=response.quality_score,
        confidence=response.confidence,
        findings=[
            ReviewFinding(category=issue.category, severity=issue.severity, description=issue.description)
            for issue in response.issues
        ],
        summary=response.summary,
        method="ai",
    )
    contributions = _review_contributions(env, assessment)
    contributions.used_ai = True
    return StepResult(document=document, contributions=contributions, review=assessment)


def _final_review_heuristic(env: PhaseEnvironment, document: WorkingDocument) -> StepResult:
    assessment = review_heuristic(
        document, env.original_document.word_count, env.hints.effective_content_type,
    )
    return StepResult(
        document=document,
        contributions=_review_contributions(env, assessment),
        review=assessment,
    )


# =============================================================================
# Phase Table
# =============================================================================

PHASE_STEPS: dict[PipelinePhase, list[StepSpec]] = {
    PipelinePhase.RECONNAISSANCE: [
        StepSpec("analyze_structure", StepMethod.HYBRID, _reconnaissance_heuristic, _reconnaissance_ai),
    ],
    PipelinePhase.METADATA: [
        StepSpec("extract_metadata", StepMethod.HEURISTIC, _extract_metadata),
    ],
    PipelinePhase.SEMANTIC: [
        StepSpec("remove_page_numbers", StepMethod.PATTERN, _remove_page_numbers),
        StepSpec("remove_headers_footers", StepMethod.PATTERN, _remove_headers_footers),
    ],
    PipelinePhase.STRUCTURAL: [
        StepSpec("detect_boundaries", StepMethod.HYBRID, _detect_boundaries_heuristic, _detect_boundaries_ai),
        StepSpec("remove_front_matter", StepMethod.HEURISTIC, _remove_front_matter),
        StepSpec("remove_table_of_contents", StepMethod.HEURISTIC, _remove_table_of_contents),
        StepSpec("remove_back_matter", StepMethod.HEURISTIC, _remove_back_matter),
        StepSpec("remove_index", StepMethod.HEURISTIC, _remove_index),
    ],
    PipelinePhase.REFERENCE: [
        StepSpec("remove_auxiliary_lists", StepMethod.HEURISTIC, _remove_auxiliary_lists),
        StepSpec("remove_citations", StepMethod.PATTERN, _remove_citations),
        StepSpec("remove_footnotes", StepMethod.PATTERN, _remove_footnotes),
    ],
    PipelinePhase.FINISHING: [
        StepSpec("clean_special_characters", StepMethod.HEURISTIC, _clean_special_characters),
    ],
    PipelinePhase.OPTIMIZATION: [
        StepSpec("reflow_paragraphs", StepMethod.TRANSFORMATION, _reflow_heuristic, _reflow_ai),
        StepSpec("optimize_paragraph_length", StepMethod.HEURISTIC, _optimize_paragraph_length),
    ],
    PipelinePhase.ASSEMBLY: [
        StepSpec("add_structure", StepMethod.HEURISTIC, _add_structure),
    ],
    PipelinePhase.FINAL_REVIEW: [
        StepSpec("final_quality_review", StepMethod.HYBRID, _final_review_heuristic, _final_review_ai),
    ],
}


# =============================================================================
# Step Runner
# =============================================================================

class PhaseRunner:
    """Runs the steps of one phase with fallback and content-loss checks."""

    def __init__(self, env: PhaseEnvironment, steps: Optional[list[StepSpec]] = None):
        self.env = env
        self.steps = steps if steps is not None else PHASE_STEPS[env.phase]

    def run(self, document: WorkingDocument) -> PhaseOutputs:
        """Run every step in order.

        Raises:
            PipelineCancelled: If the cancellation token fires.
        """
        env = self.env
        outputs = PhaseOutputs(
            phase=env.phase,
            document_before=document,
            document_after=document,
            contributions=env.pending,
            original_document=env.original_document,
        )
        input_words = document.word_count
        current = document

        for index, spec in enumerate(self.steps):
            env.token.raise_if_cancelled(f"{env.phase.value}/{spec.name}")
            if not env.user_config.step_enabled(spec.name):
                outputs.skipped_steps.append(spec.name)
                logger.info("step_disabled", phase=env.phase.value, step=spec.name)
                continue

            words_before = current.word_count
            result = self._run_step(spec, current)
            if result is None:
                outputs.skipped_steps.append(spec.name)
                continue

            loss = 1.0 - result.document.word_count / input_words if input_words else 0.0
            if loss > env.settings.loss_budget(env.phase):
                action, event = env.coordinator.decide(
                    FailureKind.CONTENT_LOSS_DETECTED, env.phase, spec.name, spec.method,
                    loss_ratio=loss, message=f"{loss:.1%} of phase input removed",
                )
                env.record_recovery(event)
                if action.kind == FallbackActionKind.ROLLBACK_PHASE:
                    outputs.rollback_requested = True
                    outputs.rollback_reason = action.reason
                    env.pending.extend(result.contributions)
                    current = result.document
                    break
                if action.kind == FallbackActionKind.SKIP_REMAINING_STEPS_IN_PHASE:
                    outputs.skipped_steps.extend(s.name for s in self.steps[index:])
                    break

            env.pending.extend(result.contributions)
            current = result.document
            outputs.step_words[spec.name] = (words_before, current.word_count)
            if result.hints is not None:
                outputs.hints = result.hints
            if result.review is not None:
                outputs.review = result.review

        env.pending.ai_calls.extend(env.ai_calls)
        env.pending.warnings.extend(env.recovery_warnings)
        env.pending.fallback_used = env.pending.fallback_used or bool(env.recovery_events)
        outputs.recovery_events = list(env.recovery_events)
        outputs.document_after = current
        return outputs

    def _run_step(self, spec: StepSpec, document: WorkingDocument) -> Optional[StepResult]:
        """Run one step, routing failures to the fallback coordinator.

        Returns:
            The step result, or None when the step was skipped.
        """
        env = self.env
        use_ai = spec.ai is not None and env.ai_enabled
        if not use_ai and spec.heuristic is None:
            return None
        if spec.ai is not None and not use_ai:
            env.pending.fallback_used = env.pending.fallback_used or env.degraded

        attempt = 1
        timeout = env.settings.ai_timeout_seconds
        while True:
            try:
                if use_ai:
                    result = spec.ai(env, document, timeout)
                else:
                    result = spec.heuristic(env, document)
                logger.debug("step_complete", phase=env.phase.value, step=spec.name, ai=use_ai)
                return result
            except PipelineCancelled:
                raise
            except Exception as e:
                kind = classify_failure(e, used_ai=use_ai)
                method = spec.method if use_ai else StepMethod.HEURISTIC
                action, event = env.coordinator.decide(
                    kind, env.phase, spec.name, method, attempt=attempt, message=str(e),
                )
                env.record_recovery(event)

                if action.kind == FallbackActionKind.RETRY_ONCE:
                    attempt += 1
                    timeout = env.settings.ai_timeout_seconds * action.timeout_multiplier
                    continue
                if action.kind == FallbackActionKind.FALLBACK_TO and spec.heuristic is not None:
                    use_ai = False
                    attempt = 1
                    env.pending.fallback_used = True
                    continue
                return None
