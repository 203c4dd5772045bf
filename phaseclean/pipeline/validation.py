"""Validation of AI responses before the pipeline trusts them.

Layers run on every answer:
- Response validation: JSON shape, numeric ranges, line bounds
- Position validation: boundary placement limits per section type,
  removal size limits, and word-count cross-checks against the text the
  pipeline actually holds
- Content verification: a section to be removed must contain what its
  type promises (headings, entries) and no chapter headings

Anything that fails raises ResponseValidationError, which the phases turn
into an `ai_response_invalid` failure.
"""

import re
from dataclasses import dataclass
from typing import Optional

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

from phaseclean.cleaning.detection import is_chapter_heading
from phaseclean.models.document import DocumentLine, WorkingDocument, count_words
from phaseclean.models.enums import (
    ContentType,
    DetectionMethod,
    EvidenceType,
    PatternKind,
    PatternStyle,
    RegionType,
    Severity,
)
from phaseclean.models.hints import ContentCharacteristics, StructureHints, StructureWarning
from phaseclean.models.regions import (
    DetectionEvidence,
    LineRange,
    Pattern,
    Region,
    link_overlaps,
)
from phaseclean.pipeline.errors import CleaningPipelineError

logger = structlog.get_logger(__name__)


class ResponseValidationError(CleaningPipelineError):
    """An AI response failed validation."""

    pass


# =============================================================================
# Response Models (Schema-Validated)
# =============================================================================

class RegionPayload(BaseModel):
    """A region as reported by structure analysis."""
    type: RegionType
    start_line: int = Field(ge=1)
    end_line: int = Field(ge=1)
    confidence: float = Field(ge=0.0, le=1.0)
    evidence: list[str] = Field(default_factory=list)
    overlaps_with: list[int] = Field(default_factory=list, description="Indexes into regions")


class PatternPayload(BaseModel):
    """A pattern as reported by structure analysis."""
    kind: PatternKind
    style: PatternStyle = PatternStyle.OTHER
    matcher: str = Field(min_length=1)
    is_regex: bool = True
    samples: list[str] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    estimated_count: int = Field(default=0, ge=0)

    @field_validator("style", mode="before")
    @classmethod
    def _unknown_style_is_other(cls, value):
        if isinstance(value, str) and value not in {s.value for s in PatternStyle}:
            return PatternStyle.OTHER
        return value


class CharacteristicsPayload(BaseModel):
    """Content characteristics flags."""
    has_dialogue: bool = False
    has_lists: bool = False
    has_tables: bool = False
    has_math: bool = False
    has_verse: bool = False
    looks_like_ocr: bool = False
    language: str = "en"


class StructureAnalysisResponse(BaseModel):
    """Structure analysis answer."""
    detected_content_type: ContentType = ContentType.MIXED
    content_type_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    regions: list[RegionPayload] = Field(default_factory=list)
    patterns: list[PatternPayload] = Field(default_factory=list)
    content_characteristics: CharacteristicsPayload = Field(default_factory=CharacteristicsPayload)
    overall_confidence: float = Field(ge=0.0, le=1.0)
    warnings: list[str] = Field(default_factory=list)


class BoundaryResponse(BaseModel):
    """Boundary detection answer."""
    boundary_line: Optional[int] = None
    section_type: str = "none"
    confidence: float = Field(ge=0.0, le=1.0)
    evidence: list[str] = Field(default_factory=list)


class ReflowResponse(BaseModel):
    """Reflow answer for one chunk."""
    reflowed_text: str
    input_word_count: int = Field(ge=0)
    output_word_count: int = Field(ge=0)
    paragraphs_input: int = Field(default=0, ge=0)
    paragraphs_output: int = Field(default=0, ge=0)
    line_breaks_removed: int = Field(default=0, ge=0)
    warnings: list[str] = Field(default_factory=list)


class ReviewIssue(BaseModel):
    """One issue raised by the final review."""
    category: str = "other"
    severity: Severity = Severity.INFO
    description: str = ""


class ReviewResponse(BaseModel):
    """Final review answer."""
    quality_score: float = Field(ge=0.0, le=1.0)
    confidence: float = Field(ge=0.0, le=1.0)
    issues: list[ReviewIssue] = Field(default_factory=list)
    summary: str = ""


def _parse(model: type[BaseModel], raw: dict, what: str) -> BaseModel:
    if not isinstance(raw, dict):
        raise ResponseValidationError(f"{what}: expected a JSON object, got {type(raw).__name__}")
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise ResponseValidationError(f"{what}: {e.error_count()} schema errors: {e.errors()[0]['msg']}") from e


# =============================================================================
# Structure Analysis
# =============================================================================

def validate_structure_response(raw: dict, total_lines: int) -> StructureAnalysisResponse:
    """Validate a structure analysis answer against the document.

    Raises:
        ResponseValidationError: On shape errors, out-of-range lines or bad regexes.
    """
    response = _parse(StructureAnalysisResponse, raw, "structure analysis")

    for index, region in enumerate(response.regions):
        if region.start_line > region.end_line:
            raise ResponseValidationError(
                f"region {index} ({region.type.value}) has start {region.start_line} after end {region.end_line}"
            )
        if region.end_line > total_lines:
            raise ResponseValidationError(
                f"region {index} ({region.type.value}) ends at line {region.end_line}, "
                f"document has {total_lines} lines"
            )
        for other in region.overlaps_with:
            if not 0 <= other < len(response.regions):
                raise ResponseValidationError(f"region {index} overlaps unknown region index {other}")

    for pattern in response.patterns:
        if pattern.is_regex:
            try:
                re.compile(pattern.matcher)
            except re.error as e:
                raise ResponseValidationError(
                    f"{pattern.kind.value} matcher does not compile: {e}"
                ) from e

    return response


def build_hints(
    response: StructureAnalysisResponse,
    document_id: str,
    document: WorkingDocument,
    user_content_type: ContentType,
    characteristics: Optional[ContentCharacteristics] = None,
    analysis_method: DetectionMethod = DetectionMethod.AI_ANALYSIS,
) -> StructureHints:
    """Turn a validated structure answer into frozen StructureHints.

    Raises:
        ResponseValidationError: If the answer violates a hints invariant.
    """
    regions: list[Region] = [
        Region(
            type=payload.type,
            line_range=LineRange(start=payload.start_line, end=payload.end_line),
            confidence=payload.confidence,
            detection_method=analysis_method,
            evidence=tuple(
                DetectionEvidence(type=EvidenceType.HEADER_TEXT, description=text[:500])
                for text in payload.evidence
            ),
        )
        for payload in response.regions
    ]
    # Declared overlaps first, then every geometric overlap
    declared = [
        region.model_copy(update={
            "overlaps_with": tuple(regions[i].id for i in payload.overlaps_with),
        })
        for region, payload in zip(regions, response.regions)
    ]
    regions = link_overlaps(declared)

    patterns = [
        Pattern(
            kind=p.kind,
            style=p.style,
            matcher=p.matcher,
            is_regex=p.is_regex,
            samples=tuple(p.samples),
            confidence=p.confidence,
            estimated_count=p.estimated_count,
            detection_method=analysis_method,
        )
        for p in response.patterns
    ]

    core_regions = [r for r in regions if r.type == RegionType.CORE_CONTENT]
    core_range = max(core_regions, key=lambda r: r.confidence).line_range if core_regions else None

    base = characteristics or ContentCharacteristics()
    merged_characteristics = base.model_copy(update=response.content_characteristics.model_dump())

    try:
        return StructureHints(
            document_id=document_id,
            user_selected_content_type=user_content_type,
            detected_content_type=response.detected_content_type,
            content_type_confidence=response.content_type_confidence,
            total_lines=max(document.line_count, 1),
            total_words=document.word_count,
            regions=tuple(regions),
            patterns=tuple(patterns),
            content_characteristics=merged_characteristics,
            core_content_range=core_range,
            overall_confidence=response.overall_confidence,
            warnings=tuple(StructureWarning(message=w) for w in response.warnings),
            analysis_method=analysis_method,
        )
    except ValidationError as e:
        raise ResponseValidationError(f"structure hints rejected: {e.errors()[0]['msg']}") from e


# =============================================================================
# Boundary Position Constraints
# =============================================================================

@dataclass(frozen=True)
class SectionConstraints:
    """Placement limits for one removable section type."""
    max_end_percent: Optional[float] = None
    min_start_percent: Optional[float] = None
    max_removal_percent: float = 1.0
    min_confidence: float = 0.0
    min_lines: int = 1


SECTION_CONSTRAINTS: dict[str, SectionConstraints] = {
    "front_matter": SectionConstraints(max_end_percent=0.40, max_removal_percent=0.40, min_confidence=0.60, min_lines=3),
    "table_of_contents": SectionConstraints(max_end_percent=0.35, max_removal_percent=0.20, min_confidence=0.60, min_lines=5),
    "auxiliary_list": SectionConstraints(max_end_percent=0.40, max_removal_percent=0.15, min_confidence=0.65, min_lines=3),
    "index": SectionConstraints(min_start_percent=0.60, max_removal_percent=0.25, min_confidence=0.65, min_lines=10),
    "back_matter": SectionConstraints(min_start_percent=0.50, max_removal_percent=0.45, min_confidence=0.70, min_lines=5),
    "footnote_section": SectionConstraints(max_removal_percent=0.12, min_confidence=0.70, min_lines=4),
}


@dataclass
class BoundaryCheck:
    """Outcome of checking a proposed removable section."""
    valid: bool
    section: str
    line_range: Optional[LineRange]
    reason: str = ""

    @classmethod
    def rejected(cls, section: str, line_range: Optional[LineRange], reason: str) -> "BoundaryCheck":
        logger.warning("boundary_rejected", section=section, line_range=str(line_range), reason=reason)
        return cls(valid=False, section=section, line_range=line_range, reason=reason)


def check_section(
    section: str,
    line_range: LineRange,
    confidence: float,
    total_lines: int,
) -> BoundaryCheck:
    """Check a removable section against its placement limits.

    Args:
        section: Key into SECTION_CONSTRAINTS.
        line_range: Lines that would be removed.
        confidence: Confidence behind the detection.
        total_lines: Original document length.

    Returns:
        BoundaryCheck; `valid` is False with a reason when any limit is broken.
    """
    limits = SECTION_CONSTRAINTS[section]
    if total_lines <= 0 or line_range.end > total_lines:
        return BoundaryCheck.rejected(section, line_range, f"out of bounds (document has {total_lines} lines)")

    if limits.max_end_percent is not None and line_range.end / total_lines > limits.max_end_percent:
        return BoundaryCheck.rejected(
            section, line_range,
            f"ends at {line_range.end / total_lines:.0%} of document, limit {limits.max_end_percent:.0%}",
        )
    if limits.min_start_percent is not None and (line_range.start - 1) / total_lines < limits.min_start_percent:
        return BoundaryCheck.rejected(
            section, line_range,
            f"starts at {(line_range.start - 1) / total_lines:.0%} of document, limit {limits.min_start_percent:.0%}",
        )
    if line_range.count / total_lines > limits.max_removal_percent:
        return BoundaryCheck.rejected(
            section, line_range,
            f"would remove {line_range.count / total_lines:.0%} of document, limit {limits.max_removal_percent:.0%}",
        )
    if confidence < limits.min_confidence:
        return BoundaryCheck.rejected(
            section, line_range, f"confidence {confidence:.2f} below {limits.min_confidence:.2f}",
        )
    if line_range.count < limits.min_lines:
        return BoundaryCheck.rejected(
            section, line_range, f"{line_range.count} lines, minimum {limits.min_lines}",
        )
    return BoundaryCheck(valid=True, section=section, line_range=line_range)


# =============================================================================
# Section Content Verification
# =============================================================================

# Headings a section of each type is expected to open with
SECTION_HEADERS: dict[str, tuple[str, ...]] = {
    "back_matter": (
        "notes", "endnotes", "appendix", "appendices", "glossary", "bibliography",
        "references", "works cited", "sources", "about the author", "acknowledgments",
        "acknowledgements", "colophon", "afterword", "index",
    ),
    "index": ("index", "general index", "subject index", "index of names"),
    "table_of_contents": ("contents", "table of contents"),
    "auxiliary_list": (
        "list of figures", "list of illustrations", "list of tables",
        "list of abbreviations", "abbreviations", "figures", "tables",
    ),
    "footnote_section": ("notes", "endnotes", "footnotes"),
}

HEADER_SEARCH_LINES = {"back_matter": 30}
DEFAULT_HEADER_SEARCH_LINES = 10
MAX_VERIFIED_LINES = 100

_INDEX_ENTRY_RE = re.compile(r"^\s*[A-Za-z].+,\s*\d+(-\d+)?(,\s*\d+(-\d+)?)*\s*$")
_TOC_ENTRY_RE = re.compile(
    r"(?:\.{2,}|\s{2,}|\t)\s*\d{1,4}\s*$|^\s*(?:chapter|part)\s+\S+\s.*\S\s+\d{1,4}\s*$",
    re.IGNORECASE,
)
_LIST_ENTRY_RE = re.compile(r"^\s*(?:figure|fig\.|table|plate|map)?\s*\d+(?:\.\d+)*[.:)]?\s+\S.*\d+\s*$", re.IGNORECASE)
_NOTE_ENTRY_RE = re.compile(r"^\s*(?:\[\d{1,3}\]|\d{1,3}[.)]?\s+\S|[¹²³⁴⁵⁶⁷⁸⁹]+\s*\S)")
_NARRATIVE_RE = re.compile(r"\"[A-Z][^\"]{20,}\"|[A-Z][^.!?]{100,}[.!?]")


def _header_key(text: str) -> str:
    return re.sub(r"[\s:.]+$", "", text.strip().lstrip("#").strip().lower())


def _find_header(section: str, lines: list[str]) -> Optional[str]:
    limit = HEADER_SEARCH_LINES.get(section, DEFAULT_HEADER_SEARCH_LINES)
    for text in lines[:limit]:
        key = _header_key(text)
        if len(key) > 60:
            continue
        for header in SECTION_HEADERS.get(section, ()):
            if key == header or key.startswith(header + " ") or key.startswith(header + ":"):
                return header
    return None


def _chapter_headings(lines: list[str]) -> list[str]:
    """Chapter headings that are not table-of-contents entries."""
    return [text for text in lines if is_chapter_heading(text) and not _TOC_ENTRY_RE.search(text)]


def verify_section_content(section: str, lines: list[DocumentLine]) -> BoundaryCheck:
    """Check that a section's lines look like the section they claim to be.

    Placement limits say a section is in a plausible place; this checks
    what is actually in it. Front matter must hold no chapter heading.
    Back matter, index, table of contents, list and notes sections must
    open with their heading or consist of entries of their kind, and must
    not carry chapter headings or narrative prose without one.

    Args:
        section: Key into SECTION_CONSTRAINTS.
        lines: Current lines of the proposed section.

    Returns:
        BoundaryCheck; `valid` is False with a reason when the content does
        not match the section type.
    """
    line_range = (
        LineRange(start=lines[0].start, end=max(line.end for line in lines)) if lines else None
    )
    texts = [line.text for line in lines if not line.is_blank]
    if not texts:
        return BoundaryCheck(valid=True, section=section, line_range=line_range)

    if section == "front_matter":
        chapters = _chapter_headings(texts)
        if chapters:
            return BoundaryCheck.rejected(
                section, line_range, f"contains chapter heading {chapters[0].strip()!r}",
            )
        return BoundaryCheck(valid=True, section=section, line_range=line_range)

    examined = texts[:MAX_VERIFIED_LINES]
    header = _find_header(section, examined)
    chapters = _chapter_headings(examined)
    narrative = sum(len(_NARRATIVE_RE.findall(text)) for text in examined)

    if section == "back_matter":
        if header is None:
            reason = "chapter heading without a back matter heading" if chapters else "no back matter heading"
            return BoundaryCheck.rejected(section, line_range, reason)
        return BoundaryCheck(valid=True, section=section, line_range=line_range)

    entry_re = {
        "index": _INDEX_ENTRY_RE,
        "table_of_contents": _TOC_ENTRY_RE,
        "auxiliary_list": _LIST_ENTRY_RE,
        "footnote_section": _NOTE_ENTRY_RE,
    }.get(section)
    if entry_re is None:
        return BoundaryCheck(valid=True, section=section, line_range=line_range)
    entries = sum(1 for text in examined if entry_re.search(text))

    if header is None:
        if chapters:
            return BoundaryCheck.rejected(
                section, line_range, f"chapter heading {chapters[0].strip()!r} without a {section} heading",
            )
        if narrative > 3 and entries < 5:
            return BoundaryCheck.rejected(section, line_range, f"{narrative} runs of narrative prose")
        needed = 10 if section == "index" else 5
        if entries < needed:
            return BoundaryCheck.rejected(
                section, line_range, f"no {section} heading and {entries} entries (need {needed})",
            )
    return BoundaryCheck(valid=True, section=section, line_range=line_range)


def validate_boundary_response(
    raw: dict,
    boundary_kind: str,
    total_lines: int,
    document: Optional[WorkingDocument] = None,
) -> tuple[BoundaryResponse, Optional[LineRange]]:
    """Validate a boundary answer and derive the range it would remove.

    A null boundary means "no such matter" and is valid with no range.
    When the document is given, the lines of the range must also look like
    the section (see verify_section_content).

    Raises:
        ResponseValidationError: On shape errors or a boundary that breaks
            the position or content limits for its section.
    """
    response = _parse(BoundaryResponse, raw, f"{boundary_kind} boundary")
    line = response.boundary_line
    if line is None:
        return response, None
    if not 1 <= line <= total_lines:
        raise ResponseValidationError(f"{boundary_kind} boundary line {line} outside 1..{total_lines}")

    if boundary_kind == "front":
        section, line_range = "front_matter", LineRange(start=1, end=line)
    else:
        section, line_range = "back_matter", LineRange(start=line, end=total_lines)

    check = check_section(section, line_range, response.confidence, total_lines)
    if check.valid and document is not None:
        check = verify_section_content(section, document.lines_in(line_range))
    if not check.valid:
        raise ResponseValidationError(f"{boundary_kind} boundary at line {line} rejected: {check.reason}")
    return response, line_range


# =============================================================================
# Reflow and Review
# =============================================================================

def validate_reflow_response(raw: dict, chunk_text: str) -> ReflowResponse:
    """Validate a reflow answer with the word-count cross-check.

    The reported output count must equal a recount of the returned text,
    and the reported input count must equal a count of the text sent.

    Raises:
        ResponseValidationError: On shape errors or any count mismatch.
    """
    response = _parse(ReflowResponse, raw, "reflow")
    if not response.reflowed_text.strip():
        raise ResponseValidationError("reflow returned empty text")

    actual_output = count_words(response.reflowed_text)
    if actual_output != response.output_word_count:
        raise ResponseValidationError(
            f"reported output_word_count {response.output_word_count} but text has {actual_output} words"
        )
    actual_input = count_words(chunk_text)
    if actual_input != response.input_word_count:
        raise ResponseValidationError(
            f"reported input_word_count {response.input_word_count} but chunk has {actual_input} words"
        )
    return response


def validate_review_response(raw: dict) -> ReviewResponse:
    """Validate a final review answer."""
    return _parse(ReviewResponse, raw, "final review")
