"""Enumeration types for the cleaning pipeline models."""

from enum import Enum


# =============================================================================
# Pipeline Structure
# =============================================================================

class PipelinePhase(str, Enum):
    """Phases of the cleaning pipeline, in execution order."""

    RECONNAISSANCE = "reconnaissance"        # Structure analysis, produces hints
    METADATA = "metadata"                    # Title, author, date
    SEMANTIC = "semantic"                    # Page numbers, headers/footers
    STRUCTURAL = "structural"                # Front/back matter, TOC, index
    REFERENCE = "reference"                  # Auxiliary lists, citations, footnotes
    FINISHING = "finishing"                  # Special characters
    OPTIMIZATION = "optimization"            # Reflow, paragraph length
    ASSEMBLY = "assembly"                    # Chapter markers, final structure
    FINAL_REVIEW = "final_review"            # Quality assessment

    @property
    def phase_number(self) -> int:
        return PHASE_ORDER.index(self)

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()


PHASE_ORDER: list[PipelinePhase] = [
    PipelinePhase.RECONNAISSANCE,
    PipelinePhase.METADATA,
    PipelinePhase.SEMANTIC,
    PipelinePhase.STRUCTURAL,
    PipelinePhase.REFERENCE,
    PipelinePhase.FINISHING,
    PipelinePhase.OPTIMIZATION,
    PipelinePhase.ASSEMBLY,
    PipelinePhase.FINAL_REVIEW,
]


class CheckpointType(str, Enum):
    """Validation gates evaluated after specific phases."""

    RECONNAISSANCE_QUALITY = "reconnaissance_quality"
    SEMANTIC_INTEGRITY = "semantic_integrity"
    STRUCTURAL_INTEGRITY = "structural_integrity"
    REFERENCE_INTEGRITY = "reference_integrity"
    OPTIMIZATION_INTEGRITY = "optimization_integrity"
    FINAL_QUALITY = "final_quality"


CHECKPOINT_FOR_PHASE: dict[PipelinePhase, CheckpointType] = {
    PipelinePhase.RECONNAISSANCE: CheckpointType.RECONNAISSANCE_QUALITY,
    PipelinePhase.SEMANTIC: CheckpointType.SEMANTIC_INTEGRITY,
    PipelinePhase.STRUCTURAL: CheckpointType.STRUCTURAL_INTEGRITY,
    PipelinePhase.REFERENCE: CheckpointType.REFERENCE_INTEGRITY,
    PipelinePhase.OPTIMIZATION: CheckpointType.OPTIMIZATION_INTEGRITY,
    PipelinePhase.FINAL_REVIEW: CheckpointType.FINAL_QUALITY,
}


class CheckpointResult(str, Enum):
    """Graded result of a checkpoint evaluation."""

    PASSED = "passed"
    PASSED_WITH_WARNINGS = "passed_with_warnings"
    MARGINAL = "marginal"
    FAILED = "failed"
    SKIPPED = "skipped"


class Severity(str, Enum):
    """Severity of a criterion, warning or issue."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.INFO: 0,
    Severity.WARNING: 1,
    Severity.ERROR: 2,
    Severity.CRITICAL: 3,
}


class RecommendedAction(str, Enum):
    """Action a checkpoint recommends to the orchestrator."""

    CONTINUE_NORMALLY = "continue_normally"
    CONTINUE_WITH_CAUTION = "continue_with_caution"
    ROLLBACK_PHASE = "rollback_phase"
    HALT_PIPELINE = "halt_pipeline"
    REQUEST_USER_DECISION = "request_user_decision"


class RunStatus(str, Enum):
    """Terminal status of a pipeline run."""

    COMPLETED = "completed"
    COMPLETED_WITH_WARNINGS = "completed_with_warnings"
    CRITICAL_FAILURE = "critical_failure"
    CANCELLED_BY_USER = "cancelled_by_user"   # Declined at the reconnaissance gate
    CANCELLED = "cancelled"                   # Cancelled mid-run


# =============================================================================
# Content Classification
# =============================================================================

class ContentType(str, Enum):
    """Document content classification."""

    AUTO = "auto"
    PROSE_NON_FICTION = "prose_non_fiction"
    PROSE_FICTION = "prose_fiction"
    POETRY = "poetry"
    ACADEMIC = "academic"
    SCIENTIFIC_TECHNICAL = "scientific_technical"
    LEGAL = "legal"
    RELIGIOUS = "religious"
    CHILDRENS = "childrens"
    DRAMA_SCREENPLAY = "drama_screenplay"
    MIXED = "mixed"

    @property
    def is_apparatus_heavy(self) -> bool:
        """Whether the type usually carries citations, notes and bibliography."""
        return self in (ContentType.ACADEMIC, ContentType.SCIENTIFIC_TECHNICAL, ContentType.LEGAL)


class RegionType(str, Enum):
    """Structural regions reconnaissance can detect."""

    # Front matter
    FRONT_MATTER = "front_matter"
    TITLE_PAGE = "title_page"
    COPYRIGHT_PAGE = "copyright_page"
    DEDICATION = "dedication"
    EPIGRAPH = "epigraph"
    TABLE_OF_CONTENTS = "table_of_contents"
    LIST_OF_FIGURES = "list_of_figures"
    LIST_OF_TABLES = "list_of_tables"
    LIST_OF_ABBREVIATIONS = "list_of_abbreviations"
    PREFACE = "preface"
    FOREWORD = "foreword"
    INTRODUCTION = "introduction"
    ABSTRACT = "abstract"

    # Core content
    CORE_CONTENT = "core_content"
    CHAPTER = "chapter"
    SECTION = "section"
    PART_DIVISION = "part_division"

    # Back matter
    BACK_MATTER = "back_matter"
    APPENDIX = "appendix"
    APPENDICES = "appendices"
    NOTES = "notes"
    BIBLIOGRAPHY = "bibliography"
    GLOSSARY = "glossary"
    INDEX = "index"
    COLOPHON = "colophon"
    ABOUT_AUTHOR = "about_author"
    ACKNOWLEDGMENTS = "acknowledgments"

    # Special content
    FOOTNOTE_SECTION = "footnote_section"
    CODE_BLOCK = "code_block"
    EQUATION = "equation"
    BLOCK_QUOTE = "block_quote"

    @property
    def is_front_matter(self) -> bool:
        return self in _FRONT_MATTER_TYPES

    @property
    def is_back_matter(self) -> bool:
        return self in _BACK_MATTER_TYPES

    @property
    def is_core_content(self) -> bool:
        return self in (
            RegionType.CORE_CONTENT,
            RegionType.CHAPTER,
            RegionType.SECTION,
            RegionType.PART_DIVISION,
        )

    @property
    def is_auxiliary_list(self) -> bool:
        return self in (
            RegionType.LIST_OF_FIGURES,
            RegionType.LIST_OF_TABLES,
            RegionType.LIST_OF_ABBREVIATIONS,
        )

    @property
    def removed_by_default(self) -> bool:
        return self in _REMOVED_BY_DEFAULT


_FRONT_MATTER_TYPES = frozenset({
    RegionType.FRONT_MATTER, RegionType.TITLE_PAGE, RegionType.COPYRIGHT_PAGE,
    RegionType.DEDICATION, RegionType.EPIGRAPH, RegionType.TABLE_OF_CONTENTS,
    RegionType.LIST_OF_FIGURES, RegionType.LIST_OF_TABLES,
    RegionType.LIST_OF_ABBREVIATIONS, RegionType.PREFACE, RegionType.FOREWORD,
    RegionType.INTRODUCTION, RegionType.ABSTRACT,
})

_BACK_MATTER_TYPES = frozenset({
    RegionType.BACK_MATTER, RegionType.APPENDIX, RegionType.APPENDICES,
    RegionType.NOTES, RegionType.BIBLIOGRAPHY, RegionType.GLOSSARY,
    RegionType.INDEX, RegionType.COLOPHON, RegionType.ABOUT_AUTHOR,
    RegionType.ACKNOWLEDGMENTS,
})

_REMOVED_BY_DEFAULT = frozenset({
    RegionType.FRONT_MATTER, RegionType.TITLE_PAGE, RegionType.COPYRIGHT_PAGE,
    RegionType.DEDICATION, RegionType.TABLE_OF_CONTENTS, RegionType.LIST_OF_FIGURES,
    RegionType.LIST_OF_TABLES, RegionType.LIST_OF_ABBREVIATIONS, RegionType.INDEX,
    RegionType.BACK_MATTER, RegionType.COLOPHON, RegionType.ABOUT_AUTHOR,
})


class DetectionMethod(str, Enum):
    """How a region or pattern was detected."""

    AI_ANALYSIS = "ai_analysis"
    PATTERN_MATCHING = "pattern_matching"
    HEURISTIC = "heuristic"
    USER_SPECIFIED = "user_specified"
    CONTENT_TYPE_DEFAULT = "content_type_default"


class EvidenceType(str, Enum):
    """Kinds of evidence that support a detection."""

    HEADER_TEXT = "header_text"
    PAGE_NUMBER_PATTERN = "page_number_pattern"
    CONTENT_DENSITY_CHANGE = "content_density_change"
    FORMATTING_CHANGE = "formatting_change"
    KEYWORD_PRESENCE = "keyword_presence"
    STRUCTURAL_MARKER = "structural_marker"
    POSITION_HEURISTIC = "position_heuristic"
    CONTENT_TYPE_EXPECTATION = "content_type_expectation"


class PatternKind(str, Enum):
    """What a textual pattern identifies."""

    PAGE_NUMBER = "page_number"
    HEADER = "header"
    FOOTER = "footer"
    CITATION = "citation"
    FOOTNOTE_MARKER = "footnote_marker"
    CHAPTER_HEADING = "chapter_heading"


class PatternStyle(str, Enum):
    """Concrete style of a detected pattern."""

    # Page numbers
    ARABIC = "arabic"
    ROMAN = "roman"
    DECORATED = "decorated"              # "- 42 -", "[42]"
    PAGE_OF_TOTAL = "page_of_total"      # "Page 3 of 16"
    # Headers / footers
    RUNNING_TEXT = "running_text"
    # Citations
    AUTHOR_YEAR = "author_year"          # (Smith, 2020)
    NUMERIC_BRACKET = "numeric_bracket"  # [12]
    SUPERSCRIPT = "superscript"
    # Footnote markers
    SYMBOLIC = "symbolic"                # *, †, ‡
    NUMERIC_INLINE = "numeric_inline"
    # Chapter headings
    NUMBERED_WORD = "numbered_word"      # Chapter 1
    ROMAN_NUMBERED = "roman_numbered"
    NUMBERED_AND_NAMED = "numbered_and_named"
    PART_AND_CHAPTER = "part_and_chapter"
    SECTION_NUMBERED = "section_numbered"
    OTHER = "other"


# =============================================================================
# Audit Record Classification
# =============================================================================

class ValidationMethod(str, Enum):
    """Which validation layers stood behind an audit record."""

    RESPONSE_VALIDATION = "response_validation"     # AI answer checked for shape/position
    CONTENT_VERIFICATION = "content_verification"   # Checked against the text itself
    HEURISTIC_FALLBACK = "heuristic_fallback"
    FULL_DEFENSE = "full_defense"                   # Response + content checks passed
    NO_VALIDATION = "no_validation"                 # Direct deterministic operation
    USER_OVERRIDE = "user_override"


class RemovalType(str, Enum):
    """Kinds of removed content blocks."""

    FRONT_MATTER = "front_matter"
    TABLE_OF_CONTENTS = "table_of_contents"
    BACK_MATTER = "back_matter"
    INDEX = "index"
    AUXILIARY_LIST = "auxiliary_list"
    FOOTNOTE_SECTION = "footnote_section"
    OTHER = "other"


class TransformationType(str, Enum):
    """Kinds of in-place content transformation."""

    PARAGRAPH_REFLOW = "paragraph_reflow"
    PARAGRAPH_SPLIT = "paragraph_split"
    SPECIAL_CHAR_REMOVAL = "special_char_removal"
    WHITESPACE_NORMALIZATION = "whitespace_normalization"
    STRUCTURE_ADDITION = "structure_addition"
    METADATA_EXTRACTION = "metadata_extraction"
    OTHER = "other"


class BoundaryType(str, Enum):
    """Kinds of confirmed boundaries."""

    FRONT_MATTER_END = "front_matter_end"
    CORE_CONTENT_START = "core_content_start"
    CORE_CONTENT_END = "core_content_end"
    BACK_MATTER_START = "back_matter_start"
    INDEX_START = "index_start"
    CHAPTER_START = "chapter_start"


class FlagReason(str, Enum):
    """Why content was flagged for attention."""

    AMBIGUOUS_REMOVAL = "ambiguous_removal"
    LOW_CONFIDENCE = "low_confidence"
    UNUSUAL_PATTERN = "unusual_pattern"
    POTENTIAL_DATA_LOSS = "potential_data_loss"
    USER_REVIEW = "user_review"
    PRESERVED_DESPITE_LOW_CONFIDENCE = "preserved_despite_low_confidence"
    FALLBACK_USED = "fallback_used"


# =============================================================================
# Failure and Recovery
# =============================================================================

class FailureKind(str, Enum):
    """Taxonomy of operation failures routed to the fallback coordinator."""

    AI_RESPONSE_INVALID = "ai_response_invalid"
    AI_TIMEOUT = "ai_timeout"
    AI_ERROR = "ai_error"
    VALIDATION_FAILED = "validation_failed"
    CONTENT_LOSS_DETECTED = "content_loss_detected"
    OPERATION_ERROR = "operation_error"


class StepMethod(str, Enum):
    """How a step produces its result."""

    HYBRID = "hybrid"                    # AI first, heuristic fallback available
    TRANSFORMATION = "transformation"    # AI rewrite of text; no safe substitute
    PATTERN = "pattern"                  # Applies hint patterns
    HEURISTIC = "heuristic"              # Deterministic only


class FallbackActionKind(str, Enum):
    """Bounded recovery actions."""

    CONTINUE = "continue"
    CONTINUE_WITH_WARNING = "continue_with_warning"
    RETRY_ONCE = "retry_once"
    FALLBACK_TO = "fallback_to"
    SKIP_STEP = "skip_step"
    SKIP_REMAINING_STEPS_IN_PHASE = "skip_remaining_steps_in_phase"
    ROLLBACK_PHASE = "rollback_phase"
    HALT_PIPELINE = "halt_pipeline"


class ConfidenceLevel(str, Enum):
    """Display bands for pipeline confidence."""

    HIGH = "high"
    GOOD = "good"
    MODERATE = "moderate"
    LOW = "low"
    VERY_LOW = "very_low"


class ChapterMarkerStyle(str, Enum):
    """How assembly marks chapter starts in the cleaned text."""

    NONE = "none"
    HTML_COMMENTS = "html_comments"      # <!-- CHAPTER: Title -->
    MARKDOWN_H1 = "markdown_h1"          # # Title
    MARKDOWN_H2 = "markdown_h2"          # ## Title
    TOKEN_STYLE = "token_style"          # <CHAPTER>Title</CHAPTER>

    def format(self, title: str) -> str:
        if self == ChapterMarkerStyle.HTML_COMMENTS:
            return f"<!-- CHAPTER: {title} -->"
        if self == ChapterMarkerStyle.MARKDOWN_H1:
            return f"# {title}"
        if self == ChapterMarkerStyle.MARKDOWN_H2:
            return f"## {title}"
        if self == ChapterMarkerStyle.TOKEN_STYLE:
            return f"<CHAPTER>{title}</CHAPTER>"
        return title
