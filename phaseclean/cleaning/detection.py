"""Heuristic reconnaissance - structure hints without an AI model.

HEURISTIC APPROACH:
- Keyword headings locate front matter, core content and back matter
- Repeated short lines (fuzzy-grouped) become running header patterns
- Regex counts propose page number, citation and footnote patterns
- Everything is reported with modest confidence; nothing is removed here
"""

import re
import statistics
from collections import Counter
from typing import Optional

import structlog
from rapidfuzz import fuzz

from phaseclean.models.document import WorkingDocument, count_words
from phaseclean.models.enums import (
    ContentType,
    DetectionMethod,
    EvidenceType,
    PatternKind,
    PatternStyle,
    RegionType,
)
from phaseclean.models.hints import ContentCharacteristics, StructureHints, StructureWarning
from phaseclean.models.regions import (
    DetectionEvidence,
    LineRange,
    Pattern,
    Region,
    link_overlaps,
)

logger = structlog.get_logger(__name__)

HEURISTIC_BASE_CONFIDENCE = 0.5
HEURISTIC_MAX_CONFIDENCE = 0.7
MIN_PATTERN_OCCURRENCES = 3
HEADER_SIMILARITY = 90


# =============================================================================
# Heading Keywords
# =============================================================================

FRONT_MATTER_KEYWORDS = (
    "table of contents", "contents", "foreword", "preface",
    "acknowledgments", "acknowledgements", "dedication", "copyright",
)

CORE_START_KEYWORDS = (
    "chapter 1", "chapter one", "chapter i", "part one", "part 1", "part i",
    "introduction", "prologue",
)

BACK_MATTER_HEADINGS: dict[str, RegionType] = {
    "bibliography": RegionType.BIBLIOGRAPHY,
    "references": RegionType.BIBLIOGRAPHY,
    "works cited": RegionType.BIBLIOGRAPHY,
    "index": RegionType.INDEX,
    "glossary": RegionType.GLOSSARY,
    "appendix": RegionType.APPENDIX,
    "appendices": RegionType.APPENDICES,
    "endnotes": RegionType.NOTES,
    "notes": RegionType.NOTES,
    "about the author": RegionType.ABOUT_AUTHOR,
    "colophon": RegionType.COLOPHON,
}

AUXILIARY_LIST_HEADINGS: dict[str, RegionType] = {
    "list of figures": RegionType.LIST_OF_FIGURES,
    "list of illustrations": RegionType.LIST_OF_FIGURES,
    "list of tables": RegionType.LIST_OF_TABLES,
    "list of abbreviations": RegionType.LIST_OF_ABBREVIATIONS,
    "abbreviations": RegionType.LIST_OF_ABBREVIATIONS,
}

CORE_START_WINDOW = 200       # Lines searched for the first core heading (minimum)
BACK_MATTER_WINDOW = 500      # Lines searched from the end for back matter headings


# =============================================================================
# Pattern Expressions
# =============================================================================

PAGE_NUMBER_ARABIC = r"^\s*\d{1,4}\s*$"
PAGE_NUMBER_ROMAN = r"^\s*[ivxlcdm]{1,7}\s*$"
PAGE_NUMBER_DECORATED = r"^\s*(?:-\s*\d{1,4}\s*-|\[\s*\d{1,4}\s*\])\s*$"
PAGE_OF_TOTAL = r"^\s*Page\s+\d+\s+of\s+\d+\s*$"

CHAPTER_HEADING = (
    r"^\s*(?:chapter|part)\s+(?:\d{1,3}|[ivxlc]{1,6}|one|two|three|four|five|six|seven|"
    r"eight|nine|ten|eleven|twelve)\b.{0,60}$"
)

CITATION_AUTHOR_YEAR = r"\((?:[A-Z][A-Za-z'\-]+(?: et al\.)?(?: (?:and|&) [A-Z][A-Za-z'\-]+)?,? \d{4}[a-z]?(?:, p+\. ?\d+(?:[-–]\d+)?)?(?:; )?)+\)"
CITATION_NUMERIC = r"\[\d{1,3}(?:\s*[,–-]\s*\d{1,3})*\]"
FOOTNOTE_SUPERSCRIPT = r"[⁰¹²³⁴⁵⁶⁷⁸⁹]+"
FOOTNOTE_SYMBOLIC = r"(?<=[A-Za-z.,;:])[*†‡§]+"

_CHAPTER_RE = re.compile(CHAPTER_HEADING, re.IGNORECASE)
_TOC_ENTRY_RE = re.compile(r"(?:\.{2,}|\s)\s*\d{1,4}\s*$")
_SENTENCE_END_RE = re.compile(r"[.!?][\"')\]]?\s")
_DIALOGUE_RE = re.compile(r"^\s*[\"“'‘]")
_LIST_RE = re.compile(r"^\s*(?:[-*•]|\d{1,2}[.)])\s+\S")
_MATH_RE = re.compile(r"[=∑∫√±≤≥∞]")


def is_chapter_heading(text: str) -> bool:
    return bool(_CHAPTER_RE.match(text.strip()))


def _heading_key(text: str) -> str:
    """Lowercased heading text without trailing punctuation."""
    return re.sub(r"[\s:.]+$", "", text.strip().lower())


def _is_heading_line(text: str) -> bool:
    stripped = text.strip()
    return 0 < len(stripped) <= 60 and not _TOC_ENTRY_RE.search(stripped)


# =============================================================================
# Region Detection
# =============================================================================

def find_core_start(document: WorkingDocument) -> Optional[int]:
    """First heading line that looks like the beginning of the main text."""
    window = max(CORE_START_WINDOW, int(document.line_count * 0.4))
    for line in document.lines[:window]:
        if not _is_heading_line(line.text):
            continue
        key = _heading_key(line.text)
        if any(key == kw or key.startswith(kw + " ") or key.startswith(kw + ":") for kw in CORE_START_KEYWORDS):
            return line.start
    return None


def find_back_matter_headings(document: WorkingDocument) -> list[tuple[int, RegionType]]:
    """Back matter headings in the last part of the document, in order."""
    total = document.last_line() or 0
    half = total // 2
    found = []
    for line in document.lines[-BACK_MATTER_WINDOW:]:
        if line.start <= half or not _is_heading_line(line.text):
            continue
        key = _heading_key(line.text)
        for keyword, region_type in BACK_MATTER_HEADINGS.items():
            if key == keyword or (keyword == "appendix" and key.startswith("appendix ")):
                found.append((line.start, region_type))
                break
    return found


def _find_front_headings(document: WorkingDocument, limit: int) -> list[tuple[int, str]]:
    found = []
    for line in document.lines:
        if line.start >= limit:
            break
        if not _is_heading_line(line.text):
            continue
        key = _heading_key(line.text)
        if key in FRONT_MATTER_KEYWORDS or key in AUXILIARY_LIST_HEADINGS:
            found.append((line.start, key))
    return found


def _section_end(start: int, next_starts: list[int], fallback_end: int) -> int:
    later = [s for s in next_starts if s > start]
    return (min(later) - 1) if later else fallback_end


def detect_regions(document: WorkingDocument) -> tuple[list[Region], Optional[LineRange]]:
    """Detect structural regions from headings.

    Returns:
        Tuple of (regions, core content range).
    """
    total = document.last_line() or 1
    regions: list[Region] = []

    core_start = find_core_start(document)
    back_headings = find_back_matter_headings(document)
    back_start = back_headings[0][0] if back_headings else None
    if core_start is not None and back_start is not None and back_start <= core_start:
        back_headings = [h for h in back_headings if h[0] > core_start]
        back_start = back_headings[0][0] if back_headings else None

    first = core_start or 1
    last = (back_start - 1) if back_start else total
    core_range = LineRange(start=first, end=max(first, last))

    def evidence(line: int, text: str) -> tuple[DetectionEvidence, ...]:
        return (DetectionEvidence(
            type=EvidenceType.KEYWORD_PRESENCE,
            description=f"Heading '{text}'",
            strength=HEURISTIC_BASE_CONFIDENCE,
            line_number=line,
        ),)

    if core_start is not None and core_start > 1:
        regions.append(Region(
            type=RegionType.FRONT_MATTER,
            line_range=LineRange(start=1, end=core_start - 1),
            confidence=HEURISTIC_BASE_CONFIDENCE,
            detection_method=DetectionMethod.HEURISTIC,
            evidence=evidence(core_start, "core start"),
        ))
        front_headings = _find_front_headings(document, core_start)
        starts = [h[0] for h in front_headings]
        for line_no, key in front_headings:
            if key in ("contents", "table of contents"):
                region_type = RegionType.TABLE_OF_CONTENTS
            elif key in AUXILIARY_LIST_HEADINGS:
                region_type = AUXILIARY_LIST_HEADINGS[key]
            else:
                continue
            regions.append(Region(
                type=region_type,
                line_range=LineRange(start=line_no, end=_section_end(line_no, starts, core_start - 1)),
                confidence=HEURISTIC_BASE_CONFIDENCE,
                detection_method=DetectionMethod.HEURISTIC,
                evidence=evidence(line_no, key),
            ))

    regions.append(Region(
        type=RegionType.CORE_CONTENT,
        line_range=core_range,
        confidence=HEURISTIC_BASE_CONFIDENCE,
        detection_method=DetectionMethod.HEURISTIC,
    ))

    chapter_lines = [
        line.start for line in document.lines
        if core_range.contains(line.start) and is_chapter_heading(line.text)
    ]
    for line_no in chapter_lines:
        regions.append(Region(
            type=RegionType.CHAPTER,
            line_range=LineRange(start=line_no, end=_section_end(line_no, chapter_lines, core_range.end)),
            confidence=HEURISTIC_BASE_CONFIDENCE,
            detection_method=DetectionMethod.HEURISTIC,
        ))

    if back_start is not None:
        regions.append(Region(
            type=RegionType.BACK_MATTER,
            line_range=LineRange(start=back_start, end=total),
            confidence=HEURISTIC_BASE_CONFIDENCE,
            detection_method=DetectionMethod.HEURISTIC,
        ))
        starts = [h[0] for h in back_headings]
        for line_no, region_type in back_headings:
            regions.append(Region(
                type=region_type,
                line_range=LineRange(start=line_no, end=_section_end(line_no, starts, total)),
                confidence=HEURISTIC_BASE_CONFIDENCE,
                detection_method=DetectionMethod.HEURISTIC,
            ))

    return link_overlaps(regions), (core_range if core_start or back_start else None)


# =============================================================================
# Pattern Detection
# =============================================================================

def _line_pattern(
    document: WorkingDocument,
    kind: PatternKind,
    style: PatternStyle,
    expression: str,
    flags: int = 0,
    confidence: float = 0.7,
) -> Optional[Pattern]:
    regex = re.compile(expression, flags)
    matches = [line.text.strip() for line in document.lines if regex.fullmatch(line.text.strip())]
    if len(matches) < MIN_PATTERN_OCCURRENCES:
        return None
    matcher = expression if not flags & re.IGNORECASE else f"(?i){expression}"
    return Pattern(
        kind=kind,
        style=style,
        matcher=matcher,
        samples=tuple(matches[:5]),
        confidence=confidence,
        estimated_count=len(matches),
        detection_method=DetectionMethod.PATTERN_MATCHING,
    )


def _inline_pattern(
    document: WorkingDocument,
    kind: PatternKind,
    style: PatternStyle,
    expression: str,
    confidence: float = 0.65,
) -> Optional[Pattern]:
    regex = re.compile(expression)
    matches = [m.group(0) for line in document.lines for m in regex.finditer(line.text)]
    if len(matches) < MIN_PATTERN_OCCURRENCES:
        return None
    return Pattern(
        kind=kind,
        style=style,
        matcher=expression,
        samples=tuple(dict.fromkeys(matches))[:5],
        confidence=confidence,
        estimated_count=len(matches),
        detection_method=DetectionMethod.PATTERN_MATCHING,
    )


def detect_running_headers(document: WorkingDocument, min_count: int = MIN_PATTERN_OCCURRENCES) -> list[Pattern]:
    """Find short lines that repeat across the document (running headers).

    Numbers are normalized away before counting, so "12 THE TITLE" and
    "14 THE TITLE" group together. Near-identical keys (OCR noise) are
    merged with rapidfuzz.
    """
    counts: Counter[str] = Counter()
    raw_samples: dict[str, str] = {}
    for line in document.lines:
        text = line.text.strip()
        if not 3 <= len(text) <= 80 or count_words(text) > 10:
            continue
        if is_chapter_heading(text):
            continue
        key = re.sub(r"\d+", "#", re.sub(r"\s+", " ", text))
        if not re.search(r"[A-Za-z]{3,}", key):
            continue
        counts[key] += 1
        raw_samples.setdefault(key, text)

    groups: list[tuple[str, int]] = []
    for key, count in counts.most_common():
        for i, (group_key, group_count) in enumerate(groups):
            if fuzz.ratio(key, group_key) >= HEADER_SIMILARITY:
                groups[i] = (group_key, group_count + count)
                break
        else:
            groups.append((key, count))

    patterns = []
    for key, count in groups:
        if count < min_count:
            continue
        body = re.escape(key).replace("\\#", r"\d+").replace("#", r"\d+")
        patterns.append(Pattern(
            kind=PatternKind.HEADER,
            style=PatternStyle.RUNNING_TEXT,
            matcher=rf"^\s*{body}\s*$",
            samples=(raw_samples[key],),
            confidence=0.65,
            estimated_count=count,
            detection_method=DetectionMethod.HEURISTIC,
        ))
    return patterns


def detect_patterns(document: WorkingDocument) -> list[Pattern]:
    """Propose every pattern kind from line and inline regex counts."""
    candidates = [
        _line_pattern(document, PatternKind.PAGE_NUMBER, PatternStyle.ARABIC, PAGE_NUMBER_ARABIC),
        _line_pattern(document, PatternKind.PAGE_NUMBER, PatternStyle.ROMAN, PAGE_NUMBER_ROMAN,
                      flags=re.IGNORECASE, confidence=0.6),
        _line_pattern(document, PatternKind.PAGE_NUMBER, PatternStyle.DECORATED, PAGE_NUMBER_DECORATED),
        _line_pattern(document, PatternKind.PAGE_NUMBER, PatternStyle.PAGE_OF_TOTAL, PAGE_OF_TOTAL,
                      flags=re.IGNORECASE, confidence=0.8),
        _line_pattern(document, PatternKind.CHAPTER_HEADING, PatternStyle.NUMBERED_WORD, CHAPTER_HEADING,
                      flags=re.IGNORECASE, confidence=0.6),
        _inline_pattern(document, PatternKind.CITATION, PatternStyle.AUTHOR_YEAR, CITATION_AUTHOR_YEAR),
        _inline_pattern(document, PatternKind.CITATION, PatternStyle.NUMERIC_BRACKET, CITATION_NUMERIC),
        _inline_pattern(document, PatternKind.FOOTNOTE_MARKER, PatternStyle.SUPERSCRIPT, FOOTNOTE_SUPERSCRIPT),
        _inline_pattern(document, PatternKind.FOOTNOTE_MARKER, PatternStyle.SYMBOLIC, FOOTNOTE_SYMBOLIC,
                        confidence=0.6),
    ]
    patterns = [p for p in candidates if p is not None]
    patterns.extend(detect_running_headers(document))
    return patterns


# =============================================================================
# Characteristics and Content Type
# =============================================================================

def measure_characteristics(document: WorkingDocument) -> ContentCharacteristics:
    """Gather text statistics used by later phases."""
    non_blank = [line.text for line in document.lines if not line.is_blank]
    if not non_blank:
        return ContentCharacteristics()

    words = document.word_count
    sentences = sum(len(_SENTENCE_END_RE.findall(text + " ")) for text in non_blank) or 1
    paragraphs = len(document.paragraphs()) or 1
    hyphen_breaks = sum(1 for text in non_blank if re.search(r"[A-Za-z]-$", text.rstrip()))
    unterminated = sum(1 for text in non_blank if not re.search(r"[.!?:;\"')\]]$", text.rstrip()))

    return ContentCharacteristics(
        average_sentence_length=round(words / sentences, 2),
        average_paragraph_length=round(words / paragraphs, 2),
        median_line_length=float(statistics.median(len(text) for text in non_blank)),
        has_dialogue=sum(1 for t in non_blank if _DIALOGUE_RE.match(t)) >= max(5, len(non_blank) // 20),
        has_lists=sum(1 for t in non_blank if _LIST_RE.match(t)) >= 5,
        has_tables=sum(1 for t in non_blank if t.count("|") >= 2 or "\t" in t) >= 3,
        has_math=sum(1 for t in non_blank if _MATH_RE.search(t)) >= 3,
        has_verse=False,
        looks_like_ocr=hyphen_breaks >= 3 or unterminated > len(non_blank) * 0.5,
        language="en",
    )


def guess_content_type(
    patterns: list[Pattern],
    regions: list[Region],
    characteristics: ContentCharacteristics,
) -> tuple[ContentType, float]:
    """Rough content type guess from apparatus and dialogue signals."""
    has_citations = any(p.kind == PatternKind.CITATION for p in patterns)
    has_bibliography = any(r.type == RegionType.BIBLIOGRAPHY for r in regions)
    if has_citations and has_bibliography:
        return ContentType.ACADEMIC, 0.6
    if has_citations or has_bibliography:
        return ContentType.ACADEMIC, 0.45
    if characteristics.has_math:
        return ContentType.SCIENTIFIC_TECHNICAL, 0.45
    if characteristics.has_dialogue:
        return ContentType.PROSE_FICTION, 0.5
    return ContentType.PROSE_NON_FICTION, 0.4


# =============================================================================
# Entry Point
# =============================================================================

def analyze_structure_heuristic(
    document: WorkingDocument,
    document_id: str,
    user_content_type: ContentType = ContentType.AUTO,
) -> StructureHints:
    """Produce StructureHints without an AI model.

    Args:
        document: Original document.
        document_id: Identifier of the document.
        user_content_type: Content type chosen by the user.

    Returns:
        Hints with analysis_method=heuristic.
    """
    regions, core_range = detect_regions(document)
    patterns = detect_patterns(document)
    characteristics = measure_characteristics(document)
    detected_type, type_confidence = guess_content_type(patterns, regions, characteristics)

    confidence = HEURISTIC_BASE_CONFIDENCE
    if find_core_start(document) is not None:
        confidence += 0.1
    if sum(1 for r in regions if r.type == RegionType.CHAPTER) >= 2:
        confidence += 0.05
    if patterns:
        confidence += 0.05
    confidence = min(confidence, HEURISTIC_MAX_CONFIDENCE)

    warnings = [StructureWarning(message="Structure derived from heuristics; no AI analysis was used")]
    if core_range is None:
        warnings.append(StructureWarning(message="No core content boundary headings found"))

    logger.info(
        "heuristic_reconnaissance_complete",
        regions=len(regions),
        patterns=len(patterns),
        core_range=str(core_range) if core_range else None,
        confidence=round(confidence, 2),
    )

    return StructureHints(
        document_id=document_id,
        user_selected_content_type=user_content_type,
        detected_content_type=detected_type,
        content_type_confidence=type_confidence,
        total_lines=max(document.line_count, 1),
        total_words=document.word_count,
        regions=tuple(regions),
        patterns=tuple(patterns),
        content_characteristics=characteristics,
        core_content_range=core_range,
        overall_confidence=round(confidence, 2),
        warnings=tuple(warnings),
        analysis_method=DetectionMethod.HEURISTIC,
    )
