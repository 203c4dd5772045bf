"""Regex-based noise removal.

HYBRID APPROACH:
- Reconnaissance proposes the patterns (AI or heuristic)
- This module only applies them; it never decides what is noise
- Line patterns remove whole lines, inline patterns remove spans
- Chapter headings are never removed by a line pattern

PATTERNS APPLIED:
1. Page numbers ("42", "- 42 -", "Page 3 of 16")
2. Running headers and footers
3. Citations ("(Smith, 2020)", "[12]")
4. Footnote markers ("¹", "*", "†")
5. Special characters (control, zero-width, soft hyphens, ligatures)
"""

import re
import unicodedata
from dataclasses import dataclass, field

import structlog

from phaseclean.models.document import DocumentLine, WorkingDocument, count_words
from phaseclean.models.regions import LineRange, Pattern

logger = structlog.get_logger(__name__)


@dataclass
class PatternRemoval:
    """Lines one pattern removed."""
    pattern: Pattern
    removed: list[DocumentLine] = field(default_factory=list)

    @property
    def removal_count(self) -> int:
        return len(self.removed)

    @property
    def words_removed(self) -> int:
        return sum(line.word_count for line in self.removed)

    @property
    def lines_affected(self) -> tuple[int, ...]:
        return tuple(line.start for line in self.removed)


@dataclass
class LineRemovalResult:
    """Result of applying line patterns."""
    document: WorkingDocument
    removals: list[PatternRemoval] = field(default_factory=list)

    def removed_runs(self, min_length: int = 3) -> list[LineRange]:
        """Runs of consecutive removed original lines at least `min_length` long."""
        removed = sorted({n for r in self.removals for n in r.lines_affected})
        runs: list[LineRange] = []
        run_start = prev = None
        for number in removed + [None]:
            if number is not None and prev is not None and number == prev + 1:
                prev = number
                continue
            if run_start is not None and prev - run_start + 1 >= min_length:
                runs.append(LineRange(start=run_start, end=prev))
            run_start = prev = number
        return runs


@dataclass
class InlineMatch:
    """Inline matches of one pattern, keyed by original line number."""
    pattern: Pattern
    hits: dict[int, int] = field(default_factory=dict)
    words_removed: int = 0

    @property
    def removal_count(self) -> int:
        return sum(self.hits.values())

    @property
    def lines_affected(self) -> tuple[int, ...]:
        return tuple(sorted(self.hits))


# =============================================================================
# Line Patterns
# =============================================================================

def line_matches(pattern: Pattern, line: DocumentLine) -> bool:
    """Whether a line pattern matches the whole (stripped) line."""
    regex = pattern.compiled()
    if regex is None or line.is_blank:
        return False
    return regex.fullmatch(line.text.strip()) is not None


def remove_line_patterns(
    document: WorkingDocument,
    patterns: list[Pattern],
    protected: frozenset[int] = frozenset(),
) -> LineRemovalResult:
    """Remove whole lines matching any of the patterns.

    Args:
        document: Current working document.
        patterns: Line patterns, applied in order.
        protected: Original line numbers that must survive (chapter headings).

    Returns:
        LineRemovalResult with the new document and per-pattern removals.
    """
    result = LineRemovalResult(document=document)
    for pattern in patterns:
        if not pattern.is_regex:
            logger.debug("descriptive_pattern_skipped", kind=pattern.kind.value, matcher=pattern.matcher)
            continue
        new_document, removed = result.document.without(
            lambda line: line.start not in protected and line_matches(pattern, line)
        )
        result.document = new_document
        result.removals.append(PatternRemoval(pattern=pattern, removed=removed))
        logger.debug(
            "line_pattern_applied",
            kind=pattern.kind.value,
            matcher=pattern.matcher,
            removed=len(removed),
        )
    return result


# =============================================================================
# Inline Patterns
# =============================================================================

def match_inline_pattern(document: WorkingDocument, pattern: Pattern) -> InlineMatch:
    """Find inline matches without modifying the document.

    Pure, so several patterns can be matched concurrently.
    """
    found = InlineMatch(pattern=pattern)
    regex = pattern.compiled()
    if regex is None:
        return found
    for line in document.lines:
        matches = [m.group(0) for m in regex.finditer(line.text) if m.group(0)]
        if matches:
            found.hits[line.start] = len(matches)
            found.words_removed += sum(count_words(m) for m in matches)
    return found


_SPACE_BEFORE_PUNCT = re.compile(r"\s+([.,;:!?])")
_DOUBLE_SPACE = re.compile(r"[ \t]{2,}")


def _tidy_after_removal(text: str) -> str:
    return _DOUBLE_SPACE.sub(" ", _SPACE_BEFORE_PUNCT.sub(r"\1", text)).rstrip()


def apply_inline_patterns(document: WorkingDocument, patterns: list[Pattern]) -> WorkingDocument:
    """Strip inline pattern matches, in order, and tidy the spacing left behind."""
    compiled = [p.compiled() for p in patterns if p.is_regex]

    def strip(text: str) -> str:
        stripped = text
        for regex in compiled:
            stripped = regex.sub("", stripped)
        return stripped if stripped == text else _tidy_after_removal(stripped)

    return document.map_text(strip)


# =============================================================================
# Special Characters
# =============================================================================

LIGATURES = {
    "ﬀ": "ff",
    "ﬁ": "fi",
    "ﬂ": "fl",
    "ﬃ": "ffi",
    "ﬄ": "ffl",
    "ﬅ": "st",
    "ﬆ": "st",
}

_ZERO_WIDTH = re.compile("[\u200b\u200c\u200d\u2060\ufeff]")
_SOFT_HYPHEN = "\u00ad"
_REPLACEMENT_CHAR = "\ufffd"
_INNER_WHITESPACE = re.compile("[ \t\u00a0\u2000-\u200a\u202f\u205f\u3000]+")


def clean_special_characters(text: str) -> str:
    """Remove control and invisible characters, expand ligatures, collapse spaces.

    Printable punctuation, accented letters and symbols are preserved.
    """
    cleaned = _ZERO_WIDTH.sub("", text).replace(_SOFT_HYPHEN, "").replace(_REPLACEMENT_CHAR, "")
    for ligature, expansion in LIGATURES.items():
        cleaned = cleaned.replace(ligature, expansion)
    cleaned = "".join(
        ch for ch in cleaned
        if ch == "\t" or unicodedata.category(ch) != "Cc"
    )
    return _INNER_WHITESPACE.sub(" ", cleaned).strip()


def collapse_blank_lines(document: WorkingDocument, max_blank: int = 1) -> WorkingDocument:
    """Keep at most `max_blank` consecutive blank lines; trim leading/trailing blanks."""
    kept: list[DocumentLine] = []
    blank_run = 0
    for line in document.lines:
        if line.is_blank:
            blank_run += 1
            if blank_run > max_blank or not kept:
                continue
        else:
            blank_run = 0
        kept.append(line if not line.is_blank else line.model_copy(update={"text": ""}))
    while kept and kept[-1].is_blank:
        kept.pop()
    return document.with_lines(kept)
