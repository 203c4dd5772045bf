"""Paragraph reflow and paragraph-length optimization.

Reflow joins hard-wrapped lines into one line per paragraph. The merged
line keeps the original span (`start..end`) of the lines it joined, which
is how the optimization checkpoint detects a paragraph that swallowed a
chapter start.
"""

import re
from dataclasses import dataclass
from typing import Optional

import structlog

from phaseclean.cleaning.chunking import ReflowChunk
from phaseclean.cleaning.detection import is_chapter_heading
from phaseclean.models.document import DocumentLine, WorkingDocument, count_words

logger = structlog.get_logger(__name__)

_HYPHEN_BREAK = re.compile(r"([A-Za-z])-$")
_LIST_ITEM = re.compile(r"^\s*(?:[-*•]|\d{1,3}[.)]|[a-z][.)])\s+\S")
_TERMINAL = re.compile(r"[.!?:;\"')\]]$")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+(?=[A-Z\"“(])")


@dataclass
class ReflowStats:
    """Counts reported by a reflow pass."""
    lines_before: int = 0
    lines_after: int = 0
    words_before: int = 0
    words_after: int = 0
    hyphens_joined: int = 0


def is_heading_like(line: DocumentLine) -> bool:
    """Short line without terminal punctuation, or a chapter heading."""
    text = line.text.strip()
    if is_chapter_heading(text):
        return True
    return 0 < count_words(text) <= 8 and not _TERMINAL.search(text) and text[:1].isupper()


def _join(first: str, second: str) -> tuple[str, bool]:
    """Join two wrapped lines, repairing a hyphenated word break."""
    left = first.rstrip()
    right = second.strip()
    if _HYPHEN_BREAK.search(left) and right[:1].islower():
        return left[:-1] + right, True
    return f"{left} {right}", False


def _merge(lines: list[DocumentLine], stats: ReflowStats) -> DocumentLine:
    text = lines[0].text.strip()
    for line in lines[1:]:
        text, joined = _join(text, line.text)
        stats.hyphens_joined += int(joined)
    return DocumentLine(start=lines[0].start, end=lines[-1].end, text=text)


# =============================================================================
# Heuristic Reflow
# =============================================================================

def reflow_heuristic(
    document: WorkingDocument,
    chapter_starts: list[int],
) -> tuple[WorkingDocument, ReflowStats]:
    """Join wrapped lines within each paragraph.

    Headings and list items stay on their own lines, and a run is always
    broken before a chapter start.

    Returns:
        Tuple of (reflowed document, stats).
    """
    starts = set(chapter_starts)
    stats = ReflowStats(lines_before=document.line_count, words_before=document.word_count)
    output: list[DocumentLine] = []
    run: list[DocumentLine] = []

    def flush() -> None:
        if run:
            output.append(_merge(run, stats) if len(run) > 1 else run[0])
            run.clear()

    for line in document.lines:
        if line.is_blank:
            flush()
            output.append(line)
            continue
        standalone = is_heading_like(line) or bool(_LIST_ITEM.match(line.text))
        if line.start in starts or standalone:
            flush()
        if standalone:
            output.append(line)
            continue
        run.append(line)
    flush()

    reflowed = document.with_lines(output)
    stats.lines_after = reflowed.line_count
    stats.words_after = reflowed.word_count
    logger.info(
        "heuristic_reflow_complete",
        lines_before=stats.lines_before,
        lines_after=stats.lines_after,
        hyphens_joined=stats.hyphens_joined,
    )
    return reflowed, stats


# =============================================================================
# AI Reflow Merge
# =============================================================================

def split_paragraphs(text: str) -> list[str]:
    """Split reflowed text on blank lines into single-line paragraphs."""
    blocks = re.split(r"\n\s*\n", text.strip())
    return [" ".join(block.split()) for block in blocks if block.strip()]


def align_reflowed_chunk(chunk: ReflowChunk, reflowed_text: str) -> list[DocumentLine]:
    """Map reflowed paragraphs back onto the original lines they came from.

    Word offsets in the output are scaled onto the chunk's input words; each
    output paragraph inherits the span of the input lines its words fall in.
    Output paragraphs are separated by blank lines.
    """
    source = chunk.lines
    offsets: list[int] = []
    total_in = 0
    for line in source:
        offsets.append(total_in)
        total_in += line.word_count
    paragraphs = split_paragraphs(reflowed_text)
    total_out = sum(count_words(p) for p in paragraphs) or 1
    scale = total_in / total_out

    def line_at(word_offset: float) -> DocumentLine:
        index = 0
        for i, offset in enumerate(offsets):
            if offset <= word_offset:
                index = i
        return source[index]

    aligned: list[DocumentLine] = []
    consumed = 0
    for i, paragraph in enumerate(paragraphs):
        words = count_words(paragraph)
        first = line_at(consumed * scale)
        last = line_at(max(consumed + words - 1, consumed) * scale)
        consumed += words
        if i:
            aligned.append(DocumentLine(start=first.start, end=first.start, text=""))
        aligned.append(DocumentLine(start=first.start, end=max(last.end, first.start), text=paragraph))
    return aligned


def merge_reflowed_chunks(
    document: WorkingDocument,
    replacements: dict[int, list[DocumentLine]],
    chunks: list[ReflowChunk],
) -> WorkingDocument:
    """Replace each chunk's span with its aligned lines.

    Chunks without a replacement (skipped or failed) keep their lines.
    """
    by_first = {chunk.first_line: chunk for chunk in chunks if chunk.index in replacements}
    output: list[DocumentLine] = []
    skip_until: Optional[int] = None
    for line in document.lines:
        if skip_until is not None and line.start <= skip_until:
            continue
        skip_until = None
        chunk = by_first.get(line.start)
        if chunk is not None:
            output.extend(replacements[chunk.index])
            skip_until = chunk.last_line
            continue
        output.append(line)
    return document.with_lines(output)


# =============================================================================
# Paragraph Length
# =============================================================================

def split_sentences(text: str) -> list[str]:
    return [s for s in _SENTENCE_SPLIT.split(text) if s.strip()]


def split_long_paragraphs(
    document: WorkingDocument,
    max_words: int,
) -> tuple[WorkingDocument, int]:
    """Split paragraphs longer than `max_words` at sentence boundaries.

    Only single-line (already reflowed) paragraphs are split. Pieces inherit
    the original span of the paragraph they came from, so the split never
    creates a new chapter crossing. Words are never changed.

    Returns:
        Tuple of (new document, number of paragraphs split).
    """
    output: list[DocumentLine] = []
    split_count = 0
    for line in document.lines:
        if line.word_count <= max_words:
            output.append(line)
            continue
        pieces: list[str] = []
        current: list[str] = []
        current_words = 0
        for sentence in split_sentences(line.text):
            words = count_words(sentence)
            if current and current_words + words > max_words:
                pieces.append(" ".join(current))
                current, current_words = [], 0
            current.append(sentence.strip())
            current_words += words
        if current:
            pieces.append(" ".join(current))
        if len(pieces) <= 1:
            output.append(line)
            continue
        split_count += 1
        for i, piece in enumerate(pieces):
            if i:
                output.append(DocumentLine(start=line.start, end=line.start, text=""))
            output.append(line.model_copy(update={"text": piece}))
    return document.with_lines(output), split_count
