"""Working document representation.

The working document is an immutable tuple of lines. Each line remembers
which ORIGINAL lines it came from (`start..end`), so structure hints stay
addressable after removals and paragraph merges. A snapshot is simply the
document value itself, which makes rollback exact.
"""

from typing import Callable, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from phaseclean.models.regions import LineRange


def count_words(text: str) -> int:
    """Count whitespace-separated words."""
    return len(text.split())


class DocumentLine(BaseModel):
    """One line of the working document."""

    model_config = ConfigDict(frozen=True)

    start: int = Field(ge=1, description="First original line this line covers")
    end: int = Field(ge=1, description="Last original line this line covers")
    text: str = ""

    @property
    def is_blank(self) -> bool:
        return not self.text.strip()

    @property
    def word_count(self) -> int:
        return count_words(self.text)

    @property
    def original_range(self) -> LineRange:
        return LineRange(start=self.start, end=self.end)

    def spans(self, line: int) -> bool:
        """Whether the line merges content from before AND at `line`."""
        return self.start < line <= self.end


class WorkingDocument(BaseModel):
    """Immutable document state passed between phases."""

    model_config = ConfigDict(frozen=True)

    lines: tuple[DocumentLine, ...] = ()

    @classmethod
    def from_text(cls, text: str) -> "WorkingDocument":
        raw = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
        return cls(lines=tuple(
            DocumentLine(start=i, end=i, text=line) for i, line in enumerate(raw, start=1)
        ))

    # =========================================================================
    # Measurements
    # =========================================================================

    @property
    def text(self) -> str:
        return "\n".join(line.text for line in self.lines)

    @property
    def word_count(self) -> int:
        return sum(line.word_count for line in self.lines)

    @property
    def line_count(self) -> int:
        return len(self.lines)

    def lines_in(self, line_range: LineRange) -> list[DocumentLine]:
        """Lines whose original span starts inside the range."""
        return [line for line in self.lines if line_range.contains(line.start)]

    def words_in(self, line_range: LineRange) -> int:
        return sum(line.word_count for line in self.lines_in(line_range))

    def text_in(self, line_range: LineRange) -> str:
        return "\n".join(line.text for line in self.lines_in(line_range))

    def first_line(self) -> Optional[int]:
        return self.lines[0].start if self.lines else None

    def last_line(self) -> Optional[int]:
        return self.lines[-1].end if self.lines else None

    # =========================================================================
    # Transformations (each returns a new document)
    # =========================================================================

    def without(self, predicate: Callable[[DocumentLine], bool]) -> tuple["WorkingDocument", list[DocumentLine]]:
        """Drop lines matching `predicate`.

        Returns:
            Tuple of (new document, removed lines).
        """
        kept: list[DocumentLine] = []
        removed: list[DocumentLine] = []
        for line in self.lines:
            (removed if predicate(line) else kept).append(line)
        return WorkingDocument(lines=tuple(kept)), removed

    def without_range(self, line_range: LineRange) -> tuple["WorkingDocument", list[DocumentLine]]:
        return self.without(lambda line: line_range.contains(line.start))

    def with_lines(self, lines: Iterable[DocumentLine]) -> "WorkingDocument":
        return WorkingDocument(lines=tuple(lines))

    def map_text(self, transform: Callable[[str], str]) -> "WorkingDocument":
        """Apply `transform` to every line's text, keeping original spans."""
        return WorkingDocument(lines=tuple(
            line.model_copy(update={"text": transform(line.text)}) for line in self.lines
        ))

    def paragraphs(self) -> list[list[DocumentLine]]:
        """Group consecutive non-blank lines into paragraphs."""
        groups: list[list[DocumentLine]] = []
        current: list[DocumentLine] = []
        for line in self.lines:
            if line.is_blank:
                if current:
                    groups.append(current)
                    current = []
            else:
                current.append(line)
        if current:
            groups.append(current)
        return groups

    def lines_spanning(self, boundaries: Iterable[int]) -> list[tuple[DocumentLine, int]]:
        """Lines that merge content across any of the given original line numbers."""
        found = []
        marks = sorted(set(boundaries))
        for line in self.lines:
            if line.start == line.end:
                continue
            for mark in marks:
                if line.spans(mark):
                    found.append((line, mark))
                    break
        return found
