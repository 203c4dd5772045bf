"""Structure assembly - chapter markers in the cleaned text."""

from dataclasses import dataclass

import structlog

from phaseclean.cleaning.detection import is_chapter_heading
from phaseclean.models.document import DocumentLine, WorkingDocument
from phaseclean.models.enums import ChapterMarkerStyle

logger = structlog.get_logger(__name__)


@dataclass
class AssemblyStats:
    markers_added: int = 0
    headings_replaced: int = 0


def add_chapter_markers(
    document: WorkingDocument,
    chapter_starts: list[int],
    style: ChapterMarkerStyle,
) -> tuple[WorkingDocument, AssemblyStats]:
    """Mark each chapter start with the configured marker.

    A chapter heading line is replaced by its marked form, so the heading's
    words survive inside the marker. When the chapter start line is body
    text, a marker line is inserted before it.

    Returns:
        Tuple of (new document, stats).
    """
    stats = AssemblyStats()
    if style == ChapterMarkerStyle.NONE or not chapter_starts:
        return document, stats

    starts = set(chapter_starts)
    output: list[DocumentLine] = []
    number = 0
    for line in document.lines:
        if line.start not in starts or line.is_blank:
            output.append(line)
            continue
        starts.discard(line.start)
        number += 1
        title = line.text.strip()
        if is_chapter_heading(title) and line.start == line.end:
            output.append(line.model_copy(update={"text": style.format(title)}))
            stats.headings_replaced += 1
        else:
            output.append(DocumentLine(start=line.start, end=line.start, text=style.format(f"Chapter {number}")))
            output.append(line)
            stats.markers_added += 1

    logger.info(
        "chapter_markers_added",
        style=style.value,
        replaced=stats.headings_replaced,
        inserted=stats.markers_added,
    )
    return document.with_lines(output), stats
