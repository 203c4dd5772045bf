"""Heuristic boundary detection and section line removal.

HEURISTIC APPROACH:
- Start from the boundaries the structure hints imply
- Confirm or replace them with keyword headings found in the current text
- Chapter starts come from chapter regions plus chapter-heading lines
"""

from dataclasses import dataclass, field
from typing import Optional

import structlog

from phaseclean.cleaning.detection import (
    find_back_matter_headings,
    find_core_start,
    is_chapter_heading,
)
from phaseclean.models.document import DocumentLine, WorkingDocument
from phaseclean.models.enums import RegionType
from phaseclean.models.hints import StructureHints
from phaseclean.models.regions import LineRange, Region

logger = structlog.get_logger(__name__)

KEYWORD_BOUNDARY_CONFIDENCE = 0.7
AGREEMENT_TOLERANCE = 20


@dataclass
class BoundaryProposal:
    """Boundaries proposed for the structural phase (original line numbers)."""
    front_matter_end: Optional[int] = None
    front_confidence: float = 0.0
    back_matter_start: Optional[int] = None
    back_confidence: float = 0.0
    index_start: Optional[int] = None
    index_confidence: float = 0.0
    chapter_starts: list[int] = field(default_factory=list)
    method: str = "heuristic"


def _region_confidence(hints: StructureHints, *types: RegionType) -> float:
    best = hints.best_region(*types)
    return best.confidence if best else 0.0


def _agree(first: Optional[int], second: Optional[int]) -> bool:
    return first is not None and second is not None and abs(first - second) <= AGREEMENT_TOLERANCE


def chapter_starts(document: WorkingDocument, hints: StructureHints) -> list[int]:
    """Original line numbers where chapters begin and that are still present."""
    present = {line.start for line in document.lines}
    starts = {r.line_range.start for r in hints.regions_of(RegionType.CHAPTER, RegionType.PART_DIVISION)}
    starts.update(line.start for line in document.lines if is_chapter_heading(line.text))
    core = hints.core_range()
    return sorted(
        s for s in starts
        if s in present and (core is None or core.contains(s))
    )


def detect_boundaries_heuristic(document: WorkingDocument, hints: StructureHints) -> BoundaryProposal:
    """Propose front/back/index boundaries without an AI model.

    Hinted boundaries are kept when keyword headings agree with them (or
    when no heading is found); a heading-only boundary gets a fixed
    keyword confidence.
    """
    proposal = BoundaryProposal(chapter_starts=chapter_starts(document, hints))

    hinted_front = hints.front_matter_end()
    core_heading = find_core_start(document)
    keyword_front = core_heading - 1 if core_heading and core_heading > 1 else None
    hint_front_conf = max(
        _region_confidence(hints, RegionType.CORE_CONTENT),
        _region_confidence(hints, RegionType.FRONT_MATTER),
    )
    if hinted_front is not None:
        proposal.front_matter_end = hinted_front
        proposal.front_confidence = hint_front_conf
        if _agree(hinted_front, keyword_front):
            proposal.front_confidence = max(hint_front_conf, KEYWORD_BOUNDARY_CONFIDENCE)
    elif keyword_front is not None:
        proposal.front_matter_end = keyword_front
        proposal.front_confidence = KEYWORD_BOUNDARY_CONFIDENCE

    hinted_back = hints.back_matter_start()
    back_headings = find_back_matter_headings(document)
    keyword_back = back_headings[0][0] if back_headings else None
    hint_back_conf = max(
        _region_confidence(hints, RegionType.CORE_CONTENT),
        _region_confidence(hints, RegionType.BACK_MATTER),
    )
    if hinted_back is not None:
        proposal.back_matter_start = hinted_back
        proposal.back_confidence = hint_back_conf
        if _agree(hinted_back, keyword_back):
            proposal.back_confidence = max(hint_back_conf, KEYWORD_BOUNDARY_CONFIDENCE)
    elif keyword_back is not None:
        proposal.back_matter_start = keyword_back
        proposal.back_confidence = KEYWORD_BOUNDARY_CONFIDENCE

    index_region = hints.best_region(RegionType.INDEX)
    index_heading = next((line for line, kind in back_headings if kind == RegionType.INDEX), None)
    if index_region is not None:
        proposal.index_start = index_region.line_range.start
        proposal.index_confidence = index_region.confidence
    elif index_heading is not None:
        proposal.index_start = index_heading
        proposal.index_confidence = KEYWORD_BOUNDARY_CONFIDENCE

    logger.info(
        "heuristic_boundaries_proposed",
        front_matter_end=proposal.front_matter_end,
        back_matter_start=proposal.back_matter_start,
        index_start=proposal.index_start,
        chapters=len(proposal.chapter_starts),
    )
    return proposal


# =============================================================================
# Section Removal
# =============================================================================

def remove_lines_in(
    document: WorkingDocument,
    line_range: LineRange,
    protected: frozenset[int] = frozenset(),
) -> tuple[WorkingDocument, list[DocumentLine]]:
    """Drop every line whose original start falls in `line_range`.

    Returns:
        Tuple of (new document, removed lines).
    """
    return document.without(
        lambda line: line_range.contains(line.start) and line.start not in protected
    )


def still_present(document: WorkingDocument, regions: list[Region]) -> list[Region]:
    """Regions that still have at least one line in the document."""
    return [r for r in regions if document.lines_in(r.line_range)]
