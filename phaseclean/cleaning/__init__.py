"""Cleaning operations - deterministic building blocks used by the phases.

HYBRID APPROACH:
- AI answers (when available) decide WHERE structure lies
- These functions do the actual cutting, joining and marking
- Each one also serves as the heuristic fallback when AI cannot be trusted

All functions take and return immutable WorkingDocument values, so a
failed step leaves the previous document untouched.
"""

from phaseclean.cleaning.assembly import add_chapter_markers
from phaseclean.cleaning.boundaries import (
    BoundaryProposal,
    remove_lines_in,
    chapter_starts,
    detect_boundaries_heuristic,
    still_present,
)
from phaseclean.cleaning.chunking import (
    ChunkingConfig,
    ReflowChunk,
    build_excerpt,
    chunk_paragraphs,
    count_tokens,
)
from phaseclean.cleaning.detection import analyze_structure_heuristic
from phaseclean.cleaning.metadata import extract_metadata
from phaseclean.cleaning.reflow import (
    align_reflowed_chunk,
    merge_reflowed_chunks,
    reflow_heuristic,
    split_long_paragraphs,
)
from phaseclean.cleaning.review import ReviewAssessment, ReviewFinding, review_heuristic
from phaseclean.cleaning.text_cleaner import (
    apply_inline_patterns,
    clean_special_characters,
    collapse_blank_lines,
    match_inline_pattern,
    remove_line_patterns,
)

__all__ = [
    # Reconnaissance
    "analyze_structure_heuristic",
    # Metadata
    "extract_metadata",
    # Boundaries
    "BoundaryProposal",
    "remove_lines_in",
    "chapter_starts",
    "detect_boundaries_heuristic",
    "still_present",
    # Pattern removal
    "remove_line_patterns",
    "match_inline_pattern",
    "apply_inline_patterns",
    "clean_special_characters",
    "collapse_blank_lines",
    # Chunking and reflow
    "ChunkingConfig",
    "ReflowChunk",
    "build_excerpt",
    "chunk_paragraphs",
    "count_tokens",
    "align_reflowed_chunk",
    "merge_reflowed_chunks",
    "reflow_heuristic",
    "split_long_paragraphs",
    # Assembly and review
    "add_chapter_markers",
    "ReviewAssessment",
    "ReviewFinding",
    "review_heuristic",
]
