"""Metadata extraction from the document's opening lines.

Extracts from the front of the document only:
- Title and author
- Publication date / year
- Publisher and ISBN
- Number of chapters (from the structure hints)
"""

import re
from typing import Optional

import structlog

from phaseclean.models.context import DocumentMetadata
from phaseclean.models.document import WorkingDocument, count_words
from phaseclean.models.enums import RegionType
from phaseclean.models.hints import StructureHints

logger = structlog.get_logger(__name__)

HEADER_LINES = 80


# =============================================================================
# Deterministic Extraction Patterns
# =============================================================================

ISBN_PATTERN = r"ISBN(?:-1[03])?:?\s*((?:97[89][\s-]?)?\d{1,5}[\s-]?\d{1,7}[\s-]?\d{1,7}[\s-]?[\dX])"

DATE_PATTERNS = [
    r"(?:January|February|March|April|May|June|July|August|September|October|November|December)\s+\d{1,2},?\s+\d{4}",
    r"\d{1,2}\s+(?:January|February|March|April|May|June|July|August|September|October|November|December),?\s+\d{4}",
    r"(?:©|\(c\)|Copyright)\s*(?:©\s*)?(\d{4})",
    r"(?:First published|Published)\s+(?:in\s+)?(\d{4})",
]

AUTHOR_PATTERNS = [
    r"^\s*(?:by|written by)\s+([A-Z][\w.'\-]+(?:\s+[A-Z][\w.'\-]+){0,3})\s*$",
    r"(?:Copyright|©)\s*(?:©\s*)?\d{4}\s+(?:by\s+)?([A-Z][\w.'\-]+(?:\s+[A-Z][\w.'\-]+){0,3})",
]

PUBLISHER_PATTERNS = [
    r"^\s*(?:Published by\s+)?([A-Z][\w&'\-]+(?:\s+[A-Z][\w&'\-]+)*\s+(?:Press|Publishing|Publishers|Books|House))\b",
]


# =============================================================================
# Helper Functions
# =============================================================================

def _first_match(patterns: list[str], text: str, flags: int = 0) -> Optional[str]:
    for pattern in patterns:
        match = re.search(pattern, text, flags)
        if match:
            return (match.group(1) if match.groups() else match.group(0)).strip()
    return None


def _extract_title(lines: list[str]) -> Optional[str]:
    """First substantial short line that is not boilerplate."""
    for line in lines[:20]:
        text = line.strip()
        if not text or count_words(text) > 12:
            continue
        if re.search(r"(?i)copyright|isbn|all rights reserved|contents|^by\s", text):
            continue
        if re.fullmatch(r"[\d\W]+", text):
            continue
        return text
    return None


# =============================================================================
# Main Extraction Function
# =============================================================================

def extract_metadata(document: WorkingDocument, hints: StructureHints) -> DocumentMetadata:
    """Extract bibliographic metadata.

    Args:
        document: Working document (before any removal).
        hints: Structure hints, used for chapter count and language.

    Returns:
        DocumentMetadata; fields that could not be found stay None.
    """
    header_lines = [line.text for line in document.lines[:HEADER_LINES]]
    header_text = "\n".join(header_lines)

    title = _extract_title(header_lines)
    author = _first_match(AUTHOR_PATTERNS, header_text, re.MULTILINE)
    publication_date = _first_match(DATE_PATTERNS, header_text)
    publisher = _first_match(PUBLISHER_PATTERNS, header_text, re.MULTILINE)
    isbn = _first_match([ISBN_PATTERN], header_text, re.IGNORECASE)
    chapters = len(hints.regions_of(RegionType.CHAPTER))

    metadata = DocumentMetadata(
        title=title,
        author=author,
        publication_date=publication_date,
        publisher=publisher,
        isbn=isbn.replace(" ", "") if isbn else None,
        language=hints.content_characteristics.language,
        chapters_detected=chapters,
    )

    logger.info(
        "metadata_extraction_complete",
        title=title,
        author=author,
        publication_date=publication_date,
        chapters=chapters,
    )
    return metadata
