"""Region and pattern value types produced by reconnaissance.

Every type here is frozen: reconnaissance creates them once and later
phases only read them.
"""

import re
import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from phaseclean.models.enums import (
    DetectionMethod,
    EvidenceType,
    PatternKind,
    PatternStyle,
    RegionType,
)

# Regions above this confidence must declare overlaps with equally trusted regions.
HIGH_OVERLAP_CONFIDENCE = 0.7


def new_id(prefix: str) -> str:
    """Generate a short prefixed identifier (e.g., 'region_3f2a9c1b')."""
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


class LineRange(BaseModel):
    """Inclusive, 1-indexed range of original document lines."""

    model_config = ConfigDict(frozen=True)

    start: int = Field(ge=1, description="First line (1-indexed)")
    end: int = Field(ge=1, description="Last line (inclusive)")

    @model_validator(mode="after")
    def _check_order(self) -> "LineRange":
        if self.start > self.end:
            raise ValueError(f"line range start {self.start} is after end {self.end}")
        return self

    @property
    def count(self) -> int:
        return self.end - self.start + 1

    def contains(self, line: int) -> bool:
        return self.start <= line <= self.end

    def contains_range(self, other: "LineRange") -> bool:
        return self.start <= other.start and other.end <= self.end

    def overlaps(self, other: "LineRange") -> bool:
        return not (self.end < other.start or self.start > other.end)

    def intersection(self, other: "LineRange") -> Optional["LineRange"]:
        if not self.overlaps(other):
            return None
        return LineRange(start=max(self.start, other.start), end=min(self.end, other.end))

    def widened(self, tolerance: int) -> "LineRange":
        return LineRange(start=max(1, self.start - tolerance), end=self.end + tolerance)

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


class DetectionEvidence(BaseModel):
    """A piece of evidence supporting a detection."""

    model_config = ConfigDict(frozen=True)

    type: EvidenceType
    description: str = Field(max_length=500)
    strength: float = Field(default=0.5, ge=0.0, le=1.0)
    line_number: Optional[int] = Field(None, ge=1)
    matched_text: Optional[str] = None


class Region(BaseModel):
    """A detected contiguous structural region."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("region"))
    type: RegionType
    line_range: LineRange
    confidence: float = Field(ge=0.0, le=1.0)
    detection_method: DetectionMethod = DetectionMethod.AI_ANALYSIS
    evidence: tuple[DetectionEvidence, ...] = ()
    overlaps_with: tuple[str, ...] = Field(
        default=(),
        description="IDs of regions this one overlaps",
    )

    @property
    def line_count(self) -> int:
        return self.line_range.count

    def share_of(self, total_lines: int) -> float:
        """Fraction of the document this region covers."""
        if total_lines <= 0:
            return 0.0
        return self.line_count / total_lines


class Pattern(BaseModel):
    """A textual pattern detected across the document."""

    model_config = ConfigDict(frozen=True)

    kind: PatternKind
    style: PatternStyle = PatternStyle.OTHER
    matcher: str = Field(min_length=1, description="Regex (when is_regex) or description")
    is_regex: bool = True
    samples: tuple[str, ...] = ()
    confidence: float = Field(ge=0.0, le=1.0)
    estimated_count: int = Field(default=0, ge=0)
    detection_method: DetectionMethod = DetectionMethod.AI_ANALYSIS

    @model_validator(mode="after")
    def _matcher_compiles(self) -> "Pattern":
        if self.is_regex:
            try:
                re.compile(self.matcher)
            except re.error as e:
                raise ValueError(f"matcher is not a valid regex: {e}") from e
        return self

    def compiled(self) -> Optional[re.Pattern]:
        """Compiled matcher, or None for descriptive matchers."""
        if not self.is_regex:
            return None
        return re.compile(self.matcher, re.MULTILINE)

    def sample_match_rate(self) -> float:
        """Fraction of samples the matcher actually matches (1.0 when no samples)."""
        regex = self.compiled()
        if regex is None or not self.samples:
            return 1.0
        hits = sum(1 for sample in self.samples if regex.search(sample))
        return hits / len(self.samples)

    @property
    def quality_score(self) -> float:
        """Confidence discounted by how well the matcher reproduces its samples."""
        return round(self.confidence * self.sample_match_rate(), 4)


# =============================================================================
# Overlap Linking
# =============================================================================

def link_overlaps(regions: list[Region]) -> list[Region]:
    """Return regions with `overlaps_with` filled for every overlapping pair.

    Nested core-content regions (a chapter inside the core content range)
    are also linked; the flag is informational, not an error.
    """
    linked: list[Region] = []
    for region in regions:
        overlapping = tuple(
            other.id
            for other in regions
            if other.id != region.id and region.line_range.overlaps(other.line_range)
        )
        merged = tuple(dict.fromkeys(region.overlaps_with + overlapping))
        linked.append(region.model_copy(update={"overlaps_with": merged}))
    return linked


def unflagged_high_confidence_overlaps(regions: list[Region]) -> list[tuple[str, str]]:
    """Find high-confidence overlaps that are not declared in `overlaps_with`."""
    problems = []
    for region in regions:
        if region.confidence <= HIGH_OVERLAP_CONFIDENCE:
            continue
        for other in regions:
            if other.id == region.id or other.confidence < region.confidence:
                continue
            if region.line_range.overlaps(other.line_range) and other.id not in region.overlaps_with:
                problems.append((region.id, other.id))
    return problems


def high_confidence_overlaps(
    regions: list[Region],
    threshold: float = HIGH_OVERLAP_CONFIDENCE,
) -> list[tuple[Region, Region]]:
    """Pairs of regions that both exceed `threshold` and overlap.

    A region nested inside another of the same family (a chapter inside
    core content, a title page inside front matter) refines it rather than
    conflicting with it, and is skipped.
    """
    pairs = []
    for i, first in enumerate(regions):
        for second in regions[i + 1:]:
            if first.confidence <= threshold or second.confidence <= threshold:
                continue
            if _same_family(first, second) and (
                first.line_range.contains_range(second.line_range)
                or second.line_range.contains_range(first.line_range)
            ):
                continue
            if first.line_range.overlaps(second.line_range):
                pairs.append((first, second))
    return pairs


def _same_family(first: Region, second: Region) -> bool:
    return (
        (first.type.is_core_content and second.type.is_core_content)
        or (first.type.is_front_matter and second.type.is_front_matter)
        or (first.type.is_back_matter and second.type.is_back_matter)
    )
