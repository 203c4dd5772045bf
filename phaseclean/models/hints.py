"""StructureHints - the frozen output of reconnaissance.

Hints are created once, validated, and then only read by the later
phases. Every line reference is to the ORIGINAL document numbering.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from phaseclean.models.enums import (
    ContentType,
    DetectionMethod,
    PatternKind,
    RegionType,
    Severity,
)
from phaseclean.models.regions import (
    LineRange,
    Pattern,
    Region,
    new_id,
    unflagged_high_confidence_overlaps,
)


class ContentCharacteristics(BaseModel):
    """Text statistics and indicators gathered during reconnaissance."""

    model_config = ConfigDict(frozen=True)

    average_sentence_length: float = Field(default=0.0, ge=0.0, description="Words per sentence")
    average_paragraph_length: float = Field(default=0.0, ge=0.0, description="Words per paragraph")
    median_line_length: float = Field(default=0.0, ge=0.0, description="Characters per non-empty line")
    has_dialogue: bool = False
    has_lists: bool = False
    has_tables: bool = False
    has_math: bool = False
    has_verse: bool = False
    looks_like_ocr: bool = Field(default=False, description="Hard-wrapped lines, hyphenation")
    language: str = "en"


class StructureWarning(BaseModel):
    """A concern raised by reconnaissance."""

    model_config = ConfigDict(frozen=True)

    severity: Severity = Severity.WARNING
    message: str
    line_range: Optional[LineRange] = None


class StructureHints(BaseModel):
    """Reconnaissance result consumed by every later phase."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("hints"))
    document_id: str
    analyzed_at: datetime = Field(default_factory=datetime.now)

    # Content type
    user_selected_content_type: ContentType = ContentType.AUTO
    detected_content_type: ContentType = ContentType.MIXED
    content_type_confidence: float = Field(default=0.5, ge=0.0, le=1.0)

    # Document dimensions
    total_lines: int = Field(ge=1)
    total_words: int = Field(ge=0)

    # Detections
    regions: tuple[Region, ...] = ()
    patterns: tuple[Pattern, ...] = ()
    content_characteristics: ContentCharacteristics = Field(default_factory=ContentCharacteristics)
    core_content_range: Optional[LineRange] = None

    overall_confidence: float = Field(ge=0.0, le=1.0)
    warnings: tuple[StructureWarning, ...] = ()
    analysis_method: DetectionMethod = DetectionMethod.AI_ANALYSIS

    @model_validator(mode="after")
    def _check_core_range(self) -> "StructureHints":
        core = self.core_content_range
        if core is None:
            return self
        if core.end > self.total_lines:
            raise ValueError(
                f"core content range {core} exceeds document length {self.total_lines}"
            )
        for region in self.regions:
            if region.type.removed_by_default and region.line_range.contains_range(core):
                raise ValueError(
                    f"core content range {core} lies inside removable region "
                    f"{region.type.value} {region.line_range}"
                )
        return self

    @model_validator(mode="after")
    def _check_region_bounds(self) -> "StructureHints":
        for region in self.regions:
            if region.line_range.end > self.total_lines:
                raise ValueError(
                    f"region {region.id} ({region.line_range}) exceeds document length {self.total_lines}"
                )
        unflagged = unflagged_high_confidence_overlaps(list(self.regions))
        if unflagged:
            first, second = unflagged[0]
            raise ValueError(f"region {first} overlaps {second} without declaring it")
        return self

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def effective_content_type(self) -> ContentType:
        """User selection wins over detection unless the user chose auto."""
        if self.user_selected_content_type != ContentType.AUTO:
            return self.user_selected_content_type
        return self.detected_content_type

    @property
    def content_type_matches(self) -> bool:
        if self.user_selected_content_type == ContentType.AUTO:
            return True
        return self.user_selected_content_type == self.detected_content_type

    @property
    def has_core_content(self) -> bool:
        return self.core_content_range is not None or any(
            r.type == RegionType.CORE_CONTENT for r in self.regions
        )

    def core_range(self) -> Optional[LineRange]:
        """Core content range, falling back to the best core_content region."""
        if self.core_content_range is not None:
            return self.core_content_range
        core = self.regions_of(RegionType.CORE_CONTENT)
        if not core:
            return None
        return max(core, key=lambda r: r.confidence).line_range

    def regions_of(self, *types: RegionType) -> list[Region]:
        return [r for r in self.regions if r.type in types]

    def best_region(self, *types: RegionType) -> Optional[Region]:
        found = self.regions_of(*types)
        if not found:
            return None
        return max(found, key=lambda r: r.confidence)

    def patterns_of(self, kind: PatternKind) -> list[Pattern]:
        return [p for p in self.patterns if p.kind == kind]

    def front_matter_end(self) -> Optional[int]:
        """Last line of front matter implied by the hints."""
        core = self.core_range()
        if core is not None and core.start > 1:
            return core.start - 1
        front = [r for r in self.regions if r.type.is_front_matter and r.type.removed_by_default]
        if not front:
            return None
        return max(r.line_range.end for r in front)

    def back_matter_start(self) -> Optional[int]:
        """First line of back matter implied by the hints."""
        core = self.core_range()
        if core is not None and core.end < self.total_lines:
            return core.end + 1
        back = [r for r in self.regions if r.type.is_back_matter]
        if not back:
            return None
        return min(r.line_range.start for r in back)
