"""Unit tests for Pydantic models."""

import pytest
from pydantic import ValidationError

from phaseclean.models import (
    AccumulatedContext,
    ContentType,
    DocumentLine,
    LineRange,
    Pattern,
    PatternKind,
    Region,
    RegionType,
    StructureHints,
    WorkingDocument,
)
from phaseclean.models.enums import ChapterMarkerStyle, PipelinePhase, Severity
from phaseclean.models.regions import link_overlaps


class TestLineRange:
    """Tests for LineRange model."""

    def test_valid_range(self):
        line_range = LineRange(start=3, end=7)
        assert line_range.count == 5
        assert line_range.contains(3)
        assert line_range.contains(7)
        assert not line_range.contains(8)
        assert str(line_range) == "3-7"

    def test_start_after_end_rejected(self):
        with pytest.raises(ValidationError):
            LineRange(start=8, end=7)

    def test_zero_line_rejected(self):
        with pytest.raises(ValidationError):
            LineRange(start=0, end=4)  # Lines are 1-indexed

    def test_overlap_and_intersection(self):
        first = LineRange(start=1, end=10)
        second = LineRange(start=8, end=20)
        assert first.overlaps(second)
        assert first.intersection(second) == LineRange(start=8, end=10)
        assert first.intersection(LineRange(start=11, end=12)) is None

    def test_widened_clamps_at_first_line(self):
        assert LineRange(start=3, end=5).widened(10) == LineRange(start=1, end=15)


class TestPattern:
    """Tests for Pattern model."""

    def test_invalid_regex_rejected(self):
        with pytest.raises(ValidationError):
            Pattern(kind=PatternKind.PAGE_NUMBER, matcher="([0-9", confidence=0.8)

    def test_descriptive_matcher_allowed(self):
        pattern = Pattern(
            kind=PatternKind.HEADER,
            matcher="book title repeated at the top of each page",
            is_regex=False,
            confidence=0.5,
        )
        assert pattern.compiled() is None
        assert pattern.sample_match_rate() == 1.0

    def test_quality_discounted_by_samples(self):
        pattern = Pattern(
            kind=PatternKind.PAGE_NUMBER,
            matcher=r"^\d+$",
            samples=("12", "xii"),
            confidence=0.8,
        )
        assert pattern.sample_match_rate() == 0.5
        assert pattern.quality_score == pytest.approx(0.4)

    def test_frozen(self):
        pattern = Pattern(kind=PatternKind.PAGE_NUMBER, matcher=r"^\d+$", confidence=0.8)
        with pytest.raises(ValidationError):
            pattern.confidence = 0.1


class TestStructureHints:
    """Tests for StructureHints model."""

    def _region(self, region_type: RegionType, start: int, end: int, confidence: float = 0.9) -> Region:
        return Region(type=region_type, line_range=LineRange(start=start, end=end), confidence=confidence)

    def test_boundaries_from_core_range(self):
        hints = StructureHints(
            document_id="doc",
            total_lines=100,
            total_words=1000,
            regions=(self._region(RegionType.CORE_CONTENT, 11, 90),),
            overall_confidence=0.8,
        )
        assert hints.core_range() == LineRange(start=11, end=90)
        assert hints.front_matter_end() == 10
        assert hints.back_matter_start() == 91

    def test_region_beyond_document_rejected(self):
        with pytest.raises(ValidationError):
            StructureHints(
                document_id="doc",
                total_lines=50,
                total_words=500,
                regions=(self._region(RegionType.BACK_MATTER, 40, 60),),
                overall_confidence=0.8,
            )

    def test_core_inside_removable_region_rejected(self):
        with pytest.raises(ValidationError):
            StructureHints(
                document_id="doc",
                total_lines=100,
                total_words=1000,
                regions=(self._region(RegionType.FRONT_MATTER, 1, 40),),
                core_content_range=LineRange(start=10, end=20),
                overall_confidence=0.8,
            )

    def test_undeclared_high_confidence_overlap_rejected(self):
        with pytest.raises(ValidationError):
            StructureHints(
                document_id="doc",
                total_lines=100,
                total_words=1000,
                regions=(
                    self._region(RegionType.FRONT_MATTER, 1, 20),
                    self._region(RegionType.TABLE_OF_CONTENTS, 5, 15),
                ),
                overall_confidence=0.8,
            )

    def test_linked_overlap_accepted(self):
        regions = link_overlaps([
            self._region(RegionType.FRONT_MATTER, 1, 20),
            self._region(RegionType.TABLE_OF_CONTENTS, 5, 15),
        ])
        hints = StructureHints(
            document_id="doc",
            total_lines=100,
            total_words=1000,
            regions=tuple(regions),
            overall_confidence=0.8,
        )
        assert regions[1].id in hints.regions[0].overlaps_with

    def test_effective_content_type(self):
        hints = StructureHints(
            document_id="doc",
            total_lines=10,
            total_words=100,
            user_selected_content_type=ContentType.ACADEMIC,
            detected_content_type=ContentType.PROSE_FICTION,
            overall_confidence=0.7,
        )
        assert hints.effective_content_type == ContentType.ACADEMIC
        assert not hints.content_type_matches

    def test_auto_defers_to_detection(self):
        hints = StructureHints(
            document_id="doc",
            total_lines=10,
            total_words=100,
            detected_content_type=ContentType.LEGAL,
            overall_confidence=0.7,
        )
        assert hints.effective_content_type == ContentType.LEGAL
        assert hints.content_type_matches


class TestWorkingDocument:
    """Tests for WorkingDocument model."""

    def test_from_text_numbers_lines(self):
        document = WorkingDocument.from_text("one two\n\nthree\r\nfour five six")
        assert document.line_count == 4
        assert document.word_count == 6
        assert [line.start for line in document.lines] == [1, 2, 3, 4]

    def test_without_keeps_original_numbers(self):
        document = WorkingDocument.from_text("a\nb\nc\nd")
        kept, removed = document.without(lambda line: line.text in {"b", "c"})
        assert [line.start for line in kept.lines] == [1, 4]
        assert [line.text for line in removed] == ["b", "c"]
        assert document.line_count == 4  # Original untouched

    def test_paragraphs(self):
        document = WorkingDocument.from_text("a\nb\n\n\nc\n")
        assert [[line.text for line in p] for p in document.paragraphs()] == [["a", "b"], ["c"]]

    def test_lines_spanning(self):
        document = WorkingDocument(lines=(
            DocumentLine(start=1, end=4, text="merged paragraph"),
            DocumentLine(start=5, end=5, text="Chapter 2"),
        ))
        spanning = document.lines_spanning([3, 5])
        assert len(spanning) == 1
        assert spanning[0][1] == 3
        assert document.lines_spanning([1, 5]) == []


class TestAccumulatedContext:
    """Tests for AccumulatedContext model."""

    def test_view_is_detached(self):
        context = AccumulatedContext(document_id="doc")
        view = context.view()
        view.completed_phases.append(PipelinePhase.SEMANTIC)
        assert context.completed_phases == []


class TestEnums:
    """Tests for enum helpers."""

    def test_severity_rank_order(self):
        assert Severity.INFO.rank < Severity.WARNING.rank < Severity.ERROR.rank < Severity.CRITICAL.rank

    def test_phase_numbers(self):
        assert PipelinePhase.RECONNAISSANCE.phase_number == 0
        assert PipelinePhase.FINAL_REVIEW.phase_number == 8

    def test_marker_styles(self):
        assert ChapterMarkerStyle.HTML_COMMENTS.format("Chapter 1") == "<!-- CHAPTER: Chapter 1 -->"
        assert ChapterMarkerStyle.MARKDOWN_H2.format("Intro") == "## Intro"
        assert ChapterMarkerStyle.TOKEN_STYLE.format("X") == "<CHAPTER>X</CHAPTER>"

    def test_apparatus_heavy_types(self):
        assert ContentType.ACADEMIC.is_apparatus_heavy
        assert not ContentType.PROSE_FICTION.is_apparatus_heavy
