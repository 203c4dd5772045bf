"""Unit tests for the cleaning operations."""

import pytest

from phaseclean.cleaning.assembly import add_chapter_markers
from phaseclean.cleaning.boundaries import (
    KEYWORD_BOUNDARY_CONFIDENCE,
    chapter_starts,
    detect_boundaries_heuristic,
    remove_lines_in,
)
from phaseclean.cleaning.detection import (
    analyze_structure_heuristic,
    detect_running_headers,
    find_back_matter_headings,
    find_core_start,
    is_chapter_heading,
)
from phaseclean.cleaning.metadata import extract_metadata
from phaseclean.cleaning.reflow import reflow_heuristic, split_long_paragraphs
from phaseclean.cleaning.review import review_heuristic
from phaseclean.cleaning.text_cleaner import (
    apply_inline_patterns,
    clean_special_characters,
    collapse_blank_lines,
    match_inline_pattern,
    remove_line_patterns,
)
from phaseclean.models import (
    ChapterMarkerStyle,
    ContentType,
    DetectionMethod,
    LineRange,
    Pattern,
    PatternKind,
    RegionType,
    Severity,
    StructureHints,
    WorkingDocument,
)

PAGE_NUMBERS = Pattern(kind=PatternKind.PAGE_NUMBER, matcher=r"^\s*\d{1,4}\s*$", confidence=0.85)
RUNNING_HEADER = Pattern(kind=PatternKind.HEADER, matcher=r"^A SHORT BOOK$", confidence=0.7)


@pytest.fixture
def short_document(short_text) -> WorkingDocument:
    return WorkingDocument.from_text(short_text)


class TestLinePatterns:
    """Tests for whole-line pattern removal."""

    def test_removes_page_numbers_and_headers(self, short_document):
        result = remove_line_patterns(short_document, [PAGE_NUMBERS, RUNNING_HEADER])

        assert [r.lines_affected for r in result.removals] == [(8, 19), (9, 20)]
        assert "12" not in [line.text for line in result.document.lines]
        assert result.document.line_count == short_document.line_count - 4

    def test_protected_headings_survive(self, short_document):
        headings = Pattern(kind=PatternKind.CHAPTER_HEADING, matcher=r"^Chapter \d+: \w+$", confidence=0.9)
        result = remove_line_patterns(short_document, [headings], protected=frozenset({3, 15}))
        assert result.removals[0].removal_count == 0

    def test_descriptive_patterns_are_not_applied(self, short_document):
        descriptive = Pattern(kind=PatternKind.HEADER, matcher="the title on every page", is_regex=False,
                              confidence=0.5)
        result = remove_line_patterns(short_document, [descriptive])
        assert result.removals == []
        assert result.document == short_document

    def test_removed_runs(self, short_document):
        result = remove_line_patterns(short_document, [PAGE_NUMBERS, RUNNING_HEADER])
        assert result.removed_runs() == []
        assert result.removed_runs(min_length=2) == [LineRange(start=8, end=9), LineRange(start=19, end=20)]


class TestInlinePatterns:
    """Tests for inline pattern matching and removal."""

    NUMERIC = Pattern(kind=PatternKind.CITATION, matcher=r"\[\d{1,3}\]", confidence=0.8)
    AUTHOR_YEAR = Pattern(kind=PatternKind.CITATION, matcher=r"\([A-Z][a-z]+, \d{4}\)", confidence=0.8)

    def test_match_counts_hits_per_line(self):
        document = WorkingDocument.from_text("x [1] y [2]\nnone\nz [3]")
        found = match_inline_pattern(document, self.NUMERIC)
        assert found.hits == {1: 2, 3: 1}
        assert found.removal_count == 3
        assert found.lines_affected == (1, 3)
        assert found.words_removed == 3

    def test_apply_tidies_spacing(self):
        document = WorkingDocument.from_text("A claim [12] holds (Smith, 2020).\nUntouched  line")
        cleaned = apply_inline_patterns(document, [self.NUMERIC, self.AUTHOR_YEAR])
        assert [line.text for line in cleaned.lines] == ["A claim holds.", "Untouched  line"]


class TestSpecialCharacters:
    """Tests for clean_special_characters and blank line collapsing."""

    def test_invisible_and_control_characters(self):
        assert clean_special_characters("the \ufb01rst\u200b  word\x07") == "the first word"

    def test_soft_hyphen_and_replacement_char(self):
        assert clean_special_characters("co\u00adoperate\ufffd") == "cooperate"

    def test_accents_and_punctuation_preserved(self):
        assert clean_special_characters("café, naïve; § 12!") == "café, naïve; § 12!"

    def test_collapse_blank_lines(self):
        document = WorkingDocument.from_text("\n\na\n\n\n\nb\n\n")
        collapsed = collapse_blank_lines(document)
        assert [line.text for line in collapsed.lines] == ["a", "", "b"]


class TestReflow:
    """Tests for heuristic reflow and paragraph splitting."""

    def test_joins_wrapped_lines_and_hyphens(self, short_document):
        reflowed, stats = reflow_heuristic(short_document, chapter_starts=[3, 15])

        merged = [line for line in reflowed.lines if line.start == 11]
        assert merged[0].end == 13
        assert "hyphenated word" in merged[0].text
        assert stats.hyphens_joined == 1
        assert stats.lines_after < stats.lines_before

    def test_headings_stay_on_their_own_line(self, short_document):
        reflowed, _ = reflow_heuristic(short_document, chapter_starts=[3, 15])
        headings = [line for line in reflowed.lines if line.text.startswith("Chapter")]
        assert [(h.start, h.end) for h in headings] == [(3, 3), (15, 15)]

    def test_never_merges_across_chapter_start(self):
        document = WorkingDocument.from_text("the end of one chapter and\nthe start of another one here")
        reflowed, _ = reflow_heuristic(document, chapter_starts=[2])
        assert reflowed.lines_spanning([2]) == []

    def test_split_long_paragraphs(self):
        text = (
            "One two three four five. Six seven eight nine ten. "
            "Eleven twelve thirteen fourteen fifteen."
        )
        document = WorkingDocument.from_text(text)
        split, count = split_long_paragraphs(document, max_words=10)

        assert count == 1
        assert [line.text for line in split.lines] == [
            "One two three four five. Six seven eight nine ten.",
            "",
            "Eleven twelve thirteen fourteen fifteen.",
        ]
        assert split.word_count == document.word_count
        assert {line.start for line in split.lines} == {1}


class TestAssembly:
    """Tests for chapter markers."""

    def test_heading_lines_are_replaced(self, short_document):
        marked, stats = add_chapter_markers(short_document, [3, 15], ChapterMarkerStyle.HTML_COMMENTS)
        texts = [line.text for line in marked.lines]
        assert "<!-- CHAPTER: Chapter 1: Beginnings -->" in texts
        assert "<!-- CHAPTER: Chapter 2: Endings -->" in texts
        assert stats.headings_replaced == 2
        assert stats.markers_added == 0

    def test_marker_inserted_before_body_text(self):
        document = WorkingDocument.from_text("Intro text here.\nMore body text.")
        marked, stats = add_chapter_markers(document, [2], ChapterMarkerStyle.MARKDOWN_H2)
        assert [line.text for line in marked.lines] == ["Intro text here.", "## Chapter 1", "More body text."]
        assert stats.markers_added == 1

    def test_none_style_is_a_no_op(self, short_document):
        marked, stats = add_chapter_markers(short_document, [3, 15], ChapterMarkerStyle.NONE)
        assert marked == short_document
        assert stats.headings_replaced == 0


class TestDetection:
    """Tests for heuristic structure detection."""

    @pytest.mark.parametrize("text,expected", [
        ("Chapter 3: The Delta", True),
        ("CHAPTER IV", True),
        ("Part One", True),
        ("Chapters of life are long and winding", False),
        ("Part of the problem is the river", False),
    ])
    def test_is_chapter_heading(self, text, expected):
        assert is_chapter_heading(text) is expected

    def test_core_start_skips_contents_entries(self, scenario_text, scenario_layout):
        document = WorkingDocument.from_text(scenario_text)
        assert find_core_start(document) == scenario_layout.chapter_lines[0]

    def test_back_matter_headings(self, scenario_text, scenario_layout):
        document = WorkingDocument.from_text(scenario_text)
        assert find_back_matter_headings(document) == [
            (scenario_layout.back_start, RegionType.BIBLIOGRAPHY),
            (scenario_layout.index_heading, RegionType.INDEX),
        ]

    def test_running_headers_normalize_numbers(self):
        document = WorkingDocument.from_text("\n".join([
            "12 THE TITLE", "body text that is long enough to matter here",
            "14 THE TITLE", "more body text in the middle of the page",
            "16 THE TITLE",
        ]))
        patterns = detect_running_headers(document)
        assert len(patterns) == 1
        assert patterns[0].estimated_count == 3
        assert patterns[0].compiled().fullmatch("18 THE TITLE")

    def test_heuristic_hints_for_scenario(self, scenario_text, scenario_layout):
        document = WorkingDocument.from_text(scenario_text)
        hints = analyze_structure_heuristic(document, "rivers", ContentType.ACADEMIC)

        assert hints.analysis_method == DetectionMethod.HEURISTIC
        assert hints.core_range() == LineRange(start=53, end=scenario_layout.back_start - 1)
        assert hints.overall_confidence == 0.7
        assert len(hints.regions_of(RegionType.CHAPTER)) == 10
        page_numbers = hints.patterns_of(PatternKind.PAGE_NUMBER)
        assert page_numbers[0].estimated_count == len(scenario_layout.page_lines)
        assert hints.detected_content_type == ContentType.ACADEMIC

    def test_heuristic_hints_without_headings(self):
        document = WorkingDocument.from_text("plain text\nwith nothing special")
        hints = analyze_structure_heuristic(document, "plain")
        assert hints.core_range() is None
        assert hints.overall_confidence == 0.5


class TestBoundaries:
    """Tests for heuristic boundary proposals."""

    def test_hints_confirmed_by_keywords(self, scenario_text, scenario_layout):
        document = WorkingDocument.from_text(scenario_text)
        hints = analyze_structure_heuristic(document, "rivers")
        proposal = detect_boundaries_heuristic(document, hints)

        assert proposal.front_matter_end == scenario_layout.front_end
        assert proposal.back_matter_start == scenario_layout.back_start
        assert proposal.front_confidence == KEYWORD_BOUNDARY_CONFIDENCE
        assert proposal.chapter_starts == scenario_layout.chapter_lines

    def test_keywords_without_hinted_core(self):
        lines = ["Title", "Contents", "Chapter 1: Start"] + ["Body sentence number %d." % n for n in range(30)]
        lines += ["Index", "alpha, 3", "beta, 4"]
        document = WorkingDocument.from_text("\n".join(lines))
        hints = StructureHints(
            document_id="doc", total_lines=document.line_count, total_words=document.word_count,
            overall_confidence=0.6,
        )
        proposal = detect_boundaries_heuristic(document, hints)
        assert proposal.front_matter_end == 2
        assert proposal.back_matter_start == 34
        assert proposal.index_start == 34
        assert proposal.back_confidence == KEYWORD_BOUNDARY_CONFIDENCE

    def test_chapter_starts_only_inside_core(self, scenario_text, scenario_layout):
        document = WorkingDocument.from_text(scenario_text)
        hints = analyze_structure_heuristic(document, "rivers")
        starts = chapter_starts(document, hints)
        assert starts == scenario_layout.chapter_lines

    def test_remove_lines_in_keeps_protected(self):
        document = WorkingDocument.from_text("a\nb\nc\nd")
        kept, removed = remove_lines_in(document, LineRange(start=2, end=4), protected=frozenset({3}))
        assert [line.text for line in kept.lines] == ["a", "c"]
        assert len(removed) == 2


class TestMetadata:
    """Tests for metadata extraction."""

    def test_extracts_title_page_fields(self):
        document = WorkingDocument.from_text("\n".join([
            "The Quiet Shore",
            "by Anna Field",
            "Published by Harbor Light Press",
            "First published 1998",
            "ISBN 978-0-12-345678-9",
        ]))
        hints = StructureHints(
            document_id="shore", total_lines=5, total_words=document.word_count, overall_confidence=0.7,
        )
        metadata = extract_metadata(document, hints)

        assert metadata.title == "The Quiet Shore"
        assert metadata.author == "Anna Field"
        assert metadata.publisher == "Harbor Light Press"
        assert metadata.publication_date == "1998"
        assert metadata.isbn == "978-0-12-345678-9"
        assert metadata.chapters_detected == 0


class TestReview:
    """Tests for the heuristic review."""

    def test_empty_output_is_critical(self):
        review = review_heuristic(WorkingDocument(), 1000, ContentType.PROSE_FICTION)
        assert review.quality_score == 0.0
        assert review.critical_findings

    def test_good_preservation_scores_well(self):
        document = WorkingDocument.from_text(" ".join(["word"] * 100))
        review = review_heuristic(document, 110, ContentType.PROSE_FICTION)
        assert review.quality_score == pytest.approx(0.8)
        assert review.findings == []

    def test_low_preservation_is_critical(self):
        document = WorkingDocument.from_text(" ".join(["word"] * 100))
        review = review_heuristic(document, 1000, ContentType.ACADEMIC)
        assert review.quality_score == pytest.approx(0.4)
        assert review.critical_findings[0].category == "content_loss"

    def test_residual_page_numbers_penalized(self):
        lines = [" ".join(["word"] * 20) for _ in range(10)] + [str(n) for n in range(1, 8)]
        document = WorkingDocument.from_text("\n".join(lines))
        review = review_heuristic(document, document.word_count, ContentType.PROSE_FICTION)
        assert review.quality_score == pytest.approx(0.75)
        assert [f.severity for f in review.findings] == [Severity.WARNING]
