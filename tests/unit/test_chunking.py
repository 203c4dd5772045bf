"""Unit tests for excerpts and reflow chunking."""

import pytest

from phaseclean.cleaning.chunking import (
    ChunkingConfig,
    build_excerpt,
    chunk_paragraphs,
    count_tokens,
    number_line,
)
from phaseclean.models import DocumentLine, WorkingDocument


class TestCountTokens:
    """Tests for count_tokens."""

    def test_empty_string(self):
        assert count_tokens("") == 0

    def test_counts_text(self):
        assert count_tokens("The river ran slowly to the sea.") > 0

    def test_unknown_encoding_falls_back(self):
        assert count_tokens("hello world", encoding_name="no-such-encoding") == count_tokens("hello world")


class TestExcerpt:
    """Tests for build_excerpt."""

    def test_number_line(self):
        assert number_line(DocumentLine(start=12, end=12, text="Index")) == "    12| Index"

    def test_small_document_is_complete(self):
        document = WorkingDocument.from_text("Title\n\nFirst line")
        excerpt = build_excerpt(document)
        assert excerpt.splitlines() == ["     1| Title", "     2| ", "     3| First line"]

    def test_large_document_keeps_head_and_tail(self, scenario_text):
        document = WorkingDocument.from_text(scenario_text)
        excerpt = build_excerpt(document, ChunkingConfig(excerpt_tokens=400))

        lines = excerpt.splitlines()
        assert lines[0] == "     1| River Systems and Their Histories"
        assert lines[-1].startswith("  1250| ")
        assert any("omitted" in line for line in lines)
        assert count_tokens(excerpt) <= 400 + 40

    def test_head_share(self, scenario_text):
        document = WorkingDocument.from_text(scenario_text)
        config = ChunkingConfig(excerpt_tokens=400)
        head_heavy = build_excerpt(document, config, head_share=0.9)
        tail_heavy = build_excerpt(document, config, head_share=0.1)
        assert head_heavy.index("omitted") > tail_heavy.index("omitted")


class TestChunkParagraphs:
    """Tests for chunk_paragraphs."""

    @pytest.fixture
    def chunks_and_layout(self, scenario):
        text, layout = scenario
        document = WorkingDocument.from_text(text)
        core = [line for line in document.lines if 53 <= line.start < layout.back_start]
        paragraphs = WorkingDocument(lines=tuple(core)).paragraphs()
        config = ChunkingConfig(reflow_chunk_tokens=300)
        return chunk_paragraphs(paragraphs, layout.chapter_lines, config), layout, paragraphs

    def test_chunks_never_cross_chapter_starts(self, chunks_and_layout):
        chunks, layout, _ = chunks_and_layout
        for chunk in chunks:
            for start in layout.chapter_lines:
                assert not (chunk.first_line < start <= chunk.last_line)

    def test_chunks_respect_token_limit(self, chunks_and_layout):
        chunks, _, _ = chunks_and_layout
        for chunk in chunks:
            assert chunk.token_count <= 300 or len(chunk.paragraphs) == 1

    def test_every_paragraph_chunked_once_in_order(self, chunks_and_layout):
        chunks, _, paragraphs = chunks_and_layout
        flattened = [p for chunk in chunks for p in chunk.paragraphs]
        assert flattened == paragraphs
        assert [chunk.index for chunk in chunks] == list(range(len(chunks)))

    def test_chunk_text_separates_paragraphs(self):
        paragraphs = [
            [DocumentLine(start=1, end=1, text="one"), DocumentLine(start=2, end=2, text="two")],
            [DocumentLine(start=4, end=4, text="three")],
        ]
        chunk = chunk_paragraphs(paragraphs, [])[0]
        assert chunk.text == "one\ntwo\n\nthree"
        assert (chunk.first_line, chunk.last_line) == (1, 4)

    def test_oversized_paragraph_stands_alone(self):
        long_paragraph = [DocumentLine(start=1, end=1, text="word " * 400)]
        short = [DocumentLine(start=3, end=3, text="short paragraph")]
        chunks = chunk_paragraphs([long_paragraph, short], [], ChunkingConfig(reflow_chunk_tokens=50))
        assert len(chunks) == 2
        assert chunks[0].paragraphs == [long_paragraph]
