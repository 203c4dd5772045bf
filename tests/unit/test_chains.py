"""Unit tests for reading model answers."""

import pytest

from phaseclean.llm.chains import LLMChainError, _parse_json_response


class TestParseJsonResponse:
    """Tests for _parse_json_response."""

    def test_reasoning_before_object(self):
        response = 'The boundary is where {the preface} ends.\n{"boundary_line": 52, "confidence": 0.9}'
        assert _parse_json_response(response, "boundary_detection") == {"boundary_line": 52, "confidence": 0.9}

    def test_fenced_object_with_trailing_comma(self):
        response = '```json\n{"quality_score": 0.8, "issues": [],}\n```'
        assert _parse_json_response(response, "final_review") == {"quality_score": 0.8, "issues": []}

    def test_braces_inside_strings(self):
        response = '{"reflowed_text": "a {b} c", "output_word_count": 3}'
        assert _parse_json_response(response, "reflow")["reflowed_text"] == "a {b} c"

    def test_empty_response(self):
        with pytest.raises(LLMChainError, match="reflow: empty response"):
            _parse_json_response("  \n", "reflow")

    def test_no_object(self):
        with pytest.raises(LLMChainError, match="no JSON object"):
            _parse_json_response("I could not find a boundary.", "boundary_detection")
