"""Scenario document and scripted AI service shared by the tests."""

import threading
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

# =============================================================================
# Scenario Document
# =============================================================================

CHAPTER_TITLES = [
    "Sources", "Headwaters", "Floodplains", "Deltas", "Canals",
    "Mills", "Bridges", "Droughts", "Surveys", "Futures",
]
ADJECTIVES = ["slow", "broad", "muddy", "clear", "winding", "shallow", "swift"]
NOUNS = ["timber", "grain", "silt", "stone", "cargo", "reeds", "ice", "salt"]
PLACES = ["mill", "ford", "weir", "quay", "village", "abbey", "market", "lock"]

TOTAL_LINES = 1250
FRONT_END = 52
BACK_START = 1151
INDEX_HEADING = 1200
PAGE_NUMBER_COUNT = 95


@dataclass
class ScenarioLayout:
    """Where things are in the scenario document (1-based line numbers)."""
    chapter_lines: list[int] = field(default_factory=list)
    page_lines: list[int] = field(default_factory=list)
    front_end: int = FRONT_END
    back_start: int = BACK_START
    index_heading: int = INDEX_HEADING
    total_lines: int = TOTAL_LINES


def _body_line(n: int) -> str:
    return (
        f"The {ADJECTIVES[n % 7]} river carried {NOUNS[n % 8]} past the {PLACES[n % 8]} "
        f"while surveyors recorded line {n} of the survey."
    )


def build_scenario_document() -> tuple[str, ScenarioLayout]:
    """A 1250-line academic book with front matter, ten chapters and back matter.

    Front matter ends at line 52, chapters start every 110 lines from line
    53, back matter (bibliography, then index) starts at line 1151, and 95
    bare page numbers are scattered through the text.
    """
    layout = ScenarioLayout()
    lines = [""] * (TOTAL_LINES + 1)  # 1-based; index 0 unused

    lines[1] = "River Systems and Their Histories"
    lines[2] = "Jane Doe"
    lines[4] = "Copyright 2020 Example Press. All rights reserved."
    lines[5] = "Contents"
    for i, title in enumerate(CHAPTER_TITLES):
        lines[6 + i] = f"Chapter {i + 1}: {title} ........ {12 + i * 20}"
    lines[17] = "Preface"
    for n in range(19, FRONT_END):
        if n % 4 != 2:
            lines[n] = f"This preface line {n} thanks the many patient readers who followed the river."

    for k, title in enumerate(CHAPTER_TITLES):
        heading = 53 + 110 * k
        layout.chapter_lines.append(heading)
        lines[heading] = f"Chapter {k + 1}: {title}"
        for j in range(108):
            n = heading + 2 + j
            if n >= BACK_START:
                break
            if j % 6 != 5:
                lines[n] = _body_line(n)

    lines[BACK_START] = "Bibliography"
    for n in range(BACK_START + 2, INDEX_HEADING - 1):
        lines[n] = f"Doe, Jane. Rivers of the North and their long histories, volume {n - BACK_START}. Example Press, London."
    lines[INDEX_HEADING] = "Index"
    for n in range(INDEX_HEADING + 2, TOTAL_LINES + 1):
        lines[n] = f"{ADJECTIVES[n % 7]} {NOUNS[n % 8]}, {n - 1100}, {n - 1000}"

    reserved = set(range(1, 17))
    for heading in layout.chapter_lines + [BACK_START, INDEX_HEADING]:
        reserved.update({heading - 1, heading, heading + 1})
    candidates = [n for n in range(12, TOTAL_LINES + 1, 12) if n not in reserved]
    layout.page_lines = candidates[:PAGE_NUMBER_COUNT]
    for page, n in enumerate(layout.page_lines, start=1):
        lines[n] = str(page)

    return "\n".join(lines[1:]), layout


# =============================================================================
# Scripted AI Responses
# =============================================================================

def structure_response(overall_confidence: float = 0.85, **overrides) -> dict:
    """Structure analysis answer matching the scenario document."""
    response = {
        "detected_content_type": "academic",
        "content_type_confidence": 0.9,
        "regions": [
            {"type": "front_matter", "start_line": 1, "end_line": FRONT_END, "confidence": 0.9},
            {"type": "table_of_contents", "start_line": 5, "end_line": 15, "confidence": 0.9},
            {"type": "core_content", "start_line": 53, "end_line": BACK_START - 1, "confidence": 0.9},
            {"type": "back_matter", "start_line": BACK_START, "end_line": TOTAL_LINES, "confidence": 0.9},
        ],
        "patterns": [
            {
                "kind": "page_number",
                "style": "arabic",
                "matcher": r"^\s*\d{1,4}\s*$",
                "samples": ["2", "3"],
                "confidence": 0.85,
                "estimated_count": PAGE_NUMBER_COUNT,
            },
        ],
        "overall_confidence": overall_confidence,
    }
    response.update(overrides)
    return response


def echo_reflow(chunk_text: str, **_) -> dict:
    """Join each paragraph's lines and report exact word counts."""
    paragraphs = [" ".join(block.split()) for block in chunk_text.split("\n\n")]
    text = "\n\n".join(p for p in paragraphs if p)
    return {
        "reflowed_text": text,
        "input_word_count": len(chunk_text.split()),
        "output_word_count": len(text.split()),
        "paragraphs_input": len(paragraphs),
        "paragraphs_output": len(paragraphs),
        "line_breaks_removed": chunk_text.count("\n") - text.count("\n"),
    }


Answer = Union[dict, Exception, Callable[..., dict], list]


class FakeAIService:
    """Scripted CleaningAIService.

    Each answer is a dict, an exception to raise, a callable producing the
    answer, or a list consumed one entry per call (the last entry repeats).
    Every call is logged as (method, kwargs) for assertions.
    """

    def __init__(
        self,
        structure: Answer = None,
        front: Answer = None,
        back: Answer = None,
        reflow: Answer = None,
        review: Answer = None,
        on_call: Optional[Callable[[str], None]] = None,
    ):
        self.answers = {
            "analyze_structure": structure if structure is not None else structure_response(),
            "front": front if front is not None else {"boundary_line": FRONT_END, "confidence": 0.9},
            "back": back if back is not None else {"boundary_line": BACK_START, "confidence": 0.9},
            "reflow_chunk": reflow if reflow is not None else echo_reflow,
            "review_quality": review if review is not None else {
                "quality_score": 0.9, "confidence": 0.9, "issues": [], "summary": "Clean",
            },
        }
        self.on_call = on_call
        self.calls: list[tuple[str, dict]] = []
        self._lock = threading.Lock()

    def _answer(self, key: str, method: str, **kwargs) -> dict:
        with self._lock:
            self.calls.append((method, kwargs))
            answer = self.answers[key]
            if isinstance(answer, list):
                answer = answer.pop(0) if len(answer) > 1 else answer[0]
        if self.on_call is not None:
            self.on_call(method)
        if isinstance(answer, Exception):
            raise answer
        if callable(answer):
            return answer(**kwargs)
        return answer

    def calls_to(self, method: str) -> list[dict]:
        return [kwargs for name, kwargs in self.calls if name == method]

    def analyze_structure(self, excerpt, total_lines, total_words, content_type_hint, timeout):
        return self._answer(
            "analyze_structure", "analyze_structure",
            excerpt=excerpt, total_lines=total_lines, total_words=total_words,
            content_type_hint=content_type_hint, timeout=timeout,
        )

    def detect_boundary(self, boundary_kind, excerpt, total_lines, context_hints, timeout):
        return self._answer(boundary_kind, "detect_boundary", boundary_kind=boundary_kind, timeout=timeout)

    def reflow_chunk(self, chunk_text, chunk_index, total_chunks, context_hints, timeout):
        return self._answer("reflow_chunk", "reflow_chunk", chunk_text=chunk_text, timeout=timeout)

    def review_quality(self, original_sample, cleaned_sample, content_type, original_words, cleaned_words, timeout):
        return self._answer("review_quality", "review_quality", timeout=timeout)


