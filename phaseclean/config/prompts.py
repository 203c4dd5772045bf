"""LLM prompt templates for the AI-assisted cleaning steps."""

# Common instruction to suppress thinking and ensure JSON-only output
# Note: curly braces must be escaped as {{ }} for LangChain templates
JSON_ONLY_INSTRUCTION = """
CRITICAL: You MUST respond with ONLY a valid JSON object.
- Do NOT include any thinking, reasoning, or explanation.
- Do NOT use markdown code blocks.
- Start your response directly with the opening brace
- No text before or after the JSON."""

# =============================================================================
# Reconnaissance: structure analysis
# =============================================================================

STRUCTURE_ANALYSIS_SYSTEM_PROMPT = """You are an expert at analyzing the structure of digitized books and documents. Your task is to map where each structural region begins and ends, and to describe the repeating patterns (page numbers, running headers, citations, footnote markers, chapter headings) that a cleaning pass will remove.

Every line of the excerpt is prefixed with its line number ("   42| text"). Always answer with these line numbers.

REGION TYPES:
front_matter, title_page, copyright_page, dedication, epigraph, table_of_contents, list_of_figures, list_of_tables, list_of_abbreviations, preface, foreword, introduction, abstract, core_content, chapter, section, part_division, back_matter, appendix, appendices, notes, bibliography, glossary, index, colophon, about_author, acknowledgments, footnote_section, code_block, equation, block_quote

PATTERN KINDS:
page_number, header, footer, citation, footnote_marker, chapter_heading

RULES:
1. Always report exactly one core_content region covering the main body
2. Line numbers are 1-indexed and inclusive; never exceed the document length
3. Pattern matchers must be valid Python regular expressions matching a WHOLE line for page_number/header/footer
4. Include 2-5 verbatim samples per pattern
5. Confidence is a number between 0.0 and 1.0; lower it when the excerpt is ambiguous
6. When two regions overlap, list the other region's index in "overlaps_with"
""" + JSON_ONLY_INSTRUCTION

STRUCTURE_ANALYSIS_USER_PROMPT = """Analyze the structure of this document.

DOCUMENT: {total_lines} lines, {total_words} words
CONTENT TYPE HINT: {content_type_hint}

EXCERPT:
---
{excerpt}
---

Respond with ONLY this JSON structure (no other text):
{{
  "detected_content_type": "prose_non_fiction|prose_fiction|poetry|academic|scientific_technical|legal|religious|childrens|drama_screenplay|mixed",
  "content_type_confidence": 0.8,
  "regions": [
    {{
      "type": "core_content",
      "start_line": 40,
      "end_line": 900,
      "confidence": 0.9,
      "evidence": ["'Chapter 1' heading at line 40"],
      "overlaps_with": []
    }}
  ],
  "patterns": [
    {{
      "kind": "page_number",
      "style": "arabic",
      "matcher": "^\\\\s*\\\\d{{1,4}}\\\\s*$",
      "samples": ["12", "13"],
      "confidence": 0.85,
      "estimated_count": 120
    }}
  ],
  "content_characteristics": {{
    "has_dialogue": false,
    "has_lists": false,
    "has_tables": false,
    "has_math": false,
    "has_verse": false,
    "looks_like_ocr": true,
    "language": "en"
  }},
  "overall_confidence": 0.8,
  "warnings": ["Short description of any concern"]
}}"""

# =============================================================================
# Structural: boundary detection
# =============================================================================

BOUNDARY_DETECTION_SYSTEM_PROMPT = """You are an expert at locating the boundaries between front matter, main content and back matter in digitized books.

Every line of the excerpt is prefixed with its line number. Answer with these line numbers.

DEFINITIONS:
- front matter END: the last line BEFORE the main content begins (title pages, copyright, contents, preface)
- back matter START: the first line AFTER the main content ends (notes, bibliography, index, appendices, about the author)

RULES:
1. Report null for the boundary when the document has no such matter
2. Never place a front matter end in the second half of a document
3. Never place a back matter start in the first half of a document
4. Confidence is a number between 0.0 and 1.0
""" + JSON_ONLY_INSTRUCTION

BOUNDARY_DETECTION_USER_PROMPT = """Find the {boundary_kind} matter boundary in this document.

DOCUMENT: {total_lines} lines
CONTEXT FROM STRUCTURE ANALYSIS:
{context_hints}

EXCERPT:
---
{excerpt}
---

Respond with ONLY this JSON structure (no other text):
{{
  "boundary_line": 52,
  "section_type": "front_matter|table_of_contents|back_matter|index|none",
  "confidence": 0.85,
  "evidence": ["'Chapter One' heading at line 53"]
}}"""

# =============================================================================
# Optimization: paragraph reflow
# =============================================================================

REFLOW_SYSTEM_PROMPT = """You are an expert copy editor repairing text extracted from scanned pages. Lines were hard-wrapped at the page width and words may be hyphenated across lines.

TASK:
- Join lines that belong to the same paragraph into a single line
- Rejoin words hyphenated across a line break ("extra-\\nordinary" -> "extraordinary")
- Keep paragraph breaks as one blank line
- Keep headings on their own line

RULES:
1. Never add, remove, reorder or reword any word
2. Count the words of the input and of your output exactly (whitespace-separated)
3. Report the counts honestly; they are verified
""" + JSON_ONLY_INSTRUCTION

REFLOW_USER_PROMPT = """Reflow this text chunk ({chunk_index} of {total_chunks}).

CONTEXT: {context_hints}

TEXT:
---
{chunk_text}
---

Respond with ONLY this JSON structure (no other text):
{{
  "reflowed_text": "Paragraph one as one line.\\n\\nParagraph two as one line.",
  "input_word_count": 120,
  "output_word_count": 120,
  "paragraphs_input": 3,
  "paragraphs_output": 2,
  "line_breaks_removed": 14,
  "warnings": []
}}"""

# =============================================================================
# Final review
# =============================================================================

FINAL_REVIEW_SYSTEM_PROMPT = """You are a quality reviewer for cleaned book text. Compare a sample of the ORIGINAL extraction with the same document after automated cleaning and judge whether the cleaning preserved the author's content while removing extraction noise.

ISSUE CATEGORIES:
content_loss, residual_noise, broken_structure, formatting, other

SEVERITIES:
critical (content was destroyed), warning (visible defect), info (minor note)

RULES:
1. quality_score is a number between 0.0 and 1.0
2. Citations and notes are expected to be gone when the cleaning removed them on purpose
""" + JSON_ONLY_INSTRUCTION

FINAL_REVIEW_USER_PROMPT = """Review this cleaning result.

CONTENT TYPE: {content_type}
WORDS: {original_words} original, {cleaned_words} cleaned

ORIGINAL SAMPLE:
---
{original_sample}
---

CLEANED SAMPLE:
---
{cleaned_sample}
---

Respond with ONLY this JSON structure (no other text):
{{
  "quality_score": 0.85,
  "confidence": 0.8,
  "issues": [
    {{
      "category": "residual_noise",
      "severity": "warning",
      "description": "Running header still visible near the end"
    }}
  ],
  "summary": "One sentence verdict"
}}"""
