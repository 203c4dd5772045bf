"""Token-budgeted excerpts and reflow chunks for AI processing."""

from dataclasses import dataclass
from typing import Optional

import structlog
import tiktoken

from phaseclean.models.document import DocumentLine, WorkingDocument

logger = structlog.get_logger(__name__)


@dataclass
class ChunkingConfig:
    """Configuration for excerpts and chunks."""

    excerpt_tokens: int = 6000
    reflow_chunk_tokens: int = 2000
    encoding_name: str = "cl100k_base"  # GPT-4 encoding, reasonable default


@dataclass
class ReflowChunk:
    """A run of paragraphs sent to the AI as one reflow request."""

    index: int
    paragraphs: list[list[DocumentLine]]
    token_count: int

    @property
    def lines(self) -> list[DocumentLine]:
        return [line for paragraph in self.paragraphs for line in paragraph]

    @property
    def text(self) -> str:
        return "\n\n".join("\n".join(line.text for line in p) for p in self.paragraphs)

    @property
    def first_line(self) -> int:
        return self.paragraphs[0][0].start

    @property
    def last_line(self) -> int:
        return self.paragraphs[-1][-1].end


def _get_encoding(encoding_name: str) -> tiktoken.Encoding:
    try:
        return tiktoken.get_encoding(encoding_name)
    except ValueError:
        logger.warning("tiktoken_encoding_fallback", requested=encoding_name)
        return tiktoken.get_encoding("cl100k_base")


def count_tokens(text: str, encoding_name: str = "cl100k_base") -> int:
    """Count tokens in text.

    Args:
        text: Text to count.
        encoding_name: Tiktoken encoding name.

    Returns:
        Token count.
    """
    if not text:
        return 0
    return len(_get_encoding(encoding_name).encode(text))


def number_line(line: DocumentLine) -> str:
    """Render a line with its original line number for AI prompts."""
    return f"{line.start:>6}| {line.text}"


# =============================================================================
# Excerpts
# =============================================================================

def build_excerpt(
    document: WorkingDocument,
    config: Optional[ChunkingConfig] = None,
    head_share: float = 0.5,
) -> str:
    """Build a line-numbered excerpt that fits the token budget.

    Takes lines from the start of the document until `head_share` of the
    budget is used, then lines from the end for the rest. Omitted lines
    are replaced by a single marker line.

    Args:
        document: Working document to sample.
        config: Chunking configuration.
        head_share: Fraction of the budget given to the head (0..1).

    Returns:
        Numbered excerpt text.
    """
    config = config or ChunkingConfig()
    encoding = _get_encoding(config.encoding_name)
    rendered = [number_line(line) for line in document.lines]
    costs = [len(encoding.encode(text)) + 1 for text in rendered]

    if sum(costs) <= config.excerpt_tokens:
        return "\n".join(rendered)

    head_budget = int(config.excerpt_tokens * head_share)
    tail_budget = config.excerpt_tokens - head_budget

    head_end = 0
    used = 0
    while head_end < len(rendered) and used + costs[head_end] <= head_budget:
        used += costs[head_end]
        head_end += 1

    tail_start = len(rendered)
    used = 0
    while tail_start > head_end and used + costs[tail_start - 1] <= tail_budget:
        used += costs[tail_start - 1]
        tail_start -= 1

    parts = rendered[:head_end]
    if tail_start > head_end:
        omitted_from = document.lines[head_end].start
        omitted_to = document.lines[tail_start - 1].end
        parts.append(f"   ... [lines {omitted_from}-{omitted_to} omitted] ...")
    parts.extend(rendered[tail_start:])

    logger.debug(
        "excerpt_built",
        total_lines=len(rendered),
        head_lines=head_end,
        tail_lines=len(rendered) - tail_start,
    )
    return "\n".join(parts)


# =============================================================================
# Reflow Chunks
# =============================================================================

def chunk_paragraphs(
    paragraphs: list[list[DocumentLine]],
    chapter_starts: list[int],
    config: Optional[ChunkingConfig] = None,
) -> list[ReflowChunk]:
    """Group paragraphs into token-bounded chunks.

    A chunk never contains paragraphs from both sides of a chapter start,
    and a single paragraph larger than the limit becomes its own chunk.

    Args:
        paragraphs: Paragraphs as lists of lines.
        chapter_starts: Original line numbers where chapters begin.
        config: Chunking configuration.

    Returns:
        Ordered list of chunks.
    """
    config = config or ChunkingConfig()
    encoding = _get_encoding(config.encoding_name)
    starts = sorted(chapter_starts)

    def chapter_of(line: int) -> int:
        index = 0
        for i, start in enumerate(starts):
            if line >= start:
                index = i + 1
        return index

    chunks: list[ReflowChunk] = []
    current: list[list[DocumentLine]] = []
    current_tokens = 0
    current_chapter: Optional[int] = None

    for paragraph in paragraphs:
        tokens = len(encoding.encode("\n".join(line.text for line in paragraph)))
        chapter = chapter_of(paragraph[0].start)
        crosses = current_chapter is not None and chapter != current_chapter
        overflows = current and current_tokens + tokens > config.reflow_chunk_tokens

        if current and (crosses or overflows):
            chunks.append(ReflowChunk(index=len(chunks), paragraphs=current, token_count=current_tokens))
            current = []
            current_tokens = 0

        current.append(paragraph)
        current_tokens += tokens
        current_chapter = chapter

    if current:
        chunks.append(ReflowChunk(index=len(chunks), paragraphs=current, token_count=current_tokens))

    logger.debug("reflow_chunks_built", num_chunks=len(chunks), paragraphs=len(paragraphs))
    return chunks
