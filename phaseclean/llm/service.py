"""AI capability used by the pipeline.

The pipeline only depends on the `CleaningAIService` protocol. Answers are
raw dicts; the pipeline validates them before trusting anything.
"""

from typing import Optional, Protocol, runtime_checkable

import httpx
import structlog

from phaseclean.llm.chains import (
    LLMChainError,
    run_boundary_detection_chain,
    run_final_review_chain,
    run_reflow_chain,
    run_structure_analysis_chain,
)
from phaseclean.llm.client import LLMSettings, get_llm_settings

logger = structlog.get_logger(__name__)


class AIServiceError(Exception):
    """The AI service failed to produce an answer."""

    pass


class AITimeoutError(AIServiceError):
    """The AI service did not answer within the time budget."""

    pass


class AIResponseError(AIServiceError):
    """The AI service answered with something that is not a JSON object."""

    pass


@runtime_checkable
class CleaningAIService(Protocol):
    """Calls the pipeline makes to an AI model."""

    def analyze_structure(
        self,
        excerpt: str,
        total_lines: int,
        total_words: int,
        content_type_hint: str,
        timeout: float,
    ) -> dict:
        ...

    def detect_boundary(
        self,
        boundary_kind: str,
        excerpt: str,
        total_lines: int,
        context_hints: str,
        timeout: float,
    ) -> dict:
        ...

    def reflow_chunk(
        self,
        chunk_text: str,
        chunk_index: int,
        total_chunks: int,
        context_hints: str,
        timeout: float,
    ) -> dict:
        ...

    def review_quality(
        self,
        original_sample: str,
        cleaned_sample: str,
        content_type: str,
        original_words: int,
        cleaned_words: int,
        timeout: float,
    ) -> dict:
        ...


class OllamaCleaningService:
    """CleaningAIService backed by the LangChain + Ollama chains."""

    def __init__(self, settings: Optional[LLMSettings] = None):
        self.settings = settings or get_llm_settings()

    def _call(self, name: str, chain, **kwargs) -> dict:
        try:
            return chain(settings=self.settings, **kwargs)
        except (httpx.TimeoutException, TimeoutError) as e:
            logger.warning("ai_call_timeout", call=name, error=str(e))
            raise AITimeoutError(f"{name} timed out: {e}") from e
        except LLMChainError as e:
            logger.warning("ai_call_unparseable", call=name, error=str(e))
            raise AIResponseError(str(e)) from e
        except (httpx.HTTPError, ConnectionError, ValueError) as e:
            logger.warning("ai_call_failed", call=name, error=str(e))
            raise AIServiceError(f"{name} failed: {e}") from e

    def analyze_structure(self, excerpt, total_lines, total_words, content_type_hint, timeout):
        return self._call(
            "analyze_structure",
            run_structure_analysis_chain,
            excerpt=excerpt,
            total_lines=total_lines,
            total_words=total_words,
            content_type_hint=content_type_hint,
            timeout=timeout,
        )

    def detect_boundary(self, boundary_kind, excerpt, total_lines, context_hints, timeout):
        return self._call(
            "detect_boundary",
            run_boundary_detection_chain,
            boundary_kind=boundary_kind,
            excerpt=excerpt,
            total_lines=total_lines,
            context_hints=context_hints,
            timeout=timeout,
        )

    def reflow_chunk(self, chunk_text, chunk_index, total_chunks, context_hints, timeout):
        return self._call(
            "reflow_chunk",
            run_reflow_chain,
            chunk_text=chunk_text,
            chunk_index=chunk_index,
            total_chunks=total_chunks,
            context_hints=context_hints,
            timeout=timeout,
        )

    def review_quality(self, original_sample, cleaned_sample, content_type, original_words, cleaned_words, timeout):
        return self._call(
            "review_quality",
            run_final_review_chain,
            original_sample=original_sample,
            cleaned_sample=cleaned_sample,
            content_type=content_type,
            original_words=original_words,
            cleaned_words=cleaned_words,
            timeout=timeout,
        )
