"""LangChain chains for the AI-assisted cleaning steps."""

import json
import re
from typing import Optional

import structlog
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from phaseclean.config.prompts import (
    BOUNDARY_DETECTION_SYSTEM_PROMPT,
    BOUNDARY_DETECTION_USER_PROMPT,
    FINAL_REVIEW_SYSTEM_PROMPT,
    FINAL_REVIEW_USER_PROMPT,
    REFLOW_SYSTEM_PROMPT,
    REFLOW_USER_PROMPT,
    STRUCTURE_ANALYSIS_SYSTEM_PROMPT,
    STRUCTURE_ANALYSIS_USER_PROMPT,
)
from phaseclean.llm.client import LLMSettings, create_llm, get_llm_settings

logger = structlog.get_logger(__name__)


class LLMChainError(Exception):
    """Error during LLM chain execution."""

    pass


# =============================================================================
# JSON Extraction
# =============================================================================

_FENCED_OBJECT_RE = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_DECODER = json.JSONDecoder()


def _first_json_object(text: str) -> Optional[dict]:
    """First JSON object in the text, skipping any reasoning before it.

    Trailing commas are dropped from an object that does not decode as is.
    """
    start = text.find("{")
    while start != -1:
        for candidate in (text[start:], _TRAILING_COMMA_RE.sub(r"\1", text[start:])):
            try:
                value, _ = _DECODER.raw_decode(candidate)
            except json.JSONDecodeError:
                continue
            if isinstance(value, dict):
                return value
        start = text.find("{", start + 1)
    return None


def _parse_json_response(response: str, call: str) -> dict:
    """Read the JSON object a cleaning call answered with.

    Tolerates reasoning before the object, a ```json fence and trailing
    commas.

    Args:
        response: Raw model output.
        call: Chain name for logs and errors.

    Raises:
        LLMChainError: If no JSON object can be read.
    """
    text = (response or "").strip().strip("\ufeff\u200b")
    if not text:
        raise LLMChainError(f"{call}: empty response")
    logger.debug("raw_llm_response", call=call, response_length=len(text), preview=text[:300])

    fenced = _FENCED_OBJECT_RE.search(text)
    for candidate in ([fenced.group(1)] if fenced else []) + [text]:
        parsed = _first_json_object(candidate)
        if parsed is not None:
            return parsed

    logger.error("json_parse_error", call=call, response_preview=text[:300])
    raise LLMChainError(f"{call}: no JSON object in response: {text[:150]}")


# =============================================================================
# Invocation
# =============================================================================

def _ask_model(
    prompt: ChatPromptTemplate,
    variables: dict,
    call: str,
    settings: Optional[LLMSettings] = None,
    timeout: Optional[float] = None,
    num_predict: Optional[int] = None,
) -> tuple[str, str]:
    """Ask the primary model, then the fallback model if the answer is empty.

    Returns:
        Tuple of (response text, model used).

    Raises:
        LLMChainError: If both models answer empty.
    """
    settings = settings or get_llm_settings()
    for use_fallback in (False, True):
        model = settings.model_for(use_fallback)
        llm = create_llm(settings, use_fallback=use_fallback, timeout=timeout, num_predict=num_predict)
        response = (prompt | llm | StrOutputParser()).invoke(variables)
        if response and response.strip():
            if use_fallback:
                logger.info("fallback_model_answered", call=call, model=model)
            return response, model
        logger.warning("empty_model_response", call=call, model=model)

    raise LLMChainError(
        f"{call}: both {settings.model_name} and {settings.fallback_model_name} answered empty"
    )


_retry_on_chain_error = retry(
    retry=retry_if_exception_type(LLMChainError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=30),
    reraise=True,
)


# =============================================================================
# Chains
# =============================================================================

@_retry_on_chain_error
def run_structure_analysis_chain(
    excerpt: str,
    total_lines: int,
    total_words: int,
    content_type_hint: str,
    settings: Optional[LLMSettings] = None,
    timeout: Optional[float] = None,
) -> dict:
    """Run the reconnaissance structure analysis chain.

    Args:
        excerpt: Line-numbered document excerpt.
        total_lines: Number of lines in the full document.
        total_words: Number of words in the full document.
        content_type_hint: User-selected content type, or "auto".
        settings: LLM settings.
        timeout: Request timeout in seconds.

    Returns:
        Raw structure analysis dict (not yet validated).
    """
    prompt = ChatPromptTemplate.from_messages([
        ("system", STRUCTURE_ANALYSIS_SYSTEM_PROMPT),
        ("human", STRUCTURE_ANALYSIS_USER_PROMPT),
    ])

    logger.debug("running_structure_analysis", total_lines=total_lines, excerpt_length=len(excerpt))

    response, model_used = _ask_model(
        prompt=prompt,
        variables={
            "excerpt": excerpt,
            "total_lines": total_lines,
            "total_words": total_words,
            "content_type_hint": content_type_hint,
        },
        call="structure_analysis",
        settings=settings,
        timeout=timeout,
    )
    result = _parse_json_response(response, "structure_analysis")

    logger.debug(
        "structure_analysis_complete",
        model_used=model_used,
        regions_found=len(result.get("regions", []) or []),
        patterns_found=len(result.get("patterns", []) or []),
    )
    return result


@_retry_on_chain_error
def run_boundary_detection_chain(
    boundary_kind: str,
    excerpt: str,
    total_lines: int,
    context_hints: str,
    settings: Optional[LLMSettings] = None,
    timeout: Optional[float] = None,
) -> dict:
    """Run the front/back matter boundary detection chain.

    Args:
        boundary_kind: "front" or "back".
        excerpt: Line-numbered excerpt around the expected boundary.
        total_lines: Number of lines in the full document.
        context_hints: Summary of reconnaissance findings.
        settings: LLM settings.
        timeout: Request timeout in seconds.

    Returns:
        Raw boundary dict (not yet validated).
    """
    prompt = ChatPromptTemplate.from_messages([
        ("system", BOUNDARY_DETECTION_SYSTEM_PROMPT),
        ("human", BOUNDARY_DETECTION_USER_PROMPT),
    ])

    response, model_used = _ask_model(
        prompt=prompt,
        variables={
            "boundary_kind": boundary_kind,
            "excerpt": excerpt,
            "total_lines": total_lines,
            "context_hints": context_hints,
        },
        call="boundary_detection",
        settings=settings,
        timeout=timeout,
    )
    result = _parse_json_response(response, "boundary_detection")

    logger.debug(
        "boundary_detection_complete",
        boundary_kind=boundary_kind,
        model_used=model_used,
        boundary_line=result.get("boundary_line"),
    )
    return result


@_retry_on_chain_error
def run_reflow_chain(
    chunk_text: str,
    chunk_index: int,
    total_chunks: int,
    context_hints: str,
    settings: Optional[LLMSettings] = None,
    timeout: Optional[float] = None,
) -> dict:
    """Run the paragraph reflow chain on one chunk.

    Args:
        chunk_text: Text of the chunk.
        chunk_index: 1-based index of this chunk.
        total_chunks: Total number of chunks.
        context_hints: Content type and characteristics summary.
        settings: LLM settings.
        timeout: Request timeout in seconds.

    Returns:
        Raw reflow dict with reflowed_text and word counts.
    """
    prompt = ChatPromptTemplate.from_messages([
        ("system", REFLOW_SYSTEM_PROMPT),
        ("human", REFLOW_USER_PROMPT),
    ])

    response, model_used = _ask_model(
        prompt=prompt,
        variables={
            "chunk_text": chunk_text,
            "chunk_index": chunk_index,
            "total_chunks": total_chunks,
            "context_hints": context_hints,
        },
        call="reflow",
        settings=settings,
        timeout=timeout,
        num_predict=(settings or get_llm_settings()).reflow_num_predict,
    )
    result = _parse_json_response(response, "reflow")

    logger.debug(
        "reflow_complete",
        chunk_index=chunk_index,
        model_used=model_used,
        output_word_count=result.get("output_word_count"),
    )
    return result


@_retry_on_chain_error
def run_final_review_chain(
    original_sample: str,
    cleaned_sample: str,
    content_type: str,
    original_words: int,
    cleaned_words: int,
    settings: Optional[LLMSettings] = None,
    timeout: Optional[float] = None,
) -> dict:
    """Run the final quality review chain.

    Returns:
        Raw review dict with quality_score, confidence and issues.
    """
    prompt = ChatPromptTemplate.from_messages([
        ("system", FINAL_REVIEW_SYSTEM_PROMPT),
        ("human", FINAL_REVIEW_USER_PROMPT),
    ])

    response, model_used = _ask_model(
        prompt=prompt,
        variables={
            "original_sample": original_sample,
            "cleaned_sample": cleaned_sample,
            "content_type": content_type,
            "original_words": original_words,
            "cleaned_words": cleaned_words,
        },
        call="final_review",
        settings=settings,
        timeout=timeout,
    )
    result = _parse_json_response(response, "final_review")

    logger.debug(
        "final_review_complete",
        model_used=model_used,
        quality_score=result.get("quality_score"),
    )
    return result
