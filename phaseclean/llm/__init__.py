"""LLM client, chains and the AI service used by the pipeline."""

from .client import LLMSettings, create_llm, get_llm_settings
from .service import (
    AIResponseError,
    AIServiceError,
    AITimeoutError,
    CleaningAIService,
    OllamaCleaningService,
)

__all__ = [
    "LLMSettings",
    "create_llm",
    "get_llm_settings",
    "AIServiceError",
    "AITimeoutError",
    "AIResponseError",
    "CleaningAIService",
    "OllamaCleaningService",
]
