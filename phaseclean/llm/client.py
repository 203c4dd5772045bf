"""Ollama client settings and construction."""

from functools import lru_cache
from typing import Optional

from langchain_ollama import OllamaLLM
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMSettings(BaseSettings):
    """Connection and generation settings for the Ollama models."""

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        env_file=".env",
        extra="ignore",
    )

    ollama_base_url: str = "http://localhost:11434"
    model_name: str = "gpt-oss:20b"
    fallback_model_name: str = "gemma3:latest"  # Asked when the primary answers empty
    temperature: float = 0.0
    request_timeout: int = 120
    num_ctx: int = 16384
    num_predict: int = 2048
    reflow_num_predict: int = 8192  # Reflow echoes the whole chunk back

    def model_for(self, use_fallback: bool) -> str:
        return self.fallback_model_name if use_fallback else self.model_name


@lru_cache
def get_llm_settings() -> LLMSettings:
    return LLMSettings()


def create_llm(
    settings: Optional[LLMSettings] = None,
    use_fallback: bool = False,
    timeout: Optional[float] = None,
    num_predict: Optional[int] = None,
) -> OllamaLLM:
    """Build an OllamaLLM for one cleaning call.

    Answers are read by chains._parse_json_response; format="json" is not
    set because it cuts long reflow answers short on some models.

    Args:
        settings: Connection settings (cached defaults when omitted).
        use_fallback: Use the fallback model.
        timeout: HTTP timeout in seconds for this call.
        num_predict: Generation limit; defaults to `settings.num_predict`.
    """
    settings = settings or get_llm_settings()
    return OllamaLLM(
        model=settings.model_for(use_fallback),
        base_url=settings.ollama_base_url,
        temperature=settings.temperature,
        client_kwargs={"timeout": timeout or settings.request_timeout},
        num_ctx=settings.num_ctx,
        num_predict=num_predict or settings.num_predict,
        streaming=False,
    )
