"""Factory for creating LLM providers from config. No hardcoded model names."""

from __future__ import annotations

import httpx

from core.exceptions import ConfigError
from core.interfaces import ILLMProvider
from providers.ollama_provider import OllamaProvider
from providers.openai_provider import OpenAIProvider
from utils.config import LLMConfig


def create_provider(
    provider: str,
    *,
    base_url: str | None = None,
    api_key: str = "",
    model: str = "",
    timeout_sec: int = 120,
    max_retries: int = 3,
    retry_delay_sec: float = 2.0,
    client: httpx.AsyncClient | None = None,
) -> ILLMProvider:
    """
    Create an LLM provider by name. All settings from config; easy to add new providers.
    """
    name = (provider or "ollama").strip().lower()
    if name == "openai":
        return OpenAIProvider(
            base_url=base_url,
            api_key=api_key,
            model=model or "gpt-4o-mini",
            timeout_sec=timeout_sec,
            max_retries=max_retries,
            retry_delay_sec=retry_delay_sec,
            client=client,
        )
    if name == "ollama":
        return OllamaProvider(
            base_url=base_url,
            api_key=api_key,
            model=model or "llama3.2-vision",
            timeout_sec=timeout_sec,
            max_retries=max_retries,
            retry_delay_sec=retry_delay_sec,
            client=client,
        )
    raise ConfigError(f"Unknown LLM provider: {provider}. Use openai or ollama.")


def create_provider_from_config(llm: LLMConfig, client: httpx.AsyncClient | None = None) -> ILLMProvider:
    """One provider serves every model in llm; services pass model= per call."""
    return create_provider(
        llm.provider,
        base_url=llm.base_url,
        api_key=llm.api_key,
        model=llm.extraction_model,
        timeout_sec=llm.timeout_sec,
        max_retries=llm.max_retries,
        retry_delay_sec=llm.retry_delay_sec,
        client=client,
    )
