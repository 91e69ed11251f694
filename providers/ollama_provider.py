"""Ollama (local) OpenAI-compatible API provider."""

from __future__ import annotations

from typing import Any

import httpx

from providers.base import BaseLLMProvider

DEFAULT_OLLAMA_BASE = "http://localhost:11434/v1"


class OllamaProvider(BaseLLMProvider):
    """Ollama local server; same HTTP contract as OpenAI chat/completions."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str = "",
        model: str = "llama3.2-vision",
        timeout_sec: int = 120,
        max_retries: int = 3,
        retry_delay_sec: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(
            base_url or DEFAULT_OLLAMA_BASE,
            api_key=api_key,
            model=model,
            timeout_sec=timeout_sec,
            max_retries=max_retries,
            retry_delay_sec=retry_delay_sec,
            client=client,
        )

    def _options(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        opts: dict[str, Any] = {}
        if kwargs.get("temperature") is not None:
            opts["temperature"] = kwargs["temperature"]
        if kwargs.get("response_format") is not None:
            opts["response_format"] = kwargs["response_format"]
        return opts
