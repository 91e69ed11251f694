"""OpenAI (and Azure/OpenAI-compatible) HTTP provider."""

from __future__ import annotations

from typing import Any

import httpx

from providers.base import BaseLLMProvider

DEFAULT_OPENAI_BASE = "https://api.openai.com/v1"


class OpenAIProvider(BaseLLMProvider):
    """OpenAI API and OpenAI-compatible endpoints (Azure, etc.)."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str = "",
        model: str = "gpt-4o-mini",
        timeout_sec: int = 120,
        max_retries: int = 3,
        retry_delay_sec: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(
            base_url or DEFAULT_OPENAI_BASE,
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
        if kwargs.get("top_p") is not None:
            opts["top_p"] = kwargs["top_p"]
        # Structured output: the prompts always ask for a single JSON object
        opts["response_format"] = {"type": "json_object"}
        return opts
