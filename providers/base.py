"""
Abstract base for all LLM providers.
Pipeline depends only on ILLMProvider; no concrete provider imports in services.
Concrete providers speak the OpenAI-compatible /chat/completions contract over httpx.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Sequence

import httpx

from core.exceptions import InferenceError
from core.interfaces import ILLMProvider
from core.models import DocumentImage, LLMResponse
from utils.image_utils import image_to_data_url, prepare_for_vision
from utils.retry import with_retry

logger = logging.getLogger(__name__)


class BaseLLMProvider(ILLMProvider, ABC):
    """Abstract LLM provider. Implement _options(); invoke/chat have defaults."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        model: str = "",
        timeout_sec: int = 120,
        max_retries: int = 3,
        retry_delay_sec: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key or ""
        self._model = model
        self._timeout = timeout_sec
        self._max_retries = max_retries
        self._retry_delay_sec = retry_delay_sec
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(float(timeout_sec)))

    @property
    def model(self) -> str:
        return self._model

    @abstractmethod
    def _options(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        """Provider-specific request fields (temperature, top_p, response_format, ...)."""
        ...

    def _headers(self) -> dict[str, str]:
        h: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            h["Authorization"] = f"Bearer {self._api_key}"
        return h

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        resp = await self._client.post(
            f"{self._base_url}/chat/completions",
            json=payload,
            headers=self._headers(),
        )
        resp.raise_for_status()
        return resp.json()

    async def chat(self, messages: list[dict[str, Any]], **kwargs: Any) -> LLMResponse:
        """Chat completion with transient-error retry. Raises InferenceError."""
        model = kwargs.get("model") or self._model
        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": kwargs.get("max_tokens", 4096),
            "stream": False,
        }
        payload.update(self._options(kwargs))
        try:
            data = await with_retry(
                lambda: self._post(payload),
                max_attempts=self._max_retries,
                delay_sec=self._retry_delay_sec,
            )
        except httpx.HTTPStatusError as e:
            raise InferenceError(
                f"{model}: HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise InferenceError(f"{model}: {type(e).__name__}: {e}") from e
        except ValueError as e:
            raise InferenceError(f"{model}: response is not JSON") from e
        choices = data.get("choices") or [{}]
        choice = choices[0]
        text = ((choice.get("message") or {}).get("content") or "").strip()
        usage = {k: v for k, v in (data.get("usage") or {}).items() if isinstance(v, int)}
        return LLMResponse(
            text=text,
            model=data.get("model") or model,
            finish_reason=choice.get("finish_reason") or "",
            usage=usage,
        )

    async def invoke(
        self,
        system_prompt: str,
        user_content: str,
        images: Sequence[DocumentImage] | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        content: list[dict[str, Any]] = [{"type": "text", "text": user_content}]
        for image in images or ():
            page = prepare_for_vision(image)
            content.append(
                {"type": "image_url", "image_url": {"url": image_to_data_url(page.data, page.media_type)}}
            )
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": content},
        ]
        return await self.chat(messages, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()
