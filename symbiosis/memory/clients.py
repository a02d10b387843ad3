"""OpenAI-compatible chat client used for synthesis and generation."""

from __future__ import annotations

import logging
import os
from typing import Any, Mapping, MutableMapping, Optional, Sequence

from openai import AsyncOpenAI

logger = logging.getLogger(__name__)


OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

DEFAULT_HEADERS: Mapping[str, Mapping[str, str]] = {
    "openrouter": {"X-Title": "Symbiosis"},
}

_API_KEY_ENV = {
    "openrouter": "OPENROUTER_API_KEY",
    "openai": "OPENAI_API_KEY",
    "vllm": "OPENAI_API_KEY",
}


class LLMClient:
    """Thin wrapper over :class:`openai.AsyncOpenAI` with provider defaults."""

    def __init__(
        self,
        *,
        model: str,
        base_url: str | None = None,
        provider: str = "openrouter",
        api_key: str | None = None,
        api_key_env: str | None = None,
        timeout: float | None = None,
        referer: str | None = None,
    ) -> None:
        provider_key = provider.lower()
        if provider_key not in _API_KEY_ENV:
            raise ValueError(f"Unsupported provider '{provider}'")

        if api_key is None:
            env_name = api_key_env or _API_KEY_ENV[provider_key]
            api_key = os.environ.get(env_name) or ""

        if base_url is None and provider_key == "openrouter":
            base_url = OPENROUTER_BASE_URL

        headers = dict(DEFAULT_HEADERS.get(provider_key, {}))
        if referer and provider_key == "openrouter":
            headers["HTTP-Referer"] = referer

        options: MutableMapping[str, Any] = {"default_headers": headers, "max_retries": 0}
        if timeout is not None:
            options["timeout"] = timeout
        self._client = AsyncOpenAI(base_url=base_url, api_key=api_key, **options)
        self.model = model
        self.provider = provider_key

    async def chat(
        self,
        messages: Sequence[Mapping[str, object]],
        *,
        model: Optional[str] = None,
    ) -> str:
        payload: MutableMapping[str, Any] = {
            "model": model or self.model,
            "messages": list(messages),
        }
        logger.debug("Dispatching chat request: %s", payload)
        response = await self._client.chat.completions.create(**payload)
        logger.debug("Chat raw response: %s", response)
        choice = response.choices[0].message
        return getattr(choice, "content", "") or ""

    async def aclose(self) -> None:
        await self._client.close()


__all__ = ["LLMClient", "OPENROUTER_BASE_URL"]
