"""OpenRouter provider using the openai SDK against an OpenAI-compatible endpoint."""

import asyncio
import logging
import os
import time
from typing import Any

from openai import APIStatusError, AsyncOpenAI

from config.config_loader import ApiConfig
from polyllm.models import ModelDescriptor, ModelResponse
from polyllm.providers.base import ChatProvider, ProviderError

logger = logging.getLogger(__name__)


class OpenRouterProvider(ChatProvider):
    """Chat completions over HTTPS with a bearer token, many models behind one URL."""

    def __init__(self, config: ApiConfig, client: AsyncOpenAI | None = None) -> None:
        self._config = config
        if client is None:
            api_key = os.environ.get(config.api_key_env, "").strip()
            if not api_key:
                raise ProviderError("openrouter", f"Missing API key: {config.api_key_env}")
            client = AsyncOpenAI(
                api_key=api_key,
                base_url=config.base_url,
                max_retries=0,
                default_headers={
                    "HTTP-Referer": config.referer,
                    "X-Title": config.app_title,
                },
            )
        self._client = client

    def name(self) -> str:
        return "openrouter"

    async def generate(self, model: ModelDescriptor, prompt: str, max_tokens: int) -> ModelResponse:
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=model.id,
                    messages=[{"role": "user", "content": prompt}],
                    temperature=self._config.temperature,
                    max_tokens=max_tokens,
                    top_p=self._config.top_p,
                    frequency_penalty=self._config.frequency_penalty,
                    presence_penalty=self._config.presence_penalty,
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(model.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except APIStatusError as exc:
            raise ProviderError(model.name, f"HTTP {exc.status_code}: {exc.message}") from exc
        except Exception as exc:
            raise ProviderError(model.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        choice = response.choices[0] if response.choices else None
        if not choice or choice.message is None:
            raise ProviderError(model.name, "Invalid response format - no message content")

        content = choice.message.content
        if not content or not content.strip():
            raise ProviderError(model.name, "Empty response content")

        usage: dict[str, Any] = {}
        if response.usage:
            usage = response.usage.model_dump()

        logger.debug(
            "%s: %.2fs, %s tokens",
            model.name,
            latency,
            usage.get("total_tokens"),
        )

        return ModelResponse(
            model_id=model.id,
            content=content,
            latency_sec=latency,
            usage=usage,
        )
