"""Model backend client and typed JSON-contract calls.

Every model interaction is a ``JsonCall`` subclass: it builds its prompt,
parses the decoded JSON object into a typed value, and names the value to
use when the backend fails or answers with something unusable. Callers of
``ModelClient.invoke`` therefore always get a value of the call's type.
"""

import asyncio
import json
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from anthropic import AsyncAnthropic
from anthropic.types import TextBlock
from openai import AsyncOpenAI

from article_lens.config import Settings, get_settings
from article_lens.errors import ModelCallError, ProviderNotConfiguredError
from article_lens.services.model_registry import (
    ModelConfigManager,
    ModelTierConfig,
    get_model_config_manager,
)
from article_lens.services.usage import log_usage

logger = logging.getLogger(__name__)

T = TypeVar("T")

# OpenAI-compatible endpoints per provider (None = SDK default)
PROVIDER_BASE_URLS: dict[str, str | None] = {
    "openai": None,
    "deepseek": "https://api.deepseek.com/v1",
    "gemini": "https://generativelanguage.googleapis.com/v1beta/openai/",
    "ollama": "http://localhost:11434/v1",
}

UsageLogger = Callable[[str, str, int, int, str | None], Awaitable[None]]


class JsonCall(Generic[T]):
    """One model call site with a JSON response contract."""

    service: str = "analysis"
    max_tokens: int = 1024
    temperature: float = 0.3

    def build_prompt(self) -> str:
        raise NotImplementedError

    def parse(self, data: dict[str, Any]) -> T:
        raise NotImplementedError

    def fallback(self) -> T:
        raise NotImplementedError


@dataclass
class Completion:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0


def parse_json_response(text: str) -> dict[str, Any]:
    """Decode a model's JSON object answer, tolerating markdown fences and chatter."""
    text = text.strip()
    # Remove any markdown code blocks if present
    if text.startswith("```"):
        text = re.sub(r"```(?:json)?\n?", "", text)
        text = text.strip()

    if not text.startswith("{"):
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise ModelCallError("Response contains no JSON object")
        text = text[start : end + 1]

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ModelCallError(f"Malformed JSON response: {e}") from e
    if not isinstance(data, dict):
        raise ModelCallError("Response JSON is not an object")
    return data


class ModelClient:
    """Routes calls to Anthropic or OpenAI-compatible backends by provider."""

    def __init__(
        self,
        settings: Settings | None = None,
        manager: ModelConfigManager | None = None,
        timeout: float | None = None,
        usage_logger: UsageLogger | None = None,
    ):
        self._settings = settings or get_settings()
        self._manager = manager or get_model_config_manager()
        self._timeout = timeout if timeout is not None else self._settings.model_call_timeout
        self._log_usage = usage_logger or log_usage
        self._anthropic: AsyncAnthropic | None = None
        self._openai: dict[str, AsyncOpenAI] = {}

    @property
    def manager(self) -> ModelConfigManager:
        return self._manager

    def _api_key(self, provider: str) -> str:
        return {
            "anthropic": self._settings.anthropic_api_key,
            "openai": self._settings.openai_api_key,
            "deepseek": self._settings.deepseek_api_key,
            "gemini": self._settings.gemini_api_key,
            # Ollama ignores the key but the SDK requires one
            "ollama": "ollama" if self._settings.ollama_base_url else "",
        }.get(provider, "")

    def supports(self, config: ModelTierConfig) -> bool:
        """Whether the client can reach the model's provider."""
        return bool(self._api_key(config.provider))

    def _anthropic_client(self) -> AsyncAnthropic:
        if self._anthropic is None:
            self._anthropic = AsyncAnthropic(api_key=self._settings.anthropic_api_key)
        return self._anthropic

    def _openai_client(self, provider: str) -> AsyncOpenAI:
        if provider not in self._openai:
            base_url = PROVIDER_BASE_URLS[provider]
            if provider == "ollama" and self._settings.ollama_base_url:
                base_url = self._settings.ollama_base_url
            self._openai[provider] = AsyncOpenAI(api_key=self._api_key(provider), base_url=base_url)
        return self._openai[provider]

    async def complete(
        self, config: ModelTierConfig, prompt: str, max_tokens: int = 1024, temperature: float = 0.3
    ) -> Completion:
        """Send one prompt to a backend and return its text and token usage."""
        if not self.supports(config):
            raise ProviderNotConfiguredError(config.provider)

        if config.provider == "anthropic":
            response = await self._anthropic_client().messages.create(
                model=config.model,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=[{"role": "user", "content": prompt}],
            )
            first_block = response.content[0]
            if not isinstance(first_block, TextBlock):
                raise ModelCallError("Unexpected response block type")
            return Completion(
                text=first_block.text,
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            )

        if config.provider not in PROVIDER_BASE_URLS:
            raise ProviderNotConfiguredError(config.provider)

        response = await self._openai_client(config.provider).chat.completions.create(
            model=config.model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[{"role": "user", "content": prompt}],
        )
        usage = response.usage
        return Completion(
            text=response.choices[0].message.content or "",
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )

    async def invoke(self, call: JsonCall[T], model_key: str, article_id: str | None = None) -> T:
        """Run a typed call, returning its fallback value on any backend or parse failure.

        Cancellation is never swallowed; a timeout counts as a backend failure.
        """
        config = self._manager.get_model_config(model_key)
        try:
            completion = await asyncio.wait_for(
                self.complete(config, call.build_prompt(), call.max_tokens, call.temperature),
                timeout=self._timeout,
            )
        except Exception as e:
            logger.warning("%s call to %s failed: %s", call.service, model_key, e)
            return call.fallback()

        await self._log_usage(
            call.service, model_key, completion.input_tokens, completion.output_tokens, article_id
        )

        try:
            return call.parse(parse_json_response(completion.text))
        except Exception as e:
            logger.warning("Unusable %s response from %s: %s", call.service, model_key, e)
            return call.fallback()


# Singleton instance
_client: ModelClient | None = None


def get_model_client() -> ModelClient:
    """Get or create the model client singleton."""
    global _client
    if _client is None:
        _client = ModelClient()
    return _client
