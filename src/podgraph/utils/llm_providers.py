"""
LLM provider abstraction used by the semantic matching strategy.

Supports:
- OpenAI (default)
- Ollama (local)

Each provider implements a common chat interface with optional JSON mode
and reports token usage so the pipeline can account for cost.
"""

import asyncio
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from dotenv import load_dotenv

from .logger import logger, timer

load_dotenv()


class LLMProvider(str, Enum):
    """Supported LLM providers."""

    OPENAI = "openai"
    OLLAMA = "ollama"


@dataclass
class LLMConfig:
    """Configuration for LLM providers."""

    provider: LLMProvider
    model: str
    temperature: float = 0.1
    max_tokens: Optional[int] = 200
    timeout: float = 60.0
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    json_mode: bool = False
    extra_params: dict = field(default_factory=dict)


@dataclass
class Message:
    """Chat message."""

    role: str  # "system", "user", "assistant"
    content: str


@dataclass
class LLMResponse:
    """Response from LLM."""

    content: str
    model: str
    provider: LLMProvider
    usage: Optional[dict] = None


class BaseLLMProvider(ABC):
    """Base class for LLM providers."""

    def __init__(self, config: LLMConfig):
        self.config = config

    @abstractmethod
    def chat(self, messages: list[Message], json_mode: bool = False) -> LLMResponse:
        """Send messages and get response. json_mode forces JSON output if supported."""
        pass

    async def achat(self, messages: list[Message], json_mode: bool = False) -> LLMResponse:
        """Async chat (runs the blocking client in a worker thread)."""
        return await asyncio.to_thread(self.chat, messages, json_mode)


class OpenAIProvider(BaseLLMProvider):
    """OpenAI provider."""

    def __init__(self, config: LLMConfig):
        super().__init__(config)
        from openai import OpenAI

        api_key = config.api_key or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ValueError("OPENAI_API_KEY not found in environment or config")

        self.client = OpenAI(
            api_key=api_key,
            base_url=config.base_url,
            timeout=config.timeout,
        )

    def chat(self, messages: list[Message], json_mode: bool = False) -> LLMResponse:
        with timer(f"OpenAI chat ({self.config.model})"):
            kwargs = {
                "model": self.config.model,
                "messages": [{"role": m.role, "content": m.content} for m in messages],
                "temperature": self.config.temperature,
                "max_tokens": self.config.max_tokens,
            }
            if json_mode or self.config.json_mode:
                kwargs["response_format"] = {"type": "json_object"}

            response = self.client.chat.completions.create(**kwargs)
            return LLMResponse(
                content=response.choices[0].message.content or "",
                model=self.config.model,
                provider=LLMProvider.OPENAI,
                usage=response.usage.model_dump() if response.usage else None,
            )


class OllamaProvider(BaseLLMProvider):
    """Ollama local provider."""

    def __init__(self, config: LLMConfig):
        super().__init__(config)
        import ollama

        self.client = ollama.Client(
            host=config.base_url or os.getenv("OLLAMA_HOST", "http://localhost:11434"),
            timeout=config.timeout,
        )

    def chat(self, messages: list[Message], json_mode: bool = False) -> LLMResponse:
        with timer(f"Ollama chat ({self.config.model})"):
            kwargs = {
                "model": self.config.model,
                "messages": [{"role": m.role, "content": m.content} for m in messages],
                "options": {
                    "temperature": self.config.temperature,
                    "num_predict": self.config.max_tokens,
                },
            }
            if json_mode or self.config.json_mode:
                kwargs["format"] = "json"

            response = self.client.chat(**kwargs)
            usage = {
                "prompt_tokens": response.get("prompt_eval_count") or 0,
                "completion_tokens": response.get("eval_count") or 0,
            }
            return LLMResponse(
                content=response["message"]["content"],
                model=self.config.model,
                provider=LLMProvider.OLLAMA,
                usage=usage,
            )


def create_llm_provider(config: LLMConfig) -> BaseLLMProvider:
    """Create an LLM provider based on configuration."""
    providers = {
        LLMProvider.OPENAI: OpenAIProvider,
        LLMProvider.OLLAMA: OllamaProvider,
    }

    provider_class = providers.get(config.provider)
    if not provider_class:
        raise ValueError(f"Unknown provider: {config.provider}")

    logger.info(f"Creating {config.provider.value} provider with model {config.model}")
    return provider_class(config)


def get_default_matching_provider() -> BaseLLMProvider:
    """Build the provider used for entity matching from environment settings."""
    from ..constants import (
        DEFAULT_LLM_PROVIDER,
        LLM_MAX_TOKENS,
        LLM_REQUEST_TIMEOUT,
        LLM_TEMPERATURE,
        OLLAMA_LLM_MODEL,
        OLLAMA_URL,
        OPENAI_LLM_MODEL,
    )

    provider = LLMProvider(DEFAULT_LLM_PROVIDER)
    if provider == LLMProvider.OLLAMA:
        model, base_url = OLLAMA_LLM_MODEL, OLLAMA_URL
    else:
        model, base_url = OPENAI_LLM_MODEL, None

    config = LLMConfig(
        provider=provider,
        model=model,
        temperature=LLM_TEMPERATURE,
        max_tokens=LLM_MAX_TOKENS,
        timeout=LLM_REQUEST_TIMEOUT,
        base_url=base_url,
        json_mode=True,
    )
    return create_llm_provider(config)


__all__ = [
    "LLMProvider",
    "LLMConfig",
    "Message",
    "LLMResponse",
    "BaseLLMProvider",
    "OpenAIProvider",
    "OllamaProvider",
    "create_llm_provider",
    "get_default_matching_provider",
]
