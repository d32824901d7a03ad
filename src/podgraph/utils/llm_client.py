"""
Process-wide LLM client for podgraph.

Provides a lazily created client for the configured provider (OpenAI by default)
and an async chat helper that also reports the dollar cost of the call.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from .llm_providers import (
    BaseLLMProvider,
    LLMConfig,
    LLMProvider,
    LLMResponse,
    Message,
    create_llm_provider,
    get_default_matching_provider,
)
from .logger import logger

# Global LLM client (lazy-loaded singleton)
_llm_client: Optional[BaseLLMProvider] = None


def get_llm_client() -> BaseLLMProvider:
    """
    Get the global LLM client.

    Returns:
        BaseLLMProvider instance configured from environment
    """
    global _llm_client
    if _llm_client is None:
        _llm_client = get_default_matching_provider()
        logger.info(f"LLM client initialized: {_llm_client.config.provider.value}/{_llm_client.config.model}")
    return _llm_client


def reset_llm_client() -> None:
    """Reset the global LLM client (useful for testing or provider switching)."""
    global _llm_client
    _llm_client = None
    logger.info("LLM client reset")


def set_llm_provider(provider: str, model: str = None) -> BaseLLMProvider:
    """
    Set a specific LLM provider.

    Args:
        provider: Provider name ("openai", "ollama")
        model: Model name (optional, uses default for provider)
    """
    global _llm_client

    default_models = {
        "openai": "gpt-4o-mini",
        "ollama": "granite3.3:8b",
    }
    model = model or default_models.get(provider, "gpt-4o-mini")

    _llm_client = create_llm_provider(LLMConfig(
        provider=LLMProvider(provider),
        model=model,
        json_mode=True,
    ))
    logger.info(f"LLM client set to: {provider}/{model}")
    return _llm_client


@dataclass
class ChatResult:
    """Text of an LLM answer plus what it cost."""

    content: str
    cost: float
    usage: Optional[dict] = None


def estimate_cost(response: LLMResponse) -> float:
    """
    Dollar cost of a response.

    Uses per-token pricing when the provider reported usage for a priced model,
    zero for local providers, otherwise the flat per-call estimate.
    """
    from ..constants import LLM_CALL_COST_USD, get_model_pricing

    if response.provider == LLMProvider.OLLAMA:
        return 0.0

    pricing = get_model_pricing(response.model)
    usage = response.usage or {}
    if pricing and usage:
        prompt_tokens = usage.get("prompt_tokens") or 0
        completion_tokens = usage.get("completion_tokens") or 0
        return (prompt_tokens / 1000) * pricing["input"] + (completion_tokens / 1000) * pricing["output"]
    return LLM_CALL_COST_USD


async def llm_chat_async(
    messages: List[Dict[str, str]],
    client: Optional[BaseLLMProvider] = None,
    json_mode: bool = True,
) -> ChatResult:
    """
    Send a chat request and return the answer with its cost.

    Args:
        messages: List of {"role": ..., "content": ...} dicts
        client: Provider to use (defaults to the global client)
        json_mode: Force JSON output

    Returns:
        ChatResult with content, cost and raw usage
    """
    client = client or get_llm_client()
    msg_objects = [Message(role=m["role"], content=m["content"]) for m in messages]
    response = await client.achat(msg_objects, json_mode=json_mode)
    return ChatResult(content=response.content, cost=estimate_cost(response), usage=response.usage)


__all__ = [
    "ChatResult",
    "get_llm_client",
    "reset_llm_client",
    "set_llm_provider",
    "estimate_cost",
    "llm_chat_async",
]
