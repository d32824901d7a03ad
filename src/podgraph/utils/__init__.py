"""
Utility modules for the resolution pipeline.

Exports:
- logger: loguru logging with timing and metrics helpers
- errors: error taxonomy and upstream error classification
- llm_providers: OpenAI / Ollama chat abstraction
- llm_client: process-wide client and async chat with cost accounting
"""

from .logger import (
    logger,
    timer,
    PipelineTimer,
    log_metrics,
)

from .errors import (
    ErrorType,
    classify_error,
    PodgraphError,
    TransientStoreError,
    TransientResolutionError,
    MalformedLLMResponseError,
    FatalConnectivityError,
    StoreUnavailableError,
    LLMUnavailableError,
)

from .llm_providers import (
    LLMProvider,
    LLMConfig,
    LLMResponse,
    Message,
    BaseLLMProvider,
    OpenAIProvider,
    OllamaProvider,
    create_llm_provider,
)

from .llm_client import (
    ChatResult,
    get_llm_client,
    llm_chat_async,
)
