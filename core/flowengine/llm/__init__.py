"""Model Invocation Port and its adapters.

``LiteLLMProvider`` lives in ``flowengine.llm.litellm`` and is imported from
there directly so that using the engine with a mock never loads litellm.
"""

from flowengine.llm.mock import MockLLMProvider
from flowengine.llm.provider import (
    InvocationOptions,
    LLMProvider,
    LLMResponse,
    ModelConfig,
    ModelInvocationError,
    ModelTransportError,
    ModelUpstreamError,
    ProviderConfig,
)

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "InvocationOptions",
    "ProviderConfig",
    "ModelConfig",
    "ModelInvocationError",
    "ModelTransportError",
    "ModelUpstreamError",
    "MockLLMProvider",
]
