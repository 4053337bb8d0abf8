"""
Node handler protocol.

Every node type has one handler. A handler reads the node's config and the
execution state, does its work, and returns a ``StepResult`` telling the
executor what to do next. Handlers:

- append exactly one history record when they succeed
- leave ``state.completed`` alone unless the run has no next node
- return ``StepResult.error(...)`` instead of raising
"""

import logging
from abc import ABC, abstractmethod

from flowengine.graph.flow import Flow
from flowengine.graph.node import FlowNode
from flowengine.graph.state import ExecutionState, StepResult
from flowengine.llm.provider import (
    InvocationOptions,
    LLMProvider,
    LLMResponse,
    ModelConfig,
    ProviderConfig,
)

logger = logging.getLogger(__name__)


class NodeHandler(ABC):
    """Executes one node type."""

    @abstractmethod
    async def execute(
        self,
        node: FlowNode,
        state: ExecutionState,
        flow: Flow,
        user_input: str | None = None,
    ) -> StepResult:
        """
        Run ``node`` against ``state``.

        Args:
            node: The node to run; its config matches this handler's type
            state: Mutable execution state for the conversation
            flow: The flow being run, for next-node resolution
            user_input: Text supplied by the caller on this turn, if any.
                Only interface nodes consume it.
        """
        pass


class ModelNodeHandler(NodeHandler):
    """Base for handlers that call the Model Invocation Port."""

    def __init__(
        self,
        llm: LLMProvider,
        default_provider: ProviderConfig | None = None,
        default_model: ModelConfig | None = None,
    ):
        self.llm = llm
        self.default_provider = default_provider
        self.default_model = default_model

    async def invoke(
        self,
        provider: ProviderConfig,
        model: ModelConfig,
        prompt: str,
        options: InvocationOptions,
    ) -> LLMResponse:
        logger.info(
            f"🤖 Invoking {provider.provider_type} model {model.name}",
            extra={"model": model.name},
        )
        response = await self.llm.invoke(provider, model, prompt, options)
        logger.debug(f"   ↳ {len(response.content or '')} chars from {model.name}")
        return response
