"""Handler registry - dispatch by node type tag."""

import logging

from flowengine.graph.handlers.base import NodeHandler
from flowengine.graph.handlers.begin import BeginHandler
from flowengine.graph.handlers.categorize import CategorizeHandler
from flowengine.graph.handlers.generate import GenerateHandler
from flowengine.graph.handlers.interface import InterfaceHandler
from flowengine.graph.handlers.retrieval import RetrievalHandler
from flowengine.graph.node import NodeType
from flowengine.llm.provider import LLMProvider, ModelConfig, ProviderConfig
from flowengine.retrieval.port import KnowledgeRetriever

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """
    Maps node types to handlers.

    Example:
        registry = HandlerRegistry.default(llm=LiteLLMProvider(), retriever=retriever)
        handler = registry.get(NodeType.GENERATE)
    """

    def __init__(self, handlers: dict[NodeType, NodeHandler] | None = None):
        self._handlers: dict[NodeType, NodeHandler] = dict(handlers or {})

    @classmethod
    def default(
        cls,
        llm: LLMProvider,
        retriever: KnowledgeRetriever | None = None,
        default_provider: ProviderConfig | None = None,
        default_model: ModelConfig | None = None,
    ) -> "HandlerRegistry":
        """Registry with the built-in handler for every node type."""
        return cls(
            {
                NodeType.BEGIN: BeginHandler(),
                NodeType.INTERFACE: InterfaceHandler(),
                NodeType.GENERATE: GenerateHandler(llm, default_provider, default_model),
                NodeType.CATEGORIZE: CategorizeHandler(llm, default_provider, default_model),
                NodeType.RETRIEVAL: RetrievalHandler(retriever),
            }
        )

    def register(self, node_type: NodeType | str, handler: NodeHandler) -> None:
        node_type = NodeType(node_type)
        if node_type in self._handlers:
            logger.debug(f"Replacing handler for {node_type}")
        self._handlers[node_type] = handler

    def get(self, node_type: NodeType | str) -> NodeHandler | None:
        try:
            return self._handlers.get(NodeType(node_type))
        except ValueError:
            return None

    def __contains__(self, node_type: object) -> bool:
        return self.get(node_type) is not None  # type: ignore[arg-type]
