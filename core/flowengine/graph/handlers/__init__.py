"""Node handlers, one per node type."""

from flowengine.graph.handlers.base import ModelNodeHandler, NodeHandler
from flowengine.graph.handlers.begin import BeginHandler
from flowengine.graph.handlers.categorize import CategorizeHandler
from flowengine.graph.handlers.generate import GenerateHandler
from flowengine.graph.handlers.interface import InterfaceHandler
from flowengine.graph.handlers.registry import HandlerRegistry
from flowengine.graph.handlers.retrieval import RetrievalHandler

__all__ = [
    "NodeHandler",
    "ModelNodeHandler",
    "BeginHandler",
    "InterfaceHandler",
    "GenerateHandler",
    "CategorizeHandler",
    "RetrievalHandler",
    "HandlerRegistry",
]
