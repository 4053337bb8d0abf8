"""Knowledge Retrieval Port and adapters."""

from flowengine.retrieval.http import HttpKnowledgeRetriever
from flowengine.retrieval.memory import InMemoryRetriever
from flowengine.retrieval.port import KnowledgeRetriever, RetrievalError, RetrievedPassage
from flowengine.retrieval.supervisor import BackendConfig, RetrievalBackendSupervisor

__all__ = [
    "KnowledgeRetriever",
    "RetrievedPassage",
    "RetrievalError",
    "InMemoryRetriever",
    "HttpKnowledgeRetriever",
    "BackendConfig",
    "RetrievalBackendSupervisor",
]
