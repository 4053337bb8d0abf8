"""Knowledge Retrieval Port - search over knowledge bases."""

from abc import ABC, abstractmethod

from pydantic import BaseModel


class RetrievedPassage(BaseModel):
    """One ranked search hit."""

    text: str
    source: str = ""
    score: float = 0.0

    model_config = {"extra": "allow"}


class RetrievalError(Exception):
    """A knowledge search failed (transport, timeout or non-success response)."""


class KnowledgeRetriever(ABC):
    """
    Abstract knowledge search backend.

    Implementations enforce their own timeouts and raise ``RetrievalError``
    on failure.
    """

    @abstractmethod
    async def retrieve(
        self,
        knowledge_id: str,
        query: str,
        max_results: int = 3,
        threshold: float = 0.7,
    ) -> list[RetrievedPassage]:
        """Return at most ``max_results`` passages scoring at or above ``threshold``, best first."""
        pass
