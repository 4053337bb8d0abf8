"""In-memory knowledge retriever with keyword-overlap scoring."""

import re

from flowengine.retrieval.port import KnowledgeRetriever, RetrievedPassage

_WORD = re.compile(r"\w+")


def _tokens(text: str) -> set[str]:
    return {w.lower() for w in _WORD.findall(text)}


def keyword_score(query: str, text: str) -> float:
    """Fraction of distinct query words that appear in ``text`` (0.0 - 1.0)."""
    query_words = _tokens(query)
    if not query_words:
        return 0.0
    return len(query_words & _tokens(text)) / len(query_words)


class InMemoryRetriever(KnowledgeRetriever):
    """
    Knowledge bases held in a dict, searched by keyword overlap.

    Example:
        retriever = InMemoryRetriever()
        retriever.add_passages("kb-1", [("Refunds take 5 days.", "faq.md")])
        hits = await retriever.retrieve("kb-1", "how long do refunds take", threshold=0.3)
    """

    def __init__(self, knowledge: dict[str, list[RetrievedPassage]] | None = None):
        self._knowledge: dict[str, list[RetrievedPassage]] = {
            k: list(v) for k, v in (knowledge or {}).items()
        }

    def add_passages(
        self,
        knowledge_id: str,
        passages: list[RetrievedPassage | str | tuple[str, str]],
    ) -> None:
        """Add passages given as models, bare text, or ``(text, source)`` pairs."""
        bucket = self._knowledge.setdefault(knowledge_id, [])
        for passage in passages:
            if isinstance(passage, RetrievedPassage):
                bucket.append(passage)
            elif isinstance(passage, str):
                bucket.append(RetrievedPassage(text=passage, source=knowledge_id))
            else:
                text, source = passage
                bucket.append(RetrievedPassage(text=text, source=source))

    @property
    def knowledge_ids(self) -> list[str]:
        return list(self._knowledge)

    async def retrieve(
        self,
        knowledge_id: str,
        query: str,
        max_results: int = 3,
        threshold: float = 0.7,
    ) -> list[RetrievedPassage]:
        scored = []
        for passage in self._knowledge.get(knowledge_id, []):
            score = keyword_score(query, passage.text)
            if score >= threshold and score > 0:
                scored.append(passage.model_copy(update={"score": score}))
        # sorted() is stable, so ties keep insertion order
        scored = sorted(scored, key=lambda p: p.score, reverse=True)
        return scored[:max_results]
