"""HTTP knowledge retriever for a vector search backend."""

import logging
from typing import Any

import httpx

from flowengine.retrieval.port import KnowledgeRetriever, RetrievalError, RetrievedPassage

logger = logging.getLogger(__name__)


def _passage_from_hit(hit: dict[str, Any]) -> RetrievedPassage:
    metadata = hit.get("metadata") or {}
    text = hit.get("text") or hit.get("content") or metadata.get("content") or ""
    source = (
        hit.get("source")
        or metadata.get("fileName")
        or metadata.get("source")
        or hit.get("id")
        or ""
    )
    if "score" in hit:
        score = float(hit["score"])
    elif "similarity" in hit:
        score = float(hit["similarity"])
    else:
        score = 1.0 - float(hit.get("dist") or 0.0)
    return RetrievedPassage(text=text, source=str(source), score=score, metadata=metadata)


class HttpKnowledgeRetriever(KnowledgeRetriever):
    """
    Searches ``POST {base_url}/api/search``.

    The request carries ``{query, filter: {knowledgeId}, limit, threshold}``;
    the response's ``results`` list is mapped to passages. Hits below the
    threshold are dropped even if the backend returns them.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def _post(self, url: str, payload: dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, json=payload, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(url, json=payload)

    async def retrieve(
        self,
        knowledge_id: str,
        query: str,
        max_results: int = 3,
        threshold: float = 0.7,
    ) -> list[RetrievedPassage]:
        url = f"{self.base_url}/api/search"
        payload = {
            "query": query,
            "filter": {"knowledgeId": knowledge_id},
            "limit": max_results,
            "threshold": threshold,
        }
        try:
            response = await self._post(url, payload)
        except httpx.TimeoutException as e:
            raise RetrievalError(f"Search timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise RetrievalError(f"Search backend unreachable: {e}") from e

        if not response.is_success:
            raise RetrievalError(f"Search failed ({response.status_code}): {response.text}")

        try:
            data = response.json()
        except ValueError as e:
            raise RetrievalError(f"Search backend returned invalid JSON: {e}") from e

        hits = data.get("results") if isinstance(data, dict) else data
        if not isinstance(hits, list):
            logger.warning(f"⚠ Unexpected search response shape from {url}")
            return []

        passages = [_passage_from_hit(h) for h in hits if isinstance(h, dict)]
        passages = [p for p in passages if p.score >= threshold]
        passages.sort(key=lambda p: p.score, reverse=True)
        logger.debug(f"Search {knowledge_id}: {len(passages)} hit(s)")
        return passages[:max_results]
