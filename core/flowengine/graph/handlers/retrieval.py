"""
Retrieval node: searches the configured knowledge bases and publishes the
hits for downstream generate nodes.

One search per knowledge base runs concurrently. Results are merged in the
configured knowledge-base order, not completion order, then truncated.
"""

import asyncio
import json
import logging

from flowengine.graph.flow import Flow
from flowengine.graph.handlers.base import NodeHandler
from flowengine.graph.node import FlowNode, RetrievalConfig
from flowengine.graph.references import resolve_input_references, resolve_input_source
from flowengine.graph.state import ExecutionState, StepResult
from flowengine.retrieval.port import KnowledgeRetriever, RetrievalError, RetrievedPassage

logger = logging.getLogger(__name__)


def format_passages(passages: list[RetrievedPassage], output_format: str) -> str:
    """Render passages as ``json``, ``citations`` or numbered ``text``."""
    if output_format == "json":
        return json.dumps([p.model_dump() for p in passages], indent=2)

    if output_format == "citations":
        body = "\n\n".join(f"{p.text} [{i}]" for i, p in enumerate(passages, 1))
        sources = "\n".join(f"[{i}] {p.source}" for i, p in enumerate(passages, 1))
        return f"{body}\n\nSources:\n{sources}"

    return "\n\n".join(f"[{i}] {p.text}\nSource: {p.source}" for i, p in enumerate(passages, 1))


class RetrievalHandler(NodeHandler):
    def __init__(self, retriever: KnowledgeRetriever | None):
        self.retriever = retriever

    async def execute(
        self,
        node: FlowNode,
        state: ExecutionState,
        flow: Flow,
        user_input: str | None = None,
    ) -> StepResult:
        config: RetrievalConfig = node.config
        variables = state.variables

        resolve_input_references(config.input_refs, variables)

        query = None
        if config.query_source:
            query = resolve_input_source(config.query_source, variables, state.history)
        query = query or variables.get("lastUserInput") or variables.get("userInput")
        if not query:
            return StepResult.error("No query available for retrieval")
        if not config.knowledge_ids:
            return StepResult.error("No knowledge bases specified")
        if self.retriever is None:
            return StepResult.error("No knowledge retriever configured")

        query = query if isinstance(query, str) else str(query)
        logger.info(
            f"📚 Retrieving from {len(config.knowledge_ids)} knowledge base(s) for {node.id}"
        )
        try:
            per_base = await asyncio.gather(
                *(
                    self.retriever.retrieve(
                        knowledge_id, query, config.max_results, config.threshold
                    )
                    for knowledge_id in config.knowledge_ids
                )
            )
        except RetrievalError as e:
            logger.error(f"✗ Retrieval node {node.id} failed: {e}")
            return StepResult.error(f"Error retrieving information: {e}")

        passages = [p for hits in per_base for p in hits][: config.max_results]
        formatted = format_passages(passages, config.output_format)
        raw = [p.model_dump() for p in passages]

        variables[config.output_variable or "retrievalResults"] = raw
        variables["retrievalResults"] = raw
        variables["retrievalContext"] = formatted
        for output in config.outputs:
            if output.name == "results":
                variables[f"{node.id}.results"] = raw
            elif output.name == "formattedResults":
                variables[f"{node.id}.formattedResults"] = formatted

        state.record_step(node.id, node.type, input=query, output=formatted)
        return StepResult.advance(formatted, flow.next_node(node.id))
