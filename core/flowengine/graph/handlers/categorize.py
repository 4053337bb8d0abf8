"""
Categorize node: asks a language model to classify text into one of the
configured categories and branches on the answer.

The model is asked for a compact JSON object. Anything that cannot be read
as one, or names a category that is not configured, falls back to the
default category with confidence 0. Confidence is recorded but does not
influence routing.
"""

import json
import logging
import re
from typing import Any

from flowengine.graph.flow import Flow
from flowengine.graph.handlers.base import ModelNodeHandler
from flowengine.graph.node import CategorizeConfig, Category, FlowNode
from flowengine.graph.references import resolve_input_references, resolve_input_source
from flowengine.graph.state import ExecutionState, StepResult
from flowengine.llm.provider import InvocationOptions, ModelInvocationError

logger = logging.getLogger(__name__)

CATEGORY_JSON_PATTERN = re.compile(r'\{[^{]*"category"[^}]*\}')
CATEGORIZE_TEMPERATURE = 0.3


def build_categorize_prompt(categories: list[Category], text: str) -> str:
    lines = []
    for category in categories:
        line = f"- {category.name}: {category.description}"
        if category.examples:
            line += f"\n  Examples: {', '.join(category.examples)}"
        lines.append(line)
    categories_description = "\n".join(lines)

    return (
        "I need to categorize the following text into one of these categories:\n\n"
        f"{categories_description}\n\n"
        "Text to categorize:\n"
        f'"""\n{text}\n"""\n\n'
        "Analyze the text and determine which category it belongs to. Respond with ONLY "
        "the category name and a confidence score between 0 and 1, in this exact JSON "
        "format:\n"
        '{"category": "category_name", "confidence": 0.95}'
    )


def parse_categorization(
    response_text: str, config: CategorizeConfig
) -> tuple[str, float]:
    """
    Extract ``(category, confidence)`` from a model reply.

    Falls back to ``(default_category, 0.0)`` when no JSON object with a
    ``category`` key can be parsed or the category is unknown.
    """
    fallback = (config.default_category, 0.0)

    match = CATEGORY_JSON_PATTERN.search(response_text or "")
    if not match:
        return fallback
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        logger.warning(f"⚠ Could not parse categorization reply: {e}")
        return fallback

    name = payload.get("category")
    if not name:
        return fallback
    matched = config.find_category(name)
    if matched is None:
        return fallback

    confidence = payload.get("confidence")
    if isinstance(confidence, (int, float)) and not isinstance(confidence, bool):
        return matched.name, min(max(float(confidence), 0.0), 1.0)
    return matched.name, 1.0


class CategorizeHandler(ModelNodeHandler):
    async def execute(
        self,
        node: FlowNode,
        state: ExecutionState,
        flow: Flow,
        user_input: str | None = None,
    ) -> StepResult:
        config: CategorizeConfig = node.config
        variables = state.variables

        resolve_input_references(config.input_refs, variables)
        text: Any = resolve_input_source(config.input_source, variables, state.history)
        if not text:
            return StepResult.error("No input available to categorize")
        if not config.categories:
            return StepResult.error("No categories defined")

        model = config.model or self.default_model
        provider = config.provider or self.default_provider
        if model is None:
            return StepResult.error("No suitable model found for categorization")
        if provider is None:
            return StepResult.error("Provider not found for this model")

        text = text if isinstance(text, str) else json.dumps(text, default=str)
        prompt = build_categorize_prompt(config.categories, text)
        try:
            response = await self.invoke(
                provider, model, prompt, InvocationOptions(temperature=CATEGORIZE_TEMPERATURE)
            )
        except ModelInvocationError as e:
            logger.error(f"✗ Categorize node {node.id} failed: {e}")
            return StepResult.error(f"Error categorizing input: {e}")

        category, confidence = parse_categorization(response.content, config)
        logger.info(f"🔀 {node.id} categorized as '{category}' ({confidence:.2f})")

        variables["category"] = category
        variables["categorization"] = {
            "input": text,
            "category": category,
            "confidence": confidence,
        }
        state.record_step(node.id, node.type, input=text, output=category)

        matched = config.find_category(category)
        if matched is not None and matched.target_node:
            next_node_id = matched.target_node
        else:
            next_node_id = flow.next_node(node.id, category)

        return StepResult.advance(f'Categorized as "{category}"', next_node_id)
