"""Generate node: renders a prompt and calls a language model."""

import logging

from flowengine.graph.flow import Flow
from flowengine.graph.handlers.base import ModelNodeHandler
from flowengine.graph.node import FlowNode, GenerateConfig
from flowengine.graph.references import resolve_input_references
from flowengine.graph.state import ExecutionState, StepResult
from flowengine.graph.template import render_template
from flowengine.llm.provider import InvocationOptions, ModelInvocationError

logger = logging.getLogger(__name__)


class GenerateHandler(ModelNodeHandler):
    async def execute(
        self,
        node: FlowNode,
        state: ExecutionState,
        flow: Flow,
        user_input: str | None = None,
    ) -> StepResult:
        config: GenerateConfig = node.config
        variables = state.variables

        resolve_input_references(config.input_refs, variables)

        question = variables.get("lastUserInput")
        if question is None:
            question = variables.get("userInput")
        prompt_variables = {
            **variables,
            "context": variables.get("retrievalContext") or "",
            "question": question if question is not None else "",
        }
        prompt = render_template(config.prompt, prompt_variables)

        model = config.model or self.default_model
        if model is None:
            return StepResult.error("No AI model specified")
        provider = config.provider or self.default_provider
        if provider is None:
            return StepResult.error("Provider not found for this model")

        options = InvocationOptions(
            temperature=config.temperature if config.temperature is not None else 0.7,
            max_tokens=config.max_tokens,
            top_p=config.top_p,
        )
        try:
            response = await self.invoke(provider, model, prompt, options)
        except ModelInvocationError as e:
            logger.error(f"✗ Generate node {node.id} failed: {e}")
            return StepResult.error(f"Error generating content: {e}")

        text = response.content
        output_name = config.output_variable or config.name or "generatedText"
        variables[output_name] = text
        variables["generatedOutput"] = text
        variables["lastResponse"] = text
        variables[f"{node.id}.output"] = text

        state.record_step(node.id, node.type, input=prompt, output=text)
        return StepResult.advance(text, flow.next_node(node.id))
