"""
Interface node: the pause boundary.

Three situations reach an interface node:

1. The conversation has never paused: show the greeting (or whatever was
   produced before it) and wait.
2. The caller supplied user input: store it and move on.
3. The run looped back here without new input: show the latest output and
   wait again.
"""

import logging

from flowengine.graph.flow import Flow
from flowengine.graph.handlers.base import NodeHandler
from flowengine.graph.node import FlowNode, InterfaceConfig
from flowengine.graph.state import ExecutionState, StepResult
from flowengine.graph.template import render_template

logger = logging.getLogger(__name__)

WELCOME_FALLBACK = "Welcome! How can I assist you today?"
NO_OUTPUT_FALLBACK = "No previous output to display"


def _first_present(*candidates):
    for candidate in candidates:
        if candidate is not None:
            return candidate
    return None


class InterfaceHandler(NodeHandler):
    async def execute(
        self,
        node: FlowNode,
        state: ExecutionState,
        flow: Flow,
        user_input: str | None = None,
    ) -> StepResult:
        config: InterfaceConfig = node.config
        variables = state.variables

        if not state.pause.has_paused_once:
            content = self._display(
                config,
                state,
                variables.get("initialGreeting"),
                variables.get("generatedOutput"),
                state.last_output(),
                WELCOME_FALLBACK,
            )
            state.mark_paused(node.id)
            logger.info(f"⏸ Paused at {node.id} (first pause)")
            return StepResult.waiting(content)

        if user_input:
            variables["userInput"] = user_input
            variables["lastUserInput"] = user_input
            state.pause.pause_count += 1
            state.pause.last_pause_node_id = node.id

            next_node_id = flow.next_node(node.id)
            if next_node_id is None:
                state.completed = True
            return StepResult.advance(user_input, next_node_id)

        content = self._display(
            config,
            state,
            variables.get("generatedOutput"),
            variables.get("lastResponse"),
            state.last_output(),
            NO_OUTPUT_FALLBACK,
        )
        state.mark_paused(node.id)
        logger.info(f"⏸ Paused at {node.id}")
        return StepResult.waiting(content)

    @staticmethod
    def _display(config: InterfaceConfig, state: ExecutionState, *candidates) -> str:
        if config.template:
            rendered = render_template(config.template, state.variables)
            if rendered:
                return rendered
        content = _first_present(*candidates)
        return content if isinstance(content, str) else str(content)
