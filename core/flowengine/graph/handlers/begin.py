"""Begin node: greets the user and seeds declared variables."""

from flowengine.graph.flow import Flow
from flowengine.graph.handlers.base import NodeHandler
from flowengine.graph.node import BeginConfig, FlowNode
from flowengine.graph.state import ExecutionState, StepResult
from flowengine.graph.template import render_template


class BeginHandler(NodeHandler):
    async def execute(
        self,
        node: FlowNode,
        state: ExecutionState,
        flow: Flow,
        user_input: str | None = None,
    ) -> StepResult:
        config: BeginConfig = node.config
        variables = state.variables

        for variable in config.variables:
            if variable.key and variable.key not in variables:
                variables[variable.key] = variable.default

        greeting = render_template(config.greeting or "Hello!", variables)
        variables["initialGreeting"] = greeting

        state.record_step(node.id, node.type, output=greeting)
        return StepResult.advance(greeting, flow.next_node(node.id))
