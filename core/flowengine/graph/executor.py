"""
Flow Executor - runs a conversation turn against a flow.

The executor:
1. Starts a new run at the begin node, or resumes a saved one at the
   interface node where it paused
2. Dispatches each node to its handler by type tag
3. Follows next-node ids until a handler pauses, completes or fails
4. Returns the outcome together with the mutated execution state

The loop is iterative with a step ceiling, so long deterministic chains and
malformed cycles cannot grow the call stack or spin forever. Persistence is
the caller's job: the executor never stores state itself.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from flowengine.errors import GraphIntegrityError
from flowengine.graph.flow import Flow, structural_errors
from flowengine.graph.handlers.registry import HandlerRegistry
from flowengine.graph.node import FlowNode
from flowengine.graph.state import ExecutionState, StepResult, StepStatus
from flowengine.observability import set_trace_context
from flowengine.runtime.event_bus import EventBus

USER_INPUT_NODE_ID = "user-input"
USER_NODE_TYPE = "user"


@dataclass
class ExecutionOutcome:
    """Result of one executor invocation (one conversation turn)."""

    status: StepStatus
    output: Any = None
    message: str | None = None
    state: ExecutionState | None = None
    node_id: str | None = None  # Node that produced the final status
    steps: int = 0
    path: list[str] = field(default_factory=list)  # Node IDs executed this turn

    @property
    def text(self) -> str:
        if self.output is None:
            return ""
        return self.output if isinstance(self.output, str) else str(self.output)

    @property
    def is_error(self) -> bool:
        return self.status == StepStatus.ERROR


class StepListener:
    """
    Hooks invoked around every handler call. Subclass and override what you
    need; the defaults do nothing.
    """

    async def on_node_start(self, node: FlowNode, state: ExecutionState) -> None:
        pass

    async def on_step(self, node: FlowNode, result: StepResult, state: ExecutionState) -> None:
        pass


class FlowExecutor:
    """
    Executes flows turn by turn.

    Example:
        executor = FlowExecutor(registry=HandlerRegistry.default(llm=provider))

        outcome = await executor.start(flow)          # greets, pauses at interface
        outcome = await executor.resume(flow, outcome.state, user_input="Hi")
    """

    def __init__(
        self,
        registry: HandlerRegistry,
        max_steps: int = 100,
        event_bus: EventBus | None = None,
    ):
        """
        Initialize the executor.

        Args:
            registry: Handlers by node type
            max_steps: Maximum handler invocations per turn
            event_bus: Optional event bus for node lifecycle events
        """
        self.registry = registry
        self.max_steps = max_steps
        self.logger = logging.getLogger(__name__)
        self._event_bus = event_bus

    async def start(
        self,
        flow: Flow,
        variables: dict[str, Any] | None = None,
        *,
        conversation_id: str | None = None,
        listener: StepListener | None = None,
    ) -> ExecutionOutcome:
        """Create a fresh execution state and run from the begin node."""
        problems = structural_errors(flow)
        begin = flow.begin_node
        if problems or begin is None:
            message = "Invalid flow: " + "; ".join(problems or ["Flow has no begin node"])
            self.logger.error(f"❌ {message}")
            await self._emit_failed(conversation_id, flow, message, None)
            return ExecutionOutcome(status=StepStatus.ERROR, message=message)

        state = ExecutionState(current_node_id=begin.id, variables=dict(variables or {}))
        state.record_step(begin.id, begin.type, message="Flow initialized at begin node")

        self.logger.info(f"🚀 Starting flow {flow.id or '<unnamed>'} at {begin.id}")
        if self._event_bus:
            await self._event_bus.emit_execution_started(conversation_id, flow.id)

        return await self._run(flow, state, begin.id, None, conversation_id, listener)

    async def resume(
        self,
        flow: Flow,
        state: ExecutionState,
        user_input: str | None = None,
        *,
        conversation_id: str | None = None,
        listener: StepListener | None = None,
    ) -> ExecutionOutcome:
        """Continue a saved run from the interface node where it paused."""
        if state.completed:
            self.logger.info("✓ Flow already completed, nothing to run")
            return ExecutionOutcome(
                status=StepStatus.COMPLETED,
                message="Flow execution already completed",
                state=state,
                node_id=state.current_node_id,
            )

        start_id = state.resume_node_id
        if flow.get_node(start_id) is None:
            message = str(GraphIntegrityError(start_id))
            self.logger.error(f"❌ {message}")
            await self._emit_failed(conversation_id, flow, message, start_id)
            return ExecutionOutcome(
                status=StepStatus.ERROR, message=message, state=state, node_id=start_id
            )

        state.current_node_id = start_id
        if user_input:
            state.record_step(USER_INPUT_NODE_ID, USER_NODE_TYPE, input=user_input)

        self.logger.info(f"🔄 Resuming from: {start_id}")
        if self._event_bus:
            await self._event_bus.emit_execution_started(conversation_id, flow.id, resumed=True)

        return await self._run(flow, state, start_id, user_input, conversation_id, listener)

    async def _run(
        self,
        flow: Flow,
        state: ExecutionState,
        node_id: str,
        user_input: str | None,
        conversation_id: str | None,
        listener: StepListener | None,
    ) -> ExecutionOutcome:
        steps = 0
        path: list[str] = []

        while steps < self.max_steps:
            steps += 1
            node = flow.get_node(node_id)
            if node is None:
                return await self._fail(
                    flow, state, str(GraphIntegrityError(node_id)), node_id,
                    conversation_id, steps, path,
                )

            set_trace_context(node_id=node.id)
            path.append(node.id)
            self.logger.info(f"▶ Step {steps}: {node.display_name} ({node.type})")

            if listener:
                await listener.on_node_start(node, state)
            if self._event_bus:
                await self._event_bus.emit_node_started(
                    conversation_id, flow.id, node.id, node.type
                )

            history_size = len(state.history)
            # Caller input is consumed by the first node of the turn only
            result = await self._dispatch(node, state, flow, user_input)
            user_input = None
            result.node_id = result.node_id or node.id
            result.node_type = result.node_type or str(node.type)

            if listener:
                await listener.on_step(node, result, state)
            if self._event_bus:
                await self._event_bus.emit_node_completed(
                    conversation_id, flow.id, node.id, result.status, result.next_node_id
                )

            if result.status == StepStatus.ERROR:
                self.logger.error(f"   ✗ Failed: {result.message}")
                return await self._fail(
                    flow, state, result.message or "Node execution failed", node.id,
                    conversation_id, steps, path,
                )

            if result.status == StepStatus.WAITING_FOR_INPUT:
                self.logger.info(f"⏸ Waiting for input at {node.id}")
                if self._event_bus:
                    await self._event_bus.emit_execution_paused(conversation_id, flow.id, node.id)
                return ExecutionOutcome(
                    status=StepStatus.WAITING_FOR_INPUT,
                    output=result.output,
                    message=result.message,
                    state=state,
                    node_id=node.id,
                    steps=steps,
                    path=path,
                )

            if result.status == StepStatus.COMPLETED or result.next_node_id is None:
                return await self._complete(
                    flow, state, result, node, history_size, conversation_id, steps, path
                )

            # in_progress with a next node
            next_id = result.next_node_id
            if flow.get_node(next_id) is None:
                return await self._fail(
                    flow, state, str(GraphIntegrityError(next_id)), node.id,
                    conversation_id, steps, path,
                )

            if len(state.history) == history_size and result.output:
                state.record_step(node.id, node.type, output=result.output)
            self.logger.info(f"   → Next: {next_id}")
            state.current_node_id = next_id
            node_id = next_id

        return await self._fail(
            flow, state, "Maximum step count exceeded", node_id, conversation_id, steps, path
        )

    async def _dispatch(
        self,
        node: FlowNode,
        state: ExecutionState,
        flow: Flow,
        user_input: str | None,
    ) -> StepResult:
        handler = self.registry.get(node.type)
        if handler is None:
            return StepResult.error(f"Unsupported node type: {node.type}")
        try:
            return await handler.execute(node, state, flow, user_input)
        except Exception as e:
            # Escaping exceptions become an error outcome for the turn.
            self.logger.exception(f"Handler for {node.id} raised")
            return StepResult.error(f"Error executing {node.type} node {node.id}: {e}")

    async def _complete(
        self,
        flow: Flow,
        state: ExecutionState,
        result: StepResult,
        node: FlowNode,
        history_size: int,
        conversation_id: str | None,
        steps: int,
        path: list[str],
    ) -> ExecutionOutcome:
        if len(state.history) == history_size and result.output:
            state.record_step(node.id, node.type, output=result.output)
        state.completed = True
        self.logger.info(f"✓ Flow complete after {steps} step(s)")
        if self._event_bus:
            await self._event_bus.emit_execution_completed(conversation_id, flow.id, result.output)
        return ExecutionOutcome(
            status=StepStatus.COMPLETED,
            output=result.output,
            message=result.message,
            state=state,
            node_id=node.id,
            steps=steps,
            path=path,
        )

    async def _fail(
        self,
        flow: Flow,
        state: ExecutionState,
        message: str,
        node_id: str | None,
        conversation_id: str | None,
        steps: int,
        path: list[str],
    ) -> ExecutionOutcome:
        self.logger.error(f"❌ Execution stopped: {message}")
        await self._emit_failed(conversation_id, flow, message, node_id)
        return ExecutionOutcome(
            status=StepStatus.ERROR,
            message=message,
            state=state,
            node_id=node_id,
            steps=steps,
            path=path,
        )

    async def _emit_failed(
        self, conversation_id: str | None, flow: Flow, message: str, node_id: str | None
    ) -> None:
        if self._event_bus:
            await self._event_bus.emit_execution_failed(conversation_id, flow.id, message, node_id)

