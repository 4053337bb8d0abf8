"""
Conversation Runtime - one chat request, end to end.

Looks up the flow, loads (or creates) the conversation, runs one turn through
the executor and saves the resulting state. Persistence is best-effort: a
failed save is logged and reported, but the turn's output is still returned.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

from flowengine.errors import (
    ConversationNotFoundError,
    FlowNotFoundError,
    InvalidRequestError,
    PersistenceError,
)
from flowengine.graph.executor import ExecutionOutcome, FlowExecutor
from flowengine.graph.flow import Flow
from flowengine.graph.state import ExecutionState, StepStatus
from flowengine.graph.streaming import FlowStreamer, ProgressEvent, is_terminal
from flowengine.observability import clear_trace_context, set_trace_context
from flowengine.runtime import protocol
from flowengine.runtime.event_bus import EventBus
from flowengine.storage.conversation_store import (
    ConversationStore,
    generate_conversation_id,
    summarize_record,
)
from flowengine.storage.flow_store import FlowStore

logger = logging.getLogger(__name__)


class ConversationRuntime:
    """
    Serves chat-completion requests against stored flows.

    Example:
        runtime = ConversationRuntime(
            flow_store=FileFlowStore("flows"),
            conversation_store=FileConversationStore("storage"),
            executor=FlowExecutor(HandlerRegistry.default(llm=LiteLLMProvider())),
        )
        body = await runtime.handle(ChatCompletionRequest(flow_id="support"))
        body = await runtime.handle(
            ChatCompletionRequest(flow_id="support", id=body["id"],
                                  messages=[ChatMessage(role="user", content="Hi")])
        )
    """

    def __init__(
        self,
        flow_store: FlowStore,
        conversation_store: ConversationStore,
        executor: FlowExecutor,
        event_bus: EventBus | None = None,
        batch_size: int = 3,
    ):
        self.flow_store = flow_store
        self.conversation_store = conversation_store
        self.executor = executor
        self.event_bus = event_bus
        self.streamer = FlowStreamer(executor, batch_size=batch_size)

    async def _prepare(
        self, request: protocol.ChatCompletionRequest
    ) -> tuple[Flow, ExecutionState | None, str, str | None]:
        if not request.flow_id:
            raise InvalidRequestError("Flow ID is required", code="missing_parameter")

        flow = await self.flow_store.get(request.flow_id)
        if flow is None:
            raise FlowNotFoundError(request.flow_id)

        state = None
        if request.id:
            state = await self.conversation_store.load(request.id)
            if state is None:
                logger.info(f"Conversation {request.id} not found, starting a new one")

        conversation_id = request.id or generate_conversation_id()
        user_input = protocol.extract_user_input(request.messages)
        set_trace_context(conversation_id=conversation_id, flow_id=request.flow_id)
        return flow, state, conversation_id, user_input

    async def _run(
        self,
        flow: Flow,
        state: ExecutionState | None,
        conversation_id: str,
        user_input: str | None,
        request: protocol.ChatCompletionRequest,
    ) -> ExecutionOutcome:
        if state is None:
            variables = protocol.enrich_variables(request.variables, request)
            return await self.executor.start(flow, variables, conversation_id=conversation_id)
        return await self.executor.resume(
            flow, state, user_input, conversation_id=conversation_id
        )

    async def _save(
        self,
        state: ExecutionState,
        flow_id: str,
        conversation_id: str,
        user_input: str | None,
    ) -> bool:
        try:
            await self.conversation_store.save(state, flow_id, conversation_id, user_input)
        except PersistenceError as e:
            logger.error(f"❌ Failed to persist conversation {conversation_id}: {e}")
            if self.event_bus:
                await self.event_bus.emit_state_saved(conversation_id, flow_id, error=str(e))
            return False
        if self.event_bus:
            await self.event_bus.emit_state_saved(conversation_id, flow_id)
        return True

    async def handle(self, request: protocol.ChatCompletionRequest) -> dict[str, Any]:
        """
        Run one turn and return the ``chat.completion`` body.

        Raises:
            InvalidRequestError: if the request has no flow id
            FlowNotFoundError: if the flow id is unknown
            PersistenceError: if the saved conversation cannot be read
        """
        try:
            flow, state, conversation_id, user_input = await self._prepare(request)
            outcome = await self._run(flow, state, conversation_id, user_input, request)

            if outcome.state is not None:
                await self._save(outcome.state, request.flow_id, conversation_id, user_input)

            return protocol.to_chat_completion(outcome, conversation_id)
        finally:
            clear_trace_context()

    async def stream(self, request: protocol.ChatCompletionRequest) -> AsyncIterator[str]:
        """
        Run one turn as server-sent events.

        Sequence: role chunk, one empty-delta chunk per node that produced
        output, the content chunk, the finish chunk, the persistence status
        chunk and ``[DONE]``. Request errors raise before the first chunk.
        """
        model = protocol.DEFAULT_MODEL_LABEL
        persisted: list[bool] = []
        try:
            flow, state, conversation_id, user_input = await self._prepare(request)
        except Exception:
            clear_trace_context()
            raise

        async def finalize(final_state: ExecutionState) -> None:
            persisted.append(
                await self._save(final_state, request.flow_id, conversation_id, user_input)
            )

        variables = None
        if state is None:
            variables = protocol.enrich_variables(request.variables, request)

        try:
            yield protocol.sse(protocol.role_chunk(conversation_id, model))
            events = self.streamer.events(
                flow,
                state=state,
                user_input=user_input,
                variables=variables,
                conversation_id=conversation_id,
                finalize=finalize,
            )
            async with aclosing(events):
                async for event in events:
                    if isinstance(event, ProgressEvent):
                        yield protocol.sse(
                            protocol.progress_chunk(
                                conversation_id, event.node_id, event.node_type, model
                            )
                        )
                    elif is_terminal(event):
                        status = StepStatus(event.type)
                        node_info = {"nodeId": event.node_id} if event.node_id else None
                        yield protocol.sse(
                            protocol.content_chunk(
                                conversation_id, event.output, model, node_info, event.state
                            )
                        )
                        error = None
                        if status == StepStatus.ERROR:
                            error = event.message or "An error occurred"
                        yield protocol.sse(
                            protocol.finish_chunk(conversation_id, status, model, error)
                        )

            if persisted:
                yield protocol.sse(protocol.persistence_chunk(conversation_id, persisted[0]))
            yield protocol.SSE_DONE
        finally:
            clear_trace_context()

    async def get_state(self, conversation_id: str) -> dict[str, Any]:
        """
        Client-safe state for a conversation.

        Raises:
            ConversationNotFoundError: if nothing is saved under ``conversation_id``
        """
        state = await self.conversation_store.load(conversation_id)
        if state is None:
            raise ConversationNotFoundError(conversation_id)
        return {"id": conversation_id, "clientState": protocol.client_state(state)}

    async def list_conversations(self, flow_id: str | None = None) -> list[dict[str, Any]]:
        """Saved conversations, newest first, optionally for one flow."""
        records = await self.conversation_store.list_conversations(flow_id)
        return [summarize_record(r) for r in records]
