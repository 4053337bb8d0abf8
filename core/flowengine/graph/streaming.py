"""
Streaming adapter - incremental events for a conversation turn.

Wraps ``FlowExecutor`` so callers see the turn as it happens instead of only
the final outcome. Ordering per turn:

    node_start, progress?, node_start, progress?, ..., <terminal>

where ``<terminal>`` is exactly one of ``waiting_for_input``, ``completed``
or ``error``. Events go through an ``EventBatcher`` that flushes in small
batches. The finalize callback (persistence, usually) runs exactly once with
the final execution state, right after the terminal event is written.

This module defines event content and ordering only. How events reach a
client (SSE, websockets, a test list) is up to the sink.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from typing import Any, Literal

from flowengine.graph.executor import ExecutionOutcome, FlowExecutor, StepListener
from flowengine.graph.flow import Flow
from flowengine.graph.node import FlowNode
from flowengine.graph.state import ExecutionState, StepResult, StepStatus

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class NodeStartEvent:
    """A handler is about to run."""

    type: Literal["node_start"] = "node_start"
    node_id: str = ""
    node_type: str = ""
    timestamp: str = field(default_factory=_now)


@dataclass(frozen=True)
class ProgressEvent:
    """A handler produced textual output."""

    type: Literal["progress"] = "progress"
    node_id: str = ""
    node_type: str = ""
    output: str = ""
    timestamp: str = field(default_factory=_now)


@dataclass(frozen=True)
class WaitingForInputEvent:
    """Terminal: the run paused at an interface node."""

    type: Literal["waiting_for_input"] = "waiting_for_input"
    node_id: str | None = None
    output: str = ""
    message: str | None = None
    state: ExecutionState | None = None
    timestamp: str = field(default_factory=_now)


@dataclass(frozen=True)
class CompletedEvent:
    """Terminal: the run has no next node."""

    type: Literal["completed"] = "completed"
    node_id: str | None = None
    output: str = ""
    message: str | None = None
    state: ExecutionState | None = None
    timestamp: str = field(default_factory=_now)


@dataclass(frozen=True)
class ErrorEvent:
    """Terminal: the run halted with an error."""

    type: Literal["error"] = "error"
    node_id: str | None = None
    output: str = ""
    message: str | None = None
    state: ExecutionState | None = None
    timestamp: str = field(default_factory=_now)


StreamEvent = NodeStartEvent | ProgressEvent | WaitingForInputEvent | CompletedEvent | ErrorEvent
TerminalEvent = WaitingForInputEvent | CompletedEvent | ErrorEvent

TERMINAL_TYPES = frozenset({"waiting_for_input", "completed", "error"})

EventSink = Callable[[list[StreamEvent]], Awaitable[None]]
Finalizer = Callable[[ExecutionState], Awaitable[Any]]


def event_to_dict(event: StreamEvent) -> dict[str, Any]:
    """JSON-ready dict for an event; state snapshots are dumped with pydantic."""
    data: dict[str, Any] = {}
    for f in fields(event):
        value = getattr(event, f.name)
        if isinstance(value, ExecutionState):
            value = value.model_dump(mode="json")
        data[f.name] = value
    return data


def is_terminal(event: StreamEvent) -> bool:
    return event.type in TERMINAL_TYPES


class EventBatcher:
    """
    Buffers events and hands them to ``sink`` in batches.

    Flushes when ``batch_size`` events are buffered and when closed. A sink
    failure closes the batcher; later writes are dropped.
    """

    def __init__(self, sink: EventSink, batch_size: int = 3):
        self._sink = sink
        self._batch_size = max(1, batch_size)
        self._buffer: list[StreamEvent] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def write(self, event: StreamEvent) -> bool:
        if self._closed:
            return False
        self._buffer.append(event)
        if len(self._buffer) >= self._batch_size:
            return await self.flush()
        return True

    async def flush(self) -> bool:
        if self._closed or not self._buffer:
            return False
        batch, self._buffer = self._buffer, []
        try:
            await self._sink(batch)
        except Exception as e:
            logger.warning(f"⚠ Stream sink failed, dropping further events: {e}")
            self._closed = True
            return False
        return True

    async def close(self) -> None:
        if self._closed:
            return
        await self.flush()
        self._closed = True


class _StreamListener(StepListener):
    def __init__(self, batcher: EventBatcher):
        self.batcher = batcher

    async def on_node_start(self, node: FlowNode, state: ExecutionState) -> None:
        await self.batcher.write(NodeStartEvent(node_id=node.id, node_type=str(node.type)))

    async def on_step(self, node: FlowNode, result: StepResult, state: ExecutionState) -> None:
        if result.text:
            await self.batcher.write(
                ProgressEvent(node_id=node.id, node_type=str(node.type), output=result.text)
            )


def terminal_event(outcome: ExecutionOutcome) -> TerminalEvent:
    """Build the terminal event for an outcome, with a snapshot of its state."""
    snapshot = outcome.state.snapshot() if outcome.state is not None else None
    kwargs = {
        "node_id": outcome.node_id,
        "output": outcome.text,
        "message": outcome.message,
        "state": snapshot,
    }
    if outcome.status == StepStatus.WAITING_FOR_INPUT:
        return WaitingForInputEvent(**kwargs)
    if outcome.status == StepStatus.COMPLETED:
        return CompletedEvent(**kwargs)
    return ErrorEvent(**kwargs)


class FlowStreamer:
    """
    Runs a turn and streams its events.

    Example:
        streamer = FlowStreamer(executor)

        async for event in streamer.events(flow, state=saved, user_input="Hi",
                                           finalize=save_state):
            print(event.type)
    """

    def __init__(self, executor: FlowExecutor, batch_size: int = 3):
        self.executor = executor
        self.batch_size = batch_size

    async def run(
        self,
        flow: Flow,
        sink: EventSink,
        *,
        state: ExecutionState | None = None,
        user_input: str | None = None,
        variables: dict[str, Any] | None = None,
        conversation_id: str | None = None,
        finalize: Finalizer | None = None,
    ) -> ExecutionOutcome:
        """
        Run one turn, writing events to ``sink``.

        Starts a new run when ``state`` is None, otherwise resumes it.
        """
        batcher = EventBatcher(sink, self.batch_size)
        listener = _StreamListener(batcher)

        if state is None:
            outcome = await self.executor.start(
                flow, variables, conversation_id=conversation_id, listener=listener
            )
        else:
            outcome = await self.executor.resume(
                flow,
                state,
                user_input,
                conversation_id=conversation_id,
                listener=listener,
            )

        await batcher.write(terminal_event(outcome))
        await batcher.flush()

        if finalize is not None and outcome.state is not None:
            # Outlives a consumer that disconnects after the terminal event
            try:
                await asyncio.shield(finalize(outcome.state))
            except Exception as e:
                logger.error(f"❌ Stream finalize failed: {e}")

        await batcher.close()
        return outcome

    async def events(
        self,
        flow: Flow,
        *,
        state: ExecutionState | None = None,
        user_input: str | None = None,
        variables: dict[str, Any] | None = None,
        conversation_id: str | None = None,
        finalize: Finalizer | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Async iterator over the turn's events; ends after the terminal event."""
        queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()

        async def sink(batch: list[StreamEvent]) -> None:
            for event in batch:
                await queue.put(event)

        async def produce() -> None:
            try:
                await self.run(
                    flow,
                    sink,
                    state=state,
                    user_input=user_input,
                    variables=variables,
                    conversation_id=conversation_id,
                    finalize=finalize,
                )
            finally:
                await queue.put(None)

        task = asyncio.create_task(produce())
        terminal_seen = False
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                terminal_seen = terminal_seen or is_terminal(event)
                yield event
            await task
        finally:
            if not task.done():
                if terminal_seen:
                    # Closed after the terminal event: let finalize complete.
                    await task
                else:
                    task.cancel()
