"""
Event Bus - pub/sub for flow execution lifecycle events.

Lets observers (metrics exporters, debug panels, tests) follow conversations
without hooking into the executor. Events are delivered to subscribers
whose type set and conversation/node filters match, and the most recent
ones are kept for inspection.
"""

import asyncio
import itertools
import logging
from collections import Counter, deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    EXECUTION_STARTED = "execution_started"
    EXECUTION_RESUMED = "execution_resumed"
    EXECUTION_PAUSED = "execution_paused"
    EXECUTION_COMPLETED = "execution_completed"
    EXECUTION_FAILED = "execution_failed"

    NODE_STARTED = "node_started"
    NODE_COMPLETED = "node_completed"

    STATE_SAVED = "state_saved"
    STATE_SAVE_FAILED = "state_save_failed"

    CUSTOM = "custom"


@dataclass
class FlowEvent:
    """Something that happened while a conversation moved through its flow."""

    type: EventType
    conversation_id: str | None = None
    flow_id: str | None = None
    node_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "conversation_id": self.conversation_id,
            "flow_id": self.flow_id,
            "node_id": self.node_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


EventHandler = Callable[[FlowEvent], Awaitable[None]]


@dataclass
class Subscription:
    id: str
    event_types: frozenset[EventType]
    handler: EventHandler
    conversation_id: str | None = None
    node_id: str | None = None

    def matches(self, event: FlowEvent) -> bool:
        if event.type not in self.event_types:
            return False
        if self.conversation_id is not None and event.conversation_id != self.conversation_id:
            return False
        return self.node_id is None or event.node_id == self.node_id


class EventBus:
    """
    In-process pub/sub for flow events.

    Handlers run concurrently, bounded by ``max_concurrent_handlers``. A
    handler that raises is logged; the publisher and the other handlers
    carry on.

    Example:
        bus = EventBus()

        async def on_paused(event: FlowEvent):
            print(f"Conversation {event.conversation_id} waits at {event.node_id}")

        bus.subscribe([EventType.EXECUTION_PAUSED], on_paused)
    """

    def __init__(self, max_history: int = 1000, max_concurrent_handlers: int = 10):
        self._subscriptions: dict[str, Subscription] = {}
        self._history: deque[FlowEvent] = deque(maxlen=max_history)
        self._handler_slots = asyncio.Semaphore(max_concurrent_handlers)
        self._ids = itertools.count(1)

    def subscribe(
        self,
        event_types: list[EventType],
        handler: EventHandler,
        filter_conversation: str | None = None,
        filter_node: str | None = None,
    ) -> str:
        """Register ``handler`` and return the id to unsubscribe it with."""
        sub_id = f"sub_{next(self._ids)}"
        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            event_types=frozenset(event_types),
            handler=handler,
            conversation_id=filter_conversation,
            node_id=filter_node,
        )
        logger.debug(f"Subscription {sub_id} registered for {sorted(event_types)}")
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        removed = self._subscriptions.pop(subscription_id, None)
        if removed is not None:
            logger.debug(f"Subscription {subscription_id} removed")
        return removed is not None

    async def publish(self, event: FlowEvent) -> None:
        self._history.append(event)
        targets = [s for s in list(self._subscriptions.values()) if s.matches(event)]
        if targets:
            await asyncio.gather(*(self._deliver(s, event) for s in targets))

    async def _deliver(self, subscription: Subscription, event: FlowEvent) -> None:
        async with self._handler_slots:
            try:
                await subscription.handler(event)
            except Exception as e:
                logger.error(f"✗ Subscriber {subscription.id} failed on {event.type}: {e}")

    # === CONVENIENCE PUBLISHERS ===

    async def emit_execution_started(
        self, conversation_id: str | None, flow_id: str | None, resumed: bool = False
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.EXECUTION_RESUMED if resumed else EventType.EXECUTION_STARTED,
                conversation_id=conversation_id,
                flow_id=flow_id,
            )
        )

    async def emit_node_started(
        self,
        conversation_id: str | None,
        flow_id: str | None,
        node_id: str,
        node_type: str,
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.NODE_STARTED,
                conversation_id=conversation_id,
                flow_id=flow_id,
                node_id=node_id,
                data={"node_type": node_type},
            )
        )

    async def emit_node_completed(
        self,
        conversation_id: str | None,
        flow_id: str | None,
        node_id: str,
        status: str,
        next_node_id: str | None = None,
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.NODE_COMPLETED,
                conversation_id=conversation_id,
                flow_id=flow_id,
                node_id=node_id,
                data={"status": status, "next_node_id": next_node_id},
            )
        )

    async def emit_execution_paused(
        self, conversation_id: str | None, flow_id: str | None, node_id: str | None
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.EXECUTION_PAUSED,
                conversation_id=conversation_id,
                flow_id=flow_id,
                node_id=node_id,
            )
        )

    async def emit_execution_completed(
        self, conversation_id: str | None, flow_id: str | None, output: Any = None
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.EXECUTION_COMPLETED,
                conversation_id=conversation_id,
                flow_id=flow_id,
                data={"output": output},
            )
        )

    async def emit_execution_failed(
        self,
        conversation_id: str | None,
        flow_id: str | None,
        error: str,
        node_id: str | None = None,
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.EXECUTION_FAILED,
                conversation_id=conversation_id,
                flow_id=flow_id,
                node_id=node_id,
                data={"error": error},
            )
        )

    async def emit_state_saved(
        self, conversation_id: str, flow_id: str | None, error: str | None = None
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.STATE_SAVE_FAILED if error else EventType.STATE_SAVED,
                conversation_id=conversation_id,
                flow_id=flow_id,
                data={"error": error} if error else {},
            )
        )

    # === QUERIES ===

    def get_history(
        self,
        event_type: EventType | None = None,
        conversation_id: str | None = None,
        limit: int = 100,
    ) -> list[FlowEvent]:
        """Recent events, newest first."""
        selected = [
            e
            for e in reversed(self._history)
            if (event_type is None or e.type == event_type)
            and (conversation_id is None or e.conversation_id == conversation_id)
        ]
        return selected[:limit]

    def get_stats(self) -> dict:
        return {
            "total_events": len(self._history),
            "subscriptions": len(self._subscriptions),
            "events_by_type": dict(Counter(e.type.value for e in self._history)),
        }

    async def wait_for(
        self,
        event_type: EventType,
        conversation_id: str | None = None,
        node_id: str | None = None,
        timeout: float | None = None,
    ) -> FlowEvent | None:
        """Block until a matching event is published; None after ``timeout`` seconds."""
        arrived: asyncio.Future[FlowEvent] = asyncio.get_running_loop().create_future()

        async def capture(event: FlowEvent) -> None:
            if not arrived.done():
                arrived.set_result(event)

        sub_id = self.subscribe([event_type], capture, conversation_id, node_id)
        try:
            return await asyncio.wait_for(arrived, timeout=timeout)
        except TimeoutError:
            return None
        finally:
            self.unsubscribe(sub_id)
