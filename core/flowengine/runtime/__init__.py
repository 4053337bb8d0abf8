"""Conversation runtime: event bus, chat protocol, runtime and HTTP server.

Only the event bus is re-exported here because the executor imports it;
import ``ConversationRuntime``, ``ChatServer`` and the protocol helpers from
their own modules.
"""

from flowengine.runtime.event_bus import EventBus, EventType, FlowEvent

__all__ = ["EventBus", "EventType", "FlowEvent"]
