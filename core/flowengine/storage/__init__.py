"""Persistence Gateway: conversation and flow storage."""

from flowengine.storage.conversation_store import (
    ConversationMessage,
    ConversationRecord,
    ConversationStore,
    FileConversationStore,
    InMemoryConversationStore,
    generate_conversation_id,
)
from flowengine.storage.flow_store import FileFlowStore, FlowStore, InMemoryFlowStore

__all__ = [
    "ConversationStore",
    "ConversationRecord",
    "ConversationMessage",
    "InMemoryConversationStore",
    "FileConversationStore",
    "generate_conversation_id",
    "FlowStore",
    "InMemoryFlowStore",
    "FileFlowStore",
]
