"""
flowengine - Conversational flow execution engine.

Runs operator-built node graphs (begin, interface, generate, categorize,
retrieval) turn by turn behind a chat-completion style protocol, pausing at
interface nodes and resuming from persisted conversation state.
"""

from flowengine.graph.executor import ExecutionOutcome, FlowExecutor
from flowengine.graph.flow import Flow, load_flow
from flowengine.graph.state import ExecutionState, StepResult, StepStatus
from flowengine.runtime.conversation import ConversationRuntime

__all__ = [
    "ConversationRuntime",
    "ExecutionOutcome",
    "ExecutionState",
    "Flow",
    "FlowExecutor",
    "StepResult",
    "StepStatus",
    "load_flow",
]

__version__ = "0.1.0"
