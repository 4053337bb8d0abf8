"""Flow graph: data model, handlers, executor and streaming adapter."""

from flowengine.graph.edge import FlowEdge, resolve_next_node
from flowengine.graph.executor import ExecutionOutcome, FlowExecutor, StepListener
from flowengine.graph.flow import Flow, load_flow
from flowengine.graph.handlers import HandlerRegistry, NodeHandler
from flowengine.graph.node import (
    BeginConfig,
    CategorizeConfig,
    Category,
    FlowNode,
    GenerateConfig,
    InterfaceConfig,
    NodeType,
    RetrievalConfig,
)
from flowengine.graph.references import (
    InputReference,
    resolve_input_references,
    resolve_input_source,
)
from flowengine.graph.state import (
    ExecutionState,
    PauseState,
    StepRecord,
    StepResult,
    StepStatus,
)
from flowengine.graph.streaming import EventBatcher, FlowStreamer
from flowengine.graph.template import render_template

__all__ = [
    # Data model
    "Flow",
    "FlowNode",
    "FlowEdge",
    "NodeType",
    "BeginConfig",
    "InterfaceConfig",
    "GenerateConfig",
    "CategorizeConfig",
    "Category",
    "RetrievalConfig",
    "InputReference",
    "load_flow",
    # State
    "ExecutionState",
    "PauseState",
    "StepRecord",
    "StepResult",
    "StepStatus",
    # Resolution
    "resolve_next_node",
    "resolve_input_references",
    "resolve_input_source",
    "render_template",
    # Execution
    "NodeHandler",
    "HandlerRegistry",
    "FlowExecutor",
    "ExecutionOutcome",
    "StepListener",
    "FlowStreamer",
    "EventBatcher",
]
