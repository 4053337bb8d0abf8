"""
Flow - the immutable node/edge graph a conversation runs against.
"""

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from flowengine.errors import FlowValidationError
from flowengine.graph.edge import FlowEdge, resolve_next_node
from flowengine.graph.node import CategorizeConfig, FlowNode, NodeType

logger = logging.getLogger(__name__)


class Flow(BaseModel):
    """
    Complete specification of a conversational flow.

    Example:
        Flow(
            id="support-bot",
            nodes=[
                FlowNode(id="start", type="begin", config={"greeting": "Hi!"}),
                FlowNode(id="chat", type="interface", config={}),
            ],
            edges=[FlowEdge(source="start", target="chat")],
        )
    """

    id: str | None = None
    name: str | None = None
    nodes: list[FlowNode] = Field(default_factory=list, description="All nodes")
    edges: list[FlowEdge] = Field(
        default_factory=list, description="All edges, in declared order"
    )

    model_config = {"frozen": True, "extra": "ignore"}

    def get_node(self, node_id: str | None) -> FlowNode | None:
        """Get a node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    @property
    def begin_node(self) -> FlowNode | None:
        for node in self.nodes:
            if node.type == NodeType.BEGIN:
                return node
        return None

    def outgoing_edges(self, node_id: str) -> list[FlowEdge]:
        """Get all edges leaving a node, in declared order."""
        return [e for e in self.edges if e.source == node_id]

    def next_node(self, node_id: str, selector: str | None = None) -> str | None:
        return resolve_next_node(self, node_id, selector)

    def validate(self) -> list[str]:
        """Validate the graph structure. Returns a list of problems."""
        errors = []

        begin_nodes = [n for n in self.nodes if n.type == NodeType.BEGIN]
        if not begin_nodes:
            errors.append("Flow has no begin node")
        elif len(begin_nodes) > 1:
            errors.append(
                "Flow has more than one begin node: " + ", ".join(n.id for n in begin_nodes)
            )

        if not any(n.type == NodeType.INTERFACE for n in self.nodes):
            errors.append("Flow has no interface node")

        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                errors.append(f"Duplicate node ID: '{node.id}'")
            seen.add(node.id)

        for edge in self.edges:
            label = edge.id or f"{edge.source}->{edge.target}"
            if not self.get_node(edge.source):
                errors.append(f"Edge '{label}' references missing source '{edge.source}'")
            if not self.get_node(edge.target):
                errors.append(f"Edge '{label}' references missing target '{edge.target}'")

        for node in self.nodes:
            if not isinstance(node.config, CategorizeConfig):
                continue
            for category in node.config.categories:
                if category.target_node and not self.get_node(category.target_node):
                    errors.append(
                        f"Category '{category.name}' on node '{node.id}' targets "
                        f"missing node '{category.target_node}'"
                    )

        return errors


# Problems that make a flow unrunnable. Dangling edges are reported but
# surface at run time as a graph integrity error on the path that hits them.
_FATAL_PREFIXES = (
    "Flow has no begin node",
    "Flow has more than one begin node",
    "Flow has no interface node",
    "Duplicate node ID",
)


def structural_errors(flow: Flow) -> list[str]:
    """Problems in ``flow`` that prevent it from running at all."""
    return [p for p in flow.validate() if p.startswith(_FATAL_PREFIXES)]


def load_flow(source: dict[str, Any] | str | Path, flow_id: str | None = None) -> Flow:
    """
    Parse and validate a flow from a dict, a JSON string or a file path.

    Raises:
        FlowValidationError: when node configs are malformed or the graph has
            no (or several) begin nodes, no interface node or duplicate node IDs.
    """
    is_json_text = isinstance(source, str) and source.lstrip().startswith("{")
    if isinstance(source, Path) or (isinstance(source, str) and not is_json_text):
        path = Path(source)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise FlowValidationError([f"Cannot read flow file {path}: {e}"]) from e
        flow_id = flow_id or path.stem
    elif isinstance(source, str):
        try:
            data = json.loads(source)
        except json.JSONDecodeError as e:
            raise FlowValidationError([f"Flow is not valid JSON: {e}"]) from e
    else:
        data = source

    if not isinstance(data, dict):
        raise FlowValidationError(["Flow must be a JSON object with 'nodes' and 'edges'"])

    # Stored flows sometimes wrap the graph under "config" or "flow"
    for wrapper in ("config", "flow"):
        inner = data.get(wrapper)
        if "nodes" not in data and isinstance(inner, dict):
            data = {**{k: v for k, v in data.items() if k != wrapper}, **inner}

    if flow_id and not data.get("id"):
        data = {**data, "id": flow_id}

    try:
        flow = Flow.model_validate(data)
    except ValidationError as e:
        raise FlowValidationError(
            [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        ) from e

    fatal = structural_errors(flow)
    if fatal:
        raise FlowValidationError(fatal)
    for problem in flow.validate():
        logger.warning(f"⚠ Flow {flow.id or '<unnamed>'}: {problem}")

    return flow
