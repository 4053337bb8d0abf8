"""
Edge Protocol - how nodes connect in a flow.

An edge is a directed connection from one node to another. A node with
several outgoing edges (a categorize node, typically) picks one of them by
branch selector: the edge whose ``branch_selector`` equals the selector
wins. Flows exported by the visual editor encode the selector in the
source handle as ``"out-<selector>"``.
"""

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, model_validator

if TYPE_CHECKING:
    from flowengine.graph.flow import Flow

SOURCE_HANDLE_PREFIX = "out-"


class FlowEdge(BaseModel):
    """
    A directed edge between two nodes.

    Examples:
        FlowEdge(source="classify", target="happy-path", branch_selector="positive")

        # Editor export
        FlowEdge.model_validate(
            {"id": "e1", "source": "classify", "target": "happy-path",
             "sourceHandle": "out-positive"}
        )
    """

    id: str | None = None
    source: str = Field(description="Source node ID")
    target: str = Field(description="Target node ID")
    branch_selector: str | None = Field(
        default=None,
        description="Discriminator among the source's outgoing edges, e.g. a category name",
    )

    model_config = {"frozen": True, "populate_by_name": True}

    @model_validator(mode="before")
    @classmethod
    def _from_editor_shape(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        selector = data.pop("branchSelector", None)
        handle = data.pop("sourceHandle", None)
        for key in ("targetHandle", "type", "animated", "style", "markerEnd", "data", "label"):
            data.pop(key, None)
        if data.get("branch_selector") is None:
            if selector is not None:
                data["branch_selector"] = selector
            elif isinstance(handle, str) and handle.startswith(SOURCE_HANDLE_PREFIX):
                data["branch_selector"] = handle[len(SOURCE_HANDLE_PREFIX):]
        return data


def resolve_next_node(flow: "Flow", source_id: str, selector: str | None = None) -> str | None:
    """
    Find the node that follows ``source_id``.

    Edges are considered in the flow's declared order. With a selector, the
    first edge whose ``branch_selector`` equals it wins and ``None`` means no
    edge matched. Without one, the first outgoing edge wins. ``None`` is a
    normal answer meaning the run has nowhere left to go.
    """
    edges = [edge for edge in flow.edges if edge.source == source_id]
    if not edges:
        return None

    if selector:
        for edge in edges:
            if edge.branch_selector == selector:
                return edge.target
        return None

    return edges[0].target
