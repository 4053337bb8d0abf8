"""
Tests for the flow data model: node configs, edges, next-node resolution and
flow loading.
"""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from flowengine.errors import FlowValidationError
from flowengine.graph.edge import FlowEdge, resolve_next_node
from flowengine.graph.flow import Flow, load_flow, structural_errors
from flowengine.graph.node import (
    CategorizeConfig,
    FlowNode,
    GenerateConfig,
    NodeType,
    RetrievalConfig,
)


def _editor_flow() -> dict:
    return {
        "nodes": [
            {
                "id": "start",
                "type": "begin",
                "position": {"x": 0, "y": 0},
                "data": {"label": "Start", "form": {"greeting": "Welcome!"}},
            },
            {
                "id": "classify",
                "type": "categorize",
                "data": {
                    "label": "Classify",
                    "form": {
                        "categories": [
                            {"name": "billing", "description": "Money"},
                            {"name": "tech", "description": "Bugs"},
                        ],
                        "defaultCategory": "tech",
                        "model": "gpt-4o-mini",
                    },
                },
            },
            {"id": "billing", "type": "interface", "data": {"label": "Billing", "form": {}}},
            {"id": "tech", "type": "interface", "data": {"label": "Tech", "form": {}}},
        ],
        "edges": [
            {"id": "e1", "source": "start", "target": "classify"},
            {"id": "e2", "source": "classify", "target": "billing", "sourceHandle": "out-billing"},
            {"id": "e3", "source": "classify", "target": "tech", "sourceHandle": "out-tech"},
        ],
    }


# === NODES ===


class TestFlowNode:
    def test_config_type_follows_node_type(self):
        node = FlowNode(id="g", type="generate", config={"prompt": "Hi"})

        assert node.type == NodeType.GENERATE
        assert isinstance(node.config, GenerateConfig)
        assert node.config.prompt == "Hi"

    def test_editor_shape_is_unpacked(self):
        node = FlowNode.model_validate(
            {"id": "s", "type": "begin", "data": {"label": "Start", "form": {"greeting": "Yo"}}}
        )

        assert node.label == "Start"
        assert node.config.greeting == "Yo"
        assert node.display_name == "Start"

    def test_mismatched_config_type_is_rejected(self):
        with pytest.raises(ValidationError):
            FlowNode(id="x", type="interface", config={"type": "generate"})

    def test_unknown_node_type_is_rejected(self):
        with pytest.raises(ValidationError):
            FlowNode(id="x", type="decision", config={})

    def test_model_given_by_name(self):
        node = FlowNode(id="g", type="generate", config={"model": "gpt-4o-mini"})

        assert node.config.model.name == "gpt-4o-mini"

    def test_empty_model_means_none(self):
        node = FlowNode(id="g", type="generate", config={"model": ""})

        assert node.config.model is None

    def test_camel_case_keys_accepted(self):
        node = FlowNode(
            id="r",
            type="retrieval",
            config={
                "knowledgeIds": ["kb"],
                "maxResults": 5,
                "outputFormat": "citations",
                "inputRefs": [
                    {"sourceNodeId": "g", "outputName": "output", "inputName": "text"}
                ],
            },
        )

        assert isinstance(node.config, RetrievalConfig)
        assert node.config.knowledge_ids == ["kb"]
        assert node.config.max_results == 5
        assert node.config.output_format == "citations"
        assert node.config.input_refs[0].qualified_name == "g.output"

    def test_retrieval_unset_numbers_take_defaults(self):
        node = FlowNode(
            id="r", type="retrieval", config={"maxResults": 0, "threshold": None}
        )

        assert node.config.max_results == 3
        assert node.config.threshold == 0.7

    def test_nodes_are_frozen(self):
        node = FlowNode(id="c", type="interface", config={})

        with pytest.raises(ValidationError):
            node.id = "other"


# === EDGES ===


class TestFlowEdge:
    def test_source_handle_becomes_branch_selector(self):
        edge = FlowEdge.model_validate(
            {"source": "a", "target": "b", "sourceHandle": "out-positive"}
        )

        assert edge.branch_selector == "positive"

    def test_explicit_branch_selector(self):
        edge = FlowEdge.model_validate({"source": "a", "target": "b", "branchSelector": "x"})

        assert edge.branch_selector == "x"


class TestResolveNextNode:
    @pytest.fixture
    def branching_flow(self):
        return Flow(
            nodes=[
                FlowNode(id="a", type="begin", config={}),
                FlowNode(id="b", type="interface", config={}),
                FlowNode(id="c", type="interface", config={}),
            ],
            edges=[
                FlowEdge(source="a", target="b", branch_selector="left"),
                FlowEdge(source="a", target="c", branch_selector="right"),
            ],
        )

    def test_selector_picks_matching_edge(self, branching_flow):
        assert resolve_next_node(branching_flow, "a", "right") == "c"

    def test_no_selector_takes_first_declared_edge(self, branching_flow):
        assert resolve_next_node(branching_flow, "a") == "b"

    def test_empty_selector_counts_as_no_selector(self, branching_flow):
        assert resolve_next_node(branching_flow, "a", "") == "b"

    def test_unmatched_selector_is_none(self, branching_flow):
        assert resolve_next_node(branching_flow, "a", "middle") is None

    def test_no_outgoing_edges_is_none(self, branching_flow):
        assert resolve_next_node(branching_flow, "b") is None

    def test_flow_next_node_delegates(self, branching_flow):
        assert branching_flow.next_node("a", "left") == "b"


# === FLOW VALIDATION & LOADING ===


class TestFlowValidate:
    def test_valid_flow(self, greeting_flow):
        assert greeting_flow.validate() == []
        assert greeting_flow.begin_node.id == "begin"

    def test_missing_begin_and_interface(self):
        flow = Flow(nodes=[FlowNode(id="g", type="generate", config={})])

        problems = flow.validate()

        assert "Flow has no begin node" in problems
        assert "Flow has no interface node" in problems

    def test_duplicate_ids_and_dangling_edges(self):
        flow = Flow(
            nodes=[
                FlowNode(id="a", type="begin", config={}),
                FlowNode(id="a", type="interface", config={}),
            ],
            edges=[FlowEdge(source="a", target="ghost")],
        )

        problems = flow.validate()

        assert any("Duplicate node ID" in p for p in problems)
        assert any("missing target 'ghost'" in p for p in problems)
        # Dangling edges are not fatal
        assert all("ghost" not in p for p in structural_errors(flow))

    def test_category_target_must_exist(self):
        flow = Flow(
            nodes=[
                FlowNode(id="b", type="begin", config={}),
                FlowNode(id="i", type="interface", config={}),
                FlowNode(
                    id="c",
                    type="categorize",
                    config={"categories": [{"name": "x", "targetNode": "nowhere"}]},
                ),
            ]
        )

        assert any("nowhere" in p for p in flow.validate())


class TestLoadFlow:
    def test_load_editor_dict(self):
        flow = load_flow(_editor_flow(), flow_id="support")

        assert flow.id == "support"
        assert isinstance(flow.get_node("classify").config, CategorizeConfig)
        assert flow.next_node("classify", "tech") == "tech"

    def test_load_from_file_uses_stem_as_id(self, tmp_path: Path):
        path = tmp_path / "support.json"
        path.write_text(json.dumps(_editor_flow()))

        flow = load_flow(path)

        assert flow.id == "support"
        assert len(flow.nodes) == 4

    def test_load_from_json_text_with_wrapper(self):
        text = json.dumps({"id": "wrapped", "config": _editor_flow()})

        flow = load_flow(text)

        assert flow.id == "wrapped"
        assert flow.begin_node.id == "start"

    def test_two_begin_nodes_fail(self):
        data = _editor_flow()
        data["nodes"].append({"id": "start2", "type": "begin", "data": {"form": {}}})

        with pytest.raises(FlowValidationError) as exc_info:
            load_flow(data)

        assert "more than one begin node" in str(exc_info.value)

    def test_malformed_config_fails_at_load(self):
        data = _editor_flow()
        data["nodes"][1]["data"]["form"]["categories"] = "not-a-list"

        with pytest.raises(FlowValidationError):
            load_flow(data)

    def test_unreadable_file(self, tmp_path: Path):
        with pytest.raises(FlowValidationError) as exc_info:
            load_flow(tmp_path / "missing.json")

        assert "Cannot read flow file" in exc_info.value.errors[0]
