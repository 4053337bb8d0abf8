"""
Tests for the flowengine command-line interface.
"""

import argparse
import json
from pathlib import Path

import pytest

from flowengine.cli import build_registry, cmd_run, cmd_validate, register_commands
from flowengine.config import EngineConfig, RuntimeConfig
from flowengine.graph.node import NodeType
from flowengine.llm.mock import MockLLMProvider

FLOW = {
    "nodes": [
        {"id": "begin", "type": "begin", "data": {"form": {"greeting": "Hi {{name}}!"}}},
        {"id": "ask", "type": "interface", "data": {"form": {}}},
        {"id": "answer", "type": "generate", "data": {"form": {"prompt": "{{userInput}}"}}},
        {"id": "reply", "type": "interface", "data": {"form": {}}},
    ],
    "edges": [
        {"source": "begin", "target": "ask"},
        {"source": "ask", "target": "answer"},
        {"source": "answer", "target": "reply"},
    ],
}


def parse(*argv: str) -> argparse.Namespace:
    parser = argparse.ArgumentParser()
    register_commands(parser.add_subparsers(dest="command", required=True))
    return parser.parse_args(argv)


@pytest.fixture
def flow_file(tmp_path: Path) -> Path:
    path = tmp_path / "support.json"
    path.write_text(json.dumps(FLOW))
    return path


def test_validate_ok(flow_file, capsys):
    assert cmd_validate(parse("validate", str(flow_file))) == 0

    assert "✓ support: 4 nodes, 3 edges" in capsys.readouterr().out


def test_validate_reports_fatal_problems(tmp_path, capsys):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"nodes": [], "edges": []}))

    assert cmd_validate(parse("validate", str(path))) == 1

    assert "✗ Flow has no begin node" in capsys.readouterr().err


def test_run_two_turns(flow_file, tmp_path, capsys):
    store = tmp_path / "store"

    code = cmd_run(
        parse(
            "run", str(flow_file), "--store", str(store),
            "--variables", '{"name": "Ada"}', "--mock-response", "Sure!",
        )
    )
    first = json.loads(capsys.readouterr().out)

    assert code == 0
    assert first["choices"][0]["message"]["content"] == "Hi Ada!"

    code = cmd_run(
        parse(
            "run", str(flow_file), "--store", str(store),
            "-c", first["id"], "-i", "Help", "--mock-response", "Sure!",
        )
    )
    second = json.loads(capsys.readouterr().out)

    assert code == 0
    assert second["id"] == first["id"]
    assert second["choices"][0]["message"]["content"] == "Sure!"
    assert (store / "conversations" / f"{first['id']}.json").exists()


def test_build_registry_with_mock(monkeypatch):
    monkeypatch.delenv("FLOWENGINE_RETRIEVAL_URL", raising=False)
    registry = build_registry(EngineConfig(), RuntimeConfig(model="m"), mock_response="ok")

    generate = registry.get(NodeType.GENERATE)

    assert isinstance(generate.llm, MockLLMProvider)
    assert generate.default_model.name == "m"
