"""
Tests for conversation and flow stores.
"""

import json
import re
from pathlib import Path

import pytest

from flowengine.errors import PersistenceError
from flowengine.graph.state import ExecutionState
from flowengine.storage.conversation_store import (
    FileConversationStore,
    InMemoryConversationStore,
    conversation_title,
    generate_conversation_id,
    summarize_record,
)
from flowengine.storage.flow_store import FileFlowStore, InMemoryFlowStore

FLOW_JSON = {
    "nodes": [
        {"id": "begin", "type": "begin", "data": {"form": {"greeting": "Hello!"}}},
        {"id": "chat", "type": "interface", "data": {"form": {}}},
    ],
    "edges": [{"source": "begin", "target": "chat"}],
}


# === HELPER FUNCTIONS ===


def paused_state(output: str = "Hello!") -> ExecutionState:
    state = ExecutionState(current_node_id="chat")
    state.record_step("begin", "begin", output=output)
    state.mark_paused("chat")
    return state


# === IDS & TITLES ===


def test_conversation_id_format():
    conversation_id = generate_conversation_id()

    assert re.fullmatch(r"conv_\d{8}_\d{6}_[0-9a-f]{8}", conversation_id)
    assert generate_conversation_id() != conversation_id


def test_title_from_user_message():
    assert conversation_title("Where is my order?") == "Conversation about: Where is my order?"

    long_title = conversation_title("x" * 80)
    assert long_title == f"Conversation about: {'x' * 50}..."


def test_default_title():
    assert re.fullmatch(
        r"Conversation \d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}", conversation_title(None)
    )


# === CONVERSATION STORES ===


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path: Path):
    if request.param == "memory":
        return InMemoryConversationStore()
    return FileConversationStore(tmp_path)


class TestConversationStore:
    @pytest.mark.asyncio
    async def test_save_new_and_load(self, store):
        conversation_id = await store.save(paused_state(), "support")

        loaded = await store.load(conversation_id)

        assert conversation_id.startswith("conv_")
        assert loaded.current_node_id == "chat"
        assert loaded.pause.last_pause_node_id == "chat"
        assert loaded.history[0].output == "Hello!"

    @pytest.mark.asyncio
    async def test_unknown_conversation_is_none(self, store):
        assert await store.load("conv_missing") is None

    @pytest.mark.asyncio
    async def test_save_with_caller_id(self, store):
        conversation_id = await store.save(paused_state(), "support", conversation_id="conv_a")

        assert conversation_id == "conv_a"
        assert await store.load("conv_a") is not None

    @pytest.mark.asyncio
    async def test_transcript_accumulates(self, store):
        conversation_id = await store.save(paused_state(), "support", "conv_t")
        state = await store.load(conversation_id)
        state.record_step("answer", "generate", output="Here you go")

        await store.save(state, "support", conversation_id, last_user_message="Help me")

        record = await store.get_record(conversation_id)
        assert [(m.role, m.content) for m in record.messages] == [
            ("agent", "Hello!"),
            ("user", "Help me"),
            ("agent", "Here you go"),
        ]
        assert record.messages[-1].node_type == "generate"
        assert record.title.startswith("Conversation ")
        assert record.updated_at >= record.created_at

    @pytest.mark.asyncio
    async def test_title_from_first_message(self, store):
        conversation_id = await store.save(
            paused_state(), "support", last_user_message="Refund please"
        )

        record = await store.get_record(conversation_id)

        assert record.title == "Conversation about: Refund please"

    @pytest.mark.asyncio
    async def test_stored_state_is_isolated(self, store):
        state = paused_state()
        conversation_id = await store.save(state, "support")
        state.variables["leak"] = True

        loaded = await store.load(conversation_id)

        assert "leak" not in loaded.variables

    @pytest.mark.asyncio
    async def test_list_and_delete(self, store):
        await store.save(paused_state(), "support", "conv_1")
        await store.save(paused_state(), "sales", "conv_2")

        all_records = await store.list_conversations()
        support = await store.list_conversations("support")

        assert {r.id for r in all_records} == {"conv_1", "conv_2"}
        assert [r.id for r in support] == ["conv_1"]
        assert summarize_record(support[0])["message_count"] == 1

        assert await store.delete("conv_1") is True
        assert await store.delete("conv_1") is False
        assert await store.load("conv_1") is None


class TestFileConversationStore:
    @pytest.mark.asyncio
    async def test_record_written_as_json(self, tmp_path: Path):
        store = FileConversationStore(tmp_path)

        conversation_id = await store.save(paused_state(), "support")

        path = tmp_path / "conversations" / f"{conversation_id}.json"
        data = json.loads(path.read_text())
        assert data["flow_id"] == "support"
        assert data["state"]["current_node_id"] == "chat"
        assert not list(path.parent.glob("*.tmp"))

    @pytest.mark.asyncio
    async def test_path_traversal_rejected(self, tmp_path: Path):
        store = FileConversationStore(tmp_path)

        with pytest.raises(PersistenceError):
            await store.load("../etc/passwd")

    @pytest.mark.asyncio
    async def test_corrupt_record_raises(self, tmp_path: Path):
        store = FileConversationStore(tmp_path)
        (tmp_path / "conversations").mkdir()
        (tmp_path / "conversations" / "conv_bad.json").write_text("{not json")

        with pytest.raises(PersistenceError):
            await store.load("conv_bad")

    @pytest.mark.asyncio
    async def test_unwritable_location_raises(self, tmp_path: Path):
        blocker = tmp_path / "blocked"
        blocker.write_text("a file, not a directory")
        store = FileConversationStore(blocker)

        with pytest.raises(PersistenceError):
            await store.save(paused_state(), "support", "conv_x")


# === FLOW STORES ===


class TestFlowStores:
    @pytest.mark.asyncio
    async def test_in_memory(self, greeting_flow):
        store = InMemoryFlowStore([greeting_flow])

        assert await store.get("greeting") is greeting_flow
        assert await store.get("other") is None
        assert await store.list_ids() == ["greeting"]

    @pytest.mark.asyncio
    async def test_file_store_loads_by_id(self, tmp_path: Path):
        (tmp_path / "support.json").write_text(json.dumps(FLOW_JSON))
        store = FileFlowStore(tmp_path)

        flow = await store.get("support")

        assert flow.id == "support"
        assert await store.get("support") is flow  # cached
        assert await store.list_ids() == ["support"]

    @pytest.mark.asyncio
    async def test_file_store_missing_and_invalid(self, tmp_path: Path):
        (tmp_path / "broken.json").write_text(json.dumps({"nodes": [], "edges": []}))
        store = FileFlowStore(tmp_path)

        assert await store.get("absent") is None
        assert await store.get("broken") is None
        assert await store.get("../support") is None
