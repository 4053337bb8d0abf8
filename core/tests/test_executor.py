"""
Tests for FlowExecutor: starting, pausing, resuming and failing turns.
"""

import pytest

from flowengine.graph.edge import FlowEdge
from flowengine.graph.executor import FlowExecutor, StepListener
from flowengine.graph.flow import Flow
from flowengine.graph.handlers import HandlerRegistry, NodeHandler
from flowengine.graph.handlers.interface import NO_OUTPUT_FALLBACK
from flowengine.graph.node import FlowNode, NodeType
from flowengine.graph.state import ExecutionState, StepStatus
from flowengine.llm.mock import MockLLMProvider
from flowengine.llm.provider import ModelConfig, ProviderConfig
from flowengine.retrieval.port import KnowledgeRetriever, RetrievedPassage
from flowengine.runtime.event_bus import EventBus, EventType

# ---- Dummy handlers & listeners ----


class ExplodingHandler(NodeHandler):
    async def execute(self, node, state, flow, user_input=None):
        raise RuntimeError("boom")


class RecordingListener(StepListener):
    def __init__(self):
        self.started: list[str] = []
        self.finished: list[tuple[str, StepStatus]] = []

    async def on_node_start(self, node, state):
        self.started.append(node.id)

    async def on_step(self, node, result, state):
        self.finished.append((node.id, result.status))


class TwoBaseRetriever(KnowledgeRetriever):
    async def retrieve(self, knowledge_id, query, max_results=3, threshold=0.7):
        count = 2 if knowledge_id == "A" else 3
        return [
            RetrievedPassage(text=f"{knowledge_id}{i}", source=knowledge_id, score=0.9)
            for i in range(count)
        ][:max_results]


# === SCENARIOS ===


class TestConversationScenarios:
    @pytest.mark.asyncio
    async def test_fresh_greeting(self, executor, greeting_flow):
        outcome = await executor.start(greeting_flow)

        assert outcome.status == StepStatus.WAITING_FOR_INPUT
        assert outcome.output == "Hello!"
        assert outcome.node_id == "chat"
        assert outcome.path == ["begin", "chat"]
        assert outcome.state.pause.last_pause_node_id == "chat"
        assert not outcome.state.completed

    @pytest.mark.asyncio
    async def test_full_turn_through_generate(self, executor, chat_flow, llm):
        first = await executor.start(chat_flow, {"name": "Ada"})

        assert first.status == StepStatus.WAITING_FOR_INPUT
        assert first.output == "Hi Ada!"
        assert first.node_id == "ask"

        second = await executor.resume(chat_flow, first.state, user_input="Hi")

        assert second.status == StepStatus.WAITING_FOR_INPUT
        assert second.output == "Mocked reply"
        assert second.node_id == "reply"
        assert second.path == ["ask", "answer", "reply"]
        assert llm.prompts == ["Answer: Hi"]
        assert second.state.variables["answer"] == "Mocked reply"
        assert second.state.pause.last_pause_node_id == "reply"

    @pytest.mark.asyncio
    async def test_categorize_fallback_routes_to_default(self, registry):
        registry.register(
            NodeType.CATEGORIZE,
            HandlerRegistry.default(
                llm=MockLLMProvider("not json at all"),
                default_provider=ProviderConfig(),
                default_model=ModelConfig(name="m"),
            ).get(NodeType.CATEGORIZE),
        )
        flow = Flow(
            nodes=[
                FlowNode(id="begin", type="begin", config={}),
                FlowNode(id="ask", type="interface", config={}),
                FlowNode(
                    id="classify",
                    type="categorize",
                    config={
                        "categories": [{"name": "positive"}, {"name": "negative"}],
                        "defaultCategory": "positive",
                    },
                ),
                FlowNode(id="happy", type="interface", config={"template": "Glad to hear!"}),
                FlowNode(id="sad", type="interface", config={"template": "Sorry!"}),
            ],
            edges=[
                FlowEdge(source="begin", target="ask"),
                FlowEdge(source="ask", target="classify"),
                FlowEdge(source="classify", target="happy", branch_selector="positive"),
                FlowEdge(source="classify", target="sad", branch_selector="negative"),
            ],
        )
        executor = FlowExecutor(registry)

        first = await executor.start(flow)
        outcome = await executor.resume(flow, first.state, user_input="meh")

        assert outcome.output == "Glad to hear!"
        assert outcome.state.variables["category"] == "positive"
        assert outcome.state.variables["categorization"]["confidence"] == 0.0

    @pytest.mark.asyncio
    async def test_retrieval_truncates_in_base_order(self, llm):
        registry = HandlerRegistry.default(
            llm=llm,
            retriever=TwoBaseRetriever(),
            default_provider=ProviderConfig(),
            default_model=ModelConfig(name="m"),
        )
        flow = Flow(
            nodes=[
                FlowNode(id="begin", type="begin", config={}),
                FlowNode(id="ask", type="interface", config={}),
                FlowNode(
                    id="search",
                    type="retrieval",
                    config={"knowledgeIds": ["A", "B"], "maxResults": 3},
                ),
                FlowNode(id="show", type="interface", config={"template": "{{retrievalContext}}"}),
            ],
            edges=[
                FlowEdge(source="begin", target="ask"),
                FlowEdge(source="ask", target="search"),
                FlowEdge(source="search", target="show"),
            ],
        )
        executor = FlowExecutor(registry)

        first = await executor.start(flow)
        outcome = await executor.resume(flow, first.state, user_input="find it")

        results = outcome.state.variables["retrievalResults"]
        assert [r["text"] for r in results] == ["A0", "A1", "B0"]

    @pytest.mark.asyncio
    async def test_missing_edge_target_is_an_error(self, executor):
        flow = Flow(
            nodes=[
                FlowNode(id="begin", type="begin", config={}),
                FlowNode(id="chat", type="interface", config={}),
            ],
            edges=[FlowEdge(source="begin", target="ghost")],
        )

        outcome = await executor.start(flow)

        assert outcome.status == StepStatus.ERROR
        assert outcome.message == "Node not found: ghost"
        assert outcome.state.current_node_id == "begin"
        assert [r.node_id for r in outcome.state.history] == ["begin", "begin"]

    @pytest.mark.asyncio
    async def test_interface_with_nothing_to_show(self, executor):
        flow = Flow(
            nodes=[
                FlowNode(id="begin", type="begin", config={}),
                FlowNode(id="chat", type="interface", config={}),
            ],
            edges=[FlowEdge(source="begin", target="chat")],
        )
        state = ExecutionState(current_node_id="chat")
        state.mark_paused("chat")

        outcome = await executor.resume(flow, state)

        assert outcome.status == StepStatus.WAITING_FOR_INPUT
        assert outcome.output == NO_OUTPUT_FALLBACK


# === DRIVER BEHAVIOUR ===


class TestFlowExecutor:
    @pytest.mark.asyncio
    async def test_history_records_each_step(self, executor, chat_flow):
        first = await executor.start(chat_flow)
        second = await executor.resume(chat_flow, first.state, user_input="Hi")

        records = [(r.node_id, r.node_type) for r in second.state.history]
        assert records == [
            ("begin", "begin"),  # initialization
            ("begin", "begin"),  # greeting
            ("user-input", "user"),
            ("ask", "interface"),
            ("answer", "generate"),
        ]
        assert second.state.history[2].input == "Hi"

    @pytest.mark.asyncio
    async def test_input_at_final_interface_completes(self, executor, chat_flow):
        first = await executor.start(chat_flow)
        second = await executor.resume(chat_flow, first.state, user_input="Hi")
        third = await executor.resume(chat_flow, second.state, user_input="Thanks")

        assert third.status == StepStatus.COMPLETED
        assert third.output == "Thanks"
        assert third.state.completed
        assert third.state.history[-1].node_id == "reply"

    @pytest.mark.asyncio
    async def test_completed_state_is_not_rerun(self, executor, chat_flow, llm):
        state = ExecutionState(current_node_id="reply", completed=True)

        outcome = await executor.resume(chat_flow, state, user_input="again")

        assert outcome.status == StepStatus.COMPLETED
        assert outcome.message == "Flow execution already completed"
        assert outcome.state.history == []
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_resume_from_serialized_state(self, executor, chat_flow):
        first = await executor.start(chat_flow)
        restored = ExecutionState.model_validate_json(first.state.model_dump_json())

        outcome = await executor.resume(chat_flow, restored, user_input="Hi")

        assert outcome.output == "Mocked reply"
        assert outcome.node_id == "reply"

    @pytest.mark.asyncio
    async def test_resume_is_deterministic(self, executor, chat_flow):
        first = await executor.start(chat_flow)
        a = await executor.resume(chat_flow, first.state.snapshot(), user_input="Hi")
        b = await executor.resume(chat_flow, first.state.snapshot(), user_input="Hi")

        assert a.output == b.output
        assert a.path == b.path
        assert a.state.variables == b.state.variables

    @pytest.mark.asyncio
    async def test_replay_without_input_repeats_last_reply(self, executor, chat_flow, llm):
        first = await executor.start(chat_flow)
        second = await executor.resume(chat_flow, first.state, user_input="Hi")
        state = second.state
        model_calls = len(llm.calls)

        a = await executor.resume(chat_flow, state)
        variables_after_a = dict(state.variables)
        b = await executor.resume(chat_flow, state)

        for outcome in (a, b):
            assert outcome.status == StepStatus.WAITING_FOR_INPUT
            assert outcome.output == "Mocked reply"
            assert outcome.node_id == "reply"
            assert outcome.path == ["reply"]
        assert b.state.variables == variables_after_a
        assert len(llm.calls) == model_calls

    @pytest.mark.asyncio
    async def test_step_ceiling_stops_cycles(self, registry):
        flow = Flow(
            nodes=[
                FlowNode(id="begin", type="begin", config={}),
                FlowNode(id="chat", type="interface", config={}),
                FlowNode(id="g1", type="generate", config={"prompt": "a"}),
                FlowNode(id="g2", type="generate", config={"prompt": "b"}),
            ],
            edges=[
                FlowEdge(source="begin", target="g1"),
                FlowEdge(source="g1", target="g2"),
                FlowEdge(source="g2", target="g1"),
            ],
        )
        executor = FlowExecutor(registry, max_steps=5)

        outcome = await executor.start(flow)

        assert outcome.status == StepStatus.ERROR
        assert outcome.message == "Maximum step count exceeded"
        assert outcome.steps == 5

    @pytest.mark.asyncio
    async def test_invalid_flow_is_rejected(self, executor):
        flow = Flow(nodes=[FlowNode(id="begin", type="begin", config={})])

        outcome = await executor.start(flow)

        assert outcome.status == StepStatus.ERROR
        assert outcome.message == "Invalid flow: Flow has no interface node"
        assert outcome.state is None

    @pytest.mark.asyncio
    async def test_resume_at_unknown_node(self, executor, greeting_flow):
        state = ExecutionState(current_node_id="gone")

        outcome = await executor.resume(greeting_flow, state, user_input="Hi")

        assert outcome.status == StepStatus.ERROR
        assert outcome.message == "Node not found: gone"
        assert state.history == []

    @pytest.mark.asyncio
    async def test_missing_handler(self, greeting_flow):
        executor = FlowExecutor(HandlerRegistry())

        outcome = await executor.start(greeting_flow)

        assert outcome.status == StepStatus.ERROR
        assert outcome.message == "Unsupported node type: begin"

    @pytest.mark.asyncio
    async def test_raising_handler_becomes_error(self, registry, greeting_flow):
        registry.register(NodeType.BEGIN, ExplodingHandler())

        outcome = await FlowExecutor(registry).start(greeting_flow)

        assert outcome.status == StepStatus.ERROR
        assert outcome.message == "Error executing begin node begin: boom"
        assert outcome.node_id == "begin"

    @pytest.mark.asyncio
    async def test_listener_sees_every_step(self, executor, greeting_flow):
        listener = RecordingListener()

        await executor.start(greeting_flow, listener=listener)

        assert listener.started == ["begin", "chat"]
        assert listener.finished == [
            ("begin", StepStatus.IN_PROGRESS),
            ("chat", StepStatus.WAITING_FOR_INPUT),
        ]

    @pytest.mark.asyncio
    async def test_events_published(self, registry, chat_flow):
        bus = EventBus()
        executor = FlowExecutor(registry, event_bus=bus)

        first = await executor.start(chat_flow, conversation_id="conv_1")
        await executor.resume(chat_flow, first.state, "Hi", conversation_id="conv_1")

        types = [e.type for e in reversed(bus.get_history(conversation_id="conv_1"))]
        assert types[0] == EventType.EXECUTION_STARTED
        assert EventType.EXECUTION_RESUMED in types
        assert types.count(EventType.EXECUTION_PAUSED) == 2
        paused = bus.get_history(event_type=EventType.EXECUTION_PAUSED)
        assert [e.node_id for e in paused] == ["reply", "ask"]
