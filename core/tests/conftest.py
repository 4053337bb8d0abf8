"""Shared fixtures: a mock model port, a wired executor and small flows."""

import pytest

from flowengine.graph.edge import FlowEdge
from flowengine.graph.executor import FlowExecutor
from flowengine.graph.flow import Flow
from flowengine.graph.handlers import HandlerRegistry
from flowengine.graph.node import FlowNode
from flowengine.llm.mock import MockLLMProvider
from flowengine.llm.provider import ModelConfig, ProviderConfig
from flowengine.retrieval.memory import InMemoryRetriever


@pytest.fixture
def llm():
    return MockLLMProvider("Mocked reply")


@pytest.fixture
def retriever():
    return InMemoryRetriever()


@pytest.fixture
def registry(llm, retriever):
    return HandlerRegistry.default(
        llm=llm,
        retriever=retriever,
        default_provider=ProviderConfig(provider_type="openai", api_key="test-key"),
        default_model=ModelConfig(name="test-model"),
    )


@pytest.fixture
def executor(registry):
    return FlowExecutor(registry, max_steps=50)


@pytest.fixture
def greeting_flow():
    """begin(greeting="Hello!") -> chat"""
    return Flow(
        id="greeting",
        nodes=[
            FlowNode(id="begin", type="begin", config={"greeting": "Hello!"}),
            FlowNode(id="chat", type="interface", config={}),
        ],
        edges=[FlowEdge(source="begin", target="chat")],
    )


@pytest.fixture
def chat_flow():
    """begin -> ask -> answer (generate) -> reply"""
    return Flow(
        id="chat",
        nodes=[
            FlowNode(id="begin", type="begin", config={"greeting": "Hi {{name}}!"}),
            FlowNode(id="ask", type="interface", config={}),
            FlowNode(
                id="answer",
                type="generate",
                config={"prompt": "Answer: {{userInput}}", "outputVariable": "answer"},
            ),
            FlowNode(id="reply", type="interface", config={}),
        ],
        edges=[
            FlowEdge(source="begin", target="ask"),
            FlowEdge(source="ask", target="answer"),
            FlowEdge(source="answer", target="reply"),
        ],
    )
