"""
Command-line interface for flowengine.

Usage:
    flowengine validate flows/support.json
    flowengine run flows/support.json
    flowengine run flows/support.json --conversation conv_... --input "Hi"
    flowengine run flows/support.json --mock-response "Sure!" --input "Hi"
    flowengine serve --flows flows/ --store ~/.flowengine/storage --port 8080
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from flowengine.config import EngineConfig, RuntimeConfig
from flowengine.errors import FlowValidationError, PersistenceError
from flowengine.graph.executor import FlowExecutor
from flowengine.graph.flow import load_flow
from flowengine.graph.handlers import HandlerRegistry
from flowengine.llm.mock import MockLLMProvider
from flowengine.llm.provider import LLMProvider, ModelConfig, ProviderConfig
from flowengine.observability import configure_logging
from flowengine.retrieval.http import HttpKnowledgeRetriever
from flowengine.runtime.chat_server import ChatServer, ChatServerConfig
from flowengine.runtime.conversation import ConversationRuntime
from flowengine.runtime.protocol import ChatCompletionRequest, ChatMessage
from flowengine.storage.conversation_store import FileConversationStore
from flowengine.storage.flow_store import FileFlowStore, InMemoryFlowStore

logger = logging.getLogger(__name__)


def build_registry(
    engine: EngineConfig, runtime: RuntimeConfig, mock_response: str | None = None
) -> HandlerRegistry:
    """Handler registry wired to the configured model and search backend."""
    llm: LLMProvider
    if mock_response is not None:
        llm = MockLLMProvider(mock_response)
    else:
        from flowengine.llm.litellm import LiteLLMProvider

        llm = LiteLLMProvider(timeout=engine.request_timeout)

    retriever = None
    if engine.retrieval_url:
        retriever = HttpKnowledgeRetriever(engine.retrieval_url, timeout=engine.request_timeout)

    return HandlerRegistry.default(
        llm=llm,
        retriever=retriever,
        default_provider=ProviderConfig(
            provider_type="openai", endpoint_url=runtime.api_base, api_key=runtime.api_key
        ),
        default_model=ModelConfig(name=runtime.model),
    )


def cmd_validate(args: argparse.Namespace) -> int:
    try:
        flow = load_flow(Path(args.flow))
    except FlowValidationError as e:
        for problem in e.errors:
            print(f"✗ {problem}", file=sys.stderr)
        return 1

    problems = flow.validate()
    for problem in problems:
        print(f"⚠ {problem}")
    print(f"✓ {flow.id}: {len(flow.nodes)} nodes, {len(flow.edges)} edges")
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    engine = EngineConfig()
    if args.store:
        engine.storage_path = Path(args.store)

    try:
        flow = load_flow(Path(args.flow))
    except FlowValidationError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1

    registry = build_registry(engine, RuntimeConfig(), args.mock_response)
    runtime = ConversationRuntime(
        flow_store=InMemoryFlowStore({flow.id: flow}),
        conversation_store=FileConversationStore(engine.storage_path),
        executor=FlowExecutor(registry, max_steps=engine.max_steps),
    )

    messages = [ChatMessage(role="user", content=args.input)] if args.input else []
    request = ChatCompletionRequest(
        flow_id=flow.id,
        id=args.conversation,
        messages=messages,
        variables=json.loads(args.variables) if args.variables else {},
    )
    try:
        body = asyncio.run(runtime.handle(request))
    except PersistenceError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1

    print(json.dumps(body, indent=2, default=str))
    return 1 if "error" in body else 0


def cmd_serve(args: argparse.Namespace) -> int:
    engine = EngineConfig()
    flows_path = Path(args.flows) if args.flows else engine.flows_path
    storage_path = Path(args.store) if args.store else engine.storage_path

    registry = build_registry(engine, RuntimeConfig(), args.mock_response)
    runtime = ConversationRuntime(
        flow_store=FileFlowStore(flows_path),
        conversation_store=FileConversationStore(storage_path),
        executor=FlowExecutor(registry, max_steps=engine.max_steps),
        batch_size=engine.stream_batch_size,
    )
    server = ChatServer(runtime, ChatServerConfig(host=args.host, port=args.port))

    async def _serve() -> None:
        await server.start()
        print(f"Serving flows from {flows_path} on http://{args.host}:{server.port}")
        try:
            await asyncio.Event().wait()
        finally:
            await server.stop()

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        pass
    return 0


def register_commands(subparsers: argparse._SubParsersAction) -> None:
    validate_parser = subparsers.add_parser("validate", help="Validate a flow file")
    validate_parser.add_argument("flow", help="Path to flow JSON")
    validate_parser.set_defaults(func=cmd_validate)

    run_parser = subparsers.add_parser("run", help="Run one conversation turn")
    run_parser.add_argument("flow", help="Path to flow JSON")
    run_parser.add_argument("--input", "-i", help="User message for this turn")
    run_parser.add_argument("--conversation", "-c", help="Conversation ID to continue")
    run_parser.add_argument("--variables", help="Initial variables as a JSON object")
    run_parser.add_argument("--store", help="Conversation storage directory")
    run_parser.add_argument(
        "--mock-response", help="Answer every model call with this text instead of an LLM"
    )
    run_parser.set_defaults(func=cmd_run)

    serve_parser = subparsers.add_parser("serve", help="Serve the chat completion API")
    serve_parser.add_argument("--flows", help="Directory of <flow_id>.json files")
    serve_parser.add_argument("--store", help="Conversation storage directory")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8080)
    serve_parser.add_argument("--mock-response", help="Answer every model call with this text")
    serve_parser.set_defaults(func=cmd_serve)


def main():
    parser = argparse.ArgumentParser(
        prog="flowengine",
        description="flowengine - Run conversational flows",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    parser.add_argument(
        "--log-format", default="auto", choices=["auto", "json", "human"], help="Log format"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    register_commands(subparsers)

    args = parser.parse_args()
    configure_logging(level=args.log_level, format=args.log_format)

    if hasattr(args, "func"):
        sys.exit(args.func(args))


if __name__ == "__main__":
    main()
