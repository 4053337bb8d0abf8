"""
Chat HTTP Server - serves the chat-completion protocol over aiohttp.

Routes:
    POST /v1/chat/completions            one conversation turn (JSON or SSE)
    GET  /v1/conversations               saved conversations (``?flowId=`` filter)
    GET  /v1/conversations/{id}/state    client-safe conversation state
    GET  /health                         liveness probe

Runs inside the caller's asyncio loop; use port 0 to bind an ephemeral port.
"""

import json
import logging
from dataclasses import dataclass

from aiohttp import web
from pydantic import ValidationError

from flowengine.errors import (
    ConversationNotFoundError,
    FlowNotFoundError,
    InvalidRequestError,
    PersistenceError,
)
from flowengine.runtime import protocol
from flowengine.runtime.conversation import ConversationRuntime

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
}


@dataclass
class ChatServerConfig:
    """Configuration for the chat HTTP server."""

    host: str = "127.0.0.1"
    port: int = 8080


def _error_response(
    status: int, message: str, error_type: str = "server_error", code: str = "internal_error"
) -> web.Response:
    return web.json_response(protocol.error_payload(message, error_type, code), status=status)


class ChatServer:
    """
    Embedded HTTP server in front of a ``ConversationRuntime``.

    Lifecycle:
        server = ChatServer(runtime, ChatServerConfig(port=8080))
        await server.start()
        # ... server running ...
        await server.stop()
    """

    def __init__(self, runtime: ConversationRuntime, config: ChatServerConfig | None = None):
        self._runtime = runtime
        self._config = config or ChatServerConfig()
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    def build_app(self) -> web.Application:
        """Create the aiohttp application with all routes registered."""
        app = web.Application()
        app.router.add_post("/v1/chat/completions", self._handle_chat)
        app.router.add_get("/v1/conversations", self._handle_list)
        app.router.add_get("/v1/conversations/{conversation_id}/state", self._handle_state)
        app.router.add_get("/health", self._handle_health)
        return app

    async def start(self) -> None:
        """Start the HTTP server."""
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await self._site.start()
        logger.info(f"Chat server started on {self._config.host}:{self.port}")

    async def stop(self) -> None:
        """Stop the HTTP server gracefully."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._app = None
            self._site = None
            logger.info("Chat server stopped")

    @property
    def is_running(self) -> bool:
        """Check if the server is running."""
        return self._site is not None

    @property
    def port(self) -> int | None:
        """Return the actual listening port (useful when configured with port=0)."""
        if self._site and self._site._server and self._site._server.sockets:
            return self._site._server.sockets[0].getsockname()[1]
        return None

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok"})

    async def _handle_list(self, request: web.Request) -> web.Response:
        flow_id = request.query.get("flowId") or request.query.get("flow_id")
        try:
            conversations = await self._runtime.list_conversations(flow_id)
        except PersistenceError as e:
            logger.error(f"❌ Failed to list conversations: {e}")
            return _error_response(500, "Error listing conversations")
        return web.json_response({"object": "list", "data": conversations})

    async def _handle_state(self, request: web.Request) -> web.Response:
        conversation_id = request.match_info["conversation_id"]
        try:
            body = await self._runtime.get_state(conversation_id)
        except ConversationNotFoundError:
            return _error_response(
                404, "Conversation not found", "invalid_request_error", "not_found"
            )
        except PersistenceError as e:
            logger.error(f"❌ Failed to load conversation {conversation_id}: {e}")
            return _error_response(500, "Error loading conversation")
        return web.json_response(body)

    async def _handle_chat(self, request: web.Request) -> web.StreamResponse:
        try:
            payload = await request.json()
        except (json.JSONDecodeError, ValueError):
            return _error_response(
                400, "Request body must be JSON", "invalid_request_error", "invalid_json"
            )

        try:
            chat_request = protocol.ChatCompletionRequest.model_validate(payload)
        except ValidationError as e:
            return _error_response(400, str(e), "invalid_request_error", "invalid_parameter")

        if chat_request.stream:
            return await self._stream_chat(request, chat_request)

        try:
            body = await self._runtime.handle(chat_request)
        except InvalidRequestError as e:
            return _error_response(400, str(e), "invalid_request_error", e.code)
        except FlowNotFoundError:
            return _error_response(404, "Flow not found", "invalid_request_error", "not_found")
        except PersistenceError as e:
            logger.error(f"❌ Conversation load failed: {e}")
            return _error_response(500, f"Error processing flow: {e}")
        return web.json_response(body)

    async def _stream_chat(
        self, request: web.Request, chat_request: protocol.ChatCompletionRequest
    ) -> web.StreamResponse:
        chunks = self._runtime.stream(chat_request)

        # Request errors surface on the first chunk, before any headers go out
        try:
            first = await anext(chunks)
        except InvalidRequestError as e:
            return _error_response(400, str(e), "invalid_request_error", e.code)
        except FlowNotFoundError:
            return _error_response(404, "Flow not found", "invalid_request_error", "not_found")
        except PersistenceError as e:
            logger.error(f"❌ Conversation load failed: {e}")
            return _error_response(500, f"Error processing flow: {e}")

        response = web.StreamResponse(status=200, headers=SSE_HEADERS)
        await response.prepare(request)
        try:
            await response.write(first.encode("utf-8"))
            async for chunk in chunks:
                await response.write(chunk.encode("utf-8"))
        except ConnectionResetError:
            logger.warning("⚠ Client disconnected mid-stream")
            return response
        finally:
            await chunks.aclose()
        await response.write_eof()
        return response
