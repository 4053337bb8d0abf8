"""
Chat-completion wire protocol.

Requests and responses follow the OpenAI chat-completion shape so existing
chat clients can talk to a flow. Flow-specific extras ride along:
``status``, ``clientState`` and, on streams, ``nodeInfo`` and a final
``persistenceStatus`` chunk.
"""

import json
import time
from typing import Any

from pydantic import AliasChoices, BaseModel, Field

from flowengine.graph.executor import ExecutionOutcome
from flowengine.graph.state import ExecutionState, StepStatus

DEFAULT_MODEL_LABEL = "flow-default"
SSE_DONE = "data: [DONE]\n\n"

_FINISH_REASONS: dict[str, str | None] = {
    StepStatus.COMPLETED: "stop",
    StepStatus.WAITING_FOR_INPUT: "function_call",
    StepStatus.IN_PROGRESS: None,
    StepStatus.ERROR: "length",
}


class ChatMessage(BaseModel):
    role: str
    content: Any = ""

    model_config = {"extra": "allow"}


class ChatCompletionRequest(BaseModel):
    """
    Body of ``POST /v1/chat/completions``.

    ``id`` continues an existing conversation; omit it to start one.
    """

    flow_id: str | None = Field(
        default=None, validation_alias=AliasChoices("flowId", "flow_id")
    )
    id: str | None = None
    messages: list[ChatMessage] = Field(default_factory=list)
    variables: dict[str, Any] = Field(default_factory=dict)
    stream: bool = False
    model: str = "default"
    temperature: float = 0.7
    max_tokens: int = 1024
    top_p: float = 1

    model_config = {"extra": "ignore", "populate_by_name": True}


def extract_user_input(messages: list[ChatMessage]) -> str | None:
    """Content of the last non-blank ``user`` message, or None."""
    for message in reversed(messages):
        if message.role != "user":
            continue
        if isinstance(message.content, str) and message.content.strip():
            return message.content
    return None


def enrich_variables(variables: dict[str, Any], request: ChatCompletionRequest) -> dict[str, Any]:
    """Copy of ``variables`` with the request's sampling parameters under ``openai``."""
    return {
        **variables,
        "openai": {
            "model": request.model,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "top_p": request.top_p,
        },
    }


def finish_reason(status: StepStatus | str) -> str | None:
    return _FINISH_REASONS.get(status, "length")


def client_state(state: ExecutionState | None) -> dict[str, Any] | None:
    """Client-safe view of the execution state; variables and history stay server-side."""
    if state is None:
        return None
    summary = state.client_summary()
    return {
        "currentNodeId": summary["current_node_id"],
        "waitingForInput": summary["waiting_for_input"],
        "completed": summary["completed"],
    }


def error_payload(
    message: str, error_type: str = "server_error", code: str = "internal_error"
) -> dict:
    return {"error": {"message": message, "type": error_type, "code": code}}


def to_chat_completion(
    outcome: ExecutionOutcome,
    conversation_id: str,
    model: str = DEFAULT_MODEL_LABEL,
) -> dict[str, Any]:
    """Render a turn's outcome as a ``chat.completion`` response body."""
    if outcome.is_error:
        payload = error_payload(
            outcome.message or "An error occurred", "server_error", "execution_error"
        )
        payload.update(
            {
                "id": conversation_id,
                "status": str(outcome.status),
                "clientState": client_state(outcome.state),
            }
        )
        return payload

    return {
        "id": conversation_id,
        "object": "chat.completion",
        "created": int(time.time()),
        "model": model,
        "status": str(outcome.status),
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": outcome.text},
                "finish_reason": finish_reason(outcome.status),
            }
        ],
        "usage": {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0},
        "clientState": client_state(outcome.state),
    }


# ---------------------------------------------------------------------------
# Streaming chunks
# ---------------------------------------------------------------------------


def _chunk(
    response_id: str,
    model: str,
    delta: dict[str, Any],
    reason: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    chunk = {
        "id": response_id,
        "object": "chat.completion.chunk",
        "created": int(time.time()),
        "model": model,
        "choices": [{"index": 0, "delta": delta, "finish_reason": reason}],
    }
    chunk.update({k: v for k, v in extra.items() if v is not None})
    return chunk


def progress_chunk(
    response_id: str, node_id: str, node_type: str, model: str = DEFAULT_MODEL_LABEL
) -> dict[str, Any]:
    """Empty-delta chunk marking a node that produced output mid-turn."""
    return _chunk(response_id, model, {}, nodeInfo={"nodeId": node_id, "nodeType": node_type})


def role_chunk(response_id: str, model: str = DEFAULT_MODEL_LABEL) -> dict[str, Any]:
    """First chunk of every stream."""
    return _chunk(response_id, model, {"role": "assistant"})


def content_chunk(
    response_id: str,
    content: str,
    model: str = DEFAULT_MODEL_LABEL,
    node_info: dict[str, Any] | None = None,
    state: ExecutionState | None = None,
) -> dict[str, Any]:
    return _chunk(
        response_id,
        model,
        {"content": content},
        nodeInfo=node_info,
        clientState=client_state(state),
    )


def finish_chunk(
    response_id: str,
    status: StepStatus | str,
    model: str = DEFAULT_MODEL_LABEL,
    error: str | None = None,
) -> dict[str, Any]:
    extra: dict[str, Any] = {"status": str(status)}
    if error is not None:
        extra.update(error_payload(error, "server_error", "execution_error"))
    return _chunk(response_id, model, {}, finish_reason(status), **extra)


def persistence_chunk(conversation_id: str | None, ok: bool) -> dict[str, Any]:
    if ok:
        return {"id": conversation_id, "persistenceStatus": "success"}
    return {"persistenceStatus": "error", "error": "Failed to persist conversation"}


def sse(data: dict[str, Any]) -> str:
    """Frame one JSON object as a server-sent event."""
    return f"data: {json.dumps(data, default=str)}\n\n"
