"""Mock LLM provider for tests and offline runs."""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from flowengine.llm.provider import (
    InvocationOptions,
    LLMProvider,
    LLMResponse,
    ModelConfig,
    ProviderConfig,
)

logger = logging.getLogger(__name__)


@dataclass
class RecordedCall:
    provider: ProviderConfig
    model: ModelConfig
    prompt: str
    options: InvocationOptions


class MockLLMProvider(LLMProvider):
    """
    Returns canned responses without touching the network.

    ``responses`` may be a single string (returned every time), a list
    (returned in order, the last one repeating) or a callable taking the
    prompt. Set ``error`` to make every call raise it.

    Example:
        llm = MockLLMProvider(['{"category": "billing", "confidence": 0.9}', "Sure!"])
        ...
        assert llm.calls[0].options.temperature == 0.3
    """

    def __init__(
        self,
        responses: str | list[str] | Callable[[str], str] = "Mock response",
        error: Exception | None = None,
    ):
        self.responses = responses
        self.error = error
        self.calls: list[RecordedCall] = []

    @property
    def prompts(self) -> list[str]:
        return [c.prompt for c in self.calls]

    def _next_response(self, prompt: str) -> str:
        if callable(self.responses):
            return self.responses(prompt)
        if isinstance(self.responses, str):
            return self.responses
        if not self.responses:
            return ""
        index = min(len(self.calls) - 1, len(self.responses) - 1)
        return self.responses[index]

    async def invoke(
        self,
        provider: ProviderConfig,
        model: ModelConfig,
        prompt: str,
        options: InvocationOptions | None = None,
    ) -> LLMResponse:
        options = options or InvocationOptions()
        self.calls.append(RecordedCall(provider, model, prompt, options))
        if self.error is not None:
            raise self.error

        content = self._next_response(prompt)
        logger.debug(f"Mock {model.name} -> {content[:40]!r}")
        return LLMResponse(
            content=content,
            model=model.name,
            input_tokens=len(prompt.split()),
            output_tokens=len(content.split()),
            stop_reason="stop",
        )
