"""Model Invocation Port - pluggable language-model backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

ProviderType = Literal["openai", "azure", "custom"]


class ProviderConfig(BaseModel):
    """
    Connection details for one model provider.

    ``config`` carries provider-specific settings:
        azure:  ``api_version``
        custom: ``body_template``, ``auth_type``, ``custom_headers``,
                ``response_path``
    """

    provider_type: ProviderType = "openai"
    endpoint_url: str | None = None
    api_key: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)

    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class ModelConfig(BaseModel):
    """A model offered by a provider."""

    name: str
    deployment_name: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)

    model_config = {"alias_generator": to_camel, "populate_by_name": True}

    @property
    def deployment(self) -> str:
        return self.deployment_name or self.config.get("deployment_name") or self.name


@dataclass
class InvocationOptions:
    """Sampling options for a single invocation."""

    temperature: float = 0.7
    max_tokens: int | None = None
    top_p: float | None = None
    stop: list[str] | None = None


@dataclass
class LLMResponse:
    """Response from a model invocation."""

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: str = ""
    raw_response: Any = None


class ModelInvocationError(Exception):
    """A model call failed; the message is safe to surface to the caller."""


class ModelTransportError(ModelInvocationError):
    """The provider could not be reached (connection failure or timeout)."""


class ModelUpstreamError(ModelInvocationError):
    """The provider answered with a non-success status."""

    def __init__(self, status_code: int, body: str, provider_type: str = ""):
        self.status_code = status_code
        self.body = body
        self.provider_type = provider_type
        label = f"{provider_type} API error" if provider_type else "API error"
        super().__init__(f"{label} ({status_code}): {body}")


class LLMProvider(ABC):
    """
    Abstract model provider - plug in any backend.

    Implementations must:
    - enforce their own timeouts
    - raise ModelTransportError for connection problems
    - raise ModelUpstreamError for non-2xx responses
    """

    @abstractmethod
    async def invoke(
        self,
        provider: ProviderConfig,
        model: ModelConfig,
        prompt: str,
        options: InvocationOptions | None = None,
    ) -> LLMResponse:
        """
        Send a single-turn prompt and return the model's text.

        Args:
            provider: Provider connection details
            model: Model to call
            prompt: Fully rendered prompt, sent as one user message
            options: Sampling options (defaults apply when None)

        Returns:
            LLMResponse with content and metadata
        """
        pass
