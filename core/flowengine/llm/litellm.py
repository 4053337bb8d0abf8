"""
LiteLLM-backed model provider.

OpenAI-compatible and Azure OpenAI providers go through ``litellm.acompletion``.
Custom providers are plain JSON endpoints described by a body template and a
response path, and are called with httpx.
"""

import json
import logging
from typing import Any

import httpx
import litellm

from flowengine.llm.provider import (
    InvocationOptions,
    LLMProvider,
    LLMResponse,
    ModelConfig,
    ModelInvocationError,
    ModelTransportError,
    ModelUpstreamError,
    ProviderConfig,
)

logger = logging.getLogger(__name__)

DEFAULT_AZURE_API_VERSION = "2023-05-15"
DEFAULT_BODY_TEMPLATE: dict[str, Any] = {"model": "{{model_name}}", "prompt": "{{prompt}}"}
DEFAULT_RESPONSE_PATH = "response"

_PROVIDER_LABELS = {"openai": "OpenAI", "azure": "Azure OpenAI", "custom": "Custom"}


def extract_by_path(data: Any, path: str) -> Any:
    """Follow a dot-separated path into nested dicts/lists; None when any hop is missing."""
    current = data
    for key in path.split("."):
        if isinstance(current, dict):
            current = current.get(key)
        elif isinstance(current, list) and key.isdigit() and int(key) < len(current):
            current = current[int(key)]
        else:
            return None
        if current is None:
            return None
    return current


def fill_body_template(template: Any, values: dict[str, Any]) -> Any:
    """
    Substitute ``{{name}}`` placeholders in a JSON body template.

    A string that is exactly one placeholder is replaced by the raw value, so
    numeric options stay numeric. Placeholders embedded in longer strings are
    replaced textually. Unknown placeholders are left alone.
    """
    if isinstance(template, dict):
        return {k: fill_body_template(v, values) for k, v in template.items()}
    if isinstance(template, list):
        return [fill_body_template(v, values) for v in template]
    if not isinstance(template, str):
        return template

    stripped = template.strip()
    if stripped.startswith("{{") and stripped.endswith("}}"):
        key = stripped[2:-2].strip()
        if key in values:
            return values[key]

    result = template
    for key, value in values.items():
        result = result.replace("{{" + key + "}}", "" if value is None else str(value))
    return result


class LiteLLMProvider(LLMProvider):
    """
    Model provider dispatching on ``ProviderConfig.provider_type``.

    Example:
        llm = LiteLLMProvider(timeout=30)
        response = await llm.invoke(
            ProviderConfig(provider_type="openai", api_key="sk-..."),
            ModelConfig(name="gpt-4o-mini"),
            "Say hello",
        )
    """

    def __init__(self, timeout: float = 60.0, http_client: httpx.AsyncClient | None = None):
        """
        Args:
            timeout: Seconds before a model call is abandoned
            http_client: Client used for custom providers; one is created per
                call when omitted
        """
        self.timeout = timeout
        self._http_client = http_client

    async def invoke(
        self,
        provider: ProviderConfig,
        model: ModelConfig,
        prompt: str,
        options: InvocationOptions | None = None,
    ) -> LLMResponse:
        options = options or InvocationOptions()
        if provider.provider_type == "custom":
            return await self._invoke_custom(provider, model, prompt, options)
        return await self._invoke_litellm(provider, model, prompt, options)

    async def _invoke_litellm(
        self,
        provider: ProviderConfig,
        model: ModelConfig,
        prompt: str,
        options: InvocationOptions,
    ) -> LLMResponse:
        label = _PROVIDER_LABELS[provider.provider_type]
        kwargs: dict[str, Any] = {
            "messages": [{"role": "user", "content": prompt}],
            "temperature": options.temperature,
            "timeout": self.timeout,
        }
        if options.max_tokens:
            kwargs["max_tokens"] = options.max_tokens
        if options.top_p is not None:
            kwargs["top_p"] = options.top_p
        if options.stop:
            kwargs["stop"] = options.stop
        if provider.api_key:
            kwargs["api_key"] = provider.api_key

        if provider.provider_type == "azure":
            kwargs["model"] = f"azure/{model.deployment}"
            kwargs["api_base"] = provider.endpoint_url
            kwargs["api_version"] = provider.config.get("api_version") or DEFAULT_AZURE_API_VERSION
        else:
            kwargs["model"] = model.name
            kwargs["custom_llm_provider"] = "openai"
            if provider.endpoint_url:
                kwargs["api_base"] = provider.endpoint_url

        try:
            response = await litellm.acompletion(**kwargs)
        except (litellm.Timeout, litellm.APIConnectionError) as e:
            raise ModelTransportError(f"{label} API unreachable: {e}") from e
        except Exception as e:
            status_code = getattr(e, "status_code", None)
            if isinstance(status_code, int):
                message = getattr(e, "message", None) or str(e)
                raise ModelUpstreamError(status_code, message, label) from e
            raise ModelInvocationError(f"{label} API call failed: {e}") from e

        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        return LLMResponse(
            content=choice.message.content or "",
            model=getattr(response, "model", None) or model.name,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            stop_reason=choice.finish_reason or "",
            raw_response=response,
        )

    async def _invoke_custom(
        self,
        provider: ProviderConfig,
        model: ModelConfig,
        prompt: str,
        options: InvocationOptions,
    ) -> LLMResponse:
        if not provider.endpoint_url:
            raise ModelInvocationError("Custom provider has no endpoint URL")

        config = provider.config
        headers = {"Content-Type": "application/json"}
        if provider.api_key:
            auth_type = config.get("auth_type") or "Bearer"
            headers["Authorization"] = f"{auth_type} {provider.api_key}"
        headers.update(config.get("custom_headers") or {})

        template = config.get("body_template") or DEFAULT_BODY_TEMPLATE
        if isinstance(template, str):
            try:
                template = json.loads(template)
            except json.JSONDecodeError as e:
                raise ModelInvocationError(f"Custom provider body template is not JSON: {e}") from e

        body = fill_body_template(
            template,
            {
                "model_name": model.name,
                "prompt": prompt,
                "temperature": options.temperature,
                "max_tokens": options.max_tokens,
                "top_p": options.top_p,
            },
        )

        try:
            if self._http_client is not None:
                response = await self._http_client.post(
                    provider.endpoint_url, json=body, headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(provider.endpoint_url, json=body, headers=headers)
        except httpx.TimeoutException as e:
            raise ModelTransportError(f"Custom API timed out after {self.timeout}s") from e
        except httpx.TransportError as e:
            raise ModelTransportError(f"Custom API unreachable: {e}") from e

        if not response.is_success:
            raise ModelUpstreamError(response.status_code, response.text, "Custom")

        try:
            data = response.json()
        except ValueError as e:
            raise ModelInvocationError(f"Custom API returned invalid JSON: {e}") from e

        path = config.get("response_path") or DEFAULT_RESPONSE_PATH
        content = extract_by_path(data, path)
        if content is None:
            logger.warning(f"⚠ Custom API response has nothing at '{path}'")
            content = ""
        elif not isinstance(content, str):
            content = json.dumps(content)

        return LLMResponse(content=content, model=model.name, raw_response=data)
