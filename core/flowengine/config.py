"""Shared flowengine configuration utilities.

Centralises reading of ~/.flowengine/configuration.json so the CLI, the chat
server and tests share one implementation. Environment variables override
file values.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_MAX_STEPS = 100
DEFAULT_STREAM_BATCH_SIZE = 3
DEFAULT_MAX_TOKENS = 1024

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

FLOWENGINE_HOME = Path.home() / ".flowengine"
FLOWENGINE_CONFIG_FILE = FLOWENGINE_HOME / "configuration.json"


def config_file_path() -> Path:
    """Return the active configuration path (``FLOWENGINE_CONFIG`` wins)."""
    override = os.environ.get("FLOWENGINE_CONFIG")
    return Path(override) if override else FLOWENGINE_CONFIG_FILE


def get_engine_config() -> dict[str, Any]:
    """Load flowengine configuration; a missing or unreadable file yields {}."""
    path = config_file_path()
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8-sig") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_preferred_model() -> str:
    """Return the default model name used when a provider is configured without one."""
    llm = get_engine_config().get("llm", {})
    return os.environ.get("FLOWENGINE_MODEL") or llm.get("model") or "gpt-4o-mini"


def get_max_tokens() -> int:
    return get_engine_config().get("llm", {}).get("max_tokens", DEFAULT_MAX_TOKENS)


def get_api_key() -> str | None:
    """Return the API key from the environment variable named in configuration."""
    llm = get_engine_config().get("llm", {})
    api_key_env_var = llm.get("api_key_env_var")
    if api_key_env_var:
        return os.environ.get(api_key_env_var)
    return None


def get_api_base() -> str | None:
    return get_engine_config().get("llm", {}).get("api_base")


def _engine_value(key: str, env_var: str, default: Any, cast=str) -> Any:
    raw = os.environ.get(env_var)
    if raw is not None and raw != "":
        return cast(raw)
    value = get_engine_config().get("engine", {}).get(key)
    return cast(value) if value is not None else default


# ---------------------------------------------------------------------------
# Config dataclasses
# ---------------------------------------------------------------------------


@dataclass
class RuntimeConfig:
    """Default model settings for nodes that carry no provider of their own."""

    model: str = field(default_factory=get_preferred_model)
    temperature: float = 0.7
    max_tokens: int = field(default_factory=get_max_tokens)
    api_key: str | None = field(default_factory=get_api_key)
    api_base: str | None = field(default_factory=get_api_base)


@dataclass
class EngineConfig:
    """Execution and storage settings for the engine and its HTTP surface."""

    max_steps: int = field(
        default_factory=lambda: _engine_value(
            "max_steps", "FLOWENGINE_MAX_STEPS", DEFAULT_MAX_STEPS, int
        )
    )
    stream_batch_size: int = field(
        default_factory=lambda: _engine_value(
            "stream_batch_size", "FLOWENGINE_STREAM_BATCH_SIZE", DEFAULT_STREAM_BATCH_SIZE, int
        )
    )
    storage_path: Path = field(
        default_factory=lambda: _engine_value(
            "storage_path", "FLOWENGINE_STORAGE_PATH", FLOWENGINE_HOME / "storage", Path
        )
    )
    flows_path: Path = field(
        default_factory=lambda: _engine_value(
            "flows_path", "FLOWENGINE_FLOWS_PATH", FLOWENGINE_HOME / "flows", Path
        )
    )
    retrieval_url: str | None = field(
        default_factory=lambda: _engine_value("retrieval_url", "FLOWENGINE_RETRIEVAL_URL", None)
    )
    request_timeout: float = field(
        default_factory=lambda: _engine_value(
            "request_timeout", "FLOWENGINE_REQUEST_TIMEOUT", 60.0, float
        )
    )
