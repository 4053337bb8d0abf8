"""
Node Protocol - the typed steps a flow is built from.

Every node carries a type tag and a configuration payload whose shape is
fixed by that tag:

- begin:      greeting and declared variables; runs once per conversation
- interface:  the pause boundary where the run waits for user input
- generate:   renders a prompt and calls a language model
- categorize: classifies text into a branch via a language model
- retrieval:  searches one or more knowledge bases

Payloads are validated when the flow is loaded, so a malformed node fails
at load time rather than inside a handler. Flows exported by the visual
editor (``{"id", "type", "data": {"label", "form": {...}}}`` with camelCase
keys) are accepted as-is.
"""

from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from flowengine.graph.references import InputReference
from flowengine.llm.provider import ModelConfig, ProviderConfig


class NodeType(StrEnum):
    """Type tag of a flow node."""

    BEGIN = "begin"
    INTERFACE = "interface"
    GENERATE = "generate"
    CATEGORIZE = "categorize"
    RETRIEVAL = "retrieval"


class _NodeConfigBase(BaseModel):
    name: str = ""
    description: str = ""

    # Editor forms carry presentational keys we do not use
    model_config = {"alias_generator": to_camel, "populate_by_name": True, "extra": "ignore"}


def _coerce_model(value: Any) -> Any:
    # Editor flows reference a model by bare name
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return {"name": value}
    return value


class BeginVariable(BaseModel):
    key: str
    title: str = ""
    default: Any = ""

    model_config = {"extra": "ignore"}


class BeginConfig(_NodeConfigBase):
    type: Literal["begin"] = "begin"
    greeting: str = "Hello!"
    variables: list[BeginVariable] = Field(default_factory=list)


class InterfaceConfig(_NodeConfigBase):
    type: Literal["interface"] = "interface"
    template: str | None = Field(default=None, description="Display template rendered on pause")
    placeholder: str | None = None


class GenerateConfig(_NodeConfigBase):
    type: Literal["generate"] = "generate"
    prompt: str = ""
    model: ModelConfig | None = None
    provider: ProviderConfig | None = None
    output_variable: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    input_refs: list[InputReference] = Field(default_factory=list)

    @field_validator("model", mode="before")
    @classmethod
    def _model_from_name(cls, value: Any) -> Any:
        return _coerce_model(value)


class Category(BaseModel):
    name: str
    description: str = ""
    examples: list[str] = Field(default_factory=list)
    target_node: str | None = None

    model_config = {"alias_generator": to_camel, "populate_by_name": True, "extra": "ignore"}


class CategorizeConfig(_NodeConfigBase):
    type: Literal["categorize"] = "categorize"
    categories: list[Category] = Field(default_factory=list)
    default_category: str = ""
    model: ModelConfig | None = None
    provider: ProviderConfig | None = None
    input_source: str | None = None
    input_refs: list[InputReference] = Field(default_factory=list)

    @field_validator("model", mode="before")
    @classmethod
    def _model_from_name(cls, value: Any) -> Any:
        return _coerce_model(value)

    def find_category(self, name: str | None) -> Category | None:
        for category in self.categories:
            if category.name == name:
                return category
        return None


class NodeOutput(BaseModel):
    name: str = ""

    model_config = {"extra": "ignore"}


class RetrievalConfig(_NodeConfigBase):
    type: Literal["retrieval"] = "retrieval"
    knowledge_ids: list[str] = Field(default_factory=list)
    max_results: int = Field(default=3, ge=1)
    threshold: float = 0.7
    output_format: Literal["text", "json", "citations"] = "text"
    output_variable: str | None = None
    query_source: str | None = None
    input_refs: list[InputReference] = Field(default_factory=list)
    outputs: list[NodeOutput] = Field(default_factory=list)

    @field_validator("max_results", "threshold", mode="before")
    @classmethod
    def _falsy_to_default(cls, value: Any, info) -> Any:
        # Editor forms may save 0 or null for "unset"
        if value in (None, 0, ""):
            return cls.model_fields[info.field_name].default
        return value


NodeConfig = Annotated[
    BeginConfig | InterfaceConfig | GenerateConfig | CategorizeConfig | RetrievalConfig,
    Field(discriminator="type"),
]


class FlowNode(BaseModel):
    """
    A node in a flow.

    Examples:
        FlowNode(id="start", type="begin", config={"greeting": "Hi {{name}}!"})

        # Editor export
        FlowNode.model_validate({
            "id": "ask",
            "type": "interface",
            "data": {"label": "Ask", "form": {"name": "Ask"}},
        })
    """

    id: str
    type: NodeType
    label: str | None = None
    config: NodeConfig

    model_config = {"frozen": True}

    @model_validator(mode="before")
    @classmethod
    def _from_editor_shape(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        editor = data.pop("data", None)
        if isinstance(editor, dict):
            data.setdefault("label", editor.get("label"))
            data.setdefault("type", editor.get("type"))
            data.setdefault("config", editor.get("form") or {})
        data.setdefault("config", {})
        # Editor-only fields
        for key in ("position", "measured", "selected", "dragging", "width", "height"):
            data.pop(key, None)

        node_type = data.get("type")
        config = data["config"]
        if isinstance(config, dict):
            config = dict(config)
            declared = config.get("type")
            if declared and node_type is not None and declared != node_type:
                raise ValueError(
                    f"Node '{data.get('id')}' has type '{node_type}' "
                    f"but config for '{declared}'"
                )
            if node_type is not None:
                config["type"] = str(node_type)
            data["config"] = config
        elif isinstance(config, BaseModel) and node_type is not None:
            if getattr(config, "type", None) != node_type:
                raise ValueError(
                    f"Node '{data.get('id')}' has type '{node_type}' "
                    f"but config for '{getattr(config, 'type', None)}'"
                )
        return data

    @property
    def display_name(self) -> str:
        return self.config.name or self.label or self.id
