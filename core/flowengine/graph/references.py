"""
Input references - how one node consumes another node's named output.

Nodes publish outputs into the shared variable namespace, either under a
plain name (``generatedOutput``) or a node-qualified one
(``"<node_id>.<output_name>"``). A node that declares an ``InputReference``
gets the referenced value copied into its own ``input_name`` before it runs.
"""

import logging
from typing import Any

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

# Fallback candidates tried, in order, when neither the qualified nor the
# direct name is present.
DEFAULT_ALIASES: dict[str, list[str]] = {
    "userInput": ["userInput"],
    "generatedText": ["generatedText", "generatedOutput"],
}


class InputReference(BaseModel):
    """A declared dependency on another node's output."""

    source_node_id: str = Field(description="Node that produced the value")
    output_name: str = Field(description="Name of the output on the source node")
    input_name: str = Field(description="Variable name the value is copied into")

    model_config = {"alias_generator": to_camel, "populate_by_name": True, "frozen": True}

    @property
    def qualified_name(self) -> str:
        return f"{self.source_node_id}.{self.output_name}"


def resolve_input_references(
    refs: list[InputReference] | None,
    variables: dict[str, Any],
    aliases: dict[str, list[str]] | None = None,
) -> list[InputReference]:
    """
    Copy referenced values into ``variables``; first match wins per reference.

    Lookup order: qualified ``"<node>.<output>"``, then bare ``output``, then
    the alias table. A match overwrites ``variables[input_name]``.

    Returns:
        References that could not be resolved. Each one is also logged at
        WARNING; they never raise.
    """
    if not refs:
        return []

    table = {**DEFAULT_ALIASES, **(aliases or {})}
    unresolved: list[InputReference] = []

    for ref in refs:
        if not ref.source_node_id or not ref.output_name or not ref.input_name:
            unresolved.append(ref)
            continue

        if variables.get(ref.qualified_name) is not None:
            variables[ref.input_name] = variables[ref.qualified_name]
            continue

        if variables.get(ref.output_name) is not None:
            variables[ref.input_name] = variables[ref.output_name]
            continue

        for candidate in table.get(ref.output_name, []):
            if variables.get(candidate) is not None:
                variables[ref.input_name] = variables[candidate]
                break
        else:
            unresolved.append(ref)

    for ref in unresolved:
        logger.warning(
            f"⚠ Unresolved input reference {ref.qualified_name} -> {ref.input_name}",
            extra={"event": "unresolved_reference"},
        )
    return unresolved


def resolve_input_source(
    source: str | None,
    variables: dict[str, Any],
    history: list | None = None,
) -> Any:
    """
    Resolve a node's input from a named source.

    Sources:
        ``user_input``       -> ``userInput``
        ``generated_text``   -> ``generatedText`` or ``generatedOutput``
        ``node:<id>``        -> first variable named ``"<id>.*"``
        any other string     -> that variable
        no source            -> ``userInput``, ``generatedOutput``,
                                ``generatedText``, then the last history output
    """
    if source:
        if source == "user_input":
            return variables.get("userInput") or None
        if source == "generated_text":
            return variables.get("generatedText") or variables.get("generatedOutput") or None
        if source.startswith("node:"):
            prefix = f"{source[len('node:'):]}."
            for key, value in variables.items():
                if key.startswith(prefix):
                    return value
            return None
        return variables.get(source) or None

    history = history or []
    candidates = [
        variables.get("userInput"),
        variables.get("generatedOutput"),
        variables.get("generatedText"),
        history[-1].output if history else None,
    ]
    for candidate in candidates:
        if candidate is not None:
            return candidate
    return None
