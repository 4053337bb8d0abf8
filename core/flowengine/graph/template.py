"""Template rendering for greetings and prompts.

Supports ``{{name}}`` and ``$name`` placeholders. Substitution is a single
pass: values inserted into the output are never re-scanned.
"""

import re
from typing import Any

PLACEHOLDER_PATTERN = re.compile(r"(\{\{([^}]+)\}\})|(\$([a-zA-Z0-9_]+))")


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def render_template(template: str | None, variables: dict[str, Any]) -> str:
    """
    Substitute placeholders in ``template`` from ``variables``.

    A key that is present with value ``None`` renders as an empty string.
    A key that is absent leaves the placeholder untouched.
    """
    if not template:
        return ""

    def replace(match: re.Match) -> str:
        name = (match.group(2) if match.group(1) else match.group(4)).strip()
        if name in variables:
            return _stringify(variables[name])
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(replace, template)
