"""Placeholder substitution for user-facing text."""
from __future__ import annotations

import re
from typing import Any, Mapping

from utils.conditions import to_text

_PLACEHOLDER = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")


def interpolate(template: str, bindings: Mapping[str, Any]) -> str:
    """
    Replace every ``{{ key }}`` with the string form of ``bindings[key]``.
    Unknown keys are left exactly as written.
    """
    if not template or "{{" not in template:
        return template or ""

    def replacer(match: re.Match) -> str:
        key = match.group(1)
        if key not in bindings:
            return match.group(0)
        return to_text(bindings[key])

    return _PLACEHOLDER.sub(replacer, template)


def interpolate_values(values: Mapping[str, Any], bindings: Mapping[str, Any]) -> dict[str, Any]:
    """Interpolate the string values of a mapping; other values pass through."""
    return {
        k: interpolate(v, bindings) if isinstance(v, str) else v
        for k, v in values.items()
    }
