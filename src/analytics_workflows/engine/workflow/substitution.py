"""`{name}` placeholder handling for Query and TimeSeries expressions."""

from __future__ import annotations

import re
from collections.abc import Mapping

from .models import PLACEHOLDER_PATTERN, format_value, split_indexed_variable

_MISSING = object()


def placeholder_names(expression: str) -> list[str]:
    """Base variable names referenced by placeholders, in first-seen order."""

    names: list[str] = []
    for match in PLACEHOLDER_PATTERN.finditer(expression):
        ref = match.group(1)
        indexed = split_indexed_variable(ref)
        name = indexed[0] if indexed else ref
        if name not in names:
            names.append(name)
    return names


def lookup(context: Mapping[str, object], ref: str) -> object:
    """Resolve `name` or `name[k]` against a run context.

    Returns the module-private sentinel when the reference cannot be resolved.
    """

    indexed = split_indexed_variable(ref)
    if indexed is None:
        return context.get(ref, _MISSING)

    name, index = indexed
    container = context.get(name, _MISSING)
    if isinstance(container, list) and index < len(container):
        return container[index]
    return _MISSING


def is_missing(value: object) -> bool:
    return value is _MISSING


def bind_query_parameters(
    expression: str, context: Mapping[str, object]
) -> tuple[str, list[object]]:
    """Replace each resolvable placeholder with a `:pN` marker.

    Values are never spliced into the SQL text. Unresolvable placeholders are
    dropped (replaced with an empty string).
    """

    params: list[object] = []

    def _replace(match: re.Match[str]) -> str:
        value = lookup(context, match.group(1))
        if is_missing(value):
            return ""
        params.append(value)
        return f":p{len(params) - 1}"

    return PLACEHOLDER_PATTERN.sub(_replace, expression), params


def substitute_literals(expression: str, context: Mapping[str, object]) -> str:
    def _replace(match: re.Match[str]) -> str:
        value = lookup(context, match.group(1))
        if is_missing(value):
            return ""
        return format_value(value)

    return PLACEHOLDER_PATTERN.sub(_replace, expression)
