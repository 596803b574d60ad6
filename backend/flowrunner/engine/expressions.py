# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Expression Resolver

Interpolates ``{{input.path}}``, ``{{path}}`` and ``{{input}}`` tokens in node
configuration against the data a node received. Paths are dotted and may
carry array indexes (``items[0].name``). String values that look like
encoded JSON objects are parsed before the walk descends into them.

Resolution is fail-open: a token whose path cannot be walked is left in the
output verbatim.
"""

import json
import re
from typing import Any, Tuple

INPUT_PATH_TOKEN = re.compile(r"\{\{\s*input\.([\w.\[\]]+)\s*\}\}")
BARE_PATH_TOKEN = re.compile(r"\{\{\s*([\w.\[\]]+)\s*\}\}")
INPUT_TOKEN = re.compile(r"\{\{\s*input\s*\}\}")
ANY_TOKEN = re.compile(r"\{\{[^{}]*\}\}")

_INDEXED_SEGMENT = re.compile(r"^(\w*)((?:\[\d+\])+)$")
_INDEX = re.compile(r"\[(\d+)\]")

# Sentinel for "path could not be walked"; distinct from a resolved null
MISSING = object()


def try_parse_json(value: Any) -> Any:
    """Parse strings that look like an encoded JSON object; leave others alone."""
    if isinstance(value, str) and value.strip().startswith("{"):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def _split_segment(segment: str) -> Tuple[str, list]:
    match = _INDEXED_SEGMENT.match(segment)
    if not match:
        return segment, []
    key, indexes = match.groups()
    return key, [int(i) for i in _INDEX.findall(indexes)]


def resolve_path(value: Any, path: str) -> Any:
    """
    Walk a dotted path through ``value``.

    Args:
        value: Root value (object, array, or JSON-encoded string)
        path: Dotted path, segments may end in ``[N]`` indexes

    Returns:
        The value at the path, or ``MISSING`` if any segment cannot be walked
    """
    current = value
    for segment in path.split("."):
        if segment == "":
            return MISSING
        key, indexes = _split_segment(segment)

        if key:
            current = try_parse_json(current)
            if not isinstance(current, dict) or key not in current:
                return MISSING
            current = current[key]

        for index in indexes:
            current = try_parse_json(current)
            if not isinstance(current, list) or index >= len(current):
                return MISSING
            current = current[index]

    return current


def to_text(value: Any) -> str:
    """Render a resolved value for string interpolation."""
    if isinstance(value, str):
        return value
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return json.dumps(value, default=str)


def replace_templates(template: Any, data: Any) -> str:
    """
    Resolve every template token in ``template`` against ``data``.

    ``{{input.path}}`` is resolved first, then bare ``{{path}}``, then
    ``{{input}}`` which substitutes the whole value. A token that has no
    remaining ``{{`` is returned unchanged, so resolving twice is a no-op.
    """
    if template is None:
        return ""
    text = template if isinstance(template, str) else to_text(template)
    if "{{" not in text:
        return text

    def input_path(match: re.Match) -> str:
        path = match.group(1)
        resolved = resolve_path(data, path)
        if resolved is MISSING and path == "executed_at" and isinstance(data, dict):
            # Trigger envelopes from older runs only carried _timestamp
            resolved = data.get("_timestamp", MISSING)
        if resolved is MISSING:
            return match.group(0)
        return to_text(resolved)

    def bare_path(match: re.Match) -> str:
        path = match.group(1)
        if path == "input" or path.startswith("input."):
            return match.group(0)
        resolved = resolve_path(data, path)
        if resolved is MISSING:
            return match.group(0)
        return to_text(resolved)

    text = INPUT_PATH_TOKEN.sub(input_path, text)
    text = BARE_PATH_TOKEN.sub(bare_path, text)
    text = INPUT_TOKEN.sub(lambda _: to_text(data), text)
    return text


def resolve_config_value(value: Any, data: Any) -> Any:
    """
    Resolve templates inside a config value of any shape.

    Strings are interpolated; dicts and lists are walked recursively.
    Other scalars are returned unchanged.
    """
    if isinstance(value, str):
        return replace_templates(value, data)
    if isinstance(value, dict):
        return {k: resolve_config_value(v, data) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_config_value(v, data) for v in value]
    return value


def extract_value(expression: str, data: Any) -> Any:
    """
    Read a single value by expression rather than interpolating text.

    Accepts ``input.a.b``, ``$.a.b``, ``{{input.a.b}}`` or plain ``a.b``.
    An empty expression (or bare ``input``) returns ``data`` itself.
    Returns None when the path cannot be walked.
    """
    if not expression:
        return data

    expr = expression.strip()
    if expr.startswith("{{") and expr.endswith("}}"):
        expr = expr[2:-2].strip()
    expr = re.sub(r"^\$\.?", "", expr)
    expr = re.sub(r"^input(\.|$)", "", expr)

    if not expr:
        return data

    resolved = resolve_path(data, expr)
    return None if resolved is MISSING else resolved


def has_templates(text: Any) -> bool:
    return isinstance(text, str) and ANY_TOKEN.search(text) is not None
