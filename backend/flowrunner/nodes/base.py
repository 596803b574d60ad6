# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Shared helpers for node handlers: config getters, input shape helpers and
the validation routines that raise the node-level error taxonomy.
"""

import json
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from flowrunner.core.errors import ConfigError, ValidationError
from flowrunner.engine.expressions import extract_value, replace_templates
from flowrunner.models import WorkflowNode

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

ARRAY_KEYS = ("items", "data", "array")


# ============================================================================
# Config getters
# ============================================================================

def get_str(config: Dict[str, Any], key: str, default: str = "") -> str:
    value = config.get(key)
    return value if isinstance(value, str) else default


def get_number(config: Dict[str, Any], key: str, default: float) -> float:
    value = config.get(key)
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return value
    # Editor form fields sometimes arrive as numeric strings
    if isinstance(value, str) and value.strip():
        try:
            number = float(value)
        except ValueError:
            return default
        return int(number) if number.is_integer() else number
    return default


def get_int(config: Dict[str, Any], key: str, default: int) -> int:
    return int(get_number(config, key, default))


def require_str(node: WorkflowNode, key: str, label: Optional[str] = None) -> str:
    """A non-blank string config value, else ValidationError naming the field."""
    value = node.config.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(node.name, label or key)
    return value


# ============================================================================
# Input shape helpers
# ============================================================================

def input_object(data: Any) -> Dict[str, Any]:
    """The input as a dict, or an empty dict for anything else."""
    return data if isinstance(data, dict) else {}


def extract_data(data: Any) -> Any:
    """
    Pull the payload out of a node input.

    Strings and lists are returned as is. For dicts the first list under
    items/data/array wins, then the first truthy data/input/text/body/content
    field, then the dict itself.
    """
    if isinstance(data, (str, list)):
        return data
    obj = input_object(data)
    for key in ARRAY_KEYS:
        if isinstance(obj.get(key), list):
            return obj[key]
    for key in ("data", "input", "text", "body", "content"):
        if obj.get(key):
            return obj[key]
    return obj


def find_array(data: Any, expression: str = "") -> Optional[List[Any]]:
    """
    Locate the array a list-processing node should work on.

    Tries the configured expression first, then the input itself, the
    conventional items/data/array keys, and finally any list-valued key.
    """
    if expression and expression.strip():
        found = extract_value(expression, data)
        if isinstance(found, list) and found:
            return found

    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ARRAY_KEYS:
            if isinstance(data.get(key), list):
                return data[key]
        for value in data.values():
            if isinstance(value, list):
                return value
    return None


def message_text(data: Any) -> str:
    """The user-facing message carried by an input."""
    if isinstance(data, str):
        return data
    if isinstance(data, dict):
        for key in ("message", "text", "content", "input"):
            if isinstance(data.get(key), str) and data[key]:
                return data[key]
        return json.dumps(data, default=str)
    return json.dumps(data, default=str) if data is not None else ""


def preview(data: Any, limit: int = 200) -> str:
    text = json.dumps(data, default=str) if isinstance(data, (dict, list)) else str(data)
    return text[:limit]


# ============================================================================
# Validation
# ============================================================================

def parse_json_config(node: WorkflowNode, field: str, text: str) -> Any:
    """Parse an encoded JSON config value, raising ConfigError on failure."""
    try:
        return json.loads(text)
    except ValueError as e:
        raise ConfigError(node.name, field, str(e))


def templated_json(node: WorkflowNode, field: str, data: Any, default: Any = None) -> Any:
    """Resolve templates in a JSON-encoded config field, then parse it."""
    raw = node.config.get(field)
    if raw is None or raw == "":
        return default
    if not isinstance(raw, str):
        # Already structured in the stored definition
        return raw
    if not raw.strip():
        return default
    return parse_json_config(node, field, replace_templates(raw, data))


def validate_url(node: WorkflowNode, url: str, label: str = "URL") -> str:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(
            node.name,
            label,
            f"Invalid {label}. Please provide a valid URL (e.g., https://example.com)."
        )
    return url


def validate_email(node: WorkflowNode, email: str, label: str) -> str:
    if not EMAIL_PATTERN.match(email):
        raise ValidationError(
            node.name,
            label,
            f"Invalid {label} format \"{email}\". Use format: email@example.com"
        )
    return email
