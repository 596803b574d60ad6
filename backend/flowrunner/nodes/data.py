# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Data nodes.

Deterministic, side-effect-free transforms of a node's input and config.
Failures are input or config validation errors.

Nodes that wrap a list result in an object (``{items, count, ...}``) copy
the input's keys first, so the values computed by the node always win.
"""

import functools
import json
import logging
import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from flowrunner.core.errors import NodeExecutionError, ValidationError
from flowrunner.core.logging import get_service_logger
from flowrunner.engine.condition_evaluator import evaluate_condition
from flowrunner.engine.context import SharedContext
from flowrunner.engine.expressions import (
    MISSING,
    extract_value,
    replace_templates,
    resolve_path,
    to_text,
)
from flowrunner.models import WorkflowNode
from flowrunner.node_types import NodeType
from flowrunner.nodes.base import (
    ARRAY_KEYS,
    extract_data,
    find_array,
    get_int,
    get_number,
    get_str,
    input_object,
    parse_json_config,
    preview,
    require_str,
)
from flowrunner.nodes.registry import registry

logger = get_service_logger("data")

OBJECT_PLACEHOLDER = "[object Object]"

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

_LEADING_NUMBER = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")


def _normalize_number(value: float) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def parse_leading_number(text: str) -> Optional[float]:
    """Numeric prefix of a string (``"12px"`` -> 12.0), or None."""
    match = _LEADING_NUMBER.match(text)
    return float(match.group(0)) if match else None


def _exact_number(text: str) -> Optional[Any]:
    """A number only when the whole string is its canonical rendering."""
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    normalized = _normalize_number(number)
    return normalized if str(normalized) == text.strip() else None


# ============================================================================
# Field setting
# ============================================================================

def _load_fields(node: WorkflowNode) -> Dict[str, Any]:
    raw = node.config.get("fields")
    if isinstance(raw, dict):
        return raw

    text = raw if isinstance(raw, str) else "{}"
    if text.strip() == OBJECT_PLACEHOLDER:
        raise ValidationError(
            node.name, "fields",
            f'Fields configuration contains "{OBJECT_PLACEHOLDER}" which indicates a serialization error. '
            'Example: {"url": "https://example.com", "method": "POST"}'
        )

    fields = parse_json_config(node, "fields", text)
    if not isinstance(fields, dict):
        raise ValidationError(node.name, "fields", "Fields must be a JSON object")
    return fields


@registry.register(NodeType.SET)
async def set_fields(node: WorkflowNode, data: Any, ctx: SharedContext) -> dict:
    fields = _load_fields(node)
    output: Dict[str, Any] = {}

    for key, template in fields.items():
        if isinstance(template, str) and template.strip() == OBJECT_PLACEHOLDER:
            raise ValidationError(
                node.name, key,
                f'Field "{key}" has value "{OBJECT_PLACEHOLDER}" which indicates a serialization error.'
            )

        if isinstance(template, str):
            resolved = replace_templates(template, data)
            if "{{" not in template:
                number = _exact_number(resolved)
                output[key] = number if number is not None else resolved
            else:
                output[key] = resolved
        else:
            output[key] = template

    # Carry workflow metadata forward without overwriting the fields just set
    for key, value in input_object(data).items():
        if key != "fields" and key not in output:
            output[key] = value
    return output


@registry.register(NodeType.SET_VARIABLE)
async def set_variable(node: WorkflowNode, data: Any, ctx: SharedContext) -> dict:
    name = require_str(node, "name")
    value = replace_templates(node.config.get("value"), data)
    return {name: value, **input_object(data)}


@registry.register(NodeType.JSON_PARSER)
async def json_parser(node: WorkflowNode, data: Any, ctx: SharedContext) -> Any:
    expression = get_str(node.config, "expression")
    if not expression:
        return data
    return extract_value(expression, data)


def flatten_sources(data: Any) -> Any:
    """Merge nested objects (outputs of several upstream nodes) into one."""
    if not isinstance(data, dict):
        return data
    if not any(isinstance(v, dict) for v in data.values()):
        return data

    flat: Dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict):
            flat.update(value)
        else:
            flat[key] = value
    return flat


@registry.register(NodeType.TEXT_FORMATTER)
async def text_formatter(node: WorkflowNode, data: Any, ctx: SharedContext) -> Any:
    template = get_str(node.config, "template")
    if not template:
        return data
    return replace_templates(template, flatten_sources(data))


# ============================================================================
# Merge
# ============================================================================

def _collect(values: List[Any]) -> List[Any]:
    collected: List[Any] = []
    for value in values:
        if isinstance(value, list):
            collected.extend(value)
        elif value is not None:
            collected.append(value)
    return collected


def _merge_by_key(inputs: Dict[str, Any], merge_key: str) -> List[Dict[str, Any]]:
    merged: Dict[str, Dict[str, Any]] = {}

    def absorb(item: Dict[str, Any], source: str) -> None:
        key_value = item.get(merge_key)
        key = to_text(key_value) if key_value else source
        merged.setdefault(key, {}).update(item)

    for source, value in inputs.items():
        if isinstance(value, list):
            for item in value:
                if isinstance(item, dict):
                    absorb(item, source)
        elif isinstance(value, dict):
            absorb(value, source)
    return list(merged.values())


@registry.register(NodeType.MERGE, NodeType.MERGE_DATA)
async def merge(node: WorkflowNode, data: Any, ctx: SharedContext) -> Any:
    """
    Combine the inputs of several upstream nodes.

    Modes: ``merge`` (default, shallow object merge), ``append``/``concat``
    (one flat list), ``key_based`` (objects joined on ``mergeKey``) and
    ``wait_all`` (inputs returned as received).
    """
    mode = get_str(node.config, "mode", "merge")

    if isinstance(data, dict):
        if mode in ("append", "concat"):
            return _collect(list(data.values()))
        if mode == "key_based":
            return _merge_by_key(data, get_str(node.config, "mergeKey", "id"))
        if mode == "wait_all":
            return data

        merged: Dict[str, Any] = {}
        for key, value in data.items():
            if value is None:
                continue
            if isinstance(value, dict):
                merged.update(value)
            else:
                merged[key] = value
        return merged

    if isinstance(data, list) and mode in ("append", "concat"):
        return _collect(data)
    return data


# ============================================================================
# List processing
# ============================================================================

def _array_error(node: WorkflowNode, data: Any, what: str) -> NodeExecutionError:
    return NodeExecutionError(
        f"{node.name}: {what}\n\n"
        f"Received: {preview(data)}\n\n"
        'Please configure the "Array Expression" field to point to an array property.\n'
        'Examples: "items", "input.items", "{{input.items}}"',
        node_name=node.name,
    )


@registry.register(NodeType.FILTER)
async def filter_items(node: WorkflowNode, data: Any, ctx: SharedContext) -> List[Any]:
    """
    Keep the items for which the condition holds.

    The condition sees the current element as ``item`` (and as
    ``{{input...}}``); a condition that errors on an item drops it.
    """
    condition = require_str(node, "condition")
    items = find_array(data, get_str(node.config, "array"))
    if items is None:
        raise _array_error(node, data, "Filter requires an array input.")

    kept = [item for item in items if evaluate_condition(condition, item, {"item": item})]
    logger.debug(
        "Filter applied",
        extra={"node_id": node.id, "received": len(items), "kept": len(kept)}
    )
    return kept


@registry.register(NodeType.LOOP)
async def loop(node: WorkflowNode, data: Any, ctx: SharedContext) -> dict:
    expression = require_str(node, "array", "Array expression")
    max_iterations = get_int(node.config, "maxIterations", ctx.config.loop_max_iterations)

    items = find_array(data, expression)
    if items is None:
        raise _array_error(node, data, "Input must be an array.")

    iterations = min(len(items), max(max_iterations, 0))
    results = [
        {"item": items[i], "index": i, "total": len(items)}
        for i in range(iterations)
    ]
    return {**input_object(data), "items": results, "count": len(results), "total": len(items)}


def _strip_braces(expression: str) -> str:
    expression = expression.strip()
    if expression.startswith("{{") and expression.endswith("}}"):
        return expression[2:-2].strip()
    return expression


@registry.register(NodeType.SPLIT_IN_BATCHES)
async def split_in_batches(node: WorkflowNode, data: Any, ctx: SharedContext) -> dict:
    batch_size = get_int(node.config, "batchSize", 10)
    if batch_size < 1:
        raise ValidationError(node.name, "batchSize", "batchSize must be at least 1")

    payload = input_object(data)
    expression = get_str(node.config, "array", "{{input}}")
    clean = _strip_braces(expression)

    if clean in ("input", "input.data"):
        extracted = extract_data(data)
        if isinstance(extracted, dict) and isinstance(extracted.get("items"), list):
            extracted = extracted["items"]
        if not isinstance(extracted, list):
            raise NodeExecutionError(
                f"{node.name}: Input must be an array or contain an array in input.data or input.items",
                node_name=node.name,
            )
        array = extracted
    else:
        found = payload.get(clean) if "." not in clean else extract_value(clean, data)
        if not isinstance(found, list):
            found = next((payload[k] for k in ARRAY_KEYS if isinstance(payload.get(k), list)), None)
        if not isinstance(found, list):
            raise NodeExecutionError(
                f'{node.name}: Expression "{expression}" must evaluate to an array. '
                f"Available properties: {', '.join(payload)}.",
                node_name=node.name,
            )
        array = found

    batches = [array[i:i + batch_size] for i in range(0, len(array), batch_size)]
    return {
        **payload,
        "batches": batches,
        "batchCount": len(batches),
        "totalItems": len(array),
        "batchSize": batch_size,
    }


def _field_value(item: Any, field: str) -> Any:
    if not field or not isinstance(item, dict):
        return item
    value = resolve_path(item, field)
    return None if value is MISSING else value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def aggregate_values(operation: str, items: List[Any], field: str) -> Any:
    """
    Reduce a list with count/sum/avg/min/max.

    Non-numeric values count as zero for sum and avg; min and max compare
    numbers numerically and anything else by its text.

    Raises:
        ValueError: Unknown operation
    """
    if operation not in ("count", "sum", "avg", "average", "min", "max"):
        raise ValueError(f'Unknown operation "{operation}". Supported: count, sum, avg, min, max')
    if not items:
        return 0 if operation == "count" else None
    if operation == "count":
        return len(items)

    values = [_field_value(item, field) for item in items]
    if operation in ("sum", "avg", "average"):
        total = sum(v for v in values if _is_number(v))
        return total if operation == "sum" else total / len(items)

    best = None
    for value in values:
        if best is None:
            best = value
            continue
        if _is_number(value) and _is_number(best):
            better = value < best if operation == "min" else value > best
        else:
            better = to_text(value) < to_text(best) if operation == "min" else to_text(value) > to_text(best)
        if better:
            best = value
    return best


@registry.register(NodeType.AGGREGATE)
async def aggregate(node: WorkflowNode, data: Any, ctx: SharedContext) -> dict:
    operation = get_str(node.config, "operation", "sum")
    field = get_str(node.config, "field")
    group_by = get_str(node.config, "groupBy")

    if isinstance(data, list):
        items, payload = data, {}
    else:
        items, payload = extract_data(data), input_object(data)
        if not isinstance(items, list):
            raise NodeExecutionError(f"{node.name}: Input must be an array or contain an array", node_name=node.name)

    try:
        if group_by:
            groups: Dict[str, List[Any]] = {}
            for item in items:
                if isinstance(item, dict):
                    key_value = item.get(group_by)
                    key = to_text(key_value) if key_value else "null"
                    groups.setdefault(key, []).append(item)
            results = {key: aggregate_values(operation, group, field) for key, group in groups.items()}
            return {**payload, "groups": results, "groupCount": len(results)}

        result = aggregate_values(operation, items, field)
    except ValueError as e:
        raise NodeExecutionError(f"{node.name}: {e}", node_name=node.name)

    return {**payload, "result": result, "operation": operation, "count": len(items)}


def _carries_array(payload: Dict[str, Any]) -> bool:
    return any(isinstance(payload.get(key), list) for key in ARRAY_KEYS)


@registry.register(NodeType.LIMIT)
async def limit(node: WorkflowNode, data: Any, ctx: SharedContext) -> Any:
    count = get_int(node.config, "limit", 10)
    if count < 0:
        raise ValidationError(node.name, "limit", "limit must be non-negative")

    if isinstance(data, list):
        return data[:count]

    payload = input_object(data)
    items = extract_data(data)
    if not isinstance(items, list):
        raise NodeExecutionError(f"{node.name}: Input must be an array or contain an array", node_name=node.name)

    limited = items[:count]
    if _carries_array(payload):
        return limited
    return {**payload, "items": limited, "originalCount": len(items), "limitedCount": len(limited)}


# ============================================================================
# Sorting
# ============================================================================

def _js_string(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return to_text(value)


def _to_float(value: Any) -> float:
    if _is_number(value):
        return float(value)
    number = parse_leading_number(_js_string(value))
    return number if number is not None else math.nan


def _to_timestamp(value: Any) -> float:
    try:
        return parse_date(_js_string(value)).timestamp()
    except ValueError:
        return math.nan


def compare_values(a: Any, b: Any, value_type: str = "auto", direction: str = "asc") -> int:
    """
    Three-way comparison used by the sort node.

    ``value_type`` is number, string, date or auto (numeric when both sides
    are numbers, textual otherwise). Incomparable values (NaN) tie.
    """
    if value_type == "number":
        left, right = _to_float(a), _to_float(b)
    elif value_type == "date":
        left, right = _to_timestamp(a), _to_timestamp(b)
    elif value_type == "string" or not (_is_number(a) and _is_number(b)):
        left, right = _js_string(a), _js_string(b)
    else:
        left, right = a, b

    if left < right:
        comparison = -1
    elif left > right:
        comparison = 1
    else:
        comparison = 0
    return -comparison if direction == "desc" else comparison


def sort_items(items: List[Any], field: str, value_type: str, direction: str) -> List[Any]:
    def key_of(item: Any) -> Any:
        if field and isinstance(item, dict):
            return item.get(field)
        return item

    return sorted(
        items,
        key=functools.cmp_to_key(lambda a, b: compare_values(key_of(a), key_of(b), value_type, direction)),
    )


@registry.register(NodeType.SORT)
async def sort(node: WorkflowNode, data: Any, ctx: SharedContext) -> Any:
    field = get_str(node.config, "field")
    direction = get_str(node.config, "direction", "asc")
    value_type = get_str(node.config, "type", "auto")

    if isinstance(data, list):
        return sort_items(data, field, value_type, direction)

    payload = input_object(data)
    items = extract_data(data)
    if not isinstance(items, list):
        items = next(
            (payload[k] for k in ("items", "data", "array", "result", "output") if isinstance(payload.get(k), list)),
            None,
        )
        if items is None:
            raise NodeExecutionError(f"{node.name}: Input must be an array or contain an array", node_name=node.name)
        return sort_items(items, field, value_type, direction)

    ordered = sort_items(items, field, value_type, direction)
    if not ordered or _carries_array(payload):
        return ordered
    return {**payload, "items": ordered, "count": len(ordered)}


@registry.register(NodeType.ITEM_LISTS)
async def item_lists(node: WorkflowNode, data: Any, ctx: SharedContext) -> Any:
    if isinstance(data, list):
        return data
    payload = input_object(data)
    items = [{"key": key, "value": value} for key, value in payload.items()]
    return {**payload, "items": items, "count": len(items)}


@registry.register(NodeType.LOG_OUTPUT)
async def log_output(node: WorkflowNode, data: Any, ctx: SharedContext) -> dict:
    message = replace_templates(get_str(node.config, "message"), data)
    level = get_str(node.config, "level", "info") or "info"
    log_level = LOG_LEVELS.get(level.lower(), logging.INFO)
    logger.log(log_level, message, extra={"node_id": node.id, "execution_id": ctx.execution_id})
    return {"logged": message, "level": level, "input": data}


# ============================================================================
# Math
# ============================================================================

def _numeric_operand(template: str, data: Any) -> float:
    """Resolve a math operand: template text, then a direct input key, else 0."""
    number = parse_leading_number(replace_templates(template, data))
    if number is not None:
        return number

    if isinstance(data, dict):
        key = re.sub(r"^input\.", "", template.replace("{", "").replace("}", ""))
        candidates = [data]
        if isinstance(data.get("fields"), str):
            try:
                fields = json.loads(data["fields"])
            except ValueError:
                fields = None
            if isinstance(fields, dict):
                candidates.append(fields)
        for source in candidates:
            if key in source:
                value = source[key]
                if _is_number(value):
                    return float(value)
                parsed = parse_leading_number(_js_string(value))
                if parsed is not None:
                    return parsed
    return 0.0


def _operand_template(config: Dict[str, Any], key: str) -> str:
    value = config.get(key)
    if _is_number(value):
        return str(value)
    return value if isinstance(value, str) else "0"


def calculate(operation: str, num1: float, num2: float) -> float:
    """
    Raises:
        ValueError: Unknown operation or an undefined result
    """
    if operation == "add":
        return num1 + num2
    if operation == "subtract":
        return num1 - num2
    if operation == "multiply":
        return num1 * num2
    if operation == "divide":
        if num2 == 0:
            raise ValueError("Math: Division by zero")
        return num1 / num2
    if operation == "modulo":
        if num2 == 0:
            raise ValueError("Math: Modulo by zero")
        return math.fmod(num1, num2)
    if operation == "power":
        return math.pow(num1, num2)
    if operation == "sqrt":
        if num1 < 0:
            raise ValueError("Math: Square root of negative number")
        return math.sqrt(num1)
    if operation == "abs":
        return abs(num1)
    if operation == "round":
        # Half rounds up, not to even
        return math.floor(num1 + 0.5)
    if operation == "floor":
        return math.floor(num1)
    if operation == "ceil":
        return math.ceil(num1)
    if operation == "min":
        return min(num1, num2)
    if operation == "max":
        return max(num1, num2)
    raise ValueError(f'Math: Unknown operation "{operation}"')


@registry.register(NodeType.MATH)
async def math_node(node: WorkflowNode, data: Any, ctx: SharedContext) -> dict:
    operation = get_str(node.config, "operation", "add")
    num1 = _numeric_operand(_operand_template(node.config, "value1"), data)
    num2 = _numeric_operand(_operand_template(node.config, "value2"), data)

    try:
        result = calculate(operation, num1, num2)
    except (ValueError, ArithmeticError) as e:
        raise NodeExecutionError(f"Math: Operation failed. {e}", node_name=node.name)

    return {
        **input_object(data),
        "result": _normalize_number(result),
        "operation": operation,
        "input1": _normalize_number(num1),
        "input2": _normalize_number(num2),
    }


# ============================================================================
# Date & Time
# ============================================================================

def parse_date(text: str) -> datetime:
    """
    Parse an ISO-8601 date or an epoch-milliseconds number.

    Naive values are taken as UTC.

    Raises:
        ValueError: Unparseable text
    """
    text = text.strip()
    if re.fullmatch(r"-?\d+(\.\d+)?", text) and len(text) > 8:
        return datetime.fromtimestamp(float(text) / 1000, tz=timezone.utc)
    parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_iso(dt: datetime) -> str:
    """ISO string with millisecond precision and a Z suffix."""
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def _add_months(dt: datetime, months: int) -> datetime:
    # Day overflow rolls into the following month (Jan 31 + 1 month -> Mar 3)
    total = dt.year * 12 + (dt.month - 1) + months
    year, month = divmod(total, 12)
    first = dt.replace(year=year, month=month + 1, day=1)
    return first + timedelta(days=dt.day - 1)


def shift(dt: datetime, amount: float, unit: str) -> datetime:
    if unit == "seconds":
        return dt + timedelta(seconds=amount)
    if unit == "minutes":
        return dt + timedelta(minutes=amount)
    if unit == "hours":
        return dt + timedelta(hours=amount)
    if unit == "days":
        return dt + timedelta(days=amount)
    if unit == "weeks":
        return dt + timedelta(weeks=amount)
    if unit == "months":
        return _add_months(dt, int(amount))
    if unit == "years":
        return _add_months(dt, int(amount) * 12)
    return dt


def _resolve_date(node: WorkflowNode, data: Any) -> datetime:
    template = get_str(node.config, "date")
    text = replace_templates(template, data) if template else ""
    if not text:
        return datetime.now(timezone.utc)
    try:
        return parse_date(text)
    except ValueError:
        raise ValueError(f"Invalid date value: {text}")


def format_date(dt: datetime, fmt: str, custom: str) -> Any:
    if fmt == "timestamp":
        return int(dt.timestamp() * 1000)
    if fmt == "custom":
        dt = dt.astimezone(timezone.utc)
        return (
            custom
            .replace("YYYY", f"{dt.year}", 1)
            .replace("MM", f"{dt.month:02d}", 1)
            .replace("DD", f"{dt.day:02d}", 1)
            .replace("HH", f"{dt.hour:02d}", 1)
            .replace("mm", f"{dt.minute:02d}", 1)
            .replace("ss", f"{dt.second:02d}", 1)
        )
    return to_iso(dt)


DIFF_DIVISORS = {
    "milliseconds": 1,
    "seconds": 1000,
    "minutes": 60000,
    "hours": 3600000,
    "days": 86400000,
}


def _date_diff(node: WorkflowNode, payload: Dict[str, Any]) -> int:
    first = payload.get("date1") or payload.get("startDate") or payload.get("from")
    second = payload.get("date2") or payload.get("endDate") or payload.get("to") or payload.get("date")

    if first and second:
        start, end = parse_date(_js_string(first)), parse_date(_js_string(second))
    else:
        configured = get_str(node.config, "date")
        start = parse_date(configured) if configured else datetime.now(timezone.utc)
        end = datetime.now(timezone.utc)

    diff_ms = int((end - start).total_seconds() * 1000)
    return diff_ms // DIFF_DIVISORS.get(get_str(node.config, "unit", "milliseconds"), 1)


@registry.register(NodeType.DATE_TIME)
async def date_time(node: WorkflowNode, data: Any, ctx: SharedContext) -> dict:
    """Format, shift, diff or stamp dates. Operations: format, add, subtract, diff, now."""
    operation = get_str(node.config, "operation", "format")
    payload = input_object(data)

    try:
        if operation == "format":
            result = format_date(
                _resolve_date(node, data),
                get_str(node.config, "format", "ISO"),
                get_str(node.config, "customFormat", "YYYY-MM-DD HH:mm:ss"),
            )
        elif operation in ("add", "subtract"):
            amount = get_number(node.config, "value", 0)
            if operation == "subtract":
                amount = -amount
            result = to_iso(shift(_resolve_date(node, data), amount, get_str(node.config, "unit", "days")))
        elif operation == "diff":
            result = _date_diff(node, payload)
        elif operation == "now":
            result = to_iso(datetime.now(timezone.utc))
        else:
            raise ValueError(f'Date & Time: Unknown operation "{operation}"')
    except (ValueError, OverflowError) as e:
        raise NodeExecutionError(f"Date & Time: Operation failed. {e}", node_name=node.name)

    return {**payload, "result": result, "operation": operation}
