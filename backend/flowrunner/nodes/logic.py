# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Control-flow nodes: if/else, switch, wait, noop, stop-and-error and the
error-handler marker.

If/else and switch return envelopes the controller records as branch
outcomes; routing itself happens in the conditional router.
"""

import asyncio
import json
from typing import Any, Dict, List

from flowrunner.core.errors import ConfigError, StopWorkflowError, ValidationError
from flowrunner.core.logging import get_service_logger
from flowrunner.engine.condition_evaluator import evaluate_condition
from flowrunner.engine.context import SharedContext
from flowrunner.engine.expressions import replace_templates
from flowrunner.engine.router import handle_text
from flowrunner.models import WorkflowNode
from flowrunner.node_types import NodeType
from flowrunner.nodes.base import get_int, get_number, get_str, input_object, require_str
from flowrunner.nodes.registry import registry

logger = get_service_logger("logic")


def unwrap_branch_input(data: Any) -> Any:
    """Strip an upstream ``{condition, input}`` envelope."""
    if isinstance(data, dict) and "input" in data:
        return data["input"]
    return data


@registry.register(NodeType.IF_ELSE)
async def if_else(node: WorkflowNode, data: Any, ctx: SharedContext) -> dict:
    condition = node.config.get("condition") or ""
    actual = unwrap_branch_input(data)

    result = evaluate_condition(str(condition), actual)
    logger.debug(
        "If/Else evaluated",
        extra={"node_id": node.id, "condition": condition, "result": result}
    )
    return {"condition": result, "input": actual}


def parse_cases(node: WorkflowNode) -> List[Dict[str, Any]]:
    raw = node.config.get("cases")
    if not raw:
        return []

    if isinstance(raw, str):
        try:
            cases = json.loads(raw)
        except ValueError as e:
            raise ConfigError(node.name, "cases", str(e))
    elif isinstance(raw, list):
        cases = raw
    else:
        raise ValidationError(
            node.name, "cases",
            'Switch cases must be a JSON array. Format: [{"value": "active", "label": "Active"}]'
        )

    if not isinstance(cases, list):
        raise ValidationError(
            node.name, "cases",
            f"Switch cases must be an array. Received: {type(cases).__name__}."
        )
    return [case for case in cases if isinstance(case, dict)]


@registry.register(NodeType.SWITCH)
async def switch(node: WorkflowNode, data: Any, ctx: SharedContext) -> dict:
    expression = require_str(node, "expression")
    cases = parse_cases(node)

    match_value = replace_templates(expression, data).strip()
    for case in cases:
        if handle_text(case.get("value")) == match_value:
            logger.debug(
                "Switch matched case",
                extra={"node_id": node.id, "matched": case.get("value")}
            )
            return {"matchedCase": case.get("value"), "caseLabel": case.get("label"), "input": data}

    logger.debug(
        "Switch matched no case",
        extra={"node_id": node.id, "value": match_value, "cases": [c.get("value") for c in cases]}
    )
    return {"matchedCase": None, "caseLabel": None, "input": data}


@registry.register(NodeType.WAIT)
async def wait(node: WorkflowNode, data: Any, ctx: SharedContext) -> Any:
    duration = get_number(node.config, "duration", 1000) or 1000
    await asyncio.sleep(min(max(duration, 0), ctx.config.wait_max_ms) / 1000)
    return data


@registry.register(NodeType.NOOP)
async def noop(node: WorkflowNode, data: Any, ctx: SharedContext) -> Any:
    return data


@registry.register(NodeType.STOP_AND_ERROR)
async def stop_and_error(node: WorkflowNode, data: Any, ctx: SharedContext) -> Any:
    raise StopWorkflowError(
        get_str(node.config, "errorMessage", "Workflow stopped by Stop And Error node"),
        code=get_str(node.config, "errorCode", "STOPPED"),
        node_name=node.name,
    )


@registry.register(NodeType.ERROR_HANDLER)
async def error_handler(node: WorkflowNode, data: Any, ctx: SharedContext) -> dict:
    """Passthrough that annotates its output with retry and fallback settings."""
    fallback_text = get_str(node.config, "fallbackValue", "null").strip()
    fallback: Any = None
    if fallback_text and fallback_text != "null":
        try:
            fallback = json.loads(fallback_text)
        except ValueError:
            fallback = fallback_text

    return {
        **input_object(data),
        "_error_handler_config": {
            "retries": get_int(node.config, "retries", 3),
            "retryDelay": get_int(node.config, "retryDelay", 1000),
            "fallbackValue": fallback,
        },
    }
