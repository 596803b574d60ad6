# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
HTTP nodes: generic request, legacy POST, GraphQL and the webhook response
marker.

All outbound calls go through the run's shared ``httpx.AsyncClient``.
Transient network failures are retried a bounded number of times with an
incremental backoff; an exhausted budget surfaces as one node failure.
"""

import asyncio
import json
from typing import Any, Dict, Optional

import httpx

from flowrunner.core.errors import ExternalServiceError, NodeExecutionError, NodeTimeoutError
from flowrunner.core.logging import get_service_logger
from flowrunner.engine.context import SharedContext
from flowrunner.engine.expressions import replace_templates
from flowrunner.models import WorkflowNode
from flowrunner.node_types import NodeType
from flowrunner.nodes.base import (
    get_number,
    get_str,
    parse_json_config,
    require_str,
    templated_json,
    validate_url,
)
from flowrunner.nodes.registry import registry

logger = get_service_logger("http")


async def send(
    ctx: SharedContext,
    node: WorkflowNode,
    method: str,
    url: str,
    timeout_ms: Optional[float] = None,
    retries: int = 0,
    **kwargs
) -> httpx.Response:
    """
    Issue one request, retrying transport failures up to ``retries`` times.

    Raises:
        NodeTimeoutError: The request exceeded ``timeout_ms``
        NodeExecutionError: The connection failed on every attempt
    """
    timeout_ms = timeout_ms or ctx.config.http_timeout_ms
    backoff_ms = ctx.config.http_retry_backoff_ms

    for attempt in range(retries + 1):
        try:
            return await ctx.http.request(method, url, timeout=timeout_ms / 1000, **kwargs)
        except httpx.TimeoutException:
            raise NodeTimeoutError(node.name, timeout_ms, target=url)
        except httpx.TransportError as e:
            if attempt < retries:
                logger.info(
                    f"{node.name} attempt {attempt + 1} failed, retrying ({attempt + 1}/{retries + 1})",
                    extra={"node_id": node.id, "url": url, "error": str(e)}
                )
                await asyncio.sleep(backoff_ms * (attempt + 1) / 1000)
                continue
            raise NodeExecutionError(
                f"{node.name}: Request failed: {e}\n\nURL: {url}\n\n"
                f"All {retries + 1} attempts failed.",
                node_name=node.name,
            )
    # Unreachable: the last attempt either returns or raises
    raise NodeExecutionError(f"{node.name}: Request failed", node_name=node.name)


def parse_body(response: httpx.Response) -> Any:
    """JSON body when the response has one, else ``{text, status}``."""
    try:
        return response.json()
    except ValueError:
        return {"text": response.text, "status": response.status_code}


def raise_for_status(response: httpx.Response, service: str, node: WorkflowNode) -> None:
    if response.status_code >= 400:
        raise ExternalServiceError(service, response.status_code, response.text, node_name=node.name)


def _headers(node: WorkflowNode, data: Any) -> Dict[str, str]:
    headers = templated_json(node, "headers", data, default={})
    if not isinstance(headers, dict):
        return {}
    return {str(k): str(v) for k, v in headers.items()}


@registry.register(NodeType.HTTP_REQUEST)
async def http_request(node: WorkflowNode, data: Any, ctx: SharedContext) -> Any:
    url = replace_templates(require_str(node, "url", "URL"), data)
    validate_url(node, url)

    method = get_str(node.config, "method", "GET").upper()
    timeout_ms = get_number(node.config, "timeout", ctx.config.http_timeout_ms)
    headers = {"Content-Type": "application/json", **_headers(node, data)}

    kwargs: Dict[str, Any] = {"headers": headers}
    if method != "GET":
        body = templated_json(node, "body", data)
        kwargs["content"] = json.dumps(body if body is not None else data, default=str)

    response = await send(ctx, node, method, url, timeout_ms, retries=ctx.config.http_max_retries, **kwargs)
    raise_for_status(response, "HTTP Request", node)
    return parse_body(response)


@registry.register(NodeType.HTTP_POST)
async def http_post(node: WorkflowNode, data: Any, ctx: SharedContext) -> Any:
    url = replace_templates(require_str(node, "url", "URL"), data)
    validate_url(node, url)

    body_template = get_str(node.config, "bodyTemplate")
    content = replace_templates(body_template, data) if body_template else json.dumps(data, default=str)
    headers = {"Content-Type": "application/json", **_headers(node, data)}

    response = await send(ctx, node, "POST", url, headers=headers, content=content)
    raise_for_status(response, "HTTP POST", node)
    return parse_body(response)


def _graphql_errors(result: Any) -> Optional[str]:
    errors = result.get("errors") if isinstance(result, dict) else None
    if not isinstance(errors, list) or not errors:
        return None
    return ", ".join(
        str(e["message"]) if isinstance(e, dict) and "message" in e else str(e)
        for e in errors
    )


@registry.register(NodeType.GRAPHQL)
async def graphql(node: WorkflowNode, data: Any, ctx: SharedContext) -> Any:
    url = replace_templates(require_str(node, "url", "Endpoint URL"), data)
    validate_url(node, url, "endpoint URL")
    query = replace_templates(require_str(node, "query", "Query"), data)

    payload: Dict[str, Any] = {"query": query}
    operation_name = get_str(node.config, "operationName")
    if operation_name:
        payload["operationName"] = replace_templates(operation_name, data)
    variables = templated_json(node, "variables", data, default={})
    if isinstance(variables, dict) and variables:
        payload["variables"] = variables

    timeout_ms = get_number(node.config, "timeout", ctx.config.http_timeout_ms)
    headers = {"Content-Type": "application/json", **_headers(node, data)}

    response = await send(ctx, node, "POST", url, timeout_ms, headers=headers, json=payload)
    try:
        result = response.json()
    except ValueError:
        raise_for_status(response, "GraphQL", node)
        raise NodeExecutionError(
            f"GraphQL: Query failed: response is not JSON\n\nEndpoint: {url}",
            node_name=node.name,
        )

    messages = _graphql_errors(result)
    if messages:
        raise NodeExecutionError(f"GraphQL: Query failed: {messages}\n\nEndpoint: {url}", node_name=node.name)
    raise_for_status(response, "GraphQL", node)

    if isinstance(result, dict) and result.get("data"):
        return result["data"]
    return result


def _field_or_json(body: Any, *keys: str) -> Any:
    if isinstance(body, str):
        return body
    if isinstance(body, dict):
        for key in keys:
            if body.get(key):
                return body[key]
    return json.dumps(body, default=str)


@registry.register(NodeType.RESPOND_TO_WEBHOOK)
async def respond_to_webhook(node: WorkflowNode, data: Any, ctx: SharedContext) -> dict:
    """Shape the reply the webhook receiver returns to its caller."""
    status_code = int(get_number(node.config, "statusCode", 200) or 200)

    template = get_str(node.config, "responseBody")
    if template:
        rendered = replace_templates(template, data)
        try:
            body = json.loads(rendered)
        except ValueError:
            body = rendered
    else:
        body = data

    headers_text = get_str(node.config, "headers")
    headers = parse_json_config(node, "headers", replace_templates(headers_text, data)) if headers_text else {}

    return {
        "_webhook_response": True,
        "statusCode": status_code,
        "body": body,
        "headers": headers,
        "message": _field_or_json(body, "message", "text"),
        "text": _field_or_json(body, "text"),
        "content": _field_or_json(body, "content"),
        "response": body,
    }
