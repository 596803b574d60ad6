# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Messaging nodes: Slack and Discord incoming webhooks, email through Resend.
"""

import json
import re
from typing import Any, Dict

from flowrunner.core.errors import ExternalServiceError, ValidationError
from flowrunner.core.logging import get_service_logger
from flowrunner.engine.context import SharedContext
from flowrunner.engine.expressions import replace_templates
from flowrunner.models import WorkflowNode
from flowrunner.node_types import NodeType
from flowrunner.nodes.base import get_str, require_str, validate_email, validate_url
from flowrunner.nodes.http import raise_for_status, send
from flowrunner.nodes.registry import registry

logger = get_service_logger("messaging")

RESEND_KEY = "RESEND_API_KEY"


def _render(node: WorkflowNode, key: str, data: Any) -> str:
    value = node.config.get(key)
    return replace_templates(str(value), data) if value else ""


@registry.register(NodeType.SLACK_MESSAGE, NodeType.SLACK_WEBHOOK)
async def slack(node: WorkflowNode, data: Any, ctx: SharedContext) -> dict:
    webhook_url = require_str(node, "webhookUrl", "Slack webhook URL")
    validate_url(node, webhook_url, "Slack webhook URL")

    payload: Dict[str, Any] = {}
    if node.type == NodeType.SLACK_MESSAGE.value:
        payload["text"] = _render(node, "message", data)
        for key, target in (("channel", "channel"), ("username", "username"), ("iconEmoji", "icon_emoji")):
            if node.config.get(key):
                payload[target] = node.config[key]

        blocks_text = get_str(node.config, "blocks")
        if blocks_text:
            try:
                blocks = json.loads(replace_templates(blocks_text, data))
            except ValueError:
                # Text alone still delivers the message
                blocks = None
            if isinstance(blocks, list) and blocks:
                payload["blocks"] = blocks
    else:
        payload["text"] = _render(node, "text", data)

    response = await send(ctx, node, "POST", webhook_url, json=payload)
    raise_for_status(response, "Slack webhook", node)
    return {"success": True, "message": "Slack message sent"}


@registry.register(NodeType.DISCORD_WEBHOOK)
async def discord(node: WorkflowNode, data: Any, ctx: SharedContext) -> dict:
    webhook_url = require_str(node, "webhookUrl", "Discord webhook URL")
    validate_url(node, webhook_url, "Discord webhook URL")

    payload: Dict[str, Any] = {"content": _render(node, "content", data)}
    if node.config.get("username"):
        payload["username"] = node.config["username"]
    if node.config.get("avatarUrl"):
        payload["avatar_url"] = node.config["avatarUrl"]

    response = await send(ctx, node, "POST", webhook_url, json=payload)
    raise_for_status(response, "Discord webhook", node)
    return {"success": True, "message": "Discord message sent"}


def sender_address(sender: str) -> str:
    """Bare address from ``Name <email>`` or ``email``."""
    match = re.search(r"<([^>]+)>", sender) or re.match(r"^([^\s<]+)$", sender)
    return match.group(1) if match else sender.strip()


@registry.register(NodeType.EMAIL_RESEND)
async def email_resend(node: WorkflowNode, data: Any, ctx: SharedContext) -> dict:
    """
    Send an email through the Resend API.

    Without a configured API key the node is skipped rather than failed and
    passes its input through.
    """
    api_key = ctx.api_keys.get(RESEND_KEY)
    if not api_key:
        logger.warning(f"{RESEND_KEY} not configured; email node skipped", extra={"node_id": node.id})
        return {
            "success": False,
            "skipped": True,
            "message": f"Email skipped: {RESEND_KEY} not configured.",
            "input": data,
        }

    to = _render(node, "to", data)
    sender = _render(node, "from", data)
    subject = _render(node, "subject", data)
    body = _render(node, "body", data)
    reply_to = _render(node, "replyTo", data)

    if not to.strip():
        raise ValidationError("Email", "To", "'To' field is required. Please configure the recipient email address in the node properties.")
    if not sender.strip():
        raise ValidationError(
            "Email", "From",
            "'From' field is required. Format: 'email@example.com' or 'Name <email@example.com>'"
        )
    validate_email(node, sender_address(sender), "'From' email")

    recipients = [address.strip() for address in to.split(",") if address.strip()]
    if not recipients:
        raise ValidationError("Email", "To", "'To' field must contain at least one valid email address.")
    for address in recipients:
        validate_email(node, address, "'To' email")

    if not subject.strip():
        raise ValidationError("Email", "Subject", "'Subject' field is required.")
    if not body.strip():
        raise ValidationError("Email", "Body", "'Body' field is required.")

    message: Dict[str, Any] = {
        "from": sender.strip(),
        "to": recipients,
        "subject": subject.strip(),
        "html": body.strip(),
    }
    if reply_to.strip():
        message["reply_to"] = reply_to.strip()

    response = await send(
        ctx, node, "POST", ctx.config.resend_api_url,
        headers={"Authorization": f"Bearer {api_key}"},
        json=message,
    )
    if response.status_code >= 400:
        try:
            detail = response.json().get("message") or response.text
        except (ValueError, AttributeError):
            detail = response.text
        raise ExternalServiceError("Email send", response.status_code, str(detail), node_name=node.name)

    result = response.json()
    return {"success": True, "emailId": result.get("id"), "message": "Email sent successfully"}
