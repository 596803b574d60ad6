# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Trigger nodes.

Each trigger returns a normalized envelope merging its own metadata with the
triggering payload. They have no meaningful predecessors, so ``data`` is the
run input (enriched with run identity).
"""

import asyncio
import re
from datetime import datetime
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flowrunner.core.errors import ValidationError
from flowrunner.core.logging import get_service_logger
from flowrunner.engine.context import SharedContext
from flowrunner.models import WorkflowNode, isoformat, utc_now
from flowrunner.node_types import NodeType
from flowrunner.nodes.base import get_str, input_object, require_str
from flowrunner.nodes.registry import registry

logger = get_service_logger("triggers")

TIME_OF_DAY = re.compile(r"^\d{2}:\d{2}$")


@registry.register(NodeType.MANUAL_TRIGGER)
async def manual_trigger(node: WorkflowNode, data: Any, ctx: SharedContext) -> dict:
    payload = input_object(data)
    workflow_id = (
        get_str(payload, "_workflow_id")
        or get_str(payload, "workflow_id")
        or ctx.workflow_id
        or "unknown"
    )
    return {
        "trigger": "manual",
        "workflow_id": workflow_id,
        **payload,
        # Set last so the payload cannot overwrite it
        "executed_at": isoformat(utc_now()),
    }


@registry.register(NodeType.WEBHOOK, NodeType.WEBHOOK_TRIGGER_RESPONSE)
async def webhook_trigger(node: WorkflowNode, data: Any, ctx: SharedContext) -> dict:
    payload = input_object(data)
    return {
        "trigger": "webhook",
        "method": get_str(payload, "method", "POST"),
        "headers": payload.get("headers") or {},
        "query": payload.get("query") or {},
        "body": payload.get("body") or payload,
        **payload,
    }


def seconds_until(time_of_day: str, timezone: str, now: Optional[datetime] = None) -> float:
    """
    Seconds from ``now`` until the next occurrence of HH:MM in ``timezone``.

    A time that has already passed today rolls over to tomorrow.
    """
    zone = ZoneInfo(timezone)
    current = (now or utc_now()).astimezone(zone)
    hour, minute = (int(part) for part in time_of_day.split(":"))

    current_minutes = current.hour * 60 + current.minute
    diff_minutes = hour * 60 + minute - current_minutes
    if diff_minutes < 0:
        diff_minutes += 24 * 60
    return diff_minutes * 60 - current.second


@registry.register(NodeType.SCHEDULE)
async def schedule_trigger(node: WorkflowNode, data: Any, ctx: SharedContext) -> dict:
    """
    Schedule trigger.

    Outside of a scheduler-initiated run (``_scheduled == "true"``) the node
    waits for the configured time of day when it is at most
    ``schedule_max_wait_ms`` away. This blocks the whole run.
    """
    time_of_day = get_str(node.config, "time", "09:00")
    timezone = get_str(node.config, "timezone", ctx.config.default_timezone)
    payload = input_object(data)

    if TIME_OF_DAY.match(time_of_day or ""):
        hours, minutes = time_of_day.split(":")
        cron = f"{minutes} {hours} * * *"
    else:
        cron = get_str(node.config, "cron", "0 9 * * *")

    scheduled_run = get_str(payload, "_scheduled", "false") == "true"
    if not scheduled_run and TIME_OF_DAY.match(time_of_day or ""):
        try:
            delay_ms = seconds_until(time_of_day, timezone) * 1000
        except (ZoneInfoNotFoundError, ValueError) as e:
            logger.warning(f"Schedule trigger time calculation failed: {e}")
        else:
            max_wait_ms = ctx.config.schedule_max_wait_ms
            if 0 < delay_ms <= max_wait_ms:
                logger.info(f"Schedule trigger waiting {round(delay_ms / 1000)}s until {time_of_day} {timezone}")
                await asyncio.sleep(delay_ms / 1000)
            elif delay_ms > max_wait_ms:
                logger.warning(
                    f"Scheduled time {time_of_day} {timezone} is more than "
                    f"{max_wait_ms // 60000} minutes away; continuing without waiting"
                )

    return {
        "trigger": "schedule",
        "time": time_of_day,
        "cron": cron,
        "timezone": timezone,
        "executed_at": isoformat(utc_now()),
        **payload,
    }


@registry.register(NodeType.CHAT_TRIGGER)
async def chat_trigger(node: WorkflowNode, data: Any, ctx: SharedContext) -> dict:
    payload = input_object(data)
    message = get_str(payload, "message")
    session_id = get_str(payload, "session_id") or get_str(payload, "_session_id")

    if not message.strip():
        raise ValidationError(
            "Chat Trigger", "message",
            "message is required. Please provide a message in the input data."
        )
    if not session_id.strip():
        raise ValidationError(
            "Chat Trigger", "session_id",
            "session_id is required. Please provide a session_id in the input data."
        )

    return {
        "trigger": "chat",
        "message": message,
        "session_id": session_id,
        "user_context": payload.get("user_context") or payload.get("metadata") or {},
        **payload,
    }


@registry.register(NodeType.ERROR_TRIGGER)
async def error_trigger(node: WorkflowNode, data: Any, ctx: SharedContext) -> dict:
    payload = input_object(data)
    return {
        "trigger": "error",
        "failed_node": get_str(payload, "failed_node", "unknown"),
        "error_message": get_str(payload, "error_message", "Unknown error"),
        "stack_trace": get_str(payload, "stack_trace"),
        **payload,
    }


@registry.register(NodeType.INTERVAL)
async def interval_trigger(node: WorkflowNode, data: Any, ctx: SharedContext) -> dict:
    return {
        "trigger": "interval",
        "interval": get_str(node.config, "interval", "10m"),
        "executed_at": isoformat(utc_now()),
        **input_object(data),
    }


@registry.register(NodeType.WORKFLOW_TRIGGER)
async def workflow_trigger(node: WorkflowNode, data: Any, ctx: SharedContext) -> dict:
    source_workflow_id = require_str(node, "source_workflow_id")
    payload = input_object(data)
    return {
        "trigger": "workflow",
        "source_workflow_id": source_workflow_id,
        "payload": payload.get("payload") or payload,
        **payload,
    }
