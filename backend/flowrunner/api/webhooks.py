# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Webhook Trigger Routes

Public entry point for chat widgets and third-party callers.
"""

import json
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from flowrunner.core.dependencies import get_workflow_service
from flowrunner.core.logging import get_api_logger
from flowrunner.services.workflow_service import WorkflowService

router = APIRouter(prefix="/webhook", tags=["webhooks"])
logger = get_api_logger()


async def _json_body(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except ValueError:
        logger.info("No JSON body or invalid JSON, using empty input")
        return {}


@router.api_route("/{workflow_id}", methods=["GET", "POST"])
async def trigger_webhook(
    workflow_id: str,
    request: Request,
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, Any]:
    """Run a webhook-enabled workflow and return its reply"""
    body = await _json_body(request) if request.method == "POST" else {}
    logger.info(f"Webhook triggered for workflow: {workflow_id}", extra={"method": request.method})

    response = await service.handle_webhook(
        workflow_id,
        request.method,
        dict(request.query_params),
        body,
    )
    return response.model_dump(by_alias=True, mode="json")
