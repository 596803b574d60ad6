# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Execution API Routes

Workflow invocation and execution lookup. A run that fails is still a 200
response with ``status: failed``; only bad requests get an error status.
"""

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends
from pydantic import ValidationError as PydanticValidationError

from flowrunner.core.dependencies import get_workflow_service
from flowrunner.core.errors import RequestValidationError
from flowrunner.models import ExecutionRequest
from flowrunner.services.workflow_service import WorkflowService

router = APIRouter(tags=["executions"])


@router.post("/execute-workflow")
async def execute_workflow(
    payload: Any = Body(default=None),
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, Any]:
    """Run a workflow and return its execution record"""
    if not isinstance(payload, dict):
        raise RequestValidationError("Request body must be a JSON object")
    if not payload.get("workflowId"):
        raise RequestValidationError("workflowId is required", field="workflowId")

    try:
        request = ExecutionRequest.model_validate(payload)
    except PydanticValidationError as e:
        raise RequestValidationError(f"Invalid request: {e.errors()[0]['msg']}")

    response = await service.run_workflow(request)
    return response.to_wire()


@router.get("/executions/{execution_id}")
async def get_execution(
    execution_id: str,
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, Any]:
    """Get a persisted execution"""
    execution = await service.get_execution(execution_id)
    return execution.to_wire()
